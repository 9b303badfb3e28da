from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from skillsmith.config.settings import PromptSettings, Stage


def find_prompts_dir() -> Path:
    """Locate the directory holding the ``.jinja`` templates."""
    packaged = Path(__file__).resolve().parents[1] / "prompts"
    if packaged.exists():
        return packaged
    if (Path.cwd() / "prompts").exists():
        return Path.cwd() / "prompts"
    raise FileNotFoundError("Could not find the 'prompts' directory.")


@lru_cache(maxsize=None)
def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(find_prompts_dir())),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )


def render(name: str, **values: object) -> str:
    """Render ``<name>.jinja``; a placeholder without a value is an error."""
    return _environment().get_template(f"{name}.jinja").render(**values)


def stage_instructions(prompts: PromptSettings, stage: Stage, template: str, **values: object) -> str:
    """Default instructions for ``stage`` combined with the configured custom text."""

    custom: Optional[str] = prompts.custom_for(stage)
    if custom and prompts.is_overwrite(stage):
        return custom
    text = render(template, **values)
    if custom:
        text += f"\n\n## Additional Instructions\n\n{custom}\n"
    return text


__all__ = ["find_prompts_dir", "render", "stage_instructions"]
