"""Immutable run configuration built from TOML, ``.env`` and the environment."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from skillsmith.agent.state import ValidationMode
from skillsmith.exceptions import ConfigError

DEFAULT_CONFIG_FILE = "skillsmith.toml"


class Provider(str, Enum):
    """Generation backends skillsmith knows how to talk to."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"
    OPENAI_COMPATIBLE = "openai-compatible"


class Stage(str, Enum):
    API_EXTRACTOR = "api_extractor"
    PATTERN_EXTRACTOR = "pattern_extractor"
    CONTEXT_EXTRACTOR = "context_extractor"
    SYNTHESIZER = "synthesizer"
    REVIEWER = "reviewer"
    PROBE_GENERATOR = "probe_generator"


class PromptMode(str, Enum):
    APPEND = "append"
    OVERWRITE = "overwrite"


_DEFAULT_MAX_TOKENS = {
    Provider.ANTHROPIC: 4096,
    Provider.OPENAI: 4096,
    Provider.OPENAI_COMPATIBLE: 16384,
    Provider.GEMINI: 8192,
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class LLMSettings(_Frozen):
    provider: Provider = Provider.OPENAI
    model: str = "gpt-4o"
    api_key_env: Optional[str] = "OPENAI_API_KEY"
    base_url: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: float = 0.0
    timeout: float = 120.0

    def get_max_tokens(self) -> int:
        if self.max_tokens is not None:
            return self.max_tokens
        return _DEFAULT_MAX_TOKENS[self.provider]

    def resolve_api_key(self) -> Optional[str]:
        """Read the API key from the variable named by ``api_key_env``.

        ``none`` (any case) means the backend needs no key. OpenAI-compatible
        servers tolerate a missing key, every other provider requires one.
        """

        env_var = self.api_key_env
        if not env_var or env_var.lower() == "none":
            return None
        value = os.environ.get(env_var)
        if value:
            return value
        if self.provider is Provider.OPENAI_COMPATIBLE:
            return None
        raise ConfigError(f"API key not found in environment variable: {env_var}")


class StageModels(_Frozen):
    """Optional per-stage overrides of the main model."""

    api_extractor: Optional[LLMSettings] = None
    pattern_extractor: Optional[LLMSettings] = None
    context_extractor: Optional[LLMSettings] = None
    synthesizer: Optional[LLMSettings] = None
    reviewer: Optional[LLMSettings] = None
    probe_generator: Optional[LLMSettings] = None

    def for_stage(self, stage: Stage) -> Optional[LLMSettings]:
        return getattr(self, stage.value)


class GenerationSettings(_Frozen):
    max_retries: int = Field(default=3, ge=0)
    parallel_extraction: bool = True
    enable_review: bool = True
    strict_review: bool = False
    enable_validation: bool = True
    validation_mode: ValidationMode = ValidationMode.EXHAUSTIVE
    adaptive_failure_threshold: int = Field(default=2, ge=1)
    collaborator_retries: int = Field(default=2, ge=0)
    run_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("validation_mode", mode="before")
    @classmethod
    def _legacy_mode_names(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lower() == "thorough":
            return ValidationMode.EXHAUSTIVE
        return value


class ContainerSettings(_Frozen):
    strategy: Literal["container", "local"] = "container"
    runtime: str = "docker"
    images: Dict[str, str] = Field(
        default_factory=lambda: {
            "python": "ghcr.io/astral-sh/uv:python3.11-bookworm-slim",
            "javascript": "node:20-slim",
        }
    )
    network: bool = True
    timeout: float = Field(default=60.0, gt=0, description="Seconds a probe may run once its dependencies are in place")
    install_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Seconds allowed for installing a probe's dependencies. In a container the install shares "
        "one bound with the run, so a probe that declares dependencies gets timeout + install_timeout",
    )
    grace_period: float = Field(default=5.0, ge=0)
    max_output_bytes: int = Field(default=64 * 1024, gt=0)
    keep_workdirs: bool = False
    workdir_root: Optional[str] = None
    install_source: Literal["registry", "local-install", "local-mount"] = "registry"
    source_path: Optional[str] = None
    extra_env: Dict[str, str] = Field(default_factory=dict)

    def image_for(self, runtime: str) -> str:
        return self.images.get(runtime) or self.images["python"]

    def container_timeout(self, has_dependencies: bool) -> float:
        """Wall-clock bound for one container run.

        Image pull and dependency install happen inside the same ``docker run``
        as the probe, so they share its bound. A probe without dependencies gets
        ``timeout`` alone.
        """
        return self.timeout + (self.install_timeout if has_dependencies else 0)


class PromptSettings(_Frozen):
    """Custom instruction text per stage, appended to or replacing the defaults."""

    override_prompts: bool = False
    custom: Dict[Stage, str] = Field(default_factory=dict)
    modes: Dict[Stage, PromptMode] = Field(default_factory=dict)

    def custom_for(self, stage: Stage) -> Optional[str]:
        return self.custom.get(stage)

    def is_overwrite(self, stage: Stage) -> bool:
        # Probe generation rules are load-bearing for the executor; append only.
        if stage is Stage.PROBE_GENERATOR:
            return False
        mode = self.modes.get(stage)
        if mode is None:
            return self.override_prompts
        return mode is PromptMode.OVERWRITE


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SKILLSMITH_",
        env_nested_delimiter="__",
        frozen=True,
        extra="ignore",
    )

    llm: LLMSettings = Field(default_factory=LLMSettings)
    stages: StageModels = Field(default_factory=StageModels)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    container: ContainerSettings = Field(default_factory=ContainerSettings)
    prompts: PromptSettings = Field(default_factory=PromptSettings)

    def llm_for(self, stage: Stage) -> LLMSettings:
        return self.stages.for_stage(stage) or self.llm

    def model_label(self) -> str:
        """Model names recorded in the artifact's ``generated_with`` field."""
        overrides = sorted(
            {
                override.model
                for stage in Stage
                if (override := self.stages.for_stage(stage)) is not None
                and override.model != self.llm.model
            }
        )
        if not overrides:
            return self.llm.model
        return f"{self.llm.model} + {', '.join(overrides)}"


def _deep_merge(base: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            current = merged.get(key)
            merged[key] = _deep_merge(dict(current) if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = value
    return merged


def read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file '{path}' does not exist") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Config file '{path}' is not valid TOML: {exc}") from exc


def load_settings(
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Settings:
    """Build the run configuration.

    Precedence, lowest first: defaults, ``SKILLSMITH_*`` environment variables,
    the TOML file (explicit ``path`` or ``./skillsmith.toml``), ``overrides``.
    """

    load_dotenv(override=False)

    data: Dict[str, Any] = {}
    if path is not None:
        data = read_config_file(Path(path))
    else:
        candidate = Path.cwd() / DEFAULT_CONFIG_FILE
        if candidate.exists():
            data = read_config_file(candidate)

    if overrides:
        data = _deep_merge(data, overrides)

    try:
        return Settings(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


__all__ = [
    "ContainerSettings",
    "GenerationSettings",
    "LLMSettings",
    "PromptMode",
    "PromptSettings",
    "Provider",
    "Settings",
    "Stage",
    "StageModels",
    "load_settings",
    "read_config_file",
]
