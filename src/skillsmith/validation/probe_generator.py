"""Ask the collaborator for a runnable program that exercises one pattern."""

from __future__ import annotations

import json
import logging
import re
from typing import Optional, Sequence

from skillsmith.agent.state import Pattern, Probe
from skillsmith.config.settings import PromptSettings, Stage
from skillsmith.exceptions import ParseError
from skillsmith.llm.client import GenerationClient
from skillsmith.llm.prompts import stage_instructions
from skillsmith.sandbox.runtimes import get_runtime
from skillsmith.sandbox.sanitizer import sanitize_dependencies
from skillsmith.utils.fences import extract_code_block

logger = logging.getLogger(__name__)

PASS_MARKER = "✓ Test passed: {name}"
_SCRIPT_HEADER = re.compile(r"(?ms)^#\s*///\s*script\s*$.*?^#\s*///\s*$\n?")


def script_header(dependencies: Sequence[str], requires_python: str = ">=3.11") -> str:
    """PEP 723 inline metadata block declaring ``dependencies``."""

    return (
        "# /// script\n"
        f'# requires-python = "{requires_python}"\n'
        f"# dependencies = {json.dumps(list(dependencies), ensure_ascii=False)}\n"
        "# ///\n"
    )


def strip_script_header(source: str) -> str:
    return _SCRIPT_HEADER.sub("", source, count=1).lstrip("\n")


class ProbeGenerator:
    """Generates probes; never adds dependencies beyond the pattern's own."""

    def __init__(
        self,
        client: GenerationClient,
        prompts: Optional[PromptSettings] = None,
        local_package: Optional[str] = None,
    ):
        self.client = client
        self.prompts = prompts or PromptSettings()
        self.local_package = local_package

    def instructions(self, pattern: Pattern) -> str:
        runtime = get_runtime(pattern.runtime)
        text = stage_instructions(
            self.prompts,
            Stage.PROBE_GENERATOR,
            f"probe_{runtime.name}",
            pattern_name=pattern.name,
        )
        if self.local_package:
            text += (
                f"\n\nIMPORTANT: the library \"{self.local_package}\" is installed from a local checkout, "
                "not from the package index.\n"
            )
        return text

    @staticmethod
    def input_text(pattern: Pattern) -> str:
        runtime = get_runtime(pattern.runtime)
        return (
            f"Pattern: {pattern.name}\n"
            f"Runtime: {runtime.name}\n"
            f"Description: {pattern.expected_behavior_summary or '(none)'}\n\n"
            "Example from SKILL.md:\n"
            f"```{runtime.fence_tags[0]}\n{pattern.code}\n```\n\n"
            f"On success the script must print: {PASS_MARKER.format(name=pattern.name)}\n"
        )

    async def generate(self, pattern: Pattern) -> Probe:
        runtime = get_runtime(pattern.runtime)
        dependencies = sanitize_dependencies(pattern.dependencies)

        logger.debug("Generating probe for pattern %r", pattern.name)
        response = await self.client.complete(self.instructions(pattern), self.input_text(pattern))

        code = extract_code_block(response, runtime.fence_tags)
        if code is None and "```" not in response:
            code = response.strip()
        code = strip_script_header(code or "").strip()
        if not code:
            raise ParseError(f"No {runtime.name} code in the probe generated for {pattern.name!r}")

        if runtime.name == "python":
            source = f"{script_header(dependencies)}\n{code}\n"
        else:
            source = f"{code}\n"
        logger.debug("Generated %d bytes of probe code for %r", len(source), pattern.name)
        return Probe(
            pattern_name=pattern.name,
            runtime=runtime.name,
            source=source,
            dependencies=dependencies,
        )


__all__ = ["PASS_MARKER", "ProbeGenerator", "script_header", "strip_script_header"]
