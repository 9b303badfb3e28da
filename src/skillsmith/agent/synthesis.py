"""Combine the extraction results into a SKILL.md draft."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from skillsmith.agent.state import CollectedData, ExtractionKind, ExtractionResult
from skillsmith.config.settings import PromptSettings, Stage
from skillsmith.exceptions import ExtractionError, SafetyViolation
from skillsmith.llm.client import GenerationClient
from skillsmith.llm.prompts import stage_instructions
from skillsmith.sandbox.runtimes import RUNTIMES, normalize_runtime
from skillsmith.utils.fences import strip_markdown_fences

logger = logging.getLogger(__name__)

REFUSAL_PREFIX = "ERROR: Source material contains potentially harmful content"


def format_references(data: CollectedData) -> str:
    if not data.project_urls:
        return "- [Official Documentation](link to the official docs)\n- [Source Repository](link to the repository)"
    return "\n".join(f"- [{label}]({url})" for label, url in data.project_urls)


class SynthesisStage:
    def __init__(self, client: GenerationClient, prompts: Optional[PromptSettings] = None):
        self.client = client
        self.prompts = prompts or PromptSettings()

    def instructions(self, data: CollectedData, patch: bool) -> str:
        runtime = RUNTIMES.get(normalize_runtime(data.ecosystem))
        return stage_instructions(
            self.prompts,
            Stage.SYNTHESIZER,
            "synthesizer_update" if patch else "synthesizer",
            package_name=data.package_name,
            version=data.version,
            language=data.ecosystem,
            ecosystem=data.ecosystem,
            license=data.license or "unknown",
            references=format_references(data),
            fence=runtime.fence_tags[0] if runtime else data.ecosystem,
        )

    @staticmethod
    def input_text(
        data: CollectedData,
        extractions: Mapping[ExtractionKind, ExtractionResult],
        previous: Optional[str] = None,
    ) -> str:
        parts = [
            f"Package: {data.package_name}",
            f"Version: {data.version}",
            f"Ecosystem: {data.ecosystem}",
            "",
        ]
        if previous:
            parts += ["## Current SKILL.md", "", previous.strip(), ""]
        parts += [
            "## Public API Surface",
            extractions[ExtractionKind.API_SURFACE].text,
            "",
            "## Usage Patterns From Tests And Examples",
            extractions[ExtractionKind.USAGE_PATTERNS].text,
            "",
            "## Conventions And Pitfalls",
            extractions[ExtractionKind.CONVENTIONS].text,
        ]
        return "\n".join(parts)

    async def run(
        self,
        data: CollectedData,
        extractions: Mapping[ExtractionKind, ExtractionResult],
        *,
        feedback: Optional[str] = None,
        previous: Optional[str] = None,
    ) -> str:
        """Write a new artifact, or patch ``previous`` when one is given."""

        failed = [result for result in extractions.values() if not result.ok]
        if failed:
            raise ExtractionError(
                f"cannot synthesize from a failed {failed[0].kind.value} extraction: {failed[0].error}",
                kind=ExtractionError.MALFORMED,
                result=failed[0],
            )

        patch = previous is not None
        logger.info("Synthesizing SKILL.md (%s)", "patch" if patch else "full")
        response = await self.client.complete(
            self.instructions(data, patch),
            self.input_text(data, extractions, previous),
            feedback,
        )
        artifact = strip_markdown_fences(response).strip()
        if artifact.startswith(REFUSAL_PREFIX):
            raise SafetyViolation([artifact.splitlines()[0]])
        return artifact + "\n"


__all__ = ["REFUSAL_PREFIX", "SynthesisStage", "format_references"]
