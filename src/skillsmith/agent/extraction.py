"""Three independent analyses of the collected library data."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Tuple

from skillsmith.agent.state import CollectedData, ExtractionKind, ExtractionResult
from skillsmith.config.settings import PromptSettings, Stage
from skillsmith.exceptions import CollaboratorError, ExtractionError
from skillsmith.llm.client import GenerationClient
from skillsmith.llm.prompts import stage_instructions

logger = logging.getLogger(__name__)

_PLAN: Tuple[Tuple[ExtractionKind, Stage, str], ...] = (
    (ExtractionKind.API_SURFACE, Stage.API_EXTRACTOR, "api_extractor"),
    (ExtractionKind.USAGE_PATTERNS, Stage.PATTERN_EXTRACTOR, "pattern_extractor"),
    (ExtractionKind.CONVENTIONS, Stage.CONTEXT_EXTRACTOR, "context_extractor"),
)


def scale_hint(source_file_count: int) -> str:
    if source_file_count > 2000:
        return (
            "\n\nLARGE LIBRARY (2000+ files): focus on top-level entry points, the APIs used in examples "
            "and names exported through __all__. Skip implementation details."
        )
    if source_file_count > 1000:
        return "\n\nLARGE LIBRARY (1000+ files): focus on top-level public APIs and skip internal modules."
    return ""


def _input_for(kind: ExtractionKind, data: CollectedData) -> str:
    if kind is ExtractionKind.API_SURFACE:
        text = data.api_input()
    elif kind is ExtractionKind.USAGE_PATTERNS:
        text = data.usage_input()
    else:
        text = data.context_input()
    return text.strip() or "(nothing was collected for this input)"


class ExtractionStage:
    def __init__(
        self,
        clients: Mapping[Stage, GenerationClient],
        prompts: Optional[PromptSettings] = None,
        parallel: bool = True,
    ):
        self.clients = clients
        self.prompts = prompts or PromptSettings()
        self.parallel = parallel

    async def _extract(self, kind: ExtractionKind, stage: Stage, template: str, data: CollectedData) -> ExtractionResult:
        instructions = stage_instructions(
            self.prompts,
            stage,
            template,
            package_name=data.package_name,
            version=data.version,
            language=data.ecosystem,
            source_file_count=data.source_file_count,
            scale_hint=scale_hint(data.source_file_count),
        )
        logger.info("Extracting %s", kind.value.replace("_", " "))
        try:
            text = await self.clients[stage].complete(instructions, _input_for(kind, data))
        except CollaboratorError as exc:
            message = f"{kind.value} extraction failed: {exc}"
            raise ExtractionError(
                message,
                kind=exc.kind,
                role=stage.value,
                result=ExtractionResult(kind=kind, text="", ok=False, error=message),
            ) from exc
        return ExtractionResult(kind=kind, text=text)

    async def run(self, data: CollectedData) -> Dict[ExtractionKind, ExtractionResult]:
        """All three results, or ``ExtractionError`` if any call fails."""

        if not self.parallel:
            results: List[ExtractionResult] = []
            for kind, stage, template in _PLAN:
                results.append(await self._extract(kind, stage, template, data))
            return {result.kind: result for result in results}

        tasks = [asyncio.create_task(self._extract(kind, stage, template, data)) for kind, stage, template in _PLAN]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return {result.kind: result for result in results}


__all__ = ["ExtractionStage", "scale_hint"]
