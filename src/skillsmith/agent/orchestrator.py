"""The generate, review, validate and retry loop.

``RetryController`` is an explicit state machine over ``Phase``. Extraction
runs once; every later iteration patches the previous artifact using the
feedback it earned. The budget counts iterations, so a run makes at most
``max_retries + 1`` synthesis calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from skillsmith.agent.extraction import ExtractionStage
from skillsmith.agent.review import ReviewStage, format_issues
from skillsmith.agent.state import (
    Attempt,
    CollectedData,
    Disposition,
    ExtractionKind,
    ExtractionResult,
    RetryBudget,
    ReviewIssue,
    ReviewVerdict,
    RunResult,
)
from skillsmith.agent.synthesis import SynthesisStage
from skillsmith.config.settings import Settings, Stage
from skillsmith.exceptions import (
    CollaboratorError,
    ParseError,
    RuntimeUnavailable,
    SafetyViolation,
    SandboxError,
    ValidationFailure,
)
from skillsmith.llm.client import GenerationClient
from skillsmith.utils.normalizer import normalize_skill_md
from skillsmith.validation.pattern_parser import PatternParser
from skillsmith.validation.probe_generator import ProbeGenerator
from skillsmith.validation.result_validator import ResultValidator
from skillsmith.validation.stage import ProbeExecutor, ValidationStage

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    EXTRACTING = "extracting"
    SYNTHESIZING = "synthesizing"
    REVIEWING = "reviewing"
    VALIDATING = "validating"
    RETRYING = "retrying"


def build_feedback(review: Optional[ReviewVerdict], validation_feedback: Optional[str]) -> Optional[str]:
    parts = []
    if review is not None and not review.passed:
        parts.append(
            "REVIEW ISSUES (fix these without changing anything else):\n"
            + format_issues(issue for issue in review.issues if issue.severity == "error")
        )
    if validation_feedback:
        parts.append(validation_feedback)
    return "\n\n".join(parts) or None


def pick_best(best: Optional[Attempt], candidate: Attempt) -> Attempt:
    """Highest ``patterns_passed`` wins; ties go to the later attempt."""
    if best is None or candidate.patterns_passed >= best.patterns_passed:
        return candidate
    return best


class RetryController:
    def __init__(
        self,
        settings: Settings,
        clients: Mapping[Stage, GenerationClient],
        executor: ProbeExecutor,
        *,
        existing_artifact: Optional[str] = None,
        generated_with: Optional[str] = None,
    ):
        self.settings = settings
        generation = settings.generation
        prompts = settings.prompts
        container = settings.container

        self.extraction = ExtractionStage(clients, prompts, parallel=generation.parallel_extraction)
        self.synthesis = SynthesisStage(clients[Stage.SYNTHESIZER], prompts)
        self.review = ReviewStage(
            clients.get(Stage.REVIEWER),
            prompts,
            enabled=generation.enable_review,
            strict=generation.strict_review,
        )
        self.executor = executor
        self.clients = clients
        self.existing_artifact = existing_artifact
        self.generated_with = generated_with or settings.model_label()
        self.local_package_mode = container.install_source != "registry"
        self.attempts_made = 0

    def _validation_stage(self, data: CollectedData) -> ValidationStage:
        generation = self.settings.generation
        local_package = data.package_name if self.local_package_mode else None
        return ValidationStage(
            parser=PatternParser(data.ecosystem, exclude_packages=[local_package] if local_package else ()),
            generator=ProbeGenerator(self.clients[Stage.PROBE_GENERATOR], self.settings.prompts, local_package),
            executor=self.executor,
            validator=ResultValidator(generation.validation_mode, generation.adaptive_failure_threshold),
        )

    async def run(self, data: CollectedData) -> RunResult:
        self.attempts_made = 0
        timeout = self.settings.generation.run_timeout
        try:
            if timeout is None:
                return await self._run(data)
            return await asyncio.wait_for(self._run(data), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Run timed out after %.0fs", timeout)
            return RunResult(Disposition.FATAL_FAILURE, reason="run timed out", attempts_made=self.attempts_made)

    def _fatal(self, reason: str, history: List[Dict[str, Any]]) -> RunResult:
        logger.error("Fatal: %s", reason)
        return RunResult(
            Disposition.FATAL_FAILURE,
            reason=reason,
            attempts_made=self.attempts_made,
            history=history,
        )

    def _finish(self, disposition: Disposition, attempt: Attempt, data: CollectedData, history, reason=None) -> RunResult:
        artifact = normalize_skill_md(
            attempt.artifact,
            package_name=data.package_name,
            version=data.version,
            ecosystem=data.ecosystem,
            license=data.license,
            project_urls=data.project_urls,
            generated_with=self.generated_with,
        )
        return RunResult(
            disposition,
            attempt=replace(attempt, artifact=artifact),
            reason=reason,
            attempts_made=self.attempts_made,
            history=history,
        )

    async def _run(self, data: CollectedData) -> RunResult:
        generation = self.settings.generation
        budget = RetryBudget(generation.max_retries)
        validation = self._validation_stage(data) if generation.enable_validation else None

        phase = Phase.EXTRACTING
        extractions: Dict[ExtractionKind, ExtractionResult] = {}
        previous = self.existing_artifact
        feedback: Optional[str] = None
        failure_history: Dict[str, int] = {}
        best: Optional[Attempt] = None
        attempt: Optional[Attempt] = None
        history: List[Dict[str, Any]] = []

        while True:
            if phase is Phase.EXTRACTING:
                try:
                    extractions = await self.extraction.run(data)
                except CollaboratorError as exc:
                    return self._fatal(str(exc), history)
                phase = Phase.SYNTHESIZING

            elif phase is Phase.SYNTHESIZING:
                index = budget.used
                logger.info("Attempt %d of %d", index + 1, generation.max_retries + 1)
                try:
                    artifact = await self.synthesis.run(data, extractions, feedback=feedback, previous=previous)
                except CollaboratorError as exc:
                    return self._fatal(f"synthesis failed: {exc}", history)
                except SafetyViolation as exc:
                    return self._fatal(str(exc), history)
                self.attempts_made += 1
                attempt = Attempt(index=index, artifact=artifact)
                phase = Phase.REVIEWING

            elif phase is Phase.REVIEWING:
                try:
                    attempt.review_verdict = await self.review.run(attempt.artifact)
                except SafetyViolation as exc:
                    return self._fatal(str(exc), history)
                except ParseError as exc:
                    logger.warning("Review verdict unreadable: %s", exc)
                    attempt.review_verdict = ReviewVerdict(
                        passed=False,
                        issues=(ReviewIssue("error", "structure", f"The review verdict could not be read: {exc}"),),
                    )
                except CollaboratorError as exc:
                    return self._fatal(f"review failed: {exc}", history)
                phase = Phase.VALIDATING

            elif phase is Phase.VALIDATING:
                validation_ok = True
                validation_feedback = None
                if validation is not None:
                    try:
                        report = await validation.run(attempt.artifact, failure_history)
                        failure_history = report.history
                        attempt.validation_verdict = report.verdict
                        report.raise_for_failure()
                    except RuntimeUnavailable as exc:
                        return self._fatal(str(exc), history)
                    except SandboxError as exc:
                        return self._fatal(f"validation could not run: {exc}", history)
                    except ValidationFailure as exc:
                        logger.info("Attempt %d failed validation: %s", attempt.index + 1, exc)
                        validation_ok = False
                        validation_feedback = exc.verdict.feedback

                review_ok = attempt.review_verdict is None or attempt.review_verdict.passed
                history.append(self._record(attempt))
                if review_ok and validation_ok:
                    logger.info("Attempt %d succeeded", attempt.index + 1)
                    return self._finish(Disposition.SUCCEEDED, attempt, data, history)

                attempt.feedback = build_feedback(attempt.review_verdict, validation_feedback)
                phase = Phase.RETRYING

            elif phase is Phase.RETRYING:
                best = pick_best(best, attempt)
                budget.consume()
                if not budget:
                    logger.warning(
                        "Retries exhausted; keeping attempt %d (%d pattern(s) passed)",
                        best.index + 1,
                        best.patterns_passed,
                    )
                    return self._finish(
                        Disposition.EXHAUSTED_RETRIES,
                        best,
                        data,
                        history,
                        reason=f"validation did not pass after {self.attempts_made} attempt(s)",
                    )
                logger.info("Retrying with feedback (%d attempt(s) left)", budget.remaining)
                previous = attempt.artifact
                feedback = attempt.feedback
                phase = Phase.SYNTHESIZING

    @staticmethod
    def _record(attempt: Attempt) -> Dict[str, Any]:
        verdict = attempt.validation_verdict
        return {
            "attempt": attempt.index + 1,
            "review_passed": attempt.review_verdict.passed if attempt.review_verdict else None,
            "patterns_tested": verdict.patterns_tested if verdict else 0,
            "patterns_passed": verdict.patterns_passed if verdict else 0,
            "validation_passed": verdict.overall_pass if verdict else None,
        }


__all__ = ["Phase", "RetryController", "build_feedback", "pick_best"]
