"""One validation pass: parse, generate probes, execute them, judge."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Protocol, Tuple

from skillsmith.agent.state import ExecutionOutcome, PatternResult, Probe, ValidationVerdict
from skillsmith.exceptions import (
    CollaboratorError,
    ParseError,
    RuntimeUnavailable,
    SandboxError,
    ValidationFailure,
)
from skillsmith.sandbox.runtimes import RUNTIMES
from skillsmith.validation.pattern_parser import ParsedArtifact, PatternParser
from skillsmith.validation.probe_generator import PASS_MARKER, ProbeGenerator
from skillsmith.validation.result_validator import FailureHistory, ResultValidator

logger = logging.getLogger(__name__)


class ProbeExecutor(Protocol):
    async def check_available(self, runtime_name: str) -> None:
        ...

    async def execute(self, probe: Probe) -> ExecutionOutcome:
        ...


@dataclass(frozen=True)
class ValidationReport:
    verdict: ValidationVerdict
    history: FailureHistory
    results: Tuple[PatternResult, ...]
    parsed: ParsedArtifact

    def raise_for_failure(self) -> None:
        if not self.verdict.overall_pass:
            raise ValidationFailure(self.verdict)


class ValidationStage:
    """Probes run one after another, each in its own working directory."""

    def __init__(
        self,
        parser: PatternParser,
        generator: ProbeGenerator,
        executor: ProbeExecutor,
        validator: ResultValidator,
    ):
        self.parser = parser
        self.generator = generator
        self.executor = executor
        self.validator = validator

    async def run(self, artifact: str, history: Optional[Mapping[str, int]] = None) -> ValidationReport:
        parsed = self.parser.parse(artifact)
        if parsed.runtime not in RUNTIMES:
            logger.warning(
                "No probe runtime for ecosystem %r; skipping functional validation of %d pattern(s)",
                parsed.runtime,
                len(parsed.patterns),
            )
            verdict = ValidationVerdict(mode=self.validator.mode, patterns_tested=0, patterns_passed=0, overall_pass=True)
            return ValidationReport(verdict=verdict, history=dict(history or {}), results=(), parsed=parsed)

        patterns = self.validator.select(parsed.patterns)
        logger.info("Validating %d of %d pattern(s) (%s mode)", len(patterns), len(parsed.patterns), self.validator.mode.value)

        if patterns:
            await self.executor.check_available(parsed.runtime)

        results: List[PatternResult] = []
        rejection = parsed.rejection_message()
        for pattern in patterns:
            if rejection:
                result = PatternResult(pattern=pattern, error=f"unsafe dependency rejected: {rejection}")
            else:
                result = await self._probe(pattern)
            status = "passed" if result.passed else "failed"
            logger.info("  %s: %s", pattern.name, status)
            results.append(result)
            if self.validator.can_stop(results):
                break

        verdict, new_history = self.validator.validate(results, history)
        logger.info(
            "Validation: %d/%d passed, overall %s",
            verdict.patterns_passed,
            verdict.patterns_tested,
            "pass" if verdict.overall_pass else "fail",
        )
        return ValidationReport(verdict=verdict, history=new_history, results=tuple(results), parsed=parsed)

    async def _probe(self, pattern) -> PatternResult:
        try:
            probe = await self.generator.generate(pattern)
        except (CollaboratorError, ParseError, SandboxError) as exc:
            logger.warning("Probe generation failed for %r: %s", pattern.name, exc)
            return PatternResult(pattern=pattern, error=f"probe generation failed: {exc}")

        try:
            outcome = await self.executor.execute(probe)
        except RuntimeUnavailable:
            raise
        except SandboxError as exc:
            logger.warning("Sandbox failure for %r: %s", pattern.name, exc)
            return PatternResult(pattern=pattern, probe=probe, error=f"sandbox error: {exc}")

        if outcome.passed and PASS_MARKER.format(name=pattern.name) not in outcome.stdout:
            return PatternResult(
                pattern=pattern,
                probe=probe,
                outcome=outcome,
                error="probe exited 0 but never printed its success marker",
            )
        return PatternResult(pattern=pattern, probe=probe, outcome=outcome)


__all__ = ["ProbeExecutor", "ValidationReport", "ValidationStage"]
