"""Turn per-pattern probe results into a verdict and regeneration feedback."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from skillsmith.agent.state import (
    Pattern,
    PatternCategory,
    PatternResult,
    ValidationMode,
    ValidationVerdict,
)
from skillsmith.sandbox.runtimes import RUNTIMES, normalize_runtime

logger = logging.getLogger(__name__)

FailureHistory = Dict[str, int]


def primary_pattern(patterns: Sequence[Pattern]) -> Optional[Pattern]:
    """First basic-usage pattern, else the first pattern."""
    for pattern in patterns:
        if pattern.category is PatternCategory.BASIC_USAGE:
            return pattern
    return patterns[0] if patterns else None


def update_history(history: Mapping[str, int], results: Sequence[PatternResult]) -> FailureHistory:
    """Consecutive failure counts after this validation pass."""

    updated: FailureHistory = {}
    for result in results:
        name = result.pattern.name
        if not result.passed:
            updated[name] = history.get(name, 0) + 1
    return updated


def render_feedback(results: Sequence[PatternResult], verdict: ValidationVerdict) -> Optional[str]:
    failed = [result for result in results if not result.passed]
    if not failed:
        return None

    passed = [f"- {result.pattern.name}" for result in results if result.passed]
    sections = []
    for result in failed:
        runtime = RUNTIMES.get(normalize_runtime(result.pattern.runtime))
        tag = runtime.fence_tags[0] if runtime else result.pattern.runtime
        code = result.probe.source.strip() if result.probe else result.pattern.code
        label = "Generated test code" if result.probe else "Pattern code"
        sections.append(
            f"Pattern: {result.pattern.name}\n"
            f"{label}:\n```{tag}\n{code}\n```\n"
            f"Error: {result.reason()}"
        )

    passed_section = ""
    if passed:
        passed_section = "PATTERNS THAT PASSED (keep these EXACTLY as-is in the SKILL.md):\n" + "\n".join(passed) + "\n\n"
    required_note = ""
    if verdict.required and verdict.mode is not ValidationMode.EXHAUSTIVE:
        required_note = f"Required to pass ({verdict.mode.value} mode): {', '.join(verdict.required)}\n\n"

    return (
        "SKILL.md PATCH REQUIRED: do NOT regenerate from scratch.\n\n"
        f"{passed_section}{required_note}"
        "PATTERNS THAT FAILED (fix or replace ONLY these):\n\n"
        + "\n\n---\n\n".join(sections)
        + "\n\nInstructions:\n"
        "- Output the COMPLETE SKILL.md with passing patterns UNCHANGED\n"
        "- For each failing pattern: fix the code example to use the correct API, "
        "or replace it with a more common alternative\n"
        "- Do NOT add, remove, or reorder patterns that passed\n"
        "- Do NOT change imports, pitfalls, references, or other sections unless directly affected by the fix\n"
    )


class ResultValidator:
    """Applies the validation policy of one ``ValidationMode``."""

    def __init__(self, mode: ValidationMode = ValidationMode.EXHAUSTIVE, adaptive_failure_threshold: int = 2):
        self.mode = mode
        self.threshold = adaptive_failure_threshold

    def select(self, patterns: Sequence[Pattern]) -> List[Pattern]:
        """Probe order: minimal mode tries the primary pattern first."""

        if self.mode is not ValidationMode.MINIMAL:
            return list(patterns)
        primary = primary_pattern(patterns)
        if primary is None:
            return []
        return [primary] + [pattern for pattern in patterns if pattern is not primary]

    def can_stop(self, results: Sequence[PatternResult]) -> bool:
        """Minimal mode needs no further probes once its outcome is settled."""

        if self.mode is not ValidationMode.MINIMAL or not results:
            return False
        primary, others = results[0], results[1:]
        if not primary.passed:
            return True
        return any(result.passed for result in others)

    def _minimal(self, results: Sequence[PatternResult]) -> Tuple[Tuple[str, ...], bool]:
        primary = primary_pattern([result.pattern for result in results])
        if primary is None:
            return (), True
        head = next(result for result in results if result.pattern is primary)
        others = [result for result in results if result is not head]
        if not others:
            return (primary.name,), head.passed
        other = next((result for result in others if result.passed), others[0])
        return (primary.name, other.pattern.name), head.passed and other.passed

    def validate(
        self,
        results: Sequence[PatternResult],
        history: Optional[Mapping[str, int]] = None,
    ) -> Tuple[ValidationVerdict, FailureHistory]:
        """Verdict for one pass plus the updated consecutive-failure history."""

        new_history = update_history(history or {}, results)

        if not results:
            logger.warning("No testable patterns found in SKILL.md; nothing to validate")
            verdict = ValidationVerdict(mode=self.mode, patterns_tested=0, patterns_passed=0, overall_pass=True)
            return verdict, new_history

        if self.mode is ValidationMode.MINIMAL:
            required, overall = self._minimal(results)
        elif self.mode is ValidationMode.ADAPTIVE:
            waived = {name for name, count in new_history.items() if count >= self.threshold}
            remaining = [result for result in results if result.pattern.name not in waived]
            if waived:
                logger.info("Adaptive validation waives %d repeatedly failing pattern(s): %s", len(waived), ", ".join(sorted(waived)))
            if remaining:
                required = tuple(result.pattern.name for result in remaining)
                overall = all(result.passed for result in remaining)
            else:
                required, overall = self._minimal(results)
        else:
            required = tuple(result.pattern.name for result in results)
            overall = all(result.passed for result in results)

        failures = tuple((result.pattern.name, result.reason()) for result in results if not result.passed)
        verdict = ValidationVerdict(
            mode=self.mode,
            patterns_tested=len(results),
            patterns_passed=sum(1 for result in results if result.passed),
            patterns_failed_with_reason=failures,
            required=required,
            overall_pass=overall,
        )
        feedback = render_feedback(results, verdict)
        if feedback:
            verdict = replace(verdict, feedback=feedback)
        return verdict, new_history


__all__ = ["FailureHistory", "ResultValidator", "primary_pattern", "render_feedback", "update_history"]
