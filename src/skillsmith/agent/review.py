"""Quality and safety gate between synthesis and validation."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from skillsmith.agent import safety
from skillsmith.agent.introspection import Introspector
from skillsmith.agent.state import ReviewIssue, ReviewVerdict
from skillsmith.config.settings import PromptSettings, Stage
from skillsmith.exceptions import CollaboratorError, ParseError, SafetyViolation
from skillsmith.llm.client import GenerationClient
from skillsmith.llm.prompts import stage_instructions
from skillsmith.utils.fences import parse_json_object

logger = logging.getLogger(__name__)

CATEGORIES = ("accuracy", "consistency", "structure", "safety")


def _issue(raw: Any) -> Optional[ReviewIssue]:
    if not isinstance(raw, dict):
        return None
    complaint = str(raw.get("complaint") or raw.get("description") or "").strip()
    if not complaint:
        return None
    severity = str(raw.get("severity") or "warning").strip().lower()
    category = str(raw.get("category") or "accuracy").strip().lower()
    if category not in CATEGORIES:
        category = "accuracy"
    return ReviewIssue(
        severity="error" if severity == "error" else "warning",
        category=category,
        complaint=complaint,
        evidence=str(raw.get("evidence") or "").strip(),
    )


def parse_review(text: str, strict: bool = False) -> ReviewVerdict:
    """Read the reviewer's JSON verdict.

    An unreadable verdict counts as a pass unless ``strict`` is set, in which
    case ``ParseError`` is raised. ``passed`` is derived from the issues: only
    error-severity issues fail a review.
    """

    data = parse_json_object(text)
    if data is None:
        if strict:
            raise ParseError("Reviewer returned no parseable JSON verdict")
        logger.warning("Could not parse review verdict; treating it as a pass")
        return ReviewVerdict(passed=True)

    raw_issues = data.get("issues") or []
    issues = tuple(issue for issue in (_issue(raw) for raw in raw_issues if raw) if issue is not None)
    passed = not any(issue.severity == "error" for issue in issues)
    if data.get("passed") is False and passed:
        logger.info("Reviewer reported failure without any error-severity issue; ignoring")
    return ReviewVerdict(passed=passed, issues=issues)


def format_issues(issues: Iterable[ReviewIssue]) -> str:
    lines = []
    for issue in issues:
        line = f"- [{issue.severity}/{issue.category}] {issue.complaint}"
        if issue.evidence:
            line += f"\n  Evidence: {issue.evidence}"
        lines.append(line)
    return "\n".join(lines)


class ReviewStage:
    def __init__(
        self,
        client: Optional[GenerationClient],
        prompts: Optional[PromptSettings] = None,
        *,
        enabled: bool = True,
        strict: bool = False,
        introspector: Optional[Introspector] = None,
    ):
        self.client = client
        self.prompts = prompts or PromptSettings()
        self.enabled = enabled and client is not None
        self.strict = strict
        self.introspector = introspector

    async def run(self, artifact: str) -> ReviewVerdict:
        """Raise ``SafetyViolation`` on any proven safety issue, else return the verdict."""

        issues: List[ReviewIssue] = list(safety.scan(artifact))

        if self.enabled:
            instructions = stage_instructions(self.prompts, Stage.REVIEWER, "reviewer")
            input_text = artifact
            if self.introspector is not None and not any(issue.severity == "error" for issue in issues):
                evidence = await self.introspector.run(artifact)
                input_text += f"\n\n## Introspection Results\n\n{evidence}\n"
            try:
                response = await self.client.complete(instructions, input_text)
            except CollaboratorError as exc:
                if self.strict:
                    raise
                logger.warning("Review call failed (%s); continuing without review", exc)
            else:
                issues.extend(parse_review(response, strict=self.strict).issues)

        fatal = [issue for issue in issues if issue.is_safety and issue.severity == "error"]
        if fatal:
            raise SafetyViolation([f"{issue.complaint} ({issue.evidence})" if issue.evidence else issue.complaint for issue in fatal])
        for issue in issues:
            if issue.is_safety:
                logger.warning("Unproven safety concern from review: %s", issue.complaint)

        verdict = ReviewVerdict(
            passed=not any(issue.severity == "error" for issue in issues),
            issues=tuple(issues),
        )
        if not verdict.passed:
            logger.info("Review found %d error(s)", sum(1 for issue in issues if issue.severity == "error"))
        return verdict


__all__ = ["CATEGORIES", "ReviewStage", "format_issues", "parse_review"]
