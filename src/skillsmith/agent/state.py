"""Records shared across pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ValidationMode(str, Enum):
    """How many extracted patterns must pass for an attempt to be accepted."""

    EXHAUSTIVE = "exhaustive"
    ADAPTIVE = "adaptive"
    MINIMAL = "minimal"


class PatternCategory(str, Enum):
    BASIC_USAGE = "basic_usage"
    CONFIGURATION = "configuration"
    ERROR_HANDLING = "error_handling"
    ASYNC = "async"
    OTHER = "other"


class ExtractionKind(str, Enum):
    API_SURFACE = "api_surface"
    USAGE_PATTERNS = "usage_patterns"
    CONVENTIONS = "conventions"


class Disposition(str, Enum):
    SUCCEEDED = "succeeded"
    EXHAUSTED_RETRIES = "exhausted_retries"
    FATAL_FAILURE = "fatal_failure"


@dataclass(frozen=True)
class CollectedData:
    """Immutable snapshot of the library inputs for one run."""

    package_name: str
    version: str = "unknown"
    ecosystem: str = "python"
    license: Optional[str] = None
    project_urls: Tuple[Tuple[str, str], ...] = ()
    source_content: str = ""
    test_content: str = ""
    examples_content: str = ""
    docs_content: str = ""
    changelog_content: str = ""
    source_file_count: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CollectedData":
        urls = data.get("project_urls") or ()
        if isinstance(urls, Mapping):
            urls = list(urls.items())
        return cls(
            package_name=str(data["package_name"]),
            version=str(data.get("version") or "unknown"),
            ecosystem=str(data.get("ecosystem") or "python"),
            license=data.get("license"),
            project_urls=tuple((str(label), str(url)) for label, url in urls),
            source_content=str(data.get("source_content") or ""),
            test_content=str(data.get("test_content") or ""),
            examples_content=str(data.get("examples_content") or ""),
            docs_content=str(data.get("docs_content") or ""),
            changelog_content=str(data.get("changelog_content") or ""),
            source_file_count=int(data.get("source_file_count") or 0),
        )

    def api_input(self) -> str:
        """Source code with the best available usage context in front of it."""
        if self.examples_content:
            return (
                f"# Examples (High-level API)\n{self.examples_content}\n\n"
                f"# Source Code\n{self.source_content}"
            )
        if self.test_content:
            return (
                f"# Test Code (API usage patterns)\n{self.test_content}\n\n"
                f"# Source Code\n{self.source_content}"
            )
        return self.source_content

    def usage_input(self) -> str:
        if self.examples_content:
            return (
                f"# Example Files (Real Usage)\n{self.examples_content}\n\n"
                f"# Test Files (API Usage)\n{self.test_content}"
            )
        return self.test_content

    def context_input(self) -> str:
        return f"{self.docs_content}\n\n{self.changelog_content}"


@dataclass(frozen=True)
class ExtractionResult:
    kind: ExtractionKind
    text: str
    ok: bool = True
    error: Optional[str] = None


@dataclass(frozen=True)
class Pattern:
    """One independently testable usage example taken from the artifact."""

    name: str
    import_statement: str
    code_body: str
    expected_behavior_summary: str
    runtime: str = "python"
    category: PatternCategory = PatternCategory.OTHER
    dependencies: Tuple[str, ...] = ()

    @property
    def code(self) -> str:
        parts = [part for part in (self.import_statement, self.code_body) if part]
        return "\n\n".join(parts)


@dataclass(frozen=True)
class Probe:
    """Generated program exercising a single pattern."""

    pattern_name: str
    runtime: str
    source: str
    dependencies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionOutcome:
    exit_status: Optional[int]
    stdout: str
    stderr: str
    wall_time: float
    timed_out: bool = False
    command: Tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.timed_out and self.exit_status == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exit_status": self.exit_status,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "wall_time": self.wall_time,
            "timed_out": self.timed_out,
            "command": list(self.command),
        }


@dataclass(frozen=True)
class PatternResult:
    """Outcome of probing one pattern, including pre-execution failures."""

    pattern: Pattern
    probe: Optional[Probe] = None
    outcome: Optional[ExecutionOutcome] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.error is None and self.outcome is not None and self.outcome.passed

    def reason(self, tail_lines: int = 12) -> str:
        if self.error:
            return self.error
        outcome = self.outcome
        if outcome is None:
            return "probe was not executed"
        if outcome.timed_out:
            return f"timed out after {outcome.wall_time:.0f}s running `{' '.join(outcome.command)}`"
        text = (outcome.stderr or outcome.stdout).strip()
        tail = "\n".join(text.splitlines()[-tail_lines:]) if text else "(no output)"
        return f"exit status {outcome.exit_status}:\n{tail}"


@dataclass(frozen=True)
class ValidationVerdict:
    mode: ValidationMode
    patterns_tested: int
    patterns_passed: int
    patterns_failed_with_reason: Tuple[Tuple[str, str], ...] = ()
    required: Tuple[str, ...] = ()
    overall_pass: bool = False
    feedback: Optional[str] = None

    @property
    def patterns_failed(self) -> int:
        return len(self.patterns_failed_with_reason)


@dataclass(frozen=True)
class ReviewIssue:
    severity: str
    category: str
    complaint: str
    evidence: str = ""

    @property
    def is_safety(self) -> bool:
        return self.category == "safety"


@dataclass(frozen=True)
class ReviewVerdict:
    passed: bool = True
    issues: Tuple[ReviewIssue, ...] = ()

    def safety_issues(self) -> List[ReviewIssue]:
        return [issue for issue in self.issues if issue.is_safety]

    def accuracy_issues(self) -> List[ReviewIssue]:
        return [issue for issue in self.issues if not issue.is_safety]


@dataclass
class Attempt:
    """One pass through synthesis, review and validation."""

    index: int
    artifact: str
    review_verdict: Optional[ReviewVerdict] = None
    validation_verdict: Optional[ValidationVerdict] = None
    feedback: Optional[str] = None

    @property
    def patterns_passed(self) -> int:
        if self.validation_verdict is None:
            return 0
        return self.validation_verdict.patterns_passed


class RetryBudget:
    """Counts the iterations still allowed: the initial attempt plus retries."""

    def __init__(self, max_retries: int):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.remaining = max_retries + 1

    def __bool__(self) -> bool:
        return self.remaining > 0

    def consume(self) -> None:
        if self.remaining <= 0:
            raise RuntimeError("retry budget already exhausted")
        self.remaining -= 1

    @property
    def used(self) -> int:
        return self.max_retries + 1 - self.remaining


@dataclass
class RunResult:
    disposition: Disposition
    attempt: Optional[Attempt] = None
    reason: Optional[str] = None
    attempts_made: int = 0
    history: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return {
            Disposition.SUCCEEDED: 0,
            Disposition.FATAL_FAILURE: 1,
            Disposition.EXHAUSTED_RETRIES: 2,
        }[self.disposition]

    @property
    def artifact(self) -> Optional[str]:
        if self.disposition is Disposition.FATAL_FAILURE or self.attempt is None:
            return None
        return self.attempt.artifact


__all__ = [
    "Attempt",
    "CollectedData",
    "Disposition",
    "ExecutionOutcome",
    "ExtractionKind",
    "ExtractionResult",
    "Pattern",
    "PatternCategory",
    "PatternResult",
    "Probe",
    "RetryBudget",
    "ReviewIssue",
    "ReviewVerdict",
    "RunResult",
    "ValidationMode",
    "ValidationVerdict",
]
