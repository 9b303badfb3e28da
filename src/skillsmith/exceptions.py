"""Error taxonomy for the skillsmith pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from skillsmith.agent.state import ExtractionResult, ValidationVerdict


class SkillsmithError(RuntimeError):
    """Base class for domain-specific runtime errors."""


class ConfigError(SkillsmithError):
    """Raised when configuration or an input file is invalid."""


class CollaboratorError(SkillsmithError):
    """Raised when the generation backend cannot serve a request."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    MALFORMED = "malformed_response"
    NETWORK = "network"

    RETRYABLE_KINDS = frozenset({RATE_LIMIT, NETWORK})

    def __init__(self, message: str, *, kind: str = NETWORK, role: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.role = role

    @property
    def retryable(self) -> bool:
        return self.kind in self.RETRYABLE_KINDS


class ExtractionError(CollaboratorError):
    """Raised when one of the extraction calls fails."""

    def __init__(self, message: str, *, result: "ExtractionResult | None" = None, **kwargs):
        super().__init__(message, **kwargs)
        self.result = result


class ParseError(SkillsmithError):
    """Raised when generated text cannot be interpreted."""


class SafetyViolation(SkillsmithError):
    """Generated content is unsafe to ship or execute. Never retried."""

    def __init__(self, messages: Sequence[str]):
        self.messages = list(messages)
        joined = "\n".join(f"- {message}" for message in self.messages)
        super().__init__(
            "SECURITY: generated SKILL.md contains content that cannot be shipped:\n" + joined
        )


class ValidationFailure(SkillsmithError):
    """Raised when an attempt does not satisfy the validation policy."""

    def __init__(self, verdict: "ValidationVerdict"):
        self.verdict = verdict
        super().__init__(
            f"{verdict.patterns_failed} of {verdict.patterns_tested} patterns failed "
            f"({verdict.mode.value} mode)"
        )


class SandboxError(SkillsmithError):
    """Raised when a probe cannot be spawned or its environment cannot be built."""


class RuntimeUnavailable(SandboxError):
    """Raised when the configured runtime or container engine is missing."""


class UnsafeTokenError(SandboxError):
    """Raised when an externally-influenced token fails sanitization."""

    def __init__(self, token: str, reason: str):
        self.token = token
        self.reason = reason
        super().__init__(f"{reason}: {token!r}")


__all__ = [
    "CollaboratorError",
    "ConfigError",
    "ExtractionError",
    "ParseError",
    "RuntimeUnavailable",
    "SafetyViolation",
    "SandboxError",
    "SkillsmithError",
    "UnsafeTokenError",
    "ValidationFailure",
]
