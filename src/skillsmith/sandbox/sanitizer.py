"""Validation of externally-influenced tokens before they reach a command line.

Every check rejects: a token that fails is never cleaned up and passed on.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Sequence, Tuple

from skillsmith.exceptions import UnsafeTokenError

# Alphanumerics plus the punctuation used by package specifiers: scoped npm
# names (@scope/pkg), extras (pkg[extra]), version constraints (>=, ~=, ^, !).
_DEP_ALLOWED = re.compile(r"^[A-Za-z0-9\-_./\[\],@><=!~^]+$")
_RUNTIME_ALLOWED = re.compile(r"^[a-z][a-z0-9_-]{0,31}$")
_CONTAINER_NAME_ALLOWED = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")
_ENV_KEY_ALLOWED = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PATH_COMPONENT_ALLOWED = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


def sanitize_dep_name(dep: str) -> str:
    """Return ``dep`` unchanged if it is safe as a package specifier."""

    if not dep:
        raise UnsafeTokenError(dep, "Empty dependency name")
    if dep.startswith("-"):
        raise UnsafeTokenError(dep, "Dependency name starts with '-' (possible flag injection)")
    if ".." in dep:
        raise UnsafeTokenError(dep, "Dependency name contains a path traversal sequence")
    if not _DEP_ALLOWED.match(dep):
        bad = next(ch for ch in dep if not _DEP_ALLOWED.match(ch))
        raise UnsafeTokenError(dep, f"Invalid character {bad!r} in dependency name")
    return dep


def sanitize_dependencies(deps: Iterable[str]) -> Tuple[str, ...]:
    """Check every dependency; the first unsafe one aborts the whole list."""
    return tuple(sanitize_dep_name(dep) for dep in deps)


def partition_dependencies(deps: Iterable[str]) -> Tuple[List[str], List[UnsafeTokenError]]:
    """Split ``deps`` into accepted names and the rejections they produced."""

    accepted: List[str] = []
    rejected: List[UnsafeTokenError] = []
    for dep in deps:
        try:
            accepted.append(sanitize_dep_name(dep))
        except UnsafeTokenError as exc:
            rejected.append(exc)
    return accepted, rejected


def sanitize_runtime(runtime: str) -> str:
    if not _RUNTIME_ALLOWED.match(runtime or ""):
        raise UnsafeTokenError(runtime, "Invalid runtime identifier")
    return runtime


def sanitize_container_name(name: str) -> str:
    if not _CONTAINER_NAME_ALLOWED.match(name or ""):
        raise UnsafeTokenError(name, "Invalid container name")
    return name


def sanitize_env_key(key: str) -> str:
    if not _ENV_KEY_ALLOWED.match(key or ""):
        raise UnsafeTokenError(key, "Invalid environment variable name")
    return key


def sanitize_path_component(component: str) -> str:
    """Accept a single file or directory name, never a path."""

    if not component or component in {".", ".."}:
        raise UnsafeTokenError(component, "Invalid path component")
    if not _PATH_COMPONENT_ALLOWED.match(component):
        raise UnsafeTokenError(component, "Invalid character in path component")
    return component


def check_argv(argv: Sequence[str]) -> Tuple[str, ...]:
    """Reject argument vectors that could smuggle control characters."""

    if not argv:
        raise UnsafeTokenError("", "Empty command")
    for arg in argv:
        if not isinstance(arg, str):
            raise UnsafeTokenError(repr(arg), "Command arguments must be strings")
        if "\x00" in arg or "\n" in arg or "\r" in arg:
            raise UnsafeTokenError(arg, "Control character in command argument")
    return tuple(argv)


__all__ = [
    "check_argv",
    "partition_dependencies",
    "sanitize_container_name",
    "sanitize_dep_name",
    "sanitize_dependencies",
    "sanitize_env_key",
    "sanitize_path_component",
    "sanitize_runtime",
]
