"""Extract testable usage patterns and dependencies from SKILL.md text.

Parsing is a single line scan that tracks fence state, so headings inside
code blocks are never mistaken for structure. Malformed input degrades to
fewer patterns; nothing here raises on bad markdown.
"""

from __future__ import annotations

import logging
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from skillsmith.agent.state import Pattern, PatternCategory
from skillsmith.sandbox.runtimes import RUNTIMES, normalize_runtime
from skillsmith.sandbox.sanitizer import partition_dependencies

logger = logging.getLogger(__name__)

_SECTION = re.compile(r"^##\s+(.+?)\s*$")
_PATTERN_HEADING = re.compile(r"^###\s+(.+?)\s*$")
_STATUS_SUFFIX = re.compile(r"\s*[-:]?\s*(?:✅|⚠️|⚠|❌|🗑️|🗑)\s*[A-Za-z ]*$")

_PY_IMPORT = re.compile(r"^import\s+([A-Za-z0-9_]+)")
_PY_FROM = re.compile(r"^from\s+([A-Za-z0-9_]+)")
_PIP_INSTALL = re.compile(r"pip3?\s+install\s+((?:[^\s`'\"]+[ \t]*)+)")
_JS_REQUIRE = re.compile(r"require\(\s*['\"]([^'\"]+)['\"]\s*\)")
_JS_IMPORT = re.compile(r"^\s*import\s+(?:[^'\"]*?\s+from\s+)?['\"]([^'\"]+)['\"]", re.M)
_NPM_INSTALL = re.compile(r"npm\s+(?:install|i)\s+((?:[^\s`'\"]+[ \t]*)+)")

_LOCAL_MODULES = frozenset(
    {
        "cli", "main", "app", "config", "utils", "helpers", "models", "views", "routes",
        "handlers", "tests", "test", "example", "src", "lib", "core", "api", "client", "server",
    }
)
_SHORT_PACKAGES = frozenset({"jwt", "aws", "grpc", "PIL", "bs4", "cv2", "zmq", "six", "ujson"})

# Import name -> name on the package index, where the two differ.
_DISTRIBUTIONS = {
    "PIL": "Pillow",
    "bs4": "beautifulsoup4",
    "cv2": "opencv-python",
    "sklearn": "scikit-learn",
    "yaml": "PyYAML",
    "dateutil": "python-dateutil",
    "dotenv": "python-dotenv",
    "jwt": "PyJWT",
    "attr": "attrs",
    "magic": "python-magic",
    "docx": "python-docx",
    "serial": "pyserial",
    "Crypto": "pycryptodome",
    "zmq": "pyzmq",
    "git": "GitPython",
    "google": "google-api-core",
}

_NODE_BUILTINS = frozenset(
    {
        "assert", "async_hooks", "buffer", "child_process", "cluster", "console", "crypto", "dgram",
        "dns", "events", "fs", "http", "http2", "https", "module", "net", "os", "path", "perf_hooks",
        "process", "querystring", "readline", "stream", "string_decoder", "timers", "tls", "tty",
        "url", "util", "v8", "vm", "worker_threads", "zlib",
    }
)

_CATEGORY_RULES: Tuple[Tuple[PatternCategory, re.Pattern], ...] = (
    (PatternCategory.BASIC_USAGE, re.compile(r"\b(?:basic|simple|hello|getting started|quickstart)")),
    (PatternCategory.CONFIGURATION, re.compile(r"\b(?:config|setup|set up|initiali[sz])")),
    (PatternCategory.ERROR_HANDLING, re.compile(r"\b(?:error|exception|try|catch|handl)")),
    (PatternCategory.ASYNC, re.compile(r"\b(?:async|await|concurren)")),
)


def canonical_name(name: str) -> str:
    """PEP 503 normalization, also applied to npm names for de-duplication."""
    return re.sub(r"[-_.]+", "-", name).lower()


def categorize(name: str, description: str) -> PatternCategory:
    text = f"{name} {description}".lower()
    for category, rule in _CATEGORY_RULES:
        if rule.search(text):
            return category
    return PatternCategory.OTHER


def is_stdlib_module(name: str) -> bool:
    return name in sys.stdlib_module_names


def is_likely_local_module(name: str) -> bool:
    if len(name) <= 3 and name not in _SHORT_PACKAGES:
        return True
    return name in _LOCAL_MODULES


def distribution_for(module: str) -> str:
    return _DISTRIBUTIONS.get(module, module)


def _npm_package(spec: str) -> Optional[str]:
    if spec.startswith((".", "/", "node:")):
        return None
    parts = spec.split("/")
    name = "/".join(parts[:2]) if spec.startswith("@") else parts[0]
    if name in _NODE_BUILTINS:
        return None
    return name


def parse_frontmatter(text: str) -> Dict[str, str]:
    """Read ``key: value`` pairs from the first ten lines of the document."""

    values: Dict[str, str] = {}
    for line in (text or "").splitlines()[:10]:
        key, sep, value = line.strip().partition(":")
        if sep and key in {"name", "version", "ecosystem", "license"} and key not in values:
            values[key] = value.strip().strip("\"'")
    return values


def extract_version(text: str) -> Optional[str]:
    version = parse_frontmatter(text).get("version", "")
    if not version or version == "unknown":
        return None
    return version


def _closes_fence(stripped: str) -> bool:
    return stripped.startswith("```") and not stripped.strip("`")


def _section_lines(text: str, title: str) -> List[str]:
    """Lines of the ``## title`` section, stopping at the next unfenced ``##``."""

    wanted = title.lower()
    collected: List[str] = []
    inside = False
    in_fence = False
    for line in (text or "").splitlines():
        stripped = line.strip()
        if in_fence:
            in_fence = not _closes_fence(stripped)
        elif stripped.startswith("```"):
            in_fence = True
        else:
            match = _SECTION.match(line)
            if match:
                if inside:
                    break
                inside = match.group(1).strip().lower() == wanted
                continue
        if inside:
            collected.append(line)
    return collected


def _module_imports(lines: Iterable[str]) -> List[str]:
    modules: List[str] = []
    for raw in lines:
        line = raw.strip()
        for regex, filter_local in ((_PY_IMPORT, False), (_PY_FROM, True)):
            match = regex.match(line)
            if not match:
                continue
            module = match.group(1)
            if is_stdlib_module(module) or (filter_local and is_likely_local_module(module)):
                continue
            if module not in modules:
                modules.append(module)
    return modules


def extract_dependencies(text: str, runtime: str = "python") -> List[str]:
    """Package names declared in the ``## Imports`` section."""

    lines = _section_lines(text, "Imports")
    section = "\n".join(lines)
    found: List[str] = []

    if normalize_runtime(runtime) == "javascript":
        candidates = _JS_REQUIRE.findall(section) + _JS_IMPORT.findall(section)
        for match in _NPM_INSTALL.findall(section):
            candidates.extend(token for token in match.split() if not token.startswith("-"))
        for spec in candidates:
            name = _npm_package(spec)
            if name and name not in found:
                found.append(name)
        return found

    for module in _module_imports(lines):
        dist = distribution_for(module)
        if dist not in found:
            found.append(dist)
    for match in _PIP_INSTALL.findall(section):
        for token in match.split():
            if not token.startswith("-") and token not in found:
                found.append(token)
    return found


def _split_imports(code: str, runtime: str) -> Tuple[str, str]:
    lines = code.splitlines()
    head: List[str] = []
    index = 0
    open_paren = False
    while index < len(lines):
        stripped = lines[index].strip()
        if open_paren:
            head.append(lines[index])
            open_paren = ")" not in stripped
        elif not stripped and head:
            head.append(lines[index])
        elif runtime == "javascript" and (
            stripped.startswith("import ") or re.match(r"^(?:const|let|var)\s+.+=\s*require\(", stripped)
        ):
            head.append(lines[index])
        elif runtime != "javascript" and (stripped.startswith("import ") or stripped.startswith("from ")):
            head.append(lines[index])
            open_paren = stripped.endswith("(")
        else:
            break
        index += 1
    return "\n".join(head).strip(), "\n".join(lines[index:]).strip()


@dataclass
class _Draft:
    heading: str
    prose: List[str] = field(default_factory=list)
    code: Optional[str] = None


def parse_patterns(text: str, runtime: str = "python", dependencies: Sequence[str] = ()) -> List[Pattern]:
    """Ordered patterns of the ``## Core Patterns`` section."""

    runtime = normalize_runtime(runtime)
    spec = RUNTIMES.get(runtime)
    tags = spec.fence_tags if spec else (runtime,)

    drafts: List[_Draft] = []
    current: Optional[_Draft] = None
    fence_tag: Optional[str] = None
    block: List[str] = []

    for line in _section_lines(text, "Core Patterns"):
        stripped = line.strip()
        if fence_tag is not None:
            if _closes_fence(stripped):
                if current is not None and current.code is None and fence_tag in tags:
                    current.code = "\n".join(block)
                fence_tag = None
                block = []
            else:
                block.append(line)
            continue
        if stripped.startswith("```"):
            fence_tag = stripped[3:].strip().lower()
            continue
        heading = _PATTERN_HEADING.match(line)
        if heading:
            current = _Draft(heading=heading.group(1))
            drafts.append(current)
        elif current is not None and current.code is None:
            current.prose.append(line)

    if fence_tag is not None:
        logger.warning("Unterminated code fence in Core Patterns; dropping the open block")

    patterns: List[Pattern] = []
    for draft in drafts:
        if draft.code is None or not draft.code.strip():
            continue
        name = _STATUS_SUFFIX.sub("", draft.heading).strip() or draft.heading.strip()
        description = "\n".join(draft.prose).strip()
        import_statement, body = _split_imports(draft.code.strip("\n"), runtime)
        patterns.append(
            Pattern(
                name=name,
                import_statement=import_statement,
                code_body=body,
                expected_behavior_summary=description,
                runtime=runtime,
                category=categorize(name, description),
                dependencies=_pattern_dependencies(import_statement, runtime, dependencies),
            )
        )
    logger.debug("Extracted %d patterns from SKILL.md", len(patterns))
    return patterns


def _pattern_dependencies(import_statement: str, runtime: str, declared: Sequence[str]) -> Tuple[str, ...]:
    deps = list(declared)
    seen = {canonical_name(dep) for dep in deps}
    if runtime == "javascript":
        extra = [_npm_package(spec) for spec in _JS_REQUIRE.findall(import_statement) + _JS_IMPORT.findall(import_statement)]
    else:
        extra = [distribution_for(module) for module in _module_imports(import_statement.splitlines())]
    for dep in extra:
        if dep and canonical_name(dep) not in seen:
            seen.add(canonical_name(dep))
            deps.append(dep)
    return tuple(deps)


@dataclass(frozen=True)
class ParsedArtifact:
    name: Optional[str]
    version: Optional[str]
    ecosystem: Optional[str]
    runtime: str
    patterns: Tuple[Pattern, ...]
    dependencies: Tuple[str, ...]
    rejected_dependencies: Tuple[Tuple[str, str], ...] = ()

    def rejection_message(self) -> Optional[str]:
        if not self.rejected_dependencies:
            return None
        return "; ".join(reason for _, reason in self.rejected_dependencies)


class PatternParser:
    """Turn SKILL.md text into patterns ready for probe generation."""

    def __init__(self, default_runtime: str = "python", exclude_packages: Iterable[str] = ()):
        self.default_runtime = normalize_runtime(default_runtime)
        self.exclude = {canonical_name(name) for name in exclude_packages if name}

    def parse(self, artifact: str) -> ParsedArtifact:
        front = parse_frontmatter(artifact)
        runtime = normalize_runtime(front.get("ecosystem") or self.default_runtime)
        if runtime not in RUNTIMES:
            logger.warning("Unknown ecosystem %r; parsing as %s", runtime, self.default_runtime)
            runtime = self.default_runtime

        declared = extract_dependencies(artifact, runtime)
        name = front.get("name") or None
        if name and canonical_name(name) not in {canonical_name(dep) for dep in declared}:
            declared.insert(0, name)
        declared = [dep for dep in declared if canonical_name(dep) not in self.exclude]

        accepted, rejected = partition_dependencies(declared)
        for error in rejected:
            logger.warning("Dropping unsafe dependency from SKILL.md: %s", error)

        patterns = [self._without_excluded(pattern) for pattern in parse_patterns(artifact, runtime, accepted)]
        return ParsedArtifact(
            name=name,
            version=extract_version(artifact),
            ecosystem=front.get("ecosystem") or None,
            runtime=runtime,
            patterns=tuple(patterns),
            dependencies=tuple(accepted),
            rejected_dependencies=tuple((error.token, str(error)) for error in rejected),
        )

    def _without_excluded(self, pattern: Pattern) -> Pattern:
        if not self.exclude:
            return pattern
        kept = tuple(dep for dep in pattern.dependencies if canonical_name(dep) not in self.exclude)
        if kept == pattern.dependencies:
            return pattern
        return Pattern(
            name=pattern.name,
            import_statement=pattern.import_statement,
            code_body=pattern.code_body,
            expected_behavior_summary=pattern.expected_behavior_summary,
            runtime=pattern.runtime,
            category=pattern.category,
            dependencies=kept,
        )


__all__ = [
    "ParsedArtifact",
    "PatternParser",
    "canonical_name",
    "categorize",
    "extract_dependencies",
    "extract_version",
    "parse_frontmatter",
    "parse_patterns",
]
