"""Light post-processing of the final SKILL.md.

Only fills in what generation reliably forgets: a complete frontmatter block
and a References section. Everything else is left as written.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "description", "version", "ecosystem")
_FRONTMATTER = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.S)
_REFERENCES = re.compile(r"(?m)^##\s+References\s*$")


def _frontmatter(
    package_name: str,
    version: str,
    ecosystem: str,
    license: Optional[str],
    generated_with: Optional[str],
) -> str:
    lines = [
        "---",
        f"name: {package_name}",
        f"description: {ecosystem} library",
        f"version: {version}",
        f"ecosystem: {ecosystem}",
        f"license: {license}" if license else "# license: Unknown",
    ]
    if generated_with:
        lines.append(f"generated_with: {generated_with}")
    lines.append("---")
    return "\n".join(lines) + "\n\n"


def _keys(block: str) -> set:
    keys = set()
    for line in block.splitlines():
        key, sep, _ = line.partition(":")
        if sep and not key.startswith((" ", "#")):
            keys.add(key.strip())
    return keys


def ensure_frontmatter(
    content: str,
    package_name: str,
    version: str,
    ecosystem: str,
    license: Optional[str] = None,
    generated_with: Optional[str] = None,
) -> str:
    """Add, repair or complete the leading ``---`` block."""

    body = content.lstrip()
    match = _FRONTMATTER.match(body)
    if match:
        keys = _keys(match.group(1))
        rest = body[match.end():]
        if not all(field in keys for field in REQUIRED_FIELDS):
            logger.warning("Frontmatter is missing required fields; replacing it")
            return _frontmatter(package_name, version, ecosystem, license, generated_with) + rest.lstrip()
        if generated_with and "generated_with" not in keys:
            block = match.group(1).rstrip()
            return f"---\n{block}\ngenerated_with: {generated_with}\n---\n{rest}"
        return content

    logger.warning("Frontmatter missing; adding it")
    if body.startswith("# SKILL.md"):
        body = body[len("# SKILL.md"):].lstrip()
    return _frontmatter(package_name, version, ecosystem, license, generated_with) + body


def ensure_references(content: str, project_urls: Sequence[Tuple[str, str]]) -> str:
    if not project_urls or _REFERENCES.search(content):
        return content
    logger.info("References section missing; adding %d links", len(project_urls))
    links = "".join(f"- [{label}]({url})\n" for label, url in project_urls)
    return f"{content.rstrip()}\n\n## References\n\n{links}"


def normalize_skill_md(
    content: str,
    package_name: str,
    version: str,
    ecosystem: str,
    license: Optional[str] = None,
    project_urls: Sequence[Tuple[str, str]] = (),
    generated_with: Optional[str] = None,
) -> str:
    normalized = ensure_frontmatter(content, package_name, version, ecosystem, license, generated_with)
    return ensure_references(normalized, project_urls)


__all__ = ["ensure_frontmatter", "ensure_references", "normalize_skill_md"]
