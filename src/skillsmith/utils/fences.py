"""Helpers for pulling text out of Markdown code fences in model replies."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, Optional

_OUTER_FENCE = re.compile(r"\A```(?:markdown|md)?[ \t]*\n(.*)\n?```\Z", re.S | re.I)
_JSON_BLOCK = re.compile(r"```json\s*(.*?)```", re.S | re.I)
_ANY_BLOCK = re.compile(r"```[A-Za-z0-9_+-]*\s*\n(.*?)```", re.S)


def strip_markdown_fences(content: str) -> str:
    """Remove a fence wrapping the whole document.

    Repeats until nothing changes, so applying it twice equals applying it once.
    """

    current = content
    while True:
        match = _OUTER_FENCE.match(current.strip())
        if not match:
            return current
        stripped = match.group(1).strip()
        if stripped == current:
            return current
        current = stripped


def extract_code_block(text: str, languages: Iterable[str] = ()) -> Optional[str]:
    """Return the first fenced block tagged with one of ``languages``.

    Falls back to the first untagged/any block. ``None`` when the reply has
    no complete fence at all.
    """

    text = text or ""
    for language in languages:
        pattern = re.compile(rf"```{re.escape(language)}[ \t]*\n(.*?)```", re.S | re.I)
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    match = _ANY_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return None


def extract_json_block(text: str) -> str:
    """Best-effort isolation of a JSON object in a model reply."""

    text = text or ""
    match = _JSON_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    match = _ANY_BLOCK.search(text)
    if match and match.group(1).lstrip().startswith("{"):
        return match.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text.strip()


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """``json.loads`` the isolated object, ``None`` if it is not a JSON object."""

    try:
        value = json.loads(extract_json_block(text))
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


__all__ = ["extract_code_block", "extract_json_block", "parse_json_object", "strip_markdown_fences"]
