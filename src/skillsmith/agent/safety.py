"""Deterministic scan for content that must never ship in a SKILL.md."""

from __future__ import annotations

import logging
import re
from typing import List, Tuple

from skillsmith.agent.state import ReviewIssue

logger = logging.getLogger(__name__)

_RULES: Tuple[Tuple[str, re.Pattern], ...] = (
    (
        "destructive command: recursive delete of a root or home directory",
        re.compile(r"\brm\s+(?:-[A-Za-z]+\s+)*-[A-Za-z]*[rR][A-Za-z]*\s+(?:-[A-Za-z]+\s+)*(?:/|/\*|~/?|\$HOME/?)(?=\s|$|['\"`;])"),
    ),
    (
        "destructive command: writes to a disk or block device",
        re.compile(r"\bmkfs(?:\.\w+)?\s+/dev/|\bdd\s+[^\n]*\bof=/dev/(?:sd|hd|nvme|disk|xvd)|>\s*/dev/(?:sd|nvme|hd)[a-z]"),
    ),
    ("destructive command: fork bomb", re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:")),
    (
        "remote code execution: download piped into a shell or interpreter",
        re.compile(r"\b(?:curl|wget|iwr|Invoke-WebRequest)\b[^\n|]*\|\s*(?:sudo\s+)?(?:ba|z|da|k)?sh\b|\b(?:curl|wget)\b[^\n|]*\|\s*(?:sudo\s+)?python[0-9.]*\b"),
    ),
    (
        "obfuscated payload: decoded data passed to eval/exec or a shell",
        re.compile(r"\b(?:eval|exec)\s*\([^\n]*(?:b64decode|atob|fromhex|decode\(['\"]base64)|base64\s+(?:-d|--decode)[^\n]*\|\s*(?:ba)?sh\b"),
    ),
    (
        "credential access: reads private keys or stored credentials",
        re.compile(
            r"(?:\bcat\s|\bopen\s*\(|read_text\s*\(|readFileSync\s*\(|\bscp\s)[^\n]*"
            r"(?:\.ssh/id_[a-z0-9]+|\.aws/credentials|\.git-credentials|/etc/shadow)\b"
        ),
    ),
    (
        "persistence: adds SSH authorized keys",
        re.compile(r">>?\s*\S*authorized_keys\b"),
    ),
    (
        "remote access: reverse shell",
        re.compile(r"/dev/tcp/|\bnc(?:at)?\s+[^\n]*-e\s+/bin/|\bbash\s+-i\s+>&"),
    ),
    (
        "prompt injection: instructions aimed at the consuming agent",
        re.compile(
            r"\b(?:ignore|disregard|forget)\s+(?:all\s+|any\s+)?(?:(?:previous|prior|above|earlier|your)\s+)+(?:instructions|rules|prompts?|guidelines)\b"
            r"|\b(?:override|bypass)\s+(?:your\s+|the\s+)?(?:system\s+prompt|safety\s+(?:rules|guidelines))",
            re.I,
        ),
    ),
    (
        "prompt injection: hidden instructions in an HTML comment",
        re.compile(r"<!--(?:(?!-->).)*?\b(?:assistant|instruction|system prompt|you must|agent)\b(?:(?!-->).)*?-->", re.I | re.S),
    ),
)


def _evidence(text: str, start: int, end: int) -> str:
    line_start = text.rfind("\n", 0, start) + 1
    line_end = text.find("\n", end)
    snippet = text[line_start : line_end if line_end != -1 else len(text)].strip()
    return snippet[:200]


def scan(artifact: str) -> List[ReviewIssue]:
    """One safety issue per rule that matches anywhere in ``artifact``."""

    issues: List[ReviewIssue] = []
    for message, rule in _RULES:
        match = rule.search(artifact or "")
        if match:
            evidence = _evidence(artifact, match.start(), match.end())
            logger.warning("Safety scan: %s: %s", message, evidence)
            issues.append(ReviewIssue(severity="error", category="safety", complaint=message, evidence=evidence))
    return issues


__all__ = ["scan"]
