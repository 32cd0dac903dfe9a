"""Text helpers for markdown notes."""

from __future__ import annotations

import logging
import re
from typing import List, Sequence

LOGGER = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"\A---\r?\n.*?\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_TITLE_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)
_WIKILINK_RE = re.compile(r"\[\[([^\]|#^]+)(?:[#^][^\]|]*)?(?:\|[^\]]*)?\]\]")


def strip_frontmatter(text: str) -> str:
    """Remove a leading YAML frontmatter block, if any."""
    return _FRONTMATTER_RE.sub("", text, count=1)


def extract_title(text: str, fallback: str) -> str:
    match = _TITLE_RE.search(strip_frontmatter(text))
    if match:
        return match.group(1).strip()
    return fallback


def extract_wikilinks(text: str) -> List[str]:
    """Return unique ``[[target]]`` link targets in order of appearance."""
    seen: dict[str, None] = {}
    for match in _WIKILINK_RE.finditer(text):
        target = match.group(1).strip()
        if target:
            seen.setdefault(target, None)
    return list(seen)


def apply_exclusion_patterns(text: str, patterns: Sequence[str]) -> str:
    """Remove every match of the given regular expressions from ``text``.

    Invalid patterns are logged and skipped.
    """
    for pattern in patterns:
        try:
            text = re.sub(pattern, "", text, flags=re.MULTILINE)
        except re.error as exc:
            LOGGER.warning("Invalid exclusion pattern %r: %s", pattern, exc)
    return text
