"""Token-budgeted splitting of markdown text.

Preference order: keep the whole text, split on markdown headers (recursing
into sub-headers for oversized sections), then bisect sentence lists and
finally word lists until every piece fits the budget. A single word that is
still too large is returned as-is.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Sequence

LOGGER = logging.getLogger(__name__)

CountTokens = Callable[[str], int]

_HEADER_RE = re.compile(r"^(#{1,6})[ \t]+(.+)$", re.MULTILINE)
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> List[str]:
    """Split on sentence-ending punctuation followed by whitespace."""
    return [part.strip() for part in _SENTENCE_BOUNDARY_RE.split(text) if part.strip()]


class ContentSplitter:
    """Split text into chunks that each fit ``max_tokens``."""

    def __init__(self, max_tokens: int, count_tokens: CountTokens) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self.max_tokens = max_tokens
        self.count_tokens = count_tokens

    def split(self, content: str) -> List[str]:
        if not content:
            return []

        if self._fits(content):
            return [content]

        by_headers = self._split_by_headers(content, min_level=1)
        if by_headers is not None:
            return by_headers

        return self._split_plain(content)

    def _fits(self, text: str) -> bool:
        return self.count_tokens(text) <= self.max_tokens

    def _split_by_headers(self, text: str, *, min_level: int) -> Optional[List[str]]:
        """Split ``text`` at its shallowest headers of level >= ``min_level``.

        Returns ``None`` when there is no such header.
        """
        headers = [m for m in _HEADER_RE.finditer(text) if len(m.group(1)) >= min_level]
        if not headers:
            return None

        level = min(len(m.group(1)) for m in headers)
        starts = [m.start() for m in headers if len(m.group(1)) == level]

        regions: List[str] = []
        if starts[0] > 0:
            regions.append(text[: starts[0]])
        for position, start in enumerate(starts):
            end = starts[position + 1] if position + 1 < len(starts) else len(text)
            regions.append(text[start:end])

        chunks: List[str] = []
        for region in regions:
            region = region.strip()
            if not region:
                continue
            if self._fits(region):
                chunks.append(region)
                continue
            # Headers nested below this level, if any, define the next split.
            nested = self._split_by_headers(region, min_level=level + 1) if level < 6 else None
            if nested is not None:
                chunks.extend(nested)
            else:
                chunks.extend(self._split_plain(region))
        return chunks

    def _split_plain(self, text: str) -> List[str]:
        sentences = split_sentences(text)
        return self._binary_split(sentences)

    def _binary_split(self, units: Sequence[str]) -> List[str]:
        if not units:
            return []

        if len(units) == 1:
            unit = units[0]
            if self._fits(unit):
                return [unit]
            words = unit.split()
            if len(words) <= 1:
                LOGGER.debug("Keeping unsplittable unit of %d chars over budget", len(unit))
                return [unit]
            return self._binary_split(words)

        mid = len(units) // 2
        left, right = units[:mid], units[mid:]
        left_text = " ".join(left)
        right_text = " ".join(right)
        left_fits = self._fits(left_text)
        right_fits = self._fits(right_text)

        if left_fits and right_fits:
            return [left_text, right_text]
        if left_fits:
            return [left_text, *self._binary_split(right)]
        if right_fits:
            return [*self._binary_split(left), right_text]
        return [*self._binary_split(left), *self._binary_split(right)]


def split_content(content: str, max_tokens: int, count_tokens: CountTokens) -> List[str]:
    """Split ``content`` into token-bounded chunks."""
    return ContentSplitter(max_tokens, count_tokens).split(content)
