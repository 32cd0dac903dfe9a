"""Utility helpers for working with files."""

from __future__ import annotations

import fnmatch
import hashlib
from pathlib import Path
from typing import Iterator, Sequence


def iter_markdown_paths(root: Path, exclude_patterns: Sequence[str] = ()) -> Iterator[Path]:
    """Yield markdown files under ``root`` in sorted order, skipping excluded ones.

    Exclusion patterns are globs matched against the POSIX path relative to ``root``.
    """
    for item in sorted(root.rglob("*.md")):
        if not item.is_file():
            continue
        relative = item.relative_to(root).as_posix()
        if is_excluded(relative, exclude_patterns):
            continue
        yield item


def is_excluded(relative_path: str, patterns: Sequence[str]) -> bool:
    for pattern in patterns:
        if fnmatch.fnmatch(relative_path, pattern):
            return True
        # A bare folder pattern such as "templates" or "archive/" excludes its subtree.
        folder = pattern.rstrip("/")
        if folder and not any(ch in folder for ch in "*?[") and (
            relative_path == folder or relative_path.startswith(folder + "/")
        ):
            return True
    return False


def compute_text_sha256(text: str) -> str:
    """Compute SHA256 hash for UTF-8 encoded text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
