"""Core NoteFinder data models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Tuple

import numpy as np


@dataclass(frozen=True, slots=True)
class Document:
    """Immutable snapshot of a note taken for one indexing pass."""

    path: str
    title: str
    content: str
    links: Tuple[str, ...] = ()


@dataclass(slots=True)
class NoteChunk:
    """Token-bounded slice of a note paired with its embedding."""

    path: str
    title: str
    content: str
    chunk_index: int
    total_chunks: int
    embedding: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype="float32"))
    last_updated: int = field(default_factory=lambda: int(time.time() * 1000))

    def with_embedding(self, embedding: np.ndarray) -> "NoteChunk":
        return replace(self, embedding=np.asarray(embedding, dtype="float32"))

    def to_metadata(self) -> Dict[str, Any]:
        """Return every field except the embedding, JSON-serializable."""
        return {
            "path": self.path,
            "title": self.title,
            "content": self.content,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_metadata(cls, metadata: Dict[str, Any], embedding: np.ndarray) -> "NoteChunk":
        return cls(
            path=metadata["path"],
            title=metadata["title"],
            content=metadata["content"],
            chunk_index=int(metadata["chunk_index"]),
            total_chunks=int(metadata["total_chunks"]),
            embedding=np.asarray(embedding, dtype="float32"),
            last_updated=int(metadata["last_updated"]),
        )


class ChangeReason(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class PendingChange:
    """A queued document event waiting to be indexed."""

    path: str
    reason: ChangeReason
    hash: str | None = None


@dataclass(slots=True)
class SearchResult:
    chunk: NoteChunk
    score: float


@dataclass(slots=True)
class SimilarNote:
    """Best-matching chunk of one related note."""

    path: str
    title: str
    score: float
    content: str
    source_chunk: str = ""


@dataclass(frozen=True, slots=True)
class QueryTokens:
    """Token count of a query against the model's input limit."""

    count: int
    limit: int

    @property
    def truncated(self) -> bool:
        return self.count > self.limit
