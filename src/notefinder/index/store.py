"""In-memory vector chunk store with snapshot persistence."""

from __future__ import annotations

import io
import json
import logging
import threading
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from notefinder.blob_storage import BlobStorage
from notefinder.errors import StorageError
from notefinder.models import NoteChunk, SearchResult

LOGGER = logging.getLogger(__name__)

SNAPSHOT_VERSION = 2


class VectorChunkStore:
    """Chunks and their embeddings, ranked by cosine similarity.

    The vector size is fixed at construction. A model with a different
    output size needs a new store. ``model_key`` names the model that produced
    the vectors; a snapshot written for another model is not loaded.
    """

    def __init__(
        self,
        storage: BlobStorage,
        name: str,
        *,
        vector_size: int,
        model_key: Optional[str] = None,
    ) -> None:
        if vector_size <= 0:
            raise ValueError("vector_size must be positive")
        self.storage = storage
        self.name = name
        self.vector_size = vector_size
        self.model_key = model_key
        self._lock = threading.RLock()
        self._chunks: List[NoteChunk] = []
        self._normalized: Optional[np.ndarray] = None
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def init(self) -> None:
        """Reset to an empty store without marking it dirty."""
        with self._lock:
            self._chunks = []
            self._normalized = None
            self._dirty = False

    def clear(self) -> None:
        with self._lock:
            self.init()
            self._dirty = True

    def count(self) -> int:
        return len(self._chunks)

    def paths(self) -> Set[str]:
        with self._lock:
            return {chunk.path for chunk in self._chunks}

    # -- mutations ---------------------------------------------------------

    def _check_vector(self, embedding: np.ndarray) -> np.ndarray:
        vector = np.asarray(embedding, dtype="float32")
        if vector.ndim != 1 or vector.shape[0] != self.vector_size:
            raise ValueError(
                f"Embedding dimension {vector.shape} does not match store dimension {self.vector_size}"
            )
        return vector

    def add(self, chunk: NoteChunk) -> None:
        self.add_multi([chunk])

    def add_multi(self, chunks: Iterable[NoteChunk]) -> None:
        prepared = [chunk.with_embedding(self._check_vector(chunk.embedding)) for chunk in chunks]
        if not prepared:
            return
        with self._lock:
            self._chunks.extend(prepared)
            self._normalized = None
            self._dirty = True

    def remove_by_path(self, path: str) -> int:
        with self._lock:
            kept = [chunk for chunk in self._chunks if chunk.path != path]
            removed = len(self._chunks) - len(kept)
            if removed:
                self._chunks = kept
                self._normalized = None
                self._dirty = True
            return removed

    def get_by_path(self, path: str) -> List[NoteChunk]:
        with self._lock:
            found = [chunk for chunk in self._chunks if chunk.path == path]
        return sorted(found, key=lambda chunk: chunk.chunk_index)

    # -- search ------------------------------------------------------------

    def _matrix(self) -> np.ndarray:
        if self._normalized is None:
            if self._chunks:
                matrix = np.vstack([chunk.embedding for chunk in self._chunks])
            else:
                matrix = np.zeros((0, self.vector_size), dtype="float32")
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            self._normalized = matrix / np.where(norms == 0, 1.0, norms)
        return self._normalized

    def _ranked_window(
        self, query: np.ndarray, offset: int, size: int, min_score: Optional[float]
    ) -> List[Tuple[int, float]]:
        """One top-K retrieval: ranks ``offset .. offset + size`` of the index."""
        matrix = self._matrix()
        if matrix.shape[0] == 0:
            return []

        norm = float(np.linalg.norm(query))
        scores = matrix @ (query / norm if norm else query)
        candidates = np.arange(len(scores))
        if min_score is not None:
            candidates = candidates[scores >= min_score]
        # Ties are broken by insertion order so consecutive windows never overlap.
        order = candidates[np.lexsort((candidates, -scores[candidates]))]
        window = order[offset : offset + size]
        return [(int(idx), float(scores[idx])) for idx in window]

    def search_similar(
        self,
        embedding: np.ndarray,
        limit: int,
        min_score: Optional[float] = None,
        exclude_paths: Optional[Sequence[str]] = None,
    ) -> List[SearchResult]:
        """Return up to ``limit`` chunks by descending cosine similarity.

        Excluded paths are filtered after each retrieval window, so windows of
        growing size are requested until ``limit`` results survive or the
        index runs out.
        """
        if limit <= 0:
            return []
        query = self._check_vector(embedding)
        excluded = set(exclude_paths or ())

        results: List[SearchResult] = []
        offset = 0
        window = limit * 2
        with self._lock:
            while True:
                hits = self._ranked_window(query, offset, window, min_score)
                if not hits:
                    break
                for idx, score in hits:
                    chunk = self._chunks[idx]
                    if chunk.path in excluded:
                        continue
                    results.append(SearchResult(chunk=chunk, score=score))
                if len(results) >= limit:
                    break
                offset += window
                window *= 2
        return results[:limit]

    # -- persistence -------------------------------------------------------

    def save(self) -> bool:
        """Write a snapshot if anything changed since the last save or load.

        Returns whether a snapshot was written. Raises ``StorageError`` on
        write failure; in-memory state is kept either way.
        """
        with self._lock:
            if not self._dirty:
                return False
            payload = self._serialize()
            self.storage.write_bytes(self.name, payload)
            self._dirty = False
        LOGGER.info("Saved %d chunks to %s", len(self._chunks), self.name)
        return True

    def load(self) -> bool:
        """Restore from the snapshot; any failure leaves a fresh empty store."""
        try:
            if not self.storage.exists(self.name):
                LOGGER.info("No chunk snapshot at %s, starting empty", self.name)
                self.init()
                return False
            chunks = self._deserialize(self.storage.read_bytes(self.name))
        except Exception as exc:
            LOGGER.warning("Failed to load chunk snapshot %s, starting empty: %s", self.name, exc)
            self.init()
            return False

        with self._lock:
            self._chunks = chunks
            self._normalized = None
            self._dirty = False
        LOGGER.info("Loaded %d chunks from %s", len(chunks), self.name)
        return True

    def _serialize(self) -> bytes:
        if self._chunks:
            embeddings = np.vstack([chunk.embedding for chunk in self._chunks]).astype("float32")
        else:
            embeddings = np.zeros((0, self.vector_size), dtype="float32")
        metadata = json.dumps([chunk.to_metadata() for chunk in self._chunks], ensure_ascii=False)

        buffer = io.BytesIO()
        np.savez_compressed(
            buffer,
            version=np.array(SNAPSHOT_VERSION),
            vector_size=np.array(self.vector_size),
            model_key=np.array(self.model_key or ""),
            embeddings=embeddings,
            metadata=np.array(metadata),
        )
        return buffer.getvalue()

    def _deserialize(self, data: bytes) -> List[NoteChunk]:
        with np.load(io.BytesIO(data), allow_pickle=False) as archive:
            version = int(archive["version"])
            if version != SNAPSHOT_VERSION:
                raise StorageError(f"Unsupported snapshot version {version}")
            vector_size = int(archive["vector_size"])
            if vector_size != self.vector_size:
                raise StorageError(
                    f"Snapshot vector size {vector_size} does not match {self.vector_size}"
                )
            stored_key = str(archive["model_key"]) or None
            if self.model_key is not None and stored_key != self.model_key:
                raise StorageError(
                    f"Snapshot was built with model {stored_key!r}, not {self.model_key!r}"
                )
            embeddings = archive["embeddings"]
            metadata = json.loads(str(archive["metadata"]))

        if embeddings.shape != (len(metadata), self.vector_size):
            raise StorageError("Snapshot embeddings and metadata length mismatch")
        return [NoteChunk.from_metadata(meta, vector) for meta, vector in zip(metadata, embeddings)]
