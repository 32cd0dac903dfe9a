"""Note indexing pipeline."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set

from notefinder.chunking.splitter import split_content
from notefinder.embedding.provider import EmbeddingProvider
from notefinder.index.change_queue import FileChangeQueue
from notefinder.index.store import VectorChunkStore
from notefinder.models import ChangeReason, Document, NoteChunk, PendingChange
from notefinder.notify import Notifier, safe_notify
from notefinder.sources.base import DocumentSource
from notefinder.utils.text import apply_exclusion_patterns

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    removed: int = 0
    skipped: int = 0
    failed: int = 0
    processed_paths: list[str] = field(default_factory=list)

    def increment(self, status: str, path: str) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "removed":
            self.removed += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_paths.append(path)

    def merge(self, other: "IndexStats") -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.removed += other.removed
        self.skipped += other.skipped
        self.failed += other.failed
        self.processed_paths.extend(other.processed_paths)

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.removed + self.skipped + self.failed


def build_chunks(
    document: Document, pieces: Sequence[str], embeddings: Sequence
) -> List[NoteChunk]:
    """Pair split text with its embeddings as one complete chunk set."""
    total = len(pieces)
    return [
        NoteChunk(
            path=document.path,
            title=document.title,
            content=piece,
            chunk_index=index,
            total_chunks=total,
            embedding=embedding,
        )
        for index, (piece, embedding) in enumerate(zip(pieces, embeddings))
    ]


class IndexingScheduler:
    """Drains the change queue and keeps the chunk store in sync."""

    def __init__(
        self,
        source: DocumentSource,
        store: VectorChunkStore,
        queue: FileChangeQueue,
        provider: EmbeddingProvider,
        notifier: Optional[Notifier] = None,
        *,
        batch_size: int = 10,
        interval: float = 1.0,
        exclude_patterns: Sequence[str] = (),
        refresh: Optional[Callable[[], object]] = None,
    ) -> None:
        self.source = source
        self.store = store
        self.queue = queue
        self.provider = provider
        self.notifier = notifier
        self.batch_size = batch_size
        self.interval = interval
        self.exclude_patterns = tuple(exclude_patterns)
        self.refresh = refresh
        self._in_flight: Set[str] = set()
        self._in_flight_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def pending_count(self) -> int:
        return self.queue.get_file_change_count()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> IndexStats:
        """Process at most ``batch_size`` queued changes."""
        stats = IndexStats()
        with self._tick_lock:
            changes = self.queue.poll_file_changes(self.batch_size)
            for change in changes:
                if not self._claim(change.path):
                    LOGGER.debug("Deferring %s, already being indexed", change.path)
                    self.queue.requeue(change)
                    continue
                try:
                    LOGGER.info("Processing: %s (%s)", change.path, change.reason.value)
                    status = self._process(change)
                    if status == "removed":
                        change = PendingChange(change.path, ChangeReason.DELETED)
                    self.queue.mark_file_change_processed(change)
                    stats.increment(status, change.path)
                except Exception as exc:
                    LOGGER.error("Failed to index %s: %s", change.path, exc)
                    self.queue.release(change)
                    safe_notify(self.notifier, f"Failed to index {change.path}: {exc}")
                    stats.increment("failed", change.path)
                finally:
                    self._release(change.path)
        return stats

    def run_until_empty(self) -> IndexStats:
        """Tick until the queue is drained."""
        stats = IndexStats()
        while self.pending_count:
            stats.merge(self.tick())
        return stats

    def _claim(self, path: str) -> bool:
        with self._in_flight_lock:
            if path in self._in_flight:
                return False
            self._in_flight.add(path)
            return True

    def _release(self, path: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(path)

    def _process(self, change: PendingChange) -> str:
        if change.reason is ChangeReason.DELETED:
            removed = self.store.remove_by_path(change.path)
            LOGGER.debug("Removed %d chunks for %s", removed, change.path)
            return "removed"

        document = self.source.read(change.path)
        if document is None:
            # Vanished between the event and processing.
            self.store.remove_by_path(change.path)
            return "removed"
        return self._index_document(document)

    def _index_document(self, document: Document) -> str:
        content = apply_exclusion_patterns(document.content, self.exclude_patterns)
        pieces = split_content(
            content, self.provider.get_max_tokens(), self.provider.count_tokens
        )
        existed = bool(self.store.get_by_path(document.path))

        if not pieces:
            LOGGER.warning("No text to index in %s", document.path)
            self.store.remove_by_path(document.path)
            return "skipped"

        embeddings = self.provider.embed_texts(pieces)
        chunks = build_chunks(document, pieces, embeddings)

        self.store.remove_by_path(document.path)
        self.store.add_multi(chunks)
        LOGGER.debug("Stored %d chunks for %s", len(chunks), document.path)
        return "updated" if existed else "inserted"

    # -- background loop ---------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="notefinder-indexer", daemon=True
        )
        self._thread.start()
        LOGGER.info("Indexing scheduler started (every %.1fs)", self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        LOGGER.info("Indexing scheduler stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if self.refresh is not None:
                try:
                    self.refresh()
                except Exception:
                    LOGGER.exception("Refreshing the note source failed")
            if self.pending_count and self.provider.is_model_loaded():
                try:
                    self.tick()
                except Exception:
                    LOGGER.exception("Indexing tick failed")
            self._stop_event.wait(self.interval)
