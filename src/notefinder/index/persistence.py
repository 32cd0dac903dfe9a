"""Startup restore, periodic auto-save and shutdown save of index state."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from notefinder.blob_storage import BlobStorage
from notefinder.errors import StorageError
from notefinder.index.change_queue import FileChangeQueue
from notefinder.index.store import VectorChunkStore
from notefinder.notify import Notifier, safe_notify

LOGGER = logging.getLogger(__name__)


class PersistenceOrchestrator:
    """Owns the chunk store instance and decides when it hits storage."""

    def __init__(
        self,
        storage: BlobStorage,
        queue: FileChangeQueue,
        *,
        snapshot_name: str = "chunks.npz",
        autosave_minutes: float = 5.0,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.storage = storage
        self.queue = queue
        self.snapshot_name = snapshot_name
        self.autosave_minutes = autosave_minutes
        self.notifier = notifier
        self._store: Optional[VectorChunkStore] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def store(self) -> VectorChunkStore:
        if self._store is None:
            raise RuntimeError("Store not restored yet; call restore() first")
        return self._store

    def restore(self, vector_size: int, model_key: Optional[str] = None) -> VectorChunkStore:
        """Load the snapshot for ``vector_size`` built by ``model_key``.

        Call after ``queue.initialize()``. If the snapshot is unusable while
        the hash map still claims indexed notes, every note is queued again.
        A snapshot written by another model counts as unusable.
        """
        if (
            self._store is not None
            and self._store.vector_size == vector_size
            and self._store.model_key == model_key
        ):
            return self._store

        store = VectorChunkStore(
            self.storage, self.snapshot_name, vector_size=vector_size, model_key=model_key
        )
        loaded = store.load()
        self._store = store
        if not loaded and self.queue.hashes:
            LOGGER.warning("Chunk snapshot unavailable, re-indexing all notes")
            self.queue.forget_hashes()
            self.queue.enqueue_all()
        return store

    def rebuild_store(self, vector_size: int, model_key: Optional[str] = None) -> VectorChunkStore:
        """Replace the store with an empty one for a new model and queue a full re-index."""
        LOGGER.info("Rebuilding chunk store for %s (vector size %d)", model_key, vector_size)
        store = VectorChunkStore(
            self.storage, self.snapshot_name, vector_size=vector_size, model_key=model_key
        )
        store.clear()
        self._store = store
        self.queue.forget_hashes()
        self.queue.enqueue_all()
        return store

    def save_all(self) -> bool:
        """Persist dirty state. Raises ``StorageError`` when a write fails."""
        with self._lock:
            saved = False
            if self._store is not None:
                saved = self._store.save()
            saved = self.queue.persist() or saved
            return saved

    # -- auto-save ---------------------------------------------------------

    def start_autosave(self) -> None:
        if self.autosave_minutes <= 0:
            LOGGER.debug("Auto-save disabled")
            return
        self._closed = False
        self._schedule()

    def _schedule(self) -> None:
        timer = threading.Timer(self.autosave_minutes * 60, self._autosave)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _autosave(self) -> None:
        try:
            if self.save_all():
                LOGGER.debug("Auto-saved index state")
        except StorageError as exc:
            LOGGER.error("Auto-save failed: %s", exc)
            safe_notify(self.notifier, f"Failed to save the note index: {exc}")
        if not self._closed:
            self._schedule()

    def stop_autosave(self) -> None:
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        """Stop auto-saving and write any unsaved state."""
        self.stop_autosave()
        try:
            self.save_all()
        except StorageError as exc:
            LOGGER.error("Final save failed: %s", exc)
            safe_notify(self.notifier, f"Failed to save the note index: {exc}")
