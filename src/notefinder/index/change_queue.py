"""Change detection queue driving incremental re-indexing."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from notefinder.index.hash_store import JsonFileHashStore
from notefinder.models import ChangeReason, PendingChange
from notefinder.sources.base import DocumentSource
from notefinder.utils.files import compute_text_sha256

LOGGER = logging.getLogger(__name__)


class FileChangeQueue:
    """FIFO of pending document changes with at most one entry per path.

    Also owns the path -> hash map of the last indexed state. Hashes are
    committed only through ``mark_file_change_processed``; ``persist`` writes
    the map out and may run on its own schedule.
    """

    def __init__(
        self,
        source: DocumentSource,
        hash_store: JsonFileHashStore,
        *,
        hash_func: Callable[[str], str] = compute_text_sha256,
    ) -> None:
        self.source = source
        self.hash_store = hash_store
        self.hash_func = hash_func
        self._queue: "OrderedDict[str, PendingChange]" = OrderedDict()
        self._hashes: Dict[str, str] = {}
        # Hashes of polled changes not yet committed or handed back.
        self._polled: Dict[str, Optional[str]] = {}
        self._hashes_dirty = False
        self._subscribed = False
        # Held while reading and hashing so events for a path apply in arrival order.
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Diff current documents against the persisted hashes and seed the queue."""
        previous = self.hash_store.load()
        current: Dict[str, str] = {}
        queue: "OrderedDict[str, PendingChange]" = OrderedDict()

        for path in self.source.list_paths():
            document = self.source.read(path)
            if document is None:
                continue
            digest = self.hash_func(document.content)
            current[path] = digest
            if path not in previous:
                queue[path] = PendingChange(path, ChangeReason.NEW, digest)
            elif previous[path] != digest:
                queue[path] = PendingChange(path, ChangeReason.MODIFIED, digest)

        for path in previous:
            if path not in current:
                queue[path] = PendingChange(path, ChangeReason.DELETED)

        with self._lock:
            self._hashes = dict(previous)
            self._hashes_dirty = False
            self._queue = queue
            self._polled = {}

        counts = {reason: 0 for reason in ChangeReason}
        for change in queue.values():
            counts[change.reason] += 1
        LOGGER.info(
            "Sync analysis: %d to add, %d to update, %d to remove",
            counts[ChangeReason.NEW],
            counts[ChangeReason.MODIFIED],
            counts[ChangeReason.DELETED],
        )

        if not self._subscribed:
            self.source.subscribe(self)
            self._subscribed = True

    def cleanup(self) -> None:
        if self._subscribed:
            self.source.unsubscribe(self)
            self._subscribed = False

    # -- document events ---------------------------------------------------

    def on_create(self, path: str) -> None:
        self._enqueue_current(path, ChangeReason.NEW)

    def on_modify(self, path: str) -> None:
        self._enqueue_current(path, ChangeReason.MODIFIED)

    def on_delete(self, path: str) -> None:
        with self._lock:
            self._queue.pop(path, None)
            self._queue[path] = PendingChange(path, ChangeReason.DELETED)

    def on_rename(self, old_path: str, new_path: str) -> None:
        with self._lock:
            self.on_delete(old_path)
            self.on_create(new_path)
        LOGGER.info("Note moved: %s -> %s", old_path, new_path)

    def _enqueue_current(self, path: str, reason: ChangeReason) -> None:
        with self._lock:
            self._queue.pop(path, None)
            document = self.source.read(path)
            if document is None:
                # Gone or excluded by now; drop its chunks if it was indexed.
                if path in self._hashes:
                    self._queue[path] = PendingChange(path, ChangeReason.DELETED)
                return

            digest = self.hash_func(document.content)
            # An in-flight change is about to become the indexed state.
            baseline = self._polled[path] if path in self._polled else self._hashes.get(path)
            if baseline == digest:
                LOGGER.debug("Ignoring %s event for unchanged note %s", reason.value, path)
                return
            self._queue[path] = PendingChange(path, reason, digest)

    # -- consumption -------------------------------------------------------

    def poll_file_changes(self, max_count: int) -> List[PendingChange]:
        with self._lock:
            changes = []
            while self._queue and len(changes) < max_count:
                _, change = self._queue.popitem(last=False)
                self._polled[change.path] = change.hash
                changes.append(change)
            return changes

    def mark_file_change_processed(self, change: PendingChange) -> None:
        with self._lock:
            self._polled.pop(change.path, None)
            if change.reason is ChangeReason.DELETED:
                if self._hashes.pop(change.path, None) is not None:
                    self._hashes_dirty = True
            elif change.hash:
                self._hashes[change.path] = change.hash
                self._hashes_dirty = True

    def requeue(self, change: PendingChange) -> None:
        """Put a polled change back unless a newer event already replaced it."""
        with self._lock:
            self._polled.pop(change.path, None)
            self._queue.setdefault(change.path, change)

    def release(self, change: PendingChange) -> None:
        """Forget a polled change that failed and will not be committed."""
        with self._lock:
            self._polled.pop(change.path, None)

    def get_file_change_count(self) -> int:
        return len(self._queue)

    def pending_changes(self) -> List[PendingChange]:
        with self._lock:
            return list(self._queue.values())

    @property
    def hashes(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._hashes)

    def forget_hashes(self) -> None:
        """Drop the committed hash map so every note counts as new after a restart."""
        with self._lock:
            if self._hashes:
                self._hashes = {}
                self._hashes_dirty = True

    def enqueue_all(self) -> int:
        """Queue every current document for re-indexing, replacing the queue."""
        queue: "OrderedDict[str, PendingChange]" = OrderedDict()
        for path in self.source.list_paths():
            document = self.source.read(path)
            if document is not None:
                queue[path] = PendingChange(
                    path, ChangeReason.MODIFIED, self.hash_func(document.content)
                )
        with self._lock:
            for path in self._hashes:
                if path not in queue:
                    queue[path] = PendingChange(path, ChangeReason.DELETED)
            self._queue = queue
        LOGGER.info("Enqueued all notes: %d changes queued for reprocessing", len(queue))
        return len(queue)

    def persist(self) -> bool:
        """Write the hash map if it changed. Returns whether it was written."""
        with self._lock:
            if not self._hashes_dirty:
                return False
            snapshot = dict(self._hashes)
            self._hashes_dirty = False
        try:
            self.hash_store.save(snapshot)
        except Exception:
            with self._lock:
                self._hashes_dirty = True
            raise
        return True
