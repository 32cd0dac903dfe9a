"""Token and request accounting for metered embedding APIs."""

from __future__ import annotations

import json
import logging
import threading
from datetime import date, timedelta
from typing import Any, Callable, Dict, Optional

from notefinder.blob_storage import BlobStorage
from notefinder.errors import StorageError

LOGGER = logging.getLogger(__name__)

RETENTION_DAYS = 30


def _empty_stats() -> Dict[str, Any]:
    return {"daily": {}, "total": {"tokens": 0, "request_count": 0, "first_use_date": ""}}


class UsageTracker:
    """Daily and lifetime token counters, optionally persisted as JSON."""

    def __init__(
        self,
        storage: Optional[BlobStorage] = None,
        name: str = "usage-stats.json",
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.storage = storage
        self.name = name
        self._today = today
        self._lock = threading.Lock()
        self._stats = self._load()

    def _load(self) -> Dict[str, Any]:
        if self.storage is None or not self.storage.exists(self.name):
            return _empty_stats()
        try:
            data = json.loads(self.storage.read_text(self.name))
        except (StorageError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable usage stats %s: %s", self.name, exc)
            return _empty_stats()
        if not isinstance(data, dict) or "daily" not in data or "total" not in data:
            return _empty_stats()
        return data

    def track_usage(self, prompt_tokens: int, total_tokens: int) -> None:
        today = self._today().isoformat()
        with self._lock:
            daily = self._stats["daily"].setdefault(today, {"tokens": 0, "request_count": 0})
            daily["tokens"] += total_tokens
            daily["request_count"] += 1

            total = self._stats["total"]
            total["tokens"] += total_tokens
            total["request_count"] += 1
            if not total["first_use_date"]:
                total["first_use_date"] = today

            cutoff = (self._today() - timedelta(days=RETENTION_DAYS)).isoformat()
            for key in [k for k in self._stats["daily"] if k < cutoff]:
                del self._stats["daily"][key]
            snapshot = json.dumps(self._stats)

        LOGGER.debug("Tracked usage: prompt=%d total=%d", prompt_tokens, total_tokens)
        if self.storage is not None:
            try:
                self.storage.write_text(self.name, snapshot)
            except StorageError as exc:
                LOGGER.error("Failed to persist usage stats: %s", exc)

    def today_usage(self) -> Dict[str, int]:
        with self._lock:
            entry = self._stats["daily"].get(self._today().isoformat())
            return dict(entry) if entry else {"tokens": 0, "request_count": 0}

    def total_usage(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._stats["total"])
