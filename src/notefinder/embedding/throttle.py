"""Cooldown-based suppression of repeated provider errors."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Tuple

DEFAULT_COOLDOWN_SECONDS = 60.0


class ErrorThrottle:
    """Report an error class at most once per cooldown window and provider."""

    def __init__(
        self,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cooldown = cooldown
        self._clock = clock
        self._last_reported: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def should_report(self, provider: str, error: BaseException) -> bool:
        key = (provider, type(error).__name__)
        now = self._clock()
        with self._lock:
            last = self._last_reported.get(key)
            if last is not None and now - last < self.cooldown:
                return False
            self._last_reported[key] = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_reported.clear()
