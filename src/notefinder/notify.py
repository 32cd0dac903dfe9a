"""Fire-and-forget user notifications."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from rich.console import Console

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, message: str) -> None: ...


class LoggingNotifier:
    """Route notifications to the log when no UI is attached."""

    def __init__(self, level: int = logging.WARNING) -> None:
        self.level = level

    def notify(self, message: str) -> None:
        LOGGER.log(self.level, "%s", message)


class ConsoleNotifier:
    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console(stderr=True)

    def notify(self, message: str) -> None:
        self.console.print(message, style="yellow", markup=False, highlight=False)


def safe_notify(notifier: Optional[Notifier], message: str) -> None:
    """Deliver ``message``; a failing notifier never affects the caller."""
    if notifier is None:
        return
    try:
        notifier.notify(message)
    except Exception:
        LOGGER.exception("Notifier failed to deliver: %s", message)
