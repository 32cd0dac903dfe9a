"""Shared embedding types: provider settings, backend protocol, signals."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, List, Literal, Protocol, Sequence, TypeVar

import numpy as np

LOGGER = logging.getLogger(__name__)

ProviderName = Literal["local", "ollama", "openai", "gemini"]

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"

DEFAULT_MODELS: dict[str, str] = {
    "local": DEFAULT_MODEL,
    "ollama": "nomic-embed-text",
    "openai": "text-embedding-3-small",
    "gemini": "text-embedding-004",
}

# Biased low so that estimates overshoot the real token count.
APPROX_CHARS_PER_TOKEN = 3.5


def approximate_token_count(text: str) -> int:
    return math.ceil(len(text) / APPROX_CHARS_PER_TOKEN)


def truncate_to_approx_tokens(text: str, max_tokens: int) -> str:
    return text[: int(max_tokens * APPROX_CHARS_PER_TOKEN)]


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Settings for one embedding backend. Fields irrelevant to a backend are ignored."""

    provider: ProviderName = "local"
    model_id: str = DEFAULT_MODEL
    use_acceleration: bool = True
    device: str | None = None
    batch_size: int = 16
    normalize: bool = True
    base_url: str | None = None
    api_key: str | None = None
    max_tokens: int | None = None
    timeout: float = 30.0

    @property
    def model_key(self) -> str:
        """Identity of the vectors this config produces, stored with each snapshot."""
        return f"{self.provider}:{self.model_id}"


@dataclass(frozen=True, slots=True)
class ModelInfo:
    vector_size: int
    max_tokens: int


@dataclass(frozen=True, slots=True)
class LoadResult:
    """Outcome of a model load, including which execution path succeeded."""

    model_id: str
    vector_size: int
    max_tokens: int
    accelerated: bool = False
    used_fallback: bool = False


class ModelState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    BUSY = "busy"


class EmbeddingBackend(Protocol):
    """A concrete way of turning text into vectors.

    ``embed`` always returns a 2-D float32 array with one row per input text.
    """

    name: str
    supports_batch: bool
    supports_acceleration: bool
    exact_tokens: bool

    def load(
        self, model_id: str, *, accelerated: bool, progress: Callable[[float], None]
    ) -> ModelInfo: ...

    def unload(self) -> None: ...

    def embed(self, texts: Sequence[str]) -> np.ndarray: ...

    def count_tokens(self, text: str) -> int: ...

    def truncate(self, text: str, max_tokens: int) -> str: ...

    def close(self) -> None: ...


T = TypeVar("T")


class Signal(Generic[T]):
    """Minimal synchronous observer list.

    Subscriber exceptions are logged and never reach the emitter.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def connect(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def disconnect() -> None:
            self.disconnect(callback)

        return disconnect

    def disconnect(self, callback: Callable[[T], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def emit(self, value: T) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(value)
            except Exception:
                LOGGER.exception("Subscriber of signal %r failed", self.name)
