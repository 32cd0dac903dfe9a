"""Embedding provider: model lifecycle, request serialization and error policy.

Every embedding request goes through a single-worker executor, so at most
one inference (or one in-flight remote call) runs per provider and requests
complete in submission order.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

import numpy as np

from notefinder.embedding.base import (
    EmbeddingBackend,
    LoadResult,
    ModelInfo,
    ModelState,
    ProviderConfig,
    Signal,
)
from notefinder.embedding.registry import create_backend
from notefinder.embedding.throttle import ErrorThrottle
from notefinder.errors import (
    ApiStatusError,
    ConfigurationError,
    ConnectivityError,
    ModelLoadError,
    ModelNotLoadedError,
    NoteFinderError,
    RuntimeEmbedError,
)
from notefinder.notify import Notifier, safe_notify

LOGGER = logging.getLogger(__name__)

BackendFactory = Callable[[ProviderConfig], EmbeddingBackend]
R = TypeVar("R")


class EmbeddingProvider:
    """Turns text into vectors through one configurable backend.

    Signals:
        busy: ``True`` when a request starts executing, ``False`` when it ends.
        progress: model load progress in percent.
        errors: user-facing error messages (runtime errors are throttled).
        fallback_advisory: model id, emitted once when the accelerated path
            failed and the unaccelerated one succeeded.
    """

    def __init__(
        self,
        *,
        notifier: Optional[Notifier] = None,
        throttle: Optional[ErrorThrottle] = None,
        backend_factory: BackendFactory = create_backend,
    ) -> None:
        self.notifier = notifier
        self.throttle = throttle or ErrorThrottle()
        self._backend_factory = backend_factory
        self._backend: Optional[EmbeddingBackend] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._config: Optional[ProviderConfig] = None
        self._model_id: Optional[str] = None
        self._result: Optional[LoadResult] = None
        self._state = ModelState.UNLOADED
        self._lock = threading.RLock()
        self._advisory_sent = False

        self.busy: Signal[bool] = Signal("busy")
        self.progress: Signal[float] = Signal("progress")
        self.errors: Signal[str] = Signal("errors")
        self.fallback_advisory: Signal[str] = Signal("fallback_advisory")

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def current_model_id(self) -> Optional[str]:
        return self._model_id

    @property
    def provider_name(self) -> str:
        return self._config.provider if self._config else "none"

    def is_model_loaded(self) -> bool:
        return self._state in (ModelState.READY, ModelState.BUSY)

    # -- lifecycle ---------------------------------------------------------

    def load_model(self, model_id: str, config: ProviderConfig) -> LoadResult:
        """Load ``model_id`` with ``config``; a no-op if already loaded identically."""
        with self._lock:
            if (
                self.is_model_loaded()
                and self._result is not None
                and model_id == self._model_id
                and config == self._config
            ):
                LOGGER.debug("Model %s already loaded, skipping", model_id)
                return self._result

            self._dispose_backend()
            self._state = ModelState.LOADING
            try:
                backend = self._backend_factory(config)
            except NoteFinderError as exc:
                self._state = ModelState.UNLOADED
                self._report_load_failure(config, exc)
                raise

            self._backend = backend
            self._config = config
            try:
                result = self._load_with_fallback(backend, model_id, config)
            except NoteFinderError as exc:
                self._dispose_backend()
                self._report_load_failure(config, exc)
                raise

            self._model_id = model_id
            self._result = result
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"embed-{config.provider}"
            )
            self._state = ModelState.READY
            LOGGER.info(
                "Loaded %s model %s (vector size %d, max tokens %d, accelerated=%s)",
                config.provider,
                model_id,
                result.vector_size,
                result.max_tokens,
                result.accelerated,
            )
            return result

    def _load_with_fallback(
        self, backend: EmbeddingBackend, model_id: str, config: ProviderConfig
    ) -> LoadResult:
        accelerated = config.use_acceleration and backend.supports_acceleration
        try:
            info = self._load_once(backend, model_id, accelerated=accelerated)
            return self._make_result(model_id, info, accelerated=accelerated, used_fallback=False)
        except (ConfigurationError, ConnectivityError):
            raise
        except Exception as exc:
            if not accelerated:
                raise ModelLoadError(f"Failed to load {model_id}: {exc}") from exc
            LOGGER.warning(
                "Accelerated load of %s failed (%s); retrying without acceleration", model_id, exc
            )

        try:
            info = self._load_once(backend, model_id, accelerated=False)
        except (ConfigurationError, ConnectivityError):
            raise
        except Exception as exc:
            raise ModelLoadError(
                f"Failed to load {model_id} with and without acceleration: {exc}"
            ) from exc

        if not self._advisory_sent:
            self._advisory_sent = True
            self.fallback_advisory.emit(model_id)
        return self._make_result(model_id, info, accelerated=False, used_fallback=True)

    def _load_once(self, backend: EmbeddingBackend, model_id: str, *, accelerated: bool) -> ModelInfo:
        try:
            return backend.load(model_id, accelerated=accelerated, progress=self.progress.emit)
        except ApiStatusError as exc:
            # The server is reachable but rejected the model or credentials.
            raise ConfigurationError(str(exc)) from exc

    @staticmethod
    def _make_result(
        model_id: str, info: ModelInfo, *, accelerated: bool, used_fallback: bool
    ) -> LoadResult:
        return LoadResult(
            model_id=model_id,
            vector_size=info.vector_size,
            max_tokens=info.max_tokens,
            accelerated=accelerated,
            used_fallback=used_fallback,
        )

    def _report_load_failure(self, config: ProviderConfig, exc: Exception) -> None:
        message = f"Failed to load {config.provider} model: {exc}"
        LOGGER.error(message)
        self.errors.emit(message)
        safe_notify(self.notifier, message)

    def unload_model(self) -> None:
        """Unload the model. Queued requests are cancelled; running ones may fail."""
        with self._lock:
            self._shutdown_executor()
            if self._backend is not None:
                try:
                    self._backend.unload()
                except Exception:
                    LOGGER.exception("Error unloading %s model", self.provider_name)
            self._model_id = None
            self._result = None
            self._state = ModelState.UNLOADED

    def dispose(self) -> None:
        with self._lock:
            self._dispose_backend()
            self._config = None

    def _dispose_backend(self) -> None:
        self.unload_model()
        if self._backend is not None:
            try:
                self._backend.close()
            except Exception:
                LOGGER.exception("Error closing %s backend", self.provider_name)
            self._backend = None

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    # -- model info --------------------------------------------------------

    def _require_result(self) -> LoadResult:
        if self._result is None or not self.is_model_loaded():
            raise ModelNotLoadedError("Embedding model not loaded")
        return self._result

    def get_vector_size(self) -> int:
        return self._require_result().vector_size

    def get_max_tokens(self) -> int:
        return self._require_result().max_tokens

    # -- requests ----------------------------------------------------------

    def _submit(self, fn: Callable[..., R], *args) -> Future:
        with self._lock:
            if self._executor is None or self._backend is None or not self.is_model_loaded():
                raise ModelNotLoadedError("Embedding model not loaded")
            return self._executor.submit(fn, self._backend, *args)

    def count_tokens(self, text: str) -> int:
        with self._lock:
            backend = self._backend
            if backend is None or not self.is_model_loaded():
                raise ModelNotLoadedError("Embedding model not loaded")
        if not backend.exact_tokens:
            return backend.count_tokens(text)
        return self._wait(self._submit(lambda b, t: b.count_tokens(t), text))

    def embed_text(self, text: str) -> np.ndarray:
        return self.embed_texts([text])[0]

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        result = self._require_result()
        if not texts:
            return np.zeros((0, result.vector_size), dtype="float32")
        return self._wait(self._submit(self._run_embed, list(texts), result.max_tokens))

    def _run_embed(self, backend: EmbeddingBackend, texts: List[str], max_tokens: int) -> np.ndarray:
        with self._lock:
            if self._state is ModelState.READY:
                self._state = ModelState.BUSY
        self.busy.emit(True)
        try:
            prepared = [self._fit_budget(backend, text, max_tokens) for text in texts]
            batch_size = max(self._config.batch_size if self._config else 1, 1)
            step = batch_size if backend.supports_batch else 1
            parts = [backend.embed(prepared[i : i + step]) for i in range(0, len(prepared), step)]
            vectors = np.vstack(parts).astype("float32", copy=False)
            if vectors.shape[0] != len(texts):
                raise RuntimeEmbedError(
                    f"Expected {len(texts)} embeddings, got {vectors.shape[0]}"
                )
            return vectors
        finally:
            with self._lock:
                if self._state is ModelState.BUSY:
                    self._state = ModelState.READY
            self.busy.emit(False)

    @staticmethod
    def _fit_budget(backend: EmbeddingBackend, text: str, max_tokens: int) -> str:
        tokens = backend.count_tokens(text)
        if tokens <= max_tokens:
            return text
        LOGGER.warning(
            "Truncating text of %d tokens to the model limit of %d tokens", tokens, max_tokens
        )
        return backend.truncate(text, max_tokens)

    def _wait(self, future: Future) -> R:
        try:
            return future.result()
        except CancelledError as exc:
            raise RuntimeEmbedError("Embedding request cancelled because the model was unloaded") from exc
        except Exception as exc:
            self._report_runtime_error(exc)
            if isinstance(exc, NoteFinderError):
                raise
            raise RuntimeEmbedError(f"{self.provider_name} embedding failed: {exc}") from exc

    def _report_runtime_error(self, exc: Exception) -> None:
        provider = self.provider_name
        if not self.throttle.should_report(provider, exc):
            LOGGER.debug("Suppressed repeated %s error from %s: %s", type(exc).__name__, provider, exc)
            return
        message = f"{provider} embedding failed: {exc}"
        LOGGER.error(message)
        self.errors.emit(message)
        safe_notify(self.notifier, message)
