"""Wires sources, provider, store and scheduler into one running engine."""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from notefinder.blob_storage import FileBlobStorage
from notefinder.config import AppConfig
from notefinder.embedding.base import LoadResult, ProviderConfig
from notefinder.embedding.provider import EmbeddingProvider
from notefinder.embedding.registry import create_backend
from notefinder.embedding.throttle import ErrorThrottle
from notefinder.embedding.usage import UsageTracker
from notefinder.errors import DocumentNotFoundError, NoteFinderError
from notefinder.index.change_queue import FileChangeQueue
from notefinder.index.hash_store import JsonFileHashStore
from notefinder.index.indexer import IndexingScheduler, IndexStats
from notefinder.index.persistence import PersistenceOrchestrator
from notefinder.index.search import Searcher, SimilarNoteFinder
from notefinder.models import QueryTokens, SimilarNote
from notefinder.notify import LoggingNotifier, Notifier
from notefinder.sources.vault import VaultDocumentSource

LOGGER = logging.getLogger(__name__)


class NoteEngine:
    """Everything needed to index a vault and query it.

    ``start()`` loads the model and restores persisted state; nothing touches
    the embedding backend before that.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        base_dir: Path | None = None,
        notifier: Optional[Notifier] = None,
        provider: Optional[EmbeddingProvider] = None,
        settings_path: Path | None = None,
    ) -> None:
        self.config = config
        self.settings_path = settings_path
        self.notifier = notifier or LoggingNotifier()
        self.vault_path = config.resolve_vault_path(base_dir)
        self.data_dir = config.resolve_data_dir(base_dir)

        self.storage = FileBlobStorage(self.data_dir)
        self.source = VaultDocumentSource(
            self.vault_path,
            exclude_patterns=config.exclude_folder_patterns,
            include_frontmatter=config.include_frontmatter,
        )
        self.queue = FileChangeQueue(
            self.source, JsonFileHashStore(self.storage, config.hashes_name)
        )
        self.usage = UsageTracker(self.storage, config.usage_name)
        self.provider = provider or EmbeddingProvider(
            notifier=self.notifier,
            throttle=ErrorThrottle(config.error_cooldown),
            backend_factory=functools.partial(create_backend, usage_tracker=self.usage),
        )
        self.provider.fallback_advisory.connect(self._on_fallback_advisory)
        self.persistence = PersistenceOrchestrator(
            self.storage,
            self.queue,
            snapshot_name=config.snapshot_name,
            autosave_minutes=config.autosave_minutes,
            notifier=self.notifier,
        )
        self.scheduler: Optional[IndexingScheduler] = None
        self.searcher: Optional[Searcher] = None
        self.finder: Optional[SimilarNoteFinder] = None
        self.load_result: Optional[LoadResult] = None

    def __enter__(self) -> "NoteEngine":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -- lifecycle ---------------------------------------------------------

    def start(self, *, background: bool = False) -> LoadResult:
        """Load the model, detect changes since the last run and restore the store."""
        provider_config = self.config.provider
        self.load_result = self.provider.load_model(provider_config.model_id, provider_config)
        self.queue.initialize()
        store = self.persistence.restore(self.load_result.vector_size, provider_config.model_key)
        self._build_pipeline(store)
        if background:
            self.scheduler.start()
            self.persistence.start_autosave()
        return self.load_result

    def _build_pipeline(self, store) -> None:
        self.scheduler = IndexingScheduler(
            self.source,
            store,
            self.queue,
            self.provider,
            self.notifier,
            batch_size=self.config.batch_size,
            interval=self.config.interval,
            exclude_patterns=self.config.exclude_regex_patterns,
            refresh=self.source.refresh,
        )
        self.searcher = Searcher(self.provider, store)
        self.finder = SimilarNoteFinder(
            self.provider, store, exclude_patterns=self.config.exclude_regex_patterns
        )

    def switch_model(self, provider_config: ProviderConfig) -> LoadResult:
        """Load a different model, rebuilding the store unless it is the same model."""
        was_running = self.scheduler is not None and self.scheduler.is_running
        if self.scheduler is not None:
            self.scheduler.stop()

        previous_key = self.persistence.store.model_key if self.load_result else None
        self.config.provider = provider_config
        self.load_result = self.provider.load_model(provider_config.model_id, provider_config)

        vector_size = self.load_result.vector_size
        if previous_key != provider_config.model_key:
            store = self.persistence.rebuild_store(vector_size, provider_config.model_key)
        else:
            store = self.persistence.restore(vector_size, provider_config.model_key)
        self._build_pipeline(store)
        if was_running:
            self.scheduler.start()
        return self.load_result

    def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        if self.load_result is not None:
            self.persistence.close()
        self.queue.cleanup()
        self.provider.dispose()

    def _on_fallback_advisory(self, model_id: str) -> None:
        LOGGER.warning(
            "Hardware acceleration failed for %s; disabling it for future runs", model_id
        )
        self.config = self.config.with_provider(use_acceleration=False)
        if self.settings_path is not None:
            self.config.save(self.settings_path)

    def _require_started(self) -> IndexingScheduler:
        if self.scheduler is None:
            raise NoteFinderError("Engine not started; call start() first")
        return self.scheduler

    # -- operations --------------------------------------------------------

    def index(self) -> IndexStats:
        """Pick up vault changes and index everything pending."""
        scheduler = self._require_started()
        self.source.refresh()
        stats = scheduler.run_until_empty()
        self.persistence.save_all()
        return stats

    def reindex(self) -> IndexStats:
        self._require_started()
        self.queue.enqueue_all()
        return self.index()

    def search(self, query: str, *, top_k: int = 10) -> List[SimilarNote]:
        self._require_started()
        return self.searcher.search(query, top_k=top_k)

    def query_tokens(self, query: str) -> QueryTokens:
        self._require_started()
        return self.searcher.query_tokens(query)

    def similar(self, path: str, *, limit: Optional[int] = None) -> List[SimilarNote]:
        self._require_started()
        document = self.source.read(path)
        if document is None:
            raise DocumentNotFoundError(f"Note not found: {path}")
        return self.finder.find_similar(document, limit=limit or self.config.similar_limit)

    def status(self) -> Dict[str, Any]:
        store = self.scheduler.store if self.scheduler is not None else None
        return {
            "vault": str(self.vault_path),
            "provider": self.config.provider.provider,
            "model": self.provider.current_model_id,
            "state": self.provider.state.value,
            "vector_size": self.load_result.vector_size if self.load_result else None,
            "max_tokens": self.load_result.max_tokens if self.load_result else None,
            "accelerated": self.load_result.accelerated if self.load_result else False,
            "notes": len(store.paths()) if store is not None else 0,
            "chunks": store.count() if store is not None else 0,
            "pending": self.queue.get_file_change_count(),
            "usage": {"today": self.usage.today_usage(), "total": self.usage.total_usage()},
        }
