"""End-to-end tests for NoteEngine over a temporary vault."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import List

import pytest

from conftest import VECTOR_SIZE, FakeBackend
from notefinder.config import DATA_DIR_NAME, AppConfig
from notefinder.embedding.base import ModelInfo, ProviderConfig
from notefinder.embedding.provider import EmbeddingProvider
from notefinder.engine import NoteEngine
from notefinder.errors import DocumentNotFoundError, NoteFinderError


class WideBackend(FakeBackend):
    def load(self, model_id, *, accelerated, progress) -> ModelInfo:
        super().load(model_id, accelerated=accelerated, progress=progress)
        return ModelInfo(vector_size=VECTOR_SIZE + 4, max_tokens=self.max_tokens)


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    (root / "cats.md").write_text("# Cats\n\ncat cat cat. See [[dogs]].", encoding="utf-8")
    (root / "dogs.md").write_text("# Dogs\n\ndog dog dog.", encoding="utf-8")
    (root / "sky.md").write_text("star moon star.", encoding="utf-8")
    return root


@pytest.fixture
def backends() -> List[FakeBackend]:
    return []


def make_engine(vault: Path, backends: List[FakeBackend], **overrides) -> NoteEngine:
    fail_accelerated = overrides.pop("fail_accelerated", False)
    settings_path = overrides.pop("settings_path", None)
    model_id = overrides.pop("model_id", "fake-model")

    def factory(config: ProviderConfig) -> FakeBackend:
        backend_cls = WideBackend if config.model_id == "wide-model" else FakeBackend
        backend = backend_cls(config)
        backend.fail_accelerated = fail_accelerated
        backends.append(backend)
        return backend

    config = AppConfig(
        vault_path=vault,
        provider=ProviderConfig(model_id=model_id),
        autosave_minutes=0,
        **overrides,
    )
    return NoteEngine(
        config,
        provider=EmbeddingProvider(backend_factory=factory),
        settings_path=settings_path,
    )


class TestIndexing:
    """Tests for the index/reindex cycle."""

    def test_index_then_query(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends) as engine:
            engine.start()
            stats = engine.index()

            assert stats.inserted == 3
            assert engine.search("cat")[0].path == "cats.md"
            assert engine.status()["notes"] == 3

        assert (vault / DATA_DIR_NAME / "chunks.npz").exists()
        hashes = json.loads((vault / DATA_DIR_NAME / "file-hashes.json").read_text())
        assert sorted(hashes) == ["cats.md", "dogs.md", "sky.md"]

    def test_restart_restores_without_reindexing(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()

        with make_engine(vault, backends) as engine:
            engine.start()
            status = engine.status()
            assert status["pending"] == 0
            assert status["chunks"] == 3
            assert engine.index().total == 0

    def test_changes_between_runs(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()

        (vault / "sky.md").unlink()
        (vault / "dogs.md").write_text("# Dogs\n\ndog fish dog.", encoding="utf-8")
        (vault / "fish.md").write_text("fish fish.", encoding="utf-8")

        with make_engine(vault, backends) as engine:
            engine.start()
            stats = engine.index()
            assert (stats.inserted, stats.updated, stats.removed) == (1, 1, 1)

    def test_changes_while_running(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()
            (vault / "bird.md").write_text("bird bird.", encoding="utf-8")

            stats = engine.index()

            assert stats.inserted == 1
            assert engine.search("bird")[0].path == "bird.md"

    def test_reindex(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()
            assert engine.reindex().updated == 3

    def test_excluded_folder(self, vault: Path, backends: List[FakeBackend]) -> None:
        (vault / "templates").mkdir()
        (vault / "templates" / "t.md").write_text("cat template.", encoding="utf-8")
        with make_engine(vault, backends, exclude_folder_patterns=["templates"]) as engine:
            engine.start()
            engine.index()
            assert "templates/t.md" not in engine.scheduler.store.paths()

    def test_background_indexing(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends, interval=0.01) as engine:
            engine.start(background=True)
            deadline = time.monotonic() + 5
            while engine.status()["notes"] < 3 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert engine.status()["notes"] == 3


class TestQueries:
    """Tests for search and similar-note lookups."""

    @pytest.fixture
    def engine(self, vault: Path, backends: List[FakeBackend]):
        engine = make_engine(vault, backends)
        engine.start()
        engine.index()
        yield engine
        engine.close()

    def test_similar_excludes_self_and_links(self, engine: NoteEngine) -> None:
        paths = [note.path for note in engine.similar("cats.md")]
        assert paths == ["sky.md"]

    def test_query_tokens(self, engine: NoteEngine) -> None:
        tokens = engine.query_tokens(" ".join(["cat"] * 80))
        assert (tokens.count, tokens.truncated) == (80, True)
        assert engine.search(" ".join(["cat"] * 80))[0].path == "cats.md"

    def test_similar_limit(self, engine: NoteEngine) -> None:
        assert len(engine.similar("sky.md", limit=1)) == 1

    def test_similar_missing_note(self, engine: NoteEngine) -> None:
        with pytest.raises(DocumentNotFoundError):
            engine.similar("missing.md")

    def test_status(self, engine: NoteEngine) -> None:
        status = engine.status()
        assert status["model"] == "fake-model"
        assert status["state"] == "ready"
        assert status["vector_size"] == VECTOR_SIZE
        assert status["usage"]["total"]["tokens"] == 0


class TestLifecycle:
    """Tests for start, model switching and fallback."""

    def test_operations_before_start(self, vault: Path, backends: List[FakeBackend]) -> None:
        engine = make_engine(vault, backends)
        with pytest.raises(NoteFinderError):
            engine.search("cat")
        engine.close()

    def test_fallback_disables_acceleration(self, vault: Path, backends: List[FakeBackend], tmp_path: Path) -> None:
        settings_path = tmp_path / "settings.json"
        with make_engine(vault, backends, fail_accelerated=True, settings_path=settings_path) as engine:
            result = engine.start()

            assert result.used_fallback is True
            assert engine.config.provider.use_acceleration is False

        saved = json.loads(settings_path.read_text())
        assert saved["provider"]["use_acceleration"] is False

    def test_switch_to_same_size_model_rebuilds(self, vault: Path, backends: List[FakeBackend]) -> None:
        """Vectors from another model are dropped even when the size matches."""
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()

            engine.switch_model(ProviderConfig(model_id="other-model"))

            assert engine.scheduler.store.model_key == "local:other-model"
            assert engine.status()["chunks"] == 0
            assert engine.status()["pending"] == 3

            assert engine.index().total == 3
            assert engine.search("cat")[0].path == "cats.md"

    def test_switch_to_same_model_keeps_store(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()

            engine.switch_model(ProviderConfig(model_id="fake-model", batch_size=4))

            assert engine.status()["chunks"] == 3
            assert engine.status()["pending"] == 0

    def test_restart_with_other_model_reindexes(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()

        with make_engine(vault, backends, model_id="other-model") as engine:
            engine.start()
            assert engine.status()["chunks"] == 0
            assert engine.status()["pending"] == 3

    def test_restart_after_unfinished_switch_reindexes(self, vault: Path, backends: List[FakeBackend]) -> None:
        """Closing before the rebuilt store is filled leaves every note pending."""
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()
            engine.switch_model(ProviderConfig(model_id="other-model"))

        with make_engine(vault, backends, model_id="other-model") as engine:
            engine.start()
            assert engine.status()["pending"] == 3

    def test_switch_to_other_size_rebuilds(self, vault: Path, backends: List[FakeBackend]) -> None:
        with make_engine(vault, backends) as engine:
            engine.start()
            engine.index()

            result = engine.switch_model(ProviderConfig(model_id="wide-model"))

            assert result.vector_size == VECTOR_SIZE + 4
            assert engine.scheduler.store.vector_size == VECTOR_SIZE + 4
            assert engine.status()["chunks"] == 0
            assert engine.status()["pending"] == 3
