"""Shared fakes for NoteFinder tests."""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pytest

from notefinder.blob_storage import MemoryBlobStorage
from notefinder.embedding.base import ModelInfo, ProviderConfig
from notefinder.embedding.provider import EmbeddingProvider
from notefinder.models import Document

VOCABULARY = ["cat", "dog", "fish", "bird", "tree", "rock", "star", "moon"]
VECTOR_SIZE = len(VOCABULARY)


def keyword_vector(text: str) -> np.ndarray:
    """Count vocabulary words; unknown text lands on a small shared baseline."""
    words = re.findall(r"[a-z]+", text.lower())
    vector = np.full(VECTOR_SIZE, 0.01, dtype="float32")
    for word in words:
        if word in VOCABULARY:
            vector[VOCABULARY.index(word)] += 1.0
    return vector


def word_count(text: str) -> int:
    return len(text.split())


class FakeBackend:
    """In-memory embedding backend with word-count tokens."""

    name = "fake"
    supports_batch = True
    supports_acceleration = True
    exact_tokens = False

    def __init__(self, config: ProviderConfig, *, max_tokens: int = 50) -> None:
        self.config = config
        self.max_tokens = max_tokens
        self.load_calls: List[bool] = []
        self.embed_calls: List[List[str]] = []
        self.fail_accelerated = False
        self.fail_unaccelerated = False
        self.embed_error: Optional[Exception] = None
        self.closed = False
        self.unloaded = False

    def load(self, model_id: str, *, accelerated: bool, progress: Callable[[float], None]) -> ModelInfo:
        self.load_calls.append(accelerated)
        if accelerated and self.fail_accelerated:
            raise RuntimeError("accelerator unavailable")
        if not accelerated and self.fail_unaccelerated:
            raise RuntimeError("model files missing")
        progress(100.0)
        return ModelInfo(vector_size=VECTOR_SIZE, max_tokens=self.max_tokens)

    def unload(self) -> None:
        self.unloaded = True

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        self.embed_calls.append(list(texts))
        if self.embed_error is not None:
            raise self.embed_error
        return np.vstack([keyword_vector(text) for text in texts])

    def count_tokens(self, text: str) -> int:
        return word_count(text)

    def truncate(self, text: str, max_tokens: int) -> str:
        return " ".join(text.split()[:max_tokens])

    def close(self) -> None:
        self.closed = True


class InMemorySource:
    """Document source backed by a dict, emitting events like a host would."""

    def __init__(self, documents: Optional[Dict[str, str]] = None) -> None:
        self.documents: Dict[str, Document] = {}
        self.observers: list = []
        for path, content in (documents or {}).items():
            self.documents[path] = Document(path=path, title=path, content=content)

    def list_paths(self) -> List[str]:
        return sorted(self.documents)

    def read(self, path: str) -> Optional[Document]:
        return self.documents.get(path)

    def subscribe(self, observer) -> None:
        self.observers.append(observer)

    def unsubscribe(self, observer) -> None:
        self.observers.remove(observer)

    def put(self, path: str, content: str, links: Sequence[str] = ()) -> None:
        created = path not in self.documents
        self.documents[path] = Document(path=path, title=path, content=content, links=tuple(links))
        for observer in self.observers:
            if created:
                observer.on_create(path)
            else:
                observer.on_modify(path)

    def delete(self, path: str) -> None:
        self.documents.pop(path, None)
        for observer in self.observers:
            observer.on_delete(path)

    def rename(self, old_path: str, new_path: str) -> None:
        document = self.documents.pop(old_path)
        self.documents[new_path] = Document(
            path=new_path, title=new_path, content=document.content, links=document.links
        )
        for observer in self.observers:
            observer.on_rename(old_path, new_path)


@pytest.fixture
def fake_backends() -> List[FakeBackend]:
    return []


@pytest.fixture
def provider(fake_backends: List[FakeBackend]) -> EmbeddingProvider:
    """Provider with a loaded FakeBackend; created backends land in ``fake_backends``."""

    def factory(config: ProviderConfig) -> FakeBackend:
        backend = FakeBackend(config)
        fake_backends.append(backend)
        return backend

    embedding_provider = EmbeddingProvider(backend_factory=factory)
    embedding_provider.load_model("fake-model", ProviderConfig(provider="local", model_id="fake-model"))
    yield embedding_provider
    embedding_provider.dispose()


@pytest.fixture
def memory_storage() -> MemoryBlobStorage:
    return MemoryBlobStorage()
