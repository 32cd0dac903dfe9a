"""Ollama embedding backend (``/api/tags``, ``/api/embeddings``)."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

import httpx
import numpy as np

from notefinder.embedding.base import (
    ModelInfo,
    ProviderConfig,
    approximate_token_count,
    truncate_to_approx_tokens,
)
from notefinder.embedding.http import create_api_client, request_json
from notefinder.errors import ConfigurationError, RuntimeEmbedError

LOGGER = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"
# Ollama does not report a context length for embedding models.
DEFAULT_OLLAMA_MAX_TOKENS = 8192

EMBEDDING_MODEL_FAMILIES = ("bert", "nomic-bert")


class OllamaBackend:
    name = "ollama"
    supports_batch = False
    supports_acceleration = False
    exact_tokens = False

    def __init__(
        self, config: ProviderConfig, *, transport: Optional[httpx.BaseTransport] = None
    ) -> None:
        self.config = config
        self.base_url = config.base_url or DEFAULT_OLLAMA_URL
        self.max_tokens = config.max_tokens or DEFAULT_OLLAMA_MAX_TOKENS
        self.client = create_api_client(self.base_url, timeout=config.timeout, transport=transport)
        self._model_id: str | None = None

    def list_models(self) -> List[dict]:
        data = request_json(self.client, "GET", "/api/tags", provider=self.name)
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            LOGGER.warning("Ollama returned invalid models data: %r", data)
            return []
        return models

    def list_embedding_models(self) -> List[str]:
        """Names of installed models that look like embedding models."""
        names = []
        for model in self.list_models():
            family = str((model.get("details") or {}).get("family") or "").lower()
            name = str(model.get("name", ""))
            if any(f in family for f in EMBEDDING_MODEL_FAMILIES) or "embed" in name.lower():
                names.append(name)
        return names

    def load(
        self, model_id: str, *, accelerated: bool, progress: Callable[[float], None]
    ) -> ModelInfo:
        if not model_id:
            raise ConfigurationError("No Ollama model configured")

        installed = {str(model.get("name", "")) for model in self.list_models()}
        if model_id not in installed and f"{model_id}:latest" not in installed:
            raise ConfigurationError(f"Model {model_id} is not available on Ollama server")

        self._model_id = model_id
        probe = self._embed_one("test")
        progress(100.0)
        LOGGER.info("Ollama model %s loaded (vector size %d)", model_id, len(probe))
        return ModelInfo(vector_size=len(probe), max_tokens=self.max_tokens)

    def _embed_one(self, text: str) -> List[float]:
        LOGGER.debug("[ollama] Generating embedding - text length: %d chars", len(text))
        data = request_json(
            self.client,
            "POST",
            "/api/embeddings",
            provider=self.name,
            json={"model": self._model_id, "prompt": text},
        )
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise RuntimeEmbedError("Invalid embedding response from Ollama")
        return embedding

    def unload(self) -> None:
        self._model_id = None

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        # No batch endpoint; requests go one at a time.
        return np.asarray([self._embed_one(text) for text in texts], dtype="float32")

    def count_tokens(self, text: str) -> int:
        return approximate_token_count(text)

    def truncate(self, text: str, max_tokens: int) -> str:
        return truncate_to_approx_tokens(text, max_tokens)

    def close(self) -> None:
        self.unload()
        self.client.close()
