"""Gemini embedding backend (``:embedContent`` and ``:batchEmbedContents``)."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

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

DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MAX_TOKENS = 2048
TASK_TYPE = "RETRIEVAL_DOCUMENT"


class GeminiBackend:
    name = "gemini"
    supports_batch = True
    supports_acceleration = False
    exact_tokens = False

    def __init__(
        self, config: ProviderConfig, *, transport: Optional[httpx.BaseTransport] = None
    ) -> None:
        self.config = config
        self.base_url = config.base_url or DEFAULT_GEMINI_URL
        self.max_tokens = config.max_tokens or DEFAULT_GEMINI_MAX_TOKENS
        headers = {"x-goog-api-key": config.api_key} if config.api_key else None
        self.client = create_api_client(
            self.base_url, headers=headers, timeout=config.timeout, transport=transport
        )
        self._model_id: str | None = None

    def load(
        self, model_id: str, *, accelerated: bool, progress: Callable[[float], None]
    ) -> ModelInfo:
        if not self.config.api_key:
            raise ConfigurationError("An API key is required for the Gemini API")
        if not model_id:
            raise ConfigurationError("No Gemini model configured")

        self._model_id = model_id
        probe = self._embed_one("test")
        progress(100.0)
        LOGGER.info("Gemini model %s loaded (vector size %d)", model_id, len(probe))
        return ModelInfo(vector_size=len(probe), max_tokens=self.max_tokens)

    def _embed_one(self, text: str) -> list:
        data = request_json(
            self.client,
            "POST",
            f"/models/{self._model_id}:embedContent",
            provider=self.name,
            json={"content": {"parts": [{"text": text}]}, "taskType": TASK_TYPE},
        )
        values = (data.get("embedding") or {}).get("values") if isinstance(data, dict) else None
        if not isinstance(values, list) or not values:
            raise RuntimeEmbedError("Invalid embedding response from Gemini: missing embedding values")
        return values

    def unload(self) -> None:
        self._model_id = None

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if len(texts) == 1:
            return np.asarray([self._embed_one(texts[0])], dtype="float32")

        data = request_json(
            self.client,
            "POST",
            f"/models/{self._model_id}:batchEmbedContents",
            provider=self.name,
            json={
                "requests": [
                    {
                        "model": f"models/{self._model_id}",
                        "content": {"parts": [{"text": text}]},
                        "taskType": TASK_TYPE,
                    }
                    for text in texts
                ]
            },
        )
        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list) or len(embeddings) != len(texts):
            raise RuntimeEmbedError("Invalid embedding response from Gemini: missing embeddings array")
        return np.asarray([item.get("values") for item in embeddings], dtype="float32")

    def count_tokens(self, text: str) -> int:
        return approximate_token_count(text)

    def truncate(self, text: str, max_tokens: int) -> str:
        return truncate_to_approx_tokens(text, max_tokens)

    def close(self) -> None:
        self.unload()
        self.client.close()
