"""OpenAI-compatible embedding backend (``/models``, ``/embeddings``)."""

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
from notefinder.embedding.usage import UsageTracker
from notefinder.errors import ConfigurationError, RuntimeEmbedError

LOGGER = logging.getLogger(__name__)

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"
# text-embedding-3 input limit
DEFAULT_OPENAI_MAX_TOKENS = 8191


class OpenAIBackend:
    name = "openai"
    supports_batch = True
    supports_acceleration = False
    exact_tokens = False

    def __init__(
        self,
        config: ProviderConfig,
        *,
        usage_tracker: Optional[UsageTracker] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config
        self.base_url = config.base_url or DEFAULT_OPENAI_URL
        self.max_tokens = config.max_tokens or DEFAULT_OPENAI_MAX_TOKENS
        self.usage_tracker = usage_tracker
        headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else None
        self.client = create_api_client(
            self.base_url, headers=headers, timeout=config.timeout, transport=transport
        )
        self._model_id: str | None = None

    def list_models(self) -> List[str]:
        data = request_json(self.client, "GET", "/models", provider=self.name)
        models = data.get("data") if isinstance(data, dict) else None
        if not isinstance(models, list):
            LOGGER.warning("OpenAI API returned invalid models data: %r", data)
            return []
        return [str(model.get("id")) for model in models if model.get("id")]

    def load(
        self, model_id: str, *, accelerated: bool, progress: Callable[[float], None]
    ) -> ModelInfo:
        if not model_id:
            raise ConfigurationError("No OpenAI model configured")
        if not self.config.api_key and self.base_url == DEFAULT_OPENAI_URL:
            raise ConfigurationError("An API key is required for the OpenAI API")

        self._model_id = model_id
        probe = self._request(["test"])
        progress(100.0)
        LOGGER.info(
            "OpenAI model %s loaded (vector size %d, max tokens %d)",
            model_id,
            probe.shape[1],
            self.max_tokens,
        )
        return ModelInfo(vector_size=int(probe.shape[1]), max_tokens=self.max_tokens)

    def _request(self, texts: Sequence[str]) -> np.ndarray:
        data = request_json(
            self.client,
            "POST",
            "/embeddings",
            provider=self.name,
            json={"model": self._model_id, "input": list(texts)},
        )
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list) or len(items) != len(texts):
            raise RuntimeEmbedError("Invalid embedding response from OpenAI server")

        ordered = sorted(items, key=lambda item: item.get("index", 0))
        try:
            vectors = np.asarray([item["embedding"] for item in ordered], dtype="float32")
        except (KeyError, TypeError, ValueError) as exc:
            raise RuntimeEmbedError("Invalid embedding response from OpenAI server") from exc

        usage = data.get("usage")
        if usage and self.usage_tracker is not None:
            self.usage_tracker.track_usage(
                int(usage.get("prompt_tokens", 0)), int(usage.get("total_tokens", 0))
            )
        return vectors

    def unload(self) -> None:
        self._model_id = None

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        return self._request(texts)

    def count_tokens(self, text: str) -> int:
        return approximate_token_count(text)

    def truncate(self, text: str, max_tokens: int) -> str:
        return truncate_to_approx_tokens(text, max_tokens)

    def close(self) -> None:
        self.unload()
        self.client.close()
