"""Backend selection by provider name."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from notefinder.embedding.base import EmbeddingBackend, ProviderConfig
from notefinder.embedding.usage import UsageTracker
from notefinder.errors import ConfigurationError


def _local(config: ProviderConfig, usage_tracker: Optional[UsageTracker]) -> EmbeddingBackend:
    # Imported lazily so remote providers never pull in torch.
    from notefinder.embedding.encoder import SentenceTransformerBackend

    return SentenceTransformerBackend(config)


def _ollama(config: ProviderConfig, usage_tracker: Optional[UsageTracker]) -> EmbeddingBackend:
    from notefinder.embedding.ollama import OllamaBackend

    return OllamaBackend(config)


def _openai(config: ProviderConfig, usage_tracker: Optional[UsageTracker]) -> EmbeddingBackend:
    from notefinder.embedding.openai import OpenAIBackend

    return OpenAIBackend(config, usage_tracker=usage_tracker)


def _gemini(config: ProviderConfig, usage_tracker: Optional[UsageTracker]) -> EmbeddingBackend:
    from notefinder.embedding.gemini import GeminiBackend

    return GeminiBackend(config)


_BACKENDS: Dict[str, Callable[[ProviderConfig, Optional[UsageTracker]], EmbeddingBackend]] = {
    "local": _local,
    "ollama": _ollama,
    "openai": _openai,
    "gemini": _gemini,
}


def available_providers() -> list[str]:
    return sorted(_BACKENDS)


def create_backend(
    config: ProviderConfig, *, usage_tracker: Optional[UsageTracker] = None
) -> EmbeddingBackend:
    try:
        factory = _BACKENDS[config.provider]
    except KeyError:
        raise ConfigurationError(
            f"Unknown embedding provider {config.provider!r}; "
            f"expected one of {', '.join(available_providers())}"
        ) from None
    return factory(config, usage_tracker)
