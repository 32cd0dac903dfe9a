"""Tests for the HTTP embedding backends using httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Callable, List

import httpx
import numpy as np
import pytest

from notefinder.embedding.base import ProviderConfig, approximate_token_count, truncate_to_approx_tokens
from notefinder.embedding.gemini import GeminiBackend
from notefinder.embedding.http import create_api_client, request_json
from notefinder.embedding.ollama import OllamaBackend
from notefinder.embedding.openai import OpenAIBackend
from notefinder.embedding.registry import available_providers, create_backend
from notefinder.embedding.usage import UsageTracker
from notefinder.errors import ApiStatusError, ConfigurationError, ConnectivityError, RuntimeEmbedError


def no_progress(value: float) -> None:
    pass


class Recorder:
    """MockTransport handler that records requests and answers via ``respond``."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class TestApproximateTokens:
    """Tests for the character-based token estimate."""

    def test_rounds_up(self) -> None:
        assert approximate_token_count("abcdefg") == 2
        assert approximate_token_count("abcdefgh") == 3
        assert approximate_token_count("") == 0

    def test_truncate(self) -> None:
        assert truncate_to_approx_tokens("x" * 100, 10) == "x" * 35


class TestRequestJson:
    """Tests for the shared request helper."""

    def test_transport_error_is_connectivity_error(self) -> None:
        client = create_api_client("http://test", transport=httpx.MockTransport(refuse))
        with pytest.raises(ConnectivityError):
            request_json(client, "GET", "/x", provider="test")

    def test_non_success_is_api_status_error(self) -> None:
        client = create_api_client(
            "http://test",
            transport=httpx.MockTransport(lambda r: httpx.Response(429, text="slow down")),
        )
        with pytest.raises(ApiStatusError) as excinfo:
            request_json(client, "GET", "/x", provider="test")
        assert excinfo.value.status_code == 429
        assert "slow down" in str(excinfo.value)

    def test_invalid_json_is_runtime_error(self) -> None:
        client = create_api_client(
            "http://test", transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))
        )
        with pytest.raises(RuntimeEmbedError):
            request_json(client, "GET", "/x", provider="test")


class TestOllamaBackend:
    """Tests for OllamaBackend."""

    @staticmethod
    def server(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            return httpx.Response(
                200,
                json={
                    "models": [
                        {"name": "nomic-embed-text:latest", "details": {"family": "nomic-bert"}},
                        {"name": "llama3:latest", "details": {"family": "llama"}},
                    ]
                },
            )
        if request.url.path == "/api/embeddings":
            body = json.loads(request.content)
            return httpx.Response(200, json={"embedding": [float(len(body["prompt"])), 1.0, 0.0]})
        return httpx.Response(404)

    def make(self, recorder: Recorder, **config) -> OllamaBackend:
        return OllamaBackend(
            ProviderConfig(provider="ollama", model_id="nomic-embed-text", **config),
            transport=recorder.transport,
        )

    def test_load_probes_vector_size(self) -> None:
        """Loading resolves ':latest' tags and measures the vector size."""
        recorder = Recorder(self.server)
        info = self.make(recorder).load("nomic-embed-text", accelerated=False, progress=no_progress)
        assert info.vector_size == 3
        assert info.max_tokens == 8192

    def test_missing_model_is_configuration_error(self) -> None:
        recorder = Recorder(self.server)
        with pytest.raises(ConfigurationError):
            self.make(recorder).load("mxbai-embed-large", accelerated=False, progress=no_progress)

    def test_unreachable_server(self) -> None:
        recorder = Recorder(refuse)
        with pytest.raises(ConnectivityError):
            self.make(recorder).load("nomic-embed-text", accelerated=False, progress=no_progress)

    def test_embed_sends_one_request_per_text(self) -> None:
        """Ollama has no batch endpoint."""
        recorder = Recorder(self.server)
        backend = self.make(recorder)
        backend.load("nomic-embed-text", accelerated=False, progress=no_progress)
        recorder.requests.clear()

        vectors = backend.embed(["a", "bbb"])

        assert vectors.shape == (2, 3)
        assert vectors.dtype == np.float32
        assert vectors[1, 0] == 3.0
        bodies = [json.loads(r.content) for r in recorder.requests]
        assert bodies == [
            {"model": "nomic-embed-text", "prompt": "a"},
            {"model": "nomic-embed-text", "prompt": "bbb"},
        ]

    def test_list_embedding_models(self) -> None:
        recorder = Recorder(self.server)
        assert self.make(recorder).list_embedding_models() == ["nomic-embed-text:latest"]

    def test_configured_max_tokens(self) -> None:
        recorder = Recorder(self.server)
        backend = self.make(recorder, max_tokens=2048)
        info = backend.load("nomic-embed-text", accelerated=False, progress=no_progress)
        assert info.max_tokens == 2048

    def test_invalid_embedding_response(self) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": "nomic-embed-text"}]})
            return httpx.Response(200, json={"embedding": []})

        with pytest.raises(RuntimeEmbedError):
            self.make(Recorder(respond)).load("nomic-embed-text", accelerated=False, progress=no_progress)


class TestOpenAIBackend:
    """Tests for OpenAIBackend."""

    @staticmethod
    def server(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/embeddings"):
            body = json.loads(request.content)
            data = [
                {"index": i, "embedding": [float(i), 0.5]} for i in range(len(body["input"]))
            ]
            return httpx.Response(
                200,
                json={
                    # Out of order on purpose; the backend sorts by index.
                    "data": list(reversed(data)),
                    "usage": {"prompt_tokens": 4, "total_tokens": 4},
                },
            )
        if request.url.path.endswith("/models"):
            return httpx.Response(200, json={"data": [{"id": "text-embedding-3-small"}]})
        return httpx.Response(404)

    def test_requires_api_key_for_default_url(self) -> None:
        backend = OpenAIBackend(
            ProviderConfig(provider="openai", model_id="text-embedding-3-small"),
            transport=Recorder(self.server).transport,
        )
        with pytest.raises(ConfigurationError):
            backend.load("text-embedding-3-small", accelerated=False, progress=no_progress)

    def test_embed_batch_in_index_order_and_tracks_usage(self) -> None:
        recorder = Recorder(self.server)
        tracker = UsageTracker()
        backend = OpenAIBackend(
            ProviderConfig(provider="openai", model_id="text-embedding-3-small", api_key="sk-test"),
            usage_tracker=tracker,
            transport=recorder.transport,
        )
        info = backend.load("text-embedding-3-small", accelerated=False, progress=no_progress)
        vectors = backend.embed(["a", "b", "c"])

        assert info.vector_size == 2
        assert info.max_tokens == 8191
        assert vectors[:, 0].tolist() == [0.0, 1.0, 2.0]
        assert recorder.requests[-1].headers["Authorization"] == "Bearer sk-test"
        assert recorder.requests[-1].url.path == "/v1/embeddings"
        assert json.loads(recorder.requests[-1].content)["input"] == ["a", "b", "c"]
        assert tracker.total_usage()["tokens"] == 8
        assert tracker.total_usage()["request_count"] == 2

    def test_custom_endpoint_without_key(self) -> None:
        """OpenAI-compatible local servers may not need a key."""
        recorder = Recorder(self.server)
        backend = OpenAIBackend(
            ProviderConfig(provider="openai", model_id="m", base_url="http://localhost:1234/v1"),
            transport=recorder.transport,
        )
        backend.load("m", accelerated=False, progress=no_progress)
        assert "Authorization" not in recorder.requests[-1].headers

    def test_unauthorized_is_api_status_error(self) -> None:
        backend = OpenAIBackend(
            ProviderConfig(provider="openai", model_id="m", api_key="bad"),
            transport=httpx.MockTransport(lambda r: httpx.Response(401, json={"error": "invalid key"})),
        )
        with pytest.raises(ApiStatusError) as excinfo:
            backend.load("m", accelerated=False, progress=no_progress)
        assert excinfo.value.status_code == 401

    def test_list_models(self) -> None:
        backend = OpenAIBackend(
            ProviderConfig(provider="openai", api_key="k"), transport=Recorder(self.server).transport
        )
        assert backend.list_models() == ["text-embedding-3-small"]


class TestGeminiBackend:
    """Tests for GeminiBackend."""

    @staticmethod
    def server(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith(":embedContent"):
            return httpx.Response(200, json={"embedding": {"values": [1.0, 2.0, 3.0, 4.0]}})
        if path.endswith(":batchEmbedContents"):
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={"embeddings": [{"values": [float(i)] * 4} for i in range(len(body["requests"]))]},
            )
        return httpx.Response(404)

    def make(self, recorder: Recorder, api_key: str | None = "g-key") -> GeminiBackend:
        return GeminiBackend(
            ProviderConfig(provider="gemini", model_id="text-embedding-004", api_key=api_key),
            transport=recorder.transport,
        )

    def test_requires_api_key(self) -> None:
        with pytest.raises(ConfigurationError):
            self.make(Recorder(self.server), api_key=None).load(
                "text-embedding-004", accelerated=False, progress=no_progress
            )

    def test_load_and_batch(self) -> None:
        recorder = Recorder(self.server)
        backend = self.make(recorder)
        info = backend.load("text-embedding-004", accelerated=False, progress=no_progress)
        vectors = backend.embed(["a", "b"])

        assert info.vector_size == 4
        assert info.max_tokens == 2048
        assert vectors.shape == (2, 4)
        last = recorder.requests[-1]
        assert last.url.path.endswith("/models/text-embedding-004:batchEmbedContents")
        assert last.headers["x-goog-api-key"] == "g-key"
        assert json.loads(last.content)["requests"][0]["taskType"] == "RETRIEVAL_DOCUMENT"

    def test_single_text_uses_embed_content(self) -> None:
        recorder = Recorder(self.server)
        backend = self.make(recorder)
        backend.load("text-embedding-004", accelerated=False, progress=no_progress)
        backend.embed(["only"])
        assert recorder.requests[-1].url.path.endswith(":embedContent")


class TestRegistry:
    """Tests for create_backend."""

    def test_available_providers(self) -> None:
        assert available_providers() == ["gemini", "local", "ollama", "openai"]

    def test_creates_remote_backend(self) -> None:
        backend = create_backend(ProviderConfig(provider="ollama", model_id="m"))
        try:
            assert isinstance(backend, OllamaBackend)
        finally:
            backend.close()

    def test_unknown_provider(self) -> None:
        with pytest.raises(ConfigurationError):
            create_backend(ProviderConfig(provider="bogus"))  # type: ignore[arg-type]
