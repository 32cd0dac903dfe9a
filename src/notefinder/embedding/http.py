"""HTTP plumbing shared by the remote embedding backends.

Transport failures become ``ConnectivityError``; non-2xx answers become
``ApiStatusError`` so callers can tell an unreachable server from a server
that rejected the request.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx

from notefinder.errors import ApiStatusError, ConnectivityError, RuntimeEmbedError

LOGGER = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


def create_api_client(
    base_url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    merged = dict(DEFAULT_HEADERS)
    if headers:
        merged.update(headers)
    return httpx.Client(
        base_url=base_url.rstrip("/"),
        headers=merged,
        timeout=timeout,
        transport=transport,
    )


def request_json(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    provider: str,
    json: Any = None,
) -> Any:
    started = time.perf_counter()
    try:
        response = client.request(method, url, json=json)
    except httpx.TransportError as exc:
        raise ConnectivityError(
            f"Cannot connect to {provider} at {client.base_url}: {exc}"
        ) from exc

    elapsed_ms = (time.perf_counter() - started) * 1000
    if not response.is_success:
        LOGGER.error(
            "[%s] %s %s failed after %.0fms with status %s",
            provider,
            method,
            url,
            elapsed_ms,
            response.status_code,
        )
        raise ApiStatusError(
            f"{provider} request {method} {url} failed",
            status_code=response.status_code,
            body=response.text,
        )

    LOGGER.debug("[%s] %s %s succeeded in %.0fms", provider, method, url, elapsed_ms)
    try:
        return response.json()
    except ValueError as exc:
        raise RuntimeEmbedError(f"Invalid JSON response from {provider}") from exc
