"""FastAPI application exposing search over a running engine."""

from __future__ import annotations

import logging
from typing import Any, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from notefinder import __version__
from notefinder.errors import (
    ConnectivityError,
    DocumentNotFoundError,
    ModelNotLoadedError,
    NoteFinderError,
)
from notefinder.models import SimilarNote

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="NoteFinder", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.engine = None


class SearchPayload(BaseModel):
    query: str
    top_k: int = 10


class SimilarPayload(BaseModel):
    path: str
    limit: int = 5


def _get_engine(request: Request) -> Any:
    engine = request.app.state.engine
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not started")
    return engine


def _error_status(exc: NoteFinderError) -> int:
    if isinstance(exc, DocumentNotFoundError):
        return 404
    if isinstance(exc, (ModelNotLoadedError, ConnectivityError)):
        return 503
    return 500


@app.post("/search")
def search_notes(payload: SearchPayload, request: Request) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    top_k = max(1, min(payload.top_k, 50))
    engine = _get_engine(request)
    try:
        results = engine.search(query, top_k=top_k)
        tokens = engine.query_tokens(query)
    except NoteFinderError as exc:
        LOGGER.error("Search failed: %s", exc)
        raise HTTPException(status_code=_error_status(exc), detail=str(exc))
    return {
        "results": results,
        "query_tokens": tokens.count,
        "max_tokens": tokens.limit,
        "truncated": tokens.truncated,
    }


@app.post("/similar")
def similar_notes(payload: SimilarPayload, request: Request) -> dict[str, List[SimilarNote]]:
    path = payload.path.strip()
    if not path:
        raise HTTPException(status_code=400, detail="Empty path")

    limit = max(1, min(payload.limit, 50))
    engine = _get_engine(request)
    try:
        results = engine.similar(path, limit=limit)
    except NoteFinderError as exc:
        LOGGER.error("Similar note lookup failed for %s: %s", path, exc)
        raise HTTPException(status_code=_error_status(exc), detail=str(exc))
    return {"results": results}


@app.get("/status")
def engine_status(request: Request) -> dict[str, Any]:
    return _get_engine(request).status()
