"""Semantic search interface."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from notefinder.chunking.splitter import split_content
from notefinder.embedding.provider import EmbeddingProvider
from notefinder.index.store import VectorChunkStore
from notefinder.models import Document, QueryTokens, SearchResult, SimilarNote
from notefinder.utils.text import apply_exclusion_patterns

LOGGER = logging.getLogger(__name__)

CANDIDATES_PER_CHUNK = 15


def best_per_path(
    hits: Iterable[SearchResult], source_chunks: Optional[Iterable[str]] = None
) -> List[SimilarNote]:
    """Keep the highest scoring hit for each note, best first.

    ``source_chunks`` pairs each hit with the query chunk that produced it.
    """
    sources = list(source_chunks) if source_chunks is not None else None
    best: Dict[str, SimilarNote] = {}
    for position, hit in enumerate(hits):
        current = best.get(hit.chunk.path)
        if current is not None and current.score >= hit.score:
            continue
        best[hit.chunk.path] = SimilarNote(
            path=hit.chunk.path,
            title=hit.chunk.title,
            score=hit.score,
            content=hit.chunk.content,
            source_chunk=sources[position] if sources is not None else "",
        )
    return sorted(best.values(), key=lambda note: note.score, reverse=True)


def link_exclusions(document: Document) -> List[str]:
    """Paths to leave out when looking for notes related to ``document``."""
    excluded = [document.path]
    for link in document.links:
        excluded.append(link)
        if not link.endswith(".md"):
            excluded.append(f"{link}.md")
    return excluded


class Searcher:
    """High-level API to query the chunk store with free text."""

    def __init__(self, provider: EmbeddingProvider, store: VectorChunkStore) -> None:
        self.provider = provider
        self.store = store

    def query_tokens(self, query: str) -> QueryTokens:
        """Report whether ``query`` exceeds the model's input limit."""
        return QueryTokens(self.provider.count_tokens(query), self.provider.get_max_tokens())

    def search(
        self, query: str, *, top_k: int = 10, min_score: Optional[float] = None
    ) -> List[SimilarNote]:
        """Rank notes against ``query``.

        Queries over the token limit are embedded truncated; ``query_tokens``
        tells callers when that happens.
        """
        if not query.strip():
            return []
        tokens = self.query_tokens(query)
        if tokens.truncated:
            LOGGER.warning(
                "Query is %d tokens, only the first %d are used", tokens.count, tokens.limit
            )
        embedding = self.provider.embed_text(query)
        # Several chunks of one note may rank high; over-fetch before deduplicating.
        hits = self.store.search_similar(embedding, top_k * 3, min_score=min_score)
        return best_per_path(hits)[:top_k]


class SimilarNoteFinder:
    """Finds notes related to a whole document, chunk by chunk."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: VectorChunkStore,
        *,
        exclude_patterns: Iterable[str] = (),
        candidates_per_chunk: int = CANDIDATES_PER_CHUNK,
    ) -> None:
        self.provider = provider
        self.store = store
        self.exclude_patterns = tuple(exclude_patterns)
        self.candidates_per_chunk = candidates_per_chunk

    def find_similar(self, document: Document, limit: int = 5) -> List[SimilarNote]:
        content = apply_exclusion_patterns(document.content, self.exclude_patterns)
        pieces = split_content(
            content, self.provider.get_max_tokens(), self.provider.count_tokens
        )
        if not pieces:
            LOGGER.debug("No content to compare in %s", document.path)
            return []

        embeddings = self.provider.embed_texts(pieces)
        excluded = link_exclusions(document)

        hits: List[SearchResult] = []
        sources: List[str] = []
        for piece, embedding in zip(pieces, embeddings):
            found = self.store.search_similar(
                embedding, self.candidates_per_chunk, exclude_paths=excluded
            )
            hits.extend(found)
            sources.extend([piece] * len(found))

        return best_per_path(hits, sources)[:limit]
