"""Letter retriever — embed the query, search the store, shape the results.

This module is the query-time entry point used by the agent tool, the
HTTP API and the CLI.  It never swallows failures: an unreachable
embedding service or vector store raises, so callers can tell "the search
failed" apart from "the letters say nothing about this".

Usage::

    retriever = LetterRetriever(embedder, store)
    response = retriever.search("Why does Berkshire avoid dividends?", top_k=3)
    for r in response.results:
        print(r.short_ref(), r.similarity, r.text[:80])
"""

from __future__ import annotations

import logging
from typing import Any

from berkshire_rag.ingestion.embedder import Embedder
from berkshire_rag.retrieval.base import VectorStoreBase
from berkshire_rag.retrieval.models import UNKNOWN, SearchResponse, SearchResult

logger = logging.getLogger(__name__)


class LetterRetriever:
    """Semantic search over the stored letter chunks.

    Parameters
    ----------
    embedder:
        Must wrap the same embedding model used at ingestion time.
    store:
        The vector store written by the ingestion pipeline.
    default_top_k:
        Number of results returned when the caller does not say.
    """

    def __init__(self, embedder: Embedder, store: VectorStoreBase, *, default_top_k: int = 5) -> None:
        self._embedder = embedder
        self._store = store
        self.default_top_k = default_top_k

    def search(self, query: str, top_k: int | None = None) -> SearchResponse:
        """Return the *top_k* passages most similar to *query*.

        A blank query yields an empty response without touching external
        services; ``top_k < 1`` is rejected with ``ValueError``.
        Embedding and storage failures propagate.
        """
        k = self.default_top_k if top_k is None else top_k
        if k < 1:
            raise ValueError(f"top_k must be >= 1, got {k}")
        if not query or not query.strip():
            logger.info("Empty query — returning no results")
            return SearchResponse.empty()

        vector = self._embedder.embed_query(query)
        hits = self._store.query(vector, top_k=k)
        results = self._to_results(hits)
        logger.info("Found %d relevant chunk(s) for %r", len(results), query)
        return SearchResponse(results=results, total_found=len(results))

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _to_results(hits: list[dict[str, Any]]) -> list[SearchResult]:
        results: list[SearchResult] = []
        for hit in hits:
            meta = hit.get("metadata") or {}
            results.append(
                SearchResult(
                    text=hit.get("content") or "",
                    year=str(meta.get("year") or UNKNOWN),
                    source=str(meta.get("source") or UNKNOWN),
                    similarity=float(hit.get("score", 0.0)),
                    chunk_id=hit.get("id"),
                )
            )
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results
