"""Embedding generation shared by the ingestion and query paths.

Both paths must embed with the same model or similarity ranking silently
degrades, so the model identifier is pinned in :class:`Embedder` and
recorded on the vector-store collection.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, TypeVar

from berkshire_rag.errors import EmbeddingError
from berkshire_rag.ingestion.models import Chunk, EmbeddedChunk

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from berkshire_rag.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_embeddings(settings: Settings) -> Embeddings:
    """Return the configured LangChain embedding backend."""
    if settings.embedding_provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(
            model_name=settings.embedding_model,
            encode_kwargs={"normalize_embeddings": True},
        )

    from langchain_openai import OpenAIEmbeddings

    settings.require_openai_credentials()
    kwargs: dict = {
        "model": settings.embedding_model,
        "api_key": settings.openai_api_key or "EMPTY",
        "timeout": settings.request_timeout,
        # retries are handled by Embedder so that failures surface as EmbeddingError
        "max_retries": 0,
    }
    if settings.llm_base_url:
        kwargs["base_url"] = settings.llm_base_url
    return OpenAIEmbeddings(**kwargs)


class Embedder:
    """Maps text to fixed-length vectors with bounded retries.

    Parameters
    ----------
    embeddings:
        Any LangChain ``Embeddings`` implementation.
    model_name:
        Identifier of the pinned embedding model.
    max_retries:
        Total attempts per call before giving up.
    backoff_seconds:
        Base delay; attempt *n* waits ``backoff_seconds * 2 ** (n - 1)``.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        *,
        model_name: str,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._embeddings = embeddings
        self.model_name = model_name
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        """Vector length, known after the first successful call."""
        return self._dimension

    def embed_query(self, text: str) -> list[float]:
        vector = self._with_retries("query", lambda: self._embeddings.embed_query(text))
        self._check_dimension([vector])
        return vector

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = self._with_retries(
            f"batch of {len(texts)}",
            lambda: self._embeddings.embed_documents(list(texts)),
        )
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} texts"
            )
        self._check_dimension(vectors)
        return vectors

    def embed_chunks(self, chunks: Sequence[Chunk]) -> list[EmbeddedChunk]:
        """Embed *chunks* in one call and attach ids and metadata."""
        vectors = self.embed_batch([c.text for c in chunks])
        return [EmbeddedChunk.from_chunk(c, v) for c, v in zip(chunks, vectors)]

    # -- internals ------------------------------------------------------------

    def _with_retries(self, label: str, call: Callable[[], T]) -> T:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return call()
            except Exception as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    wait = self.backoff_seconds * 2 ** (attempt - 1)
                    logger.warning(
                        "Embedding %s failed (attempt %d/%d, retry in %.1fs): %s",
                        label, attempt, self.max_retries, wait, exc,
                    )
                    self._sleep(wait)
        raise EmbeddingError(
            f"Embedding {label} failed after {self.max_retries} attempt(s): {last_exc}"
        ) from last_exc

    def _check_dimension(self, vectors: Sequence[Sequence[float]]) -> None:
        for vector in vectors:
            if not vector:
                raise EmbeddingError("Embedding service returned an empty vector")
            if self._dimension is None:
                self._dimension = len(vector)
            elif len(vector) != self._dimension:
                raise EmbeddingError(
                    f"Inconsistent embedding dimension: expected {self._dimension}, got {len(vector)}"
                )


def build_embedder(settings: Settings) -> Embedder:
    """Create the :class:`Embedder` for the configured, pinned model."""
    return Embedder(
        build_embeddings(settings),
        model_name=settings.embedding_model,
        max_retries=settings.embed_max_retries,
        backoff_seconds=settings.embed_retry_backoff,
    )
