"""Abstract base class for vector-store backends.

The ingestion pipeline writes through this interface and the retriever
reads through it, so the write and read paths always agree on the
distance metric and on how distances become similarity scores.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from berkshire_rag.ingestion.models import EmbeddedChunk


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def create_index(self, dimension: int, embedding_model: str) -> None:
        """Create the index if it does not exist.

        Calling this for an index that already exists is not an error, but
        an existing index built with a different *embedding_model* or
        *dimension* must be rejected with ``ConfigurationError``.
        """
        ...

    @abstractmethod
    def upsert(self, records: Sequence[EmbeddedChunk]) -> int:
        """Insert or replace *records* by id, all-or-nothing.

        Returns the number of records written.  On failure nothing from
        this call remains visible and ``StorageError`` is raised.
        """
        ...

    @abstractmethod
    def query(self, vector: list[float], *, top_k: int = 5) -> list[dict[str, Any]]:
        """Return the *top_k* nearest neighbours of *vector*.

        Each hit dict contains:

        * ``"id"`` – chunk identifier
        * ``"content"`` – chunk text
        * ``"distance"`` – raw backend distance
        * ``"score"`` – similarity (higher = more similar)
        * ``"metadata"`` – stored metadata dict

        Hits are ordered by descending ``score``.  Failures raise
        ``StorageError``.
        """
        ...

    @abstractmethod
    def count(self) -> int:
        """Number of records currently stored."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    def delete(self, ids: list[str]) -> None:
        """Delete records by id.  Optional — raises by default."""
        raise NotImplementedError(f"{type(self).__name__} does not support delete")
