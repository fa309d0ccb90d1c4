"""
Retrieval — vector storage and query-time search.

The vector store sits behind :class:`VectorStoreBase` so that the
ingestion pipeline and the retriever share one write/read contract.

Public surface
--------------
- :class:`LetterRetriever` — query-time search returning :class:`SearchResponse`.
- :class:`VectorStoreBase` — abstract backend.
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`SearchResult`, :class:`SearchResponse` — data models.
"""

from berkshire_rag.retrieval.base import VectorStoreBase
from berkshire_rag.retrieval.models import SearchResponse, SearchResult
from berkshire_rag.retrieval.retriever import LetterRetriever

__all__ = [
    "ChromaVectorStore",
    "LetterRetriever",
    "SearchResponse",
    "SearchResult",
    "VectorStoreBase",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from berkshire_rag.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
