"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import TYPE_CHECKING, Any

import chromadb

from berkshire_rag.errors import ConfigurationError, StorageError
from berkshire_rag.ingestion.models import EmbeddedChunk
from berkshire_rag.retrieval.base import VectorStoreBase

if TYPE_CHECKING:
    from berkshire_rag.config import Settings

logger = logging.getLogger(__name__)

_SPACE_KEY = "hnsw:space"
_MODEL_KEY = "embedding_model"
_DIMENSION_KEY = "dimension"


def distance_to_similarity(distance: float, space: str) -> float:
    """Convert a Chroma distance into a score where higher = more similar.

    Chroma reports ``1 - cos`` for cosine and ``1 - dot`` for inner
    product, so both map back with ``1 - d``; squared L2 is squashed into
    ``(0, 1]``.
    """
    if space in ("cosine", "ip"):
        return 1.0 - distance
    return 1.0 / (1.0 + distance)


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    client:
        An existing Chroma client.  When *None*, a ``PersistentClient`` is
        opened at *persist_dir* if given, otherwise an ``HttpClient`` at
        *host*:*port*.
    distance_metric:
        ``"cosine"`` | ``"ip"`` | ``"l2"`` — used when creating the collection.
    embedding_model:
        Pinned model identifier; reading a collection built with a
        different model is refused.
    timeout:
        Seconds to wait for a read (query, count, heartbeat) before raising
        ``StorageError``; ``0`` waits indefinitely.  Writes are not bounded:
        an abandoned upsert could still land after its rollback ran.
    """

    def __init__(
        self,
        collection_name: str = "berkshire_letters",
        *,
        client: Any = None,
        host: str = "localhost",
        port: int = 8000,
        persist_dir: str = "",
        distance_metric: str = "cosine",
        embedding_model: str | None = None,
        timeout: float = 0.0,
    ) -> None:
        super().__init__(collection_name)
        self.timeout = timeout
        self._pool: ThreadPoolExecutor | None = None
        self.distance_metric = distance_metric
        self.embedding_model = embedding_model
        if client is None:
            try:
                if persist_dir:
                    client = chromadb.PersistentClient(path=persist_dir)
                else:
                    client = chromadb.HttpClient(host=host, port=port)
            except Exception as exc:
                target = persist_dir or f"{host}:{port}"
                raise StorageError(f"Could not connect to Chroma at {target}: {exc}") from exc
        self._client = client
        self._collection: Any = None

    # -- VectorStoreBase overrides --------------------------------------------

    def create_index(self, dimension: int, embedding_model: str) -> None:
        try:
            collection = self._client.get_collection(name=self.collection_name, embedding_function=None)
        except Exception:
            collection = None

        if collection is None:
            try:
                collection = self._client.create_collection(
                    name=self.collection_name,
                    metadata={
                        _SPACE_KEY: self.distance_metric,
                        _MODEL_KEY: embedding_model,
                        _DIMENSION_KEY: dimension,
                    },
                    embedding_function=None,
                )
            except Exception as exc:
                raise StorageError(f"Could not create collection {self.collection_name!r}: {exc}") from exc
            logger.info("Created collection %r", self.collection_name)

        meta = collection.metadata or {}
        self._check_compatible(meta, embedding_model=embedding_model, dimension=dimension)
        self.embedding_model = embedding_model
        self._collection = collection
        logger.info(
            "Collection %r ready (space=%s, model=%s, dim=%d)",
            self.collection_name, meta.get(_SPACE_KEY, self.distance_metric), embedding_model, dimension,
        )

    def upsert(self, records: Sequence[EmbeddedChunk]) -> int:
        if not records:
            return 0
        collection = self._require_collection()
        ids = [r.id for r in records]
        if len(set(ids)) != len(ids):
            raise StorageError("Batch contains duplicate chunk ids")

        try:
            previous = collection.get(ids=ids, include=["embeddings", "documents", "metadatas"])
        except Exception as exc:
            raise StorageError(f"Could not read existing records before upsert: {exc}") from exc

        try:
            collection.upsert(
                ids=ids,
                embeddings=[r.vector for r in records],
                documents=[r.text for r in records],
                metadatas=[r.metadata for r in records],
            )
        except Exception as exc:
            self._restore(collection, ids, previous)
            raise StorageError(f"Upsert of {len(ids)} records failed and was rolled back: {exc}") from exc
        return len(ids)

    def query(self, vector: list[float], *, top_k: int = 5) -> list[dict[str, Any]]:
        collection = self._require_collection()
        space = (collection.metadata or {}).get(_SPACE_KEY, "l2")
        try:
            results = self._bounded(
                "Query",
                collection.query,
                query_embeddings=[vector],
                n_results=top_k,
                include=["documents", "metadatas", "distances"],
            )
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Query against {self.collection_name!r} failed: {exc}") from exc

        hits: list[dict[str, Any]] = []
        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        for doc_id, content, meta, dist in zip(ids, docs, metas, distances):
            hits.append(
                {
                    "id": doc_id,
                    "content": content or "",
                    "distance": dist,
                    "score": distance_to_similarity(dist, space),
                    "metadata": meta or {},
                }
            )
        hits.sort(key=lambda h: h["score"], reverse=True)
        return hits

    def count(self) -> int:
        try:
            return self._bounded("Count", self._require_collection().count)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Could not count records: {exc}") from exc

    def health_check(self) -> bool:
        try:
            self._bounded("Heartbeat", self._client.heartbeat)
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    def delete(self, ids: list[str]) -> None:
        try:
            self._require_collection().delete(ids=ids)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Delete failed: {exc}") from exc

    # -- internals ------------------------------------------------------------

    def _bounded(self, what: str, call: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a read against Chroma, giving up after ``self.timeout`` seconds."""
        if not self.timeout:
            return call(*args, **kwargs)
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="chroma-read")
        future = self._pool.submit(call, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeout as exc:
            future.cancel()
            raise StorageError(
                f"{what} against {self.collection_name!r} timed out after {self.timeout:g}s"
            ) from exc

    def _require_collection(self) -> Any:
        if self._collection is not None:
            return self._collection
        try:
            collection = self._client.get_collection(name=self.collection_name, embedding_function=None)
        except Exception as exc:
            raise StorageError(
                f"Collection {self.collection_name!r} is not available (has ingestion been run?): {exc}"
            ) from exc
        self._check_compatible(collection.metadata or {}, embedding_model=self.embedding_model)
        self._collection = collection
        return collection

    def _check_compatible(
        self,
        meta: dict[str, Any],
        *,
        embedding_model: str | None,
        dimension: int | None = None,
    ) -> None:
        stored_model = meta.get(_MODEL_KEY)
        if embedding_model and stored_model and stored_model != embedding_model:
            raise ConfigurationError(
                f"Collection {self.collection_name!r} was built with embedding model "
                f"{stored_model!r}, but {embedding_model!r} is configured"
            )
        stored_dim = meta.get(_DIMENSION_KEY)
        if dimension is not None and stored_dim is not None and int(stored_dim) != dimension:
            raise ConfigurationError(
                f"Collection {self.collection_name!r} has dimension {stored_dim}, "
                f"but the embedding model produces {dimension}"
            )
        stored_space = meta.get(_SPACE_KEY)
        if dimension is not None and stored_space and stored_space != self.distance_metric:
            raise ConfigurationError(
                f"Collection {self.collection_name!r} uses distance {stored_space!r}, "
                f"but {self.distance_metric!r} is configured"
            )

    def _restore(self, collection: Any, ids: list[str], previous: dict[str, Any]) -> None:
        """Undo a failed upsert: drop new ids, put back prior versions."""
        prior_ids = list(previous.get("ids") or [])
        new_ids = [i for i in ids if i not in set(prior_ids)]
        try:
            if new_ids:
                collection.delete(ids=new_ids)
            if prior_ids:
                collection.upsert(
                    ids=prior_ids,
                    embeddings=previous["embeddings"],
                    documents=previous["documents"],
                    metadatas=previous["metadatas"],
                )
        except Exception:
            logger.exception("Rollback of %d record(s) in %r failed", len(ids), self.collection_name)


def build_vector_store(settings: Settings) -> ChromaVectorStore:
    """Create the Chroma store described by *settings*."""
    return ChromaVectorStore(
        settings.chroma_collection,
        host=settings.chroma_host,
        port=settings.chroma_port,
        persist_dir=settings.chroma_persist_dir,
        distance_metric=settings.distance_metric,
        embedding_model=settings.embedding_model,
        timeout=settings.chroma_timeout,
    )
