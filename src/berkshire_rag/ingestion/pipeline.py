"""Ingestion pipeline — load → chunk → embed → store.

The pipeline is an explicit ordered list of stages run by a small
sequential runner:

    per document:  extract  →  chunk
    per batch:     embed    →  store

Every stage is a plain function from one typed value to the next.  The
runner wraps each run in a :class:`StageResult`: either the final value
or a :class:`StageFailure` naming the stage and subject that failed.  A
corrupt letter therefore costs one document, a failed write costs one
batch, and everything else carries on.  Batches already committed stay
committed, even when the run is cancelled.

Usage::

    settings = get_settings()
    report = run_ingestion(settings.source_dir, settings=settings)
    print(report.summary())
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from berkshire_rag.errors import BerkshireRagError, ConfigurationError
from berkshire_rag.ingestion.chunker import chunk_document
from berkshire_rag.ingestion.embedder import Embedder
from berkshire_rag.ingestion.loader import discover_pdfs, load_document
from berkshire_rag.ingestion.models import Chunk, EmbeddedChunk, SourceDocument
from berkshire_rag.retrieval.base import VectorStoreBase

if TYPE_CHECKING:
    from berkshire_rag.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Stage plumbing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageFailure:
    """Why one document or batch dropped out of the run."""

    stage: str
    subject: str
    error: str
    error_type: str = ""


@dataclass(frozen=True)
class StageResult(Generic[T]):
    """Tagged outcome of running a list of stages on one subject."""

    value: T | None = None
    failure: StageFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class Stage:
    name: str
    run: Callable[[Any], Any]


def run_stages(stages: Sequence[Stage], payload: Any, subject: str) -> StageResult[Any]:
    """Thread *payload* through *stages* in order.

    Recoverable errors (``BerkshireRagError``) end the run for this
    subject and come back as a failure; ``ConfigurationError`` is fatal
    for the whole ingestion and is re-raised.
    """
    value = payload
    for stage in stages:
        try:
            value = stage.run(value)
        except ConfigurationError:
            raise
        except BerkshireRagError as exc:
            logger.error("  ✗ %-15s | %s failed: %s", subject, stage.name, exc)
            return StageResult(
                failure=StageFailure(
                    stage=stage.name,
                    subject=subject,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            )
    return StageResult(value=value)


# ---------------------------------------------------------------------------
# Report / progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChunkedDocument:
    document: SourceDocument
    chunks: list[Chunk]


@dataclass(frozen=True)
class IngestionProgress:
    """Snapshot emitted after every document and every batch."""

    phase: str
    documents_done: int
    documents_total: int
    chunks_embedded: int = 0
    chunks_stored: int = 0
    batches_done: int = 0
    batches_total: int = 0


@dataclass
class IngestionReport:
    """Aggregated outcome of one ingestion run.

    Attributes
    ----------
    documents_processed / documents_failed:
        Letters that made it through (or dropped out of) extract + chunk.
    chunks_total:
        Chunks produced from the processed letters.
    chunks_embedded / chunks_stored:
        Chunks that were embedded / committed to the vector store.
    batches_stored / batches_failed:
        Storage batches committed / rolled back.
    per_year_counts:
        Committed chunk count per letter year.
    failures:
        One :class:`StageFailure` per failed document or batch.
    cancelled:
        ``True`` when the caller aborted the run.
    """

    documents_processed: int = 0
    documents_failed: int = 0
    chunks_total: int = 0
    chunks_embedded: int = 0
    chunks_stored: int = 0
    batches_stored: int = 0
    batches_failed: int = 0
    per_year_counts: dict[str, int] = field(default_factory=dict)
    failures: list[StageFailure] = field(default_factory=list)
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def status(self) -> str:
        """``"complete"``, ``"partial"`` or ``"failed"``."""
        if self.chunks_stored == 0:
            return "failed"
        if self.failures or self.cancelled:
            return "partial"
        return "complete"

    def summary(self) -> str:
        lines = [
            f"Ingestion {self.status}"
            + (" (cancelled)" if self.cancelled else "")
            + f" in {self.elapsed_seconds:.1f}s",
            f"  documents: {self.documents_processed} processed, {self.documents_failed} failed",
            f"  chunks:    {self.chunks_total} produced, {self.chunks_embedded} embedded, "
            f"{self.chunks_stored} stored",
            f"  batches:   {self.batches_stored} stored, {self.batches_failed} failed",
        ]
        for year in sorted(self.per_year_counts):
            lines.append(f"    {year}: {self.per_year_counts[year]} chunks")
        for failure in self.failures:
            lines.append(f"  ✗ {failure.subject} [{failure.stage}] {failure.error}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class IngestionPipeline:
    """Sequences the ingestion stages over a directory of letters.

    Parameters
    ----------
    embedder:
        Embedder for the pinned model.
    store:
        Target vector store.
    chunk_size / chunk_overlap:
        Chunker parameters (characters).
    batch_size:
        Chunks per embed + store batch; each batch is committed atomically.
    extract_workers:
        Threads used for PDF extraction and chunking.  Results are always
        collected in file order.
    on_progress:
        Optional callback receiving :class:`IngestionProgress` snapshots.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStoreBase,
        *,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        batch_size: int = 50,
        extract_workers: int = 1,
        on_progress: Callable[[IngestionProgress], None] | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {chunk_size}")
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap must be >= 0, got {chunk_overlap}")
        if batch_size <= 0:
            raise ValueError(f"batch_size must be > 0, got {batch_size}")

        self._embedder = embedder
        self._store = store
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.batch_size = batch_size
        self.extract_workers = max(1, extract_workers)
        self._on_progress = on_progress
        self._index_ready = False

        self.document_stages: list[Stage] = [
            Stage("extract", self._extract),
            Stage("chunk", self._chunk),
        ]
        self.batch_stages: list[Stage] = [
            Stage("embed", self._embed),
            Stage("store", self._store_batch),
        ]

    # -- public API -----------------------------------------------------------

    def run(self, source_dir: str | Path, cancel_event: threading.Event | None = None) -> IngestionReport:
        """Ingest every PDF in *source_dir*.

        Raises
        ------
        SourceDirectoryError
            When the directory is missing or holds no PDFs.
        ConfigurationError
            When the existing index is incompatible with the embedder.
        """
        cancel = cancel_event or threading.Event()
        t0 = time.monotonic()
        report = IngestionReport()

        paths = discover_pdfs(source_dir)
        logger.info("Step 1: processing %d PDF(s) & chunking text", len(paths))

        chunks: list[Chunk] = []
        done = 0
        for path, result in self._process_documents(paths, cancel):
            if result is None:
                continue
            done += 1
            if result.ok:
                chunked: ChunkedDocument = result.value
                report.documents_processed += 1
                chunks.extend(chunked.chunks)
                logger.info(
                    "  ✓ %-15s | %d pages | %d chunks | %.1fKB",
                    path.name,
                    chunked.document.page_count,
                    len(chunked.chunks),
                    len(chunked.document.raw_text) / 1000,
                )
            else:
                report.documents_failed += 1
                report.failures.append(result.failure)
            self._emit(IngestionProgress("documents", done, len(paths)))

        report.chunks_total = len(chunks)
        logger.info(
            "Processed %d document(s) successfully, %d failed",
            report.documents_processed, report.documents_failed,
        )

        batches = [chunks[i : i + self.batch_size] for i in range(0, len(chunks), self.batch_size)]
        logger.info(
            "Step 2: embedding & storing %d chunk(s) in %d batch(es) (batch size %d)",
            len(chunks), len(batches), self.batch_size,
        )

        for number, batch in enumerate(batches, 1):
            if cancel.is_set():
                break
            subject = f"batch {number}/{len(batches)}"
            result = run_stages(self.batch_stages, batch, subject)
            if result.ok:
                report.batches_stored += 1
                report.chunks_embedded += len(batch)
                report.chunks_stored += result.value
                for chunk in batch:
                    report.per_year_counts[chunk.source_year] = (
                        report.per_year_counts.get(chunk.source_year, 0) + 1
                    )
                logger.info(
                    "  ✓ %s | stored %d/%d chunks (%.1f%%)",
                    subject, report.chunks_stored, len(chunks),
                    100.0 * report.chunks_stored / len(chunks),
                )
            else:
                report.batches_failed += 1
                report.failures.append(result.failure)
                if result.failure.stage == "store":
                    report.chunks_embedded += len(batch)
            self._emit(
                IngestionProgress(
                    "batches",
                    done,
                    len(paths),
                    chunks_embedded=report.chunks_embedded,
                    chunks_stored=report.chunks_stored,
                    batches_done=number,
                    batches_total=len(batches),
                )
            )

        report.cancelled = cancel.is_set()
        if report.cancelled:
            logger.warning("Ingestion cancelled — %d chunk(s) already committed remain stored", report.chunks_stored)
        report.elapsed_seconds = time.monotonic() - t0
        logger.info("%s", report.summary())
        return report

    # -- stages ---------------------------------------------------------------

    def _extract(self, path: Path) -> SourceDocument:
        return load_document(path)

    def _chunk(self, document: SourceDocument) -> ChunkedDocument:
        return ChunkedDocument(document, chunk_document(document, self.chunk_size, self.chunk_overlap))

    def _embed(self, batch: list[Chunk]) -> list[EmbeddedChunk]:
        return self._embedder.embed_chunks(batch)

    def _store_batch(self, records: list[EmbeddedChunk]) -> int:
        if not self._index_ready:
            self._store.create_index(len(records[0].vector), self._embedder.model_name)
            self._index_ready = True
        return self._store.upsert(records)

    # -- internals ------------------------------------------------------------

    def _process_documents(
        self, paths: list[Path], cancel: threading.Event
    ) -> Iterator[tuple[Path, StageResult[Any] | None]]:
        def process(path: Path) -> StageResult[Any] | None:
            if cancel.is_set():
                return None
            return run_stages(self.document_stages, path, path.name)

        if self.extract_workers == 1:
            for path in paths:
                yield path, process(path)
            return

        with ThreadPoolExecutor(max_workers=self.extract_workers) as pool:
            # map() yields in submission order, so chunk order is stable
            yield from zip(paths, pool.map(process, paths))

    def _emit(self, progress: IngestionProgress) -> None:
        if self._on_progress is not None:
            self._on_progress(progress)


def run_ingestion(
    source_dir: str | Path | None = None,
    *,
    settings: Settings,
    embedder: Embedder | None = None,
    store: VectorStoreBase | None = None,
    cancel_event: threading.Event | None = None,
    on_progress: Callable[[IngestionProgress], None] | None = None,
) -> IngestionReport:
    """Run the full ingestion with components built from *settings*.

    *embedder* and *store* may be injected (tests, notebooks); otherwise
    they are created from *settings*.
    """
    if embedder is None:
        from berkshire_rag.ingestion.embedder import build_embedder

        embedder = build_embedder(settings)
    if store is None:
        from berkshire_rag.retrieval.chroma_store import build_vector_store

        store = build_vector_store(settings)

    pipeline = IngestionPipeline(
        embedder,
        store,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        batch_size=settings.batch_size,
        extract_workers=settings.extract_workers,
        on_progress=on_progress,
    )
    return pipeline.run(source_dir or settings.source_dir, cancel_event=cancel_event)
