"""Unit tests for the ingestion pipeline.

Letters are real (tiny) PDFs; the embedder uses keyword vectors and the
store is in memory, so every run is deterministic.
"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from berkshire_rag.config import Settings
from berkshire_rag.errors import ConfigurationError, ExtractionError, SourceDirectoryError, StorageError
from berkshire_rag.ingestion.pipeline import (
    IngestionPipeline,
    IngestionProgress,
    IngestionReport,
    Stage,
    StageFailure,
    run_ingestion,
    run_stages,
)


def _pipeline(embedder, store, **kwargs) -> IngestionPipeline:
    kwargs.setdefault("chunk_size", 200)
    kwargs.setdefault("chunk_overlap", 40)
    kwargs.setdefault("batch_size", 4)
    return IngestionPipeline(embedder, store, **kwargs)


class TestRunStages:
    def test_threads_value_through_stages(self) -> None:
        stages = [Stage("double", lambda x: x * 2), Stage("inc", lambda x: x + 1)]
        result = run_stages(stages, 5, "subject")

        assert result.ok
        assert result.value == 11

    def test_recoverable_error_becomes_failure(self) -> None:
        def explode(_):
            raise ExtractionError("1999.pdf", "corrupt")

        ran_after = []
        stages = [Stage("extract", explode), Stage("chunk", ran_after.append)]

        result = run_stages(stages, "1999.pdf", "1999.pdf")

        assert not result.ok
        assert result.failure == StageFailure(
            stage="extract", subject="1999.pdf", error="1999.pdf: corrupt", error_type="ExtractionError"
        )
        assert ran_after == []

    def test_configuration_error_is_fatal(self) -> None:
        def explode(_):
            raise ConfigurationError("model mismatch")

        with pytest.raises(ConfigurationError):
            run_stages([Stage("store", explode)], [], "batch 1/1")


class TestIngestionReport:
    def test_status(self) -> None:
        assert IngestionReport().status == "failed"
        assert IngestionReport(chunks_stored=3).status == "complete"
        assert IngestionReport(chunks_stored=3, cancelled=True).status == "partial"
        failure = StageFailure("extract", "x.pdf", "boom")
        assert IngestionReport(chunks_stored=3, failures=[failure]).status == "partial"

    def test_summary_lists_years_and_failures(self) -> None:
        report = IngestionReport(
            documents_processed=1,
            documents_failed=1,
            chunks_stored=2,
            per_year_counts={"2019": 2},
            failures=[StageFailure("extract", "bad.pdf", "not a pdf")],
        )
        text = report.summary()

        assert "Ingestion partial" in text
        assert "2019: 2 chunks" in text
        assert "bad.pdf [extract] not a pdf" in text


class TestIngestionPipeline:
    def test_single_letter_ids_and_metadata(self, letters_dir, embedder, memory_store) -> None:
        store = memory_store()
        report = _pipeline(embedder, store).run(letters_dir(years=("2019",)))

        n = report.chunks_total
        assert n > 1
        assert report.status == "complete"
        assert sorted(store.records) == sorted(f"2019-chunk-{i}" for i in range(n))
        for record in store.records.values():
            assert record.metadata["source"] == "2019.pdf"
            assert record.metadata["year"] == "2019"
            assert record.metadata["total_chunks"] == n
        assert report.per_year_counts == {"2019": n}
        assert store.index == (embedder.dimension, "keyword-test")

    def test_corrupt_letter_is_skipped(self, letters_dir, embedder, memory_store) -> None:
        root = letters_dir(years=("2015", "2016", "2017", "2018"), corrupt=("2014.pdf",))
        store = memory_store()

        report = _pipeline(embedder, store).run(root)

        assert report.documents_processed == 4
        assert report.documents_failed == 1
        assert report.failures[0].subject == "2014.pdf"
        assert report.failures[0].stage == "extract"
        assert set(report.per_year_counts) == {"2015", "2016", "2017", "2018"}
        assert report.status == "partial"
        assert not any(key.startswith("2014") for key in store.records)

    def test_reingestion_overwrites(self, letters_dir, embedder, memory_store) -> None:
        root = letters_dir(years=("2019", "2020"))
        store = memory_store()

        first = _pipeline(embedder, store).run(root)
        count_after_first = store.count()
        second = _pipeline(embedder, store).run(root)

        assert first.chunks_stored == second.chunks_stored
        assert store.count() == count_after_first

    def test_failed_batch_leaves_other_batches_committed(self, letters_dir, embedder, memory_store) -> None:
        store = memory_store(fail_on_upserts=(2,))

        report = _pipeline(embedder, store, batch_size=2).run(letters_dir(years=("2019", "2020")))

        assert report.batches_failed == 1
        assert report.batches_stored >= 1
        assert report.failures[0].stage == "store"
        assert report.failures[0].error_type == "StorageError"
        assert report.chunks_stored == report.chunks_total - 2
        assert store.count() == report.chunks_stored
        assert "2019-chunk-2" not in store.records
        assert "2019-chunk-3" not in store.records

    def test_cancel_before_batches_stores_nothing(self, letters_dir, embedder, memory_store) -> None:
        cancel = threading.Event()
        cancel.set()
        store = memory_store()

        report = _pipeline(embedder, store).run(letters_dir(years=("2019",)), cancel_event=cancel)

        assert report.cancelled
        assert store.count() == 0
        assert report.status == "failed"

    def test_cancel_mid_run_keeps_committed_batches(self, letters_dir, embedder, memory_store) -> None:
        cancel = threading.Event()
        store = memory_store()

        def on_progress(progress: IngestionProgress) -> None:
            if progress.phase == "batches" and progress.batches_done == 1:
                cancel.set()

        pipeline = _pipeline(embedder, store, batch_size=2, on_progress=on_progress)
        report = pipeline.run(letters_dir(years=("2019", "2020")), cancel_event=cancel)

        assert report.cancelled
        assert report.batches_stored == 1
        assert store.count() == 2
        assert report.status == "partial"

    def test_progress_events(self, letters_dir, embedder, memory_store) -> None:
        events: list[IngestionProgress] = []
        _pipeline(embedder, memory_store(), on_progress=events.append).run(letters_dir(years=("2019", "2020")))

        doc_events = [e for e in events if e.phase == "documents"]
        batch_events = [e for e in events if e.phase == "batches"]
        assert [e.documents_done for e in doc_events] == [1, 2]
        assert batch_events[-1].batches_done == batch_events[-1].batches_total
        assert batch_events[-1].chunks_stored == batch_events[-1].chunks_embedded

    def test_parallel_extraction_keeps_order(self, letters_dir, embedder, memory_store) -> None:
        root = letters_dir(years=("2016", "2017", "2018", "2019"))
        sequential, parallel = memory_store(), memory_store()

        _pipeline(embedder, sequential).run(root)
        _pipeline(embedder, parallel, extract_workers=3).run(root)

        assert list(parallel.records) == list(sequential.records)

    def test_missing_source_directory(self, tmp_path: Path, embedder, memory_store) -> None:
        with pytest.raises(SourceDirectoryError):
            _pipeline(embedder, memory_store()).run(tmp_path / "missing")

    def test_directory_without_pdfs(self, tmp_path: Path, embedder, memory_store) -> None:
        with pytest.raises(SourceDirectoryError):
            _pipeline(embedder, memory_store()).run(tmp_path)

    def test_incompatible_index_aborts(self, letters_dir, embedder, memory_store) -> None:
        store = memory_store()
        store.index = (1536, "text-embedding-3-large")

        with pytest.raises(ConfigurationError):
            _pipeline(embedder, store).run(letters_dir(years=("2019",)))

    @pytest.mark.parametrize(
        "kwargs",
        [{"chunk_size": 0}, {"chunk_overlap": -1}, {"batch_size": 0}],
    )
    def test_invalid_parameters(self, embedder, memory_store, kwargs) -> None:
        with pytest.raises(ValueError):
            _pipeline(embedder, memory_store(), **kwargs)


class TestRunIngestion:
    def test_uses_settings(self, letters_dir, embedder, memory_store) -> None:
        root = letters_dir(years=("2019",))
        settings = Settings(_env_file=None, source_dir=str(root), chunk_size=150, chunk_overlap=30, batch_size=3)
        store = memory_store()

        report = run_ingestion(settings=settings, embedder=embedder, store=store)

        assert report.status == "complete"
        assert store.upsert_calls == report.batches_stored
        assert report.batches_stored == -(-report.chunks_total // 3)

    def test_store_errors_are_reported_not_raised(self, letters_dir, embedder, memory_store) -> None:
        store = memory_store(fail_on_upserts=range(1, 100))
        settings = Settings(_env_file=None)

        report = run_ingestion(letters_dir(years=("2019",)), settings=settings, embedder=embedder, store=store)

        assert report.status == "failed"
        assert report.chunks_stored == 0
        assert all(f.error_type == StorageError.__name__ for f in report.failures)

