"""Shared pytest configuration and fixtures.

Everything here runs without OpenAI or Chroma: letters are tiny PDFs
written on the fly, embeddings are keyword counts and the vector store
is an in-memory dict.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
from langchain_core.embeddings import Embeddings

from berkshire_rag.errors import ConfigurationError, StorageError
from berkshire_rag.ingestion.embedder import Embedder
from berkshire_rag.ingestion.models import EmbeddedChunk
from berkshire_rag.retrieval.base import VectorStoreBase


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Minimal PDF writer ─────────────────────────────────────────────────


def make_pdf(pages: Sequence[str]) -> bytes:
    """Build a small but well-formed PDF with one line of text per page."""
    page_ids = [4 + 2 * i for i in range(len(pages))]
    kids = " ".join(f"{pid} 0 R" for pid in page_ids)
    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for page_id, text in zip(page_ids, pages):
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>"
            ).encode()
        )
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        stream = f"BT /F1 10 Tf 36 740 Td ({escaped}) Tj ET".encode("latin-1")
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode()
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_at}\n%%EOF\n"
    ).encode()
    return bytes(out)


def letter_pages(year: str) -> list[str]:
    """Two pages of plausible letter prose mentioning *year*."""
    return [
        f"To the Shareholders of Berkshire Hathaway Inc. Our gain in net worth during {year} was "
        "satisfactory. Insurance float grew again this year. Float is money we hold but do not own. "
        "Buffett prefers wonderful businesses at fair prices. Intrinsic value is what matters.",
        f"Charlie and I reviewed every acquisition made in {year}. We avoid businesses we do not "
        "understand. Buybacks make sense only below intrinsic value. We pay no dividend because "
        "retained earnings compound. Our managers run their businesses with great autonomy.",
    ]


@pytest.fixture()
def letters_dir(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing ``<year>.pdf`` letters (and optional corrupt files) into a temp dir."""

    def _write(years: Sequence[str] = ("2019",), corrupt: Sequence[str] = ()) -> Path:
        root = tmp_path / "letters"
        root.mkdir(exist_ok=True)
        for year in years:
            (root / f"{year}.pdf").write_bytes(make_pdf(letter_pages(year)))
        for name in corrupt:
            (root / name).write_bytes(b"this is not a pdf at all")
        return root

    return _write


# ── Embeddings & vector store fakes ────────────────────────────────────

VOCABULARY = [
    "insurance",
    "float",
    "buyback",
    "dividend",
    "intrinsic",
    "acquisition",
    "railroad",
    "energy",
    "derivative",
    "succession",
]


class KeywordEmbeddings(Embeddings):
    """Bag-of-keywords vectors: similar wording gives similar vectors."""

    def __init__(self) -> None:
        self.document_calls = 0
        self.query_calls = 0

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY] + [0.1]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls += 1
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        self.query_calls += 1
        return self._vector(text)


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorStore(VectorStoreBase):
    """Dict-backed store with all-or-nothing upserts.

    ``fail_on_upserts`` lists 1-based upsert call numbers that raise
    ``StorageError`` without writing anything.
    """

    def __init__(self, *, fail_on_upserts: Sequence[int] = ()) -> None:
        super().__init__("test-letters")
        self.records: dict[str, EmbeddedChunk] = {}
        self.index: tuple[int, str] | None = None
        self.upsert_calls = 0
        self._fail_on = set(fail_on_upserts)

    def create_index(self, dimension: int, embedding_model: str) -> None:
        if self.index is not None and self.index != (dimension, embedding_model):
            raise ConfigurationError(f"index built with {self.index}, got {(dimension, embedding_model)}")
        self.index = (dimension, embedding_model)

    def upsert(self, records: Sequence[EmbeddedChunk]) -> int:
        self.upsert_calls += 1
        if self.upsert_calls in self._fail_on:
            raise StorageError(f"simulated write failure on upsert {self.upsert_calls}")
        staged = dict(self.records)
        for record in records:
            staged[record.id] = record
        self.records = staged
        return len(records)

    def query(self, vector: list[float], *, top_k: int = 5) -> list[dict[str, Any]]:
        hits = []
        for record in self.records.values():
            score = _cosine(vector, record.vector)
            hits.append(
                {
                    "id": record.id,
                    "content": record.text,
                    "distance": 1.0 - score,
                    "score": score,
                    "metadata": dict(record.metadata),
                }
            )
        hits.sort(key=lambda h: h["score"], reverse=True)
        return hits[:top_k]

    def count(self) -> int:
        return len(self.records)

    def health_check(self) -> bool:
        return True

    def delete(self, ids: list[str]) -> None:
        for doc_id in ids:
            self.records.pop(doc_id, None)


@pytest.fixture()
def keyword_embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture()
def embedder(keyword_embeddings: KeywordEmbeddings) -> Embedder:
    return Embedder(keyword_embeddings, model_name="keyword-test", sleep=lambda _: None)


@pytest.fixture()
def memory_store() -> Callable[..., InMemoryVectorStore]:
    """Factory for :class:`InMemoryVectorStore` instances."""
    return InMemoryVectorStore
