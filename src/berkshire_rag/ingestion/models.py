"""Records flowing through the ingestion pipeline.

Plain frozen dataclasses: each record is created once by one stage and
consumed by the next, never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SourceDocument:
    """Text extracted from one shareholder letter.

    Attributes
    ----------
    file_name:
        Base name of the PDF, e.g. ``"2019.pdf"``.
    year:
        Year label parsed from the file name.
    raw_text:
        Extracted text, pages separated by a blank line.
    page_count:
        Number of pages in the PDF.
    """

    file_name: str
    year: str
    raw_text: str
    page_count: int


@dataclass(frozen=True)
class Chunk:
    """One window of a document's text, sized for embedding."""

    text: str
    ordinal_index: int
    sibling_count: int
    source_file_name: str
    source_year: str

    @property
    def chunk_id(self) -> str:
        """Deterministic id, so re-ingesting a letter overwrites its chunks."""
        return make_chunk_id(self.source_year, self.ordinal_index)


@dataclass(frozen=True)
class EmbeddedChunk:
    """A chunk plus its vector, ready to be upserted."""

    id: str
    text: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_chunk(cls, chunk: Chunk, vector: list[float]) -> EmbeddedChunk:
        return cls(
            id=chunk.chunk_id,
            text=chunk.text,
            vector=list(vector),
            metadata={
                "source": chunk.source_file_name,
                "year": chunk.source_year,
                "chunk_index": chunk.ordinal_index,
                "total_chunks": chunk.sibling_count,
            },
        )


def make_chunk_id(year: str, ordinal_index: int) -> str:
    return f"{year}-chunk-{ordinal_index}"
