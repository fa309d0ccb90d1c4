"""Domain models for search results returned to the agent."""

from __future__ import annotations

from pydantic import BaseModel, Field

UNKNOWN = "unknown"


class SearchResult(BaseModel):
    """A single retrieved passage with the letter it came from.

    Attributes
    ----------
    text:
        The chunk text.
    year:
        Year of the shareholder letter (``"unknown"`` when not recorded).
    source:
        File name of the letter (``"unknown"`` when not recorded).
    similarity:
        Similarity to the query; higher is more similar.
    chunk_id:
        Vector-store id of the chunk, e.g. ``"2019-chunk-4"``.
    """

    text: str
    year: str = UNKNOWN
    source: str = UNKNOWN
    similarity: float
    chunk_id: str | None = None

    def short_ref(self) -> str:
        """Return a compact ``[source, year]`` reference string."""
        return f"[{self.source}, {self.year}]"

    def __str__(self) -> str:  # noqa: D105
        return f"{self.short_ref()} {self.text[:120]}…"


class SearchResponse(BaseModel):
    """Output of one retrieval call."""

    results: list[SearchResult] = Field(default_factory=list)
    total_found: int = 0

    @classmethod
    def empty(cls) -> SearchResponse:
        return cls(results=[], total_found=0)
