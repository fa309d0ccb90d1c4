"""Sentence-respecting text chunking.

Chunk boundaries must stay stable between runs: the stored vectors of
previously ingested letters were computed from exactly these windows, so
this is a heuristic kept as-is rather than an exact token-budget splitter.
Its quirks are part of the contract: the sentence that opens a chunk after
an overlap carry is not re-terminated, and the last sentence of a text keeps
its own punctuation as well as the synthetic one.
"""

from __future__ import annotations

import re

from berkshire_rag.ingestion.models import Chunk, SourceDocument

# Terminal punctuation followed by whitespace.
_SENTENCE_BOUNDARY = re.compile(r"[.!?]+\s+")

# Overlap is carried as whole words, assuming ~5 characters per word.
CHARS_PER_WORD = 5


def split_sentences(text: str) -> list[str]:
    """Split on terminal punctuation followed by whitespace; drop blanks.

    The delimiter is consumed, so only a trailing sentence at the very end
    of the text keeps its punctuation.
    """
    return [s for s in _SENTENCE_BOUNDARY.split(text) if s.strip()]


def chunk_text(text: str, target_size: int = 1000, overlap_size: int = 200) -> list[str]:
    """Split *text* into overlapping, sentence-aligned chunks.

    Parameters
    ----------
    text:
        Raw document text.
    target_size:
        Soft maximum number of characters per chunk.  A single sentence
        longer than this is emitted whole as its own chunk.
    overlap_size:
        Approximate number of characters carried from the end of one chunk
        into the start of the next (converted to ``overlap_size // 5`` words).

    Returns
    -------
    list[str]
        Chunks in document order; empty for empty input.
    """
    if target_size <= 0:
        raise ValueError(f"target_size must be > 0, got {target_size}")
    if overlap_size < 0:
        raise ValueError(f"overlap_size must be >= 0, got {overlap_size}")

    overlap_words = overlap_size // CHARS_PER_WORD
    chunks: list[str] = []
    buffer = ""

    for sentence in split_sentences(text):
        if buffer and len(buffer + sentence) > target_size:
            chunks.append(buffer.strip())
            carried = buffer.split()[-overlap_words:] if overlap_words else []
            buffer = " ".join(carried + [sentence])
        else:
            buffer += sentence + ". "

    if buffer.strip():
        chunks.append(buffer.strip())

    return chunks


def chunk_document(
    document: SourceDocument,
    target_size: int = 1000,
    overlap_size: int = 200,
) -> list[Chunk]:
    """Chunk one letter, tagging every piece with its position and origin."""
    pieces = chunk_text(document.raw_text, target_size, overlap_size)
    return [
        Chunk(
            text=piece,
            ordinal_index=index,
            sibling_count=len(pieces),
            source_file_name=document.file_name,
            source_year=document.year,
        )
        for index, piece in enumerate(pieces)
    ]
