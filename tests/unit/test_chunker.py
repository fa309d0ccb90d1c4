"""Unit tests for the sentence-respecting chunker."""

from __future__ import annotations

import re

import pytest

from berkshire_rag.ingestion.chunker import chunk_document, chunk_text, split_sentences
from berkshire_rag.ingestion.models import SourceDocument

BUFFETT_TEXT = (
    "Buffett believes in value investing. He avoids speculation. "
    "Berkshire focuses on long-term ownership."
)


def _sentences(n: int, width: int = 40) -> str:
    """*n* distinct sentences of roughly *width* characters."""
    return " ".join(f"Sentence {i:03d} {'x' * (width - 14)}." for i in range(n))


class TestSplitSentences:
    def test_splits_on_terminal_punctuation(self) -> None:
        assert split_sentences("One. Two! Three? Four.") == ["One", "Two", "Three", "Four."]

    def test_punctuation_without_following_space_is_not_a_boundary(self) -> None:
        assert split_sentences("Berkshire Hathaway Inc.\nOmaha.") == ["Berkshire Hathaway Inc", "Omaha."]
        assert split_sentences("Book value rose 6.4% in 2019") == ["Book value rose 6.4% in 2019"]

    def test_repeated_punctuation_is_one_boundary(self) -> None:
        assert split_sentences("Really?! Yes...  Indeed") == ["Really", "Yes", "Indeed"]

    def test_blank_units_are_dropped(self) -> None:
        assert split_sentences("   ") == []
        assert split_sentences("") == []


class TestChunkText:
    def test_empty_input_gives_no_chunks(self) -> None:
        assert chunk_text("") == []
        assert chunk_text("  \n  ") == []

    def test_short_text_is_one_chunk(self) -> None:
        assert chunk_text("Hello world") == ["Hello world."]

    def test_final_sentence_keeps_its_own_punctuation(self) -> None:
        assert chunk_text("Hello world.") == ["Hello world.."]

    def test_buffett_example_with_overlap(self) -> None:
        chunks = chunk_text(BUFFETT_TEXT, target_size=50, overlap_size=10)

        assert chunks == [
            "Buffett believes in value investing.",
            "value investing. He avoids speculation",
            "avoids speculation Berkshire focuses on long-term ownership.",
        ]

    def test_next_chunk_starts_with_carried_words(self) -> None:
        chunks = chunk_text(BUFFETT_TEXT, target_size=50, overlap_size=10)
        carried = " ".join(chunks[0].split()[-2:])
        assert chunks[1].startswith(carried)

    def test_deterministic(self) -> None:
        text = _sentences(40)
        assert chunk_text(text, 200, 50) == chunk_text(text, 200, 50)

    def test_oversized_sentence_is_never_split(self) -> None:
        long_sentence = "A" * 300
        text = f"{long_sentence}. Short one. Another short one."

        chunks = chunk_text(text, target_size=100, overlap_size=0)

        assert chunks[0] == long_sentence + "."
        assert not any("A" * 10 in c for c in chunks[1:])

    def test_chunks_stay_near_target_without_overlap(self) -> None:
        chunks = chunk_text(_sentences(50), target_size=200, overlap_size=0)

        assert len(chunks) > 1
        assert all(len(c) <= 200 + 1 for c in chunks)

    def test_sentence_order_preserved(self) -> None:
        text = _sentences(30)
        chunks = chunk_text(text, target_size=150, overlap_size=0)

        assert re.findall(r"Sentence (\d{3})", " ".join(chunks)) == [f"{i:03d}" for i in range(30)]

    def test_sentence_after_carry_is_not_reterminated(self) -> None:
        text = "Float grows. Buybacks help. Dividends wait. Insurance pays. Owners stay."

        chunks = chunk_text(text, target_size=45, overlap_size=10)

        assert chunks == [
            "Float grows. Buybacks help. Dividends wait.",
            "Dividends wait. Insurance paysOwners stay..",
        ]

    def test_overlap_below_one_word_carries_nothing(self) -> None:
        with_tiny_overlap = chunk_text(BUFFETT_TEXT, target_size=50, overlap_size=4)
        without_overlap = chunk_text(BUFFETT_TEXT, target_size=50, overlap_size=0)

        assert with_tiny_overlap == without_overlap
        assert without_overlap[1] == "He avoids speculation"

    @pytest.mark.parametrize(("overlap", "words"), [(5, 1), (15, 3), (19, 3)])
    def test_carries_overlap_size_over_five_words(self, overlap: int, words: int) -> None:
        chunks = chunk_text(_sentences(20), target_size=120, overlap_size=overlap)

        assert chunks[1].split()[:words] == chunks[0].split()[-words:]
        assert chunks[1].split()[words] == "Sentence"

    @pytest.mark.parametrize(("target", "overlap"), [(0, 0), (-5, 0), (100, -1)])
    def test_invalid_sizes_raise(self, target: int, overlap: int) -> None:
        with pytest.raises(ValueError):
            chunk_text(BUFFETT_TEXT, target_size=target, overlap_size=overlap)


class TestChunkDocument:
    def test_chunks_carry_position_and_origin(self) -> None:
        doc = SourceDocument(file_name="2019.pdf", year="2019", raw_text=_sentences(30), page_count=2)

        chunks = chunk_document(doc, target_size=200, overlap_size=40)

        assert len(chunks) > 1
        assert [c.ordinal_index for c in chunks] == list(range(len(chunks)))
        assert {c.sibling_count for c in chunks} == {len(chunks)}
        assert {c.source_file_name for c in chunks} == {"2019.pdf"}
        assert [c.chunk_id for c in chunks] == [f"2019-chunk-{i}" for i in range(len(chunks))]

    def test_empty_document_has_no_chunks(self) -> None:
        doc = SourceDocument(file_name="1977.pdf", year="1977", raw_text="", page_count=1)
        assert chunk_document(doc) == []
