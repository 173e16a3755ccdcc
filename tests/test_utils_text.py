"""Tests for text utility functions."""

from __future__ import annotations

import pytest

from nephrorag.errors import ConfigurationError
from nephrorag.utils.text import (
    chunk_spans,
    chunk_text,
    clean_document_text,
    estimate_tokens,
    normalize_whitespace,
)


def _reconstruct(text: str, chunks) -> str:
    """Rebuild text from the non-overlapping part of each window."""
    pieces = []
    covered = 0
    for chunk in chunks:
        pieces.append(text[max(chunk.start_offset, covered) : chunk.end_offset])
        covered = chunk.end_offset
    return "".join(pieces)


class TestChunkText:
    """Test chunk_text function."""

    def test_chunk_short_text(self) -> None:
        """Should return single chunk for short text."""
        chunks = chunk_text("Short text", 100, 10)

        assert len(chunks) == 1
        assert chunks[0].index == 0
        assert chunks[0].content == "Short text"
        assert chunks[0].start_offset == 0
        assert chunks[0].end_offset == 10

    def test_chunk_sizes_use_chars_per_token(self) -> None:
        """Window width is chunk tokens times the ratio."""
        text = "a" * 1000
        chunks = chunk_text(text, 50, 10, chars_per_token=4)

        assert chunks[0].end_offset - chunks[0].start_offset == 200
        assert chunks[1].start_offset == 160
        for chunk in chunks:
            assert len(chunk.content) <= 200

    def test_chunk_overlap(self) -> None:
        """Consecutive windows overlap by exactly the overlap width."""
        text = "0123456789" * 50
        chunks = chunk_text(text, 25, 5, chars_per_token=4)

        assert len(chunks) >= 3
        for current, following in zip(chunks, chunks[1:]):
            if following is chunks[-1] and following.end_offset == len(text):
                continue
            assert current.end_offset - following.start_offset == 20
            assert text[following.start_offset : current.end_offset] == current.content[-20:]

    def test_chunks_cover_text(self) -> None:
        """Non-overlapping parts of the windows rebuild the original text."""
        text = "".join(f"Sentence number {i} about dialysis. " for i in range(120))
        chunks = chunk_text(text, 30, 7, chars_per_token=4)

        assert _reconstruct(text, chunks) == text

    def test_chunking_is_deterministic(self) -> None:
        """Same input gives identical output."""
        text = "kidney " * 400
        assert chunk_text(text, 40, 8) == chunk_text(text, 40, 8)

    def test_chunk_empty_text(self) -> None:
        """Should handle empty text."""
        assert chunk_text("", 100, 10) == []

    def test_whitespace_windows_dropped(self) -> None:
        """Blank windows are skipped and indices stay contiguous."""
        text = "a" * 40 + " " * 120 + "b" * 40
        chunks = chunk_text(text, 10, 0, chars_per_token=4)

        assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
        assert [chunk.content for chunk in chunks] == ["a" * 40, "b" * 40]
        assert chunks[1].start_offset == 160

    def test_content_is_trimmed(self) -> None:
        chunks = chunk_text("   padded text   ", 100, 0)
        assert chunks[0].content == "padded text"
        assert chunks[0].end_offset == 17

    def test_overlap_equal_to_size_raises(self) -> None:
        """Degenerate sizing is rejected instead of looping forever."""
        with pytest.raises(ConfigurationError):
            chunk_text("some text " * 100, 100, 100)

    def test_overlap_larger_than_size_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            chunk_text("some text", 10, 20)

    @pytest.mark.parametrize(
        ("size", "overlap", "ratio"),
        [(0, 0, 4), (-5, 0, 4), (10, -1, 4), (10, 2, 0)],
    )
    def test_invalid_sizing_raises(self, size: int, overlap: int, ratio: float) -> None:
        with pytest.raises(ConfigurationError):
            chunk_spans(size, overlap, ratio)

    def test_fractional_ratio(self) -> None:
        """Ratios need not be integers."""
        assert chunk_spans(10, 2, 3.5) == (35, 7)


class TestEstimateTokens:
    def test_estimate(self) -> None:
        assert estimate_tokens("a" * 2000) == 500
        assert estimate_tokens("a" * 10, chars_per_token=3) == 3


class TestCleanDocumentText:
    """Test clean_document_text function."""

    def test_removes_page_markers(self) -> None:
        text = "Hyperkalemia\nPage 12\nTreatment with calcium"
        assert clean_document_text(text) == "Hyperkalemia\nTreatment with calcium"

    def test_inline_page_marker_splits_line(self) -> None:
        assert clean_document_text("end of section Page 3 next section") == (
            "end of section\nnext section"
        )

    def test_collapses_blank_lines(self) -> None:
        text = "Line 1\n\n\n\n\nLine 2\n   \nLine 3"
        assert clean_document_text(text) == "Line 1\nLine 2\nLine 3"

    def test_empty(self) -> None:
        assert clean_document_text("  \n\n ") == ""


class TestNormalizeWhitespace:
    """Test normalize_whitespace function."""

    def test_normalize_simple(self) -> None:
        """Should join and strip lines."""
        lines = ["  Line 1  ", "  Line 2  ", "  Line 3  "]
        assert normalize_whitespace(lines) == "Line 1\nLine 2\nLine 3"

    def test_normalize_empty_lines(self) -> None:
        """Should skip empty lines."""
        lines = ["Line 1", "", "  ", "Line 2", "\n", "Line 3"]
        assert normalize_whitespace(lines) == "Line 1\nLine 2\nLine 3"

    def test_normalize_preserves_inner_spaces(self) -> None:
        assert normalize_whitespace(["  Hello   World  "]) == "Hello   World"
