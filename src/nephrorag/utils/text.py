"""Text helpers including approximate token-aware chunking."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List

from nephrorag.errors import ConfigurationError

DEFAULT_CHARS_PER_TOKEN = 4

_PAGE_MARKER = re.compile(r"\s*Page \d+\s*")
_EXCESS_NEWLINES = re.compile(r"\n\n\n+")


@dataclass(frozen=True, slots=True)
class TextChunk:
    """A window of document text and the raw character range it was cut from."""

    index: int
    content: str
    start_offset: int
    end_offset: int


def chunk_spans(
    chunk_tokens: int, overlap_tokens: int, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN
) -> tuple[int, int]:
    """Return (chunk_chars, overlap_chars) or raise on degenerate sizing."""
    if chars_per_token <= 0:
        raise ConfigurationError(f"chars_per_token must be positive, got {chars_per_token}")
    if chunk_tokens <= 0:
        raise ConfigurationError(f"chunk size must be positive, got {chunk_tokens}")
    if overlap_tokens < 0:
        raise ConfigurationError(f"overlap must not be negative, got {overlap_tokens}")

    chunk_chars = int(round(chunk_tokens * chars_per_token))
    overlap_chars = int(round(overlap_tokens * chars_per_token))
    if overlap_chars >= chunk_chars:
        raise ConfigurationError(
            f"overlap ({overlap_tokens} tokens) must be smaller than chunk size "
            f"({chunk_tokens} tokens)"
        )
    return chunk_chars, overlap_chars


def chunk_text(
    text: str,
    chunk_tokens: int,
    overlap_tokens: int,
    *,
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
) -> List[TextChunk]:
    """Split text into overlapping fixed-size windows.

    Token counts are approximated with a fixed characters-per-token ratio.
    Whitespace-only windows are skipped and indices stay contiguous over the
    retained chunks. Content is trimmed; offsets describe the untrimmed window.
    """
    chunk_chars, overlap_chars = chunk_spans(chunk_tokens, overlap_tokens, chars_per_token)
    step = chunk_chars - overlap_chars

    chunks: List[TextChunk] = []
    for start in range(0, len(text), step):
        end = min(start + chunk_chars, len(text))
        window = text[start:end]
        if not window.strip():
            continue
        chunks.append(
            TextChunk(index=len(chunks), content=window.strip(), start_offset=start, end_offset=end)
        )
    return chunks


def estimate_tokens(text: str, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> int:
    return int(round(len(text) / chars_per_token))


def clean_document_text(text: str) -> str:
    """Strip page-break artifacts and blank lines from extracted text."""
    cleaned = _PAGE_MARKER.sub("\n", text)
    cleaned = _EXCESS_NEWLINES.sub("\n\n", cleaned)
    return normalize_whitespace(cleaned.split("\n"))


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
