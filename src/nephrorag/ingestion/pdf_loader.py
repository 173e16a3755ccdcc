"""Raw text loading for reference documents.

Uses PyMuPDF (fitz) for PDF text extraction; plain text files are read as-is.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator

import fitz  # PyMuPDF

from nephrorag.errors import NotFoundError, StorageError

LOGGER = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt", ".md"}


def iter_text_parts(path: Path) -> Iterator[str]:
    """Yield text content from a PDF file page by page."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        raise StorageError(f"Failed to open PDF {path}: {exc}") from exc

    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:
                LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
                continue
            if text.strip():
                yield text
    finally:
        doc.close()


def get_pdf_metadata(path: Path) -> Dict[str, str]:
    """Extract title and page count from a PDF file."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        raise StorageError(f"Failed to open PDF {path}: {exc}") from exc
    try:
        metadata = doc.metadata or {}
        return {
            "title": metadata.get("title") or path.stem,
            "page_count": str(len(doc)),
        }
    finally:
        doc.close()


def load_document_text(path: Path) -> str:
    """Return the uncleaned text of a PDF or plain text document."""
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"Document file not found: {path}")

    if path.suffix.lower() in TEXT_SUFFIXES:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    return "\n".join(iter_text_parts(path))
