"""Utility helpers for hashing files and text."""

from __future__ import annotations

import hashlib
from pathlib import Path


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def hash_text(text: str) -> str:
    """SHA256 hex digest of UTF-8 encoded text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def resolve_storage_path(storage_path: str | Path, base_dir: Path | None = None) -> Path:
    """Resolve a document storage path against an optional base directory."""
    path = Path(storage_path)
    if path.is_absolute() or base_dir is None:
        return path
    return base_dir / path
