"""SQLite-backed document registry and chunk vector store."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Sequence

import numpy as np

from nephrorag.errors import ConfigurationError, StorageError
from nephrorag.models import ChunkRecord, Document, ScoredChunk
from nephrorag.utils.files import hash_text

LOGGER = logging.getLogger(__name__)

DEFAULT_INSERT_BATCH_SIZE = 50


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        slug=row["slug"],
        title=row["title"],
        storage_path=row["storage_path"],
        embedding_space=row["embedding_space"],
        active=bool(row["active"]),
        metadata=json.loads(row["metadata"]) if row["metadata"] else {},
    )


class SQLiteVectorStore:
    """Persistence layer for documents and per-space chunk embeddings."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        try:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA foreign_keys=ON;")
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {self.db_path}: {exc}") from exc

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    slug TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    storage_path TEXT NOT NULL,
                    embedding_space TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    metadata TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_updated
                AFTER UPDATE ON documents
                BEGIN
                    UPDATE documents SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
                END;
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY,
                    document_slug TEXT NOT NULL,
                    embedding_space TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    start_offset INTEGER NOT NULL,
                    end_offset INTEGER NOT NULL,
                    token_estimate INTEGER NOT NULL,
                    text_hash TEXT NOT NULL,
                    dimensions INTEGER NOT NULL,
                    embedding BLOB NOT NULL,
                    metadata TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(document_slug, embedding_space, chunk_index),
                    FOREIGN KEY(document_slug) REFERENCES documents(slug) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_document_space
                    ON chunks(document_slug, embedding_space)
                """
            )

    # Documents

    def add_document(self, document: Document) -> str:
        """Insert or update a document row by slug.

        Returns 'inserted' or 'updated'.
        """
        try:
            with self.transaction() as conn:
                existing = conn.execute(
                    "SELECT id FROM documents WHERE slug = ?", (document.slug,)
                ).fetchone()
                values = (
                    document.title,
                    document.storage_path,
                    document.embedding_space,
                    int(document.active),
                    json.dumps(dict(document.metadata), ensure_ascii=True),
                )
                if existing:
                    conn.execute(
                        """
                        UPDATE documents
                        SET title = ?, storage_path = ?, embedding_space = ?, active = ?,
                            metadata = ?
                        WHERE slug = ?
                        """,
                        (*values, document.slug),
                    )
                    return "updated"
                conn.execute(
                    """
                    INSERT INTO documents(title, storage_path, embedding_space, active, metadata, slug)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (*values, document.slug),
                )
                return "inserted"
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save document {document.slug}: {exc}") from exc

    def set_active(self, slug: str, active: bool) -> bool:
        """Toggle a document's active flag. Returns False for an unknown slug."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE documents SET active = ? WHERE slug = ?", (int(active), slug)
                )
            return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to update document {slug}: {exc}") from exc

    def get_document(self, slug: str) -> Document | None:
        try:
            row = self._conn.execute("SELECT * FROM documents WHERE slug = ?", (slug,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read document {slug}: {exc}") from exc
        return _row_to_document(row) if row else None

    def list_active_documents(self) -> List[Document]:
        try:
            rows = self._conn.execute(
                "SELECT * FROM documents WHERE active = 1 ORDER BY created_at, id"
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load documents: {exc}") from exc
        return [_row_to_document(row) for row in rows]

    def list_documents(self) -> List[Document]:
        try:
            rows = self._conn.execute("SELECT * FROM documents ORDER BY created_at, id").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load documents: {exc}") from exc
        return [_row_to_document(row) for row in rows]

    # Chunks

    def _space_dimension(self, embedding_space: str, exclude_slug: str) -> int | None:
        row = self._conn.execute(
            """
            SELECT dimensions FROM chunks
            WHERE embedding_space = ? AND document_slug != ?
            LIMIT 1
            """,
            (embedding_space, exclude_slug),
        ).fetchone()
        return int(row["dimensions"]) if row else None

    def upsert_chunks(
        self,
        document_slug: str,
        embedding_space: str,
        chunks: Sequence[ChunkRecord],
        embeddings: np.ndarray,
        *,
        batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
    ) -> int:
        """Replace every chunk stored for (document, space) with ``chunks``.

        Rows are written in batches inside a single transaction, so a failed
        batch rolls back to the previous chunk set. Returns rows stored.
        """
        vectors = np.asarray(embeddings, dtype="float32")
        if len(chunks) and (vectors.ndim != 2 or vectors.shape[0] != len(chunks)):
            raise ValueError("Embeddings and chunks length mismatch")
        if batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")

        indices = [chunk.index for chunk in chunks]
        if len(set(indices)) != len(indices):
            raise ValueError(f"Duplicate chunk indices for {document_slug}")

        dimension = int(vectors.shape[1]) if len(chunks) else 0
        stored = 0
        try:
            with self.transaction() as conn:
                expected = self._space_dimension(embedding_space, document_slug)
                if len(chunks) and expected is not None and expected != dimension:
                    raise ConfigurationError(
                        f"Embedding space '{embedding_space}' stores {expected}-dimensional "
                        f"vectors, got {dimension}"
                    )

                conn.execute(
                    "DELETE FROM chunks WHERE document_slug = ? AND embedding_space = ?",
                    (document_slug, embedding_space),
                )
                for start in range(0, len(chunks), batch_size):
                    batch = chunks[start : start + batch_size]
                    conn.executemany(
                        """
                        INSERT INTO chunks(
                            document_slug, embedding_space, chunk_index, content,
                            start_offset, end_offset, token_estimate, text_hash,
                            dimensions, embedding, metadata
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            (
                                document_slug,
                                embedding_space,
                                chunk.index,
                                chunk.text,
                                chunk.start_offset,
                                chunk.end_offset,
                                chunk.token_estimate,
                                hash_text(chunk.text),
                                dimension,
                                sqlite3.Binary(vector.tobytes()),
                                json.dumps(chunk.metadata, ensure_ascii=True),
                            )
                            for chunk, vector in zip(batch, vectors[start : start + batch_size])
                        ],
                    )
                    stored += len(batch)
                    LOGGER.debug(
                        "Inserted %d/%d chunks for %s (%s)",
                        stored,
                        len(chunks),
                        document_slug,
                        embedding_space,
                    )
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to store chunks for {document_slug} ({embedding_space}) after "
                f"{stored} rows; previous chunks kept: {exc}"
            ) from exc
        return stored

    def delete_chunks(self, document_slug: str, embedding_space: str) -> int:
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM chunks WHERE document_slug = ? AND embedding_space = ?",
                    (document_slug, embedding_space),
                )
            return cursor.rowcount
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete chunks for {document_slug}: {exc}") from exc

    def count_chunks(self, document_slug: str, embedding_space: str) -> int:
        try:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE document_slug = ? AND embedding_space = ?",
                (document_slug, embedding_space),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to count chunks for {document_slug}: {exc}") from exc
        return int(row[0])

    def chunk_counts(self) -> Dict[str, Dict[str, int]]:
        """Stored chunk counts keyed by document slug, then embedding space."""
        try:
            rows = self._conn.execute(
                """
                SELECT document_slug, embedding_space, COUNT(*) AS total
                FROM chunks
                GROUP BY document_slug, embedding_space
                """
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to count chunks: {exc}") from exc
        counts: Dict[str, Dict[str, int]] = {}
        for row in rows:
            counts.setdefault(row["document_slug"], {})[row["embedding_space"]] = row["total"]
        return counts

    def search(
        self,
        embedding: np.ndarray,
        document_slug: str,
        embedding_space: str,
        *,
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> List[ScoredChunk]:
        """Rank one document's chunks in one space by cosine similarity."""
        query = np.asarray(embedding, dtype="float32").ravel()
        try:
            rows = self._conn.execute(
                """
                SELECT chunk_index, content, dimensions, embedding, metadata,
                       start_offset, end_offset, token_estimate
                FROM chunks
                WHERE document_slug = ? AND embedding_space = ?
                ORDER BY chunk_index
                """,
                (document_slug, embedding_space),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read chunks for {document_slug}: {exc}") from exc

        if not rows or top_k <= 0:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        if embeddings.shape[1] != query.shape[0]:
            raise ConfigurationError(
                f"Query has {query.shape[0]} dimensions but '{embedding_space}' chunks have "
                f"{embeddings.shape[1]}"
            )

        norms = np.linalg.norm(embeddings, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, (embeddings @ query) / norms, 0.0)

        chunk_indices = np.array([row["chunk_index"] for row in rows])
        eligible = np.flatnonzero(scores >= min_similarity)
        # Primary key: similarity descending; secondary: chunk index ascending.
        order = eligible[np.lexsort((chunk_indices[eligible], -scores[eligible]))][:top_k]

        results: List[ScoredChunk] = []
        for idx in order:
            row = rows[idx]
            metadata = json.loads(row["metadata"]) if row["metadata"] else {}
            metadata.setdefault("char_start", row["start_offset"])
            metadata.setdefault("char_end", row["end_offset"])
            metadata.setdefault("tokens_approx", row["token_estimate"])
            results.append(
                ScoredChunk(
                    document_slug=document_slug,
                    chunk_index=int(row["chunk_index"]),
                    content=row["content"],
                    similarity=float(scores[idx]),
                    metadata=metadata,
                )
            )
        return results
