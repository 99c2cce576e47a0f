"""
Persistent embedding chunks.

One row per ``(entity_type, entity_id, chunk_index)``.  All chunks of an
entity carry the same ``content_hash`` (the hash of the full canonical
text), so chunk 0 alone answers "is this entity's embedding current?".
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from ..storage.database import Database

logger = logging.getLogger(__name__)


def vec_to_bytes(vec) -> bytes:
    """Serialise a float vector to compact float32 bytes."""
    return np.asarray(vec, dtype=np.float32).tobytes()


def bytes_to_vec(buf: bytes) -> np.ndarray:
    return np.frombuffer(buf, dtype=np.float32).copy()


@dataclass
class EmbeddingChunk:
    id: str
    entity_type: str
    entity_id: str
    chunk_index: int
    repo_id: str
    project_id: Optional[str]
    vector: np.ndarray
    embedding_model: str
    dimension: int
    content_hash: str
    total_chunks: int
    chunk_start_offset: int
    chunk_end_offset: int
    created_at: str = ""

    @property
    def payload(self) -> dict:
        """Metadata the vector index filters and reports on."""
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "chunk_start_offset": self.chunk_start_offset,
            "chunk_end_offset": self.chunk_end_offset,
            "content_hash": self.content_hash,
            "repo_id": self.repo_id,
            "project_id": self.project_id,
        }


def _row_to_chunk(row: sqlite3.Row) -> EmbeddingChunk:
    return EmbeddingChunk(
        id=row["id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        chunk_index=row["chunk_index"],
        repo_id=row["repo_id"],
        project_id=row["project_id"],
        vector=bytes_to_vec(row["vector"]),
        embedding_model=row["embedding_model"],
        dimension=row["dimension"],
        content_hash=row["content_hash"],
        total_chunks=row["total_chunks"],
        chunk_start_offset=row["chunk_start_offset"],
        chunk_end_offset=row["chunk_end_offset"],
        created_at=row["created_at"],
    )


class EmbeddingStore:
    """Row-level access to the ``embeddings`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get_first_chunk(self, entity_type: str, entity_id: str) -> Optional[EmbeddingChunk]:
        """Return chunk 0 for the entity, or None if it was never embedded."""
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM embeddings "
                "WHERE entity_type = ? AND entity_id = ? AND chunk_index = 0",
                (entity_type, entity_id),
            ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks(self, entity_type: str, entity_id: str) -> list[EmbeddingChunk]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM embeddings WHERE entity_type = ? AND entity_id = ? "
                "ORDER BY chunk_index ASC",
                (entity_type, entity_id),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_chunk_ids(self, entity_type: str, entity_id: str) -> list[str]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT id FROM embeddings WHERE entity_type = ? AND entity_id = ?",
                (entity_type, entity_id),
            ).fetchall()
        return [r["id"] for r in rows]

    def insert_chunks(self, chunks: Iterable[EmbeddingChunk]) -> None:
        with self._db.connect() as conn:
            conn.executemany(
                "INSERT INTO embeddings (id, entity_type, entity_id, chunk_index, "
                "repo_id, project_id, vector, embedding_model, dimension, "
                "content_hash, total_chunks, chunk_start_offset, chunk_end_offset, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (c.id, c.entity_type, c.entity_id, c.chunk_index, c.repo_id,
                     c.project_id, vec_to_bytes(c.vector), c.embedding_model,
                     c.dimension, c.content_hash, c.total_chunks,
                     c.chunk_start_offset, c.chunk_end_offset, c.created_at)
                    for c in chunks
                ],
            )

    def delete_for_entity(self, entity_type: str, entity_id: str) -> int:
        """Delete every chunk of an entity; returns the number removed."""
        with self._db.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM embeddings WHERE entity_type = ? AND entity_id = ?",
                (entity_type, entity_id),
            )
            return cursor.rowcount

    def count(self) -> int:
        with self._db.connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()
        return row[0] if row else 0

    def iter_all(self) -> list[EmbeddingChunk]:
        """Every stored chunk; used to rebuild the in-memory index."""
        with self._db.connect() as conn:
            rows = conn.execute("SELECT * FROM embeddings").fetchall()
        return [_row_to_chunk(r) for r in rows]
