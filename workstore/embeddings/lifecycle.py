"""
Embedding lifecycle — keeps stored vectors consistent with entity content.

``sync`` is called after every write of an embeddable entity.  The chunk-0
row carries the hash of the entity's canonical text; when that hash (and
the embedding model) still match, nothing happens.  Otherwise every old
chunk is dropped from the index and the table, the text is re-chunked and
each chunk is embedded in turn.

Embedding failures are soft: the entity stays stored, a warning is
logged, and the next ``sync`` retries because no chunk 0 exists for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from tqdm import tqdm

from ..errors import EmbeddingError
from ..storage.database import generate_id, utc_now
from .canonical import canonical_text, content_hash
from .chunking import ChunkingConfig, TextChunk, chunk_text, needs_chunking
from .providers import EmbeddingProvider
from .store import EmbeddingChunk, EmbeddingStore

logger = logging.getLogger(__name__)

UNCHANGED = "unchanged"
EMBEDDED = "embedded"
FAILED = "failed"


@dataclass
class SyncResult:
    entity_type: str
    entity_id: str
    status: str
    chunks: int = 0
    error: Optional[str] = None

    @property
    def resynced(self) -> bool:
        return self.status == EMBEDDED


class EmbeddingLifecycleManager:
    """
    Orchestrates chunker, hasher, provider and vector index.

    Parameters
    ----------
    store:
        Row access to the ``embeddings`` table.
    index:
        In-memory :class:`~workstore.search.vector_index.VectorIndex`.
    provider:
        Embedding generator.
    chunking:
        Window size and overlap for long texts.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        index,
        provider: EmbeddingProvider,
        chunking: Optional[ChunkingConfig] = None,
    ) -> None:
        self.store = store
        self.index = index
        self.provider = provider
        self.chunking = chunking or ChunkingConfig()
        self.chunking.validate()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(
        self,
        entity_type: str,
        entity,
        repo_id: str,
        project_id: Optional[str] = None,
        force: bool = False,
    ) -> SyncResult:
        """Bring the embeddings of *entity* up to date with its content."""
        text = canonical_text(entity_type, entity)
        new_hash = content_hash(text)

        first = self.store.get_first_chunk(entity_type, entity.id)
        if (
            not force
            and first is not None
            and first.content_hash == new_hash
            and first.embedding_model == self.provider.model_name
        ):
            logger.debug("Embedding current for %s %s", entity_type, entity.id)
            return SyncResult(entity_type, entity.id, UNCHANGED, first.total_chunks)

        self.remove(entity_type, entity.id)

        if needs_chunking(text, self.chunking):
            pieces = chunk_text(text, self.chunking)
        else:
            pieces = [TextChunk(text, 0, 1, 0, len(text))]

        try:
            rows = self._embed_chunks(entity_type, entity.id, pieces, new_hash,
                                      repo_id, project_id)
        except EmbeddingError as exc:
            logger.warning(
                "Embedding failed for %s %s, entity stored without embeddings: %s",
                entity_type, entity.id, exc,
            )
            return SyncResult(entity_type, entity.id, FAILED, error=str(exc))

        self.store.insert_chunks(rows)
        self.index.upsert((row.id, row.vector, row.payload) for row in rows)
        logger.info(
            "Embedded %s %s (%d chunk%s)",
            entity_type, entity.id, len(rows), "" if len(rows) == 1 else "s",
        )
        return SyncResult(entity_type, entity.id, EMBEDDED, len(rows))

    def _embed_chunks(
        self,
        entity_type: str,
        entity_id: str,
        pieces: list[TextChunk],
        hash_: str,
        repo_id: str,
        project_id: Optional[str],
    ) -> list[EmbeddingChunk]:
        # Sequential on purpose: one model call in flight at a time.
        now = utc_now()
        rows: list[EmbeddingChunk] = []
        for piece in pieces:
            vector = self.provider.embed(piece.text)
            rows.append(EmbeddingChunk(
                id=generate_id(),
                entity_type=entity_type,
                entity_id=entity_id,
                chunk_index=piece.index,
                repo_id=repo_id,
                project_id=project_id,
                vector=vector,
                embedding_model=self.provider.model_name,
                dimension=len(vector),
                content_hash=hash_,
                total_chunks=piece.total_chunks,
                chunk_start_offset=piece.start_offset,
                chunk_end_offset=piece.end_offset,
                created_at=now,
            ))
        return rows

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove(self, entity_type: str, entity_id: str) -> int:
        """Delete every chunk of an entity from the index and the table.

        Idempotent; returns the number of rows removed.  A failure to
        update the index is logged and the rows are deleted anyway.
        """
        chunk_ids = self.store.get_chunk_ids(entity_type, entity_id)
        if chunk_ids:
            try:
                self.index.remove_many(chunk_ids)
            except Exception as exc:
                logger.warning(
                    "Index removal failed for %s %s (%d chunks): %s",
                    entity_type, entity_id, len(chunk_ids), exc,
                )
        removed = self.store.delete_for_entity(entity_type, entity_id)
        if removed:
            logger.debug("Removed %d chunks for %s %s", removed, entity_type, entity_id)
        return removed

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def rebuild_index(self) -> int:
        """Reload the in-memory index from the ``embeddings`` table."""
        chunks = self.store.iter_all()
        self.index.clear()
        self.index.upsert((c.id, c.vector, c.payload) for c in chunks)
        logger.info("Rebuilt vector index with %d chunks", len(chunks))
        return len(chunks)

    def resync_all(
        self,
        entities: Iterable[tuple[str, object, str, Optional[str]]],
        force: bool = False,
        show_progress: bool = True,
    ) -> dict:
        """
        Re-run :meth:`sync` over ``(entity_type, entity, repo_id, project_id)``
        tuples.

        Returns
        -------
        dict
            Keys: total, embedded, unchanged, failed.
        """
        items = list(entities)
        counts = {"total": len(items), EMBEDDED: 0, UNCHANGED: 0, FAILED: 0}

        bar = tqdm(items, desc="Syncing embeddings", unit="entity",
                   disable=not show_progress)
        for entity_type, entity, repo_id, project_id in bar:
            result = self.sync(entity_type, entity, repo_id, project_id, force=force)
            counts[result.status] += 1
            bar.set_postfix(embedded=counts[EMBEDDED], failed=counts[FAILED])

        logger.info(
            "Resync finished: %d embedded, %d unchanged, %d failed",
            counts[EMBEDDED], counts[UNCHANGED], counts[FAILED],
        )
        return counts
