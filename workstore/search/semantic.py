"""
Semantic search over stored embeddings.

The query is embedded once per call, scored against every candidate chunk
in scope, reduced to the best chunk per entity, ranked and then hydrated
back to the owning entity.

Scoping
-------
Without ``project_id`` only repo-level embeddings are candidates.  With a
``project_id`` the candidates are the repo-level embeddings *plus* that
project's; a project never hides its repo's context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from ..embeddings.canonical import canonical_text, content_hash
from ..embeddings.providers import EmbeddingProvider
from ..embeddings.store import EmbeddingStore
from ..errors import NotFoundError, ValidationError
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

EXCERPT_LIMIT = 500

EntityLoader = Callable[[str, str], Optional[object]]


@dataclass
class EntityMatch:
    """One ranked search hit."""

    entity_type: str
    entity: object
    similarity: float
    provenance: str                 # "repo" | "project"
    chunk_index: int
    total_chunks: int
    chunk_start_offset: int
    chunk_end_offset: int
    excerpt: str

    @property
    def entity_id(self) -> str:
        return self.entity.id

    def to_dict(self) -> dict:
        return {
            "type": self.entity_type,
            "id": self.entity.id,
            "similarity": round(self.similarity, 4),
            "provenance": self.provenance,
            "chunk": {
                "index": self.chunk_index,
                "total": self.total_chunks,
                "start_offset": self.chunk_start_offset,
                "end_offset": self.chunk_end_offset,
            },
            "excerpt": self.excerpt,
            "entity": self.entity.to_dict(),
        }


def _validate(top_k: int, min_similarity: float) -> None:
    if top_k <= 0:
        raise ValidationError("top_k must be a positive integer", top_k=top_k)
    if not 0.0 <= min_similarity <= 1.0:
        raise ValidationError(
            "min_similarity must be between 0 and 1", min_similarity=min_similarity
        )


def _excerpt(entity_type: str, entity, payload: dict) -> str:
    text = canonical_text(entity_type, entity)
    if payload.get("content_hash") == content_hash(text):
        start = payload.get("chunk_start_offset", 0)
        end = payload.get("chunk_end_offset") or len(text)
    else:
        # offsets belong to an older version of the text
        start, end = 0, len(text)
    excerpt = text[start:end]
    if len(excerpt) > EXCERPT_LIMIT:
        excerpt = excerpt[:EXCERPT_LIMIT].rstrip() + "…"
    return excerpt


class SemanticSearch:
    """
    Ranked similarity search with inheritance-aware scoping.

    Parameters
    ----------
    provider:
        Embeds query text.
    index:
        Vector index holding every stored chunk.
    store:
        Embedding rows; :meth:`find_similar` reads an entity's first chunk.
    loader:
        ``loader(entity_type, entity_id)`` returns the entity or None.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        index: VectorIndex,
        store: EmbeddingStore,
        loader: EntityLoader,
        default_top_k: int = 5,
        default_min_similarity: float = 0.5,
    ) -> None:
        self.provider = provider
        self.index = index
        self.store = store
        self.loader = loader
        self.default_top_k = default_top_k
        self.default_min_similarity = default_min_similarity

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        repo_id: str,
        project_id: Optional[str] = None,
        entity_types: Optional[Iterable[str]] = None,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        project_only: bool = False,
    ) -> list[EntityMatch]:
        """
        Rank entities in scope by similarity to *query*.

        Parameters
        ----------
        query:
            Free text; must not be blank.
        repo_id, project_id:
            Scope, see the module docstring.
        entity_types:
            Restrict to these entity types.
        top_k:
            Maximum number of entities returned.
        min_similarity:
            Matches scoring below this are dropped.
        project_only:
            With *project_id*, leave out repo-level embeddings.

        Raises
        ------
        ValidationError
            Blank query or out-of-range limits.
        EmbeddingError
            The query could not be embedded.
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        top_k = self.default_top_k if top_k is None else top_k
        min_similarity = (self.default_min_similarity if min_similarity is None
                          else min_similarity)
        _validate(top_k, min_similarity)

        query_vector = self.provider.embed(query)

        filters: dict = {"repo_id": repo_id, "project_id": project_id}
        if entity_types:
            filters["entity_types"] = set(entity_types)
        if project_only and project_id:
            filters["project_only"] = True

        hits = self.index.search(query_vector, filters=filters, min_score=min_similarity)
        matches = self._rank(hits, top_k)
        logger.debug("Search %r: %d candidate chunks, %d matches",
                     query[:60], len(hits), len(matches))
        return matches

    def find_similar(
        self,
        entity_type: str,
        entity_id: str,
        entity_types: Optional[Iterable[str]] = None,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> list[EntityMatch]:
        """Entities whose embeddings are closest to an existing entity's first chunk.

        The entity itself is excluded; scope is the entity's own scope.
        """
        top_k = self.default_top_k if top_k is None else top_k
        min_similarity = (self.default_min_similarity if min_similarity is None
                          else min_similarity)
        _validate(top_k, min_similarity)

        first = self.store.get_first_chunk(entity_type, entity_id)
        if first is None:
            raise NotFoundError(f"Embedding for {entity_type}", entity_id)

        filters = {
            "repo_id": first.repo_id,
            "project_id": first.project_id,
            "entity_types": set(entity_types) if entity_types else {entity_type},
            "exclude_entity_id": entity_id,
        }
        hits = self.index.search(first.vector, filters=filters, min_score=min_similarity)
        return self._rank(hits, top_k)

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def _rank(self, hits: list[dict], top_k: int) -> list[EntityMatch]:
        # hits arrive best-first, so the first chunk seen per entity is its best
        best: dict[tuple[str, str], dict] = {}
        for hit in hits:
            payload = hit["payload"]
            key = (payload["entity_type"], payload["entity_id"])
            if key not in best:
                best[key] = hit

        matches: list[EntityMatch] = []
        for (entity_type, entity_id), hit in best.items():
            entity = self.loader(entity_type, entity_id)
            if entity is None:
                logger.debug("Skipping stale embedding for %s %s", entity_type, entity_id)
                continue
            payload = hit["payload"]
            matches.append(EntityMatch(
                entity_type=entity_type,
                entity=entity,
                similarity=hit["score"],
                provenance="project" if payload.get("project_id") else "repo",
                chunk_index=payload.get("chunk_index", 0),
                total_chunks=payload.get("total_chunks", 1),
                chunk_start_offset=payload.get("chunk_start_offset", 0),
                chunk_end_offset=payload.get("chunk_end_offset", 0),
                excerpt=_excerpt(entity_type, entity, payload),
            ))

        # Most recent first, then a stable sort on similarity keeps that as the tie-break.
        matches.sort(key=lambda m: getattr(m.entity, "updated_at", "") or "", reverse=True)
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:top_k]
