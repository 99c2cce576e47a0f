"""
In-memory vector index with numpy cosine similarity.

Holds one entry per embedding chunk id together with a small payload
(scope and provenance).  The index is a cache of the ``embeddings`` table:
it can be dropped and rebuilt from stored rows at any time, which is how
inconsistencies after a failed removal are repaired.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

import numpy as np

logger = logging.getLogger(__name__)


def cosine_similarity_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between *query* (1-D) and each row of *matrix*."""
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0])
    row_norms = np.linalg.norm(matrix, axis=1)
    row_norms[row_norms == 0] = 1.0
    return (matrix @ query) / (row_norms * query_norm)


def _matches(payload: dict, filters: dict) -> bool:
    """Apply scope filters to one payload.

    ``repo_id``       exact match
    ``project_id``    repo-level entries always match; project entries only
                      when they belong to this project.  Absent/None means
                      repo-level entries only.
    ``project_only``  with ``project_id``, drop repo-level entries
    ``entity_types``  allow-list of entity types
    ``exclude_entity_id`` drop chunks of this entity
    """
    if "repo_id" in filters and payload.get("repo_id") != filters["repo_id"]:
        return False

    project_id = filters.get("project_id")
    entry_project = payload.get("project_id")
    if entry_project is not None and entry_project != project_id:
        return False
    if filters.get("project_only") and entry_project is None:
        return False

    entity_types = filters.get("entity_types")
    if entity_types and payload.get("entity_type") not in entity_types:
        return False

    exclude = filters.get("exclude_entity_id")
    if exclude and payload.get("entity_id") == exclude:
        return False
    return True


class VectorIndex:
    """Thread-safe in-memory vector index keyed by embedding id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._vectors: dict[str, np.ndarray] = {}
        self._payloads: dict[str, dict] = {}

    def upsert(self, points: Iterable[tuple[str, object, dict]]) -> None:
        """Insert or replace ``(point_id, vector, payload)`` entries."""
        count = 0
        with self._lock:
            for point_id, vector, payload in points:
                self._vectors[point_id] = np.asarray(vector, dtype=np.float32)
                self._payloads[point_id] = dict(payload)
                count += 1
        if count:
            logger.debug("[VectorIndex] Upserted %d points", count)

    def remove(self, point_id: str) -> bool:
        with self._lock:
            self._payloads.pop(point_id, None)
            return self._vectors.pop(point_id, None) is not None

    def remove_many(self, point_ids: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for point_id in point_ids:
                self._payloads.pop(point_id, None)
                if self._vectors.pop(point_id, None) is not None:
                    removed += 1
        return removed

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()
            self._payloads.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._vectors)

    def __contains__(self, point_id: str) -> bool:
        with self._lock:
            return point_id in self._vectors

    def search(
        self,
        query_vector,
        filters: Optional[dict] = None,
        min_score: float = 0.0,
        top_k: Optional[int] = None,
    ) -> list[dict]:
        """Cosine-similarity search over entries that pass *filters*.

        Returns
        -------
        list[dict]
            ``{"point_id", "score", "payload"}`` dicts, best first.  Entries
            whose vector length differs from the query are skipped.
        """
        query = np.asarray(query_vector, dtype=np.float32)
        filters = filters or {}

        with self._lock:
            candidates = [
                (pid, vec, self._payloads[pid])
                for pid, vec in self._vectors.items()
                if vec.shape == query.shape and _matches(self._payloads[pid], filters)
            ]

        if not candidates:
            return []

        matrix = np.stack([vec for _, vec, _ in candidates])
        scores = cosine_similarity_batch(query, matrix)
        order = np.argsort(-scores, kind="stable")

        results: list[dict] = []
        for idx in order:
            score = float(scores[idx])
            if score < min_score:
                break
            pid, _, payload = candidates[idx]
            results.append({"point_id": pid, "score": score, "payload": dict(payload)})
            if top_k is not None and len(results) >= top_k:
                break
        return results
