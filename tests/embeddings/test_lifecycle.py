"""
Unit tests for workstore.embeddings.lifecycle

Uses the offline concept embedder from conftest and a real SQLite file.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest


@pytest.fixture
def parts(db, concept_embedder):
    from workstore.embeddings.chunking import ChunkingConfig
    from workstore.embeddings.lifecycle import EmbeddingLifecycleManager
    from workstore.embeddings.store import EmbeddingStore
    from workstore.search.vector_index import VectorIndex

    store = EmbeddingStore(db)
    index = VectorIndex()
    manager = EmbeddingLifecycleManager(store, index, concept_embedder,
                                        ChunkingConfig(100, 20))
    return manager, store, index


def _rule(**overrides):
    from workstore.context.models import BusinessRule
    fields = dict(id="rule-1", repo_id="repo-1", name="Email Validation Rule",
                  description="emails must be validated")
    fields.update(overrides)
    return BusinessRule(**fields)


def _document(content: str):
    from workstore.context.models import Document
    return Document(id="doc-1", repo_id="repo-1", title="Runbook", content=content)


class TestSync:

    def test_second_sync_is_noop(self, parts, concept_embedder):
        manager, store, index = parts
        first = manager.sync("business_rule", _rule(), "repo-1")
        second = manager.sync("business_rule", _rule(), "repo-1")

        assert first.status == "embedded"
        assert second.status == "unchanged"
        assert len(concept_embedder.calls) == 1
        assert store.count() == 1
        assert index.count() == 1

    def test_content_change_reembeds(self, parts, concept_embedder):
        manager, store, index = parts
        manager.sync("business_rule", _rule(), "repo-1")
        old_ids = store.get_chunk_ids("business_rule", "rule-1")

        result = manager.sync("business_rule", _rule(description="emails are checked"),
                              "repo-1")
        assert result.resynced
        assert len(concept_embedder.calls) == 2
        new_ids = store.get_chunk_ids("business_rule", "rule-1")
        assert len(new_ids) == 1
        assert set(new_ids).isdisjoint(old_ids)
        assert index.count() == 1

    def test_force_reembeds_unchanged_content(self, parts, concept_embedder):
        manager, _, _ = parts
        manager.sync("business_rule", _rule(), "repo-1")
        result = manager.sync("business_rule", _rule(), "repo-1", force=True)
        assert result.status == "embedded"
        assert len(concept_embedder.calls) == 2

    def test_long_document_is_chunked(self, parts, concept_embedder):
        manager, store, index = parts
        content = "backup the database every night. " * 20
        result = manager.sync("document", _document(content), "repo-1")

        chunks = store.get_chunks("document", "doc-1")
        text_len = len("Runbook\n\n" + content)
        assert result.chunks == len(chunks) > 1
        assert chunks[0].chunk_start_offset == 0
        assert chunks[-1].chunk_end_offset == text_len
        assert len({c.content_hash for c in chunks}) == 1
        assert all(c.total_chunks == len(chunks) for c in chunks)
        assert len(concept_embedder.calls) == len(chunks)
        assert index.count() == len(chunks)

    def test_shrinking_document_leaves_no_orphans(self, parts):
        manager, store, index = parts
        manager.sync("document", _document("schedule " * 100), "repo-1")
        assert store.count() > 1

        manager.sync("document", _document("short now"), "repo-1")
        chunks = store.get_chunks("document", "doc-1")
        assert [c.chunk_index for c in chunks] == [0]
        assert index.count() == 1

    def test_project_scope_recorded(self, parts):
        manager, store, index = parts
        manager.sync("business_rule", _rule(project_id="proj-1"), "repo-1", "proj-1")
        chunk = store.get_first_chunk("business_rule", "rule-1")
        assert chunk.project_id == "proj-1"
        assert chunk.repo_id == "repo-1"
        assert chunk.embedding_model == "concept-test"


class TestFailures:

    def test_embedding_failure_is_soft(self, db, failing_embedder):
        from workstore.embeddings.lifecycle import EmbeddingLifecycleManager
        from workstore.embeddings.store import EmbeddingStore
        from workstore.search.vector_index import VectorIndex

        store = EmbeddingStore(db)
        manager = EmbeddingLifecycleManager(store, VectorIndex(), failing_embedder)
        result = manager.sync("business_rule", _rule(), "repo-1")

        assert result.status == "failed"
        assert "unreachable" in result.error
        assert store.count() == 0

    def test_failed_sync_is_retried_next_time(self, db, failing_embedder, concept_embedder):
        from workstore.embeddings.lifecycle import EmbeddingLifecycleManager
        from workstore.embeddings.store import EmbeddingStore
        from workstore.search.vector_index import VectorIndex

        store = EmbeddingStore(db)
        index = VectorIndex()
        EmbeddingLifecycleManager(store, index, failing_embedder).sync(
            "business_rule", _rule(), "repo-1")
        result = EmbeddingLifecycleManager(store, index, concept_embedder).sync(
            "business_rule", _rule(), "repo-1")
        assert result.status == "embedded"
        assert store.count() == 1

    def test_index_removal_failure_still_deletes_rows(self, db, concept_embedder):
        from workstore.embeddings.lifecycle import EmbeddingLifecycleManager
        from workstore.embeddings.store import EmbeddingStore
        from workstore.search.vector_index import VectorIndex

        store = EmbeddingStore(db)
        index = VectorIndex()
        manager = EmbeddingLifecycleManager(store, index, concept_embedder)
        manager.sync("business_rule", _rule(), "repo-1")

        manager.index = MagicMock()
        manager.index.remove_many.side_effect = RuntimeError("index locked")
        removed = manager.remove("business_rule", "rule-1")

        assert removed == 1
        assert store.count() == 0


class TestRemoveAndRebuild:

    def test_remove_is_idempotent(self, parts):
        manager, store, index = parts
        manager.sync("business_rule", _rule(), "repo-1")
        assert manager.remove("business_rule", "rule-1") == 1
        assert manager.remove("business_rule", "rule-1") == 0
        assert index.count() == 0

    def test_rebuild_index_from_rows(self, parts):
        manager, store, index = parts
        manager.sync("business_rule", _rule(), "repo-1")
        manager.sync("document", _document("database " * 60), "repo-1")
        index.clear()

        assert manager.rebuild_index() == store.count()
        assert index.count() == store.count()

    def test_resync_all_counts(self, parts, concept_embedder):
        manager, _, _ = parts
        manager.sync("business_rule", _rule(), "repo-1")
        entities = [
            ("business_rule", _rule(), "repo-1", None),
            ("document", _document("payment invoices"), "repo-1", None),
        ]
        counts = manager.resync_all(entities, show_progress=False)
        assert counts == {"total": 2, "embedded": 1, "unchanged": 1, "failed": 0}
