"""
Tests for semantic search: ranking, thresholds, scoping and hydration.

Runs against a real SQLite file with the offline concept embedder.
"""

from __future__ import annotations

import pytest


@pytest.fixture
def shop(workstore):
    repo = workstore.create_repo("shop").data
    project = workstore.create_project(repo["id"], "checkout").data
    return workstore, repo["id"], project["id"]


def _store_rule(ws, repo_id, name, description, project_id=None):
    result = ws.store_context(
        "business_rule", {"name": name, "description": description},
        repo_id=repo_id, project_id=project_id,
    )
    assert result.success, result.error
    return result.data["id"]


class TestEndToEnd:

    def test_email_rule_found_and_unrelated_query_excludes_it(self, shop):
        ws, repo_id, _ = shop
        rule_id = _store_rule(ws, repo_id, "Email Validation Rule",
                              "emails must be validated")

        hit = ws.query_context("email verification requirements",
                               repo_id=repo_id, min_similarity=0.3)
        assert hit.success
        assert rule_id in [m["id"] for m in hit.data["matches"]]

        miss = ws.query_context("database backup schedule",
                                repo_id=repo_id, min_similarity=0.7)
        assert miss.success
        assert rule_id not in [m["id"] for m in miss.data["matches"]]


class TestScoping:

    def test_project_entity_hidden_without_project(self, shop):
        ws, repo_id, project_id = shop
        repo_rule = _store_rule(ws, repo_id, "Email Format", "emails must be validated")
        proj_rule = _store_rule(ws, repo_id, "Checkout Email", "emails validated at checkout",
                                project_id=project_id)

        repo_only = ws.query_context("email validation", repo_id=repo_id,
                                     min_similarity=0.0)
        ids = [m["id"] for m in repo_only.data["matches"]]
        assert repo_rule in ids
        assert proj_rule not in ids

    def test_project_search_includes_repo_context(self, shop):
        ws, repo_id, project_id = shop
        repo_rule = _store_rule(ws, repo_id, "Email Format", "emails must be validated")
        proj_rule = _store_rule(ws, repo_id, "Checkout Email", "emails validated at checkout",
                                project_id=project_id)

        both = ws.query_context("email validation", project_id=project_id,
                                min_similarity=0.0)
        by_id = {m["id"]: m for m in both.data["matches"]}
        assert by_id[repo_rule]["provenance"] == "repo"
        assert by_id[proj_rule]["provenance"] == "project"

    def test_other_project_not_visible(self, shop):
        ws, repo_id, project_id = shop
        other = ws.create_project(repo_id, "billing").data["id"]
        theirs = _store_rule(ws, repo_id, "Invoice Email", "emails for invoices",
                             project_id=other)
        result = ws.query_context("email", project_id=project_id, min_similarity=0.0)
        assert theirs not in [m["id"] for m in result.data["matches"]]

    def test_project_from_other_repo_rejected(self, shop):
        ws, _, project_id = shop
        other_repo = ws.create_repo("blog").data["id"]
        result = ws.query_context("email", repo_id=other_repo, project_id=project_id)
        assert not result.success
        assert result.error_type == "validation"


class TestRanking:

    def _corpus(self, ws, repo_id):
        _store_rule(ws, repo_id, "Email Validation Rule", "emails must be validated")
        _store_rule(ws, repo_id, "Nightly Backup", "database backup on a schedule")
        _store_rule(ws, repo_id, "Invoice Email", "payment invoices sent by email")
        ws.store_context("glossary", {"term": "Login", "definition": "auth via email"},
                         repo_id=repo_id)

    def test_raising_threshold_never_adds_results(self, shop):
        ws, repo_id, _ = shop
        self._corpus(ws, repo_id)
        counts = [
            ws.query_context("email validation rule", repo_id=repo_id,
                             min_similarity=t, top_k=50).data["count"]
            for t in (0.0, 0.1, 0.3, 0.5, 0.7, 0.9, 1.0)
        ]
        assert counts == sorted(counts, reverse=True)
        assert counts[0] > counts[-1]

    def test_sorted_by_similarity_and_truncated(self, shop):
        ws, repo_id, _ = shop
        self._corpus(ws, repo_id)
        result = ws.query_context("email validation rule", repo_id=repo_id,
                                  min_similarity=0.0, top_k=2)
        sims = [m["similarity"] for m in result.data["matches"]]
        assert len(sims) == 2
        assert sims == sorted(sims, reverse=True)
        assert result.data["matches"][0]["entity"]["name"] == "Email Validation Rule"

    def test_ties_prefer_recently_updated(self, shop):
        ws, repo_id, _ = shop
        first = ws.store_context("convention", {"category": "email", "rule": "validate"},
                                 repo_id=repo_id).data["id"]
        second = ws.store_context("convention", {"category": "email", "rule": "validate"},
                                  repo_id=repo_id).data["id"]

        ranked = ws.query_context("email validate", repo_id=repo_id, min_similarity=0.0)
        assert [m["id"] for m in ranked.data["matches"]][:2] == [second, first]

        # not part of the canonical text, so only updated_at moves
        ws.update_context("convention", first, {"enforced": True})
        ranked = ws.query_context("email validate", repo_id=repo_id, min_similarity=0.0)
        assert [m["id"] for m in ranked.data["matches"]][:2] == [first, second]

    def test_long_document_reported_once_with_excerpt(self, shop):
        ws, repo_id, _ = shop
        content = ("intro text " * 30) + ("database backup schedule " * 10) + ("outro " * 40)
        doc_id = ws.store_context("document", {"title": "Ops", "content": content},
                                  repo_id=repo_id).data["id"]

        result = ws.query_context("database backup", repo_id=repo_id, min_similarity=0.1)
        matches = [m for m in result.data["matches"] if m["id"] == doc_id]
        assert len(matches) == 1
        chunk = matches[0]["chunk"]
        assert chunk["total"] > 1
        assert chunk["end_offset"] - chunk["start_offset"] <= 200
        assert "backup" in matches[0]["excerpt"]
        assert len(matches[0]["excerpt"]) < len(content)


class TestSearchContract:

    def test_empty_query_rejected(self, shop):
        ws, repo_id, _ = shop
        result = ws.query_context("   ", repo_id=repo_id)
        assert not result.success
        assert result.error_type == "validation"

    def test_query_embedded_once_per_call(self, shop, concept_embedder):
        ws, repo_id, _ = shop
        _store_rule(ws, repo_id, "Email Validation Rule", "emails must be validated")
        before = len(concept_embedder.calls)
        ws.query_context("email", repo_id=repo_id)
        ws.query_context("email", repo_id=repo_id)
        assert len(concept_embedder.calls) == before + 2

    def test_bad_limits_rejected(self, shop):
        ws, repo_id, _ = shop
        assert ws.query_context("email", repo_id=repo_id, top_k=0).error_type == "validation"
        assert ws.query_context("email", repo_id=repo_id,
                                min_similarity=1.5).error_type == "validation"

    def test_deleted_entity_not_returned(self, shop):
        ws, repo_id, _ = shop
        rule_id = _store_rule(ws, repo_id, "Payment Rule", "invoices must be paid")
        assert ws.delete_context("business_rule", rule_id).data["deleted"]

        result = ws.query_context("payment invoices", repo_id=repo_id, min_similarity=0.0)
        assert rule_id not in [m["id"] for m in result.data["matches"]]
        assert ws.embeddings.get_chunk_ids("business_rule", rule_id) == []

    def test_index_rebuilt_for_new_instance(self, shop, db, concept_embedder, test_config):
        from workstore.api import Workstore
        ws, repo_id, _ = shop
        rule_id = _store_rule(ws, repo_id, "Email Validation Rule", "emails must be validated")

        fresh = Workstore(db, concept_embedder, test_config)
        assert fresh.index.count() == 1
        result = fresh.query_context("email validation", repo_id=repo_id)
        assert rule_id in [m["id"] for m in result.data["matches"]]


class TestFindSimilar:

    def test_similar_excludes_self(self, shop):
        ws, repo_id, _ = shop
        a = _store_rule(ws, repo_id, "Email Validation Rule", "emails must be validated")
        b = _store_rule(ws, repo_id, "Email Verify", "verify email addresses")
        _store_rule(ws, repo_id, "Nightly Backup", "database backup")

        result = ws.find_similar("business_rule", a, min_similarity=0.5)
        ids = [m["id"] for m in result.data["matches"]]
        assert ids == [b]

    def test_unembedded_entity_not_found(self, shop):
        ws, _, _ = shop
        result = ws.find_similar("business_rule", "missing-id")
        assert not result.success
        assert result.error_type == "not_found"

    def test_new_instance_write_before_search_keeps_old_entries(
            self, shop, db, concept_embedder, test_config):
        from workstore.api import Workstore
        ws, repo_id, _ = shop
        rule_id = _store_rule(ws, repo_id, "Email Validation Rule", "emails must be validated")

        fresh = Workstore(db, concept_embedder, test_config)
        backup_id = _store_rule(fresh, repo_id, "Nightly Backup", "database backup")

        result = fresh.query_context("email verification requirements",
                                     repo_id=repo_id, min_similarity=0.3)
        ids = [m["id"] for m in result.data["matches"]]
        assert rule_id in ids
        assert backup_id not in ids
        assert fresh.index.count() == 2

    def test_excerpt_ignores_offsets_of_stale_chunks(self, shop):
        ws, repo_id, _ = shop
        content = ("intro text " * 30) + "database backup schedule"
        doc_id = ws.store_context("document", {"title": "Ops", "content": content},
                                  repo_id=repo_id).data["id"]
        # change the text without re-embedding, as after a failed sync
        ws.contexts.update("document", doc_id, {"content": "database backup"})

        result = ws.query_context("database backup", repo_id=repo_id, min_similarity=0.1)
        match = next(m for m in result.data["matches"] if m["id"] == doc_id)
        assert match["chunk"]["start_offset"] > 0
        assert match["excerpt"] == "Ops\n\ndatabase backup"
