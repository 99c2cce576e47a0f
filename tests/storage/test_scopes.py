"""
Unit tests for workstore.storage (database handle and repo/project scopes).
"""

from __future__ import annotations

import sqlite3

import pytest


class TestDatabase:

    def test_creates_parent_dirs_and_tables(self, tmp_path):
        from workstore.storage.database import Database
        db = Database(str(tmp_path / "nested" / "dir" / "ws.db"))
        with db.connect() as conn:
            names = {r["name"] for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"repos", "projects", "business_rules", "embeddings", "tickets",
                "ticket_comments"} <= names

    def test_reopen_runs_migrations_quietly(self, tmp_path):
        from workstore.storage.database import Database
        path = str(tmp_path / "ws.db")
        Database(path)
        Database(path)

    def test_wal_mode(self, db):
        with db.connect() as conn:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"

    def test_rollback_on_error(self, db):
        with pytest.raises(RuntimeError):
            with db.connect() as conn:
                conn.execute(
                    "INSERT INTO repos (id, name, created_at, updated_at) "
                    "VALUES ('r', 'n', 't', 't')")
                raise RuntimeError("boom")
        with db.connect() as conn:
            assert conn.execute("SELECT COUNT(*) FROM repos").fetchone()[0] == 0

    def test_embedding_chunk_identity_is_unique(self, db):
        row = ("e1", "document", "d1", 0, "r", None, b"\x00", "m", 1, "h", 1, 0, 1, "t")
        sql = ("INSERT INTO embeddings (id, entity_type, entity_id, chunk_index, repo_id, "
               "project_id, vector, embedding_model, dimension, content_hash, total_chunks, "
               "chunk_start_offset, chunk_end_offset, created_at) "
               "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)")
        with db.connect() as conn:
            conn.execute(sql, row)
        with pytest.raises(sqlite3.IntegrityError):
            with db.connect() as conn:
                conn.execute(sql, ("e2",) + row[1:])


class TestScopes:

    def test_repo_names_unique(self, scopes, repo):
        from workstore.errors import ConflictError
        with pytest.raises(ConflictError):
            scopes.create_repo("shop")

    def test_project_requires_repo(self, scopes):
        from workstore.errors import NotFoundError
        with pytest.raises(NotFoundError):
            scopes.create_project("missing", "p")

    def test_project_names_unique_per_repo(self, scopes, repo, project):
        from workstore.errors import ConflictError
        with pytest.raises(ConflictError):
            scopes.create_project(repo.id, "checkout")
        other = scopes.create_repo("blog")
        scopes.create_project(other.id, "checkout")

    def test_update_project_partial(self, scopes, project):
        updated = scopes.update_project(project.id, inherits_from_repo=False)
        assert updated.inherits_from_repo is False
        assert updated.name == project.name

    def test_resolve_scope(self, scopes, repo, project):
        from workstore.errors import ValidationError
        assert scopes.resolve_scope(None, project.id) == (repo.id, project.id)
        assert scopes.resolve_scope(repo.id, None) == (repo.id, None)
        with pytest.raises(ValidationError):
            scopes.resolve_scope(None, None)

    def test_resolve_scope_inheritance_gate(self, scopes, project):
        from workstore.errors import ValidationError
        scopes.update_project(project.id, inherits_from_repo=False)
        scopes.resolve_scope(None, project.id)
        with pytest.raises(ValidationError):
            scopes.resolve_scope(None, project.id, require_inheritance=True)

    def test_listing(self, scopes, repo, project):
        assert [r.name for r in scopes.list_repos()] == ["shop"]
        assert [p.id for p in scopes.list_projects(repo.id)] == [project.id]

    def test_update_repo(self, scopes, repo):
        renamed = scopes.update_repo(repo.id, name="store", description="")
        assert renamed.name == "store"
        assert renamed.description is None
        assert scopes.update_repo(repo.id, description="Shop").name == "store"

    def test_update_repo_requires_a_field(self, scopes, repo):
        from workstore.errors import ValidationError
        with pytest.raises(ValidationError):
            scopes.update_repo(repo.id)

    def test_update_repo_rename_clash(self, scopes, repo):
        from workstore.errors import ConflictError, NotFoundError
        scopes.create_repo("blog")
        with pytest.raises(ConflictError):
            scopes.update_repo(repo.id, name="blog")
        with pytest.raises(NotFoundError):
            scopes.update_repo("missing", name="x")
