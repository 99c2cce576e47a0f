"""
SQLite handle for the store.

One file holds every table: repos, projects, the five context tables,
embedding chunks and tickets.  Each unit of work opens a short-lived
connection in WAL mode with a busy timeout, so concurrent callers wait
briefly instead of failing on contention.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS repos (
    id          TEXT PRIMARY KEY,
    name        TEXT UNIQUE NOT NULL,
    description TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id                  TEXT PRIMARY KEY,
    repo_id             TEXT NOT NULL REFERENCES repos(id) ON DELETE CASCADE,
    name                TEXT NOT NULL,
    description         TEXT,
    inherits_from_repo  INTEGER NOT NULL DEFAULT 1,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    UNIQUE (repo_id, name)
);

CREATE TABLE IF NOT EXISTS business_rules (
    id                TEXT PRIMARY KEY,
    repo_id           TEXT NOT NULL REFERENCES repos(id) ON DELETE CASCADE,
    project_id        TEXT REFERENCES projects(id) ON DELETE CASCADE,
    name              TEXT NOT NULL,
    description       TEXT NOT NULL,
    validation_logic  TEXT,
    examples          TEXT,
    related_domains   TEXT,
    category          TEXT,
    priority          TEXT NOT NULL DEFAULT 'medium',
    is_active         INTEGER NOT NULL DEFAULT 1,
    created_by        TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS glossary_entries (
    id             TEXT PRIMARY KEY,
    repo_id        TEXT NOT NULL REFERENCES repos(id) ON DELETE CASCADE,
    project_id     TEXT REFERENCES projects(id) ON DELETE CASCADE,
    term           TEXT NOT NULL,
    definition     TEXT NOT NULL,
    synonyms       TEXT,
    related_terms  TEXT,
    examples       TEXT,
    category       TEXT,
    created_by     TEXT,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS architecture_patterns (
    id           TEXT PRIMARY KEY,
    repo_id      TEXT NOT NULL REFERENCES repos(id) ON DELETE CASCADE,
    project_id   TEXT REFERENCES projects(id) ON DELETE CASCADE,
    name         TEXT NOT NULL,
    description  TEXT NOT NULL,
    when_to_use  TEXT,
    example      TEXT,
    benefits     TEXT,
    tradeoffs    TEXT,
    category     TEXT,
    created_by   TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS team_conventions (
    id          TEXT PRIMARY KEY,
    repo_id     TEXT NOT NULL REFERENCES repos(id) ON DELETE CASCADE,
    project_id  TEXT REFERENCES projects(id) ON DELETE CASCADE,
    category    TEXT NOT NULL,
    rule        TEXT NOT NULL,
    enforced    INTEGER NOT NULL DEFAULT 0,
    created_by  TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS documents (
    id             TEXT PRIMARY KEY,
    repo_id        TEXT NOT NULL REFERENCES repos(id) ON DELETE CASCADE,
    project_id     TEXT REFERENCES projects(id) ON DELETE CASCADE,
    title          TEXT NOT NULL,
    content        TEXT NOT NULL,
    tags           TEXT,
    mime_type      TEXT NOT NULL DEFAULT 'text/plain',
    document_type  TEXT NOT NULL DEFAULT 'general',
    created_by     TEXT,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS embeddings (
    id                  TEXT PRIMARY KEY,
    entity_type         TEXT NOT NULL,
    entity_id           TEXT NOT NULL,
    chunk_index         INTEGER NOT NULL DEFAULT 0,
    repo_id             TEXT NOT NULL,
    project_id          TEXT,
    vector              BLOB NOT NULL,
    embedding_model     TEXT NOT NULL,
    dimension           INTEGER NOT NULL,
    content_hash        TEXT NOT NULL,
    total_chunks        INTEGER NOT NULL DEFAULT 1,
    chunk_start_offset  INTEGER NOT NULL DEFAULT 0,
    chunk_end_offset    INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL,
    UNIQUE (entity_type, entity_id, chunk_index)
);

CREATE TABLE IF NOT EXISTS tickets (
    id                   TEXT PRIMARY KEY,
    project_id           TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    title                TEXT NOT NULL,
    description          TEXT,
    status               TEXT NOT NULL DEFAULT 'pending',
    priority             TEXT NOT NULL DEFAULT 'medium',
    "order"              INTEGER NOT NULL DEFAULT 0,
    type                 TEXT,
    depends_on           TEXT NOT NULL DEFAULT '[]',
    estimated_time       TEXT,
    tags                 TEXT,
    validation_criteria  TEXT,
    objectives           TEXT,
    external_id          TEXT,
    assignee             TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL,
    completed_at         TEXT,
    UNIQUE (project_id, title)
);

CREATE TABLE IF NOT EXISTS ticket_comments (
    id          TEXT PRIMARY KEY,
    ticket_id   TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
    content     TEXT NOT NULL,
    created_by  TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_projects_repo        ON projects(repo_id);
CREATE INDEX IF NOT EXISTS idx_business_rules_repo  ON business_rules(repo_id);
CREATE INDEX IF NOT EXISTS idx_glossary_repo        ON glossary_entries(repo_id);
CREATE INDEX IF NOT EXISTS idx_patterns_repo        ON architecture_patterns(repo_id);
CREATE INDEX IF NOT EXISTS idx_conventions_repo     ON team_conventions(repo_id);
CREATE INDEX IF NOT EXISTS idx_documents_repo       ON documents(repo_id);
CREATE INDEX IF NOT EXISTS idx_embeddings_entity    ON embeddings(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_embeddings_scope     ON embeddings(repo_id, project_id);
CREATE INDEX IF NOT EXISTS idx_tickets_project      ON tickets(project_id);
CREATE INDEX IF NOT EXISTS idx_comments_ticket      ON ticket_comments(ticket_id);
"""

# Applied to existing databases missing newer columns.
_MIGRATIONS = [
    "ALTER TABLE tickets ADD COLUMN assignee TEXT DEFAULT NULL",
    "ALTER TABLE tickets ADD COLUMN completed_at TEXT DEFAULT NULL",
]


def generate_id() -> str:
    """Return a fresh random identifier."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string (sortable as text)."""
    return datetime.now(timezone.utc).isoformat()


class Database:
    """
    Explicitly constructed SQLite store handle.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created (with parent
        directories) if absent.
    busy_timeout:
        Seconds a connection waits on a locked database before failing.
    """

    def __init__(self, db_path: str, busy_timeout: float = 10.0) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self._init_db()
        logger.debug("Opened database %s", db_path)

    @property
    def path(self) -> str:
        return self._db_path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on error."""
        conn = sqlite3.connect(self._db_path, timeout=self._busy_timeout)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create tables and run any pending schema migrations."""
        with self.connect() as conn:
            conn.executescript(_SCHEMA)
            for stmt in _MIGRATIONS:
                try:
                    conn.execute(stmt)
                except sqlite3.OperationalError:
                    # column already present
                    pass
