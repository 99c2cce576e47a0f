"""SQLite persistence: the store handle plus the repo/project scopes."""

from .database import Database, generate_id, utc_now
from .scopes import Project, Repo, ScopeRepository

__all__ = [
    "Database",
    "Project",
    "Repo",
    "ScopeRepository",
    "generate_id",
    "utc_now",
]
