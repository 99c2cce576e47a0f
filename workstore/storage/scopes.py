"""
Repos and projects — the two scopes context and tickets live under.

A project may inherit its repo's context.  Only projects with
``inherits_from_repo`` enabled accept project-scoped context writes.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional

from ..errors import ConflictError, NotFoundError, ValidationError
from .database import Database, generate_id, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Repo:
    id: str
    name: str
    description: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class Project:
    id: str
    repo_id: str
    name: str
    description: Optional[str]
    inherits_from_repo: bool
    created_at: str
    updated_at: str


def _row_to_repo(row: sqlite3.Row) -> Repo:
    return Repo(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        repo_id=row["repo_id"],
        name=row["name"],
        description=row["description"],
        inherits_from_repo=bool(row["inherits_from_repo"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class ScopeRepository:
    """CRUD over the ``repos`` and ``projects`` tables."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Repos
    # ------------------------------------------------------------------

    def create_repo(self, name: str, description: Optional[str] = None) -> Repo:
        if not name or not name.strip():
            raise ValidationError("Repo requires a name")
        now = utc_now()
        repo_id = generate_id()
        try:
            with self._db.connect() as conn:
                conn.execute(
                    "INSERT INTO repos (id, name, description, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (repo_id, name, description, now, now),
                )
        except sqlite3.IntegrityError:
            raise ConflictError(f'Repo "{name}" already exists', name=name)
        logger.info("Created repo %s (%s)", name, repo_id)
        return self.require_repo(repo_id)

    def get_repo(self, repo_id: str) -> Optional[Repo]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM repos WHERE id = ?", (repo_id,)
            ).fetchone()
        return _row_to_repo(row) if row else None

    def require_repo(self, repo_id: str) -> Repo:
        repo = self.get_repo(repo_id)
        if repo is None:
            raise NotFoundError("Repo", repo_id)
        return repo

    def list_repos(self) -> list[Repo]:
        with self._db.connect() as conn:
            rows = conn.execute("SELECT * FROM repos ORDER BY name ASC").fetchall()
        return [_row_to_repo(r) for r in rows]

    def update_repo(
        self,
        repo_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Repo:
        """Patch the supplied fields; an empty description clears it."""
        self.require_repo(repo_id)
        updates: list[str] = []
        params: list = []
        if name is not None:
            if not name.strip():
                raise ValidationError("Repo name cannot be empty")
            updates.append("name = ?")
            params.append(name)
        if description is not None:
            updates.append("description = ?")
            params.append(description or None)
        if not updates:
            raise ValidationError(
                "No fields to update: provide name or description"
            )

        updates.append("updated_at = ?")
        params.extend([utc_now(), repo_id])
        try:
            with self._db.connect() as conn:
                conn.execute(
                    f"UPDATE repos SET {', '.join(updates)} WHERE id = ?", params
                )
        except sqlite3.IntegrityError:
            raise ConflictError(f'Repo "{name}" already exists', name=name)
        logger.info("Updated repo %s", repo_id)
        return self.require_repo(repo_id)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        repo_id: str,
        name: str,
        description: Optional[str] = None,
        inherits_from_repo: bool = True,
    ) -> Project:
        if not name or not name.strip():
            raise ValidationError("Project requires a name")
        self.require_repo(repo_id)
        now = utc_now()
        project_id = generate_id()
        try:
            with self._db.connect() as conn:
                conn.execute(
                    "INSERT INTO projects (id, repo_id, name, description, "
                    "inherits_from_repo, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (project_id, repo_id, name, description,
                     1 if inherits_from_repo else 0, now, now),
                )
        except sqlite3.IntegrityError:
            raise ConflictError(
                f'Project "{name}" already exists in this repo', name=name
            )
        logger.info("Created project %s (%s) in repo %s", name, project_id, repo_id)
        return self.require_project(project_id)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        return _row_to_project(row) if row else None

    def require_project(self, project_id: str) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    def list_projects(self, repo_id: str) -> list[Project]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM projects WHERE repo_id = ? ORDER BY name ASC",
                (repo_id,),
            ).fetchall()
        return [_row_to_project(r) for r in rows]

    def update_project(
        self,
        project_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        inherits_from_repo: Optional[bool] = None,
    ) -> Project:
        """Patch only the supplied fields."""
        self.require_project(project_id)
        updates: list[str] = []
        params: list = []
        if name is not None:
            if not name.strip():
                raise ValidationError("Project name cannot be empty")
            updates.append("name = ?")
            params.append(name)
        if description is not None:
            updates.append("description = ?")
            params.append(description)
        if inherits_from_repo is not None:
            updates.append("inherits_from_repo = ?")
            params.append(1 if inherits_from_repo else 0)
        if not updates:
            return self.require_project(project_id)

        updates.append("updated_at = ?")
        params.extend([utc_now(), project_id])
        try:
            with self._db.connect() as conn:
                conn.execute(
                    f"UPDATE projects SET {', '.join(updates)} WHERE id = ?",
                    params,
                )
        except sqlite3.IntegrityError:
            raise ConflictError(
                f'Project "{name}" already exists in this repo', name=name
            )
        return self.require_project(project_id)

    def resolve_scope(
        self,
        repo_id: Optional[str],
        project_id: Optional[str],
        require_inheritance: bool = False,
    ) -> tuple[str, Optional[str]]:
        """
        Validate a ``(repo_id, project_id)`` pair and fill in the repo.

        When only *project_id* is given the owning repo is used.  With
        *require_inheritance* a project whose ``inherits_from_repo`` is
        off is rejected, which is the gate for project-scoped context.

        Returns
        -------
        tuple[str, Optional[str]]
            The validated ``(repo_id, project_id)``.
        """
        if not repo_id and not project_id:
            raise ValidationError("Either repo_id or project_id is required")

        if project_id:
            project = self.require_project(project_id)
            if repo_id and project.repo_id != repo_id:
                raise ValidationError(
                    f"Project {project_id} belongs to a different repo "
                    f"({project.repo_id}, expected {repo_id})",
                    project_id=project_id,
                )
            if require_inheritance and not project.inherits_from_repo:
                raise ValidationError(
                    f'Project "{project.name}" has inherits_from_repo=false. '
                    "Enable inheritance to store project-specific context.",
                    project_id=project_id,
                )
            repo_id = project.repo_id

        self.require_repo(repo_id)
        return repo_id, project_id
