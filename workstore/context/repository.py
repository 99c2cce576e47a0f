"""
Context repository — typed CRUD over the five context tables.

One generic implementation drives every kind: the dataclass in
:mod:`workstore.context.models` says which table it lives in, which fields
are required, which are JSON lists and which must be unique per repo.
Embedding upkeep is not done here; the facade calls the lifecycle manager
after each write.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import MISSING
from dataclasses import fields as dc_fields
from typing import Iterator, Optional

from ..errors import ConflictError, NotFoundError, ValidationError
from ..storage.database import Database, generate_id, utc_now
from ..storage.scopes import ScopeRepository
from ..tickets.models import Priority, parse_enum
from .models import (
    DOCUMENT_TYPES,
    ENTITY_CLASSES,
    BusinessRule,
    ContextEntity,
    Document,
    entity_class,
    parse_context_type,
)

logger = logging.getLogger(__name__)

# Fields callers may never set through create/update.
_PROTECTED = {"id", "repo_id", "project_id", "created_at", "updated_at"}


def _row_to_entity(cls: type[ContextEntity], row: sqlite3.Row) -> ContextEntity:
    values = {}
    for f in dc_fields(cls):
        value = row[f.name]
        if f.name in cls.list_fields:
            value = json.loads(value) if value else []
        elif f.name in cls.bool_fields:
            value = bool(value)
        values[f.name] = value
    return cls(**values)


def _to_column(cls: type[ContextEntity], name: str, value):
    if name in cls.list_fields:
        return json.dumps(list(value or []))
    if name in cls.bool_fields:
        return 1 if value else 0
    return value


def _check_list(name: str, value) -> None:
    if value is None:
        return
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{name} must be a list of strings", field=name)


class ContextRepository:
    """CRUD for business rules, glossary entries, patterns, conventions and documents."""

    def __init__(self, db: Database, scopes: ScopeRepository) -> None:
        self._db = db
        self._scopes = scopes

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_fields(self, cls: type[ContextEntity], data: dict,
                         creating: bool) -> None:
        allowed = set(cls.payload_fields()) | {"created_by"}
        unknown = set(data) - allowed
        if unknown:
            raise ValidationError(
                f"Unknown field(s) for {cls.kind.value}: {', '.join(sorted(unknown))}",
                fields=sorted(unknown),
            )

        for name in cls.required:
            if creating or name in data:
                value = data.get(name)
                if value is None or (isinstance(value, str) and not value.strip()):
                    raise ValidationError(
                        f"{cls.kind.value} requires a non-empty '{name}'", field=name
                    )

        # Fields with a concrete default are stored NOT NULL.
        for f in dc_fields(cls):
            if (f.name in data and data[f.name] is None
                    and f.default is not MISSING and f.default is not None):
                raise ValidationError(
                    f"{cls.kind.value} field '{f.name}' cannot be null", field=f.name
                )

        for name in cls.list_fields:
            if name in data:
                _check_list(name, data[name])

        if cls is BusinessRule and data.get("priority") is not None:
            data["priority"] = parse_enum(Priority, data["priority"], "priority").value
        if cls is Document and data.get("document_type") is not None:
            if data["document_type"] not in DOCUMENT_TYPES:
                raise ValidationError(
                    f"Invalid document_type '{data['document_type']}'. "
                    f"Expected one of: {', '.join(DOCUMENT_TYPES)}",
                    field="document_type",
                )

    def _check_unique(self, conn: sqlite3.Connection, cls: type[ContextEntity],
                      repo_id: str, value: str,
                      exclude_id: Optional[str] = None) -> None:
        """Reject a duplicate name/term within the repo (case-sensitive)."""
        column = cls.unique_field
        if not column:
            return
        query = f"SELECT id FROM {cls.table} WHERE repo_id = ? AND {column} = ?"
        params: list = [repo_id, value]
        if exclude_id:
            query += " AND id != ?"
            params.append(exclude_id)
        if conn.execute(query, params).fetchone():
            label = cls.kind.value.replace("_", " ")
            raise ConflictError(
                f'A {label} with {column} "{value}" already exists in this repo',
                field=column, value=value,
            )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        context_type,
        data: dict,
        repo_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> ContextEntity:
        """
        Insert a new context entity.

        Parameters
        ----------
        context_type:
            A :class:`ContextType` or its string value (aliases accepted).
        data:
            Kind-specific fields, plus optional ``created_by``.
        repo_id, project_id:
            Owning scope.  A project scope requires the project to have
            ``inherits_from_repo`` enabled.

        Raises
        ------
        ValidationError, NotFoundError, ConflictError
        """
        cls = entity_class(context_type)
        data = {k: v for k, v in dict(data).items() if v is not None}
        self._validate_fields(cls, data, creating=True)
        repo_id, project_id = self._scopes.resolve_scope(
            repo_id, project_id, require_inheritance=bool(project_id)
        )

        now = utc_now()
        entity = cls(id=generate_id(), repo_id=repo_id, project_id=project_id,
                     created_at=now, updated_at=now, **data)

        columns = [f.name for f in dc_fields(cls)]
        values = [_to_column(cls, c, getattr(entity, c)) for c in columns]
        placeholders = ", ".join("?" for _ in columns)

        with self._db.connect() as conn:
            if cls.unique_field:
                self._check_unique(conn, cls, repo_id, getattr(entity, cls.unique_field))
            conn.execute(
                f"INSERT INTO {cls.table} ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )

        logger.info("Stored %s %s (%s)", cls.kind.value, entity.display_name, entity.id)
        return entity

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, context_type, entity_id: str) -> Optional[ContextEntity]:
        cls = entity_class(context_type)
        with self._db.connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {cls.table} WHERE id = ?", (entity_id,)
            ).fetchone()
        return _row_to_entity(cls, row) if row else None

    def require(self, context_type, entity_id: str) -> ContextEntity:
        entity = self.get(context_type, entity_id)
        if entity is None:
            raise NotFoundError(parse_context_type(context_type).value, entity_id)
        return entity

    def list(
        self,
        context_type,
        repo_id: str,
        project_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[ContextEntity]:
        """Entities visible in a scope.

        Without *project_id* only repo-level entities are returned; with it,
        repo-level entities plus that project's.
        """
        cls = entity_class(context_type)
        query = f"SELECT * FROM {cls.table} WHERE repo_id = ?"
        params: list = [repo_id]
        if project_id:
            query += " AND (project_id IS NULL OR project_id = ?)"
            params.append(project_id)
        else:
            query += " AND project_id IS NULL"
        if category is not None and "category" in cls.payload_fields():
            query += " AND category = ?"
            params.append(category)
        query += " ORDER BY created_at ASC"

        with self._db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_entity(cls, r) for r in rows]

    def iter_all(self) -> Iterator[ContextEntity]:
        """Every stored context entity of every kind."""
        for cls in ENTITY_CLASSES.values():
            with self._db.connect() as conn:
                rows = conn.execute(f"SELECT * FROM {cls.table}").fetchall()
            for row in rows:
                yield _row_to_entity(cls, row)

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    def update(self, context_type, entity_id: str, patch: dict) -> ContextEntity:
        """Apply a partial update; only the supplied fields change."""
        cls = entity_class(context_type)
        patch = dict(patch)
        protected = _PROTECTED & set(patch)
        if protected:
            raise ValidationError(
                f"Field(s) cannot be updated: {', '.join(sorted(protected))}",
                fields=sorted(protected),
            )
        self._validate_fields(cls, patch, creating=False)
        current = self.require(cls.kind, entity_id)
        if not patch:
            return current

        assignments = [f"{name} = ?" for name in patch]
        values = [_to_column(cls, name, value) for name, value in patch.items()]
        assignments.append("updated_at = ?")
        values.extend([utc_now(), entity_id])

        with self._db.connect() as conn:
            unique = cls.unique_field
            if unique and unique in patch and patch[unique] != getattr(current, unique):
                self._check_unique(conn, cls, current.repo_id, patch[unique],
                                   exclude_id=entity_id)
            conn.execute(
                f"UPDATE {cls.table} SET {', '.join(assignments)} WHERE id = ?",
                values,
            )

        logger.info("Updated %s %s (%s)", cls.kind.value, entity_id,
                    ", ".join(sorted(patch)))
        return self.require(cls.kind, entity_id)

    def delete(self, context_type, entity_id: str) -> bool:
        """Delete the row; returns False if it did not exist."""
        cls = entity_class(context_type)
        with self._db.connect() as conn:
            cursor = conn.execute(f"DELETE FROM {cls.table} WHERE id = ?", (entity_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted %s %s", cls.kind.value, entity_id)
        return deleted
