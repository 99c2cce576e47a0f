"""
Ticket repository: batch creation, lookup, partial update, deletion and
per-ticket comments.

Batch creation takes dependencies as titles and resolves them to ids in
one pass.  Self-references and cycles reject the whole batch before any
row is written; the insert itself runs in a single transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Iterator, Optional

from ..errors import (
    ConflictError,
    CycleError,
    NotFoundError,
    SelfDependencyError,
    ValidationError,
)
from ..storage.database import Database, generate_id, utc_now
from ..storage.scopes import ScopeRepository
from .graph import DependencyGraph, detect_cycle
from .models import (
    Priority,
    Ticket,
    TicketComment,
    TicketInput,
    TicketStatus,
    TicketType,
    parse_enum,
)

logger = logging.getLogger(__name__)

_LIST_FIELDS = ("tags", "validation_criteria", "objectives")

_UPDATABLE = {
    "title", "description", "status", "priority", "type", "estimated_time",
    "tags", "validation_criteria", "objectives", "external_id", "assignee",
    "dependencies",
}


def _row_to_ticket(row: sqlite3.Row) -> Ticket:
    return Ticket(
        id=row["id"],
        project_id=row["project_id"],
        title=row["title"],
        status=TicketStatus(row["status"]),
        priority=Priority(row["priority"]),
        order=row["order"],
        type=TicketType(row["type"]) if row["type"] else None,
        depends_on=json.loads(row["depends_on"] or "[]"),
        description=row["description"],
        estimated_time=row["estimated_time"],
        tags=json.loads(row["tags"] or "[]"),
        validation_criteria=json.loads(row["validation_criteria"] or "[]"),
        objectives=json.loads(row["objectives"] or "[]"),
        external_id=row["external_id"],
        assignee=row["assignee"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )


def _ticket_params(t: Ticket) -> tuple:
    return (
        t.id, t.project_id, t.title, t.description, t.status.value,
        t.priority.value, t.order, t.type.value if t.type else None,
        json.dumps(t.depends_on), t.estimated_time, json.dumps(t.tags),
        json.dumps(t.validation_criteria), json.dumps(t.objectives),
        t.external_id, t.assignee, t.created_at, t.updated_at, t.completed_at,
    )


_INSERT_SQL = (
    'INSERT INTO tickets (id, project_id, title, description, status, priority, '
    '"order", type, depends_on, estimated_time, tags, validation_criteria, '
    'objectives, external_id, assignee, created_at, updated_at, completed_at) '
    'VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)'
)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    return [x for x in items if not (x in seen or seen.add(x))]


def _check_strings(name: str, value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{name} must be a list of strings", field=name)
    return list(value)


_COMMENT_ORDER = ("created_at", "updated_at")


def clamp_limit(limit: int) -> int:
    return min(100, max(1, limit))


def _comment_text(content) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Comment content cannot be empty", field="content")
    return content.strip()


def _row_to_comment(row: sqlite3.Row) -> TicketComment:
    return TicketComment(
        id=row["id"],
        ticket_id=row["ticket_id"],
        content=row["content"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class TicketRepository:
    """CRUD over the ``tickets`` table, scoped by project."""

    def __init__(self, db: Database, scopes: ScopeRepository) -> None:
        self._db = db
        self._scopes = scopes

    # ------------------------------------------------------------------
    # Batch creation
    # ------------------------------------------------------------------

    def store_batch(self, project_id: str, inputs: list) -> list[Ticket]:
        """
        Create a batch of tickets whose dependencies are given by title.

        Dependency titles may name other tickets in the batch or tickets
        already stored in the project.

        Raises
        ------
        ValidationError
            Missing or empty title, non-list dependencies, duplicate title
            in the batch, bad enum value, unknown dependency title.
        SelfDependencyError
            A ticket lists its own title.
        CycleError
            The batch's dependencies form a cycle; nothing is written.
        ConflictError
            A title already exists in the project.
        """
        self._scopes.require_project(project_id)
        if not isinstance(inputs, (list, tuple)):
            raise ValidationError("tickets must be a list of ticket objects")
        items = [i if isinstance(i, TicketInput) else TicketInput.from_dict(i)
                 for i in inputs]
        if not items:
            raise ValidationError("At least one ticket is required")

        titles: list[str] = []
        for item in items:
            item.validate()
            if item.title in titles:
                raise ValidationError(
                    f'Duplicate title in batch: "{item.title}"', title=item.title
                )
            titles.append(item.title)

        # Self-dependency is reported on its own, before cycle detection.
        for item in items:
            if item.title in (item.dependencies or []):
                raise SelfDependencyError(item.title)

        existing = {t.title: t for t in self.list(project_id)}
        clashes = [t for t in titles if t in existing]
        if clashes:
            raise ConflictError(
                f"Ticket title(s) already exist in project: {', '.join(clashes)}",
                titles=clashes,
            )

        known = set(titles) | set(existing)
        for item in items:
            unknown = [d for d in item.dependencies or [] if d not in known]
            if unknown:
                raise ValidationError(
                    f'Ticket "{item.title}" depends on unknown ticket(s): '
                    f"{', '.join(unknown)}",
                    title=item.title, unknown=unknown,
                )

        cycle = detect_cycle(titles, [item.dependencies or [] for item in items])
        if cycle:
            raise CycleError(cycle)

        now = utc_now()
        start_order = self._max_order(project_id) + 1
        ids = {title: generate_id() for title in titles}
        ids.update({title: t.id for title, t in existing.items()})

        tickets: list[Ticket] = []
        for offset, item in enumerate(items):
            tickets.append(Ticket(
                id=ids[item.title],
                project_id=project_id,
                title=item.title,
                status=TicketStatus.PENDING,
                priority=parse_enum(Priority, item.priority or Priority.MEDIUM, "priority"),
                order=start_order + offset,
                type=parse_enum(TicketType, item.type, "type") if item.type else None,
                depends_on=_dedupe([ids[d] for d in item.dependencies or []]),
                description=item.description,
                estimated_time=item.estimated_time,
                tags=_check_strings("tags", item.tags),
                validation_criteria=_check_strings("validation_criteria",
                                                   item.validation_criteria),
                objectives=_check_strings("objectives", item.objectives),
                external_id=item.external_id,
                created_at=now,
                updated_at=now,
            ))

        with self._db.connect() as conn:
            conn.executemany(_INSERT_SQL, [_ticket_params(t) for t in tickets])

        logger.info("Stored %d ticket(s) in project %s", len(tickets), project_id)
        return tickets

    def _max_order(self, project_id: str) -> int:
        with self._db.connect() as conn:
            row = conn.execute(
                'SELECT MAX("order") FROM tickets WHERE project_id = ?', (project_id,)
            ).fetchone()
        return row[0] if row and row[0] is not None else 0

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, ticket_id: str) -> Optional[Ticket]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM tickets WHERE id = ?", (ticket_id,)
            ).fetchone()
        return _row_to_ticket(row) if row else None

    def find(self, project_id: str, ref: str) -> Optional[Ticket]:
        """Look a ticket up by id, then by title, within *project_id*."""
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM tickets WHERE project_id = ? AND id = ?",
                (project_id, ref),
            ).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT * FROM tickets WHERE project_id = ? AND title = ?",
                    (project_id, ref),
                ).fetchone()
        return _row_to_ticket(row) if row else None

    def require(self, project_id: str, ref: str) -> Ticket:
        ticket = self.find(project_id, ref)
        if ticket is None:
            raise NotFoundError("Ticket", ref)
        return ticket

    def list(
        self,
        project_id: str,
        status=None,
        priority=None,
        type=None,
    ) -> list[Ticket]:
        query = "SELECT * FROM tickets WHERE project_id = ?"
        params: list = [project_id]
        if status is not None:
            query += " AND status = ?"
            params.append(parse_enum(TicketStatus, status, "status").value)
        if priority is not None:
            query += " AND priority = ?"
            params.append(parse_enum(Priority, priority, "priority").value)
        if type is not None:
            query += " AND type = ?"
            params.append(parse_enum(TicketType, type, "type").value)
        query += ' ORDER BY "order" ASC'

        with self._db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_ticket(r) for r in rows]

    def iter_all(self) -> Iterator[tuple[Ticket, str]]:
        """Every ticket with the repo id of its project."""
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT t.*, p.repo_id AS _repo_id FROM tickets t "
                "JOIN projects p ON p.id = t.project_id"
            ).fetchall()
        for row in rows:
            yield _row_to_ticket(row), row["_repo_id"]

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, project_id: str, ref: str, patch: dict) -> Ticket:
        """
        Apply a partial update to the ticket named by *ref* (id or title).

        ``dependencies`` replaces the whole list; entries may be ids or
        titles.  The stored list is untouched if validation fails.
        """
        unknown = set(patch) - _UPDATABLE
        if unknown:
            raise ValidationError(
                f"Field(s) cannot be updated: {', '.join(sorted(unknown))}",
                fields=sorted(unknown),
            )
        ticket = self.require(project_id, ref)
        columns: dict[str, object] = {}

        if "title" in patch:
            title = patch["title"]
            if not isinstance(title, str) or not title.strip():
                raise ValidationError("Ticket title cannot be empty", field="title")
            columns["title"] = title
        for name in ("description", "estimated_time", "external_id", "assignee"):
            if name in patch:
                columns[name] = patch[name]
        for name in _LIST_FIELDS:
            if name in patch:
                columns[name] = json.dumps(_check_strings(name, patch[name]))
        if "priority" in patch:
            columns["priority"] = parse_enum(Priority, patch["priority"], "priority").value
        if "type" in patch:
            columns["type"] = (parse_enum(TicketType, patch["type"], "type").value
                               if patch["type"] else None)
        if "status" in patch:
            status = parse_enum(TicketStatus, patch["status"], "status")
            columns["status"] = status.value
            if status == TicketStatus.COMPLETED:
                if ticket.status != TicketStatus.COMPLETED:
                    columns["completed_at"] = utc_now()
            else:
                columns["completed_at"] = None
        if "dependencies" in patch:
            dep_ids = self._resolve_dependencies(ticket, patch["dependencies"] or [])
            columns["depends_on"] = json.dumps(dep_ids)

        if not columns:
            return ticket

        columns["updated_at"] = utc_now()
        assignments = ", ".join(f'"{name}" = ?' for name in columns)
        try:
            with self._db.connect() as conn:
                conn.execute(
                    f"UPDATE tickets SET {assignments} WHERE id = ?",
                    [*columns.values(), ticket.id],
                )
        except sqlite3.IntegrityError:
            raise ConflictError(
                f'Ticket title "{patch.get("title")}" already exists in project',
                title=patch.get("title"),
            )

        logger.info("Updated ticket %s (%s)", ticket.title,
                    ", ".join(sorted(k for k in columns if k != "updated_at")))
        return self.require(project_id, ticket.id)

    def _resolve_dependencies(self, ticket: Ticket, refs: list) -> list[str]:
        refs = _check_strings("dependencies", refs)
        if ticket.id in refs or ticket.title in refs:
            raise SelfDependencyError(ticket.title)

        project_tickets = self.list(ticket.project_id)
        by_id = {t.id: t for t in project_tickets}
        by_title = {t.title: t for t in project_tickets}

        dep_ids: list[str] = []
        missing: list[str] = []
        for dep_ref in refs:
            target = by_id.get(dep_ref) or by_title.get(dep_ref)
            if target is None:
                missing.append(dep_ref)
            else:
                dep_ids.append(target.id)
        if missing:
            raise ValidationError(
                f"Unknown dependency ticket(s): {', '.join(missing)}", unknown=missing
            )
        dep_ids = _dedupe(dep_ids)

        cycle = DependencyGraph(project_tickets).find_cycle_through(ticket.id, dep_ids)
        if cycle:
            raise CycleError([by_id[tid].title for tid in cycle])
        return dep_ids

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, project_id: str, ref: str,
               force: bool = False) -> tuple[Ticket, list[str]]:
        """
        Delete a ticket and drop its id from every dependent's ``depends_on``.

        Dependents are never left pointing at the removed ticket.  Without
        *force* the deletion still happens but is logged as a warning.

        Returns
        -------
        tuple[Ticket, list[str]]
            The deleted ticket and the ids of the dependents that were rewritten.
        """
        ticket = self.require(project_id, ref)
        dependents = [
            t for t in self.list(project_id)
            if t.id != ticket.id and ticket.id in t.depends_on
        ]
        if dependents and not force:
            logger.warning(
                'Deleting ticket "%s" which %d ticket(s) depend on: %s',
                ticket.title, len(dependents),
                ", ".join(t.title for t in dependents),
            )

        now = utc_now()
        with self._db.connect() as conn:
            for dependent in dependents:
                remaining = [d for d in dependent.depends_on if d != ticket.id]
                conn.execute(
                    "UPDATE tickets SET depends_on = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(remaining), now, dependent.id),
                )
            conn.execute("DELETE FROM tickets WHERE id = ?", (ticket.id,))

        logger.info("Deleted ticket %s (%s), rewrote %d dependent(s)",
                    ticket.title, ticket.id, len(dependents))
        return ticket, [t.id for t in dependents]

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(self, project_id: str, ref: str, content: str,
                    created_by: Optional[str] = None) -> TicketComment:
        ticket = self.require(project_id, ref)
        content = _comment_text(content)
        now = utc_now()
        comment = TicketComment(generate_id(), ticket.id, content, created_by, now, now)
        with self._db.connect() as conn:
            conn.execute(
                "INSERT INTO ticket_comments (id, ticket_id, content, created_by, "
                "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                (comment.id, comment.ticket_id, comment.content, comment.created_by,
                 comment.created_at, comment.updated_at),
            )
        logger.info("Added comment %s to ticket %s", comment.id, ticket.title)
        return comment

    def list_comments(
        self,
        project_id: str,
        ref: str,
        offset: int = 0,
        limit: int = 20,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> tuple[list[TicketComment], int]:
        """
        One page of a ticket's comments.

        *limit* is clamped to 1..100 and *offset* to 0 or more.  Ties on the
        sort column fall back to insertion order in the same direction.

        Returns
        -------
        tuple[list[TicketComment], int]
            The page and the ticket's total comment count.
        """
        if order_by not in _COMMENT_ORDER:
            raise ValidationError(
                f"Invalid order_by '{order_by}'. Expected one of: "
                f"{', '.join(_COMMENT_ORDER)}",
                field="order_by",
            )
        ticket = self.require(project_id, ref)
        direction = "DESC" if descending else "ASC"
        with self._db.connect() as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM ticket_comments WHERE ticket_id = ?",
                (ticket.id,),
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM ticket_comments WHERE ticket_id = ? "
                f"ORDER BY {order_by} {direction}, rowid {direction} "
                f"LIMIT ? OFFSET ?",
                (ticket.id, clamp_limit(limit), max(0, offset)),
            ).fetchall()
        return [_row_to_comment(r) for r in rows], total

    def update_comment(self, comment_id: str, content: str) -> TicketComment:
        content = _comment_text(content)
        with self._db.connect() as conn:
            cursor = conn.execute(
                "UPDATE ticket_comments SET content = ?, updated_at = ? WHERE id = ?",
                (content, utc_now(), comment_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Comment", comment_id)
            row = conn.execute(
                "SELECT * FROM ticket_comments WHERE id = ?", (comment_id,)
            ).fetchone()
        return _row_to_comment(row)
