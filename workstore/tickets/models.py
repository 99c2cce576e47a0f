"""
Ticket data model — atomic units of work with ``depends_on`` references.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..errors import ValidationError

TICKET_ENTITY_TYPE = "ticket"


class TicketStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """0 for critical … 3 for low; lower ranks are worked first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class TicketType(str, Enum):
    SETUP = "setup"
    IMPLEMENTATION = "implementation"
    TESTING = "testing"
    DOCUMENTATION = "documentation"


def parse_enum(enum_cls, value, field_name: str):
    """Coerce *value* to a member of *enum_cls* or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} '{value}'. Expected one of: {allowed}",
            field=field_name, value=value,
        )


@dataclass
class Ticket:
    """A stored ticket.  ``depends_on`` holds ticket ids, never titles."""

    id: str
    project_id: str
    title: str
    status: TicketStatus = TicketStatus.PENDING
    priority: Priority = Priority.MEDIUM
    order: int = 0
    type: Optional[TicketType] = None
    depends_on: list[str] = field(default_factory=list)
    description: Optional[str] = None
    estimated_time: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    validation_criteria: list[str] = field(default_factory=list)
    objectives: list[str] = field(default_factory=list)
    external_id: Optional[str] = None
    assignee: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority.value,
            "order": self.order,
            "type": self.type.value if self.type else None,
            "depends_on": list(self.depends_on),
            "description": self.description,
            "estimated_time": self.estimated_time,
            "tags": list(self.tags),
            "validation_criteria": list(self.validation_criteria),
            "objectives": list(self.objectives),
            "external_id": self.external_id,
            "assignee": self.assignee,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }


@dataclass
class TicketInput:
    """A ticket submitted for batch creation; dependencies are titles."""

    title: str
    description: Optional[str] = None
    dependencies: list[str] = field(default_factory=list)
    priority: Priority | str = Priority.MEDIUM
    type: Optional[TicketType | str] = None
    estimated_time: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    validation_criteria: list[str] = field(default_factory=list)
    objectives: list[str] = field(default_factory=list)
    external_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TicketInput":
        known = {
            "title", "description", "dependencies", "priority", "type",
            "estimated_time", "tags", "validation_criteria", "objectives",
            "external_id",
        }
        if not isinstance(data, dict):
            raise ValidationError("Each ticket must be an object of fields")
        unknown = set(data) - known
        if unknown:
            raise ValidationError(
                f"Unknown ticket field(s): {', '.join(sorted(unknown))}"
            )
        if "title" not in data:
            raise ValidationError("Every ticket requires a non-empty title", field="title")
        return cls(**data)

    def validate(self) -> None:
        """Check field types before anything is resolved or written."""
        if not isinstance(self.title, str) or not self.title.strip():
            raise ValidationError("Every ticket requires a non-empty title", field="title")
        for name in ("dependencies", "tags", "validation_criteria", "objectives"):
            value = getattr(self, name)
            if value is None:
                continue
            if (not isinstance(value, (list, tuple))
                    or not all(isinstance(v, str) for v in value)):
                raise ValidationError(
                    f'Ticket "{self.title}": {name} must be a list of strings',
                    field=name, title=self.title,
                )


@dataclass
class TicketComment:
    id: str
    ticket_id: str
    content: str
    created_by: Optional[str]
    created_at: str
    updated_at: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "content": self.content,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
