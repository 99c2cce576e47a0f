"""
Execution planner — which tickets can be worked now, and in what order.

State is derived on every call, never stored:

- ``completed`` and ``in-progress`` tickets keep their stored status.
- A ``pending`` ticket whose dependencies are all completed is available.
- Anything else that is not completed is blocked.

Available tickets are ranked by priority (critical first) and then by
ascending ``order``, which makes the ranking a total order.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .graph import DanglingReference, DependencyGraph
from .models import Ticket, TicketStatus, TicketType

logger = logging.getLogger(__name__)


def recommendation_key(ticket: Ticket) -> tuple[int, int]:
    return (ticket.priority.rank, ticket.order)


@dataclass
class BlockedTicket:
    ticket: Ticket
    blocked_by: list[str]

    def to_dict(self) -> dict:
        data = self.ticket.to_dict()
        data["blocked_by"] = list(self.blocked_by)
        return data


@dataclass
class NextStep:
    ticket: Ticket
    dependencies: list[str]
    reason: str

    def to_dict(self) -> dict:
        data = self.ticket.to_dict()
        data["dependencies"] = list(self.dependencies)
        data["reason"] = self.reason
        return data


@dataclass
class ExecutionPlan:
    available: list[Ticket] = field(default_factory=list)
    blocked: list[BlockedTicket] = field(default_factory=list)
    in_progress: list[Ticket] = field(default_factory=list)
    completed: list[Ticket] = field(default_factory=list)
    dangling: list[DanglingReference] = field(default_factory=list)
    total_available: int = 0

    @property
    def recommended(self) -> Optional[Ticket]:
        return self.available[0] if self.available else None

    def to_dict(self) -> dict:
        recommended = self.recommended
        return {
            "available": [t.to_dict() for t in self.available],
            "blocked": [b.to_dict() for b in self.blocked],
            "in_progress": [t.to_dict() for t in self.in_progress],
            "completed": [t.to_dict() for t in self.completed],
            "recommended": recommended.to_dict() if recommended else None,
            "dangling": [d.to_dict() for d in self.dangling],
            "total_available": self.total_available,
        }


def _partition(graph: DependencyGraph):
    available: list[Ticket] = []
    blocked: list[BlockedTicket] = []
    in_progress: list[Ticket] = []
    completed: list[Ticket] = []

    for ticket in graph.tickets():
        if ticket.status == TicketStatus.COMPLETED:
            completed.append(ticket)
            continue
        if ticket.status == TicketStatus.IN_PROGRESS:
            in_progress.append(ticket)
            continue
        waiting_on = [
            dep_id for dep_id in graph.dependencies(ticket.id)
            if graph.ticket(dep_id).status != TicketStatus.COMPLETED
        ]
        if ticket.status == TicketStatus.PENDING and not waiting_on:
            available.append(ticket)
        else:
            blocked.append(BlockedTicket(ticket, waiting_on))

    available.sort(key=recommendation_key)
    blocked.sort(key=lambda b: recommendation_key(b.ticket))
    in_progress.sort(key=recommendation_key)
    completed.sort(key=lambda t: t.order)
    return available, blocked, in_progress, completed


def _exclude_testing(tickets: list[Ticket]) -> list[Ticket]:
    return [t for t in tickets if t.type != TicketType.TESTING]


def build_plan(
    tickets: Iterable[Ticket],
    limit: Optional[int] = None,
    include_testing: bool = True,
) -> ExecutionPlan:
    """
    Partition *tickets* into available / blocked / in-progress / completed.

    Parameters
    ----------
    tickets:
        Every ticket of one project.
    limit:
        Truncate the available list; ``total_available`` keeps the full count.
    include_testing:
        When False, testing tickets are left out of the available list.
    """
    graph = DependencyGraph(tickets)
    available, blocked, in_progress, completed = _partition(graph)
    if not include_testing:
        available = _exclude_testing(available)

    total = len(available)
    if limit is not None:
        available = available[:max(0, limit)]

    logger.debug(
        "Plan: %d available, %d blocked, %d in progress, %d completed",
        total, len(blocked), len(in_progress), len(completed),
    )
    return ExecutionPlan(
        available=available,
        blocked=blocked,
        in_progress=in_progress,
        completed=completed,
        dangling=list(graph.dangling),
        total_available=total,
    )


def _reason(ticket: Ticket, dependencies: list[str]) -> str:
    label = {"critical": "Critical priority", "high": "High priority"}.get(
        ticket.priority.value
    )
    if label:
        tail = "all dependencies completed" if dependencies else "no blockers"
        return f"{label}, {tail}"
    return "All dependencies completed" if dependencies else "No blockers"


def next_steps(
    tickets: Iterable[Ticket],
    limit: int = 3,
    include_testing: bool = True,
) -> tuple[list[NextStep], int]:
    """Top *limit* available tickets with a reason each, plus the total count."""
    graph = DependencyGraph(tickets)
    available, _, _, _ = _partition(graph)
    if not include_testing:
        available = _exclude_testing(available)

    steps = [
        NextStep(ticket, graph.dependencies(ticket.id),
                 _reason(ticket, graph.dependencies(ticket.id)))
        for ticket in available[:max(0, limit)]
    ]
    return steps, len(available)


def topological_order(tickets: Iterable[Ticket]) -> list[Ticket]:
    """All tickets, dependencies first, ties broken by recommendation rank."""
    return DependencyGraph(tickets).topological_order(key=recommendation_key)


@dataclass
class ProjectProgress:
    """Status counts and completion percentage for one project."""
    total: int
    by_status: dict[str, int]
    progress: int
    plan: ExecutionPlan

    def to_dict(self) -> dict:
        recommended = self.plan.recommended
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "progress": self.progress,
            "available": [t.id for t in self.plan.available],
            "blocked": [b.ticket.id for b in self.plan.blocked],
            "recommended": recommended.id if recommended else None,
        }


def project_progress(tickets: Iterable[Ticket]) -> ProjectProgress:
    """
    Summarise a project's tickets.

    ``pending``, ``in_progress`` and ``completed`` count stored status;
    ``blocked`` counts open tickets the planner cannot start yet.
    ``progress`` is the completed share as a whole percentage, rounded
    half up, and 0 for a project without tickets.
    """
    tickets = list(tickets)
    plan = build_plan(tickets)
    counts = {status: 0 for status in TicketStatus}
    for ticket in tickets:
        counts[ticket.status] += 1

    total = len(tickets)
    completed = counts[TicketStatus.COMPLETED]
    progress = math.floor(completed * 100 / total + 0.5) if total else 0
    return ProjectProgress(
        total=total,
        by_status={
            "pending": counts[TicketStatus.PENDING],
            "in_progress": counts[TicketStatus.IN_PROGRESS],
            "completed": completed,
            "blocked": len(plan.blocked),
        },
        progress=progress,
        plan=plan,
    )
