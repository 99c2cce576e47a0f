"""
Ticket dependency graph.

Edges run from a dependency to the ticket that depends on it, so
predecessors are "what this ticket waits for" and successors are "what
this ticket unblocks".  The graph is rebuilt from stored ``depends_on``
lists on every planning read; it is never persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import networkx as nx

from ..errors import CycleError
from .models import Ticket

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Cycle detection over a submitted batch (titles, not ids)
# ---------------------------------------------------------------------------

_WHITE, _GRAY, _BLACK = 0, 1, 2


def detect_cycle(titles: Sequence[str],
                 dependencies: Sequence[Iterable[str]]) -> Optional[list[str]]:
    """
    Find the first dependency cycle among a batch of tickets.

    Parameters
    ----------
    titles:
        Ticket titles, one per node.
    dependencies:
        For each title, the titles it depends on.  Titles outside the
        batch are ignored; they cannot close a cycle.

    Returns
    -------
    list[str] | None
        Titles along the cycle starting at the repeated ticket, in
        "depends on" order, or None if the batch is acyclic.
    """
    index = {title: i for i, title in enumerate(titles)}
    adjacency = [
        [index[d] for d in deps if d in index] for deps in dependencies
    ]
    color = [_WHITE] * len(titles)

    for root in range(len(titles)):
        if color[root] != _WHITE:
            continue
        color[root] = _GRAY
        path = [root]
        stack = [iter(adjacency[root])]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                color[path.pop()] = _BLACK
                continue
            if color[nxt] == _GRAY:
                start = path.index(nxt)
                return [titles[i] for i in path[start:]]
            if color[nxt] == _WHITE:
                color[nxt] = _GRAY
                path.append(nxt)
                stack.append(iter(adjacency[nxt]))
    return None


# ---------------------------------------------------------------------------
# Graph over stored tickets
# ---------------------------------------------------------------------------

@dataclass
class DanglingReference:
    ticket_id: str
    missing_id: str

    def to_dict(self) -> dict:
        return {"ticket_id": self.ticket_id, "missing_id": self.missing_id}


class DependencyGraph:
    """Forward and reverse dependency edges for one project's tickets."""

    def __init__(self, tickets: Iterable[Ticket]) -> None:
        self._g: nx.DiGraph = nx.DiGraph()
        self.dangling: list[DanglingReference] = []

        tickets = list(tickets)
        for ticket in tickets:
            self._g.add_node(ticket.id, ticket=ticket)

        for ticket in tickets:
            for dep_id in ticket.depends_on:
                if not self._g.has_node(dep_id):
                    self.dangling.append(DanglingReference(ticket.id, dep_id))
                    continue
                self._g.add_edge(dep_id, ticket.id)

        if self.dangling:
            logger.warning(
                "Ignoring %d dangling dependency reference(s): %s",
                len(self.dangling),
                ", ".join(f"{d.ticket_id}->{d.missing_id}" for d in self.dangling),
            )

    def ticket(self, ticket_id: str) -> Ticket:
        return self._g.nodes[ticket_id]["ticket"]

    def tickets(self) -> list[Ticket]:
        return [attrs["ticket"] for _, attrs in self._g.nodes(data=True)]

    def dependencies(self, ticket_id: str) -> list[str]:
        """Ids this ticket waits for (dangling ids excluded)."""
        return list(self._g.predecessors(ticket_id))

    def dependents(self, ticket_id: str) -> list[str]:
        """Ids that list this ticket in their ``depends_on``."""
        return list(self._g.successors(ticket_id))

    def adjacency(self) -> dict[str, dict[str, list[str]]]:
        return {
            tid: {
                "dependencies": self.dependencies(tid),
                "dependents": self.dependents(tid),
            }
            for tid in self._g.nodes
        }

    def find_cycle_through(self, ticket_id: str,
                           new_dependencies: Iterable[str]) -> Optional[list[str]]:
        """
        Check whether giving *ticket_id* the *new_dependencies* closes a cycle.

        Returns the cycle as ticket ids in "depends on" order starting at
        *ticket_id*, or None.
        """
        for dep_id in new_dependencies:
            if dep_id == ticket_id or not self._g.has_node(dep_id):
                continue
            if self._g.has_node(ticket_id) and nx.has_path(self._g, ticket_id, dep_id):
                path = nx.shortest_path(self._g, ticket_id, dep_id)
                return [ticket_id] + list(reversed(path[1:]))
        return None

    def topological_order(self, key=None) -> list[Ticket]:
        """Tickets with every dependency before its dependents.

        *key* orders tickets that are ready at the same time.
        """
        sort_key = (lambda tid: key(self.ticket(tid))) if key else None
        try:
            ids = list(nx.lexicographical_topological_sort(self._g, key=sort_key))
        except nx.NetworkXUnfeasible:
            cycle = [edge[0] for edge in nx.find_cycle(self._g)]
            titles = [self.ticket(tid).title for tid in reversed(cycle)]
            raise CycleError(titles)
        return [self.ticket(tid) for tid in ids]
