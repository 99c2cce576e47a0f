"""
Error taxonomy shared by every layer of the store.

Repositories and services raise these; :class:`workstore.api.Workstore`
turns them into structured results so nothing escapes the public API.
"""

from __future__ import annotations


class WorkstoreError(Exception):
    """Base class for all expected store failures."""

    error_type = "error"

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(WorkstoreError):
    """Input was rejected before any write happened."""

    error_type = "validation"


class NotFoundError(WorkstoreError):
    """An entity, ticket, repo or project id did not resolve."""

    error_type = "not_found"

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}",
                         kind=kind, identifier=identifier)
        self.kind = kind
        self.identifier = identifier


class ConflictError(WorkstoreError):
    """Input clashes with stored state (duplicate name, bad dependency)."""

    error_type = "conflict"


class SelfDependencyError(ConflictError):
    error_type = "self_dependency"

    def __init__(self, ticket: str) -> None:
        super().__init__(f'Ticket "{ticket}" cannot depend on itself',
                         ticket=ticket)
        self.ticket = ticket


class CycleError(ConflictError):
    error_type = "cycle"

    def __init__(self, cycle: list[str]) -> None:
        path = " → ".join(cycle + cycle[:1])
        super().__init__(f"Circular dependency detected: {path}", cycle=cycle)
        self.cycle = cycle


class EmbeddingError(WorkstoreError):
    """The embedding generator failed or timed out."""

    error_type = "embedding"
