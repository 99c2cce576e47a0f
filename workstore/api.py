"""
Programmatic API for workstore — use as a library from Python code.

Example usage::

    from workstore import Workstore

    store = Workstore.open()
    repo = store.create_repo("shop").data
    store.store_context(
        "business_rule",
        {"name": "Email Validation Rule", "description": "emails must be validated"},
        repo_id=repo["id"],
    )
    result = store.query_context("email verification requirements",
                                 repo_id=repo["id"], min_similarity=0.3)
    for match in result.data["matches"]:
        print(match["similarity"], match["entity"]["name"])

Every public method returns an :class:`OperationResult`; expected failures
(validation, missing ids, conflicts, cycles) come back as
``success=False`` with an ``error_type`` instead of being raised.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional

from .config import Config
from .context.models import ContextType, entity_class, parse_context_type
from .context.repository import ContextRepository
from .embeddings.chunking import ChunkingConfig
from .embeddings.lifecycle import FAILED, EmbeddingLifecycleManager
from .embeddings.providers import EmbeddingProvider, create_embedding_provider
from .embeddings.store import EmbeddingStore
from .errors import ValidationError, WorkstoreError
from .log_setup import setup_logger
from .search.semantic import SemanticSearch
from .search.vector_index import VectorIndex
from .storage.database import Database
from .storage.scopes import ScopeRepository
from .tickets.models import TICKET_ENTITY_TYPE, Ticket
from .tickets.planner import (
    build_plan,
    next_steps,
    project_progress,
    topological_order,
)
from .tickets.repository import TicketRepository, clamp_limit

logger = logging.getLogger(__name__)

CONTEXT_TYPES = tuple(t.value for t in ContextType)


@dataclass
class OperationResult:
    """Structured result returned by every :class:`Workstore` operation."""
    success: bool
    message: str = ""
    data: dict = field(default_factory=dict)
    error: str = ""
    error_type: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _structured(method):
    """Turn raised store errors into a failed :class:`OperationResult`."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs) -> OperationResult:
        try:
            return method(self, *args, **kwargs)
        except WorkstoreError as exc:
            logger.info("%s rejected (%s): %s", method.__name__, exc.error_type, exc.message)
            return OperationResult(
                success=False,
                message=f"{method.__name__} failed",
                data=dict(exc.details),
                error=exc.message,
                error_type=exc.error_type,
            )
        except Exception as exc:
            logger.exception("Unexpected error in %s", method.__name__)
            return OperationResult(
                success=False,
                message=f"{method.__name__} failed",
                error=str(exc) or exc.__class__.__name__,
                error_type="internal",
            )

    return wrapper


class Workstore:
    """
    Context store and ticket planner behind one facade.

    Parameters
    ----------
    db:
        Explicitly constructed database handle.
    provider:
        Embedding generator used for entities and queries.
    config:
        Chunking and search defaults; :meth:`Config.load` when omitted.
    """

    def __init__(
        self,
        db: Database,
        provider: EmbeddingProvider,
        config: Optional[Config] = None,
    ) -> None:
        self.config = config or Config.load()
        self.db = db
        self.provider = provider

        self.scopes = ScopeRepository(db)
        self.contexts = ContextRepository(db, self.scopes)
        self.tickets = TicketRepository(db, self.scopes)

        self.embeddings = EmbeddingStore(db)
        self.index = VectorIndex()
        self.lifecycle = EmbeddingLifecycleManager(
            self.embeddings,
            self.index,
            provider,
            ChunkingConfig(self.config.CHUNK_MAX_SIZE, self.config.CHUNK_OVERLAP),
        )
        self.search = SemanticSearch(
            provider,
            self.index,
            self.embeddings,
            loader=self._load_entity,
            default_top_k=self.config.SEARCH_TOP_K,
            default_min_similarity=self.config.SEARCH_MIN_SIMILARITY,
        )
        # Load once up front so writes before the first search never mask
        # embeddings stored by an earlier instance.
        self.lifecycle.rebuild_index()

    @classmethod
    def open(cls, config: Optional[Config] = None,
             provider: Optional[EmbeddingProvider] = None) -> "Workstore":
        """Build a store from configuration, wiring logging and the provider."""
        cfg = config or Config.load()
        setup_logger(cfg.LOG_DIR, cfg.LOG_LEVEL)
        db = Database(cfg.DB_PATH, busy_timeout=cfg.BUSY_TIMEOUT)
        provider = provider or create_embedding_provider(cfg)
        logger.info("Workstore opened at %s (embeddings: %s)",
                    cfg.DB_PATH, provider.model_name)
        return cls(db, provider, cfg)

    def _load_entity(self, entity_type: str, entity_id: str):
        if entity_type == TICKET_ENTITY_TYPE:
            return self.tickets.get(entity_id)
        return self.contexts.get(entity_type, entity_id)

    def _sync_ticket(self, ticket: Ticket, repo_id: str):
        return self.lifecycle.sync(TICKET_ENTITY_TYPE, ticket, repo_id, ticket.project_id)

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    @_structured
    def create_repo(self, name: str, description: Optional[str] = None) -> OperationResult:
        repo = self.scopes.create_repo(name, description)
        return OperationResult(True, f'Repo "{repo.name}" created', asdict(repo))

    @_structured
    def update_repo(self, repo_id: str, **fields) -> OperationResult:
        repo = self.scopes.update_repo(repo_id, **fields)
        return OperationResult(True, f'Repo "{repo.name}" updated', asdict(repo))

    @_structured
    def create_project(self, repo_id: str, name: str, description: Optional[str] = None,
                       inherits_from_repo: bool = True) -> OperationResult:
        project = self.scopes.create_project(repo_id, name, description, inherits_from_repo)
        return OperationResult(True, f'Project "{project.name}" created', asdict(project))

    @_structured
    def update_project(self, project_id: str, **fields) -> OperationResult:
        project = self.scopes.update_project(project_id, **fields)
        return OperationResult(True, f'Project "{project.name}" updated', asdict(project))

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    @_structured
    def store_context(self, context_type: str, fields: dict,
                      repo_id: Optional[str] = None,
                      project_id: Optional[str] = None) -> OperationResult:
        """Store a context entity and embed it.

        An embedding failure does not fail the call; ``data["embedding"]``
        reports ``"failed"`` and the entity is stored regardless.
        """
        entity = self.contexts.create(context_type, fields, repo_id, project_id)
        sync = self.lifecycle.sync(entity.kind.value, entity, entity.repo_id,
                                   entity.project_id)
        return OperationResult(
            True,
            f"Stored {entity.kind.value} \"{entity.display_name}\"",
            {"id": entity.id, "type": entity.kind.value, "embedding": sync.status,
             "entity": entity.to_dict()},
        )

    @_structured
    def update_context(self, context_type: str, entity_id: str,
                       fields: dict) -> OperationResult:
        entity = self.contexts.update(context_type, entity_id, fields)
        sync = self.lifecycle.sync(entity.kind.value, entity, entity.repo_id,
                                   entity.project_id)
        return OperationResult(
            True,
            f"Updated {entity.kind.value} \"{entity.display_name}\"",
            {"updated": True, "embedding_resynced": sync.resynced,
             "embedding": sync.status, "entity": entity.to_dict()},
        )

    @_structured
    def delete_context(self, context_type: str, entity_id: str) -> OperationResult:
        """Delete a context entity and all of its embedding chunks (idempotent)."""
        kind = parse_context_type(context_type)
        removed = self.lifecycle.remove(kind.value, entity_id)
        deleted = self.contexts.delete(kind, entity_id)
        message = (f"Deleted {kind.value} {entity_id}" if deleted
                   else f"No {kind.value} with id {entity_id}")
        return OperationResult(True, message,
                               {"deleted": deleted, "embeddings_removed": removed})

    @_structured
    def get_context(self, context_type: str, entity_id: str) -> OperationResult:
        entity = self.contexts.require(context_type, entity_id)
        return OperationResult(True, entity.display_name, entity.to_dict())

    @_structured
    def list_context(self, context_type: str, repo_id: str,
                     project_id: Optional[str] = None,
                     category: Optional[str] = None) -> OperationResult:
        entities = self.contexts.list(context_type, repo_id, project_id, category)
        return OperationResult(
            True, f"{len(entities)} {entity_class(context_type).kind.value}(s)",
            {"items": [e.to_dict() for e in entities], "count": len(entities)},
        )

    @_structured
    def query_context(self, query: str, repo_id: Optional[str] = None,
                      project_id: Optional[str] = None,
                      entity_types: Optional[Iterable[str]] = None,
                      top_k: Optional[int] = None,
                      min_similarity: Optional[float] = None) -> OperationResult:
        """Ranked semantic search over context in a repo (plus a project)."""
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        repo_id, project_id = self.scopes.resolve_scope(repo_id, project_id)
        types = ([parse_context_type(t).value for t in entity_types]
                 if entity_types else list(CONTEXT_TYPES))
        matches = self.search.search(query, repo_id, project_id, types,
                                     top_k, min_similarity)
        return OperationResult(
            True, f"Found {len(matches)} relevant item(s)",
            {"matches": [m.to_dict() for m in matches], "count": len(matches)},
        )

    @_structured
    def find_similar(self, entity_type: str, entity_id: str,
                     top_k: Optional[int] = None,
                     min_similarity: Optional[float] = None) -> OperationResult:
        if entity_type != TICKET_ENTITY_TYPE:
            entity_type = parse_context_type(entity_type).value
        matches = self.search.find_similar(entity_type, entity_id, None,
                                           top_k, min_similarity)
        return OperationResult(
            True, f"Found {len(matches)} similar item(s)",
            {"matches": [m.to_dict() for m in matches], "count": len(matches)},
        )

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    @_structured
    def store_tickets(self, project_id: str, tickets: list) -> OperationResult:
        """Create a batch of tickets; dependencies are given by title.

        All-or-nothing: a cycle or self-dependency rejects the whole batch.
        """
        project = self.scopes.require_project(project_id)
        created = self.tickets.store_batch(project_id, tickets)
        failed = [t.id for t in created
                  if self._sync_ticket(t, project.repo_id).status == FAILED]
        return OperationResult(
            True, f"Stored {len(created)} ticket(s)",
            {"created": [t.id for t in created],
             "tickets": [t.to_dict() for t in created],
             "embedding_failures": failed},
        )

    @_structured
    def update_ticket(self, project_id: str, ref: str, fields: dict) -> OperationResult:
        project = self.scopes.require_project(project_id)
        ticket = self.tickets.update(project_id, ref, fields)
        sync = self._sync_ticket(ticket, project.repo_id)
        return OperationResult(
            True, f'Ticket "{ticket.title}" updated',
            {"ticket": ticket.to_dict(), "embedding_resynced": sync.resynced},
        )

    @_structured
    def delete_ticket(self, project_id: str, ref: str, force: bool = False) -> OperationResult:
        ticket, rewritten = self.tickets.delete(project_id, ref, force=force)
        self.lifecycle.remove(TICKET_ENTITY_TYPE, ticket.id)
        message = f'Ticket "{ticket.title}" deleted'
        if rewritten:
            message += f", removed from {len(rewritten)} dependent(s)"
        return OperationResult(
            True, message,
            {"deleted": True, "ticket_id": ticket.id, "dependents_rewritten": rewritten},
        )

    @_structured
    def get_ticket(self, project_id: str, ref: str) -> OperationResult:
        ticket = self.tickets.require(project_id, ref)
        return OperationResult(True, ticket.title, ticket.to_dict())

    @_structured
    def list_tickets(self, project_id: str, status: Optional[str] = None,
                     priority: Optional[str] = None,
                     type: Optional[str] = None) -> OperationResult:
        self.scopes.require_project(project_id)
        tickets = self.tickets.list(project_id, status, priority, type)
        return OperationResult(
            True, f"{len(tickets)} ticket(s)",
            {"tickets": [t.to_dict() for t in tickets], "count": len(tickets)},
        )

    @_structured
    def search_tickets(self, project_id: str, query: str,
                       top_k: Optional[int] = None,
                       min_similarity: Optional[float] = None) -> OperationResult:
        project = self.scopes.require_project(project_id)
        matches = self.search.search(query, project.repo_id, project.id,
                                     [TICKET_ENTITY_TYPE], top_k, min_similarity,
                                     project_only=True)
        return OperationResult(
            True, f"Found {len(matches)} matching ticket(s)",
            {"matches": [m.to_dict() for m in matches], "count": len(matches)},
        )

    @_structured
    def get_execution_plan(self, project_id: str, limit: Optional[int] = None,
                           include_testing: bool = True) -> OperationResult:
        self.scopes.require_project(project_id)
        plan = build_plan(self.tickets.list(project_id), limit, include_testing)
        recommended = plan.recommended
        message = (f'Next: "{recommended.title}"' if recommended
                   else "No available tickets to start right now")
        return OperationResult(True, message, plan.to_dict())

    @_structured
    def get_next_steps(self, project_id: str, limit: int = 3,
                       include_testing: bool = True) -> OperationResult:
        self.scopes.require_project(project_id)
        steps, total = next_steps(self.tickets.list(project_id), limit, include_testing)
        message = (f"Found {len(steps)} recommended ticket(s)" if steps
                   else "No available tickets to start right now")
        return OperationResult(
            True, message,
            {"tasks": [s.to_dict() for s in steps], "total_available": total},
        )

    @_structured
    def get_topological_order(self, project_id: str) -> OperationResult:
        self.scopes.require_project(project_id)
        ordered = topological_order(self.tickets.list(project_id))
        return OperationResult(
            True, f"{len(ordered)} ticket(s) in dependency order",
            {"tickets": [t.to_dict() for t in ordered]},
        )

    @_structured
    def get_project_state(self, project_id: str) -> OperationResult:
        """Ticket status counts, progress and visible context counts."""
        project = self.scopes.require_project(project_id)
        repo = self.scopes.require_repo(project.repo_id)
        summary = project_progress(self.tickets.list(project_id))

        by_type: dict[str, int] = {}
        by_provenance = {"repo": 0, "project": 0}
        for context_type in CONTEXT_TYPES:
            entities = self.contexts.list(context_type, repo.id, project.id)
            by_type[context_type] = len(entities)
            for entity in entities:
                by_provenance["project" if entity.project_id else "repo"] += 1

        data = {"project": project.name, "repo": repo.name, **summary.to_dict(),
                "context": {"by_type": by_type, "by_provenance": by_provenance}}
        return OperationResult(
            True, f"{summary.progress}% complete ({summary.total} ticket(s))", data,
        )

    # ------------------------------------------------------------------
    # Ticket comments
    # ------------------------------------------------------------------

    @_structured
    def add_ticket_comment(self, project_id: str, ref: str, content: str,
                           created_by: Optional[str] = None) -> OperationResult:
        comment = self.tickets.add_comment(project_id, ref, content, created_by)
        return OperationResult(True, "Comment added", comment.to_dict())

    @_structured
    def list_ticket_comments(self, project_id: str, ref: str, offset: int = 0,
                             limit: int = 20, order_by: str = "created_at",
                             descending: bool = True) -> OperationResult:
        comments, total = self.tickets.list_comments(
            project_id, ref, offset, limit, order_by, descending)
        offset, limit = max(0, offset), clamp_limit(limit)
        return OperationResult(
            True, f"{len(comments)} of {total} comment(s)",
            {"comments": [c.to_dict() for c in comments], "total": total,
             "offset": offset, "limit": limit, "has_more": offset + limit < total},
        )

    @_structured
    def update_ticket_comment(self, comment_id: str, content: str) -> OperationResult:
        comment = self.tickets.update_comment(comment_id, content)
        return OperationResult(True, "Comment updated", comment.to_dict())

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @_structured
    def resync_embeddings(self, force: bool = False, show_progress: bool = True,
                          rebuild_index: bool = False) -> OperationResult:
        """Re-run the embedding sync for every stored entity.

        *force* re-embeds even when content is unchanged (e.g. after a
        model change); *rebuild_index* reloads the in-memory index first.
        """
        if rebuild_index:
            self.lifecycle.rebuild_index()

        def _entities():
            for entity in self.contexts.iter_all():
                yield entity.kind.value, entity, entity.repo_id, entity.project_id
            for ticket, repo_id in self.tickets.iter_all():
                yield TICKET_ENTITY_TYPE, ticket, repo_id, ticket.project_id

        counts = self.lifecycle.resync_all(_entities(), force=force,
                                           show_progress=show_progress)
        return OperationResult(
            True, f"Synced {counts['total']} entities ({counts['failed']} failed)",
            counts,
        )
