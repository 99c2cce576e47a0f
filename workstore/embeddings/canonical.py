"""
Canonical text and content hashing.

Each entity kind has one formatter that concatenates its meaningful fields
in a fixed order (name/title first, then body, then auxiliary lists).  The
same string is what gets embedded and what gets hashed, so "content
changed" and "embedding is stale" can never disagree.
"""

from __future__ import annotations

import hashlib
from typing import Callable

from ..context.models import (
    ArchitecturePattern,
    BusinessRule,
    ContextType,
    Document,
    GlossaryEntry,
    TeamConvention,
)
from ..tickets.models import TICKET_ENTITY_TYPE, Ticket


def _business_rule_text(rule: BusinessRule) -> str:
    text = f"{rule.name}: {rule.description}"
    if rule.validation_logic:
        text += f". Validation: {rule.validation_logic}"
    if rule.examples:
        text += f". Examples: {', '.join(rule.examples)}"
    if rule.related_domains:
        text += f". Related domains: {', '.join(rule.related_domains)}"
    return text


def _glossary_text(entry: GlossaryEntry) -> str:
    text = f"{entry.term}: {entry.definition}"
    if entry.synonyms:
        text += f". Synonyms: {', '.join(entry.synonyms)}"
    if entry.related_terms:
        text += f". Related: {', '.join(entry.related_terms)}"
    if entry.examples:
        text += f". Examples: {', '.join(entry.examples)}"
    return text


def _pattern_text(pattern: ArchitecturePattern) -> str:
    text = f"{pattern.name}: {pattern.description}"
    if pattern.when_to_use:
        text += f". When to use: {pattern.when_to_use}"
    if pattern.benefits:
        text += f". Benefits: {', '.join(pattern.benefits)}"
    if pattern.tradeoffs:
        text += f". Tradeoffs: {', '.join(pattern.tradeoffs)}"
    if pattern.example:
        text += f". Example: {pattern.example}"
    return text


def _convention_text(convention: TeamConvention) -> str:
    return f"{convention.category}: {convention.rule}"


def _document_text(document: Document) -> str:
    return f"{document.title}\n\n{document.content}"


def _ticket_text(ticket: Ticket) -> str:
    parts = [f"Task: {ticket.title}"]
    if ticket.description:
        parts.append(f"Description: {ticket.description}")
    if ticket.type:
        parts.append(f"Type: {ticket.type.value}")
    parts.append(f"Priority: {ticket.priority.value}")
    if ticket.objectives:
        parts.append(f"Objectives: {'; '.join(ticket.objectives)}")
    if ticket.validation_criteria:
        parts.append(f"Validation: {'; '.join(ticket.validation_criteria)}")
    if ticket.tags:
        parts.append(f"Tags: {', '.join(ticket.tags)}")
    return ". ".join(parts)


_FORMATTERS: dict[str, Callable] = {
    ContextType.BUSINESS_RULE.value: _business_rule_text,
    ContextType.GLOSSARY_ENTRY.value: _glossary_text,
    ContextType.PATTERN.value: _pattern_text,
    ContextType.CONVENTION.value: _convention_text,
    ContextType.DOCUMENT.value: _document_text,
    TICKET_ENTITY_TYPE: _ticket_text,
}

EMBEDDABLE_TYPES = tuple(_FORMATTERS)


def canonical_text(entity_type: str, entity) -> str:
    """Build the text that is both embedded and hashed for *entity*."""
    key = entity_type.value if isinstance(entity_type, ContextType) else entity_type
    try:
        formatter = _FORMATTERS[key]
    except KeyError:
        raise ValueError(f"Unknown entity type: {entity_type}") from None
    return formatter(entity)


def content_hash(text: str) -> str:
    """SHA-256 hex digest of *text*."""
    return hashlib.sha256(text.encode("utf-8", errors="replace")).hexdigest()
