"""
Context entity model — one dataclass per kind of stored knowledge.

Every variant shares the scope and timestamp fields of
:class:`ContextEntity` and declares its own payload fields plus a few
class-level traits the repository reads (table name, required fields,
list-valued fields, the field that must be unique within a repo).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import ClassVar, Optional

from ..errors import ValidationError
from ..tickets.models import Priority


class ContextType(str, Enum):
    BUSINESS_RULE = "business_rule"
    GLOSSARY_ENTRY = "glossary_entry"
    PATTERN = "pattern"
    CONVENTION = "convention"
    DOCUMENT = "document"


_TYPE_ALIASES = {
    "glossary": ContextType.GLOSSARY_ENTRY,
    "architecture_pattern": ContextType.PATTERN,
    "team_convention": ContextType.CONVENTION,
}

DOCUMENT_TYPES = ("api-doc", "decision", "postmortem", "general")


def parse_context_type(value) -> ContextType:
    if isinstance(value, ContextType):
        return value
    if value in _TYPE_ALIASES:
        return _TYPE_ALIASES[value]
    try:
        return ContextType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in ContextType)
        raise ValidationError(
            f"Unknown context type '{value}'. Expected one of: {allowed}",
            field="type", value=value,
        )


@dataclass(kw_only=True)
class ContextEntity:
    id: str
    repo_id: str
    project_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    kind: ClassVar[ContextType]
    table: ClassVar[str]
    required: ClassVar[tuple[str, ...]] = ()
    list_fields: ClassVar[tuple[str, ...]] = ()
    bool_fields: ClassVar[tuple[str, ...]] = ()
    unique_field: ClassVar[Optional[str]] = None
    display_field: ClassVar[str] = "id"

    @classmethod
    def payload_fields(cls) -> list[str]:
        """Names of the kind-specific fields, in declaration order."""
        base = {f.name for f in fields(ContextEntity)}
        return [f.name for f in fields(cls) if f.name not in base]

    @property
    def display_name(self) -> str:
        return getattr(self, self.display_field) or self.id

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["type"] = self.kind.value
        return data


@dataclass(kw_only=True)
class BusinessRule(ContextEntity):
    name: str
    description: str
    validation_logic: Optional[str] = None
    examples: list[str] = field(default_factory=list)
    related_domains: list[str] = field(default_factory=list)
    category: Optional[str] = None
    priority: str = Priority.MEDIUM.value
    is_active: bool = True

    kind = ContextType.BUSINESS_RULE
    table = "business_rules"
    required = ("name", "description")
    list_fields = ("examples", "related_domains")
    bool_fields = ("is_active",)
    unique_field = "name"
    display_field = "name"


@dataclass(kw_only=True)
class GlossaryEntry(ContextEntity):
    term: str
    definition: str
    synonyms: list[str] = field(default_factory=list)
    related_terms: list[str] = field(default_factory=list)
    examples: list[str] = field(default_factory=list)
    category: Optional[str] = None

    kind = ContextType.GLOSSARY_ENTRY
    table = "glossary_entries"
    required = ("term", "definition")
    list_fields = ("synonyms", "related_terms", "examples")
    unique_field = "term"
    display_field = "term"


@dataclass(kw_only=True)
class ArchitecturePattern(ContextEntity):
    name: str
    description: str
    when_to_use: Optional[str] = None
    example: Optional[str] = None
    benefits: list[str] = field(default_factory=list)
    tradeoffs: list[str] = field(default_factory=list)
    category: Optional[str] = None

    kind = ContextType.PATTERN
    table = "architecture_patterns"
    required = ("name", "description")
    list_fields = ("benefits", "tradeoffs")
    display_field = "name"


@dataclass(kw_only=True)
class TeamConvention(ContextEntity):
    category: str
    rule: str
    enforced: bool = False

    kind = ContextType.CONVENTION
    table = "team_conventions"
    required = ("category", "rule")
    bool_fields = ("enforced",)
    display_field = "rule"


@dataclass(kw_only=True)
class Document(ContextEntity):
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    mime_type: str = "text/plain"
    document_type: str = "general"

    kind = ContextType.DOCUMENT
    table = "documents"
    required = ("title", "content")
    list_fields = ("tags",)
    display_field = "title"


ENTITY_CLASSES: dict[ContextType, type[ContextEntity]] = {
    cls.kind: cls
    for cls in (BusinessRule, GlossaryEntry, ArchitecturePattern,
                TeamConvention, Document)
}


def entity_class(context_type) -> type[ContextEntity]:
    return ENTITY_CLASSES[parse_context_type(context_type)]
