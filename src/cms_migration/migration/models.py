"""Data models for source records and migration outcomes."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Attribute prefix carrying the legacy numeric id on source records
INTERNAL_ID_PREFIX = "drupal_internal__"


@dataclass(frozen=True)
class RelationshipRef:
    """Pointer into the side-loaded collection: ``{type, id, meta?}``."""

    type: str
    id: str
    meta: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelationshipRef":
        return cls(type=data.get("type", ""), id=data.get("id", ""), meta=data.get("meta") or {})


@dataclass(frozen=True)
class SourceRecord:
    """One JSON:API resource object.

    Records are fetched and never mutated. Attribute and relationship maps
    are keyed by source field names; use the accessor helpers rather than
    indexing them directly so missing fields read as absent.
    """

    type: str
    id: str
    attributes: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    relationships: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    links: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceRecord":
        return cls(
            type=data.get("type", ""),
            id=data.get("id", ""),
            attributes=data.get("attributes") or {},
            relationships=data.get("relationships") or {},
            links=data.get("links") or {},
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.id)

    def attr(self, name: str, default: Any = None) -> Any:
        """Return attribute ``name``, or ``default`` when missing or null."""
        value = self.attributes.get(name)
        return default if value is None else value

    def processed(self, name: str, default: str = "") -> str:
        """Return the ``processed`` HTML of a formatted text attribute."""
        value = self.attributes.get(name)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, dict):
            return value.get("processed") or default
        return default

    @property
    def internal_id(self) -> int | str | None:
        """Legacy numeric id (``drupal_internal__nid``, ``__tid``, ``__uid`` ...)."""
        for name, value in self.attributes.items():
            if name.startswith(INTERNAL_ID_PREFIX) and name != f"{INTERNAL_ID_PREFIX}vid":
                return value
        return None

    def relationship_refs(self, name: str) -> list[RelationshipRef]:
        """All references held by relationship ``name`` (empty when absent)."""
        relationship = self.relationships.get(name) or {}
        data = relationship.get("data") if isinstance(relationship, dict) else None
        if not data:
            return []
        if isinstance(data, dict):
            data = [data]
        return [RelationshipRef.from_dict(item) for item in data if isinstance(item, dict)]

    def relationship_ref(self, name: str) -> RelationshipRef | None:
        """First reference held by relationship ``name``, or None."""
        refs = self.relationship_refs(name)
        return refs[0] if refs else None


@dataclass
class FetchResult:
    """Primary records and side-loaded records gathered across all pages."""

    primary: list[SourceRecord] = field(default_factory=list)
    included: list[SourceRecord] = field(default_factory=list)
    pages: int = 0
    _included_keys: set[tuple[str, str]] = field(default_factory=set, repr=False)

    def add_page(self, primary: list[SourceRecord], included: list[SourceRecord]) -> None:
        """Append a page; included records are unioned by ``(type, id)``."""
        self.pages += 1
        self.primary.extend(primary)
        for record in included:
            if record.key not in self._included_keys:
                self._included_keys.add(record.key)
                self.included.append(record)


class UpsertAction(str, Enum):
    """Outcome of one upsert."""

    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class UpsertResult:
    """Target id and action for one upserted record."""

    id: str | int | None
    action: UpsertAction

    @property
    def ok(self) -> bool:
        return self.action is not UpsertAction.FAILED


@dataclass(frozen=True)
class MediaAsset:
    """File metadata resolved from a source ``file--file`` resource."""

    source_file_id: str
    filename: str
    url: str
    mime_type: str | None = None
    uploader_id: str | None = None
    created: str | None = None
    changed: str | None = None
