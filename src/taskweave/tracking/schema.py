"""Data schemas for change events and conflicts."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Union


class EntityType(Enum):
    PROJECT = "project"
    TASK = "task"
    WORKER = "worker"


class ChangeAction(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOCK = "lock"  # A worker claimed the entity
    UNLOCK = "unlock"  # The claim was released


@dataclass(frozen=True)
class Added:
    field: str
    new_value: Any
    kind: ClassVar[str] = "added"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "field": self.field, "new_value": self.new_value}


@dataclass(frozen=True)
class Modified:
    field: str
    old_value: Any
    new_value: Any
    kind: ClassVar[str] = "modified"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
        }


@dataclass(frozen=True)
class Removed:
    field: str
    old_value: Any
    kind: ClassVar[str] = "removed"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "field": self.field, "old_value": self.old_value}


FieldChange = Union[Added, Modified, Removed]


def field_change_from_dict(data: dict[str, Any]) -> FieldChange:
    kind = data.get("kind")
    if kind == Added.kind:
        return Added(data["field"], data.get("new_value"))
    if kind == Modified.kind:
        return Modified(data["field"], data.get("old_value"), data.get("new_value"))
    if kind == Removed.kind:
        return Removed(data["field"], data.get("old_value"))
    raise ValueError(f"Unknown field change kind: {kind!r}")


@dataclass(frozen=True)
class ChangeEvent:
    """One recorded change to an entity. Immutable once appended."""

    entity_type: EntityType
    entity_id: str
    worker_id: str
    action: ChangeAction
    changes: tuple[FieldChange, ...] = ()
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: str | None = None
    reason: str | None = None
    conflicts_with: tuple[str, ...] = ()  # ConflictInfo IDs

    @property
    def changed_fields(self) -> frozenset[str]:
        return frozenset(c.field for c in self.changes)

    def same_entity(self, other: ChangeEvent) -> bool:
        return self.entity_type is other.entity_type and self.entity_id == other.entity_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "worker_id": self.worker_id,
            "action": self.action.value,
            "changes": [c.to_dict() for c in self.changes],
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "reason": self.reason,
            "conflicts_with": list(self.conflicts_with),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeEvent:
        return cls(
            id=data["id"],
            entity_type=EntityType(data["entity_type"]),
            entity_id=data["entity_id"],
            worker_id=data["worker_id"],
            action=ChangeAction(data["action"]),
            changes=tuple(field_change_from_dict(c) for c in data.get("changes", [])),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            session_id=data.get("session_id"),
            reason=data.get("reason"),
            conflicts_with=tuple(data.get("conflicts_with", [])),
        )


class ConflictType(Enum):
    CONCURRENT_EDIT = "concurrent_edit"
    LOCK_CONFLICT = "lock_conflict"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ConflictInfo:
    """Two events on the same entity that a caller must treat as a conflict."""

    id: str
    type: ConflictType
    events: tuple[ChangeEvent, ChangeEvent]  # (recent, new)
    severity: Severity
    auto_resolvable: bool
    description: str
    suggested_resolution: str | None = None

    @property
    def blocks_write(self) -> bool:
        return self.severity is Severity.HIGH

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "event_ids": [e.id for e in self.events],
            "severity": self.severity.value,
            "auto_resolvable": self.auto_resolvable,
            "description": self.description,
            "suggested_resolution": self.suggested_resolution,
        }
