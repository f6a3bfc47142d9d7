"""Data schemas for tasks and derived dependency-graph views."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from taskweave.errors import ValidationError


class TaskStatus(Enum):
    """Lifecycle status of a task.

    READY and BLOCKED are derived by the graph engine and are never
    authoritative when read back from storage.
    """

    PENDING = "pending"
    READY = "ready"
    BLOCKED = "blocked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Task:
    """A unit of work with dependency edges.

    ``dependents`` and ``blocked_by`` are filled in by ``build_graph`` on the
    copies it returns. They are never persisted.
    """

    id: str
    title: str
    status: TaskStatus = TaskStatus.PENDING
    depends_on: list[str] = field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    estimated_duration: float | None = None  # minutes
    locked_by: str | None = None  # worker id
    locked_at: datetime | None = None
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    dependents: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "depends_on": list(self.depends_on),
            "priority": self.priority.value,
            "estimated_duration": self.estimated_duration,
            "locked_by": self.locked_by,
            "locked_at": _format_dt(self.locked_at),
            "description": self.description,
            "created_at": _format_dt(self.created_at),
            "updated_at": _format_dt(self.updated_at),
            "started_at": _format_dt(self.started_at),
            "completed_at": _format_dt(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        status = data.get("status", "pending")
        # Derived statuses are not ground truth; load them as pending
        if status in (TaskStatus.READY.value, TaskStatus.BLOCKED.value):
            status = TaskStatus.PENDING.value
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            status=TaskStatus(status),
            depends_on=list(dict.fromkeys(data.get("depends_on") or [])),
            priority=Priority(data.get("priority", "medium")),
            estimated_duration=data.get("estimated_duration"),
            locked_by=data.get("locked_by"),
            locked_at=_parse_dt(data.get("locked_at")),
            description=data.get("description"),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
        )


@dataclass(frozen=True)
class DanglingDependency:
    """A task references a dependency id that is not in the snapshot."""

    task_id: str
    missing_id: str

    def __str__(self) -> str:
        return f"Task {self.task_id} depends on unknown task {self.missing_id}"


@dataclass
class GraphNode:
    """One task within a built graph, with its derived structure."""

    task: Task
    status: TaskStatus
    dependencies: list[str]
    dependents: list[str]
    depth: int

    @property
    def is_blocked(self) -> bool:
        return self.status is TaskStatus.BLOCKED

    @property
    def can_start(self) -> bool:
        return self.status is TaskStatus.READY


@dataclass
class GraphView:
    """Result of ``build_graph``."""

    nodes: list[GraphNode] = field(default_factory=list)
    ready_to_work: list[Task] = field(default_factory=list)
    blocked: list[Task] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    critical_path: list[Task] = field(default_factory=list)
    validation_errors: list[DanglingDependency] = field(default_factory=list)

    def node(self, task_id: str) -> GraphNode | None:
        for node in self.nodes:
            if node.task.id == task_id:
                return node
        return None

    @property
    def critical_path_ids(self) -> list[str]:
        return [t.id for t in self.critical_path]

    def raise_for_errors(self) -> None:
        """Raise ValidationError if the snapshot referenced unknown tasks."""
        if self.validation_errors:
            raise ValidationError(
                "; ".join(str(e) for e in self.validation_errors),
                errors=list(self.validation_errors),
            )


@dataclass(frozen=True)
class StartCheck:
    can_start: bool
    reason: str | None = None
