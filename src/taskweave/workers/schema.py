"""Data schemas for worker sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from taskweave.graph.schema import Task


@dataclass
class RegisterWorkerRequest:
    """What a worker announces about itself when it registers."""

    name: str | None = None  # e.g. "backend-agent"
    capabilities: list[str] = field(default_factory=list)  # e.g. ["coding", "testing"]
    purpose: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkerSession:
    """A registered worker and the tasks it currently claims."""

    id: str  # Worker ID
    session_id: str
    name: str | None = None
    capabilities: list[str] = field(default_factory=list)
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_heartbeat: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    claimed: list[str] = field(default_factory=list)  # Task IDs
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "capabilities": list(self.capabilities),
            "registered_at": self.registered_at.isoformat(),
            "last_heartbeat": self.last_heartbeat.isoformat(),
            "claimed": list(self.claimed),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkerSession:
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            name=data.get("name"),
            capabilities=data.get("capabilities", []),
            registered_at=datetime.fromisoformat(data["registered_at"]),
            last_heartbeat=datetime.fromisoformat(data["last_heartbeat"]),
            claimed=data.get("claimed", []),
            metadata=data.get("metadata", {}),
        )


@dataclass
class SweepResult:
    """Outcome of releasing stale claims."""

    tasks: list[Task]  # Full task list with stale claims released
    released: list[str] = field(default_factory=list)  # Task IDs
    removed_sessions: list[str] = field(default_factory=list)  # Worker IDs


@dataclass(frozen=True)
class RegistryStats:
    total_workers: int
    live_workers: int
    stale_workers: int
    claimed_tasks: int
    average_uptime: float  # seconds
