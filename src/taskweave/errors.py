"""Error types raised by the coordination core.

Every failure is a synchronous outcome handed straight back to the caller.
Nothing here is retried or swallowed; the caller decides whether to re-read
a snapshot and try again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from taskweave.tracking.schema import ConflictInfo


class CoordinationError(Exception):
    """Base class for all taskweave errors."""


@dataclass
class ValidationError(CoordinationError):
    """Malformed input, e.g. a dependency on an id that does not exist."""

    message: str
    errors: list[Any] = field(default_factory=list)

    def __str__(self) -> str:
        return self.message


@dataclass
class CycleDetected(CoordinationError):
    """A proposed dependency edge would close a cycle."""

    task_id: str
    depends_on_id: str
    cycle: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        if self.cycle:
            return (
                f"Adding dependency {self.task_id} -> {self.depends_on_id} would create "
                f"a cycle: {' -> '.join(self.cycle)}"
            )
        return f"Adding dependency {self.task_id} -> {self.depends_on_id} would create a cycle"


@dataclass
class TaskNotFound(CoordinationError):
    task_id: str

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"


@dataclass
class WorkerNotFound(CoordinationError):
    worker_id: str

    def __str__(self) -> str:
        return f"Worker not found: {self.worker_id}"


@dataclass
class ClaimRejected(CoordinationError):
    """A claim was refused: the task is not ready or a live worker holds it."""

    task_id: str
    worker_id: str
    reason: str

    def __str__(self) -> str:
        return f"ClaimRejected: {self.reason}"


@dataclass
class ConflictDetected(CoordinationError):
    """A pending write collided with a high-severity conflict."""

    conflicts: list[ConflictInfo] = field(default_factory=list)

    def __str__(self) -> str:
        if not self.conflicts:
            return "Conflict detected"
        return f"Conflict detected: {self.conflicts[0].description}"


@dataclass
class StaleSnapshot(CoordinationError):
    """A commit was attempted against a snapshot that is no longer current."""

    expected_version: int
    found_version: int

    def __str__(self) -> str:
        return (
            f"Snapshot version {self.expected_version} is stale "
            f"(store is at version {self.found_version})"
        )
