"""File-backed project store with optimistic concurrency.

One YAML document per project holds the whole task collection, the worker
sessions and the change log, plus a version counter. Writers follow a
single discipline: load a snapshot, compute, commit the whole snapshot
back. A commit is accepted only if nobody else committed since the
snapshot was loaded, so of two racing writers at most one wins.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from filelock import FileLock

from taskweave.errors import StaleSnapshot, ValidationError
from taskweave.graph.schema import Task
from taskweave.logging import get_logger
from taskweave.tracking.schema import ChangeEvent
from taskweave.workers.schema import WorkerSession

_log = get_logger("store")

FORMAT_VERSION = 1


@dataclass
class ProjectSnapshot:
    """Everything the coordination core needs about one project."""

    version: int = 0  # Store revision this snapshot was read at
    tasks: list[Task] = field(default_factory=list)
    sessions: list[WorkerSession] = field(default_factory=list)
    events: list[ChangeEvent] = field(default_factory=list)

    def task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": FORMAT_VERSION,
            "version": self.version,
            "tasks": [t.to_dict() for t in self.tasks],
            "sessions": [s.to_dict() for s in self.sessions],
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectSnapshot:
        return cls(
            version=data.get("version", 0),
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            sessions=[WorkerSession.from_dict(s) for s in data.get("sessions", [])],
            events=[ChangeEvent.from_dict(e) for e in data.get("events", [])],
        )


class ProjectStore:
    """Persists project snapshots to a YAML file.

    The file lock only guards the short read-compare-write inside
    ``commit``; callers never hold it while computing.
    """

    def __init__(self, path: str | Path, lock_timeout: float = 10.0) -> None:
        """Initialize the store.

        Args:
            path: YAML file holding the project (created on first commit).
            lock_timeout: Seconds to wait for the file lock.
        """
        self._path = Path(path)
        self._lock_path = self._path.with_suffix(".lock")
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> ProjectSnapshot:
        if not self._path.exists():
            return ProjectSnapshot()
        try:
            with open(self._path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return ProjectSnapshot.from_dict(data)
        except (yaml.YAMLError, KeyError, ValueError, TypeError) as e:
            raise ValidationError(f"Corrupt project store {self._path}: {e}") from e

    def _write(self, snapshot: ProjectSnapshot) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(snapshot.to_dict(), f, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, self._path)

    def _lock(self) -> FileLock:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(self._lock_path, timeout=self._lock_timeout)

    def load(self) -> ProjectSnapshot:
        """Read the current snapshot."""
        with self._lock():
            return self._read()

    def commit(self, snapshot: ProjectSnapshot) -> ProjectSnapshot:
        """Write ``snapshot`` back if the store is still at its version.

        Returns:
            The stored snapshot, at the next version.

        Raises:
            StaleSnapshot: If another writer committed first.
        """
        with self._lock():
            current = self._read()
            if current.version != snapshot.version:
                _log.info(
                    "Rejected commit of %s: snapshot v%d, store at v%d",
                    self._path,
                    snapshot.version,
                    current.version,
                )
                raise StaleSnapshot(snapshot.version, current.version)
            stored = ProjectSnapshot(
                version=snapshot.version + 1,
                tasks=list(snapshot.tasks),
                sessions=list(snapshot.sessions),
                events=list(snapshot.events),
            )
            self._write(stored)
        _log.debug("Committed %s at v%d", self._path, stored.version)
        return stored

    def update(self, modifier: Callable[[ProjectSnapshot], ProjectSnapshot]) -> ProjectSnapshot:
        """Load, modify and commit in one step.

        Raises:
            StaleSnapshot: If another writer committed while ``modifier`` ran.
        """
        return self.commit(modifier(self.load()))
