"""Worker liveness registry.

Tracks worker sessions and their heartbeats, grants claims on ready tasks,
and releases the claims of workers that stopped heartbeating.

Exclusion is cooperative and optimistic. Two processes that race on the
same snapshot can both compute a claim; whichever commits to the project
store first wins and the other must retry on a fresh snapshot. The registry
itself serializes nothing.

Heartbeats and sweeps are driven by the caller. The registry never starts a
timer; time comes from the injected clock.
"""

from __future__ import annotations

import os
import socket
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from taskweave.errors import ClaimRejected, TaskNotFound, WorkerNotFound
from taskweave.graph.engine import DependencyGraph
from taskweave.graph.schema import Task, TaskStatus
from taskweave.logging import get_logger
from taskweave.workers.schema import (
    RegisterWorkerRequest,
    RegistryStats,
    SweepResult,
    WorkerSession,
)

_log = get_logger("workers")

DEFAULT_TIMEOUT = 300.0  # seconds


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_worker_id() -> str:
    return f"worker-{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


def generate_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:12]}"


class WorkerLivenessRegistry:
    """Registry of worker sessions for one project.

    Instances are created by the caller (typically from a loaded project
    snapshot) and passed to whatever needs them.
    """

    def __init__(
        self,
        sessions: Iterable[WorkerSession] = (),
        *,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            sessions: Existing sessions, e.g. from a persisted snapshot.
            timeout: Seconds without a heartbeat before a session is stale.
            clock: Returns the current time; defaults to UTC wall clock.
        """
        self._sessions: dict[str, WorkerSession] = {s.id: s for s in sessions}
        self._timeout = timeout
        self._clock = clock or _utcnow

    @property
    def timeout(self) -> float:
        return self._timeout

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def register(self, request: RegisterWorkerRequest | None = None) -> WorkerSession:
        """Register a new worker with fresh worker and session ids."""
        request = request or RegisterWorkerRequest()
        now = self.now()
        metadata = dict(request.metadata)
        if request.purpose:
            metadata.setdefault("purpose", request.purpose)

        session = WorkerSession(
            id=generate_worker_id(),
            session_id=generate_session_id(),
            name=request.name,
            capabilities=list(request.capabilities),
            registered_at=now,
            last_heartbeat=now,
            metadata=metadata,
        )
        self._sessions[session.id] = session
        _log.info("Worker registered: %s", session.name or session.id)
        return session

    def heartbeat(self, worker_id: str) -> WorkerSession:
        """Refresh a worker's heartbeat.

        Raises:
            WorkerNotFound: If no session exists for ``worker_id``.
        """
        session = self._sessions.get(worker_id)
        if session is None:
            raise WorkerNotFound(worker_id)
        session.last_heartbeat = self.now()
        return session

    def deregister(self, worker_id: str) -> bool:
        """Remove a worker's session. The next ``sweep_stale`` releases the task
        locks it still held.

        Returns:
            True if a session was removed.
        """
        removed = self._sessions.pop(worker_id, None)
        if removed is not None:
            _log.info("Worker deregistered: %s", worker_id)
        return removed is not None

    def get(self, worker_id: str) -> WorkerSession | None:
        return self._sessions.get(worker_id)

    def sessions(self) -> list[WorkerSession]:
        return list(self._sessions.values())

    def is_live(self, session: WorkerSession, timeout: float | None = None) -> bool:
        """A session is live while its heartbeat is younger than ``timeout`` seconds."""
        limit = self._timeout if timeout is None else timeout
        return self.now() - session.last_heartbeat < timedelta(seconds=limit)

    def live_sessions(self, timeout: float | None = None) -> list[WorkerSession]:
        return [s for s in self._sessions.values() if self.is_live(s, timeout)]

    def _live_holder(self, task: Task, worker_id: str) -> str | None:
        """The id of another live worker holding ``task``, if any."""
        candidates = []
        if task.locked_by and task.locked_by != worker_id:
            candidates.append(task.locked_by)
        candidates.extend(
            s.id for s in self._sessions.values() if s.id != worker_id and task.id in s.claimed
        )
        for holder in candidates:
            session = self._sessions.get(holder)
            if session is not None and self.is_live(session):
                return holder
        return None

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(self, task_id: str, worker_id: str, tasks: Sequence[Task]) -> Task:
        """Claim a ready task for ``worker_id``.

        The task must be ready once any stale lock on it is ignored, and no
        other live worker may hold it. Claiming a task the worker already
        holds returns it unchanged.

        Returns:
            The claimed task: locked by ``worker_id`` and ``in-progress``.
            ``tasks`` itself is not modified.

        Raises:
            TaskNotFound: If ``task_id`` is not in ``tasks``.
            WorkerNotFound: If ``worker_id`` has no session.
            ClaimRejected: If the task is not ready or a live worker holds it.
        """
        graph = DependencyGraph(tasks)
        task = graph.get(task_id)
        session = self._sessions.get(worker_id)
        if session is None:
            raise WorkerNotFound(worker_id)

        if task.locked_by == worker_id and task.status is TaskStatus.IN_PROGRESS:
            return task

        holder = self._live_holder(task, worker_id)
        if holder is not None:
            _log.debug("Claim of %s by %s rejected: held by %s", task_id, worker_id, holder)
            raise ClaimRejected(task_id, worker_id, f"held by live worker {holder}")

        # A stale lock does not count against readiness
        unlocked = unlock_task(task)
        if unlocked is not task:
            graph = DependencyGraph([unlocked if t.id == task_id else t for t in tasks])
        if graph.calculate_status(task_id) is not TaskStatus.READY:
            _log.debug("Claim of %s by %s rejected: not ready", task_id, worker_id)
            raise ClaimRejected(task_id, worker_id, "not ready")

        now = self.now()
        for other in self._sessions.values():
            if other.id != worker_id and task_id in other.claimed:
                other.claimed.remove(task_id)
        if task_id not in session.claimed:
            session.claimed.append(task_id)

        _log.info("Task %s claimed by %s", task_id, worker_id)
        return replace(
            task,
            status=TaskStatus.IN_PROGRESS,
            locked_by=worker_id,
            locked_at=now,
            started_at=task.started_at or now,
            updated_at=now,
        )

    def release(
        self,
        task_id: str,
        worker_id: str,
        tasks: Sequence[Task],
        outcome: TaskStatus | None = None,
    ) -> Task:
        """Release a claim held by ``worker_id``.

        Args:
            outcome: ``COMPLETED`` or ``FAILED`` to finish the task; ``None``
                hands it back (``in-progress`` reverts to ``pending``).

        Raises:
            TaskNotFound: If ``task_id`` is not in ``tasks``.
            ClaimRejected: If ``worker_id`` does not hold the task.
            ValueError: If ``outcome`` is not a terminal status.
        """
        if outcome is not None and not outcome.is_terminal:
            raise ValueError(f"Release outcome must be terminal, got {outcome.value}")

        task = DependencyGraph(tasks).get(task_id)
        if task.locked_by != worker_id:
            raise ClaimRejected(task_id, worker_id, f"not held by worker {worker_id}")

        session = self._sessions.get(worker_id)
        if session is not None and task_id in session.claimed:
            session.claimed.remove(task_id)

        now = self.now()
        released = unlock_task(task)
        if outcome is not None:
            released = replace(
                released,
                status=outcome,
                completed_at=now if outcome is TaskStatus.COMPLETED else released.completed_at,
            )
        _log.info("Task %s released by %s", task_id, worker_id)
        return replace(released, updated_at=now)

    def sweep_stale(self, tasks: Sequence[Task], timeout: float | None = None) -> SweepResult:
        """Release every task held by a stale or unknown worker, then drop stale sessions.

        A lock whose holder has no session (deregistered, or never
        registered here) counts as stale. Safe to call repeatedly: a second
        sweep finds nothing to do. Live sessions and the tasks they hold are
        never touched.
        """
        stale = {s.id for s in self._sessions.values() if not self.is_live(s, timeout)}
        result = SweepResult(tasks=list(tasks))

        swept: list[Task] = []
        for task in tasks:
            if task.locked_by and (task.locked_by in stale or task.locked_by not in self._sessions):
                swept.append(unlock_task(task))
                result.released.append(task.id)
            else:
                swept.append(task)
        result.tasks = swept

        for worker_id in sorted(stale):
            del self._sessions[worker_id]
            result.removed_sessions.append(worker_id)
            _log.info("Removed stale worker session: %s", worker_id)

        if result.released:
            _log.info("Released stale claims: %s", ", ".join(result.released))
        return result

    def stats(self) -> RegistryStats:
        now = self.now()
        sessions = list(self._sessions.values())
        live = sum(1 for s in sessions if self.is_live(s))
        uptime = sum((now - s.registered_at).total_seconds() for s in sessions)
        return RegistryStats(
            total_workers=len(sessions),
            live_workers=live,
            stale_workers=len(sessions) - live,
            claimed_tasks=sum(len(s.claimed) for s in sessions),
            average_uptime=uptime / len(sessions) if sessions else 0.0,
        )


def unlock_task(task: Task) -> Task:
    """Clear a task's lock; ``in-progress`` reverts to ``pending``."""
    if task.locked_by is None and task.locked_at is None and task.status is not TaskStatus.IN_PROGRESS:
        return task
    status = TaskStatus.PENDING if task.status is TaskStatus.IN_PROGRESS else task.status
    return replace(task, locked_by=None, locked_at=None, status=status)
