"""Project coordinator.

Drives the coordination core against a ``ProjectStore`` for one project.
Every operation loads a full snapshot, computes with the core, records the
change events (vetted by the conflict detector), and commits the whole
snapshot back. Nothing is retried here: ``StaleSnapshot``,
``ClaimRejected`` and ``ConflictDetected`` reach the caller, who decides
whether to reload and try again.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from taskweave.allocation.allocator import Allocation, WorkAllocator, WorkerSpec
from taskweave.config.paths import get_default_store_path
from taskweave.config.schema import Config
from taskweave.errors import TaskNotFound, ValidationError, WorkerNotFound
from taskweave.graph import engine
from taskweave.graph.schema import GraphView, Priority, Task, TaskStatus
from taskweave.logging import get_logger
from taskweave.store import ProjectSnapshot, ProjectStore
from taskweave.tracking.changes import diff_sessions, diff_tasks
from taskweave.tracking.conflicts import ChangeConflictDetector
from taskweave.tracking.history import prune_events
from taskweave.tracking.schema import ChangeAction, ChangeEvent, EntityType
from taskweave.workers.registry import WorkerLivenessRegistry, unlock_task
from taskweave.workers.schema import RegisterWorkerRequest, SweepResult, WorkerSession

_log = get_logger("coordinator")

# Task fields a worker may edit through update_task
EDITABLE_FIELDS = frozenset({"title", "description", "priority", "estimated_duration"})


class ProjectCoordinator:
    """Single-project facade over the store and the coordination core."""

    def __init__(
        self,
        store: ProjectStore,
        config: Config | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Where the project snapshot lives.
            config: Coordination settings; defaults apply when omitted.
            clock: Returns the current time; defaults to UTC wall clock.
        """
        self._store = store
        self._config = config or Config()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._detector = ChangeConflictDetector(window=self._config.coordination.conflict_window)

    @classmethod
    def for_project(
        cls,
        project_root: str | Path,
        config: Config | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ProjectCoordinator:
        """Open the store configured for ``project_root``."""
        config = config or Config()
        path = config.store.path or get_default_store_path(project_root)
        return cls(ProjectStore(path, lock_timeout=config.store.lock_timeout), config, clock)

    @property
    def store(self) -> ProjectStore:
        return self._store

    def _registry(self, snapshot: ProjectSnapshot) -> WorkerLivenessRegistry:
        # Sessions are copied so a failed operation leaves the snapshot intact
        return WorkerLivenessRegistry(
            [WorkerSession.from_dict(s.to_dict()) for s in snapshot.sessions],
            timeout=self._config.coordination.worker_timeout,
            clock=self._clock,
        )

    def _event(
        self,
        entity_type: EntityType,
        entity_id: str,
        worker_id: str,
        action: ChangeAction,
        changes: Sequence[Any],
        reason: str | None = None,
    ) -> ChangeEvent:
        return ChangeEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            worker_id=worker_id,
            action=action,
            changes=tuple(changes),
            timestamp=self._clock(),
            reason=reason,
        )

    def _commit(
        self,
        snapshot: ProjectSnapshot,
        *,
        tasks: list[Task] | None = None,
        registry: WorkerLivenessRegistry | None = None,
        events: Sequence[ChangeEvent] = (),
    ) -> ProjectSnapshot:
        log = list(snapshot.events)
        if self._config.coordination.conflict_detection:
            for event in events:
                window = self._detector.recent(log, event.timestamp)
                log.append(self._detector.admit(event, window))
        else:
            log.extend(events)

        return self._store.commit(
            replace(
                snapshot,
                tasks=tasks if tasks is not None else snapshot.tasks,
                sessions=registry.sessions() if registry is not None else snapshot.sessions,
                events=log,
            )
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> ProjectSnapshot:
        return self._store.load()

    def graph(self) -> GraphView:
        return engine.build_graph(self._store.load().tasks)

    def allocate(self, workers: Sequence[WorkerSpec]) -> Allocation:
        """Propose an allocation of ready work; nothing is claimed."""
        snapshot = self._store.load()
        allocator = WorkAllocator(
            registry=self._registry(snapshot),
            default_max_concurrent=self._config.coordination.max_concurrent_tasks,
        )
        return allocator.allocate(snapshot.tasks, workers)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def register_worker(self, request: RegisterWorkerRequest | None = None) -> WorkerSession:
        snapshot = self._store.load()
        registry = self._registry(snapshot)
        session = registry.register(request)
        event = self._event(
            EntityType.WORKER,
            session.id,
            session.id,
            ChangeAction.CREATE,
            diff_sessions(None, session),
        )
        self._commit(snapshot, registry=registry, events=[event])
        return session

    def heartbeat(self, worker_id: str) -> WorkerSession:
        snapshot = self._store.load()
        registry = self._registry(snapshot)
        session = registry.heartbeat(worker_id)
        self._commit(snapshot, registry=registry)
        return session

    def deregister_worker(self, worker_id: str) -> SweepResult:
        """Remove a worker and hand back every task it held."""
        snapshot = self._store.load()
        registry = self._registry(snapshot)
        session = registry.get(worker_id)
        if session is None:
            raise WorkerNotFound(worker_id)
        registry.deregister(worker_id)

        result = SweepResult(tasks=[], removed_sessions=[worker_id])
        events = []
        for task in snapshot.tasks:
            if task.locked_by == worker_id:
                released = unlock_task(task)
                result.tasks.append(released)
                result.released.append(task.id)
                events.append(
                    self._event(
                        EntityType.TASK,
                        task.id,
                        worker_id,
                        ChangeAction.UNLOCK,
                        diff_tasks(task, released),
                        reason="worker deregistered",
                    )
                )
            else:
                result.tasks.append(task)
        events.append(
            self._event(
                EntityType.WORKER,
                worker_id,
                worker_id,
                ChangeAction.DELETE,
                diff_sessions(session, None),
            )
        )
        self._commit(snapshot, tasks=result.tasks, registry=registry, events=events)
        return result

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(
        self,
        worker_id: str,
        task_id: str,
        title: str,
        *,
        depends_on: Sequence[str] = (),
        priority: Priority = Priority.MEDIUM,
        estimated_duration: float | None = None,
        description: str | None = None,
    ) -> Task:
        """Create a task. Its dependencies are added one by one, each checked for cycles.

        Raises:
            ValidationError: If the id is taken or the title is empty.
            TaskNotFound: If a dependency does not exist.
        """
        if not title or not title.strip():
            raise ValidationError("Task title cannot be empty")
        snapshot = self._store.load()
        if snapshot.task(task_id) is not None:
            raise ValidationError(f"Task already exists: {task_id}")

        now = self._clock()
        task = Task(
            id=task_id,
            title=title,
            priority=priority,
            estimated_duration=estimated_duration,
            description=description,
            created_at=now,
            updated_at=now,
        )
        tasks = [*snapshot.tasks, task]
        for dep_id in dict.fromkeys(depends_on):
            tasks = engine.add_dependency(tasks, task_id, dep_id, now=now)
        created = next(t for t in tasks if t.id == task_id)

        event = self._event(
            EntityType.TASK, task_id, worker_id, ChangeAction.CREATE, diff_tasks(None, created)
        )
        self._commit(snapshot, tasks=tasks, events=[event])
        return created

    def update_task(self, worker_id: str, task_id: str, **changes: Any) -> Task:
        """Edit descriptive fields of a task.

        ``priority`` may be given as a ``Priority`` or its value (``"high"``).

        Raises:
            ValidationError: If a field is not editable or a priority is unknown.
            ConflictDetected: If another worker currently holds the task.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
        if "priority" in changes:
            try:
                changes["priority"] = Priority(changes["priority"])
            except ValueError as e:
                raise ValidationError(f"Invalid priority: {changes['priority']!r}") from e

        snapshot = self._store.load()
        task = self._require(snapshot, task_id)
        updated = replace(task, **changes, updated_at=self._clock())
        tasks = [updated if t.id == task_id else t for t in snapshot.tasks]
        event = self._event(
            EntityType.TASK, task_id, worker_id, ChangeAction.UPDATE, diff_tasks(task, updated)
        )
        self._commit(snapshot, tasks=tasks, events=[event])
        return updated

    def add_dependency(self, worker_id: str, task_id: str, depends_on_id: str) -> Task:
        """Raises ``CycleDetected`` before anything is written."""
        snapshot = self._store.load()
        tasks = engine.add_dependency(snapshot.tasks, task_id, depends_on_id, now=self._clock())
        return self._commit_edge(snapshot, worker_id, task_id, tasks)

    def remove_dependency(self, worker_id: str, task_id: str, depends_on_id: str) -> Task:
        snapshot = self._store.load()
        tasks = engine.remove_dependency(snapshot.tasks, task_id, depends_on_id, now=self._clock())
        return self._commit_edge(snapshot, worker_id, task_id, tasks)

    def _commit_edge(
        self, snapshot: ProjectSnapshot, worker_id: str, task_id: str, tasks: list[Task]
    ) -> Task:
        before = self._require(snapshot, task_id)
        after = next(t for t in tasks if t.id == task_id)
        event = self._event(
            EntityType.TASK, task_id, worker_id, ChangeAction.UPDATE, diff_tasks(before, after)
        )
        self._commit(snapshot, tasks=tasks, events=[event])
        return after

    def claim_task(self, worker_id: str, task_id: str) -> Task:
        """Claim a ready task for ``worker_id`` and persist the claim.

        Raises:
            ClaimRejected: If the task is not ready or a live worker holds it.
            StaleSnapshot: If another writer committed in the meantime.
        """
        snapshot = self._store.load()
        registry = self._registry(snapshot)
        claimed = registry.claim(task_id, worker_id, snapshot.tasks)
        before = self._require(snapshot, task_id)
        if claimed is before:
            return claimed

        tasks = [claimed if t.id == task_id else t for t in snapshot.tasks]
        events = []
        if before.locked_by and before.locked_by != worker_id:
            # Taking over a stale lock ends the previous holder's lock first
            released = unlock_task(before)
            events.append(
                self._event(
                    EntityType.TASK,
                    task_id,
                    before.locked_by,
                    ChangeAction.UNLOCK,
                    diff_tasks(before, released),
                    reason="stale session",
                )
            )
            before = released
        events.append(
            self._event(
                EntityType.TASK, task_id, worker_id, ChangeAction.LOCK, diff_tasks(before, claimed)
            )
        )
        self._commit(snapshot, tasks=tasks, registry=registry, events=events)
        return claimed

    def release_task(
        self, worker_id: str, task_id: str, outcome: TaskStatus | None = None
    ) -> Task:
        """Release a claim, optionally finishing the task as completed or failed."""
        snapshot = self._store.load()
        registry = self._registry(snapshot)
        before = self._require(snapshot, task_id)
        released = registry.release(task_id, worker_id, snapshot.tasks, outcome)

        tasks = [released if t.id == task_id else t for t in snapshot.tasks]
        event = self._event(
            EntityType.TASK, task_id, worker_id, ChangeAction.UNLOCK, diff_tasks(before, released)
        )
        self._commit(snapshot, tasks=tasks, registry=registry, events=[event])
        return released

    def complete_task(self, worker_id: str, task_id: str) -> Task:
        return self.release_task(worker_id, task_id, TaskStatus.COMPLETED)

    def fail_task(self, worker_id: str, task_id: str) -> Task:
        return self.release_task(worker_id, task_id, TaskStatus.FAILED)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def tick(self) -> SweepResult:
        """Release stale claims and prune expired events.

        Meant to be called periodically by an external scheduler at roughly
        ``coordination.heartbeat_interval``.
        """
        snapshot = self._store.load()
        registry = self._registry(snapshot)
        result = registry.sweep_stale(snapshot.tasks)

        before = {t.id: t for t in snapshot.tasks}
        after = {t.id: t for t in result.tasks}
        events = [
            self._event(
                EntityType.TASK,
                task_id,
                before[task_id].locked_by or "",
                ChangeAction.UNLOCK,
                diff_tasks(before[task_id], after[task_id]),
                reason="stale session",
            )
            for task_id in result.released
        ]

        retention = timedelta(days=self._config.coordination.event_retention_days)
        cutoff = self._clock() - retention
        pruned = replace(snapshot, events=prune_events(snapshot.events, cutoff))
        expired = len(snapshot.events) - len(pruned.events)

        if events or result.removed_sessions or expired:
            self._commit(pruned, tasks=result.tasks, registry=registry, events=events)
            _log.info(
                "Tick: released %d task(s), removed %d session(s), pruned %d event(s)",
                len(result.released),
                len(result.removed_sessions),
                expired,
            )
        return result

    @staticmethod
    def _require(snapshot: ProjectSnapshot, task_id: str) -> Task:
        task = snapshot.task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task
