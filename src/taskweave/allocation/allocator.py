"""Work allocation across workers.

The allocator only proposes assignments. It never mutates tasks or
sessions; the caller turns a proposal into a claim through the worker
registry and persists the result.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from taskweave.graph.engine import DependencyGraph
from taskweave.graph.schema import GraphView, Task
from taskweave.logging import get_logger

if TYPE_CHECKING:
    from taskweave.workers.registry import WorkerLivenessRegistry

_log = get_logger("allocation")

DEFAULT_MAX_CONCURRENT_TASKS = 3


@dataclass
class WorkerSpec:
    """A worker offered to the allocator."""

    id: str
    capabilities: list[str] = field(default_factory=list)
    max_concurrent_tasks: int | None = None  # None -> allocator default


@dataclass
class Assignment:
    worker_id: str
    tasks: list[Task] = field(default_factory=list)

    @property
    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]


@dataclass(frozen=True)
class AllocationConflict:
    """A ready task that could not be placed."""

    task_id: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"task_id": self.task_id, "reason": self.reason}


@dataclass
class Allocation:
    assignments: list[Assignment] = field(default_factory=list)
    unassigned: list[Task] = field(default_factory=list)
    conflicts: list[AllocationConflict] = field(default_factory=list)

    def for_worker(self, worker_id: str) -> list[Task]:
        for assignment in self.assignments:
            if assignment.worker_id == worker_id:
                return assignment.tasks
        return []


class WorkAllocator:
    """Assigns ready tasks to workers under capacity and priority constraints.

    Ready tasks are ordered by priority (critical first), then critical-path
    membership, then graph depth (deepest first). The sort is stable, so
    equal tasks keep snapshot order. Tasks are handed out round-robin over
    the workers in the order given, skipping workers that are full.
    """

    def __init__(
        self,
        registry: WorkerLivenessRegistry | None = None,
        default_max_concurrent: int = DEFAULT_MAX_CONCURRENT_TASKS,
    ) -> None:
        """Initialize the allocator.

        Args:
            registry: When given, ready tasks locked by a live worker are
                left out of the allocation.
            default_max_concurrent: Capacity for workers that do not set one.
        """
        self._registry = registry
        self._default_max = default_max_concurrent

    def _capacity(self, worker: WorkerSpec) -> int:
        if worker.max_concurrent_tasks is None:
            return self._default_max
        return worker.max_concurrent_tasks

    def _held_by_live_worker(self, task: Task) -> bool:
        if self._registry is None or not task.locked_by:
            return False
        session = self._registry.get(task.locked_by)
        return session is not None and self._registry.is_live(session)

    def rank(self, view: GraphView) -> list[Task]:
        """Ready tasks of ``view`` in allocation order."""
        on_path = set(view.critical_path_ids)
        depth = {node.task.id: node.depth for node in view.nodes}

        def sort_key(task: Task) -> tuple[int, int, int]:
            return (
                -task.priority.rank,
                0 if task.id in on_path else 1,
                -depth.get(task.id, 0),
            )

        return sorted(view.ready_to_work, key=sort_key)

    def allocate(self, tasks: Sequence[Task], workers: Sequence[WorkerSpec]) -> Allocation:
        """Propose an assignment of ready tasks to ``workers``.

        Every blocked task is returned in ``unassigned``. A ready task no
        worker has room for is returned in ``unassigned`` as well and
        explained in ``conflicts``. A ready task another live worker already
        holds is only explained in ``conflicts``.
        """
        view = DependencyGraph(tasks).build()
        result = Allocation()
        slots = [Assignment(worker_id=w.id) for w in workers]
        cursor = 0

        for task in self.rank(view):
            if self._held_by_live_worker(task):
                result.conflicts.append(
                    AllocationConflict(
                        task_id=task.id, reason=f"held by live worker {task.locked_by}"
                    )
                )
                continue

            placed = False
            for offset in range(len(workers)):
                idx = (cursor + offset) % len(workers)
                if len(slots[idx].tasks) < self._capacity(workers[idx]):
                    slots[idx].tasks.append(task)
                    cursor = (idx + 1) % len(workers)
                    placed = True
                    break

            if not placed:
                if workers:
                    reason = f"All {len(workers)} workers at capacity"
                else:
                    reason = "No workers available"
                result.conflicts.append(AllocationConflict(task_id=task.id, reason=reason))
                result.unassigned.append(task)

        result.unassigned.extend(view.blocked)
        result.assignments = [a for a in slots if a.tasks]

        _log.debug(
            "Allocated %d tasks to %d workers (%d unassigned, %d conflicts)",
            sum(len(a.tasks) for a in result.assignments),
            len(result.assignments),
            len(result.unassigned),
            len(result.conflicts),
        )
        return result

    def available_for(self, tasks: Sequence[Task], worker_id: str) -> list[Task]:
        """Ready tasks ``worker_id`` could claim right now, in allocation order.

        Tasks locked by a different live worker are excluded; tasks already
        locked by ``worker_id`` are kept.
        """
        view = DependencyGraph(tasks).build()
        return [
            task
            for task in self.rank(view)
            if task.locked_by == worker_id or not self._held_by_live_worker(task)
        ]


def allocate(tasks: Sequence[Task], workers: Sequence[WorkerSpec]) -> Allocation:
    """Allocate with default settings and no registry."""
    return WorkAllocator().allocate(tasks, workers)
