"""Tests for work allocation."""

from __future__ import annotations

from taskweave.allocation import AllocationConflict, WorkAllocator, WorkerSpec, allocate
from taskweave.graph import Priority, TaskStatus
from taskweave.workers import RegisterWorkerRequest, WorkerLivenessRegistry
from tests.utils import FakeClock, done, make_task


def assigned_ids(allocation) -> list[str]:
    return [t.id for a in allocation.assignments for t in a.tasks]


class TestRanking:
    """Ready tasks are ordered by priority, critical path, then depth."""

    def test_priority_first(self) -> None:
        tasks = [
            make_task("low", priority=Priority.LOW),
            make_task("crit", priority=Priority.CRITICAL),
            make_task("high", priority=Priority.HIGH),
        ]
        result = allocate(tasks, [WorkerSpec("w1", max_concurrent_tasks=10)])
        assert result.for_worker("w1") == [tasks[1], tasks[2], tasks[0]]

    def test_critical_path_breaks_priority_tie(self) -> None:
        tasks = [
            make_task("short", estimated_duration=1),
            make_task("long", estimated_duration=50),
        ]
        result = allocate(tasks, [WorkerSpec("w1")])
        assert [t.id for t in result.for_worker("w1")] == ["long", "short"]

    def test_deeper_task_preferred(self) -> None:
        tasks = [
            make_task("big", estimated_duration=100),
            make_task("shallow"),
            done("root"),
            make_task("deep", "root"),
        ]
        result = allocate(tasks, [WorkerSpec("w1")])
        assert [t.id for t in result.for_worker("w1")] == ["big", "deep", "shallow"]

    def test_stable_for_equal_tasks(self) -> None:
        tasks = [make_task("a"), make_task("b"), make_task("c")]
        first = allocate(tasks, [WorkerSpec("w1"), WorkerSpec("w2")])
        second = allocate(tasks, [WorkerSpec("w1"), WorkerSpec("w2")])
        assert first == second


class TestAllocate:
    """Tests for capacity, round-robin and blocked handling."""

    def test_round_robin(self) -> None:
        tasks = [make_task(t) for t in "abcd"]
        result = allocate(tasks, [WorkerSpec("w1"), WorkerSpec("w2")])
        assert [t.id for t in result.for_worker("w1")] == ["a", "c"]
        assert [t.id for t in result.for_worker("w2")] == ["b", "d"]

    def test_full_worker_skipped(self) -> None:
        tasks = [make_task(t) for t in "abcd"]
        workers = [WorkerSpec("w1", max_concurrent_tasks=1), WorkerSpec("w2")]
        result = allocate(tasks, workers)
        assert [t.id for t in result.for_worker("w1")] == ["a"]
        assert [t.id for t in result.for_worker("w2")] == ["b", "c", "d"]

    def test_overflow_reported_as_conflict(self) -> None:
        tasks = [make_task(t) for t in "abc"]
        result = allocate(tasks, [WorkerSpec("w1", max_concurrent_tasks=2)])
        assert assigned_ids(result) == ["a", "b"]
        assert [t.id for t in result.unassigned] == ["c"]
        assert len(result.conflicts) == 1
        assert result.conflicts[0].task_id == "c"
        assert result.conflicts[0].reason == "All 1 workers at capacity"

    def test_no_workers(self) -> None:
        result = allocate([make_task("a")], [])
        assert result.assignments == []
        assert result.conflicts[0].reason == "No workers available"

    def test_blocked_tasks_unassigned(self) -> None:
        tasks = [make_task("a"), make_task("b", "a")]
        result = allocate(tasks, [WorkerSpec("w1")])
        assert assigned_ids(result) == ["a"]
        assert [t.id for t in result.unassigned] == ["b"]
        assert result.conflicts == []

    def test_never_assigns_twice_or_over_capacity(self) -> None:
        tasks = [make_task(f"t{i}") for i in range(20)] + [make_task("blocked", "t0")]
        workers = [WorkerSpec("w1", max_concurrent_tasks=2), WorkerSpec("w2"), WorkerSpec("w3")]
        result = allocate(tasks, workers)
        assigned = assigned_ids(result)
        assert len(assigned) == len(set(assigned)) == 8
        assert "blocked" not in assigned
        caps = {"w1": 2, "w2": 3, "w3": 3}
        for assignment in result.assignments:
            assert len(assignment.tasks) <= caps[assignment.worker_id]

    def test_default_capacity_from_allocator(self) -> None:
        tasks = [make_task(t) for t in "abc"]
        result = WorkAllocator(default_max_concurrent=1).allocate(tasks, [WorkerSpec("w1")])
        assert assigned_ids(result) == ["a"]

    def test_read_only(self) -> None:
        tasks = [make_task("a")]
        before = [t.to_dict() for t in tasks]
        allocate(tasks, [WorkerSpec("w1")])
        assert [t.to_dict() for t in tasks] == before


class TestRegistryAware:
    """Allocation with a liveness registry."""

    def test_skips_tasks_held_by_live_worker(self, clock: FakeClock) -> None:
        registry = WorkerLivenessRegistry(clock=clock)
        holder = registry.register(RegisterWorkerRequest(name="holder"))
        tasks = [make_task("a"), make_task("b")]
        tasks[0] = registry.claim("a", holder.id, tasks)
        # A claimed task is in-progress and therefore not ready; unlock it by
        # hand to check the allocator consults the registry
        tasks[0].status = TaskStatus.PENDING

        allocator = WorkAllocator(registry=registry)
        result = allocator.allocate(tasks, [WorkerSpec("w2")])
        assert [t.id for t in result.for_worker("w2")] == ["b"]
        assert result.conflicts == [
            AllocationConflict(task_id="a", reason=f"held by live worker {holder.id}")
        ]
        assert result.unassigned == []
        assert [t.id for t in allocator.available_for(tasks, holder.id)] == ["a", "b"]
        assert [t.id for t in allocator.available_for(tasks, "w2")] == ["b"]
