"""Tests for the worker liveness registry."""

from __future__ import annotations

from dataclasses import replace

import pytest

from taskweave.errors import ClaimRejected, TaskNotFound, WorkerNotFound
from taskweave.graph import TaskStatus, build_graph
from taskweave.workers import (
    RegisterWorkerRequest,
    WorkerLivenessRegistry,
    WorkerSession,
    unlock_task,
)
from tests.utils import EPOCH, FakeClock, done, make_task


@pytest.fixture
def registry(clock: FakeClock) -> WorkerLivenessRegistry:
    return WorkerLivenessRegistry(timeout=300, clock=clock)


class TestSessions:
    """Registration, heartbeats and liveness."""

    def test_register(self, registry: WorkerLivenessRegistry) -> None:
        session = registry.register(
            RegisterWorkerRequest(name="backend", capabilities=["coding"], purpose="API work")
        )
        assert session.id.startswith("worker-")
        assert session.session_id.startswith("session-")
        assert session.registered_at == session.last_heartbeat == EPOCH
        assert session.capabilities == ["coding"]
        assert session.metadata["purpose"] == "API work"
        assert registry.get(session.id) is session

    def test_ids_are_unique(self, registry: WorkerLivenessRegistry) -> None:
        a = registry.register()
        b = registry.register()
        assert a.id != b.id
        assert a.session_id != b.session_id

    def test_heartbeat(self, registry: WorkerLivenessRegistry, clock: FakeClock) -> None:
        session = registry.register()
        later = clock.advance(120)
        registry.heartbeat(session.id)
        assert session.last_heartbeat == later

    def test_heartbeat_unknown_worker(self, registry: WorkerLivenessRegistry) -> None:
        with pytest.raises(WorkerNotFound):
            registry.heartbeat("worker-missing")

    def test_liveness_boundary(self, registry: WorkerLivenessRegistry, clock: FakeClock) -> None:
        session = registry.register()
        clock.advance(299)
        assert registry.is_live(session)
        clock.advance(1)
        assert not registry.is_live(session)
        assert registry.is_live(session, timeout=600)

    def test_deregister(self, registry: WorkerLivenessRegistry) -> None:
        session = registry.register()
        assert registry.deregister(session.id) is True
        assert registry.deregister(session.id) is False
        assert registry.sessions() == []

    def test_session_round_trip(self, registry: WorkerLivenessRegistry) -> None:
        session = registry.register(RegisterWorkerRequest(name="w"))
        session.claimed.append("A")
        assert WorkerSession.from_dict(session.to_dict()) == session

    def test_stats(self, registry: WorkerLivenessRegistry, clock: FakeClock) -> None:
        registry.register()
        clock.advance(400)
        registry.register()
        stats = registry.stats()
        assert stats.total_workers == 2
        assert stats.live_workers == 1
        assert stats.stale_workers == 1
        assert stats.average_uptime == 200.0


class TestClaim:
    """Tests for claim and release."""

    def test_claim_ready_task(self, registry: WorkerLivenessRegistry) -> None:
        worker = registry.register()
        tasks = [done("A"), make_task("B", "A")]
        claimed = registry.claim("B", worker.id, tasks)
        assert claimed.status is TaskStatus.IN_PROGRESS
        assert claimed.locked_by == worker.id
        assert claimed.locked_at == EPOCH
        assert claimed.started_at == EPOCH
        assert worker.claimed == ["B"]
        # Input snapshot untouched
        assert tasks[1].locked_by is None

    def test_claim_blocked_task(self, registry: WorkerLivenessRegistry) -> None:
        worker = registry.register()
        with pytest.raises(ClaimRejected) as exc_info:
            registry.claim("B", worker.id, [make_task("A"), make_task("B", "A")])
        assert exc_info.value.reason == "not ready"

    def test_claim_unknown_task(self, registry: WorkerLivenessRegistry) -> None:
        worker = registry.register()
        with pytest.raises(TaskNotFound):
            registry.claim("Z", worker.id, [make_task("A")])

    def test_claim_unknown_worker(self, registry: WorkerLivenessRegistry) -> None:
        with pytest.raises(WorkerNotFound):
            registry.claim("A", "worker-missing", [make_task("A")])

    def test_racing_claims_on_same_snapshot(self, registry: WorkerLivenessRegistry) -> None:
        w1 = registry.register(RegisterWorkerRequest(name="W1"))
        w2 = registry.register(RegisterWorkerRequest(name="W2"))
        snapshot = [done("A"), make_task("B", "A"), make_task("C", "A")]

        registry.claim("B", w1.id, snapshot)
        with pytest.raises(ClaimRejected) as exc_info:
            registry.claim("B", w2.id, snapshot)
        assert str(exc_info.value) == f"ClaimRejected: held by live worker {w1.id}"

    def test_claim_locked_by_live_worker(self, registry: WorkerLivenessRegistry) -> None:
        w1 = registry.register()
        w2 = registry.register()
        tasks = [make_task("A")]
        tasks[0] = registry.claim("A", w1.id, tasks)
        with pytest.raises(ClaimRejected, match="held by live worker"):
            registry.claim("A", w2.id, tasks)

    def test_claim_takes_over_stale_lock(
        self, registry: WorkerLivenessRegistry, clock: FakeClock
    ) -> None:
        w1 = registry.register()
        tasks = [make_task("A")]
        tasks[0] = registry.claim("A", w1.id, tasks)
        clock.advance(600)
        w2 = registry.register()
        claimed = registry.claim("A", w2.id, tasks)
        assert claimed.locked_by == w2.id
        assert w1.claimed == []

    def test_reclaim_is_idempotent(self, registry: WorkerLivenessRegistry) -> None:
        worker = registry.register()
        tasks = [make_task("A")]
        tasks[0] = registry.claim("A", worker.id, tasks)
        assert registry.claim("A", worker.id, tasks) is tasks[0]

    def test_release_hands_task_back(self, registry: WorkerLivenessRegistry) -> None:
        worker = registry.register()
        tasks = [make_task("A")]
        tasks[0] = registry.claim("A", worker.id, tasks)
        released = registry.release("A", worker.id, tasks)
        assert released.status is TaskStatus.PENDING
        assert released.locked_by is None
        assert worker.claimed == []

    def test_release_as_completed(
        self, registry: WorkerLivenessRegistry, clock: FakeClock
    ) -> None:
        worker = registry.register()
        tasks = [make_task("A")]
        tasks[0] = registry.claim("A", worker.id, tasks)
        finished = clock.advance(60)
        released = registry.release("A", worker.id, tasks, TaskStatus.COMPLETED)
        assert released.status is TaskStatus.COMPLETED
        assert released.completed_at == finished

    def test_release_by_non_holder(self, registry: WorkerLivenessRegistry) -> None:
        w1 = registry.register()
        w2 = registry.register()
        tasks = [make_task("A")]
        tasks[0] = registry.claim("A", w1.id, tasks)
        with pytest.raises(ClaimRejected, match="not held by worker"):
            registry.release("A", w2.id, tasks)

    def test_release_outcome_must_be_terminal(self, registry: WorkerLivenessRegistry) -> None:
        with pytest.raises(ValueError):
            registry.release("A", "w", [make_task("A")], TaskStatus.READY)


class TestSweepStale:
    """Tests for releasing stale claims."""

    def test_stale_session_released(self, clock: FakeClock) -> None:
        registry = WorkerLivenessRegistry(timeout=300, clock=clock)
        worker = registry.register()
        tasks = [done("A"), make_task("B", "A")]
        tasks[1] = registry.claim("B", worker.id, tasks)

        clock.advance(6 * 60)
        result = registry.sweep_stale(tasks)

        swept = result.tasks[1]
        assert swept.status is TaskStatus.PENDING
        assert swept.locked_by is None
        assert swept.locked_at is None
        assert result.released == ["B"]
        assert result.removed_sessions == [worker.id]
        assert registry.get(worker.id) is None

    def test_live_sessions_untouched(self, clock: FakeClock) -> None:
        registry = WorkerLivenessRegistry(timeout=300, clock=clock)
        stale = registry.register()
        tasks = [make_task("A"), make_task("B")]
        tasks[0] = registry.claim("A", stale.id, tasks)
        clock.advance(400)
        live = registry.register()
        tasks[1] = registry.claim("B", live.id, tasks)

        result = registry.sweep_stale(tasks)
        assert result.released == ["A"]
        assert result.tasks[1] is tasks[1]
        assert registry.get(live.id) is live

    def test_idempotent(self, clock: FakeClock) -> None:
        registry = WorkerLivenessRegistry(timeout=300, clock=clock)
        worker = registry.register()
        tasks = [make_task("A")]
        tasks[0] = registry.claim("A", worker.id, tasks)
        clock.advance(301)

        first = registry.sweep_stale(tasks)
        second = registry.sweep_stale(first.tasks)
        assert second.released == []
        assert second.removed_sessions == []
        assert second.tasks == first.tasks

    def test_deregistered_holder_released(self, clock: FakeClock) -> None:
        registry = WorkerLivenessRegistry(timeout=300, clock=clock)
        worker = registry.register()
        tasks = [make_task("A")]
        tasks[0] = registry.claim("A", worker.id, tasks)
        registry.deregister(worker.id)
        clock.advance(3600)

        result = registry.sweep_stale(tasks)
        assert result.released == ["A"]
        assert result.removed_sessions == []
        assert result.tasks[0].locked_by is None
        assert result.tasks[0].status is TaskStatus.PENDING
        assert [t.id for t in build_graph(result.tasks).ready_to_work] == ["A"]

    def test_lock_by_unknown_worker_released(self, clock: FakeClock) -> None:
        registry = WorkerLivenessRegistry(timeout=300, clock=clock)
        tasks = [make_task("A", status=TaskStatus.IN_PROGRESS, locked_by="worker-gone")]
        assert registry.sweep_stale(tasks).released == ["A"]

    def test_per_call_timeout(self, clock: FakeClock) -> None:
        registry = WorkerLivenessRegistry(timeout=300, clock=clock)
        registry.register()
        clock.advance(100)
        assert registry.sweep_stale([], timeout=60).removed_sessions != []


class TestUnlockTask:
    """Tests for unlock_task."""

    def test_unlocked_task_returned_as_is(self) -> None:
        task = make_task("A")
        assert unlock_task(task) is task

    def test_terminal_status_kept(self) -> None:
        task = replace(done("A"), locked_by="w", locked_at=EPOCH)
        unlocked = unlock_task(task)
        assert unlocked.status is TaskStatus.COMPLETED
        assert unlocked.locked_by is None
