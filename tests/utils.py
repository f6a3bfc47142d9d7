"""Test utilities for taskweave tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from taskweave.graph.schema import Task, TaskStatus

EPOCH = datetime(2026, 1, 17, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def make_task(task_id: str, *depends_on: str, **kwargs: Any) -> Task:
    """Build a task titled after its id."""
    kwargs.setdefault("title", f"Task {task_id}")
    return Task(id=task_id, depends_on=list(depends_on), **kwargs)


def done(task_id: str, *depends_on: str, **kwargs: Any) -> Task:
    """Build a completed task."""
    return make_task(task_id, *depends_on, status=TaskStatus.COMPLETED, **kwargs)
