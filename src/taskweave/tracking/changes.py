"""Typed field diffs between two versions of a record."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from taskweave.graph.schema import Task
from taskweave.tracking.schema import Added, FieldChange, Modified, Removed
from taskweave.workers.schema import WorkerSession

# Bookkeeping fields that change on every write and carry no intent
_TASK_IGNORED = frozenset({"updated_at"})
_SESSION_IGNORED = frozenset({"last_heartbeat"})


def diff_fields(
    old: Mapping[str, Any] | None,
    new: Mapping[str, Any] | None,
    ignore: frozenset[str] = frozenset(),
) -> list[FieldChange]:
    """Compare two flat field mappings.

    A missing mapping means the record did not exist (creation) or no longer
    exists (deletion). A field holding None counts as absent.
    """
    old = old or {}
    new = new or {}
    changes: list[FieldChange] = []
    for name in dict.fromkeys([*old, *new]):
        if name in ignore:
            continue
        before = old.get(name)
        after = new.get(name)
        if before is None and after is not None:
            changes.append(Added(name, after))
        elif before is not None and after is None:
            changes.append(Removed(name, before))
        elif before != after:
            changes.append(Modified(name, before, after))
    return changes


def diff_tasks(old: Task | None, new: Task | None) -> list[FieldChange]:
    return diff_fields(
        old.to_dict() if old else None,
        new.to_dict() if new else None,
        ignore=_TASK_IGNORED,
    )


def diff_sessions(old: WorkerSession | None, new: WorkerSession | None) -> list[FieldChange]:
    return diff_fields(
        old.to_dict() if old else None,
        new.to_dict() if new else None,
        ignore=_SESSION_IGNORED,
    )
