"""Queries over recorded change events."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from taskweave.tracking.schema import ChangeAction, ChangeEvent, EntityType


@dataclass
class ChangeFilter:
    """Criteria for ``filter_events``. Unset fields match everything."""

    entity_type: EntityType | None = None
    entity_id: str | None = None
    worker_id: str | None = None
    actions: list[ChangeAction] = field(default_factory=list)
    since: datetime | None = None
    until: datetime | None = None
    offset: int = 0
    limit: int | None = None

    def matches(self, event: ChangeEvent) -> bool:
        if self.entity_type is not None and event.entity_type is not self.entity_type:
            return False
        if self.entity_id is not None and event.entity_id != self.entity_id:
            return False
        if self.worker_id is not None and event.worker_id != self.worker_id:
            return False
        if self.actions and event.action not in self.actions:
            return False
        if self.since is not None and event.timestamp < self.since:
            return False
        if self.until is not None and event.timestamp > self.until:
            return False
        return True


def filter_events(events: Iterable[ChangeEvent], criteria: ChangeFilter) -> list[ChangeEvent]:
    """Matching events, newest first, with offset/limit applied."""
    matched = sorted(
        (e for e in events if criteria.matches(e)),
        key=lambda e: e.timestamp,
        reverse=True,
    )
    matched = matched[criteria.offset :]
    if criteria.limit is not None:
        matched = matched[: criteria.limit]
    return matched


def entity_history(
    events: Iterable[ChangeEvent], entity_type: EntityType, entity_id: str
) -> list[ChangeEvent]:
    return filter_events(events, ChangeFilter(entity_type=entity_type, entity_id=entity_id))


def prune_events(events: Sequence[ChangeEvent], older_than: datetime) -> list[ChangeEvent]:
    """Drop events strictly older than ``older_than``.

    This is for retention policies run by whoever owns the event log.
    Conflict detection never prunes.
    """
    return [e for e in events if e.timestamp >= older_than]


@dataclass(frozen=True)
class EventStats:
    total_events: int
    by_action: dict[str, int]
    by_worker: dict[str, int]
    oldest: datetime | None
    newest: datetime | None


def event_stats(events: Sequence[ChangeEvent]) -> EventStats:
    timestamps = [e.timestamp for e in events]
    return EventStats(
        total_events=len(events),
        by_action=dict(Counter(e.action.value for e in events)),
        by_worker=dict(Counter(e.worker_id for e in events)),
        oldest=min(timestamps) if timestamps else None,
        newest=max(timestamps) if timestamps else None,
    )
