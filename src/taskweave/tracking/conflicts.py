"""Conflict detection over a recent window of change events.

Timestamps come from each writer's local clock, so ordering across
processes is best effort. Under clock skew the window can miss or
over-report conflicts.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta

from taskweave.errors import ConflictDetected
from taskweave.logging import get_logger
from taskweave.tracking.schema import (
    ChangeAction,
    ChangeEvent,
    ConflictInfo,
    ConflictType,
    Severity,
)

_log = get_logger("tracking")

DEFAULT_WINDOW = 300.0  # seconds


class ChangeConflictDetector:
    """Flags concurrent edits and edits to locked entities.

    Rules, applied to every recent event on the same entity made by a
    different worker:

    - concurrent edit: both events are updates and touch a common field.
      Medium severity, recorded but not blocking.
    - lock conflict: the recent event locked the entity (and the same
      worker has not unlocked it since) and the new event is an update.
      High severity, the write must be rejected.
    """

    def __init__(self, window: float = DEFAULT_WINDOW) -> None:
        """Initialize the detector.

        Args:
            window: Lookback in seconds; older events are ignored.
        """
        self._window = timedelta(seconds=window)

    @property
    def window(self) -> timedelta:
        return self._window

    def recent(self, events: Iterable[ChangeEvent], now: datetime) -> list[ChangeEvent]:
        """Events inside the lookback window ending at ``now``, in input order."""
        return [e for e in events if now - e.timestamp <= self._window]

    def examine(
        self,
        new_event: ChangeEvent,
        recent_events: Sequence[ChangeEvent],
    ) -> list[ConflictInfo]:
        """Find conflicts between ``new_event`` and ``recent_events``.

        Results follow the order of ``recent_events``. The events themselves
        are never modified or removed.
        """
        window = self.recent(recent_events, new_event.timestamp)
        conflicts: list[ConflictInfo] = []

        for recent in window:
            if recent.id == new_event.id or not recent.same_entity(new_event):
                continue
            if recent.worker_id == new_event.worker_id:
                continue

            if (
                recent.action is ChangeAction.UPDATE
                and new_event.action is ChangeAction.UPDATE
                and recent.changed_fields & new_event.changed_fields
            ):
                fields = ", ".join(sorted(recent.changed_fields & new_event.changed_fields))
                conflicts.append(
                    ConflictInfo(
                        id=_conflict_id(ConflictType.CONCURRENT_EDIT, recent, new_event),
                        type=ConflictType.CONCURRENT_EDIT,
                        events=(recent, new_event),
                        severity=Severity.MEDIUM,
                        auto_resolvable=False,
                        description=(
                            f"Workers {recent.worker_id} and {new_event.worker_id} both modified "
                            f"{new_event.entity_type.value} {new_event.entity_id} ({fields})"
                        ),
                        suggested_resolution="Manual review required to merge changes",
                    )
                )

            if (
                recent.action is ChangeAction.LOCK
                and new_event.action is ChangeAction.UPDATE
                and not _unlocked_since(recent, window)
            ):
                conflicts.append(
                    ConflictInfo(
                        id=_conflict_id(ConflictType.LOCK_CONFLICT, recent, new_event),
                        type=ConflictType.LOCK_CONFLICT,
                        events=(recent, new_event),
                        severity=Severity.HIGH,
                        auto_resolvable=False,
                        description=(
                            f"Worker {new_event.worker_id} attempted to modify locked "
                            f"{new_event.entity_type.value} {new_event.entity_id} "
                            f"(held by {recent.worker_id})"
                        ),
                        suggested_resolution=(
                            "Wait for lock to be released or contact lock holder"
                        ),
                    )
                )

        if conflicts:
            _log.info(
                "%d conflict(s) for %s %s from %s",
                len(conflicts),
                new_event.entity_type.value,
                new_event.entity_id,
                new_event.worker_id,
            )
        return conflicts

    def admit(
        self,
        new_event: ChangeEvent,
        recent_events: Sequence[ChangeEvent],
    ) -> ChangeEvent:
        """Vet a pending write before it is committed.

        Returns:
            ``new_event`` with ``conflicts_with`` referencing any medium
            conflicts, ready to be appended.

        Raises:
            ConflictDetected: If any conflict is high severity.
        """
        conflicts = self.examine(new_event, recent_events)
        blocking = [c for c in conflicts if c.blocks_write]
        if blocking:
            raise ConflictDetected(blocking)
        if not conflicts:
            return new_event
        refs = tuple(dict.fromkeys([*new_event.conflicts_with, *(c.id for c in conflicts)]))
        return replace(new_event, conflicts_with=refs)


def _unlocked_since(lock: ChangeEvent, events: Sequence[ChangeEvent]) -> bool:
    return any(
        e.action is ChangeAction.UNLOCK
        and e.worker_id == lock.worker_id
        and e.same_entity(lock)
        and e.timestamp >= lock.timestamp
        for e in events
    )


def _conflict_id(kind: ConflictType, recent: ChangeEvent, new_event: ChangeEvent) -> str:
    return f"{kind.value}:{recent.id}:{new_event.id}"
