"""Change tracking: field diffs, the event log and conflict detection."""

from taskweave.tracking.changes import diff_fields, diff_sessions, diff_tasks
from taskweave.tracking.conflicts import ChangeConflictDetector
from taskweave.tracking.history import (
    ChangeFilter,
    EventStats,
    entity_history,
    event_stats,
    filter_events,
    prune_events,
)
from taskweave.tracking.schema import (
    Added,
    ChangeAction,
    ChangeEvent,
    ConflictInfo,
    ConflictType,
    EntityType,
    FieldChange,
    Modified,
    Removed,
    Severity,
)

__all__ = [
    "Added",
    "ChangeAction",
    "ChangeConflictDetector",
    "ChangeEvent",
    "ChangeFilter",
    "ConflictInfo",
    "ConflictType",
    "EntityType",
    "EventStats",
    "FieldChange",
    "Modified",
    "Removed",
    "Severity",
    "diff_fields",
    "diff_sessions",
    "diff_tasks",
    "entity_history",
    "event_stats",
    "filter_events",
    "prune_events",
]
