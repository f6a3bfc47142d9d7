"""Dependency graph over task snapshots.

Derives ready and blocked tasks, detects cycles, and computes the critical
path. Everything here is a pure function of the snapshot it is given.
"""

from taskweave.graph.engine import (
    DependencyGraph,
    add_dependency,
    affected_tasks,
    build_graph,
    calculate_status,
    can_start,
    critical_path,
    detect_cycles,
    remove_dependency,
    to_dot,
    topological_order,
    validate,
    would_create_cycle,
)
from taskweave.graph.schema import (
    DanglingDependency,
    GraphNode,
    GraphView,
    Priority,
    StartCheck,
    Task,
    TaskStatus,
)

__all__ = [
    "DanglingDependency",
    "DependencyGraph",
    "GraphNode",
    "GraphView",
    "Priority",
    "StartCheck",
    "Task",
    "TaskStatus",
    "add_dependency",
    "affected_tasks",
    "build_graph",
    "calculate_status",
    "can_start",
    "critical_path",
    "detect_cycles",
    "remove_dependency",
    "to_dot",
    "topological_order",
    "validate",
    "would_create_cycle",
]
