"""Taskweave: dependency-aware task coordination for multiple workers."""

__version__ = "0.1.0"

# Public API
from taskweave.allocation import Allocation, WorkAllocator, WorkerSpec
from taskweave.config import Config, get_config, load_config
from taskweave.coordinator import ProjectCoordinator
from taskweave.errors import (
    ClaimRejected,
    ConflictDetected,
    CoordinationError,
    CycleDetected,
    StaleSnapshot,
    TaskNotFound,
    ValidationError,
    WorkerNotFound,
)
from taskweave.graph import DependencyGraph, GraphView, Priority, Task, TaskStatus, build_graph
from taskweave.store import ProjectSnapshot, ProjectStore
from taskweave.tracking import ChangeConflictDetector, ChangeEvent, ConflictInfo
from taskweave.workers import RegisterWorkerRequest, WorkerLivenessRegistry, WorkerSession

__all__ = [
    # Main entry points
    "ProjectCoordinator",
    "ProjectSnapshot",
    "ProjectStore",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Graph
    "DependencyGraph",
    "GraphView",
    "Priority",
    "Task",
    "TaskStatus",
    "build_graph",
    # Allocation
    "Allocation",
    "WorkAllocator",
    "WorkerSpec",
    # Workers
    "RegisterWorkerRequest",
    "WorkerLivenessRegistry",
    "WorkerSession",
    # Tracking
    "ChangeConflictDetector",
    "ChangeEvent",
    "ConflictInfo",
    # Errors
    "ClaimRejected",
    "ConflictDetected",
    "CoordinationError",
    "CycleDetected",
    "StaleSnapshot",
    "TaskNotFound",
    "ValidationError",
    "WorkerNotFound",
]
