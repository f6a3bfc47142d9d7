"""Worker sessions, heartbeats and task claims.

Liveness is advisory: a worker that stops heartbeating for longer than the
timeout is treated as gone, and its claims are released by the next sweep.
"""

from taskweave.workers.registry import WorkerLivenessRegistry, unlock_task
from taskweave.workers.schema import (
    RegisterWorkerRequest,
    RegistryStats,
    SweepResult,
    WorkerSession,
)

__all__ = [
    "RegisterWorkerRequest",
    "RegistryStats",
    "SweepResult",
    "WorkerLivenessRegistry",
    "WorkerSession",
    "unlock_task",
]
