"""Allocation of ready tasks to workers."""

from taskweave.allocation.allocator import (
    Allocation,
    AllocationConflict,
    Assignment,
    WorkAllocator,
    WorkerSpec,
    allocate,
)

__all__ = [
    "Allocation",
    "AllocationConflict",
    "Assignment",
    "WorkAllocator",
    "WorkerSpec",
    "allocate",
]
