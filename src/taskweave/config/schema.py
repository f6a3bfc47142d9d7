"""Configuration schema dataclasses for taskweave.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class CoordinationConfig:
    """Tuning for liveness, conflict detection and allocation.

    Example config.yaml:
        coordination:
          worker_timeout: 300
          conflict_window: 300
          max_concurrent_tasks: 3
    """

    worker_timeout: float = 300.0  # Seconds without heartbeat before a session is stale
    heartbeat_interval: float = 60.0  # Suggested cadence for external schedulers
    conflict_window: float = 300.0  # Lookback for change conflict detection
    max_concurrent_tasks: int = 3  # Default per-worker allocation capacity
    conflict_detection: bool = True
    event_retention_days: int = 90


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class StoreConfig:
    """Project store configuration."""

    path: str | None = None  # Default: <root>/.taskweave/project.yaml
    lock_timeout: float = 10.0  # Seconds to wait for the store file lock


@dataclass
class Config:
    """Root configuration object."""

    coordination: CoordinationConfig = field(default_factory=CoordinationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    # Unknown top-level sections are kept here
    extra: dict[str, Any] = field(default_factory=dict)
