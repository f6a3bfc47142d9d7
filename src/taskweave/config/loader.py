"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Deep merging of system, user and project configs
- Environment variable overrides
- Conversion from dict to the typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from taskweave.config.paths import get_config_paths
from taskweave.config.schema import (
    Config,
    CoordinationConfig,
    LoggingConfig,
    StoreConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("taskweave.config")

_cached_config: Config | None = None

_KNOWN_SECTIONS = {"coordination", "logging", "store"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``.

    Nested dicts merge recursively, lists and scalars are replaced, and a
    None in ``override`` leaves the base value alone.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def env_overrides() -> dict[str, Any]:
    """Build a config dict from TASKWEAVE_* environment variables."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("TASKWEAVE_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    timeout = os.environ.get("TASKWEAVE_WORKER_TIMEOUT")
    if timeout:
        try:
            overrides.setdefault("coordination", {})["worker_timeout"] = float(timeout)
        except ValueError:
            _log.warning("Ignoring non-numeric TASKWEAVE_WORKER_TIMEOUT=%r", timeout)

    return overrides


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    defaults = CoordinationConfig()
    coord_data = data.get("coordination") or {}
    coordination = CoordinationConfig(
        worker_timeout=float(coord_data.get("worker_timeout", defaults.worker_timeout)),
        heartbeat_interval=float(
            coord_data.get("heartbeat_interval", defaults.heartbeat_interval)
        ),
        conflict_window=float(coord_data.get("conflict_window", defaults.conflict_window)),
        max_concurrent_tasks=int(
            coord_data.get("max_concurrent_tasks", defaults.max_concurrent_tasks)
        ),
        conflict_detection=bool(
            coord_data.get("conflict_detection", defaults.conflict_detection)
        ),
        event_retention_days=int(
            coord_data.get("event_retention_days", defaults.event_retention_days)
        ),
    )

    log_data = data.get("logging") or {}
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    store_data = data.get("store") or {}
    store = StoreConfig(
        path=store_data.get("path"),
        lock_timeout=float(store_data.get("lock_timeout", StoreConfig.lock_timeout)),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_SECTIONS}

    return Config(coordination=coordination, logging=logging_config, store=store, extra=extra)


def load_config(project_root: str | Path | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<root>/.taskweave/config.yaml)
    3. User config
    4. System config

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    merged: dict[str, Any] = {}
    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            merged = deep_merge(merged, config_data)

    merged = deep_merge(merged, env_overrides())
    config = dict_to_config(merged)

    # Only the global config is cached
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Drop the cached config (used by tests)."""
    global _cached_config
    _cached_config = None
