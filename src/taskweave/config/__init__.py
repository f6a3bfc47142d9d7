"""Configuration management for taskweave.

Hierarchical YAML configuration:
- System-level config (/etc/taskweave/ or %PROGRAMDATA%)
- User-level config (~/.config/taskweave/ or %APPDATA%)
- Project-level config (<root>/.taskweave/)
- Environment variable overrides (highest priority)

Example usage:
    from taskweave.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.coordination.worker_timeout)
"""

from taskweave.config.loader import (
    deep_merge,
    get_config,
    load_config,
    reset_config,
)
from taskweave.config.paths import (
    get_config_paths,
    get_default_store_path,
    get_project_config_path,
)
from taskweave.config.schema import (
    Config,
    CoordinationConfig,
    LoggingConfig,
    StoreConfig,
)

__all__ = [
    "Config",
    "CoordinationConfig",
    "LoggingConfig",
    "StoreConfig",
    "deep_merge",
    "get_config",
    "load_config",
    "reset_config",
    "get_config_paths",
    "get_default_store_path",
    "get_project_config_path",
]
