"""Configuration and store path resolution.

- System: /etc/taskweave/ (or %PROGRAMDATA%\\taskweave on Windows)
- User: $XDG_CONFIG_HOME/taskweave/, ~/.config/taskweave/ or %APPDATA%
- Project: <root>/.taskweave/
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
STORE_FILENAME = "project.yaml"
APP_NAME = "taskweave"
PROJECT_DIR = ".taskweave"


def get_system_config_path() -> Path | None:
    if sys.platform == "win32":
        program_data = os.environ.get("PROGRAMDATA")
        if program_data:
            return Path(program_data) / APP_NAME / CONFIG_FILENAME
        return None
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_config_path() -> Path | None:
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA")
        if app_data:
            return Path(app_data) / APP_NAME / CONFIG_FILENAME
        return None

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME / CONFIG_FILENAME
    return Path.home() / ".config" / APP_NAME / CONFIG_FILENAME


def get_project_config_path(project_root: str | Path) -> Path:
    return Path(project_root) / PROJECT_DIR / CONFIG_FILENAME


def get_default_store_path(project_root: str | Path) -> Path:
    """Where the project store lives when config does not say otherwise."""
    return Path(project_root) / PROJECT_DIR / STORE_FILENAME


def get_config_paths(project_root: str | Path | None = None) -> list[Path]:
    """Get all config paths in priority order (lowest to highest).

    Args:
        project_root: Optional project directory for project-level config.

    Returns:
        List of config paths in order: system, user, project.
    """
    paths = [p for p in (get_system_config_path(), get_user_config_path()) if p is not None]
    if project_root:
        paths.append(get_project_config_path(project_root))
    return paths
