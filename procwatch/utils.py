"""
Utility functions for procwatch.

Where the per-run log files live by default.
"""

import os
import sys
from pathlib import Path

ENV_DATA_DIR = "PROCWATCH_DATA_DIR"


def get_app_data_dir(app_name: str = "procwatch") -> Path:
    """Return the directory that holds *app_name*'s run logs.

    Logs are state rather than data, so on Linux ``$XDG_STATE_HOME`` is
    preferred, falling back to ``~/.local/state``.
    """
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Logs" / app_name
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Local"
        return root / app_name / "Logs"
    state_home = os.environ.get("XDG_STATE_HOME")
    if state_home:
        return Path(state_home) / app_name
    return Path.home() / ".local" / "state" / app_name


def get_default_data_dir() -> Path:
    """Return default data directory, honouring *PROCWATCH_DATA_DIR*."""
    override = os.environ.get(ENV_DATA_DIR)
    if override:
        return Path(override).expanduser().resolve()
    return get_app_data_dir()
