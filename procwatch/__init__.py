"""
procwatch: run a script, restart it when files change.

The supervisor runs a script's command chain, keeps the last command alive as
the main process and restarts it when watched files are modified, without
leaving orphaned children behind.
"""

from .config import ConfigError, ProcwatchConfig, ScriptNotFoundError, load_config
from .daemon import Daemon, ProcessTable
from .process_types import (
    ChangeEvent,
    ChangeKind,
    ExitEvent,
    Outcome,
    ReloadEvent,
    ScriptOptions,
    StartEvent,
)
from .runner import AdhocBuilder, Command, CommandBuilder
from .watcher import ChangeWatcher

# Package metadata
__version__ = "0.1.0"

# Public API
__all__ = [
    "AdhocBuilder",
    "ChangeEvent",
    "ChangeKind",
    "ChangeWatcher",
    "Command",
    "CommandBuilder",
    "ConfigError",
    "Daemon",
    "ExitEvent",
    "Outcome",
    "ProcessTable",
    "ProcwatchConfig",
    "ReloadEvent",
    "ScriptNotFoundError",
    "ScriptOptions",
    "StartEvent",
    "load_config",
]
