"""Shared dataclasses used by *procwatch* components.

Having these types in a dedicated module avoids circular imports between
``runner``, ``watcher`` and ``daemon``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

__all__ = [
    "Outcome",
    "ChangeKind",
    "ChangeEvent",
    "ChangeBatch",
    "ScriptOptions",
    "StartEvent",
    "ReloadEvent",
    "ExitEvent",
    "LifecycleEvent",
]


class Outcome(enum.Enum):
    """How a main process ended, as far as the supervisor could tell."""

    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"

    @classmethod
    def from_returncode(cls, returncode: int | None) -> "Outcome":
        if returncode is None:
            return cls.UNKNOWN
        return cls.SUCCESS if returncode == 0 else cls.FAILURE


class ChangeKind(str, enum.Enum):
    CREATE = "create"
    MODIFY = "modify"
    REMOVE = "remove"
    OTHER = "other"


@dataclass(frozen=True)
class ChangeEvent:
    path: str
    kind: ChangeKind


ChangeBatch = Tuple[ChangeEvent, ...]


@dataclass(frozen=True)
class ScriptOptions:
    """Options attached to every command of a script.

    * ``watch`` – keep waiting for file changes once the main process ends
      instead of exiting.
    * ``env`` / ``cwd`` – extra environment and working directory for the
      spawned processes.
    """

    watch: bool = False
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None


@dataclass(frozen=True)
class StartEvent:
    type: str = field(default="start", init=False)


@dataclass(frozen=True)
class ReloadEvent:
    """A qualifying change batch arrived; a reload cycle follows.

    ``outcome`` is set when the previous main process had already exited on
    its own before the change arrived.
    """

    change: ChangeBatch
    outcome: Optional[Outcome] = None
    type: str = field(default="reload", init=False)


@dataclass(frozen=True)
class ExitEvent:
    outcome: Optional[Outcome] = None
    type: str = field(default="exit", init=False)


LifecycleEvent = Union[StartEvent, ReloadEvent, ExitEvent]
