from __future__ import annotations

import asyncio
import itertools
import os
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path

from procwatch.daemon import Terminator
from procwatch.process_types import ChangeEvent, ChangeKind, ScriptOptions

__all__ = [
    "FakeHandle",
    "FakeCommand",
    "FakeBuilder",
    "FakeWatcher",
    "RecordingTerminator",
    "batch",
    "collect",
    "run_cli",
    "is_process_running",
]

PROJECT_ROOT = Path(__file__).resolve().parents[1]

_pids = itertools.count(40000)


class FakeHandle:
    """Process stand-in whose exit is driven by the test."""

    def __init__(self, argv: list[str], journal: list[tuple[str, str]]) -> None:
        self.pid = next(_pids)
        self.argv = argv
        self.returncode: int | None = None
        self.kill_calls = 0
        self.close_calls = 0
        self.wait_error: OSError | None = None
        self._journal = journal
        self._done = asyncio.Event()

    @property
    def name(self) -> str:
        return " ".join(self.argv)

    def finish(self, returncode: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = returncode
        self._journal.append(("exit", self.name))
        self._done.set()

    async def wait(self) -> int:
        await self._done.wait()
        if self.wait_error is not None:
            raise self.wait_error
        return self.returncode

    def kill(self) -> None:
        self.kill_calls += 1
        self.finish(-9)

    def close(self) -> None:
        self.close_calls += 1
        self.finish(-9)


@dataclass
class FakeCommand:
    argv: list[str]
    options: ScriptOptions = field(default_factory=ScriptOptions)
    returncode: int = 0
    runs_forever: bool = False
    journal: list[tuple[str, str]] = field(default_factory=list)
    handles: list[FakeHandle] = field(default_factory=list)
    spawn_error: Exception | None = None

    @property
    def display(self) -> str:
        return " ".join(self.argv)

    async def spawn(self) -> FakeHandle:
        if self.spawn_error is not None:
            raise self.spawn_error
        handle = FakeHandle(self.argv, self.journal)
        self.handles.append(handle)
        self.journal.append(("spawn", handle.name))
        if not self.runs_forever:
            asyncio.get_running_loop().call_soon(handle.finish, self.returncode)
        return handle


class FakeBuilder:
    """Returns the same command chain for every build() call."""

    def __init__(self, *commands: FakeCommand) -> None:
        self.journal: list[tuple[str, str]] = []
        self.commands = list(commands)
        for cmd in self.commands:
            cmd.journal = self.journal
        self.build_calls: list[str] = []

    def build(self, script: str) -> list[FakeCommand]:
        self.build_calls.append(script)
        return list(self.commands)


class FakeWatcher:
    """Async iterator of batches fed by the test; ``close()`` ends it."""

    def __init__(self, *batches) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        for b in batches:
            self._queue.put_nowait(b)

    def push(self, change_batch) -> None:
        self._queue.put_nowait(change_batch)

    def close(self) -> None:
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class RecordingTerminator(Terminator):
    description = "recording"

    def __init__(self) -> None:
        self.terminated: list[FakeHandle] = []

    def terminate(self, handle) -> None:
        self.terminated.append(handle)
        handle.kill()


def batch(*pairs: tuple[str, str]) -> tuple[ChangeEvent, ...]:
    return tuple(ChangeEvent(path=p, kind=ChangeKind(k)) for p, k in pairs)


async def collect(aiterable) -> list:
    return [item async for item in aiterable]


def run_cli(*args: str, cwd: Path | None = None, timeout: float = 20) -> subprocess.CompletedProcess[str]:
    """Invoke the procwatch CLI synchronously and capture output."""
    cmd = [sys.executable, "-m", "procwatch", *args]
    env = {**os.environ, "PYTHONPATH": str(PROJECT_ROOT)}
    return subprocess.run(
        cmd,
        text=True,
        capture_output=True,
        check=False,
        cwd=cwd,
        env=env,
        timeout=timeout,
    )


def is_process_running(pid: int) -> bool:
    """True if *pid* is alive; zombies awaiting their reaper count as gone."""
    try:
        os.kill(pid, 0)
    except (OSError, ProcessLookupError):
        return False
    stat = Path(f"/proc/{pid}/stat")
    try:
        # Field 3 is the state; the command name in field 2 may contain spaces.
        state = stat.read_text().rsplit(")", 1)[1].split()[0]
    except (OSError, IndexError):
        return True
    return state != "Z"
