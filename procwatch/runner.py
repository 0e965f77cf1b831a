from __future__ import annotations

import asyncio
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from procwatch.config import ProcwatchConfig, ScriptNotFoundError
from procwatch.process_types import ScriptOptions

__all__ = ["AdhocBuilder", "Command", "CommandBuilder", "ProcessHandle"]

logger = logging.getLogger(__name__)


class ProcessHandle:
    """Thin wrapper around an ``asyncio`` subprocess.

    ``wait()`` may be awaited by several tasks; they all resolve to the same
    return code.
    """

    def __init__(self, process: asyncio.subprocess.Process, argv: list[str]) -> None:
        self._process = process
        self.argv = argv

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def wait(self) -> int:
        return await self._process.wait()

    def kill(self) -> None:
        self._process.kill()

    def close(self) -> None:
        """Close the handle, ending the child if it is still running.

        This is how termination happens on platforms without POSIX signals
        (``Process.kill`` is ``TerminateProcess`` on Windows).
        """
        if self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                logger.debug("process with pid %s already gone", self.pid)

    def __repr__(self) -> str:  # pragma: no cover – debugging aid
        return f"<ProcessHandle pid={self.pid} argv={shlex.join(self.argv)!r}>"


@dataclass(frozen=True)
class Command:
    argv: list[str]
    options: ScriptOptions = field(default_factory=ScriptOptions)

    @property
    def display(self) -> str:
        return shlex.join(self.argv)

    async def spawn(self) -> ProcessHandle:
        """Start the command; errors such as ``FileNotFoundError`` propagate."""
        env = {**os.environ, **self.options.env} if self.options.env else None
        process = await asyncio.create_subprocess_exec(
            *self.argv,
            cwd=self.options.cwd,
            env=env,
        )
        logger.debug("event=spawn pid=%s cmd=%s", process.pid, self.display)
        return ProcessHandle(process, self.argv)


class CommandBuilder:
    """Turns a script name from the configuration into an ordered command chain."""

    def __init__(self, config: ProcwatchConfig) -> None:
        self._config = config

    def options_for(self, script: str) -> ScriptOptions:
        try:
            sc = self._config.scripts[script]
        except KeyError:
            raise ScriptNotFoundError(script) from None

        cwd = sc.cwd
        if cwd is not None and self._config.path is not None:
            # Relative working directories are resolved against the config file.
            cwd = str((self._config.path.parent / cwd).resolve())

        return ScriptOptions(
            watch=self._config.watch if sc.watch is None else sc.watch,
            env=dict(sc.env),
            cwd=cwd,
        )

    def build(self, script: str) -> list[Command]:
        options = self.options_for(script)
        commands: list[Command] = []
        for line in self._config.scripts[script].cmd:
            argv = shlex.split(line)
            if not argv:
                logger.debug("Skipping empty command in script %s", script)
                continue
            commands.append(Command(argv=argv, options=options))
        return commands

    def has_script(self, script: str) -> bool:
        return script in self._config.scripts


@dataclass(frozen=True)
class AdhocBuilder:
    """Builder for a single command given on the command line."""

    argv: list[str]
    watch: bool = True
    cwd: Path | None = None

    def build(self, script: str) -> list[Command]:  # noqa: ARG002 – same shape as CommandBuilder
        options = ScriptOptions(
            watch=self.watch, cwd=str(self.cwd) if self.cwd else None
        )
        return [Command(argv=list(self.argv), options=options)]
