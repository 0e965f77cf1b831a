from __future__ import annotations

import abc
import asyncio
import logging
import os
import signal
import sys
import threading
from collections.abc import AsyncIterable, AsyncIterator, Callable, Mapping
from typing import Any, Protocol

from procwatch.config import ProcwatchConfig
from procwatch.console import clear_screen
from procwatch.process_types import (
    ChangeBatch,
    ExitEvent,
    LifecycleEvent,
    Outcome,
    ReloadEvent,
    ScriptOptions,
    StartEvent,
)

__all__ = [
    "Daemon",
    "ProcessTable",
    "Terminator",
    "SignalTerminator",
    "CloseTerminator",
    "default_terminator",
    "TERMINATION_SIGNALS",
]

logger = logging.getLogger(__name__)

# hang-up, interrupt, terminate, terminal-stop
TERMINATION_SIGNALS: tuple[int, ...] = tuple(
    getattr(signal, name)
    for name in ("SIGHUP", "SIGINT", "SIGTERM", "SIGTSTP")
    if hasattr(signal, name)
)


class Handle(Protocol):
    pid: int

    async def wait(self) -> int: ...

    def kill(self) -> None: ...

    def close(self) -> None: ...


class Builder(Protocol):
    def build(self, script: str) -> list[Any]: ...


# ---------------------------------------------------------------------------
# Process table
# ---------------------------------------------------------------------------


class ProcessTable:
    """Processes the supervisor believes are alive and owns, keyed by pid.

    ``discard`` and ``drain`` share one lock so a monitor racing the reaper
    sees either "still mine" or "already drained", never something in between.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processes: dict[int, Handle] = {}

    def add(self, handle: Handle) -> None:
        with self._lock:
            self._processes[handle.pid] = handle

    def discard(self, handle: Handle) -> bool:
        """Remove *handle*; return *True* if it was still present.

        Only this exact handle is removed. A later process that reused the
        pid stays tracked.
        """
        with self._lock:
            if self._processes.get(handle.pid) is not handle:
                return False
            del self._processes[handle.pid]
            return True

    def drain(self) -> list[Handle]:
        """Snapshot and empty the table in one step."""
        with self._lock:
            handles = list(self._processes.values())
            self._processes = {}
        return handles

    def pids(self) -> list[int]:
        with self._lock:
            return list(self._processes)

    def __contains__(self, pid: object) -> bool:
        with self._lock:
            return pid in self._processes

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)


# ---------------------------------------------------------------------------
# Terminators
# ---------------------------------------------------------------------------


class Terminator(abc.ABC):
    """One-shot termination request for a tracked process."""

    description = "terminating"

    @abc.abstractmethod
    def terminate(self, handle: Handle) -> None: ...


class SignalTerminator(Terminator):
    description = "killing (unix)"

    def __init__(self, sig: int | None = None) -> None:
        self.sig = sig if sig is not None else signal.SIGKILL

    def terminate(self, handle: Handle) -> None:
        os.kill(handle.pid, self.sig)


class CloseTerminator(Terminator):
    description = "closing (windows)"

    def terminate(self, handle: Handle) -> None:
        handle.close()


def default_terminator() -> Terminator:
    if os.name == "posix":
        return SignalTerminator()
    return CloseTerminator()


def _is_modify(event: Any) -> bool:
    if isinstance(event, Mapping):
        kind = event.get("kind")
    else:
        kind = getattr(event, "kind", None)
    return isinstance(kind, str) and "modify" in kind


# ---------------------------------------------------------------------------
# Daemon
# ---------------------------------------------------------------------------


class Daemon:
    """Supervises one script and reports its lifecycle as an async iterator.

    ``async for event in Daemon(builder, "dev", watcher)`` yields a
    :class:`StartEvent`, one :class:`ReloadEvent` per change batch containing a
    modification (watch mode only) and a final :class:`ExitEvent`. A daemon can
    be iterated once.
    """

    def __init__(
        self,
        builder: Builder,
        script: str,
        watcher: AsyncIterable[ChangeBatch] | None = None,
        *,
        config: ProcwatchConfig | None = None,
        terminator: Terminator | None = None,
        handle_signals: bool | None = None,
        signals: tuple[int, ...] = TERMINATION_SIGNALS,
        exit_func: Callable[[int], Any] = sys.exit,
    ) -> None:
        self._builder = builder
        self._script = script
        self._watcher = watcher
        self._config = config or ProcwatchConfig()
        self._terminator = terminator or default_terminator()
        self._handle_signals = (
            os.name == "posix" if handle_signals is None else handle_signals
        )
        self._signals = signals
        self._exit = exit_func

        self.processes = ProcessTable()
        self._monitors: set[asyncio.Task] = set()
        self._main_monitor: asyncio.Task | None = None
        self._signal_task: asyncio.Task | None = None
        self._outcome: Outcome | None = None
        self._iterated = False

    # ------------------------------------------------------------------
    # Sequential command runner
    # ------------------------------------------------------------------

    async def start(self) -> ScriptOptions:
        """Run the script's chain; return once the main command is spawned."""
        commands = self._builder.build(self._script)

        # Every command but the last runs to completion, one after another.
        # The last one is the main process and is left running.
        for i, command in enumerate(commands):
            handle = await command.spawn()
            logger.debug("#%d starting process with pid %s", i, handle.pid)

            if i == len(commands) - 1:
                logger.info("starting main `%s`", command.display)
                self.processes.add(handle)
                self._outcome = None
                task = asyncio.create_task(self._monitor(handle, command.options))
                self._monitors.add(task)
                task.add_done_callback(self._monitors.discard)
                self._main_monitor = task
                return command.options

            logger.info("starting sequential `%s`", command.display)
            returncode = await handle.wait()
            if returncode != 0:
                logger.warning(
                    "sequential `%s` exited with code %s, continuing",
                    command.display,
                    returncode,
                )

        return ScriptOptions()

    # ------------------------------------------------------------------
    # Process monitor
    # ------------------------------------------------------------------

    async def _monitor(self, handle: Handle, options: ScriptOptions) -> Outcome | None:
        pid = handle.pid
        logger.debug("monitoring status of process with pid %s", pid)

        outcome = Outcome.UNKNOWN
        try:
            returncode = await handle.wait()
            outcome = Outcome.from_returncode(returncode)
            logger.debug("got status of process with pid %s", pid)
        except OSError as exc:
            logger.debug("error getting status of process with pid %s: %s", pid, exc)

        if not self.processes.discard(handle):
            logger.debug("process with pid %s was killed", pid)
            return None

        logger.debug("process with pid %s exited on its own", pid)
        self._outcome = outcome

        if outcome is Outcome.SUCCESS:
            if options.watch:
                logger.info("clean exit - waiting for changes before restart")
            else:
                logger.info("clean exit - exiting ...")
        elif outcome is Outcome.FAILURE:
            if options.watch:
                logger.error("app crashed - waiting for file changes before starting ...")
            else:
                logger.error("app crashed - exiting ...")
        return outcome

    # ------------------------------------------------------------------
    # Orphan reaper
    # ------------------------------------------------------------------

    def kill_all(self) -> int:
        """Terminate every tracked process; return how many were signalled."""
        # Drain first: a monitor resolving after this point must find its pid
        # gone and report a kill, not a crash.
        handles = self.processes.drain()
        logger.debug("killing %d orphan process[es]", len(handles))

        for handle in handles:
            logger.debug(
                "%s process with pid %s", self._terminator.description, handle.pid
            )
            try:
                self._terminator.terminate(handle)
            except ProcessLookupError:
                logger.debug("process with pid %s already gone", handle.pid)
        return len(handles)

    # ------------------------------------------------------------------
    # Reload cycle
    # ------------------------------------------------------------------

    async def reload(self) -> ScriptOptions:
        if self._config.logger.fullscreen:
            logger.debug("clearing screen")
            clear_screen()

        watcher_cfg = self._config.watcher
        if watcher_cfg.match:
            logger.info("watching path(s): %s", " ".join(watcher_cfg.match))
        if watcher_cfg.exts:
            logger.info("watching extensions: %s", ",".join(watcher_cfg.exts))
        logger.info("restarting due to changes...")

        self.kill_all()
        return await self.start()

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _install_signal_handler(self) -> None:
        if not self._handle_signals or self._signal_task is not None:
            return
        self._signal_task = asyncio.create_task(self._wait_for_signal())

    async def _wait_for_signal(self) -> None:
        loop = asyncio.get_running_loop()
        fired: asyncio.Future[int] = loop.create_future()

        def _on_signal(signum: int) -> None:
            if not fired.done():
                fired.set_result(signum)

        installed: list[int] = []
        try:
            for sig in self._signals:
                try:
                    loop.add_signal_handler(sig, _on_signal, sig)
                except (NotImplementedError, RuntimeError, ValueError) as exc:
                    logger.debug("cannot intercept signal %s: %s", sig, exc)
                    continue
                installed.append(sig)
            if not installed:
                return
            signum = await fired
        finally:
            # The first signal wins; stop listening for the rest.
            for sig in installed:
                loop.remove_signal_handler(sig)

        logger.info("received %s, killing processes", signal.Signals(signum).name)
        self.kill_all()
        self._exit(0)

    # ------------------------------------------------------------------
    # Lifecycle event iterator
    # ------------------------------------------------------------------

    def _take_outcome(self) -> Outcome | None:
        outcome, self._outcome = self._outcome, None
        return outcome

    async def iterate(self) -> AsyncIterator[LifecycleEvent]:
        if self._iterated:
            raise RuntimeError("a Daemon can only be iterated once")
        self._iterated = True

        try:
            yield StartEvent()
            options = await self.start()
            self._install_signal_handler()

            if options.watch and self._watcher is not None:
                async for batch in self._watcher:
                    if not any(_is_modify(e) for e in batch):
                        continue
                    logger.debug(
                        "reload event detected, starting the reload procedure..."
                    )
                    yield ReloadEvent(
                        change=tuple(batch), outcome=self._take_outcome()
                    )
                    await self.reload()
            elif self._main_monitor is not None:
                await self._main_monitor

            yield ExitEvent(outcome=self._take_outcome())
        finally:
            await self._shutdown()

    async def _shutdown(self) -> None:
        task, self._signal_task = self._signal_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self.kill_all()
        if self._monitors:
            await asyncio.gather(*list(self._monitors), return_exceptions=True)

    def __aiter__(self) -> AsyncIterator[LifecycleEvent]:
        return self.iterate()
