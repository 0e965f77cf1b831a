"""
File-change watcher producing batches of :class:`ChangeEvent`.

watchdog delivers events on its observer thread; they are handed over to the
asyncio loop with ``call_soon_threadsafe`` and grouped into batches by
:meth:`ChangeWatcher.__anext__`.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from pathlib import Path
from typing import Any

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from procwatch.config import WatcherConfig
from procwatch.process_types import ChangeBatch, ChangeEvent, ChangeKind

__all__ = ["ChangeWatcher", "classify_event"]

logger = logging.getLogger(__name__)

_KIND_BY_EVENT_TYPE = {
    EVENT_TYPE_CREATED: ChangeKind.CREATE,
    EVENT_TYPE_MODIFIED: ChangeKind.MODIFY,
    EVENT_TYPE_MOVED: ChangeKind.MODIFY,
    EVENT_TYPE_DELETED: ChangeKind.REMOVE,
}

# Sentinel pushed into the queue by close()
_CLOSED = object()


def classify_event(event: FileSystemEvent) -> ChangeEvent:
    """Map a watchdog event onto a :class:`ChangeEvent`.

    A move is reported as a modification of its destination, which is what
    editors doing atomic saves produce.
    """
    kind = _KIND_BY_EVENT_TYPE.get(event.event_type, ChangeKind.OTHER)
    path = event.src_path
    if event.event_type == EVENT_TYPE_MOVED and getattr(event, "dest_path", None):
        path = event.dest_path
    if isinstance(path, bytes):
        path = path.decode("utf-8", errors="replace")
    return ChangeEvent(path=str(path), kind=kind)


class _Handler(FileSystemEventHandler):
    def __init__(self, watcher: ChangeWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        change = classify_event(event)
        if self._watcher.accepts(change.path):
            self._watcher._push_threadsafe(change)


class ChangeWatcher:
    """Async iterator of change batches for the paths in *config*.

    Example:
        >>> watcher = ChangeWatcher(config.watcher)
        >>> async for batch in watcher:
        ...     print(batch)
    """

    def __init__(self, config: WatcherConfig, observer: Any = None) -> None:
        self._config = config
        self._observer = observer
        self._queue: asyncio.Queue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def accepts(self, path: str) -> bool:
        """Return *True* if a change to *path* should be reported."""
        normalized = Path(path).as_posix()
        for pattern in self._config.skip:
            if fnmatch.fnmatch(normalized, pattern):
                return False
        if self._config.exts:
            suffix = Path(path).suffix.lstrip(".")
            if suffix not in self._config.exts:
                return False
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the observer; must be called from within the event loop."""
        if self._queue is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

        if self._observer is None:
            self._observer = Observer()
        handler = _Handler(self)
        for match in self._config.match:
            path = Path(match).expanduser()
            if not path.exists():
                logger.warning("Watch path %s does not exist, skipping", path)
                continue
            self._observer.schedule(handler, str(path), recursive=path.is_dir())
            logger.debug("Watching %s", path)
        self._observer.start()

    def close(self) -> None:
        """Stop the observer and end iteration once pending batches are read.

        Does not wait for the observer thread; use :meth:`aclose` for that.
        """
        if self._closed:
            return
        self._closed = True
        if self._observer is not None:
            self._observer.stop()
        if self._queue is not None:
            self._queue.put_nowait(_CLOSED)

    async def aclose(self) -> None:
        """:meth:`close`, then join the observer thread off the event loop."""
        self.close()
        if self._observer is not None and self._observer.is_alive():
            await asyncio.to_thread(self._observer.join, 2)

    def _push_threadsafe(self, change: ChangeEvent) -> None:
        if self._loop is None or self._queue is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, change)
        except RuntimeError:
            # Loop already closed; nobody is listening any more.
            logger.debug("Dropping change for %s, loop closed", change.path)

    def push(self, change: ChangeEvent) -> None:
        """Queue *change* from within the loop (used by tests and embedders)."""
        if self._queue is None:
            raise RuntimeError("ChangeWatcher.start() must be called first")
        self._queue.put_nowait(change)

    # ------------------------------------------------------------------
    # Async iteration
    # ------------------------------------------------------------------

    def __aiter__(self) -> ChangeWatcher:
        return self

    async def __anext__(self) -> ChangeBatch:
        if self._queue is None:
            self.start()
        assert self._queue is not None

        first = await self._queue.get()
        if first is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration

        batch: list[ChangeEvent] = [first]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.interval
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                break
            if item is _CLOSED:
                # Deliver what we have; the next call ends iteration.
                self._queue.put_nowait(_CLOSED)
                break
            if item not in batch:
                batch.append(item)

        logger.debug("Change batch of %d event(s)", len(batch))
        return tuple(batch)
