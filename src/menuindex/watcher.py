"""Filesystem watcher for descriptor directories.

watchdog observers run in their own thread; every event is handed to the
event loop with ``call_soon_threadsafe`` and debounced there, so all
coalescing state is only ever touched from the loop thread.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from menuindex.errors import WatchError
from menuindex.models.entry import ChangeKind, DirectoryChange
from menuindex.parser import is_descriptor

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from watchdog.observers.api import BaseObserver

log = structlog.get_logger()


def merge_changes(prev: DirectoryChange, new: DirectoryChange) -> DirectoryChange | None:
    """Coalesce two changes for the same path, or ``None`` if they must stay apart."""
    match prev.kind, new.kind:
        case (ChangeKind.CREATED | ChangeKind.RENAMED), (ChangeKind.CREATED | ChangeKind.MODIFIED):
            return prev
        case ChangeKind.REMOVED, (ChangeKind.CREATED | ChangeKind.MODIFIED):
            # Delete then recreate is how atomic writers replace a file
            return new.model_copy(update={"kind": ChangeKind.MODIFIED})
        case ChangeKind.RENAMED, _:
            return None
        case _, ChangeKind.RENAMED:
            return None
        case _:
            return new


class _DirectoryHandler(FileSystemEventHandler):
    """Translates watchdog events below one root into ``DirectoryChange``."""

    def __init__(self, watcher: DirectoryWatcher, root: Path) -> None:
        super().__init__()
        self._watcher = watcher
        self._root = root

    def on_any_event(self, event: FileSystemEvent) -> None:
        for change in self.translate(event):
            self._watcher.notify(change)

    def translate(self, event: FileSystemEvent) -> list[DirectoryChange]:
        src = Path(os.fsdecode(event.src_path))
        kind = event.event_type

        if event.is_directory:
            if kind == "deleted" and src == self._root:
                self._watcher.report_failure(self._root, "directory removed")
                return [self._change(ChangeKind.REMOVED, src)]
            if kind == "created":
                return [self._change(ChangeKind.CREATED, src)]
            if kind == "deleted":
                return [self._change(ChangeKind.REMOVED, src)]
            if kind == "moved":
                dest = Path(os.fsdecode(event.dest_path))
                return [self._change(ChangeKind.RENAMED, dest, previous=src)]
            return []

        if kind in ("created", "modified", "deleted"):
            if not is_descriptor(src):
                return []
            mapped = {
                "created": ChangeKind.CREATED,
                "modified": ChangeKind.MODIFIED,
                "deleted": ChangeKind.REMOVED,
            }[kind]
            return [self._change(mapped, src)]

        if kind == "moved":
            dest = Path(os.fsdecode(event.dest_path))
            match is_descriptor(src), is_descriptor(dest):
                case True, True:
                    return [self._change(ChangeKind.RENAMED, dest, previous=src)]
                case False, True:
                    # temp file renamed over the descriptor
                    return [self._change(ChangeKind.MODIFIED, dest)]
                case True, False:
                    return [self._change(ChangeKind.REMOVED, src)]
        return []

    def _change(
        self, kind: ChangeKind, path: Path, previous: Path | None = None
    ) -> DirectoryChange:
        return DirectoryChange(directory=self._root, kind=kind, path=path, previous_path=previous)


class _ChangeStream:
    """Async iterator over the watcher queue.

    A class rather than an async generator so that cancelling a pending
    ``__anext__`` (e.g. by a timeout) does not close the stream.
    """

    def __init__(self, queue: asyncio.Queue[DirectoryChange | None]) -> None:
        self._queue = queue
        self._finished = False

    def __aiter__(self) -> _ChangeStream:
        return self

    async def __anext__(self) -> DirectoryChange:
        if self._finished:
            raise StopAsyncIteration
        change = await self._queue.get()
        if change is None:
            self._finished = True
            raise StopAsyncIteration
        return change


class DirectoryWatcher:
    """Watches descriptor directories and yields debounced changes.

    ``changes()`` may be called once; the stream lasts until ``stop()``.
    A directory that cannot be watched is recorded in ``failures`` and the
    others keep being watched.
    """

    def __init__(
        self,
        directories: Sequence[Path],
        *,
        debounce: float = 0.05,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self.directories = list(directories)
        self.failures: list[WatchError] = []
        self._debounce = debounce
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[DirectoryChange | None] = asyncio.Queue()
        self._pending: dict[Path, tuple[DirectoryChange, asyncio.TimerHandle]] = {}
        self._consumed = False
        self._stopped = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start observing. Must be called from the event loop thread."""
        self._loop = asyncio.get_running_loop()
        observer = self._observer_factory()
        # Start first: scheduling on a running observer creates the OS watch
        # synchronously, so an unwatchable directory raises right here.
        observer.start()
        self._observer = observer

        for directory in self.directories:
            try:
                if not directory.is_dir():
                    raise NotADirectoryError(f"not a directory: {directory}")
                handler = _DirectoryHandler(self, directory)
                observer.schedule(handler, str(directory), recursive=True)
            except OSError as exc:
                self._record_failure(directory, exc.strerror or str(exc))
                continue
            log.debug("watch_started", directory=str(directory))

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 2.0)
        # Pending changes are delivered rather than dropped
        for path in list(self._pending):
            self._flush(path)
        self._queue.put_nowait(None)

    def changes(self) -> _ChangeStream:
        if self._consumed:
            raise RuntimeError("the change stream of a DirectoryWatcher can only be consumed once")
        self._consumed = True
        return _ChangeStream(self._queue)

    # ------------------------------------------------------------------
    # Ingestion (thread-safe entry points)
    # ------------------------------------------------------------------

    def notify(self, change: DirectoryChange) -> None:
        """Queue a raw change. Safe to call from any thread."""
        if self._stopped:
            return
        loop = self._loop
        if loop is None:
            loop = self._loop = asyncio.get_running_loop()
        loop.call_soon_threadsafe(self._ingest, change)

    def report_failure(self, directory: Path, reason: str) -> None:
        """Record that ``directory`` can no longer be watched. Safe from any thread."""
        if self._loop is None:
            self._record_failure(directory, reason)
        else:
            self._loop.call_soon_threadsafe(self._record_failure, directory, reason)

    # ------------------------------------------------------------------
    # Loop-thread internals
    # ------------------------------------------------------------------

    def _record_failure(self, directory: Path, reason: str) -> None:
        error = WatchError(str(directory), reason)
        self.failures.append(error)
        log.warning("watch_error", directory=str(directory), reason=reason)

    def _ingest(self, change: DirectoryChange) -> None:
        if self._stopped:
            return
        key = change.path
        merged = change
        pending = self._pending.pop(key, None)
        if pending is not None:
            prev, handle = pending
            handle.cancel()
            coalesced = merge_changes(prev, change)
            if coalesced is None:
                # Keep per-file order: deliver the older change first
                self._queue.put_nowait(prev)
            else:
                merged = coalesced

        if self._debounce <= 0:
            self._queue.put_nowait(merged)
            return
        assert self._loop is not None
        handle = self._loop.call_later(self._debounce, self._flush, key)
        self._pending[key] = (merged, handle)

    def _flush(self, key: Path) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        change, handle = pending
        handle.cancel()
        log.debug("watch_change", kind=str(change.kind), path=str(change.path))
        self._queue.put_nowait(change)
