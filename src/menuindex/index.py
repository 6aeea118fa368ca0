"""Application index: immutable snapshots and the builder that publishes them.

IndexBuilder is the only writer. It keeps, per identity, every descriptor file
that defines it, ordered by directory priority, so that deleting the winning
file can reveal the next one without a rescan. Each update builds a new
mapping and publishes it with a single attribute assignment; readers hold on
to whichever ``AppIndex`` they fetched and never see a half-built map.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog

from menuindex.errors import (
    EntryUnreadableError,
    MalformedEntryError,
    SuppressedEntryError,
)
from menuindex.models.entry import ChangeKind
from menuindex.parser import desktop_file_id, is_descriptor

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence
    from pathlib import Path

    from menuindex.entry_cache import EntryCache
    from menuindex.models.entry import AppEntry, DirectoryChange

log = structlog.get_logger()


@dataclass(frozen=True)
class AppIndex:
    """Read-only snapshot of identity → entry."""

    entries: Mapping[str, AppEntry] = field(default_factory=lambda: MappingProxyType({}))
    version: int = 0

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __contains__(self, identity: object) -> bool:
        return identity in self.entries

    def get(self, identity: str) -> AppEntry | None:
        return self.entries.get(identity)

    def values(self) -> list[AppEntry]:
        return list(self.entries.values())


@dataclass(frozen=True)
class IndexDelta:
    added: frozenset[str] = frozenset()
    updated: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    version: int = 0

    def __bool__(self) -> bool:
        return bool(self.added or self.updated or self.removed)


@dataclass(frozen=True, order=True)
class _Source:
    rank: int  # position of the directory in priority order; lower wins
    path: Path


class IndexBuilder:
    def __init__(self, directories: Sequence[Path], cache: EntryCache) -> None:
        self.directories = list(directories)
        self.cache = cache
        self._current = AppIndex()
        self._sources: dict[str, list[_Source]] = {}
        self._identity_of: dict[Path, str] = {}
        self._listeners: list[Callable[[], None]] = []

    @property
    def current(self) -> AppIndex:
        return self._current

    def sources(self, identity: str) -> list[Path]:
        """Files defining ``identity``, highest priority first."""
        return [s.path for s in self._sources.get(identity, [])]

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register an index-changed listener. Returns an unsubscribe function."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    # ------------------------------------------------------------------
    # Full scan
    # ------------------------------------------------------------------

    def build_full(self) -> AppIndex:
        """Scan every directory and publish a fresh index."""
        index, delta = self._build()
        self._notify(delta)
        return index

    async def build_full_async(self) -> AppIndex:
        """``build_full`` in a worker thread so the event loop stays responsive.

        Listeners are still called on the loop thread.
        """
        index, delta = await asyncio.to_thread(self._build)
        self._notify(delta)
        return index

    def _build(self) -> tuple[AppIndex, IndexDelta]:
        self._sources.clear()
        self._identity_of.clear()
        for rank, directory in enumerate(self.directories):
            for path in self._scan(directory):
                self._add_source(path, rank, directory)

        entries: dict[str, AppEntry] = {}
        for identity in self._sources:
            entry = self._resolve(identity)
            if entry is not None:
                entries[identity] = entry

        self.cache.evict_missing()
        previous = self._current.entries
        self._publish(entries)
        log.info(
            "index_built",
            entries=len(entries),
            identities=len(self._sources),
            directories=len(self.directories),
            cache_hits=self.cache.stats.hits,
            parses=self.cache.stats.parses,
        )
        return self._current, self._diff(previous, entries)

    def _scan(self, directory: Path) -> list[Path]:
        try:
            return sorted(p for p in directory.rglob("*") if is_descriptor(p) and p.is_file())
        except OSError as exc:
            log.warning("scan_error", directory=str(directory), reason=exc.strerror or str(exc))
            return []

    # ------------------------------------------------------------------
    # Incremental update
    # ------------------------------------------------------------------

    def apply(self, change: DirectoryChange) -> IndexDelta:
        """Fold one filesystem change into the index and publish the result."""
        if change.kind == ChangeKind.MODIFIED:
            # The fingerprint may not have changed if the write landed within
            # the filesystem's timestamp resolution
            self.cache.invalidate(change.path)

        affected = self._resync(change.path)
        if change.previous_path is not None:
            affected |= self._resync(change.previous_path)

        entries = dict(self._current.entries)
        for identity in affected:
            entry = self._resolve(identity)
            if entry is None:
                entries.pop(identity, None)
            else:
                entries[identity] = entry

        delta = self._diff(self._current.entries, entries, only=affected)
        if delta:
            self._publish(entries)
            delta = IndexDelta(delta.added, delta.updated, delta.removed, self._current.version)
            log.info(
                "index_updated",
                kind=str(change.kind),
                path=str(change.path),
                added=sorted(delta.added),
                updated=sorted(delta.updated),
                removed=sorted(delta.removed),
                version=delta.version,
            )
            self._notify(delta)
        return delta

    def _resync(self, path: Path) -> set[str]:
        """Reconcile tracked sources at or below ``path`` with the filesystem.

        Returns the identities whose source list may have changed.
        """
        affected: set[str] = set()

        # Forget tracked files that are gone
        for tracked in [p for p in self._identity_of if p == path or path in p.parents]:
            if not tracked.is_file():
                affected.add(self._remove_source(tracked))
                self.cache.invalidate(tracked)

        located = self._locate(path)
        if located is None:
            return affected
        rank, directory = located

        if path.is_dir():
            present = self._scan(path)
        elif path.is_file() and is_descriptor(path):
            present = [path]
        else:
            present = []

        for file in present:
            identity = self._identity_of.get(file)
            if identity is None:
                identity = self._add_source(file, rank, directory)
            affected.add(identity)
        return affected

    def _locate(self, path: Path) -> tuple[int, Path] | None:
        """Priority rank and root directory of ``path``; the deepest root wins."""
        best: tuple[int, Path] | None = None
        for rank, directory in enumerate(self.directories):
            if path == directory or directory in path.parents:
                if best is None or len(directory.parts) > len(best[1].parts):
                    best = (rank, directory)
        return best

    # ------------------------------------------------------------------
    # Source bookkeeping
    # ------------------------------------------------------------------

    def _add_source(self, path: Path, rank: int, directory: Path) -> str:
        identity = desktop_file_id(path, directory)
        sources = self._sources.setdefault(identity, [])
        sources.append(_Source(rank, path))
        sources.sort()
        self._identity_of[path] = identity
        return identity

    def _remove_source(self, path: Path) -> str:
        identity = self._identity_of.pop(path)
        sources = [s for s in self._sources.get(identity, []) if s.path != path]
        if sources:
            self._sources[identity] = sources
        else:
            self._sources.pop(identity, None)
        return identity

    def _resolve(self, identity: str) -> AppEntry | None:
        """Parse the highest-priority source of ``identity``.

        Only the winner counts: a user-level ``Hidden=true`` file hides the
        system one rather than falling through to it.
        """
        sources = self._sources.get(identity)
        if not sources:
            return None
        winner = sources[0].path
        try:
            return self.cache.get_or_parse(winner, identity)
        except SuppressedEntryError:
            log.debug("entry_suppressed", identity=identity, path=str(winner))
        except MalformedEntryError as exc:
            log.debug("entry_malformed", identity=identity, path=str(winner), reason=exc.message)
        except EntryUnreadableError as exc:
            log.warning("entry_unreadable", identity=identity, path=str(winner), reason=exc.message)
        return None

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _publish(self, entries: dict[str, AppEntry]) -> None:
        self._current = AppIndex(MappingProxyType(entries), self._current.version + 1)

    def _diff(
        self,
        before: Mapping[str, AppEntry],
        after: Mapping[str, AppEntry],
        only: set[str] | None = None,
    ) -> IndexDelta:
        keys = only if only is not None else set(before) | set(after)
        added = frozenset(k for k in keys if k in after and k not in before)
        removed = frozenset(k for k in keys if k in before and k not in after)
        updated = frozenset(
            k for k in keys if k in before and k in after and before[k] != after[k]
        )
        return IndexDelta(added, updated, removed, self._current.version)

    def _notify(self, delta: IndexDelta) -> None:
        if delta:
            self._notify_listeners()

    def _notify_listeners(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                log.warning("index_listener_error", exc_info=True)
