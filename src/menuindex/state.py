"""Application state: every long-lived component, wired from Settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from menuindex.config import resolve_locale
from menuindex.entry_cache import EntryCache
from menuindex.index import IndexBuilder
from menuindex.launcher import LaunchDispatcher, SystemdRunSessionManager
from menuindex.query import QueryEngine
from menuindex.watcher import DirectoryWatcher

if TYPE_CHECKING:
    from menuindex.config import Settings
    from menuindex.index import AppIndex
    from menuindex.launcher import SessionManager, Spawner
    from menuindex.store import RecordStore


@dataclass
class AppState:
    settings: Settings
    locale: str | None
    cache: EntryCache
    builder: IndexBuilder
    query: QueryEngine
    dispatcher: LaunchDispatcher
    watcher: DirectoryWatcher | None = None
    store: RecordStore | None = None


def build_state(
    settings: Settings,
    *,
    store: RecordStore | None = None,
    session_manager: SessionManager | None = None,
    spawner: Spawner | None = None,
    watch: bool = True,
) -> AppState:
    locale = resolve_locale(settings.locale)
    directories = [Path(p) for p in settings.directories.paths]

    cache = EntryCache(locale, fingerprint=settings.cache.fingerprint)
    builder = IndexBuilder(directories, cache)

    def snapshot() -> AppIndex:
        return builder.current

    if session_manager is None and settings.launch.use_scopes:
        session_manager = SystemdRunSessionManager(
            settings.launch.systemd_run, settings.launch.passthrough_env
        )
    dispatcher = LaunchDispatcher(
        snapshot, settings.launch, session_manager=session_manager, spawner=spawner
    )

    watcher = None
    if watch and settings.watcher.enabled:
        watcher = DirectoryWatcher(directories, debounce=settings.watcher.debounce_ms / 1000)

    return AppState(
        settings=settings,
        locale=locale,
        cache=cache,
        builder=builder,
        query=QueryEngine(snapshot),
        dispatcher=dispatcher,
        watcher=watcher,
        store=store,
    )
