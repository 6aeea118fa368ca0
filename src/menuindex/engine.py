"""The engine behind the menu: keeps the index live and serves the UI.

The UI boundary is ``search``, ``launch``, ``recent`` and ``subscribe``.
Everything else (scanning, watching, persisting cache records) happens in the
background on the same event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from menuindex.state import build_state
from menuindex.store import RecordStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from menuindex.config import Settings
    from menuindex.index import AppIndex
    from menuindex.launcher import LaunchOutcome, SessionManager, Spawner
    from menuindex.models.entry import AppEntry
    from menuindex.models.search import MatchResult
    from menuindex.state import AppState

log = structlog.get_logger()


class MenuEngine:
    def __init__(self, state: AppState) -> None:
        self.state = state
        self._consumer: asyncio.Task[None] | None = None
        self._started = False

    @property
    def index(self) -> AppIndex:
        return self.state.builder.current

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> AppIndex:
        """Cold start: restore cached parses, begin watching, then scan.

        The watcher is started before the scan so changes made while it runs
        are queued; they are applied once the scan has published. Replaying a
        change the scan already saw is a no-op because ``apply`` re-reads the
        filesystem.
        """
        if self._started:
            raise RuntimeError("engine already started")
        self._started = True

        state = self.state
        if state.store is not None:
            restored = state.cache.restore(await state.store.load_records())
            log.debug("cache_restored", records=restored)

        if state.watcher is not None:
            state.watcher.start()
        try:
            index = await state.builder.build_full_async()
        except BaseException:
            if state.watcher is not None:
                await state.watcher.stop()
            raise
        await self._persist()

        if state.watcher is not None:
            self._consumer = asyncio.create_task(self._consume(), name="menuindex-watch")
        return index

    async def close(self) -> None:
        state = self.state
        if state.watcher is not None:
            # Ends the change stream, so the consumer finishes on its own
            await state.watcher.stop()
        if self._consumer is not None:
            await self._consumer
            self._consumer = None
        await self._persist()
        await state.dispatcher.aclose()

    async def __aenter__(self) -> MenuEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _consume(self) -> None:
        assert self.state.watcher is not None
        async for change in self.state.watcher.changes():
            try:
                self.state.builder.apply(change)
            except Exception:
                # One bad event must not stop the index from tracking later ones
                log.error("index_update_failed", path=str(change.path), exc_info=True)
                continue
            await self._persist()

    async def _persist(self) -> None:
        if self.state.store is None:
            return
        upserts, removed = self.state.cache.drain_changes()
        await self.state.store.save_records(upserts, removed)

    # ------------------------------------------------------------------
    # UI boundary
    # ------------------------------------------------------------------

    def search(
        self, query: str, *, category: str | None = None, limit: int | None = None
    ) -> list[MatchResult]:
        return self.state.query.search(query, category=category, limit=limit)

    async def launch(self, identity: str) -> LaunchOutcome:
        outcome = await self.state.dispatcher.launch(identity)
        if self.state.store is not None:
            await self.state.store.record_launch(identity)
        return outcome

    async def recent(self, limit: int = 10) -> list[AppEntry]:
        """Recently launched applications that are still installed."""
        if self.state.store is None:
            return []
        index = self.index
        entries: list[AppEntry] = []
        offset = 0
        # History may name uninstalled apps; page until the limit is filled
        while len(entries) < limit:
            rows = await self.state.store.recent(limit, offset)
            entries.extend(e for identity, _ in rows if (e := index.get(identity)) is not None)
            if len(rows) < limit:
                break
            offset += len(rows)
        return entries[:limit]

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` whenever a new index is published."""
        return self.state.builder.subscribe(callback)


async def _open_store(settings: Settings, stack: contextlib.AsyncExitStack) -> RecordStore | None:
    if not settings.cache.enabled:
        return None
    db_path = Path(settings.cache.db_path).expanduser()
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await stack.enter_async_context(aiosqlite.connect(db_path))
        store = RecordStore(db)
        await store.init_db()
    except (OSError, aiosqlite.Error):
        log.warning("store_unavailable", db_path=str(db_path), exc_info=True)
        return None
    return store


@contextlib.asynccontextmanager
async def open_engine(
    settings: Settings,
    *,
    watch: bool = True,
    session_manager: SessionManager | None = None,
    spawner: Spawner | None = None,
) -> AsyncIterator[MenuEngine]:
    """Build, start and eventually close an engine (and its store)."""
    async with contextlib.AsyncExitStack() as stack:
        store = await _open_store(settings, stack)
        state = build_state(
            settings,
            store=store,
            session_manager=session_manager,
            spawner=spawner,
            watch=watch,
        )
        async with MenuEngine(state) as engine:
            yield engine
