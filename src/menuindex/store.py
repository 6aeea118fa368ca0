"""SQLite persistence for parse records and launch history.

All store operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return empty results (treated as a cold start by
callers), write failures are logged and ignored. A broken database never
prevents the index from being built or an application from launching.
Errors are still logged with ``exc_info=True`` so they remain observable.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import structlog
from pydantic import ValidationError

from menuindex.errors import ErrorCode
from menuindex.models.cache import CacheRecord, Fingerprint
from menuindex.models.entry import AppEntry

log = structlog.get_logger()

_CREATE_ENTRY_TABLE = """
CREATE TABLE IF NOT EXISTS entry_cache (
    path          TEXT PRIMARY KEY,
    size          INTEGER NOT NULL,
    mtime_ns      INTEGER NOT NULL,
    digest        TEXT,
    locale        TEXT,
    entry         TEXT,
    error         TEXT,
    validated_at  TEXT NOT NULL
)
"""

_CREATE_HISTORY_TABLE = """
CREATE TABLE IF NOT EXISTS launch_history (
    identity          TEXT PRIMARY KEY,
    launch_count      INTEGER NOT NULL DEFAULT 0,
    last_launched_at  TEXT NOT NULL
)
"""

_CREATE_HISTORY_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_history_last ON launch_history(last_launched_at)"
)


class RecordStore:
    """SQLite-backed store for cache records and recently used applications."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_ENTRY_TABLE)
        await self._db.execute(_CREATE_HISTORY_TABLE)
        await self._db.execute(_CREATE_HISTORY_INDEX)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Entry cache records
    # ------------------------------------------------------------------

    async def load_records(self) -> list[CacheRecord]:
        """Read all persisted records. Rows that no longer validate are skipped."""
        try:
            cursor = await self._db.execute(
                "SELECT path, size, mtime_ns, digest, locale, entry, error, validated_at "
                "FROM entry_cache"
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error:
            log.warning("store_read_error", table="entry_cache", exc_info=True)
            return []

        records: list[CacheRecord] = []
        for row in rows:
            try:
                records.append(
                    CacheRecord(
                        path=Path(row[0]),
                        fingerprint=Fingerprint(size=row[1], mtime_ns=row[2], digest=row[3]),
                        locale=row[4],
                        entry=AppEntry.model_validate_json(row[5]) if row[5] else None,
                        error=ErrorCode(row[6]) if row[6] else None,
                        validated_at=datetime.fromisoformat(row[7]),
                    )
                )
            except (ValidationError, ValueError):
                # Written by an older schema; it will simply be re-parsed
                log.debug("store_record_skipped", path=row[0])
        return records

    async def save_records(self, records: list[CacheRecord], removed: list[Path]) -> None:
        """Upsert ``records`` and delete ``removed`` paths. Non-fatal on failure."""
        if not records and not removed:
            return
        try:
            await self._db.executemany(
                "INSERT OR REPLACE INTO entry_cache "
                "(path, size, mtime_ns, digest, locale, entry, error, validated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        str(r.path),
                        r.fingerprint.size,
                        r.fingerprint.mtime_ns,
                        r.fingerprint.digest,
                        r.locale,
                        r.entry.model_dump_json() if r.entry is not None else None,
                        str(r.error) if r.error is not None else None,
                        r.validated_at.isoformat(),
                    )
                    for r in records
                ],
            )
            await self._db.executemany(
                "DELETE FROM entry_cache WHERE path = ?", [(str(p),) for p in removed]
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning(
                "store_write_error",
                table="entry_cache",
                upserts=len(records),
                deletes=len(removed),
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Launch history
    # ------------------------------------------------------------------

    async def record_launch(self, identity: str) -> None:
        """Bump the launch count for ``identity``. Non-fatal on failure."""
        try:
            now = datetime.now(UTC).isoformat()
            await self._db.execute(
                "INSERT INTO launch_history (identity, launch_count, last_launched_at) "
                "VALUES (?, 1, ?) "
                "ON CONFLICT(identity) DO UPDATE SET "
                "launch_count = launch_count + 1, last_launched_at = excluded.last_launched_at",
                (identity, now),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", table="launch_history", key=identity, exc_info=True)

    async def recent(self, limit: int = 10, offset: int = 0) -> list[tuple[str, int]]:
        """Most recently launched identities with their launch counts."""
        try:
            cursor = await self._db.execute(
                "SELECT identity, launch_count FROM launch_history "
                "ORDER BY last_launched_at DESC, identity LIMIT ? OFFSET ?",
                (limit, offset),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error:
            log.warning("store_read_error", table="launch_history", exc_info=True)
            return []
        return [(row[0], row[1]) for row in rows]

