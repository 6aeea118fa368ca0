"""In-memory parse cache for descriptor files.

Records are keyed by path and validated against a fingerprint on every lookup,
so an unchanged file is never parsed twice. The cold scan may run in a worker
thread while the event loop reads, hence the lock around the record map.
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

import structlog

from menuindex.errors import (
    EntryUnreadableError,
    ErrorCode,
    MalformedEntryError,
    ParseError,
    SuppressedEntryError,
)
from menuindex.models.cache import CacheRecord, Fingerprint
from menuindex.parser import parse_entry

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from menuindex.models.entry import AppEntry

log = structlog.get_logger()

_ERRORS: dict[ErrorCode, type[ParseError]] = {
    ErrorCode.ENTRY_MALFORMED: MalformedEntryError,
    ErrorCode.ENTRY_SUPPRESSED: SuppressedEntryError,
}


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    parses: int = 0


def compute_fingerprint(path: Path, mode: Literal["stat", "hash"] = "stat") -> Fingerprint:
    """Fingerprint ``path``. Raises ``OSError`` if the file cannot be read."""
    st = path.stat()
    digest = hashlib.sha256(path.read_bytes()).hexdigest() if mode == "hash" else None
    return Fingerprint(size=st.st_size, mtime_ns=st.st_mtime_ns, digest=digest)


class EntryCache:
    def __init__(
        self, locale: str | None, *, fingerprint: Literal["stat", "hash"] = "stat"
    ) -> None:
        self.locale = locale
        self._mode = fingerprint
        self._records: dict[Path, CacheRecord] = {}
        self._lock = threading.Lock()
        self._dirty: set[Path] = set()
        self._removed: set[Path] = set()
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, path: object) -> bool:
        return path in self._records

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_or_parse(self, path: Path, identity: str) -> AppEntry:
        """Return the entry for ``path``, re-parsing only if the file changed.

        Raises ``MalformedEntryError``, ``SuppressedEntryError`` (both possibly
        replayed from the cache) or ``EntryUnreadableError``.
        """
        try:
            fingerprint = compute_fingerprint(path, self._mode)
        except OSError as exc:
            self.invalidate(path)
            raise EntryUnreadableError(f"{path}: {exc.strerror or exc}") from exc

        with self._lock:
            record = self._records.get(path)
        if (
            record is not None
            and record.locale == self.locale
            and record.fingerprint.matches(fingerprint)
        ):
            self.stats.hits += 1
            return self._replay(record)

        self.stats.misses += 1
        try:
            data = path.read_bytes()
        except OSError as exc:
            self.invalidate(path)
            raise EntryUnreadableError(f"{path}: {exc.strerror or exc}") from exc

        self.stats.parses += 1
        entry: AppEntry | None = None
        error: ParseError | None = None
        try:
            entry = parse_entry(data, self.locale, identity=identity, source=path)
        except (MalformedEntryError, SuppressedEntryError) as exc:
            error = exc

        record = CacheRecord(
            path=path,
            fingerprint=fingerprint,
            locale=self.locale,
            entry=entry,
            error=error.code if error is not None else None,
            validated_at=datetime.now(UTC),
        )
        with self._lock:
            self._records[path] = record
            self._dirty.add(path)
            self._removed.discard(path)

        if error is not None:
            raise error
        assert entry is not None
        return entry

    def _replay(self, record: CacheRecord) -> AppEntry:
        if record.entry is not None:
            return record.entry
        assert record.error is not None
        raise _ERRORS[record.error](f"{record.path}: {record.error.lower()} (cached)")

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, path: Path) -> bool:
        """Drop the record for ``path`` regardless of its fingerprint."""
        with self._lock:
            record = self._records.pop(path, None)
            if record is not None:
                self._dirty.discard(path)
                self._removed.add(path)
        return record is not None

    def evict_missing(self) -> list[Path]:
        """Drop records whose backing file no longer exists."""
        with self._lock:
            paths = list(self._records)
        evicted = [path for path in paths if not path.exists()]
        for path in evicted:
            self.invalidate(path)
        if evicted:
            log.debug("cache_evicted", count=len(evicted))
        return evicted

    # ------------------------------------------------------------------
    # Persistence hooks
    # ------------------------------------------------------------------

    def records(self) -> list[CacheRecord]:
        with self._lock:
            return list(self._records.values())

    def restore(self, records: Iterable[CacheRecord]) -> int:
        """Seed the cache from persisted records. Other locales are ignored."""
        restored = 0
        with self._lock:
            for record in records:
                if record.locale != self.locale:
                    continue
                self._records[record.path] = record
                restored += 1
        return restored

    def drain_changes(self) -> tuple[list[CacheRecord], list[Path]]:
        """Return records written and paths dropped since the last drain."""
        with self._lock:
            upserts = [self._records[p] for p in self._dirty if p in self._records]
            removed = list(self._removed)
            self._dirty.clear()
            self._removed.clear()
        return upserts, removed
