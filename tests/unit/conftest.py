"""Unit-specific fixtures (no I/O beyond in-memory SQLite and tmp_path)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from menuindex.entry_cache import EntryCache
from menuindex.index import IndexBuilder
from menuindex.store import RecordStore

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
async def store():
    """In-memory SQLite record store for unit tests."""
    async with aiosqlite.connect(":memory:") as db:
        s = RecordStore(db)
        await s.init_db()
        yield s


@pytest.fixture()
def cache() -> EntryCache:
    return EntryCache("en_US")


@pytest.fixture()
def builder(user_dir: Path, system_dir: Path, cache: EntryCache) -> IndexBuilder:
    # user-level definitions take priority over system-level ones
    return IndexBuilder([user_dir, system_dir], cache)
