"""Integration test fixtures.

Provides a fully started engine over real descriptor directories, with a
live watchdog observer, an on-disk SQLite store and fake launch backends.
Directory and entry fixtures come from tests/conftest.py.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from typing import TYPE_CHECKING

import pytest

from menuindex.engine import open_engine

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from menuindex.config import Settings
    from menuindex.engine import MenuEngine
    from menuindex.index import AppIndex


class FakeSessionManager:
    def __init__(self) -> None:
        self.error: Exception | None = None
        self.calls: list[tuple[str, list[str], str | None]] = []

    async def run_in_scope(self, scope_name: str, argv: list[str], cwd: str | None) -> None:
        self.calls.append((scope_name, argv, cwd))
        if self.error is not None:
            raise self.error


class FakeSpawner:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str | None]] = []

    async def __call__(self, argv: list[str], cwd: str | None) -> None:
        self.calls.append((argv, cwd))


async def _wait_for(
    engine: MenuEngine, predicate: Callable[[AppIndex], bool], timeout: float = 5.0
) -> AppIndex:
    """Wait until a published index satisfies ``predicate``."""
    changed = asyncio.Event()
    unsubscribe = engine.subscribe(changed.set)
    try:
        async with asyncio.timeout(timeout):
            while not predicate(engine.index):
                await changed.wait()
                changed.clear()
    finally:
        unsubscribe()
    return engine.index


@pytest.fixture()
def wait_for():
    return _wait_for


@pytest.fixture()
def session_manager() -> FakeSessionManager:
    return FakeSessionManager()


@pytest.fixture()
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture()
async def start_engine(
    settings: Settings, session_manager: FakeSessionManager, spawner: FakeSpawner
):
    """Factory for engines closed at teardown: ``await start_engine(watch=False)``."""
    async with contextlib.AsyncExitStack() as stack:

        async def start(custom: Settings | None = None, *, watch: bool = True) -> MenuEngine:
            return await stack.enter_async_context(
                open_engine(
                    custom or settings,
                    watch=watch,
                    session_manager=session_manager,
                    spawner=spawner,
                )
            )

        yield start


@pytest.fixture()
async def engine(start_engine) -> MenuEngine:
    return await start_engine()


@pytest.fixture()
def subprocess_env(tmp_path: Path, user_dir: Path, system_dir: Path) -> dict[str, str]:
    """Environment for running ``python -m menuindex`` against the test directories."""
    env = {
        **os.environ,
        "XDG_CONFIG_HOME": str(tmp_path / "config"),
        "MENUINDEX__DIRECTORIES__PATHS": f'["{user_dir}", "{system_dir}"]',
        "MENUINDEX__CACHE__DB_PATH": str(tmp_path / "data" / "cache.db"),
        "MENUINDEX__LOCALE__TAG": "en_US",
        "MENUINDEX__LAUNCH__USE_SCOPES": "false",
        "MENUINDEX__LOGGING__LEVEL": "WARNING",
    }
    return env
