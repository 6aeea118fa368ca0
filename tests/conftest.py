"""Shared fixtures: descriptor directories on disk and sample entries."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from menuindex.config import Settings
from menuindex.models.entry import AppEntry

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def desktop_text(name: str, exec_line: str = "app", **keys: str) -> str:
    lines = ["[Desktop Entry]", "Type=Application", f"Name={name}", f"Exec={exec_line}"]
    lines += [f"{key}={value}" for key, value in keys.items()]
    return "\n".join(lines) + "\n"


@pytest.fixture()
def user_dir(tmp_path: Path) -> Path:
    path = tmp_path / "user" / "applications"
    path.mkdir(parents=True)
    return path


@pytest.fixture()
def system_dir(tmp_path: Path) -> Path:
    path = tmp_path / "system" / "applications"
    path.mkdir(parents=True)
    return path


@pytest.fixture()
def write_entry() -> Callable[..., Path]:
    """Write a descriptor: ``write_entry(dir, "org.foo", "Foo", Exec="foo")``.

    Extra keyword arguments become keys; ``raw=`` writes the text verbatim.
    """

    def write(
        directory: Path,
        identity: str,
        name: str = "App",
        *,
        raw: str | None = None,
        **keys: str,
    ) -> Path:
        exec_line = keys.pop("Exec", identity.rsplit(".", 1)[-1].lower())
        path = directory / f"{identity}.desktop"
        path.write_text(raw if raw is not None else desktop_text(name, exec_line, **keys))
        return path

    return write


@pytest.fixture()
def settings(tmp_path: Path, user_dir: Path, system_dir: Path) -> Settings:
    return Settings(
        directories={"paths": [str(user_dir), str(system_dir)]},
        locale={"tag": "en_US"},
        watcher={"debounce_ms": 20},
        cache={"db_path": str(tmp_path / "data" / "cache.db")},
        launch={"scope_timeout_seconds": 0.5},
    )


@pytest.fixture()
def sample_entries() -> list[AppEntry]:
    return [
        AppEntry(
            identity="org.mozilla.firefox",
            name="Firefox",
            generic_name="Web Browser",
            description="Browse the World Wide Web",
            keywords=("Internet", "WWW", "Browser", "Web"),
            categories=("Network", "WebBrowser"),
            icon="firefox",
            exec="firefox %u",
        ),
        AppEntry(
            identity="org.gnome.Nautilus",
            name="File Manager",
            generic_name="Files",
            description="Access and organize files",
            keywords=("folder", "manager", "explore", "disk"),
            categories=("GNOME", "System", "Utility"),
            icon="org.gnome.Nautilus",
            exec="nautilus --new-window %U",
        ),
        AppEntry(
            identity="org.gnome.Terminal",
            name="Terminal",
            description="Use the command line",
            keywords=("shell", "prompt", "command"),
            categories=("System", "TerminalEmulator"),
            exec="gnome-terminal",
        ),
        AppEntry(
            identity="htop",
            name="Htop",
            generic_name="Process Viewer",
            description="Show system processes",
            keywords=("system", "process", "task"),
            categories=("System", "Monitor"),
            exec="htop",
            terminal=True,
        ),
        AppEntry(
            identity="org.gimp.GIMP",
            name="GNU Image Manipulation Program",
            generic_name="Image Editor",
            description="Create images and edit photographs",
            keywords=("photo", "painting", "drawing"),
            categories=("Graphics", "2DGraphics"),
            exec="gimp-2.10 %U",
        ),
    ]
