from __future__ import annotations

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class AppEntry(BaseModel):
    """One launchable application, resolved for a single locale."""

    model_config = ConfigDict(frozen=True)

    identity: str  # desktop-file ID, e.g. "org.mozilla.firefox"
    name: str
    generic_name: str | None = None
    description: str | None = None  # Comment key
    keywords: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    icon: str | None = None  # opaque; resolved by the icon theme, not here
    exec: str
    working_dir: str | None = None
    terminal: bool = False
    no_display: bool = False
    hidden: bool = False
    source: Path | None = None


class ChangeKind(StrEnum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


class DirectoryChange(BaseModel):
    """A filesystem change below one watched directory."""

    model_config = ConfigDict(frozen=True)

    directory: Path
    kind: ChangeKind
    path: Path
    previous_path: Path | None = None  # set for RENAMED only
