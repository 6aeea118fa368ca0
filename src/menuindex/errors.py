"""Structured errors.

Every error carries a stable ``code``, a human-readable ``message`` and a
``recoverable`` flag telling the UI whether reselecting the entry may help.

Parse and watch errors are absorbed at the component boundary
(IndexBuilder / DirectoryWatcher). Only launch errors reach the caller.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    ENTRY_MALFORMED = "ENTRY_MALFORMED"
    ENTRY_SUPPRESSED = "ENTRY_SUPPRESSED"
    ENTRY_UNREADABLE = "ENTRY_UNREADABLE"
    WATCH_FAILED = "WATCH_FAILED"
    APP_NOT_FOUND = "APP_NOT_FOUND"
    SCOPE_UNAVAILABLE = "SCOPE_UNAVAILABLE"
    NO_TERMINAL = "NO_TERMINAL"
    SPAWN_FAILED = "SPAWN_FAILED"


class MenuIndexError(Exception):
    code: ErrorCode
    recoverable: bool = False

    def __init__(self, message: str, *, recoverable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if recoverable is not None:
            self.recoverable = recoverable

    def to_dict(self) -> dict[str, object]:
        return {"code": str(self.code), "message": self.message, "recoverable": self.recoverable}


# ---------------------------------------------------------------------------
# Descriptor parsing
# ---------------------------------------------------------------------------


class ParseError(MenuIndexError):
    """Base for descriptor files that do not produce an index entry."""


class MalformedEntryError(ParseError):
    code = ErrorCode.ENTRY_MALFORMED


class SuppressedEntryError(ParseError):
    """The entry parsed fine but declares ``Hidden`` or ``NoDisplay``."""

    code = ErrorCode.ENTRY_SUPPRESSED


class EntryUnreadableError(ParseError):
    code = ErrorCode.ENTRY_UNREADABLE
    recoverable = True


# ---------------------------------------------------------------------------
# Watching
# ---------------------------------------------------------------------------


class WatchError(MenuIndexError):
    code = ErrorCode.WATCH_FAILED
    recoverable = True

    def __init__(self, directory: str, message: str) -> None:
        super().__init__(f"{directory}: {message}")
        self.directory = directory


# ---------------------------------------------------------------------------
# Launching
# ---------------------------------------------------------------------------


class LaunchError(MenuIndexError):
    pass


class AppNotFoundError(LaunchError):
    code = ErrorCode.APP_NOT_FOUND
    recoverable = True


class ScopeUnavailableError(LaunchError):
    """Non-fatal: the process was started without scope isolation."""

    code = ErrorCode.SCOPE_UNAVAILABLE
    recoverable = True


class NoTerminalError(LaunchError):
    code = ErrorCode.NO_TERMINAL


class SpawnFailedError(LaunchError):
    code = ErrorCode.SPAWN_FAILED
    recoverable = True
