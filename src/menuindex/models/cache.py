from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from menuindex.errors import ErrorCode
from menuindex.models.entry import AppEntry


class Fingerprint(BaseModel):
    """Cheap proxy for file content. ``digest`` is only set in hash mode."""

    model_config = ConfigDict(frozen=True)

    size: int
    mtime_ns: int
    digest: str | None = None

    def matches(self, other: Fingerprint) -> bool:
        if self.digest is not None and other.digest is not None:
            return self.digest == other.digest
        return self.size == other.size and self.mtime_ns == other.mtime_ns


class CacheRecord(BaseModel):
    """Parse outcome for one descriptor file.

    Exactly one of ``entry`` and ``error`` is set. Failed parses are cached too
    so an unchanged broken file is not parsed again on every scan.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    fingerprint: Fingerprint
    locale: str | None
    entry: AppEntry | None = None
    error: ErrorCode | None = None
    validated_at: datetime
