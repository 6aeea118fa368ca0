from __future__ import annotations

from menuindex.models.cache import CacheRecord, Fingerprint
from menuindex.models.entry import AppEntry, ChangeKind, DirectoryChange
from menuindex.models.search import FieldMatch, MatchField, MatchResult

__all__ = [
    # entries
    "AppEntry",
    "ChangeKind",
    "DirectoryChange",
    # cache
    "CacheRecord",
    "Fingerprint",
    # search
    "FieldMatch",
    "MatchField",
    "MatchResult",
]
