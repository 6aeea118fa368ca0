from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

from menuindex.models.entry import AppEntry

MatchField = Literal["name", "generic_name", "keywords", "description"]


class FieldMatch(BaseModel):
    """Best match of a query inside one field of an entry."""

    model_config = ConfigDict(frozen=True)

    score: int
    field: MatchField
    text: str  # the field value (or single keyword) that matched
    spans: tuple[tuple[int, int], ...] = ()  # half-open ranges into ``text``


class MatchResult(BaseModel):
    """Single ranked result returned by search."""

    model_config = ConfigDict(frozen=True)

    identity: str
    score: int
    field: MatchField
    matched_text: str
    spans: tuple[tuple[int, int], ...] = ()
    entry: AppEntry
