"""Ranked search over an index snapshot."""

from __future__ import annotations

from typing import TYPE_CHECKING

from menuindex import matcher
from menuindex.models.search import MatchResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from menuindex.index import AppIndex
    from menuindex.matcher import SearchFields
    from menuindex.models.entry import AppEntry


class QueryEngine:
    """Pure, idempotent search. Each call works on one snapshot only.

    Folded search fields are kept per identity and reused for as long as the
    snapshot still holds the same entry object, so a publish only re-folds
    the entries it replaced.
    """

    def __init__(self, snapshot: Callable[[], AppIndex]) -> None:
        self._snapshot = snapshot
        self._prepared: dict[str, SearchFields] = {}
        self._prepared_for: AppIndex | None = None

    def _fields(self, snapshot: AppIndex) -> list[SearchFields]:
        if snapshot is self._prepared_for:
            return list(self._prepared.values())
        prepared: dict[str, SearchFields] = {}
        for entry in snapshot.values():
            cached = self._prepared.get(entry.identity)
            prepared[entry.identity] = (
                cached if cached is not None and cached.entry is entry else matcher.prepare(entry)
            )
        self._prepared, self._prepared_for = prepared, snapshot
        return list(prepared.values())

    def search(
        self,
        query: str,
        index: AppIndex | None = None,
        *,
        category: str | None = None,
        limit: int | None = None,
    ) -> list[MatchResult]:
        """Rank entries of ``index`` (default: the current snapshot) for ``query``.

        An empty query lists every entry by display name. Otherwise results
        are ordered by descending score, then shorter display name, then
        identity.
        """
        # Taken once: concurrent publishes do not affect this call
        snapshot = index if index is not None else self._snapshot()
        folded = matcher.fold_query(query)

        if not folded:
            entries = snapshot.values()
            if category is not None:
                entries = [e for e in entries if _in_category(e, category)]
            browse = sorted(entries, key=lambda e: (e.name.casefold(), e.identity))
            if limit is not None:
                browse = browse[:limit]
            return [_browse_result(e) for e in browse]

        fields = self._fields(snapshot)
        if category is not None:
            fields = [f for f in fields if _in_category(f.entry, category)]

        ranked = []
        for prepared in fields:
            found = matcher.match(folded, prepared)
            if found is not None:
                entry = prepared.entry
                ranked.append((-found[0], len(entry.name), entry.identity, found, entry))
        ranked.sort(key=lambda row: row[:3])
        if limit is not None:
            ranked = ranked[:limit]

        return [
            MatchResult(
                identity=entry.identity,
                score=score,
                field=field,
                matched_text=text,
                spans=spans,
                entry=entry,
            )
            for _, _, _, (score, field, text, spans), entry in ranked
        ]


def _in_category(entry: AppEntry, category: str) -> bool:
    wanted = category.casefold()
    return any(c.casefold() == wanted for c in entry.categories)


def _browse_result(entry: AppEntry) -> MatchResult:
    return MatchResult(
        identity=entry.identity, score=0, field="name", matched_text=entry.name, entry=entry
    )
