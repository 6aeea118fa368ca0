"""Fuzzy matching of a query against an entry's searchable fields.

Scores are plain ints so ordering is total. They are composed as::

    KIND_BASE[kind] + FIELD_WEIGHT[field] + detail      (detail in 0..999)

so the kind of match (exact > prefix > substring > subsequence) always
dominates the field it was found in (name > generic name > keywords >
description), which in turn dominates the finer-grained detail score.

Searching runs on the event loop for every keystroke, so the hot path works
on :class:`SearchFields` (an entry's fields, folded once) and rejects fields
that cannot contain the query as a subsequence before any scoring.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from menuindex.models.search import FieldMatch

if TYPE_CHECKING:
    from menuindex.models.entry import AppEntry
    from menuindex.models.search import MatchField

EXACT = 40_000
PREFIX = 30_000
SUBSTRING = 20_000
SUBSEQUENCE = 10_000

FIELD_WEIGHT: dict[MatchField, int] = {
    "name": 3_000,
    "generic_name": 2_000,
    "keywords": 1_000,
    "description": 0,
}

DETAIL_MAX = 999

# Subsequence scoring
MATCH_SCORE = 16
CONSECUTIVE_BONUS = 12
BOUNDARY_BONUS = 8
GAP_PENALTY = 1

_SEPARATORS = frozenset(" -_./:()[]")
_NEG_INF = float("-inf")

Spans = tuple[tuple[int, int], ...]


def _fold(text: str) -> str:
    """Lowercase without changing string length, so spans map back to ``text``."""
    folded = text.lower()
    if len(folded) == len(text):
        return folded
    return "".join(c.lower() if len(c.lower()) == 1 else c for c in text)


def fold_query(query: str) -> str:
    return _fold(query.strip())


def _clamp(value: int) -> int:
    return max(0, min(DETAIL_MAX, value))


def _is_boundary(text: str, i: int) -> bool:
    if i == 0:
        return True
    prev, cur = text[i - 1], text[i]
    return prev in _SEPARATORS or (prev.islower() and cur.isupper())


def _is_subsequence(query: str, folded: str) -> bool:
    """Ordered containment; each ``in`` resumes the shared iterator."""
    it = iter(folded)
    return all(c in it for c in query)


def _positions(folded: str, ch: str) -> list[int]:
    found: list[int] = []
    j = folded.find(ch)
    while j >= 0:
        found.append(j)
        j = folded.find(ch, j + 1)
    return found


def _subsequence(query: str, text: str, folded: str) -> tuple[int, list[int]] | None:
    """Best alignment of ``query`` as a subsequence of ``folded``.

    Dynamic programming over (query char, text position), restricted to the
    positions where each query char actually occurs. ``scores[k]`` is the
    best score with the current query char matched at ``cols[k]``. Returns
    the raw score and the matched positions.
    """
    if len(query) > len(folded) or not _is_subsequence(query, folded):
        return None

    rows: list[tuple[list[int], list[float], list[int]]] = []
    prev_cols: list[int] | None = None
    prev_scores: list[float] = []
    for qc in query:
        cols = _positions(folded, qc)
        scores: list[float] = []
        back: list[int] = []
        if prev_cols is None:
            for j in cols:
                scores.append(MATCH_SCORE + (BOUNDARY_BONUS if _is_boundary(text, j) else 0))
                back.append(-1)
        else:
            at = {col: k for k, col in enumerate(prev_cols)}
            # max over prev cols <= j-2 of score + GAP_PENALTY * (col + 1), with its argmax
            run_best, run_arg = _NEG_INF, -1
            k = 0
            for j in cols:
                while k < len(prev_cols) and prev_cols[k] <= j - 2:
                    if prev_scores[k] != _NEG_INF:
                        candidate = prev_scores[k] + GAP_PENALTY * (prev_cols[k] + 1)
                        if candidate > run_best:
                            run_best, run_arg = candidate, k
                    k += 1
                gain = MATCH_SCORE + (BOUNDARY_BONUS if _is_boundary(text, j) else 0)
                best, arg = _NEG_INF, -1
                adjacent = at.get(j - 1)
                if adjacent is not None and prev_scores[adjacent] != _NEG_INF:
                    best, arg = prev_scores[adjacent] + CONSECUTIVE_BONUS + gain, adjacent
                if run_arg >= 0:
                    gapped = run_best - GAP_PENALTY * j + gain
                    if gapped > best:
                        best, arg = gapped, run_arg
                scores.append(best)
                back.append(arg)
        rows.append((cols, scores, back))
        prev_cols, prev_scores = cols, scores

    end = max(range(len(prev_scores)), key=prev_scores.__getitem__)
    if prev_scores[end] == _NEG_INF:
        return None
    raw = int(prev_scores[end])

    positions: list[int] = []
    for cols, _, back in reversed(rows):
        positions.append(cols[end])
        end = back[end]
    positions.reverse()
    return raw, positions


def _spans(positions: list[int]) -> Spans:
    spans: list[tuple[int, int]] = []
    for pos in positions:
        if spans and spans[-1][1] == pos:
            spans[-1] = (spans[-1][0], pos + 1)
        else:
            spans.append((pos, pos + 1))
    return tuple(spans)


def _score_folded(query: str, text: str, folded: str) -> tuple[int, Spans] | None:
    if folded == query:
        return EXACT + DETAIL_MAX, ((0, len(text)),)
    if folded.startswith(query):
        return PREFIX + _clamp(DETAIL_MAX - (len(text) - len(query))), ((0, len(query)),)

    start = folded.find(query)
    if start >= 0:
        # Prefer an occurrence starting a word, e.g. "man" in "File Manager"
        word_start = start
        while word_start >= 0 and not _is_boundary(text, word_start):
            word_start = folded.find(query, word_start + 1)
        if word_start >= 0:
            detail = DETAIL_MAX - word_start
            start = word_start
        else:
            detail = DETAIL_MAX // 2 - start
        return SUBSTRING + _clamp(detail), ((start, start + len(query)),)

    aligned = _subsequence(query, text, folded)
    if aligned is None:
        return None
    raw, positions = aligned
    return SUBSEQUENCE + _clamp(raw), _spans(positions)


def score_text(query: str, text: str) -> tuple[int, Spans] | None:
    """Score ``query`` (already folded) against one string, without field weight."""
    if not query or not text:
        return None
    return _score_folded(query, text, _fold(text))


@dataclass(frozen=True)
class SearchFields:
    """An entry's non-empty fields in priority order, each with its folded form.

    Each field is ``(field, texts, folded_texts, joined)`` where ``joined`` is
    the folded values concatenated: a query that is not a subsequence of it
    cannot match any single value either.
    """

    entry: AppEntry
    fields: tuple[tuple[MatchField, tuple[str, ...], tuple[str, ...], str], ...]


def prepare(entry: AppEntry) -> SearchFields:
    fields = []
    for field, texts in _candidates(entry):
        texts = [t for t in texts if t]
        if not texts:
            continue
        folded = tuple(_fold(t) for t in texts)
        fields.append((field, tuple(texts), folded, "\n".join(folded)))
    return SearchFields(entry=entry, fields=tuple(fields))


def match(query: str, prepared: SearchFields) -> tuple[int, MatchField, str, Spans] | None:
    """Like :func:`score` but for a folded query and prepared fields, as a plain tuple."""
    for field, texts, folded_texts, joined in prepared.fields:
        if not _is_subsequence(query, joined):
            continue
        best: tuple[int, str, Spans] | None = None
        for text, folded in zip(texts, folded_texts):
            result = _score_folded(query, text, folded)
            if result is not None and (best is None or result[0] > best[0]):
                best = (result[0], text, result[1])
        if best is not None:
            return best[0] + FIELD_WEIGHT[field], field, best[1], best[2]
    return None


def _candidates(entry: AppEntry) -> list[tuple[MatchField, list[str]]]:
    return [
        ("name", [entry.name]),
        ("generic_name", [entry.generic_name] if entry.generic_name else []),
        ("keywords", list(entry.keywords)),
        ("description", [entry.description] if entry.description else []),
    ]


def score(query: str, entry: AppEntry) -> FieldMatch | None:
    """Match ``query`` against ``entry``.

    Fields are tried in priority order and the first one that matches is
    used, so an entry is never scored twice for the same query. Among
    keywords the best-scoring keyword wins.
    """
    folded_query = fold_query(query)
    if not folded_query:
        return None
    found = match(folded_query, prepare(entry))
    if found is None:
        return None
    total, field, text, spans = found
    return FieldMatch(score=total, field=field, text=text, spans=spans)
