"""Parser for freedesktop application descriptor (``.desktop``) files.

Only the ``[Desktop Entry]`` group is read. Localized keys (``Name[de]``) are
resolved against a single locale tag with the usual fallback chain:
``lang_COUNTRY@MODIFIER`` → ``lang_COUNTRY`` → ``lang@MODIFIER`` → ``lang`` →
unlocalized value.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from menuindex.errors import MalformedEntryError, SuppressedEntryError
from menuindex.models.entry import AppEntry

if TYPE_CHECKING:
    from pathlib import Path

DESKTOP_GROUP = "Desktop Entry"
DESCRIPTOR_SUFFIX = ".desktop"

_KEY = re.compile(r"^([A-Za-z0-9-]+)(?:\[([^\]]+)\])?$")
_ESCAPES = {"s": " ", "n": "\n", "t": "\t", "r": "\r", "\\": "\\"}

# key → {locale or None: raw value}
_Group = dict[str, dict[str | None, str]]


def desktop_file_id(path: Path, root: Path) -> str:
    """Identity of ``path`` below ``root``: ``kde/org.foo.desktop`` → ``kde-org.foo``."""
    rel = path.relative_to(root)
    return "-".join(rel.parts).removesuffix(DESCRIPTOR_SUFFIX)


def is_descriptor(path: Path) -> bool:
    return path.suffix == DESCRIPTOR_SUFFIX and not path.name.startswith(".")


def locale_candidates(locale: str | None) -> list[str]:
    """Locale keys to try, most specific first. Encoding suffixes are ignored."""
    if not locale:
        return []
    tag, _, modifier = locale.partition("@")
    tag = tag.split(".", 1)[0]
    lang, _, country = tag.partition("_")
    if not lang:
        return []

    candidates = []
    if country and modifier:
        candidates.append(f"{lang}_{country}@{modifier}")
    if country:
        candidates.append(f"{lang}_{country}")
    if modifier:
        candidates.append(f"{lang}@{modifier}")
    candidates.append(lang)
    return candidates


def _unescape(value: str) -> str:
    out: list[str] = []
    chars = iter(value)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            out.append(_ESCAPES.get(nxt, "\\" + nxt))
        else:
            out.append(ch)
    return "".join(out)


def _split_list(value: str) -> list[str]:
    """Split a ``;``-separated list, honouring ``\\;`` as a literal semicolon."""
    items: list[str] = []
    buf: list[str] = []
    escaped = False
    for ch in value:
        if escaped:
            # Other escapes are left for _unescape
            buf.append(ch if ch == ";" else "\\" + ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ";":
            items.append(_unescape("".join(buf)))
            buf = []
        else:
            buf.append(ch)
    if escaped:
        buf.append("\\")
    if buf:
        items.append(_unescape("".join(buf)))
    return [item.strip() for item in items if item.strip()]


def _read_group(text: str) -> _Group | None:
    values: _Group = {}
    in_group = False
    found = False
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("[") and line.endswith("]"):
            if in_group:
                break
            in_group = line[1:-1] == DESKTOP_GROUP
            found = found or in_group
            continue
        if not in_group:
            continue

        key, sep, value = line.partition("=")
        if not sep:
            continue
        match = _KEY.match(key.strip())
        if match is None:
            continue
        # First definition of a key wins
        values.setdefault(match[1], {}).setdefault(match[2], value.strip())
    return values if found else None


def _localized(variants: dict[str | None, str] | None, candidates: list[str]) -> str | None:
    if not variants:
        return None
    for candidate in candidates:
        if candidate in variants:
            return variants[candidate]
    return variants.get(None)


def _as_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() in ("true", "1")


def parse_entry(
    data: bytes,
    locale: str | None,
    *,
    identity: str,
    source: Path | None = None,
) -> AppEntry:
    """Parse one descriptor file.

    Raises ``MalformedEntryError`` when required fields are missing and
    ``SuppressedEntryError`` when the entry hides itself from menus.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedEntryError(f"{identity}: not valid UTF-8") from exc

    values = _read_group(text.removeprefix("\ufeff"))
    if values is None:
        raise MalformedEntryError(f"{identity}: missing [{DESKTOP_GROUP}] group")

    candidates = locale_candidates(locale)

    def get(key: str) -> str | None:
        value = _localized(values.get(key), candidates)
        return _unescape(value) if value else None

    def get_list(key: str) -> tuple[str, ...]:
        value = _localized(values.get(key), candidates)
        return tuple(dict.fromkeys(_split_list(value))) if value else ()

    def get_raw(key: str) -> str | None:
        return values.get(key, {}).get(None)

    entry_type = get_raw("Type")
    if entry_type is not None and entry_type != "Application":
        raise MalformedEntryError(f"{identity}: unsupported Type={entry_type}")

    name = get("Name")
    if not name:
        raise MalformedEntryError(f"{identity}: missing Name")
    exec_line = get_raw("Exec")
    if not exec_line:
        raise MalformedEntryError(f"{identity}: missing Exec")

    hidden = _as_bool(get_raw("Hidden"))
    no_display = _as_bool(get_raw("NoDisplay"))
    if hidden or no_display:
        raise SuppressedEntryError(f"{identity}: hidden from menus")

    return AppEntry(
        identity=identity,
        name=name,
        generic_name=get("GenericName"),
        description=get("Comment"),
        keywords=get_list("Keywords"),
        categories=get_list("Categories"),
        icon=get("Icon"),
        exec=_unescape(exec_line),
        working_dir=get("Path"),
        terminal=_as_bool(get_raw("Terminal")),
        no_display=no_display,
        hidden=hidden,
        source=source,
    )
