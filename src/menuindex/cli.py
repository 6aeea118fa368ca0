"""Command-line front end over the engine.

Configuration comes from the usual sources (MENUINDEX__* environment
variables, menuindex.yaml); logs go to stderr, results to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import TYPE_CHECKING

import structlog

from menuindex import __version__
from menuindex.config import Settings
from menuindex.engine import open_engine
from menuindex.errors import LaunchError
from menuindex.logging_config import configure_logging

if TYPE_CHECKING:
    from collections.abc import Sequence

    from menuindex.models.search import MatchResult

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="menuindex", description=__doc__.splitlines()[0])
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="list every application by name")
    list_cmd.add_argument("--category", help="only applications in this category")
    list_cmd.add_argument("--json", action="store_true", help="print JSON")

    search = sub.add_parser("search", help="fuzzy search applications")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=10)
    search.add_argument("--category")
    search.add_argument("--json", action="store_true", help="print JSON")

    launch = sub.add_parser("launch", help="launch an application by identity")
    launch.add_argument("identity")

    recent = sub.add_parser("recent", help="recently launched applications")
    recent.add_argument("--limit", type=int, default=10)

    sub.add_parser("watch", help="keep the index live and report every change")
    return parser


def _print_results(results: list[MatchResult], as_json: bool) -> None:
    if as_json:
        payload = [
            {
                "identity": r.identity,
                "name": r.entry.name,
                "score": r.score,
                "field": r.field,
                "matched_text": r.matched_text,
                "spans": [list(span) for span in r.spans],
            }
            for r in results
        ]
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    for r in results:
        print(f"{r.identity}\t{r.entry.name}")


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    watch = args.command == "watch"
    async with open_engine(settings, watch=watch) as engine:
        match args.command:
            case "list":
                _print_results(engine.search("", category=args.category), args.json)
            case "search":
                results = engine.search(args.query, category=args.category, limit=args.limit)
                _print_results(results, args.json)
            case "launch":
                try:
                    outcome = await engine.launch(args.identity)
                except LaunchError as exc:
                    print(json.dumps({"error": exc.to_dict()}), file=sys.stderr)
                    return 1
                if outcome.warning is not None:
                    print(json.dumps({"warning": outcome.warning.to_dict()}), file=sys.stderr)
                print(outcome.scope_name or " ".join(outcome.argv))
            case "recent":
                for entry in await engine.recent(args.limit):
                    print(f"{entry.identity}\t{entry.name}")
            case "watch":
                changed = asyncio.Event()
                engine.subscribe(changed.set)
                print(f"watching {len(engine.index)} applications", file=sys.stderr)
                while True:
                    await changed.wait()
                    changed.clear()
                    print(
                        f"index version {engine.index.version}: {len(engine.index)} applications",
                        flush=True,
                    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_logging(settings.logging)
    try:
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        return 130
