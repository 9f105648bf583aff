# src/pageviews/scripts/views.py
"""Command-line access to view counters.

Local subcommands operate on a device-local JSON store (``--store`` or
``VIEWS_LOCAL_PATH``); ``remote-*`` subcommands query the counter service.
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from pageviews.core.settings import settings
from pageviews.services.formatting import format_count
from pageviews.services.local_store import LocalCounterStore
from pageviews.services.remote import RemoteConfig, RemoteCounterClient, RemoteCounterError
from pageviews.services.session_gate import SessionGate
from pageviews.services.storage import JsonFileStorage

DEFAULT_STORE = "pageviews-local.json"


def _open_store(path: str | None) -> LocalCounterStore:
    location = path or settings.views_local_path or DEFAULT_STORE
    return LocalCounterStore(JsonFileStorage(location), storage_key=settings.views_storage_key)


def _print_ranked(rows: list[tuple[str, int]]) -> None:
    for position, (key, count) in enumerate(rows, start=1):
        print(f"{position:>3}. {key}  {format_count(count)}")


def cmd_get(args: argparse.Namespace) -> int:
    store = _open_store(args.store)
    print(format_count(store.get(args.key)))
    return 0


def cmd_popular(args: argparse.Namespace) -> int:
    store = _open_store(args.store)
    counts = store.all_counts()
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    _print_ranked(ranked[: settings.clamp_popular_limit(args.limit)])
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    print(_open_store(args.store).export())
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    store = _open_store(args.store)
    SessionGate(store.storage, session_key=settings.views_session_key).clear()
    store.clear()
    print("[views] cleared local view data and session flags")
    return 0


async def _remote(args: argparse.Namespace) -> int:
    client = RemoteCounterClient(
        RemoteConfig(
            base_url=args.url or settings.remote_base_url,
            timeout_seconds=settings.remote_timeout_seconds,
            max_popular_limit=settings.views_popular_max_limit,
        )
    )
    try:
        if args.command == "remote-get":
            print(format_count(await client.count(args.key)))
        else:
            _print_ranked(await client.popular(settings.clamp_popular_limit(args.limit)))
    finally:
        await client.close()
    return 0


def cmd_remote(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_remote(args))
    except RemoteCounterError as exc:
        print(f"[views] ERROR: {exc}", file=sys.stderr)
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pageviews", description="Inspect view counters")
    parser.add_argument("--store", default=None, help="Path of the local JSON store")
    parser.add_argument("--url", default=None, help="Counter service base URL")
    sub = parser.add_subparsers(dest="command", required=True)

    get = sub.add_parser("get", help="Show the local count for a key")
    get.add_argument("key")
    get.set_defaults(func=cmd_get)

    popular = sub.add_parser("popular", help="Rank local counts")
    popular.add_argument("--limit", type=int, default=None)
    popular.set_defaults(func=cmd_popular)

    sub.add_parser("export", help="Dump local records as JSON").set_defaults(func=cmd_export)
    sub.add_parser("clear", help="Wipe local records").set_defaults(func=cmd_clear)

    remote_get = sub.add_parser("remote-get", help="Show the authoritative count for a key")
    remote_get.add_argument("key")
    remote_get.set_defaults(func=cmd_remote)

    remote_popular = sub.add_parser("remote-popular", help="Show the service's top-N")
    remote_popular.add_argument("--limit", type=int, default=None)
    remote_popular.set_defaults(func=cmd_remote)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
