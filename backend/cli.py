"""TMGPT CLI: dev server, search probe, conversation tools.

Usage:
    python cli.py dev                         Start uvicorn with hot-reload
    python cli.py search QUERY [-n N]         Probe the search provider
    python cli.py create --owner USER         Create an empty conversation
    python cli.py inspect CHAT_ID --owner U   Print a stored conversation
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import textwrap
from pathlib import Path

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("tmgpt-cli")


def cmd_dev(args):
    """Start uvicorn development server with hot-reload."""
    import subprocess

    from settings import settings

    host = args.host or settings.HOST
    port = args.port or settings.PORT

    backend_dir = Path(__file__).resolve().parent
    logger.info(f"Starting dev server at http://{host}:{port} (websocket: /ws)")
    subprocess.run(
        [
            sys.executable, "-m", "uvicorn",
            "main:app",
            "--host", host,
            "--port", str(port),
            "--reload",
        ],
        cwd=str(backend_dir),
        check=False,
    )


def cmd_search(args):
    """Run one search and print the results."""
    from search import SearchService

    service = SearchService.from_settings()
    if not service.configured:
        logger.error("SEARCH_API_KEY / SEARCH_ENGINE_ID are not set.")
        sys.exit(1)

    results = asyncio.run(service.search(args.query, args.n))
    if not results:
        logger.info(f"No results for {args.query!r}")
        return
    print(f"\n  Results for {args.query!r}\n  {'─' * 60}")
    for i, r in enumerate(results, 1):
        print(f"  {i}. {r.title}")
        print(f"     {r.link}")
        _print_wrapped(r.snippet, indent=5)
    print()


# ---------------------------------------------------------------------------
#  Conversation commands
# ---------------------------------------------------------------------------

def _ensure_store():
    """Connect to Postgres, exit if unavailable."""
    from conversation_store import PostgresConversationStore

    if not PostgresConversationStore.init_db():
        logger.error("Database connection failed.  Is PostgreSQL running?")
        sys.exit(1)
    return PostgresConversationStore()


def cmd_create(args):
    store = _ensure_store()
    try:
        chat_id = asyncio.run(store.create_conversation(args.owner, args.title))
    finally:
        store.close()
    print(chat_id)


def cmd_inspect(args):
    """Print every message of one conversation."""
    store = _ensure_store()
    try:
        messages = asyncio.run(store.load_conversation(args.chat_id, args.owner))
    finally:
        store.close()
    if messages is None:
        logger.error(f"Chat {args.chat_id} not found for owner {args.owner!r}")
        sys.exit(1)

    print(f"\n  Chat {args.chat_id} - {len(messages)} message(s)\n  {'─' * 60}")
    for m in messages:
        flag = " [image]" if m.image else ""
        print(f"  ┌ {m.role}{flag}  {m.timestamp}")
        _print_wrapped(m.content)
        if m.search_data:
            query = m.search_data.get("query", "")
            count = len(m.search_data.get("results") or [])
            print(f"  │ search: {query!r} ({count} result(s))")
        print("  └")
    print()


def _print_wrapped(text: str, indent: int = 4, width: int = 60):
    """Print text wrapped to *width* with leading indent inside a box."""
    prefix = "  │" + " " * (indent - 3)
    for line in textwrap.wrap(text, width=width) or [""]:
        print(f"{prefix}{line}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tmgpt",
        description="Streaming chat assistant: CLI tools",
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # dev
    p_dev = sub.add_parser("dev", help="Start development server")
    p_dev.add_argument("--host", help="Bind host")
    p_dev.add_argument("--port", type=int, help="Bind port")

    # search
    p_search = sub.add_parser("search", help="Probe the search provider")
    p_search.add_argument("query", help="Search keywords")
    p_search.add_argument("-n", type=int, default=None, help="Max results (default: SEARCH_MAX_RESULTS)")

    # create
    p_create = sub.add_parser("create", help="Create an empty conversation")
    p_create.add_argument("--owner", required=True, help="Owning user id")
    p_create.add_argument("--title", default="New Chat", help="Conversation title")

    # inspect
    p_inspect = sub.add_parser("inspect", help="Print a stored conversation")
    p_inspect.add_argument("chat_id", help="Conversation id")
    p_inspect.add_argument("--owner", required=True, help="Owning user id")
    return parser


def main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "dev":
        cmd_dev(args)
    elif args.command == "search":
        cmd_search(args)
    elif args.command == "create":
        cmd_create(args)
    elif args.command == "inspect":
        cmd_inspect(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
