"""Operator CLI for seeding targets and running checks without the web UI.

Examples:
  live-check-cli add r1 "https://maps.app.goo.gl/..." --text "Great service"
  live-check-cli inspect "https://maps.app.goo.gl/..."
  live-check-cli check r1 r2 r3 --concurrency 2
  live-check-cli show r1
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import DEFAULT_CONCURRENCY, clamp_concurrency, ensure_dirs
from .storage import REVIEW_STATUSES

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def cmd_add(resource_id: str, url: str, *, text: str | None = None, status: str | None = None) -> None:
    from .storage import ReviewStore

    store = ReviewStore()
    store.upsert_targets([{"id": resource_id, "live_link": url, "review_text": text, "status": status}])
    print(f"Saved {resource_id}")


def cmd_show(resource_id: str) -> int:
    from .storage import ReviewStore

    row = ReviewStore().get(resource_id)
    if row is None:
        print(f"No record {resource_id}", file=sys.stderr)
        return 1
    print(json.dumps(row, indent=2))
    return 0


def cmd_inspect(url: str, *, hint: str | None = None, headless: bool = True) -> int:
    from .inspector import Inspector
    from .models import Outcome, Target

    inspector = Inspector(headless=headless)
    verdict = asyncio.run(inspector.inspect(Target(resource_id="adhoc", url=url, hint=hint)))
    print(verdict.model_dump_json(indent=2))
    return 0 if verdict.outcome != Outcome.failed else 2


async def _check_async(resource_ids: list[str], *, principal: str, concurrency: int) -> int:
    from .service import CheckService
    from .storage import ReviewStore

    service = CheckService(ReviewStore())

    def _print_event(event: object) -> None:
        print(event.model_dump_json(), flush=True)

    service.bus.subscribe(_print_event)
    result = service.start(resource_ids, principal, concurrency=concurrency)
    if not result["accepted"]:
        print(f"check: {result['reason']}", file=sys.stderr)
        return 1
    try:
        await service.orchestrator.wait_idle()
    finally:
        await service.close()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="live-check-cli",
        description="Seed and check review links from the command line.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    add = sub.add_parser("add", help="Create or update a review record.")
    add.add_argument("id", help="Review id.")
    add.add_argument("url", help="Public review link.")
    add.add_argument("--text", default=None, help="Review text (advisory hint).")
    add.add_argument("--status", default=None, choices=REVIEW_STATUSES, help="Business status.")

    show = sub.add_parser("show", help="Print a stored review record.")
    show.add_argument("id", help="Review id.")

    inspect = sub.add_parser("inspect", help="Run one inspection and print the verdict.")
    inspect.add_argument("url", help="Link to inspect.")
    inspect.add_argument("--hint", default=None, help="Advisory review text.")
    inspect.add_argument("--headful", action="store_true", help="Show the browser window.")

    check = sub.add_parser("check", help="Check stored reviews; prints one JSON event per line.")
    check.add_argument("ids", nargs="+", help="Review ids to check.")
    check.add_argument("--principal", default="cli", help="Identity owning the run.")
    check.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help="Parallel inspections (1-10).",
    )

    sub.add_parser("serve", help="Start the HTTP server.")
    return parser


def main() -> None:
    ensure_dirs()
    parser = _build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == "add":
        cmd_add(args.id, args.url, text=args.text, status=args.status)
        return
    if args.command == "show":
        raise SystemExit(cmd_show(args.id))
    if args.command == "inspect":
        raise SystemExit(cmd_inspect(args.url, hint=args.hint, headless=not args.headful))
    if args.command == "check":
        concurrency = clamp_concurrency(args.concurrency)
        raise SystemExit(asyncio.run(_check_async(args.ids, principal=args.principal, concurrency=concurrency)))
    if args.command == "serve":
        from .app import main as app_main

        app_main()
        return

    parser.print_help()
