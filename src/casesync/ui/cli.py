# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from casesync.app import get_review_stats, ingest_file, list_review_items, resolve_review
from casesync.common.logging import configure_logging
from casesync.config import ConfigurationError
from casesync.domain.matching.review import ReviewItemClosedError, ReviewItemNotFoundError
from casesync.domain.records import RecordType

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="casesync", description="Reconcile report exports with the ticketing system"
    )
    parser.add_argument(
        "--log-level",
        choices=_LOG_LEVELS,
        default="INFO",
        help="Logging verbosity (default: %(default)s)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Reconcile one or more CSV exports")
    ingest.add_argument("files", nargs="+", type=Path, help="CSV files to ingest")
    ingest.add_argument(
        "--type",
        dest="record_type",
        choices=[item.value for item in RecordType],
        help="Report type (detected from the file name or subject when omitted)",
    )
    ingest.add_argument(
        "--subject",
        type=str,
        help="Subject line of the delivery the files came with",
    )

    review = subparsers.add_parser("review", help="Manual match review queue")
    review_sub = review.add_subparsers(dest="review_command", required=True)

    review_list = review_sub.add_parser("list", help="List pending review items")
    review_list.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of items to show (default: %(default)s)",
    )

    review_resolve = review_sub.add_parser("resolve", help="Resolve or skip a review item")
    review_resolve.add_argument("item_id", type=int, help="Review item id")
    decision = review_resolve.add_mutually_exclusive_group(required=True)
    decision.add_argument("--ticket", type=int, help="Ticket id the record belongs to")
    decision.add_argument("--skip", action="store_true", help="Close the item without a match")
    review_resolve.add_argument("--by", dest="resolved_by", required=True, help="Reviewer name")

    review_sub.add_parser("stats", help="Count review items per status")

    return parser.parse_args(list(argv))


def _run_ingest(args: argparse.Namespace) -> None:
    record_type = RecordType(args.record_type) if args.record_type else None
    for path in args.files:
        if not path.is_file():
            raise FileNotFoundError(f"No such file: {path}")
    for path in args.files:
        result = ingest_file(path, record_type=record_type, subject=args.subject)
        if result is None:
            continue
        summary = result.summary
        print(
            f"{path.name}: {summary.record_type} {summary.mode} sync"
            f"{' (dry run)' if summary.dry_run else ''}, {summary.total} records,"
            f" {summary.changed} changed, {summary.errors} errors, {result.rejected} rejected"
        )


def _run_review(args: argparse.Namespace) -> None:
    if args.review_command == "list":
        items = list_review_items(limit=args.limit)
        if not items:
            print("No pending review items")
        for item in items:
            candidates = len(item.candidates or [])
            print(
                f"#{item.id} {item.identity_key} reason={item.reason}"
                f" candidates={candidates} created={item.created_at:%Y-%m-%d %H:%M}"
            )
    elif args.review_command == "resolve":
        item = resolve_review(
            args.item_id,
            ticket_id=None if args.skip else args.ticket,
            resolved_by=args.resolved_by,
        )
        print(f"Review item #{item.id} {item.status}")
    elif args.review_command == "stats":
        stats = get_review_stats()
        print(f"pending={stats.pending} resolved={stats.resolved} skipped={stats.skipped}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.getLevelName(parsed_args.log_level), force=True)

    try:
        if parsed_args.command == "ingest":
            _run_ingest(parsed_args)
        elif parsed_args.command == "review":
            _run_review(parsed_args)
    except (
        ConfigurationError,
        FileNotFoundError,
        ReviewItemNotFoundError,
        ReviewItemClosedError,
    ) as exc:
        log.error("%s", exc)  # noqa: TRY400
        sys.exit(EXIT_USAGE)
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(EXIT_FAILURE)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
