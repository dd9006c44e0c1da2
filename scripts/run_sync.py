"""
Run one store sync from a POS export file.

Usage:
    python scripts/run_sync.py \
        --file "exports/main-street.csv" \
        --store-id 7c1e... \
        --store-name "Main Street"

    # Parse only, print what would be synced
    python scripts/run_sync.py --file exports/main-street.csv \
        --store-id 7c1e... --store-name "Main Street" --dry-run

Ctrl+C stops after the item in flight; the partial summary is still printed.
"""

import argparse
import asyncio
import json
import os
import signal
import sys

# Allow imports from the project root when running as a script
_root_dir = os.path.join(os.path.dirname(__file__), "..")
sys.path.insert(0, _root_dir)

from dotenv import load_dotenv
load_dotenv(os.path.join(_root_dir, ".env"))

import structlog

from config import configure_logging
from exceptions import AppError, DatabaseError
from integrations.shopify import close_shopify_api
from parsers.export_parser import parse_store_export
from services.sync_service import get_sync_service
from services.sync_stats_service import get_sync_stats_service

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    parsed = parse_store_export(
        args.file,
        store_id=args.store_id,
        allow_blank_barcode=args.allow_blank_barcode,
    )

    if not parsed.success:
        print(json.dumps(parsed.to_dict(), indent=2))
        print(f"ERROR: {len(parsed.errors)} row(s) could not be parsed. Nothing synced.")
        return 1

    if args.dry_run:
        print(json.dumps(parsed.to_dict(), indent=2))
        return 0

    cancel_event = asyncio.Event()
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl+C aborts instead
        pass

    try:
        summary = await get_sync_service().sync_store(
            store_id=args.store_id,
            store_name=args.store_name,
            items=parsed.items,
            hints=parsed.hints,
            cancel_event=cancel_event,
        )
    finally:
        await close_shopify_api()

    if not args.no_stats:
        try:
            get_sync_stats_service().record(summary)
        except DatabaseError as e:
            logger.error("sync_stats_not_recorded", store_id=args.store_id, error=e.message)

    print(summary.model_dump_json(indent=2, exclude={"outcomes"} if args.quiet else None))
    return 0 if summary.error is None and summary.failed == 0 else 1


def main():
    parser = argparse.ArgumentParser(
        description="Sync one store's inventory to its Shopify location."
    )
    parser.add_argument(
        "--file",
        required=True,
        help="POS export (CSV or Excel)",
    )
    parser.add_argument(
        "--store-id",
        required=True,
        help="Local store id (used for statistics)",
    )
    parser.add_argument(
        "--store-name",
        required=True,
        help="Shopify location name (case-insensitive)",
    )
    parser.add_argument(
        "--allow-blank-barcode",
        action="store_true",
        help="Trust hinted Shopify records that have no barcode yet",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse the file and stop",
    )
    parser.add_argument(
        "--no-stats",
        action="store_true",
        help="Do not record the run in the statistics table",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Print the summary without per-item outcomes",
    )

    args = parser.parse_args()
    configure_logging()

    if not os.path.exists(args.file):
        print(f"ERROR: File not found: {args.file}")
        sys.exit(1)

    try:
        code = asyncio.run(run(args))
    except AppError as e:
        print(json.dumps(e.to_dict(), indent=2))
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
