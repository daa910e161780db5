#!/usr/bin/env python3
"""Command-line interface for the payment reconciliation sweep.

Runs one sweep outside the HTTP server, e.g. from cron.

Usage:
    python -m enrollment_payments.reconciliation.cli reconcile
    python -m enrollment_payments.reconciliation.cli reconcile --max 50 --age-minutes 30 --output sweep.json
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..database import DatabaseManager
from .models import SweepRequest
from .service import ReconciliationService

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


async def run_sweep_async(
    max_items: Optional[str] = None,
    age_minutes: Optional[str] = None,
    output_file: Optional[str] = None,
    database_url: Optional[str] = None,
) -> int:
    """Run one sweep against the configured database.

    Returns:
        Exit code: 0 when every item reconciled, 1 when any item failed,
        2 when the pending submissions could not be listed.
    """
    db_manager = DatabaseManager(database_url=database_url)
    await db_manager.initialize()

    try:
        try:
            async with db_manager.session() as session:
                service = ReconciliationService(session)
                request = SweepRequest.from_params(max_items=max_items, age_minutes=age_minutes)
                result = await service.run_sweep(request)
        except SQLAlchemyError as e:
            logger.error(f"Failed to list pending submissions: {e}")
            return 2

        output = json.dumps(result.to_dict(), indent=2)
        if output_file:
            with open(output_file, "w") as f:
                f.write(output)
            logger.info(f"Sweep result written to {output_file}")
        else:
            print(output)

        if result.failed:
            logger.warning(f"Sweep finished with {result.failed} failed submissions")
            return 1
        return 0

    finally:
        await db_manager.shutdown()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="enrollment-reconcile",
        description="Reconcile pending submission payments against Mercado Pago.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Run one reconciliation sweep",
    )
    reconcile_parser.add_argument(
        "--max", "-m",
        dest="max_items",
        help="Batch size (default: 25, clamped to 1..50)",
    )
    reconcile_parser.add_argument(
        "--age-minutes", "-a",
        dest="age_minutes",
        help="Only pending submissions older than this many minutes (default: 10)",
    )
    reconcile_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )
    reconcile_parser.add_argument(
        "--database-url",
        help="Database URL (default: DATABASE_URL environment variable)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Entry point of ``enrollment-reconcile``; ``args`` defaults to sys.argv."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    return asyncio.run(run_sweep_async(
        max_items=parsed_args.max_items,
        age_minutes=parsed_args.age_minutes,
        output_file=parsed_args.output,
        database_url=parsed_args.database_url,
    ))


if __name__ == "__main__":
    sys.exit(main())
