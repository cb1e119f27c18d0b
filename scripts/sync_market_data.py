# scripts/sync_market_data.py
"""
Run a market data sync (or an Open Exchange Rates refresh) once.

Usage:
    python -m scripts.sync_market_data
    python -m scripts.sync_market_data --resync AAPL 600519.SH
    python -m scripts.sync_market_data --fx
    python -m scripts.sync_market_data --import-csv quotes.csv --overwrite

Exit code is 1 when any symbol failed.
"""

import argparse
import logging
import sys

from quotesync.database import init_db, session_scope
from quotesync.dependencies import build_fx_service, build_import_service, build_sync_service
from quotesync.utils import correlation_scope, setup_logging

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronize stored quotes with market data providers")
    parser.add_argument("--resync", nargs="*", metavar="SYMBOL", help="Refetch full history (all assets if empty)")
    parser.add_argument("--fx", action="store_true", help="Refresh managed FX pairs from Open Exchange Rates")
    parser.add_argument("--import-csv", metavar="PATH", help="Import manual quotes from a CSV file")
    parser.add_argument("--overwrite", action="store_true", help="Overwrite existing quotes on import")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging()
    init_db()

    with session_scope() as db:
        if args.import_csv:
            with correlation_scope("import"), open(args.import_csv, "rb") as f:
                result = build_import_service(db).import_csv(f, args.import_csv, overwrite=args.overwrite)
            for row in result.rows:
                if row.reason:
                    logger.info(f"Row {row.row_number} ({row.symbol} {row.date}): {row.status.value} {row.reason}")
            for error in result.parse_errors:
                logger.warning(f"Row {error.row_number}: {error.message}")
            return 1 if result.error_count else 0

        if args.fx:
            with correlation_scope("fx"):
                stored = build_fx_service(db).sync_open_exchange_rates()
            logger.info(f"Stored {stored} exchange rates")
            return 0

        service = build_sync_service(db)
        try:
            if args.resync is not None:
                outcome = service.resync_market_data(args.resync)
            else:
                outcome = service.sync_market_data()
        finally:
            service.close()

    for symbol, reason in outcome.failures:
        logger.warning(f"{symbol}: {reason}")
    logger.info(
        f"Sync finished: {outcome.quotes_saved} quotes saved, "
        f"{len(outcome.failures)} failures, {outcome.mpf_assets_updated} MPF assets updated"
    )
    return 1 if outcome.has_failures else 0


if __name__ == "__main__":
    sys.exit(main())
