# quotesync/services/market_data/sync_planner.py
"""
Incremental sync planning.

Decides, per symbol, the first day that still needs fetching:

    refetch_all                     -> end date - default_history_days
    no stored quote                 -> end date - default_history_days
    latest stored day == end date   -> end date (re-fetch today for late revisions)
    otherwise                       -> day after the latest stored day

Symbols whose start would fall after the end date (stored data already
beyond it) are dropped. Start
instants are UTC midnight, so symbols that resume on the same day share a
group and can be fetched with one bulk call.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from quotesync.config import settings
from quotesync.services.protocols import MarketDataRepositoryProtocol
from quotesync.utils.date_utils import start_of_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SymbolSyncPlanItem:
    symbol: str
    currency: str
    start: datetime


def calculate_sync_plan(
        repository: MarketDataRepositoryProtocol,
        refetch_all: bool,
        symbols_with_currencies: list[tuple[str, str]],
        end_time: datetime,
        default_history_days: int | None = None,
) -> list[SymbolSyncPlanItem]:
    """
    Build the fetch plan for the given symbols.

    A repository failure while loading the latest quotes is logged and
    treated as "nothing stored" (full default window).
    """
    if not symbols_with_currencies:
        return []

    history_days = default_history_days or settings.default_history_days
    end_date = end_time.date()
    default_start = start_of_day(end_date - timedelta(days=history_days))

    if refetch_all:
        return [
            SymbolSyncPlanItem(symbol=symbol, currency=currency, start=default_start)
            for symbol, currency in symbols_with_currencies
        ]

    symbols = [symbol for symbol, _ in symbols_with_currencies]
    try:
        latest_quotes = repository.get_latest_quotes_for_symbols(symbols)
    except Exception as e:
        logger.error(
            f"Failed to get latest quotes for {len(symbols)} symbols: {e}. "
            f"Falling back to default history window."
        )
        latest_quotes = {}

    plan = []
    for symbol, currency in symbols_with_currencies:
        latest = latest_quotes.get(symbol)
        if latest is None:
            start_date = default_start.date()
        elif latest.day == end_date:
            start_date = end_date
        else:
            # A latest day beyond end_date yields a start past the end and is dropped
            start_date = latest.day + timedelta(days=1)

        if start_date > end_date:
            logger.debug(f"Symbol '{symbol}' is already synced through {end_date}, skipping")
            continue

        plan.append(SymbolSyncPlanItem(symbol=symbol, currency=currency, start=start_of_day(start_date)))

    return plan


def group_plan_by_start(plan: list[SymbolSyncPlanItem]) -> list[tuple[datetime, list[tuple[str, str]]]]:
    """Group plan items by start instant, earliest first."""
    groups: dict[datetime, list[tuple[str, str]]] = {}
    for item in plan:
        groups.setdefault(item.start, []).append((item.symbol, item.currency))
    return sorted(groups.items(), key=lambda entry: entry[0])
