# quotesync/services/market_data/continuity.py
"""
Forward-fill continuity for sparse daily quotes.

Given stored quotes (weekends, holidays and provider gaps missing) and the
set of symbols a caller needs, produce exactly one quote per symbol per
calendar day in [start_date, end_date], carrying the last known quote
forward:

    stored:   A@d1            B@d3
    output:   A@d1  A@d2  A@d3  B@d3  A@d4  B@d4 ...

Before the range starts, each symbol is seeded with its latest quote
strictly before start_date, so a range beginning on a Sunday still gets
Friday's close. Symbols with nothing on or before a day are skipped for
that day (logged at debug).

Emitted quotes are copies stamped at 12:00 UTC of the day they represent.
"""

import logging
from dataclasses import replace
from datetime import date, timedelta

from quotesync.config import settings
from quotesync.services.market_data.base import Quote
from quotesync.utils.date_utils import get_days_between, noon_of_day

logger = logging.getLogger(__name__)


def _index_by_day(quotes: list[Quote], required_symbols: set[str]) -> dict[date, dict[str, Quote]]:
    quotes_by_day: dict[date, dict[str, Quote]] = {}
    for quote in quotes:
        if quote.symbol in required_symbols:
            quotes_by_day.setdefault(quote.day, {})[quote.symbol] = quote
    return quotes_by_day


def _seed_last_known(
        quotes_by_day: dict[date, dict[str, Quote]],
        required_symbols: set[str],
        start_date: date,
        seed_lookback_days: int,
) -> dict[str, Quote]:
    """
    Latest quote per symbol strictly before start_date.

    Scans backwards one calendar day at a time. A day closer to start_date
    always wins over an earlier one. Stops once every symbol is seeded or
    the lookback is exhausted.
    """
    last_known: dict[str, Quote] = {}
    if not quotes_by_day:
        return last_known

    earliest_day = min(quotes_by_day)
    current = start_date - timedelta(days=1)

    for _ in range(seed_lookback_days):
        if current < earliest_day:
            break

        for symbol, quote in quotes_by_day.get(current, {}).items():
            last_known.setdefault(symbol, quote)

        if len(last_known) == len(required_symbols):
            break
        current -= timedelta(days=1)

    return last_known


def fill_missing_quotes(
        quotes: list[Quote],
        required_symbols: set[str],
        start_date: date,
        end_date: date,
        seed_lookback_days: int | None = None,
) -> list[Quote]:
    """
    Produce one quote per required symbol per day in [start_date, end_date].

    Args:
        quotes: Stored quotes, any order; may include days before start_date
        required_symbols: Symbols to emit; other symbols are ignored
        start_date: First day emitted (inclusive)
        end_date: Last day emitted (inclusive)
        seed_lookback_days: Calendar days scanned before start_date for a
            seed quote (defaults to settings.continuity_seed_lookback_days)

    Returns:
        Quotes ordered by day, then by symbol
    """
    if not required_symbols or start_date > end_date:
        return []

    lookback = seed_lookback_days or settings.continuity_seed_lookback_days
    quotes_by_day = _index_by_day(quotes, required_symbols)
    last_known = _seed_last_known(quotes_by_day, required_symbols, start_date, lookback)

    ordered_symbols = sorted(required_symbols)
    filled: list[Quote] = []

    for current in get_days_between(start_date, end_date):
        last_known.update(quotes_by_day.get(current, {}))

        timestamp = noon_of_day(current)
        for symbol in ordered_symbols:
            last_quote = last_known.get(symbol)
            if last_quote is None:
                logger.debug(f"No quote available for symbol '{symbol}' on or before {current}")
                continue
            filled.append(replace(last_quote, timestamp=timestamp))

    return filled
