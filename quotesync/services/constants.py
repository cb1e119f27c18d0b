# quotesync/services/constants.py
"""
Centralized constants for the quotesync services.

Values that operators may want to tune live in quotesync.config.Settings;
this module keeps the fixed ones (precisions, markers, provider limits).

Usage:
    from quotesync.services.constants import (
        CASH_SYMBOL_PREFIX,
        FX_RATE_PRECISION,
        REPOSITORY_SAVE_PHASE,
    )
"""

from decimal import Decimal


# =============================================================================
# SYMBOL MARKERS
# =============================================================================

# Cash account pseudo-symbols, e.g. "$CASH-USD". Never normalized or synced.
CASH_SYMBOL_PREFIX: str = "$CASH-"

# FX pair symbols contain this marker, e.g. "EURUSD=X"
FX_PAIR_MARKER: str = "="

# Suffix of FX pair assets registered for managed currencies
FX_SYMBOL_SUFFIX: str = "=X"


# =============================================================================
# SYNC SETTINGS
# =============================================================================

# Failure key used when the single bulk save of a sync run fails
REPOSITORY_SAVE_PHASE: str = "repository_save"

# Trailing window (days) used when latest_quote falls back to history
LATEST_QUOTE_FALLBACK_DAYS: int = 30


# =============================================================================
# DECIMAL PRECISION CONSTANTS
# =============================================================================

# Provider prices: 8 decimal places (matches the quotes table)
PRICE_PRECISION: Decimal = Decimal("0.00000001")

# Cross rates: 12 decimal places
FX_RATE_PRECISION: Decimal = Decimal("0.000000000001")

# MPF overlay precisions
MPF_NAV_PRECISION: Decimal = Decimal("0.000001")
MPF_SUBFUND_VALUE_PRECISION: Decimal = Decimal("0.0001")
CURRENCY_PRECISION: Decimal = Decimal("0.01")


# =============================================================================
# EXTERNAL API SETTINGS
# =============================================================================

# Rate limit friendly batching for bulk history fetches
EASTMONEY_BULK_BATCH_SIZE: int = 5
EASTMONEY_BULK_PAUSE_SECONDS: float = 0.25

TIANTIAN_BULK_BATCH_SIZE: int = 5
TIANTIAN_BULK_PAUSE_SECONDS: float = 0.2

# Tiantian NAV history paging
TIANTIAN_PAGE_SIZE: int = 200
TIANTIAN_MAX_PAGES: int = 60
TIANTIAN_PAGE_PAUSE_SECONDS: float = 0.12

# Yahoo is called one symbol at a time; small batches keep bursts bounded
YAHOO_BULK_BATCH_SIZE: int = 5
YAHOO_BULK_PAUSE_SECONDS: float = 0.0
