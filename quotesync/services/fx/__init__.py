# quotesync/services/fx/__init__.py
"""
Currency rates: cross-rate computation, Open Exchange Rates client and the
FX rate service.

Usage:
    from quotesync.services.fx import FXRateService, compute_cross_rate
"""

from quotesync.services.fx.open_exchange_rates import OpenExchangeRatesClient
from quotesync.services.fx.rates import (
    build_managed_currency_set,
    compute_cross_rate,
    ensure_registered_pairs,
    normalize_currency,
    upsert_open_exchange_rates,
)
from quotesync.services.fx.service import FXRateService, fx_pair_symbol

__all__ = [
    "FXRateService",
    "OpenExchangeRatesClient",
    "build_managed_currency_set",
    "compute_cross_rate",
    "ensure_registered_pairs",
    "fx_pair_symbol",
    "normalize_currency",
    "upsert_open_exchange_rates",
]
