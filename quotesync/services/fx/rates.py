# quotesync/services/fx/rates.py
"""
Cross-rate computation and managed currency pair maintenance.

=============================================================================
RATE CONVENTION
=============================================================================

A rate snapshot maps currency -> units of that currency per 1 unit of the
snapshot base (Open Exchange Rates "latest.json" convention):

    {"USD": 1.0, "HKD": 7.8, "CNY": 7.2}     (base USD)

The cross rate from A to B ("1 A = X B") is therefore rates[B] / rates[A]:

    HKD -> CNY = 7.2 / 7.8 = 0.923076923077

Stored exchange rates use the same direction: 1 from_currency = rate
to_currency.

=============================================================================

Managed currencies are every account or asset currency that differs from
the base currency. Each gets a FROM/BASE pair registered, and on an Open
Exchange Rates sync a rate for that pair.
"""

import logging
from collections.abc import Iterable
from decimal import Decimal

from quotesync.models import DataSource
from quotesync.services.constants import FX_RATE_PRECISION
from quotesync.services.exceptions import FXConversionError
from quotesync.services.protocols import FXRateServiceProtocol

logger = logging.getLogger(__name__)


def normalize_currency(value: str | None) -> str | None:
    """Three ASCII letters after trim/uppercase, else None."""
    if value is None:
        return None
    normalized = value.strip().upper()
    if len(normalized) == 3 and normalized.isascii() and normalized.isalpha():
        return normalized
    return None


def compute_cross_rate(rates: dict[str, Decimal], from_currency: str, to_currency: str) -> Decimal:
    """
    Rate converting one unit of from_currency into to_currency.

    Returns exactly Decimal(1) for the same currency, regardless of the
    snapshot.

    Raises:
        FXConversionError: from rate missing or zero, or to rate missing
    """
    from_code = from_currency.strip().upper()
    to_code = to_currency.strip().upper()

    if from_code == to_code:
        return Decimal(1)

    from_rate = rates.get(from_code)
    if from_rate is None:
        raise FXConversionError(f"missing rate for currency {from_code}", from_code, to_code)
    if from_rate == 0:
        raise FXConversionError(f"zero rate for currency {from_code}", from_code, to_code)

    to_rate = rates.get(to_code)
    if to_rate is None:
        raise FXConversionError(f"missing rate for currency {to_code}", from_code, to_code)

    return (Decimal(to_rate) / Decimal(from_rate)).quantize(FX_RATE_PRECISION)


def build_managed_currency_set(
        base_currency: str,
        account_currencies: Iterable[str],
        asset_currencies: Iterable[str],
) -> set[str]:
    """
    Valid currencies other than the base. Empty if the base itself is invalid.
    """
    base = normalize_currency(base_currency)
    if base is None:
        return set()

    managed = set()
    for currency in [*account_currencies, *asset_currencies]:
        normalized = normalize_currency(currency)
        if normalized is not None and normalized != base:
            managed.add(normalized)
    return managed


def ensure_registered_pairs(
        fx_service: FXRateServiceProtocol,
        base_currency: str,
        managed_currencies: set[str],
) -> None:
    """Register CURRENCY/BASE for each managed currency. Failures are logged."""
    for currency in sorted(managed_currencies):
        try:
            fx_service.register_currency_pair(currency, base_currency)
        except Exception as e:
            logger.warning(f"Failed to auto-register exchange pair {currency}/{base_currency}: {e}")


def upsert_open_exchange_rates(
        fx_service: FXRateServiceProtocol,
        base_currency: str,
        managed_currencies: set[str],
        latest_rates: dict[str, Decimal],
) -> int:
    """
    Store CURRENCY/BASE rates derived from an Open Exchange Rates snapshot.

    Pairs that cannot be computed or stored are skipped with a warning.

    Returns:
        Number of rates stored
    """
    updated = 0
    for currency in sorted(managed_currencies):
        try:
            rate = compute_cross_rate(latest_rates, currency, base_currency)
        except FXConversionError as e:
            logger.warning(f"Skipping Open Exchange Rates update for {currency}/{base_currency}: {e}")
            continue

        try:
            fx_service.add_exchange_rate(
                currency,
                base_currency,
                rate,
                DataSource.OPEN_EXCHANGE_RATES.value,
            )
        except Exception as e:
            logger.warning(f"Failed to persist Open Exchange Rates quote for {currency}/{base_currency}: {e}")
            continue
        updated += 1

    return updated
