# quotesync/services/fx/service.py
"""
FX Rate Service for managed currency pairs and stored exchange rates.

This service handles:
- Registering FX pair assets ("HKDUSD=X") for managed currencies
- Storing rates in the exchange_rates table (one per pair per day)
- Reading the latest stored rate for a pair
- Syncing managed pairs from Open Exchange Rates

Convention: 1 from_currency = rate to_currency (see fx.rates).

Design Principles:
- No HTTP Knowledge: Raises domain exceptions
- Financial Precision: Uses Decimal for all rates
- Storage through repository protocols only

Usage:
    service = FXRateService(asset_repository, rate_repository, secret_store)

    service.register_currency_pair("HKD", "USD")
    service.add_exchange_rate("HKD", "USD", Decimal("0.128205"), "MANUAL")
    rate = service.get_latest_rate("HKD", "USD")

    stored = service.sync_open_exchange_rates()
"""

import logging
from collections.abc import Callable
from datetime import date
from decimal import Decimal

from quotesync.config import settings
from quotesync.models import Asset, DataSource, ExchangeRate, FOREX_ASSET_TYPE
from quotesync.services.constants import FX_SYMBOL_SUFFIX
from quotesync.services.exceptions import (
    FXProviderError,
    FXRateNotFoundError,
    MarketDataError,
    ValidationError,
)
from quotesync.services.fx.open_exchange_rates import OpenExchangeRatesClient
from quotesync.services.fx.rates import (
    build_managed_currency_set,
    ensure_registered_pairs,
    normalize_currency,
    upsert_open_exchange_rates,
)
from quotesync.services.protocols import (
    AssetRepositoryProtocol,
    ExchangeRateRepositoryProtocol,
    SecretStoreProtocol,
)
from quotesync.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


def fx_pair_symbol(from_currency: str, to_currency: str) -> str:
    return f"{from_currency}{to_currency}{FX_SYMBOL_SUFFIX}"


class FXRateService:
    """
    Service for managed currency pairs and their exchange rates.

    Example:
        service = FXRateService(asset_repository, rate_repository, secret_store)
        count = service.sync_open_exchange_rates(base_currency="USD")
        print(f"Stored {count} rates")
    """

    def __init__(
            self,
            asset_repository: AssetRepositoryProtocol,
            rate_repository: ExchangeRateRepositoryProtocol,
            secret_store: SecretStoreProtocol | None = None,
            client_factory: Callable[[str | None], OpenExchangeRatesClient] = OpenExchangeRatesClient,
    ) -> None:
        self._asset_repository = asset_repository
        self._rate_repository = rate_repository
        self._secret_store = secret_store
        self._client_factory = client_factory

    # =========================================================================
    # PAIRS AND RATES
    # =========================================================================

    def register_currency_pair(self, from_currency: str, to_currency: str) -> Asset:
        """
        Ensure the FX asset for FROM/TO exists.

        The asset is MANUAL when rates come from Open Exchange Rates (never
        synced as a quote), otherwise YAHOO ("FROMTO=X" is a Yahoo symbol).

        Raises:
            ValidationError: Invalid or identical currency codes
        """
        from_code, to_code = self._validate_pair(from_currency, to_currency)
        symbol = fx_pair_symbol(from_code, to_code)

        existing = self._asset_repository.get_by_symbol(symbol)
        if existing is not None:
            return existing

        data_source = (
            DataSource.MANUAL.value
            if settings.exchange_rate_provider == DataSource.OPEN_EXCHANGE_RATES.value
            else DataSource.YAHOO.value
        )
        logger.info(f"Registering currency pair {from_code}/{to_code} as {symbol} ({data_source})")
        return self._asset_repository.create_asset(
            symbol=symbol,
            name=f"{from_code}/{to_code}",
            asset_type=FOREX_ASSET_TYPE,
            currency=to_code,
            data_source=data_source,
        )

    def add_exchange_rate(
            self,
            from_currency: str,
            to_currency: str,
            rate: Decimal,
            source: str,
            rate_date: date | None = None,
    ) -> ExchangeRate:
        """Upsert the pair's rate for the day (today UTC by default)."""
        from_code, to_code = self._validate_pair(from_currency, to_currency)
        if rate <= 0:
            raise ValidationError(f"Exchange rate must be positive, got {rate}", field="rate")

        return self._rate_repository.upsert_rate(
            from_code,
            to_code,
            rate_date or utc_now().date(),
            rate,
            source,
        )

    def get_latest_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """
        Latest stored rate for the pair. Same currency is always 1.

        Raises:
            FXRateNotFoundError: Nothing stored for the pair
        """
        from_code = from_currency.strip().upper()
        to_code = to_currency.strip().upper()
        if from_code == to_code:
            return Decimal(1)

        record = self._rate_repository.get_latest_rate(from_code, to_code)
        if record is None:
            raise FXRateNotFoundError(from_code, to_code)
        return record.rate

    # =========================================================================
    # OPEN EXCHANGE RATES SYNC
    # =========================================================================

    def sync_open_exchange_rates(
            self,
            base_currency: str | None = None,
            account_currencies: list[str] | None = None,
    ) -> int:
        """
        Refresh every managed CURRENCY/BASE pair from Open Exchange Rates.

        Managed currencies come from account currencies plus the currencies
        of all tracked assets. Pairs are auto-registered when enabled in
        settings.

        Returns:
            Number of rates stored

        Raises:
            ValidationError: No API key configured
            FXProviderError: Open Exchange Rates request failed
        """
        base = normalize_currency(base_currency or settings.base_currency)
        if base is None:
            raise ValidationError(f"Invalid base currency: {base_currency!r}", field="base_currency")

        accounts = account_currencies if account_currencies is not None else settings.account_currencies
        asset_currencies = [
            asset.currency
            for asset in self._asset_repository.list_assets()
            if asset.asset_type != FOREX_ASSET_TYPE
        ]
        managed = build_managed_currency_set(base, accounts, asset_currencies)
        if not managed:
            logger.info(f"No managed currencies besides {base}; nothing to sync")
            return 0

        if settings.handle_exchange_automatically:
            ensure_registered_pairs(self, base, managed)

        api_key = None
        if self._secret_store is not None:
            api_key = self._secret_store.get_secret(DataSource.OPEN_EXCHANGE_RATES.value)

        try:
            latest_rates = self._client_factory(api_key).fetch_latest_rates()
        except MarketDataError as e:
            raise FXProviderError(DataSource.OPEN_EXCHANGE_RATES.value, str(e)) from e

        stored = upsert_open_exchange_rates(self, base, managed, latest_rates)
        logger.info(f"Open Exchange Rates sync stored {stored}/{len(managed)} rates against {base}")
        return stored

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    @staticmethod
    def _validate_pair(from_currency: str, to_currency: str) -> tuple[str, str]:
        from_code = normalize_currency(from_currency)
        to_code = normalize_currency(to_currency)
        if from_code is None:
            raise ValidationError(f"Invalid currency code: {from_currency!r}", field="from_currency")
        if to_code is None:
            raise ValidationError(f"Invalid currency code: {to_currency!r}", field="to_currency")
        if from_code == to_code:
            raise ValidationError(f"Currency pair needs two different currencies: {from_code}", field="to_currency")
        return from_code, to_code
