# quotesync/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- The SQLAlchemy repositories satisfy these without inheritance
- Test mocks work without explicit inheritance
- The sync engine never imports a storage technology
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from quotesync.models import Asset, ExchangeRate
    from quotesync.schemas.market_data import AssetProfileUpdate
    from quotesync.services.market_data.base import Quote
    from quotesync.services.market_data.registry import ProviderSetting


class MarketDataRepositoryProtocol(Protocol):
    """Quote storage and provider settings used by MarketDataSyncService."""

    def get_latest_quotes_for_symbols(self, symbols: list[str]) -> dict[str, Quote]:
        ...

    def get_latest_quote_for_symbol(self, symbol: str) -> Quote:
        """Raises NotFoundError when the symbol has no stored quote."""
        ...

    def get_historical_quotes_for_symbols_in_range(
        self,
        symbols: set[str],
        start_date: date,
        end_date: date,
    ) -> list[Quote]:
        ...

    def get_all_historical_quotes_for_symbols_by_source(
        self,
        symbols: set[str],
        data_source: str,
    ) -> list[Quote]:
        ...

    def quote_exists(self, symbol: str, quote_date: date) -> bool:
        ...

    def save_quotes(self, quotes: list[Quote]) -> int:
        """Upsert on (symbol, day, data_source). Returns rows written."""
        ...

    def get_latest_sync_dates_by_source(self) -> dict[str, datetime | None]:
        ...

    def get_all_providers(self) -> list[ProviderSetting]:
        ...

    def update_provider_settings(
        self,
        provider_id: str,
        priority: int,
        enabled: bool,
    ) -> ProviderSetting:
        ...


class AssetRepositoryProtocol(Protocol):
    """Asset lookups and the narrow updates the sync engine performs."""

    def list_assets(self) -> list[Asset]:
        ...

    def list_by_symbols(self, symbols: list[str]) -> list[Asset]:
        ...

    def get_by_symbol(self, symbol: str) -> Asset | None:
        ...

    def create_asset(
        self,
        symbol: str,
        name: str | None,
        asset_type: str | None,
        currency: str,
        data_source: str,
    ) -> Asset:
        ...

    def update_data_source(self, symbol: str, data_source: str) -> Asset:
        ...

    def update_profile(self, symbol: str, changes: AssetProfileUpdate) -> Asset:
        ...


class ExchangeRateRepositoryProtocol(Protocol):
    """Directional exchange rate storage."""

    def upsert_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate_date: date,
        rate: Decimal,
        source: str,
    ) -> ExchangeRate:
        ...

    def get_latest_rate(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        ...


class SecretStoreProtocol(Protocol):
    """API key storage keyed by provider id."""

    def get_secret(self, key: str) -> str | None:
        ...

    def set_secret(self, key: str, value: str) -> None:
        ...

    def delete_secret(self, key: str) -> None:
        ...


class FXRateServiceProtocol(Protocol):
    """Interface required by the currency rate helpers."""

    def register_currency_pair(self, from_currency: str, to_currency: str) -> Asset:
        ...

    def add_exchange_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Decimal,
        source: str,
        rate_date: date | None = None,
    ) -> ExchangeRate:
        ...
