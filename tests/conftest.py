# tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Mock provider and in-memory repositories
- Sample data factories
"""

import os

os.environ["ENVIRONMENT"] = "test"

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from quotesync.models import Asset, Base, DataSource
from quotesync.services.exceptions import NoDataError, NotFoundError
from quotesync.services.market_data.base import AssetProfile, MarketDataProvider, Quote
from quotesync.services.market_data.registry import ProviderSetting
from quotesync.utils.date_utils import start_of_day, utc_now


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# FACTORIES
# =============================================================================

def make_quote(
        symbol: str,
        day: date,
        close: str | Decimal = "100",
        data_source: str = DataSource.YAHOO.value,
        currency: str = "USD",
        timestamp: datetime | None = None,
) -> Quote:
    """Build a quote with open/high/low equal to close."""
    price = Decimal(close)
    return Quote(
        symbol=symbol,
        timestamp=timestamp or start_of_day(day),
        open=price,
        high=price,
        low=price,
        close=price,
        adjclose=price,
        volume=Decimal(0),
        currency=currency,
        data_source=data_source,
    )


def create_asset(
        db: Session,
        symbol: str = "AAPL",
        name: str | None = "Apple Inc.",
        currency: str = "USD",
        data_source: str = DataSource.YAHOO.value,
        asset_type: str | None = "EQUITY",
        **kwargs,
) -> Asset:
    """Create and persist an asset."""
    asset = Asset(
        symbol=symbol,
        name=name,
        currency=currency,
        data_source=data_source,
        asset_type=asset_type,
        **kwargs,
    )
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


def build_asset(
        symbol: str = "AAPL",
        name: str | None = "Apple Inc.",
        currency: str = "USD",
        data_source: str = DataSource.YAHOO.value,
        asset_type: str | None = "EQUITY",
        asset_id: int = 1,
        **kwargs,
) -> Asset:
    """Transient asset for tests that never touch the database."""
    return Asset(
        id=asset_id,
        symbol=symbol,
        name=name,
        currency=currency,
        data_source=data_source,
        asset_type=asset_type,
        **kwargs,
    )


# =============================================================================
# MOCK MARKET DATA PROVIDER
# =============================================================================

class MockMarketDataProvider(MarketDataProvider):
    """
    Mock implementation of MarketDataProvider for testing.

    Serves configured daily quotes per symbol and can simulate errors.
    Symbols are supported when `supports` accepts them, else when they
    match `supported_suffix` (all symbols when both are None).
    """

    MAX_RETRY_ATTEMPTS = 1
    RETRY_MIN_WAIT = 0
    RETRY_MAX_WAIT = 0
    BULK_BATCH_PAUSE_SECONDS = 0.0

    def __init__(
            self,
            provider_id: str = "MOCK",
            priority: int = 1,
            supported_suffix: str | None = None,
            supports: Callable[[str], bool] | None = None,
    ):
        self._id = provider_id
        self._priority = priority
        self._supported_suffix = supported_suffix
        self._supports = supports
        self._history: dict[str, list[Quote]] = {}
        self._latest: dict[str, Quote] = {}
        self._errors: dict[str, Exception] = {}
        self._latest_errors: dict[str, Exception] = {}
        self._profiles: dict[str, AssetProfile] = {}
        self.history_calls: list[tuple[str, datetime, datetime]] = []
        self.closed = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def priority(self) -> int:
        return self._priority

    def supports_symbol(self, symbol: str) -> bool:
        if self._supports is not None:
            return self._supports(symbol)
        if self._supported_suffix is None:
            return True
        return symbol.upper().endswith(self._supported_suffix)

    def add_history(self, symbol: str, quotes: list[Quote]) -> None:
        self._history.setdefault(symbol, []).extend(quotes)

    def add_latest(self, symbol: str, quote: Quote) -> None:
        self._latest[symbol] = quote

    def add_error(self, symbol: str, error: Exception) -> None:
        """Configure an error for historical fetches of a symbol."""
        self._errors[symbol] = error

    def add_latest_error(self, symbol: str, error: Exception) -> None:
        self._latest_errors[symbol] = error

    def add_profile(self, profile: AssetProfile) -> None:
        self._profiles[profile.symbol] = profile

    def _fetch_latest_quote(self, symbol: str, currency: str) -> Quote:
        if symbol in self._latest_errors:
            raise self._latest_errors[symbol]
        if symbol not in self._latest:
            raise NoDataError(symbol=symbol, provider=self.id)
        return self._latest[symbol]

    def _fetch_historical_quotes(
            self,
            symbol: str,
            start: datetime,
            end: datetime,
            currency: str,
    ) -> list[Quote]:
        self.history_calls.append((symbol, start, end))
        if symbol in self._errors:
            raise self._errors[symbol]

        quotes = [q for q in self._history.get(symbol, []) if start <= q.timestamp <= end]
        if not quotes:
            raise NoDataError(symbol=symbol, provider=self.id)
        return quotes

    def get_asset_profile(self, symbol: str) -> AssetProfile:
        self._ensure_supported(symbol)
        if symbol not in self._profiles:
            return super().get_asset_profile(symbol)
        return self._profiles[symbol]

    def close(self) -> None:
        self.closed = True


# =============================================================================
# IN-MEMORY REPOSITORIES
# =============================================================================

class InMemoryMarketDataRepository:
    """Dict-backed MarketDataRepositoryProtocol implementation."""

    def __init__(self, provider_settings: list[ProviderSetting] | None = None):
        self.quotes: dict[tuple[str, date, str], Quote] = {}
        self.providers: dict[str, ProviderSetting] = {
            s.id: s for s in (provider_settings or [])
        }
        self.save_calls = 0

    def add(self, *quotes: Quote) -> None:
        for quote in quotes:
            self.quotes[(quote.symbol, quote.day, quote.data_source)] = quote

    def get_latest_quotes_for_symbols(self, symbols: list[str]) -> dict[str, Quote]:
        latest: dict[str, Quote] = {}
        for quote in sorted(self.quotes.values(), key=lambda q: q.timestamp):
            if quote.symbol in symbols:
                latest[quote.symbol] = quote
        return latest

    def get_latest_quote_for_symbol(self, symbol: str) -> Quote:
        latest = self.get_latest_quotes_for_symbols([symbol])
        if symbol not in latest:
            raise NotFoundError(f"No quote found for symbol '{symbol}'")
        return latest[symbol]

    def get_historical_quotes_for_symbols_in_range(
            self,
            symbols: set[str],
            start_date: date,
            end_date: date,
    ) -> list[Quote]:
        return sorted(
            (q for q in self.quotes.values() if q.symbol in symbols and start_date <= q.day <= end_date),
            key=lambda q: (q.day, q.symbol),
        )

    def get_all_historical_quotes_for_symbols_by_source(self, symbols: set[str], data_source: str) -> list[Quote]:
        return sorted(
            (q for q in self.quotes.values() if q.symbol in symbols and q.data_source == data_source),
            key=lambda q: (q.day, q.symbol),
        )

    def quote_exists(self, symbol: str, quote_date: date) -> bool:
        return any(q.symbol == symbol and q.day == quote_date for q in self.quotes.values())

    def save_quotes(self, quotes: list[Quote]) -> int:
        self.save_calls += 1
        self.add(*quotes)
        return len({(q.symbol, q.day, q.data_source) for q in quotes})

    def get_latest_sync_dates_by_source(self) -> dict[str, datetime | None]:
        result: dict[str, datetime | None] = {}
        for quote in self.quotes.values():
            current = result.get(quote.data_source)
            if current is None or quote.created_at > current:
                result[quote.data_source] = quote.created_at
        return result

    def get_all_providers(self) -> list[ProviderSetting]:
        return sorted(self.providers.values(), key=lambda s: (s.priority, s.id))

    def update_provider_settings(self, provider_id: str, priority: int, enabled: bool) -> ProviderSetting:
        if provider_id not in self.providers:
            raise NotFoundError(f"Market data provider '{provider_id}' not found")
        current = self.providers[provider_id]
        updated = ProviderSetting(id=current.id, name=current.name, priority=priority, enabled=enabled)
        self.providers[provider_id] = updated
        return updated


def days_ago(days: int) -> date:
    """UTC calendar day `days` before today."""
    return utc_now().date() - timedelta(days=days)
