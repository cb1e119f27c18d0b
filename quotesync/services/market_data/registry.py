# quotesync/services/market_data/registry.py
"""
Provider registry: the configured, prioritized set of market data providers.

A ProviderRegistry is an immutable value. It is built from provider settings
(id, priority, enabled) plus a secret store, and never mutated afterwards.
When settings change, a new registry is built off to the side and swapped
into the SharedProviderRegistry under an exclusive lock:

    shared = SharedProviderRegistry(ProviderRegistry.from_settings(rows, secrets))

    with shared.read() as registry:          # many concurrent readers
        quotes = registry.historical_quotes_bulk(pairs, start, end)

    shared.replace(ProviderRegistry.from_settings(new_rows, secrets))

Routing for a symbol:
    1. explicit data source, if registered
    2. source inferred from the symbol (symbol_normalizer.infer_source), if registered
    3. first provider (by priority) whose supports_symbol() is true

An empty registry is "manual-only" mode: every lookup fails, every bulk
symbol is reported as a failure.
"""

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from quotesync.models import DataSource
from quotesync.services.exceptions import MarketDataError, UnsupportedSymbolError
from quotesync.services.market_data.base import (
    AssetProfile,
    BulkFailure,
    BulkQuotesResult,
    MarketDataProvider,
    Quote,
    QuoteSummary,
)
from quotesync.services.market_data.eastmoney_cn import EastMoneyCnProvider
from quotesync.services.market_data.tiantian_fund import TiantianFundProvider
from quotesync.services.market_data.yahoo import YahooFinanceProvider
from quotesync.services.protocols import SecretStoreProtocol
from quotesync.services.symbol_normalizer import infer_source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSetting:
    """Stored provider configuration row."""

    id: str
    name: str
    priority: int
    enabled: bool
    updated_at: datetime | None = None


# =============================================================================
# PROVIDER FACTORY
# =============================================================================

# Provider id -> constructor taking (priority, secret_store)
ProviderFactory = Callable[[int, SecretStoreProtocol | None], MarketDataProvider]

PROVIDER_FACTORIES: dict[str, ProviderFactory] = {
    DataSource.YAHOO.value: lambda priority, _secrets: YahooFinanceProvider(priority=priority),
    DataSource.EASTMONEY_CN.value: lambda priority, _secrets: EastMoneyCnProvider(priority=priority),
    DataSource.TIANTIAN_FUND.value: lambda priority, _secrets: TiantianFundProvider(priority=priority),
}

# Ids that are valid settings rows but never quote providers
NON_QUOTE_PROVIDER_IDS = {
    DataSource.MANUAL.value,
    DataSource.OPEN_EXCHANGE_RATES.value,
}


def build_provider(
        setting: ProviderSetting,
        secret_store: SecretStoreProtocol | None = None,
) -> MarketDataProvider | None:
    """
    Construct the provider for one settings row.

    Returns None for disabled rows and ids that are not quote providers.
    Construction errors propagate; ProviderRegistry.from_settings() catches
    them per provider.
    """
    provider_id = setting.id.strip().upper()
    if not setting.enabled:
        logger.debug(f"Provider '{provider_id}' is disabled, skipping")
        return None
    if provider_id in NON_QUOTE_PROVIDER_IDS:
        return None

    factory = PROVIDER_FACTORIES.get(provider_id)
    if factory is None:
        logger.warning(f"Unknown market data provider '{provider_id}' in settings, skipping")
        return None

    return factory(setting.priority, secret_store)


# =============================================================================
# REGISTRY
# =============================================================================

class ProviderRegistry:
    """
    Keyed, priority-ordered collection of providers.

    Providers are stateless apart from their HTTP clients, so one registry
    can serve many concurrent readers.
    """

    def __init__(self, providers: list[MarketDataProvider] | None = None) -> None:
        ordered = sorted(providers or [], key=lambda p: p.priority)
        self._providers: list[MarketDataProvider] = ordered
        self._by_id: dict[str, MarketDataProvider] = {p.id: p for p in ordered}

    @classmethod
    def from_settings(
            cls,
            provider_settings: list[ProviderSetting],
            secret_store: SecretStoreProtocol | None = None,
    ) -> "ProviderRegistry":
        """
        Build a registry, excluding any provider that fails to initialize.

        Never raises for a single provider; if nothing can be built the
        registry is empty (manual-only).
        """
        providers = []
        for setting in provider_settings:
            try:
                provider = build_provider(setting, secret_store)
            except Exception as e:
                logger.error(f"Failed to initialize market data provider '{setting.id}': {e}")
                continue
            if provider is not None:
                providers.append(provider)

        registry = cls(providers)
        if registry.is_empty:
            logger.warning("No market data providers available; running in manual-only mode")
        else:
            logger.info(f"Provider registry built: {registry.provider_ids}")
        return registry

    @property
    def provider_ids(self) -> list[str]:
        return [p.id for p in self._providers]

    @property
    def is_empty(self) -> bool:
        return not self._providers

    def get(self, provider_id: str) -> MarketDataProvider | None:
        return self._by_id.get(provider_id.strip().upper())

    def close(self) -> None:
        for provider in self._providers:
            try:
                provider.close()
            except Exception as e:
                logger.warning(f"Error closing provider {provider.id}: {e}")

    # =========================================================================
    # ROUTING
    # =========================================================================

    def route(self, symbol: str, data_source: str | None = None) -> MarketDataProvider | None:
        """Provider responsible for the symbol, or None if nothing can serve it."""
        if data_source:
            provider = self._by_id.get(data_source.strip().upper())
            if provider is not None and provider.supports_symbol(symbol):
                return provider

        inferred = infer_source(symbol)
        if inferred:
            provider = self._by_id.get(inferred)
            if provider is not None:
                return provider

        for provider in self._providers:
            if provider.supports_symbol(symbol):
                return provider
        return None

    def _require_route(self, symbol: str, data_source: str | None = None) -> MarketDataProvider:
        provider = self.route(symbol, data_source)
        if provider is None:
            raise UnsupportedSymbolError(symbol=symbol, provider="any registered provider")
        return provider

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    def search(self, query: str) -> list[QuoteSummary]:
        """
        Hits from the first provider (by priority) that returns any.

        A failing provider is logged and the next one is tried. If every
        provider fails, the last error is raised.
        """
        last_error: MarketDataError | None = None
        any_succeeded = False
        for provider in self._providers:
            try:
                hits = provider.search(query)
            except MarketDataError as e:
                logger.warning(f"Search via {provider.id} failed for '{query}': {e}")
                last_error = e
                continue
            any_succeeded = True
            if hits:
                return hits

        if last_error is not None and not any_succeeded:
            raise last_error
        return []

    def get_asset_profile(self, symbol: str, data_source: str | None = None) -> AssetProfile:
        return self._require_route(symbol, data_source).get_asset_profile(symbol)

    def latest_quote(
            self,
            symbol: str,
            fallback_currency: str = "",
            data_source: str | None = None,
    ) -> Quote:
        return self._require_route(symbol, data_source).latest_quote(symbol, fallback_currency)

    def historical_quotes(
            self,
            symbol: str,
            start: datetime,
            end: datetime,
            fallback_currency: str = "",
            data_source: str | None = None,
    ) -> list[Quote]:
        provider = self._require_route(symbol, data_source)
        return provider.historical_quotes(symbol, start, end, fallback_currency)

    def historical_quotes_bulk(
            self,
            symbols_with_currencies: list[tuple[str, str]],
            start: datetime,
            end: datetime,
            data_sources: dict[str, str] | None = None,
    ) -> BulkQuotesResult:
        """
        Route each symbol, then run one bulk call per provider.

        `data_sources` maps a symbol to its configured source, which takes
        precedence over inference. Providers are called in priority order.
        Symbols no provider serves are reported as failures.
        """
        data_sources = data_sources or {}
        result = BulkQuotesResult()
        groups: dict[str, list[tuple[str, str]]] = {}

        for symbol, currency in symbols_with_currencies:
            provider = self.route(symbol, data_sources.get(symbol))
            if provider is None:
                result.failures.append(BulkFailure(
                    symbol=symbol,
                    currency=currency,
                    reason=f"No market data provider available for symbol '{symbol}'",
                ))
                continue
            groups.setdefault(provider.id, []).append((symbol, currency))

        for provider in self._providers:
            group = groups.get(provider.id)
            if not group:
                continue
            logger.debug(f"Bulk fetching {len(group)} symbols from {provider.id}")
            result.extend(provider.historical_quotes_bulk(group, start, end))

        return result


# =============================================================================
# SHARED HANDLE
# =============================================================================

class ReadWriteLock:
    """
    Writer-preferring reader-writer lock.

    Any number of readers may hold the lock together. A waiting writer
    blocks new readers, so a steady stream of readers cannot starve it.
    Not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer_active or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer_active or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer_active = True

    def release_write(self) -> None:
        with self._cond:
            self._writer_active = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class SharedProviderRegistry:
    """
    Hot-swappable handle to the current ProviderRegistry.

    Readers hold the read lock for the whole operation, so a replace()
    waits until in-flight readers finish and the old registry's HTTP
    clients can be closed safely afterwards.
    """

    def __init__(self, registry: ProviderRegistry | None = None) -> None:
        self._registry = registry or ProviderRegistry()
        self._lock = ReadWriteLock()

    @contextmanager
    def read(self) -> Iterator[ProviderRegistry]:
        with self._lock.read_locked():
            yield self._registry

    def replace(self, new_registry: ProviderRegistry) -> None:
        """Swap in a fully built registry. Performs no I/O under the lock."""
        with self._lock.write_locked():
            old_registry = self._registry
            self._registry = new_registry

        if old_registry is not new_registry:
            old_registry.close()
        logger.info(f"Provider registry replaced: {new_registry.provider_ids}")
