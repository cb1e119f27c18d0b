# quotesync/services/market_data/sync_service.py
"""
Market Data Sync Service for orchestrating quote synchronization.

This service handles:
- Turning tracked assets into quote requests (source correction, name backfill)
- Planning incremental fetch windows per symbol
- Fetching quotes through the provider registry, grouped by start date
- Persisting everything in one bulk upsert
- Applying MPF unit prices after every run
- Reading stored quotes back as gap-free daily series
- Provider settings management and registry hot reload

Design Principles:
- Dependency Injection: Repositories and secret store injected via constructor
- No HTTP Knowledge: Raises domain exceptions
- Partial Success: Per-symbol failures are returned, never raised
- Idempotent: Safe to call multiple times (incremental sync, upsert on save)

Usage:
    from quotesync.services.market_data import MarketDataSyncService

    service = MarketDataSyncService(repository, asset_repository, secret_store)

    outcome = service.sync_market_data()
    for symbol, reason in outcome.failures:
        print(f"{symbol}: {reason}")

    # Force a full re-download for some symbols
    outcome = service.resync_market_data(["AAPL", "600519.SH"])
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

from pydantic import ValidationError as SchemaValidationError

from quotesync.config import settings
from quotesync.models import Asset, CASH_ASSET_TYPE, DataSource
from quotesync.schemas.market_data import AssetProfileUpdate, ProviderInfo, ProviderSettingUpdate
from quotesync.services.constants import REPOSITORY_SAVE_PHASE
from quotesync.services.exceptions import ValidationError
from quotesync.services.fx.open_exchange_rates import OpenExchangeRatesClient
from quotesync.services.market_data.base import AssetProfile, Quote, QuoteRequest, QuoteSummary
from quotesync.services.market_data.continuity import fill_missing_quotes
from quotesync.services.market_data.mpf_overlay import MpfUnitPriceOverlay, contains_cjk
from quotesync.services.market_data.registry import (
    NON_QUOTE_PROVIDER_IDS,
    ProviderRegistry,
    ProviderSetting,
    SharedProviderRegistry,
)
from quotesync.services.market_data.sync_planner import calculate_sync_plan, group_plan_by_start
from quotesync.services.protocols import (
    AssetRepositoryProtocol,
    MarketDataRepositoryProtocol,
    SecretStoreProtocol,
)
from quotesync.services.symbol_normalizer import infer_source
from quotesync.utils.context import correlation_scope
from quotesync.utils.date_utils import end_of_day, start_of_day, utc_now

logger = logging.getLogger(__name__)

# Sources whose provider profile carries a better display name than the symbol
NAME_BACKFILL_SOURCES = {
    DataSource.EASTMONEY_CN.value,
    DataSource.TIANTIAN_FUND.value,
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class SyncOutcome:
    """
    Result of one sync run.

    Attributes:
        failures: (symbol, reason) pairs; a save failure is reported as
            ("repository_save", reason)
        quotes_saved: Rows written by the bulk upsert
        mpf_assets_updated: Assets updated by the MPF unit price overlay
    """

    failures: list[tuple[str, str]] = field(default_factory=list)
    quotes_saved: int = 0
    mpf_assets_updated: int = 0

    @property
    def has_failures(self) -> bool:
        return len(self.failures) > 0


# =============================================================================
# ASSET HELPERS
# =============================================================================

def has_placeholder_name(asset: Asset) -> bool:
    """True when the asset has no name, or its name is just its symbol/id."""
    if asset.name is None:
        return True
    trimmed = asset.name.strip()
    return (
        not trimmed
        or trimmed.lower() == str(asset.id).lower()
        or trimmed.lower() == asset.symbol.lower()
    )


def is_cn_a_share_symbol(symbol: str) -> bool:
    normalized = symbol.strip().upper()
    return normalized.endswith(".SH") or normalized.endswith(".SZ")


# =============================================================================
# SERVICE
# =============================================================================

class MarketDataSyncService:
    """
    Orchestrates market data synchronization for all tracked assets.

    Attributes:
        _repository: Quote storage and provider settings
        _asset_repository: Tracked assets
        _secret_store: Provider API keys
        _registry: Hot-swappable provider registry
        _mpf_overlay: MPF unit price overlay (None when disabled)

    Example:
        service = MarketDataSyncService(repository, asset_repository, secret_store)

        # Incremental sync
        outcome = service.sync_market_data()

        # Gap-free daily series for valuation
        quotes = service.get_historical_quotes_for_symbols_in_range(
            {"AAPL", "0700.HK"}, date(2024, 1, 1), date(2024, 12, 31)
        )
    """

    def __init__(
            self,
            repository: MarketDataRepositoryProtocol,
            asset_repository: AssetRepositoryProtocol,
            secret_store: SecretStoreProtocol,
            mpf_overlay: MpfUnitPriceOverlay | None = None,
            registry: ProviderRegistry | None = None,
    ) -> None:
        """
        Initialize the sync service.

        Args:
            repository: Quote repository
            asset_repository: Asset repository
            secret_store: Provider API keys
            mpf_overlay: MPF overlay (defaults to a new one when enabled in settings)
            registry: Provider registry (defaults to one built from stored settings)
        """
        self._repository = repository
        self._asset_repository = asset_repository
        self._secret_store = secret_store

        if registry is None:
            registry = self._build_initial_registry()
        self._registry = SharedProviderRegistry(registry)

        if mpf_overlay is None and settings.mpf_sync_enabled:
            mpf_overlay = MpfUnitPriceOverlay(asset_repository)
        self._mpf_overlay = mpf_overlay

        logger.info(f"MarketDataSyncService initialized (providers={registry.provider_ids})")

    def _build_initial_registry(self) -> ProviderRegistry:
        """Registry from stored settings; any failure degrades to manual-only."""
        try:
            provider_settings = self._repository.get_all_providers()
            return ProviderRegistry.from_settings(provider_settings, self._secret_store)
        except Exception as e:
            logger.warning(f"Provider registry initialization failed: {e}. Falling back to empty registry.")
            return ProviderRegistry()

    # =========================================================================
    # MAIN SYNC METHODS
    # =========================================================================

    def sync_market_data(self) -> SyncOutcome:
        """
        Incremental sync of every tracked asset.

        Raises:
            RepositoryError: Assets could not be listed
        """
        with correlation_scope("sync"):
            logger.info("Syncing market data")
            assets = self._asset_repository.list_assets()
            requests = self.build_quote_requests(assets)
            return self.process_market_data_sync(requests, refetch_all=False)

    def resync_market_data(self, symbols: list[str] | None = None) -> SyncOutcome:
        """
        Re-download the full history window for the given symbols (all
        assets when empty).

        Raises:
            RepositoryError: Assets could not be listed
        """
        with correlation_scope("resync"):
            logger.info(f"Resyncing market data (symbols={symbols or 'all'})")
            if symbols:
                assets = self._asset_repository.list_by_symbols(symbols)
            else:
                assets = self._asset_repository.list_assets()
            requests = self.build_quote_requests(assets)
            return self.process_market_data_sync(requests, refetch_all=True)

    def build_quote_requests(self, assets: list[Asset]) -> list[QuoteRequest]:
        """
        Turn assets into quote requests.

        Cash and MANUAL assets are skipped. The symbol-inferred source wins
        over the stored one and is persisted; if that update fails the stored
        source is used.
        """
        requests = []

        for asset in assets:
            if asset.asset_type == CASH_ASSET_TYPE:
                continue

            effective_source = infer_source(asset.symbol) or asset.data_source
            if effective_source.upper() == DataSource.MANUAL.value:
                continue

            if asset.data_source.upper() != effective_source.upper():
                try:
                    self._asset_repository.update_data_source(asset.symbol, effective_source)
                    logger.debug(f"Auto-corrected data source for asset '{asset.symbol}' to '{effective_source}'")
                except Exception as e:
                    logger.error(
                        f"Failed to auto-correct data source for asset '{asset.symbol}' "
                        f"to '{effective_source}': {e}"
                    )
                    effective_source = asset.data_source

            if effective_source.upper() == DataSource.MANUAL.value:
                continue

            self.maybe_backfill_asset_profile_name(asset, effective_source)

            requests.append(QuoteRequest(
                symbol=asset.symbol,
                data_source=effective_source,
                currency=asset.currency,
            ))

        return requests

    def process_market_data_sync(self, requests: list[QuoteRequest], refetch_all: bool) -> SyncOutcome:
        """
        Fetch and store quotes for the given requests.

        Steps:
        1. Plan a start instant per symbol
        2. Fetch each start-date group through the registry
        3. Save all quotes in one bulk upsert
        4. Run the MPF unit price overlay

        Never raises: provider and save failures are returned in the outcome.
        """
        outcome = SyncOutcome()

        if not requests:
            logger.debug("No syncable assets found. Skipping quote sync.")
            outcome.mpf_assets_updated = self._try_sync_mpf_unit_prices()
            return outcome

        end_time = end_of_day(utc_now().date())
        symbols_with_currencies = [(r.symbol, r.currency) for r in requests]
        data_sources = {r.symbol: r.data_source for r in requests}

        plan = calculate_sync_plan(self._repository, refetch_all, symbols_with_currencies, end_time)
        all_quotes: list[Quote] = []

        if not plan:
            logger.debug("All tracked symbols are already up to date; nothing to fetch")

        for start_time, group in group_plan_by_start(plan):
            symbol_names = [symbol for symbol, _ in group]
            if start_time >= end_time:
                logger.debug(f"Skipping {symbol_names}: start {start_time} >= end {end_time}")
                continue

            try:
                with self._registry.read() as registry:
                    result = registry.historical_quotes_bulk(
                        group, start_time, end_time, data_sources=data_sources
                    )
            except Exception as e:
                logger.error(
                    f"Failed to sync quotes for {symbol_names} starting {start_time.date()}: {e}"
                )
                outcome.failures.extend((symbol, str(e)) for symbol in symbol_names)
                continue

            logger.debug(
                f"Fetched {len(result.quotes)} quotes for {len(symbol_names)} symbols "
                f"(start {start_time.date()})"
            )
            all_quotes.extend(result.quotes)
            outcome.failures.extend((f.symbol, f.reason) for f in result.failures)

        if all_quotes:
            all_quotes.sort(key=lambda q: (q.symbol, q.timestamp, q.data_source))
            try:
                outcome.quotes_saved = self._repository.save_quotes(all_quotes)
                logger.info(f"Saved {outcome.quotes_saved} quotes")
            except Exception as e:
                logger.error(f"Failed to save synced quotes to repository: {e}")
                outcome.failures.append((REPOSITORY_SAVE_PHASE, str(e)))

        outcome.mpf_assets_updated = self._try_sync_mpf_unit_prices()

        if outcome.has_failures:
            logger.warning(f"Market data sync finished with {len(outcome.failures)} failures")
        else:
            logger.info("Market data sync completed")
        return outcome

    # =========================================================================
    # PROFILE BACKFILL
    # =========================================================================

    def maybe_backfill_asset_profile_name(self, asset: Asset, effective_source: str) -> None:
        """
        Replace a placeholder asset name with the provider's name.

        A-shares routed to EastMoney always take the provider's name when it
        is CJK. Lookup and update errors are logged and ignored.
        """
        source = effective_source.upper()
        if source not in NAME_BACKFILL_SOURCES:
            return

        force_cn_name = source == DataSource.EASTMONEY_CN.value and is_cn_a_share_symbol(asset.symbol)
        if not force_cn_name and not has_placeholder_name(asset):
            return

        try:
            profile = self.get_asset_profile(asset.symbol, data_source=source)
        except Exception as e:
            logger.debug(f"Skipping profile backfill for '{asset.symbol}': {e}")
            return

        if profile.data_source.upper() == DataSource.MANUAL.value:
            return

        profile_name = (profile.name or "").strip()
        if (
                not profile_name
                or profile_name.lower() == asset.symbol.lower()
                or profile_name.lower() == str(asset.id).lower()
        ):
            return

        if force_cn_name:
            if not contains_cjk(profile_name):
                logger.debug(
                    f"Skipping CN name override for '{asset.symbol}': provider name is not CJK ('{profile_name}')"
                )
                return
            if asset.name is not None and asset.name.strip() == profile_name:
                return

        changes = AssetProfileUpdate(
            name=profile_name,
            asset_class=profile.asset_class or asset.asset_class,
            asset_sub_class=profile.asset_sub_class or asset.asset_sub_class,
            sectors=profile.sectors or asset.sectors,
            countries=profile.countries or asset.countries,
            notes=profile.notes or asset.notes or "",
            attributes=asset.attributes,
        )
        try:
            self._asset_repository.update_profile(asset.symbol, changes)
            logger.debug(f"Backfilled asset name for '{asset.symbol}' -> '{profile_name}'")
        except Exception as e:
            logger.error(f"Failed to backfill asset profile for '{asset.symbol}': {e}")

    # =========================================================================
    # MPF OVERLAY
    # =========================================================================

    def _try_sync_mpf_unit_prices(self) -> int:
        if self._mpf_overlay is None:
            return 0
        try:
            updated = self._mpf_overlay.sync()
        except Exception as e:
            logger.error(f"MPF unit price sync failed: {e}")
            return 0
        if updated > 0:
            logger.info(f"MPF unit price sync updated {updated} asset(s)")
        return updated

    # =========================================================================
    # STORED QUOTES
    # =========================================================================

    def get_historical_quotes_for_symbols_in_range(
            self,
            symbols: set[str],
            start_date: date,
            end_date: date,
    ) -> list[Quote]:
        """
        One quote per symbol per day in [start_date, end_date].

        MANUAL quotes are loaded in full (they are sparse); other symbols are
        loaded from a short lookback before start_date so the first days can
        be forward-filled.
        """
        if not symbols:
            return []

        logger.debug(f"Fetching historical quotes for {len(symbols)} symbols between {start_date} and {end_date}")

        manual_quotes = self._repository.get_all_historical_quotes_for_symbols_by_source(
            symbols, DataSource.MANUAL.value
        )
        manual_symbols = {q.symbol for q in manual_quotes}
        all_quotes = list(manual_quotes)

        other_symbols = set(symbols) - manual_symbols
        if other_symbols:
            lookback_start = start_date - timedelta(days=settings.quote_lookback_days)
            all_quotes.extend(
                self._repository.get_historical_quotes_for_symbols_in_range(other_symbols, lookback_start, end_date)
            )

        return fill_missing_quotes(all_quotes, set(symbols), start_date, end_date)

    def get_daily_quotes(
            self,
            symbols: set[str],
            start_date: date,
            end_date: date,
    ) -> dict[date, dict[str, Quote]]:
        """Stored quotes keyed by day, then symbol. No filling."""
        if not symbols:
            return {}

        quotes_by_day: dict[date, dict[str, Quote]] = {}
        for quote in self._repository.get_historical_quotes_for_symbols_in_range(symbols, start_date, end_date):
            quotes_by_day.setdefault(quote.day, {})[quote.symbol] = quote
        return quotes_by_day

    def get_latest_quote_for_symbol(self, symbol: str) -> Quote:
        """Raises NotFoundError when nothing is stored for the symbol."""
        return self._repository.get_latest_quote_for_symbol(symbol)

    def get_latest_quotes_for_symbols(self, symbols: list[str]) -> dict[str, Quote]:
        return self._repository.get_latest_quotes_for_symbols(symbols)

    # =========================================================================
    # PROVIDER PASSTHROUGH
    # =========================================================================

    def get_historical_quotes_from_provider(
            self,
            symbol: str,
            start_date: date,
            end_date: date,
    ) -> list[Quote]:
        """Fetch directly from the routed provider, bypassing storage."""
        logger.debug(f"Getting symbol history for {symbol} from {start_date} to {end_date}")
        with self._registry.read() as registry:
            return registry.historical_quotes(symbol, start_of_day(start_date), end_of_day(end_date), "USD")

    def search_symbol(self, query: str) -> list[QuoteSummary]:
        with self._registry.read() as registry:
            return registry.search(query)

    def get_asset_profile(self, symbol: str, data_source: str | None = None) -> AssetProfile:
        with self._registry.read() as registry:
            return registry.get_asset_profile(symbol, data_source)

    # =========================================================================
    # PROVIDER SETTINGS
    # =========================================================================

    def get_providers_info(self) -> list[ProviderInfo]:
        """Quote providers with the time their quotes were last written."""
        latest_sync_dates = self._repository.get_latest_sync_dates_by_source()

        return [
            ProviderInfo(
                id=setting.id,
                name=setting.name,
                last_synced_date=latest_sync_dates.get(setting.id),
            )
            for setting in self._repository.get_all_providers()
            if setting.id not in NON_QUOTE_PROVIDER_IDS
        ]

    def get_provider_settings(self) -> list[ProviderSetting]:
        return self._repository.get_all_providers()

    def update_provider_settings(self, provider_id: str, priority: int, enabled: bool) -> ProviderSetting:
        """
        Change a provider's priority/enabled flag, then rebuild the registry.

        Enabling Open Exchange Rates requires a stored, valid API key.

        Raises:
            ValidationError: Invalid input, or missing/invalid API key
            UnauthorizedError: Open Exchange Rates rejected the key
        """
        try:
            update = ProviderSettingUpdate(provider_id=provider_id, priority=priority, enabled=enabled)
        except SchemaValidationError as e:
            first_error = e.errors()[0]
            field_name = ".".join(str(part) for part in first_error["loc"])
            raise ValidationError(f"Invalid provider settings: {first_error['msg']}", field=field_name)

        if update.provider_id == DataSource.OPEN_EXCHANGE_RATES.value and update.enabled:
            api_key = self._secret_store.get_secret(DataSource.OPEN_EXCHANGE_RATES.value)
            if api_key is None or not api_key.strip():
                raise ValidationError(
                    "Open Exchange Rates API key is required before enabling this provider",
                    field="api_key",
                )
            self.validate_provider_api_key(update.provider_id, api_key)

        setting = self._repository.update_provider_settings(update.provider_id, update.priority, update.enabled)
        logger.info(f"Provider '{setting.id}' updated (priority={setting.priority}, enabled={setting.enabled})")

        self.refresh_provider_registry()
        return setting

    def validate_provider_api_key(self, provider_id: str, api_key: str) -> None:
        """
        Raises:
            ValidationError: Empty key
            UnauthorizedError: Open Exchange Rates rejected the key
        """
        if not api_key or not api_key.strip():
            raise ValidationError("API key is required", field="api_key")

        if provider_id.strip().upper() == DataSource.OPEN_EXCHANGE_RATES.value:
            OpenExchangeRatesClient(api_key).validate_api_key()

    def refresh_provider_registry(self) -> None:
        """Rebuild the registry from stored settings and swap it in."""
        provider_settings = self._repository.get_all_providers()
        new_registry = ProviderRegistry.from_settings(provider_settings, self._secret_store)
        self._registry.replace(new_registry)

    def close(self) -> None:
        """Close provider HTTP clients."""
        self._registry.replace(ProviderRegistry())
