# quotesync/services/market_data/__init__.py
"""
Market data services package.

This package contains:
- Abstract interface for market data providers (base.py)
- Yahoo Finance, EastMoney CN and Tiantian fund providers
- Provider registry with hot reload (registry.py)
- Sync planning and continuity filling (sync_planner.py, continuity.py)
- MPF unit price overlay (mpf_overlay.py)
- Market data sync orchestration (sync_service.py)

Usage:
    # Provider interface and data classes
    from quotesync.services.market_data import (
        MarketDataProvider,
        Quote,
        BulkQuotesResult,
    )

    # Sync service
    from quotesync.services.market_data import MarketDataSyncService, SyncOutcome

Architecture:
    MarketDataProvider (ABC)
    ├── YahooFinanceProvider
    └── HttpMarketDataProvider (ABC)
        ├── EastMoneyCnProvider
        └── TiantianFundProvider

    MarketDataSyncService
    └── SharedProviderRegistry -> ProviderRegistry -> providers
    └── MpfUnitPriceOverlay
"""

# Base provider interface and data classes
from quotesync.services.market_data.base import (
    AssetProfile,
    BulkFailure,
    BulkQuotesResult,
    HttpMarketDataProvider,
    MarketDataProvider,
    Quote,
    QuoteRequest,
    QuoteSummary,
)
from quotesync.services.market_data.continuity import fill_missing_quotes
# Concrete implementations
from quotesync.services.market_data.eastmoney_cn import EastMoneyCnProvider
from quotesync.services.market_data.mpf_overlay import MpfUnitPriceOverlay
from quotesync.services.market_data.registry import (
    ProviderRegistry,
    ProviderSetting,
    ReadWriteLock,
    SharedProviderRegistry,
)
from quotesync.services.market_data.sync_planner import (
    SymbolSyncPlanItem,
    calculate_sync_plan,
    group_plan_by_start,
)
# Sync service
from quotesync.services.market_data.sync_service import MarketDataSyncService, SyncOutcome
from quotesync.services.market_data.tiantian_fund import TiantianFundProvider
from quotesync.services.market_data.yahoo import YahooFinanceProvider

__all__ = [
    # Abstract interface
    "MarketDataProvider",
    "HttpMarketDataProvider",
    # Data classes
    "AssetProfile",
    "BulkFailure",
    "BulkQuotesResult",
    "Quote",
    "QuoteRequest",
    "QuoteSummary",
    # Concrete implementations
    "EastMoneyCnProvider",
    "TiantianFundProvider",
    "YahooFinanceProvider",
    # Registry
    "ProviderRegistry",
    "ProviderSetting",
    "ReadWriteLock",
    "SharedProviderRegistry",
    # Planning and filling
    "SymbolSyncPlanItem",
    "calculate_sync_plan",
    "group_plan_by_start",
    "fill_missing_quotes",
    # Sync service
    "MarketDataSyncService",
    "MpfUnitPriceOverlay",
    "SyncOutcome",
]
