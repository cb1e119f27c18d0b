# quotesync/services/__init__.py
"""
Service layer for the sync engine.

Services:
- Have NO knowledge of storage technology (repositories come in via Protocols)
- Raise domain-specific exceptions
- Are easily testable via dependency injection

Usage:
    from quotesync.services import MarketDataSyncService
    from quotesync.services import FXRateService
    from quotesync.services import QuoteImportService
    from quotesync.services import (
        MarketDataError,
        FXRateNotFoundError,
        ValidationError,
    )

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Fixed constants and precisions
    ├── protocols.py                 # Repository interfaces (Protocol classes)
    ├── symbol_normalizer.py         # Canonical symbols and source inference
    ├── fx/                          # Currency rates
    │   ├── rates.py                 # Cross rates and managed pairs
    │   ├── open_exchange_rates.py   # Open Exchange Rates client
    │   └── service.py               # FX rate service
    ├── market_data/                 # Market data package
    │   ├── base.py                  # Abstract provider interface
    │   ├── yahoo.py                 # Yahoo Finance implementation
    │   ├── eastmoney_cn.py          # EastMoney mainland China equities
    │   ├── tiantian_fund.py         # Tiantian mutual fund NAVs
    │   ├── registry.py              # Provider registry and hot reload
    │   ├── sync_planner.py          # Incremental fetch windows
    │   ├── continuity.py            # Forward-fill of daily quotes
    │   ├── mpf_overlay.py           # MPF unit price overlay
    │   └── sync_service.py          # Sync orchestration service
    └── upload/                      # Quote import
        ├── service.py               # Import validation and upsert
        └── parsers/                 # File format parsers
            ├── base.py              # Abstract parser interface
            └── csv_parser.py        # CSV implementation
"""

# Exceptions
from quotesync.services.exceptions import (
    # Base exceptions
    ServiceError,
    ValidationError,
    NotFoundError,
    RepositoryError,
    # Market data exceptions
    MarketDataError,
    ProviderUnavailableError,
    RateLimitError,
    UnsupportedSymbolError,
    NoDataError,
    UnauthorizedError,
    ParsingError,
    TickerNotFoundError,
    # FX rate exceptions
    FXRateError,
    FXRateNotFoundError,
    FXProviderError,
    FXConversionError,
)
# FX rates
from quotesync.services.fx import FXRateService
# Market data sync
from quotesync.services.market_data import MarketDataSyncService, SyncOutcome
# Quote import
from quotesync.services.upload import QuoteImportService

__all__ = [
    # Services
    "FXRateService",
    "MarketDataSyncService",
    "QuoteImportService",
    "SyncOutcome",
    # Exceptions - Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "RepositoryError",
    # Exceptions - Market data
    "MarketDataError",
    "ProviderUnavailableError",
    "RateLimitError",
    "UnsupportedSymbolError",
    "NoDataError",
    "UnauthorizedError",
    "ParsingError",
    "TickerNotFoundError",
    # Exceptions - FX
    "FXRateError",
    "FXRateNotFoundError",
    "FXProviderError",
    "FXConversionError",
]
