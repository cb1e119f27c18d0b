# quotesync/dependencies.py
"""
Service wiring.

Builds the services on top of one database session. The secret store is a
process-wide singleton, so keys set at runtime are seen by every service.

Services are lazily initialized on first use to avoid import-time side effects.

Usage:
    from quotesync.database import session_scope
    from quotesync.dependencies import build_sync_service

    with session_scope() as db:
        service = build_sync_service(db)
        try:
            outcome = service.sync_market_data()
        finally:
            service.close()
"""

import logging
from functools import lru_cache

from sqlalchemy.orm import Session

from quotesync.repository import (
    SqlAlchemyAssetRepository,
    SqlAlchemyExchangeRateRepository,
    SqlAlchemyMarketDataRepository,
)
from quotesync.secret_store import SettingsSecretStore
from quotesync.services.fx import FXRateService
from quotesync.services.market_data.sync_service import MarketDataSyncService
from quotesync.services.upload import QuoteImportService

logger = logging.getLogger(__name__)


# =============================================================================
# SINGLETONS
# =============================================================================
# Using @lru_cache ensures the function returns the same instance on every call

@lru_cache(maxsize=1)
def get_secret_store() -> SettingsSecretStore:
    logger.debug("Creating secret store")
    return SettingsSecretStore()


# =============================================================================
# PER-SESSION SERVICES
# =============================================================================

def build_sync_service(db: Session) -> MarketDataSyncService:
    """Sync service with repositories bound to db. Call close() when done."""
    return MarketDataSyncService(
        repository=SqlAlchemyMarketDataRepository(db),
        asset_repository=SqlAlchemyAssetRepository(db),
        secret_store=get_secret_store(),
    )


def build_fx_service(db: Session) -> FXRateService:
    return FXRateService(
        asset_repository=SqlAlchemyAssetRepository(db),
        rate_repository=SqlAlchemyExchangeRateRepository(db),
        secret_store=get_secret_store(),
    )


def build_import_service(db: Session) -> QuoteImportService:
    return QuoteImportService(SqlAlchemyMarketDataRepository(db))
