# quotesync/repository.py
"""
SQLAlchemy implementations of the service repository protocols.

Each repository wraps one Session. Writes commit immediately; any
SQLAlchemyError is rolled back and re-raised as RepositoryError so the
services never see storage exceptions.

Upserts use the dialect's INSERT ... ON CONFLICT DO UPDATE (PostgreSQL in
production, SQLite in tests and single-user setups).

Usage:
    with session_scope() as db:
        quotes = SqlAlchemyMarketDataRepository(db)
        assets = SqlAlchemyAssetRepository(db)
        latest = quotes.get_latest_quotes_for_symbols(["AAPL"])
"""

import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quotesync.models import (
    Asset,
    DEFAULT_PROVIDER_SETTINGS,
    ExchangeRate,
    MarketDataProviderSetting,
    QuoteRecord,
)
from quotesync.schemas.market_data import AssetProfileUpdate
from quotesync.services.exceptions import NotFoundError, RepositoryError
from quotesync.services.market_data.base import Quote
from quotesync.services.market_data.registry import ProviderSetting
from quotesync.utils.date_utils import ensure_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Rows per INSERT statement (keeps SQLite under its bound-parameter limit)
UPSERT_CHUNK_SIZE = 500


# =============================================================================
# HELPERS
# =============================================================================

def _chunks(items: list[T], size: int) -> Iterable[list[T]]:
    for index in range(0, len(items), size):
        yield items[index:index + size]


def _upsert(
        db: Session,
        model: type,
        records: list[dict[str, Any]],
        conflict_columns: list[str],
        update_columns: list[str],
) -> int:
    """
    INSERT ... ON CONFLICT (conflict_columns) DO UPDATE update_columns.

    Records repeating a conflict key are collapsed first, the last one
    winning: a single statement may not touch the same row twice.
    Returns the number of distinct rows written.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert_fn = pg_insert
    elif dialect == "sqlite":
        insert_fn = sqlite_insert
    else:
        raise RepositoryError(f"Upsert is not supported for dialect '{dialect}'", operation="upsert")

    unique = {tuple(record[column] for column in conflict_columns): record for record in records}
    records = list(unique.values())

    table = model.__table__
    for chunk in _chunks(records, UPSERT_CHUNK_SIZE):
        stmt = insert_fn(table).values(chunk)
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={column: stmt.excluded[column] for column in update_columns},
        )
        db.execute(stmt)
    return len(records)


class _SessionRepository:
    """Shared session handling for the repositories below."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def _run(self, operation: str, action: Callable[[], T], commit: bool = False) -> T:
        try:
            result = action()
            if commit:
                self._db.commit()
            return result
        except SQLAlchemyError as e:
            logger.error(f"Repository operation '{operation}' failed: {e}")
            self._db.rollback()
            raise RepositoryError(f"{operation} failed: {e}", operation=operation) from e


def _to_quote(record: QuoteRecord) -> Quote:
    return Quote(
        symbol=record.symbol,
        timestamp=ensure_utc(record.timestamp),
        open=Decimal(record.open),
        high=Decimal(record.high),
        low=Decimal(record.low),
        close=Decimal(record.close),
        adjclose=Decimal(record.adjclose),
        volume=Decimal(record.volume),
        currency=record.currency,
        data_source=record.data_source,
        created_at=ensure_utc(record.created_at),
    )


def _to_record_values(quote: Quote) -> dict[str, Any]:
    """Column-name keyed values for a quotes row."""
    return {
        "symbol": quote.symbol,
        "date": quote.day,
        "timestamp": quote.timestamp,
        "open": quote.open,
        "high": quote.high,
        "low": quote.low,
        "close": quote.close,
        "adjclose": quote.adjclose,
        "volume": quote.volume,
        "currency": quote.currency,
        "data_source": quote.data_source,
        "created_at": quote.created_at,
    }


def _to_provider_setting(row: MarketDataProviderSetting) -> ProviderSetting:
    return ProviderSetting(
        id=row.id,
        name=row.name,
        priority=row.priority,
        enabled=row.enabled,
        updated_at=ensure_utc(row.updated_at) if row.updated_at else None,
    )


# =============================================================================
# QUOTES AND PROVIDER SETTINGS
# =============================================================================

class SqlAlchemyMarketDataRepository(_SessionRepository):
    """Quote storage plus provider settings."""

    QUOTE_UPDATE_COLUMNS = ["timestamp", "open", "high", "low", "close", "adjclose", "volume", "currency", "created_at"]

    def get_latest_quotes_for_symbols(self, symbols: list[str]) -> dict[str, Quote]:
        """Latest quote per symbol across sources (later timestamp wins on a tie day)."""
        if not symbols:
            return {}

        def query() -> dict[str, Quote]:
            latest_days = (
                select(QuoteRecord.symbol, func.max(QuoteRecord.quote_date).label("max_date"))
                .where(QuoteRecord.symbol.in_(symbols))
                .group_by(QuoteRecord.symbol)
                .subquery()
            )
            stmt = (
                select(QuoteRecord)
                .join(
                    latest_days,
                    and_(
                        QuoteRecord.symbol == latest_days.c.symbol,
                        QuoteRecord.quote_date == latest_days.c.max_date,
                    ),
                )
                .order_by(QuoteRecord.symbol, QuoteRecord.timestamp)
            )
            return {record.symbol: _to_quote(record) for record in self._db.scalars(stmt)}

        return self._run("get_latest_quotes_for_symbols", query)

    def get_latest_quote_for_symbol(self, symbol: str) -> Quote:
        stmt = (
            select(QuoteRecord)
            .where(QuoteRecord.symbol == symbol)
            .order_by(QuoteRecord.quote_date.desc(), QuoteRecord.timestamp.desc())
            .limit(1)
        )
        record = self._run("get_latest_quote_for_symbol", lambda: self._db.scalar(stmt))
        if record is None:
            raise NotFoundError(f"No quote found for symbol '{symbol}'", resource_type="Quote", resource_id=symbol)
        return _to_quote(record)

    def get_historical_quotes_for_symbols_in_range(
            self,
            symbols: set[str],
            start_date: date,
            end_date: date,
    ) -> list[Quote]:
        if not symbols:
            return []

        stmt = (
            select(QuoteRecord)
            .where(
                QuoteRecord.symbol.in_(sorted(symbols)),
                QuoteRecord.quote_date >= start_date,
                QuoteRecord.quote_date <= end_date,
            )
            .order_by(QuoteRecord.quote_date, QuoteRecord.symbol)
        )
        return self._run(
            "get_historical_quotes_for_symbols_in_range",
            lambda: [_to_quote(r) for r in self._db.scalars(stmt)],
        )

    def get_all_historical_quotes_for_symbols_by_source(self, symbols: set[str], data_source: str) -> list[Quote]:
        if not symbols:
            return []

        stmt = (
            select(QuoteRecord)
            .where(QuoteRecord.symbol.in_(sorted(symbols)), QuoteRecord.data_source == data_source)
            .order_by(QuoteRecord.quote_date, QuoteRecord.symbol)
        )
        return self._run(
            "get_all_historical_quotes_for_symbols_by_source",
            lambda: [_to_quote(r) for r in self._db.scalars(stmt)],
        )

    def quote_exists(self, symbol: str, quote_date: date) -> bool:
        stmt = (
            select(QuoteRecord.id)
            .where(QuoteRecord.symbol == symbol, QuoteRecord.quote_date == quote_date)
            .limit(1)
        )
        return self._run("quote_exists", lambda: self._db.scalar(stmt) is not None)

    def save_quotes(self, quotes: list[Quote]) -> int:
        """Upsert on (symbol, date, data_source). Returns rows written."""
        if not quotes:
            return 0

        records = [_to_record_values(q) for q in quotes]
        written = self._run(
            "save_quotes",
            lambda: _upsert(
                self._db,
                QuoteRecord,
                records,
                conflict_columns=["symbol", "date", "data_source"],
                update_columns=self.QUOTE_UPDATE_COLUMNS,
            ),
            commit=True,
        )
        logger.debug(f"Upserted {written} quotes")
        return written

    def get_latest_sync_dates_by_source(self) -> dict[str, datetime | None]:
        """Most recent write time per data source."""
        stmt = select(QuoteRecord.data_source, func.max(QuoteRecord.created_at)).group_by(QuoteRecord.data_source)
        rows = self._run("get_latest_sync_dates_by_source", lambda: self._db.execute(stmt).all())
        return {
            source: ensure_utc(last_synced) if last_synced is not None else None
            for source, last_synced in rows
        }

    # =========================================================================
    # PROVIDER SETTINGS
    # =========================================================================

    def get_all_providers(self) -> list[ProviderSetting]:
        """Stored provider settings, seeded with the defaults on first use."""

        def query() -> list[ProviderSetting]:
            stmt = select(MarketDataProviderSetting).order_by(
                MarketDataProviderSetting.priority, MarketDataProviderSetting.id
            )
            rows = list(self._db.scalars(stmt))
            if not rows:
                self._seed_default_providers()
                rows = list(self._db.scalars(stmt))
            return [_to_provider_setting(row) for row in rows]

        return self._run("get_all_providers", query)

    def update_provider_settings(self, provider_id: str, priority: int, enabled: bool) -> ProviderSetting:
        row = self._run("update_provider_settings", lambda: self._db.get(MarketDataProviderSetting, provider_id))
        if row is None:
            raise NotFoundError(
                f"Market data provider '{provider_id}' not found",
                resource_type="ProviderSetting",
                resource_id=provider_id,
            )

        def update() -> ProviderSetting:
            row.priority = priority
            row.enabled = enabled
            row.updated_at = datetime.now(timezone.utc)
            self._db.flush()
            return _to_provider_setting(row)

        return self._run("update_provider_settings", update, commit=True)

    def _seed_default_providers(self) -> None:
        logger.info("Seeding default market data provider settings")
        for provider_id, name, priority, enabled in DEFAULT_PROVIDER_SETTINGS:
            self._db.add(MarketDataProviderSetting(id=provider_id, name=name, priority=priority, enabled=enabled))
        self._db.commit()


# =============================================================================
# ASSETS
# =============================================================================

class SqlAlchemyAssetRepository(_SessionRepository):
    """Asset lookups and the narrow updates the sync engine performs."""

    def list_assets(self) -> list[Asset]:
        stmt = select(Asset).order_by(Asset.symbol)
        return self._run("list_assets", lambda: list(self._db.scalars(stmt)))

    def list_by_symbols(self, symbols: list[str]) -> list[Asset]:
        if not symbols:
            return []
        stmt = select(Asset).where(Asset.symbol.in_(symbols)).order_by(Asset.symbol)
        return self._run("list_by_symbols", lambda: list(self._db.scalars(stmt)))

    def get_by_symbol(self, symbol: str) -> Asset | None:
        stmt = select(Asset).where(Asset.symbol == symbol)
        return self._run("get_by_symbol", lambda: self._db.scalar(stmt))

    def create_asset(
            self,
            symbol: str,
            name: str | None,
            asset_type: str | None,
            currency: str,
            data_source: str,
    ) -> Asset:
        def create() -> Asset:
            asset = Asset(
                symbol=symbol,
                name=name,
                asset_type=asset_type,
                currency=currency,
                data_source=data_source,
            )
            self._db.add(asset)
            self._db.flush()
            return asset

        asset = self._run("create_asset", create, commit=True)
        self._db.refresh(asset)
        logger.info(f"Created asset {symbol} ({data_source})")
        return asset

    def update_data_source(self, symbol: str, data_source: str) -> Asset:
        asset = self._require(symbol)

        def update() -> Asset:
            asset.data_source = data_source
            self._db.flush()
            return asset

        return self._run("update_data_source", update, commit=True)

    def update_profile(self, symbol: str, changes: AssetProfileUpdate) -> Asset:
        """Write every field of changes onto the asset."""
        asset = self._require(symbol)

        def update() -> Asset:
            for field_name, value in changes.model_dump().items():
                setattr(asset, field_name, value)
            self._db.flush()
            return asset

        return self._run("update_profile", update, commit=True)

    def _require(self, symbol: str) -> Asset:
        asset = self.get_by_symbol(symbol)
        if asset is None:
            raise NotFoundError(f"Asset '{symbol}' not found", resource_type="Asset", resource_id=symbol)
        return asset


# =============================================================================
# EXCHANGE RATES
# =============================================================================

class SqlAlchemyExchangeRateRepository(_SessionRepository):
    """Directional exchange rates, one per pair per day."""

    def upsert_rate(
            self,
            from_currency: str,
            to_currency: str,
            rate_date: date,
            rate: Decimal,
            source: str,
    ) -> ExchangeRate:
        record = {
            "from_currency": from_currency,
            "to_currency": to_currency,
            "date": rate_date,
            "rate": rate,
            "source": source,
            "created_at": datetime.now(timezone.utc),
        }
        self._run(
            "upsert_rate",
            lambda: _upsert(
                self._db,
                ExchangeRate,
                [record],
                conflict_columns=["from_currency", "to_currency", "date"],
                update_columns=["rate", "source", "created_at"],
            ),
            commit=True,
        )

        stmt = select(ExchangeRate).where(
            ExchangeRate.from_currency == from_currency,
            ExchangeRate.to_currency == to_currency,
            ExchangeRate.rate_date == rate_date,
        )
        return self._run("upsert_rate", lambda: self._db.scalars(stmt).one())

    def get_latest_rate(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        stmt = (
            select(ExchangeRate)
            .where(ExchangeRate.from_currency == from_currency, ExchangeRate.to_currency == to_currency)
            .order_by(ExchangeRate.rate_date.desc())
            .limit(1)
        )
        return self._run("get_latest_rate", lambda: self._db.scalar(stmt))
