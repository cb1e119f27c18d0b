# quotesync/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import String, Date, DateTime, Numeric, UniqueConstraint, Boolean, Integer, JSON, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class DataSource(str, enum.Enum):
    """Identity strings of quote and rate sources."""
    YAHOO = "YAHOO"
    MANUAL = "MANUAL"
    EASTMONEY_CN = "EASTMONEY_CN"
    TIANTIAN_FUND = "TIANTIAN_FUND"
    OPEN_EXCHANGE_RATES = "OPEN_EXCHANGE_RATES"


# Asset types that never get quotes from a provider
CASH_ASSET_TYPE = "CASH"
FOREX_ASSET_TYPE = "FOREX"


class Asset(Base):
    """
    Tracked instrument.

    The symbol is the canonical (normalized) form. data_source names the
    provider that owns the symbol; MANUAL assets are never synced.
    attributes holds provider-independent extras, e.g. MPF sub-fund holdings:
        {"mpf_subfunds": [{"name": "...", "units": 12.5}]}
    """
    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    asset_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # e.g. "EQUITY", "FUND", "CASH"
    asset_class: Mapped[str | None] = mapped_column(String(64), nullable=True)
    asset_sub_class: Mapped[str | None] = mapped_column(String(64), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    data_source: Mapped[str] = mapped_column(String(32), default=DataSource.YAHOO.value)
    sectors: Mapped[str | None] = mapped_column(String, nullable=True)
    countries: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(String, nullable=True)
    attributes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class QuoteRecord(Base):
    """
    Daily quote cache (OHLCV format).

    One row per (symbol, date, data_source). Writers upsert on that key, so a
    re-fetch of the same day replaces the earlier values (late revisions).
    """
    __tablename__ = "quotes"
    __table_args__ = (
        UniqueConstraint('symbol', 'date', 'data_source', name='uq_quote_symbol_date_source'),
        # "Get quotes for symbols X, Y between dates A and B"
        Index('ix_quote_symbol_date', 'symbol', 'date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(64), index=True)
    quote_date: Mapped[date] = mapped_column("date", Date, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    open: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    high: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    low: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    close: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    adjclose: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    volume: Mapped[Decimal] = mapped_column(Numeric(24, 4), default=Decimal(0))

    currency: Mapped[str] = mapped_column(String(3))
    data_source: Mapped[str] = mapped_column(String(32), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class ExchangeRate(Base):
    """
    Directional exchange rate snapshot.

    Convention: 1 from_currency = rate to_currency.
    Rates are derived from a common-base snapshot, so from/to and to/from
    are stored independently and need not be exact reciprocals.
    """
    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint('from_currency', 'to_currency', 'date', name='uq_exchange_rate_pair_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    from_currency: Mapped[str] = mapped_column(String(3), index=True)
    to_currency: Mapped[str] = mapped_column(String(3), index=True)
    rate_date: Mapped[date] = mapped_column("date", Date, index=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(28, 12))
    source: Mapped[str] = mapped_column(String(32), default=DataSource.YAHOO.value)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class MarketDataProviderSetting(Base):
    """User-editable provider configuration. The registry is rebuilt from these rows."""
    __tablename__ = "market_data_provider_settings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String)
    priority: Mapped[int] = mapped_column(Integer, default=1)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


# Rows seeded on first start
DEFAULT_PROVIDER_SETTINGS: list[tuple[str, str, int, bool]] = [
    (DataSource.YAHOO.value, "Yahoo Finance", 1, True),
    (DataSource.TIANTIAN_FUND.value, "Tiantian Fund", 1, True),
    (DataSource.EASTMONEY_CN.value, "EastMoney CN", 2, True),
    (DataSource.OPEN_EXCHANGE_RATES.value, "Open Exchange Rates", 3, False),
]
