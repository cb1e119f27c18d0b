# tests/test_repository.py
"""
Tests for the SQLAlchemy repositories against in-memory SQLite.

This module tests:
- Quote upsert idempotence and UTC round trips
- Latest-quote and range queries
- Provider settings seeding and updates
- Asset updates and exchange rate upserts
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from quotesync.models import DEFAULT_PROVIDER_SETTINGS, QuoteRecord
from quotesync.repository import (
    SqlAlchemyAssetRepository,
    SqlAlchemyExchangeRateRepository,
    SqlAlchemyMarketDataRepository,
)
from quotesync.schemas.market_data import AssetProfileUpdate
from quotesync.services.exceptions import NotFoundError
from tests.conftest import create_asset, make_quote


@pytest.fixture
def repository(db):
    return SqlAlchemyMarketDataRepository(db)


# =============================================================================
# QUOTES
# =============================================================================

class TestQuoteStorage:

    def test_save_is_idempotent(self, db, repository):
        quotes = [make_quote("AAPL", date(2024, 1, 2)), make_quote("AAPL", date(2024, 1, 3))]

        assert repository.save_quotes(quotes) == 2
        repository.save_quotes(quotes)

        assert db.scalar(select(func.count()).select_from(QuoteRecord)) == 2

    def test_upsert_replaces_values(self, repository):
        repository.save_quotes([make_quote("AAPL", date(2024, 1, 2), close="185")])
        repository.save_quotes([make_quote("AAPL", date(2024, 1, 2), close="186.5")])

        assert repository.get_latest_quote_for_symbol("AAPL").close == Decimal("186.5")

    def test_same_day_from_two_sources_are_separate_rows(self, db, repository):
        repository.save_quotes([
            make_quote("0700.HK", date(2024, 1, 2), data_source="YAHOO"),
            make_quote("0700.HK", date(2024, 1, 2), data_source="MANUAL"),
        ])

        assert db.scalar(select(func.count()).select_from(QuoteRecord)) == 2

    def test_duplicate_keys_in_one_save_keep_the_last(self, db, repository):
        saved = repository.save_quotes([
            make_quote("AAPL", date(2024, 1, 2), close="185"),
            make_quote("AAPL", date(2024, 1, 2), close="186"),
            make_quote("AAPL", date(2024, 1, 3), close="187"),
        ])

        assert saved == 2
        assert db.scalar(select(func.count()).select_from(QuoteRecord)) == 2
        quotes = repository.get_historical_quotes_for_symbols_in_range({"AAPL"}, date(2024, 1, 2), date(2024, 1, 2))
        assert quotes[0].close == Decimal("186")

    def test_empty_save(self, repository):
        assert repository.save_quotes([]) == 0

    def test_timestamps_come_back_utc(self, repository):
        repository.save_quotes([make_quote("AAPL", date(2024, 1, 2))])

        quote = repository.get_latest_quote_for_symbol("AAPL")

        assert quote.timestamp == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert quote.created_at.tzinfo is not None

    def test_latest_quotes_per_symbol(self, repository):
        repository.save_quotes([
            make_quote("AAPL", date(2024, 1, 2), close="1"),
            make_quote("AAPL", date(2024, 1, 5), close="2"),
            make_quote("MSFT", date(2024, 1, 3), close="3"),
        ])

        latest = repository.get_latest_quotes_for_symbols(["AAPL", "MSFT", "NONE"])

        assert {s: q.day for s, q in latest.items()} == {"AAPL": date(2024, 1, 5), "MSFT": date(2024, 1, 3)}
        assert repository.get_latest_quotes_for_symbols([]) == {}

    def test_latest_quote_not_found(self, repository):
        with pytest.raises(NotFoundError):
            repository.get_latest_quote_for_symbol("AAPL")

    def test_range_is_inclusive_and_ordered(self, repository):
        repository.save_quotes([
            make_quote("MSFT", date(2024, 1, 3)),
            make_quote("AAPL", date(2024, 1, 3)),
            make_quote("AAPL", date(2024, 1, 1)),
            make_quote("AAPL", date(2024, 1, 4)),
        ])

        quotes = repository.get_historical_quotes_for_symbols_in_range(
            {"AAPL", "MSFT"}, date(2024, 1, 1), date(2024, 1, 3)
        )

        assert [(q.day, q.symbol) for q in quotes] == [
            (date(2024, 1, 1), "AAPL"),
            (date(2024, 1, 3), "AAPL"),
            (date(2024, 1, 3), "MSFT"),
        ]

    def test_quotes_by_source(self, repository):
        repository.save_quotes([
            make_quote("HOUSE", date(2020, 1, 1), data_source="MANUAL"),
            make_quote("AAPL", date(2024, 1, 1)),
        ])

        quotes = repository.get_all_historical_quotes_for_symbols_by_source({"HOUSE", "AAPL"}, "MANUAL")

        assert [q.symbol for q in quotes] == ["HOUSE"]

    def test_quote_exists(self, repository):
        repository.save_quotes([make_quote("AAPL", date(2024, 1, 2))])

        assert repository.quote_exists("AAPL", date(2024, 1, 2))
        assert not repository.quote_exists("AAPL", date(2024, 1, 3))

    def test_latest_sync_dates_by_source(self, repository):
        repository.save_quotes([
            make_quote("AAPL", date(2024, 1, 2)),
            make_quote("HOUSE", date(2024, 1, 2), data_source="MANUAL"),
        ])

        sync_dates = repository.get_latest_sync_dates_by_source()

        assert set(sync_dates) == {"YAHOO", "MANUAL"}
        assert all(value.tzinfo is not None for value in sync_dates.values())


# =============================================================================
# PROVIDER SETTINGS
# =============================================================================

class TestProviderSettings:

    def test_defaults_are_seeded(self, repository):
        providers = repository.get_all_providers()

        assert {p.id for p in providers} == {entry[0] for entry in DEFAULT_PROVIDER_SETTINGS}
        assert providers[-1].id == "OPEN_EXCHANGE_RATES"
        assert providers[-1].enabled is False

    def test_update(self, repository):
        repository.get_all_providers()

        updated = repository.update_provider_settings("YAHOO", 9, False)

        assert (updated.priority, updated.enabled) == (9, False)
        assert updated.updated_at is not None
        assert repository.get_all_providers()[-1].id == "YAHOO"

    def test_update_unknown_provider(self, repository):
        repository.get_all_providers()

        with pytest.raises(NotFoundError):
            repository.update_provider_settings("BLOOMBERG", 1, True)


# =============================================================================
# ASSETS
# =============================================================================

class TestAssetRepository:

    def test_list_and_lookup(self, db):
        create_asset(db, symbol="MSFT", name="Microsoft")
        create_asset(db, symbol="AAPL")
        assets = SqlAlchemyAssetRepository(db)

        assert [a.symbol for a in assets.list_assets()] == ["AAPL", "MSFT"]
        assert [a.symbol for a in assets.list_by_symbols(["MSFT", "NONE"])] == ["MSFT"]
        assert assets.list_by_symbols([]) == []
        assert assets.get_by_symbol("NONE") is None

    def test_update_data_source(self, db):
        create_asset(db, symbol="600519.SH", currency="CNY")
        assets = SqlAlchemyAssetRepository(db)

        assets.update_data_source("600519.SH", "EASTMONEY_CN")

        assert assets.get_by_symbol("600519.SH").data_source == "EASTMONEY_CN"

    def test_update_profile_writes_attributes(self, db):
        create_asset(db, symbol="MPF-A", name="MPF", asset_class="MPF")
        assets = SqlAlchemyAssetRepository(db)

        assets.update_profile("MPF-A", AssetProfileUpdate(
            name="Manulife MPF",
            asset_class="MPF",
            attributes={"mpf_subfunds": [{"name": "Japan", "nav": 1.5}], "market_value": 150.0},
        ))

        asset = assets.get_by_symbol("MPF-A")
        assert asset.name == "Manulife MPF"
        assert asset.attributes["market_value"] == 150.0

    def test_update_missing_asset(self, db):
        with pytest.raises(NotFoundError):
            SqlAlchemyAssetRepository(db).update_data_source("NONE", "YAHOO")


# =============================================================================
# EXCHANGE RATES
# =============================================================================

class TestExchangeRateRepository:

    def test_upsert_and_latest(self, db):
        rates = SqlAlchemyExchangeRateRepository(db)

        rates.upsert_rate("HKD", "USD", date(2024, 1, 1), Decimal("0.128"), "MANUAL")
        rates.upsert_rate("HKD", "USD", date(2024, 1, 2), Decimal("0.127"), "MANUAL")
        rates.upsert_rate("HKD", "USD", date(2024, 1, 2), Decimal("0.129"), "OPEN_EXCHANGE_RATES")

        latest = rates.get_latest_rate("HKD", "USD")
        assert latest.rate == Decimal("0.129")
        assert latest.source == "OPEN_EXCHANGE_RATES"
        assert rates.get_latest_rate("USD", "HKD") is None
