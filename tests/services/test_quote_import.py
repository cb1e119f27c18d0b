# tests/services/test_quote_import.py
"""
Tests for manual quote import.

This module tests:
- CSV parsing (column aliases, missing columns, bad numbers, encodings)
- Row validation outcomes
- Import into the SQLite quote repository (skip vs overwrite)
"""

import io
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from quotesync.models import QuoteRecord
from quotesync.repository import SqlAlchemyMarketDataRepository
from quotesync.services.upload import QuoteImportService
from quotesync.services.upload.parsers import (
    ImportStatus,
    QuoteCsvParser,
    QuoteImport,
    UnsupportedFileTypeError,
    get_parser,
)
from quotesync.utils.date_utils import noon_of_day
from tests.conftest import make_quote


def csv_file(text: str, encoding: str = "utf-8") -> io.BytesIO:
    return io.BytesIO(text.encode(encoding))


def import_row(**overrides) -> QuoteImport:
    values = {
        "row_number": 2,
        "symbol": "HOUSE",
        "date": "2024-01-31",
        "close": Decimal("500000"),
        "currency": "HKD",
    }
    values.update(overrides)
    return QuoteImport(**values)


# =============================================================================
# CSV PARSER
# =============================================================================

class TestQuoteCsvParser:

    @pytest.fixture
    def parser(self):
        return QuoteCsvParser()

    def test_parses_full_rows(self, parser):
        content = (
            "symbol,date,open,high,low,close,volume,currency\n"
            "aapl,2024-01-02,187.15,188.44,183.89,185.64,\"82,488,700\",usd\n"
        )

        result = parser.parse(csv_file(content), "quotes.csv")

        assert result.error_count == 0
        row = result.rows[0]
        assert row.row_number == 2
        assert row.symbol == "AAPL"
        assert row.date == "2024-01-02"
        assert row.close == Decimal("185.64")
        assert row.open == Decimal("187.15")
        assert row.volume == Decimal("82488700")
        assert row.currency == "USD"

    def test_column_aliases_and_default_currency(self, parser):
        content = "Ticker,Trade_Date,NAV\nHOUSE,2024-01-31,500000\n"

        result = parser.parse(csv_file(content), "quotes.csv")

        row = result.rows[0]
        assert (row.symbol, row.date, row.close) == ("HOUSE", "2024-01-31", Decimal("500000"))
        assert row.open is None and row.volume is None
        assert row.currency == "USD"

    def test_missing_required_columns(self, parser):
        result = parser.parse(csv_file("symbol,open\nAAPL,1\n"), "quotes.csv")

        assert result.rows == []
        assert result.errors[0].error_type == "missing_columns"
        assert "date" in result.errors[0].message
        assert "close" in result.errors[0].message

    def test_row_errors_do_not_stop_parsing(self, parser):
        content = (
            "symbol,date,close,high\n"
            "AAPL,2024-01-02,,\n"
            "AAPL,2024-01-03,abc,\n"
            "AAPL,2024-01-04,10,x1\n"
            "AAPL,2024-01-05,11,12\n"
        )

        result = parser.parse(csv_file(content), "quotes.csv")

        assert [(e.row_number, e.error_type, e.field) for e in result.errors] == [
            (2, "missing_value", "close"),
            (3, "invalid_number", "close"),
            (4, "invalid_number", "high"),
        ]
        assert [r.row_number for r in result.rows] == [5]
        assert result.total_rows == 4

    def test_utf8_bom(self, parser):
        content = "\ufeffsymbol,date,close\nAAPL,2024-01-02,1\n"

        result = parser.parse(csv_file(content), "quotes.csv")

        assert len(result.rows) == 1

    def test_latin1_fallback(self, parser):
        content = "symbol,date,close,note\nAAPL,2024-01-02,1,caf\xe9\n"

        result = parser.parse(csv_file(content, encoding="latin-1"), "quotes.csv")

        assert len(result.rows) == 1

    def test_empty_file(self, parser):
        result = parser.parse(csv_file(""), "quotes.csv")

        assert result.errors[0].error_type == "missing_headers"


class TestGetParser:

    def test_by_extension(self):
        assert isinstance(get_parser("Quotes.CSV"), QuoteCsvParser)

    def test_by_content_type(self):
        assert isinstance(get_parser("upload", "text/csv"), QuoteCsvParser)

    def test_unsupported(self):
        with pytest.raises(UnsupportedFileTypeError) as exc_info:
            get_parser("quotes.xlsx")
        assert exc_info.value.field == "file"
        assert exc_info.value.supported == [".csv"]


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidateQuoteData:

    @pytest.mark.parametrize("overrides,status,reason", [
        ({}, ImportStatus.VALID, None),
        ({"symbol": "  "}, ImportStatus.ERROR, "Symbol is required"),
        ({"date": "31/01/2024"}, ImportStatus.ERROR, "Invalid date format. Expected YYYY-MM-DD"),
        ({"close": Decimal("0")}, ImportStatus.ERROR, "Close price must be greater than 0"),
        (
            {"open": Decimal("10"), "high": Decimal("9"), "low": Decimal("11"), "close": Decimal("10")},
            ImportStatus.ERROR,
            "High price cannot be less than low price",
        ),
        (
            {"open": Decimal("13"), "high": Decimal("12"), "low": Decimal("9"), "close": Decimal("10")},
            ImportStatus.WARNING,
            "Open price is outside high-low range",
        ),
        (
            {"open": Decimal("10"), "high": Decimal("12"), "low": Decimal("9"), "close": Decimal("8")},
            ImportStatus.WARNING,
            "Close price is outside high-low range",
        ),
        ({"high": Decimal("1"), "low": Decimal("2")}, ImportStatus.VALID, None),
    ])
    def test_outcomes(self, overrides, status, reason):
        assert QuoteImportService.validate_quote_data(import_row(**overrides)) == (status, reason)


# =============================================================================
# IMPORT
# =============================================================================

class TestQuoteImportService:

    @pytest.fixture
    def repository(self, db):
        return SqlAlchemyMarketDataRepository(db)

    @pytest.fixture
    def service(self, repository):
        return QuoteImportService(repository)

    def test_import_csv_stores_manual_quotes_at_noon(self, service, repository):
        content = "symbol,date,close,currency\nhouse,2024-01-31,500000,HKD\nHOUSE,bad-date,1,HKD\n"

        result = service.import_csv(csv_file(content), "quotes.csv")

        assert result.valid_count == 1
        assert result.error_count == 1
        assert result.imported_count == 1

        stored = repository.get_latest_quote_for_symbol("HOUSE")
        assert stored.data_source == "MANUAL"
        assert stored.timestamp == noon_of_day(date(2024, 1, 31))
        assert stored.close == Decimal("500000")
        assert stored.open == stored.high == stored.low == stored.adjclose == Decimal("500000")
        assert stored.volume == Decimal(0)
        assert stored.currency == "HKD"

    def test_parse_errors_are_counted(self, service):
        content = "symbol,date,close\nHOUSE,2024-01-31,\n"

        result = service.import_csv(csv_file(content), "quotes.csv")

        assert result.error_count == 1
        assert result.imported_count == 0

    def test_existing_quote_is_skipped_with_warning(self, service, repository):
        repository.save_quotes([make_quote("HOUSE", date(2024, 1, 31), close="400000", data_source="MANUAL")])

        rows = service.import_quotes([import_row()], overwrite=False)

        assert rows[0].status == ImportStatus.WARNING
        assert rows[0].reason == "Quote already exists, skipping"
        assert repository.get_latest_quote_for_symbol("HOUSE").close == Decimal("400000")

    def test_existing_quote_is_overwritten(self, service, repository):
        repository.save_quotes([make_quote("HOUSE", date(2024, 1, 31), close="400000", data_source="MANUAL")])

        rows = service.import_quotes([import_row()], overwrite=True)

        assert rows[0].status == ImportStatus.VALID
        assert repository.get_latest_quote_for_symbol("HOUSE").close == Decimal("500000")

    def test_existing_provider_quote_also_blocks_import(self, service, repository):
        repository.save_quotes([make_quote("AAPL", date(2024, 1, 31))])

        rows = service.import_quotes([import_row(symbol="aapl")], overwrite=False)

        assert rows[0].status == ImportStatus.WARNING

    def test_warning_rows_are_not_stored(self, service, repository):
        row = import_row(open=Decimal("13"), high=Decimal("12"), low=Decimal("9"), close=Decimal("10"))

        service.import_quotes([row], overwrite=False)

        assert not repository.quote_exists("HOUSE", date(2024, 1, 31))

    def test_nothing_valid_skips_save(self, service, repository):
        rows = service.import_quotes([import_row(close=Decimal("-1"))], overwrite=False)

        assert rows[0].status == ImportStatus.ERROR
        assert repository.get_historical_quotes_for_symbols_in_range({"HOUSE"}, date(2024, 1, 1), date(2024, 12, 31)) == []

    def test_same_quote_imported_twice_is_stored_once(self, db, service):
        first = service.import_quotes([import_row()], overwrite=False)
        second = service.import_quotes([import_row()], overwrite=False)

        assert first[0].status == ImportStatus.VALID
        assert second[0].status == ImportStatus.WARNING
        assert second[0].reason == "Quote already exists, skipping"
        assert db.scalar(select(func.count()).select_from(QuoteRecord)) == 1

    def test_duplicate_rows_in_file_keep_the_last(self, service, repository):
        content = (
            "symbol,date,close,currency\n"
            "HOUSE,2024-01-31,100,HKD\n"
            "house,2024-01-31,200,HKD\n"
            "HOUSE,2024-02-29,300,HKD\n"
        )

        result = service.import_csv(csv_file(content), "quotes.csv")

        assert [row.status for row in result.rows] == [
            ImportStatus.WARNING, ImportStatus.VALID, ImportStatus.VALID,
        ]
        assert result.rows[0].reason == "Duplicate quote in file, superseded by row 3"
        assert result.imported_count == 2
        stored = repository.get_historical_quotes_for_symbols_in_range(
            {"HOUSE"}, date(2024, 1, 1), date(2024, 12, 31)
        )
        assert [q.close for q in stored] == [Decimal("200"), Decimal("300")]

    def test_duplicate_of_invalid_row_is_not_affected(self, service):
        rows = service.import_quotes(
            [import_row(close=Decimal("-1")), import_row(row_number=3)],
            overwrite=False,
        )

        assert [row.status for row in rows] == [ImportStatus.ERROR, ImportStatus.VALID]
