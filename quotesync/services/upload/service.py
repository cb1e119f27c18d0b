# quotesync/services/upload/service.py
"""
Quote import service for manually supplied quotes.

This service orchestrates the import flow:
1. Parse file using the appropriate parser (CSV)
2. Check each row against stored quotes (skip or overwrite)
3. Validate new rows (symbol, date, prices)
4. Keep the last row per (symbol, date); earlier ones become warnings
5. Convert valid rows to MANUAL quotes and bulk upsert them

Design Principles:
- Format agnostic: delegates parsing to specialized parsers
- Every row gets an outcome (VALID / WARNING / ERROR with reason)
- No HTTP knowledge: raises domain exceptions

Usage:
    from quotesync.services.upload import QuoteImportService

    service = QuoteImportService(repository)

    with open("quotes.csv", "rb") as f:
        result = service.import_csv(f, "quotes.csv", overwrite=False)

    for row in result.rows:
        print(f"Row {row.row_number}: {row.status.value} {row.reason or ''}")
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import BinaryIO

from quotesync.models import DataSource
from quotesync.services.market_data.base import Quote
from quotesync.services.protocols import MarketDataRepositoryProtocol
from quotesync.services.upload.parsers import (
    ImportStatus,
    ParseError,
    QuoteImport,
    get_parser,
)
from quotesync.utils.date_utils import noon_of_day

logger = logging.getLogger(__name__)

IMPORT_DATE_FORMAT = "%Y-%m-%d"
DUPLICATE_ROW_REASON = "Duplicate quote in file, superseded by row {row}"


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass
class ImportResult:
    """
    Result of importing a quote file.

    Attributes:
        filename: Original filename
        rows: Every parsed row with its validation outcome
        parse_errors: Rows that could not be parsed at all
        imported_count: Rows written by the bulk upsert
    """

    filename: str = ""
    rows: list[QuoteImport] = field(default_factory=list)
    parse_errors: list[ParseError] = field(default_factory=list)
    imported_count: int = 0

    def _count(self, status: ImportStatus) -> int:
        return sum(1 for row in self.rows if row.status == status)

    @property
    def valid_count(self) -> int:
        return self._count(ImportStatus.VALID)

    @property
    def warning_count(self) -> int:
        return self._count(ImportStatus.WARNING)

    @property
    def error_count(self) -> int:
        return self._count(ImportStatus.ERROR) + len(self.parse_errors)


# =============================================================================
# IMPORT SERVICE
# =============================================================================

class QuoteImportService:
    """
    Validates and stores manually imported quotes.

    Example:
        service = QuoteImportService(repository)
        rows = service.import_quotes(candidate_rows, overwrite=True)
    """

    def __init__(self, repository: MarketDataRepositoryProtocol) -> None:
        self._repository = repository

    def import_csv(self, file: BinaryIO, filename: str, overwrite: bool = False) -> ImportResult:
        """
        Parse a quote file and import its rows.

        Raises:
            UnsupportedFileTypeError: No parser for the file type
            RepositoryError: Bulk upsert failed
        """
        parser = get_parser(filename)
        parse_result = parser.parse(file, filename)

        result = ImportResult(filename=filename, rows=parse_result.rows, parse_errors=parse_result.errors)
        result.imported_count = self._process_rows(result.rows, overwrite)

        logger.info(
            f"Imported {filename}: {result.valid_count} valid, "
            f"{result.warning_count} warnings, {result.error_count} errors"
        )
        return result

    def import_quotes(self, rows: list[QuoteImport], overwrite: bool) -> list[QuoteImport]:
        """
        Assign an outcome to every row and store the valid ones.

        Existing (symbol, date) rows are skipped with a warning unless
        overwrite is set, in which case they are stored without validation.

        Returns:
            The same rows, with status and reason set

        Raises:
            RepositoryError: Bulk upsert failed
        """
        self._process_rows(rows, overwrite)
        return rows

    def _process_rows(self, rows: list[QuoteImport], overwrite: bool) -> int:
        """Mark every row and store the valid ones. Returns the number stored."""
        logger.debug(f"Processing {len(rows)} imported quotes (overwrite={overwrite})")

        to_import: dict[tuple[str, date], QuoteImport] = {}

        for row in rows:
            if self._quote_exists(row):
                if overwrite:
                    row.mark(ImportStatus.VALID)
                    self._queue(to_import, row)
                else:
                    row.mark(ImportStatus.WARNING, "Quote already exists, skipping")
                continue

            status, reason = self.validate_quote_data(row)
            row.mark(status, reason)
            if status == ImportStatus.VALID:
                self._queue(to_import, row)

        quotes = []
        for row in to_import.values():
            try:
                quotes.append(self.convert_import_quote(row))
            except ValueError as e:
                logger.error(f"Failed to convert imported quote at row {row.row_number}: {e}")

        if not quotes:
            logger.debug("No quotes to store after validation")
            return 0

        saved = self._repository.save_quotes(quotes)
        logger.info(f"Stored {saved} imported quotes")
        return saved

    @staticmethod
    def _queue(to_import: dict[tuple[str, date], QuoteImport], row: QuoteImport) -> None:
        # a later row for the same symbol and day replaces the earlier one
        key = (row.symbol.strip().upper(), _parse_import_date(row.date))
        earlier = to_import.pop(key, None)
        if earlier is not None:
            earlier.mark(ImportStatus.WARNING, DUPLICATE_ROW_REASON.format(row=row.row_number))
        to_import[key] = row

    # =========================================================================
    # VALIDATION AND CONVERSION
    # =========================================================================

    @staticmethod
    def validate_quote_data(row: QuoteImport) -> tuple[ImportStatus, str | None]:
        if not row.symbol.strip():
            return ImportStatus.ERROR, "Symbol is required"

        if _parse_import_date(row.date) is None:
            return ImportStatus.ERROR, "Invalid date format. Expected YYYY-MM-DD"

        if row.close <= 0:
            return ImportStatus.ERROR, "Close price must be greater than 0"

        if row.open is not None and row.high is not None and row.low is not None:
            if row.high < row.low:
                return ImportStatus.ERROR, "High price cannot be less than low price"
            if row.open > row.high or row.open < row.low:
                return ImportStatus.WARNING, "Open price is outside high-low range"
            if row.close > row.high or row.close < row.low:
                return ImportStatus.WARNING, "Close price is outside high-low range"

        return ImportStatus.VALID, None

    @staticmethod
    def convert_import_quote(row: QuoteImport) -> Quote:
        """
        Build a MANUAL quote at 12:00 UTC of the row's date.

        Raises:
            ValueError: Unparseable date
        """
        day = datetime.strptime(row.date, IMPORT_DATE_FORMAT).date()

        return Quote(
            symbol=row.symbol.strip().upper(),
            timestamp=noon_of_day(day),
            open=row.open if row.open is not None else row.close,
            high=row.high if row.high is not None else row.close,
            low=row.low if row.low is not None else row.close,
            close=row.close,
            adjclose=row.close,
            volume=row.volume if row.volume is not None else Decimal(0),
            currency=row.currency,
            data_source=DataSource.MANUAL.value,
        )

    def _quote_exists(self, row: QuoteImport) -> bool:
        day = _parse_import_date(row.date)
        if day is None or not row.symbol.strip():
            return False
        return self._repository.quote_exists(row.symbol.strip().upper(), day)


def _parse_import_date(value: str) -> date | None:
    try:
        return datetime.strptime(value.strip(), IMPORT_DATE_FORMAT).date()
    except ValueError:
        return None
