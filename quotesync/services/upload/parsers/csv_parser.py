# quotesync/services/upload/parsers/csv_parser.py
"""
CSV quote file parser.

Parses CSV files of daily quotes into QuoteImport rows.

Expected CSV Format:
    symbol,date,open,high,low,close,volume,currency
    AAPL,2024-01-02,187.15,188.44,183.89,185.64,82488700,USD

Column Mapping:
    CSV Column                  -> Internal Field
    ----------------------------------------------
    symbol / ticker             -> symbol
    date / trade_date / day     -> date
    open / open_price           -> open
    high / high_price           -> high
    low / low_price             -> low
    close / close_price / price -> close
    volume / vol                -> volume
    currency / ccy              -> currency

Only symbol, date and close columns are required. Dates are passed through
as trimmed strings; QuoteImportService rejects anything not YYYY-MM-DD.
"""

import csv
import io
import logging
from decimal import Decimal, InvalidOperation
from typing import BinaryIO

from quotesync.config import settings
from quotesync.services.upload.parsers.base import (
    ParseError,
    ParseResult,
    QuoteFileParser,
    QuoteImport,
)

logger = logging.getLogger(__name__)


class QuoteCsvParser(QuoteFileParser):
    """
    Parser for CSV quote files.

    Features:
    - Flexible column mapping (handles different CSV layouts)
    - Graceful error handling per row
    - Encoding detection (UTF-8, UTF-8 BOM, Latin-1)

    Example:
        parser = QuoteCsvParser()

        with open("quotes.csv", "rb") as f:
            result = parser.parse(f, "quotes.csv")

        print(f"Parsed {result.success_count} quotes")
    """

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    # Column name mapping: internal field -> accepted CSV headers
    COLUMN_MAPPING: dict[str, list[str]] = {
        "symbol": ["symbol", "ticker", "code"],
        "date": ["date", "trade_date", "day", "timestamp"],
        "open": ["open", "open_price"],
        "high": ["high", "high_price"],
        "low": ["low", "low_price"],
        "close": ["close", "close_price", "price", "nav"],
        "volume": ["volume", "vol"],
        "currency": ["currency", "ccy"],
    }

    REQUIRED_COLUMNS: tuple[str, ...] = ("symbol", "date", "close")

    OPTIONAL_DECIMAL_FIELDS: tuple[str, ...] = ("open", "high", "low", "volume")

    # =========================================================================
    # INTERFACE IMPLEMENTATION
    # =========================================================================

    @property
    def name(self) -> str:
        return "CSV"

    @property
    def supported_extensions(self) -> set[str]:
        return {".csv"}

    @property
    def supported_content_types(self) -> set[str]:
        return {"text/csv", "application/csv", "text/plain"}

    def parse(self, file: BinaryIO, filename: str) -> ParseResult:
        """
        Parse CSV file into quote rows.

        Args:
            file: Binary file object containing CSV data
            filename: Original filename for error messages

        Returns:
            ParseResult with parsed rows and errors
        """
        logger.info(f"Parsing quote CSV file: {filename}")

        result = ParseResult()

        try:
            content = self._read_file_content(file)
        except Exception as e:
            logger.error(f"Failed to read file {filename}: {e}", exc_info=True)
            result.errors.append(ParseError(
                row_number=0,
                error_type="file_read_error",
                message=f"Could not read file: {e}",
            ))
            return result

        try:
            reader = csv.DictReader(io.StringIO(content))

            if not reader.fieldnames:
                result.errors.append(ParseError(
                    row_number=0,
                    error_type="missing_headers",
                    message="CSV file has no headers",
                ))
                return result

            column_map = self._build_column_map(reader.fieldnames)

            missing_columns = [c for c in self.REQUIRED_COLUMNS if c not in column_map]
            if missing_columns:
                result.errors.append(ParseError(
                    row_number=0,
                    error_type="missing_columns",
                    message=f"Missing required columns: {', '.join(missing_columns)}",
                ))
                return result

            for row_num, row in enumerate(reader, start=2):  # Header is row 1
                result.total_rows += 1

                parsed_row, error = self._parse_row(row_num, row, column_map)

                if error:
                    result.errors.append(error)
                elif parsed_row:
                    result.rows.append(parsed_row)

        except csv.Error as e:
            logger.error(f"CSV parsing error in {filename}: {e}")
            result.errors.append(ParseError(
                row_number=0,
                error_type="csv_format_error",
                message=f"Invalid CSV format: {e}",
            ))

        logger.info(
            f"Parsed {filename}: {result.success_count} rows OK, "
            f"{result.error_count} errors"
        )

        return result

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _read_file_content(self, file: BinaryIO) -> str:
        """
        Read and decode file content, handling different encodings.

        Tries UTF-8 with BOM first, falls back to Latin-1.
        """
        raw_content = file.read()

        try:
            return raw_content.decode("utf-8-sig")
        except UnicodeDecodeError:
            pass

        logger.warning("File is not UTF-8, falling back to Latin-1 encoding")
        return raw_content.decode("latin-1")

    def _build_column_map(self, headers: list[str]) -> dict[str, str]:
        """Map internal field names to the actual CSV column names."""
        column_map: dict[str, str] = {}
        normalized_headers = {h.lower().strip(): h for h in headers if h}

        for internal_field, possible_names in self.COLUMN_MAPPING.items():
            for name in possible_names:
                if name in normalized_headers:
                    column_map[internal_field] = normalized_headers[name]
                    break

        return column_map

    def _parse_row(
            self,
            row_number: int,
            row: dict[str, str],
            column_map: dict[str, str],
    ) -> tuple[QuoteImport | None, ParseError | None]:
        """
        Parse a single CSV row.

        Returns:
            Tuple of (parsed_row, error) - one will be None
        """
        raw_data = dict(row)
        values = {
            internal_field: (row.get(csv_column) or "").strip()
            for internal_field, csv_column in column_map.items()
        }

        if not values["close"]:
            return None, ParseError(
                row_number=row_number,
                error_type="missing_value",
                message="Missing required value for 'close'",
                field="close",
                raw_data=raw_data,
            )

        decimals: dict[str, Decimal | None] = {}
        for field_name in ("close", *self.OPTIONAL_DECIMAL_FIELDS):
            raw_value = values.get(field_name, "")
            if not raw_value:
                decimals[field_name] = None
                continue
            try:
                decimals[field_name] = Decimal(raw_value.replace(",", ""))
            except InvalidOperation:
                return None, ParseError(
                    row_number=row_number,
                    error_type="invalid_number",
                    message=f"Invalid number for '{field_name}': '{raw_value}'",
                    field=field_name,
                    raw_data=raw_data,
                )

        return QuoteImport(
            row_number=row_number,
            symbol=values["symbol"].upper(),
            date=values["date"],
            close=decimals["close"],
            open=decimals["open"],
            high=decimals["high"],
            low=decimals["low"],
            volume=decimals["volume"],
            currency=(values.get("currency") or settings.base_currency).upper(),
        ), None
