# quotesync/services/upload/parsers/base.py
"""
Abstract interface for quote file parsers.

This module defines the contract that all file parsers must follow.
Using an abstract base class allows for:
- Easy addition of new formats (CSV today, others later)
- Consistent output structure regardless of input format
- Clear separation between parsing and validation

Design Principles:
- Single Responsibility: Parsers only parse, they don't validate business rules
- Interface Segregation: Only essential methods in the base class
- Dependency Inversion: QuoteImportService depends on this abstraction
"""

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Any


# =============================================================================
# ENUMS
# =============================================================================

class ImportStatus(str, Enum):
    """
    Validation outcome of one imported quote row.

    VALID: Row will be stored
    WARNING: Row is suspicious or skipped (see reason)
    ERROR: Row is invalid and never stored
    """

    VALID = "VALID"
    WARNING = "WARNING"
    ERROR = "ERROR"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class QuoteImport:
    """
    Candidate quote from an import file.

    Prices are already Decimals; the date stays a string so that the
    import service can report an invalid date as a row outcome.

    Attributes:
        row_number: 1-based row number in source file (header is row 1)
        symbol: Symbol as given (uppercased, trimmed)
        date: Date string, expected YYYY-MM-DD
        close: Close price (required)
        open/high/low: Optional prices
        volume: Optional traded volume
        currency: Currency code
        status: Validation outcome, set by the import service
        reason: Explanation for WARNING/ERROR
    """

    row_number: int
    symbol: str
    date: str
    close: Decimal
    currency: str
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    volume: Decimal | None = None
    status: ImportStatus = ImportStatus.VALID
    reason: str | None = None

    def mark(self, status: ImportStatus, reason: str | None = None) -> None:
        self.status = status
        self.reason = reason


@dataclass
class ParseError:
    """
    Represents a parsing error for a specific row.

    Attributes:
        row_number: 1-based row number where error occurred
        error_type: Category of error (e.g., "missing_value", "invalid_number")
        message: Human-readable error description
        field: Specific field that caused the error (if applicable)
        raw_data: Original row data for context
    """

    row_number: int
    error_type: str
    message: str
    field: str | None = None
    raw_data: dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclass
class ParseResult:
    """
    Result of parsing a file.

    Contains both successfully parsed rows and any errors encountered.
    This allows partial success reporting.
    """

    rows: list[QuoteImport] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    total_rows: int = 0

    @property
    def success_count(self) -> int:
        return len(self.rows)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def has_data(self) -> bool:
        return self.success_count > 0


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class QuoteFileParser(ABC):
    """
    Abstract base class for quote file parsers.

    The parser is ONLY responsible for:
    - Reading the file format
    - Mapping columns to QuoteImport fields
    - Converting numbers to Decimal
    - Reporting parsing errors

    It does NOT:
    - Validate business rules (QuoteImportService does this)
    - Check for existing quotes or write to storage

    Example:
        parser = QuoteCsvParser()
        result = parser.parse(file, "quotes.csv")

        for error in result.errors:
            print(f"Error on row {error.row_number}: {error.message}")
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this parser (e.g., "CSV")."""
        pass

    @property
    @abstractmethod
    def supported_extensions(self) -> set[str]:
        """Lowercase extensions with the leading dot (e.g., {".csv"})."""
        pass

    @property
    @abstractmethod
    def supported_content_types(self) -> set[str]:
        pass

    @abstractmethod
    def parse(self, file: BinaryIO, filename: str) -> ParseResult:
        """
        Parse file contents into quote rows.

        Note:
            This method should NOT raise exceptions for individual row errors.
            Instead, capture them in ParseResult.errors and continue processing.
        """
        pass

    def supports_file(self, filename: str, content_type: str | None = None) -> bool:
        extension = Path(filename).suffix.lower()

        if extension in self.supported_extensions:
            return True

        if content_type and content_type.lower() in self.supported_content_types:
            return True

        return False
