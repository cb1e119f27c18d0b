# quotesync/services/upload/__init__.py
"""
Quote import package.

Usage:
    from quotesync.services.upload import QuoteImportService, ImportStatus

    result = QuoteImportService(repository).import_csv(file, "quotes.csv")
"""

from quotesync.services.upload.parsers import (
    ImportStatus,
    ParseError,
    ParseResult,
    QuoteCsvParser,
    QuoteImport,
    UnsupportedFileTypeError,
    get_parser,
)
from quotesync.services.upload.service import ImportResult, QuoteImportService

__all__ = [
    "ImportResult",
    "ImportStatus",
    "ParseError",
    "ParseResult",
    "QuoteCsvParser",
    "QuoteImport",
    "QuoteImportService",
    "UnsupportedFileTypeError",
    "get_parser",
]
