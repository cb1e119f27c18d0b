# quotesync/services/upload/parsers/__init__.py
"""
Quote file parsers package.

Usage:
    from quotesync.services.upload.parsers import get_parser

    parser = get_parser("quotes.csv", "text/csv")

    with open("quotes.csv", "rb") as f:
        result = parser.parse(f, "quotes.csv")

The factory function `get_parser()` selects the parser based on file
extension or content type.
"""

import logging
from pathlib import Path

from quotesync.services.exceptions import ValidationError
from quotesync.services.upload.parsers.base import (
    ImportStatus,
    ParseError,
    ParseResult,
    QuoteFileParser,
    QuoteImport,
)
from quotesync.services.upload.parsers.csv_parser import QuoteCsvParser

logger = logging.getLogger(__name__)

# =============================================================================
# PARSER REGISTRY
# =============================================================================

_PARSERS: list[QuoteFileParser] = [
    QuoteCsvParser(),
]


# =============================================================================
# EXCEPTIONS
# =============================================================================

class UnsupportedFileTypeError(ValidationError):
    """
    Raised when no parser is available for a file type.

    Attributes:
        filename: Name of the unsupported file
        extension: File extension
        supported: List of supported extensions
    """

    def __init__(
            self,
            filename: str,
            extension: str,
            supported: list[str],
    ) -> None:
        self.filename = filename
        self.extension = extension
        self.supported = supported

        message = (
            f"Unsupported file type: '{extension}'. "
            f"Supported formats: {', '.join(supported)}"
        )
        super().__init__(message, field="file")


# =============================================================================
# FACTORY FUNCTION
# =============================================================================

def get_parser(filename: str, content_type: str | None = None) -> QuoteFileParser:
    """
    Get the appropriate parser for a file.

    Raises:
        UnsupportedFileTypeError: If no parser supports this file type
    """
    extension = Path(filename).suffix.lower()

    for parser in _PARSERS:
        if parser.supports_file(filename, content_type):
            logger.debug(f"Selected parser {parser.name} for {filename}")
            return parser

    supported = set()
    for parser in _PARSERS:
        supported.update(parser.supported_extensions)

    raise UnsupportedFileTypeError(
        filename=filename,
        extension=extension,
        supported=sorted(supported),
    )


__all__ = [
    "get_parser",
    "ImportStatus",
    "ParseError",
    "ParseResult",
    "QuoteCsvParser",
    "QuoteFileParser",
    "QuoteImport",
    "UnsupportedFileTypeError",
]
