# quotesync/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO transport
knowledge. Callers (job runners, an API layer) map them as they see fit.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── NotFoundError
    ├── MarketDataError
    │   ├── ProviderUnavailableError
    │   ├── RateLimitError
    │   ├── UnsupportedSymbolError
    │   ├── NoDataError
    │   ├── UnauthorizedError
    │   ├── ParsingError
    │   └── TickerNotFoundError
    ├── RepositoryError
    └── FXRateError
        ├── FXRateNotFoundError
        ├── FXProviderError
        └── FXConversionError

Per-symbol MarketDataErrors raised inside bulk operations are captured and
returned as failure data; they only propagate from single-symbol calls.
"""

from datetime import date


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    Settings updates raise this before any state is mutated.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Asset", "ProviderSetting")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Identity of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(MarketDataError):
    """
    Raised when a market data provider is temporarily unavailable.

    Examples:
    - Network timeout
    - Server errors (500, 502, 503)
    - API maintenance

    This is a retryable error.
    """

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class RateLimitError(MarketDataError):
    """
    Raised when the provider's rate limit has been exceeded.

    This is a retryable error (with backoff).

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class UnsupportedSymbolError(MarketDataError):
    """
    Raised when a symbol is outside the provider's addressable format.

    Raised before any network call is made. Not retryable.
    """

    def __init__(self, symbol: str, provider: str) -> None:
        super().__init__(f"Symbol '{symbol}' is not supported by {provider}", provider=provider)
        self.symbol = symbol


class NoDataError(MarketDataError):
    """
    Raised when the provider reports no data for the requested window.

    Commonly reflects a non-trading period. Bulk fetches log and skip it.
    """

    def __init__(self, symbol: str, provider: str, detail: str | None = None) -> None:
        message = f"No data for '{symbol}' from {provider}"
        if detail:
            message += f": {detail}"
        super().__init__(message, provider=provider)
        self.symbol = symbol


class UnauthorizedError(MarketDataError):
    """Raised on 401/403 responses or a rejected API key."""

    def __init__(self, provider: str, reason: str = "unauthorized") -> None:
        super().__init__(f"Provider '{provider}' rejected the request: {reason}", provider=provider)
        self.reason = reason


class ParsingError(MarketDataError):
    """Raised when a provider payload does not have the expected shape."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"Could not parse response from {provider}: {reason}", provider=provider)
        self.reason = reason


class TickerNotFoundError(MarketDataError):
    """
    Raised when a ticker symbol is not found by the provider.

    This is NOT a retryable error.
    """

    def __init__(self, ticker: str, provider: str) -> None:
        message = f"Ticker '{ticker}' not found by {provider}"
        super().__init__(message, provider=provider)
        self.ticker = ticker


# =============================================================================
# REPOSITORY ERRORS
# =============================================================================


class RepositoryError(ServiceError):
    """
    Raised when a query or persistence operation fails.

    Attributes:
        operation: Name of the repository operation that failed
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


# =============================================================================
# FX RATE ERRORS
# =============================================================================


class FXRateError(ServiceError):
    """
    Base exception for FX rate errors.

    Attributes:
        base_currency: The base currency code
        quote_currency: The quote currency code
    """

    def __init__(
            self,
            message: str,
            base_currency: str | None = None,
            quote_currency: str | None = None,
    ) -> None:
        self.base_currency = base_currency
        self.quote_currency = quote_currency
        super().__init__(message)


class FXRateNotFoundError(FXRateError):
    """
    Raised when no FX rate is stored for the requested pair.

    Attributes:
        date: The date for which rate was requested (None for "latest")
    """

    def __init__(
            self,
            base_currency: str,
            quote_currency: str,
            rate_date: date | None = None,
            message: str | None = None
    ) -> None:
        self.date = rate_date
        when = f" on {rate_date}" if rate_date else ""
        msg = message or f"No FX rate found for {base_currency}/{quote_currency}{when}"
        super().__init__(msg, base_currency=base_currency, quote_currency=quote_currency)


class FXProviderError(FXRateError):
    """
    Raised when the FX data provider fails.

    Attributes:
        provider: Name of the FX data provider
        reason: Specific reason for failure
    """

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(f"FX provider '{provider}' error: {reason}")


class FXConversionError(FXRateError):
    """
    Raised when a cross rate cannot be computed.

    Examples:
    - Currency missing from the rate snapshot
    - Zero rate for the source currency

    Attributes:
        reason: Specific reason for conversion failure
    """

    def __init__(
            self,
            reason: str,
            base_currency: str | None = None,
            quote_currency: str | None = None,
    ) -> None:
        self.reason = reason
        super().__init__(
            f"FX conversion error: {reason}",
            base_currency=base_currency,
            quote_currency=quote_currency,
        )


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    # Not Found
    "NotFoundError",
    # Market Data
    "MarketDataError",
    "ProviderUnavailableError",
    "RateLimitError",
    "UnsupportedSymbolError",
    "NoDataError",
    "UnauthorizedError",
    "ParsingError",
    "TickerNotFoundError",
    # Repository
    "RepositoryError",
    # FX Rate
    "FXRateError",
    "FXRateNotFoundError",
    "FXProviderError",
    "FXConversionError",
]
