# quotesync/services/fx/open_exchange_rates.py
"""
Open Exchange Rates client (https://openexchangerates.org).

Only the "latest.json" endpoint is used. Rates are relative to the
account's base currency (USD on free plans). The base is injected into the
result with rate 1 so cross rates can be computed for it too.
"""

import logging
from decimal import Decimal, InvalidOperation

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from quotesync.config import settings
from quotesync.models import DataSource
from quotesync.services.exceptions import (
    ParsingError,
    ProviderUnavailableError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

OXR_LATEST_URL = "https://openexchangerates.org/api/latest.json"
PROVIDER_ID = DataSource.OPEN_EXCHANGE_RATES.value


class OpenExchangeRatesClient:
    """
    Example:
        client = OpenExchangeRatesClient(api_key)
        rates = client.fetch_latest_rates()   # {"USD": Decimal("1"), "HKD": ...}
    """

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    def __init__(self, api_key: str | None, client: httpx.Client | None = None) -> None:
        self._api_key = (api_key or "").strip()
        self._client = client

    def validate_api_key(self) -> None:
        """Raises the same errors as fetch_latest_rates() for a bad key."""
        self.fetch_latest_rates()

    def fetch_latest_rates(self) -> dict[str, Decimal]:
        """
        Fetch the latest snapshot.

        Raises:
            ValidationError: No API key configured
            UnauthorizedError: Key rejected (401/403)
            ProviderUnavailableError: Network failure or any other non-2xx
                (retried with exponential backoff before raising)
            ParsingError: Unexpected payload
        """
        if not self._api_key:
            raise ValidationError("Open Exchange Rates API key is required", field="api_key")

        response = self._get_with_retry(OXR_LATEST_URL, params={"app_id": self._api_key})

        if response.status_code in (401, 403):
            raise UnauthorizedError(provider=PROVIDER_ID, reason=self._error_message(response))

        try:
            payload = response.json()
            base = str(payload["base"]).strip().upper()
            raw_rates = payload["rates"]
        except (ValueError, KeyError, TypeError) as e:
            raise ParsingError(provider=PROVIDER_ID, reason=str(e))

        rates: dict[str, Decimal] = {}
        for currency, value in raw_rates.items():
            try:
                # str() keeps the JSON float's shortest repr (7.8, not 7.7999...)
                rate = Decimal(str(value))
            except (InvalidOperation, ValueError):
                raise ParsingError(provider=PROVIDER_ID, reason=f"Invalid exchange rate for {currency}")
            if not rate.is_finite():
                raise ParsingError(provider=PROVIDER_ID, reason=f"Invalid exchange rate for {currency}")
            rates[currency.upper()] = rate

        rates[base] = Decimal(1)
        logger.debug(f"Fetched {len(rates)} Open Exchange Rates quotes (base {base})")
        return rates

    def _get_with_retry(self, url: str, params: dict[str, str]) -> httpx.Response:
        """GET that retries network failures and non-auth error statuses."""

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type(ProviderUnavailableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> httpx.Response:
            response = self._get(url, params)
            if not response.is_success and response.status_code not in (401, 403):
                raise ProviderUnavailableError(provider=PROVIDER_ID, reason=self._error_message(response))
            return response

        return _inner()

    def _get(self, url: str, params: dict[str, str]) -> httpx.Response:
        try:
            if self._client is not None:
                return self._client.get(url, params=params)
            with httpx.Client(timeout=settings.http_timeout_seconds) as client:
                return client.get(url, params=params)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(provider=PROVIDER_ID, reason=str(e))

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Provider description/message from the error body, else a generic text."""
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            for key in ("description", "message"):
                value = body.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()

        return f"Open Exchange Rates request failed with status {response.status_code}"
