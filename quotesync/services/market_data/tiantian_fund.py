# quotesync/services/market_data/tiantian_fund.py
"""
Tiantian (fund.eastmoney.com) provider for mainland China mutual funds.

Addressable symbols: "CODE.FUND" or a bare 6-digit fund code.

Funds publish one net asset value (NAV) per trading day, so quotes are
built from NAVs: open defaults to the NAV, high/low are the max/min of
open and NAV, and volume is 0.

Endpoints:
- fundgz JSONP:  intraday estimate, `jsonpgz({...});`
- f10/lsjz:      paged NAV history (ErrCode / TotalCount / Data.LSJZList)
- pingzhongdata: fund detail script, carries `var fS_name = "...";`
"""

import json
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal

from quotesync.models import DataSource
from quotesync.services.constants import (
    TIANTIAN_BULK_BATCH_SIZE,
    TIANTIAN_BULK_PAUSE_SECONDS,
    TIANTIAN_MAX_PAGES,
    TIANTIAN_PAGE_PAUSE_SECONDS,
    TIANTIAN_PAGE_SIZE,
)
from quotesync.services.exceptions import MarketDataError, NoDataError, ParsingError
from quotesync.services.market_data.base import (
    AssetProfile,
    HttpMarketDataProvider,
    Quote,
    to_decimal,
)
from quotesync.utils.date_utils import start_of_day, utc_now

logger = logging.getLogger(__name__)

LATEST_URL_BASE = "https://fundgz.1234567.com.cn/js"
HISTORY_URL = "https://api.fund.eastmoney.com/f10/lsjz"
PROFILE_INFO_URL_BASE = "https://fund.eastmoney.com/pingzhongdata"
PROFILE_REFERER = "https://fund.eastmoney.com/"

FUND_NAME_MARKER = 'var fS_name = "'


# =============================================================================
# PARSING HELPERS
# =============================================================================

def parse_fund_symbol(symbol: str) -> tuple[str, str] | None:
    """
    Return (normalized symbol, fund code) for "161039.FUND" or "161039".
    """
    normalized = symbol.strip().upper()
    if "." in normalized:
        code, market = normalized.split(".", 1)
        if market == "FUND" and len(code) == 6 and code.isascii() and code.isdigit():
            return normalized, code
        return None

    if len(normalized) == 6 and normalized.isascii() and normalized.isdigit():
        return normalized, normalized
    return None


def parse_jsonp_payload(payload: str) -> str | None:
    """Extract the JSON text between the outermost parentheses."""
    start = payload.find("(")
    end = payload.rfind(")")
    if start < 0 or end <= start:
        return None
    return payload[start + 1:end].strip()


def parse_latest_fields(
        json_text: str,
        fund_code: str,
) -> tuple[Decimal, Decimal | None, datetime] | None:
    """
    Parse the estimate payload into (close, open, timestamp).

    Close is the intraday estimate (gsz), else the last NAV (dwjz); open is
    the last NAV. Returns None for an empty payload or a different fund.

    Raises:
        ValueError: Malformed JSON
    """
    if not json_text.strip():
        return None

    latest = json.loads(json_text)
    if not isinstance(latest, dict):
        return None
    if str(latest.get("fundcode", "")) != fund_code:
        return None

    close = _parse_nav(latest.get("gsz")) or _parse_nav(latest.get("dwjz"))
    if close is None:
        return None

    open_price = _parse_nav(latest.get("dwjz"))
    timestamp = _parse_latest_timestamp(latest.get("gztime") or "", latest.get("jzrq") or "")
    return close, open_price, timestamp


def parse_fund_name_from_profile_js(body: str) -> str | None:
    start = body.find(FUND_NAME_MARKER)
    if start < 0:
        return None
    tail = body[start + len(FUND_NAME_MARKER):]
    end = tail.find('"')
    if end < 0:
        return None
    return tail[:end].strip() or None


def _parse_nav(value) -> Decimal | None:
    try:
        return to_decimal(value)
    except ValueError:
        return None


def _parse_latest_timestamp(gztime: str, jzrq: str) -> datetime:
    """Estimate time, else NAV date at midnight, else now."""
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M"):
        try:
            return datetime.strptime(gztime.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    try:
        return start_of_day(datetime.strptime(jzrq.strip(), "%Y-%m-%d").date())
    except ValueError:
        return utc_now()


class TiantianFundProvider(HttpMarketDataProvider):
    """Mainland China mutual fund NAVs from Tiantian / EastMoney fund APIs."""

    BULK_BATCH_SIZE = TIANTIAN_BULK_BATCH_SIZE
    BULK_BATCH_PAUSE_SECONDS = TIANTIAN_BULK_PAUSE_SECONDS
    DEFAULT_CURRENCY = "CNY"
    REFERER = "https://fundf10.eastmoney.com/"

    PAGE_SIZE = TIANTIAN_PAGE_SIZE
    MAX_PAGES = TIANTIAN_MAX_PAGES
    PAGE_PAUSE_SECONDS = TIANTIAN_PAGE_PAUSE_SECONDS

    def __init__(self, priority: int = 1, **kwargs) -> None:
        super().__init__(**kwargs)
        self._priority = priority

    @property
    def id(self) -> str:
        return DataSource.TIANTIAN_FUND.value

    @property
    def priority(self) -> int:
        return self._priority

    def supports_symbol(self, symbol: str) -> bool:
        return parse_fund_symbol(symbol) is not None

    def quote_from_nav(
            self,
            symbol: str,
            timestamp: datetime,
            nav: Decimal,
            open_price: Decimal | None,
            currency: str,
    ) -> Quote:
        open_value = open_price if open_price is not None else nav
        return Quote(
            symbol=symbol,
            timestamp=timestamp,
            open=open_value,
            high=max(open_value, nav),
            low=min(open_value, nav),
            close=nav,
            adjclose=nav,
            volume=Decimal(0),
            currency=currency,
            data_source=self.id,
        )

    # =========================================================================
    # QUOTES
    # =========================================================================

    def _fetch_latest_quote(self, symbol: str, currency: str) -> Quote:
        normalized, fund_code = parse_fund_symbol(symbol)
        fields = self._fetch_latest_fields(normalized, fund_code)
        if fields is None:
            raise NoDataError(symbol=normalized, provider=self.id, detail="empty estimate payload")

        close, open_price, timestamp = fields
        return self.quote_from_nav(normalized, timestamp, close, open_price, currency)

    def _fetch_latest_fields(self, normalized: str, fund_code: str):
        response = self._get(f"{LATEST_URL_BASE}/{fund_code}.js", context=f"latest quote {normalized}")
        json_text = parse_jsonp_payload(response.text)
        if json_text is None:
            raise ParsingError(provider=self.id, reason="failed to parse latest JSONP payload")

        try:
            return parse_latest_fields(json_text, fund_code)
        except ValueError as e:
            raise ParsingError(provider=self.id, reason=f"latest payload for {normalized}: {e}")

    def _latest_quote_from_history(self, symbol: str, currency: str) -> Quote | None:
        """Newest NAV from the first history page (page size 1)."""
        normalized, fund_code = parse_fund_symbol(symbol)
        payload = self._execute_with_retry(
            self._fetch_history_page,
            normalized,
            {"fundCode": fund_code, "pageIndex": "1", "pageSize": "1"},
        )

        for item in self._history_items(payload):
            quote = self._quote_from_history_item(item, normalized, currency)
            if quote is not None:
                return quote
        return None

    def _fetch_historical_quotes(
            self,
            symbol: str,
            start: datetime,
            end: datetime,
            currency: str,
    ) -> list[Quote]:
        normalized, fund_code = parse_fund_symbol(symbol)
        start_date = start.strftime("%Y-%m-%d")
        end_date = end.strftime("%Y-%m-%d")

        quotes: list[Quote] = []
        page_index = 1

        while page_index <= self.MAX_PAGES:
            payload = self._fetch_history_page(normalized, {
                "fundCode": fund_code,
                "pageIndex": str(page_index),
                "pageSize": str(self.PAGE_SIZE),
                "startDate": start_date,
                "endDate": end_date,
            })

            items = self._history_items(payload)
            if not items:
                break

            for item in items:
                quote = self._quote_from_history_item(item, normalized, currency)
                if quote is not None:
                    quotes.append(quote)

            if len(items) < self.PAGE_SIZE:
                break

            total_count = payload.get("TotalCount")
            if isinstance(total_count, int) and page_index * self.PAGE_SIZE >= total_count:
                break

            page_index += 1
            if self.PAGE_PAUSE_SECONDS > 0:
                time.sleep(self.PAGE_PAUSE_SECONDS)

        if not quotes:
            raise NoDataError(symbol=normalized, provider=self.id, detail=f"{start_date} to {end_date}")

        quotes.sort(key=lambda q: q.timestamp)
        return quotes

    def _fetch_history_page(self, normalized: str, params: dict[str, str]) -> dict:
        payload = self._get_json(HISTORY_URL, params=params, context=f"history {normalized}")
        if not isinstance(payload, dict):
            raise ParsingError(provider=self.id, reason=f"unexpected history payload for {normalized}")

        err_code = payload.get("ErrCode") or 0
        if err_code != 0:
            err_msg = payload.get("ErrMsg") or "Unknown Tiantian fund history error"
            raise MarketDataError(f"{self.id} history error for {normalized}: {err_msg}", provider=self.id)
        return payload

    @staticmethod
    def _history_items(payload: dict) -> list[dict]:
        data = payload.get("Data") or {}
        return list(data.get("LSJZList") or [])

    def _quote_from_history_item(self, item: dict, symbol: str, currency: str) -> Quote | None:
        try:
            day = datetime.strptime(str(item.get("FSRQ", "")), "%Y-%m-%d").date()
        except ValueError:
            return None

        nav = _parse_nav(item.get("DWJZ"))
        if nav is None:
            return None
        return self.quote_from_nav(symbol, start_of_day(day), nav, nav, currency)

    # =========================================================================
    # PROFILE
    # =========================================================================

    def get_asset_profile(self, symbol: str) -> AssetProfile:
        """
        Name from the estimate payload, falling back to the fund detail
        script (`fS_name`).
        """
        self._ensure_supported(symbol)
        normalized, fund_code = parse_fund_symbol(symbol)

        try:
            name = self._execute_with_retry(self._fetch_name_from_latest, normalized, fund_code)
        except MarketDataError as e:
            logger.debug(f"{self.id} latest profile name lookup failed for {normalized}: {e}")
            name = None

        if name is None:
            name = self._execute_with_retry(self._fetch_name_from_profile_js, fund_code)

        return AssetProfile(
            symbol=normalized,
            name=name,
            currency="CNY",
            data_source=self.id,
            asset_type="FUND",
            asset_class="Equity",
            asset_sub_class="Mutual Fund",
        )

    def _fetch_name_from_latest(self, normalized: str, fund_code: str) -> str | None:
        response = self._get(f"{LATEST_URL_BASE}/{fund_code}.js", context=f"profile {normalized}")
        json_text = parse_jsonp_payload(response.text)
        if json_text is None:
            raise ParsingError(provider=self.id, reason="failed to parse latest JSONP payload")
        if not json_text:
            return None

        try:
            latest = json.loads(json_text)
        except ValueError as e:
            raise ParsingError(provider=self.id, reason=str(e))

        if not isinstance(latest, dict):
            return None
        if str(latest.get("fundcode", "")) != fund_code:
            return None
        return (latest.get("name") or "").strip() or None

    def _fetch_name_from_profile_js(self, fund_code: str) -> str | None:
        response = self._get(
            f"{PROFILE_INFO_URL_BASE}/{fund_code}.js",
            params={"v": str(int(time.time() * 1000))},
            headers={"Referer": PROFILE_REFERER},
            context=f"profile script {fund_code}",
        )
        return parse_fund_name_from_profile_js(response.text)
