# quotesync/services/market_data/eastmoney_cn.py
"""
EastMoney provider for mainland China A-shares and exchange-traded funds.

Addressable symbols: 6-digit codes on Shanghai (".SH") or Shenzhen (".SZ").
EastMoney identifies them by "secid" = "<market id>.<code>" where the
market id is 1 for Shanghai and 0 for Shenzhen.

Endpoints:
- push2 stock/get:       latest quote. Prices are integers in cents (f43 etc.)
- push2his kline/get:    daily klines "date,open,close,high,low,volume,..."
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from quotesync.models import DataSource
from quotesync.services.constants import (
    EASTMONEY_BULK_BATCH_SIZE,
    EASTMONEY_BULK_PAUSE_SECONDS,
    LATEST_QUOTE_FALLBACK_DAYS,
)
from quotesync.services.exceptions import MarketDataError, NoDataError, ParsingError
from quotesync.services.market_data.base import (
    AssetProfile,
    HttpMarketDataProvider,
    Quote,
    to_decimal,
)
from quotesync.utils.date_utils import epoch_to_datetime, start_of_day, utc_now

logger = logging.getLogger(__name__)

LATEST_URL = "https://push2.eastmoney.com/api/qt/stock/get"
HISTORY_URL = "https://push2his.eastmoney.com/api/qt/stock/kline/get"

LATEST_FIELDS = "f58,f43,f44,f45,f46,f47,f86"
KLINE_FIELDS1 = "f1,f2,f3,f4,f5,f6"
KLINE_FIELDS2 = "f51,f52,f53,f54,f55,f56"

MARKET_IDS: dict[str, str] = {
    "SH": "1",
    "SZ": "0",
}


def parse_cn_symbol(symbol: str) -> tuple[str, str] | None:
    """
    Split a canonical A-share symbol into (normalized symbol, secid).

    >>> parse_cn_symbol("600519.sh")
    ('600519.SH', '1.600519')
    """
    normalized = symbol.strip().upper()
    if "." not in normalized:
        return None

    code, market = normalized.split(".", 1)
    if len(code) != 6 or not (code.isascii() and code.isdigit()):
        return None

    market_id = MARKET_IDS.get(market)
    if market_id is None:
        return None

    return normalized, f"{market_id}.{code}"


def infer_asset_sub_class(symbol: str) -> str:
    """Exchange-traded fund code ranges start with 5 (SH) or 15/16 (SZ)."""
    code = symbol.split(".", 1)[0]
    if code.startswith(("5", "15", "16")):
        return "ETF"
    return "Stock"


class EastMoneyCnProvider(HttpMarketDataProvider):
    """Mainland China equities from EastMoney push2 endpoints."""

    BULK_BATCH_SIZE = EASTMONEY_BULK_BATCH_SIZE
    BULK_BATCH_PAUSE_SECONDS = EASTMONEY_BULK_PAUSE_SECONDS
    DEFAULT_CURRENCY = "CNY"
    REFERER = "https://quote.eastmoney.com/"

    def __init__(self, priority: int = 2, **kwargs) -> None:
        super().__init__(**kwargs)
        self._priority = priority

    @property
    def id(self) -> str:
        return DataSource.EASTMONEY_CN.value

    @property
    def priority(self) -> int:
        return self._priority

    def supports_symbol(self, symbol: str) -> bool:
        return parse_cn_symbol(symbol) is not None

    # =========================================================================
    # QUOTES
    # =========================================================================

    def _fetch_latest_quote(self, symbol: str, currency: str) -> Quote:
        normalized, secid = parse_cn_symbol(symbol)
        payload = self._get_json(
            LATEST_URL,
            params={"secid": secid, "fields": LATEST_FIELDS},
            context=f"latest quote {normalized}",
        )

        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            raise NoDataError(symbol=normalized, provider=self.id, detail="empty latest payload")

        try:
            close = self._cents_to_price(data.get("f43"))
            if close <= 0:
                raise NoDataError(symbol=normalized, provider=self.id, detail="no last price")

            timestamp = epoch_to_datetime(data.get("f86"))
            return Quote(
                symbol=normalized,
                timestamp=timestamp,
                open=self._cents_to_price(data.get("f46")),
                high=self._cents_to_price(data.get("f44")),
                low=self._cents_to_price(data.get("f45")),
                close=close,
                adjclose=close,
                volume=to_decimal(data.get("f47"), precision=None) or Decimal(0),
                currency=currency,
                data_source=self.id,
            )
        except (TypeError, ValueError) as e:
            raise ParsingError(provider=self.id, reason=f"latest quote {normalized}: {e}")

    def _fetch_historical_quotes(
            self,
            symbol: str,
            start: datetime,
            end: datetime,
            currency: str,
    ) -> list[Quote]:
        normalized, secid = parse_cn_symbol(symbol)
        name, klines = self._fetch_klines(normalized, secid, start, end)

        quotes = []
        for line in klines:
            quote = self._parse_kline(line, normalized, currency)
            if quote is not None:
                quotes.append(quote)

        if not quotes:
            raise NoDataError(symbol=normalized, provider=self.id, detail=f"{start.date()} to {end.date()}")

        quotes.sort(key=lambda q: q.timestamp)
        return quotes

    def _fetch_klines(
            self,
            normalized: str,
            secid: str,
            start: datetime,
            end: datetime,
    ) -> tuple[str | None, list[str]]:
        """Return (instrument name, kline lines) for the window."""
        payload = self._get_json(
            HISTORY_URL,
            params={
                "secid": secid,
                "klt": "101",  # daily
                "fqt": "1",  # forward adjusted
                "beg": start.strftime("%Y%m%d"),
                "end": end.strftime("%Y%m%d"),
                "fields1": KLINE_FIELDS1,
                "fields2": KLINE_FIELDS2,
            },
            context=f"historical quotes {normalized}",
        )

        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            raise NoDataError(symbol=normalized, provider=self.id, detail="empty kline payload")

        name = (data.get("name") or "").strip() or None
        return name, list(data.get("klines") or [])

    def _parse_kline(self, line: str, symbol: str, currency: str) -> Quote | None:
        """
        Parse "2024-01-02,1700.00,1712.50,1720.00,1695.10,31234".

        Field order is date, open, close, high, low, volume. Malformed lines
        are skipped.
        """
        fields = line.split(",")
        if len(fields) < 6:
            return None

        try:
            day = datetime.strptime(fields[0], "%Y-%m-%d").date()
            open_price = to_decimal(fields[1])
            close = to_decimal(fields[2])
            high = to_decimal(fields[3])
            low = to_decimal(fields[4])
        except ValueError:
            logger.debug(f"{self.id} skipping malformed kline for {symbol}: {line!r}")
            return None

        if None in (open_price, close, high, low):
            return None

        try:
            volume = to_decimal(fields[5], precision=None) or Decimal(0)
        except ValueError:
            volume = Decimal(0)

        return Quote(
            symbol=symbol,
            timestamp=start_of_day(day),
            open=open_price,
            high=high,
            low=low,
            close=close,
            adjclose=close,
            volume=volume,
            currency=currency,
            data_source=self.id,
        )

    @staticmethod
    def _cents_to_price(raw) -> Decimal:
        value = to_decimal(raw, precision=None)
        if value is None:
            return Decimal(0)
        return (value / 100).quantize(Decimal("0.00000001"))

    # =========================================================================
    # PROFILE
    # =========================================================================

    def get_asset_profile(self, symbol: str) -> AssetProfile:
        """
        Name from the latest endpoint, falling back to the kline payload.

        A-shares are always CNY equities. Sub-class is inferred from the
        code range (ETF vs Stock).
        """
        self._ensure_supported(symbol)
        normalized, secid = parse_cn_symbol(symbol)

        try:
            name = self._execute_with_retry(self._fetch_name_from_latest, normalized, secid)
        except MarketDataError as e:
            logger.debug(f"{self.id} latest profile name lookup failed for {normalized}: {e}")
            name = None

        if name is None:
            name = self._execute_with_retry(self._fetch_name_from_history, normalized, secid)

        return AssetProfile(
            symbol=normalized,
            name=name,
            currency="CNY",
            data_source=self.id,
            asset_type="EQUITY",
            asset_class="Equity",
            asset_sub_class=infer_asset_sub_class(normalized),
        )

    def _fetch_name_from_latest(self, normalized: str, secid: str) -> str | None:
        payload = self._get_json(
            LATEST_URL,
            params={"secid": secid, "fields": "f58"},
            context=f"profile {normalized}",
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            return None
        return (data.get("f58") or "").strip() or None

    def _fetch_name_from_history(self, normalized: str, secid: str) -> str | None:
        end = utc_now()
        start = end - timedelta(days=LATEST_QUOTE_FALLBACK_DAYS)
        try:
            name, _ = self._fetch_klines(normalized, secid, start, end)
        except NoDataError:
            return None
        return name
