# quotesync/services/market_data/mpf_overlay.py
"""
MPF (Hong Kong Mandatory Provident Fund) unit price overlay.

MPF constituent funds have no quote feed. The regulator (MPFA) publishes a
monthly consolidated spreadsheet of unit prices instead. Assets that hold
MPF sub-funds keep their holdings in attributes:

    {"mpf_subfunds": [{"name": "Manulife MPF Japan Equity Fund", "units": 12.5}]}

The overlay downloads the latest spreadsheet, matches sub-fund names to
rows by normalized name, and writes back:

    subfund.nav           unit price (6 dp)
    subfund.market_value  units * nav (4 dp, when units >= 0)
    valuation_date        "as at" date of the spreadsheet
    market_value          total of sub-fund market values (2 dp)

Spreadsheet layout (first sheet): fund name in column 2, unit price in
column 3, "as at" date somewhere in the first 24 rows of columns 0-4.

Known limitation: when two rows share a normalized name (same fund name
under different schemes), the first row wins.
"""

import copy
import io
import logging
import math
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import httpx
import pandas as pd

from quotesync.config import settings
from quotesync.models import Asset
from quotesync.schemas.market_data import AssetProfileUpdate
from quotesync.services.constants import (
    CURRENCY_PRECISION,
    MPF_NAV_PRECISION,
    MPF_SUBFUND_VALUE_PRECISION,
)
from quotesync.services.exceptions import MarketDataError, ParsingError, ProviderUnavailableError
from quotesync.services.market_data.base import to_decimal
from quotesync.services.protocols import AssetRepositoryProtocol

logger = logging.getLogger(__name__)

MPFA_PROVIDER_ID = "MPFA"
MPFA_MONTHLY_UNIT_PRICE_PAGE_URL = (
    "https://www.mpfa.org.hk/en/info-centre/fund-information/monthly-fund-price/"
    "monthly-unit-prices-of-mpf-constituent-funds"
)
MPFA_BASE_URL = "https://www.mpfa.org.hk"

MPFA_UNIT_PRICE_LINK_REGEX = re.compile(
    r"""href=['"](?P<path>/en/-/media/files/information-centre/fund-information/"""
    r"""monthly-fund-price/consolidated_list_for_[^'"]+?\.xls)['"]""",
    re.IGNORECASE,
)
MPFA_DMY_DATE_REGEX = re.compile(r"(\d{1,2})[./-](\d{1,2})[./-](\d{4})")
MPFA_YMD_ZH_DATE_REGEX = re.compile(r"(\d{4})年\s*(\d{1,2})月\s*(\d{1,2})日")

VALUATION_DATE_SCAN_ROWS = 24
VALUATION_DATE_SCAN_COLUMNS = 5
FUND_NAME_COLUMN = 2
UNIT_PRICE_COLUMN = 3

SUBFUNDS_KEY = "mpf_subfunds"


@dataclass
class MpfUnitPriceSnapshot:
    valuation_date: date | None = None
    unit_prices_by_normalized_name: dict[str, Decimal] = field(default_factory=dict)


# =============================================================================
# TEXT HELPERS
# =============================================================================

def is_cjk_char(character: str) -> bool:
    code_point = ord(character)
    return (
        0x3400 <= code_point <= 0x4DBF
        or 0x4E00 <= code_point <= 0x9FFF
        or 0xF900 <= code_point <= 0xFAFF
    )


def contains_cjk(value: str) -> bool:
    return any(is_cjk_char(ch) for ch in value)


def normalize_mpf_fund_name(name: str) -> str:
    """
    Comparison key for fund names.

    NFKC folds full-width forms; ASCII letters are lowercased; other
    letters, digits and CJK ideographs are kept; everything else becomes a
    single space.

    >>> normalize_mpf_fund_name("  Manulife MPF Pacific-Asia  Equity Fund ")
    'manulife mpf pacific asia equity fund'
    """
    folded = unicodedata.normalize("NFKC", name).strip()
    if not folded:
        return ""

    mapped = []
    for character in folded:
        if character.isascii() and character.isalnum():
            mapped.append(character.lower())
        elif character.isalnum() or is_cjk_char(character):
            mapped.append(character)
        else:
            mapped.append(" ")

    return " ".join("".join(mapped).split())


def extract_mpf_unit_price_xls_url(page_html: str) -> str | None:
    """Absolute URL of the first consolidated unit price spreadsheet link."""
    match = MPFA_UNIT_PRICE_LINK_REGEX.search(page_html)
    if match is None:
        return None

    path = match.group("path").strip()
    if path.startswith(("http://", "https://")):
        return path
    return f"{MPFA_BASE_URL}{path}"


def extract_valuation_date_from_text(raw_text: str) -> date | None:
    """Parse "31.12.2025" / "31/12/2025" / "2025年12月31日" style dates."""
    text = raw_text.strip()
    if not text:
        return None

    match = MPFA_DMY_DATE_REGEX.search(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return _safe_date(year, month, day)

    match = MPFA_YMD_ZH_DATE_REGEX.search(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _safe_date(year, month, day)

    return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _cell_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _cell_to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        return to_decimal(value, precision=None)
    except ValueError:
        return None


# =============================================================================
# SPREADSHEET PARSING
# =============================================================================

def parse_mpf_unit_price_frame(frame: pd.DataFrame) -> MpfUnitPriceSnapshot:
    """
    Extract the valuation date and unit prices from the first sheet.

    Raises:
        ParsingError: No parseable unit prices
    """
    snapshot = MpfUnitPriceSnapshot()

    for row in frame.head(VALUATION_DATE_SCAN_ROWS).itertuples(index=False, name=None):
        for value in row[:VALUATION_DATE_SCAN_COLUMNS]:
            if isinstance(value, datetime) and not pd.isna(value):
                snapshot.valuation_date = value.date()
                break
            found = extract_valuation_date_from_text(_cell_to_text(value))
            if found is not None:
                snapshot.valuation_date = found
                break
        if snapshot.valuation_date is not None:
            break

    for row in frame.itertuples(index=False, name=None):
        if len(row) <= UNIT_PRICE_COLUMN:
            continue

        fund_name = _cell_to_text(row[FUND_NAME_COLUMN])
        if not fund_name:
            continue
        if fund_name.lower() == "fund name" or "成分基金名稱" in fund_name:
            continue

        unit_price = _cell_to_decimal(row[UNIT_PRICE_COLUMN])
        if unit_price is None or unit_price <= 0:
            continue

        normalized_name = normalize_mpf_fund_name(fund_name)
        if normalized_name:
            snapshot.unit_prices_by_normalized_name.setdefault(normalized_name, unit_price)

    if not snapshot.unit_prices_by_normalized_name:
        raise ParsingError(
            provider=MPFA_PROVIDER_ID,
            reason="MPFA XLS workbook did not contain any parseable unit prices",
        )

    return snapshot


def parse_mpf_unit_price_snapshot(xls_bytes: bytes) -> MpfUnitPriceSnapshot:
    try:
        frame = pd.read_excel(io.BytesIO(xls_bytes), sheet_name=0, header=None, engine="xlrd")
    except Exception as e:
        raise ParsingError(provider=MPFA_PROVIDER_ID, reason=f"Failed to parse MPFA XLS workbook: {e}")
    return parse_mpf_unit_price_frame(frame)


# =============================================================================
# ASSET HELPERS
# =============================================================================

def _attributes_dict(asset: Asset) -> dict[str, Any]:
    attributes = asset.attributes
    if isinstance(attributes, dict):
        return attributes
    return {}


def is_mpf_asset(asset: Asset) -> bool:
    """Class or sub-class mentions MPF, or the asset lists MPF sub-funds."""
    for value in (asset.asset_class, asset.asset_sub_class):
        if value and "mpf" in value.lower():
            return True

    subfunds = _attributes_dict(asset).get(SUBFUNDS_KEY)
    return isinstance(subfunds, list) and len(subfunds) > 0


def apply_unit_prices(asset: Asset, snapshot: MpfUnitPriceSnapshot) -> AssetProfileUpdate | None:
    """
    Compute the updated profile for one asset, or None if no sub-fund matched.

    The asset itself is not modified.
    """
    attributes = copy.deepcopy(_attributes_dict(asset))
    subfunds = attributes.get(SUBFUNDS_KEY)
    if not isinstance(subfunds, list):
        return None

    matched_any = False
    has_market_value = False
    total_market_value = Decimal(0)

    for subfund in subfunds:
        if not isinstance(subfund, dict):
            continue
        name = str(subfund.get("name") or "").strip()
        if not name:
            continue

        nav = snapshot.unit_prices_by_normalized_name.get(normalize_mpf_fund_name(name))
        if nav is None:
            continue

        matched_any = True
        subfund["nav"] = float(nav.quantize(MPF_NAV_PRECISION))

        units = _cell_to_decimal(subfund.get("units"))
        if units is not None and units >= 0:
            market_value = (units * nav).quantize(MPF_SUBFUND_VALUE_PRECISION)
            subfund["market_value"] = float(market_value)
            total_market_value += market_value
            has_market_value = True

    if not matched_any:
        return None

    if snapshot.valuation_date is not None:
        attributes["valuation_date"] = snapshot.valuation_date.isoformat()
    if has_market_value:
        attributes["market_value"] = float(total_market_value.quantize(CURRENCY_PRECISION))

    return AssetProfileUpdate(
        name=asset.name or asset.symbol,
        asset_class=asset.asset_class,
        asset_sub_class=asset.asset_sub_class,
        sectors=asset.sectors,
        countries=asset.countries,
        notes=asset.notes,
        attributes=attributes,
    )


# =============================================================================
# OVERLAY
# =============================================================================

class MpfUnitPriceOverlay:
    """
    Applies the latest MPFA unit prices to MPF assets.

    Example:
        overlay = MpfUnitPriceOverlay(asset_repository)
        updated = overlay.sync()
    """

    def __init__(
            self,
            asset_repository: AssetRepositoryProtocol,
            client: httpx.Client | None = None,
    ) -> None:
        self._asset_repository = asset_repository
        self._client = client

    def sync(self) -> int:
        """
        Update every MPF asset with a matching sub-fund.

        Returns:
            Number of assets updated

        Raises:
            MarketDataError: Page or spreadsheet could not be fetched/parsed
        """
        mpf_assets = [asset for asset in self._asset_repository.list_assets() if is_mpf_asset(asset)]
        if not mpf_assets:
            return 0

        snapshot = self.fetch_latest_snapshot()

        updated = 0
        for asset in mpf_assets:
            changes = apply_unit_prices(asset, snapshot)
            if changes is None:
                continue
            try:
                self._asset_repository.update_profile(asset.symbol, changes)
                updated += 1
            except Exception as e:
                logger.error(f"Failed to apply MPF unit prices for asset '{asset.symbol}': {e}")

        return updated

    def fetch_latest_snapshot(self) -> MpfUnitPriceSnapshot:
        page = self._get(MPFA_MONTHLY_UNIT_PRICE_PAGE_URL, "MPFA monthly unit-price page")
        xls_url = extract_mpf_unit_price_xls_url(page.text)
        if xls_url is None:
            raise ParsingError(
                provider=MPFA_PROVIDER_ID,
                reason="Unable to locate MPFA monthly unit-price XLS link",
            )

        logger.debug(f"Downloading MPFA unit prices from {xls_url}")
        workbook = self._get(xls_url, "MPFA unit-price file")
        return parse_mpf_unit_price_snapshot(workbook.content)

    def _get(self, url: str, label: str) -> httpx.Response:
        headers = {"User-Agent": settings.http_user_agent}
        try:
            if self._client is not None:
                response = self._client.get(url, headers=headers)
            else:
                with httpx.Client(timeout=settings.http_timeout_seconds, follow_redirects=True) as client:
                    response = client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(provider=MPFA_PROVIDER_ID, reason=f"{label}: {e}")

        if not response.is_success:
            raise MarketDataError(f"{label} returned HTTP {response.status_code}", provider=MPFA_PROVIDER_ID)
        return response
