# quotesync/services/symbol_normalizer.py
"""
Symbol canonicalization and provider inference.

Users enter symbols in many shapes ("aapl.us", "600519.SS", "00700.HK",
"161039"). Providers need one canonical form per instrument, and some
markets are owned by a specific provider:

    600519.SS  -> 600519.SH   (EASTMONEY_CN)
    000001.SZ  -> 000001.SZ   (EASTMONEY_CN)
    161039.FUND               (TIANTIAN_FUND)
    00700.HK   -> 0700.HK     (no inference, provider stays as configured)
    AAPL.US    -> AAPL

Cash pseudo-symbols ("$CASH-USD") and FX pairs ("EURUSD=X") pass through.

Both functions are pure and deterministic; normalize() is idempotent.
"""

from dataclasses import dataclass

from quotesync.models import DataSource
from quotesync.services.constants import CASH_SYMBOL_PREFIX, FX_PAIR_MARKER


@dataclass(frozen=True)
class NormalizeOptions:
    """
    Attributes:
        treat_bare_six_digit_as_fund: A bare 6-digit code is ambiguous (it can
            be an A-share or a mutual fund). Only when this is set is it
            canonicalized to CODE.FUND; otherwise it is returned unchanged.
    """
    treat_bare_six_digit_as_fund: bool = False


DEFAULT_OPTIONS = NormalizeOptions()


def _is_six_digit_code(code: str) -> bool:
    return len(code) == 6 and code.isascii() and code.isdigit()


def _is_passthrough(symbol: str) -> bool:
    return symbol.startswith(CASH_SYMBOL_PREFIX) or FX_PAIR_MARKER in symbol


def _normalize_hk_code(code: str) -> str | None:
    """
    Canonical Hong Kong code: leading zeros stripped, then zero-padded to 4
    digits (5 for codes >= 10000). Returns None for non-numeric or codes
    longer than 5 characters.
    """
    if not code or len(code) > 5 or not (code.isascii() and code.isdigit()):
        return None

    numeric = int(code)
    if numeric < 10_000:
        return f"{numeric:04d}"
    return f"{numeric:05d}"


def normalize(symbol: str, options: NormalizeOptions = DEFAULT_OPTIONS) -> str:
    """
    Canonicalize a user-entered symbol.

    Args:
        symbol: Raw symbol, any case, may carry whitespace
        options: Inference toggles (see NormalizeOptions)

    Returns:
        Canonical uppercase symbol. Symbols the rules do not recognize are
        returned trimmed and uppercased.
    """
    normalized = symbol.strip().upper()
    if not normalized or _is_passthrough(normalized):
        return normalized

    if "." in normalized:
        code, market = normalized.split(".", 1)
        code = code.strip()
        market = market.strip()

        if market == "US":
            if code:
                return code
        elif market in ("SS", "SH", "SZ"):
            if _is_six_digit_code(code):
                canonical_market = "SH" if market == "SS" else market
                return f"{code}.{canonical_market}"
        elif market == "HK":
            hk_code = _normalize_hk_code(code)
            if hk_code is not None:
                return f"{hk_code}.HK"
        elif market == "FUND":
            if _is_six_digit_code(code):
                return f"{code}.FUND"

        return normalized

    if options.treat_bare_six_digit_as_fund and _is_six_digit_code(normalized):
        return f"{normalized}.FUND"

    return normalized


def infer_source(symbol: str) -> str | None:
    """
    Provider that owns the symbol's market, or None when it cannot be
    classified (the asset keeps whatever data source it already has).
    """
    normalized = symbol.strip().upper()
    if not normalized or _is_passthrough(normalized) or "." not in normalized:
        return None

    code, market = normalized.split(".", 1)
    if not _is_six_digit_code(code):
        return None

    if market in ("SH", "SS", "SZ"):
        return DataSource.EASTMONEY_CN.value
    if market == "FUND":
        return DataSource.TIANTIAN_FUND.value
    return None


def is_cash_symbol(symbol: str) -> bool:
    return symbol.strip().upper().startswith(CASH_SYMBOL_PREFIX)
