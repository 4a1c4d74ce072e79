"""
Brazilian-first amount parser.

Marketplace reports mix conventions, sometimes within one file:
- R$ 1.234,56      -> 1234.56   (BR: dot thousands, comma decimal)
- 1,234.56         -> 1234.56   (US)
- 1.234.567        -> 1234567   (several dots: thousands)
- 12,5             -> 12.5      (single comma: decimal)
- (1.234,56)       -> -1234.56  (parentheses)
- 1.234,56-        -> -1234.56  (trailing minus)

A malformed cell never raises: it parses to zero with valid=False.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from ecom_finance.config import settings

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")

_CURRENCY_RE = re.compile(r"R\$|US\$|[€£¥$]|\bBRL\b", re.IGNORECASE)
_DATE_LIKE_RE = re.compile(r"^\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}|^\d{4}-\d{2}-\d{2}")


class AmountParseResult(BaseModel):
    amount: Decimal = ZERO
    raw_text: str
    is_negative: bool = False
    format_detected: str = "INVALID"  # BR, US, PLAIN, DATE, INVALID, EMPTY
    valid: bool = False


def _normalise_separators(s: str) -> tuple[str, str]:
    """Return the string with a '.' decimal separator and the detected format."""
    dots = s.count(".")
    commas = s.count(",")

    if dots > 1:
        return s.replace(".", "").replace(",", "."), "BR"
    if commas > 1:
        return s.replace(",", ""), "US"
    if dots == 1 and commas == 1:
        # Whichever separator comes last is the decimal one
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", "."), "BR"
        return s.replace(",", ""), "US"
    if commas == 1:
        return s.replace(",", "."), "BR"
    return s, "PLAIN"


def parse_amount_br(raw: Any) -> AmountParseResult:
    """Parse a monetary cell from a marketplace or bank report."""
    if raw is None:
        return AmountParseResult(raw_text="", format_detected="EMPTY")

    if isinstance(raw, bool):
        return AmountParseResult(raw_text=str(raw))

    if isinstance(raw, (int, float, Decimal)):
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            return AmountParseResult(raw_text=str(raw))
        if not value.is_finite():
            return AmountParseResult(raw_text=str(raw))
        return _sanity_checked(value, str(raw), "PLAIN")

    raw_text = str(raw)
    s = raw_text.strip()
    if not s:
        return AmountParseResult(raw_text=raw_text, format_detected="EMPTY")

    if _DATE_LIKE_RE.match(s):
        return AmountParseResult(raw_text=raw_text, format_detected="DATE")

    s = _CURRENCY_RE.sub("", s)
    s = re.sub(r"\s+", "", s)

    is_negative = False
    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1]
        is_negative = True
    if s.endswith("-"):
        s = s[:-1]
        is_negative = True
    if s.startswith(("-", "−")):
        s = s[1:]
        is_negative = True

    s, fmt = _normalise_separators(s)
    s = re.sub(r"[^\d.]", "", s)

    try:
        value = Decimal(s)
    except InvalidOperation:
        return AmountParseResult(raw_text=raw_text)

    if is_negative:
        value = -value
    return _sanity_checked(value, raw_text, fmt)


def _sanity_checked(value: Decimal, raw_text: str, fmt: str) -> AmountParseResult:
    magnitude = abs(value)
    if magnitude > Decimal(str(settings.AMOUNT_ABSURD_THRESHOLD)):
        logger.warning("amount_absurd_discarded", raw=raw_text, value=value)
        return AmountParseResult(raw_text=raw_text, format_detected=fmt)
    if magnitude > Decimal(str(settings.AMOUNT_WARNING_THRESHOLD)):
        logger.warning("amount_unusually_large", raw=raw_text, value=value)
    return AmountParseResult(
        amount=value,
        raw_text=raw_text,
        is_negative=value < 0,
        format_detected=fmt,
        valid=True,
    )


def parse_number(raw: Any) -> Decimal:
    """Parse to Decimal, defaulting to 0 on anything unparseable."""
    return parse_amount_br(raw).amount


def parse_optional_number(raw: Any) -> Optional[Decimal]:
    """Like parse_number but an empty or invalid cell stays None.

    Used for complementary fee fields, where "not reported" must not be
    confused with zero.
    """
    result = parse_amount_br(raw)
    return result.amount if result.valid else None


def is_amount_like(text: str) -> bool:
    """Quick check if text looks like a monetary amount."""
    if text is None:
        return False
    s = str(text).strip()
    if not s or _DATE_LIKE_RE.match(s):
        return False
    s = _CURRENCY_RE.sub("", s).strip()
    return bool(re.fullmatch(r"\(?[-−]?\s*[\d.,]*\d[\d.,]*\s*-?\)?", s))
