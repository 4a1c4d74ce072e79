"""
Brazilian-first date parser.

Strategy:
1. ISO (YYYY-MM-DD, with or without a time part) is unambiguous
2. Numeric dates are day-first (DD/MM/YYYY, DD-MM-YYYY, DD.MM.YYYY)
3. Two-digit years map to 2000 + YY
4. Portuguese long form ("15 de março de 2024 10:20 hs.")
5. Anything dateutil can read as an ISO timestamp

Dates outside 2000-2100 are treated as unparseable: they only ever show up
in reports as mis-typed cells.
"""

import re
import unicodedata
from datetime import date, datetime
from typing import Any, Optional

from dateutil import parser as dateutil_parser
from pydantic import BaseModel

MIN_YEAR = 2000
MAX_YEAR = 2100

MONTHS_PT = {
    "janeiro": 1, "fevereiro": 2, "marco": 3, "abril": 4, "maio": 5, "junho": 6,
    "julho": 7, "agosto": 8, "setembro": 9, "outubro": 10, "novembro": 11, "dezembro": 12,
    "jan": 1, "fev": 2, "mar": 3, "abr": 4, "mai": 5, "jun": 6,
    "jul": 7, "ago": 8, "set": 9, "out": 10, "nov": 11, "dez": 12,
}

MONTH_NAMES_PT = [
    "Janeiro", "Fevereiro", "Março", "Abril", "Maio", "Junho",
    "Julho", "Agosto", "Setembro", "Outubro", "Novembro", "Dezembro",
]


class DateParseResult(BaseModel):
    parsed_date: Optional[date] = None
    raw_text: str
    format_detected: str
    confidence: float


class MonthYear(BaseModel):
    day: Optional[int] = None
    month: int
    year: int


# Ordered by specificity (try most specific first)
DATE_FORMATS = [
    (r'(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})', 'YYYY-MM-DD'),
    (r'(\d{1,2})/(\d{1,2})/(\d{4})', 'DD/MM/YYYY'),
    (r'(\d{1,2})-(\d{1,2})-(\d{4})', 'DD-MM-YYYY'),
    (r'(\d{1,2})\.(\d{1,2})\.(\d{4})', 'DD.MM.YYYY'),
    (r'(\d{1,2})/(\d{1,2})/(\d{2})(?!\d)', 'DD/MM/YY'),
    (r'(\d{1,2})-(\d{1,2})-(\d{2})(?!\d)', 'DD-MM-YY'),
    (r'(\d{1,2})\.(\d{1,2})\.(\d{2})(?!\d)', 'DD.MM.YY'),
    (r'(\d{1,2})\s+de\s+([a-zç]+)\.?\s+(?:de\s+)?(\d{4})', 'DD_DE_MES_DE_YYYY'),
]


def _strip_accents(text: str) -> str:
    return "".join(
        c for c in unicodedata.normalize("NFD", text) if unicodedata.category(c) != "Mn"
    )


def _in_range(year: int, month: int) -> bool:
    return MIN_YEAR <= year <= MAX_YEAR and 1 <= month <= 12


def _parse_by_format(match: re.Match, format_name: str) -> Optional[date]:
    """Parse date from regex match based on detected format."""
    if format_name == 'YYYY-MM-DD':
        year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
    elif format_name == 'DD_DE_MES_DE_YYYY':
        month = MONTHS_PT.get(_strip_accents(match.group(2).lower()))
        if month is None:
            return None
        day, year = int(match.group(1)), int(match.group(3))
    else:
        day, month, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
        if format_name.endswith('YY') and not format_name.endswith('YYYY'):
            year = 2000 + year

    if not _in_range(year, month):
        return None
    return date(year, month, day)


def parse_date_br(raw: Any) -> DateParseResult:
    """Parse a date cell. Never raises."""
    if isinstance(raw, datetime):
        raw = raw.date()
    if isinstance(raw, date):
        ok = _in_range(raw.year, raw.month)
        return DateParseResult(
            parsed_date=raw if ok else None,
            raw_text=raw.isoformat(),
            format_detected="DATE_OBJECT" if ok else "OUT_OF_RANGE",
            confidence=1.0 if ok else 0.0,
        )

    raw_text = "" if raw is None else str(raw)
    raw_clean = _strip_accents(raw_text.strip().lower())
    if not raw_clean:
        return DateParseResult(raw_text=raw_text, format_detected="EMPTY", confidence=0.0)

    for pattern, format_name in DATE_FORMATS:
        m = re.match(pattern, raw_clean)
        if not m:
            continue
        try:
            parsed = _parse_by_format(m, format_name)
        except ValueError:
            continue
        if parsed is None:
            continue
        return DateParseResult(
            parsed_date=parsed,
            raw_text=raw_text,
            format_detected=format_name,
            confidence=0.95 if 'YYYY' in format_name else 0.85,
        )

    # English month names from international exports ("15 Mar 2024", "March 15, 2024")
    if re.search(r'[a-z]{3}', raw_clean) and re.search(r'\d{4}', raw_clean):
        try:
            parsed = dateutil_parser.parse(raw_text.strip(), dayfirst=True).date()
            if _in_range(parsed.year, parsed.month):
                return DateParseResult(
                    parsed_date=parsed, raw_text=raw_text,
                    format_detected="NAMED_MONTH", confidence=0.80,
                )
        except (ValueError, OverflowError):
            pass

    return DateParseResult(raw_text=raw_text, format_detected="UNKNOWN", confidence=0.0)


def parse_date(raw: Any) -> Optional[date]:
    return parse_date_br(raw).parsed_date


def normalize_date(raw: Any) -> Optional[str]:
    """ISO string (YYYY-MM-DD) or None."""
    parsed = parse_date(raw)
    return parsed.isoformat() if parsed else None


def extract_month_year(raw: Any) -> Optional[MonthYear]:
    """Extract {day, month, year} for period detection; None when invalid."""
    parsed = parse_date(raw)
    if parsed is None:
        return None
    return MonthYear(day=parsed.day, month=parsed.month, year=parsed.year)


def month_name_pt(month: int) -> str:
    if 1 <= month <= 12:
        return MONTH_NAMES_PT[month - 1]
    return str(month)


def is_date_like(text: Any) -> bool:
    """Quick check if text looks like it could be a date."""
    if text is None:
        return False
    s = str(text).strip()
    if not s:
        return False
    date_patterns = [
        r'^\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}',
        r'^\d{4}-\d{2}-\d{2}',
        r'^\d{1,2}\s+de\s+\w+',
    ]
    return any(re.search(p, s, re.IGNORECASE) for p in date_patterns)
