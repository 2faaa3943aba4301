"""Field-level parsers for amounts, dates and month keys.

Every value that enters the ledger from a form field or a CSV cell goes
through one of these helpers.  They never raise: amounts degrade to ``0.0``
(or ``None`` for the strict variant) and dates degrade to today's date, so
callers can decide how to treat unusable input without wrapping each call in
``try``/``except``.
"""

from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

_CURRENCY_MARKERS = ("ARS", "USD", "EUR", "US$", "$", "€", "£")
_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")

# (pattern, group order) tried in sequence before generic parsing
_DATE_PATTERNS = (
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$"), ("year", "month", "day")),
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), ("day", "month", "year")),
    (re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$"), ("day", "month", "year")),
    (re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$"), ("year", "month", "day")),
)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def parse_signed_amount(value: Any) -> Optional[float]:
    """Convert textual amount representations into a signed float.

    Handles currency markers, accounting negatives such as ``(123.45)`` and
    both ``1,234.56`` and ``1.234,56`` separator conventions.  Returns
    ``None`` when the value cannot be read as a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        try:
            if pd.isna(value):
                return None
        except (TypeError, ValueError):
            return None
        value = str(value)

    cleaned = value.strip().replace(" ", "").replace(" ", "")
    if not cleaned:
        return None
    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    for marker in _CURRENCY_MARKERS:
        cleaned = cleaned.replace(marker, "")
    if cleaned.startswith("-"):
        negative = not negative
        cleaned = cleaned[1:]
    elif cleaned.startswith("+"):
        cleaned = cleaned[1:]
    # Currency symbol may sit between the sign and the digits: "-$12"
    for marker in _CURRENCY_MARKERS:
        cleaned = cleaned.replace(marker, "")

    cleaned = _normalize_separators(cleaned)
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return -number if negative else number


def _normalize_separators(text: str) -> str:
    has_comma = "," in text
    has_dot = "." in text
    if has_comma and has_dot:
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    if has_comma:
        if text.count(",") == 1 and re.search(r",\d{1,2}$", text):
            return text.replace(",", ".")
        return text.replace(",", "")
    if has_dot and text.count(".") > 1:
        return text.replace(".", "")
    return text


def parse_money(value: Any) -> float:
    """Read an untrusted amount.

    Contract: never raises and always returns a finite, non-negative number
    rounded to two decimals.  Unparsable input becomes ``0.0``; negative
    input becomes its absolute value.
    """
    number = parse_signed_amount(value)
    if number is None:
        return 0.0
    return round(abs(number), 2)


def parse_percentage(value: Any, default: float) -> float:
    number = parse_signed_amount(value)
    return default if number is None else number


def parse_int(value: Any, default: int = 1) -> int:
    number = parse_signed_amount(value)
    if number is None:
        return default
    return int(number)


# ---------------------------------------------------------------------------
# Dates and month keys
# ---------------------------------------------------------------------------


def parse_date(value: Any, today: Optional[date] = None) -> str:
    """Normalize a date cell to ``YYYY-MM-DD``.

    Tries ISO, ``DD/MM/YYYY``, ``DD-MM-YYYY`` and ``YYYY/MM/DD`` first, then
    generic day-first parsing.  Impossible dates such as ``31/02/2024`` are
    treated as unparsable.  Falls back to ``today``.
    """
    fallback = today or date.today()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        return fallback.isoformat()

    text = str(value).strip()
    if not text:
        return fallback.isoformat()

    for pattern, order in _DATE_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        parts = dict(zip(order, (int(g) for g in match.groups())))
        try:
            return date(parts["year"], parts["month"], parts["day"]).isoformat()
        except ValueError:
            return fallback.isoformat()

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(text, errors="coerce", dayfirst=True)
        except (ValueError, TypeError, OverflowError):
            parsed = pd.NaT
    if parsed is None or pd.isna(parsed):
        return fallback.isoformat()
    return parsed.date().isoformat()


def is_month_key(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    match = _MONTH_KEY_RE.match(value.strip())
    return bool(match) and 1 <= int(match.group(2)) <= 12


def month_key(value: Any, today: Optional[date] = None) -> str:
    """Return the ``YYYY-MM`` key for a month key or any parsable date."""
    if is_month_key(value):
        return value.strip()
    return parse_date(value, today=today)[:7]


def current_month(today: Optional[date] = None) -> str:
    return (today or date.today()).strftime("%Y-%m")


def add_months(month: str, months: int) -> str:
    """Shift a ``YYYY-MM`` key by ``months`` (may be negative)."""
    year, mon = (int(part) for part in month.split("-"))
    year_offset, mon_index = divmod(mon - 1 + months, 12)
    return f"{year + year_offset:04d}-{mon_index + 1:02d}"
