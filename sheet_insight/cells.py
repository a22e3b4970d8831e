"""
Cell-level classification for raw spreadsheet values.

Every function here is pure and never raises for odd input: the worst case
is a negative answer (``False`` / ``None``). Parsing follows Brazilian
conventions: day-first dates and comma as the decimal separator.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any

import pandas as pd

EXCEL_EPOCH = "1899-12-30"
SERIAL_DATE_MIN = 25_000  # ~1968
SERIAL_DATE_MAX = 60_000  # ~2064

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_SUFFIX = r"(?:[T\s]\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?"
YMD_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})" + _TIME_SUFFIX + r"$")
DMY_RE = re.compile(r"^(\d{1,2})([/.-])(\d{1,2})\2(\d{4}|\d{2})" + _TIME_SUFFIX + r"$")

NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")
THOUSANDS_DOT_RE = re.compile(r"^[+-]?\d{1,3}(?:\.\d{3})+$")
SINGLE_THOUSANDS_DOT_RE = re.compile(r"^[1-9]\d{0,2}\.\d{3}$")  # 1.234 / 12.345, not 0.125
THOUSANDS_COMMA_RE = re.compile(r"^[+-]?\d{1,3}(?:,\d{3})+$")
CURRENCY_PREFIXES = ("R$", "US$", "$", "€", "£")

BLANK_STATUS = "VAZIO"
STATUS_RULES = [
    ("ENTREG", "ENTREGUE"),
    ("FOLGA", "FOLGA"),
    ("BANCO", "BANCO DE HORAS"),
    ("FALTA", "FALTA"),
    ("ATESTADO", "ATESTADO"),
    ("FÉRIAS", "FÉRIAS"),
    ("FERIAS", "FÉRIAS"),
]


def normalize_scalar(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (list, tuple, dict, set)):
        return str(value)
    if pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        if value.tzinfo is not None:
            value = value.tz_convert(None)
        return value.to_pydatetime()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, str):
        return value.replace("\x00", "")
    return value


def is_blank(value: Any) -> bool:
    normalized = normalize_scalar(value)
    if normalized is None:
        return True
    if isinstance(normalized, str):
        return normalized.strip() == ""
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _tidy_number(number: float) -> int | float:
    if number.is_integer() and abs(number) < 1e15:
        return int(number)
    return number


def stringify(value: Any) -> str:
    """Trimmed display text for a cell; dates render as ISO, integral floats without ``.0``."""
    normalized = normalize_scalar(value)
    if normalized is None:
        return ""
    if isinstance(normalized, datetime):
        if normalized.time() == datetime.min.time():
            return normalized.date().isoformat()
        return normalized.isoformat(sep=" ")
    if isinstance(normalized, date):
        return normalized.isoformat()
    if isinstance(normalized, bool):
        return "TRUE" if normalized else "FALSE"
    if isinstance(normalized, float):
        if math.isinf(normalized):
            return str(normalized)
        return str(_tidy_number(normalized))
    return str(normalized).strip()


# ── Dates ────────────────────────────────────────────────────────────────────

def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        return 2000 + year if year < 50 else 1900 + year
    return year


def parse_date_text(text: str) -> date | None:
    """Parse ``YYYY-MM-DD`` / ``YYYY/MM/DD`` and day-first ``DD/MM/YYYY`` style strings."""
    text = text.strip()
    if not text:
        return None

    m = YMD_RE.match(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = DMY_RE.match(text)
    if m:
        a, b, year = int(m.group(1)), int(m.group(3)), _expand_year(m.group(4))
        # Day-first; month-first only when day-first is impossible.
        return _safe_date(year, b, a) or _safe_date(year, a, b)

    return None


def serial_to_date(serial: float) -> date | None:
    try:
        parsed = pd.to_datetime(float(serial), unit="D", origin=EXCEL_EPOCH, errors="coerce")
    except (OverflowError, ValueError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.date()


def is_date_like(value: Any) -> bool:
    normalized = normalize_scalar(value)
    if normalized is None or isinstance(normalized, bool):
        return False
    if isinstance(normalized, (datetime, date)):
        return True
    if _is_number(normalized):
        if isinstance(normalized, float) and math.isinf(normalized):
            return False
        return SERIAL_DATE_MIN <= normalized <= SERIAL_DATE_MAX
    if isinstance(normalized, str):
        return parse_date_text(normalized) is not None
    return False


def to_iso_date(value: Any) -> str | None:
    """Canonical ``YYYY-MM-DD`` for a date-ish cell, or ``None`` when it is not a date."""
    normalized = normalize_scalar(value)
    if normalized is None or isinstance(normalized, bool):
        return None
    if isinstance(normalized, datetime):
        return normalized.date().isoformat()
    if isinstance(normalized, date):
        return normalized.isoformat()
    if _is_number(normalized):
        if isinstance(normalized, float) and math.isinf(normalized):
            return None
        parsed = serial_to_date(normalized)
        return parsed.isoformat() if parsed else None
    if isinstance(normalized, str):
        parsed = parse_date_text(normalized)
        return parsed.isoformat() if parsed else None
    return None


# ── Numbers ──────────────────────────────────────────────────────────────────

def _clean_number_text(text: str) -> str | None:
    text = text.strip().replace("\u00a0", "").replace(" ", "")
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    if text.startswith("-"):
        negative = not negative
        text = text[1:]
    elif text.startswith("+"):
        text = text[1:]

    for prefix in CURRENCY_PREFIXES:
        if text.upper().startswith(prefix):
            text = text[len(prefix):]
            break
    if text.endswith("%"):
        text = text[:-1]
    if not text:
        return None

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        if text.count(",") == 1:
            text = text.replace(",", ".")
        elif THOUSANDS_COMMA_RE.fullmatch(text):
            text = text.replace(",", "")
        else:
            return None
    elif text.count(".") > 1:
        if not THOUSANDS_DOT_RE.fullmatch(text):
            return None
        text = text.replace(".", "")
    elif SINGLE_THOUSANDS_DOT_RE.fullmatch(text):
        text = text.replace(".", "")

    if not NUMBER_RE.fullmatch(text):
        return None
    return f"-{text}" if negative else text


def to_number(value: Any) -> int | float | None:
    """Numeric value of a cell, or ``None`` when it cannot be read as a number."""
    normalized = normalize_scalar(value)
    if normalized is None or isinstance(normalized, bool):
        return None
    if _is_number(normalized):
        if isinstance(normalized, float):
            if math.isinf(normalized):
                return None
            return _tidy_number(normalized)
        return normalized
    if not isinstance(normalized, str):
        return None
    cleaned = _clean_number_text(normalized)
    if cleaned is None:
        return None
    try:
        return _tidy_number(float(cleaned))
    except ValueError:
        return None


def to_number_or_zero(value: Any) -> int | float:
    number = to_number(value)
    return 0 if number is None else number


def is_numeric_like(value: Any) -> bool:
    return to_number(value) is not None


# ── Status vocabulary ────────────────────────────────────────────────────────

def normalize_status(value: Any) -> str:
    text = stringify(value).upper()
    if not text:
        return BLANK_STATUS
    for needle, canonical in STATUS_RULES:
        if needle in text:
            return canonical
    return text
