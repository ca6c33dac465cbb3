"""Date and value coercion for heterogeneous spreadsheet cells.

Coercion is advisory: values that cannot be interpreted are handed back
unchanged (dates) or mapped to ``None`` (numbers, text) so that a dirty
source cell never blocks an import. Callers must read the output defensively.
"""
from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Optional

import numpy as np
import pandas as pd


EXCEL_EPOCH_SERIAL = 25569  # 1970-01-01 as an Excel serial (days since 1899-12-30)
MS_PER_DAY = 86_400_000

TRUE_TOKENS = frozenset({"VERO", "TRUE", "SI", "YES", "1"})

NUMERIC_RX = re.compile(r"^-?\d+(?:[.,]\d+)?$")
DAY_FIRST_RX = re.compile(r"^\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}(?:[ ,T]+\d{1,2}[:.]\d{2}(?:[:.]\d{2})?)?$")


def is_missing(value: Any) -> bool:
    """True for None, NaN/NaT and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _is_falsy(value: Any) -> bool:
    if is_missing(value):
        return True
    if isinstance(value, bool):
        return not value
    if isinstance(value, (int, float, np.integer, np.floating)):
        return value == 0
    return False


def _from_serial(serial: float) -> Optional[pd.Timestamp]:
    if not math.isfinite(serial):
        return None
    try:
        return pd.Timestamp((serial - EXCEL_EPOCH_SERIAL) * MS_PER_DAY, unit="ms", tz="UTC")
    except (OverflowError, ValueError):
        return None


def _as_utc(ts: pd.Timestamp) -> pd.Timestamp:
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def _parse_text(text: str) -> Optional[pd.Timestamp]:
    if NUMERIC_RX.match(text):
        return _from_serial(float(text.replace(",", ".")))
    dayfirst = bool(DAY_FIRST_RX.match(text))
    parsed = pd.to_datetime(text, errors="coerce", dayfirst=dayfirst)
    if pd.isna(parsed):
        return None
    return _as_utc(pd.Timestamp(parsed))


def to_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """Interpret a cell as a UTC timestamp, or return None.

    Accepts native ``datetime``/``date``/``pd.Timestamp`` values, numeric Excel
    serials, numeric strings (treated as serials), ISO strings and Italian
    day-first strings such as ``02/05/2024 10:30``.
    """
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, pd.Timestamp):
        return _as_utc(value)
    if isinstance(value, datetime):
        return _as_utc(pd.Timestamp(value))
    if isinstance(value, date):
        return pd.Timestamp(value.year, value.month, value.day, tz="UTC")
    if isinstance(value, np.datetime64):
        return _as_utc(pd.Timestamp(value))
    if isinstance(value, (int, float, np.integer, np.floating)):
        return _from_serial(float(value))
    if isinstance(value, str):
        return _parse_text(value.strip())
    return None


def format_timestamp(ts: pd.Timestamp, strip_time: bool = False) -> str:
    """Render a timestamp as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` or ``YYYY-MM-DD``."""
    ts = _as_utc(ts)
    if strip_time:
        return ts.strftime("%Y-%m-%d")
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def coerce_date(value: Any, strip_time: bool = False) -> Any:
    """Convert a source cell into the canonical date representation.

    Returns None for empty cells (including the numeric 0 some exports use for
    "no date"), an ISO-8601 string for anything parseable and the original
    value otherwise.
    """
    if _is_falsy(value):
        return None
    ts = to_timestamp(value)
    if ts is None:
        return value
    return format_timestamp(ts, strip_time=strip_time)


def coerce_date_only(value: Any) -> Any:
    return coerce_date(value, strip_time=True)


def coerce_bool(value: Any) -> bool:
    """Interpret yes/no style flags: VERO, TRUE, SI, YES and 1 are true."""
    if value is True:
        return True
    if _is_falsy(value):
        return False
    if isinstance(value, (int, np.integer)):
        return int(value) == 1
    if isinstance(value, (float, np.floating)):
        return float(value) == 1.0
    return str(value).strip().upper() in TRUE_TOKENS


def coerce_flag(value: Any) -> Optional[bool]:
    """Like :func:`coerce_bool`, but a blank cell stays ``None``."""
    if is_missing(value):
        return None
    return coerce_bool(value)


def coerce_number(value: Any) -> Optional[float]:
    """Convert to float, accepting decimal commas; None when not numeric."""
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
        return number if math.isfinite(number) else None
    text = str(value).strip().replace(" ", "")
    if "," in text and "." in text:
        # 1.234,5 -> 1234.5
        text = text.replace(".", "").replace(",", ".")
    else:
        text = text.replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def clean_text(value: Any) -> Optional[str]:
    """Stripped string form of a cell; None for blank cells."""
    if is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        # Numeric ids read from Excel arrive as floats
        return str(int(value))
    text = str(value).strip()
    return text or None
