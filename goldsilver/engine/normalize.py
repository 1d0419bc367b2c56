"""Normalise heterogeneous price tables into a canonical daily series.

Uploaded and auto-discovered price files come from spreadsheets, exports and
hand-edited CSVs, so dates arrive as ISO strings, US-style slash dates,
spreadsheet serial numbers or free text, and prices carry currency symbols
and thousands separators.  The helpers below turn each cell into a canonical
value or ``None`` and never raise on bad input; rows that do not yield a date
and two positive prices are dropped as a whole and counted.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import numbers
import re
import warnings
import zipfile
from dataclasses import dataclass
from io import StringIO
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Union

import pandas as pd

from .errors import ParseError
from .series import SERIES_COLUMNS, canonicalize, empty_series

logger = logging.getLogger(__name__)

SPREADSHEET_EPOCH = dt.date(1899, 12, 30)
WORKBOOK_SUFFIXES = {".xlsx", ".xlsm"}

_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_SERIAL_RE = re.compile(r"^\d+$")
_DMY_RE = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{4}|\d{2})$")
_NUMBER_STRIP_RE = re.compile(r"[^0-9.\-]")

COLUMN_PATTERNS = {
    "date": re.compile(r"date"),
    "gold": re.compile(r"gold|xau"),
    "silver": re.compile(r"silver|xag"),
}

Source = Union[str, Path, IO[str], IO[bytes]]


@dataclass
class ParseResult:
    prices: pd.DataFrame
    dropped: int = 0

    @property
    def empty(self) -> bool:
        return self.prices.empty


def _serial_to_iso(days: int) -> Optional[str]:
    if days < 0:
        return None
    try:
        return (SPREADSHEET_EPOCH + dt.timedelta(days=days)).isoformat()
    except OverflowError:
        return None


def _expand_year(year_token: str) -> int:
    year = int(year_token)
    if len(year_token) == 2:
        return 2000 + year if year < 70 else 1900 + year
    return year


def _slash_date(match: "re.Match[str]") -> Optional[str]:
    first, second = int(match.group(1)), int(match.group(2))
    year = _expand_year(match.group(3))
    # month first unless the first component can only be a day
    month, day = (second, first) if first > 12 else (first, second)
    try:
        return dt.date(year, month, day).isoformat()
    except ValueError:
        return None


def _generic_date(text: str) -> Optional[str]:
    # relative words such as "now" or "today" carry no calendar date
    if not any(ch.isdigit() for ch in text):
        return None
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            ts = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC")
    return ts.date().isoformat()


def parse_date(token: Any) -> Optional[str]:
    """Return ``token`` as an ISO calendar date, or ``None`` if it cannot be read."""

    if token is None or isinstance(token, bool):
        return None
    if isinstance(token, (dt.datetime, dt.date)):
        if pd.isna(token):
            return None
        if isinstance(token, dt.datetime):
            return token.date().isoformat()
        return token.isoformat()
    if isinstance(token, numbers.Real):
        if not math.isfinite(token):
            return None
        return _serial_to_iso(int(math.floor(token)))

    text = str(token).strip()
    if not text:
        return None
    if _ISO_RE.match(text):
        try:
            return dt.date.fromisoformat(text).isoformat()
        except ValueError:
            return None
    if _SERIAL_RE.match(text):
        return _serial_to_iso(int(text))
    match = _DMY_RE.match(text)
    if match:
        return _slash_date(match)
    return _generic_date(text)


def parse_number(token: Any) -> Optional[float]:
    """Parse a possibly noisy numeric cell (``"$1,234.50"``) into a finite float."""

    if token is None or isinstance(token, bool):
        return None
    if isinstance(token, numbers.Real):
        value = float(token)
        return value if math.isfinite(value) else None
    cleaned = _NUMBER_STRIP_RE.sub("", str(token))
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def match_columns(columns: List[Any]) -> Dict[str, Any]:
    """Map ``date``/``gold``/``silver`` onto the first matching header of each kind."""

    mapping: Dict[str, Any] = {}
    taken = set()
    for role, pattern in COLUMN_PATTERNS.items():
        for col in columns:
            if col in taken:
                continue
            if pattern.search(str(col).strip().lower()):
                mapping[role] = col
                taken.add(col)
                break
    return mapping


def normalize_rows(frame: pd.DataFrame) -> ParseResult:
    """Convert a header-keyed raw table into a canonical series."""

    if frame is None or frame.empty:
        return ParseResult(empty_series(), 0)
    mapping = match_columns(list(frame.columns))
    missing = [role for role in SERIES_COLUMNS if role not in mapping]
    if missing:
        raise ParseError(f"Price table has no column for: {', '.join(missing)}")

    rows: List[Dict[str, Any]] = []
    dropped = 0
    for raw_date, raw_gold, raw_silver in zip(
        frame[mapping["date"]], frame[mapping["gold"]], frame[mapping["silver"]]
    ):
        date = parse_date(raw_date)
        gold = parse_number(raw_gold)
        silver = parse_number(raw_silver)
        if date is None or gold is None or silver is None or gold <= 0 or silver <= 0:
            dropped += 1
            continue
        rows.append({"date": date, "gold": gold, "silver": silver})

    if dropped:
        logger.debug("Dropped unparseable price rows", extra={"dropped": dropped, "kept": len(rows)})
    if not rows:
        return ParseResult(empty_series(), dropped)
    return ParseResult(canonicalize(pd.DataFrame(rows, columns=SERIES_COLUMNS)), dropped)


def read_price_csv(source: Source) -> ParseResult:
    try:
        raw = pd.read_csv(source, dtype=str, keep_default_na=False, skipinitialspace=True)
    except pd.errors.EmptyDataError:
        return ParseResult(empty_series(), 0)
    except (pd.errors.ParserError, UnicodeDecodeError, OSError) as exc:
        raise ParseError(f"Unable to read price CSV: {exc}") from exc
    return normalize_rows(raw)


def read_price_text(text: str) -> ParseResult:
    if not text or not text.strip():
        return ParseResult(empty_series(), 0)
    return read_price_csv(StringIO(text))


def read_price_workbook(source: Source) -> ParseResult:
    """Read the first sheet of a workbook, using its first row as the header."""

    try:
        raw = pd.read_excel(source, sheet_name=0, engine="openpyxl", dtype=object)
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as exc:
        raise ParseError(f"Unable to read price workbook: {exc}") from exc
    return normalize_rows(raw)


def read_price_file(path: Union[str, Path]) -> ParseResult:
    path = Path(path)
    if path.suffix.lower() in WORKBOOK_SUFFIXES:
        return read_price_workbook(path)
    return read_price_csv(path)
