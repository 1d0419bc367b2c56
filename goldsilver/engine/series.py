"""Canonical daily gold/silver price series helpers.

A canonical series is a :class:`pandas.DataFrame` with the columns ``date``
(ISO ``YYYY-MM-DD`` string), ``gold`` and ``silver`` (USD per troy ounce).
Dates are strictly increasing and unique, and both prices are finite and
strictly positive.  Every helper here returns a new frame; inputs are never
modified in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import pandas as pd

SERIES_COLUMNS = ["date", "gold", "silver"]


@dataclass(frozen=True)
class PriceRecord:
    date: str
    gold: float
    silver: float

    @property
    def ratio(self) -> float:
        return self.gold / self.silver

    def as_dict(self) -> dict:
        return {"date": self.date, "gold": self.gold, "silver": self.silver}


def empty_series() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "date": pd.Series(dtype=object),
            "gold": pd.Series(dtype=float),
            "silver": pd.Series(dtype=float),
        }
    )


def canonicalize(frame: Optional[pd.DataFrame]) -> pd.DataFrame:
    """Sort by date, keep the last row per date and drop invalid prices."""

    if frame is None or frame.empty:
        return empty_series()
    missing = [col for col in SERIES_COLUMNS if col not in frame.columns]
    if missing:
        raise KeyError(f"Price frame is missing columns: {', '.join(missing)}")

    out = frame.loc[:, SERIES_COLUMNS].copy()
    out["date"] = out["date"].astype(str)
    out["gold"] = pd.to_numeric(out["gold"], errors="coerce").astype(float)
    out["silver"] = pd.to_numeric(out["silver"], errors="coerce").astype(float)
    valid = (
        np.isfinite(out["gold"])
        & np.isfinite(out["silver"])
        & (out["gold"] > 0)
        & (out["silver"] > 0)
    )
    out = out.loc[valid]
    out = out.drop_duplicates(subset="date", keep="last")
    out = out.sort_values("date", kind="mergesort").reset_index(drop=True)
    return out


def records_to_frame(records: Iterable[PriceRecord]) -> pd.DataFrame:
    rows = [record.as_dict() for record in records]
    if not rows:
        return empty_series()
    return canonicalize(pd.DataFrame(rows, columns=SERIES_COLUMNS))


def merge(a: Optional[pd.DataFrame], b: Optional[pd.DataFrame]) -> pd.DataFrame:
    """Union of two series; for a date present in both, the row from ``b`` wins."""

    frames = [canonicalize(a), canonicalize(b)]
    frames = [frame for frame in frames if not frame.empty]
    if not frames:
        return empty_series()
    if len(frames) == 1:
        return frames[0]
    return canonicalize(pd.concat(frames, ignore_index=True))


def slice_range(series: pd.DataFrame, start: str, end: str) -> pd.DataFrame:
    """Rows whose date falls within ``[start, end]`` (inclusive, ISO strings)."""

    if series is None or series.empty:
        return empty_series()
    mask = (series["date"] >= start) & (series["date"] <= end)
    return series.loc[mask].reset_index(drop=True)
