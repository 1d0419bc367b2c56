"""Serialisers for report payloads exposed to the frontend."""

from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd

from ..engine.series import SERIES_COLUMNS, canonicalize


def _optional(value: Any) -> Any:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    return value


def serialise_points(points: pd.DataFrame) -> List[Dict[str, Any]]:
    """Return simulation points as dictionaries suitable for JSON responses."""

    if points is None or points.empty:
        return []

    payload: List[Dict[str, Any]] = []
    for row in points.itertuples(index=False):
        payload.append(
            {
                "date": str(row.date),
                "gold": float(row.gold),
                "silver": float(row.silver),
                "ratio": float(row.ratio),
                "held_asset": row.held_asset,
                "held_units": float(row.held_units),
                "portfolio_value": float(row.portfolio_value),
                "gold_only_value": float(row.gold_only_value),
                "silver_only_value": float(row.silver_only_value),
                "portfolio_pct": float(row.portfolio_pct),
                "gold_pct": float(row.gold_pct),
                "silver_pct": float(row.silver_pct),
                "switched": _optional(row.switched),
            }
        )
    return payload


def serialise_series(series: pd.DataFrame) -> List[Dict[str, Any]]:
    if series is None or series.empty:
        return []
    return [
        {"date": str(row.date), "gold": float(row.gold), "silver": float(row.silver)}
        for row in series.itertuples(index=False)
    ]


def series_to_csv(series: pd.DataFrame) -> str:
    """CSV text with the header ``date,gold,silver``; floats keep full precision."""

    canonical = canonicalize(series)
    return canonical.loc[:, SERIES_COLUMNS].to_csv(index=False, lineterminator="\n")
