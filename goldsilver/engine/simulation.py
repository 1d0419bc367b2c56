"""Gold/silver ratio switching simulation."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

from .errors import ValidationError
from .normalize import parse_date
from .series import canonicalize, slice_range

logger = logging.getLogger(__name__)

ASSETS = ("gold", "silver")
GOLD_TO_SILVER = "gold_to_silver"
SILVER_TO_GOLD = "silver_to_gold"

POINT_COLUMNS = [
    "date",
    "gold",
    "silver",
    "ratio",
    "held_asset",
    "held_units",
    "portfolio_value",
    "gold_only_value",
    "silver_only_value",
    "portfolio_pct",
    "gold_pct",
    "silver_pct",
    "switched",
]


def _debug_logging_enabled() -> bool:
    value = os.getenv("GOLDSILVER_DEBUG", "")
    return value.lower() in {"1", "true", "yes", "on"}


if _debug_logging_enabled():  # pragma: no cover - configuration branch
    logger.setLevel(logging.DEBUG)


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class StrategyParameters:
    start_date: str
    end_date: str
    start_asset: str = "gold"
    start_amount: float = 10_000.0
    up_threshold: Optional[float] = None
    down_threshold: Optional[float] = None

    def validate(self) -> "StrategyParameters":
        """Return a copy with canonical dates, or raise :class:`ValidationError`."""

        start = parse_date(self.start_date)
        end = parse_date(self.end_date)
        if start is None or end is None:
            raise ValidationError(f"Invalid date range: {self.start_date!r} to {self.end_date!r}")
        if end < start:
            raise ValidationError("end date must not be before start date")
        asset = str(self.start_asset).strip().lower()
        if asset not in ASSETS:
            raise ValidationError(f"start asset must be one of {', '.join(ASSETS)}")
        amount = _as_float(self.start_amount)
        if amount is None or amount <= 0:
            raise ValidationError("start amount must be a positive number")
        thresholds: Dict[str, Optional[float]] = {}
        for name in ("up_threshold", "down_threshold"):
            value = getattr(self, name)
            if value is None:
                thresholds[name] = None
                continue
            thresholds[name] = _as_float(value)
            if thresholds[name] is None:
                raise ValidationError(f"{name} must be a finite number")
        return StrategyParameters(
            start_date=start,
            end_date=end,
            start_asset=asset,
            start_amount=amount,
            up_threshold=thresholds["up_threshold"],
            down_threshold=thresholds["down_threshold"],
        )


@dataclass
class SimulationResult:
    points: pd.DataFrame
    switches: int

    @property
    def empty(self) -> bool:
        return self.points.empty


def _pct(value: float, start_amount: float) -> float:
    return (value / start_amount - 1.0) * 100.0


def _crossing(
    holding: str,
    index: int,
    ratio: float,
    prev_ratio: float,
    up_threshold: Optional[float],
    down_threshold: Optional[float],
) -> Optional[str]:
    # only the rule for the held asset is consulted
    if holding == "gold":
        if up_threshold is not None and ratio >= up_threshold and (index == 0 or prev_ratio < up_threshold):
            return GOLD_TO_SILVER
        return None
    if down_threshold is not None and ratio <= down_threshold and (index == 0 or prev_ratio > down_threshold):
        return SILVER_TO_GOLD
    return None


def simulate(series: pd.DataFrame, params: StrategyParameters) -> SimulationResult:
    """Run the switching strategy over ``series`` restricted to the parameter window.

    The first price in the window fixes the starting units of the strategy and
    of the two buy-and-hold baselines.  An empty window yields an empty
    result rather than an error.
    """

    params = params.validate()
    window = slice_range(canonicalize(series), params.start_date, params.end_date)
    if window.empty:
        return SimulationResult(pd.DataFrame(columns=POINT_COLUMNS), 0)

    first = window.iloc[0]
    start_amount = params.start_amount
    gold_units_bh = start_amount / float(first["gold"])
    silver_units_bh = start_amount / float(first["silver"])

    holding = params.start_asset
    units = start_amount / float(first[holding])
    prev_ratio: Optional[float] = None
    switches = 0
    points: List[Dict[str, object]] = []

    for index, row in enumerate(window.itertuples(index=False)):
        prices = {"gold": float(row.gold), "silver": float(row.silver)}
        ratio = prices["gold"] / prices["silver"]
        if prev_ratio is None:
            prev_ratio = ratio

        switched = _crossing(holding, index, ratio, prev_ratio, params.up_threshold, params.down_threshold)
        if switched is not None:
            target = "silver" if holding == "gold" else "gold"
            units = units * prices[holding] / prices[target]
            logger.debug(
                "SWITCH",
                extra={"date": row.date, "from": holding, "to": target, "ratio": ratio, "units": units},
            )
            holding = target
            switches += 1
        prev_ratio = ratio

        portfolio_value = units * prices[holding]
        gold_value = gold_units_bh * prices["gold"]
        silver_value = silver_units_bh * prices["silver"]
        points.append(
            {
                "date": row.date,
                "gold": prices["gold"],
                "silver": prices["silver"],
                "ratio": ratio,
                "held_asset": holding,
                "held_units": units,
                "portfolio_value": portfolio_value,
                "gold_only_value": gold_value,
                "silver_only_value": silver_value,
                "portfolio_pct": _pct(portfolio_value, start_amount),
                "gold_pct": _pct(gold_value, start_amount),
                "silver_pct": _pct(silver_value, start_amount),
                "switched": switched,
            }
        )

    frame = pd.DataFrame(points, columns=POINT_COLUMNS)
    # keep None for days without a switch
    frame["switched"] = pd.Series([point["switched"] for point in points], dtype=object)
    return SimulationResult(points=frame, switches=switches)
