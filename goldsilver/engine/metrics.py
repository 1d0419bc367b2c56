"""Performance metric calculations for simulations."""

from __future__ import annotations

from typing import Dict

import numpy as np
import pandas as pd

from .simulation import SimulationResult


def compute_drawdown(values: pd.Series) -> pd.Series:
    """Compute percentage drawdown from a value curve."""

    if values is None or values.empty:
        return pd.Series(dtype=float)
    running_max = values.cummax()
    drawdown = values / running_max - 1.0
    drawdown.name = "drawdown"
    return drawdown


def compute_performance_metrics(
    values: pd.Series,
    annualisation_factor: int = 252,
) -> Dict[str, float]:
    metrics: Dict[str, float] = {}
    if values is None or values.empty:
        return metrics

    returns = values.astype(float).pct_change().dropna()
    if not returns.empty:
        avg_daily = returns.mean()
        vol_daily = returns.std(ddof=0)
        metrics["avg_daily_return"] = float(avg_daily)
        metrics["volatility_daily"] = float(vol_daily)
        metrics["annualized_return"] = float(((1.0 + avg_daily) ** annualisation_factor) - 1.0)
        metrics["annualized_vol"] = float(vol_daily * np.sqrt(annualisation_factor))
        if vol_daily > 0:
            metrics["sharpe"] = float((avg_daily / vol_daily) * np.sqrt(annualisation_factor))
    drawdown = compute_drawdown(values.astype(float))
    if not drawdown.empty:
        metrics["max_drawdown"] = float(drawdown.min())
    metrics["ending_value"] = float(values.iloc[-1])
    return metrics


def compute_summary(result: SimulationResult) -> Dict[str, float]:
    """Headline comparison of the strategy against both buy-and-hold baselines."""

    summary: Dict[str, float] = {"switches": float(result.switches)}
    if result.empty:
        return summary

    last = result.points.iloc[-1]
    portfolio = float(last["portfolio_value"])
    gold_value = float(last["gold_only_value"])
    silver_value = float(last["silver_only_value"])
    summary.update(
        {
            "portfolio_value": portfolio,
            "gold_only_value": gold_value,
            "silver_only_value": silver_value,
            "portfolio_pct": float(last["portfolio_pct"]),
            "gold_pct": float(last["gold_pct"]),
            "silver_pct": float(last["silver_pct"]),
            "vs_gold": portfolio - gold_value,
            "vs_silver": portfolio - silver_value,
            "vs_gold_pct": (portfolio - gold_value) / gold_value * 100.0 if gold_value > 0 else 0.0,
            "vs_silver_pct": (portfolio - silver_value) / silver_value * 100.0 if silver_value > 0 else 0.0,
        }
    )
    indexed = result.points.set_index("date")["portfolio_value"].astype(float)
    for key, value in compute_performance_metrics(indexed).items():
        summary[f"portfolio_{key}"] = value
    return summary
