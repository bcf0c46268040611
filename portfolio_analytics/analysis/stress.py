"""Stress testing: hypothetical shocks and historical window replay."""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np
import pandas as pd

from portfolio_analytics.analysis.risk import RiskMetricsCalculator
from portfolio_analytics.errors import ValidationError
from portfolio_analytics.models import StressResult
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("stress")

# Fallback betas when no regression beta is supplied.
SECTOR_BETAS: dict[str, float] = {
    "Technology": 1.2,
    "Healthcare": 0.9,
    "Financials": 1.1,
    "Utilities": 0.7,
    "Consumer Goods": 0.8,
}

# Asset return under a scenario = beta * market + sector shock.
DEFAULT_SHOCK_SCENARIOS: dict[str, dict[str, Any]] = {
    "Market Drop (10%)": {"market": -0.10},
    "Tech Correction (15%)": {"market": -0.02, "sectors": {"Technology": -0.15}},
    "Interest Rate +1%": {"market": -0.054, "sectors": {"Utilities": -0.03, "Real Estate": -0.04}},
    "Oil Price Spike (30%)": {"market": -0.031, "sectors": {"Energy": 0.12}},
    "USD Strength (10%)": {"market": -0.028},
    "2008 Crisis": {"market": -0.193, "sectors": {"Financials": -0.15}},
    "COVID-19 Crash": {"market": -0.156},
    "Inflation Spike (5%)": {"market": -0.063},
}

DEFAULT_HISTORICAL_WINDOWS: dict[str, tuple[str, str]] = {
    "global_financial_crisis": ("2008-09-01", "2009-03-09"),
    "covid_crash": ("2020-02-19", "2020-03-23"),
    "2022_rate_hike": ("2022-01-03", "2022-06-16"),
    "china_tech_crackdown": ("2021-02-16", "2021-10-04"),
}


def asset_betas(
    symbols, sectors: Mapping[str, str] | None = None, betas: Mapping[str, float] | None = None,
) -> dict[str, float]:
    sectors = sectors or {}
    betas = betas or {}
    return {
        s: float(betas[s]) if s in betas else SECTOR_BETAS.get(sectors.get(s, "Unknown"), 1.0)
        for s in symbols
    }


def shock_scenario(
    name: str,
    shocks: Mapping[str, Any],
    weights: Mapping[str, float],
    sectors: Mapping[str, str],
    betas: Mapping[str, float],
) -> StressResult:
    market = float(shocks.get("market", 0.0))
    sector_shocks = shocks.get("sectors", {})
    per_asset = {
        s: betas[s] * market + float(sector_shocks.get(sectors.get(s, "Unknown"), 0.0))
        for s in weights
    }
    total = sum(weights[s] * r for s, r in per_asset.items())
    return StressResult(scenario=name, portfolio_return=float(total), per_asset=per_asset)


def _close_frame(price_history) -> pd.DataFrame:
    frame = pd.DataFrame(price_history) if not isinstance(price_history, pd.DataFrame) else price_history
    frame = frame.copy()
    frame.index = pd.to_datetime(frame.index)
    return frame.sort_index()


def replay_window(
    name: str,
    start: str,
    end: str,
    weights: Mapping[str, float],
    prices: pd.DataFrame,
) -> StressResult:
    """Return over [start, end] and the worst drawdown inside it."""
    start_dt, end_dt = pd.Timestamp(start), pd.Timestamp(end)
    per_asset: dict[str, float] = {}
    skipped: list[str] = []
    total = 0.0
    path: pd.Series | None = None

    for symbol, weight in weights.items():
        if symbol not in prices.columns:
            skipped.append(symbol)
            continue
        window = prices[symbol].loc[(prices.index >= start_dt) & (prices.index <= end_dt)].dropna()
        if len(window) < 2:
            skipped.append(symbol)
            continue
        ret = float(window.iloc[-1] / window.iloc[0] - 1.0)
        per_asset[symbol] = ret
        total += ret * float(weight)
        normed = window / window.iloc[0] * float(weight)
        path = normed if path is None else path.add(normed, fill_value=0.0)

    worst = None
    if path is not None and len(path) >= 2:
        worst, _ = RiskMetricsCalculator.max_drawdown(path)
    if skipped:
        logger.debug("%s: skipped %s (fewer than 2 prices in window)", name, skipped)
    return StressResult(
        scenario=name, portfolio_return=float(total), per_asset=per_asset,
        worst_drawdown=worst, skipped=skipped,
    )


def stress_test(
    weights: Mapping[str, float],
    sectors: Mapping[str, str] | None = None,
    *,
    betas: Mapping[str, float] | None = None,
    scenarios: Mapping[str, Mapping[str, Any]] | None = None,
    price_history: pd.DataFrame | Mapping[str, pd.Series] | None = None,
    windows: Mapping[str, tuple[str, str]] | None = None,
) -> list[StressResult]:
    """Run shock scenarios, plus historical windows when *price_history* is given.

    Caller *scenarios* / *windows* are added to (and override) the defaults.
    """
    if not weights:
        raise ValidationError("stress_test needs at least one weight")
    if not np.all(np.isfinite(list(weights.values()))):
        raise ValidationError("Weights must be finite")
    sectors = dict(sectors or {})
    beta_map = asset_betas(weights.keys(), sectors, betas)

    all_scenarios = dict(DEFAULT_SHOCK_SCENARIOS)
    if scenarios:
        all_scenarios.update(scenarios)
    results = [
        shock_scenario(name, shocks, weights, sectors, beta_map)
        for name, shocks in all_scenarios.items()
    ]

    if price_history is not None:
        prices = _close_frame(price_history)
        all_windows = dict(DEFAULT_HISTORICAL_WINDOWS)
        if windows:
            all_windows.update(windows)
        for name, (start, end) in all_windows.items():
            results.append(replay_window(name, start, end, weights, prices))

    logger.info("Stress test: %d scenarios, worst %.2f%%",
                len(results), 100 * min(r.portfolio_return for r in results))
    return results
