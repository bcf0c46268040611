"""Trade list from current holdings to optimizer target weights."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from portfolio_analytics.analysis.inputs import check_weight_sum
from portfolio_analytics.config import Defaults
from portfolio_analytics.errors import ValidationError
from portfolio_analytics.models import Holding, OptimizationResult, RebalancePlan, Trade
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("rebalancing")


def _holdings(holdings: Sequence[Holding | Mapping[str, Any]]) -> list[Holding]:
    return [h if isinstance(h, Holding) else Holding(**h) for h in holdings]


def _price(prices: Mapping[str, float], symbol: str) -> float:
    if symbol not in prices:
        raise ValidationError(f"No price for {symbol}")
    price = float(prices[symbol])
    if not np.isfinite(price) or price <= 0:
        raise ValidationError(f"Price for {symbol} must be positive, got {price}")
    return price


def market_weights(
    holdings: Sequence[Holding | Mapping[str, Any]], prices: Mapping[str, float] | pd.Series,
) -> dict[str, float]:
    """Weights by current market value, e.g. Black-Litterman market weights."""
    holdings = _holdings(holdings)
    values = {h.symbol: h.quantity * _price(prices, h.symbol) for h in holdings}
    total = sum(values.values())
    if total <= 0:
        raise ValidationError("Holdings have zero market value")
    return {s: v / total for s, v in values.items()}


def plan_rebalance(
    holdings: Sequence[Holding | Mapping[str, Any]],
    prices: Mapping[str, float] | pd.Series,
    target_weights: Mapping[str, float] | OptimizationResult,
    *,
    covariance: pd.DataFrame | np.ndarray | None = None,
    transaction_cost_bps: float = 10.0,
    cash: float = 0.0,
    sectors: Mapping[str, str] | None = None,
    periods_per_year: int | None = None,
) -> RebalancePlan:
    """Determine trades needed to move *holdings* to *target_weights*.

    Args:
        holdings: current positions (quantity in shares).
        prices: ``{symbol: latest price}``.
        target_weights: weights summing to 1, or an OptimizationResult.
        covariance: per-period covariance over the traded symbols; enables
            the annualized tracking error of current vs target weights.
        transaction_cost_bps: cost per traded value in basis points.
        cash: uninvested cash counted in the portfolio value.
        sectors: symbol -> sector for symbols not in *holdings*.

    Share deltas are whole shares, truncated toward zero.
    """
    if isinstance(target_weights, OptimizationResult):
        if not target_weights.feasible:
            raise ValidationError(f"Cannot rebalance to an infeasible result: {target_weights.message}")
        target_weights = target_weights.weights
    holdings = _holdings(holdings)
    if transaction_cost_bps < 0:
        raise ValidationError("transaction_cost_bps must be >= 0")

    current = {h.symbol: h for h in holdings}
    symbols = list(current) + [s for s in target_weights if s not in current]
    sector_of = dict(sectors or {})
    sector_of.update({h.symbol: h.sector for h in holdings})

    w_target = np.array([float(target_weights.get(s, 0.0)) for s in symbols])
    check_weight_sum(w_target)

    px = np.array([_price(prices, s) for s in symbols])
    shares = np.array([current[s].quantity if s in current else 0.0 for s in symbols])
    current_values = shares * px
    portfolio_value = float(current_values.sum() + cash)
    if portfolio_value <= 0:
        raise ValidationError("Portfolio value must be positive to rebalance")
    w_current = current_values / portfolio_value

    trades: list[Trade] = []
    total_trade_value = 0.0
    for i, s in enumerate(symbols):
        target_value = w_target[i] * portfolio_value
        delta_shares = int((target_value - current_values[i]) / px[i])
        trade_value = abs(delta_shares * px[i])
        total_trade_value += trade_value
        action = "BUY" if delta_shares > 0 else ("SELL" if delta_shares < 0 else "HOLD")
        trades.append(Trade(
            symbol=s,
            action=action,
            shares_delta=float(delta_shares),
            current_shares=float(shares[i]),
            target_shares=float(shares[i] + delta_shares),
            current_weight=float(w_current[i]),
            target_weight=float(w_target[i]),
            current_value=float(current_values[i]),
            target_value=float(target_value),
            trade_value=float(trade_value),
        ))

    sector_changes: dict[str, float] = {}
    for i, s in enumerate(symbols):
        key = sector_of.get(s, "Unknown")
        sector_changes[key] = sector_changes.get(key, 0.0) + float(w_target[i] - w_current[i])

    tracking_error = None
    if covariance is not None:
        if isinstance(covariance, pd.DataFrame):
            missing = [s for s in symbols if s not in covariance.index]
            if missing:
                raise ValidationError(f"Covariance missing symbols: {missing}")
            cov = covariance.loc[symbols, symbols].to_numpy(dtype=float)
        else:
            cov = np.asarray(covariance, dtype=float)
            if cov.shape != (len(symbols), len(symbols)):
                raise ValidationError(f"Covariance shape {cov.shape} does not match {len(symbols)} symbols")
        diff = w_current - w_target
        ppy = periods_per_year or Defaults.TRADING_DAYS
        tracking_error = float(np.sqrt(max(float(diff @ cov @ diff), 0.0) * ppy))

    cost = total_trade_value * transaction_cost_bps / 10_000.0
    logger.info(
        "Rebalance: %d trades, traded %.2f of %.2f (cost %.2f)",
        sum(t.action != "HOLD" for t in trades), total_trade_value, portfolio_value, cost,
    )
    return RebalancePlan(
        trades=trades,
        total_trade_value=float(total_trade_value),
        estimated_transaction_cost=float(cost),
        turnover=float(total_trade_value / portfolio_value),
        portfolio_value=portfolio_value,
        sector_changes=sector_changes,
        tracking_error=tracking_error,
    )
