"""Coercion of caller inputs into aligned numpy arrays.

ReturnVector / CovarianceMatrix / WeightVector may arrive as pandas objects
keyed by symbol, plain mappings, or bare arrays.  Everything downstream
works on ndarrays in one fixed symbol order.
"""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from portfolio_analytics.config import Defaults
from portfolio_analytics.errors import ValidationError


def coerce_inputs(
    return_vector, covariance, symbols: Sequence[str] | None = None,
) -> tuple[list[str], np.ndarray, np.ndarray]:
    """Return ``(symbols, mu, cov)`` aligned to one symbol order.

    Symbol order comes from *symbols*, else the return vector's index or
    keys, else ``asset_0 .. asset_{n-1}``.
    """
    if symbols is None:
        if isinstance(return_vector, pd.Series):
            symbols = [str(s) for s in return_vector.index]
        elif isinstance(return_vector, Mapping):
            symbols = [str(s) for s in return_vector.keys()]
    symbols = list(symbols) if symbols is not None else None

    if isinstance(return_vector, pd.Series):
        mu = return_vector.reindex(symbols).to_numpy(dtype=float)
    elif isinstance(return_vector, Mapping):
        mu = np.array([return_vector.get(s, np.nan) for s in symbols], dtype=float)
    else:
        mu = np.asarray(return_vector, dtype=float).ravel()

    if symbols is None:
        symbols = [f"asset_{i}" for i in range(len(mu))]

    if isinstance(covariance, pd.DataFrame) and set(symbols) <= set(covariance.index):
        cov = covariance.loc[symbols, symbols].to_numpy(dtype=float)
    else:
        cov = np.atleast_2d(np.asarray(covariance, dtype=float))

    n = len(symbols)
    if len(mu) != n or np.isnan(mu).any():
        raise ValidationError(f"Return vector does not cover the {n} symbols {symbols}")
    if cov.shape != (n, n):
        raise ValidationError(f"Covariance shape {cov.shape} does not match {n} symbols")
    if len(set(symbols)) != n:
        raise ValidationError("Duplicate symbols in input")
    return symbols, mu, cov


def weights_vector(weights, symbols: Sequence[str]) -> np.ndarray:
    """Align a WeightVector to *symbols*; missing symbols weigh 0."""
    if isinstance(weights, pd.Series):
        unknown = set(map(str, weights.index)) - set(symbols)
        w = weights.reindex(symbols).fillna(0.0).to_numpy(dtype=float)
    elif isinstance(weights, Mapping):
        unknown = set(map(str, weights.keys())) - set(symbols)
        w = np.array([float(weights.get(s, 0.0)) for s in symbols])
    else:
        unknown = set()
        w = np.asarray(weights, dtype=float).ravel()
        if len(w) != len(symbols):
            raise ValidationError(f"Expected {len(symbols)} weights, got {len(w)}")
    if unknown:
        raise ValidationError(f"Weights reference unknown symbols: {sorted(unknown)}")
    if not np.all(np.isfinite(w)):
        raise ValidationError("Weights must be finite")
    return w


def check_weight_sum(w: np.ndarray, tolerance: float | None = None) -> None:
    """Externally supplied weights must sum to 1 within *tolerance*."""
    tol = Defaults.WEIGHT_TOLERANCE if tolerance is None else tolerance
    total = float(np.sum(w))
    if abs(total - 1.0) > tol:
        raise ValidationError(f"Weights sum to {total:.8f}, expected 1 within {tol:g}")


def portfolio_return(w: np.ndarray, mu: np.ndarray) -> float:
    return float(w @ mu)


def portfolio_volatility(w: np.ndarray, cov: np.ndarray) -> float:
    return float(np.sqrt(max(float(w @ cov @ w), 0.0)))


def annualize(period_return: float, period_vol: float, periods_per_year: int) -> tuple[float, float]:
    """Scale per-period return/volatility to annual figures."""
    return period_return * periods_per_year, period_vol * float(np.sqrt(periods_per_year))


def sharpe(annual_return: float, annual_vol: float, risk_free_rate: float) -> float:
    """Sharpe ratio; exactly 0.0 when volatility is zero."""
    if annual_vol <= 1e-14:
        return 0.0
    return float((annual_return - risk_free_rate) / annual_vol)
