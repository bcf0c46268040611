"""Fixed-shape records passed into and out of the analytics engine.

Inputs (``Holding``, ``ConstraintSet``, ``View``) validate themselves on
construction.  Outputs are frozen: a result is built once per request and
never mutated afterwards.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

import numpy as np
import pandas as pd

from portfolio_analytics.errors import InfeasibleConstraintsError, ValidationError

_TOL = 1e-9


def _plain(value: Any) -> Any:
    """Coerce numpy/pandas values and nested records into JSON-friendly Python objects."""
    if isinstance(value, _Serializable):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (pd.Timestamp, np.datetime64)):
        return pd.Timestamp(value).isoformat()
    if isinstance(value, np.generic):
        return value.item()
    return value


class _Serializable:
    def to_dict(self) -> dict:
        return {f.name: _plain(getattr(self, f.name)) for f in dataclasses.fields(self)}


# =========================================================================
# Inputs
# =========================================================================


@dataclass(frozen=True)
class Holding(_Serializable):
    """A position in the portfolio.  Quantity is never negative."""

    symbol: str
    quantity: float
    sector: str = "Unknown"
    cost_basis: float = 0.0

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValidationError("Holding symbol must be non-empty")
        if not math.isfinite(self.quantity) or self.quantity < 0:
            raise ValidationError(f"Holding {self.symbol}: quantity must be >= 0, got {self.quantity}")


@dataclass(frozen=True)
class View(_Serializable):
    """Investor view for Black-Litterman.

    ``assets`` maps symbol -> pick coefficient.  ``{"AAPL": 1.0}`` is an
    absolute view; ``{"AAPL": 1.0, "MSFT": -1.0}`` says AAPL outperforms
    MSFT by ``expected_return``.  Returns are annual; confidence is in (0, 1].
    """

    assets: dict[str, float]
    expected_return: float
    confidence: float = 0.5

    def __post_init__(self) -> None:
        if not self.assets:
            raise ValidationError("View must reference at least one asset")
        if not 0.0 < self.confidence <= 1.0:
            raise ValidationError(f"View confidence must be in (0, 1], got {self.confidence}")


@dataclass(frozen=True, eq=False)
class ConstraintSet(_Serializable):
    """Linear constraints on the weight vector.

    Weights always sum to 1.  Long-only sets bound each weight to
    [min_position_size, max_position_size]; with short selling the lower
    bound becomes ``-max_short_position`` (default ``max_position_size``).
    ``target_return`` / ``target_volatility`` are annualized.
    """

    max_position_size: float = 1.0
    min_position_size: float = 0.0
    sector_limits: dict[str, float] = field(default_factory=dict)
    allow_short_selling: bool = False
    max_short_position: float | None = None
    target_return: float | None = None
    target_volatility: float | None = None

    def __post_init__(self) -> None:
        if self.max_position_size <= 0:
            raise ValidationError("max_position_size must be positive")
        if self.min_position_size < 0:
            raise ValidationError("min_position_size must be >= 0")
        if self.max_short_position is not None and self.max_short_position < 0:
            raise ValidationError("max_short_position must be >= 0")
        for sector, limit in self.sector_limits.items():
            if limit < 0:
                raise ValidationError(f"Sector limit for {sector} must be >= 0")
        if self.target_volatility is not None and self.target_volatility <= 0:
            raise ValidationError("target_volatility must be positive")

    @property
    def lower_bound(self) -> float:
        if self.allow_short_selling:
            short = self.max_short_position
            return -(self.max_position_size if short is None else short)
        return self.min_position_size

    @property
    def upper_bound(self) -> float:
        return self.max_position_size

    def bounds(self, n_assets: int) -> list[tuple[float, float]]:
        return [(self.lower_bound, self.upper_bound)] * n_assets

    def replace(self, **changes: Any) -> "ConstraintSet":
        return dataclasses.replace(self, **changes)

    def check(self, n_assets: int, sectors: Sequence[str] | None = None) -> None:
        """Reject sets that are inconsistent on arithmetic grounds alone.

        Raises InfeasibleConstraintsError with a diagnostic.  Passing this
        check does not prove feasibility; the optimizer confirms with an LP.
        """
        lo, hi = self.lower_bound, self.upper_bound
        if lo > hi + _TOL:
            raise InfeasibleConstraintsError(
                f"min_position_size {lo:.1%} exceeds max_position_size {hi:.1%}"
            )
        if n_assets * lo > 1.0 + _TOL:
            raise InfeasibleConstraintsError(
                f"Sum of minimum position sizes ({n_assets * lo:.1%}) exceeds 100%"
            )
        if n_assets * hi < 1.0 - _TOL:
            raise InfeasibleConstraintsError(
                f"Sum of maximum position sizes ({n_assets * hi:.1%}) is below 100%"
            )
        if not sectors or not self.sector_limits:
            return

        counts: dict[str, int] = {}
        for s in sectors:
            counts[s] = counts.get(s, 0) + 1

        capacity = 0.0
        for sector, count in counts.items():
            limit = self.sector_limits.get(sector)
            if limit is None:
                capacity += count * hi
                continue
            if count * lo > limit + _TOL:
                raise InfeasibleConstraintsError(
                    f"Sector {sector}: minimum positions ({count * lo:.1%}) exceed sector limit {limit:.1%}"
                )
            capacity += min(limit, count * hi)
        if capacity < 1.0 - _TOL:
            raise InfeasibleConstraintsError(
                f"Sector limits cap total investable weight at {capacity:.1%} (< 100%)"
            )


# =========================================================================
# Estimator output
# =========================================================================


@dataclass(frozen=True, eq=False)
class Estimate:
    """Per-period expected returns and covariance for an ordered symbol set.

    Iterating yields ``(return_vector, covariance_frame)`` so callers can
    unpack ``mu, cov = estimate(...)``.
    """

    symbols: tuple[str, ...]
    expected_returns: np.ndarray
    covariance: np.ndarray
    returns: pd.DataFrame
    method: str
    return_type: str = "log"
    periods_per_year: int = 252
    shrinkage_intensity: float | None = None
    regularized: bool = False

    @property
    def n_observations(self) -> int:
        return len(self.returns)

    @property
    def as_of(self) -> pd.Timestamp | None:
        return self.returns.index[-1] if len(self.returns) else None

    @property
    def return_vector(self) -> pd.Series:
        return pd.Series(self.expected_returns, index=list(self.symbols), name="expected_return")

    @property
    def covariance_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.covariance, index=list(self.symbols), columns=list(self.symbols))

    @property
    def simple_returns(self) -> pd.DataFrame:
        """Per-period simple returns, the scenario set for historical risk."""
        if self.return_type == "log":
            return np.expm1(self.returns)
        return self.returns

    def __iter__(self) -> Iterator[Any]:
        yield self.return_vector
        yield self.covariance_frame


# =========================================================================
# Risk / performance output
# =========================================================================


@dataclass(frozen=True)
class RiskMetrics(_Serializable):
    """Portfolio risk statistics.

    Returns and volatility are annualized.  ``var``/``cvar`` are positive
    loss fractions over ``time_horizon_days``.  Ratios that need data not
    supplied (benchmark, realized history) are None; zero denominators
    give 0.0.  ``max_drawdown`` is a non-negative magnitude.
    """

    expected_return: float
    volatility: float
    daily_volatility: float
    var: float
    cvar: float
    confidence_level: float
    time_horizon_days: int
    mode: str
    sharpe_ratio: float
    sortino_ratio: float | None = None
    treynor_ratio: float | None = None
    information_ratio: float | None = None
    tracking_error: float | None = None
    beta: float | None = None
    alpha: float | None = None
    max_drawdown: float = 0.0
    max_drawdown_date: pd.Timestamp | None = None
    var_amount: float | None = None
    cvar_amount: float | None = None
    risk_contributions: dict[str, float] = field(default_factory=dict)
    diversification_ratio: float = 1.0
    hhi: float = 0.0
    effective_n: float = 0.0
    sector_exposure: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class PerformanceMetrics(_Serializable):
    """Realized performance of a portfolio value series."""

    total_return: float = 0.0
    annualized_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_date: pd.Timestamp | None = None
    calmar_ratio: float = 0.0
    beta: float | None = None
    alpha: float | None = None
    treynor_ratio: float | None = None
    tracking_error: float | None = None
    information_ratio: float | None = None
    win_rate: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    n_observations: int = 0


# =========================================================================
# Optimizer / frontier output
# =========================================================================


@dataclass(frozen=True)
class OptimizationResult(_Serializable):
    """Outcome of a single optimization request.

    ``feasible=False`` results carry no weights.  ``converged=False`` means
    an iterative solver stopped at its cap and ``weights`` are best effort.
    ``approximate=True`` means constraints prevented the objective from
    being met exactly (e.g. constrained risk parity).
    """

    method: str
    weights: dict[str, float]
    expected_return: float
    expected_volatility: float
    sharpe_ratio: float
    feasible: bool = True
    converged: bool = True
    approximate: bool = False
    iterations: int = 0
    message: str = ""
    risk_contributions: dict[str, float] = field(default_factory=dict)
    cvar: float | None = None
    posterior_returns: dict[str, float] | None = None

    @classmethod
    def infeasible(cls, method: str, message: str) -> "OptimizationResult":
        return cls(
            method=method, weights={}, expected_return=0.0, expected_volatility=0.0,
            sharpe_ratio=0.0, feasible=False, converged=False, message=message,
        )

    def weight_array(self, symbols: Sequence[str]) -> np.ndarray:
        return np.array([self.weights.get(s, 0.0) for s in symbols], dtype=float)


@dataclass(frozen=True)
class FrontierPoint(_Serializable):
    """A solved point on the efficient frontier (annualized risk/return)."""

    risk: float
    expected_return: float
    weights: dict[str, float]
    sharpe_ratio: float
    is_max_sharpe: bool = False


@dataclass(frozen=True)
class CloudPoint(_Serializable):
    """A sampled feasible portfolio, for visual context only."""

    risk: float
    expected_return: float
    weights: dict[str, float]
    sharpe_ratio: float


# =========================================================================
# Rebalancing / stress output
# =========================================================================


@dataclass(frozen=True)
class Trade(_Serializable):
    symbol: str
    action: str
    shares_delta: float
    current_shares: float
    target_shares: float
    current_weight: float
    target_weight: float
    current_value: float
    target_value: float
    trade_value: float


@dataclass(frozen=True)
class RebalancePlan(_Serializable):
    trades: list[Trade]
    total_trade_value: float
    estimated_transaction_cost: float
    turnover: float
    portfolio_value: float
    sector_changes: dict[str, float] = field(default_factory=dict)
    tracking_error: float | None = None


@dataclass(frozen=True)
class StressResult(_Serializable):
    scenario: str
    portfolio_return: float
    per_asset: dict[str, float] = field(default_factory=dict)
    worst_drawdown: float | None = None
    skipped: list[str] = field(default_factory=list)
