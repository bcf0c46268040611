"""Efficient frontier and random portfolio cloud.

The frontier is a target-return sweep of constrained minimum-variance
solves between the minimum-variance portfolio and the maximum-return
corner of the feasible region.  The random cloud samples feasible weight
vectors for visual context only and is never mixed into the frontier.
"""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np

from portfolio_analytics.analysis.optimizer import PortfolioOptimizer
from portfolio_analytics.config import Defaults
from portfolio_analytics.errors import (
    ConvergenceError,
    InfeasibleConstraintsError,
    ValidationError,
)
from portfolio_analytics.models import CloudPoint, ConstraintSet, FrontierPoint
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("frontier")


def _optimizer(return_vector, covariance, constraints, sectors, risk_free_rate, periods_per_year, symbols):
    base = (constraints or ConstraintSet()).replace(target_return=None, target_volatility=None)
    return PortfolioOptimizer(
        return_vector, covariance, base,
        sectors=sectors, risk_free_rate=risk_free_rate,
        periods_per_year=periods_per_year, symbols=symbols,
    )


def build_frontier(
    return_vector,
    covariance,
    constraints: ConstraintSet | None = None,
    num_points: int | None = None,
    *,
    risk_free_rate: float | None = None,
    sectors: Mapping[str, str] | None = None,
    periods_per_year: int | None = None,
    symbols: Sequence[str] | None = None,
) -> list[FrontierPoint]:
    """Solve the efficient frontier at *num_points* evenly spaced target returns.

    Infeasible or non-converged target levels are skipped.  The output is
    strictly increasing in risk and exactly one point carries
    ``is_max_sharpe=True``.  An infeasible constraint set yields ``[]``.
    """
    num_points = Defaults.FRONTIER_POINTS if num_points is None else int(num_points)
    if num_points < 2:
        raise ValidationError(f"num_points must be >= 2, got {num_points}")

    try:
        opt = _optimizer(return_vector, covariance, constraints, sectors, risk_free_rate, periods_per_year, symbols)
        mv = opt.min_variance()
        w_top = opt.max_return_point()
    except (InfeasibleConstraintsError, ConvergenceError) as e:
        logger.warning("Efficient frontier unavailable: %s", e)
        return []

    r_lo = mv.expected_return
    r_hi = float(opt.mu @ w_top) * opt.ppy
    if r_hi < r_lo:
        r_hi = r_lo

    solved = [mv]
    for target in np.linspace(r_lo, r_hi, num_points)[1:]:
        try:
            solved.append(opt.min_variance(float(target)))
        except (InfeasibleConstraintsError, ConvergenceError) as e:
            logger.warning("Skipping frontier level %.4f: %s", target, e)

    solved.sort(key=lambda r: (r.expected_volatility, -r.expected_return))
    unique = []
    for res in solved:
        if unique and res.expected_volatility <= unique[-1].expected_volatility + 1e-12:
            continue
        unique.append(res)

    best = max(range(len(unique)), key=lambda i: unique[i].sharpe_ratio)
    points = [
        FrontierPoint(
            risk=r.expected_volatility,
            expected_return=r.expected_return,
            weights=r.weights,
            sharpe_ratio=r.sharpe_ratio,
            is_max_sharpe=(i == best),
        )
        for i, r in enumerate(unique)
    ]
    logger.info(
        "Frontier: %d/%d levels solved, risk %.4f..%.4f",
        len(points), num_points, points[0].risk, points[-1].risk,
    )
    return points


def project_to_box_simplex(W: np.ndarray, lower: float, upper: float, n_iter: int = 100) -> np.ndarray:
    """Euclidean projection of each row of *W* onto {sum w = 1, lower <= w <= upper}.

    Bisection on the shift tau such that sum(clip(w - tau)) = 1.
    """
    W = np.atleast_2d(W)
    lo_tau = W.min(axis=1) - upper - 1.0
    hi_tau = W.max(axis=1) - lower + 1.0
    for _ in range(n_iter):
        tau = (lo_tau + hi_tau) / 2.0
        total = np.clip(W - tau[:, None], lower, upper).sum(axis=1)
        too_big = total > 1.0
        lo_tau = np.where(too_big, tau, lo_tau)
        hi_tau = np.where(too_big, hi_tau, tau)
    tau = (lo_tau + hi_tau) / 2.0
    return np.clip(W - tau[:, None], lower, upper)


def random_portfolios(
    return_vector,
    covariance,
    constraints: ConstraintSet | None = None,
    num_portfolios: int | None = None,
    *,
    seed: int | None = None,
    risk_free_rate: float | None = None,
    sectors: Mapping[str, str] | None = None,
    periods_per_year: int | None = None,
    symbols: Sequence[str] | None = None,
) -> list[CloudPoint]:
    """Sample feasible portfolios: Dirichlet draws projected onto the bounds.

    Draws that break a sector cap are rejected.  May return fewer than
    *num_portfolios* points when sector caps reject most draws.
    """
    num_portfolios = Defaults.RANDOM_PORTFOLIOS if num_portfolios is None else int(num_portfolios)
    if num_portfolios <= 0:
        raise ValidationError("num_portfolios must be positive")

    try:
        opt = _optimizer(return_vector, covariance, constraints, sectors, risk_free_rate, periods_per_year, symbols)
    except InfeasibleConstraintsError as e:
        logger.warning("Random portfolios unavailable: %s", e)
        return []

    rng = np.random.default_rng(seed)
    lo, hi = opt.constraints.lower_bound, opt.constraints.upper_bound
    A_ub, b_ub, _, _ = opt.linear_system()
    tol = Defaults.WEIGHT_TOLERANCE

    kept: list[np.ndarray] = []
    n_kept = 0
    for _ in range(20):
        W = project_to_box_simplex(rng.dirichlet(np.ones(opt.n), size=num_portfolios), lo, hi)
        if len(b_ub):
            W = W[(W @ A_ub.T <= b_ub + tol).all(axis=1)]
        kept.append(W)
        n_kept += len(W)
        if n_kept >= num_portfolios:
            break
    W = np.vstack(kept)[:num_portfolios]
    if len(W) < num_portfolios:
        logger.warning("Sector caps rejected most samples; %d/%d portfolios", len(W), num_portfolios)

    ppy = opt.ppy
    rets = W @ opt.mu * ppy
    vols = np.sqrt(np.clip(np.einsum("ij,jk,ik->i", W, opt.cov, W), 0.0, None)) * np.sqrt(ppy)
    rf = opt.risk_free_rate
    sharpes = np.where(vols > 1e-14, (rets - rf) / np.where(vols > 1e-14, vols, 1.0), 0.0)

    return [
        CloudPoint(
            risk=float(v),
            expected_return=float(r),
            weights={s: float(x) for s, x in zip(opt.symbols, w)},
            sharpe_ratio=float(sr),
        )
        for w, r, v, sr in zip(W, rets, vols, sharpes)
    ]
