"""Constrained portfolio optimization.

Objectives:

* ``min_variance``    -- quadratic program, minimize w'Sigma w.
* ``max_sharpe``      -- tangency portfolio via the homogeneous convex
  reformulation (y = kappa * w); direct nonlinear fallback when no
  feasible portfolio beats the risk-free rate.
* ``risk_parity``     -- cyclical coordinate descent on the log-barrier
  form, equal (or budgeted) risk contributions.
* ``cvar_min``        -- Rockafellar-Uryasev linear program over a scenario set.
* ``black_litterman`` -- posterior returns from market-implied prior and
  views, then max_sharpe (or min_variance when a target return is set).
* ``efficient_risk``  -- maximize return subject to a volatility ceiling.

Every objective honours the full linear constraint set: sum-to-one, per
asset bounds and sector caps.  Feasibility is confirmed with an LP before
any nonlinear solve; an infeasible set yields ``feasible=False`` and a
diagnostic, never a renormalized weight vector.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.optimize import linprog, minimize

from portfolio_analytics.analysis.estimation import ensure_psd
from portfolio_analytics.analysis.inputs import (
    annualize,
    coerce_inputs,
    portfolio_return,
    portfolio_volatility,
    sharpe,
)
from portfolio_analytics.analysis.risk import RiskMetricsCalculator, normalize_confidence
from portfolio_analytics.config import Defaults
from portfolio_analytics.errors import (
    ConvergenceError,
    InfeasibleConstraintsError,
    ValidationError,
)
from portfolio_analytics.models import ConstraintSet, OptimizationResult, View
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("optimizer")

OBJECTIVES = (
    "min_variance",
    "max_sharpe",
    "risk_parity",
    "cvar_min",
    "black_litterman",
    "efficient_risk",
)

# Method ids used by the dashboard.  "mean-variance" is resolved against
# the constraint set in resolve_objective().
METHOD_ALIASES = {
    "min-volatility": "min_variance",
    "min-variance": "min_variance",
    "max-sharpe": "max_sharpe",
    "risk-parity": "risk_parity",
    "cvar-min": "cvar_min",
    "black-litterman": "black_litterman",
    "efficient-risk": "efficient_risk",
}

SIMULATED_SCENARIOS = 2000
SCENARIO_SEED = 0

_SLSQP_OPTIONS = {"maxiter": Defaults.MAX_ITER, "ftol": 1e-12}


def resolve_objective(name: str, constraints: ConstraintSet | None = None) -> str:
    """Map a method id (``max-sharpe``, ``mean-variance``...) to an objective."""
    key = name.strip().lower()
    if key in ("mean-variance", "mean_variance"):
        has_target = constraints is not None and constraints.target_return is not None
        return "min_variance" if has_target else "max_sharpe"
    key = METHOD_ALIASES.get(key, key)
    if key not in OBJECTIVES:
        raise ValidationError(f"Unknown objective '{name}', expected one of {OBJECTIVES}")
    return key


class PortfolioOptimizer:
    """Solver for one (return vector, covariance, constraint set) problem.

    Estimates are per-period; ``target_return``, ``target_volatility`` and
    the risk-free rate are annual and converted with *periods_per_year*.
    """

    def __init__(
        self,
        return_vector,
        covariance,
        constraints: ConstraintSet | None = None,
        *,
        sectors: Mapping[str, str] | None = None,
        risk_free_rate: float | None = None,
        periods_per_year: int | None = None,
        symbols: Sequence[str] | None = None,
    ) -> None:
        self.symbols, self.mu, cov = coerce_inputs(return_vector, covariance, symbols)
        self.cov, _ = ensure_psd(cov)
        self.n = len(self.symbols)
        self.constraints = constraints or ConstraintSet()
        self.sectors = dict(sectors or {})
        self.risk_free_rate = Defaults.RISK_FREE_RATE if risk_free_rate is None else float(risk_free_rate)
        self.ppy = periods_per_year or Defaults.TRADING_DAYS

        # scaled copies keep SLSQP tolerances meaningful for daily magnitudes
        self._cov_scale = max(float(np.trace(self.cov)) / self.n, 1e-300)
        self._cov_s = self.cov / self._cov_scale

        self.constraints.check(self.n, [self.sectors.get(s, "Unknown") for s in self.symbols])

    # ------------------------------------------------------------------
    #  Linear constraint system
    # ------------------------------------------------------------------
    @property
    def bounds(self) -> list[tuple[float, float]]:
        return self.constraints.bounds(self.n)

    def _sector_rows(self) -> tuple[np.ndarray, np.ndarray, list[str]]:
        rows, limits, names = [], [], []
        for sector, limit in self.constraints.sector_limits.items():
            mask = np.array([self.sectors.get(s, "Unknown") == sector for s in self.symbols], dtype=float)
            if mask.any():
                rows.append(mask)
                limits.append(float(limit))
                names.append(sector)
        if not rows:
            return np.zeros((0, self.n)), np.zeros(0), []
        return np.vstack(rows), np.array(limits), names

    def linear_system(
        self, target_return: float | None = None, target_mode: str = "eq",
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """``(A_ub, b_ub, A_eq, b_eq)`` for sum-to-one, sector caps and an
        optional annual return target (``eq`` or ``min``)."""
        A_ub, b_ub, _ = self._sector_rows()
        A_eq = np.ones((1, self.n))
        b_eq = np.array([1.0])
        if target_return is not None:
            row = self.mu * self.ppy
            if target_mode == "eq":
                A_eq = np.vstack([A_eq, row])
                b_eq = np.append(b_eq, target_return)
            else:
                A_ub = np.vstack([A_ub, -row])
                b_ub = np.append(b_ub, -target_return)
        return A_ub, b_ub, A_eq, b_eq

    @staticmethod
    def _slsqp_constraints(A_ub, b_ub, A_eq, b_eq) -> list[dict[str, Any]]:
        cons: list[dict[str, Any]] = [
            {"type": "eq", "fun": lambda w: A_eq @ w - b_eq, "jac": lambda w: A_eq},
        ]
        if len(b_ub):
            cons.append({"type": "ineq", "fun": lambda w: b_ub - A_ub @ w, "jac": lambda w: -A_ub})
        return cons

    def _linprog(self, c: np.ndarray, target_return=None, target_mode="eq"):
        A_ub, b_ub, A_eq, b_eq = self.linear_system(target_return, target_mode)
        return linprog(
            c,
            A_ub=A_ub if len(b_ub) else None,
            b_ub=b_ub if len(b_ub) else None,
            A_eq=A_eq, b_eq=b_eq,
            bounds=self.bounds, method="highs",
        )

    def _lp_best(self, c: np.ndarray, target_return=None, target_mode="eq") -> np.ndarray:
        res = self._linprog(c, target_return, target_mode)
        if res.status != 0:
            raise InfeasibleConstraintsError(f"No weight vector satisfies the constraints: {res.message}")
        return np.asarray(res.x, dtype=float)

    def feasible_point(self, target_return: float | None = None, target_mode: str = "eq") -> np.ndarray:
        """Any weight vector satisfying the constraints, via LP.

        Raises InfeasibleConstraintsError when none exists.
        """
        res = self._linprog(np.zeros(self.n), target_return, target_mode)
        if res.status != 0:
            detail = f" with target return {target_return:.2%}" if target_return is not None else ""
            _, _, names = self._sector_rows()
            sectors = f" (sector caps on {', '.join(names)})" if names else ""
            raise InfeasibleConstraintsError(
                f"No weight vector satisfies the constraints{detail}{sectors}: {res.message}"
            )
        return np.asarray(res.x, dtype=float)

    def max_return_point(self) -> np.ndarray:
        """The maximum-return corner of the feasible region."""
        return self._lp_best(-self.mu)

    def violation(self, w: np.ndarray, target_return=None, target_mode="eq") -> str:
        """Empty string if *w* satisfies every constraint within tolerance."""
        tol = Defaults.WEIGHT_TOLERANCE
        lo, hi = self.constraints.lower_bound, self.constraints.upper_bound
        if abs(w.sum() - 1.0) > tol:
            return f"weights sum to {w.sum():.6f}"
        if (w < lo - tol).any() or (w > hi + tol).any():
            return f"weights outside [{lo:.2%}, {hi:.2%}]"
        A_ub, b_ub, A_eq, b_eq = self.linear_system(target_return, target_mode)
        if len(b_ub) and (A_ub @ w > b_ub + tol).any():
            return "sector or return constraint violated"
        if (np.abs(A_eq @ w - b_eq) > tol * max(1.0, float(np.abs(b_eq).max()))).any():
            return "equality constraint violated"
        return ""

    def _start(self, target_return=None, target_mode="eq") -> np.ndarray:
        w0 = np.ones(self.n) / self.n
        if self.violation(w0, target_return, target_mode):
            w0 = self.feasible_point(target_return, target_mode)
        return w0

    def _clean(self, w: np.ndarray) -> np.ndarray:
        return np.clip(np.asarray(w, dtype=float), self.constraints.lower_bound, self.constraints.upper_bound)

    # ------------------------------------------------------------------
    #  Result assembly
    # ------------------------------------------------------------------
    def stats(self, w: np.ndarray, mu: np.ndarray | None = None) -> tuple[float, float, float]:
        """Annualized (return, volatility, Sharpe) for *w*."""
        mu = self.mu if mu is None else mu
        ret, vol = annualize(portfolio_return(w, mu), portfolio_volatility(w, self.cov), self.ppy)
        return ret, vol, sharpe(ret, vol, self.risk_free_rate)

    def _result(self, method: str, w: np.ndarray, **extra: Any) -> OptimizationResult:
        ret, vol, sr = self.stats(w, extra.pop("stats_mu", None))
        rc = RiskMetricsCalculator.risk_contributions(w, self.cov)
        return OptimizationResult(
            method=method,
            weights={s: float(x) for s, x in zip(self.symbols, w)},
            expected_return=ret,
            expected_volatility=vol,
            sharpe_ratio=sr,
            risk_contributions={s: float(x) for s, x in zip(self.symbols, rc)},
            **extra,
        )

    def _solve(self, fun, jac, w0, cons, bounds=None):
        res = minimize(
            fun, w0, jac=jac, method="SLSQP",
            bounds=self.bounds if bounds is None else bounds,
            constraints=cons, options=_SLSQP_OPTIONS,
        )
        logger.debug("SLSQP: success=%s nit=%s msg=%s", res.success, res.nit, res.message)
        return res

    def _finish(self, method: str, res, fallback: np.ndarray, target_return=None, target_mode="eq", **extra):
        """Validate a solver result; best-effort weights get converged=False."""
        w = self._clean(res.x)
        problem = self.violation(w, target_return, target_mode)
        if problem:
            logger.warning("%s: solver returned infeasible weights (%s); using feasible start", method, problem)
            raise ConvergenceError(f"{method}: {res.message} ({problem})", fallback, int(res.nit))
        if not res.success:
            raise ConvergenceError(f"{method}: {res.message}", w, int(res.nit))
        return self._result(method, w, iterations=int(res.nit), **extra)

    # ------------------------------------------------------------------
    #  Objectives
    # ------------------------------------------------------------------
    def min_variance(self, target_return: float | None = None) -> OptimizationResult:
        """Global (or target-return) minimum-variance portfolio.

        When Sigma is rank-deficient the optimum is not unique; a second
        stage picks the optimum closest to equal weighting.
        """
        A_ub, b_ub, A_eq, b_eq = self.linear_system(target_return)
        cons = self._slsqp_constraints(A_ub, b_ub, A_eq, b_eq)
        w0 = self._start(target_return)
        C = self._cov_s

        res = self._solve(lambda w: float(w @ C @ w), lambda w: 2.0 * C @ w, w0, cons)
        result = self._finish("min_variance", res, w0, target_return)

        if np.linalg.matrix_rank(self.cov) < self.n:
            w_star = result.weight_array(self.symbols)
            v_star = float(w_star @ C @ w_star)
            eq_w = np.ones(self.n) / self.n
            tie = cons + [{
                "type": "ineq",
                "fun": lambda w: v_star * (1 + 1e-9) + 1e-15 - float(w @ C @ w),
                "jac": lambda w: -2.0 * C @ w,
            }]
            res2 = self._solve(
                lambda w: float((w - eq_w) @ (w - eq_w)), lambda w: 2.0 * (w - eq_w), w_star, tie,
            )
            w2 = self._clean(res2.x)
            if res2.success and not self.violation(w2, target_return):
                logger.debug("min_variance: rank-deficient covariance, tie-break toward equal weights")
                result = self._result("min_variance", w2, iterations=result.iterations + int(res2.nit))
        return result

    def max_sharpe(self, mu: np.ndarray | None = None) -> OptimizationResult:
        """Tangency portfolio, optionally against alternative returns *mu*."""
        mu = self.mu if mu is None else np.asarray(mu, dtype=float)
        excess = mu - self.risk_free_rate / self.ppy
        scale = max(float(np.abs(excess).max()), 1e-300)
        e = excess / scale

        target = self.constraints.target_return
        w_best = self._lp_best(-e, target, "min")
        top = float(e @ w_best)
        if top <= 1e-12:
            logger.warning("max_sharpe: no feasible portfolio beats the risk-free rate; direct solve")
            return self._max_sharpe_direct(mu)

        # homogeneous form: z = [y, kappa], y = kappa * w, e'y = 1
        n = self.n
        A_ub, b_ub, A_eq, b_eq = self.linear_system(target, "min")
        lo, hi = self.constraints.lower_bound, self.constraints.upper_bound
        eye = np.eye(n)
        H_ub = np.vstack([
            np.hstack([A_ub, -b_ub[:, None]]),
            np.hstack([eye, -hi * np.ones((n, 1))]),
            np.hstack([-eye, lo * np.ones((n, 1))]),
        ])
        H_eq = np.vstack([
            np.hstack([A_eq, -b_eq[:, None]]),
            np.append(e, 0.0)[None, :],
        ])
        h_eq = np.zeros(len(H_eq))
        h_eq[-1] = 1.0
        cons = [
            {"type": "eq", "fun": lambda z: H_eq @ z - h_eq, "jac": lambda z: H_eq},
            {"type": "ineq", "fun": lambda z: -(H_ub @ z), "jac": lambda z: -H_ub},
        ]
        C = self._cov_s

        def fun(z):
            y = z[:n]
            return float(y @ C @ y)

        def jac(z):
            g = np.zeros(n + 1)
            g[:n] = 2.0 * C @ z[:n]
            return g

        w_start = self._start(target, "min")
        t = float(e @ w_start)
        if t <= 1e-12:
            w_start = w_best
            t = top
        z0 = np.append(w_start / t, 1.0 / t)

        res = minimize(
            fun, z0, jac=jac, method="SLSQP",
            bounds=[(None, None)] * n + [(0.0, None)],
            constraints=cons, options=_SLSQP_OPTIONS,
        )
        logger.debug("max_sharpe SLSQP: success=%s nit=%s", res.success, res.nit)
        kappa = float(res.x[-1])
        if kappa <= 1e-14:
            raise ConvergenceError("max_sharpe: degenerate scaling variable", w_best, int(res.nit))
        res.x = res.x[:n] / kappa
        return self._finish("max_sharpe", res, w_start, target, "min", stats_mu=mu)

    def _max_sharpe_direct(self, mu: np.ndarray) -> OptimizationResult:
        target = self.constraints.target_return
        A_ub, b_ub, A_eq, b_eq = self.linear_system(target, "min")
        cons = self._slsqp_constraints(A_ub, b_ub, A_eq, b_eq)
        rf = self.risk_free_rate

        def neg_sharpe(w: np.ndarray) -> float:
            ret = float(w @ mu) * self.ppy
            vol = portfolio_volatility(w, self.cov) * np.sqrt(self.ppy)
            if vol < 1e-12:
                return 1e6
            return -(ret - rf) / vol

        w0 = self._start(target, "min")
        res = self._solve(neg_sharpe, None, w0, cons)
        return self._finish("max_sharpe", res, w0, target, "min", stats_mu=mu)

    def risk_parity(self, risk_budgets: Mapping[str, float] | None = None) -> OptimizationResult:
        """Equal (or budgeted) risk contributions.

        Unconstrained solution by cyclical coordinate descent on
        0.5 x'Sigma x - sum(b_i log x_i), normalized to sum to one.  If that
        solution breaks the bounds or sector caps, a constrained
        least-squares fit of the contributions is returned with
        ``approximate=True``.
        """
        budgets = self._budgets(risk_budgets)
        diag = np.diag(self._cov_s)
        zero = [s for s, d in zip(self.symbols, diag) if d <= 0]
        if zero:
            raise InfeasibleConstraintsError(
                f"Risk parity undefined for zero-variance assets: {zero}"
            )

        C = self._cov_s
        x = 1.0 / np.sqrt(diag)
        x /= x.sum()
        tol = Defaults.TOLERANCE
        iterations = 0
        gap = np.inf
        for iterations in range(1, Defaults.MAX_ITER + 1):
            for i in range(self.n):
                c_i = float(C[i] @ x - C[i, i] * x[i])
                x[i] = (-c_i + np.sqrt(c_i ** 2 + 4.0 * C[i, i] * budgets[i])) / (2.0 * C[i, i])
            w = x / x.sum()
            gap = float(np.abs(RiskMetricsCalculator.risk_contributions(w, C) - budgets).max())
            if gap < tol:
                break
        w = x / x.sum()
        logger.debug("risk_parity: %d sweeps, contribution gap %.2e", iterations, gap)

        if self.violation(w):
            return self._risk_parity_constrained(budgets, iterations)
        if gap >= tol:
            raise ConvergenceError(
                f"risk_parity: contribution gap {gap:.2e} after {iterations} sweeps", w, iterations,
            )
        return self._result("risk_parity", w, iterations=iterations)

    def _budgets(self, risk_budgets: Mapping[str, float] | None) -> np.ndarray:
        if not risk_budgets:
            return np.ones(self.n) / self.n
        unknown = set(risk_budgets) - set(self.symbols)
        if unknown:
            raise ValidationError(f"Risk budgets reference unknown symbols: {sorted(unknown)}")
        b = np.array([float(risk_budgets.get(s, 0.0)) for s in self.symbols])
        if (b <= 0).any():
            raise ValidationError("Risk budgets must be positive for every asset")
        return b / b.sum()

    def _risk_parity_constrained(self, budgets: np.ndarray, prior_iterations: int) -> OptimizationResult:
        A_ub, b_ub, A_eq, b_eq = self.linear_system()
        cons = self._slsqp_constraints(A_ub, b_ub, A_eq, b_eq)
        C = self._cov_s

        def objective(w: np.ndarray) -> float:
            total = float(w @ C @ w)
            if total < 1e-18:
                return 1e6
            return float(np.sum((w * (C @ w) / total - budgets) ** 2))

        w0 = self._start()
        res = self._solve(objective, None, w0, cons)
        return self._finish(
            "risk_parity", res, w0,
            approximate=True,
            message="Constraints bind; risk contributions matched as closely as the constraints allow",
        )

    def cvar_min(
        self,
        scenarios: pd.DataFrame | np.ndarray | None = None,
        confidence_level: float | None = None,
    ) -> OptimizationResult:
        """Minimize CVaR over a scenario set (Rockafellar-Uryasev LP).

        Variables are ``[w (n), alpha, u (T)]``; minimize
        ``alpha + sum(u) / ((1 - c) T)`` with ``u_t >= -r_t'w - alpha``,
        ``u >= 0``.  Scenarios default to multivariate-normal draws from
        the estimates.  ``target_return`` is a floor on expected return.
        """
        c = normalize_confidence(Defaults.CONFIDENCE_LEVEL if confidence_level is None else confidence_level)
        R = self._scenario_matrix(scenarios)
        t, n = R.shape

        A_ub, b_ub, A_eq, b_eq = self.linear_system(self.constraints.target_return, "min")
        cost = np.concatenate([np.zeros(n), [1.0], np.full(t, 1.0 / ((1.0 - c) * t))])

        # u_t >= -r_t'w - alpha  <=>  -r_t'w - alpha - u_t <= 0
        loss_rows = sparse.hstack([
            sparse.csr_matrix(-R), sparse.csr_matrix(-np.ones((t, 1))), -sparse.identity(t, format="csr"),
        ])
        ub_rows = [loss_rows]
        ub_rhs = [np.zeros(t)]
        if len(b_ub):
            ub_rows.append(sparse.hstack([sparse.csr_matrix(A_ub), sparse.csr_matrix((len(b_ub), 1 + t))]))
            ub_rhs.append(b_ub)
        eq_rows = sparse.hstack([sparse.csr_matrix(A_eq), sparse.csr_matrix((len(b_eq), 1 + t))])
        bounds = self.bounds + [(None, None)] + [(0.0, None)] * t

        res = linprog(
            cost, A_ub=sparse.vstack(ub_rows, format="csr"), b_ub=np.concatenate(ub_rhs),
            A_eq=eq_rows.tocsr(), b_eq=b_eq, bounds=bounds, method="highs",
        )
        if res.status == 2:
            raise InfeasibleConstraintsError(f"cvar_min: constraints admit no solution: {res.message}")
        if res.status != 0:
            raise ConvergenceError(f"cvar_min: {res.message}", self._start(), int(res.nit))

        w = self._clean(res.x[:n])
        logger.debug("cvar_min: %d scenarios, CVaR %.6f", t, res.fun)
        return self._result("cvar_min", w, iterations=int(res.nit), cvar=float(res.fun))

    def _scenario_matrix(self, scenarios) -> np.ndarray:
        if scenarios is None:
            rng = np.random.default_rng(SCENARIO_SEED)
            return rng.multivariate_normal(self.mu, self.cov, size=SIMULATED_SCENARIOS, method="eigh")
        if isinstance(scenarios, pd.DataFrame):
            missing = [s for s in self.symbols if s not in scenarios.columns]
            if missing:
                raise ValidationError(f"Scenario set missing symbols: {missing}")
            R = scenarios[self.symbols].dropna().to_numpy(dtype=float)
        else:
            R = np.atleast_2d(np.asarray(scenarios, dtype=float))
        if R.ndim != 2 or R.shape[1] != self.n or len(R) < 2:
            raise ValidationError(f"Scenario matrix must be T x {self.n} with T >= 2, got {R.shape}")
        return R

    def black_litterman(
        self,
        views: Sequence[View | Mapping[str, Any]] | None = None,
        market_weights: Mapping[str, float] | None = None,
        tau: float | None = None,
        risk_aversion: float | None = None,
    ) -> OptimizationResult:
        """Black-Litterman posterior, then max_sharpe (or min_variance with a target).

        Prior pi = delta * Sigma * w_mkt.  Omega is diagonal with
        ``tau * P_k Sigma P_k' / confidence_k``.  The posterior
        ``[(tau S)^-1 + P'O^-1 P]^-1 [(tau S)^-1 pi + P'O^-1 Q]`` is evaluated
        in its equivalent form ``pi + tau S P' (P tau S P' + O)^-1 (Q - P pi)``,
        which does not invert Sigma.
        """
        tau = Defaults.BL_TAU if tau is None else tau
        delta = Defaults.BL_RISK_AVERSION if risk_aversion is None else risk_aversion
        w_mkt = self._market_weights(market_weights)
        pi = delta * self.cov @ w_mkt

        views = [v if isinstance(v, View) else View(**v) for v in (views or [])]
        if views:
            idx = {s: i for i, s in enumerate(self.symbols)}
            P = np.zeros((len(views), self.n))
            Q = np.zeros(len(views))
            for k, view in enumerate(views):
                for sym, coef in view.assets.items():
                    if sym not in idx:
                        raise ValidationError(f"View references unknown symbol '{sym}'")
                    P[k, idx[sym]] = coef
                Q[k] = view.expected_return / self.ppy
            tau_cov = tau * self.cov
            conf = np.array([v.confidence for v in views])
            omega = np.diag(np.maximum(np.einsum("ij,jk,ik->i", P, tau_cov, P) / conf, 1e-18))
            middle = P @ tau_cov @ P.T + omega
            posterior = pi + tau_cov @ P.T @ np.linalg.solve(middle, Q - P @ pi)
        else:
            posterior = pi

        if self.constraints.target_return is not None:
            base = PortfolioOptimizer(
                posterior, self.cov, self.constraints, sectors=self.sectors,
                risk_free_rate=self.risk_free_rate, periods_per_year=self.ppy, symbols=self.symbols,
            ).min_variance(self.constraints.target_return)
        else:
            base = self.max_sharpe(posterior)

        post = {s: float(x) * self.ppy for s, x in zip(self.symbols, posterior)}
        ret, vol, sr = self.stats(base.weight_array(self.symbols), posterior)
        return OptimizationResult(
            method="black_litterman",
            weights=base.weights,
            expected_return=ret,
            expected_volatility=vol,
            sharpe_ratio=sr,
            iterations=base.iterations,
            risk_contributions=base.risk_contributions,
            posterior_returns=post,
        )

    def _market_weights(self, market_weights: Mapping[str, float] | None) -> np.ndarray:
        if not market_weights:
            return np.ones(self.n) / self.n
        w = np.array([float(market_weights.get(s, 0.0)) for s in self.symbols])
        if (w < 0).any() or w.sum() <= 0:
            raise ValidationError("Market weights must be non-negative with a positive total")
        return w / w.sum()

    def efficient_risk(self, target_volatility: float | None = None) -> OptimizationResult:
        """Maximum-return portfolio with annual volatility <= *target_volatility*."""
        target = self.constraints.target_volatility if target_volatility is None else target_volatility
        if target is None or target <= 0:
            raise ValidationError("efficient_risk needs a positive target_volatility")

        floor = self.min_variance(target_return=None)
        if floor.expected_volatility > target + 1e-9:
            raise InfeasibleConstraintsError(
                f"Target volatility {target:.2%} is below the minimum attainable "
                f"{floor.expected_volatility:.2%}"
            )
        if target <= floor.expected_volatility * (1.0 + 1e-6):
            return dataclasses.replace(floor, method="efficient_risk")

        A_ub, b_ub, A_eq, b_eq = self.linear_system()
        cons = self._slsqp_constraints(A_ub, b_ub, A_eq, b_eq)
        var_cap = target ** 2 / self.ppy / self._cov_scale
        C = self._cov_s
        cons.append({
            "type": "ineq",
            "fun": lambda w: var_cap - float(w @ C @ w),
            "jac": lambda w: -2.0 * C @ w,
        })
        m = self.mu / max(float(np.abs(self.mu).max()), 1e-300)
        w0 = floor.weight_array(self.symbols)
        res = self._solve(lambda w: -float(m @ w), lambda w: -m, w0, cons)
        return self._finish("efficient_risk", res, w0)


def volatility_for_risk_tolerance(opt: PortfolioOptimizer, risk_tolerance: float) -> float:
    """Map a 0-100 risk tolerance onto an annual volatility target.

    0 is the minimum-variance volatility, 100 the volatility of the
    maximum-return corner; values in between interpolate linearly.
    """
    if not 0.0 <= risk_tolerance <= 100.0:
        raise ValidationError(f"risk_tolerance must be in [0, 100], got {risk_tolerance}")
    low = opt.min_variance().expected_volatility
    high = opt.stats(opt.max_return_point())[1]
    return low + (max(high, low) - low) * risk_tolerance / 100.0


# ---------------------------------------------------------------------------
# Module-level API
# ---------------------------------------------------------------------------


def optimize(
    return_vector,
    covariance,
    constraints: ConstraintSet | None = None,
    objective: str = "min_variance",
    *,
    risk_free_rate: float | None = None,
    sectors: Mapping[str, str] | None = None,
    scenarios: pd.DataFrame | np.ndarray | None = None,
    views: Sequence[View | Mapping[str, Any]] | None = None,
    market_weights: Mapping[str, float] | None = None,
    risk_budgets: Mapping[str, float] | None = None,
    confidence_level: float | None = None,
    periods_per_year: int | None = None,
    symbols: Sequence[str] | None = None,
) -> OptimizationResult:
    """Solve one portfolio optimization.

    Infeasible constraint sets and iteration-capped solves come back as
    structured results (``feasible=False`` / ``converged=False``); bad input
    data raises.
    """
    constraints = constraints or ConstraintSet()
    method = resolve_objective(objective, constraints)

    try:
        opt = PortfolioOptimizer(
            return_vector, covariance, constraints,
            sectors=sectors, risk_free_rate=risk_free_rate,
            periods_per_year=periods_per_year, symbols=symbols,
        )
    except InfeasibleConstraintsError as e:
        logger.warning("%s infeasible: %s", method, e)
        return OptimizationResult.infeasible(method, str(e))

    try:
        if method == "min_variance":
            result = opt.min_variance(constraints.target_return)
        elif method == "max_sharpe":
            result = opt.max_sharpe()
        elif method == "risk_parity":
            result = opt.risk_parity(risk_budgets)
        elif method == "cvar_min":
            result = opt.cvar_min(scenarios, confidence_level)
        elif method == "black_litterman":
            result = opt.black_litterman(views, market_weights)
        else:
            result = opt.efficient_risk()
    except InfeasibleConstraintsError as e:
        logger.warning("%s infeasible: %s", method, e)
        return OptimizationResult.infeasible(method, str(e))
    except ConvergenceError as e:
        logger.warning("%s did not converge: %s", method, e)
        base = opt._result(method, np.asarray(e.weights, dtype=float), iterations=e.iterations)
        return dataclasses.replace(base, converged=False, message=str(e))

    logger.info(
        "%s: return=%.4f vol=%.4f sharpe=%.3f (%d assets, %d iterations)",
        method, result.expected_return, result.expected_volatility,
        result.sharpe_ratio, len(result.weights), result.iterations,
    )
    return result
