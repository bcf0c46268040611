"""Risk analysis - volatility, VaR/CVaR, drawdown, Sharpe/Sortino/Treynor, beta.

Two VaR/CVaR modes:

* parametric -- normal assumption, ``VaR = z(c) * sigma_daily * sqrt(h)`` and
  ``CVaR = sigma_daily * sqrt(h) * phi(z(c)) / (1 - c)``.
* historical -- empirical (1 - c) percentile of realized portfolio returns,
  CVaR the mean loss beyond it, both scaled by sqrt(h).

Zero portfolio volatility gives Sharpe, Sortino and Treynor of exactly 0.0.
"""

from __future__ import annotations

from typing import Mapping

import numpy as np
import pandas as pd
from scipy.stats import norm

from portfolio_analytics.analysis.inputs import (
    annualize,
    check_weight_sum,
    coerce_inputs,
    portfolio_return,
    portfolio_volatility,
    sharpe,
    weights_vector,
)
from portfolio_analytics.config import Defaults
from portfolio_analytics.errors import InsufficientDataError, ValidationError
from portfolio_analytics.models import Estimate, PerformanceMetrics, RiskMetrics
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("risk")

TRADING_DAYS = Defaults.TRADING_DAYS
MODES = ("parametric", "historical")


def _safe_div(num: float, den: float | None) -> float:
    if den is None or not np.isfinite(den) or abs(den) < 1e-14:
        return 0.0
    return float(num / den)


def normalize_confidence(confidence_level: float) -> float:
    """Accept 0.95 or 95; return the fraction in (0, 1)."""
    c = float(confidence_level)
    if 1.0 < c < 100.0:
        c /= 100.0
    if not 0.0 < c < 1.0:
        raise ValidationError(f"confidence_level must be in (0, 1) or (0, 100), got {confidence_level}")
    return c


class RiskMetricsCalculator:
    """Portfolio-level risk engine over estimates or realized history."""

    def __init__(
        self,
        confidence_level: float | None = None,
        time_horizon_days: int = 1,
        risk_free_rate: float | None = None,
        mode: str = "parametric",
        periods_per_year: int | None = None,
    ) -> None:
        if mode not in MODES:
            raise ValidationError(f"Unknown risk mode '{mode}', expected one of {MODES}")
        if time_horizon_days <= 0:
            raise ValidationError("time_horizon_days must be positive")
        self.confidence_level = normalize_confidence(
            Defaults.CONFIDENCE_LEVEL if confidence_level is None else confidence_level
        )
        self.time_horizon_days = int(time_horizon_days)
        self.risk_free_rate = Defaults.RISK_FREE_RATE if risk_free_rate is None else float(risk_free_rate)
        self.mode = mode
        self.periods_per_year = periods_per_year or TRADING_DAYS

    # ------------------------------------------------------------------
    #  Main entry point
    # ------------------------------------------------------------------
    def compute(
        self,
        weights,
        return_vector,
        covariance,
        *,
        asset_returns: pd.DataFrame | None = None,
        portfolio_values: pd.Series | None = None,
        benchmark_returns: pd.Series | None = None,
        portfolio_value: float | None = None,
        sectors: Mapping[str, str] | None = None,
        symbols: list[str] | None = None,
    ) -> RiskMetrics:
        """Full risk profile for one weight vector.

        Args:
            weights: WeightVector (mapping, Series or array); must sum to 1.
            return_vector, covariance: per-period estimates.
            asset_returns: per-period simple returns per symbol; enables
                historical VaR, Sortino, drawdown and beta.
            portfolio_values: realized portfolio value series; takes
                precedence over *asset_returns* for realized statistics.
            benchmark_returns: per-period benchmark simple returns.
            portfolio_value: current value, for currency VaR/CVaR.
            sectors: symbol -> sector, for sector exposure.
        """
        symbols, mu, cov = coerce_inputs(return_vector, covariance, symbols)
        w = weights_vector(weights, symbols)
        check_weight_sum(w)

        ppy = self.periods_per_year
        rf = self.risk_free_rate
        c, h = self.confidence_level, self.time_horizon_days

        exp_ret, vol = annualize(portfolio_return(w, mu), portfolio_volatility(w, cov), ppy)
        daily_vol = vol / np.sqrt(TRADING_DAYS)

        realized = self._realized_returns(w, symbols, asset_returns, portfolio_values)

        if self.mode == "parametric":
            var = self.parametric_var(daily_vol, c, h)
            cvar = self.parametric_cvar(daily_vol, c, h)
        else:
            if realized is None:
                raise ValidationError("Historical mode needs asset_returns or portfolio_values")
            var = self.historical_var(realized, c, h)
            cvar = self.historical_cvar(realized, c, h)

        if portfolio_values is not None:
            mdd, mdd_date = self.max_drawdown(portfolio_values)
        elif realized is not None:
            mdd, mdd_date = self.max_drawdown((1.0 + realized).cumprod(), initial=1.0)
        else:
            mdd, mdd_date = 0.0, None

        sortino = beta = alpha = treynor = te = ir = None
        if realized is not None:
            sortino = _safe_div(exp_ret - rf, self.downside_deviation(realized, rf, ppy))
            if benchmark_returns is not None:
                beta, alpha, te, ir = self.benchmark_stats(realized, benchmark_returns, rf, ppy)
                if beta is not None:
                    treynor = _safe_div(exp_ret - rf, beta)

        sharpe_ratio = sharpe(exp_ret, vol, rf)
        if vol <= 1e-14:
            sortino = 0.0 if sortino is not None else None
            treynor = 0.0 if treynor is not None else None

        rc = self.risk_contributions(w, cov)
        asset_vols = np.sqrt(np.clip(np.diag(cov), 0.0, None)) * np.sqrt(ppy)
        hhi = float(np.sum(w ** 2))

        sector_exposure: dict[str, float] = {}
        if sectors:
            for s, wi in zip(symbols, w):
                key = sectors.get(s, "Unknown")
                sector_exposure[key] = sector_exposure.get(key, 0.0) + float(wi)

        return RiskMetrics(
            expected_return=exp_ret,
            volatility=vol,
            daily_volatility=float(daily_vol),
            var=var,
            cvar=cvar,
            confidence_level=c,
            time_horizon_days=h,
            mode=self.mode,
            sharpe_ratio=sharpe_ratio,
            sortino_ratio=sortino,
            treynor_ratio=treynor,
            information_ratio=ir,
            tracking_error=te,
            beta=beta,
            alpha=alpha,
            max_drawdown=mdd,
            max_drawdown_date=mdd_date,
            var_amount=var * portfolio_value if portfolio_value is not None else None,
            cvar_amount=cvar * portfolio_value if portfolio_value is not None else None,
            risk_contributions={s: float(r) for s, r in zip(symbols, rc)},
            diversification_ratio=_safe_div(float(np.abs(w) @ asset_vols), vol) or 1.0,
            hhi=hhi,
            effective_n=_safe_div(1.0, hhi),
            sector_exposure=sector_exposure,
        )

    @staticmethod
    def _realized_returns(w, symbols, asset_returns, portfolio_values) -> pd.Series | None:
        if portfolio_values is not None:
            values = pd.Series(portfolio_values, dtype=float).dropna()
            return values.pct_change().dropna()
        if asset_returns is not None:
            missing = [s for s in symbols if s not in asset_returns.columns]
            if missing:
                raise ValidationError(f"asset_returns missing symbols: {missing}")
            return asset_returns[symbols].dropna() @ w
        return None

    # ------------------------------------------------------------------
    #  VaR / CVaR
    # ------------------------------------------------------------------
    @staticmethod
    def z_score(confidence: float) -> float:
        """One-sided standard-normal quantile, e.g. z(0.95) = 1.6449."""
        return float(norm.ppf(confidence))

    @staticmethod
    def parametric_var(daily_vol: float, confidence: float, horizon_days: int = 1) -> float:
        return float(norm.ppf(confidence) * daily_vol * np.sqrt(horizon_days))

    @staticmethod
    def parametric_cvar(daily_vol: float, confidence: float, horizon_days: int = 1) -> float:
        z = norm.ppf(confidence)
        return float(daily_vol * np.sqrt(horizon_days) * norm.pdf(z) / (1.0 - confidence))

    @staticmethod
    def historical_var(returns: pd.Series, confidence: float, horizon_days: int = 1) -> float:
        clean = np.sort(np.asarray(returns, dtype=float))
        if len(clean) < 2:
            raise InsufficientDataError("Historical VaR needs at least 2 return observations")
        cutoff = np.percentile(clean, (1.0 - confidence) * 100)
        return float(-cutoff * np.sqrt(horizon_days))

    @staticmethod
    def historical_cvar(returns: pd.Series, confidence: float, horizon_days: int = 1) -> float:
        clean = np.sort(np.asarray(returns, dtype=float))
        if len(clean) < 2:
            raise InsufficientDataError("Historical CVaR needs at least 2 return observations")
        cutoff = np.percentile(clean, (1.0 - confidence) * 100)
        tail = clean[clean <= cutoff]
        return float(-tail.mean() * np.sqrt(horizon_days))

    # ------------------------------------------------------------------
    #  Drawdown / ratios
    # ------------------------------------------------------------------
    @staticmethod
    def max_drawdown(values: pd.Series, initial: float | None = None) -> tuple[float, object]:
        """Largest peak-to-trough decline as a positive fraction, with trough date.

        *initial* is a starting value that precedes ``values[0]`` and counts
        as a peak (e.g. 1.0 for a wealth path built from returns).  Without
        it, fewer than 2 observations is a degenerate-but-valid 0.0.
        """
        values = pd.Series(values, dtype=float).dropna()
        if len(values) < (1 if initial is not None else 2):
            return 0.0, None
        cummax = values.cummax()
        if initial is not None:
            cummax = cummax.clip(lower=float(initial))
        drawdown = (values - cummax) / cummax
        worst = float(drawdown.min())
        if worst >= 0:
            return 0.0, None
        return -worst, drawdown.idxmin()

    @staticmethod
    def downside_deviation(returns: pd.Series, risk_free_annual: float, periods_per_year: int) -> float:
        """Annualized root-mean-square of the negative excess returns."""
        excess = np.asarray(returns, dtype=float) - risk_free_annual / periods_per_year
        downside = excess[excess < 0]
        if len(downside) == 0:
            return 0.0
        return float(np.sqrt(np.mean(downside ** 2)) * np.sqrt(periods_per_year))

    @staticmethod
    def benchmark_stats(
        returns: pd.Series, benchmark: pd.Series, risk_free_annual: float, periods_per_year: int,
    ) -> tuple[float | None, float | None, float | None, float | None]:
        """(beta, CAPM alpha, tracking error, information ratio) vs *benchmark*."""
        aligned = pd.concat(
            [pd.Series(returns, dtype=float).rename("port"), pd.Series(benchmark, dtype=float).rename("bench")],
            axis=1, join="inner",
        ).dropna()
        if len(aligned) < 2:
            logger.warning("Benchmark overlaps portfolio on %d periods; skipping beta", len(aligned))
            return None, None, None, None

        port, bench = aligned["port"], aligned["bench"]
        var_b = float(bench.var())
        beta = _safe_div(float(port.cov(bench)), var_b)

        ann_p = float(port.mean()) * periods_per_year
        ann_b = float(bench.mean()) * periods_per_year
        alpha = ann_p - (risk_free_annual + beta * (ann_b - risk_free_annual))

        te = float((port - bench).std() * np.sqrt(periods_per_year))
        ir = _safe_div(ann_p - ann_b, te)
        return beta, alpha, te, ir

    @staticmethod
    def risk_contributions(w: np.ndarray, cov: np.ndarray) -> np.ndarray:
        """Fraction of portfolio variance contributed by each asset, w_i (Sigma w)_i / w'Sigma w."""
        total = float(w @ cov @ w)
        if total <= 1e-18:
            return np.ones(len(w)) / len(w)
        return w * (cov @ w) / total


# ---------------------------------------------------------------------------
# Module-level API
# ---------------------------------------------------------------------------


def compute_risk(
    weights,
    return_vector,
    covariance,
    confidence_level: float | None = None,
    time_horizon_days: int = 1,
    risk_free_rate: float | None = None,
    *,
    mode: str = "parametric",
    asset_returns: pd.DataFrame | None = None,
    portfolio_values: pd.Series | None = None,
    benchmark_returns: pd.Series | None = None,
    periods_per_year: int | None = None,
    portfolio_value: float | None = None,
    sectors: Mapping[str, str] | None = None,
    symbols: list[str] | None = None,
) -> RiskMetrics:
    """Compute RiskMetrics for *weights* against per-period estimates."""
    calc = RiskMetricsCalculator(
        confidence_level=confidence_level,
        time_horizon_days=time_horizon_days,
        risk_free_rate=risk_free_rate,
        mode=mode,
        periods_per_year=periods_per_year,
    )
    return calc.compute(
        weights, return_vector, covariance,
        asset_returns=asset_returns,
        portfolio_values=portfolio_values,
        benchmark_returns=benchmark_returns,
        portfolio_value=portfolio_value,
        sectors=sectors,
        symbols=symbols,
    )


def compute_risk_from_estimate(weights, est: Estimate, **kwargs) -> RiskMetrics:
    """compute_risk with the estimate's scenario set and annualisation."""
    kwargs.setdefault("asset_returns", est.simple_returns)
    kwargs.setdefault("periods_per_year", est.periods_per_year)
    return compute_risk(weights, est.return_vector, est.covariance_frame, **kwargs)


def performance_metrics(
    portfolio_values: pd.Series,
    benchmark_values: pd.Series | None = None,
    risk_free_rate: float | None = None,
    periods_per_year: int | None = None,
) -> PerformanceMetrics:
    """Realized performance statistics for a portfolio value series.

    Ratios use the arithmetic annualized mean; ``annualized_return`` is
    geometric.  Fewer than 2 values returns all-zero metrics.
    """
    ppy = periods_per_year or TRADING_DAYS
    rf = Defaults.RISK_FREE_RATE if risk_free_rate is None else float(risk_free_rate)
    values = pd.Series(portfolio_values, dtype=float).dropna()
    if len(values) < 2:
        return PerformanceMetrics(n_observations=len(values))
    if (values <= 0).any():
        raise ValidationError("Portfolio values must be positive")

    r = values.pct_change().dropna()
    total = float(values.iloc[-1] / values.iloc[0] - 1.0)
    years = len(r) / ppy
    annualized = float((1.0 + total) ** (1.0 / years) - 1.0)
    mean_annual = float(r.mean()) * ppy
    vol = float(r.std() * np.sqrt(ppy)) if len(r) > 1 else 0.0

    calc = RiskMetricsCalculator
    mdd, mdd_date = calc.max_drawdown(values)
    sharpe_ratio = sharpe(mean_annual, vol, rf)
    sortino = _safe_div(mean_annual - rf, calc.downside_deviation(r, rf, ppy))

    beta = alpha = treynor = te = ir = None
    if benchmark_values is not None:
        bench_r = pd.Series(benchmark_values, dtype=float).dropna().pct_change().dropna()
        beta, alpha, te, ir = calc.benchmark_stats(r, bench_r, rf, ppy)
        if beta is not None:
            treynor = _safe_div(mean_annual - rf, beta)

    if vol <= 1e-14:
        sortino = 0.0
        treynor = 0.0 if treynor is not None else None

    wins, losses = r[r > 0], r[r < 0]
    return PerformanceMetrics(
        total_return=total,
        annualized_return=annualized,
        volatility=vol,
        sharpe_ratio=sharpe_ratio,
        sortino_ratio=sortino,
        max_drawdown=mdd,
        max_drawdown_date=mdd_date,
        calmar_ratio=_safe_div(annualized, mdd),
        beta=beta,
        alpha=alpha,
        treynor_ratio=treynor,
        tracking_error=te,
        information_ratio=ir,
        win_rate=float(len(wins) / len(r)),
        average_win=float(wins.mean()) if len(wins) else 0.0,
        average_loss=float(-losses.mean()) if len(losses) else 0.0,
        profit_factor=_safe_div(float(wins.sum()), float(-losses.sum())),
        n_observations=len(values),
    )
