"""Tests for portfolio_analytics.analysis.risk -- VaR/CVaR, ratios, drawdown, performance."""

import numpy as np
import pandas as pd
import pytest
from scipy.stats import norm

from portfolio_analytics.analysis.estimation import estimate
from portfolio_analytics.analysis.risk import (
    RiskMetricsCalculator,
    compute_risk,
    compute_risk_from_estimate,
    normalize_confidence,
    performance_metrics,
)
from portfolio_analytics.errors import ValidationError


def _single_asset(daily_vol=0.01, daily_mean=0.0005):
    mu = pd.Series([daily_mean], index=["A"])
    cov = pd.DataFrame([[daily_vol ** 2]], index=["A"], columns=["A"])
    return mu, cov


# ---------------------------------------------------------------------------
# Quantiles and closed forms
# ---------------------------------------------------------------------------

class TestZScores:

    @pytest.mark.parametrize("confidence,expected", [(0.90, 1.2816), (0.95, 1.6449), (0.99, 2.3263)])
    def test_standard_normal_quantiles(self, confidence, expected):
        assert RiskMetricsCalculator.z_score(confidence) == pytest.approx(expected, abs=1e-4)

    def test_percent_and_fraction_are_equivalent(self):
        assert normalize_confidence(95) == pytest.approx(0.95)
        assert normalize_confidence(0.99) == 0.99

    @pytest.mark.parametrize("bad", [0, 1.0, 100, 150, -5])
    def test_out_of_range_confidence(self, bad):
        with pytest.raises(ValidationError):
            normalize_confidence(bad)


class TestParametricVaR:

    def test_var_formula(self):
        mu, cov = _single_asset(daily_vol=0.01)
        m = compute_risk({"A": 1.0}, mu, cov, confidence_level=0.95)
        assert m.daily_volatility == pytest.approx(0.01, rel=1e-12)
        assert m.var == pytest.approx(norm.ppf(0.95) * 0.01, rel=1e-9)

    def test_cvar_closed_form(self):
        mu, cov = _single_asset(daily_vol=0.01)
        m = compute_risk({"A": 1.0}, mu, cov, confidence_level=0.95)
        expected = 0.01 * norm.pdf(norm.ppf(0.95)) / 0.05
        assert m.cvar == pytest.approx(expected, rel=1e-9)
        assert m.cvar > m.var

    def test_var_monotone_in_confidence(self, price_frame):
        mu, cov = estimate(price_frame)
        w = {"AAA": 0.5, "BBB": 0.3, "CCC": 0.2}
        v90, v95, v99 = (compute_risk(w, mu, cov, confidence_level=c).var for c in (90, 95, 99))
        assert v99 >= v95 >= v90

    def test_horizon_scales_by_sqrt_time(self):
        mu, cov = _single_asset()
        one = compute_risk({"A": 1.0}, mu, cov, time_horizon_days=1)
        ten = compute_risk({"A": 1.0}, mu, cov, time_horizon_days=10)
        assert ten.var == pytest.approx(one.var * np.sqrt(10), rel=1e-12)

    def test_currency_amounts(self):
        mu, cov = _single_asset()
        m = compute_risk({"A": 1.0}, mu, cov, portfolio_value=1_000_000)
        assert m.var_amount == pytest.approx(m.var * 1_000_000)

    def test_annualisation(self):
        mu, cov = _single_asset(daily_vol=0.01, daily_mean=0.001)
        m = compute_risk({"A": 1.0}, mu, cov, risk_free_rate=0.0)
        assert m.expected_return == pytest.approx(0.252)
        assert m.volatility == pytest.approx(0.01 * np.sqrt(252))
        assert m.sharpe_ratio == pytest.approx(0.252 / (0.01 * np.sqrt(252)))


class TestHistoricalVaR:

    def test_matches_empirical_percentile(self, price_frame):
        est = estimate(price_frame)
        w = np.array([0.4, 0.4, 0.2])
        m = compute_risk_from_estimate(dict(zip(est.symbols, w)), est, mode="historical")
        realized = est.simple_returns.to_numpy() @ w
        cutoff = np.percentile(realized, 5)
        assert m.var == pytest.approx(-cutoff, rel=1e-12)
        assert m.cvar == pytest.approx(-realized[realized <= cutoff].mean(), rel=1e-12)
        assert m.cvar >= m.var

    def test_requires_realized_data(self):
        mu, cov = _single_asset()
        with pytest.raises(ValidationError, match="Historical"):
            compute_risk({"A": 1.0}, mu, cov, mode="historical")

    def test_unknown_mode(self):
        mu, cov = _single_asset()
        with pytest.raises(ValidationError):
            compute_risk({"A": 1.0}, mu, cov, mode="monte_carlo")


# ---------------------------------------------------------------------------
# Degenerate inputs
# ---------------------------------------------------------------------------

class TestZeroVolatility:

    def test_sharpe_sortino_treynor_exactly_zero(self):
        mu = pd.Series([0.0], index=["CASH"])
        cov = pd.DataFrame([[0.0]], index=["CASH"], columns=["CASH"])
        dates = pd.bdate_range("2024-01-01", periods=30)
        flat = pd.DataFrame({"CASH": np.zeros(30)}, index=dates)
        bench = pd.Series(np.random.default_rng(1).normal(0, 0.01, 30), index=dates)
        m = compute_risk({"CASH": 1.0}, mu, cov, asset_returns=flat, benchmark_returns=bench)
        assert m.sharpe_ratio == 0.0
        assert m.sortino_ratio == 0.0
        assert m.treynor_ratio == 0.0
        assert m.var == 0.0
        assert not np.isnan(m.cvar)

    def test_weights_must_sum_to_one(self):
        mu, cov = _single_asset()
        with pytest.raises(ValidationError, match="sum"):
            compute_risk({"A": 0.9}, mu, cov)

    def test_unknown_symbol_in_weights(self):
        mu, cov = _single_asset()
        with pytest.raises(ValidationError, match="unknown"):
            compute_risk({"A": 0.5, "Z": 0.5}, mu, cov)


# ---------------------------------------------------------------------------
# Drawdown and benchmark statistics
# ---------------------------------------------------------------------------

class TestMaxDrawdown:

    def test_known_series(self):
        dates = pd.bdate_range("2024-01-01", periods=6)
        values = pd.Series([100, 120, 90, 110, 80, 100], index=dates, dtype=float)
        mdd, trough = RiskMetricsCalculator.max_drawdown(values)
        assert mdd == pytest.approx(1 / 3)
        assert trough == dates[4]

    def test_monotonic_increasing(self):
        mdd, trough = RiskMetricsCalculator.max_drawdown(pd.Series([1.0, 2.0, 3.0]))
        assert mdd == 0.0
        assert trough is None

    def test_fewer_than_two_points(self):
        assert RiskMetricsCalculator.max_drawdown(pd.Series([100.0])) == (0.0, None)

    def test_initial_value_counts_as_peak(self):
        mdd, trough = RiskMetricsCalculator.max_drawdown(pd.Series([0.9]), initial=1.0)
        assert mdd == pytest.approx(0.1)
        assert trough == 0

    def test_loss_in_first_period_from_asset_returns(self):
        mu, cov = _single_asset()
        dates = pd.bdate_range("2024-01-01", periods=3)
        realized = pd.DataFrame({"A": [-0.10, -0.10, 0.0]}, index=dates)
        m = compute_risk({"A": 1.0}, mu, cov, asset_returns=realized)
        assert m.max_drawdown == pytest.approx(0.19)
        assert m.max_drawdown_date == dates[1]


class TestBenchmarkStats:

    def test_double_beta(self):
        rng = np.random.default_rng(3)
        bench = pd.Series(rng.normal(0.0005, 0.01, 250))
        beta, alpha, te, ir = RiskMetricsCalculator.benchmark_stats(2 * bench, bench, 0.0, 252)
        assert beta == pytest.approx(2.0)
        assert alpha == pytest.approx(0.0, abs=1e-12)
        assert te > 0

    def test_no_overlap_returns_none(self):
        a = pd.Series([0.01], index=pd.to_datetime(["2024-01-01"]))
        b = pd.Series([0.01], index=pd.to_datetime(["2024-02-01"]))
        assert RiskMetricsCalculator.benchmark_stats(a, b, 0.0, 252) == (None, None, None, None)


class TestDecomposition:

    def test_risk_contributions_sum_to_one(self, price_frame):
        mu, cov = estimate(price_frame)
        m = compute_risk({"AAA": 0.2, "BBB": 0.5, "CCC": 0.3}, mu, cov)
        assert sum(m.risk_contributions.values()) == pytest.approx(1.0)

    def test_concentration_and_sectors(self, price_frame, sectors):
        mu, cov = estimate(price_frame)
        m = compute_risk({"AAA": 0.5, "BBB": 0.5}, mu, cov, sectors=sectors)
        assert m.hhi == pytest.approx(0.5)
        assert m.effective_n == pytest.approx(2.0)
        assert m.sector_exposure == {"Technology": 0.5, "Utilities": 0.5}
        assert m.diversification_ratio >= 1.0

    def test_to_dict_is_plain(self, price_frame):
        est = estimate(price_frame)
        m = compute_risk_from_estimate({"AAA": 1.0}, est)
        d = m.to_dict()
        assert isinstance(d["var"], float)
        assert d["max_drawdown_date"] is None or isinstance(d["max_drawdown_date"], str)


# ---------------------------------------------------------------------------
# Realized performance
# ---------------------------------------------------------------------------

class TestPerformanceMetrics:

    def test_known_values(self):
        dates = pd.bdate_range("2024-01-01", periods=5)
        values = pd.Series([100.0, 110.0, 99.0, 108.9, 108.9], index=dates)
        pm = performance_metrics(values, risk_free_rate=0.0)
        assert pm.total_return == pytest.approx(0.089)
        assert pm.max_drawdown == pytest.approx(0.1)
        assert pm.max_drawdown_date == dates[2]
        assert pm.win_rate == pytest.approx(0.5)
        assert pm.average_win == pytest.approx(0.1)
        assert pm.average_loss == pytest.approx(0.1)
        assert pm.profit_factor == pytest.approx(2.0)
        assert pm.n_observations == 5

    def test_degenerate_series_is_all_zero(self):
        pm = performance_metrics(pd.Series([100.0]))
        assert pm.total_return == 0.0
        assert pm.sharpe_ratio == 0.0
        assert pm.n_observations == 1

    def test_benchmark_fields(self, price_frame):
        pm = performance_metrics(price_frame["AAA"], benchmark_values=price_frame["AAA"])
        assert pm.beta == pytest.approx(1.0)
        assert pm.tracking_error == pytest.approx(0.0, abs=1e-12)
        assert pm.information_ratio == 0.0

    def test_calmar_ratio(self, price_frame):
        pm = performance_metrics(price_frame["CCC"])
        assert pm.calmar_ratio == pytest.approx(pm.annualized_return / pm.max_drawdown)

    def test_rejects_non_positive_values(self):
        with pytest.raises(ValidationError):
            performance_metrics(pd.Series([100.0, -5.0]))
