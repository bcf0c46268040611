"""Tests for portfolio_analytics.analysis.estimation -- returns, estimators, PSD repair."""

import numpy as np
import pandas as pd
import pytest

from portfolio_analytics.analysis.estimation import (
    _constant_correlation_target,
    _ewma_weights,
    align_prices,
    compute_returns,
    ensure_psd,
    estimate,
    ledoit_wolf_intensity,
)
from portfolio_analytics.errors import (
    IllConditionedCovarianceError,
    InsufficientDataError,
    InvalidPriceSeriesError,
    ValidationError,
)


# ---------------------------------------------------------------------------
# Price handling
# ---------------------------------------------------------------------------

class TestAlignPrices:

    def test_inner_join_on_common_dates(self):
        a = pd.Series([1.0, 2.0, 3.0], index=pd.to_datetime(["2024-01-01", "2024-01-02", "2024-01-03"]))
        b = pd.Series([5.0, 6.0], index=pd.to_datetime(["2024-01-02", "2024-01-03"]))
        aligned = align_prices({"A": a, "B": b})
        assert list(aligned.columns) == ["A", "B"]
        assert len(aligned) == 2

    def test_duplicate_dates_rejected(self):
        s = pd.Series([1.0, 2.0], index=pd.to_datetime(["2024-01-01", "2024-01-01"]))
        with pytest.raises(InvalidPriceSeriesError, match="duplicate"):
            align_prices({"A": s})

    def test_unordered_dates_rejected(self):
        s = pd.Series([1.0, 2.0], index=pd.to_datetime(["2024-01-02", "2024-01-01"]))
        with pytest.raises(InvalidPriceSeriesError, match="increasing"):
            align_prices({"A": s})

    def test_non_positive_prices_rejected(self):
        s = pd.Series([1.0, 0.0], index=pd.to_datetime(["2024-01-01", "2024-01-02"]))
        with pytest.raises(InvalidPriceSeriesError, match="positive"):
            align_prices({"A": s})

    def test_empty_input(self):
        with pytest.raises(InsufficientDataError):
            align_prices({})


class TestComputeReturns:

    def test_log_and_simple_returns(self, price_frame):
        log_r = compute_returns(price_frame, "log")
        simple_r = compute_returns(price_frame, "simple")
        np.testing.assert_allclose(np.expm1(log_r.to_numpy()), simple_r.to_numpy(), rtol=1e-10)

    def test_unknown_return_type(self, price_frame):
        with pytest.raises(ValidationError):
            compute_returns(price_frame, "arith")


# ---------------------------------------------------------------------------
# Estimators
# ---------------------------------------------------------------------------

class TestHistoricalMean:

    def test_matches_sample_moments(self, price_frame):
        est = estimate(price_frame, "historical_mean")
        log_r = np.log(price_frame).diff().dropna()
        np.testing.assert_allclose(est.expected_returns, log_r.mean().to_numpy(), rtol=1e-12)
        np.testing.assert_allclose(est.covariance, log_r.cov().to_numpy(), rtol=1e-10)

    def test_unpacks_to_return_vector_and_covariance(self, price_dict):
        mu, cov = estimate(price_dict)
        assert list(mu.index) == ["AAA", "BBB", "CCC"]
        assert cov.shape == (3, 3)
        assert list(cov.columns) == list(mu.index)

    def test_lookback_window_limits_observations(self, price_frame):
        est = estimate(price_frame, lookback_window=60)
        assert est.n_observations == 60
        assert est.as_of == price_frame.index[-1]

    def test_covariance_is_symmetric(self, price_frame):
        est = estimate(price_frame)
        np.testing.assert_array_equal(est.covariance, est.covariance.T)

    def test_single_observation_is_insufficient(self, price_frame):
        with pytest.raises(InsufficientDataError):
            estimate(price_frame.iloc[:1])

    def test_fewer_observations_than_symbols(self, price_frame):
        # 3 prices -> 2 returns for 3 symbols
        with pytest.raises(InsufficientDataError, match="3 symbols"):
            estimate(price_frame.iloc[:3])

    def test_invalid_lookback(self, price_frame):
        with pytest.raises(ValidationError):
            estimate(price_frame, lookback_window=0)

    def test_unknown_method(self, price_frame):
        with pytest.raises(ValidationError):
            estimate(price_frame, "garch")


class TestExponentialWeighted:

    def test_weights_sum_to_one_and_favour_recent(self):
        w = _ewma_weights(50, 0.94)
        assert w.sum() == pytest.approx(1.0)
        assert np.all(np.diff(w) > 0)

    def test_mean_is_weighted_average(self, price_frame):
        est = estimate(price_frame, "exponential_weighted", decay=0.9)
        x = np.log(price_frame).diff().dropna().to_numpy()
        w = _ewma_weights(len(x), 0.9)
        np.testing.assert_allclose(est.expected_returns, w @ x, rtol=1e-12)

    def test_decay_out_of_range(self, price_frame):
        with pytest.raises(ValidationError):
            estimate(price_frame, "exponential_weighted", decay=1.0)


class TestShrinkage:

    def test_intensity_in_unit_interval(self, price_frame):
        est = estimate(price_frame, "shrinkage")
        assert 0.0 <= est.shrinkage_intensity <= 1.0

    def test_full_intensity_gives_constant_correlation(self, price_frame):
        est = estimate(price_frame, "shrinkage", shrinkage_intensity=1.0)
        std = np.sqrt(np.diag(est.covariance))
        corr = est.covariance / np.outer(std, std)
        off = corr[~np.eye(3, dtype=bool)]
        np.testing.assert_allclose(off, off[0], rtol=1e-10)

    def test_zero_intensity_is_sample(self, price_frame):
        shrunk = estimate(price_frame, "shrinkage", shrinkage_intensity=0.0)
        sample = estimate(price_frame, "historical_mean")
        np.testing.assert_allclose(shrunk.covariance, sample.covariance, rtol=1e-12)

    def test_better_conditioned_for_short_window(self, price_factory):
        prices = price_factory(symbols=tuple("ABCDEFGH"), n=12,
                             means=(0.0,) * 8, stds=(0.01,) * 8, corr=0.2, seed=7)
        sample = estimate(prices, "historical_mean")
        shrunk = estimate(prices, "shrinkage", shrinkage_intensity=0.5)
        assert np.linalg.cond(shrunk.covariance) < np.linalg.cond(sample.covariance)

    def test_analytic_intensity_single_asset_is_zero(self):
        assert ledoit_wolf_intensity(np.random.default_rng(0).normal(size=(30, 1))) == 0.0

    def test_target_keeps_variances(self):
        sample = np.array([[0.04, 0.01], [0.01, 0.09]])
        target, r_bar = _constant_correlation_target(sample)
        np.testing.assert_allclose(np.diag(target), np.diag(sample))
        assert r_bar == pytest.approx(0.01 / (0.2 * 0.3))

    def test_invalid_fixed_intensity(self, price_frame):
        with pytest.raises(ValidationError):
            estimate(price_frame, "shrinkage", shrinkage_intensity=1.5)


# ---------------------------------------------------------------------------
# PSD repair
# ---------------------------------------------------------------------------

class TestEnsurePSD:

    def test_psd_matrix_unchanged(self):
        cov = np.array([[0.04, 0.01], [0.01, 0.09]])
        out, regularized = ensure_psd(cov)
        assert not regularized
        np.testing.assert_array_equal(out, cov)

    def test_indefinite_matrix_clipped(self):
        out, regularized = ensure_psd(np.array([[1.0, 2.0], [2.0, 1.0]]))
        assert regularized
        assert np.linalg.eigvalsh(out).min() >= -1e-12
        np.testing.assert_allclose(out, out.T)

    def test_asymmetry_removed(self):
        out, _ = ensure_psd(np.array([[0.04, 0.0100001], [0.0099999, 0.09]]))
        np.testing.assert_array_equal(out, out.T)

    def test_nan_is_ill_conditioned(self):
        with pytest.raises(IllConditionedCovarianceError):
            ensure_psd(np.array([[np.nan, 0.0], [0.0, 1.0]]))

    def test_non_square(self):
        with pytest.raises(ValidationError):
            ensure_psd(np.ones((2, 3)))
