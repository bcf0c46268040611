"""Tests for portfolio_analytics.analysis.stress."""

import pytest

from portfolio_analytics.analysis.stress import (
    DEFAULT_HISTORICAL_WINDOWS,
    DEFAULT_SHOCK_SCENARIOS,
    asset_betas,
    stress_test,
)
from portfolio_analytics.errors import ValidationError

WEIGHTS = {"A": 0.5, "B": 0.5}
SECTORS = {"A": "Technology", "B": "Utilities"}


def _by_name(results):
    return {r.scenario: r for r in results}


class TestShockScenarios:

    def test_market_drop_uses_sector_betas(self):
        results = _by_name(stress_test(WEIGHTS, SECTORS))
        drop = results["Market Drop (10%)"]
        assert drop.per_asset["A"] == pytest.approx(-0.12)
        assert drop.per_asset["B"] == pytest.approx(-0.07)
        assert drop.portfolio_return == pytest.approx(-0.095)

    def test_sector_shock_adds_to_market_move(self):
        tech = _by_name(stress_test(WEIGHTS, SECTORS))["Tech Correction (15%)"]
        assert tech.portfolio_return == pytest.approx(-0.094)

    def test_all_default_scenarios_run(self):
        results = stress_test(WEIGHTS, SECTORS)
        assert [r.scenario for r in results] == list(DEFAULT_SHOCK_SCENARIOS)

    def test_regression_betas_override_sector(self):
        drop = _by_name(stress_test(WEIGHTS, SECTORS, betas={"A": 2.0}))["Market Drop (10%)"]
        assert drop.per_asset["A"] == pytest.approx(-0.2)

    def test_unknown_sector_defaults_to_market_beta(self):
        assert asset_betas(["Z"], {"Z": "Shipping"}) == {"Z": 1.0}

    def test_custom_scenario_is_added(self):
        results = _by_name(stress_test(WEIGHTS, SECTORS, scenarios={"Rally": {"market": 0.05}}))
        assert results["Rally"].portfolio_return == pytest.approx(0.5 * 0.06 + 0.5 * 0.035)
        assert len(results) == len(DEFAULT_SHOCK_SCENARIOS) + 1

    def test_empty_weights(self):
        with pytest.raises(ValidationError):
            stress_test({})


class TestHistoricalReplay:

    def test_window_inside_history(self, price_frame):
        weights = {"AAA": 0.6, "CCC": 0.4}
        results = _by_name(stress_test(weights, price_history=price_frame))
        start, end = DEFAULT_HISTORICAL_WINDOWS["2022_rate_hike"]
        window = price_frame.loc[start:end]
        expected = {s: window[s].iloc[-1] / window[s].iloc[0] - 1 for s in weights}
        hike = results["2022_rate_hike"]
        assert hike.per_asset == pytest.approx(expected)
        assert hike.portfolio_return == pytest.approx(0.6 * expected["AAA"] + 0.4 * expected["CCC"])
        assert hike.worst_drawdown is not None and hike.worst_drawdown >= 0.0
        assert hike.skipped == []

    def test_window_without_data_skips_symbols(self, price_frame):
        results = _by_name(stress_test({"AAA": 1.0}, price_history=price_frame))
        covid = results["covid_crash"]
        assert covid.skipped == ["AAA"]
        assert covid.portfolio_return == 0.0
        assert covid.worst_drawdown is None

    def test_symbol_without_history_is_skipped(self, price_frame):
        window = {"recent": (str(price_frame.index[10].date()), str(price_frame.index[60].date()))}
        results = _by_name(stress_test({"AAA": 0.5, "ZZZ": 0.5}, price_history=price_frame, windows=window))
        assert results["recent"].skipped == ["ZZZ"]
        assert "AAA" in results["recent"].per_asset

    def test_price_history_as_mapping(self, price_dict):
        results = stress_test({"BBB": 1.0}, price_history=price_dict)
        names = [r.scenario for r in results]
        assert names[-len(DEFAULT_HISTORICAL_WINDOWS):] == list(DEFAULT_HISTORICAL_WINDOWS)
