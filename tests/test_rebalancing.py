"""Tests for portfolio_analytics.analysis.rebalancing."""

import numpy as np
import pandas as pd
import pytest

from portfolio_analytics.analysis.rebalancing import market_weights, plan_rebalance
from portfolio_analytics.errors import ValidationError
from portfolio_analytics.models import Holding, OptimizationResult

PRICES = {"A": 100.0, "B": 50.0}


@pytest.fixture
def two_holdings():
    return [Holding("A", 10, "Technology"), Holding("B", 20, "Utilities")]


class TestMarketWeights:

    def test_value_weights(self, two_holdings):
        assert market_weights(two_holdings, PRICES) == {"A": 0.5, "B": 0.5}

    def test_accepts_dicts_and_series(self):
        w = market_weights([{"symbol": "A", "quantity": 3}], pd.Series(PRICES))
        assert w == {"A": 1.0}

    def test_missing_price(self, two_holdings):
        with pytest.raises(ValidationError, match="No price"):
            market_weights(two_holdings, {"A": 100.0})

    def test_zero_value(self):
        with pytest.raises(ValidationError):
            market_weights([Holding("A", 0)], PRICES)


class TestPlanRebalance:

    def test_trade_list(self, two_holdings):
        plan = plan_rebalance(two_holdings, PRICES, {"A": 0.25, "B": 0.75})
        trades = {t.symbol: t for t in plan.trades}
        assert trades["A"].action == "SELL"
        assert trades["A"].shares_delta == -5
        assert trades["B"].action == "BUY"
        assert trades["B"].shares_delta == 10
        assert plan.total_trade_value == pytest.approx(1000.0)
        assert plan.estimated_transaction_cost == pytest.approx(1.0)
        assert plan.turnover == pytest.approx(0.5)
        assert plan.portfolio_value == pytest.approx(2000.0)

    def test_sector_changes(self, two_holdings):
        plan = plan_rebalance(two_holdings, PRICES, {"A": 0.25, "B": 0.75})
        assert plan.sector_changes == pytest.approx({"Technology": -0.25, "Utilities": 0.25})

    def test_new_symbol_is_bought(self, two_holdings):
        plan = plan_rebalance(
            two_holdings, {**PRICES, "C": 40.0}, {"A": 0.5, "B": 0.25, "C": 0.25},
            sectors={"C": "Energy"},
        )
        trades = {t.symbol: t for t in plan.trades}
        assert trades["C"].current_shares == 0
        assert trades["C"].shares_delta == 12  # 500 / 40 truncated
        assert trades["A"].action == "HOLD"
        assert "Energy" in plan.sector_changes

    def test_whole_shares_truncate_toward_zero(self):
        plan = plan_rebalance([Holding("A", 1), Holding("B", 1)], {"A": 30.0, "B": 70.0}, {"A": 0.5, "B": 0.5})
        trades = {t.symbol: t for t in plan.trades}
        # A: +20 of value at 30 -> 0 shares; B: -20 at 70 -> 0 shares
        assert trades["A"].shares_delta == 0
        assert trades["B"].shares_delta == 0
        assert plan.total_trade_value == 0.0

    def test_tracking_error(self, two_holdings):
        cov = pd.DataFrame([[1e-4, 0.0], [0.0, 4e-4]], index=["A", "B"], columns=["A", "B"])
        plan = plan_rebalance(two_holdings, PRICES, {"A": 0.25, "B": 0.75}, covariance=cov)
        d = np.array([0.25, -0.25])
        expected = np.sqrt(d @ cov.to_numpy() @ d * 252)
        assert plan.tracking_error == pytest.approx(expected)

    def test_from_optimization_result(self, two_holdings):
        result = OptimizationResult("min_variance", {"A": 0.25, "B": 0.75}, 0.1, 0.2, 0.3)
        plan = plan_rebalance(two_holdings, PRICES, result, cash=0.0)
        assert plan.turnover == pytest.approx(0.5)

    def test_infeasible_result_rejected(self, two_holdings):
        with pytest.raises(ValidationError, match="infeasible"):
            plan_rebalance(two_holdings, PRICES, OptimizationResult.infeasible("max_sharpe", "caps"))

    def test_weights_must_sum_to_one(self, two_holdings):
        with pytest.raises(ValidationError):
            plan_rebalance(two_holdings, PRICES, {"A": 0.5, "B": 0.4})

    def test_negative_cost_rejected(self, two_holdings):
        with pytest.raises(ValidationError):
            plan_rebalance(two_holdings, PRICES, {"A": 0.5, "B": 0.5}, transaction_cost_bps=-1)
