"""Tests for the command-line entry point (main.py)."""

import json

import pytest
import yaml

import main


@pytest.fixture
def files(tmp_path, price_frame, holdings):
    prices = tmp_path / "closes.csv"
    price_frame.rename_axis("date").to_csv(prices)
    book = tmp_path / "book.yaml"
    book.write_text(yaml.safe_dump([h.to_dict() for h in holdings]))
    return str(prices), str(book)


def _run(capsys, *argv):
    main.main(list(argv))
    return json.loads(capsys.readouterr().out)


class TestCLI:

    def test_estimate(self, capsys, files):
        prices, _ = files
        out = _run(capsys, "estimate", "--prices", prices, "--method-estimate", "shrinkage")
        assert out["method"] == "shrinkage"
        assert set(out["expected_returns"]) == {"AAA", "BBB", "CCC"}
        assert 0.0 <= out["shrinkage_intensity"] <= 1.0

    def test_risk(self, capsys, files):
        prices, book = files
        out = _run(capsys, "risk", "--prices", prices, "--holdings", book, "--confidence", "99")
        assert out["metrics"]["confidence_level"] == pytest.approx(0.99)
        assert sum(out["weights"].values()) == pytest.approx(1.0)

    def test_optimize_with_sector_limit(self, capsys, files):
        prices, book = files
        out = _run(capsys, "optimize", "--prices", prices, "--holdings", book,
                   "--method", "min-volatility", "--sector-limit", "Utilities=40")
        assert out["feasible"] is True
        assert out["weights"]["BBB"] <= 0.4 + 1e-6

    def test_infeasible_optimize_exits_2(self, capsys, files):
        prices, book = files
        with pytest.raises(SystemExit) as exc:
            main.main(["optimize", "--prices", prices, "--holdings", book, "--max-position", "20"])
        assert exc.value.code == 2
        assert json.loads(capsys.readouterr().out)["feasible"] is False

    def test_frontier_and_random(self, capsys, files):
        prices, book = files
        frontier = _run(capsys, "frontier", "--prices", prices, "--holdings", book, "--points", "5")
        assert 2 <= frontier["n_points"] <= 5
        cloud = _run(capsys, "random", "--prices", prices, "--holdings", book, "--count", "10", "--seed", "1")
        assert cloud["n_portfolios"] == 10

    def test_rebalance(self, capsys, files):
        prices, book = files
        out = _run(capsys, "rebalance", "--prices", prices, "--holdings", book, "--method", "risk-parity")
        assert {t["symbol"] for t in out["plan"]["trades"]} == {"AAA", "BBB", "CCC"}
        assert out["plan"]["tracking_error"] >= 0.0

    def test_stress(self, capsys, files):
        prices, book = files
        out = _run(capsys, "stress", "--prices", prices, "--holdings", book, "--replay")
        names = {r["scenario"] for r in out}
        assert {"Market Drop (10%)", "2022_rate_hike"} <= names

    def test_performance(self, capsys, files):
        prices, book = files
        out = _run(capsys, "performance", "--prices", prices, "--holdings", book, "--benchmark", "AAA")
        assert out["n_observations"] == 301
        assert out["beta"] is not None

    def test_analytics_error_exits_1(self, files):
        prices, book = files
        with pytest.raises(SystemExit) as exc:
            main.main(["risk", "--prices", prices, "--holdings", book, "--lookback", "1"])
        assert exc.value.code == 1
