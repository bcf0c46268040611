#!/usr/bin/env python3
"""Portfolio Analytics: risk, optimization and frontier from price history.

Prices are a CSV with a date column followed by one close column per
symbol.  Holdings are a YAML list of {symbol, quantity, sector}.

Usage:
    python main.py estimate  --prices closes.csv --method-estimate shrinkage
    python main.py risk      --prices closes.csv --holdings book.yaml --confidence 99
    python main.py optimize  --prices closes.csv --holdings book.yaml --method risk-parity
    python main.py optimize  --prices closes.csv --holdings book.yaml --max-position 30 \\
                             --sector-limit Technology=40
    python main.py frontier  --prices closes.csv --holdings book.yaml --points 30
    python main.py random    --prices closes.csv --holdings book.yaml --count 500 --seed 7
    python main.py rebalance --prices closes.csv --holdings book.yaml --method min-volatility
    python main.py stress    --prices closes.csv --holdings book.yaml --replay
    python main.py performance --prices closes.csv --holdings book.yaml --benchmark SPY
"""

import argparse
import json
import sys

import pandas as pd
import yaml

from portfolio_analytics.analysis.estimation import estimate
from portfolio_analytics.analysis.frontier import build_frontier, random_portfolios
from portfolio_analytics.analysis.optimizer import optimize
from portfolio_analytics.analysis.rebalancing import market_weights, plan_rebalance
from portfolio_analytics.analysis.risk import compute_risk_from_estimate, performance_metrics
from portfolio_analytics.analysis.stress import stress_test
from portfolio_analytics.config import LOG_LEVEL, Defaults
from portfolio_analytics.errors import AnalyticsError, ValidationError
from portfolio_analytics.models import ConstraintSet, Holding, View
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("main", LOG_LEVEL)


SIZE_HELP = "Percent above 1 (30) or fraction up to 1 (0.3); 1 means 100%"


def _fraction(value):
    """Accept 30 or 0.30 for a percentage option; 1 is read as 100%."""
    if value is not None and value > 1.0:
        return value / 100.0
    return value


def _load_prices(path: str) -> pd.DataFrame:
    frame = pd.read_csv(path, index_col=0, parse_dates=True)
    frame.columns = [str(c) for c in frame.columns]
    return frame.sort_index()


def _load_holdings(path: str) -> list[Holding]:
    with open(path) as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("holdings", [])
    return [Holding(**item) for item in data]


def _load_views(path: str | None) -> list[View]:
    if not path:
        return []
    with open(path) as f:
        data = yaml.safe_load(f) or []
    return [View(**item) for item in data]


def _parse_pairs(pairs: list[str] | None, percent: bool = True) -> dict[str, float]:
    """``["Technology=40", "Energy=0.1"]`` -> ``{"Technology": 0.4, "Energy": 0.1}``."""
    out = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValidationError(f"Expected KEY=VALUE, got '{pair}'")
        out[key.strip()] = _fraction(float(value)) if percent else float(value)
    return out


def _universe(args):
    """(prices restricted to held symbols, holdings, sectors)."""
    prices = _load_prices(args.prices)
    holdings = _load_holdings(args.holdings) if getattr(args, "holdings", None) else []
    if holdings:
        missing = [h.symbol for h in holdings if h.symbol not in prices.columns]
        if missing:
            raise ValidationError(f"No price column for holdings: {missing}")
        prices = prices[[h.symbol for h in holdings]]
    return prices, holdings, {h.symbol: h.sector for h in holdings}


def _estimate(args, prices):
    return estimate(prices, args.method_estimate, args.lookback, return_type=args.return_type)


def _constraints(args) -> ConstraintSet:
    return ConstraintSet(
        max_position_size=_fraction(args.max_position),
        min_position_size=_fraction(args.min_position),
        sector_limits=_parse_pairs(args.sector_limit),
        allow_short_selling=args.allow_short,
        max_short_position=_fraction(args.max_short),
        target_return=args.target_return,
        target_volatility=args.target_volatility,
    )


def _current_weights(holdings, prices):
    return market_weights(holdings, prices.iloc[-1].to_dict())


def _dump(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _run_optimizer(args, prices, holdings, sectors):
    est = _estimate(args, prices)
    result = optimize(
        est.return_vector, est.covariance_frame, _constraints(args), args.method,
        risk_free_rate=args.risk_free_rate,
        sectors=sectors,
        scenarios=est.simple_returns,
        views=_load_views(args.views),
        market_weights=_current_weights(holdings, prices) if holdings else None,
        risk_budgets=_parse_pairs(args.risk_budget, percent=False) or None,
        confidence_level=args.confidence,
        periods_per_year=est.periods_per_year,
    )
    return est, result


# ============================================================
# COMMANDS
# ============================================================

def cmd_estimate(args):
    """Annualized expected returns and covariance."""
    prices, _, _ = _universe(args)
    est = _estimate(args, prices)
    ppy = est.periods_per_year
    _dump({
        "method": est.method,
        "n_observations": est.n_observations,
        "as_of": est.as_of,
        "shrinkage_intensity": est.shrinkage_intensity,
        "regularized": est.regularized,
        "expected_returns": (est.return_vector * ppy).to_dict(),
        "covariance": (est.covariance_frame * ppy).to_dict(),
    })


def cmd_risk(args):
    """Risk metrics for current holdings."""
    prices, holdings, sectors = _universe(args)
    est = _estimate(args, prices)
    weights = _current_weights(holdings, prices)
    latest = prices.iloc[-1]
    metrics = compute_risk_from_estimate(
        weights, est,
        confidence_level=args.confidence,
        time_horizon_days=args.horizon,
        risk_free_rate=args.risk_free_rate,
        mode=args.mode,
        portfolio_value=float(sum(h.quantity * latest[h.symbol] for h in holdings)),
        sectors=sectors,
    )
    _dump({"weights": weights, "metrics": metrics.to_dict()})


def cmd_optimize(args):
    """Optimize weights for the held universe."""
    prices, holdings, sectors = _universe(args)
    _, result = _run_optimizer(args, prices, holdings, sectors)
    _dump(result.to_dict())
    if not result.feasible:
        sys.exit(2)


def cmd_frontier(args):
    """Efficient frontier points."""
    prices, _, sectors = _universe(args)
    est = _estimate(args, prices)
    points = build_frontier(
        est.return_vector, est.covariance_frame, _constraints(args), args.points,
        risk_free_rate=args.risk_free_rate, sectors=sectors,
        periods_per_year=est.periods_per_year,
    )
    _dump({"frontier": [p.to_dict() for p in points], "n_points": len(points)})


def cmd_random(args):
    """Random feasible portfolios (visual context for the frontier)."""
    prices, _, sectors = _universe(args)
    est = _estimate(args, prices)
    cloud = random_portfolios(
        est.return_vector, est.covariance_frame, _constraints(args), args.count,
        seed=args.seed, risk_free_rate=args.risk_free_rate, sectors=sectors,
        periods_per_year=est.periods_per_year,
    )
    _dump({"portfolios": [p.to_dict() for p in cloud], "n_portfolios": len(cloud)})


def cmd_rebalance(args):
    """Optimize, then list the trades from current holdings."""
    prices, holdings, sectors = _universe(args)
    est, result = _run_optimizer(args, prices, holdings, sectors)
    if not result.feasible:
        _dump(result.to_dict())
        sys.exit(2)
    plan = plan_rebalance(
        holdings, prices.iloc[-1].to_dict(), result,
        covariance=est.covariance_frame,
        transaction_cost_bps=args.cost_bps,
        cash=args.cash,
        periods_per_year=est.periods_per_year,
    )
    _dump({"optimization": result.to_dict(), "plan": plan.to_dict()})


def cmd_stress(args):
    """Shock scenarios, optionally replaying historical windows."""
    prices, holdings, sectors = _universe(args)
    results = stress_test(
        _current_weights(holdings, prices), sectors,
        price_history=prices if args.replay else None,
    )
    _dump([r.to_dict() for r in results])


def cmd_performance(args):
    """Realized performance of the current holdings over the price history."""
    prices = _load_prices(args.prices)
    holdings = _load_holdings(args.holdings)
    columns = [h.symbol for h in holdings]
    values = (prices[columns] * [h.quantity for h in holdings]).sum(axis=1)
    benchmark = prices[args.benchmark] if args.benchmark else None
    pm = performance_metrics(values, benchmark, risk_free_rate=args.risk_free_rate)
    _dump(pm.to_dict())


def _common(p, holdings_required=True):
    p.add_argument("--prices", required=True, help="CSV of closes: date column, one column per symbol")
    p.add_argument("--holdings", required=holdings_required, help="YAML list of {symbol, quantity, sector}")
    p.add_argument("--method-estimate", dest="method_estimate", default="historical_mean",
                   choices=["historical_mean", "exponential_weighted", "shrinkage"])
    p.add_argument("--lookback", type=int, default=Defaults.LOOKBACK_DAYS, help="Trading days")
    p.add_argument("--return-type", default="log", choices=["log", "simple"])
    p.add_argument("--risk-free-rate", type=float, default=None, help="Annual, e.g. 0.04")


def _constraint_args(p, max_default=100.0):
    p.add_argument("--max-position", type=float, default=max_default, help=SIZE_HELP)
    p.add_argument("--min-position", type=float, default=0.0, help=SIZE_HELP)
    p.add_argument("--sector-limit", action="append", metavar="SECTOR=PCT", help=SIZE_HELP)
    p.add_argument("--allow-short", action="store_true")
    p.add_argument("--max-short", type=float, default=None, help=SIZE_HELP)
    p.add_argument("--target-return", type=float, default=None, help="Annual")
    p.add_argument("--target-volatility", type=float, default=None, help="Annual")


def _optimizer_args(p):
    p.add_argument("--method", default="max-sharpe",
                   help="mean-variance, max-sharpe, min-volatility, risk-parity, "
                        "cvar-min, black-litterman, efficient-risk")
    p.add_argument("--views", default=None, help="YAML list of {assets, expected_return, confidence}")
    p.add_argument("--risk-budget", action="append", metavar="SYMBOL=BUDGET")
    p.add_argument("--confidence", type=float, default=95.0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Portfolio Analytics: risk, optimization and efficient frontier",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", help="Commands")

    # estimate
    p = sub.add_parser("estimate", help="Expected returns and covariance")
    _common(p, holdings_required=False)
    p.set_defaults(func=cmd_estimate)

    # risk
    p = sub.add_parser("risk", help="Risk metrics for current holdings")
    _common(p)
    p.add_argument("--confidence", type=float, default=95.0, help="90, 95, 99 or a fraction")
    p.add_argument("--horizon", type=int, default=1, help="VaR horizon in days")
    p.add_argument("--mode", default="parametric", choices=["parametric", "historical"])
    p.set_defaults(func=cmd_risk)

    # optimize
    p = sub.add_parser("optimize", help="Optimize portfolio weights")
    _common(p)
    _constraint_args(p)
    _optimizer_args(p)
    p.set_defaults(func=cmd_optimize)

    # frontier
    p = sub.add_parser("frontier", help="Efficient frontier")
    _common(p)
    _constraint_args(p)
    p.add_argument("--points", type=int, default=Defaults.FRONTIER_POINTS)
    p.set_defaults(func=cmd_frontier)

    # random
    p = sub.add_parser("random", help="Random feasible portfolios")
    _common(p)
    _constraint_args(p)
    p.add_argument("--count", type=int, default=Defaults.RANDOM_PORTFOLIOS)
    p.add_argument("--seed", type=int, default=None)
    p.set_defaults(func=cmd_random)

    # rebalance
    p = sub.add_parser("rebalance", help="Trades to reach optimized weights")
    _common(p)
    _constraint_args(p)
    _optimizer_args(p)
    p.add_argument("--cost-bps", type=float, default=10.0)
    p.add_argument("--cash", type=float, default=0.0)
    p.set_defaults(func=cmd_rebalance)

    # stress
    p = sub.add_parser("stress", help="Stress scenarios")
    _common(p)
    p.add_argument("--replay", action="store_true", help="Also replay historical windows")
    p.set_defaults(func=cmd_stress)

    # performance
    p = sub.add_parser("performance", help="Realized performance")
    p.add_argument("--prices", required=True)
    p.add_argument("--holdings", required=True)
    p.add_argument("--benchmark", default=None, help="Price column to compare against")
    p.add_argument("--risk-free-rate", type=float, default=None)
    p.set_defaults(func=cmd_performance)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(0)
    try:
        args.func(args)
    except AnalyticsError as e:
        logger.error("%s: %s", type(e).__name__, e)
        sys.exit(1)


if __name__ == "__main__":
    main()
