"""
Portfolio Analytics API Server
Risk, optimization and efficient-frontier endpoints over the analytics engine.
"""

import os

import pandas as pd
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portfolio_analytics import __version__
from portfolio_analytics.analysis.estimation import align_prices
from portfolio_analytics.analysis.frontier import build_frontier, random_portfolios
from portfolio_analytics.analysis.optimizer import (
    PortfolioOptimizer,
    optimize,
    resolve_objective,
    volatility_for_risk_tolerance,
)
from portfolio_analytics.analysis.rebalancing import market_weights
from portfolio_analytics.analysis.risk import compute_risk_from_estimate, normalize_confidence
from portfolio_analytics.api.schemas import (
    ConstrainedRequest,
    FrontierRequest,
    OptimizeRequest,
    PortfolioRequest,
    RandomPortfoliosRequest,
    RiskRequest,
)
from portfolio_analytics.config import SETTINGS
from portfolio_analytics.errors import (
    AnalyticsError,
    InfeasibleConstraintsError,
    RequestSupersededError,
)
from portfolio_analytics.models import ConstraintSet, Estimate, OptimizationResult, View
from portfolio_analytics.service.cache import EstimateCache
from portfolio_analytics.service.runner import OptimizationRunner
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("api")

app = FastAPI(title="Portfolio Analytics API", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=SETTINGS.get("api", {}).get("cors_origins", ["*"]),
    allow_methods=["*"],
    allow_headers=["*"],
)

runner = OptimizationRunner()
estimates = EstimateCache()

METHOD_DESCRIPTIONS = {
    "mean-variance": "Markowitz: minimum variance at a target return, else tangency portfolio",
    "max-sharpe": "Maximum Sharpe ratio (tangency) portfolio",
    "min-volatility": "Global minimum-variance portfolio",
    "risk-parity": "Equal risk contribution per asset",
    "cvar-min": "Minimum conditional value-at-risk over historical scenarios",
    "black-litterman": "Market-implied prior blended with investor views",
    "efficient-risk": "Maximum return at a volatility target (risk tolerance)",
}


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError):
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(RequestSupersededError)
async def superseded_handler(request: Request, exc: RequestSupersededError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "error": type(exc).__name__})


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def _price_frame(req: PortfolioRequest) -> pd.DataFrame:
    return align_prices({s: pd.Series(req.prices[s], dtype=float) for s in req.symbols})


def _estimate(req: PortfolioRequest, prices: pd.DataFrame) -> Estimate:
    cfg = req.estimation
    return estimates.get_or_estimate(
        prices, cfg.method, cfg.lookback_days, return_type=cfg.return_type,
    )


def _holdings_weights(req: PortfolioRequest, prices: pd.DataFrame) -> dict:
    return market_weights([h.model_dump() for h in req.holdings], prices.iloc[-1].to_dict())


def _constraints(req: ConstrainedRequest) -> ConstraintSet:
    c = req.constraints
    return ConstraintSet(
        max_position_size=req.max_position_size,
        min_position_size=c.min_position_size,
        sector_limits=dict(c.sector_limits),
        allow_short_selling=c.allow_short_selling,
        max_short_position=c.max_short_position,
        target_return=c.target_return,
        target_volatility=c.target_volatility,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/api/health")
def health():
    return {"status": "ok", "version": __version__}


@app.get("/api/optimization/methods")
def optimization_methods():
    return {
        "methods": [
            {"id": method_id, "objective": resolve_objective(method_id), "description": desc}
            for method_id, desc in METHOD_DESCRIPTIONS.items()
        ]
    }


@app.post("/api/risk")
def risk(req: RiskRequest):
    prices = _price_frame(req)
    est = _estimate(req, prices)
    weights = req.weights if req.weights is not None else _holdings_weights(req, prices)

    benchmark_returns = None
    if req.benchmark:
        bench = pd.Series(req.benchmark, dtype=float)
        bench.index = pd.to_datetime(bench.index)
        benchmark_returns = bench.sort_index().pct_change().dropna()

    latest = prices.iloc[-1]
    portfolio_value = float(sum(h.quantity * latest[h.symbol] for h in req.holdings))
    metrics = compute_risk_from_estimate(
        weights, est,
        confidence_level=normalize_confidence(req.confidence_level),
        time_horizon_days=req.time_horizon_days,
        risk_free_rate=req.risk_free_rate,
        mode=req.mode,
        benchmark_returns=benchmark_returns,
        portfolio_value=portfolio_value,
        sectors=req.sectors,
    )
    return {"weights": weights, "metrics": metrics.to_dict()}


def _run_optimize(req: OptimizeRequest, prices: pd.DataFrame):
    est = _estimate(req, prices)
    constraints = _constraints(req)
    method = resolve_objective(req.method, constraints)

    tolerance_methods = ("mean-variance", "efficient-risk", "efficient_risk")
    if req.risk_tolerance is not None and req.method.strip().lower() in tolerance_methods:
        try:
            opt = PortfolioOptimizer(
                est.return_vector, est.covariance_frame, constraints.replace(target_return=None),
                sectors=req.sectors, risk_free_rate=req.risk_free_rate,
                periods_per_year=est.periods_per_year,
            )
            target = volatility_for_risk_tolerance(opt, req.risk_tolerance)
        except InfeasibleConstraintsError as e:
            return OptimizationResult.infeasible("efficient_risk", str(e))
        constraints = constraints.replace(target_return=None, target_volatility=target)
        method = "efficient_risk"

    return optimize(
        est.return_vector, est.covariance_frame, constraints, method,
        risk_free_rate=req.risk_free_rate,
        sectors=req.sectors,
        scenarios=est.simple_returns,
        views=[View(**v.model_dump()) for v in req.views],
        market_weights=_holdings_weights(req, prices) if method == "black_litterman" else None,
        risk_budgets=req.risk_budgets,
        confidence_level=normalize_confidence(req.confidence_level),
        periods_per_year=est.periods_per_year,
    )


@app.post("/api/optimize")
def run_optimization(req: OptimizeRequest):
    resolve_objective(req.method)
    prices = _price_frame(req)
    future = runner.submit(req.portfolio_id, _run_optimize, req, prices)
    result = runner.result(req.portfolio_id, future)
    return result.to_dict()


@app.post("/api/efficient-frontier")
def efficient_frontier(req: FrontierRequest):
    prices = _price_frame(req)
    est = _estimate(req, prices)
    points = build_frontier(
        est.return_vector, est.covariance_frame, _constraints(req), req.num_points,
        risk_free_rate=req.risk_free_rate, sectors=req.sectors,
        periods_per_year=est.periods_per_year,
    )
    tangency = next((p.to_dict() for p in points if p.is_max_sharpe), None)
    return {"frontier": [p.to_dict() for p in points], "max_sharpe": tangency, "n_points": len(points)}


@app.post("/api/random-portfolios")
def random_portfolio_cloud(req: RandomPortfoliosRequest):
    prices = _price_frame(req)
    est = _estimate(req, prices)
    cloud = random_portfolios(
        est.return_vector, est.covariance_frame, _constraints(req), req.num_portfolios,
        seed=req.seed, risk_free_rate=req.risk_free_rate, sectors=req.sectors,
        periods_per_year=est.periods_per_year,
    )
    return {"portfolios": [p.to_dict() for p in cloud], "n_portfolios": len(cloud)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", SETTINGS.get("api", {}).get("port", 8050)))
    uvicorn.run(app, host="0.0.0.0", port=port)
