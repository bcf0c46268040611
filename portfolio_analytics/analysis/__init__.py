from .estimation import estimate, ensure_psd
from .risk import RiskMetricsCalculator, compute_risk, compute_risk_from_estimate, performance_metrics
from .optimizer import PortfolioOptimizer, optimize
from .frontier import build_frontier, random_portfolios
from .rebalancing import market_weights, plan_rebalance
from .stress import stress_test
