"""Central configuration loader for the portfolio analytics engine."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Project root is the parent of the portfolio_analytics/ directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(PROJECT_ROOT / ".env")


def load_settings(path: Path | None = None) -> dict:
    """Load settings from configs/settings.yaml (or $PORTFOLIO_ANALYTICS_SETTINGS)."""
    if path is None:
        override = os.getenv("PORTFOLIO_ANALYTICS_SETTINGS")
        path = Path(override) if override else PROJECT_ROOT / "configs" / "settings.yaml"
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


SETTINGS = load_settings()

_ENGINE = SETTINGS.get("engine", {})


# --- Engine defaults ---
class Defaults:
    TRADING_DAYS = int(_ENGINE.get("trading_days", 252))
    RISK_FREE_RATE = float(os.getenv("RISK_FREE_RATE", _ENGINE.get("risk_free_rate", 0.04)))
    CONFIDENCE_LEVEL = float(_ENGINE.get("confidence_level", 0.95))
    LOOKBACK_DAYS = int(_ENGINE.get("lookback_days", 252))
    EWMA_DECAY = float(_ENGINE.get("ewma_decay", 0.94))
    PSD_EPSILON = float(_ENGINE.get("psd_epsilon", 1e-10))
    FRONTIER_POINTS = int(_ENGINE.get("frontier_points", 25))
    RANDOM_PORTFOLIOS = int(_ENGINE.get("random_portfolios", 2000))
    MAX_ITER = int(_ENGINE.get("max_iter", 1000))
    TOLERANCE = float(_ENGINE.get("tolerance", 1e-10))
    WEIGHT_TOLERANCE = float(_ENGINE.get("weight_tolerance", 1e-6))
    BL_TAU = float(_ENGINE.get("black_litterman", {}).get("tau", 0.05))
    BL_RISK_AVERSION = float(_ENGINE.get("black_litterman", {}).get("risk_aversion", 2.5))
    RUNNER_WORKERS = int(_ENGINE.get("runner_workers", 4))
    CACHE_TTL_SECONDS = float(_ENGINE.get("cache_ttl_seconds", 3600))


LOG_LEVEL = SETTINGS.get("app", {}).get("log_level", "INFO")
