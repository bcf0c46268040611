"""Shared pytest fixtures for the portfolio analytics test suite.

Provides synthetic price histories with fixed random seeds for reproducibility.
All fixtures are pure data; nothing touches the network or disk.
"""

import numpy as np
import pandas as pd
import pytest

from portfolio_analytics.models import Holding


def make_prices(
    symbols=("AAA", "BBB", "CCC"),
    n=300,
    means=(0.0005, 0.0003, 0.0007),
    stds=(0.012, 0.008, 0.020),
    corr=0.3,
    seed=42,
    start="2022-01-03",
):
    """Correlated geometric-Brownian close prices, one column per symbol."""
    rng = np.random.default_rng(seed)
    k = len(symbols)
    C = np.full((k, k), corr)
    np.fill_diagonal(C, 1.0)
    L = np.linalg.cholesky(C)
    shocks = rng.standard_normal((n, k)) @ L.T
    log_returns = shocks * np.array(stds[:k]) + np.array(means[:k])
    dates = pd.bdate_range(start=start, periods=n + 1)
    closes = 100.0 * np.exp(np.vstack([np.zeros(k), np.cumsum(log_returns, axis=0)]))
    return pd.DataFrame(closes, index=dates, columns=list(symbols))


# ---------------------------------------------------------------------------
# 1. Price history fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def price_frame():
    """301 business-day closes for AAA/BBB/CCC, seeded at 42."""
    return make_prices()


@pytest.fixture
def price_dict(price_frame):
    """Same history as ``{symbol: Series}``."""
    return {s: price_frame[s] for s in price_frame.columns}


@pytest.fixture
def sectors():
    return {"AAA": "Technology", "BBB": "Utilities", "CCC": "Technology"}


@pytest.fixture
def holdings(sectors):
    return [
        Holding("AAA", 10, sectors["AAA"]),
        Holding("BBB", 20, sectors["BBB"]),
        Holding("CCC", 5, sectors["CCC"]),
    ]


# ---------------------------------------------------------------------------
# 2. Closed-form optimizer inputs (annual figures, periods_per_year=1)
# ---------------------------------------------------------------------------

@pytest.fixture
def diag_inputs():
    """Uncorrelated 3-asset case with inverse-variance minimum-variance weights."""
    mu = pd.Series([0.10, 0.08, 0.12], index=["X", "Y", "Z"])
    cov = pd.DataFrame(np.diag([0.04, 0.01, 0.09]), index=mu.index, columns=mu.index)
    return mu, cov


@pytest.fixture
def two_asset_inputs():
    mu = pd.Series([0.08, 0.14], index=["LOW", "HIGH"])
    cov = pd.DataFrame([[0.04, 0.006], [0.006, 0.09]], index=mu.index, columns=mu.index)
    return mu, cov


@pytest.fixture
def price_factory():
    """The ``make_prices`` generator, for tests that need custom histories."""
    return make_prices
