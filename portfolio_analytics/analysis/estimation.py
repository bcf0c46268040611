"""Return / covariance estimation from historical price series.

Turns raw closes into per-period expected returns and a covariance matrix
with one of three estimators:

* ``historical_mean`` -- arithmetic mean, unbiased sample covariance (N-1).
* ``exponential_weighted`` -- decay-weighted mean/covariance, recent
  observations weigh more; weights are normalised to sum to 1.
* ``shrinkage`` -- Ledoit-Wolf blend of the sample covariance toward a
  constant-correlation target, intensity analytic or fixed.

Periodic returns are log returns by default.  Simple returns can be
requested per call but never mixed within one estimate.  Every output
covariance is symmetrised and checked for positive semi-definiteness;
negative eigenvalues are clipped to a small epsilon.

Pure functions: no I/O, no module state.
"""

from __future__ import annotations

from typing import Mapping, Union

import numpy as np
import pandas as pd

from portfolio_analytics.config import Defaults
from portfolio_analytics.errors import (
    IllConditionedCovarianceError,
    InsufficientDataError,
    InvalidPriceSeriesError,
    ValidationError,
)
from portfolio_analytics.models import Estimate
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("estimation")

METHODS = ("historical_mean", "exponential_weighted", "shrinkage")
RETURN_TYPES = ("log", "simple")

PriceInput = Union[Mapping[str, pd.Series], pd.DataFrame]


# ---------------------------------------------------------------------------
# Price handling
# ---------------------------------------------------------------------------


def _validate_series(symbol: str, series: pd.Series) -> pd.Series:
    """Check one close-price series: dated, strictly increasing, positive."""
    s = pd.Series(series, dtype=float).dropna()
    try:
        s.index = pd.to_datetime(s.index)
    except (TypeError, ValueError) as e:
        raise InvalidPriceSeriesError(f"{symbol}: index is not date-like ({e})") from e
    if s.index.has_duplicates:
        dupes = s.index[s.index.duplicated()].unique()
        raise InvalidPriceSeriesError(f"{symbol}: duplicate dates {list(dupes[:3])}")
    if not s.index.is_monotonic_increasing:
        raise InvalidPriceSeriesError(f"{symbol}: dates must be strictly increasing")
    if (s <= 0).any():
        raise InvalidPriceSeriesError(f"{symbol}: prices must be positive")
    return s


def align_prices(prices: PriceInput) -> pd.DataFrame:
    """Validate every series and align them on their common dates.

    Returns a DataFrame whose columns are symbols (input order) and rows
    are the dates present in every series.
    """
    if isinstance(prices, pd.DataFrame):
        items = [(str(c), prices[c]) for c in prices.columns]
    else:
        items = [(str(k), v) for k, v in prices.items()]
    if not items:
        raise InsufficientDataError("No price series supplied")

    frames = {symbol: _validate_series(symbol, series) for symbol, series in items}
    combined = pd.concat(frames, axis=1, join="inner")
    combined.columns = list(frames.keys())
    return combined


def compute_returns(prices: pd.DataFrame, return_type: str = "log") -> pd.DataFrame:
    """Per-period returns between consecutive aligned closes."""
    if return_type == "log":
        return np.log(prices).diff().dropna(how="all")
    if return_type == "simple":
        return prices.pct_change().dropna(how="all")
    raise ValidationError(f"Unknown return_type '{return_type}', expected one of {RETURN_TYPES}")


# ---------------------------------------------------------------------------
# Covariance helpers
# ---------------------------------------------------------------------------


def ensure_psd(cov: np.ndarray, epsilon: float | None = None) -> tuple[np.ndarray, bool]:
    """Symmetrise *cov* and repair it if it is not positive semi-definite.

    Eigenvalues below a round-off tolerance are clipped to *epsilon* and the
    matrix is rebuilt.  Returns ``(matrix, regularized)``.

    Raises:
        ValidationError: matrix is not square.
        IllConditionedCovarianceError: non-finite entries, or the rebuilt
            matrix still fails the PSD check.
    """
    eps = Defaults.PSD_EPSILON if epsilon is None else epsilon
    cov = np.atleast_2d(np.asarray(cov, dtype=float))
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise ValidationError(f"Covariance must be square, got shape {cov.shape}")
    if not np.all(np.isfinite(cov)):
        raise IllConditionedCovarianceError("Covariance contains NaN or infinite entries")

    cov = (cov + cov.T) / 2.0
    eigvals, eigvecs = np.linalg.eigh(cov)
    tol = 1e-12 * max(1.0, float(np.max(np.abs(eigvals))))
    if eigvals.min() >= -tol:
        return cov, False

    logger.warning(
        "Covariance not PSD (min eigenvalue %.3e); clipping %d eigenvalue(s) to %.1e",
        eigvals.min(), int((eigvals < -tol).sum()), eps,
    )
    clipped = np.where(eigvals < -tol, eps, eigvals)
    repaired = (eigvecs * clipped) @ eigvecs.T
    repaired = (repaired + repaired.T) / 2.0
    if np.linalg.eigvalsh(repaired).min() < -tol:
        raise IllConditionedCovarianceError("Covariance is not PSD after eigenvalue clipping")
    return repaired, True


def _constant_correlation_target(sample: np.ndarray) -> tuple[np.ndarray, float]:
    """Constant-correlation target: sample variances, average correlation.

    Zero-variance assets get zero covariance with everything.
    """
    n = sample.shape[0]
    std = np.sqrt(np.clip(np.diag(sample), 0.0, None))
    if n == 1:
        return sample.copy(), 0.0

    live = std > 0
    outer = np.outer(std, std)
    pair_mask = np.outer(live, live) & ~np.eye(n, dtype=bool)
    r_bar = float(np.mean(sample[pair_mask] / outer[pair_mask])) if pair_mask.any() else 0.0

    target = r_bar * outer
    np.fill_diagonal(target, np.diag(sample))
    return target, r_bar


def ledoit_wolf_intensity(returns: np.ndarray) -> float:
    """Analytic shrinkage intensity toward the constant-correlation target.

    Ledoit & Wolf (2004), "Honey, I Shrunk the Sample Covariance Matrix":
    delta = max(0, min(1, (pi - rho) / gamma / T)).
    """
    t, n = returns.shape
    if n == 1:
        return 0.0

    x = returns - returns.mean(axis=0)
    sample = x.T @ x / t
    var = np.diag(sample)
    std = np.sqrt(np.clip(var, 0.0, None))
    target, r_bar = _constant_correlation_target(sample)

    y = x ** 2
    pi_mat = y.T @ y / t - sample ** 2
    pi_hat = float(pi_mat.sum())

    theta = (x ** 3).T @ x / t - var[:, None] * sample
    np.fill_diagonal(theta, 0.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.where(std[:, None] > 0, std[None, :] / std[:, None], 0.0)
    rho_hat = float(np.trace(pi_mat) + r_bar * np.sum(ratio * theta))

    gamma_hat = float(np.linalg.norm(target - sample, "fro") ** 2)
    if gamma_hat <= 0:
        return 0.0
    kappa = (pi_hat - rho_hat) / gamma_hat
    return float(max(0.0, min(1.0, kappa / t)))


def _ewma_weights(n_obs: int, decay: float) -> np.ndarray:
    """Observation weights decay**age, oldest first, normalised to sum to 1."""
    ages = np.arange(n_obs - 1, -1, -1, dtype=float)
    w = decay ** ages
    return w / w.sum()


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def estimate(
    prices: PriceInput,
    method: str = "historical_mean",
    lookback_window: int | None = None,
    *,
    return_type: str = "log",
    decay: float | None = None,
    shrinkage_intensity: float | None = None,
    periods_per_year: int | None = None,
) -> Estimate:
    """Estimate per-period expected returns and covariance.

    Args:
        prices: ``{symbol: close Series}`` or a DataFrame of closes, each
            indexed by date.
        method: one of ``historical_mean``, ``exponential_weighted``,
            ``shrinkage``.
        lookback_window: number of most recent return periods to use
            (trading days for daily data).  None uses all aligned data.
        return_type: ``log`` (default) or ``simple``.
        decay: EWMA decay factor in (0, 1); defaults to settings.
        shrinkage_intensity: fixed intensity in [0, 1]; None derives it
            analytically.
        periods_per_year: annualisation factor carried on the estimate.

    Raises:
        InsufficientDataError: fewer than 2 return periods, or fewer
            periods than symbols, in the window.
        InvalidPriceSeriesError: a series is unordered, duplicated or
            non-positive.
        IllConditionedCovarianceError: covariance cannot be made PSD.
    """
    if method not in METHODS:
        raise ValidationError(f"Unknown estimation method '{method}', expected one of {METHODS}")
    if return_type not in RETURN_TYPES:
        raise ValidationError(f"Unknown return_type '{return_type}', expected one of {RETURN_TYPES}")
    if lookback_window is not None and lookback_window <= 0:
        raise ValidationError("lookback_window must be a positive number of periods")

    aligned = align_prices(prices)
    if lookback_window is not None:
        aligned = aligned.iloc[-(lookback_window + 1):]
    if len(aligned) < 2:
        raise InsufficientDataError(
            f"Need at least 2 overlapping price observations, got {len(aligned)}"
        )

    returns = compute_returns(aligned, return_type)
    n_obs, n_assets = returns.shape
    if n_obs < max(2, n_assets):
        raise InsufficientDataError(
            f"{n_obs} return observations for {n_assets} symbols; "
            f"need at least {max(2, n_assets)}"
        )

    x = returns.to_numpy()
    intensity: float | None = None

    if method == "historical_mean":
        mu = x.mean(axis=0)
        cov = np.atleast_2d(np.cov(x, rowvar=False, ddof=1))

    elif method == "exponential_weighted":
        lam = Defaults.EWMA_DECAY if decay is None else decay
        if not 0.0 < lam < 1.0:
            raise ValidationError(f"EWMA decay must be in (0, 1), got {lam}")
        w = _ewma_weights(n_obs, lam)
        mu = w @ x
        dev = x - mu
        # reliability-weight correction; reduces to N-1 as decay -> 1
        cov = (dev.T * w) @ dev / (1.0 - float(np.sum(w ** 2)))

    else:
        mu = x.mean(axis=0)
        sample = np.atleast_2d(np.cov(x, rowvar=False, ddof=1))
        if shrinkage_intensity is None:
            intensity = ledoit_wolf_intensity(x)
        elif 0.0 <= shrinkage_intensity <= 1.0:
            intensity = float(shrinkage_intensity)
        else:
            raise ValidationError("shrinkage_intensity must be in [0, 1]")
        target, _ = _constant_correlation_target(sample)
        cov = intensity * target + (1.0 - intensity) * sample

    cov, regularized = ensure_psd(cov)

    logger.info(
        "Estimated %d assets over %d periods (method=%s, returns=%s%s)",
        n_assets, n_obs, method, return_type,
        f", shrinkage={intensity:.3f}" if intensity is not None else "",
    )

    return Estimate(
        symbols=tuple(returns.columns),
        expected_returns=np.asarray(mu, dtype=float),
        covariance=cov,
        returns=returns,
        method=method,
        return_type=return_type,
        periods_per_year=periods_per_year or Defaults.TRADING_DAYS,
        shrinkage_intensity=intensity,
        regularized=regularized,
    )
