"""Exception taxonomy for the analytics engine.

Data and estimation errors propagate to the caller.  Feasibility and
convergence problems are raised inside the optimizer and converted into
structured ``OptimizationResult`` objects before they leave ``optimize``.
"""

from __future__ import annotations

import numpy as np


class AnalyticsError(Exception):
    """Base class for every error raised by the engine."""


class InsufficientDataError(AnalyticsError):
    """Too few price observations for the requested estimator/lookback."""


class InvalidPriceSeriesError(AnalyticsError, ValueError):
    """A price series is unordered, has duplicate dates or non-positive prices."""


class IllConditionedCovarianceError(AnalyticsError):
    """Covariance matrix is not PSD even after eigenvalue clipping."""


class ValidationError(AnalyticsError, ValueError):
    """Input rejected at the engine boundary."""


class InfeasibleConstraintsError(AnalyticsError):
    """The constraint set admits no weight vector."""


class ConvergenceError(AnalyticsError):
    """An iterative solver hit its iteration cap before meeting tolerance.

    Carries the best-effort weights so the caller can decide whether an
    approximate answer is acceptable.
    """

    def __init__(self, message: str, weights: np.ndarray, iterations: int) -> None:
        super().__init__(message)
        self.weights = weights
        self.iterations = iterations


class RequestSupersededError(AnalyticsError):
    """A queued request was replaced by a newer one for the same portfolio."""
