"""Portfolio analytics engine: estimation, risk, optimization, frontier."""

__version__ = "1.0.0"
