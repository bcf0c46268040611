"""Caller-owned, in-memory cache of covariance estimates."""

import threading
import time
from typing import Hashable

import pandas as pd

from portfolio_analytics.analysis.estimation import PriceInput, align_prices, estimate
from portfolio_analytics.config import Defaults
from portfolio_analytics.models import Estimate
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("cache")

CacheKey = tuple[tuple[str, ...], int | None, str, object, int, tuple]


class EstimateCache:
    """Estimates keyed by (symbols, lookback, method, as_of date, price fingerprint) with TTL.

    Nothing is shared between instances; each caller owns its cache and
    invalidates it explicitly when price history changes.  The fingerprint
    hashes the aligned prices, so a corrected history with the same last
    date is a miss rather than a stale hit.
    """

    def __init__(self, ttl_seconds: float | None = None, max_entries: int = 256):
        self.ttl_seconds = Defaults.CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_entries = max_entries
        self._entries: dict[CacheKey, tuple[float, Estimate]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(
        symbols, lookback_window: int | None, method: str, as_of, fingerprint: int = 0, **options: Hashable
    ) -> CacheKey:
        return (tuple(symbols), lookback_window, method, as_of, fingerprint, tuple(sorted(options.items())))

    @staticmethod
    def fingerprint(aligned: pd.DataFrame) -> int:
        """Content hash of an aligned price frame (index and values)."""
        return int(pd.util.hash_pandas_object(aligned, index=True).sum())

    def get(self, key: CacheKey) -> Estimate | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            stored_at, value = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: CacheKey, value: Estimate) -> None:
        with self._lock:
            if len(self._entries) >= self.max_entries and key not in self._entries:
                oldest = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[oldest]
            self._entries[key] = (time.monotonic(), value)

    def get_or_estimate(
        self,
        prices: PriceInput,
        method: str = "historical_mean",
        lookback_window: int | None = None,
        **options,
    ) -> Estimate:
        """Return a cached estimate for *prices*, computing it on a miss."""
        aligned = align_prices(prices)
        as_of = aligned.index[-1] if len(aligned) else None
        key = self.make_key(
            aligned.columns, lookback_window, method, as_of, self.fingerprint(aligned), **options
        )
        cached = self.get(key)
        if cached is not None:
            return cached
        result = estimate(aligned, method, lookback_window, **options)
        self.set(key, result)
        return result

    def invalidate(self, symbols=None) -> int:
        """Drop entries touching any of *symbols* (all entries if None)."""
        with self._lock:
            if symbols is None:
                dropped = len(self._entries)
                self._entries.clear()
            else:
                targets = set(symbols)
                stale = [k for k in self._entries if targets.intersection(k[0])]
                for k in stale:
                    del self._entries[k]
                dropped = len(stale)
        logger.debug("Invalidated %d cached estimate(s)", dropped)
        return dropped

    def clear(self) -> None:
        self.invalidate(None)

    def __len__(self) -> int:
        return len(self._entries)
