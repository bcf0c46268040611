"""Background execution of optimization requests.

Requests for different portfolios run in parallel on a thread pool.  A new
request for the same portfolio supersedes the previous one: if the older
request has not started it is cancelled, and if it is already running its
result is marked stale.  Only in-flight requests are tracked; a finished
request drops out of the table once it completes.
"""

from __future__ import annotations

import threading
import weakref
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import Any, Callable

from portfolio_analytics.config import Defaults
from portfolio_analytics.errors import RequestSupersededError
from portfolio_analytics.utils.logger import setup_logger

logger = setup_logger("runner")


class OptimizationRunner:
    """Thread-pool runner with per-portfolio cancel-on-resubmit."""

    def __init__(self, max_workers: int | None = None) -> None:
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers or Defaults.RUNNER_WORKERS,
            thread_name_prefix="optimizer",
        )
        self._lock = threading.RLock()
        self._latest: dict[str, tuple[int, Future]] = {}
        self._owners: weakref.WeakKeyDictionary[Future, str] = weakref.WeakKeyDictionary()
        self._stale: weakref.WeakSet[Future] = weakref.WeakSet()
        self._generation = 0

    def submit(self, portfolio_id: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule ``fn(*args, **kwargs)`` as the current request for *portfolio_id*."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            previous = self._latest.get(portfolio_id)
            if previous is not None:
                self._stale.add(previous[1])
                if previous[1].cancel():
                    logger.info("Cancelled queued request for portfolio %s", portfolio_id)

            def run() -> Any:
                if not self._is_generation(portfolio_id, generation):
                    raise RequestSupersededError(f"Request for portfolio {portfolio_id} was superseded")
                return fn(*args, **kwargs)

            future = self._pool.submit(run)
            self._latest[portfolio_id] = (generation, future)
            self._owners[future] = portfolio_id
        future.add_done_callback(lambda f: self._release(portfolio_id, f))
        return future

    def _release(self, portfolio_id: str, future: Future) -> None:
        with self._lock:
            current = self._latest.get(portfolio_id)
            if current is not None and current[1] is future:
                del self._latest[portfolio_id]

    def _is_generation(self, portfolio_id: str, generation: int) -> bool:
        with self._lock:
            current = self._latest.get(portfolio_id)
            return current is not None and current[0] == generation

    def is_current(self, portfolio_id: str, future: Future) -> bool:
        """True if *future* is still the latest request for *portfolio_id*."""
        with self._lock:
            if future in self._stale or self._owners.get(future) != portfolio_id:
                return False
            current = self._latest.get(portfolio_id)
            if current is not None:
                return current[1] is future
            return future.done()

    def pending(self) -> int:
        """Number of portfolios with a request still in flight."""
        with self._lock:
            return len(self._latest)

    def result(self, portfolio_id: str, future: Future, timeout: float | None = None) -> Any:
        """Wait for *future*; raise RequestSupersededError if a newer request replaced it."""
        try:
            value = future.result(timeout=timeout)
        except CancelledError as e:
            raise RequestSupersededError(f"Request for portfolio {portfolio_id} was superseded") from e
        if not self.is_current(portfolio_id, future):
            raise RequestSupersededError(f"Request for portfolio {portfolio_id} was superseded")
        return value

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> "OptimizationRunner":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()
