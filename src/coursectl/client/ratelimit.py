"""Token bucket rate limiter for outbound API calls.

The bucket holds up to ``burst`` tokens and refills continuously at
``rate`` tokens per second.  :meth:`RateLimiter.acquire` takes one token,
blocking when the bucket is empty.

Waiters *reserve* a future slot instead of polling: taking a token may
drive the balance negative, and the caller sleeps until the refill catches
up to its reservation.  Because reservations are handed out under a lock in
arrival order, sustained load from many threads cannot starve any one of
them.  A waiter whose context is cancelled gives its reservation back.

The limiter also adapts to the server's remaining quota (see
:meth:`RateLimiter.adjust_for_quota`).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from coursectl.context import Context
from coursectl.exceptions import CancelledError

logger = logging.getLogger(__name__)

QUOTA_WARNING_THRESHOLD = 0.5
QUOTA_CRITICAL_THRESHOLD = 0.2
SLOW_REQUESTS_PER_SECOND = 2.0
VERY_SLOW_REQUESTS_PER_SECOND = 1.0
DEFAULT_QUOTA_TOTAL = 700.0


class RateLimiter:
    """Thread-safe token bucket with continuous refill.

    Args:
        rate: Tokens per second.  ``None`` or ``0`` disables limiting.
        burst: Bucket capacity (at least 1).  The bucket starts full.
        clock: Monotonic time source, replaceable in tests.

    Example::

        limiter = RateLimiter(rate=5)
        for path in paths:
            limiter.acquire(ctx)
            send(path)
    """

    def __init__(
        self,
        rate: Optional[float],
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self._rate = float(rate or 0.0)
        self._base_rate = self._rate
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()
        self._warned: set[float] = set()

    @property
    def rate(self) -> float:
        """Current refill rate in tokens per second (0 when disabled)."""
        with self._lock:
            return self._rate

    @property
    def burst(self) -> int:
        return self._burst

    @property
    def enabled(self) -> bool:
        return self._base_rate > 0

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last)
        self._last = now
        self._tokens = min(float(self._burst), self._tokens + elapsed * self._rate)

    def acquire(self, ctx: Optional[Context] = None) -> None:
        """Take one token, waiting for the refill if necessary.

        Args:
            ctx: Bounds the wait.  Defaults to a context that never ends.

        Raises:
            CancelledError: If *ctx* is cancelled before or during the wait,
                or its deadline falls before the reserved slot.  The
                reservation is returned to the bucket.
        """
        ctx = ctx or Context.background()
        ctx.raise_if_cancelled("rate limiter wait")
        if not self.enabled:
            return

        with self._lock:
            now = self._clock()
            self._refill(now)
            self._tokens -= 1.0
            wait = -self._tokens / self._rate if self._tokens < 0 else 0.0
            remaining = ctx.remaining()
            if remaining is not None and wait > remaining:
                self._tokens += 1.0
                raise CancelledError(
                    f"rate limiter wait of {wait:.2f}s exceeds context deadline"
                )

        if wait <= 0:
            return
        if not ctx.sleep(wait):
            self._give_back()
            ctx.raise_if_cancelled("rate limiter wait")
            raise CancelledError("rate limiter wait cancelled")

    def _give_back(self) -> None:
        with self._lock:
            self._refill(self._clock())
            self._tokens = min(float(self._burst), self._tokens + 1.0)

    def set_rate(self, rate: float) -> None:
        """Change the refill rate from now on.

        Tokens accrued so far are kept; only future refill is affected.
        Setting a rate on a disabled limiter has no effect.
        """
        if not self.enabled or rate <= 0:
            return
        with self._lock:
            self._refill(self._clock())
            self._rate = float(rate)

    def adjust_for_quota(self, remaining: float, total: float = DEFAULT_QUOTA_TOTAL) -> None:
        """Slow down as the server's request quota drains.

        At or below 20% remaining the rate drops to 1 req/s, at or below 50%
        to 2 req/s (never raising a lower configured rate).  Above 50% the
        configured rate is restored.  Each downgrade warns once until the
        quota recovers.

        Args:
            remaining: Value of the ``X-Rate-Limit-Remaining`` header.
            total: Quota the remaining count is measured against.
        """
        if not self.enabled or total <= 0:
            return
        fraction = remaining / total
        if fraction <= QUOTA_CRITICAL_THRESHOLD:
            target = min(self._base_rate, VERY_SLOW_REQUESTS_PER_SECOND)
            label = "20%"
        elif fraction <= QUOTA_WARNING_THRESHOLD:
            target = min(self._base_rate, SLOW_REQUESTS_PER_SECOND)
            label = "50%"
        else:
            target = self._base_rate
            label = ""

        warn = restored = False
        with self._lock:
            if label:
                if target >= self._rate:
                    return
                warn = target not in self._warned
                self._warned.add(target)
            else:
                self._warned.clear()
                if self._rate == target:
                    return
                restored = True
            self._refill(self._clock())
            self._rate = float(target)

        if restored:
            logger.debug("API quota recovered, restoring %.1f req/sec", target)
        elif warn:
            logger.warning("API rate limit: %s remaining, slowing to %g req/sec", label, target)
