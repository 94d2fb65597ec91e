"""Cancellation and deadline handle for blocking operations.

A :class:`Context` is passed to every call in the API core that may block
(rate-limiter waits, retry backoff, token refresh, HTTP round-trips).
Cancelling it, from another thread or a signal handler, wakes any sleeper
immediately. A deadline set with ``timeout`` behaves like a cancellation
that fires by itself.

Example::

    ctx = Context(timeout=10)
    client.get("/api/v1/courses", ctx=ctx)   # raises CancelledError after 10 s
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from coursectl.exceptions import CancelledError


class Context:
    """Cancellable, optionally time-bounded scope for a unit of work.

    Args:
        timeout: Seconds from now after which the context counts as
            cancelled.  ``None`` means no deadline.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )

    @classmethod
    def background(cls) -> Context:
        """Return a context that is never cancelled and has no deadline."""
        return cls()

    def cancel(self) -> None:
        """Cancel the context and wake every thread sleeping on it."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """``True`` once :meth:`cancel` was called or the deadline has passed."""
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, ``None`` without one, never negative."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def sleep(self, seconds: float) -> bool:
        """Sleep for *seconds* unless the context ends first.

        Returns:
            ``True`` if the full duration elapsed, ``False`` if the context
            was cancelled or hit its deadline before that.
        """
        if self.cancelled:
            return False
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            return False
        return not self._event.wait(max(0.0, seconds))

    def raise_if_cancelled(self, what: str = "operation") -> None:
        """Raise :class:`~coursectl.exceptions.CancelledError` if the context has ended."""
        if self.cancelled:
            reason = "deadline exceeded" if not self._event.is_set() else "cancelled"
            raise CancelledError(f"{what} {reason}")
