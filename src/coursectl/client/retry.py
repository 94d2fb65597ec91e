"""Retry policy for idempotent requests.

Only idempotent methods are retried automatically.  A retry is triggered by
a 429, one of the listed 5xx statuses, or a transport error.  The delay
doubles per attempt (1 s, 2 s, 4 s) and is capped at 8 s, unless the server
sends a ``Retry-After`` header, which wins.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx

DEFAULT_MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds
MAX_BACKOFF = 8.0  # seconds
MAX_RETRY_AFTER = 60.0  # seconds

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

TRANSPORT_ERRORS = (httpx.TransportError,)


def is_idempotent(method: str) -> bool:
    return method.upper() in IDEMPOTENT_METHODS


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES


def backoff_delay(
    attempt: int,
    initial: float = INITIAL_BACKOFF,
    cap: float = MAX_BACKOFF,
) -> float:
    """Exponential backoff for the given 0-indexed attempt."""
    return min(initial * (2 ** attempt), cap)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a ``Retry-After`` header into seconds.

    Accepts both delta-seconds and an HTTP-date.  Returns ``None`` when the
    header is absent or unparseable.  Negative values clamp to 0 and very
    long waits clamp to :data:`MAX_RETRY_AFTER`.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


def retry_delay(attempt: int, response: Optional[httpx.Response] = None) -> float:
    """Delay before the next attempt, honouring ``Retry-After`` when present."""
    if response is not None:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        if retry_after is not None:
            return retry_after
    return backoff_delay(attempt)
