"""Auto-refreshing access tokens with single-flight refresh.

:class:`TokenSource` hands out a valid access token for one instance.  When
the cached token is within the skew window of its expiry, it refreshes
through an :class:`~coursectl.auth.oauth.OAuth2Refresher` first.

Concurrent callers that discover the expiry together share one refresh:
the first becomes the leader and performs the network call, the others
block on the same :class:`concurrent.futures.Future`.  The leader persists
the new token to the :class:`~coursectl.auth.store.TokenStore` *before*
resolving the future, so every caller that receives the new token can rely
on it being stored.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from coursectl.auth.oauth import OAuth2Refresher
from coursectl.auth.store import BACKEND_ERRORS, TokenStore
from coursectl.context import Context
from coursectl.exceptions import CancelledError
from coursectl.models import Token

logger = logging.getLogger(__name__)

DEFAULT_SKEW = timedelta(minutes=5)

_WAIT_SLICE = 0.05  # seconds between cancellation checks while waiting


class TokenSource:
    """Thread-safe provider of valid access tokens for one instance.

    The stored token is loaded lazily on first use and kept in memory.  The
    in-memory copy and the in-flight refresh are guarded by one lock; the
    network call runs outside it.

    Args:
        store: Backend holding the token material.
        instance_name: Instance whose token is served.
        refresher: Performs the refresh-token grant.
        skew: Refresh this long before the token actually expires.
        clock: Returns the current aware datetime, replaceable in tests.
    """

    def __init__(
        self,
        store: TokenStore,
        instance_name: str,
        refresher: OAuth2Refresher,
        skew: timedelta = DEFAULT_SKEW,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._instance = instance_name
        self._refresher = refresher
        self._skew = skew
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._token: Optional[Token] = None
        self._inflight: Optional[Future[Token]] = None

    @property
    def instance_name(self) -> str:
        return self._instance

    def _current(self) -> Token:
        """Return the in-memory token, loading it from the store once.  Lock held."""
        if self._token is None:
            self._token = self._store.load(self._instance)
        return self._token

    def _join_or_lead(self) -> tuple[Future[Token], bool]:
        """Return the in-flight refresh, starting one if needed.  Lock held."""
        if self._inflight is not None:
            return self._inflight, False
        self._inflight = Future()
        return self._inflight, True

    def token(self, ctx: Optional[Context] = None) -> str:
        """Return a valid access token, refreshing it first if it is about to expire.

        Raises:
            TokenNotFoundError: If nothing is stored for the instance.
            AuthExpiredError: If a needed refresh failed.
            CancelledError: If *ctx* ended while waiting.
        """
        ctx = ctx or Context.background()
        ctx.raise_if_cancelled("token lookup")
        with self._lock:
            current = self._current()
            if not current.expires_within(self._skew, self._clock()):
                return current.access_token
            future, leader = self._join_or_lead()
        logger.debug("Access token for %s expires soon, refreshing", self._instance)
        return self._settle(future, leader, current, ctx)

    def force_refresh(
        self,
        stale_access_token: Optional[str] = None,
        ctx: Optional[Context] = None,
    ) -> str:
        """Refresh regardless of the recorded expiry (used after a 401).

        If the in-memory token no longer equals *stale_access_token*,
        another caller has refreshed in the meantime and its token is
        returned without a network call.
        """
        ctx = ctx or Context.background()
        ctx.raise_if_cancelled("token refresh")
        with self._lock:
            current = self._current()
            if stale_access_token is not None and current.access_token != stale_access_token:
                return current.access_token
            future, leader = self._join_or_lead()
        return self._settle(future, leader, current, ctx)

    def _settle(self, future: Future[Token], leader: bool, current: Token, ctx: Context) -> str:
        while True:
            if leader:
                return self._lead_refresh(future, current, ctx).access_token
            try:
                return future.result(timeout=_WAIT_SLICE).access_token
            except FutureTimeoutError:
                ctx.raise_if_cancelled("waiting for token refresh")
            except _LeaderCancelled:
                # The leader's own context ended; run the refresh ourselves.
                ctx.raise_if_cancelled("waiting for token refresh")
                with self._lock:
                    current = self._current()
                    future, leader = self._join_or_lead()

    def _lead_refresh(self, future: Future[Token], current: Token, ctx: Context) -> Token:
        try:
            fresh = self._refresher.refresh(current, ctx)
        except CancelledError:
            self._resolve(future, error=_LeaderCancelled())
            raise
        except BaseException as exc:
            self._resolve(future, error=exc)
            raise

        try:
            self._persist(fresh)
        except BaseException as exc:
            # The grant may have rotated the refresh token, so keep the new one.
            self._resolve(future, fresh=fresh, error=exc)
            raise

        self._resolve(future, fresh=fresh)
        logger.debug("Refreshed access token for %s", self._instance)
        return fresh

    def _persist(self, fresh: Token) -> None:
        try:
            self._store.save(self._instance, fresh)
        except BACKEND_ERRORS as exc:
            logger.warning("Could not persist refreshed token for %s: %s", self._instance, exc)

    def _resolve(
        self,
        future: Future[Token],
        fresh: Optional[Token] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """End the in-flight refresh and publish its outcome to the waiters."""
        with self._lock:
            if fresh is not None:
                self._token = fresh
            self._inflight = None
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(fresh)


class _LeaderCancelled(Exception):
    """Handed to waiters when the refreshing caller's context ended first."""
