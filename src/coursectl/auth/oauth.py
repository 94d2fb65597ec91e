"""OAuth2 refresh-token grant.

:class:`OAuth2Refresher` exchanges a refresh token for a new access token
at the instance's token endpoint.  It is the only network call the
:class:`~coursectl.auth.token_source.TokenSource` makes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from coursectl.context import Context
from coursectl.exceptions import AuthExpiredError
from coursectl.models import Token

logger = logging.getLogger(__name__)

TOKEN_PATH = "/login/oauth2/token"


class OAuth2Refresher:
    """Refresh access tokens with the ``refresh_token`` grant.

    Args:
        token_url: Absolute URL of the OAuth2 token endpoint.
        client_id: Developer key client id.
        client_secret: Developer key secret.
        timeout: HTTP timeout in seconds.
        transport: Optional :mod:`httpx` transport, used by tests.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def for_instance(
        cls,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> OAuth2Refresher:
        """Build a refresher for ``<base_url>/login/oauth2/token``."""
        return cls(
            base_url.rstrip("/") + TOKEN_PATH,
            client_id,
            client_secret,
            timeout=timeout,
            transport=transport,
        )

    def refresh(self, token: Token, ctx: Optional[Context] = None) -> Token:
        """Exchange ``token.refresh_token`` for a new token.

        The returned token keeps the old refresh token when the server does
        not issue a new one.

        Raises:
            AuthExpiredError: If there is no refresh token, the request
                fails, the server rejects it, or the response lacks
                ``access_token``.
            CancelledError: If *ctx* ended before the request was sent.
        """
        ctx = ctx or Context.background()
        ctx.raise_if_cancelled("token refresh")
        if not token.refresh_token:
            raise AuthExpiredError(
                "Access token expired and no refresh token is stored; log in again"
            )

        data = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        timeout = self._timeout
        remaining = ctx.remaining()
        if remaining is not None:
            timeout = min(timeout, max(remaining, 0.001))

        logger.debug("Refreshing access token at %s", self.token_url)
        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.post(
                    self.token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise AuthExpiredError(f"Token refresh failed: {exc}") from exc

        if not response.is_success:
            raise AuthExpiredError(
                f"Token refresh rejected (HTTP {response.status_code}): "
                f"{_error_detail(response)}"
            )

        try:
            token_data: dict[str, Any] = response.json()
        except ValueError as exc:
            raise AuthExpiredError("Token refresh response is not valid JSON") from exc
        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise AuthExpiredError("Token refresh response missing 'access_token' field")

        expiry = None
        expires_in = token_data.get("expires_in")
        if expires_in is not None:
            try:
                expiry = datetime.now(timezone.utc) + timedelta(seconds=float(expires_in))
            except (TypeError, ValueError):
                logger.debug("Ignoring non-numeric expires_in: %r", expires_in)

        return Token(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or token.refresh_token,
            expiry=expiry,
            instance_name=token.instance_name,
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error_description") or body.get("error") or body)
    return str(body)[:200]
