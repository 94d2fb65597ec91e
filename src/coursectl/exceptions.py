"""Errors raised by coursectl and the process exit code each one maps to.

Every error is a :class:`CoursectlError` whose ``exit_code`` is one of the
constants in :mod:`coursectl.exit_codes`.
The API core never exits the process: failures are raised to the calling
command, and only the top-level handler in :func:`coursectl.app.main`
turns a ``CoursectlError`` into ``sys.exit(exc.exit_code)``.

Subclass hierarchy::

    CoursectlError (exit 1)
    +-- InvalidUsageError    (exit 2)
    +-- ConfigError          (exit 1)
    +-- CancelledError       (exit 130)
    +-- ConnectionError_     (exit 6)
    +-- CacheCorruptError    (internal, never propagated)
    +-- AuthError            (exit 3)
    |   +-- AuthExpiredError
    |   +-- TokenNotFoundError
    +-- APIError             (exit 5)
        +-- UnauthorizedError  (exit 3, also an AuthError)
        +-- ForbiddenError     (exit 3, also an AuthError)
        +-- NotFoundError      (exit 4)
        +-- RateLimitedError   (exit 5)
        +-- ServerError        (exit 5)
"""

from __future__ import annotations

from typing import Optional

from coursectl.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class CoursectlError(Exception):
    """Root of the hierarchy; ``str(exc)`` is what the user sees after ``Error:``.

    Args:
        message: Text shown on stderr.
        exit_code: Replaces the class default for this instance only.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(CoursectlError):
    """Raised for invalid CLI arguments or malformed client configuration."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(CoursectlError):
    """Raised for configuration problems (unknown instance, invalid JSON, missing URL)."""

    exit_code = EXIT_GENERIC_FAILURE


class CancelledError(CoursectlError):
    """Raised when a :class:`~coursectl.context.Context` is cancelled or its deadline passes."""

    exit_code = EXIT_CANCELLED


class ConnectionError_(CoursectlError):
    """The request never got an HTTP response: timeout, refused connection, or DNS.

    The trailing underscore keeps the builtin ``ConnectionError`` visible.
    """

    exit_code = EXIT_CONNECTION_ERROR


class CacheCorruptError(CoursectlError):
    """A cache entry file exists but cannot be read or parsed.

    Raised and caught inside :mod:`coursectl.cache.disk`; callers only ever
    observe a cache miss.
    """


class AuthError(CoursectlError):
    """Base class for authentication failures."""

    exit_code = EXIT_AUTH_FAILURE


class AuthExpiredError(AuthError):
    """The access token expired and could not be refreshed.

    The stored token is left in place so that the user can retry or log in
    again.
    """


class TokenNotFoundError(AuthError):
    """No token is stored for the requested instance."""

    def __init__(self, instance_name: str):
        super().__init__(
            f"No stored token for instance '{instance_name}'. "
            f"Run 'coursectl auth set-token --instance {instance_name}' first."
        )
        self.instance_name = instance_name


class APIError(CoursectlError):
    """An HTTP error response from the API, carrying diagnostics for the CLI layer.

    Args:
        message: Human-readable description.
        status_code: HTTP status of the final response.
        method: HTTP method of the failed request.
        endpoint: Request path (without the base URL).
        body: Raw response body text, truncated for display.
        attempts: How many times the request was sent before giving up.
    """

    exit_code = EXIT_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: int,
        method: Optional[str] = None,
        endpoint: Optional[str] = None,
        body: str = "",
        attempts: int = 1,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.method = method
        self.endpoint = endpoint
        self.body = body
        self.attempts = attempts


class UnauthorizedError(APIError, AuthError):
    """HTTP 401 that persisted after a forced token refresh (or with a static token)."""

    exit_code = EXIT_AUTH_FAILURE


class ForbiddenError(APIError, AuthError):
    """HTTP 403 -- the token is valid but lacks permission for the resource."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(APIError):
    """HTTP 404 -- the resource does not exist."""

    exit_code = EXIT_NOT_FOUND


class RateLimitedError(APIError):
    """HTTP 429 after the retry budget was exhausted.

    Attributes:
        retry_after: Seconds the server asked us to wait, if it said.
    """

    def __init__(self, *args, retry_after: Optional[float] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.retry_after = retry_after


class ServerError(APIError):
    """HTTP 5xx after the retry budget was exhausted (or on a non-idempotent request)."""
