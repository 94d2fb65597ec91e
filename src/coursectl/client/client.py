"""Rate-limited, caching, retrying client for the LMS REST API.

This module provides :class:`APIClient`, the single entry point every
coursectl command uses to talk to the server.  It wraps a thread-safe
:class:`httpx.Client` and layers on:

- **Rate limiting** -- every send, including retries, first takes a slot
  from the :class:`~coursectl.client.ratelimit.RateLimiter`, which also
  slows down as the server's quota header drains.
- **Response caching** -- GETs marked ``cacheable=True`` and allowed by the
  :class:`~coursectl.client.cache_policy.CachePolicy` are served from and
  stored into the :class:`~coursectl.cache.DiskCache`.
- **Bearer auth** -- a static token or one from a
  :class:`~coursectl.auth.TokenSource`; a 401 forces one refresh and one
  resend.
- **Retry with backoff** -- idempotent requests are retried on 429, 5xx,
  and transport errors (1 s, 2 s, 4 s, capped at 8 s, or ``Retry-After``).
- **Pagination** -- :meth:`APIClient.get_all_pages` follows ``rel="next"``
  links and merges the JSON arrays.
- **Error mapping** -- :func:`classify_response` turns error statuses into
  the :mod:`coursectl.exceptions` taxonomy.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import httpx

from coursectl.cache import DiskCache, make_key
from coursectl.client.cache_policy import CachePolicy
from coursectl.client.dryrun import placeholder_response, render_curl
from coursectl.client.pagination import (
    effective_limit,
    limit_reached,
    next_page_path,
    truncate,
)
from coursectl.client.ratelimit import RateLimiter
from coursectl.client.retry import (
    backoff_delay,
    is_idempotent,
    is_retryable_status,
    parse_retry_after,
    retry_delay,
)
from coursectl.config import get_response_cache_dir
from coursectl.context import Context
from coursectl.exceptions import (
    APIError,
    ConnectionError_,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    UnauthorizedError,
)
from coursectl.models import CacheStats, ClientConfig
from coursectl.output import get_output

logger = logging.getLogger(__name__)

CACHE_HEADER = "X-Coursectl-Cache"
QUOTA_HEADER = "X-Rate-Limit-Remaining"
MASQUERADE_PARAM = "as_user_id"

_PAGES_METHOD = "PAGES"


# ---------------------------------------------------------------------- #
# Error classification
# ---------------------------------------------------------------------- #


def _error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200].strip()
    if isinstance(body, dict):
        errors = body.get("errors")
        messages: list[str] = []
        if isinstance(errors, list):
            for err in errors:
                if isinstance(err, dict) and err.get("message"):
                    messages.append(str(err["message"]))
                elif isinstance(err, str):
                    messages.append(err)
        elif isinstance(errors, dict):
            for field, problems in errors.items():
                for problem in problems if isinstance(problems, list) else [problems]:
                    text = problem.get("message") if isinstance(problem, dict) else problem
                    if text:
                        messages.append(f"{field}: {text}")
        if messages:
            return "; ".join(messages)
        for field in ("message", "error"):
            if body.get(field):
                return str(body[field])
    return str(body)[:200]


def classify_response(
    response: httpx.Response,
    method: str,
    endpoint: str,
    attempts: int = 1,
) -> None:
    """Raise the typed exception matching an error response.

    2xx and 3xx responses pass through silently.

    Args:
        response: Final response of the request cycle.
        method: HTTP method of the request.
        endpoint: Request path without the base URL.
        attempts: How many sends the request cycle made.

    Raises:
        UnauthorizedError: On 401.
        ForbiddenError: On 403.
        NotFoundError: On 404.
        RateLimitedError: On 429.
        ServerError: On 5xx.
        APIError: On any other 4xx.
    """
    status = response.status_code
    if status < 400:
        return

    detail = _error_message(response)
    message = f"{method} {endpoint} failed: HTTP {status}"
    if detail:
        message = f"{message}: {detail}"
    if attempts > 1:
        message = f"{message} (after {attempts} attempts)"

    kwargs: dict[str, Any] = {
        "status_code": status,
        "method": method,
        "endpoint": endpoint,
        "body": response.text[:2000],
        "attempts": attempts,
    }
    if status == 401:
        raise UnauthorizedError(message, **kwargs)
    if status == 403:
        raise ForbiddenError(message, **kwargs)
    if status == 404:
        raise NotFoundError(message, **kwargs)
    if status == 429:
        raise RateLimitedError(
            message,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
            **kwargs,
        )
    if status >= 500:
        raise ServerError(message, **kwargs)
    raise APIError(message, **kwargs)


# ---------------------------------------------------------------------- #
# Client
# ---------------------------------------------------------------------- #


class APIClient:
    """Thread-safe API client shared by all commands of one invocation.

    Args:
        config: Immutable connection settings.
        transport: Optional :mod:`httpx` transport (``httpx.MockTransport``
            in tests).
        cache: Cache to use instead of one built from ``config.cache_dir``.
        limiter: Rate limiter to use instead of one built from the config.
        dry_run_sink: Receives the rendered ``curl`` command of each request
            when ``config.dry_run`` is set.  Defaults to stdout.

    Example::

        with APIClient(config) as client:
            courses = client.get_all_pages("/api/v1/courses", cacheable=True)
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[httpx.BaseTransport] = None,
        cache: Optional[DiskCache] = None,
        limiter: Optional[RateLimiter] = None,
        dry_run_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._config = config
        self._dry_run_sink = dry_run_sink or (lambda command: get_output().print_data(command))
        self._limiter = limiter or RateLimiter(config.requests_per_sec, config.burst)
        self._policy = CachePolicy(config.cache_enabled and not config.dry_run)
        if cache is None and (config.cache_enabled or config.cache_dir is not None):
            cache = DiskCache(config.cache_dir or get_response_cache_dir())
        self._cache = cache
        self._http = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            headers={
                "Accept": "application/json",
                "User-Agent": config.user_agent,
            },
            follow_redirects=True,
            transport=transport,
        )

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> APIClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the underlying connection pool."""
        self._http.close()

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def cache(self) -> Optional[DiskCache]:
        return self._cache

    def is_cache_enabled(self) -> bool:
        return self._config.cache_enabled and self._cache is not None

    def cache_stats(self) -> CacheStats:
        if self._cache is None:
            return CacheStats()
        return self._cache.stats()

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    def clear_expired_cache(self) -> int:
        if self._cache is None:
            return 0
        return self._cache.clear_expired()

    # ------------------------------------------------------------------ #
    # Public request methods
    # ------------------------------------------------------------------ #

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        data: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        cacheable: bool = False,
        ctx: Optional[Context] = None,
    ) -> httpx.Response:
        """Send one request through the full pipeline.

        Args:
            method: HTTP method.
            path: Path relative to ``base_url``, optionally with a query string.
            params: Query parameters.
            json_body: JSON-serialisable request body.
            data: Form-encoded request body.
            headers: Extra request headers.
            cacheable: Opt in to the response cache (GET only, subject to
                the cache policy).
            ctx: Cancellation and deadline for the whole cycle.

        Returns:
            The successful :class:`httpx.Response`.  Cache hits carry the
            ``X-Coursectl-Cache: hit`` header.  In dry-run mode nothing is
            sent and a placeholder ``200 []`` response is returned.

        Raises:
            APIError: Or a subclass, for error statuses (see
                :func:`classify_response`).
            ConnectionError_: On transport failure after retries.
            AuthExpiredError: If a needed token refresh failed.
            CancelledError: If *ctx* ended.
        """
        ctx = ctx or Context.background()
        method = method.upper()
        params = self._with_masquerade(path, params)
        endpoint = urlsplit(path).path or path

        if self._config.dry_run:
            return self._dry_run(method, path, params, json_body, data, headers, ctx)

        self._limiter.acquire(ctx)

        key: Optional[str] = None
        if self._cache is not None and self._policy.allows(method, path, cacheable):
            key = make_key(method, self._absolute(path), params, self._config.as_user_id)
            body = self._cache.get(key)
            if body is not None:
                logger.debug("Cache hit: %s %s", method, path)
                return self._cached_response(method, path, body)

        response, attempts = self._execute(method, path, params, json_body, data, headers, ctx)
        classify_response(response, method, endpoint, attempts)

        if key is not None and response.is_success:
            self._cache.set(key, response.content, self._config.cache_ttl)  # type: ignore[union-attr]
        return response

    def get(self, path: str, **kwargs: Any) -> httpx.Response:
        """Send a GET request.  ``kwargs`` are forwarded to :meth:`request`."""
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("DELETE", path, **kwargs)

    def get_json(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        *,
        cacheable: bool = False,
        ctx: Optional[Context] = None,
    ) -> Any:
        """GET *path* and decode the JSON body."""
        response = self.get(path, params=params, cacheable=cacheable, ctx=ctx)
        return _decode_json(response, "GET", path)

    def post_json(self, path: str, body: Any = None, *, ctx: Optional[Context] = None) -> Any:
        """POST a JSON body and decode the JSON reply (``None`` for an empty reply)."""
        response = self.post(path, json_body=body, ctx=ctx)
        return _decode_json(response, "POST", path)

    def put_json(self, path: str, body: Any = None, *, ctx: Optional[Context] = None) -> Any:
        """PUT a JSON body and decode the JSON reply (``None`` for an empty reply)."""
        response = self.put(path, json_body=body, ctx=ctx)
        return _decode_json(response, "PUT", path)

    def get_all_pages(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        cacheable: bool = False,
        ctx: Optional[Context] = None,
    ) -> list[Any]:
        """Fetch every page of a list endpoint and return the merged items.

        Follows ``rel="next"`` links in server order until none remains or
        the limit is reached; the result is truncated to exactly the limit.
        An unlimited, cacheable listing is cached as one merged document.

        Args:
            path: First page path.
            params: Query parameters for the first page (later pages carry
                them in their ``next`` links).
            limit: Maximum items; falls back to ``config.max_results``
                (0 = unlimited).
            cacheable: Opt in to caching the merged result.
            ctx: Cancellation and deadline for the whole listing.
        """
        ctx = ctx or Context.background()
        limit = effective_limit(limit, self._config.max_results)
        params = self._with_masquerade(path, params)

        key: Optional[str] = None
        if (
            limit == 0
            and self._cache is not None
            and self._policy.allows("GET", path, cacheable)
        ):
            key = make_key(_PAGES_METHOD, self._absolute(path), params, self._config.as_user_id)
            cached = self._cache.get(key)
            if cached is not None:
                try:
                    items = json.loads(cached)
                except ValueError:
                    logger.debug("Ignoring undecodable cached listing for %s", path)
                else:
                    if isinstance(items, list):
                        logger.debug("Cache hit: %d item(s) for %s", len(items), path)
                        return items

        items: list[Any] = []
        next_path: Optional[str] = path
        next_params = params
        pages = 0
        while next_path is not None:
            response = self.request("GET", next_path, params=next_params, ctx=ctx)
            page = _decode_json(response, "GET", next_path)
            if not isinstance(page, list):
                raise APIError(
                    f"GET {path}: expected a JSON array, got {type(page).__name__}",
                    status_code=response.status_code,
                    method="GET",
                    endpoint=path,
                    body=response.text[:2000],
                )
            pages += 1
            items.extend(page)
            if limit_reached(items, limit):
                break
            next_path = next_page_path(response, self._config.base_url)
            next_params = None

        items = truncate(items, limit)
        logger.debug("Fetched %d item(s) in %d page(s) from %s", len(items), pages, path)
        if key is not None:
            self._cache.set(key, json.dumps(items).encode("utf-8"), self._config.cache_ttl)  # type: ignore[union-attr]
        return items

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _absolute(self, path: str) -> str:
        if httpx.URL(path).is_absolute_url:
            return path
        return f"{self._config.base_url}/{path.lstrip('/')}"

    def _with_masquerade(
        self,
        path: str,
        params: Optional[dict[str, Any]],
    ) -> Optional[dict[str, Any]]:
        """Add ``as_user_id`` unless the caller or the path already carries it."""
        if self._config.as_user_id is None:
            return params
        if params and MASQUERADE_PARAM in params:
            return params
        if f"{MASQUERADE_PARAM}=" in urlsplit(path).query:
            return params
        merged = dict(params or {})
        merged[MASQUERADE_PARAM] = self._config.as_user_id
        return merged

    def _cached_response(self, method: str, path: str, body: bytes) -> httpx.Response:
        return httpx.Response(
            status_code=200,
            headers={"Content-Type": "application/json", CACHE_HEADER: "hit"},
            content=body,
            request=httpx.Request(method, self._absolute(path)),
        )

    def _dry_run(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]],
        json_body: Any,
        data: Optional[dict[str, Any]],
        headers: Optional[dict[str, str]],
        ctx: Context,
    ) -> httpx.Response:
        """Print the request as ``curl`` and answer with an empty JSON array."""
        request = self._http.build_request(
            method,
            path,
            params=params,
            json=json_body,
            data=data,
            headers={"Authorization": f"Bearer {self._bearer(ctx)}", **(headers or {})},
        )
        self._dry_run_sink(render_curl(request, self._config.show_token))
        logger.debug("Dry run: %s %s not sent", method, path)
        return placeholder_response(request)

    def _bearer(self, ctx: Context) -> str:
        if self._config.token_source is not None:
            return self._config.token_source.token(ctx)
        return self._config.token or ""

    def _timeout(self, ctx: Context) -> float:
        remaining = ctx.remaining()
        if remaining is None:
            return self._config.timeout
        return max(min(self._config.timeout, remaining), 0.001)

    def _backoff(self, ctx: Context, delay: float) -> None:
        if not ctx.sleep(delay):
            ctx.raise_if_cancelled("retry backoff")

    def _observe_quota(self, response: httpx.Response) -> None:
        remaining = response.headers.get(QUOTA_HEADER)
        if not remaining:
            return
        try:
            value = float(remaining)
        except ValueError:
            return
        self._limiter.adjust_for_quota(value, self._config.quota_total)

    def _execute(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]],
        json_body: Any,
        data: Optional[dict[str, Any]],
        headers: Optional[dict[str, str]],
        ctx: Context,
    ) -> tuple[httpx.Response, int]:
        """Send with auth, the one-shot 401 refresh, and idempotent retries.

        The caller has already taken the first rate-limiter slot.

        Returns:
            The final response and the number of sends made.
        """
        idempotent = is_idempotent(method)
        max_retries = self._config.max_retries
        attempts = 0
        retries = 0
        refreshed = False

        while True:
            if attempts > 0:
                self._limiter.acquire(ctx)
            ctx.raise_if_cancelled(f"{method} {path}")
            token = self._bearer(ctx)
            request_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
            attempts += 1

            try:
                response = self._http.request(
                    method,
                    path,
                    params=params,
                    json=json_body,
                    data=data,
                    headers=request_headers,
                    timeout=self._timeout(ctx),
                )
            except httpx.TransportError as exc:
                if idempotent and retries < max_retries:
                    delay = backoff_delay(retries)
                    retries += 1
                    logger.warning(
                        "Request failed (%s), retrying in %.0fs (retry %d/%d)",
                        exc, delay, retries, max_retries,
                    )
                    self._backoff(ctx, delay)
                    continue
                raise ConnectionError_(
                    f"{method} {path}: connection failed after {attempts} attempt(s): {exc}"
                ) from exc

            self._observe_quota(response)
            status = response.status_code

            if status == 401 and self._config.token_source is not None and not refreshed:
                refreshed = True
                response.close()
                logger.debug("Got 401 for %s %s, forcing token refresh", method, path)
                self._config.token_source.force_refresh(token, ctx)
                continue

            if idempotent and is_retryable_status(status) and retries < max_retries:
                delay = retry_delay(retries, response)
                retries += 1
                response.close()
                logger.warning(
                    "HTTP %d from %s %s, retrying in %.0fs (retry %d/%d)",
                    status, method, path, delay, retries, max_retries,
                )
                self._backoff(ctx, delay)
                continue

            return response, attempts


def _decode_json(response: httpx.Response, method: str, path: str) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise APIError(
            f"{method} {path}: response is not valid JSON",
            status_code=response.status_code,
            method=method,
            endpoint=path,
            body=response.text[:2000],
        ) from exc
