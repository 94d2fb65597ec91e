"""Raw API command -- send any request through the full client pipeline.

Useful for endpoints that have no dedicated command yet, and for checking
what the rate limiter, cache, and token refresh do on a real server::

    coursectl api GET /api/v1/courses --paginate --cache
    coursectl api GET /api/v1/courses/42 -q include[]=term
    coursectl api PUT /api/v1/courses/42 -d '{"course": {"name": "Intro"}}'
    coursectl api DELETE /api/v1/courses/42 --dry-run
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

from coursectl.exceptions import InvalidUsageError

_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


def parse_query(pairs: list[str]) -> dict[str, Any]:
    """Turn ``["a=1", "b[]=x", "b[]=y"]`` into ``{"a": "1", "b[]": ["x", "y"]}``.

    Raises:
        InvalidUsageError: If an item has no ``=``.
    """
    params: dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise InvalidUsageError(f"Query parameter must look like key=value: {pair!r}")
        key, value = pair.split("=", 1)
        if key in params:
            existing = params[key]
            params[key] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            params[key] = value
    return params


def parse_body(data: Optional[str]) -> Any:
    """Parse ``--data`` as JSON; ``@path`` reads the JSON from a file.

    Raises:
        InvalidUsageError: If the text (or file) is not valid JSON.
    """
    if data is None:
        return None
    if data.startswith("@"):
        try:
            data = Path(data[1:]).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            raise InvalidUsageError(f"Cannot read request body file: {exc}") from exc
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        raise InvalidUsageError(f"--data is not valid JSON: {exc}") from exc


def build_client(ctx: typer.Context, **overrides: Any):  # noqa: ANN201
    """Build an :class:`~coursectl.client.APIClient` for the selected instance."""
    from coursectl.client import APIClient
    from coursectl.config import build_client_config, load_global_config

    obj = ctx.obj or {}
    config = build_client_config(load_global_config(), obj.get("instance"), overrides)
    return APIClient(config)


def api_command(
    ctx: typer.Context,
    method: str = typer.Argument(help="HTTP method (GET, POST, PUT, PATCH, DELETE)."),
    path: str = typer.Argument(help="API path, e.g. /api/v1/courses."),
    query: list[str] = typer.Option(
        [], "--query", "-q", help="Query parameter key=value (repeatable)."
    ),
    data: Optional[str] = typer.Option(
        None, "--data", "-d", help="JSON request body, or @file to read it from a file."
    ),
    paginate: bool = typer.Option(
        False, "--paginate", help="Follow pagination links and merge all pages."
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", min=1, help="Stop after this many items when paginating."
    ),
    cache: bool = typer.Option(False, "--cache", help="Allow the response cache for this GET."),
    as_user: Optional[int] = typer.Option(
        None, "--as-user", help="Masquerade as this user id (admin only)."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the request as a curl command instead of sending it."
    ),
    show_token: bool = typer.Option(
        False, "--show-token", help="Include the real bearer token in --dry-run output."
    ),
) -> None:
    """Send a raw request and print the response body."""
    from coursectl.client.response import format_api_response
    from coursectl.output import get_output

    method = method.upper()
    if method not in _METHODS:
        raise InvalidUsageError(f"Unsupported method {method!r}; use one of {', '.join(_METHODS)}")
    if paginate and method != "GET":
        raise InvalidUsageError("--paginate only applies to GET requests")

    params = parse_query(query) or None
    body = parse_body(data)

    overrides = {"as_user_id": as_user, "dry_run": dry_run, "show_token": show_token}
    with build_client(ctx, **overrides) as client:
        if paginate:
            items = client.get_all_pages(path, params, limit=limit, cacheable=cache)
            if not dry_run:
                get_output().format_response(items)
            return
        response = client.request(
            method, path, params=params, json_body=body, cacheable=cache,
        )
        if not dry_run:
            format_api_response(response)
