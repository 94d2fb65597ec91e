"""Render a request as the equivalent ``curl`` command.

Used by the client's dry-run mode: nothing is sent, the command is printed
instead.  The bearer token is replaced by ``[REDACTED]`` unless the caller
asks to see it::

    curl -X GET 'https://school.test/api/v1/courses?per_page=100' \\
      -H 'Authorization: Bearer [REDACTED]' \\
      -H 'Accept: application/json' \\
      -H 'User-Agent: coursectl/0.1.0'
"""

from __future__ import annotations

import shlex

import httpx

DRY_RUN_HEADER = "X-Coursectl-Dry-Run"
REDACTED_AUTHORIZATION = "Bearer [REDACTED]"

_SHOWN_HEADERS = ("Authorization", "Content-Type", "Accept", "User-Agent")


def render_curl(request: httpx.Request, show_token: bool = False) -> str:
    """Return a copy-pasteable ``curl`` invocation for *request*.

    Only the headers a server cares about are included; transport headers
    that curl adds itself (``Host``, ``Content-Length``) are left out.
    """
    parts = [f"curl -X {request.method} {shlex.quote(str(request.url))}"]
    for name in _SHOWN_HEADERS:
        value = request.headers.get(name)
        if value is None:
            continue
        if name == "Authorization" and not show_token:
            value = REDACTED_AUTHORIZATION
        parts.append(f"-H {shlex.quote(f'{name}: {value}')}")
    body = request.content
    if body:
        parts.append(f"-d {shlex.quote(body.decode('utf-8', errors='replace'))}")
    return " \\\n  ".join(parts)


def placeholder_response(request: httpx.Request) -> httpx.Response:
    """The stand-in result of a dry run: ``200`` with an empty JSON array."""
    return httpx.Response(
        200,
        headers={"Content-Type": "application/json", DRY_RUN_HEADER: "1"},
        content=b"[]",
        request=request,
    )
