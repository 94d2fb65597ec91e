"""Print an :class:`httpx.Response` through the active output manager.

The status line goes to stderr as an info message and the body to stdout,
so ``coursectl api ... | jq`` sees only the payload.
"""

from __future__ import annotations

from typing import Any

import httpx

from coursectl.client.client import CACHE_HEADER
from coursectl.output import get_output


def format_api_response(response: httpx.Response) -> None:
    """Report ``HTTP <code> <reason>`` (with ``(cached)`` on hits) and render the body."""
    output = get_output()

    status = f"HTTP {response.status_code} {response.reason_phrase or ''}".rstrip()
    if response.headers.get(CACHE_HEADER) == "hit":
        status += " (cached)"
    output.info(status)

    data = extract_response_data(response)
    if data is not None:
        output.format_response(data, response.headers.get("content-type", "application/json"))


def extract_response_data(response: httpx.Response) -> Any:
    """Decoded JSON if the body parses, the raw text if not, ``None`` if empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
