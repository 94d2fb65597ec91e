"""``Link``-header pagination helpers.

List endpoints answer with a header such as::

    Link: <https://school.instructure.com/api/v1/courses?page=2&per_page=10>; rel="next",
          <https://school.instructure.com/api/v1/courses?page=1&per_page=10>; rel="first"

The client follows ``rel="next"`` until it disappears or the result limit
is reached.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


def next_link(response: httpx.Response) -> Optional[str]:
    """Return the raw ``rel="next"`` URL from *response*, if any."""
    link = response.links.get("next")
    if not link:
        return None
    return link.get("url") or None


def relative_to_base(url: str, base_url: str) -> Optional[str]:
    """Reduce an absolute next-page URL on the API host to ``path?query``.

    The result is relative to *base_url*, so a base path such as
    ``/canvas`` is stripped from the link.  A same-host link outside that
    base path is returned whole.  Relative URLs are returned unchanged.
    URLs pointing at a different host return ``None`` so credentials are
    never sent elsewhere.
    """
    target = httpx.URL(url)
    if not target.is_absolute_url:
        return url
    base = httpx.URL(base_url)
    if (target.scheme, target.host, target.port) != (base.scheme, base.host, base.port):
        logger.warning("Ignoring pagination link to foreign host %s", target.host)
        return None
    raw = target.raw_path.decode("ascii")
    prefix = base.raw_path.decode("ascii").split("?", 1)[0].rstrip("/")
    if not prefix:
        return raw
    path, sep, query = raw.partition("?")
    if path == prefix or path.startswith(prefix + "/"):
        return (path[len(prefix):] or "/") + sep + query
    return url


def next_page_path(response: httpx.Response, base_url: str) -> Optional[str]:
    """The path-plus-query of the next page, or ``None`` on the last page."""
    url = next_link(response)
    if url is None:
        return None
    return relative_to_base(url, base_url)


def effective_limit(limit: Optional[int], max_results: int) -> int:
    """Explicit *limit* wins over the configured ``max_results``; 0 means unlimited."""
    if limit is not None and limit > 0:
        return limit
    return max(max_results, 0)


def limit_reached(items: list[Any], limit: int) -> bool:
    return limit > 0 and len(items) >= limit


def truncate(items: list[Any], limit: int) -> list[Any]:
    """Cut *items* to exactly *limit* entries (no-op when unlimited)."""
    if limit > 0 and len(items) > limit:
        return items[:limit]
    return items
