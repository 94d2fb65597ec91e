"""Cache key derivation.

A key is ``"v1:" + sha256("METHOD|URL|canonical-query|as_user")``.  The query
is canonicalised by merging any query string already present on the URL
with the explicit parameters, then sorting and URL-encoding the pairs, so
``?b=2&a=1`` and ``{"a": 1, "b": 2}`` produce the same key.

Bump :data:`KEY_VERSION` whenever the cached representation changes: old
entries then simply stop matching instead of being mis-served.
"""

from __future__ import annotations

import hashlib
from typing import Any, Iterable, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

KEY_VERSION = "v1"

Params = Union[Mapping[str, Any], Iterable[tuple[str, Any]], None]


def _pairs(params: Params) -> list[tuple[str, str]]:
    if not params:
        return []
    items = params.items() if isinstance(params, Mapping) else params
    pairs: list[tuple[str, str]] = []
    for name, value in items:
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((str(name), _scalar(v)) for v in value)
        else:
            pairs.append((str(name), _scalar(value)))
    return pairs


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def canonical_query(url: str, params: Params = None) -> tuple[str, str]:
    """Split *url* and return ``(url_without_query, canonical_query)``."""
    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True) + _pairs(params)
    bare = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return bare, urlencode(sorted(pairs))


def make_key(
    method: str,
    url: str,
    params: Params = None,
    as_user_id: Optional[int] = None,
) -> str:
    """Return the versioned cache key for one request.

    Args:
        method: HTTP method (case-insensitive).
        url: Absolute request URL, optionally with a query string.
        params: Extra query parameters (mapping or list of pairs).
        as_user_id: Masquerade user, which makes the response caller-specific.
    """
    bare, query = canonical_query(url, params)
    as_user = "" if as_user_id is None else str(as_user_id)
    raw = "|".join([method.upper(), bare, query, as_user])
    return f"{KEY_VERSION}:{hashlib.sha256(raw.encode('utf-8')).hexdigest()}"


def entry_filename(key: str) -> str:
    """Filesystem-safe, stable file name for the entry holding *key*."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest() + ".json"
