"""Which requests may use the response cache.

A request is cache-eligible only when all of these hold:

1. caching is enabled on the client,
2. the method is ``GET``,
3. the caller marked the request ``cacheable=True``, and
4. the path matches none of :data:`DEFAULT_DENY_PATTERNS`.

The deny-list names resources whose content depends on the calling user or
changes within a session (inbox, planner, async job progress, ...).  It
overrides the caller's mark, so a command cannot accidentally cache them.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Pattern

DEFAULT_DENY_PATTERNS: tuple[str, ...] = (
    r"(^|/)users/self(/|$)",
    r"(^|/)conversations(/|$)",
    r"(^|/)planner(_notes)?(/|$)",
    r"(^|/)activity_stream(/|$)",
    r"(^|/)todo(_item_count)?(/|$)",
    r"(^|/)upcoming_events(/|$)",
    r"(^|/)progress(/|$)",
    r"(^|/)sis_imports(/|$)",
)


class CachePolicy:
    """Decides cache eligibility for a single request.

    Args:
        enabled: Master switch (``ClientConfig.cache_enabled``).
        deny_patterns: Regexes matched against the request path without its
            query string.  Defaults to :data:`DEFAULT_DENY_PATTERNS`.
    """

    def __init__(
        self,
        enabled: bool,
        deny_patterns: Optional[Iterable[str]] = None,
    ) -> None:
        self.enabled = enabled
        patterns = DEFAULT_DENY_PATTERNS if deny_patterns is None else tuple(deny_patterns)
        self._deny: list[Pattern[str]] = [re.compile(p) for p in patterns]

    def is_denied(self, path: str) -> bool:
        """``True`` if *path* matches a deny pattern."""
        bare = path.split("?", 1)[0].strip("/")
        return any(p.search(bare) for p in self._deny)

    def allows(self, method: str, path: str, cacheable: bool) -> bool:
        if not (self.enabled and cacheable):
            return False
        if method.upper() != "GET":
            return False
        return not self.is_denied(path)
