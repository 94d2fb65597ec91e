"""HTTP client module for coursectl.

Provides :class:`APIClient`, a synchronous client that wraps :mod:`httpx`
with rate limiting, bearer auth with refresh-on-401, response caching,
retry with exponential backoff, and ``Link``-header pagination.

Example::

    from coursectl.client import APIClient

    with APIClient(config) as client:
        courses = client.get_all_pages("/api/v1/courses", cacheable=True)
"""

from coursectl.client.cache_policy import CachePolicy
from coursectl.client.client import CACHE_HEADER, APIClient, classify_response
from coursectl.client.ratelimit import RateLimiter

__all__ = ["APIClient", "CACHE_HEADER", "CachePolicy", "RateLimiter", "classify_response"]
