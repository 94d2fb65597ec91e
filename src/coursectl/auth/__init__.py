"""Token storage and refresh for coursectl.

- :mod:`~coursectl.auth.store` -- per-instance token persistence (OS keyring
  with a file fallback).
- :mod:`~coursectl.auth.oauth` -- the OAuth2 refresh-token grant.
- :mod:`~coursectl.auth.token_source` -- thread-safe, single-flight access
  token provider used by :class:`~coursectl.client.APIClient`.
"""

from coursectl.auth.oauth import OAuth2Refresher
from coursectl.auth.store import (
    FallbackTokenStore,
    FileTokenStore,
    KeyringTokenStore,
    TokenStore,
    create_token_store,
)
from coursectl.auth.token_source import DEFAULT_SKEW, TokenSource

__all__ = [
    "DEFAULT_SKEW",
    "FallbackTokenStore",
    "FileTokenStore",
    "KeyringTokenStore",
    "OAuth2Refresher",
    "TokenSource",
    "TokenStore",
    "create_token_store",
]
