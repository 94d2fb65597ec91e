"""Canonical Pydantic models shared across all coursectl modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Persisted configuration** -- serialised as JSON in the user's config
directory: :class:`Settings`, :class:`Instance`, and :class:`GlobalConfig`.

**API core values** -- built once per invocation or exchanged between the
client, cache, and token layers: :class:`ClientConfig`, :class:`Token`,
:class:`CacheEntry`, and :class:`CacheStats`.

All models use Pydantic v2. :class:`ClientConfig` is frozen so that nothing
downstream of the CLI entry point can mutate connection settings.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from coursectl import __version__

DEFAULT_USER_AGENT = f"coursectl/{__version__}"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so comparisons never raise."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Persisted configuration ---


class Settings(BaseModel):
    """Global request and cache settings stored in :class:`GlobalConfig`."""

    requests_per_second: float = Field(
        default=5.0, ge=0, description="Outbound request rate (0 disables limiting)"
    )
    burst: int = Field(default=1, ge=1, description="Token bucket capacity")
    cache_enabled: bool = Field(default=True, description="Enable response caching")
    cache_ttl_minutes: int = Field(default=15, ge=0, description="Cache TTL in minutes")
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout")
    max_retries: int = Field(
        default=3, ge=0, description="Retries for idempotent requests on 429/5xx"
    )
    log_level: str = Field(default="warning", description="debug, info, warning, error")


class Instance(BaseModel):
    """One named LMS deployment the CLI can talk to.

    An instance authenticates either with a long-lived personal ``token``
    or with OAuth2 client credentials (``client_id`` + ``client_secret``),
    in which case the access/refresh token pair lives in the token store.
    """

    name: str
    url: str = Field(description="Base URL, e.g. https://school.instructure.com")
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    token: Optional[str] = Field(
        default=None, description="Static personal access token (alternative to OAuth)"
    )
    description: Optional[str] = None

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    @property
    def has_oauth(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def auth_type(self) -> str:
        """``"token"``, ``"oauth"``, or ``"none"``."""
        if self.has_token:
            return "token"
        if self.has_oauth:
            return "oauth"
        return "none"


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/coursectl/config.json``.

    Loaded and saved by :func:`~coursectl.config.load_global_config` and
    :func:`~coursectl.config.save_global_config`.
    """

    default_instance: Optional[str] = None
    instances: dict[str, Instance] = Field(default_factory=dict)
    settings: Settings = Field(default_factory=Settings)


# --- API core values ---


class ClientConfig(BaseModel):
    """Immutable configuration for :class:`~coursectl.client.APIClient`.

    Built once per CLI invocation by
    :func:`~coursectl.config.build_client_config` and passed down explicitly.
    Exactly one of ``token`` (static bearer token) or ``token_source``
    (auto-refreshing :class:`~coursectl.auth.TokenSource`) must be set.

    Example::

        ClientConfig(
            base_url="https://school.instructure.com",
            token="1~abc",
            requests_per_sec=5,
            cache_enabled=True,
        )
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    base_url: str
    token: Optional[str] = None
    token_source: Optional[Any] = Field(
        default=None, description="Object exposing token(ctx) and force_refresh(stale, ctx)"
    )
    requests_per_sec: Optional[float] = Field(
        default=None, ge=0, description="None or 0 disables rate limiting"
    )
    burst: int = Field(default=1, ge=1)
    cache_enabled: bool = False
    cache_ttl: float = Field(default=900.0, ge=0, description="Cache TTL in seconds")
    cache_dir: Optional[Path] = None
    timeout: float = Field(default=30.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT
    max_results: int = Field(default=0, ge=0, description="Pagination limit (0 = unlimited)")
    as_user_id: Optional[int] = Field(default=None, description="Masquerade as this user")
    max_retries: int = Field(default=3, ge=0)
    quota_total: float = Field(
        default=700.0, gt=0, description="Server request quota used for adaptive throttling"
    )
    dry_run: bool = Field(default=False, description="Print requests as curl instead of sending them")
    show_token: bool = Field(default=False, description="Show the bearer token in dry-run output")

    @field_validator("base_url")
    @classmethod
    def _normalise_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("base_url is required")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must start with http:// or https://: {value}")
        return value

    @model_validator(mode="after")
    def _exactly_one_credential(self) -> ClientConfig:
        if self.token and self.token_source is not None:
            raise ValueError("token and token_source are mutually exclusive")
        if not self.token and self.token_source is None:
            raise ValueError("token or token_source is required")
        if self.token_source is not None:
            for attr in ("token", "force_refresh"):
                if not callable(getattr(self.token_source, attr, None)):
                    raise ValueError(f"token_source must provide a callable {attr}()")
        return self


class Token(BaseModel):
    """OAuth2 token material for one instance.

    Owned by :class:`~coursectl.auth.store.TokenStore`; the token source
    keeps only a transient in-memory copy.  ``expiry=None`` means the token
    never expires (e.g. a personal access token).
    """

    access_token: str
    refresh_token: str = ""
    expiry: Optional[datetime] = None
    instance_name: str = ""

    @field_validator("expiry")
    @classmethod
    def _aware_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    def expires_within(self, skew: timedelta, now: Optional[datetime] = None) -> bool:
        """Return ``True`` if the token expires less than *skew* from *now*."""
        if self.expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expiry - now <= skew

    def to_store_json(self) -> str:
        """Serialise the fields persisted by the file token store."""
        data = self.model_dump(mode="json", include={"access_token", "refresh_token", "expiry"})
        return json.dumps(data, indent=2) + "\n"


class CacheEntry(BaseModel):
    """One cached response body as stored on disk.

    ``value`` is serialised as base64 in JSON.  On read, a ``value`` that is
    an embedded JSON document instead of a string is accepted too and
    re-encoded to bytes.
    """

    key: str = ""
    value: bytes
    expiration: datetime

    @field_validator("value", mode="before")
    @classmethod
    def _decode_value(cls, value: Any) -> bytes:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as exc:
                raise ValueError(f"value is not valid base64: {exc}") from exc
        return json.dumps(value, separators=(",", ":")).encode("utf-8")

    @field_validator("expiration")
    @classmethod
    def _aware_expiration(cls, value: datetime) -> datetime:
        return _as_utc(value)  # type: ignore[return-value]

    @field_serializer("value", when_used="json")
    def _encode_value(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """An entry is live only while its expiration is strictly in the future."""
        now = now or datetime.now(timezone.utc)
        return not self.expiration > now


class CacheStats(BaseModel):
    """Aggregate counts from one scan of the cache directory.

    Unreadable entries are excluded from every count, so
    ``total == active + expired`` always holds.
    """

    total: int = 0
    active: int = 0
    expired: int = 0

    @property
    def active_rate(self) -> float:
        """Percentage of entries that are still live (0.0 for an empty cache)."""
        if self.total == 0:
            return 0.0
        return self.active / self.total * 100
