"""Persistent token storage scoped per instance.

Token material for each configured instance is kept in one of two
backends:

* :class:`KeyringTokenStore` -- the operating system keyring, through the
  :mod:`keyring` library.  Preferred whenever a usable backend exists.
* :class:`FileTokenStore` -- one JSON file per instance under
  ``<config_dir>/tokens/``, written atomically with ``0o600`` permissions.

:func:`create_token_store` combines both into a :class:`FallbackTokenStore`
so callers never need to know which backend served a request.

Example::

    store = create_token_store(get_config_dir())
    store.save("school", Token(access_token="1~abc", refresh_token="r1"))
    token = store.load("school")
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from pydantic import ValidationError

from coursectl.config import _atomic_write, get_config_dir
from coursectl.exceptions import InvalidUsageError, TokenNotFoundError
from coursectl.models import Token

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "coursectl"

BACKEND_ERRORS = (KeyringError, OSError, RuntimeError)
"""Exceptions that mean a backend is unusable, as opposed to a missing token."""

_INSTANCE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _parse_token(instance_name: str, text: str) -> Token:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("token document is not a JSON object")
    data["instance_name"] = instance_name
    return Token.model_validate(data)


class TokenStore(ABC):
    """Abstract per-instance token persistence."""

    @abstractmethod
    def save(self, instance_name: str, token: Token) -> None:
        """Persist *token* for *instance_name*, replacing any previous value."""

    @abstractmethod
    def load(self, instance_name: str) -> Token:
        """Return the stored token.

        Raises:
            TokenNotFoundError: If nothing usable is stored.
        """

    @abstractmethod
    def delete(self, instance_name: str) -> None:
        """Remove the stored token.  Deleting a missing token is not an error."""

    def exists(self, instance_name: str) -> bool:
        try:
            self.load(instance_name)
        except TokenNotFoundError:
            return False
        return True

    @property
    def name(self) -> str:
        """Short backend name for status output."""
        return type(self).__name__


class KeyringTokenStore(TokenStore):
    """Token store backed by the OS keyring.

    The token is stored as a JSON document in the password slot of
    ``(service, instance_name)``.

    Args:
        service: Keyring service name.
    """

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        self._service = service

    @property
    def name(self) -> str:
        return "keyring"

    def save(self, instance_name: str, token: Token) -> None:
        keyring.set_password(self._service, instance_name, token.to_store_json())

    def load(self, instance_name: str) -> Token:
        text = keyring.get_password(self._service, instance_name)
        if text is None:
            raise TokenNotFoundError(instance_name)
        try:
            return _parse_token(instance_name, text)
        except (ValueError, ValidationError) as exc:
            logger.debug("Unreadable keyring entry for %s: %s", instance_name, exc)
            raise TokenNotFoundError(instance_name) from exc

    def delete(self, instance_name: str) -> None:
        try:
            keyring.delete_password(self._service, instance_name)
        except PasswordDeleteError:
            pass


class FileTokenStore(TokenStore):
    """Token store writing ``<directory>/<instance>.json`` files.

    Args:
        directory: Directory holding the token files, created on first save.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self._dir = Path(directory)

    @property
    def name(self) -> str:
        return "file"

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, instance_name: str) -> Path:
        """Token file path for *instance_name*.

        Raises:
            InvalidUsageError: If the name could escape the token directory.
        """
        if not _INSTANCE_NAME_RE.match(instance_name):
            raise InvalidUsageError(f"Invalid instance name: {instance_name!r}")
        return self._dir / f"{instance_name}.json"

    def save(self, instance_name: str, token: Token) -> None:
        _atomic_write(self.path_for(instance_name), token.to_store_json(), mode=0o600)

    def load(self, instance_name: str) -> Token:
        path = self.path_for(instance_name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise TokenNotFoundError(instance_name) from exc
        try:
            return _parse_token(instance_name, text)
        except (ValueError, ValidationError) as exc:
            logger.debug("Unreadable token file %s: %s", path, exc)
            raise TokenNotFoundError(instance_name) from exc

    def delete(self, instance_name: str) -> None:
        try:
            self.path_for(instance_name).unlink()
        except FileNotFoundError:
            pass


class FallbackTokenStore(TokenStore):
    """Try *preferred* first; use *fallback* when it is unusable or empty.

    Backend errors from *preferred* (no keyring daemon, locked keychain,
    ...) are logged once as a warning and the call is repeated on
    *fallback*.  ``delete`` always clears both.

    Args:
        preferred: Primary backend, normally :class:`KeyringTokenStore`.
        fallback: Secondary backend, normally :class:`FileTokenStore`.
    """

    def __init__(self, preferred: TokenStore, fallback: TokenStore) -> None:
        self.preferred = preferred
        self.fallback = fallback
        self._warned = False

    @property
    def name(self) -> str:
        return f"{self.preferred.name}+{self.fallback.name}"

    def _backend_failed(self, action: str, exc: Exception) -> None:
        if not self._warned:
            logger.warning(
                "%s token store unavailable (%s); using %s store",
                self.preferred.name, exc, self.fallback.name,
            )
            self._warned = True
        else:
            logger.debug("%s on %s store failed: %s", action, self.preferred.name, exc)

    def save(self, instance_name: str, token: Token) -> None:
        try:
            self.preferred.save(instance_name, token)
        except BACKEND_ERRORS as exc:
            self._backend_failed("save", exc)
            self.fallback.save(instance_name, token)

    def load(self, instance_name: str) -> Token:
        try:
            return self.preferred.load(instance_name)
        except TokenNotFoundError:
            pass
        except BACKEND_ERRORS as exc:
            self._backend_failed("load", exc)
        return self.fallback.load(instance_name)

    def delete(self, instance_name: str) -> None:
        try:
            self.preferred.delete(instance_name)
        except BACKEND_ERRORS as exc:
            self._backend_failed("delete", exc)
        self.fallback.delete(instance_name)

    def which(self, instance_name: str) -> Optional[str]:
        """Name of the backend currently holding *instance_name*, if any."""
        try:
            if self.preferred.exists(instance_name):
                return self.preferred.name
        except BACKEND_ERRORS as exc:
            self._backend_failed("exists", exc)
        if self.fallback.exists(instance_name):
            return self.fallback.name
        return None


def create_token_store(
    config_dir: Optional[Path] = None,
    service: str = KEYRING_SERVICE,
) -> FallbackTokenStore:
    """Build the standard keyring-then-file token store.

    Args:
        config_dir: Base configuration directory; token files go to its
            ``tokens/`` subdirectory.  Defaults to :func:`get_config_dir`.
        service: Keyring service name.
    """
    base = config_dir if config_dir is not None else get_config_dir()
    return FallbackTokenStore(KeyringTokenStore(service), FileTokenStore(base / "tokens"))
