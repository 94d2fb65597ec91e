"""Fixtures shared by the whole suite.

Every test gets an in-memory keyring and a fresh output manager; tests that
read or write configuration ask for ``isolated_config``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from coursectl.models import GlobalConfig
from coursectl.output import reset_output


# ---------------------------------------------------------------------------
# Output state
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Drop the process-wide OutputManager once the test is done.

    A manager built inside ``CliRunner.invoke`` holds the runner's
    temporary streams, which are closed afterwards.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Keyring backends
# ---------------------------------------------------------------------------


class MemoryKeyring(KeyringBackend):
    """Keyring backend keeping passwords in a dict."""

    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError(username)


class BrokenKeyring(KeyringBackend):
    """Keyring backend that behaves like a missing keyring daemon."""

    priority = 1

    def get_password(self, service: str, username: str) -> Optional[str]:
        raise KeyringError("no keyring daemon")

    def set_password(self, service: str, username: str, password: str) -> None:
        raise KeyringError("no keyring daemon")

    def delete_password(self, service: str, username: str) -> None:
        raise KeyringError("no keyring daemon")


@pytest.fixture(autouse=True)
def memory_keyring() -> MemoryKeyring:
    """Install an in-memory keyring so no test touches the real OS keyring."""
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(MemoryKeyring())


@pytest.fixture
def broken_keyring() -> BrokenKeyring:
    """Install a keyring whose every call fails with a backend error."""
    backend = BrokenKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(MemoryKeyring())


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every coursectl directory into *tmp_path* and clear COURSECTL_* variables.

    The XDG layout is forced on all platforms, so config lives in
    ``tmp_path/config/coursectl`` and responses in ``tmp_path/cache/coursectl``.
    """
    for var, sub in (
        ("XDG_CONFIG_HOME", "config"),
        ("XDG_CACHE_HOME", "cache"),
        ("XDG_DATA_HOME", "data"),
    ):
        monkeypatch.setenv(var, str(tmp_path / sub))
    monkeypatch.setattr("coursectl.config._is_xdg_platform", lambda: True)

    for var in ("COURSECTL_INSTANCE", "COURSECTL_URL", "COURSECTL_TOKEN"):
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def write_config(isolated_config: Path):
    """Return a helper that writes the global config file and returns the model."""

    def _write(data: dict[str, Any]) -> GlobalConfig:
        path = isolated_config / "config" / "coursectl" / "config.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data))
        return GlobalConfig.model_validate(data)

    return _write


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Runner for invoking the Typer app in-process."""
    from typer.testing import CliRunner

    return CliRunner()
