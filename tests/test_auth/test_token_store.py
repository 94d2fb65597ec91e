"""Tests for the keyring, file, and fallback token stores."""

from __future__ import annotations

import json
import logging
import os
import stat
from datetime import datetime, timezone
from pathlib import Path

import pytest

from coursectl.auth import (
    FallbackTokenStore,
    FileTokenStore,
    KeyringTokenStore,
    create_token_store,
)
from coursectl.auth.store import KEYRING_SERVICE
from coursectl.exceptions import InvalidUsageError, TokenNotFoundError
from coursectl.models import Token


def _token(access: str = "a1", refresh: str = "r1") -> Token:
    return Token(
        access_token=access,
        refresh_token=refresh,
        expiry=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
    )


class TestKeyringTokenStore:
    def test_save_load_delete(self, memory_keyring):
        store = KeyringTokenStore()
        store.save("school", _token())
        loaded = store.load("school")
        assert loaded.access_token == "a1"
        assert loaded.refresh_token == "r1"
        assert loaded.instance_name == "school"
        assert (KEYRING_SERVICE, "school") in memory_keyring.passwords

        store.delete("school")
        assert store.exists("school") is False

    def test_missing_raises(self):
        with pytest.raises(TokenNotFoundError):
            KeyringTokenStore().load("nope")

    def test_delete_missing_is_noop(self):
        KeyringTokenStore().delete("nope")

    def test_garbage_entry_is_not_found(self, memory_keyring):
        memory_keyring.passwords[(KEYRING_SERVICE, "school")] = "not json"
        with pytest.raises(TokenNotFoundError):
            KeyringTokenStore().load("school")


class TestFileTokenStore:
    def test_save_load(self, tmp_path: Path):
        store = FileTokenStore(tmp_path / "tokens")
        store.save("school", _token())
        token = store.load("school")
        assert token.access_token == "a1"
        assert token.expiry == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_file_layout_and_permissions(self, tmp_path: Path):
        store = FileTokenStore(tmp_path / "tokens")
        store.save("school", _token())
        path = tmp_path / "tokens" / "school.json"
        data = json.loads(path.read_text())
        assert set(data) == {"access_token", "refresh_token", "expiry"}
        if os.name == "posix":
            assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_missing_raises(self, tmp_path: Path):
        with pytest.raises(TokenNotFoundError):
            FileTokenStore(tmp_path).load("school")

    def test_corrupt_file_is_not_found(self, tmp_path: Path):
        (tmp_path / "school.json").write_text("{broken")
        with pytest.raises(TokenNotFoundError):
            FileTokenStore(tmp_path).load("school")

    def test_rejects_path_traversal(self, tmp_path: Path):
        store = FileTokenStore(tmp_path)
        with pytest.raises(InvalidUsageError):
            store.save("../evil", _token())

    def test_delete(self, tmp_path: Path):
        store = FileTokenStore(tmp_path)
        store.save("school", _token())
        store.delete("school")
        store.delete("school")
        assert store.exists("school") is False


class TestFallbackTokenStore:
    def test_prefers_keyring(self, tmp_path: Path, memory_keyring):
        store = create_token_store(tmp_path)
        store.save("school", _token())
        assert store.which("school") == "keyring"
        assert not (tmp_path / "tokens" / "school.json").exists()

    def test_falls_back_to_file_when_keyring_broken(
        self, tmp_path: Path, broken_keyring, caplog
    ):
        store = create_token_store(tmp_path)
        with caplog.at_level(logging.WARNING, logger="coursectl"):
            store.save("school", _token())
            store.save("school", _token("a2"))
        assert (tmp_path / "tokens" / "school.json").is_file()
        assert store.load("school").access_token == "a2"
        assert store.which("school") == "file"
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1

    def test_load_falls_through_to_file(self, tmp_path: Path):
        file_store = FileTokenStore(tmp_path / "tokens")
        file_store.save("school", _token("from-file"))
        store = FallbackTokenStore(KeyringTokenStore(), file_store)
        assert store.load("school").access_token == "from-file"

    def test_missing_everywhere(self, tmp_path: Path):
        store = create_token_store(tmp_path)
        with pytest.raises(TokenNotFoundError):
            store.load("school")
        assert store.which("school") is None

    def test_delete_clears_both(self, tmp_path: Path):
        file_store = FileTokenStore(tmp_path / "tokens")
        keyring_store = KeyringTokenStore()
        file_store.save("school", _token())
        keyring_store.save("school", _token())
        FallbackTokenStore(keyring_store, file_store).delete("school")
        assert not keyring_store.exists("school")
        assert not file_store.exists("school")
