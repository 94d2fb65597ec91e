"""Tests for the ``coursectl cache`` commands."""

from __future__ import annotations

import json

import pytest

from coursectl.app import app
from coursectl.cache import DiskCache
from coursectl.config import get_response_cache_dir


@pytest.fixture
def populated(isolated_config) -> DiskCache:
    cache = DiskCache(get_response_cache_dir())
    cache.set("live-1", b"[]", ttl=600)
    cache.set("live-2", b"[]", ttl=600)
    cache.set("old", b"[]", ttl=-1)
    return cache


class TestCacheStats:
    def test_json(self, cli_runner, populated):
        result = cli_runner.invoke(app, ["--json", "cache", "stats"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["total"] == 3
        assert data["active"] == 2
        assert data["expired"] == 1
        assert data["location"] == str(populated.directory)
        assert data["size_bytes"] > 0

    def test_plain(self, cli_runner, populated):
        result = cli_runner.invoke(app, ["--plain", "cache", "stats"])
        assert result.exit_code == 0, result.output
        assert "Total entries:   3" in result.stdout
        assert "Active rate:     66.7%" in result.stdout

    def test_empty_cache(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["--json", "cache", "stats"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["total"] == 0


class TestCacheClear:
    def test_clears_expired_only(self, cli_runner, populated):
        result = cli_runner.invoke(app, ["cache", "clear"])
        assert result.exit_code == 0, result.output
        assert "Cleared 1 expired cache entry." in result.output
        assert populated.stats().total == 2

    def test_nothing_expired(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["cache", "clear"])
        assert result.exit_code == 0, result.output
        assert "No expired cache entries." in result.output

    def test_all(self, cli_runner, populated):
        result = cli_runner.invoke(app, ["cache", "clear", "--all"])
        assert result.exit_code == 0, result.output
        assert "Cleared 3 cache entries." in result.output
        assert populated.stats().total == 0
