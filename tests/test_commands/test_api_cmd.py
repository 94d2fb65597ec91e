"""Tests for the raw ``coursectl api`` command and the CLI entry point."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import httpx
import pytest

from coursectl.app import app, main
from coursectl.client import APIClient
from coursectl.commands.api import parse_body, parse_query
from coursectl.exceptions import InvalidUsageError, NotFoundError
from coursectl.exit_codes import EXIT_INVALID_USAGE, EXIT_NOT_FOUND
from coursectl.models import ClientConfig

BASE = "https://school.test"


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/v1/courses":
        page = int(request.url.params.get("page", "1"))
        headers = {}
        if page == 1:
            headers["Link"] = f'<{BASE}/api/v1/courses?page=2>; rel="next"'
        return httpx.Response(200, json=[{"id": page}], headers=headers)
    if request.url.path == "/api/v1/courses/1":
        if request.method == "PUT":
            return httpx.Response(200, json=json.loads(request.content))
        return httpx.Response(200, json={"id": 1, "name": "Intro"})
    return httpx.Response(
        404, json={"errors": [{"message": "The specified resource does not exist."}]}
    )


@pytest.fixture
def requests_seen(monkeypatch, isolated_config) -> list[httpx.Request]:
    """Route clients built by the command through a mock transport."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _handler(request)

    def build_client(ctx, **overrides):
        config = ClientConfig(base_url=BASE, token="tok", **overrides)
        return APIClient(config, transport=httpx.MockTransport(handler))

    monkeypatch.setattr("coursectl.commands.api.build_client", build_client)
    return seen


class TestParsing:
    def test_parse_query(self):
        assert parse_query(["a=1", "b[]=x", "b[]=y", "c=k=v"]) == {
            "a": "1",
            "b[]": ["x", "y"],
            "c": "k=v",
        }

    def test_parse_query_rejects_missing_equals(self):
        with pytest.raises(InvalidUsageError):
            parse_query(["oops"])

    def test_parse_body(self, tmp_path: Path):
        assert parse_body(None) is None
        assert parse_body('{"a": 1}') == {"a": 1}
        body_file = tmp_path / "body.json"
        body_file.write_text('{"b": 2}')
        assert parse_body(f"@{body_file}") == {"b": 2}

    def test_parse_body_errors(self, tmp_path: Path):
        with pytest.raises(InvalidUsageError, match="not valid JSON"):
            parse_body("{broken")
        with pytest.raises(InvalidUsageError, match="Cannot read"):
            parse_body(f"@{tmp_path / 'missing.json'}")


class TestApiCommand:
    def test_get(self, cli_runner, requests_seen):
        result = cli_runner.invoke(app, ["--json", "-q", "api", "get", "/api/v1/courses/1"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"id": 1, "name": "Intro"}
        assert requests_seen[0].headers["Authorization"] == "Bearer tok"

    def test_put_with_body(self, cli_runner, requests_seen):
        result = cli_runner.invoke(
            app,
            ["--json", "-q", "api", "PUT", "/api/v1/courses/1", "-d", '{"course": {"name": "New"}}'],
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"course": {"name": "New"}}

    def test_paginate(self, cli_runner, requests_seen):
        result = cli_runner.invoke(app, ["--json", "api", "GET", "/api/v1/courses", "--paginate"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == [{"id": 1}, {"id": 2}]
        assert len(requests_seen) == 2

    def test_query_and_masquerade(self, cli_runner, requests_seen):
        result = cli_runner.invoke(
            app,
            ["-q", "api", "GET", "/api/v1/courses/1", "-q", "include[]=term", "--as-user", "5"],
        )
        assert result.exit_code == 0, result.output
        params = requests_seen[0].url.params
        assert params["include[]"] == "term"
        assert params["as_user_id"] == "5"

    def test_not_found_raises(self, cli_runner, requests_seen):
        result = cli_runner.invoke(app, ["api", "GET", "/api/v1/nope"])
        assert isinstance(result.exception, NotFoundError)

    def test_unknown_method(self, cli_runner, requests_seen):
        result = cli_runner.invoke(app, ["api", "BREW", "/api/v1/courses"])
        assert isinstance(result.exception, InvalidUsageError)
        assert requests_seen == []

    def test_paginate_requires_get(self, cli_runner, requests_seen):
        result = cli_runner.invoke(app, ["api", "POST", "/api/v1/courses", "--paginate"])
        assert isinstance(result.exception, InvalidUsageError)

    def test_dry_run_prints_curl_and_sends_nothing(self, cli_runner, requests_seen):
        result = cli_runner.invoke(app, ["-q", "api", "DELETE", "/api/v1/courses/1", "--dry-run"])
        assert result.exit_code == 0, result.output
        assert requests_seen == []
        assert result.stdout.startswith(f"curl -X DELETE {BASE}/api/v1/courses/1")
        assert "Bearer [REDACTED]" in result.stdout
        assert "Bearer tok" not in result.stdout

    def test_dry_run_show_token(self, cli_runner, requests_seen):
        result = cli_runner.invoke(
            app, ["-q", "api", "GET", "/api/v1/courses", "--paginate", "--dry-run", "--show-token"]
        )
        assert result.exit_code == 0, result.output
        assert requests_seen == []
        assert "Authorization: Bearer tok" in result.stdout

    def test_env_credentials(self, cli_runner, isolated_config, monkeypatch):
        monkeypatch.setenv("COURSECTL_URL", BASE)
        monkeypatch.setenv("COURSECTL_TOKEN", "envtok")
        seen: list[httpx.Request] = []

        def client_factory(config: ClientConfig) -> APIClient:
            def handler(request: httpx.Request) -> httpx.Response:
                seen.append(request)
                return _handler(request)

            return APIClient(config, transport=httpx.MockTransport(handler))

        monkeypatch.setattr("coursectl.client.APIClient", client_factory)
        result = cli_runner.invoke(app, ["--json", "-q", "api", "GET", "/api/v1/courses/1"])
        assert result.exit_code == 0, result.output
        assert seen[0].headers["Authorization"] == "Bearer envtok"


class TestMain:
    def _run(self, monkeypatch, *args: str) -> int:
        monkeypatch.setattr("coursectl.app._setup_signal_handlers", lambda: None)
        monkeypatch.setattr(sys, "argv", ["coursectl", *args])
        with pytest.raises(SystemExit) as exc_info:
            main()
        return exc_info.value.code

    def test_error_maps_to_exit_code(self, monkeypatch, requests_seen, capsys):
        assert self._run(monkeypatch, "api", "BREW", "/x") == EXIT_INVALID_USAGE
        assert "Unsupported method" in capsys.readouterr().err

    def test_not_found_exit_code(self, monkeypatch, requests_seen):
        assert self._run(monkeypatch, "-q", "api", "GET", "/api/v1/nope") == EXIT_NOT_FOUND

    def test_version(self, monkeypatch, capsys):
        assert self._run(monkeypatch, "--version") == 0
        assert "coursectl" in capsys.readouterr().out
