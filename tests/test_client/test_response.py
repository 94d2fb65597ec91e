"""Tests for printing API responses."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from coursectl.client import CACHE_HEADER
from coursectl.client.response import extract_response_data, format_api_response
from coursectl.output import OutputManager, set_output

REQUEST = httpx.Request("GET", "https://school.test/api/v1/courses")


def _response(status: int = 200, **kwargs) -> httpx.Response:
    return httpx.Response(status, request=REQUEST, **kwargs)


@pytest.fixture()
def output() -> MagicMock:
    mock = MagicMock(spec=OutputManager)
    set_output(mock)
    return mock


class TestFormatApiResponse:
    def test_status_line_and_json_body(self, output):
        format_api_response(_response(201, json={"id": 42}))
        output.info.assert_called_once_with("HTTP 201 Created")
        output.format_response.assert_called_once_with({"id": 42}, "application/json")

    def test_cache_hit_marked(self, output):
        format_api_response(_response(json=[{"id": 1}], headers={CACHE_HEADER: "hit"}))
        assert output.info.call_args.args[0] == "HTTP 200 OK (cached)"

    def test_text_body_keeps_content_type(self, output):
        format_api_response(_response(text="<html></html>", headers={"content-type": "text/html"}))
        output.format_response.assert_called_once_with("<html></html>", "text/html")

    def test_missing_content_type_defaults_to_json(self, output):
        format_api_response(_response(content=b'{"key": "value"}'))
        output.format_response.assert_called_once_with({"key": "value"}, "application/json")

    def test_empty_body_prints_only_status(self, output):
        format_api_response(_response(204, content=b""))
        output.info.assert_called_once_with("HTTP 204 No Content")
        output.format_response.assert_not_called()


class TestExtractResponseData:
    @pytest.mark.parametrize(
        "content, expected",
        [
            (b'{"parsed": true}', {"parsed": True}),
            (b"[1, 2, 3]", [1, 2, 3]),
            (b"not json", "not json"),
            (b'{"broken": json', '{"broken": json'),
            (b"", None),
        ],
    )
    def test_decoding(self, content, expected):
        assert extract_response_data(_response(content=content)) == expected
