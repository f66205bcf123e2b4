import io
import json
import urllib.error

import pytest

import parse_client
from parse_client import (
    ParseServiceError,
    build_parse_url,
    fetch_parsed_csv,
    normalize_protocol,
    parsed_csv_from_payload,
)

HEADERS = ["Time", "Buffer"]


class FakeResponse:
    def __init__(self, body):
        self.body = body

    def read(self):
        return self.body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def success_payload(rows):
    return {"success": True, "data": {"headers": HEADERS, "rows": rows, "total": len(rows)}}


def test_normalize_protocol():
    assert normalize_protocol("canopen") == "CANOPEN"
    assert normalize_protocol(None) == "CAN"
    with pytest.raises(ValueError):
        normalize_protocol("LIN")


def test_payload_to_parsed_csv():
    parsed = parsed_csv_from_payload(
        {"success": True, "data": {"headers": HEADERS, "rows": [["t1", None], "bad"]}}
    )
    assert parsed.headers == HEADERS
    assert parsed.rows == [["t1", ""], []]
    assert parsed.total == 2


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"success": False, "message": "File not found"}, "File not found"),
        ({"success": True}, "no data"),
        ({"success": True, "data": {"headers": "x", "rows": []}}, "headers and rows"),
        ([], "unexpected document"),
    ],
)
def test_payload_errors(payload, message):
    with pytest.raises(ParseServiceError, match=message):
        parsed_csv_from_payload(payload)


def test_build_parse_url():
    url = build_parse_url("http://parser:8080/", "a b.csv", "CAN")
    assert url == "http://parser:8080/api/parse/a%20b.csv?protocol=CAN"


def test_fetch_parsed_csv(monkeypatch):
    seen = {}

    def fake_urlopen(request, timeout):
        seen["url"] = request.full_url
        seen["timeout"] = timeout
        return FakeResponse(json.dumps(success_payload([["t1", "string=1:1:[00]"]])).encode("utf-8"))

    monkeypatch.setattr(parse_client.urllib.request, "urlopen", fake_urlopen)
    parsed = fetch_parsed_csv("log.csv", "CAN", "http://parser", timeout=5)
    assert parsed.total == 1
    assert seen == {"url": "http://parser/api/parse/log.csv?protocol=CAN", "timeout": 5}


def test_fetch_reports_service_error_body(monkeypatch):
    def fake_urlopen(request, timeout):
        body = io.BytesIO(json.dumps({"success": False, "message": "File not found"}).encode("utf-8"))
        raise urllib.error.HTTPError(request.full_url, 404, "Not Found", {}, body)

    monkeypatch.setattr(parse_client.urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(ParseServiceError, match="File not found"):
        fetch_parsed_csv("missing.csv", "CAN", "http://parser")


def test_fetch_unreachable_and_bad_json(monkeypatch):
    def unreachable(request, timeout):
        raise urllib.error.URLError("refused")

    monkeypatch.setattr(parse_client.urllib.request, "urlopen", unreachable)
    with pytest.raises(ParseServiceError, match="unreachable"):
        fetch_parsed_csv("log.csv", "CAN", "http://parser")

    monkeypatch.setattr(parse_client.urllib.request, "urlopen", lambda request, timeout: FakeResponse(b"<html>"))
    with pytest.raises(ParseServiceError, match="invalid JSON"):
        fetch_parsed_csv("log.csv", "CAN", "http://parser")

    with pytest.raises(ParseServiceError):
        fetch_parsed_csv("", "CAN", "http://parser")
