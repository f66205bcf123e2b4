import datetime

import pytest

import app as viewer_app
from make_test_csv import HEADERS, generate_rows
from parse_client import ParsedCsv, ParseServiceError

CSRF = "test-csrf-token"
ROWS = generate_rows(20, datetime.datetime(2025, 1, 1, 12, 0, 0))


@pytest.fixture
def client(monkeypatch, shipped_config_dir):
    viewer_app.app.config["TESTING"] = True
    monkeypatch.setattr(viewer_app, "CONFIG_DIR", shipped_config_dir)
    monkeypatch.setattr(viewer_app, "VIEW_CACHE", {})
    monkeypatch.setattr(viewer_app, "RATE_LIMIT_STATE", {})
    monkeypatch.setattr(
        viewer_app,
        "fetch_parsed_csv",
        lambda filename, protocol, base_url, timeout: ParsedCsv(headers=HEADERS, rows=ROWS, total=len(ROWS)),
    )
    with viewer_app.app.test_client() as test_client:
        with test_client.session_transaction() as sess:
            sess[viewer_app.CSRF_SESSION_KEY] = CSRF
        yield test_client


def open_view(client, filename="session.csv"):
    response = client.get("/view", query_string={"file": filename, "protocol": "can"})
    assert response.status_code == 302
    token = response.headers["Location"].rstrip("/").rsplit("/", 1)[-1]
    return token


def create_api_view(client):
    response = client.post(
        "/api/view",
        json={
            "filename": "upload.csv",
            "protocol": "CAN",
            "result": {"success": True, "data": {"headers": HEADERS, "rows": ROWS}},
        },
        headers={"X-CSRF-Token": CSRF},
    )
    assert response.status_code == 200
    return response.get_json()


def test_start_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert b"Open a log export" in response.data


def test_view_renders_table_and_sidebar(client):
    token = open_view(client)
    response = client.get(f"/view/{token}")
    assert response.status_code == 200
    page = response.get_data(as_text=True)
    assert "0x2CF - Reply Thermal State" in page
    assert "Ready to begin exposure" in page
    assert "Available CAN messages" in page
    assert "background-color: #fff4e5" in page


def test_view_validation_errors(client):
    assert client.get("/view").status_code == 400
    response = client.get("/view", query_string={"file": "a.csv", "protocol": "LIN"})
    assert response.status_code == 400
    assert b"Invalid protocol" in response.data


def test_parse_failure_is_reported(client, monkeypatch):
    def failing(filename, protocol, base_url, timeout):
        raise ParseServiceError("File not found")

    monkeypatch.setattr(viewer_app, "fetch_parsed_csv", failing)
    response = client.get("/view", query_string={"file": "missing.csv"})
    assert response.status_code == 200
    assert b"Parse failed: File not found" in response.data


def test_search_marks_matches(client):
    token = open_view(client)
    page = client.get(f"/view/{token}", query_string={"q": "casing"}).get_data(as_text=True)
    assert "<mark>Casing</mark>" in page
    assert "Heartbeat</td>" not in page


def test_toggle_requires_csrf(client):
    token = open_view(client)
    response = client.post(f"/view/{token}/toggle", data={"message_ids": "701"})
    assert response.status_code == 400
    assert len(viewer_app.VIEW_CACHE[token].hidden_ids) == 0


def test_toggle_hides_message_group(client):
    token = open_view(client)
    response = client.post(
        f"/view/{token}/toggle",
        data={"message_ids": "701", "q": "heart", "csrf_token": CSRF},
    )
    assert response.status_code == 302
    assert "q=heart" in response.headers["Location"]
    view = viewer_app.VIEW_CACHE[token]
    assert "701" in view.hidden_ids
    assert len(view.visible()) == 16


def test_expired_view(client):
    response = client.get("/view/unknown")
    assert b"View expired or not found" in response.data
    assert client.get("/view/unknown/statistics").status_code == 200


def test_statistics_page(client):
    token = open_view(client)
    response = client.get(f"/view/{token}/statistics")
    assert response.status_code == 200
    assert b"Heat Units (HUR)" in response.data
    assert b"Messages per second" in response.data
    assert b"2025-01-01 12:00:00" in response.data


def test_view_cache_expires(client, monkeypatch):
    token = open_view(client)
    viewer_app.VIEW_CACHE[token].ts -= viewer_app.VIEW_CACHE_TTL + 1
    assert viewer_app.get_view(token) is None


def test_rate_limit_on_view_creation(client, monkeypatch):
    monkeypatch.setitem(viewer_app.RATE_LIMITS, "view", (1, 60))
    open_view(client)
    response = client.get("/view", query_string={"file": "session.csv"})
    assert response.status_code == 429


def test_api_create_and_query_view(client):
    body = create_api_view(client)
    assert body["success"] is True
    assert body["visible"] == 20
    assert body["rows"][0]["lineNumber"] == 2
    token = body["view"]["token"]

    rows = client.get(f"/api/view/{token}/rows", query_string={"q": "Heartbeat"}).get_json()
    assert rows["visible"] == 4

    toggled = client.post(
        f"/api/view/{token}/toggle",
        json={"ids": ["701"]},
        headers={"X-CSRF-Token": CSRF},
    ).get_json()
    assert toggled["hidden"] is True
    assert toggled["visible"] == 16
    assert toggled["view"]["hiddenIds"] == ["701"]

    series = client.get(f"/api/view/{token}/series").get_json()
    assert "Heat Units (HUR)" in series["series"]
    assert series["rate"] == [{"time": "2025-01-01 12:00:00", "value": 16}]
    assert series["counts"][0]["count"] == 12


def test_api_errors(client):
    assert client.get("/api/view/unknown/rows").status_code == 404
    response = client.post(
        "/api/view",
        json={"protocol": "CAN", "success": False, "message": "bad file"},
        headers={"X-CSRF-Token": CSRF},
    )
    assert response.status_code == 422
    assert response.get_json()["message"] == "bad file"
    assert client.post("/api/view", json={}).status_code == 400


def test_sample_csv(client):
    response = client.get("/sample.csv")
    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert response.get_data(as_text=True).startswith("Time,Source,Target,Name,Buffer,Meaning")
