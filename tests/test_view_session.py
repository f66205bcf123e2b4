import datetime

import pytest

from config_store import load_viewer_config
from make_test_csv import HEADERS, generate_rows
from parse_client import ParsedCsv
from view_session import ViewSession


@pytest.fixture
def view(shipped_config_dir):
    rows = generate_rows(20, datetime.datetime(2025, 1, 1, 12, 0, 0))
    parsed = ParsedCsv(headers=HEADERS, rows=rows, total=len(rows))
    return ViewSession("session.csv", "CAN", parsed, load_viewer_config("CAN", shipped_config_dir))


def test_projection_and_sidebar(view):
    assert len(view.rows) == 20
    labels = [entry.label for entry in view.sidebar()]
    assert labels == ["0x2CF - Reply Thermal State", "0x701 - Heartbeat", "Ready To Begin"]


def test_toggle_filters_rows(view):
    assert view.toggle(["701"]) is True
    assert len(view.visible()) == 16
    assert [entry.filtered for entry in view.sidebar()] == [False, True, False]
    assert view.toggle(["701"]) is False
    assert len(view.visible()) == 20


def test_search_and_styles(view):
    casing = view.visible("Casing Heat")
    assert casing
    assert view.style_for(casing[0])["backgroundColor"] == "#fff4e5"
    rtb = view.visible("Ready to begin exposure")
    assert len(rtb) == 4
    assert rtb[0].from_to == "Console => Generator"


def test_summary_only_when_truncated(shipped_config_dir):
    rows = generate_rows(12)
    parsed = ParsedCsv(headers=HEADERS, rows=rows, total=len(rows))
    capped = ViewSession("big.csv", "CAN", parsed, load_viewer_config("CAN", shipped_config_dir), row_cap=10)
    capped.toggle(["701"])
    visible = capped.visible()
    assert capped.summary(visible) == "Showing first 10 of 12 rows (2 hidden)"


def test_sessions_are_independent(view, shipped_config_dir):
    view.toggle(["2cf"])
    other = ViewSession("other.csv", "CAN", view.parsed, load_viewer_config("CAN", shipped_config_dir))
    assert other.token != view.token
    assert len(other.hidden_ids) == 0
    assert view.info()["hiddenIds"] == ["2cf"]


def test_series_and_counts(view):
    series = view.series()
    assert set(series["Heat Units (HUR)"]) == {"Anode Heat", "Casing Heat"}
    assert view.counts()[0]["id"] == "2cf"
    assert view.rate() == [{"time": "2025-01-01 12:00:00", "value": 16}]
