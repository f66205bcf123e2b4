from row_filter import HiddenIdSet, highlight_cell, parse_id_list, truncation_summary, visible_rows
from row_projector import UnifiedRow


def make_rows():
    return [
        UnifiedRow(id="2cf", line_number=12, time="10:00:01", id_display="0x2CF - Reply Thermal State", description="Casing Heat"),
        UnifiedRow(id="701", line_number=13, time="10:00:02", id_display="0x701 - Heartbeat", description="Operational"),
        UnifiedRow(id="RTB", line_number=14, time="10:00:03", id_display="Ready To Begin"),
    ]


def test_toggle_hides_and_shows_groups_atomically():
    hidden = HiddenIdSet()
    assert hidden.toggle(["RTB", "RTB_ACK"]) is True
    assert list(hidden) == ["RTB", "RTB_ACK"]
    assert hidden.toggle(["RTB", "RTB_ACK"]) is False
    assert len(hidden) == 0


def test_toggle_with_partially_hidden_group_hides_all():
    hidden = HiddenIdSet(["RTB"])
    assert hidden.toggle(["RTB", "RTB_ACK"]) is True
    assert "RTB_ACK" in hidden
    assert hidden.toggle([]) is False


def test_visible_rows_combines_hidden_ids_and_search():
    rows = make_rows()
    hidden = HiddenIdSet(["701"])
    assert [row.id for row in visible_rows(rows, hidden)] == ["2cf", "RTB"]
    assert [row.id for row in visible_rows(rows, hidden, "casing")] == ["2cf"]
    assert visible_rows(rows, hidden, "operational") == []


def test_visible_rows_is_repeatable():
    rows = make_rows()
    hidden = HiddenIdSet(["RTB"])
    first = visible_rows(rows, hidden, "0x")
    assert visible_rows(rows, hidden, "0x") == first
    assert len(rows) == 3


def test_search_ignores_line_numbers():
    assert visible_rows(make_rows(), HiddenIdSet(), "13") == []


def test_highlight_cell_escapes_and_marks():
    assert highlight_cell("a<b>Heat heat", "heat") == "a&lt;b&gt;<mark>Heat</mark> <mark>heat</mark>"
    assert highlight_cell("x & y", "") == "x &amp; y"
    assert highlight_cell(None, "a") == ""


def test_truncation_summary():
    assert truncation_summary(500, 300, 280, 300) == "Showing first 300 of 500 rows (20 hidden)"
    assert truncation_summary(500, 300, 300, 300) == "Showing first 300 of 500 rows"
    assert truncation_summary(200, 200, 150, 300) is None


def test_parse_id_list():
    assert parse_id_list("a, b,,c") == ["a", "b", "c"]
    assert parse_id_list(["RTB", " RTB_ACK "]) == ["RTB", "RTB_ACK"]
    assert parse_id_list(None) == []
