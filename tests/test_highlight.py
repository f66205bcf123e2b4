from highlight import HighlightMatcher
from row_projector import UnifiedRow


def test_first_matching_rule_wins():
    matcher = HighlightMatcher.from_config(
        {
            "highlights": [
                {"match": "Heat", "backgroundColor": "#111"},
                {"match": "Casing", "backgroundColor": "#222", "textColor": "#fff"},
            ]
        }
    )
    row = UnifiedRow(id="2cf", line_number=2, description="Casing Heat")
    assert matcher.style_for(row) == {"backgroundColor": "#111", "textColor": None}


def test_match_types():
    matcher = HighlightMatcher.from_config(
        {
            "highlights": [
                {"match": "a b", "matchType": "equals", "backgroundColor": "eq"},
                {"match": "start", "matchType": "startsWith", "backgroundColor": "sw"},
                {"match": "end", "matchType": "endsWith", "backgroundColor": "ew"},
                {"match": "mid", "matchType": "bogus", "backgroundColor": "ct"},
            ]
        }
    )
    assert matcher.style_for(["a", "b"])["backgroundColor"] == "eq"
    assert matcher.style_for("start here")["backgroundColor"] == "sw"
    assert matcher.style_for("the end")["backgroundColor"] == "ew"
    assert matcher.style_for("a mid b")["backgroundColor"] == "ct"
    assert matcher.style_for("nothing") is None


def test_invalid_rules_are_skipped():
    matcher = HighlightMatcher.from_config({"highlights": [{"match": 5}, "x", {"backgroundColor": "#000"}]})
    assert matcher.rules == []
    assert matcher.style_for("anything") is None
    assert HighlightMatcher.from_config(None).rules == []
