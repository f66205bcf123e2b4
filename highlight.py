from dataclasses import dataclass

MATCH_TYPES = ("equals", "startsWith", "endsWith", "contains")


@dataclass
class HighlightRule:
    match: str
    match_type: str = "contains"
    background_color: str = None
    text_color: str = None

    def matches(self, text):
        if self.match_type == "equals":
            return text == self.match
        if self.match_type == "startsWith":
            return text.startswith(self.match)
        if self.match_type == "endsWith":
            return text.endswith(self.match)
        return self.match in text

    def style(self):
        return {
            "backgroundColor": self.background_color,
            "textColor": self.text_color,
        }


class HighlightMatcher:
    def __init__(self, rules=None):
        self.rules = list(rules or [])

    @classmethod
    def from_config(cls, raw):
        rules = []
        entries = raw.get("highlights") if isinstance(raw, dict) else None
        for entry in entries or []:
            if not isinstance(entry, dict) or not isinstance(entry.get("match"), str):
                continue
            match_type = entry.get("matchType") or "contains"
            if match_type not in MATCH_TYPES:
                match_type = "contains"
            rules.append(
                HighlightRule(
                    match=entry["match"],
                    match_type=match_type,
                    background_color=entry.get("backgroundColor") or None,
                    text_color=entry.get("textColor") or None,
                )
            )
        return cls(rules)

    def style_for(self, row):
        """First matching rule's colors for a row, or None."""
        if not self.rules:
            return None
        if hasattr(row, "cells"):
            cells = row.cells()
        elif isinstance(row, (list, tuple)):
            cells = row
        else:
            cells = [row]
        text = " ".join("" if cell is None else str(cell) for cell in cells)
        for rule in self.rules:
            if rule.matches(text):
                return rule.style()
        return None
