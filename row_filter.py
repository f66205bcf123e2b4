import re
import html


class HiddenIdSet:
    """Raw message ids currently filtered out of one file view."""

    def __init__(self, ids=None):
        self._ids = set(ids or [])

    def __contains__(self, identifier):
        return identifier in self._ids

    def __iter__(self):
        return iter(sorted(self._ids))

    def __len__(self):
        return len(self._ids)

    def all_hidden(self, ids):
        ids = [identifier for identifier in ids if identifier]
        return bool(ids) and all(identifier in self._ids for identifier in ids)

    def toggle(self, ids):
        """Hide every id, or show every id when all of them are already hidden."""
        ids = [str(identifier).strip() for identifier in ids]
        ids = [identifier for identifier in ids if identifier]
        if not ids:
            return False
        if self.all_hidden(ids):
            self._ids.difference_update(ids)
            return False
        self._ids.update(ids)
        return True

    def clear(self):
        self._ids.clear()


def parse_id_list(value):
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value or "").split(",")
    return [str(item).strip() for item in items if str(item).strip()]


def row_matches(row, term):
    needle = term.casefold()
    return any(needle in (cell or "").casefold() for cell in row.cells())


def visible_rows(rows, hidden_ids, search_term=""):
    term = (search_term or "").strip()
    visible = []
    for row in rows:
        if row.id in hidden_ids:
            continue
        if term and not row_matches(row, term):
            continue
        visible.append(row)
    return visible


def highlight_cell(text, term):
    """HTML-escape a cell and wrap case-insensitive matches of term in <mark>."""
    text = "" if text is None else str(text)
    term = (term or "").strip()
    if not term:
        return html.escape(text)
    pattern = re.compile(re.escape(term), re.IGNORECASE)
    parts = []
    cursor = 0
    for match in pattern.finditer(text):
        parts.append(html.escape(text[cursor:match.start()]))
        parts.append(f"<mark>{html.escape(match.group(0))}</mark>")
        cursor = match.end()
    parts.append(html.escape(text[cursor:]))
    return "".join(parts)


def truncation_summary(total_raw, projected, visible, row_cap):
    if not row_cap or total_raw <= row_cap:
        return None
    hidden_count = projected - visible
    text = f"Showing first {row_cap} of {total_raw} rows"
    if hidden_count > 0:
        text += f" ({hidden_count} hidden)"
    return text
