import time
import secrets

from chart_series import collect_series, message_counts, message_rate
from config_store import ViewerConfig
from parse_client import ParsedCsv
from row_filter import HiddenIdSet, truncation_summary, visible_rows
from row_projector import DEFAULT_ROW_CAP, project_rows


class ViewSession:
    """
    State of one viewed file: projected rows, hidden ids and the
    configuration snapshot used to build them. A new session is created for
    every load so nothing leaks between views.
    """

    def __init__(self, filename, protocol, parsed=None, config=None, row_cap=DEFAULT_ROW_CAP):
        self.token = secrets.token_urlsafe(16)
        self.ts = time.time()
        self.filename = filename
        self.protocol = protocol
        self.parsed = parsed or ParsedCsv()
        self.config = config or ViewerConfig()
        self.row_cap = row_cap
        self.hidden_ids = HiddenIdSet()
        self.projection = project_rows(
            self.parsed.headers,
            self.parsed.rows,
            definitions=self.config.definitions,
            decode_config=self.config.decode_rules,
            from_to=self.config.from_to,
            row_cap=row_cap,
        )

    @property
    def rows(self):
        return self.projection.rows

    def touch(self):
        self.ts = time.time()

    def visible(self, search_term=""):
        return visible_rows(self.projection.rows, self.hidden_ids, search_term)

    def sidebar(self):
        return self.config.definitions.sidebar_entries(self.projection.id_meanings, self.hidden_ids)

    def toggle(self, ids):
        return self.hidden_ids.toggle(ids)

    def style_for(self, row):
        return self.config.highlight.style_for(row)

    def summary(self, visible):
        return truncation_summary(
            self.projection.total_rows,
            len(self.projection.rows),
            len(visible),
            self.row_cap,
        )

    def series(self):
        return collect_series(self.parsed.headers, self.parsed.rows, self.config.chart_series)

    def counts(self):
        return message_counts(self.projection.rows)

    def rate(self):
        return message_rate(self.parsed.headers, self.parsed.rows)

    def info(self):
        return {
            "token": self.token,
            "filename": self.filename,
            "protocol": self.protocol,
            "total": self.parsed.total,
            "columns": len(self.parsed.headers),
            "projected": len(self.projection.rows),
            "rowCap": self.row_cap,
            "hiddenIds": list(self.hidden_ids),
        }
