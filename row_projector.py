import re
from dataclasses import dataclass, field

import field_codec
from definitions import NA_ID, Definitions, format_id_label

# Buffer cells look like: string=2cf:8:[10 40 ff 37 48 c1 0a 00]
BUFFER_RE = re.compile(r"^\s*string=([0-9a-fA-F]+):[0-9]+:\[(.*?)\]\s*$")
DEFAULT_ROW_CAP = 300
UNIFIED_HEADERS = ["#", "Time", "From->To", "Id", "Data", "Description"]


def parse_buffer(text):
    """Return (message_id, data_hex); both empty when the cell does not match."""
    if not text:
        return "", ""
    match = BUFFER_RE.match(text)
    if not match:
        return "", ""
    data_hex = " ".join(token.upper() for token in match.group(2).split())
    return match.group(1), data_hex


class HeaderIndex:
    def __init__(self, headers):
        self.positions = {}
        for idx, header in enumerate(headers or []):
            key = str(header or "").lstrip("\ufeff").strip().lower()
            self.positions.setdefault(key, idx)

    def position(self, name):
        return self.positions.get(name.lower(), -1)

    def cell(self, row, name):
        idx = self.position(name)
        if idx < 0 or idx >= len(row):
            return ""
        value = row[idx]
        return "" if value is None else str(value)


@dataclass
class FromToMapping:
    rules: dict = field(default_factory=dict)
    separator: str = " => "
    default_from: str = ""
    default_to: str = ""

    @classmethod
    def from_config(cls, raw):
        if not isinstance(raw, dict):
            return cls()
        rules = raw.get("rules")
        if not isinstance(rules, dict):
            rules = raw.get("mappings")
        if not isinstance(rules, dict):
            rules = {}
        return cls(
            rules=rules,
            separator=str(raw.get("separator") or " => "),
            default_from=str(raw.get("defaultFrom") or ""),
            default_to=str(raw.get("defaultTo") or ""),
        )

    def transform(self, name, source, target):
        default_from = self.default_from or source or "Unknown"
        default_to = self.default_to or target or "Unknown"
        rule = self.rules.get(name) if name else None
        if isinstance(rule, dict):
            return f"{rule.get('from') or default_from}{self.separator}{rule.get('to') or default_to}"
        return f"{source or default_from}{self.separator}{target or default_to}"


@dataclass
class UnifiedRow:
    id: str
    line_number: int
    time: str = ""
    from_to: str = ""
    id_display: str = ""
    data_hex: str = ""
    description: str = ""

    def cells(self):
        return [self.time, self.from_to, self.id_display, self.data_hex, self.description]

    def to_dict(self):
        return {
            "id": self.id,
            "lineNumber": self.line_number,
            "time": self.time,
            "fromTo": self.from_to,
            "idDisplay": self.id_display,
            "dataHex": self.data_hex,
            "description": self.description,
        }


@dataclass
class Projection:
    rows: list = field(default_factory=list)
    id_meanings: dict = field(default_factory=dict)
    total_rows: int = 0
    row_cap: int = DEFAULT_ROW_CAP

    @property
    def truncated(self):
        return self.row_cap > 0 and self.total_rows > self.row_cap


def project_row(line_number, cells, definitions, decode_config, from_to):
    """Build a UnifiedRow from named cells, or None when the id is not defined."""
    buffer = cells.get("buffer", "")
    name = cells.get("name", "")
    parsed_id, parsed_data = parse_buffer(buffer)
    identifier = parsed_id or name or NA_ID
    if not definitions.contains(identifier):
        return None

    resolution = definitions.resolve(identifier)
    description = None
    if parsed_id and parsed_data:
        description = field_codec.decode(parsed_id, parsed_data, decode_config)
    elif name:
        description = field_codec.decode_name(name, decode_config)

    return UnifiedRow(
        id=identifier,
        line_number=line_number,
        time=cells.get("time", ""),
        from_to=from_to.transform(name, cells.get("source", ""), cells.get("target", "")),
        id_display=format_id_label(identifier, resolution.description),
        data_hex=parsed_data or buffer,
        description=description or "",
    )


def project_rows(headers, rows, definitions=None, decode_config=None, from_to=None, row_cap=DEFAULT_ROW_CAP):
    index = HeaderIndex(headers)
    definitions = definitions or Definitions()
    decode_config = field_codec.as_decode_config(decode_config)
    from_to = from_to or FromToMapping()
    rows = rows or []
    limit = len(rows) if not row_cap or row_cap <= 0 else min(len(rows), row_cap)

    projection = Projection(total_rows=len(rows), row_cap=row_cap or 0)
    for idx in range(limit):
        row = rows[idx] or []
        cells = {
            key: index.cell(row, key)
            for key in ("time", "source", "target", "name", "buffer", "meaning")
        }
        unified = project_row(idx + 2, cells, definitions, decode_config, from_to)
        if unified is None:
            continue
        projection.rows.append(unified)

        meaning = cells["meaning"]
        known = projection.id_meanings.get(unified.id)
        if known is None or (not known and meaning):
            projection.id_meanings[unified.id] = meaning
    return projection
