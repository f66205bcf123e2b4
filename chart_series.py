"""Chart series pulled from a parsed CAN export."""

from dataclasses import dataclass, field

import field_codec
from definitions import NA_ID
from row_projector import HeaderIndex, parse_buffer

# 0x2CF Reply Thermal State: index byte 0, HUR in bytes 5-6 (uint16 LE, 0.01 %).
DEFAULT_SERIES = [
    {
        "message_id": "2cf",
        "title": "Heat Units (HUR)",
        "bytes": "5-6",
        "scale": 0.01,
        "precision": 2,
        "unit": "%",
        "index_byte": 0,
        "groups": {
            "Anode Heat": ["10", "20"],
            "Casing Heat": ["11", "21"],
        },
    }
]


@dataclass
class SeriesSpec:
    message_id: str
    start: int
    end: int
    title: str = ""
    scale: float = 1
    precision: int = 2
    unit: str = ""
    index_byte: int = 0
    groups: dict = field(default_factory=dict)

    def group_for(self, index_value):
        if not self.groups:
            return self.title or self.message_id
        for label, indexes in self.groups.items():
            if index_value in indexes:
                return label
        return None


def compile_series(raw):
    """Return (specs, errors) for a charts document's "series" list."""
    specs = []
    errors = []
    entries = raw.get("series") if isinstance(raw, dict) else None
    if entries is None:
        entries = DEFAULT_SERIES
    if not isinstance(entries, list):
        return specs, ["series must be a list."]
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict) or not entry.get("message_id"):
            errors.append(f"series {idx}: message_id is required.")
            continue
        match = field_codec.BYTE_RANGE_RE.match(str(entry.get("bytes", "")))
        if not match:
            errors.append(f"series {idx}: bytes must look like '3' or '5-6'.")
            continue
        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) is not None else start
        if end < start or end - start > 3:
            errors.append(f"series {idx}: bytes must cover one to four bytes.")
            continue
        raw_groups = entry.get("groups") or {}
        if not isinstance(raw_groups, dict):
            errors.append(f"series {idx}: groups must be an object.")
            continue
        try:
            groups = {
                str(label): set(field_codec.byte_values([str(value) for value in indexes]))
                for label, indexes in raw_groups.items()
            }
        except (TypeError, ValueError):
            errors.append(f"series {idx}: group indexes must be hex bytes.")
            continue
        scale = entry.get("scale", 1)
        if not isinstance(scale, (int, float)) or isinstance(scale, bool):
            errors.append(f"series {idx}: scale must be a number.")
            continue
        try:
            precision = int(entry.get("precision", 2))
            index_byte = int(entry.get("index_byte", 0))
        except (TypeError, ValueError):
            errors.append(f"series {idx}: precision and index_byte must be integers.")
            continue
        specs.append(
            SeriesSpec(
                message_id=str(entry["message_id"]).strip().lower(),
                start=start,
                end=end,
                title=str(entry.get("title") or ""),
                scale=scale,
                precision=precision,
                unit=str(entry.get("unit") or ""),
                index_byte=index_byte,
                groups=groups,
            )
        )
    return specs, errors


def collect_series(headers, rows, specs):
    """
    Collect chart points for every series over all rows.

    Returns {title: {group label: [{"time": ..., "value": ...}]}} with points
    sorted by their time text.
    """
    index = HeaderIndex(headers)
    result = {}
    for spec in specs:
        result[spec.title or spec.message_id] = {label: [] for label in spec.groups}
    if index.position("Buffer") < 0:
        return result

    for row in rows or []:
        if not row:
            continue
        message_id, data_hex = parse_buffer(index.cell(row, "Buffer"))
        if not message_id:
            continue
        message_id = message_id.lower()
        tokens = data_hex.split()
        for spec in specs:
            if spec.message_id != message_id or len(tokens) <= max(spec.end, spec.index_byte):
                continue
            try:
                index_value = field_codec.byte_values([tokens[spec.index_byte]])[0]
                raw_value = field_codec.little_endian(field_codec.byte_values(tokens[spec.start:spec.end + 1]))
            except ValueError:
                continue
            label = spec.group_for(index_value)
            if label is None:
                continue
            value = round(raw_value * spec.scale, spec.precision)
            points = result[spec.title or spec.message_id].setdefault(label, [])
            points.append({"time": index.cell(row, "Time"), "value": value})

    for groups in result.values():
        for points in groups.values():
            points.sort(key=lambda point: point["time"])
    return result


def message_counts(rows):
    """Row count per raw identifier of projected rows, most frequent first."""
    counts = {}
    for row in rows:
        if row.id == NA_ID:
            continue
        entry = counts.setdefault(row.id, {"id": row.id, "label": row.id_display, "count": 0})
        entry["count"] += 1
    return sorted(counts.values(), key=lambda entry: (-entry["count"], entry["id"].casefold()))


def message_rate(headers, rows):
    """
    Messages per second over all raw rows carrying both a Buffer and a Time.

    The second bucket is the time text before its first "."; returns
    [{"time": ..., "value": count}] sorted by time text.
    """
    index = HeaderIndex(headers)
    if index.position("Buffer") < 0:
        return []
    counts = {}
    for row in rows or []:
        if not row:
            continue
        time_text = index.cell(row, "Time")
        if not time_text or not index.cell(row, "Buffer"):
            continue
        second = time_text.split(".", 1)[0]
        counts[second] = counts.get(second, 0) + 1
    return [{"time": second, "value": counts[second]} for second in sorted(counts)]
