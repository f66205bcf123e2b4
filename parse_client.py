import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field

PROTOCOLS = ("CAN", "CANOPEN", "COMMON")


class ParseServiceError(ValueError):
    pass


@dataclass
class ParsedCsv:
    headers: list = field(default_factory=list)
    rows: list = field(default_factory=list)
    total: int = 0


def normalize_protocol(value):
    protocol = (value or "CAN").strip().upper()
    if protocol not in PROTOCOLS:
        raise ValueError("Invalid protocol. Must be 'CAN', 'CANOPEN' or 'COMMON'.")
    return protocol


def _cell_text(value):
    if value is None:
        return ""
    return str(value)


def parsed_csv_from_payload(payload):
    if not isinstance(payload, dict):
        raise ParseServiceError("Parse service returned an unexpected document.")
    if not payload.get("success"):
        message = payload.get("message") or "Parse service reported a failure."
        raise ParseServiceError(str(message))
    data = payload.get("data")
    if not isinstance(data, dict):
        raise ParseServiceError("Parse service response has no data.")
    headers = data.get("headers")
    rows = data.get("rows")
    if not isinstance(headers, list) or not isinstance(rows, list):
        raise ParseServiceError("Parse service data must contain headers and rows lists.")
    clean_rows = []
    for row in rows:
        if isinstance(row, list):
            clean_rows.append([_cell_text(cell) for cell in row])
        else:
            clean_rows.append([])
    total = data.get("total")
    if not isinstance(total, int) or isinstance(total, bool):
        total = len(clean_rows)
    return ParsedCsv(headers=[_cell_text(h) for h in headers], rows=clean_rows, total=total)


def build_parse_url(base_url, filename, protocol):
    quoted = urllib.parse.quote(filename, safe="")
    query = urllib.parse.urlencode({"protocol": protocol})
    return f"{base_url.rstrip('/')}/api/parse/{quoted}?{query}"


def fetch_parsed_csv(filename, protocol, base_url, timeout=30):
    if not filename:
        raise ParseServiceError("Filename is required.")
    url = build_parse_url(base_url, filename, protocol)
    request = urllib.request.Request(url, headers={"Accept": "application/json"})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            body = response.read()
    except urllib.error.HTTPError as exc:
        # The parse service answers failures with a JSON body and a 4xx/5xx status.
        body = exc.read()
        if not body:
            raise ParseServiceError(f"Parse service error: HTTP {exc.code}.") from exc
    except (urllib.error.URLError, socket.timeout, OSError) as exc:
        raise ParseServiceError(f"Parse service unreachable: {exc}") from exc
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseServiceError("Parse service returned invalid JSON.") from exc
    return parsed_csv_from_payload(payload)
