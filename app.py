#!/usr/bin/env python3
import os
import time
import secrets
import threading
from flask import Flask, request, render_template_string, url_for, send_file, redirect, jsonify, session
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.utils import secure_filename

import make_test_csv
from config_store import CONFIG_DIR, load_viewer_config
from event_log import log_event, log_warning
from parse_client import PROTOCOLS, ParseServiceError, fetch_parsed_csv, normalize_protocol, parsed_csv_from_payload
from row_filter import highlight_cell, parse_id_list
from row_projector import DEFAULT_ROW_CAP, UNIFIED_HEADERS
from view_session import ViewSession

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")
MAX_CONTENT_MB = int(os.environ.get("MAX_CONTENT_MB", "50"))
app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_MB * 1024 * 1024


def env_flag(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


PARSE_SERVICE_URL = os.environ.get("PARSE_SERVICE_URL", "http://127.0.0.1:8080")
PARSE_SERVICE_TIMEOUT = float(os.environ.get("PARSE_SERVICE_TIMEOUT", "30"))
MAX_PREVIEW_ROWS = int(os.environ.get("MAX_PREVIEW_ROWS", str(DEFAULT_ROW_CAP)))
SESSION_COOKIE_SECURE = env_flag("SESSION_COOKIE_SECURE", False)
SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")
TRUST_PROXY = env_flag("TRUST_PROXY", False)
RATE_LIMIT_STATE = {}
RATE_LIMITS = {
    "view": (int(os.environ.get("RATE_LIMIT_VIEW_PER_MIN", "30")), 60),
}
VIEW_CACHE = {}
VIEW_CACHE_TTL = int(os.environ.get("VIEW_CACHE_TTL", str(30 * 60)))
VIEW_LOCK = threading.Lock()
CSRF_SESSION_KEY = "_csrf_token"

app.config["SESSION_COOKIE_HTTPONLY"] = True
app.config["SESSION_COOKIE_SECURE"] = SESSION_COOKIE_SECURE
app.config["SESSION_COOKIE_SAMESITE"] = SESSION_COOKIE_SAMESITE
if TRUST_PROXY:
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=1)


def get_csrf_token():
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def validate_csrf():
    form_token = request.form.get("csrf_token") or request.headers.get("X-CSRF-Token", "")
    session_token = session.get(CSRF_SESSION_KEY, "")
    if not form_token or not session_token:
        return False
    return secrets.compare_digest(form_token, session_token)


@app.before_request
def enforce_csrf():
    if request.method != "POST":
        return None
    if request.endpoint == "static":
        return None
    if not validate_csrf():
        log_warning("csrf_rejected")
        return "Invalid CSRF token.", 400


@app.errorhandler(413)
def request_entity_too_large(error):
    return "Upload too large.", 413


def get_client_id():
    return request.remote_addr or "anonymous"


def check_rate_limit(bucket, client_id):
    limit, window = RATE_LIMITS.get(bucket, (0, 0))
    if limit <= 0 or window <= 0:
        return True, 0
    now = time.time()
    cutoff = now - window
    key = f"{bucket}:{client_id}"
    timestamps = RATE_LIMIT_STATE.get(key, [])
    timestamps = [stamp for stamp in timestamps if stamp > cutoff]
    if len(timestamps) >= limit:
        retry_after = int(window - (now - timestamps[0]))
        return False, max(retry_after, 1)
    timestamps.append(now)
    RATE_LIMIT_STATE[key] = timestamps
    return True, 0


def prune_view_cache(now=None):
    if not VIEW_CACHE:
        return
    now = time.time() if now is None else now
    expired = [token for token, view in VIEW_CACHE.items() if now - view.ts > VIEW_CACHE_TTL]
    for token in expired:
        del VIEW_CACHE[token]


def create_view(filename, protocol, parsed):
    config = load_viewer_config(protocol, CONFIG_DIR)
    view = ViewSession(filename, protocol, parsed, config, row_cap=MAX_PREVIEW_ROWS)
    with VIEW_LOCK:
        prune_view_cache()
        VIEW_CACHE[view.token] = view
    log_event(
        "view_opened",
        {
            "filename": filename,
            "protocol": protocol,
            "rows": len(parsed.rows),
            "projected": len(view.rows),
            "config_warnings": len(config.warnings),
        },
    )
    return view


def get_view(token):
    with VIEW_LOCK:
        prune_view_cache()
        view = VIEW_CACHE.get(token)
        if view is not None:
            view.touch()
    return view


def view_payload(view, search_term=""):
    visible = view.visible(search_term)
    rows = []
    for row in visible:
        item = row.to_dict()
        item["style"] = view.style_for(row)
        rows.append(item)
    return {
        "view": view.info(),
        "rows": rows,
        "visible": len(visible),
        "sidebar": [entry.to_dict() for entry in view.sidebar()],
        "summary": view.summary(visible),
    }


def row_style_attr(style):
    if not style:
        return ""
    return (
        f"background-color: {style.get('backgroundColor') or 'inherit'}; "
        f"color: {style.get('textColor') or 'inherit'};"
    )


STYLE_BLOCK = """
  <link rel="stylesheet" href="https://fonts.googleapis.com/icon?family=Material+Icons">
  <style>
    :root {
      color-scheme: light;
      font-family: "Inter", "Segoe UI", system-ui, -apple-system, BlinkMacSystemFont, sans-serif;
      --bg: #f1f5f9;
      --card-bg: #fff;
      --accent: #0f766e;
      --accent-hover: #115e59;
      --text-muted: #64748b;
      --border: #e2e8f0;
      --row-odd: #ffffff;
      --row-even: #f0f4f8;
      --row-hover: #e8f4fc;
    }

    * {
      box-sizing: border-box;
    }

    body {
      margin: 0;
      background: var(--bg);
      padding: 1.25rem 2rem;
      color: #0f172a;
    }

    .top-bar {
      display: flex;
      align-items: center;
      justify-content: space-between;
      margin-bottom: 0.75rem;
    }

    .brand-title {
      font-weight: 700;
      font-size: 1.05rem;
    }

    .brand-subtitle,
    .hint {
      font-size: 0.85rem;
      color: var(--text-muted);
    }

    .card {
      background: var(--card-bg);
      border: 1px solid var(--border);
      border-radius: 14px;
      padding: 1.25rem 1.5rem;
    }

    .card-header {
      display: flex;
      align-items: flex-start;
      justify-content: space-between;
      gap: 1rem;
      margin-bottom: 1rem;
    }

    .page-title {
      display: inline-flex;
      align-items: center;
      gap: 0.5rem;
      font-size: 1.35rem;
      margin: 0;
    }

    .badge {
      display: inline-block;
      border-radius: 999px;
      padding: 0.2rem 0.7rem;
      background: #f1f5f9;
      color: #475569;
      font-size: 0.8rem;
      font-weight: 600;
      margin-right: 0.35rem;
    }

    .result {
      border-radius: 10px;
      padding: 0.75rem 1rem;
      margin-bottom: 1rem;
      white-space: pre-line;
    }

    .result.error {
      background: #fef2f2;
      color: #991b1b;
      border: 1px solid #fecaca;
    }

    .result.success {
      background: #f0fdf4;
      color: #166534;
      border: 1px solid #bbf7d0;
    }

    label {
      display: block;
      font-weight: 600;
      font-size: 0.85rem;
      margin-bottom: 0.3rem;
    }

    input[type="text"],
    select {
      border: 1px solid var(--border);
      border-radius: 10px;
      padding: 0.5rem 0.75rem;
      font-size: 0.95rem;
      min-width: 220px;
    }

    .primary-button,
    .secondary-button {
      display: inline-flex;
      align-items: center;
      gap: 0.35rem;
      border-radius: 10px;
      padding: 0.5rem 0.9rem;
      font-weight: 600;
      font-size: 0.9rem;
      text-decoration: none;
      cursor: pointer;
    }

    .primary-button {
      border: none;
      background: var(--accent);
      color: #fff;
    }

    .primary-button:hover {
      background: var(--accent-hover);
    }

    .secondary-button {
      border: 1px solid var(--border);
      background: #fff;
      color: var(--accent);
    }

    .material-icons {
      font-size: 18px;
      line-height: 1;
    }

    .form-row {
      display: flex;
      align-items: flex-end;
      gap: 0.75rem;
      flex-wrap: wrap;
    }

    .viewer {
      display: flex;
      gap: 1rem;
      align-items: flex-start;
    }

    .sidebar {
      width: 280px;
      flex-shrink: 0;
      border: 1px solid var(--border);
      border-radius: 12px;
      padding: 0.5rem;
      max-height: 75vh;
      overflow-y: auto;
    }

    .sidebar h2 {
      font-size: 0.9rem;
      margin: 0.25rem 0.5rem 0.5rem;
    }

    .message-filter-item {
      width: 100%;
      text-align: left;
      border: none;
      background: transparent;
      padding: 0.4rem 0.5rem;
      border-radius: 8px;
      font-size: 0.85rem;
      cursor: pointer;
      white-space: nowrap;
      overflow: hidden;
      text-overflow: ellipsis;
    }

    .message-filter-item:hover {
      background: #f1f5f9;
    }

    .message-filter-item.filtered {
      color: #94a3b8;
      text-decoration: line-through;
    }

    .table-wrap {
      flex: 1;
      overflow-x: auto;
    }

    table.data-table {
      width: 100%;
      border-collapse: collapse;
      font-family: "Consolas", "Monaco", "Courier New", monospace;
      font-size: 13px;
    }

    table.data-table th {
      text-align: left;
      position: sticky;
      top: 0;
      background: #f8fafc;
      border-bottom: 2px solid var(--border);
      padding: 0.4rem 0.5rem;
    }

    table.data-table td {
      padding: 0.3rem 0.5rem;
      border-bottom: 1px solid #dee2e6;
      vertical-align: top;
    }

    table.data-table tbody tr:nth-child(odd) {
      background-color: var(--row-odd);
    }

    table.data-table tbody tr:nth-child(even) {
      background-color: var(--row-even);
    }

    table.data-table tbody tr:hover {
      background-color: var(--row-hover) !important;
    }

    td.line-number {
      color: var(--text-muted);
      white-space: nowrap;
    }

    td.empty,
    td.summary {
      text-align: center;
      color: #666;
      font-style: italic;
    }

    mark {
      background: #fde68a;
      padding: 0;
    }

    .chart-box {
      margin-bottom: 1.5rem;
    }
  </style>
"""

NAV_HTML = """
  <header class="top-bar">
    <div>
      <div class="brand-title">CAN Log Viewer</div>
      <div class="brand-subtitle">Bus log post-processing</div>
    </div>
    <a class="secondary-button" href="{{ start_url }}"><span class="material-icons" aria-hidden="true">home</span>Start</a>
  </header>
"""

START_HTML = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <title>CAN Log Viewer</title>
  {{ style_block|safe }}
</head>
<body>
  {{ nav_html|safe }}
  <div class="card">
    <div class="card-header">
      <div>
        <h1 class="page-title"><span class="material-icons" aria-hidden="true">table_view</span>Open a log export</h1>
        <p class="hint">Pick a stored CSV export by name. Parsing is done by the parse service at {{ parse_service_url }}.</p>
      </div>
    </div>

    {% if messages %}
    <div class="result {{ result_class }}">{{ messages|join('\n') }}</div>
    {% endif %}

    <form method="GET" action="{{ view_url }}">
      <div class="form-row">
        <div>
          <label for="file">File name</label>
          <input id="file" type="text" name="file" value="{{ filename }}" placeholder="session_01.csv">
        </div>
        <div>
          <label for="protocol">Protocol</label>
          <select id="protocol" name="protocol">
            {% for item in protocols %}
            <option value="{{ item }}" {% if item == protocol %}selected{% endif %}>{{ item }}</option>
            {% endfor %}
          </select>
        </div>
        <button type="submit" class="primary-button"><span class="material-icons" aria-hidden="true">visibility</span>View</button>
        <a class="secondary-button" href="{{ sample_url }}"><span class="material-icons" aria-hidden="true">download</span>Sample CSV</a>
      </div>
    </form>
  </div>
</body>
</html>
"""

VIEW_HTML = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <title>{{ view.filename }} - CAN Log Viewer</title>
  {{ style_block|safe }}
</head>
<body>
  {{ nav_html|safe }}
  <div class="card">
    <div class="card-header">
      <div>
        <h1 class="page-title"><span class="material-icons" aria-hidden="true">description</span>{{ view.filename }}</h1>
        <span class="badge">{{ view.protocol }} | rows:{{ view.parsed.total }} | columns:{{ view.parsed.headers|length }}</span>
        <span class="badge">visible:{{ rows|length }}</span>
      </div>
      <div class="form-row">
        <form method="GET" action="{{ self_url }}">
          <div class="form-row">
            <input type="text" name="q" value="{{ search_term }}" placeholder="Search rows...">
            <button type="submit" class="secondary-button"><span class="material-icons" aria-hidden="true">search</span>Search</button>
          </div>
        </form>
        <a class="secondary-button" href="{{ statistics_url }}"><span class="material-icons" aria-hidden="true">show_chart</span>Statistics</a>
      </div>
    </div>

    <div class="viewer">
      <aside class="sidebar">
        <h2>{{ sidebar_title }}</h2>
        {% for entry in sidebar %}
        <form method="POST" action="{{ toggle_url }}">
          <input type="hidden" name="csrf_token" value="{{ csrf_token }}">
          <input type="hidden" name="message_ids" value="{{ entry.ids|join(',') }}">
          <input type="hidden" name="q" value="{{ search_term }}">
          <button type="submit" class="message-filter-item {% if entry.filtered %}filtered{% endif %}" title="{{ entry.label }}">{{ entry.label }}</button>
        </form>
        {% else %}
        <div class="hint">No messages.</div>
        {% endfor %}
      </aside>

      <div class="table-wrap">
        <table class="data-table">
          <thead>
            <tr>{% for header in headers %}<th>{{ header }}</th>{% endfor %}</tr>
          </thead>
          <tbody>
            {% for row in rows %}
            <tr style="{{ row.style }}">
              <td class="line-number">{{ row.line_number }}</td>
              {% for cell in row.cells %}<td>{{ cell|safe }}</td>{% endfor %}
            </tr>
            {% else %}
            <tr><td colspan="{{ headers|length }}" class="empty">No data</td></tr>
            {% endfor %}
            {% if summary %}
            <tr><td colspan="{{ headers|length }}" class="summary">{{ summary }}</td></tr>
            {% endif %}
          </tbody>
        </table>
      </div>
    </div>
  </div>
</body>
</html>
"""

STATISTICS_HTML = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <title>Statistics - {{ view.filename }}</title>
  {{ style_block|safe }}
  <script src="https://cdn.jsdelivr.net/npm/chart.js"></script>
</head>
<body>
  {{ nav_html|safe }}
  <div class="card">
    <div class="card-header">
      <div>
        <h1 class="page-title"><span class="material-icons" aria-hidden="true">show_chart</span>Statistics</h1>
        <span class="badge">{{ view.filename }}</span>
        <span class="badge">{{ point_summary }}</span>
      </div>
      <a class="secondary-button" href="{{ back_url }}"><span class="material-icons" aria-hidden="true">arrow_back</span>Back</a>
    </div>
    {% if not has_points %}
    <div class="result error">No chart data found in this file.</div>
    {% endif %}
    {% for title in series %}
    <div class="chart-box"><h2>{{ title }}</h2><canvas data-series="{{ title }}"></canvas></div>
    {% endfor %}
    <div class="chart-box"><h2>Messages per second</h2><canvas data-rate></canvas></div>
    <div class="chart-box"><h2>Messages per identifier</h2><canvas data-counts></canvas></div>
  </div>
  <script>
    const seriesData = {{ series|tojson }};
    const rateData = {{ rate|tojson }};
    const countData = {{ counts|tojson }};
    document.querySelectorAll("canvas[data-series]").forEach((canvas) => {
      const groups = seriesData[canvas.dataset.series] || {};
      new Chart(canvas, {
        type: "line",
        data: {
          datasets: Object.keys(groups).map((label) => ({
            label: label,
            data: groups[label].map((point) => ({ x: point.time, y: point.value })),
            pointRadius: 1,
          })),
        },
        options: { parsing: true, scales: { x: { type: "category" } } },
      });
    });
    new Chart(document.querySelector("canvas[data-rate]"), {
      type: "line",
      data: {
        labels: rateData.map((point) => point.time),
        datasets: [{ label: "Messages", data: rateData.map((point) => point.value), pointRadius: 1 }],
      },
    });
    const countCanvas = document.querySelector("canvas[data-counts]");
    new Chart(countCanvas, {
      type: "bar",
      data: {
        labels: countData.map((entry) => entry.label),
        datasets: [{ label: "Rows", data: countData.map((entry) => entry.count) }],
      },
    });
  </script>
</body>
</html>
"""


def nav_context():
    return render_template_string(NAV_HTML, start_url=url_for("index"))


def render_start_page(messages=None, result_class="success", filename="", protocol="CAN"):
    return render_template_string(
        START_HTML,
        style_block=STYLE_BLOCK,
        nav_html=nav_context(),
        messages=messages or [],
        result_class=result_class,
        filename=filename,
        protocol=protocol,
        protocols=PROTOCOLS,
        parse_service_url=PARSE_SERVICE_URL,
        view_url=url_for("open_view"),
        sample_url=url_for("sample_csv"),
    )


def render_view_page(view, search_term=""):
    visible = view.visible(search_term)
    rows = []
    for row in visible:
        rows.append(
            {
                "line_number": row.line_number,
                "style": row_style_attr(view.style_for(row)),
                "cells": [highlight_cell(cell, search_term) for cell in row.cells()],
            }
        )
    sidebar_title = "Available CANopen messages" if view.protocol == "CANOPEN" else "Available CAN messages"
    return render_template_string(
        VIEW_HTML,
        style_block=STYLE_BLOCK,
        nav_html=nav_context(),
        view=view,
        rows=rows,
        headers=UNIFIED_HEADERS,
        sidebar=view.sidebar(),
        sidebar_title=sidebar_title,
        summary=view.summary(visible),
        search_term=search_term,
        csrf_token=get_csrf_token(),
        self_url=url_for("show_view", token=view.token),
        toggle_url=url_for("toggle_view_filter", token=view.token),
        statistics_url=url_for("view_statistics", token=view.token),
    )


def expired_view_page():
    return render_start_page(["View expired or not found. Please open the file again."], "error")


@app.route("/", methods=["GET"])
def index():
    return render_start_page()


@app.route("/view", methods=["GET"])
def open_view():
    raw_filename = request.args.get("file", "").strip()
    protocol_raw = request.args.get("protocol", "CAN")
    if not raw_filename:
        return render_start_page(["Missing file parameter."], "error"), 400
    filename = secure_filename(raw_filename)
    if not filename:
        return render_start_page(["Invalid file name."], "error"), 400
    try:
        protocol = normalize_protocol(protocol_raw)
    except ValueError as exc:
        return render_start_page([str(exc)], "error", filename=filename), 400

    allowed, retry_after = check_rate_limit("view", get_client_id())
    if not allowed:
        return render_start_page([f"Too many requests. Try again in {retry_after}s."], "error", filename, protocol), 429

    try:
        parsed = fetch_parsed_csv(filename, protocol, PARSE_SERVICE_URL, PARSE_SERVICE_TIMEOUT)
    except ParseServiceError as exc:
        log_event("parse_failed", {"filename": filename, "protocol": protocol, "error": str(exc)}, level="error")
        return render_start_page([f"Parse failed: {exc}"], "error", filename, protocol)

    view = create_view(filename, protocol, parsed)
    return redirect(url_for("show_view", token=view.token))


@app.route("/view/<token>", methods=["GET"])
def show_view(token):
    view = get_view(token)
    if view is None:
        return expired_view_page()
    search_term = request.args.get("q", "").strip()
    return render_view_page(view, search_term)


@app.route("/view/<token>/toggle", methods=["POST"])
def toggle_view_filter(token):
    view = get_view(token)
    if view is None:
        return expired_view_page()
    ids = parse_id_list(request.form.get("message_ids", ""))
    view.toggle(ids)
    search_term = request.form.get("q", "").strip()
    if search_term:
        return redirect(url_for("show_view", token=token, q=search_term))
    return redirect(url_for("show_view", token=token))


@app.route("/view/<token>/statistics", methods=["GET"])
def view_statistics(token):
    view = get_view(token)
    if view is None:
        return expired_view_page()
    series = view.series()
    rate = view.rate()
    point_counts = []
    has_points = bool(rate)
    for groups in series.values():
        for label, points in groups.items():
            point_counts.append(f"{label}: {len(points)}")
            has_points = has_points or bool(points)
    return render_template_string(
        STATISTICS_HTML,
        style_block=STYLE_BLOCK,
        nav_html=nav_context(),
        view=view,
        series=series,
        counts=view.counts(),
        rate=rate,
        has_points=has_points,
        point_summary=", ".join(point_counts) or "no series",
        back_url=url_for("show_view", token=token),
    )


@app.route("/sample.csv", methods=["GET"])
def sample_csv():
    buffer = make_test_csv.build_csv_bytes()
    return send_file(
        buffer,
        mimetype="text/csv",
        as_attachment=True,
        download_name=make_test_csv.OUT_FILE,
    )


@app.route("/api/view", methods=["POST"])
def api_create_view():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"success": False, "message": "Expected a JSON object."}), 400
    try:
        protocol = normalize_protocol(payload.get("protocol"))
    except ValueError as exc:
        return jsonify({"success": False, "message": str(exc)}), 400
    filename = secure_filename(str(payload.get("filename") or "")) or "upload.csv"
    result = payload.get("result", payload)
    try:
        parsed = parsed_csv_from_payload(result)
    except ParseServiceError as exc:
        log_event("parse_failed", {"filename": filename, "protocol": protocol, "error": str(exc)}, level="error")
        return jsonify({"success": False, "message": str(exc)}), 422
    view = create_view(filename, protocol, parsed)
    body = view_payload(view)
    body["success"] = True
    return jsonify(body)


@app.route("/api/view/<token>/rows", methods=["GET"])
def api_view_rows(token):
    view = get_view(token)
    if view is None:
        return jsonify({"error": "not_found"}), 404
    return jsonify(view_payload(view, request.args.get("q", "").strip()))


@app.route("/api/view/<token>/toggle", methods=["POST"])
def api_toggle_view_filter(token):
    view = get_view(token)
    if view is None:
        return jsonify({"error": "not_found"}), 404
    payload = request.get_json(silent=True) or {}
    ids = parse_id_list(payload.get("ids", ""))
    if not ids:
        return jsonify({"error": "missing_ids"}), 400
    hidden = view.toggle(ids)
    body = view_payload(view, str(payload.get("q") or "").strip())
    body["hidden"] = hidden
    return jsonify(body)


@app.route("/api/view/<token>/series", methods=["GET"])
def api_view_series(token):
    view = get_view(token)
    if view is None:
        return jsonify({"error": "not_found"}), 404
    return jsonify({"series": view.series(), "rate": view.rate(), "counts": view.counts()})


if __name__ == "__main__":
    app.run(host=os.environ.get("HOST", "127.0.0.1"), port=int(os.environ.get("PORT", "5000")))
