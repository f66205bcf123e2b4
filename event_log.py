import os
import json
import datetime

from flask import request, has_request_context

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.environ.get("DATA_DIR", os.path.join(BASE_DIR, "data"))
EVENT_LOG_PATH = os.path.join(DATA_DIR, "events.log")
EVENT_LOG_MAX_MB = int(os.environ.get("EVENT_LOG_MAX_MB", "5"))
EVENT_LOG_MAX_BYTES = EVENT_LOG_MAX_MB * 1024 * 1024
EVENT_LOG_BACKUPS = int(os.environ.get("EVENT_LOG_BACKUPS", "5"))
LEVELS = ("debug", "info", "warning", "error")


def rotate_event_log(path=None):
    path = path or EVENT_LOG_PATH
    for idx in range(EVENT_LOG_BACKUPS, 0, -1):
        src = f"{path}.{idx}"
        dst = f"{path}.{idx + 1}"
        if os.path.exists(src):
            if idx >= EVENT_LOG_BACKUPS:
                os.remove(src)
            else:
                os.replace(src, dst)
    os.replace(path, f"{path}.1")


def log_event(event, details=None, level="info"):
    if level not in LEVELS:
        level = "info"
    entry = {
        "ts": datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
        "level": level,
        "event": event,
    }
    if has_request_context():
        entry["ip"] = request.headers.get("X-Forwarded-For", request.remote_addr)
        entry["path"] = request.path
        entry["method"] = request.method
    if details:
        entry["details"] = details
    path = EVENT_LOG_PATH
    try:
        os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
        rotate_needed = False
        if EVENT_LOG_MAX_BYTES > 0 and os.path.exists(path):
            try:
                rotate_needed = os.path.getsize(path) >= EVENT_LOG_MAX_BYTES
            except OSError:
                rotate_needed = False
        if rotate_needed:
            rotate_event_log(path)
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, ensure_ascii=True, default=str) + "\n")
    except OSError:
        pass
    return entry


def log_warning(event, details=None):
    return log_event(event, details, level="warning")
