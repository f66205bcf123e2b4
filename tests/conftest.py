import os

import pytest

import event_log

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SHIPPED_CONFIG_DIR = os.path.join(ROOT_DIR, "config")


@pytest.fixture(autouse=True)
def isolated_event_log(tmp_path, monkeypatch):
    path = tmp_path / "events.log"
    monkeypatch.setattr(event_log, "EVENT_LOG_PATH", str(path))
    return path


@pytest.fixture
def shipped_config_dir():
    return SHIPPED_CONFIG_DIR
