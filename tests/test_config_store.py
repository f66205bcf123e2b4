import json

import config_store
from config_store import load_config_document, load_viewer_config


def write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


def test_missing_directory_gives_defaults_and_warnings(tmp_path, isolated_event_log):
    config = load_viewer_config("CAN", str(tmp_path))
    assert config.definitions.is_empty
    assert config.highlight.rules == []
    assert not config.decode_rules
    assert "definitions.json: missing" in config.warnings
    assert len(config.chart_series) == 1
    assert "config_load_failed" in isolated_event_log.read_text(encoding="utf-8")


def test_loads_protocol_directory(tmp_path):
    protocol_dir = tmp_path / "canopen"
    protocol_dir.mkdir()
    write_json(protocol_dir / "definitions.json", {"181": "TPDO1"})
    write_json(protocol_dir / "row_highlight.json", {"highlights": [{"match": "TPDO"}]})
    write_json(protocol_dir / "charts.json", {"series": []})
    config = load_viewer_config("CANOPEN", str(tmp_path))
    assert config.definitions.resolve("181").description == "TPDO1"
    assert len(config.highlight.rules) == 1
    assert config.chart_series == []


def test_invalid_documents_fall_back(tmp_path):
    protocol_dir = tmp_path / "can"
    protocol_dir.mkdir()
    (protocol_dir / "definitions.json").write_text("{not json", encoding="utf-8")
    write_json(protocol_dir / "row_highlight.json", ["wrong"])
    write_json(protocol_dir / "data_parser.json", {"2cf": {"bytes": {"0": {"type": "uint8", "precision": 99}}}})
    config = load_viewer_config("CAN", str(tmp_path))
    assert config.definitions.is_empty
    assert config.highlight.rules == []
    assert any(warning.startswith("definitions.json: invalid JSON") for warning in config.warnings)
    assert "row_highlight.json: expected a JSON dict" in config.warnings
    assert any(warning.startswith("data_parser.json: 2cf bytes 0") for warning in config.warnings)


def test_load_config_document_returns_default_without_warning_list(tmp_path):
    assert load_config_document(str(tmp_path / "nope.json"), {"a": 1}) == {"a": 1}


def test_shipped_can_configuration(shipped_config_dir):
    config = load_viewer_config("CAN", shipped_config_dir)
    assert config.warnings == []
    assert config.definitions.contains("2cf")
    assert config.definitions.resolve("RTB_ACK").display_id == "RTB"
    assert config.chart_series[0].message_id == "2cf"
    assert config.from_to.transform("RTB", "", "") == "Console => Generator"
    assert config_store.CONFIG_FILES["data_parser"] == "data_parser.json"
