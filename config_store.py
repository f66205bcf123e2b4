import os
import json
from dataclasses import dataclass, field

import field_codec
from chart_series import compile_series
from definitions import Definitions
from event_log import log_warning
from highlight import HighlightMatcher
from row_projector import FromToMapping

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_DIR = os.environ.get("CONFIG_DIR", os.path.join(BASE_DIR, "config"))
CONFIG_FILES = {
    "definitions": "definitions.json",
    "name_definitions": "name_definitions.json",
    "row_highlight": "row_highlight.json",
    "from_to_mapping": "from_to_mapping.json",
    "data_parser": "data_parser.json",
    "charts": "charts.json",
}


@dataclass
class ViewerConfig:
    definitions: Definitions = field(default_factory=Definitions)
    highlight: HighlightMatcher = field(default_factory=HighlightMatcher)
    decode_rules: field_codec.DecodeConfig = field(default_factory=field_codec.DecodeConfig)
    from_to: FromToMapping = field(default_factory=FromToMapping)
    chart_series: list = field(default_factory=list)
    warnings: list = field(default_factory=list)


def load_config_document(path, default, warnings=None):
    """Read one JSON document; anything unusable falls back to default with a warning."""
    problem = None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        problem = "missing"
    except (OSError, UnicodeDecodeError) as exc:
        problem = f"unreadable: {exc}"
    except json.JSONDecodeError as exc:
        problem = f"invalid JSON: {exc}"
    else:
        if isinstance(data, type(default)):
            return data
        problem = f"expected a JSON {type(default).__name__}"
    if warnings is not None:
        warnings.append(f"{os.path.basename(path)}: {problem}")
    log_warning("config_load_failed", {"path": path, "reason": problem})
    return default


def load_viewer_config(protocol, config_dir=None):
    config_dir = config_dir or CONFIG_DIR
    protocol_dir = os.path.join(config_dir, (protocol or "CAN").lower())
    warnings = []

    def document(name, default):
        return load_config_document(os.path.join(protocol_dir, CONFIG_FILES[name]), default, warnings)

    decode_rules, decode_errors = field_codec.compile_decode_config(document("data_parser", {}))
    if decode_errors:
        log_warning("decode_rules_invalid", {"protocol": protocol, "errors": decode_errors})
        warnings.extend(f"data_parser.json: {error}" for error in decode_errors)

    charts_doc = document("charts", {})
    chart_specs, chart_errors = compile_series(charts_doc)
    if chart_errors:
        log_warning("chart_series_invalid", {"protocol": protocol, "errors": chart_errors})
        warnings.extend(f"charts.json: {error}" for error in chart_errors)

    return ViewerConfig(
        definitions=Definitions(document("definitions", {}), document("name_definitions", {})),
        highlight=HighlightMatcher.from_config(document("row_highlight", {})),
        decode_rules=decode_rules,
        from_to=FromToMapping.from_config(document("from_to_mapping", {})),
        chart_series=chart_specs,
        warnings=warnings,
    )
