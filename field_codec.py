"""
Decode CAN payload bytes into readable field text.

The decode rules live in a JSON document keyed by lowercase hex message id:

    {"2cf": {"bytes": {
        "0":   {"type": "enum", "order": 1, "values": {"10": "Anode Heat"}},
        "5-6": {"type": "uint16_le", "name": "HUR", "scale": 0.01, "precision": 2, "unit": "%"}
    }}}

Entries with "matchBy": "name" are keyed by the CSV Name column instead and
only carry a fixed "displayText".
"""

import re
import math
import struct
import decimal
from dataclasses import dataclass, field

FIELD_TYPES = (
    "enum",
    "uint8",
    "uint16_le",
    "uint24_le",
    "uint32_le",
    "float32_le",
    "hex8",
    "hex16_le",
    "hex32_le",
    "bitfield",
    "ascii",
)
UINT_WIDTHS = {"uint8": 1, "uint16_le": 2, "uint24_le": 3, "uint32_le": 4}
DEFAULT_ORDER = 999
MAX_PRECISION = 20
FIELD_SEPARATOR = " - "
BYTE_RANGE_RE = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")
HEX_TOKEN_RE = re.compile(r"^[0-9a-fA-F]{1,2}$")


@dataclass
class BitField:
    start: int
    bits: int
    name: str = ""
    values: dict = field(default_factory=dict)

    def extract(self, byte_value):
        mask = ((1 << self.bits) - 1) << self.start
        return (byte_value & mask) >> self.start


@dataclass
class FieldSpec:
    key: str
    start: int
    end: int
    type: str = ""
    name: str = ""
    order: float = DEFAULT_ORDER
    scale: float = None
    precision: int = None
    unit: str = ""
    values: dict = field(default_factory=dict)
    fields: list = field(default_factory=list)
    zero_text: str = ""
    non_zero_text: str = ""
    hide_if_zero: bool = False

    def prefixed(self, text, separator=" "):
        if self.name and self.name != self.key:
            return f"{self.name}{separator}{text}"
        return text


@dataclass
class MessageLayout:
    key: str
    fields: list = field(default_factory=list)
    match_by: str = "id"
    display_text: str = ""


@dataclass
class DecodeConfig:
    messages: dict = field(default_factory=dict)
    names: dict = field(default_factory=dict)

    def __bool__(self):
        return bool(self.messages or self.names)


def format_fixed(value, precision):
    """Fixed-point text that rounds ties away from zero on the exact binary value."""
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        value = 0
    with decimal.localcontext() as ctx:
        ctx.prec = 80
        quantum = decimal.Decimal(1).scaleb(-precision)
        result = decimal.Decimal(value).quantize(quantum, rounding=decimal.ROUND_HALF_UP)
    return format(result, "f")


def byte_values(tokens):
    values = []
    for token in tokens:
        if not HEX_TOKEN_RE.match(token):
            raise ValueError(f"Invalid hex byte {token!r}.")
        values.append(int(token, 16))
    return values


def little_endian(values):
    total = 0
    for idx, value in enumerate(values):
        total += value << (8 * idx)
    return total


def split_tokens(byte_tokens):
    if byte_tokens is None:
        return []
    if isinstance(byte_tokens, str):
        return byte_tokens.split()
    tokens = []
    for token in byte_tokens:
        text = str(token).strip()
        if text:
            tokens.append(text)
    return tokens


def _decode_enum(spec, chunk):
    value = byte_values(chunk[:1])[0]
    text = spec.values.get(chunk[0].lower()) or spec.values.get(f"{value:02x}")
    if text:
        return text, None
    return " ".join(chunk), None


def _decode_uint(spec, chunk):
    width = UINT_WIDTHS[spec.type]
    if len(chunk) < width:
        return None, None
    value = little_endian(byte_values(chunk[:width]))
    if spec.scale:
        precision = spec.precision
        if precision is None:
            precision = 2 if spec.type == "uint32_le" else 1
        value = value * spec.scale
        text = format_fixed(value, precision)
    else:
        text = str(value)
    return spec.prefixed(f"{text}{spec.unit}"), value


def _decode_float32(spec, chunk):
    if len(chunk) < 4:
        return None, None
    value = struct.unpack("<f", bytes(byte_values(chunk[:4])))[0]
    precision = spec.precision or 2
    text = format_fixed(value, precision)
    return spec.prefixed(f"{text}{spec.unit}"), value


def _decode_hex8(spec, chunk):
    value = byte_values(chunk[:1])[0]
    if value == 0 and spec.zero_text:
        return spec.zero_text, value
    if value != 0 and spec.non_zero_text:
        return spec.non_zero_text, value
    return f"0x{value:02X}", value


def _decode_hex16(spec, chunk):
    if len(chunk) < 2:
        return None, None
    low, high = byte_values(chunk[:2])
    return f"0x{high:02X}{low:02X}", little_endian([low, high])


def _decode_hex32(spec, chunk):
    if len(chunk) < 4:
        return None, None
    values = byte_values(chunk[:4])
    text = "0x" + "".join(f"{value:02X}" for value in reversed(values))
    return spec.prefixed(text, ": "), little_endian(values)


def _decode_bitfield(spec, chunk):
    if not spec.fields:
        return None, None
    byte_value = byte_values(chunk[:1])[0]
    parts = []
    for bit in spec.fields:
        bit_value = bit.extract(byte_value)
        text = bit.values.get(str(bit_value)) or str(bit_value)
        parts.append(f"{bit.name}:{text}" if bit.name else text)
    return FIELD_SEPARATOR.join(parts), byte_value


def _decode_ascii(spec, chunk):
    codes = byte_values(chunk)
    text = "".join(chr(code) for code in codes if 32 <= code <= 126)
    if not text:
        return None, None
    return spec.prefixed(f'"{text}"', ": "), None


def _decode_raw(spec, chunk):
    return " ".join(chunk), None


FIELD_DECODERS = {
    "enum": _decode_enum,
    "uint8": _decode_uint,
    "uint16_le": _decode_uint,
    "uint24_le": _decode_uint,
    "uint32_le": _decode_uint,
    "float32_le": _decode_float32,
    "hex8": _decode_hex8,
    "hex16_le": _decode_hex16,
    "hex32_le": _decode_hex32,
    "bitfield": _decode_bitfield,
    "ascii": _decode_ascii,
}


def decode_field(spec, tokens):
    """Return (display_text, numeric_value) for one field, or (None, None) when skipped."""
    if spec.start >= len(tokens):
        return None, None
    chunk = tokens[spec.start:min(spec.end + 1, len(tokens))]
    decoder = FIELD_DECODERS.get(spec.type, _decode_raw)
    try:
        return decoder(spec, chunk)
    except ValueError:
        return None, None


def decode(message_id, byte_tokens, config):
    if not message_id:
        return None
    config = as_decode_config(config)
    layout = config.messages.get(str(message_id).strip().lower())
    if layout is None or not layout.fields:
        return None
    tokens = split_tokens(byte_tokens)
    if not tokens:
        return None
    parts = []
    for spec in layout.fields:
        text, value = decode_field(spec, tokens)
        if spec.hide_if_zero and not value:
            continue
        if text is not None:
            parts.append(text)
    if not parts:
        return None
    return FIELD_SEPARATOR.join(parts)


def decode_name(name, config):
    if not name:
        return None
    layout = as_decode_config(config).names.get(name)
    if layout is None:
        return None
    return layout.display_text or None


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text_map(values, label):
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise ValueError(f"{label} must be an object.")
    return {str(key).strip().lower(): str(text) for key, text in values.items()}


def compile_bitfield(index, cfg):
    if not isinstance(cfg, dict):
        raise ValueError(f"bit field {index} must be an object.")
    start = cfg.get("start")
    bits = cfg.get("bits")
    if not isinstance(start, int) or isinstance(start, bool) or start < 0:
        raise ValueError(f"bit field {index} needs a non-negative integer start.")
    if not isinstance(bits, int) or isinstance(bits, bool) or bits < 1:
        raise ValueError(f"bit field {index} needs a positive integer bits.")
    if start + bits > 8:
        raise ValueError(f"bit field {index} does not fit in one byte.")
    return BitField(
        start=start,
        bits=bits,
        name=str(cfg.get("name") or ""),
        values=_text_map(cfg.get("values"), f"bit field {index} values"),
    )


def compile_field(range_key, cfg):
    if not isinstance(cfg, dict):
        raise ValueError("field rule must be an object.")
    match = BYTE_RANGE_RE.match(str(range_key))
    if not match:
        raise ValueError("byte range must look like '3' or '5-6'.")
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) is not None else start
    if end < start:
        raise ValueError("byte range end is before its start.")

    field_type = str(cfg.get("type") or "")
    scale = cfg.get("scale")
    if scale is not None and not _is_number(scale):
        raise ValueError("scale must be a number.")
    precision = cfg.get("precision")
    if precision is not None:
        if not isinstance(precision, int) or isinstance(precision, bool):
            raise ValueError("precision must be an integer.")
        if not 0 <= precision <= MAX_PRECISION:
            raise ValueError(f"precision must be between 0 and {MAX_PRECISION}.")
    order = cfg.get("order", DEFAULT_ORDER)
    if not _is_number(order):
        raise ValueError("order must be a number.")

    fields = []
    if field_type == "bitfield":
        raw_fields = cfg.get("fields")
        if not isinstance(raw_fields, list) or not raw_fields:
            raise ValueError("bitfield needs a non-empty fields list.")
        fields = [compile_bitfield(idx, sub) for idx, sub in enumerate(raw_fields)]

    return FieldSpec(
        key=str(range_key),
        start=start,
        end=end,
        type=field_type,
        name=str(cfg.get("name") or ""),
        order=order,
        scale=scale,
        precision=precision,
        unit=str(cfg.get("unit") or ""),
        values=_text_map(cfg.get("values"), "values"),
        fields=fields,
        zero_text=str(cfg.get("zeroText") or ""),
        non_zero_text=str(cfg.get("nonZeroText") or ""),
        hide_if_zero=bool(cfg.get("hideIfZero")),
    )


def field_sort_key(item):
    """Order first; on ties plain index keys ("0", "7") go first by value, ranges keep document order."""
    position, spec = item
    key = spec.key
    if key.isascii() and key.isdigit() and str(int(key)) == key:
        return (spec.order, 0, int(key))
    return (spec.order, 1, position)


def compile_decode_config(raw):
    """
    Validate a decode rules document.

    Returns (DecodeConfig, errors). Broken fields are dropped and reported,
    the remaining fields of the same message are kept. Fields with an unknown
    type are kept and render their raw hex.
    """
    config = DecodeConfig()
    errors = []
    if raw is None:
        return config, errors
    if not isinstance(raw, dict):
        errors.append("decode rules must be an object keyed by message id.")
        return config, errors

    for message_key, entry in raw.items():
        label = str(message_key)
        if not isinstance(entry, dict):
            errors.append(f"{label}: rule must be an object.")
            continue
        if entry.get("matchBy") == "name":
            config.names[label] = MessageLayout(
                key=label,
                match_by="name",
                display_text=str(entry.get("displayText") or ""),
            )
            continue
        byte_rules = entry.get("bytes", {})
        if not isinstance(byte_rules, dict):
            errors.append(f"{label}: bytes must be an object.")
            continue
        fields = []
        for range_key, field_cfg in byte_rules.items():
            try:
                spec = compile_field(range_key, field_cfg)
            except ValueError as exc:
                errors.append(f"{label} bytes {range_key}: {exc}")
                continue
            if spec.type and spec.type not in FIELD_TYPES:
                errors.append(f"{label} bytes {range_key}: unknown type {spec.type!r}, showing raw hex.")
            fields.append(spec)
        fields = [spec for _, spec in sorted(enumerate(fields), key=field_sort_key)]
        key = label.strip().lower()
        config.messages[key] = MessageLayout(key=key, fields=fields)
    return config, errors


def as_decode_config(config):
    if isinstance(config, DecodeConfig):
        return config
    if not config:
        return DecodeConfig()
    return compile_decode_config(config)[0]
