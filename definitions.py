import re
from dataclasses import dataclass, field

HEX_ID_RE = re.compile(r"^[0-9a-fA-F]+$")
NA_ID = "N/A"


def is_hex_id(identifier):
    return bool(identifier) and bool(HEX_ID_RE.match(str(identifier)))


def format_id_label(identifier, description=""):
    identifier = str(identifier)
    if is_hex_id(identifier):
        formatted = "0x" + identifier.upper()
        if description and description != identifier:
            return f"{formatted} - {description}"
        return formatted
    return description or identifier


@dataclass
class MessageDefinition:
    key: str
    description: str = ""
    dec: str = ""
    hex: str = ""
    virtual_id: str = ""


@dataclass
class Resolution:
    description: str
    display_id: str
    defined: bool = False


@dataclass
class SidebarEntry:
    display_id: str
    description: str
    ids: list = field(default_factory=list)
    filtered: bool = False

    @property
    def label(self):
        return format_id_label(self.display_id, self.description)

    def to_dict(self):
        return {
            "displayId": self.display_id,
            "label": self.label,
            "description": self.description,
            "ids": list(self.ids),
            "filtered": self.filtered,
        }


def _optional_text(value):
    if value is None:
        return ""
    return str(value).strip()


def normalize_definition(key, value):
    if isinstance(value, str):
        return MessageDefinition(key=key, description=value)
    if not isinstance(value, dict):
        return None
    return MessageDefinition(
        key=key,
        description=_optional_text(value.get("description")),
        dec=_optional_text(value.get("dec")),
        hex=_optional_text(value.get("hex")).lower(),
        virtual_id=_optional_text(value.get("virtualId")),
    )


class Definitions:
    """
    Identifier lookup over the CAN definitions table and the name definitions.

    Indexes are built once per configuration load: lowercase hex key, the
    decimal "dec" field and the "hex" field of object entries.
    """

    def __init__(self, can_definitions=None, name_definitions=None):
        self.by_hex = {}
        self.by_dec = {}
        self.by_hex_field = {}
        self.by_name = {}

        if isinstance(can_definitions, dict):
            for key, value in can_definitions.items():
                hex_key = str(key).strip().lower()
                entry = normalize_definition(hex_key, value)
                if entry is None:
                    continue
                self.by_hex[hex_key] = entry
                if entry.dec:
                    self.by_dec.setdefault(entry.dec, entry)
                if entry.hex:
                    self.by_hex_field.setdefault(entry.hex, entry)

        names = None
        if isinstance(name_definitions, dict):
            names = name_definitions.get("definitions")
        if isinstance(names, dict):
            for key, value in names.items():
                entry = normalize_definition(str(key), value)
                if entry is not None:
                    self.by_name[str(key)] = entry

    @property
    def is_empty(self):
        return not self.by_hex and not self.by_name

    def candidates(self, identifier):
        if identifier in self.by_name:
            yield self.by_name[identifier]
        lower = identifier.lower()
        if lower in self.by_hex:
            yield self.by_hex[lower]
        elif identifier in self.by_dec:
            yield self.by_dec[identifier]
        elif lower in self.by_hex_field:
            yield self.by_hex_field[lower]

    def resolve(self, identifier):
        identifier = "" if identifier is None else str(identifier)
        if not identifier or identifier == NA_ID:
            return Resolution(description=identifier, display_id=identifier)
        description = ""
        display_id = ""
        defined = False
        for entry in self.candidates(identifier):
            defined = True
            if not description and entry.description:
                description = entry.description
            if not display_id and entry.virtual_id:
                display_id = entry.virtual_id
        return Resolution(
            description=description or identifier,
            display_id=display_id or identifier,
            defined=defined and bool(description),
        )

    def contains(self, identifier):
        identifier = "" if identifier is None else str(identifier)
        if not identifier or identifier == NA_ID:
            return False
        if identifier in self.by_name:
            return True
        if self.is_empty:
            return True
        lower = identifier.lower()
        return lower in self.by_hex or identifier in self.by_dec or lower in self.by_hex_field

    def sidebar_entries(self, id_meanings, hidden_ids=()):
        """Group raw ids by display id; one entry per virtual id."""
        groups = {}
        for identifier, meaning in id_meanings.items():
            if not identifier or identifier == NA_ID:
                continue
            resolution = self.resolve(identifier)
            description = resolution.description if resolution.defined else (meaning or "")
            entry = groups.get(resolution.display_id)
            if entry is None:
                entry = SidebarEntry(display_id=resolution.display_id, description=description)
                groups[resolution.display_id] = entry
            elif not entry.description:
                entry.description = description
            if identifier not in entry.ids:
                entry.ids.append(identifier)

        entries = sorted(groups.values(), key=lambda item: item.display_id.casefold())
        for entry in entries:
            entry.filtered = all(identifier in hidden_ids for identifier in entry.ids)
        return entries
