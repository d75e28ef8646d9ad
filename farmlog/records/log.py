"""The store-shape log record."""

from dataclasses import dataclass, field, fields, replace
from typing import Any

from .envelope import Field

SEEDING_TYPE = "farm_seeding"

# Fields dropped from seeding logs
SEEDING_EXCLUDED = ("area", "geofield")

# Envelope field name -> factory for its empty value
FIELD_DEFAULTS = {
    "log_owner": str,
    "notes": str,
    "quantity": list,
    "log_category": list,
    "equipment": list,
    "name": str,
    "type": str,
    "timestamp": str,
    "images": list,
    "done": lambda: True,
    "asset": list,
    "movement": lambda: {"area": [], "geometry": ""},
    "area": list,
    "geofield": list,
}

ENVELOPE_FIELDS = tuple(FIELD_DEFAULTS)

# Envelope fields holding structured values (sequences or mappings)
COLLECTION_FIELDS = (
    "quantity",
    "log_category",
    "equipment",
    "asset",
    "movement",
    "area",
    "geofield",
)

FLAG_FIELDS = ("is_cached_locally", "is_ready_to_sync", "was_pushed_to_server")


def empty_field(name: str) -> Field:
    """An unedited envelope holding the zero value for ``name``."""
    return Field(data=FIELD_DEFAULTS[name](), changed=None)


def _default(name: str):
    return field(default_factory=lambda: empty_field(name))


def is_seeding(log_type: Any) -> bool:
    """Whether a log type (raw or enveloped) is a seeding."""
    if isinstance(log_type, Field):
        log_type = log_type.data
    return log_type == SEEDING_TYPE


@dataclass
class LogRecord:
    """A farm log as held by the client store.

    Every user-editable value is wrapped in a Field so the merge can
    compare edits field by field. ``area`` and ``geofield`` are None
    for seedings.
    """

    log_owner: Field = _default("log_owner")
    notes: Field = _default("notes")
    quantity: Field = _default("quantity")
    log_category: Field = _default("log_category")
    equipment: Field = _default("equipment")
    name: Field = _default("name")
    type: Field = _default("type")
    timestamp: Field = _default("timestamp")
    images: Field = _default("images")
    done: Field = _default("done")
    asset: Field = _default("asset")
    movement: Field = _default("movement")
    area: Field | None = _default("area")
    geofield: Field | None = _default("geofield")
    id: str | None = None
    local_id: int | str | None = None
    is_cached_locally: bool = False
    is_ready_to_sync: bool = False
    was_pushed_to_server: bool = False
    remote_uri: str = ""

    def __post_init__(self) -> None:
        if is_seeding(self.type):
            self.area = None
            self.geofield = None

    @property
    def is_seeding(self) -> bool:
        return is_seeding(self.type)

    def envelopes(self) -> dict[str, Field]:
        """Envelope fields present on this record."""
        result = {}
        for name in ENVELOPE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        return result

    def value(self, name: str) -> Any:
        """Raw data of an envelope field, or None if absent."""
        envelope = getattr(self, name)
        return envelope.data if envelope is not None else None

    def copy(self, **changes: Any) -> "LogRecord":
        """Return a copy with the given attributes replaced."""
        return replace(self, **changes)

    def as_dict(self) -> dict[str, Any]:
        """All attributes, envelopes left as Field instances."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def default_record() -> LogRecord:
    """A fully populated zero-value record."""
    return LogRecord()
