"""Conversions between the store, wire and persistence shapes of a log.

Each shape pair has its own function:

- ``create``: partial store-shape mapping -> LogRecord with defaults filled in
- ``to_wire``: LogRecord -> payload for the farmOS server
- ``from_wire``: record fetched from the server -> LogRecord
- ``to_persistence``: LogRecord -> dict written to the local database
- ``from_persistence``: row read from the local database -> LogRecord
"""

from typing import Any, Mapping

from .envelope import Clock, Field, now_stamp
from .log import (
    COLLECTION_FIELDS,
    ENVELOPE_FIELDS,
    FIELD_DEFAULTS,
    FLAG_FIELDS,
    SEEDING_EXCLUDED,
    LogRecord,
    empty_field,
    is_seeding,
)
from .normalize import (
    decode_done,
    encode_done,
    format_notes,
    parse_bool,
    parse_images,
    parse_notes,
    parse_objects,
    prepare_images,
)


def _normalize(name: str, envelope: Field) -> Field:
    if name in COLLECTION_FIELDS:
        return Field(data=parse_objects(envelope.data), changed=envelope.changed)
    if name == "images":
        return Field(data=parse_images(envelope.data), changed=envelope.changed)
    if name == "done":
        return Field(data=parse_bool(envelope.data), changed=envelope.changed)
    return envelope


def create(partial: Mapping[str, Any] | LogRecord | None = None, **overrides: Any) -> LogRecord:
    """Build a store-shape record, filling defaults for omitted fields.

    Envelope values may be Field instances or ``{"data", "changed"}``
    dicts. Collection fields given as JSON text are decoded.

    Raises:
        MalformedInputError: A field cannot be normalized.
    """
    if isinstance(partial, LogRecord):
        values = partial.as_dict()
    else:
        values = dict(partial or {})
    values.update(overrides)

    log_type = values.get("type")
    seeding = is_seeding(Field.coerce(log_type)) if log_type is not None else False

    kwargs: dict[str, Any] = {}
    for name in ENVELOPE_FIELDS:
        if seeding and name in SEEDING_EXCLUDED:
            kwargs[name] = None
            continue
        raw = values.get(name)
        envelope = empty_field(name) if raw is None else Field.coerce(raw)
        kwargs[name] = _normalize(name, envelope)

    for flag in FLAG_FIELDS:
        flag_value = values.get(flag)
        kwargs[flag] = False if flag_value is None else parse_bool(flag_value)

    kwargs["id"] = values.get("id") or None
    local_id = values.get("local_id")
    kwargs["local_id"] = local_id if local_id not in (None, "") else None
    kwargs["remote_uri"] = values.get("remote_uri") or ""

    return LogRecord(**kwargs)


def to_wire(record: LogRecord) -> dict[str, Any]:
    """Flatten a record into the payload the server accepts."""
    log = {
        "notes": format_notes(record.notes.data),
        "name": record.name.data,
        "done": encode_done(record.done.data),
        "type": record.type.data,
        "timestamp": record.timestamp.data,
        "images": prepare_images(record.images.data),
        "asset": record.asset.data,
        "quantity": record.quantity.data,
        "log_category": record.log_category.data,
        "equipment": record.equipment.data,
        "movement": record.movement.data,
    }
    if record.log_owner.data:
        log["log_owner"] = record.log_owner.data
    # Omitted so the server assigns one
    if record.id:
        log["id"] = record.id
    if not record.is_seeding:
        for name in SEEDING_EXCLUDED:
            envelope = getattr(record, name)
            if envelope is not None:
                log[name] = envelope.data
    return log


def from_wire(
    wire: Mapping[str, Any],
    local_id: int | str | None = None,
    clock: Clock = now_stamp,
) -> LogRecord:
    """Wrap a server record in envelopes stamped with the current time."""
    now = clock()

    values: dict[str, Any] = {}
    for name in ENVELOPE_FIELDS:
        if name in ("notes", "done"):
            continue
        raw = wire.get(name)
        if name in SEEDING_EXCLUDED and not raw:
            # Only carried when the server sent them
            continue
        if raw is None:
            raw = FIELD_DEFAULTS[name]()
        values[name] = Field(data=raw, changed=now)

    values["notes"] = Field(data=parse_notes(wire.get("notes")), changed=now)
    values["done"] = Field(data=decode_done(wire.get("done")), changed=now)

    return create(
        values,
        id=wire.get("id"),
        local_id=local_id if local_id is not None else wire.get("local_id"),
        is_cached_locally=False,
        is_ready_to_sync=False,
        was_pushed_to_server=True,
        remote_uri=wire.get("url") or "",
    )


def to_persistence(record: LogRecord) -> dict[str, Any]:
    """Shape a record for the local database.

    ``local_id`` is only included once the database has assigned one.
    """
    log: dict[str, Any] = {
        name: envelope.to_dict() for name, envelope in record.envelopes().items()
    }
    log["id"] = record.id
    log["is_ready_to_sync"] = record.is_ready_to_sync
    log["was_pushed_to_server"] = record.was_pushed_to_server
    log["remote_uri"] = record.remote_uri
    if record.local_id is not None:
        log["local_id"] = record.local_id
    return log


def from_persistence(row: Mapping[str, Any]) -> LogRecord:
    """Rebuild a record loaded from the local database."""
    return create(row, is_cached_locally=True)
