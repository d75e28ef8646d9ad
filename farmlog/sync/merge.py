"""Merge a server log into its local copy field by field.

Each local field carries the time it was last edited. A field edited
before the last sync has already been seen by the server, so the server's
current value wins; a field edited since then is kept. This lets unrelated
local edits survive a server update to a different field. The exception is
`done`, which always takes the server's value.
"""

import logging
from typing import Any, Mapping

from ..records.envelope import Clock, Field, now_stamp
from ..records.log import ENVELOPE_FIELDS, LogRecord
from ..records.normalize import decode_done
from ..records.transcoder import create, from_wire
from .conflict import Classification

logger = logging.getLogger(__name__)


def resolve(
    server_log: Mapping[str, Any],
    classification: Classification,
    last_sync: int | None,
    clock: Clock = now_stamp,
) -> LogRecord:
    """Produce the record to store for a classified server log.

    Args:
        server_log: Log as fetched from the server.
        classification: Result of ``classify`` for this log.
        last_sync: Epoch seconds of the previous successful sync.
        clock: Source of the current time for new envelopes.

    Returns:
        The reconciled store-shape record.
    """
    if classification.is_new:
        return from_wire(server_log, clock=clock)

    if not classification.has_local_change and classification.has_server_change:
        return from_wire(server_log, local_id=classification.local_id, clock=clock)

    local_log = classification.matched
    if not classification.has_server_change:
        # Nothing on the server is newer than the last sync
        return local_log

    sync_date = last_sync or 0
    from_server = from_wire(server_log, clock=clock)
    merged: dict[str, Field | None] = {}

    for name in ENVELOPE_FIELDS:
        if name == "done":
            continue
        local_field = getattr(local_log, name)
        if local_field is not None and local_field.changed is not None:
            if local_field.changed >= sync_date:
                merged[name] = local_field
                continue
        merged[name] = getattr(from_server, name)

    # done always follows the server
    merged["done"] = Field(data=decode_done(server_log.get("done")), changed=clock())

    kept = [
        name
        for name in ENVELOPE_FIELDS
        if merged[name] is not None and merged[name] is getattr(local_log, name)
    ]
    logger.debug(f"Merged log {server_log.get('id')}: kept local {kept}")

    return create(
        merged,
        id=server_log.get("id"),
        local_id=classification.local_id,
        is_cached_locally=local_log.is_cached_locally,
        is_ready_to_sync=True,
        was_pushed_to_server=False,
        remote_uri=server_log.get("url") or local_log.remote_uri,
    )
