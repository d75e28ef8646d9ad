"""Classify a server log against the locally held logs."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from ..records.envelope import coerce_stamp
from ..records.log import LogRecord


class LogStatus(Enum):
    """How a server log relates to its local counterpart."""

    NEW = "new"
    UNMODIFIED = "unmodified"
    MODIFIED_LOCALLY = "modified_locally"
    MODIFIED_ON_SERVER = "modified_on_server"
    MODIFIED_BOTH = "modified_both"


@dataclass
class Classification:
    """Result of matching a server log against the local store."""

    local_id: int | str | None = None
    store_index: int | None = None
    has_local_change: bool = False
    has_server_change: bool = False
    matched: LogRecord | None = None

    @property
    def is_new(self) -> bool:
        return self.store_index is None

    @property
    def status(self) -> LogStatus:
        if self.is_new:
            return LogStatus.NEW
        if self.has_local_change and self.has_server_change:
            return LogStatus.MODIFIED_BOTH
        if self.has_local_change:
            return LogStatus.MODIFIED_LOCALLY
        if self.has_server_change:
            return LogStatus.MODIFIED_ON_SERVER
        return LogStatus.UNMODIFIED


def same_id(a: Any, b: Any) -> bool:
    """Compare log ids, which the server sends as strings."""
    if a is None or b is None:
        return False
    return str(a) == str(b)


def server_changed_since(server_log: Mapping[str, Any], last_sync: int | None) -> bool:
    """Whether the server log changed after the last sync."""
    changed = coerce_stamp(server_log.get("changed"))
    if changed is None:
        return False
    return changed > (last_sync or 0)


def classify(
    server_log: Mapping[str, Any],
    local_logs: Sequence[LogRecord],
    last_sync: int | None,
) -> Classification:
    """Find the local copy of a server log and what changed on each side.

    Only the first local log with a matching id is considered.
    """
    server_id = server_log.get("id")
    for index, local_log in enumerate(local_logs):
        if not local_log.id or not same_id(local_log.id, server_id):
            continue
        return Classification(
            local_id=local_log.local_id,
            store_index=index,
            has_local_change=not local_log.was_pushed_to_server,
            has_server_change=server_changed_since(server_log, last_sync),
            matched=local_log,
        )
    return Classification()
