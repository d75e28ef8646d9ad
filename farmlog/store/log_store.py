"""In-memory log store and the mutation commands applied to it.

The sync layer never edits logs in place. It emits commands that either
replace the log at an index or append a new log, so completions of
concurrent requests can be applied in any order.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Union

from ..errors import MalformedInputError
from ..records.envelope import Clock, Field, now_stamp
from ..records.log import LogRecord
from ..records.transcoder import create
from .database import LogDatabase

logger = logging.getLogger(__name__)

REFERENCE_KINDS = ("areas", "assets", "units", "categories", "equipment")


@dataclass
class AddLog:
    """Append a log fetched from the server."""

    record: LogRecord


@dataclass
class UpdateLog:
    """Replace the log at ``index`` with a server-merged version."""

    index: int
    record: LogRecord


@dataclass
class UpdateLogs:
    """Replace the logs at ``indices`` with ``mapper(log)``."""

    indices: list[int]
    mapper: Callable[[LogRecord], LogRecord] = field(repr=False)


Command = Union[AddLog, UpdateLog, UpdateLogs]


class LogStore:
    """The authoritative sequence of logs held by the client.

    If a database is attached, every mutation is written through to it
    and newly stored logs receive their ``local_id``.
    """

    def __init__(
        self,
        logs: list[LogRecord] | None = None,
        database: LogDatabase | None = None,
    ):
        self.logs: list[LogRecord] = list(logs or [])
        self.database = database
        self.reference: dict[str, list[dict[str, Any]]] = {
            kind: [] for kind in REFERENCE_KINDS
        }

    @classmethod
    def load(cls, database: LogDatabase) -> "LogStore":
        """Create a store populated from the database."""
        store = cls(database.load_all(), database)
        for kind in REFERENCE_KINDS:
            store.reference[kind] = database.get_reference(kind)
        logger.info(f"Loaded {len(store.logs)} logs from {database.db_path}")
        return store

    def __len__(self) -> int:
        return len(self.logs)

    def __getitem__(self, index: int) -> LogRecord:
        return self.logs[index]

    def __iter__(self) -> Iterator[LogRecord]:
        return iter(self.logs)

    def _persist(self, record: LogRecord) -> LogRecord:
        if self.database is None:
            return record
        local_id = self.database.save(record)
        if record.local_id != local_id:
            record = record.copy(local_id=local_id)
        return record

    def append(self, record: LogRecord) -> int:
        """Append a log and return its index."""
        self.logs.append(self._persist(record))
        return len(self.logs) - 1

    def replace(self, index: int, record: LogRecord) -> None:
        """Replace the log at an index, keeping its local id."""
        current = self.logs[index]
        if record.local_id is None and current.local_id is not None:
            record = record.copy(local_id=current.local_id)
        self.logs[index] = self._persist(record)

    def replace_at(
        self, indices: list[int], mapper: Callable[[LogRecord], LogRecord]
    ) -> None:
        """Replace each indexed log with ``mapper(log)``."""
        for index in indices:
            self.replace(index, mapper(self.logs[index]))

    def commit(self, command: Command) -> None:
        """Apply a mutation command."""
        if isinstance(command, AddLog):
            index = self.append(command.record)
            logger.debug(f"Added log {command.record.id} at index {index}")
        elif isinstance(command, UpdateLog):
            self.replace(command.index, command.record)
            logger.debug(f"Updated log {command.record.id} at index {command.index}")
        elif isinstance(command, UpdateLogs):
            self.replace_at(command.indices, command.mapper)
        else:
            raise TypeError(f"Unknown store command: {command!r}")

    def add(self, clock: Clock = now_stamp, **values: Any) -> int:
        """Create a new local log from raw field values.

        Returns:
            Index of the new log.
        """
        now = clock()
        record = create({name: {"data": value, "changed": now} for name, value in values.items()})
        return self.append(record)

    def edit(self, index: int, clock: Clock = now_stamp, **values: Any) -> LogRecord:
        """Record a local edit to one or more fields of a log.

        Each edited field is stamped with the current time and the log is
        marked as not yet pushed.

        Raises:
            MalformedInputError: A field is unknown or absent on this log.
        """
        log = self.logs[index]
        now = clock()
        changes = {}
        for name, value in values.items():
            envelope = getattr(log, name, None)
            if not isinstance(envelope, Field):
                raise MalformedInputError(f"Log has no editable field {name!r}")
            changes[name] = envelope.touch(value, now)

        record = create(log.copy(**changes), was_pushed_to_server=False)
        self.replace(index, record)
        return self.logs[index]

    def set_reference(self, kind: str, items: list[dict[str, Any]]) -> None:
        """Replace all reference items of one kind (areas, assets, ...)."""
        if kind not in REFERENCE_KINDS:
            raise ValueError(f"Unknown reference kind: {kind}")
        self.reference[kind] = list(items)
        if self.database is not None:
            self.database.set_reference(kind, items)
