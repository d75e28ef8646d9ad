"""Sync orchestration between the local log store and the farmOS server.

A sync pass has two steps:
- Pull: fetch logs matching the import filters, then fetch any server-linked
  local logs the filters left out, merging each into the store
- Push: send logs flagged ready to sync and record the ids the server assigns
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Sequence

from ..errors import MalformedInputError, SyncError
from ..records.envelope import Clock, now_stamp
from ..records.log import LogRecord
from ..records.transcoder import create, to_wire
from ..store.log_store import AddLog, Command, LogStore, UpdateLog, UpdateLogs
from .conflict import classify
from .merge import resolve
from .remote import CATEGORIES_VOCABULARY, UNITS_VOCABULARY

logger = logging.getLogger(__name__)


class RemoteLogService(Protocol):
    """What the orchestrator needs from the server client."""

    async def get_logs(self, filters: dict[str, Any] | None = None) -> list[dict]: ...

    async def get_logs_by_id(self, ids: list[Any]) -> list[dict]: ...

    async def send(self, log: dict[str, Any], token: str | None) -> dict[str, Any]: ...

    async def get_areas(self) -> list[dict]: ...

    async def get_assets(self) -> list[dict]: ...

    async def get_terms(self, vocabulary: str) -> list[dict]: ...


class SyncStatus(Enum):
    """Status of a sync operation."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some logs failed to push


@dataclass
class PushOutcome:
    """How the push of a single log settled."""

    index: int
    ok: bool
    id: Any = None
    uri: str | None = None
    error: BaseException | None = None


@dataclass
class SyncResult:
    """Result of a full sync pass."""

    status: SyncStatus
    logs_pulled: int = 0
    logs_pushed: int = 0
    failed_indices: list[int] = field(default_factory=list)
    error: str | None = None
    timestamp: int | None = None


class LogSync:
    """Pulls, merges and pushes farm logs.

    Every store change goes through ``store.commit`` as a command that
    touches only the index (or new log) it was computed for.
    """

    def __init__(
        self,
        store: LogStore,
        remote: RemoteLogService,
        import_filters: dict[str, Any] | None = None,
        clock: Clock = now_stamp,
    ):
        """Initialize the orchestrator.

        Args:
            store: Local log store to reconcile.
            remote: Server client.
            import_filters: Default filters for the first pull round.
            clock: Source of epoch seconds for new envelopes.
        """
        self.store = store
        self.remote = remote
        self.import_filters = import_filters or {}
        self.clock = clock

    def _commit(self, command: Command, commands: list[Command]) -> None:
        self.store.commit(command)
        commands.append(command)

    async def _fetch(self, request: Awaitable[list[dict]], what: str) -> list[dict]:
        try:
            return await request
        except MalformedInputError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch {what}: {e}")
            raise SyncError(f"Failed to fetch {what}", http=e) from e

    async def pull(
        self,
        filters: dict[str, Any] | None = None,
        last_sync: int | None = None,
    ) -> list[Command]:
        """Fetch server logs and merge them into the store.

        Args:
            filters: Server-side filters; defaults to the import filters.
            last_sync: Epoch seconds of the previous successful sync.

        Returns:
            The commands committed to the store, in order.

        Raises:
            SyncError: A request failed; the rest of the pass is skipped.
        """
        if filters is None:
            filters = self.import_filters

        local_logs = list(self.store.logs)
        commands: list[Command] = []

        server_logs = await self._fetch(self.remote.get_logs(filters), "logs")
        checked_ids = set()
        for server_log in server_logs:
            status = classify(server_log, local_logs, last_sync)
            if status.is_new:
                record = resolve(server_log, status, last_sync, self.clock)
                self._commit(AddLog(record), commands)
            elif status.has_server_change:
                record = resolve(server_log, status, last_sync, self.clock)
                self._commit(UpdateLog(status.store_index, record), commands)
            logger.debug(f"Pulled log {server_log.get('id')}: {status.status.value}")
            checked_ids.add(str(server_log.get("id")))

        # Logs known locally but excluded by the filters
        unchecked_ids = [
            log.id for log in local_logs if log.id and str(log.id) not in checked_ids
        ]
        remaining = []
        if unchecked_ids:
            remaining = await self._fetch(
                self.remote.get_logs_by_id(unchecked_ids), "remaining logs"
            )
        for server_log in remaining:
            status = classify(server_log, local_logs, last_sync)
            if not status.is_new and status.has_server_change:
                record = resolve(server_log, status, last_sync, self.clock)
                self._commit(UpdateLog(status.store_index, record), commands)

        logger.info(
            f"Pull: {len(server_logs)} filtered, {len(remaining)} remaining, "
            f"{len(commands)} changes"
        )
        return commands

    async def _send(self, index: int, token: str | None) -> PushOutcome:
        sent = self.store[index].envelopes()
        response = await self.remote.send(to_wire(self.store[index]), token)

        def mark_pushed(log: LogRecord) -> LogRecord:
            if log.envelopes() != sent:
                # Edited while in flight: keep it queued for the next push
                logger.debug(f"Log at index {index} changed during push")
                return create(log, id=response["id"], remote_uri=response["uri"])
            return create(
                log,
                id=response["id"],
                was_pushed_to_server=True,
                is_ready_to_sync=False,
                remote_uri=response["uri"],
            )

        self.store.commit(UpdateLogs([index], mark_pushed))
        return PushOutcome(index=index, ok=True, id=response["id"], uri=response["uri"])

    async def push(
        self,
        indices: Sequence[int],
        token: str | None = None,
        raise_on_error: bool = True,
    ) -> list[PushOutcome]:
        """Send the indexed logs to the server.

        Sends run concurrently and settle independently: a failed send
        never blocks or undoes the others.

        Args:
            indices: Store indices of the logs to send.
            token: CSRF token for write requests.
            raise_on_error: Raise once all sends settle if any failed.

        Returns:
            One outcome per index, in the order given.

        Raises:
            SyncError: One or more sends failed (if ``raise_on_error``).
        """
        indices = list(indices)
        results = await asyncio.gather(
            *(self._send(index, token) for index in indices),
            return_exceptions=True,
        )

        outcomes = []
        errors: dict[int, BaseException] = {}
        for index, result in zip(indices, results):
            if isinstance(result, MalformedInputError):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"Failed to push log at index {index}: {result}")
                errors[index] = result
                outcomes.append(PushOutcome(index=index, ok=False, error=result))
            else:
                outcomes.append(result)

        logger.info(f"Push: {len(indices) - len(errors)} sent, {len(errors)} failed")

        if errors and raise_on_error:
            raise SyncError(
                f"Failed to push {len(errors)} of {len(indices)} logs",
                indices=list(errors),
                http=next(iter(errors.values())),
                errors=errors,
            )
        return outcomes

    def unready(self, index: int) -> None:
        """Clear the ready flag of a log whose sync attempt was abandoned."""
        self.store.commit(
            UpdateLogs([index], lambda log: create(log, is_ready_to_sync=False))
        )

    def ready_indices(self) -> list[int]:
        """Indices of logs waiting to be pushed."""
        return [index for index, log in enumerate(self.store) if log.is_ready_to_sync]

    async def sync(
        self,
        filters: dict[str, Any] | None = None,
        token: str | None = None,
        last_sync: int | None = None,
    ) -> SyncResult:
        """Pull, then push every log flagged ready to sync.

        The sync date is only advanced when every push succeeded.

        Raises:
            SyncError: The pull failed.
        """
        database = self.store.database
        if last_sync is None and database is not None:
            last_sync = database.get_sync_date()

        started = self.clock()
        commands = await self.pull(filters, last_sync)

        indices = self.ready_indices()
        try:
            await self.push(indices, token)
        except SyncError as e:
            return SyncResult(
                status=SyncStatus.PARTIAL,
                logs_pulled=len(commands),
                logs_pushed=len(indices) - len(e.indices),
                failed_indices=e.indices,
                error=str(e),
                timestamp=last_sync,
            )

        if database is not None:
            database.set_sync_date(started)

        return SyncResult(
            status=SyncStatus.SUCCESS,
            logs_pulled=len(commands),
            logs_pushed=len(indices),
            timestamp=started,
        )

    # ==================== Reference data ====================

    async def _refresh(
        self,
        kind: str,
        fetch: Callable[[], Awaitable[list[dict]]],
        keys: tuple[str, ...],
        predicate: Callable[[dict], bool] | None = None,
    ) -> int:
        items = await self._fetch(fetch(), kind)
        selected = [
            {key: item.get(key) for key in keys}
            for item in items
            if predicate is None or predicate(item)
        ]
        self.store.set_reference(kind, selected)
        logger.info(f"Refreshed {len(selected)} {kind}")
        return len(selected)

    async def update_areas(self) -> int:
        return await self._refresh("areas", self.remote.get_areas, ("tid", "name", "geofield"))

    async def update_assets(self) -> int:
        return await self._refresh("assets", self.remote.get_assets, ("id", "name", "type"))

    async def update_units(self) -> int:
        return await self._refresh(
            "units", lambda: self.remote.get_terms(UNITS_VOCABULARY), ("tid", "name")
        )

    async def update_categories(self) -> int:
        return await self._refresh(
            "categories", lambda: self.remote.get_terms(CATEGORIES_VOCABULARY), ("tid", "name")
        )

    async def update_equipment(self) -> int:
        return await self._refresh(
            "equipment",
            self.remote.get_assets,
            ("id", "name", "type"),
            predicate=lambda asset: asset.get("type") == "equipment",
        )

    async def update_reference_data(self) -> dict[str, int]:
        """Refresh every kind of reference data."""
        return {
            "areas": await self.update_areas(),
            "assets": await self.update_assets(),
            "units": await self.update_units(),
            "categories": await self.update_categories(),
            "equipment": await self.update_equipment(),
        }
