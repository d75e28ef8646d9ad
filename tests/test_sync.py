"""Tests for the sync orchestrator."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from farmlog.errors import MalformedInputError, SyncError
from farmlog.records import create
from farmlog.store import AddLog, LogDatabase, LogStore, UpdateLog
from farmlog.sync import LogSync, SyncStatus


def clock():
    return 1000


def server_log(log_id, changed="200", **fields):
    log = {
        "id": log_id,
        "changed": changed,
        "name": f"Server log {log_id}",
        "type": "farm_activity",
        "done": "1",
        "url": f"http://farm.test/log/{log_id}",
    }
    log.update(fields)
    return log


@pytest.fixture
def remote():
    """A mock farmOS client."""
    remote = MagicMock()
    remote.get_logs = AsyncMock(return_value=[])
    remote.get_logs_by_id = AsyncMock(return_value=[])
    remote.send = AsyncMock(return_value={"id": "99", "uri": "http://farm.test/log/99"})
    remote.get_areas = AsyncMock(return_value=[])
    remote.get_assets = AsyncMock(return_value=[])
    remote.get_terms = AsyncMock(return_value=[])
    return remote


@pytest.fixture
def store():
    return LogStore()


@pytest.fixture
def sync(store, remote):
    return LogSync(store, remote, import_filters={"type": "farm_activity"}, clock=clock)


class TestPull:
    """Tests for pulling logs from the server."""

    @pytest.mark.asyncio
    async def test_adds_new_logs(self, sync, store, remote):
        remote.get_logs.return_value = [server_log("1"), server_log("2")]

        commands = await sync.pull(last_sync=150)

        assert [type(c) for c in commands] == [AddLog, AddLog]
        assert [log.id for log in store] == ["1", "2"]
        assert store[0].was_pushed_to_server is True
        assert store[0].done.data is True
        remote.get_logs.assert_awaited_once_with({"type": "farm_activity"})
        remote.get_logs_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_filters_override(self, sync, remote):
        await sync.pull({"done": 0}, last_sync=150)
        remote.get_logs.assert_awaited_once_with({"done": 0})

    @pytest.mark.asyncio
    async def test_updates_server_changes(self, sync, store, remote):
        store.append(create(name="Old", id="1", local_id=4, was_pushed_to_server=True))
        remote.get_logs.return_value = [server_log("1", changed="200")]

        commands = await sync.pull(last_sync=150)

        assert len(commands) == 1
        assert isinstance(commands[0], UpdateLog)
        assert commands[0].index == 0
        assert store[0].name.data == "Server log 1"
        assert store[0].local_id == 4

    @pytest.mark.asyncio
    async def test_skips_unchanged(self, sync, store, remote):
        store.append(create(name="Same", id="1", was_pushed_to_server=True))
        remote.get_logs.return_value = [server_log("1", changed="100")]

        commands = await sync.pull(last_sync=150)

        assert commands == []
        assert store[0].name.data == "Same"

    @pytest.mark.asyncio
    async def test_merges_local_edits(self, sync, store, remote):
        store.append(
            create(
                name={"data": "Renamed here", "changed": 180},
                notes={"data": "Stale", "changed": 100},
                id="1",
                local_id=4,
            )
        )
        remote.get_logs.return_value = [
            server_log("1", notes={"format": "farm_format", "value": "<p>Fresh</p>\n"})
        ]

        await sync.pull(last_sync=150)

        assert store[0].name.data == "Renamed here"
        assert store[0].notes.data == "Fresh"
        assert store[0].is_ready_to_sync is True
        assert store[0].was_pushed_to_server is False

    @pytest.mark.asyncio
    async def test_second_round_fetches_filtered_out_logs(self, sync, store, remote):
        store.append(create(name="Kept", id="1", was_pushed_to_server=True))
        store.append(create(name="Filtered out", id="2", was_pushed_to_server=True))
        store.append(create(name="Never pushed"))
        remote.get_logs.return_value = [server_log("1", changed="100")]
        remote.get_logs_by_id.return_value = [server_log("2", changed="300")]

        commands = await sync.pull(last_sync=150)

        remote.get_logs_by_id.assert_awaited_once_with(["2"])
        assert len(commands) == 1
        assert commands[0].index == 1
        assert store[1].name.data == "Server log 2"
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_second_round_never_inserts(self, sync, store, remote):
        store.append(create(name="Known", id="2", was_pushed_to_server=True))
        remote.get_logs_by_id.return_value = [server_log("7")]

        commands = await sync.pull(last_sync=150)

        assert commands == []
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_raises_sync_error(self, sync, store, remote):
        error = httpx.ConnectError("Connection refused")
        remote.get_logs.side_effect = error
        store.append(create(name="Known", id="2", was_pushed_to_server=True))

        with pytest.raises(SyncError) as exc_info:
            await sync.pull(last_sync=150)

        assert exc_info.value.http is error
        assert exc_info.value.indices == []
        remote.get_logs_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_round_failure_raises_sync_error(self, sync, store, remote):
        store.append(create(name="Known", id="2", was_pushed_to_server=True))
        remote.get_logs_by_id.side_effect = httpx.ReadTimeout("Timed out")

        with pytest.raises(SyncError):
            await sync.pull(last_sync=150)

    @pytest.mark.asyncio
    async def test_malformed_server_log_not_wrapped(self, sync, remote):
        remote.get_logs.return_value = [server_log("1", images=42)]

        with pytest.raises(MalformedInputError):
            await sync.pull(last_sync=150)


class TestPush:
    """Tests for pushing logs to the server."""

    @pytest.mark.asyncio
    async def test_push_success(self, sync, store, remote):
        store.append(create(name="New here", is_ready_to_sync=True))

        outcomes = await sync.push([0], token="csrf")

        assert len(outcomes) == 1
        assert outcomes[0].ok
        assert outcomes[0].id == "99"
        sent, token = remote.send.await_args.args
        assert "id" not in sent
        assert sent["name"] == "New here"
        assert token == "csrf"
        assert store[0].id == "99"
        assert store[0].remote_uri == "http://farm.test/log/99"
        assert store[0].was_pushed_to_server is True
        assert store[0].is_ready_to_sync is False

    @pytest.mark.asyncio
    async def test_push_existing_sends_id(self, sync, store, remote):
        store.append(create(name="Edited", id="12", is_ready_to_sync=True))
        remote.send.return_value = {"id": "12", "uri": "http://farm.test/log/12"}

        await sync.push([0])

        sent, _ = remote.send.await_args.args
        assert sent["id"] == "12"

    @pytest.mark.asyncio
    async def test_partial_failure(self, sync, store, remote):
        """Test a failed send neither blocks nor undoes the others."""
        store.append(create(name="good", is_ready_to_sync=True))
        store.append(create(name="bad", is_ready_to_sync=True))
        store.append(create(name="good too", is_ready_to_sync=True))
        error = httpx.ConnectError("Connection refused")

        async def send(log, token):
            if log["name"] == "bad":
                raise error
            return {"id": log["name"], "uri": f"http://farm.test/log/{log['name']}"}

        remote.send.side_effect = send

        with pytest.raises(SyncError) as exc_info:
            await sync.push([0, 1, 2])

        assert exc_info.value.indices == [1]
        assert exc_info.value.http is error
        assert exc_info.value.errors == {1: error}
        assert store[0].was_pushed_to_server is True
        assert store[2].was_pushed_to_server is True
        assert store[1].was_pushed_to_server is False
        assert store[1].is_ready_to_sync is True

    @pytest.mark.asyncio
    async def test_outcomes_without_raising(self, sync, store, remote):
        store.append(create(name="bad", is_ready_to_sync=True))
        remote.send.side_effect = httpx.ConnectError("Connection refused")

        outcomes = await sync.push([0], raise_on_error=False)

        assert not outcomes[0].ok
        assert isinstance(outcomes[0].error, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_edit_during_send_stays_queued(self, sync, store, remote):
        """Test a log edited while its send is in flight is pushed again later."""
        store.append(create(name="Before", is_ready_to_sync=True))

        async def send(log, token):
            store.edit(0, clock=lambda: 2000, name="After")
            return {"id": "99", "uri": "http://farm.test/log/99"}

        remote.send.side_effect = send

        await sync.push([0])

        assert store[0].name.data == "After"
        assert store[0].id == "99"
        assert store[0].remote_uri == "http://farm.test/log/99"
        assert store[0].was_pushed_to_server is False
        assert store[0].is_ready_to_sync is True
        assert sync.ready_indices() == [0]

    @pytest.mark.asyncio
    async def test_push_nothing(self, sync, remote):
        assert await sync.push([]) == []
        remote.send.assert_not_awaited()


class TestReadyFlags:
    """Tests for the outbound-ready flag helpers."""

    def test_ready_indices(self, sync, store):
        store.append(create(name="a", is_ready_to_sync=True))
        store.append(create(name="b"))
        store.append(create(name="c", is_ready_to_sync=True))

        assert sync.ready_indices() == [0, 2]

    def test_unready(self, sync, store):
        store.append(create(name="aborted", is_ready_to_sync=True))

        sync.unready(0)

        assert store[0].is_ready_to_sync is False


class TestFullSync:
    """Tests for a complete pull and push pass."""

    @pytest.fixture
    def database(self):
        db = LogDatabase(":memory:")
        db.connect()
        yield db
        db.close()

    @pytest.mark.asyncio
    async def test_sync_success(self, database, remote):
        database.set_sync_date(150)
        store = LogStore.load(database)
        store.append(create(name="Local only", is_ready_to_sync=True))
        remote.get_logs.return_value = [server_log("1")]
        sync = LogSync(store, remote, clock=clock)

        result = await sync.sync(token="csrf")

        assert result.status == SyncStatus.SUCCESS
        assert result.logs_pulled == 1
        assert result.logs_pushed == 1
        assert result.timestamp == 1000
        assert database.get_sync_date() == 1000
        assert len(database.load_all()) == 2

    @pytest.mark.asyncio
    async def test_sync_partial_keeps_sync_date(self, database, remote):
        database.set_sync_date(150)
        store = LogStore.load(database)
        store.append(create(name="Local only", is_ready_to_sync=True))
        remote.send.side_effect = httpx.ConnectError("Connection refused")
        sync = LogSync(store, remote, clock=clock)

        result = await sync.sync()

        assert result.status == SyncStatus.PARTIAL
        assert result.failed_indices == [0]
        assert database.get_sync_date() == 150


class TestReferenceData:
    """Tests for refreshing areas, assets, units and categories."""

    @pytest.mark.asyncio
    async def test_update_reference_data(self, sync, store, remote):
        remote.get_areas.return_value = [
            {"tid": "1", "name": "North field", "geofield": [], "description": ""}
        ]
        remote.get_assets.return_value = [
            {"id": "3", "name": "Tractor", "type": "equipment", "archived": "0"},
            {"id": "4", "name": "Cow", "type": "animal", "archived": "0"},
        ]
        remote.get_terms.side_effect = lambda vocabulary: {
            "farm_quantity_units": [{"tid": "7", "name": "kg", "vocabulary": {}}],
            "farm_log_categories": [{"tid": "8", "name": "Weeds"}],
        }[vocabulary]

        counts = await sync.update_reference_data()

        assert counts == {"areas": 1, "assets": 2, "units": 1, "categories": 1, "equipment": 1}
        assert store.reference["areas"] == [{"tid": "1", "name": "North field", "geofield": []}]
        assert store.reference["units"] == [{"tid": "7", "name": "kg"}]
        assert store.reference["equipment"] == [{"id": "3", "name": "Tractor", "type": "equipment"}]

    @pytest.mark.asyncio
    async def test_refresh_failure(self, sync, store, remote):
        store.set_reference("areas", [{"tid": "1", "name": "Old"}])
        remote.get_areas.side_effect = httpx.ConnectError("Connection refused")

        with pytest.raises(SyncError):
            await sync.update_areas()

        assert store.reference["areas"] == [{"tid": "1", "name": "Old"}]
