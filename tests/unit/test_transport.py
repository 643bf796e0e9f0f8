"""
Unit tests for the tracking-table transport.

Stores are mocks: queries against the tracking table return prepared
change rows, so the tests follow what the transport applies and where it
leaves the anchors. TestTrackedPass runs whole passes against SQLite
stores that emulate the tracking triggers instead.
"""

from unittest.mock import Mock, patch

import pyodbc
import pytest

from fakes import FakeSchemaImporter, TrackingFakeStore, create_server_schema, insert_row, new_guid
from offline_sync.errors import TransportError
from offline_sync.models import ColumnDescription, ScopeDescription, TrackedTable
from offline_sync.orchestrator import SyncOrchestrator
from offline_sync.tracking import TrackingNames
from offline_sync.transport import SyncDirection, TrackingTableTransport

ITEM = TrackedTable("Item", "ItemID")

SCOPE = ScopeDescription(
    name="Item",
    columns=(
        ColumnDescription("GUID", "uniqueidentifier", is_nullable=False, is_key=True),
        ColumnDescription("Name", "nvarchar(50)"),
        ColumnDescription("Price", "decimal(10, 2)"),
    ),
    key_column="GUID",
)


def change(version, guid, name="Hammer", origin="", tombstone=False, present=True, price=9.5):
    return {
        "change_version": version,
        "is_tombstone": tombstone,
        "last_origin": origin,
        "correlation_key": guid,
        "present_key": guid if present and not tombstone else None,
        "Name": name,
        "Price": price,
    }


def make_store(role, changes=(), anchors=(0, 0), scope=SCOPE):
    store = Mock(role=role, names=TrackingNames())
    store.get_scope.return_value = scope
    store.execute.return_value = 1

    def query(sql, params=()):
        if "local_anchor" in sql:
            return [{"local_anchor": anchors[0], "remote_anchor": anchors[1]}]
        if "change_version" in sql:
            return [c for c in changes if c["change_version"] > params[0]]
        if "COUNT(*)" in sql:
            return [{"n": 1}]
        return []

    store.query.side_effect = query
    return store


def writes(store, verb):
    return [c for c in store.execute.call_args_list if c[0][0].startswith(verb)]


def anchors_written(local):
    return writes(local, "UPDATE [xsync_scope_info]")[-1][0][1][:2]


class TestClientId:

    @pytest.mark.parametrize("client_id", ["", "server"])
    def test_rejects_reserved_or_empty(self, client_id):
        with pytest.raises(ValueError):
            TrackingTableTransport(client_id)


class TestUpload:

    def test_applies_local_changes_to_server(self):
        local = make_store("local", [change(5, "g1"), change(7, "g2", "Wrench")])
        remote = make_store("server")

        stats = TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        updates = writes(remote, "UPDATE [dbo].[Item]")
        assert [u[0][1] for u in updates] == [["Hammer", 9.5, "g1"], ["Wrench", 9.5, "g2"]]
        assert all(u[1]["origin"] == "device-1" for u in updates)
        assert stats.uploaded == 2
        assert stats.completed_at is not None
        assert anchors_written(local) == [7, 0]

    def test_inserts_when_row_not_on_server(self):
        local = make_store("local", [change(5, "g1")])
        remote = make_store("server")
        remote.execute.return_value = 0

        TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        inserts = writes(remote, "INSERT INTO [dbo].[Item]")
        assert inserts[0][0] == (
            "INSERT INTO [dbo].[Item] ([GUID], [Name], [Price]) VALUES (?, ?, ?)",
            ["g1", "Hammer", 9.5],
        )

    def test_server_tagged_rows_not_sent_back(self):
        local = make_store("local", [change(5, "g1", origin="server"), change(6, "g2")])
        remote = make_store("server")

        stats = TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        assert stats.uploaded == 1
        assert anchors_written(local) == [6, 0]

    def test_tombstone_deletes_on_server(self):
        local = make_store("local", [change(5, "g1", tombstone=True)])
        remote = make_store("server")

        TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        assert remote.execute.call_args_list[0][0] == ("DELETE FROM [dbo].[Item] WHERE [GUID] = ?", ["g1"])

    def test_row_gone_before_upload_skipped(self):
        local = make_store("local", [change(5, "g1", present=False)])
        remote = make_store("server")

        stats = TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        assert stats.uploaded == 0
        remote.execute.assert_not_called()
        assert anchors_written(local) == [5, 0]

    def test_enumerates_above_stored_anchor(self):
        local = make_store("local", [change(5, "g1"), change(9, "g2")], anchors=(5, 0))
        remote = make_store("server")

        stats = TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        assert stats.uploaded == 1
        assert anchors_written(local) == [9, 0]

    def test_only_shared_columns_sent(self):
        server_scope = ScopeDescription("Item", SCOPE.columns[:2], "GUID")
        local = make_store("local", [change(5, "g1")])
        remote = make_store("server", scope=server_scope)

        TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        assert writes(remote, "UPDATE")[0][0] == (
            "UPDATE [dbo].[Item] SET [Name] = ? WHERE [GUID] = ?",
            ["Hammer", "g1"],
        )


class TestDownload:

    def test_applies_server_changes_tagged_server(self):
        local = make_store("local")
        remote = make_store("server", [change(11, "g1"), change(12, "g2", origin="device-1")])

        stats = TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        applied = writes(local, "UPDATE [dbo].[Item]")
        assert len(applied) == 1
        assert applied[0][1]["origin"] == "server"
        assert stats.downloaded == 1
        assert anchors_written(local) == [0, 12]

    def test_upload_only_leaves_remote_anchor(self):
        local = make_store("local", [change(3, "g1")], anchors=(0, 40))
        remote = make_store("server", [change(41, "g2")])

        stats = TrackingTableTransport("device-1").synchronize(ITEM, local, remote, SyncDirection.UPLOAD)

        assert stats.downloaded == 0
        assert anchors_written(local) == [3, 40]


class TestFailedRows:

    def test_failure_holds_anchor_and_later_rows_still_apply(self):
        local = make_store("local", [change(5, "g1"), change(6, "g2"), change(7, "g3")])
        remote = make_store("server")

        def execute(sql, params=(), origin=None):
            if "g2" in params:
                raise pyodbc.IntegrityError("FK_Item_ItemType conflict")
            return 1

        remote.execute.side_effect = execute

        stats = TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        assert (stats.uploaded, stats.failed) == (2, 1)
        assert anchors_written(local) == [5, 0]

    def test_failure_recorded_on_span(self):
        local = make_store("local", [change(5, "g1")])
        remote = make_store("server")
        remote.execute.side_effect = pyodbc.IntegrityError("FK_Item_ItemType conflict")

        with patch("offline_sync.transport.sqlserver.add_span_event") as add_span_event:
            TrackingTableTransport("device-1").synchronize(ITEM, local, remote, SyncDirection.UPLOAD)

        add_span_event.assert_called_once()
        assert add_span_event.call_args.args == ("apply_failed",)
        assert add_span_event.call_args.kwargs["correlation_key"] == "g1"
        assert add_span_event.call_args.kwargs["destination"] == "server"

    def test_non_database_errors_propagate(self):
        local = make_store("local", [change(5, "g1")])
        remote = make_store("server")
        remote.execute.side_effect = KeyError("bug")

        with pytest.raises(KeyError):
            TrackingTableTransport("device-1").synchronize(ITEM, local, remote)


class TestScopeChecks:

    def test_missing_scope(self):
        local = make_store("local")
        remote = make_store("server")
        remote.get_scope.return_value = None

        with pytest.raises(TransportError, match=r"\[Item\] No tracking scope on server"):
            TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

    def test_scope_without_key_column(self):
        local = make_store("local", scope=ScopeDescription("Item", SCOPE.columns[1:], None))
        remote = make_store("server")

        with pytest.raises(TransportError, match="no correlation column"):
            TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

    def test_unreadable_scope(self):
        local = make_store("local")
        local.get_scope.side_effect = pyodbc.OperationalError("login timeout expired")
        remote = make_store("server")

        with pytest.raises(TransportError, match="Could not read local scope"):
            TrackingTableTransport("device-1").synchronize(ITEM, local, remote)

        remote.execute.assert_not_called()


class TestTrackedPass:
    """Full passes over SQLite stores that emulate the tracking triggers"""

    ITEM_TYPE = TrackedTable("ItemType", "ItemTypeID")

    @pytest.fixture
    def tracked_server(self):
        store = TrackingFakeStore("server")
        create_server_schema(store)
        return store

    @pytest.fixture
    def tracked_local(self):
        return TrackingFakeStore("local")

    @pytest.fixture
    def orchestrator(self, tracked_local, tracked_server, metrics):
        orchestrator = SyncOrchestrator(
            tracked_local,
            tracked_server,
            TrackingTableTransport("device-1"),
            importer=FakeSchemaImporter(tracked_local, tracked_server),
            metrics=metrics,
        )
        orchestrator.run_sync([self.ITEM_TYPE, ITEM])
        return orchestrator

    def add_offline_rows(self, local):
        type_guid, item_guid = new_guid(), new_guid()
        insert_row(local, "ItemType", GUID=type_guid, Name="Tool")
        insert_row(local, "Item", GUID=item_guid, Name="Hammer",
                   ItemTypeID=local.row_by_guid("ItemType", type_guid)["ItemTypeID"])
        return type_guid, item_guid

    def test_offline_parent_and_child_uploaded_in_one_pass(self, orchestrator, tracked_local, tracked_server):
        type_guid, item_guid = self.add_offline_rows(tracked_local)

        report = orchestrator.run_sync([self.ITEM_TYPE, ITEM])

        assert report.status == "PASS"
        assert report.table("Item").statistics.uploaded == 1
        server_type = tracked_server.row_by_guid("ItemType", type_guid)
        server_item = tracked_server.row_by_guid("Item", item_guid)
        assert server_item is not None
        assert server_item["ItemTypeID"] == server_type["ItemTypeID"]
        local_item = tracked_local.row_by_guid("Item", item_guid)
        assert local_item["ItemID"] == server_item["ItemID"]
        assert local_item["ItemTypeID"] == server_type["ItemTypeID"]

    def test_key_fixes_leave_tracking_rows_alone(self, orchestrator, tracked_local):
        type_guid, item_guid = self.add_offline_rows(tracked_local)
        before = tracked_local.tracking_row("Item", item_guid)

        orchestrator.run_sync([self.ITEM_TYPE, ITEM])

        assert tracked_local.tracking_row("Item", item_guid) == before
        assert tracked_local.tracking_row("ItemType", type_guid)["last_origin"] == ""

    def test_converged_pass_exchanges_nothing(self, orchestrator, tracked_local):
        self.add_offline_rows(tracked_local)
        orchestrator.run_sync([self.ITEM_TYPE, ITEM])

        report = orchestrator.run_sync([self.ITEM_TYPE, ITEM])

        for table in ("ItemType", "Item"):
            statistics = report.table(table).statistics
            assert (statistics.uploaded, statistics.downloaded) == (0, 0)
