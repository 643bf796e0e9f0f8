"""
Unit tests for the SQL Server store.

The connection pool is mocked, so these tests check the statements the
store sends and how it reads cursor results, not SQL Server behavior.
"""

from unittest.mock import MagicMock, Mock, call, patch

import pyodbc
import pytest

from offline_sync.models import ColumnDescription, ScopeDescription
from offline_sync.store import SqlServerStore, create_database_file, format_column_type
from offline_sync.tracking import TrackingNames


@pytest.fixture
def conn():
    return MagicMock()


@pytest.fixture
def cursor(conn):
    return conn.cursor.return_value


@pytest.fixture
def store(conn):
    pool = MagicMock()
    pool.get_stats.return_value = {"active_connections": 0}
    pool.acquire.return_value.__enter__.return_value = conn
    pool.acquire.return_value.__exit__.return_value = False
    return SqlServerStore("DSN=central", role="server", pool=pool)


def column_row(name, type_name="int", max_length=4, precision=10, scale=0,
               nullable=False, identity=False, key=False, seed=0, increment=0):
    return {
        "column_name": name,
        "type_name": type_name,
        "max_length": max_length,
        "precision": precision,
        "scale": scale,
        "is_nullable": nullable,
        "is_identity": identity,
        "seed_value": seed,
        "increment_value": increment,
        "is_key": key,
    }


ITEM_COLUMNS = [
    column_row("ItemID", identity=True, key=True, seed=1, increment=1),
    column_row("GUID", "uniqueidentifier", 16, 0, 0, nullable=True),
    column_row("Name", "nvarchar", 100, 0, 0, nullable=True),
    column_row("Price", "decimal", 9, 10, 2),
]


class TestFormatColumnType:

    @pytest.mark.parametrize(
        "args,expected",
        [
            (("nvarchar", 100, 0, 0), "nvarchar(50)"),
            (("nvarchar", -1, 0, 0), "nvarchar(max)"),
            (("varchar", 20, 0, 0), "varchar(20)"),
            (("varbinary", -1, 0, 0), "varbinary(max)"),
            (("decimal", 9, 10, 2), "decimal(10, 2)"),
            (("datetime2", 8, 27, 7), "datetime2(7)"),
            (("int", 4, 10, 0), "int"),
            (("uniqueidentifier", 16, 0, 0), "uniqueidentifier"),
        ],
    )
    def test_formats(self, args, expected):
        assert format_column_type(*args) == expected


class TestExecute:

    def test_returns_rowcount(self, store, cursor):
        cursor.rowcount = 3

        assert store.execute("UPDATE [Item] SET [Name] = ?", ["x"]) == 3
        cursor.execute.assert_called_once_with("UPDATE [Item] SET [Name] = ?", ["x"])
        cursor.close.assert_called_once()

    def test_without_params(self, store, cursor):
        store.execute("DROP TABLE [Item]")
        cursor.execute.assert_called_once_with("DROP TABLE [Item]")

    def test_origin_set_and_cleared(self, store, cursor):
        store.execute("DELETE FROM [Item] WHERE [GUID] = ?", ["g1"], origin="device-1")

        assert cursor.execute.call_args_list == [
            call("EXEC sp_set_session_context @key = ?, @value = ?", ["xsync_origin", "device-1"]),
            call("DELETE FROM [Item] WHERE [GUID] = ?", ["g1"]),
            call("EXEC sp_set_session_context @key = ?, @value = NULL", ["xsync_origin"]),
        ]

    def test_origin_cleared_when_statement_fails(self, store, cursor):
        cursor.execute.side_effect = [None, pyodbc.IntegrityError("FK violation"), None]

        with pytest.raises(pyodbc.IntegrityError):
            store.execute("INSERT INTO [Item] ([GUID]) VALUES (?)", ["g1"], origin="server")

        assert cursor.execute.call_args_list[-1][0][0].endswith("@value = NULL")

    def test_connection_closed_when_clear_fails(self, store, conn, cursor):
        cursor.execute.side_effect = [None, None, pyodbc.Error("link lost")]

        store.execute("UPDATE [Item] SET [Name] = ?", ["x"], origin="server")

        conn.close.assert_called_once()

    def test_custom_prefix_context_key(self, conn, cursor):
        pool = MagicMock()
        pool.acquire.return_value.__enter__.return_value = conn
        pool.acquire.return_value.__exit__.return_value = False
        store = SqlServerStore("DSN=central", role="local", names=TrackingNames("field"), pool=pool)

        store.execute("SELECT 1", origin="server")

        assert cursor.execute.call_args_list[0][0][1] == ["field_origin", "server"]


class TestQuery:

    def test_rows_as_dicts(self, store, cursor):
        cursor.description = [("ItemID",), ("Name",)]
        cursor.fetchall.return_value = [(1, "Hammer"), (2, "Wrench")]

        rows = store.query("SELECT [ItemID], [Name] FROM [Item]")

        assert rows == [{"ItemID": 1, "Name": "Hammer"}, {"ItemID": 2, "Name": "Wrench"}]

    def test_no_result_set(self, store, cursor):
        cursor.description = None

        assert store.query("EXEC sp_who") == []


class TestCatalog:

    def test_list_tables(self, store):
        with patch.object(store, "query", return_value=[{"table_name": "ItemType"}, {"table_name": "Item"}]):
            assert store.list_tables() == ["ItemType", "Item"]

    def test_columns(self, store):
        with patch.object(store, "query", return_value=ITEM_COLUMNS) as query:
            columns = store.columns("Item")

        assert query.call_args[0][1] == ["dbo.Item"]
        assert columns[0] == ColumnDescription("ItemID", "int", False, True, True)
        assert columns[2].data_type == "nvarchar(50)"

    def test_columns_rejects_bad_identifier(self, store):
        with pytest.raises(ValueError):
            store.columns("Item'; --")

    def test_script_table(self, store):
        with patch.object(store, "query", return_value=ITEM_COLUMNS):
            script = store.script_table("Item")

        assert script == [
            "CREATE TABLE [dbo].[Item](\n"
            "    [ItemID] int IDENTITY(1,1) NOT NULL,\n"
            "    [GUID] uniqueidentifier NULL,\n"
            "    [Name] nvarchar(50) NULL,\n"
            "    [Price] decimal(10, 2) NOT NULL\n"
            ")"
        ]

    def test_script_unknown_table(self, store):
        with patch.object(store, "query", return_value=[]):
            with pytest.raises(ValueError, match="Unknown table"):
                store.script_table("Orders")

    def test_foreign_keys_grouped(self, store):
        rows = [
            {"fk_name": "FK_Line_Order", "table_name": "Line", "column_name": "OrderID",
             "referenced_table": "Order", "referenced_column": "OrderID"},
            {"fk_name": "FK_Line_Order", "table_name": "Line", "column_name": "SiteID",
             "referenced_table": "Order", "referenced_column": "SiteID"},
            {"fk_name": "FK_Line_Item", "table_name": "Line", "column_name": "ItemID",
             "referenced_table": "Item", "referenced_column": "ItemID"},
        ]
        with patch.object(store, "query", return_value=rows):
            fks = store.foreign_keys("Line")

        assert [fk.name for fk in fks] == ["FK_Line_Order", "FK_Line_Item"]
        assert fks[0].columns == ("OrderID", "SiteID")
        assert fks[0].referenced_columns == ("OrderID", "SiteID")

    def test_indexes_scripted_nonclustered(self, store):
        rows = [
            {"index_name": "PK_Item", "is_unique": True, "is_primary_key": True,
             "column_name": "ItemID", "is_descending_key": False, "is_included_column": False},
            {"index_name": "IX_Item_Name", "is_unique": False, "is_primary_key": False,
             "column_name": "Name", "is_descending_key": True, "is_included_column": False},
            {"index_name": "IX_Item_Name", "is_unique": False, "is_primary_key": False,
             "column_name": "Price", "is_descending_key": False, "is_included_column": True},
        ]
        with patch.object(store, "query", return_value=rows):
            indexes = store.indexes("Item")

        assert indexes[0].script == "CREATE UNIQUE NONCLUSTERED INDEX [PK_Item] ON [dbo].[Item] ([ItemID] ASC)"
        assert indexes[1].script == (
            "CREATE NONCLUSTERED INDEX [IX_Item_Name] ON [dbo].[Item] ([Name] DESC) INCLUDE ([Price])"
        )


SCOPE = ScopeDescription(
    name="Item",
    columns=(
        ColumnDescription("GUID", "uniqueidentifier", is_nullable=False, is_key=True),
        ColumnDescription("Name", "nvarchar(50)"),
    ),
    key_column="GUID",
)


class TestScopes:

    @pytest.fixture
    def executed(self, store):
        with patch.object(store, "execute", return_value=0) as execute, \
                patch.object(store, "_scope_info_exists", return_value=False):
            yield execute

    def sql(self, executed):
        return [c[0][0] for c in executed.call_args_list]

    def test_apply_scope_creates_tracking_objects(self, store, executed):
        store.apply_scope(SCOPE)
        statements = self.sql(executed)

        assert statements[0].startswith("CREATE TABLE [xsync_scope_info]")
        assert statements[1].startswith("CREATE TABLE [xsync_Item_tracking]")
        assert "[GUID] uniqueidentifier NOT NULL PRIMARY KEY" in statements[1]
        assert "[change_version] rowversion" in statements[1]
        for statement, operation in zip(statements[2:5], ("INSERT", "UPDATE", "DELETE")):
            assert statement.startswith(f"CREATE TRIGGER [xsync_Item_{operation.lower()}_trigger]")
            assert f"AFTER {operation} AS" in statement
            assert "SESSION_CONTEXT(N'xsync_origin')" in statement
        assert statements[5].startswith("INSERT INTO [xsync_Item_tracking]")
        assert executed.call_args_list[6] == call(
            "INSERT INTO [xsync_scope_info] (scope_name, key_column, tracked_columns) VALUES (?, ?, ?)",
            ["Item", "GUID", "GUID,Name"],
        )

    def test_delete_trigger_marks_tombstones(self, store, executed):
        store.apply_scope(SCOPE)
        delete_trigger = self.sql(executed)[4]

        assert "FROM deleted" in delete_trigger
        assert "t.[is_tombstone] = 1" in delete_trigger

    def test_triggers_ignore_key_fixes(self, store, executed):
        """Key fixes and their cascades leave the tracking rows untouched"""
        store.apply_scope(SCOPE)

        for trigger in self.sql(executed)[2:5]:
            early_return = trigger.index("IF @origin = N'xsync_reconcile' RETURN;")
            assert early_return < trigger.index("MERGE [xsync_Item_tracking]")

    def test_scope_without_key_column(self, store, executed, caplog):
        scope = ScopeDescription("Item", (ColumnDescription("Name", "nvarchar(50)"),), None)

        store.apply_scope(scope)

        statements = self.sql(executed)
        assert not [s for s in statements if "xsync_Item_tracking" in s or "TRIGGER" in s]
        assert executed.call_args_list[-1][0][1] == ["Item", None, "Name"]
        assert "no key column" in caplog.text

    def test_scope_exists_without_scope_table(self, store, executed):
        assert store.scope_exists("Item") is False
        assert store.get_scope("Item") is None

    def test_get_scope_reads_recorded_columns(self, store):
        with patch.object(store, "_scope_info_exists", return_value=True), \
                patch.object(store, "query", return_value=[{"key_column": "GUID", "tracked_columns": "GUID,Name"}]), \
                patch.object(store, "columns", return_value=[
                    ColumnDescription("ItemID", "int", False, True, True),
                    ColumnDescription("GUID", "uniqueidentifier", False),
                    ColumnDescription("Name", "nvarchar(50)"),
                ]):
            scope = store.get_scope("Item")

        assert scope == SCOPE

    def test_deprovision_scope(self, store):
        with patch.object(store, "execute") as execute, \
                patch.object(store, "_scope_info_exists", return_value=True):
            store.deprovision_scope("Item")

        statements = [c[0][0] for c in execute.call_args_list]
        assert statements[0] == (
            "IF OBJECT_ID(N'dbo.xsync_Item_insert_trigger', N'TR') IS NOT NULL "
            "DROP TRIGGER [xsync_Item_insert_trigger]"
        )
        assert "DROP TABLE [xsync_Item_tracking]" in statements[3]
        assert execute.call_args_list[4] == call("DELETE FROM [xsync_scope_info] WHERE scope_name = ?", ["Item"])

    def test_deprovision_store(self, store):
        with patch.object(store, "_scope_info_exists", return_value=True), \
                patch.object(store, "query", return_value=[{"scope_name": "ItemType"}, {"scope_name": "Item"}]), \
                patch.object(store, "deprovision_scope") as deprovision, \
                patch.object(store, "execute") as execute:
            store.deprovision_store()

        assert deprovision.call_args_list == [call("ItemType"), call("Item")]
        execute.assert_called_once_with("DROP TABLE [xsync_scope_info]")

    def test_close_closes_pool(self, store, caplog):
        store.close()
        store.pool.close.assert_called_once()
        assert "still in use" not in caplog.text

    def test_close_warns_about_connections_in_use(self, store, caplog):
        store.pool.get_stats.return_value = {"active_connections": 2}

        store.close()

        assert "Closing server store with 2 connections still in use" in caplog.text
        store.pool.close.assert_called_once()


class TestCreateDatabaseFile:

    @patch("offline_sync.store.sqlserver.pyodbc.connect")
    def test_creates_and_detaches(self, mock_connect):
        cursor = mock_connect.return_value.cursor.return_value

        create_database_file("DSN=master", "device", "C:\\Users\\O'Brien\\device.mdf")

        statements = cursor.execute.call_args_list
        assert statements[0][0][0] == (
            "CREATE DATABASE [device] ON PRIMARY "
            "(NAME = [device], FILENAME = N'C:\\Users\\O''Brien\\device.mdf')"
        )
        assert statements[1] == call("EXEC sp_detach_db ?, 'true'", ["device"])
        mock_connect.return_value.close.assert_called_once()

    def test_rejects_bad_database_name(self):
        with pytest.raises(ValueError):
            create_database_file("DSN=master", "device]; DROP", "C:\\device.mdf")
