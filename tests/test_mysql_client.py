# ==============================================
# Tests for MySQLClient
# ==============================================
#
# The pymysql connection is replaced by a scripted fake so the
# SQL built for each operation and the affected-row bookkeeping
# can be checked without a server.
# ==============================================

import pytest
import pymysql

from tablebridge.errors import StorageError
from tablebridge.mapping.models import ColumnDefinition
from tablebridge.persistence.session import ImportMode
from tablebridge.storage.mysql_client import MySQLClient


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.connection.executed.append((query, params))
        outcome = self.connection.outcomes.pop(0) if self.connection.outcomes else 0
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def fetchall(self):
        return self.connection.rows.pop(0) if self.connection.rows else []


class FakeConnection:
    """
    outcomes: values (affected rows) or exceptions, one per execute()
    rows: result sets, one per fetchall()
    """

    def __init__(self, outcomes=(), rows=()):
        self.outcomes = list(outcomes)
        self.rows = list(rows)
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_class=None):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        pass


def client_with(connection):
    client = MySQLClient("localhost", 3306, "root", "root", "tablebridge")
    client.connection = connection
    return client


def rows(*keys):
    return [{"source_record_id": k, "name": f"n-{k}"} for k in keys]


class TestUpsertRows:

    def test_affected_rows_are_counted(self):
        conn = FakeConnection(outcomes=[1, 2, 0])
        result = client_with(conn).upsert_rows("Tasks", rows("a", "b", "c"), ImportMode.UPSERT)

        assert (result.inserted, result.updated, result.unchanged, result.skipped) == (1, 1, 1, 0)
        assert result.written == 3
        assert conn.commits == 1
        query = conn.executed[0][0]
        assert query.startswith("INSERT INTO `tasks`")
        assert "ON DUPLICATE KEY UPDATE `name` = VALUES(`name`)" in query
        assert "`source_record_id` = VALUES" not in query

    def test_insert_mode_ignores_existing(self):
        conn = FakeConnection(outcomes=[1, 0])
        result = client_with(conn).upsert_rows("tasks", rows("a", "b"), ImportMode.INSERT)
        assert (result.inserted, result.skipped) == (1, 1)
        assert conn.executed[0][0].startswith("INSERT IGNORE INTO `tasks`")

    def test_staging_values_sent_as_json(self):
        conn = FakeConnection(outcomes=[1])
        row = {"source_record_id": "a", "_links_project": ["rec1", "rec2"]}
        client_with(conn).upsert_rows("tasks", [row], ImportMode.UPSERT)
        assert conn.executed[0][1] == ("a", '["rec1", "rec2"]')

    def test_failure_rolls_back(self):
        conn = FakeConnection(outcomes=[1, pymysql.err.OperationalError(1205, "Lock wait timeout")])
        with pytest.raises(StorageError, match="Write failed"):
            client_with(conn).upsert_rows("tasks", rows("a", "b"), ImportMode.UPSERT)
        assert conn.rollbacks == 1
        assert conn.commits == 0

    def test_empty_batch_touches_nothing(self):
        conn = FakeConnection()
        assert client_with(conn).upsert_rows("tasks", [], ImportMode.UPSERT).written == 0
        assert conn.executed == []


class TestRunDdl:

    @pytest.mark.parametrize("code", [1050, 1060, 1061, 1826])
    def test_already_exists_is_a_noop(self, code):
        conn = FakeConnection(outcomes=[pymysql.err.OperationalError(code, "exists")])
        client_with(conn).run_ddl("ALTER TABLE `t` ADD INDEX `idx` (`c`)")

    def test_other_errors_raise(self):
        conn = FakeConnection(outcomes=[pymysql.err.ProgrammingError(1064, "syntax error")])
        with pytest.raises(StorageError, match="DDL failed"):
            client_with(conn).run_ddl("ALTER TABLE")


class TestSchema:

    def test_new_table_gets_key_columns(self):
        conn = FakeConnection(outcomes=[0, 0], rows=[[{"n": 0}]])
        plan = [ColumnDefinition(name="budget", storage_type="DECIMAL(15,2)")]
        client_with(conn).create_columns("Projects", plan)

        create = conn.executed[-1][0]
        assert create.startswith("CREATE TABLE IF NOT EXISTS `projects`")
        assert "source_record_id VARCHAR(255) NOT NULL UNIQUE" in create
        assert "`budget` DECIMAL(15,2) NULL" in create

    def test_existing_table_adds_missing_columns(self):
        conn = FakeConnection(rows=[[{"n": 1}], [{"COLUMN_NAME": "name", "DATA_TYPE": "varchar"}]])
        plan = [
            ColumnDefinition(name="name", storage_type="VARCHAR(255)"),
            ColumnDefinition(name="done", storage_type="BOOLEAN"),
        ]
        client_with(conn).create_columns("projects", plan)

        alters = [q for q, _ in conn.executed if q.startswith("ALTER TABLE")]
        assert alters == ["ALTER TABLE `projects` ADD COLUMN `done` BOOLEAN NULL"]

    def test_column_comment_is_escaped(self):
        column = ColumnDefinition(name="total", storage_type="TEXT", comment="owner's formula")
        assert MySQLClient.column_sql(column) == "`total` TEXT NULL COMMENT 'owner''s formula'"


class TestSyncDelete:

    def test_deletes_only_unseen_keys(self):
        conn = FakeConnection(
            outcomes=[0, 1],
            rows=[[{"source_record_id": "a"}, {"source_record_id": "b"}]],
        )
        deleted = client_with(conn).delete_missing("tasks", {"a"})

        assert deleted == 1
        query, params = conn.executed[-1]
        assert query.startswith("DELETE FROM `tasks`")
        assert params == ("b",)

    def test_not_connected(self):
        with pytest.raises(StorageError):
            MySQLClient("h", 1, "u", "p", "d").count_rows("tasks")
