# ==============================================
# Pytest Configuration and Fixtures
# ==============================================
#
# Shared fixtures and in-memory collaborators. No database or
# network is needed: FakeSource, InMemoryStorage and FailingSink
# stand in for the RecordSource, Storage and ProgressSink
# interfaces; session stores live under tmp_path.
#
# ==============================================

from typing import Any, Dict, Iterable, List, Optional

import pytest

from tablebridge.errors import SourceError, StorageError
from tablebridge.mapping.models import ColumnDefinition, FieldDefinition
from tablebridge.mapping.naming import RECORD_KEY_COLUMN, sanitize_identifier
from tablebridge.mapping.registry import FieldMapperRegistry
from tablebridge.persistence.session import ImportMode
from tablebridge.persistence.session_store import JsonSessionStore
from tablebridge.progress import ChannelProgressSink, ProgressEvent, ProgressSink
from tablebridge.source.base import RecordPage, RecordSource
from tablebridge.storage.base import Storage, WriteResult


# ==============================================
# Fake collaborators
# ==============================================

class FakeSource(RecordSource):
    """In-memory record source; pages are slices of each table's record list."""

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.fields: Dict[str, List[FieldDefinition]] = {}
        self.records: Dict[str, List[Dict[str, Any]]] = {}
        self.unreachable = False
        self.failing_tables = set()
        self.pages_served: Dict[str, int] = {}
        self.on_page = None  # callback(table, page_number) run before a page is returned

    def add_table(self, name: str, fields: List[FieldDefinition], records: List[Dict[str, Any]]) -> None:
        self.fields[name] = fields
        self.records[name] = records

    def list_tables(self) -> List[str]:
        if self.unreachable:
            raise SourceError("connection refused")
        return list(self.fields)

    def list_fields(self, table: str) -> List[FieldDefinition]:
        if table in self.failing_tables:
            raise SourceError("HTTP 500", table=table)
        if table not in self.fields:
            raise SourceError("table not found in base", table=table)
        return self.fields[table]

    def page_records(self, table: str, cursor: Optional[str] = None) -> RecordPage:
        start = int(cursor or 0)
        end = start + self.page_size
        records = self.records[table][start:end]
        number = self.pages_served.get(table, 0) + 1
        self.pages_served[table] = number
        if self.on_page:
            self.on_page(table, number)
        next_cursor = str(end) if end < len(self.records[table]) else None
        return RecordPage(records=list(records), next_cursor=next_cursor)


class InMemoryStorage(Storage):
    """Dict-backed Storage with the same insert/upsert/sync semantics as MySQL."""

    def __init__(self):
        self.columns: Dict[str, List[str]] = {}
        self.rows: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.ddl: List[str] = []
        self.fail_writes = set()
        self.fail_reads = set()
        self.fail_ddl = False

    def create_columns(self, table: str, columns: List[ColumnDefinition]) -> None:
        existing = self.columns.setdefault(table, [])
        for column in columns:
            if column.name not in existing:
                existing.append(column.name)
        self.rows.setdefault(table, {})

    def upsert_rows(self, table: str, rows: List[Dict[str, Any]], mode: ImportMode) -> WriteResult:
        if table in self.fail_writes:
            raise StorageError("Write failed: disk full", table=table)
        result = WriteResult()
        stored = self.rows.setdefault(table, {})
        for row in rows:
            key = row[RECORD_KEY_COLUMN]
            if key not in stored:
                stored[key] = dict(row)
                result.inserted += 1
            elif mode is ImportMode.INSERT:
                result.skipped += 1
            elif stored[key] == row:
                result.unchanged += 1
            else:
                stored[key] = dict(row)
                result.updated += 1
        return result

    def run_ddl(self, statement: str) -> None:
        if self.fail_ddl:
            raise StorageError("DDL failed: syntax error")
        self.ddl.append(statement)

    def delete_missing(self, table: str, keep_keys: Iterable[str]) -> int:
        keep = set(keep_keys)
        stored = self.rows.get(table, {})
        stale = [k for k in stored if k not in keep]
        for key in stale:
            del stored[key]
        return len(stale)

    def fetch_column_values(self, table: str, column: str) -> List[Any]:
        if (table, column) in self.fail_reads:
            raise StorageError(f"Cannot read column '{column}'", table=table)
        return [row.get(column) for row in self.rows.get(table, {}).values()]

    def count_rows(self, table: str) -> int:
        return len(self.rows.get(table, {}))


class FailingSink(ProgressSink):
    def __init__(self):
        self.attempts = 0

    def publish(self, event: ProgressEvent) -> None:
        self.attempts += 1
        raise RuntimeError("websocket closed")


# ==============================================
# Helpers
# ==============================================

def make_field(name: str, declared_type: str, table: str = "items", **options) -> FieldDefinition:
    return FieldDefinition(name=name, declared_type=declared_type, options=options, table_name=table)


def make_record(record_id: str, **fields) -> Dict[str, Any]:
    return {"id": record_id, "fields": fields}


def table_key(name: str) -> str:
    return sanitize_identifier(name)


# ==============================================
# Fixtures
# ==============================================

@pytest.fixture
def registry():
    """One registry instance shared by everything in a test."""
    return FieldMapperRegistry()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def store(tmp_path):
    """JSON session store in a temporary directory."""
    return JsonSessionStore(str(tmp_path / "sessions"))


@pytest.fixture
def channel():
    return ChannelProgressSink()


@pytest.fixture
def projects_and_tasks(source):
    """
    Two linked tables:
    - Projects: 2 records
    - Tasks: 4 records, each linked to one project, with a status select
    """
    source.add_table(
        "Projects",
        [
            make_field("Name", "singleLineText", "Projects"),
            make_field("Budget", "currency", "Projects"),
        ],
        [
            make_record("recP1", Name="Apollo", Budget=1200.5),
            make_record("recP2", Name="Gemini", Budget="300"),
        ],
    )
    source.add_table(
        "Tasks",
        [
            make_field("Title", "singleLineText", "Tasks"),
            make_field("Done", "checkbox", "Tasks"),
            make_field("Project", "multipleRecordLinks", "Tasks", linkedTableName="Projects"),
            make_field("Status", "singleSelect", "Tasks"),
        ],
        [
            make_record("recT1", Title="Design", Done=True, Project=["recP1"], Status="Open"),
            make_record("recT2", Title="Build", Done=False, Project=["recP1"], Status="Open"),
            make_record("recT3", Title="Test", Project=["recP2"], Status={"name": "Closed"}),
            make_record("recT4", Title="Ship", Project=["recP2"], Status="Closed"),
        ],
    )
    return source
