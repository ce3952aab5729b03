# ==============================================
# Storage Interface
# ==============================================
#
# PURPOSE:
#   What the orchestrator and the relationship analyzer need from
#   the relational store. MySQLClient is the production
#   implementation; tests use an in-memory fake.
#
# CLASSES:
# --------
# - WriteResult (dataclass)
#     Counts for one upsert_rows() call.
#
# - Storage
#     - create_columns(table, columns) -> None
#         Create the table, or add columns missing from it.
#     - upsert_rows(table, rows, mode) -> WriteResult
#     - run_ddl(statement) -> None
#         Idempotent: "already exists" is not an error.
#     - delete_missing(table, keep_keys) -> int
#     - fetch_column_values(table, column) -> list
#     - count_rows(table) -> int
#
# ==============================================

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from tablebridge.mapping.models import ColumnDefinition
from tablebridge.persistence.session import ImportMode


@dataclass
class WriteResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0  # Key existed, values identical
    skipped: int = 0  # Key existed and mode is INSERT

    @property
    def written(self) -> int:
        return self.inserted + self.updated + self.unchanged


class Storage:
    """Interface for the relational store."""

    def create_columns(self, table: str, columns: List[ColumnDefinition]) -> None:
        raise NotImplementedError

    def upsert_rows(self, table: str, rows: List[Dict[str, Any]], mode: ImportMode) -> WriteResult:
        raise NotImplementedError

    def run_ddl(self, statement: str) -> None:
        raise NotImplementedError

    def delete_missing(self, table: str, keep_keys: Iterable[str]) -> int:
        raise NotImplementedError

    def fetch_column_values(self, table: str, column: str) -> List[Any]:
        raise NotImplementedError

    def count_rows(self, table: str) -> int:
        raise NotImplementedError
