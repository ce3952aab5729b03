# ==============================================
# MySQLClient
# ==============================================
#
# PURPOSE:
#   Manages the MySQL connection and every SQL operation of an
#   import: creating tables from column plans, adding columns that
#   appear later, writing rows in insert/upsert/sync mode, and
#   running secondary DDL (indexes, junction tables, foreign keys).
#
# WHY THIS CLASS EXISTS:
#   The schema is not known in advance. The field mappers decide
#   each column's type; this class turns those ColumnDefinitions
#   into CREATE TABLE / ALTER TABLE statements and keeps re-imports
#   idempotent.
#
# TABLE LAYOUT:
# -------------
#   id                BIGINT AUTO_INCREMENT PRIMARY KEY
#   source_record_id  VARCHAR(255) NOT NULL UNIQUE   (upsert key)
#   <mapped columns>
#   created_at / updated_at
#
# CLASS: MySQLClient
# ------------------
#   Stateful: holds connection to MySQL.
#
#   Methods:
#   --------
#   - connect() / disconnect()
#   - create_columns(table, columns) -> None
#   - upsert_rows(table, rows, mode) -> WriteResult
#   - run_ddl(statement) -> None
#   - delete_missing(table, keep_keys) -> int
#   - fetch_column_values(table, column) -> list
#   - count_rows(table) -> int
#   - get_current_columns(table) -> dict[str, str]
#   - table_exists(table) -> bool
#
#   Context Manager:
#   ----------------
#   - __enter__ / __exit__ for `with MySQLClient(...) as db:` usage.
#
# ==============================================

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Tuple, cast

import pymysql
import pymysql.cursors
from loguru import logger

from tablebridge.errors import StorageError
from tablebridge.mapping.models import ColumnDefinition
from tablebridge.mapping.naming import PRIMARY_KEY_COLUMN, RECORD_KEY_COLUMN, quote, sanitize_identifier
from tablebridge.persistence.session import ImportMode
from tablebridge.storage.base import Storage, WriteResult

# MySQL error codes meaning "this structure is already there"
ALREADY_EXISTS_ERRORS = {
    1050,  # ER_TABLE_EXISTS_ERROR
    1060,  # ER_DUP_FIELDNAME
    1061,  # ER_DUP_KEYNAME
    1826,  # ER_FK_DUP_NAME
}

DELETE_CHUNK_SIZE = 500


class MySQLClient(Storage):
    def __init__(self, host, port, user, password, database):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database
        self.connection = None

    def connect(self) -> None:
        # Establish connection to MySQL, create database if it doesn't exist
        try:
            self.connection = pymysql.connect(
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
                charset="utf8mb4",
                autocommit=False,
            )
            with self.connection.cursor() as cursor:
                cursor.execute(f"CREATE DATABASE IF NOT EXISTS {quote(self.database)}")
                cursor.execute(f"USE {quote(self.database)}")
        except pymysql.MySQLError as e:
            raise StorageError(f"Cannot connect to MySQL at {self.host}:{self.port}: {e}") from e
        logger.info(f"Connected to MySQL database '{self.database}'")

    def disconnect(self) -> None:
        # Close connection cleanly
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False

    # ======================================
    # Schema
    # ======================================
    def create_columns(self, table: str, columns: List[ColumnDefinition]) -> None:
        """
        Create the table if it doesn't exist, or ALTER TABLE to add
        columns the plan has and the table lacks.

        Args:
            table: Source table name (sanitized here)
            columns: Column plan from the FieldMapperRegistry
        """
        table_name = sanitize_identifier(table)
        try:
            if not self.table_exists(table_name):
                body = [
                    f"{PRIMARY_KEY_COLUMN} BIGINT AUTO_INCREMENT PRIMARY KEY",
                    f"{RECORD_KEY_COLUMN} VARCHAR(255) NOT NULL UNIQUE",
                ]
                body.extend(self.column_sql(c) for c in columns)
                body.append("created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP")
                body.append("updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP")
                self._execute(f"CREATE TABLE IF NOT EXISTS {quote(table_name)} ({', '.join(body)})")
                logger.info(f"Created table '{table_name}' with {len(columns)} mapped columns")
                return

            existing = self.get_current_columns(table_name)
            for column in columns:
                if column.name not in existing:
                    self._execute(f"ALTER TABLE {quote(table_name)} ADD COLUMN {self.column_sql(column)}")
                    logger.info(f"Added column '{table_name}.{column.name}' ({column.storage_type})")
        except pymysql.MySQLError as e:
            self._rollback()
            raise StorageError(str(e), table=table_name) from e

    @staticmethod
    def column_sql(column: ColumnDefinition) -> str:
        parts = [quote(column.name), column.storage_type, "NULL" if column.nullable else "NOT NULL"]
        if column.comment:
            parts.append("COMMENT '" + column.comment.replace("'", "''") + "'")
        parts.extend(c for c in column.constraints if c.upper() != "NOT NULL")
        return " ".join(parts)

    def table_exists(self, table: str) -> bool:
        rows = self._query(
            "SELECT COUNT(*) AS n FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
            (self.database, table),
        )
        return bool(rows and rows[0]["n"])

    def get_current_columns(self, table: str) -> dict[str, str]:
        # Query INFORMATION_SCHEMA to get current column names and types
        rows = self._query(
            "SELECT COLUMN_NAME, DATA_TYPE FROM INFORMATION_SCHEMA.COLUMNS "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
            (self.database, table),
        )
        return {str(r["COLUMN_NAME"]): str(r["DATA_TYPE"]) for r in rows}

    def run_ddl(self, statement: str) -> None:
        """
        Execute a DDL/backfill statement; "already exists" errors are a no-op.

        Raises:
            StorageError: for any other MySQL error
        """
        try:
            self._execute(statement)
        except pymysql.MySQLError as e:
            self._rollback()
            code = e.args[0] if e.args else None
            if code in ALREADY_EXISTS_ERRORS:
                logger.debug(f"Already applied ({code}): {statement[:80]}")
                return
            raise StorageError(f"DDL failed: {e}") from e

    # ======================================
    # Rows
    # ======================================
    def upsert_rows(self, table: str, rows: List[Dict[str, Any]], mode: ImportMode) -> WriteResult:
        """
        Write rows keyed by source_record_id.

        INSERT skips existing keys; UPSERT and SYNC overwrite them.
        MySQL reports 1 affected row for an insert, 2 for an update and
        0 for an unchanged row (or an ignored insert).

        Raises:
            StorageError: on the first failing row; the batch is rolled back
        """
        result = WriteResult()
        if not rows:
            return result

        table_name = sanitize_identifier(table)
        try:
            with self._cursor() as cursor:
                for row in rows:
                    columns = list(row.keys())
                    column_names = ", ".join(quote(c) for c in columns)
                    placeholders = ", ".join(["%s"] * len(columns))
                    values = tuple(self._to_db(v) for v in row.values())

                    if mode is ImportMode.INSERT:
                        query = f"INSERT IGNORE INTO {quote(table_name)} ({column_names}) VALUES ({placeholders})"
                    else:
                        # Update all columns EXCEPT the key itself
                        update_clause = ", ".join(
                            f"{quote(c)} = VALUES({quote(c)})" for c in columns if c != RECORD_KEY_COLUMN
                        ) or f"{RECORD_KEY_COLUMN} = {RECORD_KEY_COLUMN}"
                        query = (
                            f"INSERT INTO {quote(table_name)} ({column_names}) "
                            f"VALUES ({placeholders}) "
                            f"ON DUPLICATE KEY UPDATE {update_clause}"
                        )

                    affected = cursor.execute(query, values)
                    if affected == 1:
                        result.inserted += 1
                    elif affected == 2:
                        result.updated += 1
                    elif mode is ImportMode.INSERT:
                        result.skipped += 1
                    else:
                        result.unchanged += 1
            self.connection.commit()
        except pymysql.MySQLError as e:
            self._rollback()
            raise StorageError(f"Write failed: {e}", table=table_name) from e
        return result

    def delete_missing(self, table: str, keep_keys: Iterable[str]) -> int:
        """Delete rows whose source_record_id is not in keep_keys (SYNC mode)."""
        table_name = sanitize_identifier(table)
        keep = set(keep_keys)
        try:
            existing = [
                r[RECORD_KEY_COLUMN]
                for r in self._query(f"SELECT {RECORD_KEY_COLUMN} FROM {quote(table_name)}")
            ]
            stale = [k for k in existing if k not in keep]
            deleted = 0
            with self._cursor() as cursor:
                for start in range(0, len(stale), DELETE_CHUNK_SIZE):
                    chunk = stale[start:start + DELETE_CHUNK_SIZE]
                    placeholders = ", ".join(["%s"] * len(chunk))
                    deleted += cursor.execute(
                        f"DELETE FROM {quote(table_name)} WHERE {RECORD_KEY_COLUMN} IN ({placeholders})",
                        tuple(chunk),
                    )
            self.connection.commit()
        except pymysql.MySQLError as e:
            self._rollback()
            raise StorageError(f"Sync delete failed: {e}", table=table_name) from e
        if deleted:
            logger.info(f"Removed {deleted} rows from '{table_name}' no longer present in the source")
        return deleted

    def fetch_column_values(self, table: str, column: str) -> List[Any]:
        table_name = sanitize_identifier(table)
        try:
            rows = self._query(f"SELECT {quote(column)} AS v FROM {quote(table_name)}")
        except pymysql.MySQLError as e:
            raise StorageError(f"Cannot read column '{column}': {e}", table=table_name) from e
        return [r["v"] for r in rows]

    def count_rows(self, table: str) -> int:
        table_name = sanitize_identifier(table)
        try:
            rows = self._query(f"SELECT COUNT(*) AS n FROM {quote(table_name)}")
        except pymysql.MySQLError as e:
            raise StorageError(f"Cannot count rows: {e}", table=table_name) from e
        return int(rows[0]["n"]) if rows else 0

    # ======================================
    # Low-level helpers
    # ======================================
    def _cursor(self, cursor_class=None):
        if self.connection is None:
            raise StorageError("Not connected to MySQL")
        return self.connection.cursor(cursor_class) if cursor_class else self.connection.cursor()

    def _execute(self, query: str, params: Tuple | None = None) -> int:
        with self._cursor() as cursor:
            affected = cursor.execute(query, params)
        self.connection.commit()
        return affected

    def _query(self, query: str, params: Tuple | None = None) -> List[Dict[str, Any]]:
        # Execute SELECT and return rows as dicts
        with self._cursor(pymysql.cursors.DictCursor) as cursor:
            cursor.execute(query, params)
            return cast(List[Dict[str, Any]], cursor.fetchall())

    def _rollback(self) -> None:
        if self.connection is not None:
            try:
                self.connection.rollback()
            except pymysql.MySQLError as e:
                logger.warning(f"Rollback failed: {e}")

    @staticmethod
    def _to_db(value: Any) -> Any:
        # Staging payloads are stored as JSON text
        if isinstance(value, (list, dict, tuple)):
            return json.dumps(value, default=str)
        if isinstance(value, (Decimal, date, datetime, bool, int, float, str)) or value is None:
            return value
        return str(value)
