# ==============================================
# Error Taxonomy
# ==============================================
#
# PURPOSE:
#   One exception class per failure scope. Where each error is
#   caught decides how far the damage spreads:
#
#   - SourceError     → fatal to the affected table (whole session
#                       only when raised before the first table)
#   - MappingError    → field degrades to a fallback TEXT column
#   - TransformError  → one value nulled, record counted as skipped
#   - StorageError    → fatal to the affected table
#   - ConflictError   → rejected synchronously, nothing mutated
#   - AnalysisError   → one link field skipped, analysis continues
#
# ==============================================

from typing import Optional


class TablebridgeError(Exception):
    """Base class for every error raised by tablebridge."""


class SourceError(TablebridgeError):
    """The external record API is unreachable, rate-limited or rejected us."""

    def __init__(self, message: str, table: Optional[str] = None):
        self.table = table
        self.message = message
        prefix = f"[{table}] " if table else ""
        super().__init__(f"{prefix}{message}")


class MappingError(TablebridgeError):
    """A field definition cannot be turned into a column."""


class TransformError(TablebridgeError):
    """A single raw value cannot be coerced to its column type."""

    def __init__(self, field_name: str, value, reason: str = ""):
        self.field_name = field_name
        self.value = value
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot transform {value!r} for field '{field_name}'{detail}")


class StorageError(TablebridgeError):
    """A write or DDL statement against the relational store failed."""

    def __init__(self, message: str, table: Optional[str] = None):
        self.table = table
        prefix = f"[{table}] " if table else ""
        super().__init__(f"{prefix}{message}")


class ConflictError(TablebridgeError):
    """The session is locked by a running import."""

    def __init__(self, session_id: str, message: str = "session is already running"):
        self.session_id = session_id
        super().__init__(f"Session {session_id}: {message}")


class AnalysisError(TablebridgeError):
    """Relationship statistics for one field could not be gathered."""

    def __init__(self, table: str, field_name: str, message: str):
        self.table = table
        self.field_name = field_name
        super().__init__(f"{table}.{field_name}: {message}")


class SessionNotFoundError(TablebridgeError):
    """No import session is stored under the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Import session not found: {session_id}")
