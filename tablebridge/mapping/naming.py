# ==============================================
# Identifier Naming
# ==============================================
#
# PURPOSE:
#   Turn free-form source names ("Unit Price (USD)", "2024 Budget")
#   into identifiers the relational store accepts, and build the
#   names of derived structures (indexes, staging columns).
#
# RULES:
# ------
#   1. Lowercase                         (Unit Price → unit price)
#   2. Anything outside [a-z0-9_] → "_"  (unit price → unit_price)
#   3. Leading digit gets "_" prefix     (2024_budget → _2024_budget)
#   4. Truncate to 63 characters
#
# FUNCTIONS:
# ----------
# - sanitize_identifier(name: str) -> str
# - index_name(table: str, column: str) -> str
# - create_index_sql(table: str, column: str) -> str
# - quote(identifier: str) -> str
#
# ==============================================

import re

MAX_IDENTIFIER_LENGTH = 63

# Every imported table gets these bookkeeping columns
PRIMARY_KEY_COLUMN = "id"
RECORD_KEY_COLUMN = "source_record_id"

# Mapped columns must never take one of these names
RESERVED_COLUMNS = frozenset({PRIMARY_KEY_COLUMN, RECORD_KEY_COLUMN, "created_at", "updated_at"})


def sanitize_identifier(name: str) -> str:
    """
    Convert a source name to a safe column/table identifier.

    Args:
        name: Raw name (e.g., "Unit Price", "2024 Budget")

    Returns:
        Sanitized identifier (e.g., "unit_price", "_2024_budget")
    """
    if not name:
        return "_"

    # Lowercase first so A-Z survive the character filter
    name = name.lower()
    name = re.sub(r'[^a-z0-9_]', '_', name)

    # Identifiers cannot start with a digit
    name = re.sub(r'^(\d)', r'_\1', name)

    return name[:MAX_IDENTIFIER_LENGTH]


def quote(identifier: str) -> str:
    """Backtick-quote an identifier for MySQL."""
    return "`" + identifier.replace("`", "``") + "`"


def index_name(table: str, column: str) -> str:
    return f"idx_{sanitize_identifier(table)}_{column}"[:MAX_IDENTIFIER_LENGTH]


def create_index_sql(table: str, column: str) -> str:
    """
    Build a secondary index statement for one column.

    MySQL has no CREATE INDEX IF NOT EXISTS; the storage layer treats a
    duplicate key name as already applied.
    """
    table_name = sanitize_identifier(table)
    return f"CREATE INDEX {quote(index_name(table, column))} ON {quote(table_name)} ({quote(column)})"
