# ==============================================
# TemporalMapper
# ==============================================
#
# PURPOSE:
#   Map date/time source fields to DATE / DATETIME columns and
#   durations to a non-negative count of seconds.
#
# TYPE RULES:
# -----------
#   date                                 → DATE
#   dateTime, createdTime, lastModified  → DATETIME (system fields NOT NULL)
#   duration                             → INTEGER CHECK (>= 0)
#
# VALUE RULES:
# ------------
#   ISO-8601 strings (trailing "Z" allowed) → date / naive UTC datetime
#   duration: number of seconds, "H:M:S", "M:S" or "S"
#   anything unparseable → None (logged)
#
# ==============================================

import math
from datetime import date, datetime, timezone
from typing import Any, List, Optional

from loguru import logger

from tablebridge.errors import TransformError
from tablebridge.mapping.models import ColumnDefinition, FieldCategory, FieldDefinition, canonical_type, is_empty
from tablebridge.mapping.naming import create_index_sql, quote, sanitize_identifier

# Upper bound of the INTEGER column
MAX_DURATION_SECONDS = 2**31 - 1
# Lower bound of MySQL DATE / DATETIME
MIN_YEAR = 1000


def parse_datetime(value: Any) -> datetime:
    """
    Parse an ISO-8601 value into a naive UTC datetime.

    Raises:
        ValueError: if the value is not a recognizable timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if parsed.year < MIN_YEAR:
        raise ValueError(f"year {parsed.year} is before {MIN_YEAR}")
    return parsed


class TemporalMapper:
    """Maps date, dateTime, createdTime, lastModifiedTime and duration fields."""

    category = FieldCategory.TEMPORAL
    name = "temporal"
    handles = frozenset({"date", "dateTime", "createdTime", "lastModifiedTime", "duration"})

    SYSTEM_TYPES = ("createdTime", "lastModifiedTime")
    INDEX_HINTS = ("date", "created", "modified")

    def can_handle(self, declared_type: str) -> bool:
        return canonical_type(declared_type) in self.handles

    def map_column(self, field: FieldDefinition) -> ColumnDefinition:
        column = sanitize_identifier(field.name)
        kind = field.kind
        constraints: List[str] = []

        if kind == "date":
            storage_type = "DATE"
        elif kind == "duration":
            storage_type = "INTEGER"
            constraints.append(f"CHECK ({quote(column)} >= 0)")
        else:
            storage_type = "DATETIME"

        # System timestamps are always present on source records
        nullable = kind not in self.SYSTEM_TYPES

        return ColumnDefinition(
            name=column,
            storage_type=storage_type,
            nullable=nullable,
            constraints=constraints,
            mapped_by=self.name,
            source_field=field.name,
            source_type=kind,
        )

    def transform_value(self, raw: Any, field: FieldDefinition) -> Optional[Any]:
        if is_empty(raw):
            return None
        try:
            if field.kind == "date":
                return self._parse_date(raw, field)
            if field.kind == "duration":
                return self._parse_duration(raw, field)
            return self._parse_timestamp(raw, field)
        except TransformError as e:
            logger.warning(f"{e}, storing NULL")
            return None

    def additional_ddl(self, field: FieldDefinition) -> List[str]:
        lowered = field.name.lower()
        if field.kind in self.SYSTEM_TYPES or any(hint in lowered for hint in self.INDEX_HINTS):
            return [create_index_sql(field.table_name, sanitize_identifier(field.name))]
        return []

    # ------------------------------------------------------------------

    @staticmethod
    def _parse_timestamp(raw: Any, field: FieldDefinition) -> datetime:
        try:
            return parse_datetime(raw)
        except (OverflowError, TypeError, ValueError) as e:
            raise TransformError(field.name, raw, "invalid datetime") from e

    @staticmethod
    def _parse_date(raw: Any, field: FieldDefinition) -> date:
        if isinstance(raw, date) and not isinstance(raw, datetime):
            return raw
        try:
            text = str(raw).strip()
            if len(text) == 10:
                parsed = date.fromisoformat(text)
                if parsed.year < MIN_YEAR:
                    raise ValueError(f"year {parsed.year} is before {MIN_YEAR}")
                return parsed
            return parse_datetime(raw).date()
        except (OverflowError, TypeError, ValueError) as e:
            raise TransformError(field.name, raw, "invalid date") from e

    @staticmethod
    def _parse_duration(raw: Any, field: FieldDefinition) -> int:
        if isinstance(raw, bool):
            raise TransformError(field.name, raw, "invalid duration")

        if isinstance(raw, (int, float)):
            if isinstance(raw, float) and not math.isfinite(raw):
                raise TransformError(field.name, raw, "invalid duration")
            seconds = math.floor(raw)
        else:
            try:
                parts = [int(float(p)) for p in str(raw).strip().split(":")]
            except (OverflowError, ValueError) as e:
                raise TransformError(field.name, raw, "invalid duration") from e

            if len(parts) == 3:
                seconds = parts[0] * 3600 + parts[1] * 60 + parts[2]
            elif len(parts) == 2:
                seconds = parts[0] * 60 + parts[1]
            elif len(parts) == 1:
                seconds = parts[0]
            else:
                raise TransformError(field.name, raw, "too many duration parts")

        if seconds < 0:
            raise TransformError(field.name, raw, "negative duration")
        if seconds > MAX_DURATION_SECONDS:
            raise TransformError(field.name, raw, "duration too long")
        return seconds
