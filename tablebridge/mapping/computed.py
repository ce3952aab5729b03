# ==============================================
# ComputedMapper
# ==============================================
#
# PURPOSE:
#   Computed fields (formula, lookup, rollup, count) are evaluated
#   by the source. We store their materialized values; the column
#   type follows the declared result type where the source tells
#   us, TEXT otherwise.
#
# TYPE RULES:
# -----------
#   count   → INTEGER CHECK (>= 0)
#   formula → by options.result.type
#               number DECIMAL(15,4) | text TEXT | date DATE
#               dateTime DATETIME    | checkbox BOOLEAN | else TEXT
#   lookup  → TEXT (list values joined with ", ")
#   rollup  → by options.aggregationFunction
#               COUNT, COUNT_DISTINCT → INTEGER
#               SUM, AVG, MAX, MIN    → DECIMAL(15,4)
#               else                  → TEXT
#
# ==============================================

from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from loguru import logger

from tablebridge.errors import TransformError
from tablebridge.mapping.models import ColumnDefinition, FieldCategory, FieldDefinition, canonical_type, is_empty
from tablebridge.mapping.naming import create_index_sql, quote, sanitize_identifier
from tablebridge.mapping.temporal import parse_datetime

FORMULA_TYPES = {
    "number": "DECIMAL(15,4)",
    "text": "TEXT",
    "date": "DATE",
    "dateTime": "DATETIME",
    "checkbox": "BOOLEAN",
}

ROLLUP_TYPES = {
    "COUNT": "INTEGER",
    "COUNT_DISTINCT": "INTEGER",
    "SUM": "DECIMAL(15,4)",
    "AVG": "DECIMAL(15,4)",
    "MAX": "DECIMAL(15,4)",
    "MIN": "DECIMAL(15,4)",
}


class ComputedMapper:
    """Maps formula, lookup, rollup and count fields."""

    category = FieldCategory.COMPUTED
    name = "computed"
    handles = frozenset({"formula", "lookup", "rollup", "count"})

    def can_handle(self, declared_type: str) -> bool:
        return canonical_type(declared_type) in self.handles

    def map_column(self, field: FieldDefinition) -> ColumnDefinition:
        column = sanitize_identifier(field.name)
        constraints: List[str] = []
        storage_type = self.storage_type_for(field)
        if field.kind == "count":
            constraints.append(f"CHECK ({quote(column)} >= 0)")

        return ColumnDefinition(
            name=column,
            storage_type=storage_type,
            nullable=True,
            constraints=constraints,
            mapped_by=self.name,
            source_field=field.name,
            source_type=field.kind,
            comment=f"computed {field.kind} field",
        )

    def storage_type_for(self, field: FieldDefinition) -> str:
        kind = field.kind
        if kind == "count":
            return "INTEGER"
        if kind == "formula":
            result = field.option("result") or {}
            return FORMULA_TYPES.get(result.get("type") if isinstance(result, dict) else None, "TEXT")
        if kind == "rollup":
            return ROLLUP_TYPES.get(field.option("aggregationFunction"), "TEXT")
        return "TEXT"

    def transform_value(self, raw: Any, field: FieldDefinition) -> Optional[Any]:
        if is_empty(raw):
            return None
        try:
            return self._coerce(raw, field)
        except TransformError as e:
            logger.warning(f"{e}, storing NULL")
            return None

    def additional_ddl(self, field: FieldDefinition) -> List[str]:
        if field.kind == "count":
            return [create_index_sql(field.table_name, sanitize_identifier(field.name))]
        return []

    # ------------------------------------------------------------------

    def _coerce(self, raw: Any, field: FieldDefinition) -> Any:
        if field.kind == "lookup":
            if isinstance(raw, (list, tuple)):
                return ", ".join(str(v) for v in raw if v is not None)
            return str(raw)

        storage_type = self.storage_type_for(field)
        try:
            if storage_type == "INTEGER":
                value = int(Decimal(str(raw)))
                if field.kind == "count" and value < 0:
                    raise ValueError("negative count")
                return value
            if storage_type.startswith("DECIMAL"):
                return Decimal(str(raw))
            if storage_type == "BOOLEAN":
                return bool(raw)
            if storage_type == "DATE":
                return parse_datetime(raw).date()
            if storage_type == "DATETIME":
                return parse_datetime(raw)
        except (InvalidOperation, OverflowError, TypeError, ValueError) as e:
            raise TransformError(field.name, raw, f"not a valid {storage_type}") from e

        if isinstance(raw, (list, tuple)):
            return ", ".join(str(v) for v in raw if v is not None)
        return str(raw)
