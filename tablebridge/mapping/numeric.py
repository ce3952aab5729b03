# ==============================================
# NumericMapper
# ==============================================
#
# PURPOSE:
#   Map number-like source fields to exact SQL numeric columns.
#
# TYPE RULES:
# -----------
#   autoNumber → INTEGER NOT NULL
#   currency   → DECIMAL(15,2)       (no binary float rounding)
#   percent    → DECIMAL(5,4)        CHECK 0..1
#   rating     → INTEGER             CHECK 1..max (max defaults to 5)
#   number     → INTEGER if precision == 0 else DECIMAL(max(10, p+5), p)
#
# VALUE RULES:
# ------------
#   None / "" → None
#   rating, autoNumber → int
#   percent → float, divided by 100 when > 1 (0-100 scale assumed);
#             anything outside 0..1 after scaling → None
#   rating outside 1..max → None
#   currency, number → Decimal
#
# ==============================================

from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from loguru import logger

from tablebridge.errors import TransformError
from tablebridge.mapping.models import ColumnDefinition, FieldCategory, FieldDefinition, canonical_type, is_empty
from tablebridge.mapping.naming import create_index_sql, quote, sanitize_identifier


class NumericMapper:
    """Maps number, currency, percent, rating and autoNumber fields."""

    category = FieldCategory.NUMERIC
    name = "numeric"
    handles = frozenset({"number", "currency", "percent", "rating", "autoNumber"})

    DEFAULT_RATING_MAX = 5
    MAX_INTEGER = 2**31 - 1
    INDEX_HINTS = ("id", "amount", "price")

    def can_handle(self, declared_type: str) -> bool:
        return canonical_type(declared_type) in self.handles

    def map_column(self, field: FieldDefinition) -> ColumnDefinition:
        """
        Build the column for a numeric field.

        Args:
            field: Source field definition

        Returns:
            ColumnDefinition with an exact numeric storage type
        """
        column = sanitize_identifier(field.name)
        kind = field.kind
        constraints: List[str] = []
        nullable = True

        if kind == "autoNumber":
            storage_type = "INTEGER"
            nullable = False
            constraints.append("NOT NULL")
        elif kind == "currency":
            storage_type = "DECIMAL(15,2)"
        elif kind == "percent":
            storage_type = "DECIMAL(5,4)"
            constraints.append(f"CHECK ({quote(column)} >= 0 AND {quote(column)} <= 1)")
        elif kind == "rating":
            storage_type = "INTEGER"
            max_rating = self._rating_max(field)
            constraints.append(f"CHECK ({quote(column)} >= 1 AND {quote(column)} <= {max_rating})")
        else:
            precision = self._precision(field)
            if precision == 0:
                storage_type = "INTEGER"
            else:
                storage_type = f"DECIMAL({max(10, precision + 5)},{precision})"

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
            return self._coerce(raw, field)
        except TransformError as e:
            logger.warning(f"{e}, storing NULL")
            return None

    def additional_ddl(self, field: FieldDefinition) -> List[str]:
        lowered = field.name.lower()
        if field.kind == "autoNumber" or any(hint in lowered for hint in self.INDEX_HINTS):
            return [create_index_sql(field.table_name, sanitize_identifier(field.name))]
        return []

    # ------------------------------------------------------------------

    def _coerce(self, raw: Any, field: FieldDefinition) -> Any:
        kind = field.kind
        if isinstance(raw, bool):
            raise TransformError(field.name, raw, "boolean is not a number")

        if kind in ("autoNumber", "rating"):
            value = int(self._to_decimal(raw, field))
            if kind == "rating":
                low, high = 1, self._rating_max(field)
            else:
                low, high = -self.MAX_INTEGER - 1, self.MAX_INTEGER
            if not low <= value <= high:
                raise TransformError(field.name, raw, f"outside {low}..{high}")
            return value

        if kind == "percent":
            value = float(self._to_decimal(raw, field))
            if value > 1:
                value = value / 100
            if not 0 <= value <= 1:
                raise TransformError(field.name, raw, "percent outside 0..100")
            return value

        return self._to_decimal(raw, field)

    @staticmethod
    def _to_decimal(raw: Any, field: FieldDefinition) -> Decimal:
        try:
            value = Decimal(str(raw).strip())
        except (InvalidOperation, ValueError) as e:
            raise TransformError(field.name, raw, "not numeric") from e
        if not value.is_finite():
            raise TransformError(field.name, raw, "not finite")
        return value

    def _rating_max(self, field: FieldDefinition) -> int:
        try:
            return int(field.option("max") or self.DEFAULT_RATING_MAX)
        except (TypeError, ValueError):
            return self.DEFAULT_RATING_MAX

    @staticmethod
    def _precision(field: FieldDefinition) -> int:
        try:
            return max(0, int(field.option("precision") or 0))
        except (TypeError, ValueError):
            return 0
