# ==============================================
# FieldMapperRegistry
# ==============================================
#
# PURPOSE:
#   Single entry point for field mapping. Dispatches each field to
#   its mapper by category, builds a table's column plan, and
#   partitions fields for phase planning (standard vs. staging).
#
# WHY THIS CLASS EXISTS:
#   The orchestrator and the relationship analyzer both need the
#   same answer for "what column does this field become?". The
#   registry is built ONCE and handed to both; it holds no mutable
#   state, so sharing it across sessions is safe.
#
# DISPATCH:
# ---------
#   declared_type ──category_of()──► FieldCategory ──match──► mapper
#   Unknown types land in FieldCategory.UNSUPPORTED and get a
#   nullable TEXT fallback column instead of aborting the table.
#
# CLASS: FieldMapperRegistry
# --------------------------
#   Methods:
#   --------
#   - map_field(field, table) -> ColumnDefinition
#   - transform_value(raw, field) -> value | None
#   - additional_ddl(field) -> list[str]
#   - build_column_plan(fields, table) -> list[ColumnDefinition]
#   - column_fields(fields, table) -> list[FieldDefinition]
#   - build_additional_ddl(fields, table) -> list[str]
#   - analyze_fields(fields, table) -> FieldAnalysis
#   - coverage(fields) -> dict
#   - supported_types() -> list[str]
#
# ==============================================

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from loguru import logger

from tablebridge.errors import MappingError
from tablebridge.mapping.computed import ComputedMapper
from tablebridge.mapping.link import LinkMapper
from tablebridge.mapping.models import (
    DECLARED_TYPES,
    ColumnDefinition,
    FieldCategory,
    FieldDefinition,
    category_of,
    is_empty,
)
from tablebridge.mapping.naming import RESERVED_COLUMNS, sanitize_identifier
from tablebridge.mapping.numeric import NumericMapper
from tablebridge.mapping.selection import SelectionMapper
from tablebridge.mapping.temporal import TemporalMapper
from tablebridge.mapping.text import TextMapper

FALLBACK = "fallback"


@dataclass
class FieldAnalysis:
    """Partition of a table's fields used to plan import phases."""

    link_fields: List[FieldDefinition] = field(default_factory=list)
    select_fields: List[FieldDefinition] = field(default_factory=list)
    computed_fields: List[FieldDefinition] = field(default_factory=list)
    staging_columns: List[ColumnDefinition] = field(default_factory=list)
    standard_columns: List[ColumnDefinition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "link_fields": [f.name for f in self.link_fields],
            "select_fields": [f.name for f in self.select_fields],
            "computed_fields": [f.name for f in self.computed_fields],
            "staging_columns": [c.name for c in self.staging_columns],
            "standard_columns": [c.name for c in self.standard_columns],
        }


class FieldMapperRegistry:
    """
    Dispatches source fields to their mapper.

    Holds one instance of each mapper; the mappers themselves are
    stateless, so one registry serves every import session.
    """

    def __init__(self):
        self._numeric = NumericMapper()
        self._text = TextMapper()
        self._temporal = TemporalMapper()
        self._selection = SelectionMapper()
        self._link = LinkMapper()
        self._computed = ComputedMapper()

    def mapper_for(self, category: FieldCategory):
        """
        Return the mapper for a category, None for UNSUPPORTED.

        Every FieldCategory member must have a branch here.
        """
        match category:
            case FieldCategory.NUMERIC:
                return self._numeric
            case FieldCategory.TEXT:
                return self._text
            case FieldCategory.TEMPORAL:
                return self._temporal
            case FieldCategory.SELECTION:
                return self._selection
            case FieldCategory.LINK:
                return self._link
            case FieldCategory.COMPUTED:
                return self._computed
            case FieldCategory.UNSUPPORTED:
                return None
            case _:
                raise MappingError(f"No dispatch branch for category {category!r}")

    # ------------------------------------------------------------------
    # Per-field operations
    # ------------------------------------------------------------------

    def map_field(self, field: FieldDefinition, table: Optional[str] = None) -> ColumnDefinition:
        """
        Map one field to its column, falling back to TEXT when unsupported.

        Args:
            field: Source field definition
            table: Table name; overrides field.table_name when given

        Returns:
            The ColumnDefinition for the field (never raises)
        """
        field = self._bind_table(field, table)
        mapper = self.mapper_for(category_of(field.declared_type))
        if mapper is None:
            logger.warning(
                f"Unsupported field type '{field.declared_type}' for "
                f"{field.table_name}.{field.name}, storing as TEXT"
            )
            return self._fallback_column(field)

        try:
            return mapper.map_column(field)
        except MappingError as e:
            logger.warning(f"Mapping failed for {field.table_name}.{field.name}: {e}, storing as TEXT")
            return self._fallback_column(field)

    def transform_value(self, raw: Any, field: FieldDefinition) -> Optional[Any]:
        mapper = self.mapper_for(category_of(field.declared_type))
        if mapper is not None:
            return mapper.transform_value(raw, field)

        if is_empty(raw):
            return None
        if isinstance(raw, (dict, list, tuple)):
            return json.dumps(raw, default=str)
        return str(raw)

    def additional_ddl(self, field: FieldDefinition, table: Optional[str] = None) -> List[str]:
        field = self._bind_table(field, table)
        mapper = self.mapper_for(category_of(field.declared_type))
        if mapper is None:
            return []
        return list(mapper.additional_ddl(field))

    def is_supported(self, declared_type: str) -> bool:
        return category_of(declared_type) is not FieldCategory.UNSUPPORTED

    # ------------------------------------------------------------------
    # Table-level operations
    # ------------------------------------------------------------------

    def build_column_plan(self, fields: List[FieldDefinition], table: str) -> List[ColumnDefinition]:
        """
        Map every field of a table, in source order.

        A field whose column would collide with a bookkeeping column or
        an earlier field is mapped under a numeric suffix so the plan
        stays loadable. The column keeps the original source_field.
        """
        plan: List[ColumnDefinition] = []
        for original, named in zip(fields, self.column_fields(fields, table)):
            column = self.map_field(named, table)
            column.source_field = original.name
            plan.append(column)
        return plan

    def column_fields(self, fields: List[FieldDefinition], table: str) -> List[FieldDefinition]:
        """
        Return the fields as they are mapped: renamed to "<name>_<n>" when
        their column name is reserved or already taken.
        """
        used = set(RESERVED_COLUMNS)
        named_fields: List[FieldDefinition] = []
        for f in fields:
            f = self._bind_table(f, table)
            candidate = f
            suffix = 0
            while self._column_name(candidate) in used:
                suffix += 1
                candidate = replace(f, name=f"{sanitize_identifier(f.name)[:58]}_{suffix}")
            if candidate is not f:
                logger.info(
                    f"{f.table_name}.{f.name}: column name taken, "
                    f"stored as '{self._column_name(candidate)}'"
                )
            used.add(self._column_name(candidate))
            named_fields.append(candidate)
        return named_fields

    def build_additional_ddl(self, fields: List[FieldDefinition], table: str) -> List[str]:
        """Secondary DDL for a whole table, against the planned column names."""
        statements: List[str] = []
        for f in self.column_fields(fields, table):
            statements.extend(self.additional_ddl(f, table))
        return statements

    def analyze_fields(self, fields: List[FieldDefinition], table: str) -> FieldAnalysis:
        """
        Partition a table's fields for downstream phase planning.

        Link and select fields are staged (kept as raw payloads) until
        relationship analysis resolves them.
        """
        analysis = FieldAnalysis()
        for f, column in zip(fields, self.build_column_plan(fields, table)):
            category = category_of(f.declared_type)
            if category is FieldCategory.LINK:
                analysis.link_fields.append(f)
            elif category is FieldCategory.SELECTION and f.kind != "checkbox":
                analysis.select_fields.append(f)
            elif category is FieldCategory.COMPUTED:
                analysis.computed_fields.append(f)

            if column.is_staging:
                analysis.staging_columns.append(column)
            else:
                analysis.standard_columns.append(column)
        return analysis

    def coverage(self, fields: List[FieldDefinition]) -> Dict[str, Any]:
        """
        Diagnostic summary of how many fields have a dedicated mapper.

        Returns:
            Dictionary with total_fields, supported, unsupported,
            percentage, by_type and unsupported_types
        """
        by_type: Dict[str, int] = {}
        supported = 0
        for f in fields:
            by_type[f.declared_type] = by_type.get(f.declared_type, 0) + 1
            if self.is_supported(f.declared_type):
                supported += 1

        total = len(fields)
        return {
            "total_fields": total,
            "supported": supported,
            "unsupported": total - supported,
            "percentage": round(supported * 100 / total) if total else 100,
            "by_type": by_type,
            "unsupported_types": sorted(t for t in by_type if not self.is_supported(t)),
        }

    def supported_types(self) -> List[str]:
        return sorted(DECLARED_TYPES)

    # ------------------------------------------------------------------

    def _column_name(self, field: FieldDefinition) -> str:
        mapper = self.mapper_for(category_of(field.declared_type))
        if mapper is None:
            return sanitize_identifier(field.name)
        try:
            return mapper.map_column(field).name
        except MappingError:
            return sanitize_identifier(field.name)

    @staticmethod
    def _bind_table(field: FieldDefinition, table: Optional[str]) -> FieldDefinition:
        if table and field.table_name != table:
            return replace(field, table_name=table)
        return field

    @staticmethod
    def _fallback_column(field: FieldDefinition) -> ColumnDefinition:
        return ColumnDefinition(
            name=sanitize_identifier(field.name),
            storage_type="TEXT",
            nullable=True,
            constraints=[],
            mapped_by=FALLBACK,
            source_field=field.name,
            source_type=field.declared_type,
        )
