# ==============================================
# SelectionMapper
# ==============================================
#
# PURPOSE:
#   Map checkbox and select fields. Checkboxes become BOOLEAN
#   columns right away; select fields are STAGED: the chosen option
#   names are kept raw until relationship analysis turns them into
#   an option table plus a foreign key or junction table.
#
# TYPE RULES:
# -----------
#   checkbox        → BOOLEAN
#   singleSelect    → _select_{col}       TEXT  (staging)
#   multipleSelects → _multiselect_{col}  JSON  (staging)
#
# ==============================================

from typing import Any, List, Optional

from tablebridge.mapping.models import ColumnDefinition, FieldCategory, FieldDefinition, canonical_type, is_empty
from tablebridge.mapping.naming import MAX_IDENTIFIER_LENGTH, sanitize_identifier


def option_name(option: Any) -> str:
    """Selected options arrive either as plain strings or as {"name": ...} objects."""
    if isinstance(option, dict) and option.get("name"):
        return str(option["name"])
    return str(option)


class SelectionMapper:
    """Maps checkbox, singleSelect and multipleSelects fields."""

    category = FieldCategory.SELECTION
    name = "selection"
    handles = frozenset({"checkbox", "singleSelect", "multipleSelects"})

    def can_handle(self, declared_type: str) -> bool:
        return canonical_type(declared_type) in self.handles

    def map_column(self, field: FieldDefinition) -> ColumnDefinition:
        column = sanitize_identifier(field.name)
        kind = field.kind

        if kind == "singleSelect":
            return self._staging(field, f"_select_{column}", "TEXT", column)
        if kind == "multipleSelects":
            return self._staging(field, f"_multiselect_{column}", "JSON", column)

        return ColumnDefinition(
            name=column,
            storage_type="BOOLEAN",
            nullable=True,
            mapped_by=self.name,
            source_field=field.name,
            source_type=kind,
        )

    def transform_value(self, raw: Any, field: FieldDefinition) -> Optional[Any]:
        if is_empty(raw):
            return None

        kind = field.kind
        if kind == "checkbox":
            return bool(raw)

        if kind == "singleSelect":
            value = option_name(raw).strip()
            return value or None

        options = raw if isinstance(raw, (list, tuple)) else [raw]
        names = [option_name(o).strip() for o in options if o is not None]
        names = [n for n in names if n]
        return names or None

    def additional_ddl(self, field: FieldDefinition) -> List[str]:
        # Option tables are created when an approved proposal is materialized
        return []

    def _staging(self, field: FieldDefinition, name: str, storage_type: str, final: str) -> ColumnDefinition:
        return ColumnDefinition(
            name=name[:MAX_IDENTIFIER_LENGTH],
            storage_type=storage_type,
            nullable=True,
            mapped_by=self.name,
            source_field=field.name,
            source_type=field.kind,
            is_staging=True,
            final_name=final,
        )
