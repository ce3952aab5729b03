# ==============================================
# LinkMapper
# ==============================================
#
# PURPOSE:
#   Link fields hold references to records of another table.
#   The source has no foreign keys, so the raw list of referenced
#   record ids is STAGED in a JSON column; RelationshipAnalyzer
#   later measures how the ids are reused and proposes the
#   relational structure.
#
# TYPE RULES:
# -----------
#   multipleRecordLinks → _links_{col} JSON (staging)
#
# VALUE RULES:
# ------------
#   list   → list of non-empty strings, None when nothing is left
#   scalar → one-item list
#
# ==============================================

from typing import Any, List, Optional

from tablebridge.mapping.models import ColumnDefinition, FieldCategory, FieldDefinition, canonical_type, is_empty
from tablebridge.mapping.naming import MAX_IDENTIFIER_LENGTH, sanitize_identifier


class LinkMapper:
    """Maps multipleRecordLinks fields to staging columns."""

    category = FieldCategory.LINK
    name = "link"
    handles = frozenset({"multipleRecordLinks"})

    def can_handle(self, declared_type: str) -> bool:
        return canonical_type(declared_type) in self.handles

    def map_column(self, field: FieldDefinition) -> ColumnDefinition:
        column = sanitize_identifier(field.name)
        return ColumnDefinition(
            name=f"_links_{column}"[:MAX_IDENTIFIER_LENGTH],
            storage_type="JSON",
            nullable=True,
            mapped_by=self.name,
            source_field=field.name,
            source_type=field.kind,
            is_staging=True,
            final_name=column,
            link_target=field.option("linkedTableName"),
            single_link=bool(field.option("prefersSingleRecordLink", False)),
        )

    def transform_value(self, raw: Any, field: FieldDefinition) -> Optional[List[str]]:
        if is_empty(raw):
            return None

        if isinstance(raw, (list, tuple)):
            ids = [self._record_id(v) for v in raw if not is_empty(v)]
            ids = [i for i in ids if i]
            return ids or None

        record_id = self._record_id(raw)
        return [record_id] if record_id else None

    def additional_ddl(self, field: FieldDefinition) -> List[str]:
        return []

    @staticmethod
    def _record_id(value: Any) -> str:
        # Expanded link cells look like {"id": "rec...", "name": "..."}
        if isinstance(value, dict):
            value = value.get("id", "")
        return str(value).strip()
