# ==============================================
# Mapping Models (Data Classes)
# ==============================================
#
# PURPOSE:
#   Data classes for the INPUT and OUTPUT of field mapping.
#   FieldDefinition is what the record source reports about a field;
#   ColumnDefinition is the typed column the mappers produce.
#
# ENUMS:
# ------
# - FieldCategory(Enum): NUMERIC, TEXT, TEMPORAL, SELECTION, LINK,
#                        COMPUTED, UNSUPPORTED
#     Tagged variant used by the registry to dispatch a field.
#
# CLASSES:
# --------
# - FieldDefinition (frozen dataclass)
#     - name: str              → Field name as shown in the source
#     - declared_type: str     → Source type, e.g. "currency", "multipleRecordLinks"
#     - options: dict          → Opaque type options (precision, max, linkedTableId...)
#     - table_name: str        → Table the field belongs to
#     - field_id: str | None   → Source-side field id
#
# - ColumnDefinition (dataclass)
#     - name: str              → Sanitized column name
#     - storage_type: str      → MySQL type, e.g. "DECIMAL(15,2)", "JSON"
#     - nullable: bool
#     - constraints: list[str] → Ordered CHECK / NOT NULL clauses
#     - mapped_by: str         → Mapper that produced it ("numeric", "fallback"...)
#     - is_staging: bool       → Holds raw link/select payload pending analysis
#     - source_field / source_type → The field this column came from
#     - final_name: str | None → Column name once the staging payload is resolved
#     - link_target: str|None  → Linked table name for link staging columns
#     - single_link: bool      → Link restricted to one record (prefersSingleRecordLink)
#     - comment: str | None    → Column comment (computed fields)
#
# FUNCTIONS:
# ----------
# - canonical_type(declared_type) -> str
# - category_of(declared_type) -> FieldCategory
#
# ==============================================

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class FieldCategory(Enum):
    """
    Field categories; each one is handled by exactly one mapper.

    - UNSUPPORTED: no mapper; the registry falls back to a TEXT column
    """
    NUMERIC = "numeric"
    TEXT = "text"
    TEMPORAL = "temporal"
    SELECTION = "selection"
    LINK = "link"
    COMPUTED = "computed"
    UNSUPPORTED = "unsupported"


DECLARED_TYPES: Dict[str, FieldCategory] = {
    "number": FieldCategory.NUMERIC,
    "currency": FieldCategory.NUMERIC,
    "percent": FieldCategory.NUMERIC,
    "rating": FieldCategory.NUMERIC,
    "autoNumber": FieldCategory.NUMERIC,
    "singleLineText": FieldCategory.TEXT,
    "longText": FieldCategory.TEXT,
    "richText": FieldCategory.TEXT,
    "email": FieldCategory.TEXT,
    "phone": FieldCategory.TEXT,
    "url": FieldCategory.TEXT,
    "date": FieldCategory.TEMPORAL,
    "dateTime": FieldCategory.TEMPORAL,
    "createdTime": FieldCategory.TEMPORAL,
    "lastModifiedTime": FieldCategory.TEMPORAL,
    "duration": FieldCategory.TEMPORAL,
    "checkbox": FieldCategory.SELECTION,
    "singleSelect": FieldCategory.SELECTION,
    "multipleSelects": FieldCategory.SELECTION,
    "multipleRecordLinks": FieldCategory.LINK,
    "formula": FieldCategory.COMPUTED,
    "lookup": FieldCategory.COMPUTED,
    "rollup": FieldCategory.COMPUTED,
    "count": FieldCategory.COMPUTED,
}

# Short names some callers use for the same source types
TYPE_ALIASES: Dict[str, str] = {
    "text": "singleLineText",
    "multiSelect": "multipleSelects",
    "multipleSelect": "multipleSelects",
    "link": "multipleRecordLinks",
}


def canonical_type(declared_type: str) -> str:
    """Resolve an alias to the canonical source type name."""
    return TYPE_ALIASES.get(declared_type, declared_type)


def category_of(declared_type: str) -> FieldCategory:
    """Return the category of a declared type, UNSUPPORTED when unknown."""
    return DECLARED_TYPES.get(canonical_type(declared_type), FieldCategory.UNSUPPORTED)


def is_empty(value: Any) -> bool:
    """None, empty string and empty list all mean 'no value'."""
    if value is None:
        return True
    if isinstance(value, str) and value == "":
        return True
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return True
    return False


@dataclass(frozen=True)
class FieldDefinition:
    """
    A field as reported by the record source's schema snapshot.

    Immutable: mapping the same definition twice must give the same column.
    """

    name: str
    declared_type: str
    options: Dict[str, Any] = field(default_factory=dict)
    table_name: str = ""
    field_id: Optional[str] = None

    @property
    def kind(self) -> str:
        """Canonical declared type."""
        return canonical_type(self.declared_type)

    def option(self, key: str, default: Any = None) -> Any:
        return (self.options or {}).get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "declared_type": self.declared_type,
            "options": dict(self.options or {}),
            "table_name": self.table_name,
            "field_id": self.field_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDefinition":
        return cls(
            name=data["name"],
            declared_type=data["declared_type"],
            options=data.get("options") or {},
            table_name=data.get("table_name", ""),
            field_id=data.get("field_id"),
        )


@dataclass
class ColumnDefinition:
    """
    A typed storage column produced by a field mapper.

    Staging columns (is_staging=True) keep raw link/select payloads as JSON
    until relationship analysis resolves them.
    """

    # --- Core column ---
    name: str  # Sanitized column name, e.g. "unit_price" or "_links_projects"
    storage_type: str  # MySQL column type, e.g. "DECIMAL(15,2)"
    nullable: bool = True
    constraints: List[str] = field(default_factory=list)  # e.g. ["CHECK (rating >= 1 AND rating <= 5)"]

    # --- Provenance ---
    mapped_by: str = ""  # "numeric", "text", ..., or "fallback"
    source_field: str = ""  # Original field name
    source_type: str = ""  # Canonical declared type of the source field

    # --- Staging metadata ---
    is_staging: bool = False
    final_name: Optional[str] = None  # Column name after resolution
    link_target: Optional[str] = None  # Linked table name (link fields only)
    single_link: bool = False  # Source restricts the link to one record

    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the column for persistence.

        Returns:
            A JSON-serializable dictionary representation
        """
        return {
            "name": self.name,
            "storage_type": self.storage_type,
            "nullable": self.nullable,
            "constraints": list(self.constraints),
            "mapped_by": self.mapped_by,
            "source_field": self.source_field,
            "source_type": self.source_type,
            "is_staging": self.is_staging,
            "final_name": self.final_name,
            "link_target": self.link_target,
            "single_link": self.single_link,
            "comment": self.comment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnDefinition":
        """
        Reconstruct a ColumnDefinition from stored metadata.

        Args:
            data: Dictionary produced by to_dict()

        Returns:
            A ColumnDefinition instance
        """
        return cls(
            name=data["name"],
            storage_type=data["storage_type"],
            nullable=data.get("nullable", True),
            constraints=list(data.get("constraints") or []),
            mapped_by=data.get("mapped_by", ""),
            source_field=data.get("source_field", ""),
            source_type=data.get("source_type", ""),
            is_staging=data.get("is_staging", False),
            final_name=data.get("final_name"),
            link_target=data.get("link_target"),
            single_link=data.get("single_link", False),
            comment=data.get("comment"),
        )
