# ==============================================
# TextMapper
# ==============================================
#
# PURPOSE:
#   Map textual source fields to VARCHAR/TEXT columns, with
#   REGEXP checks for email and url, and HTML stripping for
#   rich text values.
#
# TYPE RULES:
# -----------
#   singleLineText, email, phone → VARCHAR(255)
#   longText, richText, url      → TEXT
#
# ==============================================

import re
from typing import Any, List, Optional

from loguru import logger

from tablebridge.mapping.models import ColumnDefinition, FieldCategory, FieldDefinition, canonical_type, is_empty
from tablebridge.mapping.naming import create_index_sql, quote, sanitize_identifier

EMAIL_PATTERN = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"
URL_PATTERN = r"^https?://"
HTML_TAG = re.compile(r"<[^>]*>")
MAX_VARCHAR_LENGTH = 255


class TextMapper:
    """Maps singleLineText, longText, richText, email, phone and url fields."""

    category = FieldCategory.TEXT
    name = "text"
    handles = frozenset({"singleLineText", "longText", "richText", "email", "phone", "url"})

    SHORT_TYPES = ("singleLineText", "email", "phone")
    INDEX_HINTS = ("name", "title", "code")

    def can_handle(self, declared_type: str) -> bool:
        return canonical_type(declared_type) in self.handles

    def map_column(self, field: FieldDefinition) -> ColumnDefinition:
        column = sanitize_identifier(field.name)
        kind = field.kind
        storage_type = "VARCHAR(255)" if kind in self.SHORT_TYPES else "TEXT"

        constraints: List[str] = []
        if kind == "email":
            # Backslash doubled for the MySQL string literal
            pattern = EMAIL_PATTERN.replace("\\", "\\\\")
            constraints.append(f"CHECK ({quote(column)} REGEXP '{pattern}' OR {quote(column)} IS NULL)")
        elif kind == "url":
            constraints.append(f"CHECK ({quote(column)} REGEXP '{URL_PATTERN}' OR {quote(column)} IS NULL)")

        return ColumnDefinition(
            name=column,
            storage_type=storage_type,
            nullable=True,
            constraints=constraints,
            mapped_by=self.name,
            source_field=field.name,
            source_type=kind,
        )

    def transform_value(self, raw: Any, field: FieldDefinition) -> Optional[str]:
        """
        Trim text and strip tags from rich text.

        Malformed emails and urls become NULL; VARCHAR values are cut to
        255 characters.
        """
        if is_empty(raw):
            return None

        value = str(raw).strip()
        kind = field.kind

        if kind == "richText":
            value = HTML_TAG.sub("", value).strip()

        if not value:
            return None

        if kind == "email" and not re.match(EMAIL_PATTERN, value):
            logger.warning(f"Invalid email format in '{field.name}': {value}, storing NULL")
            return None
        elif kind == "url" and not re.match(URL_PATTERN, value):
            logger.warning(f"URL missing protocol in '{field.name}': {value}, storing NULL")
            return None

        if kind in self.SHORT_TYPES and len(value) > MAX_VARCHAR_LENGTH:
            logger.warning(f"'{field.name}' longer than {MAX_VARCHAR_LENGTH} characters, truncated")
            value = value[:MAX_VARCHAR_LENGTH]

        return value

    def additional_ddl(self, field: FieldDefinition) -> List[str]:
        kind = field.kind
        lowered = field.name.lower()
        searchable = kind == "singleLineText" and any(hint in lowered for hint in self.INDEX_HINTS)
        if kind == "email" or searchable:
            return [create_index_sql(field.table_name, sanitize_identifier(field.name))]
        return []
