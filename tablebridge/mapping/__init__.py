# ==============================================
# TOPIC 1: FIELD MAPPING
# ==============================================
#
# This package turns untyped source field definitions into typed
# MySQL columns plus a per-value transform.
#
# Modules:
# --------
# - models.py     → FieldDefinition, ColumnDefinition, FieldCategory
# - naming.py     → Identifier sanitizing, index DDL
# - numeric.py    → number, currency, percent, rating, autoNumber
# - text.py       → singleLineText, longText, richText, email, phone, url
# - temporal.py   → date, dateTime, createdTime, lastModifiedTime, duration
# - selection.py  → checkbox, singleSelect, multipleSelects (staged)
# - link.py       → multipleRecordLinks (staged)
# - computed.py   → formula, lookup, rollup, count
# - registry.py   → FieldMapperRegistry (dispatch + planning)
#
# ==============================================

from .models import ColumnDefinition, FieldCategory, FieldDefinition
from .registry import FieldAnalysis, FieldMapperRegistry

__all__ = [
    "ColumnDefinition",
    "FieldAnalysis",
    "FieldCategory",
    "FieldDefinition",
    "FieldMapperRegistry",
]
