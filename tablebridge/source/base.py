"""
RecordSource interface consumed by the orchestrator.

A source lists the field definitions of a table and hands out records
one page at a time; the opaque cursor of the previous page fetches the
next one.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tablebridge.mapping.models import FieldDefinition


@dataclass
class RecordPage:
    records: List[Dict[str, Any]] = field(default_factory=list)  # {"id": ..., "fields": {...}}
    next_cursor: Optional[str] = None


class RecordSource:
    """Interface for external record APIs."""

    def list_tables(self) -> List[str]:
        raise NotImplementedError

    def list_fields(self, table: str) -> List[FieldDefinition]:
        raise NotImplementedError

    def page_records(self, table: str, cursor: Optional[str] = None) -> RecordPage:
        raise NotImplementedError
