# ==============================================
# LinkFieldStats
# ==============================================
#
# PURPOSE:
#   Data class that holds the observed statistics for ONE staging
#   column (link ids or selected options) of one table. This is the
#   evidence the cardinality classifier works from.
#
# CLASS: LinkFieldStats (dataclass)
# ---------------------------------
#   Attributes:
#   -----------
#   - table_name / column_name / field_name
#   - total_records: int          → Rows in the table
#   - non_null_records: int       → Rows whose value is a non-empty list/str
#   - distinct_values: set[str]   → Every distinct referenced value
#   - total_links: int            → Sum of list lengths
#   - max_links_per_record: int
#   - sample_values: list         → Small list for debugging
#
#   Computed Properties:
#   --------------------
#   - unique_values -> int
#   - fill_ratio -> float         (non_null / total)
#   - avg_links_per_record -> float
#
#   Methods:
#   --------
#   - update(value) -> None       → Observe one row's staged value
#   - to_dict() / from_dict()
#
# ==============================================

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set


@dataclass
class LinkFieldStats:
    """Observed statistics for a staging column across all of a table's rows."""

    # --- Identity ---
    table_name: str
    column_name: str
    field_name: str = ""

    # --- Counters ---
    total_records: int = 0  # Rows seen, including nulls
    non_null_records: int = 0  # Rows with at least one referenced value
    total_links: int = 0  # References across all rows
    max_links_per_record: int = 0

    distinct_values: Set[str] = field(default_factory=set)

    # --- Debugging / inspection ---
    sample_values: List[Any] = field(default_factory=list)
    max_samples: int = 5

    # ======================================
    # Update logic
    # ======================================
    def update(self, value: Any) -> None:
        """
        Observe one row's staged value.

        Args:
            value: A list of ids, a JSON-encoded list, a scalar option, or None
        """
        self.total_records += 1

        refs = self._as_refs(value)
        if not refs:
            return

        self.non_null_records += 1
        self.total_links += len(refs)
        self.max_links_per_record = max(self.max_links_per_record, len(refs))
        self.distinct_values.update(refs)

        if len(self.sample_values) < self.max_samples:
            self.sample_values.append(refs)

    def set_total_records(self, total: int) -> None:
        """Use the table's row count when it exceeds the rows we iterated."""
        self.total_records = max(self.total_records, total)

    # ======================================
    # Computed properties
    # ======================================
    @property
    def unique_values(self) -> int:
        return len(self.distinct_values)

    @property
    def fill_ratio(self) -> float:
        if self.total_records == 0:
            return 0.0
        return self.non_null_records / self.total_records

    @property
    def avg_links_per_record(self) -> float:
        if self.non_null_records == 0:
            return 0.0
        return self.total_links / self.non_null_records

    # ======================================
    # Serialization
    # ======================================
    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "column_name": self.column_name,
            "field_name": self.field_name,
            "total_records": self.total_records,
            "non_null_records": self.non_null_records,
            "unique_values": self.unique_values,
            "total_links": self.total_links,
            "max_links_per_record": self.max_links_per_record,
            "sample_values": self.sample_values[: self.max_samples],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkFieldStats":
        # Distinct values are not persisted; only their count survives
        stats = cls(
            table_name=data["table_name"],
            column_name=data["column_name"],
            field_name=data.get("field_name", ""),
            total_records=data.get("total_records", 0),
            non_null_records=data.get("non_null_records", 0),
            total_links=data.get("total_links", 0),
            max_links_per_record=data.get("max_links_per_record", 0),
        )
        stats.sample_values = data.get("sample_values", [])
        return stats

    # ======================================

    @staticmethod
    def _as_refs(value: Any) -> List[str]:
        """Normalize a staged cell (list, JSON text or scalar) to a list of strings."""
        if value is None:
            return []
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8")
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return []
            if text.startswith("["):
                try:
                    value = json.loads(text)
                except ValueError:
                    return [text]
            else:
                return [text]
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value if v is not None and str(v) != ""]
        return [str(value)]
