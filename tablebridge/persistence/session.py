# ==============================================
# Import Session (Data Classes)
# ==============================================
#
# PURPOSE:
#   State of one multi-table import: the session itself and one
#   TableResult per attempted table. Owned by the orchestrator,
#   persisted by a SessionStore.
#
# ENUMS:
# ------
# - SessionStatus(Enum): PENDING, RUNNING, COMPLETED, FAILED,
#                        PARTIAL_FAILED, CANCELLED
# - ImportMode(Enum): INSERT, UPSERT, SYNC
#
# CLASSES:
# --------
# - TableResult (dataclass)
#     Outcome of importing one table; replaced wholesale on retry.
#
# - ImportSession (dataclass)
#     Methods:
#     --------
#     - aggregate_status() -> SessionStatus
#         Over ALL session tables; a missing result is a failure.
#         COMPLETED iff every table succeeded, PARTIAL_FAILED iff
#         mixed, FAILED iff none succeeded.
#     - failed_tables() -> list[str]   (failed or never reached)
#     - to_dict() / from_dict()
#
# ==============================================

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class SessionStatus(Enum):
    """
    Lifecycle of an import session.

    PENDING → RUNNING → {COMPLETED, FAILED, PARTIAL_FAILED, CANCELLED}
    """
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PARTIAL_FAILED = "PARTIAL_FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self not in (SessionStatus.PENDING, SessionStatus.RUNNING)


class ImportMode(Enum):
    """
    How rows are written.

    - INSERT: rows whose key already exists are skipped
    - UPSERT: rows whose key already exists are updated
    - SYNC:   upsert, then delete rows not seen in this run
    """
    INSERT = "insert"
    UPSERT = "upsert"
    SYNC = "sync"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TableResult:
    """Outcome of importing one table within a session."""

    table_name: str
    success: bool = False
    mode: ImportMode = ImportMode.UPSERT
    total_records: int = 0  # Records fetched from the source
    processed_records: int = 0  # Records written (inserted, updated or kept)
    updated_records: int = 0  # Existing rows overwritten
    skipped_records: int = 0  # Records with a nulled value, or not written
    deleted_records: int = 0  # Rows removed by SYNC
    error: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "success": self.success,
            "mode": self.mode.value,
            "total_records": self.total_records,
            "processed_records": self.processed_records,
            "updated_records": self.updated_records,
            "skipped_records": self.skipped_records,
            "deleted_records": self.deleted_records,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableResult":
        return cls(
            table_name=data["table_name"],
            success=data.get("success", False),
            mode=ImportMode(data.get("mode", ImportMode.UPSERT.value)),
            total_records=data.get("total_records", 0),
            processed_records=data.get("processed_records", 0),
            updated_records=data.get("updated_records", 0),
            skipped_records=data.get("skipped_records", 0),
            deleted_records=data.get("deleted_records", 0),
            error=data.get("error"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
        )


@dataclass
class ImportSession:
    """
    One import request covering an ordered list of tables.

    Mutated only by the orchestrator holding the session's run lock.
    """

    owner_id: str
    table_names: List[str]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: SessionStatus = SessionStatus.PENDING
    mode: ImportMode = ImportMode.UPSERT

    # --- Progress ---
    total_tables: int = 0
    total_records: int = 0
    processed_records: int = 0
    per_table_results: Dict[str, TableResult] = field(default_factory=dict)

    # --- Relationship analysis ---
    unresolved_staging: List[str] = field(default_factory=list)  # "table.column" entries

    # --- Timing / errors ---
    start_time: str = field(default_factory=_now)
    end_time: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if not self.total_tables:
            self.total_tables = len(self.table_names)

    # ======================================
    # Status aggregation
    # ======================================
    def aggregate_status(self) -> SessionStatus:
        """
        Derive the terminal status over every table of the session.

        A table without a result (never reached) counts as not succeeded.

        Returns:
            COMPLETED if every table succeeded, PARTIAL_FAILED if some
            did, FAILED if none did
        """
        if not self.table_names:
            return SessionStatus.FAILED
        succeeded = len(self.table_names) - len(self.failed_tables())
        if succeeded == len(self.table_names):
            return SessionStatus.COMPLETED
        if succeeded == 0:
            return SessionStatus.FAILED
        return SessionStatus.PARTIAL_FAILED

    def failed_tables(self) -> List[str]:
        """Tables that failed or were never imported, in session order."""
        failed = []
        for name in self.table_names:
            result = self.per_table_results.get(name)
            if result is None or not result.success:
                failed.append(name)
        return failed

    def recompute_totals(self) -> None:
        """Session totals are the sum of the current table results."""
        self.total_records = sum(r.total_records for r in self.per_table_results.values())
        self.processed_records = sum(r.processed_records for r in self.per_table_results.values())

    # ======================================
    # Serialization
    # ======================================
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "mode": self.mode.value,
            "table_names": list(self.table_names),
            "totals": {"tables": self.total_tables, "records": self.total_records},
            "processed_records": self.processed_records,
            "per_table_results": {
                name: result.to_dict() for name, result in self.per_table_results.items()
            },
            "unresolved_staging": list(self.unresolved_staging),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportSession":
        totals = data.get("totals") or {}
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            table_names=list(data.get("table_names") or []),
            status=SessionStatus(data.get("status", SessionStatus.PENDING.value)),
            mode=ImportMode(data.get("mode", ImportMode.UPSERT.value)),
            total_tables=totals.get("tables", 0),
            total_records=totals.get("records", 0),
            processed_records=data.get("processed_records", 0),
            per_table_results={
                name: TableResult.from_dict(result)
                for name, result in (data.get("per_table_results") or {}).items()
            },
            unresolved_staging=list(data.get("unresolved_staging") or []),
            start_time=data.get("start_time") or _now(),
            end_time=data.get("end_time"),
            error_message=data.get("error_message"),
        )
