# ==============================================
# ImportOrchestrator: Session State Machine
# ==============================================
#
# PURPOSE:
#   This is the MAIN CLASS that ties the 4 topics together into
#   one import session. Callers (CLI, an HTTP layer) interact with
#   this class only. Everything else is internal.
#
# HOW IT CONNECTS THE 4 TOPICS:
#
#   ┌──────────────────────────────────────────────────────────┐
#   │                   ImportOrchestrator                     │
#   │                                                          │
#   │  RecordSource.list_fields(table)                         │
#   │                 │ FieldDefinitions                       │
#   │                 ▼                                        │
#   │  ┌──────────────────────────────────────────────┐        │
#   │  │ TOPIC 1: MAPPING                             │        │
#   │  │  FieldMapperRegistry → column plan           │        │
#   │  └──────────────┬───────────────────────────────┘        │
#   │                 │ ColumnDefinitions                      │
#   │                 ▼                                        │
#   │  ┌──────────────────────────────────────────────┐        │
#   │  │ TOPIC 3: STORAGE                             │        │
#   │  │  create_columns → page loop → upsert_rows    │        │
#   │  └──────────────┬───────────────────────────────┘        │
#   │                 │ TableResult per table                  │
#   │                 ▼                                        │
#   │  ┌──────────────────────────────────────────────┐        │
#   │  │ TOPIC 4: PERSISTENCE                         │        │
#   │  │  SessionStore (session, plans, run lock)     │        │
#   │  └──────────────┬───────────────────────────────┘        │
#   │                 │ on request                             │
#   │                 ▼                                        │
#   │  ┌──────────────────────────────────────────────┐        │
#   │  │ TOPIC 2: RELATIONSHIP ANALYSIS               │        │
#   │  │  RelationshipAnalyzer → candidates/proposals │        │
#   │  └──────────────────────────────────────────────┘        │
#   └──────────────────────────────────────────────────────────┘
#
# STATES:
#   PENDING → RUNNING → {COMPLETED, FAILED, PARTIAL_FAILED, CANCELLED}
#
# CLASS: ImportOrchestrator
# -------------------------
#
#   Constructor:
#   ------------
#   - __init__(source, storage, store, registry, progress_sink=None,
#              thresholds=None, config=None)
#       Every collaborator is passed in; the registry is built once
#       by the caller and shared.
#
#   Public Methods:
#   ---------------
#   - start_import(owner_id, table_names, mode=None) -> session_id
#   - prepare_import(owner_id, table_names, mode=None) -> ImportSession
#   - run_session(session_id) -> ImportSession
#   - get_session(session_id) -> ImportSession
#   - list_sessions(owner_id=None) -> list[ImportSession]
#   - cancel_import(session_id) -> bool
#   - retry_table(session_id, table_name) -> TableResult
#   - analyze_relationships(session_id) -> list[RelationshipCandidate]
#   - apply_approved_relationships(session_id, candidate_ids) -> list[Proposal]
#
#   Per-table sub-protocol (_import_table):
#   ---------------------------------------
#     1. list_fields → coverage warning
#     2. column plan → persisted → create_columns → additional DDL
#     3. page loop: transform, write in batches, publish progress,
#        check cancellation
#     4. SYNC mode: delete rows not seen in this run
#   Any error ends the table, never the session.
#
# ==============================================

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from loguru import logger

from tablebridge.analysis.relationship_analyzer import RelationshipAnalyzer
from tablebridge.analysis.relationships import CardinalityThresholds, Proposal, RelationshipCandidate
from tablebridge.config import ImportConfig
from tablebridge.errors import ConflictError, SourceError, StorageError, TransformError
from tablebridge.mapping.models import ColumnDefinition, FieldDefinition, is_empty
from tablebridge.mapping.naming import RECORD_KEY_COLUMN, sanitize_identifier
from tablebridge.mapping.registry import FieldMapperRegistry
from tablebridge.persistence.session import ImportMode, ImportSession, SessionStatus, TableResult
from tablebridge.persistence.session_store import SessionStore
from tablebridge.progress import ProgressEvent, ProgressSink, ProgressTracker
from tablebridge.source.base import RecordSource
from tablebridge.storage.base import Storage


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ImportOrchestrator:
    """
    Runs import sessions: one worker, tables in order, cancellable
    between pages.
    """

    def __init__(
        self,
        source: RecordSource,
        storage: Storage,
        store: SessionStore,
        registry: FieldMapperRegistry,
        progress_sink: Optional[ProgressSink] = None,
        thresholds: Optional[CardinalityThresholds] = None,
        config: Optional[ImportConfig] = None,
    ):
        self.source = source
        self.storage = storage
        self.store = store
        self.registry = registry
        self.progress_sink = progress_sink
        self.config = config or ImportConfig()
        self.analyzer = RelationshipAnalyzer(store, storage, thresholds)

    # ======================================
    # Session lifecycle
    # ======================================
    def start_import(
        self,
        owner_id: str,
        table_names: List[str],
        mode: Union[ImportMode, str, None] = None,
    ) -> str:
        """
        Create a session and run it to a terminal status.

        Args:
            owner_id: Who the session belongs to
            table_names: Tables to import, in order
            mode: insert / upsert / sync (config default when None)

        Returns:
            The session id
        """
        session = self.prepare_import(owner_id, table_names, mode)
        self.run_session(session.id)
        return session.id

    def prepare_import(
        self,
        owner_id: str,
        table_names: List[str],
        mode: Union[ImportMode, str, None] = None,
    ) -> ImportSession:
        """Persist a PENDING session without running it."""
        session = ImportSession(
            owner_id=owner_id,
            table_names=list(table_names),
            mode=ImportMode(mode or self.config.default_mode),
        )
        self.store.create_session(session)
        logger.info(
            f"Session {session.id} created for {owner_id}: "
            f"{len(session.table_names)} table(s), mode={session.mode.value}"
        )
        return session

    def run_session(self, session_id: str) -> ImportSession:
        """
        Import every table of a session.

        Raises:
            ConflictError: if the session is already RUNNING
        """
        session = self.store.acquire_run_lock(session_id)
        session.per_table_results = {}
        session.error_message = None
        session.end_time = None
        self.store.save_session(session)

        try:
            try:
                self._check_source()
            except SourceError as e:
                logger.error(f"Session {session.id}: source unreachable: {e}")
                session.error_message = str(e)
                self._finish(session, SessionStatus.FAILED)
                return session

            cancelled = False
            for table in session.table_names:
                if self._cancel_requested(session.id):
                    cancelled = True
                    break
                result = self._import_table(session, table, session.mode)
                session.per_table_results[table] = result
                session.recompute_totals()
                self.store.save_session(session)
                if self._cancel_requested(session.id):
                    cancelled = True
                    break

            status = SessionStatus.CANCELLED if cancelled else session.aggregate_status()
            if status is not SessionStatus.COMPLETED and not cancelled:
                session.error_message = f"Failed tables: {', '.join(session.failed_tables())}"
            self._finish(session, status)
            return session
        finally:
            self._release(session)

    def get_session(self, session_id: str) -> ImportSession:
        return self.store.get_session(session_id)

    def list_sessions(self, owner_id: Optional[str] = None) -> List[ImportSession]:
        return self.store.list_sessions(owner_id)

    def cancel_import(self, session_id: str) -> bool:
        """
        Ask a pending or running session to stop at the next page boundary.

        Returns:
            False if the session had already finished
        """
        session = self.store.get_session(session_id)
        if session.status.is_terminal:
            logger.info(f"Session {session_id} is already {session.status.value}, nothing to cancel")
            return False
        self.store.request_cancel(session_id)
        logger.info(f"Cancellation requested for session {session_id}")
        return True

    def retry_table(self, session_id: str, table_name: str) -> TableResult:
        """
        Re-run one table of a finished session and re-aggregate its status.

        Retries write in UPSERT mode, or SYNC when the table was imported
        in SYNC, so rows from a partial earlier run are overwritten.

        Raises:
            ConflictError: if the session is not in a terminal status
            ValueError: if the table is not part of the session
        """
        session = self.store.get_session(session_id)
        if table_name not in session.table_names:
            raise ValueError(f"Table '{table_name}' is not part of session {session_id}")
        if not session.status.is_terminal:
            raise ConflictError(session_id, f"cannot retry while {session.status.value}")

        session = self.store.acquire_run_lock(session_id)
        try:
            previous = session.per_table_results.get(table_name)
            previous_mode = previous.mode if previous else session.mode
            mode = ImportMode.SYNC if previous_mode is ImportMode.SYNC else ImportMode.UPSERT

            logger.info(f"Retrying {table_name} in session {session_id} ({mode.value})")
            result = self._import_table(session, table_name, mode, previous=previous)
            session.per_table_results[table_name] = result
            session.recompute_totals()

            if self._cancel_requested(session.id):
                status = SessionStatus.CANCELLED
            else:
                status = session.aggregate_status()
            failed = session.failed_tables()
            session.error_message = f"Failed tables: {', '.join(failed)}" if failed else None
            self._finish(session, status)
            return result
        finally:
            self._release(session)

    # ======================================
    # Relationships
    # ======================================
    def analyze_relationships(self, session_id: str) -> List[RelationshipCandidate]:
        """
        Classify every staging column of the session's imported tables.

        Raises:
            ConflictError: if the session is RUNNING
        """
        session = self.store.get_session(session_id)
        if session.status is SessionStatus.RUNNING:
            raise ConflictError(session_id, "cannot analyze while RUNNING")
        return self.analyzer.analyze(session)

    def apply_approved_relationships(self, session_id: str, candidate_ids: List[str]) -> List[Proposal]:
        """Approve the given candidates and materialize their proposals."""
        session = self.store.get_session(session_id)
        if session.status is SessionStatus.RUNNING:
            raise ConflictError(session_id, "cannot apply relationships while RUNNING")
        return self.analyzer.apply(session_id, candidate_ids)

    # ======================================
    # Per-table sub-protocol
    # ======================================
    def _import_table(
        self,
        session: ImportSession,
        table: str,
        mode: ImportMode,
        previous: Optional[TableResult] = None,
    ) -> TableResult:
        result = TableResult(table_name=table, mode=mode, started_at=_now())
        table_name = sanitize_identifier(table)

        try:
            fields = self.source.list_fields(table)
            self._warn_on_coverage(table, fields)

            plan = self.registry.build_column_plan(fields, table_name)
            self.store.save_column_plan(session.id, table_name, plan)
            self.storage.create_columns(table_name, plan)
            for statement in self.registry.build_additional_ddl(fields, table_name):
                self.storage.run_ddl(statement)

            seen_keys: Set[str] = set()
            tracker = ProgressTracker(expected_total=previous.total_records if previous else None)
            cursor: Optional[str] = None
            cancelled = False

            while True:
                page = self.source.page_records(table, cursor)
                self._write_page(table_name, page.records, fields, plan, mode, result, seen_keys)
                tracker.advance(len(page.records))
                self._publish(session, table, result, tracker)

                cursor = page.next_cursor
                if self._cancel_requested(session.id):
                    cancelled = True
                    break
                if not cursor:
                    break

            if cancelled:
                result.error = f"cancelled after {result.total_records} records"
                logger.warning(f"{table}: {result.error}")
            else:
                if mode is ImportMode.SYNC:
                    result.deleted_records = self.storage.delete_missing(table_name, seen_keys)
                result.success = True
                logger.info(
                    f"{table}: {result.processed_records}/{result.total_records} records written "
                    f"({result.updated_records} updated, {result.skipped_records} skipped, "
                    f"{result.deleted_records} deleted)"
                )
        except (SourceError, StorageError) as e:
            result.success = False
            result.error = str(e)
            logger.error(f"{table}: import failed: {e}")
        except Exception as e:
            # Any other failure stays with this table; siblings still run
            result.success = False
            result.error = f"unexpected error: {type(e).__name__}: {e}"
            logger.exception(f"{table}: import failed unexpectedly")

        result.finished_at = _now()
        return result

    def _write_page(
        self,
        table_name: str,
        records: List[Dict[str, Any]],
        fields: List[FieldDefinition],
        plan: List[ColumnDefinition],
        mode: ImportMode,
        result: TableResult,
        seen_keys: Set[str],
    ) -> None:
        """Transform one page of records and write it in batches."""
        rows = []
        for record in records:
            row, nulled = self._transform_record(record, fields, plan)
            rows.append(row)
            seen_keys.add(row[RECORD_KEY_COLUMN])
            if nulled:
                result.skipped_records += 1
        result.total_records += len(records)

        batch_size = max(1, self.config.batch_size)
        for start in range(0, len(rows), batch_size):
            written = self.storage.upsert_rows(table_name, rows[start:start + batch_size], mode)
            result.processed_records += written.written
            result.updated_records += written.updated
            result.skipped_records += written.skipped

    def _transform_record(
        self,
        record: Dict[str, Any],
        fields: List[FieldDefinition],
        plan: List[ColumnDefinition],
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Build the storage row for one source record.

        Returns:
            (row, nulled) where nulled is True when a non-empty source
            value could not be transformed
        """
        values = record.get("fields") or {}
        row: Dict[str, Any] = {RECORD_KEY_COLUMN: str(record["id"])}
        nulled = False

        for field, column in zip(fields, plan):
            raw = values.get(field.name)
            try:
                value = self.registry.transform_value(raw, field)
            except TransformError as e:
                logger.warning(f"{record['id']}: {e}")
                value = None
            if value is None and not is_empty(raw):
                nulled = True
            row[column.name] = value
        return row, nulled

    # ======================================
    # Helpers
    # ======================================
    def _check_source(self) -> None:
        # Any SourceError here means no table can be imported
        self.source.list_tables()

    def _warn_on_coverage(self, table: str, fields: List[FieldDefinition]) -> None:
        coverage = self.registry.coverage(fields)
        if coverage["unsupported"]:
            logger.warning(
                f"{table}: {coverage['unsupported']} of {coverage['total_fields']} field(s) "
                f"have no dedicated mapper ({', '.join(coverage['unsupported_types'])}), "
                f"stored as TEXT"
            )

    def _publish(
        self,
        session: ImportSession,
        table: str,
        result: TableResult,
        tracker: ProgressTracker,
    ) -> None:
        if self.progress_sink is None:
            return
        event = ProgressEvent(
            session_id=session.id,
            table=table,
            records_processed=result.processed_records,
            total_records=result.total_records,
            status=SessionStatus.RUNNING.value,
            records_per_second=tracker.records_per_second,
            eta_seconds=tracker.eta_seconds,
        )
        self._emit(event)

    def _emit(self, event: ProgressEvent) -> None:
        try:
            self.progress_sink.publish(event)
        except Exception as e:
            logger.warning(f"Progress publish failed for session {event.session_id}: {e}")

    def _cancel_requested(self, session_id: str) -> bool:
        return self.store.is_cancel_requested(session_id)

    def _finish(self, session: ImportSession, status: SessionStatus) -> None:
        """Store the terminal status; this also releases the run lock."""
        session.status = status
        session.end_time = _now()
        self.store.save_session(session)
        self.store.clear_cancel(session.id)
        logger.info(
            f"Session {session.id} {status.value}: "
            f"{session.processed_records}/{session.total_records} records"
        )
        if self.progress_sink is not None:
            self._emit(ProgressEvent(
                session_id=session.id,
                table=None,
                records_processed=session.processed_records,
                total_records=session.total_records,
                status=status.value,
                message=session.error_message or "",
            ))

    def _release(self, session: ImportSession) -> None:
        # Reached with RUNNING only when an unexpected error escaped
        if session.status is SessionStatus.RUNNING:
            session.status = SessionStatus.FAILED
            session.error_message = session.error_message or "import aborted by an unexpected error"
            session.end_time = _now()
            self.store.save_session(session)
            self.store.clear_cancel(session.id)
