# ==============================================
# Tests for ImportOrchestrator
# ==============================================
#
# Session state machine end to end against the in-memory
# source, storage and JSON session store.
# ==============================================

from datetime import datetime

import pytest

from tablebridge.analysis.relationships import JunctionProposal
from tablebridge.config import ImportConfig
from tablebridge.errors import ConflictError, SessionNotFoundError
from tablebridge.orchestrator import ImportOrchestrator
from tablebridge.persistence.session import ImportMode, SessionStatus

from tests.conftest import FailingSink, make_field, make_record


# ==============================================
# Fixtures
# ==============================================

@pytest.fixture
def orchestrator(projects_and_tasks, storage, store, registry, channel):
    return ImportOrchestrator(projects_and_tasks, storage, store, registry, progress_sink=channel)


def run(orchestrator, tables=("Projects", "Tasks"), mode=None):
    session_id = orchestrator.start_import("alice", list(tables), mode)
    return orchestrator.get_session(session_id)


# ==============================================
# Happy path
# ==============================================

class TestStartImport:

    def test_all_tables_completed(self, orchestrator, storage):
        session = run(orchestrator)

        assert session.status is SessionStatus.COMPLETED
        assert session.end_time is not None
        assert session.total_records == 6
        assert session.processed_records == 6
        assert set(storage.rows) == {"projects", "tasks"}
        assert sorted(storage.rows["tasks"]) == ["recT1", "recT2", "recT3", "recT4"]

    def test_rows_are_transformed(self, orchestrator, storage):
        run(orchestrator)
        task = storage.rows["tasks"]["recT3"]
        assert task["_links_project"] == ["recP2"]
        assert task["_select_status"] == "Closed"
        assert task["done"] is None
        assert str(storage.rows["projects"]["recP2"]["budget"]) == "300"

    def test_table_results(self, orchestrator):
        session = run(orchestrator)
        tasks = session.per_table_results["Tasks"]
        assert tasks.success
        assert tasks.error is None
        assert (tasks.total_records, tasks.processed_records, tasks.skipped_records) == (4, 4, 0)
        assert tasks.mode is ImportMode.UPSERT
        assert tasks.started_at and tasks.finished_at

    def test_column_plans_persisted(self, orchestrator, store):
        session = run(orchestrator)
        plans = store.load_column_plans(session.id)
        assert set(plans) == {"projects", "tasks"}
        staged = [c.name for c in plans["tasks"] if c.is_staging]
        assert staged == ["_links_project", "_select_status"]

    def test_session_persisted(self, orchestrator, store):
        session = run(orchestrator)
        assert store.get_session(session.id).status is SessionStatus.COMPLETED
        assert [s.id for s in orchestrator.list_sessions("alice")] == [session.id]

    def test_unknown_session(self, orchestrator):
        with pytest.raises(SessionNotFoundError):
            orchestrator.get_session("missing")

    def test_value_that_cannot_be_transformed_is_skipped(self, source, storage, store, registry):
        source.add_table(
            "Orders",
            [make_field("Amount", "currency", "Orders")],
            [make_record("o1", Amount="12.50"), make_record("o2", Amount="twelve")],
        )
        orchestrator = ImportOrchestrator(source, storage, store, registry)
        session = run(orchestrator, ["Orders"])

        result = session.per_table_results["Orders"]
        assert session.status is SessionStatus.COMPLETED
        assert result.processed_records == 2
        assert result.skipped_records == 1
        assert storage.rows["orders"]["o2"]["amount"] is None

    def test_unsupported_field_does_not_abort(self, source, storage, store, registry):
        source.add_table(
            "Things",
            [make_field("Name", "singleLineText", "Things"), make_field("Scan", "barcode", "Things")],
            [make_record("t1", Name="a", Scan={"text": "123"})],
        )
        session = run(ImportOrchestrator(source, storage, store, registry), ["Things"])
        assert session.status is SessionStatus.COMPLETED
        assert storage.rows["things"]["t1"]["scan"] == '{"text": "123"}'

    def test_unbounded_duration_is_skipped(self, source, storage, store, registry):
        source.add_table(
            "Logs",
            [make_field("Spent", "duration", "Logs")],
            [make_record("l1", Spent="inf"), make_record("l2", Spent=90)],
        )
        session = run(ImportOrchestrator(source, storage, store, registry), ["Logs"])

        result = session.per_table_results["Logs"]
        assert session.status is SessionStatus.COMPLETED
        assert result.skipped_records == 1
        assert storage.rows["logs"]["l1"]["spent"] is None
        assert storage.rows["logs"]["l2"]["spent"] == 90

    def test_fields_named_like_bookkeeping_columns(self, source, storage, store, registry):
        source.add_table(
            "People",
            [
                make_field("ID", "singleLineText", "People"),
                make_field("Created At", "dateTime", "People"),
                make_field("source_record_id", "singleLineText", "People"),
            ],
            [make_record("p1", **{"ID": "A-7", "Created At": "2024-01-02T00:00:00Z", "source_record_id": "other"})],
        )
        session = run(ImportOrchestrator(source, storage, store, registry), ["People"])

        assert session.status is SessionStatus.COMPLETED
        assert storage.columns["people"] == ["id_1", "created_at_1", "source_record_id_1"]
        assert list(storage.rows["people"]) == ["p1"]
        row = storage.rows["people"]["p1"]
        assert row["id_1"] == "A-7"
        assert row["created_at_1"] == datetime(2024, 1, 2)
        assert row["source_record_id_1"] == "other"

    def test_additional_ddl_runs(self, orchestrator, storage):
        run(orchestrator)
        assert "CREATE INDEX `idx_tasks_title` ON `tasks` (`title`)" in storage.ddl

    def test_batches_respect_batch_size(self, projects_and_tasks, storage, store, registry):
        calls = []
        original = storage.upsert_rows

        def spy(table, rows, mode):
            calls.append(len(rows))
            return original(table, rows, mode)

        storage.upsert_rows = spy
        orchestrator = ImportOrchestrator(
            projects_and_tasks, storage, store, registry, config=ImportConfig(batch_size=1)
        )
        run(orchestrator)
        assert calls == [1] * 6


# ==============================================
# Failures and retry
# ==============================================

class TestFailuresAndRetry:

    def test_storage_error_partial_failure_then_retry(self, orchestrator, storage):
        storage.fail_writes.add("tasks")
        session = run(orchestrator)

        assert session.status is SessionStatus.PARTIAL_FAILED
        assert session.per_table_results["Projects"].success
        failed = session.per_table_results["Tasks"]
        assert not failed.success
        assert "disk full" in failed.error

        storage.fail_writes.clear()
        result = orchestrator.retry_table(session.id, "Tasks")

        assert result.success
        assert result.mode is ImportMode.UPSERT
        assert orchestrator.get_session(session.id).status is SessionStatus.COMPLETED
        assert orchestrator.get_session(session.id).error_message is None

    def test_retry_completed_table_stays_completed(self, orchestrator):
        session = run(orchestrator)
        before = session.per_table_results["Projects"]

        result = orchestrator.retry_table(session.id, "Projects")

        after = orchestrator.get_session(session.id)
        assert after.status is SessionStatus.COMPLETED
        assert result.success
        assert result.started_at >= before.started_at
        assert after.per_table_results["Projects"] == result

    def test_all_tables_failing_is_failed(self, orchestrator, storage):
        storage.fail_writes.update({"projects", "tasks"})
        assert run(orchestrator).status is SessionStatus.FAILED

    def test_source_error_fails_one_table(self, orchestrator, projects_and_tasks):
        projects_and_tasks.failing_tables.add("Projects")
        session = run(orchestrator)
        assert session.status is SessionStatus.PARTIAL_FAILED
        assert "HTTP 500" in session.per_table_results["Projects"].error

    def test_source_unreachable_fails_session(self, orchestrator, projects_and_tasks):
        projects_and_tasks.unreachable = True
        session = run(orchestrator)
        assert session.status is SessionStatus.FAILED
        assert "connection refused" in session.error_message
        assert session.per_table_results == {}

    def test_unexpected_error_stays_with_its_table(self, orchestrator, storage):
        original = storage.upsert_rows

        def broken(table, rows, mode):
            if table == "projects":
                raise RuntimeError("driver bug")
            return original(table, rows, mode)

        storage.upsert_rows = broken
        session = run(orchestrator)

        assert session.status is SessionStatus.PARTIAL_FAILED
        assert session.per_table_results["Tasks"].success
        failed = session.per_table_results["Projects"]
        assert not failed.success
        assert failed.error == "unexpected error: RuntimeError: driver bug"
        assert session.error_message == "Failed tables: Projects"

    def test_retry_unknown_table(self, orchestrator):
        session = run(orchestrator)
        with pytest.raises(ValueError):
            orchestrator.retry_table(session.id, "Nope")

    def test_retry_in_sync_mode_keeps_sync(self, orchestrator, storage):
        storage.fail_writes.add("tasks")
        session = run(orchestrator, mode="sync")
        storage.fail_writes.clear()
        assert orchestrator.retry_table(session.id, "Tasks").mode is ImportMode.SYNC


# ==============================================
# Run lock
# ==============================================

class TestRunLock:

    def test_second_start_on_running_session_conflicts(self, orchestrator, store):
        session = orchestrator.prepare_import("alice", ["Projects"])
        store.acquire_run_lock(session.id)
        before = store.get_session(session.id).to_dict()

        with pytest.raises(ConflictError):
            orchestrator.run_session(session.id)
        assert store.get_session(session.id).to_dict() == before

    def test_retry_on_running_session_conflicts(self, orchestrator, store):
        session = orchestrator.prepare_import("alice", ["Projects"])
        store.acquire_run_lock(session.id)
        with pytest.raises(ConflictError):
            orchestrator.retry_table(session.id, "Projects")

    def test_retry_on_pending_session_conflicts(self, orchestrator):
        session = orchestrator.prepare_import("alice", ["Projects"])
        with pytest.raises(ConflictError):
            orchestrator.retry_table(session.id, "Projects")

    def test_lock_released_after_run(self, orchestrator, store):
        session = run(orchestrator)
        assert store.acquire_run_lock(session.id).status is SessionStatus.RUNNING

    def test_analyze_on_running_session_conflicts(self, orchestrator, store):
        session = orchestrator.prepare_import("alice", ["Projects"])
        store.acquire_run_lock(session.id)
        with pytest.raises(ConflictError):
            orchestrator.analyze_relationships(session.id)


# ==============================================
# Cancellation
# ==============================================

class TestCancellation:

    def test_cancel_stops_at_page_boundary(self, orchestrator, projects_and_tasks, store):
        projects_and_tasks.page_size = 1
        session = orchestrator.prepare_import("alice", ["Projects", "Tasks"])
        projects_and_tasks.on_page = lambda table, number: orchestrator.cancel_import(session.id)

        orchestrator.run_session(session.id)

        after = orchestrator.get_session(session.id)
        assert after.status is SessionStatus.CANCELLED
        assert projects_and_tasks.pages_served == {"Projects": 1}
        assert list(after.per_table_results) == ["Projects"]
        assert after.per_table_results["Projects"].total_records == 1
        assert not store.is_cancel_requested(session.id)

    def test_retry_after_cancel_counts_unreached_tables(self, orchestrator, projects_and_tasks):
        projects_and_tasks.page_size = 1
        session = orchestrator.prepare_import("alice", ["Projects", "Tasks"])
        projects_and_tasks.on_page = lambda table, number: orchestrator.cancel_import(session.id)
        orchestrator.run_session(session.id)
        projects_and_tasks.on_page = None

        result = orchestrator.retry_table(session.id, "Projects")

        after = orchestrator.get_session(session.id)
        assert result.success
        assert after.status is SessionStatus.PARTIAL_FAILED
        assert after.error_message == "Failed tables: Tasks"

    def test_cancel_before_run(self, orchestrator):
        session = orchestrator.prepare_import("alice", ["Projects"])
        assert orchestrator.cancel_import(session.id)
        orchestrator.run_session(session.id)
        after = orchestrator.get_session(session.id)
        assert after.status is SessionStatus.CANCELLED
        assert after.per_table_results == {}

    def test_cancel_finished_session_is_noop(self, orchestrator, store):
        session = run(orchestrator)
        assert not orchestrator.cancel_import(session.id)
        assert not store.is_cancel_requested(session.id)


# ==============================================
# Progress
# ==============================================

class TestProgress:

    def test_event_per_page(self, orchestrator, channel):
        session = run(orchestrator)
        events = channel.drain()

        table_events = [e for e in events if e.table is not None]
        # Projects: 1 page of 2, Tasks: 2 pages of 2
        assert [(e.table, e.records_processed) for e in table_events] == [
            ("Projects", 2), ("Tasks", 2), ("Tasks", 4)
        ]
        assert all(e.session_id == session.id for e in events)
        assert events[-1].table is None
        assert events[-1].status == "COMPLETED"

    def test_failing_sink_never_fails_import(self, projects_and_tasks, storage, store, registry):
        sink = FailingSink()
        orchestrator = ImportOrchestrator(projects_and_tasks, storage, store, registry, progress_sink=sink)
        session = run(orchestrator)
        assert session.status is SessionStatus.COMPLETED
        assert sink.attempts == 4


# ==============================================
# Modes
# ==============================================

class TestModes:

    def test_upsert_updates_existing(self, orchestrator, projects_and_tasks, storage):
        run(orchestrator, ["Projects"])
        projects_and_tasks.records["Projects"][0]["fields"]["Name"] = "Apollo II"
        session = run(orchestrator, ["Projects"])

        result = session.per_table_results["Projects"]
        assert result.updated_records == 1
        assert result.processed_records == 2
        assert storage.rows["projects"]["recP1"]["name"] == "Apollo II"

    def test_insert_skips_existing(self, orchestrator, projects_and_tasks, storage):
        run(orchestrator, ["Projects"])
        projects_and_tasks.records["Projects"][0]["fields"]["Name"] = "Apollo II"
        session = run(orchestrator, ["Projects"], mode="insert")

        result = session.per_table_results["Projects"]
        assert result.skipped_records == 2
        assert result.processed_records == 0
        assert storage.rows["projects"]["recP1"]["name"] == "Apollo"

    def test_sync_deletes_missing(self, orchestrator, projects_and_tasks, storage):
        run(orchestrator, ["Projects"])
        projects_and_tasks.records["Projects"].pop()
        session = run(orchestrator, ["Projects"], mode="sync")

        assert session.per_table_results["Projects"].deleted_records == 1
        assert list(storage.rows["projects"]) == ["recP1"]


# ==============================================
# Relationships through the orchestrator
# ==============================================

class TestRelationships:

    def test_analyze_and_apply(self, orchestrator, storage):
        session = run(orchestrator)

        candidates = orchestrator.analyze_relationships(session.id)

        by_column = {c.staging_column: c for c in candidates}
        assert set(by_column) == {"_links_project", "_select_status"}
        assert by_column["_links_project"].target_table == "projects"
        assert by_column["_select_status"].target_table == "status_options"
        assert orchestrator.get_session(session.id).unresolved_staging == []

        link = by_column["_links_project"]
        [proposal] = orchestrator.apply_approved_relationships(session.id, [link.id])
        assert isinstance(proposal, JunctionProposal)
        assert proposal.is_created
        assert proposal.junction_table == "tasks_project_links"
