# ==============================================
# Tests for RelationshipAnalyzer
# ==============================================
#
# Candidate emission from staged columns, unresolved staging
# reporting, and idempotent proposal materialization.
# ==============================================

import pytest

from tablebridge.analysis.relationship_analyzer import RelationshipAnalyzer
from tablebridge.analysis.relationships import Cardinality
from tablebridge.errors import StorageError
from tablebridge.mapping.models import ColumnDefinition
from tablebridge.persistence.session import ImportMode, ImportSession


def link_column(name="project", target="Projects", **overrides):
    data = dict(
        name=f"_links_{name}",
        storage_type="JSON",
        mapped_by="link",
        source_field=name.title(),
        source_type="multipleRecordLinks",
        is_staging=True,
        final_name=name,
        link_target=target,
    )
    data.update(overrides)
    return ColumnDefinition(**data)


def load(storage, table, column, values):
    """Write one staged value per row, keyed rec0..recN."""
    rows = [{"source_record_id": f"rec{i}", column: v} for i, v in enumerate(values)]
    storage.create_columns(table, [])
    storage.upsert_rows(table, rows, ImportMode.UPSERT)


# ==============================================
# Fixtures
# ==============================================

@pytest.fixture
def session(store):
    s = ImportSession(owner_id="alice", table_names=["Projects", "Tasks"])
    store.create_session(s)
    return s


@pytest.fixture
def analyzer(store, storage):
    return RelationshipAnalyzer(store, storage)


# ==============================================
# analyze()
# ==============================================

class TestAnalyze:

    def test_one_candidate_per_staging_column(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [
            ColumnDefinition(name="title", storage_type="VARCHAR(255)"),
            link_column(),
        ])
        load(storage, "tasks", "_links_project", [["p1"], ["p1"], ["p2"], ["p2"]])

        candidates = analyzer.analyze(session)

        assert len(candidates) == 1
        c = candidates[0]
        assert (c.source_table, c.field_name, c.target_table) == ("tasks", "Project", "projects")
        assert (c.total_records, c.non_null_records, c.unique_values) == (4, 4, 2)
        assert c.cardinality is Cardinality.MANY_TO_MANY
        assert store.get_session(session.id).unresolved_staging == []

    def test_each_value_used_once_is_one_to_many(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [link_column()])
        load(storage, "tasks", "_links_project", [["p1"], ["p2"], ["p3"]])
        [c] = analyzer.analyze(session)
        assert c.cardinality is Cardinality.ONE_TO_MANY
        assert c.confidence_score == 0.95

    def test_single_record_link_is_one_to_one(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [link_column(single_link=True)])
        load(storage, "tasks", "_links_project", [["p1"], ["p2"]])
        [c] = analyzer.analyze(session)
        assert c.cardinality is Cardinality.ONE_TO_ONE

    def test_all_null_column_has_no_candidate(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [link_column()])
        load(storage, "tasks", "_links_project", [None, None, None])

        assert analyzer.analyze(session) == []
        assert store.get_session(session.id).unresolved_staging == ["tasks._links_project"]

    def test_empty_table_has_no_candidate(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [link_column()])
        storage.create_columns("tasks", [])
        assert analyzer.analyze(session) == []

    def test_read_failure_skips_column(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [link_column(), link_column("owner", target="Tasks")])
        load(storage, "tasks", "_links_owner", [["rec0"], ["rec1"]])
        storage.fail_reads.add(("tasks", "_links_project"))

        candidates = analyzer.analyze(session)

        assert [c.staging_column for c in candidates] == ["_links_owner"]
        assert store.get_session(session.id).unresolved_staging == ["tasks._links_project"]

    def test_unknown_target_reported(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [link_column("client", target="Clients")])
        load(storage, "tasks", "_links_client", [["c1"]])
        assert analyzer.analyze(session) == []
        assert store.get_session(session.id).unresolved_staging == ["tasks._links_client"]

    def test_target_from_field_name(self, analyzer, store, storage, session):
        # No declared target; "Project" matches session table "Projects"
        store.save_column_plan(session.id, "tasks", [link_column(target=None)])
        load(storage, "tasks", "_links_project", [["p1"]])
        [c] = analyzer.analyze(session)
        assert c.target_table == "projects"

    def test_select_targets_option_set(self, analyzer, store, storage, session):
        column = ColumnDefinition(
            name="_select_status", storage_type="TEXT", source_field="Status",
            source_type="singleSelect", is_staging=True, final_name="status",
        )
        store.save_column_plan(session.id, "tasks", [column])
        load(storage, "tasks", "_select_status", ["Open"] * 20 + ["Closed"] * 20)

        [c] = analyzer.analyze(session)

        assert c.target_table == "status_options"
        assert c.target_is_option_set
        assert not c.staging_is_array
        assert c.cardinality is Cardinality.MANY_TO_ONE

    def test_reanalysis_keeps_candidate_identity(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [link_column()])
        load(storage, "tasks", "_links_project", [["p1"], ["p2"]])
        [first] = analyzer.analyze(session)
        [second] = analyzer.analyze(session)
        assert second.id == first.id
        assert len(store.list_candidates(session.id)) == 1


# ==============================================
# apply() / materialize()
# ==============================================

class TestApply:

    @pytest.fixture
    def candidate(self, analyzer, store, storage, session):
        store.save_column_plan(session.id, "tasks", [link_column()])
        load(storage, "tasks", "_links_project", [["p1"], ["p1", "p2"], ["p2"]])
        [c] = analyzer.analyze(session)
        return c

    def test_apply_materializes_once(self, analyzer, store, storage, session, candidate):
        [proposal] = analyzer.apply(session.id, [candidate.id])
        assert proposal.is_created
        assert proposal.created_at
        statements = list(storage.ddl)
        assert statements == proposal.statements()

        [again] = analyzer.apply(session.id, [candidate.id])
        assert again.is_created
        assert storage.ddl == statements

    def test_apply_marks_candidate_approved(self, analyzer, store, session, candidate):
        analyzer.apply(session.id, [candidate.id])
        assert store.list_candidates(session.id)[0].approved

    def test_failed_materialization_not_marked_created(self, analyzer, store, storage, session, candidate):
        storage.fail_ddl = True
        with pytest.raises(StorageError):
            analyzer.apply(session.id, [candidate.id])
        assert store.list_proposals(session.id) == []

        storage.fail_ddl = False
        [proposal] = analyzer.apply(session.id, [candidate.id])
        assert proposal.is_created

    def test_materialize_created_proposal_is_noop(self, analyzer, storage, session, candidate):
        [proposal] = analyzer.apply(session.id, [candidate.id])
        storage.ddl.clear()
        assert analyzer.materialize(proposal) is proposal
        assert storage.ddl == []
