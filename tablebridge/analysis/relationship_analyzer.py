# ==============================================
# RelationshipAnalyzer
# ==============================================
#
# PURPOSE:
#   Turn the staging columns of an imported session into
#   relationship candidates, and approved candidates into
#   materialized junction tables / foreign keys.
#
# WHY THIS CLASS EXISTS:
#   Link and select fields are imported as raw payloads because the
#   multiplicity of a relationship can't be known from the schema
#   alone. Once every table is loaded, this class reads the staged
#   values back, measures them (LinkFieldStats) and classifies them
#   (classify_cardinality).
#
# CLASS: RelationshipAnalyzer
# ---------------------------
#   Constructor:
#   ------------
#   - __init__(store, storage, thresholds=None)
#
#   Methods:
#   --------
#   - analyze(session) -> list[RelationshipCandidate]
#       For every staging column of every table in the session:
#         1. Count rows and read the staged values
#         2. Accumulate LinkFieldStats
#         3. Resolve the target table
#         4. Classify and upsert a candidate
#       Columns that end without a candidate are recorded in
#       session.unresolved_staging.
#
#   - collect_stats(table, column) -> LinkFieldStats
#   - resolve_target(column, table_names) -> str | None
#   - apply(session_id, candidate_ids) -> list[Proposal]
#   - materialize(proposal) -> Proposal
#
# ==============================================

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from loguru import logger

from tablebridge.analysis.link_stats import LinkFieldStats
from tablebridge.analysis.relationships import (
    CardinalityThresholds,
    Proposal,
    RelationshipCandidate,
    build_proposal,
    classify_cardinality,
)
from tablebridge.errors import AnalysisError, StorageError
from tablebridge.mapping.models import ColumnDefinition
from tablebridge.mapping.naming import sanitize_identifier
from tablebridge.persistence.session import ImportSession
from tablebridge.persistence.session_store import SessionStore
from tablebridge.storage.base import Storage


class RelationshipAnalyzer:
    """
    Infers relationships from staged link/select payloads.

    Stateless between calls; everything it learns goes to the SessionStore.
    """

    def __init__(
        self,
        store: SessionStore,
        storage: Storage,
        thresholds: Optional[CardinalityThresholds] = None,
    ):
        self.store = store
        self.storage = storage
        self.thresholds = thresholds or CardinalityThresholds()

    # ======================================
    # Analysis
    # ======================================
    def analyze(self, session: ImportSession) -> List[RelationshipCandidate]:
        """
        Emit one candidate per staging column with at least one non-empty row.

        Args:
            session: Session whose tables have been imported

        Returns:
            Candidates as stored (existing ids and approvals preserved)
        """
        plans = self.store.load_column_plans(session.id)
        table_names = [sanitize_identifier(t) for t in session.table_names]

        candidates: List[RelationshipCandidate] = []
        unresolved: List[str] = []

        for table, columns in plans.items():
            for column in columns:
                if not column.is_staging:
                    continue
                location = f"{table}.{column.name}"
                try:
                    candidate = self._analyze_column(session.id, table, column, table_names)
                except AnalysisError as e:
                    logger.warning(f"Skipping {location}: {e}")
                    unresolved.append(location)
                    continue

                if candidate is None:
                    unresolved.append(location)
                    continue
                candidates.append(self.store.upsert_candidate(candidate))

        session.unresolved_staging = unresolved
        self.store.save_session(session)

        if unresolved:
            logger.warning(
                f"Session {session.id}: {len(unresolved)} staging column(s) without a "
                f"relationship candidate: {', '.join(unresolved)}"
            )
        logger.info(f"Session {session.id}: {len(candidates)} relationship candidate(s)")
        return candidates

    def _analyze_column(
        self,
        session_id: str,
        table: str,
        column: ColumnDefinition,
        table_names: List[str],
    ) -> Optional[RelationshipCandidate]:
        stats = self.collect_stats(table, column)

        result = classify_cardinality(
            stats.total_records,
            stats.non_null_records,
            stats.unique_values,
            self.thresholds,
            single_link=column.single_link,
        )
        if result is None:
            # Nothing staged in any row; not classifiable
            logger.debug(f"{table}.{column.name}: no non-empty rows, no candidate")
            return None

        target = self.resolve_target(column, table_names)
        if target is None:
            logger.warning(f"{table}.{column.name}: cannot resolve a target table")
            return None

        cardinality, confidence = result
        logger.debug(
            f"{table}.{column.name} → {target}: {cardinality.value} ({confidence:.2f}) "
            f"total={stats.total_records} non_null={stats.non_null_records} unique={stats.unique_values}"
        )
        return RelationshipCandidate(
            session_id=session_id,
            source_table=table,
            field_name=column.source_field or column.name,
            staging_column=column.name,
            target_table=target,
            cardinality=cardinality,
            confidence_score=confidence,
            total_records=stats.total_records,
            non_null_records=stats.non_null_records,
            unique_values=stats.unique_values,
            staging_is_array=column.source_type != "singleSelect",
            target_is_option_set=column.link_target is None and column.source_type in ("singleSelect", "multipleSelects"),
            final_column=column.final_name or "",
        )

    def collect_stats(self, table: str, column: ColumnDefinition) -> LinkFieldStats:
        """
        Read a staging column back from storage and measure it.

        Raises:
            AnalysisError: if the storage query fails
        """
        stats = LinkFieldStats(table_name=table, column_name=column.name, field_name=column.source_field or "")
        try:
            total = self.storage.count_rows(table)
            values = self.storage.fetch_column_values(table, column.name)
        except StorageError as e:
            raise AnalysisError(table, column.name, str(e)) from e

        for value in values:
            stats.update(value)
        stats.set_total_records(total)
        return stats

    def resolve_target(self, column: ColumnDefinition, table_names: Iterable[str]) -> Optional[str]:
        """
        Find the table a staging column points at.

        - Select columns point at their option set, "{column}_options"
        - Link columns use the declared linked table when it is part of
          the session, otherwise a session table named like the field
          (singular/plural tolerant)
        """
        names = list(table_names)
        final = column.final_name or column.name

        if column.source_type in ("singleSelect", "multipleSelects"):
            return sanitize_identifier(f"{final}_options")

        if column.link_target:
            declared = sanitize_identifier(column.link_target)
            if declared in names:
                return declared

        for name in _name_variants(sanitize_identifier(column.source_field or final)):
            if name in names:
                return name
        return None

    # ======================================
    # Proposals
    # ======================================
    def apply(self, session_id: str, candidate_ids: Iterable[str]) -> List[Proposal]:
        """
        Approve candidates and materialize their proposals.

        A proposal already stored for a candidate is reused, so applying
        the same candidate twice never re-runs its DDL.

        Raises:
            AnalysisError: if a candidate id is not part of the session
        """
        by_id: Dict[str, RelationshipCandidate] = {c.id: c for c in self.store.list_candidates(session_id)}

        proposals: List[Proposal] = []
        for candidate_id in candidate_ids:
            candidate = by_id.get(candidate_id)
            if candidate is None:
                raise AnalysisError("-", candidate_id, f"no candidate with this id in session {session_id}")

            if not candidate.approved:
                candidate.approved = True
                self.store.save_candidate(candidate)

            fresh = build_proposal(candidate)
            proposal = self.store.get_proposal(session_id, fresh.id) or fresh
            proposals.append(self.materialize(proposal))
        return proposals

    def materialize(self, proposal: Proposal) -> Proposal:
        """
        Create the structure described by a proposal and backfill it.

        No-op when the proposal is already created.

        Raises:
            StorageError: if a statement fails; the proposal stays uncreated
        """
        if proposal.is_created:
            logger.debug(f"Proposal {proposal.id} already materialized")
            return proposal

        for statement in proposal.statements():
            self.storage.run_ddl(statement)

        proposal.is_created = True
        proposal.created_at = datetime.now(timezone.utc).isoformat()
        self.store.save_proposal(proposal)
        logger.info(f"Materialized {proposal.kind} proposal {proposal.id}")
        return proposal


def _name_variants(name: str) -> List[str]:
    """"project" → ["project", "projects"]; "projects" → ["projects", "project"]."""
    variants = [name]
    if name.endswith("ies"):
        variants.append(name[:-3] + "y")
    elif name.endswith("s"):
        variants.append(name[:-1])
    else:
        variants.append(name + "s")
        if name.endswith("y"):
            variants.append(name[:-1] + "ies")
    return variants
