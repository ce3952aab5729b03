# ==============================================
# Relationships (Data Classes)
# ==============================================
#
# PURPOSE:
#   Data classes that represent the OUTPUT of relationship analysis:
#   the inferred cardinality of each link field, the thresholds that
#   drive the inference, and the structural proposals (junction
#   tables, foreign keys) derived from approved candidates.
#
# ENUMS:
# ------
# - Cardinality(Enum): ONE_TO_ONE, ONE_TO_MANY, MANY_TO_ONE, MANY_TO_MANY
#
# CLASSES:
# --------
# - CardinalityThresholds (dataclass)
#     Tunable heuristics for classify_cardinality().
#
# - RelationshipCandidate (dataclass)
#     One per (session, source table, field).
#
# - JunctionProposal / ForeignKeyProposal (dataclass)
#     Structures to materialize. Each renders its own MySQL
#     statements; is_created flips False → True exactly once.
#
# FUNCTIONS:
# ----------
# - classify_cardinality(total, non_null, unique, thresholds) -> (Cardinality, float) | None
# - build_proposal(candidate) -> JunctionProposal | ForeignKeyProposal
# - proposal_from_dict(data) -> JunctionProposal | ForeignKeyProposal
#
# ==============================================

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from tablebridge.mapping.naming import (
    MAX_IDENTIFIER_LENGTH,
    PRIMARY_KEY_COLUMN,
    RECORD_KEY_COLUMN,
    quote,
    sanitize_identifier,
)


class Cardinality(Enum):
    """Multiplicity inferred between a source table and a link target."""
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"


@dataclass
class CardinalityThresholds:
    """
    Configurable thresholds for cardinality classification.

    The defaults are empirical; they trade recall for simplicity.
    """

    reuse_ratio: float = 0.1
    """
    A field is MANY_TO_ONE when unique < non_null * reuse_ratio.
    Default 0.1 = the referenced set is under a tenth of the linking rows.
    """

    one_to_many_confidence: float = 0.95
    """Confidence when every referenced value is used exactly once."""

    many_to_one_confidence: float = 0.85
    """Confidence when a small target set is heavily reused."""

    many_to_many_confidence: float = 0.75
    """Confidence for everything else."""

    def to_dict(self) -> Dict[str, float]:
        return {
            "reuse_ratio": self.reuse_ratio,
            "one_to_many_confidence": self.one_to_many_confidence,
            "many_to_one_confidence": self.many_to_one_confidence,
            "many_to_many_confidence": self.many_to_many_confidence,
        }


def classify_cardinality(
    total: int,
    non_null: int,
    unique: int,
    thresholds: Optional[CardinalityThresholds] = None,
    single_link: bool = False,
) -> Optional[Tuple[Cardinality, float]]:
    """
    Classify a link field from its row statistics.

    Args:
        total: Rows in the source table
        non_null: Rows with a non-empty value
        unique: Distinct referenced values across all rows
        thresholds: Heuristic thresholds (defaults when None)
        single_link: The source declares the field as single-record;
            a one-to-many result then becomes one-to-one

    Returns:
        (cardinality, confidence), or None when non_null is 0
    """
    thresholds = thresholds or CardinalityThresholds()
    if non_null <= 0:
        return None

    if unique == non_null:
        if single_link:
            return Cardinality.ONE_TO_ONE, thresholds.one_to_many_confidence
        return Cardinality.ONE_TO_MANY, thresholds.one_to_many_confidence
    if unique < non_null * thresholds.reuse_ratio:
        return Cardinality.MANY_TO_ONE, thresholds.many_to_one_confidence
    return Cardinality.MANY_TO_MANY, thresholds.many_to_many_confidence


@dataclass
class RelationshipCandidate:
    """
    Inferred relationship for one link (or select) field.

    Unique per (session_id, source_table, field_name).
    """

    # --- Identity ---
    session_id: str
    source_table: str  # Sanitized table name
    field_name: str  # Original source field name
    staging_column: str  # e.g. "_links_projects"
    target_table: str  # Sanitized table name, or "{column}_options" for selects

    # --- Inference ---
    cardinality: Cardinality
    confidence_score: float

    # --- Evidence ---
    total_records: int = 0
    non_null_records: int = 0
    unique_values: int = 0

    # --- Shape of the staged payload ---
    staging_is_array: bool = True  # JSON list (links, multi-select) vs scalar (single select)
    target_is_option_set: bool = False  # Target table is created from the staged values
    final_column: str = ""  # Column name without the staging prefix

    # --- Operator ---
    approved: bool = False

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.session_id, self.source_table, self.field_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "source_table": self.source_table,
            "field_name": self.field_name,
            "staging_column": self.staging_column,
            "target_table": self.target_table,
            "cardinality": self.cardinality.value,  # Convert enum to string
            "confidence_score": self.confidence_score,
            "total_records": self.total_records,
            "non_null_records": self.non_null_records,
            "unique_values": self.unique_values,
            "staging_is_array": self.staging_is_array,
            "target_is_option_set": self.target_is_option_set,
            "final_column": self.final_column,
            "approved": self.approved,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelationshipCandidate":
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            source_table=data["source_table"],
            field_name=data["field_name"],
            staging_column=data["staging_column"],
            target_table=data["target_table"],
            cardinality=Cardinality(data["cardinality"]),  # Convert string back to enum
            confidence_score=data["confidence_score"],
            total_records=data.get("total_records", 0),
            non_null_records=data.get("non_null_records", 0),
            unique_values=data.get("unique_values", 0),
            staging_is_array=data.get("staging_is_array", True),
            target_is_option_set=data.get("target_is_option_set", False),
            final_column=data.get("final_column", ""),
            approved=data.get("approved", False),
            created_at=data.get("created_at", ""),
        )


# ==============================================
# SQL building blocks
# ==============================================

def _identifier(name: str) -> str:
    return name[:MAX_IDENTIFIER_LENGTH]


def _refs_subquery(source_table: str, staging_column: str, is_array: bool) -> str:
    """
    Derived table of (row_id, row_key, ref): one row per referenced value.

    JSON staging columns are expanded with JSON_TABLE; scalar staging
    columns already hold one reference per row.
    """
    s = quote(source_table)
    col = quote(staging_column)
    if is_array:
        return (
            f"(SELECT src.{PRIMARY_KEY_COLUMN} AS row_id, src.{RECORD_KEY_COLUMN} AS row_key, jt.ref AS ref "
            f"FROM {s} AS src, "
            f"JSON_TABLE(src.{col}, '$[*]' COLUMNS (ref VARCHAR(255) PATH '$')) AS jt "
            f"WHERE jt.ref IS NOT NULL AND jt.ref <> '')"
        )
    return (
        f"(SELECT src.{PRIMARY_KEY_COLUMN} AS row_id, src.{RECORD_KEY_COLUMN} AS row_key, src.{col} AS ref "
        f"FROM {s} AS src WHERE src.{col} IS NOT NULL AND src.{col} <> '')"
    )


def _option_set_statements(candidate_target: str, refs: str) -> List[str]:
    """Create an option table and load every distinct staged value into it."""
    t = quote(candidate_target)
    return [
        f"CREATE TABLE IF NOT EXISTS {t} ("
        f"{PRIMARY_KEY_COLUMN} BIGINT AUTO_INCREMENT PRIMARY KEY, "
        f"{RECORD_KEY_COLUMN} VARCHAR(255) NOT NULL UNIQUE, "
        f"created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)",
        f"INSERT IGNORE INTO {t} ({RECORD_KEY_COLUMN}) SELECT DISTINCT r.ref FROM {refs} AS r",
    ]


# ==============================================
# Proposals
# ==============================================

@dataclass
class JunctionProposal:
    """
    Intermediate table implementing a many-to-many relationship.

    Named {source}_{field}_links with one BIGINT column per side.
    """

    candidate_id: str
    session_id: str
    source_table: str
    target_table: str
    staging_column: str
    junction_table: str
    source_column: str
    target_column: str
    staging_is_array: bool = True
    target_is_option_set: bool = False
    is_created: bool = False
    created_at: Optional[str] = None

    kind = "junction"

    @property
    def id(self) -> str:
        return f"{self.candidate_id}:{self.kind}"

    @classmethod
    def from_candidate(cls, candidate: RelationshipCandidate) -> "JunctionProposal":
        field_part = candidate.final_column or sanitize_identifier(candidate.field_name)
        source_column = f"{candidate.source_table}_id"
        target_column = f"{candidate.target_table}_id"
        if target_column == source_column:
            target_column = f"linked_{target_column}"
        return cls(
            candidate_id=candidate.id,
            session_id=candidate.session_id,
            source_table=candidate.source_table,
            target_table=candidate.target_table,
            staging_column=candidate.staging_column,
            junction_table=_identifier(f"{candidate.source_table}_{field_part}_links"),
            source_column=_identifier(source_column),
            target_column=_identifier(target_column),
            staging_is_array=candidate.staging_is_array,
            target_is_option_set=candidate.target_is_option_set,
        )

    def statements(self) -> List[str]:
        """MySQL statements creating and backfilling the junction table, in order."""
        j = quote(self.junction_table)
        sc = quote(self.source_column)
        tc = quote(self.target_column)
        refs = _refs_subquery(self.source_table, self.staging_column, self.staging_is_array)

        sql: List[str] = []
        if self.target_is_option_set:
            sql.extend(_option_set_statements(self.target_table, refs))
        sql.append(
            f"CREATE TABLE IF NOT EXISTS {j} ("
            f"{PRIMARY_KEY_COLUMN} BIGINT AUTO_INCREMENT PRIMARY KEY, "
            f"{sc} BIGINT NOT NULL, "
            f"{tc} BIGINT NOT NULL, "
            f"created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP, "
            f"UNIQUE KEY {quote(_identifier('uq_' + self.junction_table))} ({sc}, {tc}), "
            f"CONSTRAINT {quote(_identifier('fk_' + self.junction_table + '_src'))} FOREIGN KEY ({sc}) "
            f"REFERENCES {quote(self.source_table)} ({PRIMARY_KEY_COLUMN}) ON DELETE CASCADE, "
            f"CONSTRAINT {quote(_identifier('fk_' + self.junction_table + '_tgt'))} FOREIGN KEY ({tc}) "
            f"REFERENCES {quote(self.target_table)} ({PRIMARY_KEY_COLUMN}) ON DELETE CASCADE)"
        )
        sql.append(
            f"INSERT IGNORE INTO {j} ({sc}, {tc}) "
            f"SELECT r.row_id, tgt.{PRIMARY_KEY_COLUMN} FROM {refs} AS r "
            f"JOIN {quote(self.target_table)} AS tgt ON tgt.{RECORD_KEY_COLUMN} = r.ref"
        )
        return sql

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "candidate_id": self.candidate_id,
            "session_id": self.session_id,
            "source_table": self.source_table,
            "target_table": self.target_table,
            "staging_column": self.staging_column,
            "junction_table": self.junction_table,
            "source_column": self.source_column,
            "target_column": self.target_column,
            "staging_is_array": self.staging_is_array,
            "target_is_option_set": self.target_is_option_set,
            "is_created": self.is_created,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JunctionProposal":
        return cls(
            candidate_id=data["candidate_id"],
            session_id=data["session_id"],
            source_table=data["source_table"],
            target_table=data["target_table"],
            staging_column=data["staging_column"],
            junction_table=data["junction_table"],
            source_column=data["source_column"],
            target_column=data["target_column"],
            staging_is_array=data.get("staging_is_array", True),
            target_is_option_set=data.get("target_is_option_set", False),
            is_created=data.get("is_created", False),
            created_at=data.get("created_at"),
        )


@dataclass
class ForeignKeyProposal:
    """
    Foreign-key column on the "many" side of a relationship.

    The column holds the referenced row's natural key
    (source_record_id). A one-to-one relationship adds UNIQUE.
    """

    candidate_id: str
    session_id: str
    source_table: str  # Table holding the staging column
    target_table: str  # Table the staged values point at
    staging_column: str
    table: str  # Table receiving the FK column (the "many" side)
    column: str
    references_table: str  # The "one" side
    references_column: str = RECORD_KEY_COLUMN
    unique: bool = False
    on_source: bool = True  # FK column lives on the table holding the staging column
    staging_is_array: bool = True
    target_is_option_set: bool = False
    is_created: bool = False
    created_at: Optional[str] = None

    kind = "foreign_key"

    @property
    def id(self) -> str:
        return f"{self.candidate_id}:{self.kind}"

    @classmethod
    def from_candidate(cls, candidate: RelationshipCandidate) -> "ForeignKeyProposal":
        field_part = candidate.final_column or sanitize_identifier(candidate.field_name)
        common = dict(
            candidate_id=candidate.id,
            session_id=candidate.session_id,
            source_table=candidate.source_table,
            target_table=candidate.target_table,
            staging_column=candidate.staging_column,
            staging_is_array=candidate.staging_is_array,
            target_is_option_set=candidate.target_is_option_set,
        )
        if candidate.cardinality is Cardinality.ONE_TO_MANY:
            # One column per link field; each target row has one source row
            return cls(
                table=candidate.target_table,
                column=_identifier(f"{candidate.source_table}_{field_part}_id"),
                references_table=candidate.source_table,
                on_source=False,
                **common,
            )
        return cls(
            table=candidate.source_table,
            column=_identifier(f"{field_part}_id"),
            references_table=candidate.target_table,
            unique=candidate.cardinality is Cardinality.ONE_TO_ONE,
            **common,
        )

    def statements(self) -> List[str]:
        """MySQL statements adding, backfilling and constraining the FK column."""
        table = quote(self.table)
        col = quote(self.column)
        refs = _refs_subquery(self.source_table, self.staging_column, self.staging_is_array)

        sql: List[str] = []
        if self.target_is_option_set:
            sql.extend(_option_set_statements(self.target_table, refs))

        sql.append(f"ALTER TABLE {table} ADD COLUMN {col} VARCHAR(255) NULL")

        if self.on_source:
            # First resolvable reference of each source row
            sql.append(
                f"UPDATE {table} AS dst JOIN ("
                f"SELECT r.row_id, MIN(tgt.{RECORD_KEY_COLUMN}) AS ref_key FROM {refs} AS r "
                f"JOIN {quote(self.target_table)} AS tgt ON tgt.{RECORD_KEY_COLUMN} = r.ref "
                f"GROUP BY r.row_id) AS m ON m.row_id = dst.{PRIMARY_KEY_COLUMN} "
                f"SET dst.{col} = m.ref_key"
            )
        else:
            # Each referenced target row points back at its (first) source row
            sql.append(
                f"UPDATE {table} AS dst JOIN ("
                f"SELECT r.ref, MIN(r.row_key) AS ref_key FROM {refs} AS r "
                f"GROUP BY r.ref) AS m ON m.ref = dst.{RECORD_KEY_COLUMN} "
                f"SET dst.{col} = m.ref_key"
            )

        if self.unique:
            sql.append(
                f"ALTER TABLE {table} ADD UNIQUE KEY {quote(_identifier('uq_' + self.table + '_' + self.column))} ({col})"
            )
        sql.append(
            f"ALTER TABLE {table} ADD CONSTRAINT {quote(_identifier('fk_' + self.table + '_' + self.column))} "
            f"FOREIGN KEY ({col}) REFERENCES {quote(self.references_table)} ({quote(self.references_column)}) "
            f"ON DELETE SET NULL"
        )
        return sql

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "candidate_id": self.candidate_id,
            "session_id": self.session_id,
            "source_table": self.source_table,
            "target_table": self.target_table,
            "staging_column": self.staging_column,
            "table": self.table,
            "column": self.column,
            "references_table": self.references_table,
            "references_column": self.references_column,
            "unique": self.unique,
            "on_source": self.on_source,
            "staging_is_array": self.staging_is_array,
            "target_is_option_set": self.target_is_option_set,
            "is_created": self.is_created,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForeignKeyProposal":
        return cls(
            candidate_id=data["candidate_id"],
            session_id=data["session_id"],
            source_table=data["source_table"],
            target_table=data["target_table"],
            staging_column=data["staging_column"],
            table=data["table"],
            column=data["column"],
            references_table=data["references_table"],
            references_column=data.get("references_column", RECORD_KEY_COLUMN),
            unique=data.get("unique", False),
            on_source=data.get("on_source", True),
            staging_is_array=data.get("staging_is_array", True),
            target_is_option_set=data.get("target_is_option_set", False),
            is_created=data.get("is_created", False),
            created_at=data.get("created_at"),
        )


Proposal = Union[JunctionProposal, ForeignKeyProposal]


def build_proposal(candidate: RelationshipCandidate) -> Proposal:
    """
    Derive the structural proposal for an approved candidate.

    Args:
        candidate: Candidate with a classified cardinality

    Returns:
        JunctionProposal for many-to-many, ForeignKeyProposal otherwise
    """
    if candidate.cardinality is Cardinality.MANY_TO_MANY:
        return JunctionProposal.from_candidate(candidate)
    return ForeignKeyProposal.from_candidate(candidate)


def proposal_from_dict(data: Dict[str, Any]) -> Proposal:
    if data.get("kind") == JunctionProposal.kind:
        return JunctionProposal.from_dict(data)
    return ForeignKeyProposal.from_dict(data)
