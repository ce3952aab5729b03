# ==============================================
# TOPIC 2: RELATIONSHIP ANALYSIS
# ==============================================
#
# This package infers how tables reference each other from the
# staged link/select payloads of an import, and turns approved
# inferences into junction tables and foreign keys.
#
# Modules:
# --------
# - link_stats.py             → LinkFieldStats (per-column evidence)
# - relationships.py          → Cardinality, thresholds, candidates, proposals
# - relationship_analyzer.py  → RelationshipAnalyzer (analyze / apply / materialize)
#
# relationship_analyzer is imported by its full path; it depends on
# persistence, which itself imports relationships.
#
# ==============================================

from .link_stats import LinkFieldStats
from .relationships import (
    Cardinality,
    CardinalityThresholds,
    ForeignKeyProposal,
    JunctionProposal,
    RelationshipCandidate,
    build_proposal,
    classify_cardinality,
)

__all__ = [
    "Cardinality",
    "CardinalityThresholds",
    "ForeignKeyProposal",
    "JunctionProposal",
    "LinkFieldStats",
    "RelationshipCandidate",
    "build_proposal",
    "classify_cardinality",
]
