"""riglm learning: learned query-to-tool associations and the retrieval engine.

Usage:
    from riglm.learning import SqliteAssociationStore, ToolRetriever

    store = SqliteAssociationStore("riglm.db")
    retriever = ToolRetriever(embedder, registry, store)
"""

from riglm.learning.retriever import (
    COLD_START_THRESHOLD,
    DEFAULT_TOP_K,
    LEARNED_WEIGHT,
    STATIC_WEIGHT,
    ToolRetriever,
)
from riglm.learning.store import AssociationStore, SqliteAssociationStore
from riglm.learning.types import (
    PRUNE_RETAIN_RATIO,
    LearnedAssociation,
    PruneThresholds,
    association_id,
    normalize_query,
)

__all__ = [
    "AssociationStore",
    "COLD_START_THRESHOLD",
    "DEFAULT_TOP_K",
    "LEARNED_WEIGHT",
    "LearnedAssociation",
    "PRUNE_RETAIN_RATIO",
    "PruneThresholds",
    "STATIC_WEIGHT",
    "SqliteAssociationStore",
    "ToolRetriever",
    "association_id",
    "normalize_query",
]
