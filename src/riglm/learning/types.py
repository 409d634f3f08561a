"""Core types for the riglm learning module.

LearnedAssociation = evidence that a query led to a tool call.
PruneThresholds = the policy bounding how many associations survive.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from riglm.vec.index import IndexEntry

# Pruning keeps this share of size_threshold so the next insert doesn't re-trigger it
PRUNE_RETAIN_RATIO = 0.9

_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Lowercase and collapse whitespace."""
    return _WHITESPACE.sub(" ", query.strip().lower())


def association_id(query: str, tool_name: str) -> str:
    """Deterministic id for a (query, tool) pair.

    Trivially different phrasings ("Read  File" vs "read file") collapse
    to the same id. Semantically equivalent rewordings do not.
    """
    digest = hashlib.sha256(normalize_query(query).encode()).hexdigest()[:16]
    return f"learned:{digest}:{tool_name}"


@dataclass
class LearnedAssociation:
    """Persisted form of a learned index entry.

    Timestamps are unix epoch seconds.
    """

    id: str
    vector: list[float]
    tool_name: str
    query: str
    confidence: float
    created_at: int = 0
    last_used_at: int = 0

    def to_entry(self) -> IndexEntry:
        return IndexEntry(
            id=self.id,
            vector=self.vector,
            tool_name=self.tool_name,
            kind="learned",
            confidence=self.confidence,
            query=self.query,
        )

    @classmethod
    def from_entry(cls, entry: IndexEntry) -> LearnedAssociation:
        return cls(
            id=entry.id,
            vector=list(entry.vector),
            tool_name=entry.tool_name,
            query=entry.query or "",
            confidence=entry.confidence if entry.confidence is not None else 0.0,
        )


@dataclass(frozen=True)
class PruneThresholds:
    """Bounds applied by AssociationStore.prune, in this order:

    1. drop associations with confidence below min_confidence
    2. drop associations unused for more than unused_days
    3. if more than size_threshold remain, keep the top
       floor(size_threshold * PRUNE_RETAIN_RATIO) by confidence
    """

    size_threshold: int = 5000
    min_confidence: float = 0.1
    unused_days: int = 30

    def __post_init__(self) -> None:
        if self.size_threshold <= 0:
            raise ValueError(f"size_threshold must be positive, got {self.size_threshold}")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {self.min_confidence}")
        if self.unused_days <= 0:
            raise ValueError(f"unused_days must be positive, got {self.unused_days}")

    @property
    def retain_count(self) -> int:
        return int(self.size_threshold * PRUNE_RETAIN_RATIO)
