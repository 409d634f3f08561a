"""In-memory similarity index over tool and association vectors.

Exact brute-force inner-product search. Vectors are expected to be
unit-length already (the embedding backends normalize), so the inner
product is the cosine similarity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

import numpy as np
from opentelemetry import trace

from riglm.observe.tracing import traced

logger = logging.getLogger(__name__)

EntryKind = Literal["static", "learned"]


@dataclass
class IndexEntry:
    """One vector in a SimilarityIndex.

    Static entries are keyed by the namespaced tool name. Learned entries
    carry the association confidence and the query they were learned from.
    """

    id: str
    vector: list[float]
    tool_name: str
    kind: EntryKind = "static"
    confidence: float | None = None
    query: str | None = None


@dataclass(frozen=True)
class SearchHit:
    id: str
    tool_name: str
    score: float
    entry: IndexEntry


class SimilarityIndex:
    """Exact nearest-neighbour search by inner product.

    Entries keep insertion order; replacing an id keeps its original
    slot, so ties in score resolve to whichever entry arrived first.

    Reads work off a matrix snapshot that is rebuilt lazily after a
    mutation. A search that starts before a write completes sees the
    old snapshot, which is all the callers need.
    """

    def __init__(self) -> None:
        self._entries: dict[str, IndexEntry] = {}
        self._dimensions: int | None = None
        self._matrix: np.ndarray | None = None
        self._order: list[str] = []

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def insert(self, entry: IndexEntry) -> None:
        """Insert a new entry or replace the one with the same id."""
        dims = len(entry.vector)
        if self._dimensions is None or not self._entries:
            self._dimensions = dims
        elif dims != self._dimensions:
            raise ValueError(f"Expected {self._dimensions} dimensions, got {dims}")
        self._entries[entry.id] = entry
        self._matrix = None

    def remove(self, entry_id: str) -> None:
        """Delete by id. No-op if absent."""
        if self._entries.pop(entry_id, None) is not None:
            self._matrix = None

    def get(self, entry_id: str) -> IndexEntry | None:
        return self._entries.get(entry_id)

    def update_confidence(self, entry_id: str, confidence: float) -> None:
        """Set an entry's confidence in place. Vectors are untouched."""
        entry = self._entries.get(entry_id)
        if entry is None:
            raise KeyError(entry_id)
        entry.confidence = confidence

    def entries(self) -> list[IndexEntry]:
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()
        self._matrix = None
        self._order = []
        self._dimensions = None

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def _snapshot(self) -> tuple[np.ndarray, list[str]]:
        if self._matrix is None:
            self._order = list(self._entries)
            self._matrix = np.array(
                [self._entries[i].vector for i in self._order], dtype=np.float64
            )
        return self._matrix, self._order

    @traced("vec.search")
    def search(self, vector: list[float], top_k: int) -> list[SearchHit]:
        """Rank entries by inner product with `vector`, best first.

        Returns at most `top_k` hits. An empty index or a non-positive
        `top_k` yields an empty list.

        Raises:
            ValueError: `vector` has a different dimensionality than the
                stored entries.
        """
        if not self._entries or top_k <= 0:
            return []
        if len(vector) != self._dimensions:
            raise ValueError(f"Expected {self._dimensions} dimensions, got {len(vector)}")

        matrix, order = self._snapshot()
        query = np.asarray(vector, dtype=np.float64)
        scores = matrix @ query

        # Stable sort on negated scores: equal scores keep insertion order
        ranked = np.argsort(-scores, kind="stable")[:top_k]

        hits = []
        for idx in ranked:
            entry = self._entries.get(order[idx])
            if entry is None:
                continue
            hits.append(
                SearchHit(
                    id=entry.id,
                    tool_name=entry.tool_name,
                    score=float(scores[idx]),
                    entry=entry,
                )
            )

        span = trace.get_current_span()
        span.set_attribute("vec.top_k", top_k)
        span.set_attribute("vec.result_count", len(hits))
        if hits:
            span.set_attribute("vec.top_score", hits[0].score)

        return hits
