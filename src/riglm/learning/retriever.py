"""ToolRetriever: ranking, confidence and online learning over the tool catalog.

Holds two similarity indices. The static one is a projection of the
registry (one entry per tool, embedded from name and description). The
learned one mirrors the association store: each entry is a past query
that led to a tool call, weighted by an EMA-smoothed confidence.

Exposes index_static_tools(), retrieve(), context_confidence(),
record_learning(), load_learned(), prune(), forget() and stats().
Emits observability events.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from riglm.learning.store import AssociationStore
from riglm.learning.types import LearnedAssociation, PruneThresholds, association_id
from riglm.observe import emit
from riglm.observe.events import (
    AssociationsLoaded,
    AssociationsPruned,
    ConfidenceComputed,
    LearningRecorded,
    RetrievalCompleted,
    StaticIndexBuilt,
)
from riglm.observe.tracing import traced
from riglm.vec.embeddings import EmbeddingModel
from riglm.vec.index import IndexEntry, SimilarityIndex

if TYPE_CHECKING:
    from riglm.proxy.registry import ToolRegistry

logger = logging.getLogger(__name__)

STATIC_WEIGHT = 0.6
LEARNED_WEIGHT = 0.4
DEFAULT_TOP_K = 15
CONFIDENCE_QUERY_K = 10
COLD_START_THRESHOLD = 0.3

# EMA: new = old * EMA_DECAY + signal * EMA_GAIN
EMA_DECAY = 0.8
EMA_GAIN = 0.2


def static_text(namespaced_name: str, description: str | None) -> str:
    """Text embedded for a catalog tool."""
    return f"{namespaced_name}: {description or ''}"


class ToolRetriever:
    """Blend static similarity with learned associations to rank tools.

    Usage:
        retriever = ToolRetriever(embedder, registry, store)
        await retriever.index_static_tools()
        await retriever.load_learned()
        if await retriever.context_confidence(query) >= retriever.cold_start_threshold:
            names = await retriever.retrieve(query)
        ...
        await retriever.record_learning(query, "files__read_file", 1.0)

    Without a store, learning lives in memory only.
    """

    def __init__(
        self,
        embedder: EmbeddingModel,
        registry: ToolRegistry,
        store: AssociationStore | None = None,
    ) -> None:
        self._embedder = embedder
        self._registry = registry
        self._store = store
        self._static = SimilarityIndex()
        self._learned = SimilarityIndex()
        # association id -> (lock, number of tasks holding or waiting on it)
        self._id_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @property
    def cold_start_threshold(self) -> float:
        return COLD_START_THRESHOLD

    @property
    def store(self) -> AssociationStore | None:
        return self._store

    @property
    def static_index(self) -> SimilarityIndex:
        return self._static

    @property
    def learned_index(self) -> SimilarityIndex:
        return self._learned

    # ------------------------------------------------------------------
    # Static index
    # ------------------------------------------------------------------

    @traced("retrieval.index_static")
    async def index_static_tools(self) -> int:
        """Rebuild the static index from the registry. Returns tools indexed.

        The new index is built aside and swapped in, so concurrent
        searches see either the old catalog or the new one.
        """
        t0 = time.perf_counter()
        entries = self._registry.get_all_entries()
        if not entries:
            self._static = SimilarityIndex()
            return 0

        texts = [static_text(e.namespaced_name, e.definition.description) for e in entries]
        vectors = await self._embedder.embed_batch(texts)

        index = SimilarityIndex()
        for entry, vector in zip(entries, vectors):
            index.insert(
                IndexEntry(
                    id=f"static:{entry.namespaced_name}",
                    vector=vector,
                    tool_name=entry.namespaced_name,
                    kind="static",
                )
            )
        self._static = index

        emit(
            StaticIndexBuilt(
                tool_count=index.size(),
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
        )
        return index.size()

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    @traced("retrieval.retrieve")
    async def retrieve(self, query: str, top_k: int = DEFAULT_TOP_K) -> list[str]:
        """Rank tool names for `query`, best first, at most `top_k`.

        Static hits score `similarity * 0.6`, learned hits `similarity * 0.4`;
        a tool found by both gets the sum. Equal scores keep static-then-learned
        merge order.
        """
        t0 = time.perf_counter()
        vector = await self._embedder.embed(query)

        static_hits = self._static.search(vector, top_k * 2)
        learned_index = self._learned
        learned_hits = learned_index.search(vector, top_k * 2) if learned_index.size() else []

        blended: dict[str, float] = {}
        for hit in static_hits:
            blended[hit.tool_name] = blended.get(hit.tool_name, 0.0) + hit.score * STATIC_WEIGHT
        for hit in learned_hits:
            blended[hit.tool_name] = blended.get(hit.tool_name, 0.0) + hit.score * LEARNED_WEIGHT

        # sorted() is stable, so dict order breaks ties
        ranked = sorted(blended.items(), key=lambda item: item[1], reverse=True)
        names = [name for name, _ in ranked[:top_k]]

        emit(
            RetrievalCompleted(
                query=query,
                top_k=top_k,
                static_hits=len(static_hits),
                learned_hits=len(learned_hits),
                result_count=len(names),
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
        )
        return names

    @traced("retrieval.confidence")
    async def context_confidence(self, query: str) -> float:
        """How much learned evidence backs filtering for `query`, in [0, 1].

        average neighbour similarity * (neighbours found / 10). An empty
        learned index is exactly 0.
        """
        learned_index = self._learned
        if learned_index.size() == 0:
            emit(ConfidenceComputed(query=query, confidence=0.0, neighbors=0, cold_start=True))
            return 0.0

        vector = await self._embedder.embed(query)
        hits = learned_index.search(vector, CONFIDENCE_QUERY_K)
        if not hits:
            confidence = 0.0
        else:
            avg_score = sum(h.score for h in hits) / len(hits)
            density = len(hits) / CONFIDENCE_QUERY_K
            confidence = avg_score * density

        emit(
            ConfidenceComputed(
                query=query,
                confidence=confidence,
                neighbors=len(hits),
                cold_start=confidence < COLD_START_THRESHOLD,
            )
        )
        return confidence

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _association_lock(self, assoc_id: str) -> AsyncIterator[None]:
        lock, waiters = self._id_locks.get(assoc_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._id_locks[assoc_id] = (lock, waiters + 1)
        try:
            async with lock:
                yield
        finally:
            lock, waiters = self._id_locks[assoc_id]
            if waiters <= 1:
                del self._id_locks[assoc_id]
            else:
                self._id_locks[assoc_id] = (lock, waiters - 1)

    @traced("retrieval.record_learning")
    async def record_learning(self, query: str, tool_name: str, signal: float) -> float:
        """Reinforce the (query, tool) association. Returns its new confidence.

        New pairs start at `signal`; known pairs move by EMA. The store is
        written first: if that raises, memory is left untouched.
        """
        assoc_id = association_id(query, tool_name)
        async with self._association_lock(assoc_id):
            existing = self._learned.get(assoc_id)
            if existing is not None:
                old = existing.confidence if existing.confidence is not None else 0.0
                confidence = old * EMA_DECAY + signal * EMA_GAIN
                association = LearnedAssociation.from_entry(existing)
                association.confidence = confidence
            else:
                vector = await self._embedder.embed(query)
                confidence = signal
                association = LearnedAssociation(
                    id=assoc_id,
                    vector=vector,
                    tool_name=tool_name,
                    query=query,
                    confidence=confidence,
                )

            if self._store is not None:
                await self._store.upsert(association)

            if existing is not None and assoc_id in self._learned:
                self._learned.update_confidence(assoc_id, confidence)
            else:
                self._learned.insert(association.to_entry())

        logger.debug(
            "Learned %r -> %s (signal=%s, confidence=%.3f, learned_size=%d)",
            query,
            tool_name,
            signal,
            confidence,
            self._learned.size(),
        )
        emit(
            LearningRecorded(
                association_id=assoc_id,
                tool_name=tool_name,
                signal=signal,
                confidence=confidence,
                created=existing is None,
            )
        )
        return confidence

    # ------------------------------------------------------------------
    # Store lifecycle
    # ------------------------------------------------------------------

    async def load_learned(self) -> int:
        """Replace the learned index with the store's contents. Returns entries loaded.

        Associations whose vectors don't match the static index's
        dimensionality (embedded by a different model) are skipped.
        """
        if self._store is None:
            return 0

        associations = await self._store.load_all()
        expected = self._static.dimensions
        index = SimilarityIndex()
        skipped = 0
        for association in associations:
            if expected is not None and len(association.vector) != expected:
                skipped += 1
                continue
            index.insert(association.to_entry())
        self._learned = index

        if skipped:
            logger.warning(
                "Skipped %d stored associations with dimensionality other than %d",
                skipped,
                expected,
            )
        emit(AssociationsLoaded(count=index.size()))
        return index.size()

    async def prune(self, thresholds: PruneThresholds) -> int:
        """Prune the store and reload the learned index. Returns associations removed.

        In-memory-only learning (no store) is never pruned.
        """
        if self._store is None:
            return 0
        removed = await self._store.prune(thresholds)
        await self.load_learned()
        emit(
            AssociationsPruned(
                removed=removed,
                remaining=self._learned.size(),
                size_threshold=thresholds.size_threshold,
                min_confidence=thresholds.min_confidence,
                unused_days=thresholds.unused_days,
            )
        )
        return removed

    async def forget(self, assoc_id: str) -> bool:
        """Drop one association from the store and the learned index."""
        async with self._association_lock(assoc_id):
            removed = False
            if self._store is not None:
                removed = await self._store.remove(assoc_id)
            if assoc_id in self._learned:
                self._learned.remove(assoc_id)
                removed = True
        return removed

    def stats(self) -> dict[str, int]:
        return {
            "static_size": self._static.size(),
            "learned_size": self._learned.size(),
        }
