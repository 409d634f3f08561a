"""Embedding cache: LRU with hash-based dedup.

Wraps any EmbeddingModel to avoid re-embedding identical texts. Every
tools/list with a context set embeds the same intent twice (confidence,
then ranking), so the cache sits in front of the provider.

Usage:
    from riglm.vec.cache import CachedEmbeddingModel
    from riglm.vec.embeddings import SentenceTransformerEmbedding

    model = CachedEmbeddingModel(SentenceTransformerEmbedding())
    await model.embed("read a file")
    await model.embed("read a file")  # cached
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict

logger = logging.getLogger(__name__)


class CachedEmbeddingModel:
    """LRU cache wrapper around any EmbeddingModel.

    Hash-based dedup: sha256(text) → embedding vector.
    On miss: delegate to wrapped model, cache result.
    On hit: return cached embedding (no model call).

    Two concurrent misses for the same text both call the model; the
    second write wins, which is harmless since the provider is deterministic.
    """

    def __init__(self, model, max_size: int = 1000) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._model = model
        self._max_size = max_size
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @property
    def dimensions(self) -> int:
        return self._model.dimensions

    def _lookup(self, text: str) -> list[float] | None:
        key = self._hash(text)
        if key in self._cache:
            self._cache.move_to_end(key)  # LRU touch
            self._hits += 1
            return self._cache[key]
        self._misses += 1
        return None

    def _store(self, text: str, embedding: list[float]) -> None:
        self._cache[self._hash(text)] = embedding
        if len(self._cache) > self._max_size:
            self._cache.popitem(last=False)

    async def embed(self, text: str) -> list[float]:
        cached = self._lookup(text)
        if cached is not None:
            return cached
        embedding = await self._model.embed(text)
        self._store(text, embedding)
        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts with caching. Only calls model for uncached texts."""
        results: list[list[float] | None] = [None] * len(texts)
        uncached_texts: list[str] = []
        uncached_indices: list[int] = []

        for i, text in enumerate(texts):
            cached = self._lookup(text)
            if cached is not None:
                results[i] = cached
            else:
                uncached_texts.append(text)
                uncached_indices.append(i)

        # Embed uncached texts in a single batch
        if uncached_texts:
            new_embeddings = await self._model.embed_batch(uncached_texts)
            for idx, text, emb in zip(uncached_indices, uncached_texts, new_embeddings):
                results[idx] = emb
                self._store(text, emb)

        return results  # type: ignore[return-value]

    @property
    def cache_stats(self) -> dict[str, int]:
        """Return cache statistics."""
        return {
            "hits": self._hits,
            "misses": self._misses,
            "size": len(self._cache),
            "max_size": self._max_size,
        }

    def clear(self) -> None:
        """Clear the cache."""
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _hash(text: str) -> str:
        return hashlib.sha256(text.encode()).hexdigest()
