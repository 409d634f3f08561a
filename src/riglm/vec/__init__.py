"""Vector layer: embedding backends, query cache and the similarity index."""

from riglm.vec.cache import CachedEmbeddingModel
from riglm.vec.embeddings import (
    EmbeddingModel,
    OllamaEmbedding,
    SentenceTransformerEmbedding,
    create_embedding_model,
)
from riglm.vec.index import IndexEntry, SearchHit, SimilarityIndex

__all__ = [
    "CachedEmbeddingModel",
    "EmbeddingModel",
    "IndexEntry",
    "OllamaEmbedding",
    "SearchHit",
    "SentenceTransformerEmbedding",
    "SimilarityIndex",
    "create_embedding_model",
]
