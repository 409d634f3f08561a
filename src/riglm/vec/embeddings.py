"""Embedding model abstractions for the vector layer.

Pluggable strategy: sentence-transformers (local, default) or Ollama
(local embedding server). Both are async: the blocking work runs in a
worker thread so the proxy's event loop keeps serving requests.

Usage:
    # Local (default, no API key needed)
    model = SentenceTransformerEmbedding()

    # Self-hosted
    model = OllamaEmbedding(model_name="nomic-embed-text")
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.request
from typing import Protocol, runtime_checkable

import numpy as np

from riglm.observe.tracing import traced

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "BAAI/bge-small-en-v1.5"
DEFAULT_OLLAMA_MODEL = "nomic-embed-text"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_OLLAMA_URL = "http://localhost:11434"


@runtime_checkable
class EmbeddingModel(Protocol):
    """Protocol for embedding text into unit-length vectors.

    Implement this to plug in any embedding backend. Vectors must be
    normalized: similarity downstream is a plain inner product.
    """

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts.

        Args:
            texts: List of strings to embed.

        Returns:
            List of embedding vectors (same length and order as texts).
        """
        ...

    @property
    def dimensions(self) -> int:
        """Dimensionality of the embedding vectors."""
        ...


class SentenceTransformerEmbedding:
    """Local embedding model backed by sentence-transformers.

    Default model: BAAI/bge-small-en-v1.5 (384 dims).
    No API key needed; runs entirely on your machine.

    Requires: pip install riglm[vec]
    """

    def __init__(self, model_name: str = DEFAULT_MODEL) -> None:
        self._model_name = model_name
        self._model = None
        self._dimensions: int | None = None

    def _load(self):
        if self._model is not None:
            return
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError("sentence-transformers required: pip install riglm[vec]") from e
        self._model = SentenceTransformer(self._model_name)
        self._dimensions = self._model.get_sentence_embedding_dimension()
        logger.info("Loaded embedding model %s (%d dims)", self._model_name, self._dimensions)

    def _encode(self, texts: list[str]) -> list[list[float]]:
        self._load()
        assert self._model is not None
        embeddings = self._model.encode(
            texts, convert_to_numpy=True, normalize_embeddings=True
        )
        return embeddings.tolist()

    @traced("vec.embed.sentence_transformer")
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts using sentence-transformers."""
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts)

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    @property
    def dimensions(self) -> int:
        self._load()
        return self._dimensions


class OllamaEmbedding:
    """Local embedding model via Ollama.

    Runs on your machine via Ollama server. No API key needed.
    Default model: nomic-embed-text (768 dims). Ollama does not
    normalize, so vectors are scaled to unit length here.

    Requires: Ollama running locally (https://ollama.com)
    """

    def __init__(
        self,
        model_name: str = DEFAULT_OLLAMA_MODEL,
        base_url: str = DEFAULT_OLLAMA_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._model_name = model_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._dimensions: int | None = None
        self._dimensions_map = {
            "nomic-embed-text": 768,
            "mxbai-embed-large": 1024,
            "all-minilm": 384,
            "snowflake-arctic-embed": 1024,
        }

    def _request(self, text: str) -> list[float]:
        req = urllib.request.Request(
            f"{self._base_url}/api/embeddings",
            data=json.dumps({"model": self._model_name, "prompt": text}).encode(),
            headers={"Content-Type": "application/json"},
        )
        with urllib.request.urlopen(req, timeout=self._timeout) as resp:
            data = json.loads(resp.read())
        vec = np.asarray(data["embedding"], dtype=np.float64)
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        if self._dimensions is None:
            self._dimensions = len(vec)
        return vec.tolist()

    @traced("vec.embed.ollama")
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts via Ollama API, one request per text."""
        results = []
        for text in texts:
            results.append(await asyncio.to_thread(self._request, text))
        return results

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._request, text)

    @property
    def dimensions(self) -> int:
        if self._dimensions is not None:
            return self._dimensions
        return self._dimensions_map.get(self._model_name, 768)


def create_embedding_model(
    backend: str = "sentence-transformers",
    model: str | None = None,
    base_url: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> EmbeddingModel:
    """Build an embedding backend by name.

    Raises:
        ValueError: Unknown backend name.
    """
    if backend == "sentence-transformers":
        return SentenceTransformerEmbedding(model or DEFAULT_MODEL)
    if backend == "ollama":
        return OllamaEmbedding(
            model_name=model or DEFAULT_OLLAMA_MODEL,
            base_url=base_url or DEFAULT_OLLAMA_URL,
            timeout=timeout,
        )
    raise ValueError(
        f"Unknown embedding backend: {backend!r}. Available: sentence-transformers, ollama"
    )
