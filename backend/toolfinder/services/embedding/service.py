"""
Embedding generation using SentenceTransformers.

- Model: all-MiniLM-L6-v2 by default (384 dims), loaded lazily
- Vectors are L2-normalized so dot product == cosine similarity
- ``model.encode`` is CPU-bound; it runs in a worker thread so the event
  loop keeps serving other requests
- ``CachedEmbedder`` wraps any embedding capability with the shared
  ``EmbeddingCache``
"""
import asyncio
import time
from threading import Lock
from typing import List, Optional, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from toolfinder.core.logging import get_logger
from toolfinder.services.capabilities import EmbeddingCapability, Vector
from toolfinder.services.embedding.cache import EmbeddingCache, make_key

logger = get_logger(__name__)

MODEL_NAME = "all-MiniLM-L6-v2"
EMBEDDING_DIM = 384


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is empty or zero."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.size == 0 or vb.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_scores(query: Sequence[float], matrix: Sequence[Sequence[float]]) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``."""
    m = np.asarray(matrix, dtype=np.float32)
    q = np.asarray(query, dtype=np.float32)
    if m.size == 0 or q.size == 0:
        return np.zeros(len(matrix), dtype=np.float32)
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    norms[norms == 0] = 1.0
    return (m @ q) / norms


class SentenceTransformerEmbedder:
    """Embedding capability backed by a local SentenceTransformer model."""

    def __init__(self, model_name: str = MODEL_NAME):
        self.model_name = model_name
        self.model: Optional[SentenceTransformer] = None
        self._load_lock = Lock()

    def load_model(self) -> bool:
        """Load the model (safe to call repeatedly). Returns availability."""
        if self.model is not None:
            return True
        with self._load_lock:
            if self.model is not None:
                return True
            try:
                logger.info("embedding_model_loading", model_name=self.model_name)
                start_time = time.time()
                self.model = SentenceTransformer(self.model_name)
                logger.info(
                    "embedding_model_loaded",
                    model_name=self.model_name,
                    load_time_ms=int((time.time() - start_time) * 1000),
                )
                return True
            except Exception as e:
                logger.error(
                    "embedding_model_load_failed",
                    model_name=self.model_name,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                return False

    def is_available(self) -> bool:
        return self.model is not None

    def _encode(self, texts: List[str]) -> List[Vector]:
        if not self.load_model():
            raise RuntimeError(f"Embedding model {self.model_name} unavailable")
        embeddings = self.model.encode(
            texts,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [row.astype(np.float32).tolist() for row in np.atleast_2d(embeddings)]

    async def embed(self, text: str) -> Vector:
        vectors = await asyncio.to_thread(self._encode, [text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, list(texts))


class CachedEmbedder:
    """Embedding capability that consults an ``EmbeddingCache`` first."""

    def __init__(self, inner: EmbeddingCapability, cache: EmbeddingCache, model_name: str = ""):
        self.inner = inner
        self.cache = cache
        self.model_name = model_name or getattr(inner, "model_name", "")

    async def embed(self, text: str) -> Vector:
        key = make_key(text, self.model_name)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        vector = await self.inner.embed(text)
        self.cache.set(key, vector)
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        """Embed only the cache misses, in one batch, preserving input order."""
        results: List[Optional[Vector]] = [None] * len(texts)
        missing_idx: List[int] = []
        for i, text in enumerate(texts):
            cached = self.cache.get(make_key(text, self.model_name))
            if cached is None:
                missing_idx.append(i)
            else:
                results[i] = cached

        if missing_idx:
            fresh = await self.inner.embed_batch([texts[i] for i in missing_idx])
            for i, vector in zip(missing_idx, fresh):
                results[i] = vector
                self.cache.set(make_key(texts[i], self.model_name), vector)

        return [r for r in results if r is not None]
