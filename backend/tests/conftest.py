"""
Shared fixtures and deterministic stand-ins for the pipeline capabilities.

Nothing here touches the network or loads a model: the LLM answers from a
table, embeddings are derived from a hash of the text, and stores are
in-memory.
"""
import asyncio
import hashlib
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pytest

from toolfinder.services.stores.document import JsonDocumentStore, load_catalog

CATALOG_PATH = Path(__file__).parent.parent / "data" / "tools.json"


class StaticLLM:
    """LLMCapability answering per agent from a table.

    An answer may be a string, a callable ``(prompt) -> str`` or an
    exception instance to raise. Agents missing from the table raise.
    """

    def __init__(self, answers: Optional[Dict[str, Any]] = None):
        self.answers = answers or {}
        self.calls: List[Dict[str, str]] = []

    async def invoke(self, prompt: str, *, agent: str = "pipeline") -> str:
        self.calls.append({"agent": agent, "prompt": prompt})
        answer = self.answers.get(agent)
        if answer is None:
            raise RuntimeError(f"no stub answer for agent {agent}")
        if isinstance(answer, BaseException):
            raise answer
        if callable(answer):
            return answer(prompt)
        return answer

    def agents_called(self) -> List[str]:
        return [c["agent"] for c in self.calls]


class HashEmbedder:
    """EmbeddingCapability with stable pseudo-random unit vectors per text."""

    def __init__(self, dim: int = 32, overrides: Optional[Dict[str, Sequence[float]]] = None):
        self.dim = dim
        self.overrides = {k.lower(): list(v) for k, v in (overrides or {}).items()}
        self.calls = 0

    def vector(self, text: str) -> List[float]:
        key = " ".join(text.lower().split())
        if key in self.overrides:
            return list(self.overrides[key])
        seed = int(hashlib.md5(key.encode("utf-8")).hexdigest()[:8], 16)
        v = np.random.default_rng(seed).standard_normal(self.dim)
        return (v / np.linalg.norm(v)).astype(np.float32).tolist()

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        return self.vector(text)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls += 1
        return [self.vector(t) for t in texts]


class FailingEmbedder:
    async def embed(self, text: str) -> List[float]:
        raise RuntimeError("embedding model unavailable")

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        raise RuntimeError("embedding model unavailable")


HitsOrBehavior = Union[List[Dict[str, Any]], BaseException, Callable[[], Any]]


class StubVectorStore:
    """VectorStore returning canned hits per collection.

    A collection mapped to an exception raises it; ``delay`` makes every
    query sleep first (for deadline tests).
    """

    def __init__(self, hits: Optional[Dict[str, HitsOrBehavior]] = None, delay: float = 0.0):
        self.hits = hits or {}
        self.delay = delay
        self.queries: List[Dict[str, Any]] = []

    async def query(self, collection, vector, top_k, filters=None, vector_name=None):
        self.queries.append(
            {"collection": collection, "top_k": top_k, "vector_name": vector_name}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        behavior = self.hits.get(collection, [])
        if isinstance(behavior, BaseException):
            raise behavior
        return list(behavior)[:top_k]

    async def get_collection_info(self, collection):
        return {"pointCount": len(self.hits.get(collection, []) or [])}


def make_hit(tool_id: str, score: float, **payload: Any) -> Dict[str, Any]:
    payload.setdefault("name", tool_id.title())
    return {"id": tool_id, "score": score, "payload": payload}


@pytest.fixture
def catalog() -> List[Dict[str, Any]]:
    return load_catalog(CATALOG_PATH)


@pytest.fixture
def document_store(catalog) -> JsonDocumentStore:
    return JsonDocumentStore(documents=catalog)


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()
