"""
In-process vector store backed by FAISS.

One ``IndexFlatIP`` per collection over L2-normalized embeddings, so inner
product equals cosine similarity. Collections are built from the tool
catalog at startup; each collection embeds a different view of a tool:

- tools: name and description
- functionality: functionality and categories
- usecases: use cases, industries and user types
- interface: interface and deployment

Used when no Qdrant URL is configured.
"""
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import faiss
import numpy as np

from toolfinder.core.logging import get_logger
from toolfinder.services.capabilities import EmbeddingCapability
from toolfinder.services.stores.filters import matches

logger = get_logger(__name__)

# Over-fetch factor when payload filters are applied after the search.
FILTER_OVERFETCH = 4


def _join(*values: Any) -> str:
    parts: List[str] = []
    for value in values:
        if isinstance(value, (list, tuple)):
            parts.extend(str(v) for v in value if v)
        elif value:
            parts.append(str(value))
    return ". ".join(parts)


COLLECTION_TEXTS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "tools": lambda doc: _join(doc.get("name"), doc.get("description")),
    "functionality": lambda doc: _join(doc.get("functionality"), doc.get("categories")),
    "usecases": lambda doc: _join(doc.get("useCases"), doc.get("industries"), doc.get("userTypes")),
    "interface": lambda doc: _join(doc.get("interface"), doc.get("deployment")),
}


class _Collection:
    def __init__(self, dim: int):
        self.index = faiss.IndexFlatIP(dim)
        self.ids: List[str] = []
        self.payloads: List[Dict[str, Any]] = []


class InMemoryVectorStore:
    """VectorStore over per-collection FAISS indexes."""

    def __init__(self):
        self._collections: Dict[str, _Collection] = {}

    def add(
        self,
        collection: str,
        ids: Sequence[str],
        vectors: Sequence[Sequence[float]],
        payloads: Sequence[Dict[str, Any]],
    ) -> None:
        matrix = np.asarray(vectors, dtype="float32")
        if matrix.ndim != 2 or matrix.shape[0] == 0:
            return
        faiss.normalize_L2(matrix)
        target = self._collections.get(collection)
        if target is None:
            target = self._collections[collection] = _Collection(matrix.shape[1])
        target.index.add(matrix)
        target.ids.extend(str(i) for i in ids)
        target.payloads.extend(payloads)

    def _search(self, collection: str, vector: Sequence[float], k: int):
        target = self._collections[collection]
        query = np.asarray([vector], dtype="float32")
        faiss.normalize_L2(query)
        return target.index.search(query, min(k, target.index.ntotal))

    async def query(
        self,
        collection: str,
        vector: Sequence[float],
        top_k: int,
        filters: Optional[List[Dict[str, Any]]] = None,
        vector_name: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        target = self._collections.get(collection)
        if target is None or target.index.ntotal == 0:
            return []
        k = top_k * FILTER_OVERFETCH if filters else top_k
        scores, indices = await asyncio.to_thread(self._search, collection, vector, k)

        hits: List[Dict[str, Any]] = []
        for score, idx in zip(scores[0], indices[0]):
            if idx == -1:
                continue
            payload = target.payloads[idx]
            if filters and not matches(payload, filters):
                continue
            hits.append({"id": target.ids[idx], "score": float(score), "payload": payload})
            if len(hits) >= top_k:
                break
        return hits

    async def get_collection_info(self, collection: str) -> Dict[str, int]:
        target = self._collections.get(collection)
        return {"pointCount": int(target.index.ntotal) if target else 0}

    def collections(self) -> List[str]:
        return list(self._collections)


async def build_from_catalog(
    documents: Sequence[Dict[str, Any]],
    embedder: EmbeddingCapability,
    store: Optional[InMemoryVectorStore] = None,
) -> InMemoryVectorStore:
    """Embed every catalog document into each collection view."""
    store = store or InMemoryVectorStore()
    start = time.time()
    for collection, to_text in COLLECTION_TEXTS.items():
        rows = [(doc, to_text(doc)) for doc in documents]
        rows = [(doc, text) for doc, text in rows if text]
        if not rows:
            continue
        vectors = await embedder.embed_batch([text for _, text in rows])
        store.add(
            collection,
            [str(doc.get("_id", doc.get("id"))) for doc, _ in rows],
            vectors,
            [doc for doc, _ in rows],
        )
    logger.info(
        "vector_index_built",
        collections=store.collections(),
        tool_count=len(documents),
        build_time_ms=int((time.time() - start) * 1000),
    )
    return store
