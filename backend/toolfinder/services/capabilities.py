"""
Capability interfaces the retrieval pipeline is built against.

The pipeline never imports a concrete LLM, embedding model or store; it is
handed objects satisfying these protocols. Production wiring lives in
``toolfinder.services.pipeline``; tests pass deterministic stand-ins.
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

Vector = List[float]
Document = Dict[str, Any]
VectorHit = Dict[str, Any]  # {"id": str, "score": float, "payload": dict}
Filter = Dict[str, Any]  # {"field": str, "operator": str, "value": Any}


@runtime_checkable
class LLMCapability(Protocol):
    """Prompt in, text out. Must tolerate concurrent calls."""

    async def invoke(self, prompt: str, *, agent: str = "pipeline") -> str:
        ...


@runtime_checkable
class EmbeddingCapability(Protocol):
    async def embed(self, text: str) -> Vector:
        ...

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        ...


@runtime_checkable
class VectorStore(Protocol):
    async def query(
        self,
        collection: str,
        vector: Sequence[float],
        top_k: int,
        filters: Optional[List[Filter]] = None,
        vector_name: Optional[str] = None,
    ) -> List[VectorHit]:
        ...

    async def get_collection_info(self, collection: str) -> Dict[str, int]:
        ...


@runtime_checkable
class DocumentStore(Protocol):
    async def query(self, source: str, filters: List[Filter], limit: int) -> List[Document]:
        ...

    async def get_all(self, source: str) -> List[Document]:
        ...
