"""
Qdrant-backed vector store.

Each logical collection (tools, functionality, usecases, interface) is a
Qdrant collection; ``vector_name`` selects the named vector
("semantic", "entities.functionality", ...). Filters use the same
``{"field", "operator", "value"}`` shape as the document store and are
translated to Qdrant payload conditions. Calls go through a circuit breaker
so an unreachable Qdrant fails fast.
"""
from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import AsyncQdrantClient, models

from toolfinder.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from toolfinder.core.logging import get_logger

logger = get_logger(__name__)

_RANGE_OPERATORS = ("lt", "lte", "gt", "gte")


def to_qdrant_filter(filters: Optional[List[Dict[str, Any]]]) -> Optional[models.Filter]:
    if not filters:
        return None
    must: List[models.Condition] = []
    must_not: List[models.Condition] = []
    for f in filters:
        field, operator, value = f["field"], f["operator"], f.get("value")
        if operator == "in":
            values = list(value) if isinstance(value, (list, tuple, set)) else [value]
            must.append(models.FieldCondition(key=field, match=models.MatchAny(any=values)))
        elif operator == "eq":
            must.append(models.FieldCondition(key=field, match=models.MatchValue(value=value)))
        elif operator == "ne":
            must_not.append(models.FieldCondition(key=field, match=models.MatchValue(value=value)))
        elif operator in _RANGE_OPERATORS:
            must.append(models.FieldCondition(key=field, range=models.Range(**{operator: float(value)})))
        else:
            raise ValueError(f"unsupported filter operator: {operator}")
    return models.Filter(must=must or None, must_not=must_not or None)


class QdrantVectorStore:
    """VectorStore over a Qdrant server."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
        use_named_vectors: bool = True,
        client: Optional[AsyncQdrantClient] = None,
    ):
        self.url = url
        self.use_named_vectors = use_named_vectors
        self.client = client or AsyncQdrantClient(url=url, api_key=api_key, timeout=int(timeout_seconds))
        self.circuit_breaker = CircuitBreaker(
            name="qdrant",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
            half_open_test_percentage=0.1,
        )

    async def query(
        self,
        collection: str,
        vector: Sequence[float],
        top_k: int,
        filters: Optional[List[Dict[str, Any]]] = None,
        vector_name: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        try:
            response = await self.circuit_breaker.call_async(
                self.client.query_points,
                collection_name=collection,
                query=[float(v) for v in vector],
                using=vector_name if self.use_named_vectors else None,
                limit=top_k,
                query_filter=to_qdrant_filter(filters),
                with_payload=True,
            )
        except CircuitBreakerOpenError:
            logger.warning("qdrant_circuit_open", collection=collection)
            raise
        hits = []
        for point in response.points:
            payload = point.payload or {}
            # Points are keyed by UUID; the catalog id travels in the payload.
            tool_id = payload.get("_id") or payload.get("toolId") or point.id
            hits.append({"id": str(tool_id), "score": float(point.score), "payload": payload})
        return hits

    async def get_collection_info(self, collection: str) -> Dict[str, int]:
        info = await self.circuit_breaker.call_async(
            self.client.get_collection, collection_name=collection
        )
        return {"pointCount": int(info.points_count or 0)}

    async def close(self) -> None:
        await self.client.close()
