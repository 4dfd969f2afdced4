"""
Query plan models.

A ``QueryPlan`` is the executable form of an intent: which vector
collections to search with which query text, which structured filters to
apply, how to fuse the result blocks and how much refinement is allowed.
"""
from typing import Any, List, Literal, Optional

from pydantic import Field, field_validator

from toolfinder.models.base import CamelModel

MAX_SOURCE_RESULTS = 200

Strategy = Literal["hybrid", "multi-vector", "vector-only", "metadata-only", "semantic-kg"]
FusionMethod = Literal["rrf", "weighted_sum", "concat", "none"]
QueryVectorSource = Literal["query_text", "reference_tool_embedding", "semantic_variant"]
FilterOperator = Literal["in", "eq", "ne", "lt", "lte", "gt", "gte"]

VECTOR_COLLECTIONS = ("tools", "functionality", "usecases", "interface")
FUSION_METHODS = ("rrf", "weighted_sum", "concat", "none")


def _clamp_results(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 1
    return max(1, min(MAX_SOURCE_RESULTS, number))


class VectorSource(CamelModel):
    collection: str
    embedding_type: str = "semantic"
    query_vector_source: QueryVectorSource = "query_text"
    top_k: int = 50
    weight: float = 1.0

    @field_validator("top_k", mode="before")
    @classmethod
    def clamp_top_k(cls, value: Any) -> int:
        # Oversized requests are clamped, never rejected.
        return _clamp_results(value)


class StructuredFilter(CamelModel):
    field: str
    operator: FilterOperator
    value: Any = None


class StructuredSource(CamelModel):
    source: str = "tools"
    filters: List[StructuredFilter] = Field(default_factory=list)
    limit: int = 100

    @field_validator("limit", mode="before")
    @classmethod
    def clamp_limit(cls, value: Any) -> int:
        return _clamp_results(value)


class Reranker(CamelModel):
    type: str = "cross-encoder"
    model: Optional[str] = None
    max_candidates: Optional[int] = None


class QueryPlan(CamelModel):
    strategy: Strategy = "vector-only"
    vector_sources: List[VectorSource] = Field(default_factory=list)
    structured_sources: List[StructuredSource] = Field(default_factory=list)
    reranker: Optional[Reranker] = None
    fusion: FusionMethod = "none"
    max_refinement_cycles: int = Field(0, ge=0, le=5)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    query_text: str = ""
    reference_tool: Optional[str] = None
    semantic_variants: List[str] = Field(default_factory=list)

    def total_results(self) -> int:
        return sum(v.top_k for v in self.vector_sources) + sum(
            s.limit for s in self.structured_sources
        )

    def source_count(self) -> int:
        return len(self.vector_sources) + len(self.structured_sources)
