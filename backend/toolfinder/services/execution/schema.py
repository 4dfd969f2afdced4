"""Execution output models."""
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from toolfinder.models.base import CamelModel

CandidateSource = Literal["qdrant", "mongodb", "api", "fusion"]
TerminalState = Literal["accepted", "exhausted_budget"]


class Provenance(CamelModel):
    collection: Optional[str] = None
    query_vector_source: Optional[str] = None
    filters_applied: List[str] = Field(default_factory=list)


class CandidateMetadata(CamelModel):
    name: str = ""
    category: Optional[str] = None
    pricing: Optional[Any] = None
    platform: Optional[List[str]] = None
    features: Optional[List[str]] = None
    description: Optional[str] = None


class Candidate(CamelModel):
    id: str
    source: CandidateSource
    score: float = Field(0.0, ge=0.0, le=1.0)
    metadata: CandidateMetadata = Field(default_factory=CandidateMetadata)
    embedding_vector: Optional[List[float]] = None
    provenance: Provenance = Field(default_factory=Provenance)


class ExecutionStats(CamelModel):
    vector_queries_executed: int = 0
    structured_queries_executed: int = 0
    failed_sources: int = 0
    fusion_method: str = "none"
    latency_ms: int = 0
    refinement_cycles: int = 0
    expansion_cycles: int = 0
    terminal_state: TerminalState = "accepted"


class QualityAssessment(CamelModel):
    result_count: int = 0
    average_relevance: float = 0.0
    category_diversity: float = 0.0
    confidence: float = 0.0
    decision: Literal["accept", "refine", "expand"] = "accept"


class QueryExecutorOutput(CamelModel):
    candidates: List[Candidate] = Field(default_factory=list)
    execution_stats: ExecutionStats = Field(default_factory=ExecutionStats)
    confidence: Optional[float] = None

    @classmethod
    def empty(cls, stats: Optional[ExecutionStats] = None) -> "QueryExecutorOutput":
        return cls(candidates=[], execution_stats=stats or ExecutionStats(), confidence=0.0)


def candidate_metadata(doc: Dict[str, Any]) -> CandidateMetadata:
    """Project a catalog document or vector payload onto candidate metadata."""
    categories = doc.get("categories") or []
    if isinstance(categories, str):
        categories = [categories]
    interface = doc.get("interface")
    if isinstance(interface, str):
        interface = [interface]
    features = doc.get("functionality")
    if isinstance(features, str):
        features = [features]
    return CandidateMetadata(
        name=str(doc.get("name") or ""),
        category=categories[0] if categories else doc.get("category"),
        pricing=doc.get("pricing"),
        platform=interface,
        features=features,
        description=doc.get("description"),
    )
