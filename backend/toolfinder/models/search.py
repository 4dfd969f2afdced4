"""Request and response models for ``POST /search``."""
from typing import List, Optional

from pydantic import Field

from toolfinder.models.base import CamelModel
from toolfinder.services.execution.schema import Candidate, ExecutionStats


class SearchRequest(CamelModel):
    query: str = Field("", max_length=2000, description="Free-text tool search query")
    limit: int = Field(20, ge=1, le=100, description="Maximum number of candidates to return")


class SearchResponse(CamelModel):
    """Ranked candidates plus execution metadata; camelCase on the wire."""

    candidates: List[Candidate] = Field(default_factory=list)
    execution_stats: ExecutionStats = Field(default_factory=ExecutionStats)
    confidence: Optional[float] = None
