"""
Search endpoint.

POST /search {"query": str, "limit": int = 20}
"""
import time

from fastapi import APIRouter, HTTPException, Response

from toolfinder.core.logging import get_logger
from toolfinder.models.search import SearchRequest, SearchResponse
from toolfinder.services.pipeline import get_search_pipeline

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=SearchResponse, response_model_by_alias=True)
async def search(body: SearchRequest, response: Response) -> SearchResponse:
    """
    Run the agentic search pipeline for a free-text query.

    An empty query is not an error: it returns no candidates with
    confidence 0. Results are truncated to ``limit`` after fusion.
    """
    start_time = time.time()
    pipeline = get_search_pipeline()
    if pipeline is None:
        logger.error("search_pipeline_unavailable")
        raise HTTPException(status_code=503, detail="Search pipeline not initialized")

    logger.info("search_started", query=body.query, limit=body.limit)
    try:
        output = await pipeline.search(body.query)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            "search_error",
            query=body.query,
            error=str(e),
            error_type=type(e).__name__,
            latency_ms=int((time.time() - start_time) * 1000),
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Internal server error during search")

    response.headers["X-Search-Terminal-State"] = output.execution_stats.terminal_state
    return SearchResponse(
        candidates=output.candidates[: body.limit],
        execution_stats=output.execution_stats,
        confidence=output.confidence,
    )
