"""
GET /metrics: Prometheus text exposition.

Point-in-time gauges (CPU, memory, embedding cache size) are refreshed on
every scrape; counters and histograms are updated where they happen.
"""
from fastapi import APIRouter, Response

from toolfinder.core.logging import get_logger
from toolfinder.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    update_embedding_cache_size,
    update_resource_metrics,
)
from toolfinder.services.pipeline import get_search_pipeline

logger = get_logger(__name__)
router = APIRouter()


def _refresh_gauges() -> None:
    update_resource_metrics()
    pipeline = get_search_pipeline()
    if pipeline is not None and pipeline.embedding_cache is not None:
        update_embedding_cache_size(len(pipeline.embedding_cache))


@router.get("")
async def metrics() -> Response:
    try:
        _refresh_gauges()
        body = get_metrics()
    except Exception as e:
        logger.error(
            "metrics_scrape_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        body = b"# metrics unavailable\n"
    return Response(content=body, media_type=get_metrics_content_type())
