"""
Health check endpoint.

GET /health reports whether the pipeline is up and which optional
components (embeddings, LLM, vector store, reranker) it is running with.
"""
from fastapi import APIRouter

from toolfinder.core.logging import get_logger
from toolfinder.services.planning.schema import VECTOR_COLLECTIONS
from toolfinder.services.pipeline import get_search_pipeline

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    pipeline = get_search_pipeline()
    if pipeline is None:
        return {
            "status": "starting",
            "message": "Search pipeline not initialized",
        }

    executor = pipeline.executor
    response = {
        "status": "ok",
        "embeddings": executor.embedder is not None,
        "llm": pipeline.extractor.structuring.llm is not None,
        "reranker": executor.reranker is not None,
        "vector_store": type(executor.vector_store).__name__ if executor.vector_store else None,
    }

    if pipeline.document_store is not None:
        try:
            response["tool_count"] = len(await pipeline.document_store.get_all("tools"))
        except Exception as e:
            logger.warning("health_catalog_unavailable", error=str(e), error_type=type(e).__name__)
            response["status"] = "degraded"
            response["tool_count"] = 0

    if executor.vector_store is not None:
        collections = {}
        for collection in VECTOR_COLLECTIONS:
            try:
                info = await executor.vector_store.get_collection_info(collection)
                collections[collection] = info.get("pointCount", 0)
            except Exception as e:
                logger.warning(
                    "health_collection_unavailable",
                    collection=collection,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                collections[collection] = None
                response["status"] = "degraded"
        response["collections"] = collections
    else:
        response["status"] = "degraded"
        response["message"] = "Vector search unavailable; structured search only"

    return response
