import asyncio
import time
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from toolfinder import __version__  # noqa: E402
from toolfinder.core.config import get_settings  # noqa: E402
from toolfinder.core.logging import configure_logging, get_logger, get_trace_id  # noqa: E402
from toolfinder.core.metrics import record_http_request  # noqa: E402
from toolfinder.core.middleware import TraceIDMiddleware  # noqa: E402
from toolfinder.core.tracing import (  # noqa: E402
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from toolfinder.routes import health, metrics, search  # noqa: E402
from toolfinder.services.pipeline import get_search_pipeline, initialize_pipeline  # noqa: E402

settings = get_settings()

# JSON output in containers, console output in development (LOG_JSON=false)
configure_logging(log_level=settings.log_level, json_output=settings.log_json)

logger = get_logger(__name__)

# OTLP export is enabled by OTEL_EXPORTER_OTLP_ENDPOINT
configure_tracing()

app = FastAPI(
    title="toolfinder Search API",
    description="Agentic tool-discovery search: intent extraction, query planning, hybrid retrieval",
    version=__version__,
)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Must be added after CORS
app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)

_cleanup_task: Optional[asyncio.Task] = None


async def _cache_cleanup_loop(interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        pipeline = get_search_pipeline()
        if pipeline is None:
            continue
        try:
            removed = pipeline.cleanup_cache()
            if removed:
                logger.debug("embedding_cache_cleanup", removed=removed)
        except Exception as e:
            logger.warning(
                "embedding_cache_cleanup_failed",
                error=str(e),
                error_type=type(e).__name__,
            )


@app.on_event("startup")
async def startup_event():
    """Build the search pipeline and start background maintenance."""
    global _cleanup_task
    logger.info("app_startup_started")

    try:
        await initialize_pipeline(settings)
        logger.info("app_startup_pipeline_ready")
    except Exception as e:
        # /search answers 503 until a restart with a valid catalog.
        logger.error(
            "app_startup_pipeline_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )

    if settings.embedding_cache_enabled:
        _cleanup_task = asyncio.create_task(
            _cache_cleanup_loop(settings.embedding_cache_cleanup_interval_seconds)
        )

    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on application shutdown."""
    logger.info("app_shutdown_started")
    if _cleanup_task is not None:
        _cleanup_task.cancel()
        await asyncio.gather(_cleanup_task, return_exceptions=True)
    pipeline = get_search_pipeline()
    if pipeline is not None:
        await pipeline.close()
    shutdown_tracing()
    logger.info("app_shutdown_completed")


def _error_response(status_code: int, detail, trace_id: Optional[str]) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "status_code": status_code,
            "trace_id": trace_id,
        },
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    start_time = getattr(request.state, "start_time", time.time())
    trace_id = get_trace_id() or get_trace_id_from_context()

    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, str(exc.detail))
    record_http_request(
        method=request.method,
        endpoint=request.url.path,
        status_code=exc.status_code,
        duration_seconds=time.time() - start_time,
    )
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(exc.status_code, exc.detail, trace_id)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies (e.g. limit outside 1..100)."""
    trace_id = get_trace_id() or get_trace_id_from_context()
    logger.warning(
        "request_validation_failed",
        path=request.url.path,
        method=request.method,
        error_count=len(exc.errors()),
    )
    detail = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return _error_response(422, detail, trace_id)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    trace_id = get_trace_id() or get_trace_id_from_context()

    record_exception(exc)
    set_span_status(StatusCode.ERROR, str(exc))

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return _error_response(500, "Internal server error", trace_id)


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(search.router, prefix="/search", tags=["Search"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
