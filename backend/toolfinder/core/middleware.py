"""
Request context middleware.

Each request gets a trace id (the caller's X-Trace-ID or X-Request-ID, else
the active OpenTelemetry trace id, else a fresh UUID) and a new request id.
Both are bound for structured logging for the lifetime of the request and
echoed back as response headers. RED metrics are recorded here so that
every route, including 4xx answers from exception handlers, is counted.
"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from toolfinder.core.logging import (
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_request_id,
    set_stage,
    set_trace_id,
)
from toolfinder.core.metrics import record_http_request
from toolfinder.core.tracing import (
    StatusCode,
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
    set_span_status,
)

logger = get_logger(__name__)

TRACE_HEADERS = ("X-Trace-ID", "X-Request-ID")


def _hex_to_uuid(hex_id: str) -> str:
    if len(hex_id) != 32:
        return hex_id
    return f"{hex_id[0:8]}-{hex_id[8:12]}-{hex_id[12:16]}-{hex_id[16:20]}-{hex_id[20:32]}"


def resolve_trace_id(request: Request) -> str:
    for header in TRACE_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    otel_trace_id = get_trace_id_from_context()
    if otel_trace_id:
        return _hex_to_uuid(otel_trace_id)
    return generate_trace_id()


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Bind trace/request ids, time the request and echo the ids."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = resolve_trace_id(request)
        request_id = generate_request_id()
        set_trace_id(trace_id)
        set_request_id(request_id)

        path = request.url.path
        started = time.time()
        request.state.start_time = started

        try:
            with get_tracer().start_as_current_span("http.request"):
                set_span_attribute("http.method", request.method)
                set_span_attribute("http.route", path)
                logger.info(
                    "request_started",
                    method=request.method,
                    path=path,
                    client_host=request.client.host if request.client else None,
                )
                try:
                    response = await call_next(request)
                except Exception as e:
                    elapsed = time.time() - started
                    record_exception(e)
                    set_span_status(StatusCode.ERROR, str(e))
                    record_http_request(request.method, path, 500, elapsed)
                    logger.error(
                        "request_failed",
                        method=request.method,
                        path=path,
                        error=str(e),
                        error_type=type(e).__name__,
                        latency_ms=int(elapsed * 1000),
                        exc_info=True,
                    )
                    raise

                elapsed = time.time() - started
                set_span_attribute("http.status_code", response.status_code)
                record_http_request(request.method, path, response.status_code, elapsed)
                logger.info(
                    "request_completed",
                    method=request.method,
                    path=path,
                    status_code=response.status_code,
                    latency_ms=int(elapsed * 1000),
                )
                response.headers[TRACE_HEADERS[0]] = trace_id
                response.headers[TRACE_HEADERS[1]] = request_id
                return response
        finally:
            set_trace_id(None)
            set_request_id(None)
            set_stage(None)
