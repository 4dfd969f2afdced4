"""
Structured logging for the search service.

structlog renders every entry (JSON lines in containers, colored console in
development) through the standard library root logger. Request-scoped ids
and the active pipeline stage live in context variables; the
``add_request_context`` processor copies them onto each event so a single
query can be followed across extraction, planning and execution:

    {"event": "source_query_failed", "stage": "execute", "trace_id": "...",
     "request_id": "...", "service": "toolfinder_search_api", ...}

Loggers come from ``get_logger(__name__)`` and log snake_case event names
with keyword fields.
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

SERVICE_NAME = "toolfinder_search_api"

# Third-party loggers that are chatty at INFO (model downloads, HTTP calls).
NOISY_LOGGERS = ("httpx", "httpcore", "sentence_transformers", "faiss")

_context: Dict[str, ContextVar] = {
    "trace_id": ContextVar("trace_id", default=None),
    "request_id": ContextVar("request_id", default=None),
    "stage": ContextVar("pipeline_stage", default=None),
}


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor: request ids, pipeline stage, service and timestamp."""
    for key, var in _context.items():
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    event_dict["service"] = SERVICE_NAME
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True,
) -> None:
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            add_request_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def set_trace_id(trace_id: Optional[str]) -> None:
    _context["trace_id"].set(trace_id)


def get_trace_id() -> Optional[str]:
    return _context["trace_id"].get()


def set_request_id(request_id: Optional[str]) -> None:
    _context["request_id"].set(request_id)


def get_request_id() -> Optional[str]:
    return _context["request_id"].get()


def set_stage(stage: Optional[str]) -> None:
    """Bind the pipeline stage (intent, plan, execute) for nested log calls."""
    _context["stage"].set(stage)


def get_stage() -> Optional[str]:
    return _context["stage"].get()


def generate_request_id() -> str:
    return str(uuid.uuid4())


def generate_trace_id() -> str:
    return str(uuid.uuid4())
