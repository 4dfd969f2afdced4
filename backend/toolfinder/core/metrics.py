"""
Prometheus metrics collection.

Metric groups:
- RED metrics for the HTTP surface (rate, errors, duration)
- Pipeline metrics: stage latency, detector failures, per-source query
  outcomes, fusion method, refinement cycles, zero-result searches
- Embedding cache hits and misses
- LLM requests, errors, token usage, schema failures
- Resource gauges (CPU, memory)

Naming follows Prometheus conventions: counters end in _total, latency
histograms in _seconds.
"""
from typing import Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from toolfinder.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

# ============================================================================
# PIPELINE METRICS
# ============================================================================

pipeline_stage_duration_seconds = Histogram(
    "pipeline_stage_duration_seconds",
    "Latency of each retrieval pipeline stage in seconds",
    ["stage"],  # intent, planning, execution, total
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

detector_failures_total = Counter(
    "detector_failures_total",
    "Extraction detectors that failed and returned their neutral default",
    ["detector"],
    registry=registry,
)

source_queries_total = Counter(
    "source_queries_total",
    "Per-source retrieval queries by outcome",
    ["source_type", "status"],  # vector|structured x success|error|timeout
    registry=registry,
)

fusion_method_total = Counter(
    "fusion_method_total",
    "Fusion method applied to executed plans",
    ["method"],
    registry=registry,
)

refinement_cycles_total = Counter(
    "refinement_cycles_total",
    "Additional plan/execute cycles triggered by the quality gate",
    ["kind"],  # refine | expand
    registry=registry,
)

search_results_count = Histogram(
    "search_results_count",
    "Number of candidates returned per search",
    buckets=[0, 1, 3, 5, 10, 20, 50, 100, 200],
    registry=registry,
)

search_zero_results_total = Counter(
    "search_zero_results_total",
    "Total number of searches that returned zero results",
    ["query_pattern"],
    registry=registry,
)

search_confidence_distribution = Histogram(
    "search_confidence_distribution",
    "Distribution of final search confidence",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

cache_evictions_total = Counter(
    "cache_evictions_total",
    "Entries removed from a cache",
    ["cache_type", "reason"],  # capacity | expired
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of LLM requests",
    ["agent", "model"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM request latency in seconds",
    ["agent", "model"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Total number of failed LLM requests",
    ["agent", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "LLM tokens consumed",
    ["agent", "model", "direction"],  # input | output
    registry=registry,
)

llm_cost_usd_total = Counter(
    "llm_cost_usd_total",
    "Estimated LLM spend in USD",
    ["agent", "model"],
    registry=registry,
)

llm_schema_validation_failures_total = Counter(
    "llm_schema_validation_failures_total",
    "LLM responses rejected by schema validation",
    ["agent"],
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)

embedding_cache_size = Gauge(
    "embedding_cache_size",
    "Entries currently held by the embedding cache",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """Strip query strings and trailing slashes to keep label cardinality low."""
    if "?" in path:
        path = path.split("?")[0]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_stage_latency(stage: str, duration_seconds: float) -> None:
    pipeline_stage_duration_seconds.labels(stage=stage).observe(duration_seconds)


def record_detector_failure(detector: str) -> None:
    detector_failures_total.labels(detector=detector).inc()


def record_source_query(source_type: str, status: str) -> None:
    """
    Record one retrieval call.

    Args:
        source_type: "vector" or "structured"
        status: "success", "error" or "timeout"
    """
    source_queries_total.labels(source_type=source_type, status=status).inc()


def record_fusion(method: str) -> None:
    fusion_method_total.labels(method=method).inc()


def record_refinement_cycle(kind: str) -> None:
    refinement_cycles_total.labels(kind=kind).inc()


def record_search_outcome(
    result_count: int,
    confidence: Optional[float],
    query: Optional[str] = None,
) -> None:
    """Record result count and confidence; zero results are also counted by pattern."""
    search_results_count.observe(result_count)
    if confidence is not None:
        search_confidence_distribution.observe(confidence)
    if result_count == 0:
        query_pattern = "empty" if not query else query[:20].lower()
        search_zero_results_total.labels(query_pattern=query_pattern).inc()


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def record_cache_eviction(cache_type: str, reason: str, count: int = 1) -> None:
    if count > 0:
        cache_evictions_total.labels(cache_type=cache_type, reason=reason).inc(count)


def record_llm_request(agent: str, model: str, duration_ms: float) -> None:
    llm_requests_total.labels(agent=agent, model=model).inc()
    llm_request_duration_seconds.labels(agent=agent, model=model).observe(
        duration_ms / 1000.0
    )


def record_llm_error(agent: str, error_type: str) -> None:
    llm_errors_total.labels(agent=agent, error_type=error_type).inc()


def record_llm_tokens_and_cost(
    agent: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
) -> None:
    if input_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="input").inc(input_tokens)
    if output_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(agent=agent, model=model).inc(cost_usd)


def record_llm_schema_validation_failure(agent: str) -> None:
    llm_schema_validation_failures_total.labels(agent=agent).inc()


def update_embedding_cache_size(size: int) -> None:
    embedding_cache_size.set(size)


def update_resource_metrics() -> None:
    """
    Update CPU and memory gauges.

    Called on scrape; failures are logged and never propagate.
    """
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Prometheus text exposition of the registry."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
