"""
Extraction signal models and the fail-soft detector wrapper.

Every detector is an async callable over the normalized query. Wrapping it
with ``fail_soft`` gives the uniform contract: a blank query or any
exception yields a fresh neutral default, logs ``detector_failed`` and bumps
``detector_failures_total``. Detectors themselves therefore never catch
their own errors.
"""
import copy
import functools
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from pydantic import Field

from toolfinder.core.logging import get_logger
from toolfinder.core.metrics import record_detector_failure
from toolfinder.models.base import CamelModel

logger = get_logger(__name__)

T = TypeVar("T")


class ScoredValue(CamelModel):
    value: str
    score: float


class FuzzyMatch(CamelModel):
    name: str
    score: float
    tool_id: str


class ComparativeSignal(CamelModel):
    flag: bool = False
    confidence: float = 0.0
    pattern: Optional[str] = None  # direct | difference | similarity | semantic


class ReferenceSignal(CamelModel):
    tool: Optional[str] = None
    mode: Optional[str] = None  # similar_to | vs | alternative_to
    source: Optional[str] = None  # pattern | llm


class ExtractionSignals(CamelModel):
    """All detector outputs for one query (transient, per request)."""

    comparative_flag: bool = False
    comparative_confidence: float = 0.0
    comparative_pattern: Optional[str] = None
    interface_preferences: List[str] = Field(default_factory=list)
    reference_tool: Optional[str] = None
    comparison_mode: Optional[str] = None
    fuzzy_matches: List[FuzzyMatch] = Field(default_factory=list)
    ner_entities: List[str] = Field(default_factory=list)
    resolved_tool_names: List[str] = Field(default_factory=list)
    semantic_candidates: Dict[str, List[ScoredValue]] = Field(default_factory=dict)
    classification_scores: Dict[str, List[ScoredValue]] = Field(default_factory=dict)


def fail_soft(
    name: str,
    default: T,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorate an async detector so it never raises.

    The first positional argument is taken to be the query; a blank query
    short-circuits to ``default`` without running the detector. ``default``
    is deep-copied on every use so callers may mutate what they receive.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            query = _query_arg(args, kwargs)
            if query is not None and not query.strip():
                return copy.deepcopy(default)
            start = time.time()
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                record_detector_failure(name)
                logger.warning(
                    "detector_failed",
                    detector=name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    latency_ms=int((time.time() - start) * 1000),
                )
                return copy.deepcopy(default)

        wrapper.detector_name = name  # type: ignore[attr-defined]
        return wrapper

    return decorator


def _query_arg(args: tuple, kwargs: Dict[str, Any]) -> Optional[str]:
    if "query" in kwargs:
        value = kwargs["query"]
    else:
        # Bound methods receive self first.
        value = next((a for a in args if isinstance(a, str)), None)
    return value if isinstance(value, str) else None
