"""
Query planning.

Turns an ``IntentState`` into a ``QueryPlan``. Everything that constrains
results (collections, filters, budgets, fusion) is decided deterministically;
an optional LLM hint may add secondary collections, pick the fusion method
for three-source plans and veto the reranker. The hint never touches
structured filters.
"""
import json
import time
from typing import Any, List, Optional, Tuple

from pydantic import Field, field_validator

from toolfinder.core.logging import get_logger, set_stage
from toolfinder.core.metrics import record_llm_schema_validation_failure, record_stage_latency
from toolfinder.core.tracing import get_tracer, set_span_attribute
from toolfinder.models.base import CamelModel
from toolfinder.services.capabilities import LLMCapability
from toolfinder.services.intent.schema import IntentState
from toolfinder.services.llm.schema import SchemaValidationError, parse_json_object, validate_payload
from toolfinder.services.planning.schema import (
    FUSION_METHODS,
    MAX_SOURCE_RESULTS,
    VECTOR_COLLECTIONS,
    QueryPlan,
    Reranker,
    StructuredFilter,
    StructuredSource,
    VectorSource,
)

logger = get_logger(__name__)

PRIMARY_TOP_K = 70
SECONDARY_TOP_K = 40
VARIANT_TOP_K = 40
MINIMAL_TOP_K = 50
STRUCTURED_LIMIT = 100
WIDEN_STEP = 0.25
RERANK_MAX_CANDIDATES = 50
AROUND_TOLERANCE = 0.1

EMBEDDING_TYPES = {
    "functionality": "entities.functionality",
    "interface": "entities.interface",
}

# Fusion weights for non-primary collections.
COLLECTION_WEIGHTS = {
    "tools": 1.0,
    "functionality": 0.8,
    "usecases": 0.6,
    "interface": 0.6,
}

PRICE_OPERATORS = {
    "less_than": "lt",
    "less_than_or_equal": "lte",
    "greater_than": "gt",
    "greater_than_or_equal": "gte",
    "equal_to": "eq",
    "not_equal": "ne",
}

# (IntentState field, catalog document field)
LIST_FILTER_FIELDS = (
    ("interface", "interface"),
    ("deployment", "deployment"),
    ("functionality", "functionality"),
    ("user_types", "userTypes"),
    ("pricing_model", "pricingModel"),
)

HINT_AGENT = "planner"


class PlanHint(CamelModel):
    """Shape requested from the LLM planning hint."""

    collections: List[str] = Field(default_factory=list)
    fusion: Optional[str] = None
    reranker: Optional[bool] = None

    @field_validator("collections", mode="before")
    @classmethod
    def known_collections(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [c for c in value if isinstance(c, str) and c in VECTOR_COLLECTIONS]

    @field_validator("fusion", mode="before")
    @classmethod
    def known_fusion(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) and value in FUSION_METHODS else None


def validate_plan_hint_payload(payload: Any) -> PlanHint:
    """
    Validate a decoded planning hint.

    Raises:
        SchemaValidationError if validation fails.
    """
    return validate_payload(PlanHint, payload, agent=HINT_AGENT)


def minimal_plan(query_text: str = "") -> QueryPlan:
    """Single semantic search over ``tools``; the fallback for empty or failed planning."""
    return QueryPlan(
        strategy="vector-only",
        vector_sources=[
            VectorSource(
                collection="tools",
                embedding_type="semantic",
                query_vector_source="query_text",
                top_k=MINIMAL_TOP_K,
            )
        ],
        fusion="none",
        max_refinement_cycles=0,
        confidence=0.0,
        query_text=query_text,
    )


def analyze_collections(intent: IntentState) -> Tuple[List[str], List[str]]:
    """(primary, secondary) vector collections for an intent."""
    if intent.primary_goal == "find" or intent.reference_tool:
        return ["tools"], ["functionality"]
    if intent.functionality:
        return ["functionality"], ["tools", "usecases"]
    if intent.interface or intent.deployment:
        return ["interface"], ["tools", "functionality"]
    if len(intent.constraints) > 2:
        return ["tools", "functionality"], ["usecases", "interface"]
    return ["tools", "functionality"], []


def _widened(top_k: int, widen: int) -> int:
    return max(1, min(MAX_SOURCE_RESULTS, int(top_k * (1 + WIDEN_STEP * widen))))


def price_filters(intent: IntentState) -> List[StructuredFilter]:
    """``pricing.*`` filters; values are clamped at zero, unknown values emit nothing."""
    filters: List[StructuredFilter] = []
    period: Optional[str] = None

    if intent.price_range is not None:
        rng = intent.price_range
        if rng.min is not None:
            filters.append(StructuredFilter(field="pricing.price", operator="gte", value=max(0.0, rng.min)))
        if rng.max is not None:
            filters.append(StructuredFilter(field="pricing.price", operator="lte", value=max(0.0, rng.max)))
        period = rng.billing_period
    elif intent.price_comparison is not None and intent.price_comparison.value is not None:
        comparison = intent.price_comparison
        value = max(0.0, comparison.value)
        if comparison.operator == "around":
            filters.append(StructuredFilter(
                field="pricing.price", operator="gte", value=value * (1 - AROUND_TOLERANCE)))
            filters.append(StructuredFilter(
                field="pricing.price", operator="lte", value=value * (1 + AROUND_TOLERANCE)))
        elif comparison.operator == "between":
            filters.append(StructuredFilter(field="pricing.price", operator="gte", value=0.0))
            filters.append(StructuredFilter(field="pricing.price", operator="lte", value=value))
        else:
            filters.append(StructuredFilter(
                field="pricing.price", operator=PRICE_OPERATORS[comparison.operator], value=value))
        period = comparison.billing_period

    if filters and period:
        filters.append(StructuredFilter(field="pricing.billingPeriod", operator="eq", value=period))
    return filters


def structured_filters(intent: IntentState) -> Tuple[List[StructuredFilter], int, int]:
    """
    Deterministic filters for the ``tools`` document source.

    Returns (filters, present, represented): how many filterable slots the
    intent sets and how many of them produced a filter.
    """
    filters: List[StructuredFilter] = []
    present = 0
    represented = 0

    if intent.category:
        present += 1
        filters.append(StructuredFilter(field="categories", operator="in", value=[intent.category]))
        represented += 1

    for attr, field in LIST_FILTER_FIELDS:
        values = getattr(intent, attr) or []
        if not values:
            continue
        present += 1
        filters.append(StructuredFilter(field=field, operator="in", value=list(values)))
        represented += 1

    if intent.price_range is not None or intent.price_comparison is not None:
        present += 1
        emitted = price_filters(intent)
        if emitted:
            filters.extend(emitted)
            represented += 1

    return filters, present, represented


def choose_fusion(vector_count: int, structured_count: int, hinted: Optional[str]) -> str:
    total = vector_count + structured_count
    if total >= 4:
        return "rrf"
    if vector_count == 0 and structured_count > 1:
        return "concat"
    if total == 3:
        return "weighted_sum" if hinted == "weighted_sum" else "rrf"
    if total == 2:
        return "weighted_sum"
    return "none"


def choose_strategy(vector_count: int, structured_count: int) -> str:
    if vector_count and structured_count:
        return "hybrid"
    if vector_count > 1:
        return "multi-vector"
    if vector_count == 1:
        return "vector-only"
    return "metadata-only"


def enforce_budget(
    vector_sources: List[VectorSource], structured_sources: List[StructuredSource]
) -> None:
    """Scale every source down proportionally when the total exceeds the budget."""
    total = sum(v.top_k for v in vector_sources) + sum(s.limit for s in structured_sources)
    if total <= MAX_SOURCE_RESULTS:
        return
    ratio = MAX_SOURCE_RESULTS / total
    for source in vector_sources:
        source.top_k = max(1, int(source.top_k * ratio))
    for source in structured_sources:
        source.limit = max(1, int(source.limit * ratio))


HINT_PROMPT = """You help plan a multi-collection search over software tools.

Collections: tools (identity), functionality (capabilities), usecases (scenarios), interface (platform and deployment).
Intent: {intent}
Already selected: {selected}

Respond with a single JSON object only:
{{"collections": [extra collections worth searching], "fusion": "rrf | weighted_sum", "reranker": true|false}}"""


class QueryPlanner:
    """IntentState to QueryPlan."""

    def __init__(
        self,
        llm: Optional[LLMCapability] = None,
        enable_llm_hints: bool = True,
        max_refinement_cycles: int = 2,
        reranker_model: Optional[str] = None,
    ):
        self.llm = llm
        self.enable_llm_hints = enable_llm_hints
        self.max_refinement_cycles = max(0, min(5, max_refinement_cycles))
        self.reranker_model = reranker_model

    async def hint(self, intent: IntentState, selected: List[str]) -> Optional[PlanHint]:
        """Optional LLM planning hint; None on any failure."""
        if self.llm is None or not self.enable_llm_hints:
            return None
        summary = intent.model_dump(
            exclude={"filters", "semantic_variants"}, exclude_none=True, by_alias=True
        )
        prompt = HINT_PROMPT.format(intent=json.dumps(summary, default=str), selected=selected)
        try:
            answer = await self.llm.invoke(prompt, agent=HINT_AGENT)
            return validate_plan_hint_payload(parse_json_object(answer, agent=HINT_AGENT))
        except SchemaValidationError as exc:
            record_llm_schema_validation_failure(HINT_AGENT)
            logger.warning("planner_hint_invalid", error=str(exc))
        except Exception as exc:
            logger.warning(
                "planner_hint_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return None

    async def plan(
        self, intent: Optional[IntentState], widen: int = 0, llm_hints: bool = True
    ) -> QueryPlan:
        tracer = get_tracer()
        with tracer.start_as_current_span("plan.build"):
            set_stage("planning")
            start = time.time()
            if intent is None or intent.is_empty():
                plan = minimal_plan(intent.query_text if intent else "")
            else:
                try:
                    plan = await self._build(intent, widen, llm_hints)
                except Exception as exc:
                    logger.error(
                        "planning_failed",
                        error=str(exc),
                        error_type=type(exc).__name__,
                        exc_info=True,
                    )
                    plan = minimal_plan(intent.query_text)

            record_stage_latency("planning", time.time() - start)
            set_span_attribute("plan.strategy", plan.strategy)
            set_span_attribute("plan.fusion", plan.fusion)
            set_span_attribute("plan.source_count", plan.source_count())
            logger.info(
                "plan_built",
                strategy=plan.strategy,
                fusion=plan.fusion,
                vector_sources=[v.collection for v in plan.vector_sources],
                structured_filters=sum(len(s.filters) for s in plan.structured_sources),
                total_results=plan.total_results(),
                widen=widen,
                confidence=plan.confidence,
            )
            return plan

    async def _build(self, intent: IntentState, widen: int, llm_hints: bool) -> QueryPlan:
        primary, secondary = analyze_collections(intent)

        hint = await self.hint(intent, primary + secondary) if llm_hints else None
        if hint is not None:
            for collection in hint.collections:
                if collection not in primary and collection not in secondary:
                    secondary.append(collection)

        vector_source = "reference_tool_embedding" if intent.reference_tool else "query_text"
        vector_sources: List[VectorSource] = []
        for collection in primary:
            vector_sources.append(VectorSource(
                collection=collection,
                embedding_type=EMBEDDING_TYPES.get(collection, "semantic"),
                query_vector_source=vector_source,
                top_k=_widened(PRIMARY_TOP_K, widen),
                weight=1.0,
            ))
        for collection in secondary:
            vector_sources.append(VectorSource(
                collection=collection,
                embedding_type=EMBEDDING_TYPES.get(collection, "semantic"),
                query_vector_source=vector_source,
                top_k=_widened(SECONDARY_TOP_K, widen),
                weight=COLLECTION_WEIGHTS.get(collection, 0.5),
            ))
        if intent.semantic_variants:
            vector_sources.append(VectorSource(
                collection=primary[0],
                embedding_type=EMBEDDING_TYPES.get(primary[0], "semantic"),
                query_vector_source="semantic_variant",
                top_k=_widened(VARIANT_TOP_K, widen),
                weight=COLLECTION_WEIGHTS.get(primary[0], 0.5),
            ))

        filters, present, represented = structured_filters(intent)
        structured_sources: List[StructuredSource] = []
        if filters:
            structured_sources.append(
                StructuredSource(source="tools", filters=filters, limit=STRUCTURED_LIMIT)
            )

        enforce_budget(vector_sources, structured_sources)

        fusion = choose_fusion(
            len(vector_sources), len(structured_sources), hint.fusion if hint else None
        )
        reranker = None
        if self.reranker_model and not (hint is not None and hint.reranker is False):
            reranker = Reranker(
                type="cross-encoder",
                model=self.reranker_model,
                max_candidates=RERANK_MAX_CANDIDATES,
            )

        if present:
            confidence = intent.confidence * (0.5 + 0.5 * represented / present)
        else:
            confidence = intent.confidence * 0.5

        return QueryPlan(
            strategy=choose_strategy(len(vector_sources), len(structured_sources)),
            vector_sources=vector_sources,
            structured_sources=structured_sources,
            reranker=reranker,
            fusion=fusion,
            max_refinement_cycles=self.max_refinement_cycles,
            confidence=max(0.0, min(1.0, confidence)),
            query_text=intent.query_text,
            reference_tool=intent.reference_tool,
            semantic_variants=list(intent.semantic_variants),
        )
