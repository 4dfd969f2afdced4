"""
Query execution.

``execute`` runs one plan: every vector and structured source is queried
concurrently under a single deadline, the result blocks are normalized and
fused, and the optional reranker reorders the head of the list. It never
raises; failed or timed-out sources simply contribute nothing.

``run`` wraps ``execute`` in the refinement loop: while the quality gate
asks for refinement or expansion and budget remains, the intent is relaxed
or expanded, re-planned with a wider top_k, and executed again. All cycles
share the executor timeout as one deadline.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

from toolfinder.core.logging import get_logger, set_stage
from toolfinder.core.metrics import (
    record_fusion,
    record_refinement_cycle,
    record_source_query,
    record_stage_latency,
)
from toolfinder.core.tracing import get_tracer, record_exception, set_span_attribute
from toolfinder.services.capabilities import DocumentStore, EmbeddingCapability, VectorStore
from toolfinder.services.execution.fusion import SourceBlock, fuse
from toolfinder.services.execution.quality import (
    DEFAULT_THRESHOLDS,
    QualityThresholds,
    assess,
    result_confidence,
)
from toolfinder.services.execution.schema import (
    Candidate,
    ExecutionStats,
    Provenance,
    QueryExecutorOutput,
    candidate_metadata,
)
from toolfinder.services.intent.schema import IntentState
from toolfinder.services.planning.relaxation import expand_intent, relax_intent
from toolfinder.services.planning.schema import QueryPlan, StructuredSource, VectorSource

logger = get_logger(__name__)

STRUCTURED_WEIGHT = 0.5
STRUCTURED_DEFAULT_SCORE = 0.5
MAX_CYCLES_PER_KIND = 2


def _clamp(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def structured_score(doc: Dict[str, Any]) -> float:
    """Native text scores are unbounded; s / (1 + s) maps them into [0, 1)."""
    raw = doc.get("score")
    if raw is None:
        return STRUCTURED_DEFAULT_SCORE
    try:
        s = max(0.0, float(raw))
    except (TypeError, ValueError):
        return STRUCTURED_DEFAULT_SCORE
    return s / (1.0 + s)


def describe_filter(field: str, operator: str, value: Any) -> str:
    return f"{field} {operator} {value}"


class QueryExecutor:
    """Runs QueryPlans against the vector and document stores."""

    def __init__(
        self,
        embedder: Optional[EmbeddingCapability],
        vector_store: Optional[VectorStore],
        document_store: Optional[DocumentStore],
        planner=None,
        reranker=None,
        timeout_seconds: float = 8.0,
        thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.document_store = document_store
        self.planner = planner
        self.reranker = reranker
        self.timeout_seconds = timeout_seconds
        self.thresholds = thresholds

    def _vector_text(self, plan: QueryPlan, source: VectorSource) -> str:
        if source.query_vector_source == "reference_tool_embedding" and plan.reference_tool:
            return plan.reference_tool
        if source.query_vector_source == "semantic_variant" and plan.semantic_variants:
            return plan.semantic_variants[0]
        return plan.query_text

    async def _query_vector(self, plan: QueryPlan, source: VectorSource) -> List[Candidate]:
        if self.embedder is None or self.vector_store is None:
            raise RuntimeError("vector search unavailable")
        text = self._vector_text(plan, source)
        if not text.strip():
            return []
        vector = await self.embedder.embed(text)
        hits = await self.vector_store.query(
            source.collection,
            vector,
            source.top_k,
            vector_name=source.embedding_type,
        )
        return [
            Candidate(
                id=str(hit["id"]),
                source="qdrant",
                score=_clamp(hit.get("score")),
                metadata=candidate_metadata(hit.get("payload") or {}),
                provenance=Provenance(
                    collection=source.collection,
                    query_vector_source=source.query_vector_source,
                ),
            )
            for hit in hits
            if hit.get("id") is not None
        ]

    async def _query_structured(self, source: StructuredSource) -> List[Candidate]:
        if self.document_store is None:
            raise RuntimeError("document store unavailable")
        filters = [f.model_dump() for f in source.filters]
        docs = await self.document_store.query(source.source, filters, source.limit)
        applied = [describe_filter(f.field, f.operator, f.value) for f in source.filters]
        candidates = []
        for doc in docs:
            doc_id = doc.get("_id", doc.get("id"))
            if doc_id is None:
                continue
            candidates.append(
                Candidate(
                    id=str(doc_id),
                    source="mongodb",
                    score=structured_score(doc),
                    metadata=candidate_metadata(doc),
                    provenance=Provenance(collection=source.source, filters_applied=list(applied)),
                )
            )
        return candidates

    async def _fan_out(
        self, plan: QueryPlan, timeout_seconds: float
    ) -> Tuple[List[SourceBlock], int, int, int]:
        """Query every source under the deadline; returns (blocks, vector_ok, structured_ok, failed)."""
        jobs: List[Tuple[str, str, int, float, asyncio.Task]] = []
        for i, source in enumerate(plan.vector_sources):
            task = asyncio.create_task(self._query_vector(plan, source))
            jobs.append(("vector", source.collection, i, source.weight, task))
        offset = len(plan.vector_sources)
        for j, source in enumerate(plan.structured_sources):
            task = asyncio.create_task(self._query_structured(source))
            jobs.append(("structured", source.source, offset + j, STRUCTURED_WEIGHT, task))

        if not jobs:
            return [], 0, 0, 0

        _, pending = await asyncio.wait([job[4] for job in jobs], timeout=timeout_seconds)
        for task in pending:
            task.cancel()
        if pending:
            # Let cancellations settle so no task outlives the request.
            await asyncio.gather(*pending, return_exceptions=True)

        blocks: List[SourceBlock] = []
        vector_ok = structured_ok = failed = 0
        for source_type, name, priority, weight, task in jobs:
            if task in pending:
                failed += 1
                record_source_query(source_type, "timeout")
                logger.warning(
                    "source_query_timeout",
                    source_type=source_type,
                    source=name,
                    timeout_seconds=round(timeout_seconds, 3),
                )
                continue
            exc = task.exception()
            if exc is not None:
                failed += 1
                record_source_query(source_type, "error")
                record_exception(exc)
                logger.warning(
                    "source_query_failed",
                    source_type=source_type,
                    source=name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue
            record_source_query(source_type, "success")
            if source_type == "vector":
                vector_ok += 1
            else:
                structured_ok += 1
            blocks.append(SourceBlock(task.result(), weight=weight, priority=priority))
        return blocks, vector_ok, structured_ok, failed

    async def _rerank(self, plan: QueryPlan, candidates: List[Candidate]) -> List[Candidate]:
        if plan.reranker is None or self.reranker is None or not candidates:
            return candidates
        limit = plan.reranker.max_candidates or len(candidates)
        head, tail = candidates[:limit], candidates[limit:]
        texts = [
            " ".join(filter(None, [c.metadata.name, c.metadata.description])) for c in head
        ]
        try:
            scores = await self.reranker.rerank(plan.query_text, texts)
        except Exception as exc:
            logger.warning(
                "rerank_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return candidates
        if len(scores) != len(head):
            logger.warning("rerank_score_count_mismatch", expected=len(head), received=len(scores))
            return candidates
        # The cross-encoder only reorders the head. Its fused scores are handed
        # out again in the new order, so the whole list stays descending on
        # one scale.
        order = sorted(range(len(head)), key=lambda i: (-_clamp(scores[i]), head[i].id))
        slots = sorted((c.score for c in head), reverse=True)
        reranked = [
            head[i].model_copy(update={"score": slot}) for i, slot in zip(order, slots)
        ]
        return reranked + tail

    async def execute(
        self, plan: QueryPlan, timeout_seconds: Optional[float] = None
    ) -> QueryExecutorOutput:
        """Run one plan; ``timeout_seconds`` defaults to the executor timeout."""
        if timeout_seconds is None:
            timeout_seconds = self.timeout_seconds
        tracer = get_tracer()
        with tracer.start_as_current_span("execute.plan"):
            set_stage("execution")
            start = time.time()
            blocks, vector_ok, structured_ok, failed = await self._fan_out(
                plan, max(0.0, timeout_seconds)
            )

            candidates = fuse(blocks, plan.fusion)
            record_fusion(plan.fusion)
            candidates = await self._rerank(plan, candidates)

            elapsed = time.time() - start
            record_stage_latency("execution", elapsed)
            stats = ExecutionStats(
                vector_queries_executed=vector_ok,
                structured_queries_executed=structured_ok,
                failed_sources=failed,
                fusion_method=plan.fusion,
                latency_ms=int(elapsed * 1000),
            )
            set_span_attribute("execute.candidates", len(candidates))
            set_span_attribute("execute.failed_sources", failed)
            if not candidates:
                if failed and failed == plan.source_count():
                    logger.error("all_sources_failed", source_count=failed)
                return QueryExecutorOutput.empty(stats)
            return QueryExecutorOutput(
                candidates=candidates,
                execution_stats=stats,
                confidence=result_confidence(candidates, self.thresholds.min_results),
            )

    async def run(self, intent: Optional[IntentState], plan: QueryPlan) -> QueryExecutorOutput:
        """Execute ``plan`` and refine or expand until accepted or out of budget.

        Every cycle shares one deadline of ``timeout_seconds`` measured from the
        first execution.
        """
        start = time.time()
        deadline = time.monotonic() + self.timeout_seconds
        output = await self.execute(plan, timeout_seconds=self.timeout_seconds)
        budget = plan.max_refinement_cycles
        refinements = expansions = 0
        widen = 0
        current = intent
        terminal = "accepted"

        while True:
            quality = assess(output.candidates, self.thresholds)
            if quality.decision == "accept":
                terminal = "accepted"
                break
            kind = quality.decision
            exhausted = (
                refinements + expansions >= budget
                or (kind == "refine" and refinements >= MAX_CYCLES_PER_KIND)
                or (kind == "expand" and expansions >= MAX_CYCLES_PER_KIND)
                or current is None
                or self.planner is None
            )
            if not exhausted and deadline - time.monotonic() <= 0:
                logger.warning(
                    "refinement_deadline_reached",
                    kind=kind,
                    timeout_seconds=self.timeout_seconds,
                )
                exhausted = True
            if exhausted:
                terminal = "exhausted_budget"
                break

            current = relax_intent(current) if kind == "refine" else expand_intent(current)
            widen += 1
            record_refinement_cycle(kind)
            logger.info(
                "refinement_cycle",
                kind=kind,
                widen=widen,
                result_count=quality.result_count,
                average_relevance=quality.average_relevance,
                confidence=quality.confidence,
            )
            next_plan = await self.planner.plan(current, widen=widen, llm_hints=False)
            output = await self.execute(next_plan, timeout_seconds=deadline - time.monotonic())
            if kind == "refine":
                refinements += 1
            else:
                expansions += 1

        stats = output.execution_stats.model_copy(
            update={
                "latency_ms": int((time.time() - start) * 1000),
                "refinement_cycles": refinements,
                "expansion_cycles": expansions,
                "terminal_state": terminal,
            }
        )
        return output.model_copy(update={"execution_stats": stats})
