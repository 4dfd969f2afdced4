"""
Tests for plan execution and the refinement loop.

Vector search is stubbed per collection; structured queries run against the
bundled catalog.
"""
import time

import pytest

from toolfinder.services.execution.executor import QueryExecutor, structured_score
from toolfinder.services.execution.quality import QualityThresholds
from toolfinder.services.intent.schema import IntentState
from toolfinder.services.planning.planner import QueryPlanner
from toolfinder.services.planning.schema import (
    QueryPlan,
    Reranker,
    StructuredFilter,
    StructuredSource,
    VectorSource,
)

from conftest import HashEmbedder, StubVectorStore, make_hit

CLI_FREE_FILTERS = [
    StructuredFilter(field="interface", operator="in", value=["CLI"]),
    StructuredFilter(field="pricingModel", operator="in", value=["Free"]),
]


def vector_plan(*collections, fusion="none", **kwargs):
    return QueryPlan(
        strategy="vector-only" if len(collections) == 1 else "multi-vector",
        vector_sources=[VectorSource(collection=c, top_k=10) for c in collections],
        fusion=fusion,
        query_text=kwargs.pop("query_text", "free cli"),
        **kwargs,
    )


def diverse_hits(scores):
    return [
        make_hit(f"tool-{i}", score, categories=[f"Category {i}"])
        for i, score in enumerate(scores)
    ]


class RecordingEmbedder(HashEmbedder):
    def __init__(self):
        super().__init__()
        self.texts = []

    async def embed(self, text):
        self.texts.append(text)
        return await super().embed(text)


class ReversingReranker:
    def __init__(self, fail=False):
        self.fail = fail

    async def rerank(self, query, texts):
        if self.fail:
            raise RuntimeError("cross-encoder unavailable")
        return [i / len(texts) for i in range(len(texts))]


class ConstantReranker:
    def __init__(self, score, count=None):
        self.score = score
        self.count = count

    async def rerank(self, query, texts):
        return [self.score] * (len(texts) if self.count is None else self.count)


class TestStructuredScore:
    @pytest.mark.parametrize(
        "doc,expected",
        [
            ({"score": 3}, 0.75),
            ({"score": 0}, 0.0),
            ({"score": -2}, 0.0),
            ({"score": "high"}, 0.5),
            ({}, 0.5),
        ],
    )
    def test_mapping(self, doc, expected):
        assert structured_score(doc) == pytest.approx(expected)


class TestExecute:
    @pytest.mark.asyncio
    async def test_hybrid_plan(self, document_store):
        store = StubVectorStore({"tools": [make_hit("aider", 0.9, categories=["AI"]), make_hit("cursor", 0.5)]})
        executor = QueryExecutor(HashEmbedder(), store, document_store)
        plan = QueryPlan(
            strategy="hybrid",
            vector_sources=[VectorSource(collection="tools", top_k=10)],
            structured_sources=[StructuredSource(filters=CLI_FREE_FILTERS, limit=10)],
            fusion="weighted_sum",
            query_text="free cli",
        )

        output = await executor.execute(plan)

        assert [c.id for c in output.candidates][:1] == ["aider"]
        assert {c.id for c in output.candidates} == {"aider", "cursor", "tabby", "ollama"}
        top = output.candidates[0]
        assert top.score == pytest.approx(1.0)
        assert top.source == "fusion"
        assert top.provenance.filters_applied == [
            "interface in ['CLI']",
            "pricingModel in ['Free']",
        ]
        stats = output.execution_stats
        assert (stats.vector_queries_executed, stats.structured_queries_executed) == (1, 1)
        assert stats.failed_sources == 0
        assert stats.fusion_method == "weighted_sum"
        assert 0.0 < output.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_metadata_only_plan(self, document_store):
        executor = QueryExecutor(None, None, document_store)
        plan = QueryPlan(
            strategy="metadata-only",
            structured_sources=[StructuredSource(filters=CLI_FREE_FILTERS, limit=2)],
        )
        output = await executor.execute(plan)
        assert [c.id for c in output.candidates] == ["aider", "tabby"]
        assert all(c.source == "mongodb" and c.score == 0.5 for c in output.candidates)

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_source(self):
        store = StubVectorStore({"tools": diverse_hits([0.9])}, delay=1.0)
        executor = QueryExecutor(HashEmbedder(), store, None, timeout_seconds=0.05)

        output = await executor.execute(vector_plan("tools"))

        assert output.candidates == []
        assert output.confidence == 0.0
        assert output.execution_stats.failed_sources == 1
        assert output.execution_stats.vector_queries_executed == 0

    @pytest.mark.asyncio
    async def test_every_source_failing_yields_empty_output(self, document_store):
        class BrokenStore:
            async def query(self, source, filters, limit):
                raise ConnectionError("catalog offline")

        store = StubVectorStore({"tools": ConnectionError("qdrant down")})
        executor = QueryExecutor(HashEmbedder(), store, BrokenStore())
        plan = QueryPlan(
            strategy="hybrid",
            vector_sources=[VectorSource(collection="tools")],
            structured_sources=[StructuredSource(filters=CLI_FREE_FILTERS)],
            fusion="weighted_sum",
            query_text="free cli",
        )

        output = await executor.execute(plan)

        assert output.candidates == []
        assert output.confidence == 0.0
        assert output.execution_stats.failed_sources == 2

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_sources(self):
        store = StubVectorStore({"tools": RuntimeError("boom"), "functionality": diverse_hits([0.7, 0.6])})
        executor = QueryExecutor(HashEmbedder(), store, None)

        output = await executor.execute(vector_plan("tools", "functionality", fusion="weighted_sum"))

        assert [c.id for c in output.candidates] == ["tool-0", "tool-1"]
        assert output.execution_stats.failed_sources == 1
        assert output.execution_stats.vector_queries_executed == 1

    @pytest.mark.asyncio
    async def test_missing_embedder_fails_vector_sources(self):
        executor = QueryExecutor(None, StubVectorStore(), None)
        output = await executor.execute(vector_plan("tools"))
        assert output.execution_stats.failed_sources == 1

    @pytest.mark.asyncio
    async def test_query_text_per_vector_source(self):
        embedder = RecordingEmbedder()
        plan = QueryPlan(
            strategy="multi-vector",
            vector_sources=[
                VectorSource(collection="tools", query_vector_source="reference_tool_embedding"),
                VectorSource(collection="functionality", query_vector_source="semantic_variant"),
                VectorSource(collection="usecases"),
            ],
            fusion="rrf",
            query_text="Cursor alternative but cheaper",
            reference_tool="Cursor",
            semantic_variants=["cheap ai code editor"],
        )
        await QueryExecutor(embedder, StubVectorStore(), None).execute(plan)
        assert sorted(embedder.texts) == sorted(
            ["Cursor", "cheap ai code editor", "Cursor alternative but cheaper"]
        )

    @pytest.mark.asyncio
    async def test_vector_name_and_top_k_forwarded(self):
        store = StubVectorStore()
        plan = QueryPlan(
            vector_sources=[
                VectorSource(collection="functionality", embedding_type="entities.functionality", top_k=12)
            ],
            query_text="debugging",
        )
        await QueryExecutor(HashEmbedder(), store, None).execute(plan)
        assert store.queries == [
            {"collection": "functionality", "top_k": 12, "vector_name": "entities.functionality"}
        ]


class TestRerank:
    def plan(self, max_candidates):
        return vector_plan(
            "tools", reranker=Reranker(model="cross-encoder", max_candidates=max_candidates)
        )

    @pytest.mark.asyncio
    async def test_reranks_head_only(self):
        store = StubVectorStore({"tools": diverse_hits([0.9, 0.8, 0.7])})
        executor = QueryExecutor(HashEmbedder(), store, None, reranker=ReversingReranker())

        output = await executor.execute(self.plan(2))

        assert [c.id for c in output.candidates] == ["tool-1", "tool-0", "tool-2"]
        assert [c.score for c in output.candidates] == pytest.approx([0.9, 0.8, 0.7])

    @pytest.mark.asyncio
    async def test_low_reranker_scores_keep_list_descending(self):
        store = StubVectorStore({"tools": diverse_hits([0.9, 0.8, 0.7, 0.6])})
        executor = QueryExecutor(HashEmbedder(), store, None, reranker=ConstantReranker(0.1))

        output = await executor.execute(self.plan(2))

        scores = [c.score for c in output.candidates]
        assert scores == sorted(scores, reverse=True)
        assert [c.id for c in output.candidates] == ["tool-0", "tool-1", "tool-2", "tool-3"]

    @pytest.mark.asyncio
    async def test_short_reranker_answer_keeps_fused_order(self):
        store = StubVectorStore({"tools": diverse_hits([0.9, 0.8, 0.7])})
        executor = QueryExecutor(HashEmbedder(), store, None, reranker=ConstantReranker(0.9, count=1))

        output = await executor.execute(self.plan(3))
        assert [c.id for c in output.candidates] == ["tool-0", "tool-1", "tool-2"]

    @pytest.mark.asyncio
    async def test_reranker_failure_keeps_fused_order(self):
        store = StubVectorStore({"tools": diverse_hits([0.9, 0.8, 0.7])})
        executor = QueryExecutor(HashEmbedder(), store, None, reranker=ReversingReranker(fail=True))

        output = await executor.execute(self.plan(2))
        assert [c.id for c in output.candidates] == ["tool-0", "tool-1", "tool-2"]

    @pytest.mark.asyncio
    async def test_no_reranker_in_plan(self):
        store = StubVectorStore({"tools": diverse_hits([0.9, 0.8])})
        executor = QueryExecutor(HashEmbedder(), store, None, reranker=ReversingReranker())
        output = await executor.execute(vector_plan("tools"))
        assert [c.id for c in output.candidates] == ["tool-0", "tool-1"]


class TestRefinementLoop:
    INTENT = IntentState(
        query_text="code editor",
        category="Code Editor",
        interface=["IDE"],
        price_comparison={"operator": "less_than", "value": 30},
        confidence=0.8,
    )

    def executor(self, store, **kwargs):
        return QueryExecutor(HashEmbedder(), store, None, planner=QueryPlanner(), **kwargs)

    @pytest.mark.asyncio
    async def test_accepted_without_refinement(self):
        store = StubVectorStore({"tools": diverse_hits([0.9, 0.85, 0.8, 0.75])})
        executor = self.executor(store)
        plan = await executor.planner.plan(self.INTENT)

        output = await executor.run(self.INTENT, plan)

        stats = output.execution_stats
        assert stats.terminal_state == "accepted"
        assert (stats.refinement_cycles, stats.expansion_cycles) == (0, 0)

    @pytest.mark.asyncio
    async def test_low_quality_exhausts_budget(self):
        store = StubVectorStore({"tools": diverse_hits([0.1, 0.1, 0.1, 0.1, 0.1])})
        executor = self.executor(store)
        plan = await executor.planner.plan(self.INTENT)
        assert plan.max_refinement_cycles == 2

        output = await executor.run(self.INTENT, plan)

        stats = output.execution_stats
        assert stats.terminal_state == "exhausted_budget"
        assert stats.refinement_cycles == 2
        assert stats.expansion_cycles == 0
        assert len(output.candidates) == 5
        # every cycle re-plans with a wider top_k
        tools_top_k = [q["top_k"] for q in store.queries if q["collection"] == "tools"]
        assert tools_top_k[0] < tools_top_k[1] < tools_top_k[2]

    @pytest.mark.asyncio
    async def test_per_kind_cap_applies_under_larger_budget(self):
        store = StubVectorStore({"tools": diverse_hits([0.1, 0.1, 0.1, 0.1])})
        executor = self.executor(store)
        plan = (await executor.planner.plan(self.INTENT)).model_copy(update={"max_refinement_cycles": 5})

        output = await executor.run(self.INTENT, plan)
        assert output.execution_stats.refinement_cycles == 2
        assert output.execution_stats.terminal_state == "exhausted_budget"

    @pytest.mark.asyncio
    async def test_refinement_shares_one_deadline(self):
        store = StubVectorStore({"tools": diverse_hits([0.1, 0.1, 0.1, 0.1, 0.1])}, delay=0.3)
        executor = self.executor(store, timeout_seconds=0.5)
        plan = await executor.planner.plan(self.INTENT)
        assert plan.max_refinement_cycles == 2

        start = time.monotonic()
        output = await executor.run(self.INTENT, plan)
        elapsed = time.monotonic() - start

        stats = output.execution_stats
        assert stats.terminal_state == "exhausted_budget"
        assert stats.refinement_cycles + stats.expansion_cycles == 1
        assert elapsed < 0.8

    @pytest.mark.asyncio
    async def test_empty_results_expand(self):
        store = StubVectorStore()
        executor = self.executor(store)
        plan = await executor.planner.plan(self.INTENT)

        output = await executor.run(self.INTENT, plan)

        stats = output.execution_stats
        assert stats.expansion_cycles == 2
        assert stats.refinement_cycles == 0
        assert stats.terminal_state == "exhausted_budget"
        assert output.candidates == []
        assert output.confidence == 0.0

    @pytest.mark.asyncio
    async def test_zero_budget_stops_immediately(self):
        store = StubVectorStore({"tools": diverse_hits([0.1, 0.1, 0.1])})
        executor = self.executor(store)
        plan = vector_plan("tools", max_refinement_cycles=0)

        output = await executor.run(self.INTENT, plan)
        assert output.execution_stats.terminal_state == "exhausted_budget"
        assert len(store.queries) == 1

    @pytest.mark.asyncio
    async def test_custom_thresholds(self):
        store = StubVectorStore({"tools": diverse_hits([0.1])})
        executor = self.executor(
            store, thresholds=QualityThresholds(min_results=1, min_relevance=0.0, medium_confidence=0.0)
        )
        output = await executor.run(self.INTENT, vector_plan("tools", max_refinement_cycles=2))
        assert output.execution_stats.terminal_state == "accepted"
