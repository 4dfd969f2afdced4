"""
End-to-end pipeline tests over the bundled catalog with stubbed vector search.
"""
import pytest

from toolfinder.core.config import Settings
from toolfinder.services.embedding.cache import EmbeddingCache
from toolfinder.services.pipeline import SearchPipeline

from conftest import HashEmbedder, StaticLLM, StubVectorStore, make_hit

TOOLS_HITS = [
    make_hit("aider", 0.91, name="Aider", categories=["AI"]),
    make_hit("ollama", 0.84, name="Ollama", categories=["Local LLM"]),
]


class ClosableStore(StubVectorStore):
    closed = False

    async def close(self):
        self.closed = True


def build(document_store, hits=None, llm=None, settings=None, cache=None):
    store = ClosableStore(hits if hits is not None else {"tools": TOOLS_HITS})
    pipeline = SearchPipeline.from_components(
        embedder=HashEmbedder(),
        llm=llm,
        document_store=document_store,
        vector_store=store,
        settings=settings or Settings(),
        embedding_cache=cache,
    )
    return pipeline, store


@pytest.mark.asyncio
async def test_free_cli_search(document_store):
    pipeline, store = build(document_store)

    result = await pipeline.run("free cli")

    assert result.intent.interface == ["CLI"]
    assert result.intent.pricing_model == ["Free"]
    assert result.plan.strategy == "hybrid"
    ids = [c.id for c in result.output.candidates]
    assert ids[0] == "aider"
    assert set(ids) == {"aider", "ollama", "tabby"}
    assert result.output.execution_stats.terminal_state == "accepted"
    assert result.output.execution_stats.structured_queries_executed == 1
    assert 0.0 < result.output.confidence <= 1.0
    assert {q["collection"] for q in store.queries} == {"tools", "functionality"}


@pytest.mark.asyncio
async def test_cheaper_alternative_search(document_store):
    hits = {"tools": [make_hit("windsurf", 0.88, categories=["AI"]), make_hit("cursor", 0.95)]}
    pipeline, _ = build(document_store, hits=hits, settings=Settings(max_refinement_cycles=0))

    result = await pipeline.run("Cursor alternative but cheaper")

    assert result.intent.reference_tool == "Cursor"
    filters = [
        (f.field, f.operator, f.value)
        for source in result.plan.structured_sources
        for f in source.filters
    ]
    assert ("pricing.price", "lt", 20.0) in filters
    structured_ids = {
        c.id for c in result.output.candidates if any("pricing.price" in f for f in c.provenance.filters_applied)
    }
    # every structurally matched tool has a monthly tier under $20
    assert structured_ids
    assert "cursor" not in structured_ids


@pytest.mark.asyncio
async def test_empty_query_executes_nothing(document_store):
    pipeline, store = build(document_store)

    result = await pipeline.run("   ")

    assert result.output.candidates == []
    assert result.output.confidence == 0.0
    assert result.output.execution_stats.terminal_state == "accepted"
    assert result.plan.strategy == "vector-only"
    assert store.queries == []


@pytest.mark.asyncio
async def test_search_returns_output(document_store):
    pipeline, _ = build(document_store)
    output = await pipeline.search("free cli")
    assert output.candidates


@pytest.mark.asyncio
async def test_llm_failures_do_not_fail_the_search(document_store):
    pipeline, _ = build(document_store, llm=StaticLLM({}))

    result = await pipeline.run("free cli")

    assert result.output.candidates
    assert result.intent.pricing_model == ["Free"]


def first_offered_label(prompt):
    labels = prompt.split("categories: ", 1)[1].split("\n", 1)[0]
    return labels.split(", ")[0]


@pytest.mark.asyncio
async def test_zero_shot_picks_do_not_become_filters(document_store):
    llm = StaticLLM({"zero_shot": first_offered_label})
    pipeline, _ = build(document_store, llm=llm, settings=Settings(max_refinement_cycles=0))

    result = await pipeline.run("free cli")

    assert "zero_shot" in llm.agents_called()
    filters = [
        (f.field, f.operator, f.value)
        for source in result.plan.structured_sources
        for f in source.filters
    ]
    assert sorted(filters) == [("interface", "in", ["CLI"]), ("pricingModel", "in", ["Free"])]
    assert result.intent.category is None
    assert any(c.provenance.filters_applied for c in result.output.candidates)


@pytest.mark.asyncio
async def test_vector_outage_falls_back_to_structured(document_store):
    hits = {"tools": ConnectionError("qdrant down"), "functionality": ConnectionError("qdrant down")}
    pipeline, _ = build(document_store, hits=hits, settings=Settings(max_refinement_cycles=0))

    result = await pipeline.run("free cli")

    assert {c.id for c in result.output.candidates} == {"tabby", "aider", "ollama"}
    assert result.output.execution_stats.failed_sources == 2


@pytest.mark.asyncio
async def test_refinement_limit_comes_from_settings(document_store):
    pipeline, _ = build(document_store, settings=Settings(max_refinement_cycles=0))
    result = await pipeline.run("free cli")
    assert result.plan.max_refinement_cycles == 0


@pytest.mark.asyncio
async def test_cache_cleanup_and_close(document_store):
    now = [0.0]
    cache = EmbeddingCache(ttl_seconds=10, clock=lambda: now[0])
    cache.set("a", [1.0])
    cache.set("b", [0.5])
    pipeline, store = build(document_store, cache=cache)

    now[0] = 11.0
    assert pipeline.cleanup_cache() == 2
    assert len(cache) == 0

    await pipeline.close()
    assert store.closed


def test_cleanup_without_cache(document_store):
    pipeline, _ = build(document_store)
    assert pipeline.cleanup_cache() == 0
