"""
Search pipeline: Intent Extractor -> Query Planner -> Query Executor.

``initialize_pipeline`` builds the production wiring from settings and stores
it as a process-wide singleton; ``get_search_pipeline`` returns it (or None
before startup). Every dependency is optional: without an LLM key the
detectors and planner run rules-only, and if the embedding model cannot be
loaded vector search is skipped and only structured sources are queried.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from toolfinder.core.config import Settings, get_settings
from toolfinder.core.logging import get_logger, set_stage
from toolfinder.core.metrics import (
    record_search_outcome,
    record_stage_latency,
    update_embedding_cache_size,
)
from toolfinder.core.tracing import get_tracer, set_span_attribute
from toolfinder.services.capabilities import DocumentStore, EmbeddingCapability, VectorStore
from toolfinder.services.embedding.cache import EmbeddingCache
from toolfinder.services.embedding.reranker import CrossEncoderReranker
from toolfinder.services.embedding.service import CachedEmbedder, SentenceTransformerEmbedder
from toolfinder.services.execution.executor import QueryExecutor
from toolfinder.services.execution.schema import ExecutionStats, QueryExecutorOutput
from toolfinder.services.extraction.signals import ExtractionSignals
from toolfinder.services.intent.extractor import IntentExtractor
from toolfinder.services.intent.schema import IntentState
from toolfinder.services.llm.client import get_llm_client
from toolfinder.services.planning.planner import QueryPlanner, minimal_plan
from toolfinder.services.planning.schema import QueryPlan
from toolfinder.services.stores.document import JsonDocumentStore
from toolfinder.services.stores.qdrant import QdrantVectorStore
from toolfinder.services.stores.vector import build_from_catalog

logger = get_logger(__name__)


@dataclass
class PipelineResult:
    intent: IntentState
    signals: ExtractionSignals
    plan: QueryPlan
    output: QueryExecutorOutput


class SearchPipeline:
    """Wires extraction, planning and execution for one query at a time."""

    def __init__(
        self,
        extractor: IntentExtractor,
        planner: QueryPlanner,
        executor: QueryExecutor,
        embedding_cache: Optional[EmbeddingCache] = None,
        document_store: Optional[DocumentStore] = None,
        vector_store: Optional[VectorStore] = None,
    ):
        self.extractor = extractor
        self.planner = planner
        self.executor = executor
        self.embedding_cache = embedding_cache
        self.document_store = document_store
        self.vector_store = vector_store

    @classmethod
    def from_components(
        cls,
        embedder: Optional[EmbeddingCapability],
        llm,
        document_store: Optional[DocumentStore],
        vector_store: Optional[VectorStore],
        settings: Optional[Settings] = None,
        reranker=None,
        embedding_cache: Optional[EmbeddingCache] = None,
    ) -> "SearchPipeline":
        settings = settings or get_settings()
        extractor = IntentExtractor(
            embedder=embedder,
            llm=llm,
            document_store=document_store,
            catalog_refresh_seconds=settings.catalog_refresh_seconds,
        )
        planner = QueryPlanner(
            llm=llm,
            enable_llm_hints=settings.enable_llm_planning,
            max_refinement_cycles=settings.max_refinement_cycles,
            reranker_model=settings.reranker_model if reranker is not None else None,
        )
        executor = QueryExecutor(
            embedder=embedder,
            vector_store=vector_store,
            document_store=document_store,
            planner=planner,
            reranker=reranker,
            timeout_seconds=settings.search_timeout_seconds,
        )
        return cls(
            extractor,
            planner,
            executor,
            embedding_cache=embedding_cache,
            document_store=document_store,
            vector_store=vector_store,
        )

    async def run(self, query: str) -> PipelineResult:
        tracer = get_tracer()
        with tracer.start_as_current_span("search.pipeline"):
            start = time.time()
            intent, signals = await self.extractor.extract(query)

            if intent.is_empty():
                # Nothing to search for: minimal plan, nothing executed.
                plan = minimal_plan("")
                output = QueryExecutorOutput.empty(ExecutionStats(fusion_method=plan.fusion))
            else:
                plan = await self.planner.plan(intent)
                output = await self.executor.run(intent, plan)

            set_stage(None)
            elapsed = time.time() - start
            record_stage_latency("total", elapsed)
            record_search_outcome(len(output.candidates), output.confidence, intent.query_text)
            set_span_attribute("search.result_count", len(output.candidates))
            set_span_attribute("search.terminal_state", output.execution_stats.terminal_state)
            logger.info(
                "search_completed",
                query=intent.query_text,
                results_count=len(output.candidates),
                confidence=output.confidence,
                strategy=plan.strategy,
                refinement_cycles=output.execution_stats.refinement_cycles,
                expansion_cycles=output.execution_stats.expansion_cycles,
                terminal_state=output.execution_stats.terminal_state,
                latency_ms=int(elapsed * 1000),
            )
            return PipelineResult(intent=intent, signals=signals, plan=plan, output=output)

    async def search(self, query: str) -> QueryExecutorOutput:
        result = await self.run(query)
        return result.output

    def cleanup_cache(self) -> int:
        """Drop expired embedding cache entries; returns how many were removed."""
        if self.embedding_cache is None:
            return 0
        removed = self.embedding_cache.cleanup()
        update_embedding_cache_size(len(self.embedding_cache))
        return removed

    async def close(self) -> None:
        close = getattr(self.vector_store, "close", None)
        if close is not None:
            await close()


# Global singleton instance
_search_pipeline: Optional[SearchPipeline] = None


def get_search_pipeline() -> Optional[SearchPipeline]:
    """Global pipeline, or None if ``initialize_pipeline`` has not run."""
    return _search_pipeline


def set_search_pipeline(pipeline: Optional[SearchPipeline]) -> None:
    global _search_pipeline
    _search_pipeline = pipeline


async def initialize_pipeline(settings: Optional[Settings] = None) -> SearchPipeline:
    """
    Build the production pipeline from settings and install it globally.

    - embeddings: SentenceTransformer wrapped by the embedding cache
    - LLM: the HTTP client, only when an API key is configured
    - documents: the JSON catalog at CATALOG_PATH
    - vectors: Qdrant when QDRANT_URL is set, else FAISS indexes built from the catalog
    - reranker: a cross-encoder when RERANKER_MODEL is set
    """
    settings = settings or get_settings()

    cache = EmbeddingCache(
        ttl_seconds=settings.embedding_cache_ttl_seconds,
        max_size=settings.embedding_cache_max_size,
        enabled=settings.embedding_cache_enabled,
    )
    model = SentenceTransformerEmbedder(settings.embedding_model_name)
    embedder: Optional[EmbeddingCapability] = None
    if await asyncio.to_thread(model.load_model):
        embedder = CachedEmbedder(model, cache, settings.embedding_model_name)
    else:
        logger.warning(
            "pipeline_embeddings_unavailable",
            message="Embedding model not loaded. Vector search and semantic detectors are disabled.",
        )

    llm = None
    if settings.llm_api_key:
        llm = get_llm_client()
    else:
        logger.info(
            "pipeline_llm_disabled",
            message="LLM_API_KEY not set. Intent extraction and planning run rules-only.",
        )

    document_store = JsonDocumentStore(catalog_path=settings.catalog_path)
    document_store.load()

    vector_store: Optional[VectorStore] = None
    if settings.qdrant_url:
        vector_store = QdrantVectorStore(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            timeout_seconds=settings.search_timeout_seconds,
        )
    elif embedder is not None:
        vector_store = await build_from_catalog(await document_store.get_all("tools"), embedder)

    reranker = CrossEncoderReranker(settings.reranker_model) if settings.reranker_model else None

    pipeline = SearchPipeline.from_components(
        embedder=embedder,
        llm=llm,
        document_store=document_store,
        vector_store=vector_store,
        settings=settings,
        reranker=reranker,
        embedding_cache=cache,
    )
    set_search_pipeline(pipeline)
    logger.info(
        "pipeline_initialized",
        embeddings=embedder is not None,
        llm=llm is not None,
        vector_store=type(vector_store).__name__ if vector_store else None,
        reranker=settings.reranker_model,
    )
    return pipeline
