"""
Intent extraction.

Runs the signal detectors in two concurrent phases, resolves tool names,
applies the deterministic rules and (optionally) the LLM structuring agent,
and merges everything into one validated ``IntentState``.

Slot precedence, strongest first:
1. deterministic rules (prices, pricing model, vocabulary phrases)
2. detector signals (interfaces, reference tool)
3. LLM structuring output

Zero-shot picks only reach the structuring prompt as hints and never set a
slot themselves.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

from toolfinder.core.logging import get_logger, set_stage
from toolfinder.core.metrics import record_stage_latency
from toolfinder.core.tracing import get_tracer, set_span_attribute
from toolfinder.services.capabilities import DocumentStore, EmbeddingCapability, LLMCapability
from toolfinder.services.extraction.comparative import ComparativeDetector
from toolfinder.services.extraction.fuzzy import FuzzyNameMatcher
from toolfinder.services.extraction.interface import InterfaceDetector
from toolfinder.services.extraction.ner import NamedEntityExtractor
from toolfinder.services.extraction.prefilter import SemanticPrefilter
from toolfinder.services.extraction.reference import ReferenceExtractor
from toolfinder.services.extraction.signals import ExtractionSignals
from toolfinder.services.extraction.zero_shot import ZeroShotClassifier
from toolfinder.services.intent import rules
from toolfinder.services.intent.normalization import normalize_query
from toolfinder.services.intent.resolver import resolve
from toolfinder.services.intent.schema import IntentState, StructuredIntentOutput
from toolfinder.services.intent.structuring import StructuringAgent

logger = get_logger(__name__)

# Reference lookups accept near-exact fuzzy hits only.
_REFERENCE_FUZZY_MAX_SCORE = 0.2

RULES_CONFIDENCE = 0.8
SIGNALS_ONLY_CONFIDENCE = 0.5


class IntentExtractor:
    """Raw query text to ``(IntentState, ExtractionSignals)``."""

    def __init__(
        self,
        embedder: Optional[EmbeddingCapability] = None,
        llm: Optional[LLMCapability] = None,
        document_store: Optional[DocumentStore] = None,
        catalog_refresh_seconds: float = 300.0,
    ):
        self.document_store = document_store
        self.comparative = ComparativeDetector(embedder)
        self.interface = InterfaceDetector()
        self.prefilter = SemanticPrefilter(embedder)
        self.fuzzy = FuzzyNameMatcher(document_store, refresh_seconds=catalog_refresh_seconds)
        self.ner = NamedEntityExtractor(llm)
        self.reference = ReferenceExtractor(llm)
        self.zero_shot = ZeroShotClassifier(llm)
        self.structuring = StructuringAgent(llm)

    async def detect(self, query: str) -> ExtractionSignals:
        """Run all detectors; never raises."""
        comparative, interfaces, candidates, fuzzy_matches, entities = await asyncio.gather(
            self.comparative.analyze(query),
            self.interface.analyze(query),
            self.prefilter.analyze(query),
            self.fuzzy.analyze(query),
            self.ner.analyze(query),
        )
        reference, classification = await asyncio.gather(
            self.reference.analyze(query, comparative.flag),
            self.zero_shot.analyze(query, candidates),
        )
        return ExtractionSignals(
            comparative_flag=comparative.flag,
            comparative_confidence=comparative.confidence,
            comparative_pattern=comparative.pattern,
            interface_preferences=interfaces,
            reference_tool=reference.tool,
            comparison_mode=reference.mode,
            fuzzy_matches=fuzzy_matches,
            ner_entities=entities,
            resolved_tool_names=resolve(fuzzy_matches, entities),
            semantic_candidates=candidates,
            classification_scores=classification,
        )

    async def find_tool(self, name: str) -> Optional[Dict[str, Any]]:
        """Catalog document for a tool name (case-insensitive, then near-exact fuzzy)."""
        if self.document_store is None or not name:
            return None
        try:
            docs = await self.document_store.get_all("tools")
        except Exception as exc:
            logger.warning(
                "reference_lookup_failed",
                reference_tool=name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        wanted = name.strip().lower()
        for doc in docs:
            if str(doc.get("name", "")).strip().lower() == wanted:
                return doc

        best: Optional[Tuple[float, Dict[str, Any]]] = None
        for doc in docs:
            doc_name = doc.get("name")
            if not isinstance(doc_name, str):
                continue
            score = self.fuzzy.score(wanted, doc_name)
            if score is not None and score <= _REFERENCE_FUZZY_MAX_SCORE:
                if best is None or score < best[0]:
                    best = (score, doc)
        return best[1] if best else None

    async def extract(self, query: str) -> Tuple[IntentState, ExtractionSignals]:
        tracer = get_tracer()
        with tracer.start_as_current_span("intent.extract"):
            set_stage("intent")
            start = time.time()
            normalized = normalize_query(query)
            set_span_attribute("intent.query_length", len(normalized))

            if not normalized:
                record_stage_latency("intent", time.time() - start)
                return IntentState(query_text="", confidence=0.0), ExtractionSignals()

            signals = await self.detect(normalized)
            parsed = rules.parse(normalized)
            structured = await self.structuring.structure(normalized, signals)

            reference_doc = None
            reference_tool = signals.reference_tool
            if reference_tool is None and structured is not None and signals.comparative_flag:
                reference_tool = structured.reference_tool
            if reference_tool:
                reference_doc = await self.find_tool(reference_tool)
                if reference_doc is not None:
                    reference_tool = reference_doc.get("name", reference_tool)

            intent = self._merge(normalized, signals, parsed, structured, reference_tool, reference_doc)

            elapsed = time.time() - start
            record_stage_latency("intent", elapsed)
            set_span_attribute("intent.primary_goal", intent.primary_goal)
            set_span_attribute("intent.confidence", intent.confidence)
            logger.info(
                "intent_extracted",
                primary_goal=intent.primary_goal,
                category=intent.category,
                reference_tool=intent.reference_tool,
                comparative=signals.comparative_flag,
                used_llm=structured is not None,
                confidence=intent.confidence,
                latency_ms=int(elapsed * 1000),
            )
            return intent, signals

    def _merge(
        self,
        query: str,
        signals: ExtractionSignals,
        parsed: Dict[str, Any],
        structured: Optional[StructuredIntentOutput],
        reference_tool: Optional[str],
        reference_doc: Optional[Dict[str, Any]],
    ) -> IntentState:
        data: Dict[str, Any] = {}
        ruled = dict(parsed)

        # 3. LLM structuring fills whatever nothing stronger sets.
        if structured is not None:
            data.update(
                category=structured.category,
                interface=structured.interface,
                functionality=structured.functionality,
                deployment=structured.deployment,
                user_types=structured.user_type,
                pricing_model=structured.pricing_model,
                price_range=structured.price_range.model_dump() if structured.price_range else None,
                price_comparison=(
                    structured.price_comparison.model_dump() if structured.price_comparison else None
                ),
                semantic_variants=structured.semantic_variants[:3],
                constraints=structured.constraints,
            )
            if not signals.comparison_mode and structured.comparison_mode:
                data["comparison_mode"] = structured.comparison_mode

        # 2. Detector signals.
        if signals.interface_preferences:
            data["interface"] = list(signals.interface_preferences)
        if signals.comparison_mode:
            data["comparison_mode"] = signals.comparison_mode
        data["reference_tool"] = reference_tool

        # 1. Deterministic rules.
        if "interface" in ruled:
            data["interface"] = _union(data.get("interface"), ruled.pop("interface"))
        if "constraints" in ruled:
            data["constraints"] = _union(ruled.pop("constraints"), data.get("constraints"))
        if "price_range" in ruled or "price_comparison" in ruled:
            data["price_range"] = None
            data["price_comparison"] = None
        data.update(ruled)

        if (
            reference_tool
            and rules.wants_cheaper(query)
            and data.get("price_range") is None
            and data.get("price_comparison") is None
        ):
            data["price_comparison"] = rules.anchor_cheaper(reference_doc)

        data["primary_goal"] = rules.primary_goal(query, signals.comparative_pattern)
        data["query_text"] = query
        data["confidence"] = self._confidence(signals, parsed, structured)
        return IntentState.model_validate(data)

    @staticmethod
    def _confidence(
        signals: ExtractionSignals,
        parsed: Dict[str, Any],
        structured: Optional[StructuredIntentOutput],
    ) -> float:
        confidence = RULES_CONFIDENCE if parsed else SIGNALS_ONLY_CONFIDENCE
        if signals.comparative_flag:
            confidence = max(confidence, signals.comparative_confidence)
        if structured is not None:
            confidence = max(confidence, structured.confidence)
        return confidence


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _union(first: Any, second: Any) -> List[str]:
    merged: List[str] = []
    for value in _as_list(first) + _as_list(second):
        if value not in merged:
            merged.append(value)
    return merged
