"""
Zero-shot slot classification over pre-filtered candidates.

For every slot the LLM picks one label from the semantic candidates. A
case-insensitive match scores LLM_CONFIDENCE; anything else (unknown label,
LLM error) falls back to the top semantic candidate at FALLBACK_CONFIDENCE.
Slots are classified concurrently and independently.
"""
import asyncio
from typing import Dict, List, Optional

from toolfinder.core.logging import get_logger
from toolfinder.core.metrics import record_llm_error
from toolfinder.services.capabilities import LLMCapability
from toolfinder.services.extraction.signals import ScoredValue, fail_soft

logger = get_logger(__name__)

LLM_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.5

CLASSIFY_PROMPT = """Classify the following query into one of these categories: {labels}

Query: "{query}"

Respond with only the category name that best matches the query."""


class ZeroShotClassifier:
    def __init__(self, llm: Optional[LLMCapability] = None):
        self.llm = llm

    async def _classify_slot(
        self, query: str, slot: str, candidates: List[ScoredValue]
    ) -> List[ScoredValue]:
        if not candidates:
            return []
        fallback = [ScoredValue(value=candidates[0].value, score=FALLBACK_CONFIDENCE)]
        if self.llm is None:
            return fallback

        labels = ", ".join(c.value for c in candidates)
        try:
            answer = await self.llm.invoke(
                CLASSIFY_PROMPT.format(labels=labels, query=query), agent="zero_shot"
            )
        except Exception as exc:
            record_llm_error("zero_shot", type(exc).__name__)
            logger.warning(
                "zero_shot_llm_failed",
                slot=slot,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return fallback

        picked = answer.strip().strip(".\"'").lower()
        for candidate in candidates:
            if candidate.value.lower() == picked:
                return [ScoredValue(value=candidate.value, score=LLM_CONFIDENCE)]
        return fallback

    @fail_soft("zero_shot", {})
    async def analyze(
        self, query: str, semantic_candidates: Dict[str, List[ScoredValue]]
    ) -> Dict[str, List[ScoredValue]]:
        slots = list(semantic_candidates)
        results = await asyncio.gather(
            *(self._classify_slot(query, slot, semantic_candidates[slot]) for slot in slots)
        )
        return dict(zip(slots, results))
