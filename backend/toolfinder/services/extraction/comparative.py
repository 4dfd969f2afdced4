"""
Comparative intent detection.

Three regex families are tried in order (direct, difference, similarity);
the first hit wins. When none match, the query is compared semantically
against a handful of comparative exemplar phrases.
"""
import re
from typing import List, Optional, Tuple

from toolfinder.services.capabilities import EmbeddingCapability
from toolfinder.services.embedding.service import cosine_scores
from toolfinder.services.extraction.signals import ComparativeSignal, fail_soft

PATTERN_FAMILIES: List[Tuple[str, "re.Pattern[str]", float]] = [
    ("direct", re.compile(r"\b(compare|vs|versus|or)\b", re.IGNORECASE), 0.9),
    (
        "difference",
        re.compile(r"\b(difference|different from|instead of|alternatives?)\b", re.IGNORECASE),
        0.8,
    ),
    ("similarity", re.compile(r"\b(similar|like|same as|replacement for)\b", re.IGNORECASE), 0.7),
]

COMPARATIVE_EXEMPLARS = (
    "compare tools",
    "alternative to",
    "vs",
    "instead of",
    "similar to",
    "better than",
    "replacement for",
)

SEMANTIC_THRESHOLD = 0.7
SEMANTIC_DISCOUNT = 0.8


def match_pattern(query: str) -> Optional[ComparativeSignal]:
    for family, pattern, confidence in PATTERN_FAMILIES:
        if pattern.search(query):
            return ComparativeSignal(flag=True, confidence=confidence, pattern=family)
    return None


class ComparativeDetector:
    def __init__(self, embedder: Optional[EmbeddingCapability] = None):
        self.embedder = embedder

    @fail_soft("comparative", ComparativeSignal())
    async def analyze(self, query: str) -> ComparativeSignal:
        matched = match_pattern(query)
        if matched is not None:
            return matched
        if self.embedder is None:
            return ComparativeSignal()

        query_vector = await self.embedder.embed(query)
        exemplar_vectors = await self.embedder.embed_batch(list(COMPARATIVE_EXEMPLARS))
        best = float(cosine_scores(query_vector, exemplar_vectors).max())
        if best > SEMANTIC_THRESHOLD:
            return ComparativeSignal(
                flag=True,
                confidence=min(1.0, best * SEMANTIC_DISCOUNT),
                pattern="semantic",
            )
        return ComparativeSignal()
