"""
Semantic pre-filter over the controlled vocabularies.

Narrows each classified slot to its TOP_K most similar vocabulary values so
the zero-shot classifier only chooses among plausible labels. Vocabulary
embeddings are requested in one batch per slot and land in the embedding
cache after the first query.
"""
from typing import Dict, List, Optional

import numpy as np

from toolfinder.services import vocabulary
from toolfinder.services.capabilities import EmbeddingCapability
from toolfinder.services.embedding.service import cosine_scores
from toolfinder.services.extraction.signals import ScoredValue, fail_soft

TOP_K = 5
CLASSIFIED_SLOTS = ("categories", "functionality", "interface", "deployment", "user_types")


class SemanticPrefilter:
    def __init__(self, embedder: Optional[EmbeddingCapability] = None):
        self.embedder = embedder

    @fail_soft("prefilter", {})
    async def analyze(self, query: str) -> Dict[str, List[ScoredValue]]:
        if self.embedder is None:
            return {}
        query_vector = await self.embedder.embed(query)
        candidates: Dict[str, List[ScoredValue]] = {}
        for slot in CLASSIFIED_SLOTS:
            values = list(vocabulary.vocabulary_for(slot))
            vectors = await self.embedder.embed_batch(values)
            scores = cosine_scores(query_vector, vectors)
            # Stable sort keeps vocabulary order on equal scores.
            order = np.argsort(-scores, kind="stable")[:TOP_K]
            candidates[slot] = [
                ScoredValue(value=values[i], score=round(float(scores[i]), 4)) for i in order
            ]
        return candidates
