"""
Optional cross-encoder reranker.

Enabled only when RERANKER_MODEL is configured. Scores (query, candidate
text) pairs with a SentenceTransformers CrossEncoder and squashes the raw
logits through a sigmoid so reranked scores stay in [0, 1].
"""
import asyncio
import math
from threading import Lock
from typing import List, Optional, Sequence

from sentence_transformers import CrossEncoder

from toolfinder.core.logging import get_logger

logger = get_logger(__name__)


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


class CrossEncoderReranker:
    """Rerank capability: ``rerank(query, texts) -> scores`` in [0, 1]."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        self.model: Optional[CrossEncoder] = None
        self._load_lock = Lock()

    def _ensure_model(self) -> CrossEncoder:
        if self.model is None:
            with self._load_lock:
                if self.model is None:
                    logger.info("reranker_model_loading", model_name=self.model_name)
                    self.model = CrossEncoder(self.model_name)
        return self.model

    def _predict(self, query: str, texts: List[str]) -> List[float]:
        model = self._ensure_model()
        raw = model.predict([(query, text) for text in texts], show_progress_bar=False)
        return [_sigmoid(float(s)) for s in raw]

    async def rerank(self, query: str, texts: Sequence[str]) -> List[float]:
        if not texts:
            return []
        return await asyncio.to_thread(self._predict, query, list(texts))
