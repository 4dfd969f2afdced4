"""
Result quality gate.

Decides whether a fused result set is accepted, or whether the intent should
be expanded (too few or too uniform results) or refined (too many results,
low relevance or low confidence).
"""
from dataclasses import dataclass
from typing import Sequence

from toolfinder.services.execution.schema import Candidate, QualityAssessment


@dataclass(frozen=True)
class QualityThresholds:
    min_results: int = 3
    max_results: int = 100
    min_relevance: float = 0.6
    min_category_diversity: float = 0.3
    medium_confidence: float = 0.5


DEFAULT_THRESHOLDS = QualityThresholds()

CONFIDENCE_TOP_N = 5


def result_confidence(candidates: Sequence[Candidate], min_results: int = 3) -> float:
    """Mean of the top scores, damped while there are fewer than ``min_results``."""
    if not candidates:
        return 0.0
    top = sorted((c.score for c in candidates), reverse=True)[:CONFIDENCE_TOP_N]
    mean = sum(top) / len(top)
    return max(0.0, min(1.0, mean * min(1.0, len(candidates) / max(1, min_results))))


def category_diversity(candidates: Sequence[Candidate]) -> float:
    if not candidates:
        return 0.0
    categories = {c.metadata.category for c in candidates if c.metadata.category}
    return len(categories) / len(candidates)


def assess(
    candidates: Sequence[Candidate], thresholds: QualityThresholds = DEFAULT_THRESHOLDS
) -> QualityAssessment:
    count = len(candidates)
    if count == 0:
        return QualityAssessment(decision="expand")

    relevance = sum(c.score for c in candidates) / count
    diversity = category_diversity(candidates)
    confidence = result_confidence(candidates, thresholds.min_results)

    if count < thresholds.min_results:
        decision = "expand"
    elif count > thresholds.max_results:
        decision = "refine"
    elif relevance < thresholds.min_relevance:
        decision = "refine"
    elif diversity < thresholds.min_category_diversity:
        decision = "expand"
    elif confidence < thresholds.medium_confidence:
        decision = "refine"
    else:
        decision = "accept"

    return QualityAssessment(
        result_count=count,
        average_relevance=round(relevance, 4),
        category_diversity=round(diversity, 4),
        confidence=round(confidence, 4),
        decision=decision,
    )
