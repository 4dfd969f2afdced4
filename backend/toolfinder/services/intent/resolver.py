"""Merge fuzzy and NER tool-name signals into one ranked list."""
from typing import Dict, List, Sequence

from toolfinder.services.extraction.signals import FuzzyMatch

NER_CONFIDENCE = 0.9
FUZZY_ADMIT_ABOVE = 0.5
MAX_RESOLVED = 5


def resolve(fuzzy_matches: Sequence[FuzzyMatch], ner_entities: Sequence[str]) -> List[str]:
    """
    Resolve tool names mentioned in a query.

    NER names score NER_CONFIDENCE; fuzzy matches score ``1 - min(score, 1)``
    and are admitted only above FUZZY_ADMIT_ABOVE. Names are merged
    case-insensitively keeping the highest confidence and the first-seen
    spelling. Returns at most MAX_RESOLVED names, best first, ties in
    insertion order (NER before fuzzy).
    """
    spelling: Dict[str, str] = {}
    confidence: Dict[str, float] = {}

    def offer(name: str, conf: float) -> None:
        key = name.strip().lower()
        if not key:
            return
        if key not in spelling:
            spelling[key] = name.strip()
            confidence[key] = conf
        elif conf > confidence[key]:
            confidence[key] = conf

    for entity in ner_entities:
        offer(entity, NER_CONFIDENCE)
    for match in fuzzy_matches:
        conf = 1.0 - min(match.score, 1.0)
        if conf > FUZZY_ADMIT_ABOVE:
            offer(match.name, conf)

    # dicts keep insertion order and sorted() is stable
    ranked = sorted(confidence, key=lambda key: -confidence[key])
    return [spelling[key] for key in ranked[:MAX_RESOLVED]]
