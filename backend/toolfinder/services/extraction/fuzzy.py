"""
Fuzzy tool-name matching.

Query terms are matched against catalog tool names with SymSpell's
Levenshtein implementation (max edit distance 2). Scores are distances, so
lower is better:

- substring either way: 0.1
- edit distance d <= 2: 0.1 + 0.1 * d
- anything above THRESHOLD is rejected
"""
import time
from typing import Callable, Dict, List, Optional, Tuple

from symspellpy.editdistance import DistanceAlgorithm, EditDistance

from toolfinder.core.logging import get_logger
from toolfinder.services.capabilities import DocumentStore
from toolfinder.services.extraction.signals import FuzzyMatch, fail_soft

logger = get_logger(__name__)

MAX_EDIT_DISTANCE = 2
THRESHOLD = 0.4
MIN_TERM_LENGTH = 3
MATCHES_PER_TERM = 2
SUBSTRING_SCORE = 0.1


def _tool_id(doc: Dict) -> Optional[str]:
    value = doc.get("_id", doc.get("id"))
    return str(value) if value is not None else None


class FuzzyNameMatcher:
    """Matches query terms to catalog names; the name list is cached with a TTL."""

    def __init__(
        self,
        document_store: Optional[DocumentStore],
        refresh_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.document_store = document_store
        self.refresh_seconds = refresh_seconds
        self._clock = clock
        self._catalog: List[Tuple[str, str]] = []
        self._loaded_at: Optional[float] = None
        self._distance = EditDistance(DistanceAlgorithm.LEVENSHTEIN)

    async def catalog(self) -> List[Tuple[str, str]]:
        """(tool_id, name) pairs, reloaded once the refresh TTL has passed."""
        now = self._clock()
        stale = self._loaded_at is None or now - self._loaded_at >= self.refresh_seconds
        if stale and self.document_store is not None:
            docs = await self.document_store.get_all("tools")
            catalog = []
            for doc in docs:
                tool_id = _tool_id(doc)
                name = doc.get("name")
                if tool_id and isinstance(name, str) and name.strip():
                    catalog.append((tool_id, name.strip()))
            self._catalog = catalog
            self._loaded_at = now
            logger.debug("fuzzy_catalog_loaded", tool_count=len(catalog))
        return self._catalog

    def score(self, term: str, name: str) -> Optional[float]:
        """Distance score of ``term`` against ``name``, or None when rejected."""
        term = term.lower()
        lowered = name.lower()
        if term in lowered or (len(lowered) >= MIN_TERM_LENGTH and lowered in term):
            return SUBSTRING_SCORE

        best: Optional[int] = None
        targets = {lowered, lowered.replace(" ", "")}
        targets.update(w for w in lowered.split() if len(w) >= MIN_TERM_LENGTH)
        for target in targets:
            d = self._distance.compare(term, target, MAX_EDIT_DISTANCE)
            if d >= 0 and (best is None or d < best):
                best = d
        if best is None:
            return None
        score = SUBSTRING_SCORE + 0.1 * best
        return score if score <= THRESHOLD else None

    def match_terms(self, query: str, catalog: List[Tuple[str, str]]) -> List[FuzzyMatch]:
        terms = [t.strip(".,!?;:\"'()") for t in query.split()]
        terms = [t for t in terms if len(t) >= MIN_TERM_LENGTH]

        matches: List[FuzzyMatch] = []
        seen_ids = set()
        for term in terms:
            scored = []
            for tool_id, name in catalog:
                s = self.score(term, name)
                if s is not None:
                    scored.append((s, tool_id, name))
            scored.sort(key=lambda item: item[0])
            for s, tool_id, name in scored[:MATCHES_PER_TERM]:
                if tool_id in seen_ids:
                    continue
                seen_ids.add(tool_id)
                matches.append(FuzzyMatch(name=name, score=round(s, 4), tool_id=tool_id))

        matches.sort(key=lambda m: m.score)
        return matches

    @fail_soft("fuzzy", [])
    async def analyze(self, query: str) -> List[FuzzyMatch]:
        catalog = await self.catalog()
        if not catalog:
            return []
        return self.match_terms(query, catalog)
