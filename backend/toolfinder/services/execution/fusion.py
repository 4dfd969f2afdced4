"""
Result fusion.

Each source yields one ranked block of candidates. Blocks are merged by:

- rrf: sum of 1 / (k + rank + 1) over blocks (0-based rank), divided by the max
- weighted_sum: sum of weight * score over blocks, divided by the max
- concat: blocks in plan order, scores untouched, first occurrence kept
- none: the single block as-is

A single non-empty block is always returned normalized, whatever the method.
Ties break by source priority (block order) and then by id. Duplicates keep
the max score and the union of ``filters_applied``.
"""
from typing import Dict, List, Sequence, Tuple

from toolfinder.services.execution.schema import Candidate

RRF_K = 60


class SourceBlock:
    """Ranked candidates from one source, with its fusion weight."""

    def __init__(self, candidates: Sequence[Candidate], weight: float = 1.0, priority: int = 0):
        self.candidates = list(candidates)
        self.weight = weight
        self.priority = priority

    def __len__(self) -> int:
        return len(self.candidates)


def normalize(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Dedupe, clamp scores to [0, 1] and sort by score desc (ties by id)."""
    return _sorted(dedupe(candidates, clamp=True), {})


def dedupe(candidates: Sequence[Candidate], clamp: bool = False) -> List[Candidate]:
    """Merge duplicate ids: max score wins, ``filters_applied`` are unioned."""
    merged: Dict[str, Candidate] = {}
    for candidate in candidates:
        score = min(1.0, max(0.0, candidate.score)) if clamp else candidate.score
        existing = merged.get(candidate.id)
        if existing is None:
            merged[candidate.id] = candidate.model_copy(
                update={
                    "score": score,
                    "provenance": candidate.provenance.model_copy(
                        update={"filters_applied": list(candidate.provenance.filters_applied)}
                    ),
                },
                deep=False,
            )
            continue
        applied = existing.provenance.filters_applied
        for item in candidate.provenance.filters_applied:
            if item not in applied:
                applied.append(item)
        if score > existing.score:
            existing.score = score
    return list(merged.values())


def _sorted(candidates: List[Candidate], priority: Dict[str, int]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (-c.score, priority.get(c.id, 0), c.id))


def _fuse_scores(
    blocks: Sequence[SourceBlock], method: str
) -> Tuple[Dict[str, float], Dict[str, Candidate], Dict[str, int]]:
    scores: Dict[str, float] = {}
    first_seen: Dict[str, Candidate] = {}
    priority: Dict[str, int] = {}
    for block in blocks:
        for rank, candidate in enumerate(block.candidates):
            if method == "rrf":
                contribution = 1.0 / (RRF_K + rank + 1)
            else:
                contribution = block.weight * min(1.0, max(0.0, candidate.score))
            scores[candidate.id] = scores.get(candidate.id, 0.0) + contribution
            if candidate.id not in first_seen:
                first_seen[candidate.id] = candidate
                priority[candidate.id] = block.priority
    return scores, first_seen, priority


def fuse(blocks: Sequence[SourceBlock], method: str) -> List[Candidate]:
    non_empty = [b for b in blocks if len(b)]
    if not non_empty:
        return []
    if len(non_empty) == 1:
        return normalize(non_empty[0].candidates)
    if method == "none":
        return normalize([c for b in non_empty for c in b.candidates])

    if method == "concat":
        ordered: List[Candidate] = []
        for block in non_empty:
            ordered.extend(block.candidates)
        # dedupe keeps first-occurrence position
        return dedupe(ordered, clamp=True)

    scores, first_seen, priority = _fuse_scores(non_empty, method)
    top = max(scores.values())
    all_candidates = [c for b in non_empty for c in b.candidates]
    merged = {c.id: c for c in dedupe(all_candidates)}
    fused: List[Candidate] = []
    for candidate_id, score in scores.items():
        base = merged[candidate_id]
        fused.append(
            base.model_copy(
                update={
                    "score": score / top if top > 0 else 0.0,
                    "source": "fusion",
                    "metadata": first_seen[candidate_id].metadata,
                }
            )
        )
    return _sorted(fused, priority)
