"""
Reference tool extraction for comparative queries.

"Cursor alternative but cheaper" names Cursor as the tool being compared
against. Syntactic patterns are tried first; only when none match is the LLM
asked, and it may answer with the literal ``none``.
"""
import re
from typing import List, Optional, Tuple

from toolfinder.core.logging import get_logger
from toolfinder.services.capabilities import LLMCapability
from toolfinder.services.extraction.signals import ReferenceSignal, fail_soft

logger = get_logger(__name__)

MAX_NAME_WORDS = 3

STOP_WORDS = {
    "but", "with", "for", "that", "and", "under", "cheaper", "which", "who",
    "to", "in", "on", "at", "by", "from", "is", "are", "or", "than", "less",
    "more", "better", "faster", "without", "please", "below", "over", "above",
    "per", "i", "we", "it", "a", "an", "the", "some", "any", "free", "best",
    "good", "cheap", "open", "source", "paid", "tool", "tools", "app",
    "apps", "software", "alternative", "alternatives",
}

_NAME = r"([\w.+#-]+(?:\s+[\w.+#-]+){0,%d})" % (MAX_NAME_WORDS + 3)
_LEFT_NAME = r"([\w.+#-]+(?:\s+[\w.+#-]+){0,%d})" % (MAX_NAME_WORDS - 1)

# (pattern, comparison mode, name side)
REFERENCE_PATTERNS: List[Tuple["re.Pattern[str]", str, str]] = [
    (re.compile(r"\balternatives?\s+to\s+" + _NAME, re.IGNORECASE), "alternative_to", "right"),
    (re.compile(r"\b(?:vs\.?|versus)\s+" + _NAME, re.IGNORECASE), "vs", "right"),
    (re.compile(r"\binstead\s+of\s+" + _NAME, re.IGNORECASE), "alternative_to", "right"),
    (re.compile(r"\breplacement\s+for\s+" + _NAME, re.IGNORECASE), "alternative_to", "right"),
    (re.compile(r"\bsimilar\s+to\s+" + _NAME, re.IGNORECASE), "similar_to", "right"),
    (re.compile(r"\blike\s+" + _NAME, re.IGNORECASE), "similar_to", "right"),
    (re.compile(_LEFT_NAME + r"\s+alternatives?\b", re.IGNORECASE), "alternative_to", "left"),
]

REFERENCE_PROMPT = """Which software tool is this search query comparing against or looking for an alternative to?
Answer with the tool name only, or the single word none if there is no such tool.

Query: {query}
Answer:"""


def _clean_words(raw: str) -> List[str]:
    return [w.strip(".,!?;:\"'()") for w in raw.split() if w.strip(".,!?;:\"'()")]


def _take_right(raw: str) -> Optional[str]:
    """Leading words up to the first stop word, at most MAX_NAME_WORDS."""
    name: List[str] = []
    for word in _clean_words(raw):
        if word.lower() in STOP_WORDS or len(name) == MAX_NAME_WORDS:
            break
        name.append(word)
    return " ".join(name) or None


def _take_left(raw: str) -> Optional[str]:
    """Trailing words back to the nearest stop word, at most MAX_NAME_WORDS."""
    name: List[str] = []
    for word in reversed(_clean_words(raw)):
        if word.lower() in STOP_WORDS or len(name) == MAX_NAME_WORDS:
            break
        name.insert(0, word)
    return " ".join(name) or None


def match_reference(query: str) -> Optional[ReferenceSignal]:
    """First syntactic pattern that yields a non-empty name, if any."""
    for pattern, mode, side in REFERENCE_PATTERNS:
        for match in pattern.finditer(query):
            name = _take_right(match.group(1)) if side == "right" else _take_left(match.group(1))
            if name:
                return ReferenceSignal(tool=name, mode=mode, source="pattern")
    return None


def parse_llm_answer(answer: str) -> Optional[str]:
    words = _clean_words(answer.strip().splitlines()[0] if answer.strip() else "")
    name = " ".join(words[:MAX_NAME_WORDS])
    if not name or name.lower() in {"none", "null", "n/a", "no"}:
        return None
    return name


class ReferenceExtractor:
    def __init__(self, llm: Optional[LLMCapability] = None):
        self.llm = llm

    @fail_soft("reference", ReferenceSignal())
    async def analyze(self, query: str, comparative: bool = True) -> ReferenceSignal:
        if not comparative:
            return ReferenceSignal()
        matched = match_reference(query)
        if matched is not None:
            return matched
        if self.llm is None:
            return ReferenceSignal()

        answer = await self.llm.invoke(REFERENCE_PROMPT.format(query=query), agent="reference")
        name = parse_llm_answer(answer)
        logger.debug("reference_llm_answer", query=query, reference_tool=name)
        if name is None:
            return ReferenceSignal()
        return ReferenceSignal(tool=name, mode="alternative_to", source="llm")
