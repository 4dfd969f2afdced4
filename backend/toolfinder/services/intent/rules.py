"""
Deterministic, rule-based slot extraction.

Prices, billing periods, pricing models, deployment, category,
functionality, user types and constraints are read straight from the query
text. These rules need no model and always run; LLM structuring only fills
slots they leave empty.
"""
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from toolfinder.services import vocabulary

_NUM = r"\$?\s*(\d+(?:,\d{3})*(?:\.\d+)?)\s*(k)?\b\s*(?:\$|usd\b|dollars?\b|bucks\b)?"

# Order matters: ranges first, then the most specific operator phrases.
PRICE_RANGE_PATTERNS = [
    re.compile(r"\bbetween\s+" + _NUM + r"\s*(?:and|to|-)\s*" + _NUM, re.IGNORECASE),
    re.compile(r"\bfrom\s+" + _NUM + r"\s*(?:to|-)\s*" + _NUM, re.IGNORECASE),
]

PRICE_OPERATOR_PATTERNS: List[Tuple[str, "re.Pattern[str]"]] = [
    ("less_than_or_equal", re.compile(
        r"\b(?:up to|at most|no more than|not more than|maximum|max)\s+" + _NUM, re.IGNORECASE)),
    ("less_than", re.compile(
        r"\b(?:under|below|less than|cheaper than|lower than)\s+" + _NUM, re.IGNORECASE)),
    ("greater_than_or_equal", re.compile(
        r"\b(?:at least|minimum|min|starting at|no less than)\s+" + _NUM, re.IGNORECASE)),
    ("greater_than", re.compile(
        r"\b(?:over|above|more than|greater than)\s+" + _NUM, re.IGNORECASE)),
    ("around", re.compile(
        r"(?:\b(?:around|about|approximately|roughly)\s+|~\s*)" + _NUM, re.IGNORECASE)),
    ("equal_to", re.compile(
        r"\b(?:exactly|priced at|costs?|costing)\s+" + _NUM, re.IGNORECASE)),
]

BILLING_PATTERNS = [
    ("Monthly", re.compile(r"(?:\bper\s+month\b|\ba\s+month\b|/\s*mo(?:nth)?\b|\bmonthly\b|\bper\s+mo\b)", re.IGNORECASE)),
    ("Yearly", re.compile(r"(?:\bper\s+year\b|\ba\s+year\b|/\s*y(?:ea)?r\b|\byearly\b|\bannual(?:ly)?\b)", re.IGNORECASE)),
]

PRICING_MODEL_PATTERNS = [
    ("Free", re.compile(r"\bfree\b(?!\s*(?:trial|tier))", re.IGNORECASE)),
    ("Freemium", re.compile(r"\b(?:freemium|free\s+tier)\b", re.IGNORECASE)),
    ("Paid", re.compile(r"\b(?:paid|premium|subscription|commercial)\b", re.IGNORECASE)),
]

DEPLOYMENT_PATTERNS = [
    ("Self-Hosted", re.compile(r"\b(?:self[-\s]?hosted|on[-\s]?prem(?:ise|ises)?)\b", re.IGNORECASE)),
    ("Local", re.compile(r"\b(?:local(?:ly)?|offline|on[-\s]device|runs? on my machine)\b", re.IGNORECASE)),
    ("Cloud", re.compile(r"\b(?:cloud|saas|(?<!self-)(?<!self )hosted)\b", re.IGNORECASE)),
]

CHEAPER_RE = re.compile(r"\b(?:cheaper|less expensive|more affordable|lower[-\s]cost)\b", re.IGNORECASE)
EXPLORE_RE = re.compile(r"\b(?:explore|discover|browse|ideas|what are some|show me)\b", re.IGNORECASE)

CONSTRAINT_KEYWORDS = (
    "cheaper",
    "faster",
    "offline",
    "open source",
    "privacy",
    "private",
    "lightweight",
    "no signup",
    "no login",
    "simple",
    "easy to use",
    "beginner friendly",
    "self-hosted",
    "secure",
    "enterprise",
)


def _to_number(raw: str, thousands: Optional[str]) -> float:
    value = float(raw.replace(",", ""))
    return value * 1000 if thousands else value


def _phrase_re(phrase: str) -> "re.Pattern[str]":
    return re.compile(r"(?<![\w-])" + re.escape(phrase) + r"(?![\w-])", re.IGNORECASE)


def _vocabulary_phrases(slot: str) -> List[Tuple[str, str]]:
    """(phrase, canonical value) pairs for a slot, longest phrase first."""
    phrases = [(v.lower(), v) for v in vocabulary.vocabulary_for(slot)]
    phrases += list(vocabulary.SYNONYMS.get(vocabulary.canonical_slot(slot), {}).items())
    phrases.sort(key=lambda item: -len(item[0]))
    return phrases


_PHRASE_CACHE: Dict[str, List[Tuple["re.Pattern[str]", str, int]]] = {}


def _slot_matchers(slot: str) -> List[Tuple["re.Pattern[str]", str, int]]:
    if slot not in _PHRASE_CACHE:
        _PHRASE_CACHE[slot] = [
            (_phrase_re(phrase), value, len(phrase)) for phrase, value in _vocabulary_phrases(slot)
        ]
    return _PHRASE_CACHE[slot]


def match_vocabulary(slot: str, query: str) -> List[str]:
    """Vocabulary values whose phrase (or synonym) occurs in the query, longest first."""
    found: List[str] = []
    for pattern, value, _ in _slot_matchers(slot):
        if value not in found and pattern.search(query):
            found.append(value)
    return found


def extract_price(query: str) -> Dict[str, Any]:
    """
    Price constraint in the query.

    Returns ``{"price_range": {...}}``, ``{"price_comparison": {...}}`` or
    an empty dict. A billing period is attached when one is mentioned.
    """
    period = extract_billing_period(query)
    for pattern in PRICE_RANGE_PATTERNS:
        match = pattern.search(query)
        if match:
            low = _to_number(match.group(1), match.group(2))
            high = _to_number(match.group(3), match.group(4))
            if low > high:
                low, high = high, low
            return {"price_range": {"min": low, "max": high, "billing_period": period}}

    for operator, pattern in PRICE_OPERATOR_PATTERNS:
        match = pattern.search(query)
        if match:
            value = _to_number(match.group(1), match.group(2))
            return {
                "price_comparison": {
                    "operator": operator,
                    "value": value,
                    "billing_period": period,
                }
            }
    return {}


def extract_billing_period(query: str) -> Optional[str]:
    for period, pattern in BILLING_PATTERNS:
        if pattern.search(query):
            return period
    return None


def _keyword_values(patterns: Iterable[Tuple[str, "re.Pattern[str]"]], query: str) -> List[str]:
    return [value for value, pattern in patterns if pattern.search(query)]


def extract_category(query: str) -> Optional[str]:
    """Longest matching category phrase wins."""
    best: Optional[Tuple[int, str]] = None
    for pattern, value, length in _slot_matchers("categories"):
        if pattern.search(query) and (best is None or length > best[0]):
            best = (length, value)
    return best[1] if best else None


def extract_constraints(query: str) -> List[str]:
    lowered = query.lower()
    return [kw for kw in CONSTRAINT_KEYWORDS if _phrase_re(kw).search(lowered)]


def wants_cheaper(query: str) -> bool:
    return bool(CHEAPER_RE.search(query))


def primary_goal(query: str, comparative_pattern: Optional[str]) -> str:
    if comparative_pattern == "direct":
        return "compare"
    if EXPLORE_RE.search(query):
        return "explore"
    return "find"


def parse(query: str) -> Dict[str, Any]:
    """
    Run every deterministic rule over ``query``.

    Returns a dict of IntentState field values; slots with no match are
    omitted so that callers can tell "absent" from "empty".
    """
    result: Dict[str, Any] = {}
    if not query or not query.strip():
        return result

    result.update(extract_price(query))

    pricing_models = _keyword_values(PRICING_MODEL_PATTERNS, query)
    if pricing_models:
        result["pricing_model"] = pricing_models

    deployment = _keyword_values(DEPLOYMENT_PATTERNS, query)
    if deployment:
        result["deployment"] = deployment

    category = extract_category(query)
    if category:
        result["category"] = category

    for slot in ("functionality", "user_types"):
        values = match_vocabulary(slot, query)
        if values:
            result[slot] = values

    interfaces = [
        v for v in match_vocabulary("interface", query) if v in ("IDE", "IDE Extension")
    ]
    if interfaces:
        result["interface"] = interfaces

    constraints = extract_constraints(query)
    if constraints:
        result["constraints"] = constraints
    return result


def lowest_paid_price(tool: Dict[str, Any]) -> Optional[Tuple[float, Optional[str]]]:
    """Lowest positive (price, billing period) in a catalog document, if any."""
    best: Optional[Tuple[float, Optional[str]]] = None
    for entry in tool.get("pricing") or []:
        if not isinstance(entry, dict):
            continue
        try:
            price = float(entry.get("price"))
        except (TypeError, ValueError):
            continue
        if price > 0 and (best is None or price < best[0]):
            best = (price, vocabulary.normalize_value("billing_periods", entry.get("billingPeriod")))
    return best


def anchor_cheaper(reference_doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Price comparison for "cheaper than <reference>".

    The value is the reference tool's lowest paid price; without a catalog
    entry (or a paid tier) the value is None and no price filter follows.
    """
    anchor = lowest_paid_price(reference_doc) if reference_doc else None
    if anchor is None:
        return {"operator": "less_than", "value": None}
    price, period = anchor
    return {"operator": "less_than", "value": price, "billing_period": period}
