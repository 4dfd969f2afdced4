"""
Controlled vocabularies for every enumerable slot of an intent or plan.

Backend filters match these strings verbatim, so anything outside a slot's
vocabulary is dropped rather than coerced to a guessed value. Synonyms are
applied before membership checks.
"""
from typing import Dict, Iterable, List, Optional, Tuple

CONTROLLED_VOCABULARIES: Dict[str, Tuple[str, ...]] = {
    "categories": (
        "AI",
        "Machine Learning",
        "Development",
        "Productivity",
        "Analytics",
        "Chatbot",
        "Code Editor",
        "IDE",
        "App Builder",
        "No-Code",
        "Cloud IDE",
        "Desktop App",
        "Local LLM",
        "Privacy",
        "Open Source",
        "Collaboration",
        "Deployment",
        "Full-Stack",
        "Rapid Prototyping",
        "GUI",
        "Offline",
        "Text Generation",
        "Code Generation",
        "Code Completion",
    ),
    "interface": ("Web", "Desktop", "Mobile", "CLI", "API", "IDE", "IDE Extension"),
    "functionality": (
        "Code Generation",
        "Code Completion",
        "Debugging",
        "Refactoring",
        "Documentation",
        "AI Chat",
        "AI Assistant",
        "Text Generation",
        "Translation",
        "Image Generation",
        "Video Generation",
        "Deployment",
        "Database Setup",
        "Authentication",
        "Collaboration",
        "UI Prototyping",
        "Model Management",
        "Local Inference",
        "API Server",
        "Model Customization",
        "Chat Interface",
        "Document RAG",
        "App Generation",
        "AWS Support",
    ),
    "deployment": ("Cloud", "Local", "Self-Hosted"),
    "industries": (
        "Technology",
        "Software Development",
        "Startups",
        "Education",
        "Research",
        "Remote Work",
        "Innovation",
        "Small Business",
        "Enterprise",
        "Consulting",
        "Privacy-Focused",
        "Edge Computing",
        "Business",
        "Non-Profit",
        "Venture Capital",
        "Incubators",
        "Content Creation",
    ),
    "user_types": (
        "Developers",
        "Software Engineers",
        "Full-Stack Developers",
        "AI Engineers",
        "Researchers",
        "Privacy Advocates",
        "UX Designers",
        "Entrepreneurs",
        "Product Managers",
        "Non-Technical Founders",
        "Rapid Prototypers",
        "Business Owners",
        "Startup Teams",
        "Students",
        "Teachers",
        "Remote Teams",
        "Non-Technical Users",
        "Freelancers",
        "Consultants",
        "General Users",
        "Professionals",
    ),
    "pricing_models": ("Free", "Freemium", "Paid"),
    "billing_periods": ("Monthly", "Yearly"),
}

# Keys are lower-cased; values must be members of the slot's vocabulary.
SYNONYMS: Dict[str, Dict[str, str]] = {
    "categories": {
        "artificial intelligence": "AI",
        "ml": "Machine Learning",
        "dev tools": "Development",
        "developer tools": "Development",
        "development platform": "Development",
        "code editors": "Code Editor",
        "no code": "No-Code",
        "nocode": "No-Code",
        "opensource": "Open Source",
    },
    "interface": {
        "web app": "Web",
        "browser": "Web",
        "command line": "CLI",
        "terminal": "CLI",
        "rest api": "API",
        "sdk": "API",
        "desktop app": "Desktop",
        "mobile app": "Mobile",
        "plugin": "IDE Extension",
        "extension": "IDE Extension",
    },
    "functionality": {
        "database management": "Database Setup",
        "code completion": "Code Completion",
        "autocomplete": "Code Completion",
        "chat": "AI Chat",
        "rag": "Document RAG",
    },
    "deployment": {
        "on-premise": "Self-Hosted",
        "on-premises": "Self-Hosted",
        "on-prem": "Self-Hosted",
        "self hosted": "Self-Hosted",
        "remote": "Cloud",
        "saas": "Cloud",
        "hosted": "Cloud",
        "offline": "Local",
        "on-device": "Local",
    },
    "user_types": {
        "developer": "Developers",
        "devs": "Developers",
        "engineers": "Software Engineers",
        "student": "Students",
        "designers": "UX Designers",
        "founders": "Entrepreneurs",
    },
    "pricing_models": {
        "free tier": "Free",
        "open source": "Free",
        "premium": "Paid",
        "subscription": "Paid",
        "commercial": "Paid",
    },
    "billing_periods": {
        "month": "Monthly",
        "per month": "Monthly",
        "/mo": "Monthly",
        "year": "Yearly",
        "per year": "Yearly",
        "annual": "Yearly",
        "annually": "Yearly",
    },
}

# Aliases accepted for slot names, so callers may use camelCase wire names.
SLOT_ALIASES: Dict[str, str] = {
    "category": "categories",
    "userTypes": "user_types",
    "user_type": "user_types",
    "pricingModel": "pricing_models",
    "pricing_model": "pricing_models",
    "pricingModels": "pricing_models",
    "billingPeriod": "billing_periods",
    "billing_period": "billing_periods",
    "billingPeriods": "billing_periods",
    "industry": "industries",
}

_LOOKUP: Dict[str, Dict[str, str]] = {
    slot: {value.lower(): value for value in values}
    for slot, values in CONTROLLED_VOCABULARIES.items()
}


def canonical_slot(slot: str) -> str:
    return SLOT_ALIASES.get(slot, slot)


def vocabulary_for(slot: str) -> Tuple[str, ...]:
    """Closed value set for a slot (empty for unknown slots)."""
    return CONTROLLED_VOCABULARIES.get(canonical_slot(slot), ())


def normalize_value(slot: str, value) -> Optional[str]:
    """
    Map a raw value onto the slot's vocabulary.

    Exact (case-insensitive) members win, then the synonym map. Anything else
    returns None; the caller drops it.
    """
    if not isinstance(value, str):
        return None
    slot = canonical_slot(slot)
    key = " ".join(value.strip().split()).lower()
    if not key:
        return None
    members = _LOOKUP.get(slot)
    if members is None:
        return None
    if key in members:
        return members[key]
    return SYNONYMS.get(slot, {}).get(key)


def validate(slot: str, values: Iterable[str]) -> bool:
    """True when every value is already a verbatim vocabulary member."""
    allowed = vocabulary_for(slot)
    if not allowed:
        return False
    return all(isinstance(v, str) and v in allowed for v in values)


def filter_valid(slot: str, values: Optional[Iterable]) -> List[str]:
    """Normalize values, drop non-members and duplicates, keep first-seen order."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    result: List[str] = []
    for raw in values:
        normalized = normalize_value(slot, raw)
        if normalized is not None and normalized not in result:
            result.append(normalized)
    return result
