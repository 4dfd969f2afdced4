"""
Intent relaxation strategies for the refinement loop.

``relax_intent`` drops the single narrowest constraint still present;
``expand_intent`` broadens the vocabulary slots with related values and
drops any price constraint. Both return a new, re-validated IntentState.
"""
from typing import Dict, List, Tuple

from toolfinder.services.intent.schema import IntentState

# Order in which constraints are given up, narrowest first.
RELAX_ORDER = ("price", "functionality", "interface", "deployment", "category")

RELATED_VALUES: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "functionality": {
        "Code Generation": ("Code Completion",),
        "Code Completion": ("Code Generation",),
        "AI Chat": ("AI Assistant", "Chat Interface"),
        "AI Assistant": ("AI Chat",),
        "Chat Interface": ("AI Chat",),
        "Debugging": ("Refactoring",),
        "Refactoring": ("Debugging",),
        "Local Inference": ("Model Management",),
        "App Generation": ("UI Prototyping",),
        "UI Prototyping": ("App Generation",),
    },
    "interface": {
        "IDE": ("IDE Extension", "Desktop"),
        "IDE Extension": ("IDE",),
        "Desktop": ("IDE",),
        "CLI": ("API",),
        "API": ("CLI",),
    },
    "deployment": {
        "Local": ("Self-Hosted",),
        "Self-Hosted": ("Local",),
    },
}


def _with_related(slot: str, values: List[str]) -> List[str]:
    expanded = list(values)
    for value in values:
        for related in RELATED_VALUES.get(slot, {}).get(value, ()):
            if related not in expanded:
                expanded.append(related)
    return expanded


def relax_intent(intent: IntentState) -> IntentState:
    """Drop the narrowest remaining constraint; unchanged copy when none is left."""
    for slot in RELAX_ORDER:
        if slot == "price" and (intent.price_range is not None or intent.price_comparison is not None):
            return intent.evolve(price_range=None, price_comparison=None)
        if slot == "category" and intent.category:
            return intent.evolve(category=None)
        if slot in ("functionality", "interface", "deployment") and getattr(intent, slot):
            return intent.evolve(**{slot: []})
    return intent.evolve()


def expand_intent(intent: IntentState) -> IntentState:
    """Add related vocabulary values to every list slot and drop price constraints."""
    return intent.evolve(
        functionality=_with_related("functionality", intent.functionality),
        interface=_with_related("interface", intent.interface),
        deployment=_with_related("deployment", intent.deployment),
        price_range=None,
        price_comparison=None,
    )
