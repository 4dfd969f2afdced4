"""
Unit tests for the controlled vocabularies.
"""
import pytest

from toolfinder.services import vocabulary
from toolfinder.services.intent.schema import IntentState


@pytest.mark.parametrize(
    "slot,raw,expected",
    [
        ("interface", "cli", "CLI"),
        ("interface", "command line", "CLI"),
        ("interface", "Terminal", "CLI"),
        ("deployment", "on-prem", "Self-Hosted"),
        ("deployment", "self  hosted", "Self-Hosted"),
        ("pricingModel", "subscription", "Paid"),
        ("billing_period", "annually", "Yearly"),
        ("category", "ml", "Machine Learning"),
        ("categories", "Spaceships", None),
        ("unknown_slot", "Web", None),
        ("interface", "", None),
        ("interface", 42, None),
    ],
)
def test_normalize_value(slot, raw, expected):
    assert vocabulary.normalize_value(slot, raw) == expected


def test_filter_valid_drops_non_members_and_duplicates():
    values = ["web", "Web", "browser", "hologram", "CLI"]
    assert vocabulary.filter_valid("interface", values) == ["Web", "CLI"]


def test_filter_valid_accepts_single_string_and_none():
    assert vocabulary.filter_valid("deployment", "cloud") == ["Cloud"]
    assert vocabulary.filter_valid("deployment", None) == []


def test_validate_requires_verbatim_members():
    assert vocabulary.validate("interface", ["Web", "CLI"])
    assert not vocabulary.validate("interface", ["web"])
    assert not vocabulary.validate("nonexistent", ["Web"])


def test_every_synonym_targets_a_vocabulary_member():
    for slot, synonyms in vocabulary.SYNONYMS.items():
        allowed = vocabulary.CONTROLLED_VOCABULARIES[slot]
        for target in synonyms.values():
            assert target in allowed, f"{slot}: {target}"


def test_intent_state_only_holds_vocabulary_members():
    intent = IntentState(
        category="not a category",
        interface=["Web", "Hologram", "terminal"],
        deployment=["Moon"],
        functionality=["autocomplete", "Teleportation"],
        user_types=["devs"],
        pricing_model=["Gratis"],
    )
    assert intent.category is None
    assert intent.interface == ["Web", "CLI"]
    assert intent.deployment == []
    assert intent.functionality == ["Code Completion"]
    assert intent.user_types == ["Developers"]
    assert intent.pricing_model is None

    for slot in ("interface", "deployment", "functionality", "user_types"):
        assert vocabulary.validate(slot, getattr(intent, slot)) or not getattr(intent, slot)
