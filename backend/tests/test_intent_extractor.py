"""
Tests for intent extraction: detector orchestration, rule/LLM merging and
the end-to-end query scenarios.
"""
import json

import pytest

from toolfinder.services.extraction.signals import ExtractionSignals, ScoredValue
from toolfinder.services.intent.extractor import IntentExtractor
from toolfinder.services.intent.schema import StructuredIntentOutput
from toolfinder.services.intent.structuring import StructuringAgent

from conftest import StaticLLM


@pytest.fixture
def extractor(document_store):
    return IntentExtractor(embedder=None, llm=None, document_store=document_store)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_cursor_alternative_but_cheaper(self, extractor):
        intent, signals = await extractor.extract("Cursor alternative but cheaper")

        assert signals.comparative_flag
        assert signals.comparison_mode == "alternative_to"
        assert signals.resolved_tool_names == ["Cursor"]
        assert intent.reference_tool == "Cursor"
        assert intent.comparison_mode == "alternative_to"
        assert intent.primary_goal == "find"
        assert intent.price_comparison.operator == "less_than"
        # Anchored to Cursor's lowest paid tier in the catalog
        assert intent.price_comparison.value == pytest.approx(20.0)
        assert intent.price_comparison.billing_period == "Monthly"
        assert "cheaper" in intent.constraints

    @pytest.mark.asyncio
    async def test_reference_resolved_to_catalog_spelling(self, extractor):
        intent, _ = await extractor.extract("cursr alternative but cheaper")
        assert intent.reference_tool == "Cursor"
        assert intent.price_comparison.value == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_unknown_reference_has_no_price_value(self, extractor):
        intent, _ = await extractor.extract("Zorblax alternative but cheaper")
        assert intent.reference_tool == "Zorblax"
        assert intent.price_comparison.operator == "less_than"
        assert intent.price_comparison.value is None

    @pytest.mark.asyncio
    async def test_ai_tools_under_50_per_month(self, extractor):
        intent, signals = await extractor.extract("AI tools under $50 per month")

        assert not signals.comparative_flag
        assert intent.category == "AI"
        assert intent.price_range is None
        assert intent.price_comparison.operator == "less_than"
        assert intent.price_comparison.value == pytest.approx(50.0)
        assert intent.price_comparison.billing_period == "Monthly"
        assert intent.confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_free_cli(self, extractor):
        intent, signals = await extractor.extract("free cli")

        assert signals.interface_preferences == ["CLI"]
        assert intent.interface == ["CLI"]
        assert intent.pricing_model == ["Free"]
        assert intent.price_range is None
        assert intent.price_comparison is None

    @pytest.mark.asyncio
    async def test_empty_query(self, extractor):
        intent, signals = await extractor.extract("   ")

        assert intent.query_text == ""
        assert intent.confidence == 0.0
        assert intent.is_empty()
        assert signals == ExtractionSignals()

    @pytest.mark.asyncio
    async def test_compare_goal(self, extractor):
        intent, signals = await extractor.extract("Cursor vs Windsurf")
        assert intent.primary_goal == "compare"
        assert intent.reference_tool == "Windsurf"
        assert signals.comparative_confidence == pytest.approx(0.9)


class TestLLMStructuring:
    @pytest.mark.asyncio
    async def test_llm_fills_slots_rules_leave_empty(self, document_store):
        payload = {
            "primaryGoal": "find",
            "category": "Chatbot",
            "functionality": ["AI Chat", "Mind Reading"],
            "priceComparison": {"operator": "less_than", "value": 80, "billingPeriod": "Monthly"},
            "semanticVariants": ["cheap ai chat assistants", "budget chatbots"],
            "confidence": 0.95,
        }
        llm = StaticLLM({"structuring": json.dumps(payload)})
        extractor = IntentExtractor(llm=llm, document_store=document_store)

        intent, _ = await extractor.extract("AI tools under $50 per month")

        # Rules win for price and category, the LLM fills functionality.
        assert intent.price_comparison.value == pytest.approx(50.0)
        assert intent.category == "AI"
        assert intent.functionality == ["AI Chat"]
        assert intent.semantic_variants == ["cheap ai chat assistants", "budget chatbots"]
        assert intent.confidence == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_llm_never_overrides_rule_price(self, document_store):
        payload = {"priceRange": {"min": 0, "max": 500}, "confidence": 0.9}
        llm = StaticLLM({"structuring": json.dumps(payload)})
        extractor = IntentExtractor(llm=llm, document_store=document_store)

        intent, _ = await extractor.extract("editor under $20")
        assert intent.price_range is None
        assert intent.price_comparison.value == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_invalid_llm_output_falls_back_to_rules(self, document_store):
        llm = StaticLLM({"structuring": "I think you want a code editor."})
        extractor = IntentExtractor(llm=llm, document_store=document_store)

        intent, _ = await extractor.extract("free cli")
        assert intent.pricing_model == ["Free"]
        assert intent.interface == ["CLI"]

    @pytest.mark.asyncio
    async def test_schema_violation_returns_none(self):
        llm = StaticLLM({"structuring": json.dumps({"confidence": 7})})
        result = await StructuringAgent(llm).structure("free cli", ExtractionSignals())
        assert result is None

    @pytest.mark.asyncio
    async def test_llm_outage_degrades_to_rules(self, document_store):
        llm = StaticLLM({})  # every agent raises
        extractor = IntentExtractor(llm=llm, document_store=document_store)

        intent, signals = await extractor.extract("Cursor alternative but cheaper")
        assert intent.reference_tool == "Cursor"
        assert signals.ner_entities == []
        assert "structuring" in llm.agents_called()


class TestMerge:
    def test_zero_shot_picks_never_set_slots(self, extractor):
        signals = ExtractionSignals(
            interface_preferences=["CLI"],
            classification_scores={
                "interface": [ScoredValue(value="Web", score=0.9)],
                "deployment": [ScoredValue(value="Local", score=0.9)],
                "functionality": [ScoredValue(value="Debugging", score=0.5)],
                "categories": [ScoredValue(value="Productivity", score=0.9)],
            },
        )
        intent = extractor._merge("query", signals, {}, None, None, None)

        assert intent.interface == ["CLI"]
        assert intent.deployment == []
        assert intent.category is None
        assert intent.functionality == []
        assert intent.confidence == pytest.approx(0.5)

    def test_structuring_output_sets_slots_zero_shot_does_not(self, extractor):
        structured = StructuredIntentOutput.model_validate(
            {"category": "Code Editor", "deployment": ["Cloud"], "confidence": 0.85}
        )
        signals = ExtractionSignals(
            classification_scores={
                "categories": [ScoredValue(value="Productivity", score=0.9)],
                "deployment": [ScoredValue(value="Local", score=0.9)],
            },
        )
        intent = extractor._merge("query", signals, {}, structured, None, None)

        assert intent.category == "Code Editor"
        assert intent.deployment == ["Cloud"]
        assert intent.confidence == pytest.approx(0.85)

    def test_rule_interfaces_union_with_detected(self, extractor):
        signals = ExtractionSignals(interface_preferences=["CLI"])
        intent = extractor._merge("q", signals, {"interface": ["IDE"]}, None, None, None)
        assert intent.interface == ["CLI", "IDE"]

    @pytest.mark.asyncio
    async def test_find_tool(self, extractor):
        assert (await extractor.find_tool("github copilot"))["_id"] == "github-copilot"
        assert (await extractor.find_tool("Windsrf"))["_id"] == "windsurf"
        assert await extractor.find_tool("Zorblax") is None
