"""
LLM structuring agent.

Given the query and the detector signals, asks the LLM for a JSON intent
restricted to the controlled vocabularies. The result is advisory: the
extractor only uses it to fill slots the deterministic rules left empty,
and every value is re-validated by ``IntentState``.

Any failure (no key, timeout, open circuit, bad JSON, schema violation)
returns None and the extractor proceeds on rules and signals alone.
"""
import json
from typing import Any, Optional

from toolfinder.core.logging import get_logger
from toolfinder.core.metrics import record_llm_schema_validation_failure
from toolfinder.services import vocabulary
from toolfinder.services.capabilities import LLMCapability
from toolfinder.services.extraction.signals import ExtractionSignals
from toolfinder.services.intent.schema import StructuredIntentOutput
from toolfinder.services.llm.schema import (
    SchemaValidationError,
    parse_json_object,
    validate_payload,
)

logger = get_logger(__name__)

AGENT = "structuring"


def validate_structured_intent_payload(payload: Any) -> StructuredIntentOutput:
    """
    Validate a decoded structuring payload.

    Raises:
        SchemaValidationError if validation fails.
    """
    return validate_payload(StructuredIntentOutput, payload, agent=AGENT)


def _vocab(slot: str) -> str:
    return ", ".join(vocabulary.vocabulary_for(slot))


def build_prompt(query: str, signals: ExtractionSignals) -> str:
    hints = {
        "comparative": signals.comparative_flag,
        "referenceTool": signals.reference_tool,
        "interfaces": signals.interface_preferences,
        "toolNames": signals.resolved_tool_names,
        "classified": {
            slot: [c.value for c in scored]
            for slot, scored in signals.classification_scores.items()
        },
    }
    return f"""You convert software tool search queries into a structured intent.

Query: "{query}"
Detector hints: {json.dumps(hints)}

Use ONLY these values for each field (omit a field when nothing fits):
- category: {_vocab("categories")}
- interface: {_vocab("interface")}
- functionality: {_vocab("functionality")}
- deployment: {_vocab("deployment")}
- userType: {_vocab("user_types")}
- pricingModel: {_vocab("pricing_models")}

Price rules:
- "under/below/less than X" -> priceComparison {{"operator": "less_than", "value": X}}
- "up to/at most X" -> "less_than_or_equal"; "over/more than X" -> "greater_than"
- "at least X" -> "greater_than_or_equal"; "around/about X" -> "around"
- "between X and Y" -> priceRange {{"min": X, "max": Y}}
- "per month" -> billingPeriod "Monthly"; "per year" -> "Yearly"
- Never invent a price that the query does not state.

Respond with a single JSON object only, with keys:
{{"primaryGoal": "find | compare | explore", "referenceTool": string or null,
"comparisonMode": "similar_to | vs | alternative_to" or null, "category": string or null,
"interface": [..], "functionality": [..], "deployment": [..], "userType": [..],
"pricingModel": [..], "priceRange": object or null, "priceComparison": object or null,
"semanticVariants": [up to 3 short rephrasings], "constraints": [..], "confidence": 0.0-1.0}}
Do not include any explanation."""


class StructuringAgent:
    """LLM-backed intent structuring."""

    def __init__(self, llm: Optional[LLMCapability] = None):
        self.llm = llm

    async def structure(
        self, query: str, signals: ExtractionSignals
    ) -> Optional[StructuredIntentOutput]:
        if self.llm is None or not query.strip():
            return None

        try:
            answer = await self.llm.invoke(build_prompt(query, signals), agent=AGENT)
        except Exception as exc:
            logger.warning(
                "structuring_llm_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        try:
            payload = parse_json_object(answer, agent=AGENT)
        except SchemaValidationError as exc:
            record_llm_schema_validation_failure(AGENT)
            logger.warning(
                "structuring_llm_invalid_json",
                error=str(exc),
                raw=exc.raw_output,
            )
            return None

        try:
            return validate_structured_intent_payload(payload)
        except SchemaValidationError as exc:
            record_llm_schema_validation_failure(AGENT)
            logger.warning(
                "structuring_llm_schema_invalid",
                error=str(exc),
                raw_payload=payload,
            )
            return None
