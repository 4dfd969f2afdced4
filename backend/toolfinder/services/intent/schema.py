"""
Structured intent models.

``IntentState`` is the contract between intent extraction and planning.
Construction validates every enumerable slot against the controlled
vocabularies, so an ``IntentState`` can never carry a value a backend filter
cannot match verbatim. ``StructuredIntentOutput`` is the looser shape the
LLM structuring agent is asked to return; it is merged into an
``IntentState`` by the extractor.
"""
from typing import Any, List, Literal, Optional

from pydantic import Field, field_validator, model_validator

from toolfinder.models.base import CamelModel
from toolfinder.services import vocabulary

PriceOperator = Literal[
    "less_than",
    "less_than_or_equal",
    "greater_than",
    "greater_than_or_equal",
    "equal_to",
    "not_equal",
    "around",
    "between",
]
PRICE_OPERATORS = set(PriceOperator.__args__)

PrimaryGoal = Literal["find", "compare", "explore"]
ComparisonMode = Literal["similar_to", "vs", "alternative_to"]

_GOAL_ALIASES = {
    "find": "find",
    "search": "find",
    "recommend": "find",
    "discover": "explore",
    "explore": "explore",
    "analyze": "explore",
    "explain": "explore",
    "compare": "compare",
}

_MODE_ALIASES = {
    "similar_to": "similar_to",
    "similar": "similar_to",
    "like": "similar_to",
    "vs": "vs",
    "versus": "vs",
    "compare": "vs",
    "alternative_to": "alternative_to",
    "alternative": "alternative_to",
    "instead_of": "alternative_to",
}


def _billing_period(value: Any) -> Optional[str]:
    return vocabulary.normalize_value("billing_periods", value)


class PriceRange(CamelModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = "USD"
    billing_period: Optional[str] = None

    @field_validator("billing_period", mode="before")
    @classmethod
    def normalize_period(cls, value: Any) -> Optional[str]:
        return _billing_period(value)

    @field_validator("currency", mode="before")
    @classmethod
    def default_currency(cls, value: Any) -> str:
        return value.upper() if isinstance(value, str) and value.strip() else "USD"


class PriceComparison(CamelModel):
    operator: PriceOperator
    value: Optional[float] = None
    currency: str = "USD"
    billing_period: Optional[str] = None

    @field_validator("billing_period", mode="before")
    @classmethod
    def normalize_period(cls, value: Any) -> Optional[str]:
        return _billing_period(value)

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace(" ", "_")
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def default_currency(cls, value: Any) -> str:
        return value.upper() if isinstance(value, str) and value.strip() else "USD"


class RawFilter(CamelModel):
    field: str
    operator: str
    value: Any = None


class IntentState(CamelModel):
    """Structured interpretation of one query."""

    primary_goal: PrimaryGoal = "find"
    category: Optional[str] = None
    interface: List[str] = Field(default_factory=list)
    deployment: List[str] = Field(default_factory=list)
    functionality: List[str] = Field(default_factory=list)
    user_types: List[str] = Field(default_factory=list)
    pricing_model: Optional[List[str]] = None
    price_range: Optional[PriceRange] = None
    price_comparison: Optional[PriceComparison] = None
    reference_tool: Optional[str] = None
    comparison_mode: Optional[ComparisonMode] = None
    constraints: List[str] = Field(default_factory=list)
    filters: List[RawFilter] = Field(default_factory=list)
    semantic_variants: List[str] = Field(default_factory=list)
    query_text: str = ""
    confidence: float = 0.0

    @field_validator("primary_goal", mode="before")
    @classmethod
    def normalize_goal(cls, value: Any) -> str:
        if isinstance(value, str):
            return _GOAL_ALIASES.get(value.strip().lower(), "find")
        return "find"

    @field_validator("comparison_mode", mode="before")
    @classmethod
    def normalize_mode(cls, value: Any) -> Optional[str]:
        if isinstance(value, str):
            return _MODE_ALIASES.get(value.strip().lower().replace(" ", "_"))
        return None

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, value: Any) -> Optional[str]:
        if isinstance(value, (list, tuple)):
            valid = vocabulary.filter_valid("categories", value)
            return valid[0] if valid else None
        return vocabulary.normalize_value("categories", value)

    @field_validator("interface", "deployment", "functionality", "user_types", mode="before")
    @classmethod
    def validate_slot_values(cls, value: Any, info) -> List[str]:
        return vocabulary.filter_valid(info.field_name, value)

    @field_validator("pricing_model", mode="before")
    @classmethod
    def validate_pricing_model(cls, value: Any) -> Optional[List[str]]:
        valid = vocabulary.filter_valid("pricing_models", value)
        return valid or None

    @field_validator("reference_tool", mode="before")
    @classmethod
    def clean_reference(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        cleaned = " ".join(value.split()).strip(" .,!?\"'")
        if not cleaned or cleaned.lower() in {"none", "null", "n/a"}:
            return None
        return cleaned

    @field_validator("constraints", "semantic_variants", mode="before")
    @classmethod
    def clean_strings(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        seen: List[str] = []
        for item in value:
            if isinstance(item, str) and item.strip() and item.strip() not in seen:
                seen.append(item.strip())
        return seen

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> float:
        try:
            return max(0.0, min(1.0, float(value)))
        except (TypeError, ValueError):
            return 0.0

    @model_validator(mode="after")
    def reconcile_price(self) -> "IntentState":
        comparison = self.price_comparison
        if comparison is not None and comparison.operator == "between":
            # A single-valued "between" is an upper bound from zero.
            if self.price_range is None and comparison.value is not None:
                self.price_range = PriceRange(
                    min=0.0,
                    max=comparison.value,
                    currency=comparison.currency,
                    billing_period=comparison.billing_period,
                )
            self.price_comparison = None
        if self.price_range is not None and self.price_comparison is not None:
            self.price_comparison = None
        if self.price_range is not None and self.price_range.min is None and self.price_range.max is None:
            self.price_range = None
        return self

    def is_empty(self) -> bool:
        """True when there is nothing to plan against."""
        return not self.query_text.strip() and not self.reference_tool and not self.has_filterable_slots()

    def has_filterable_slots(self) -> bool:
        return bool(
            self.category
            or self.interface
            or self.deployment
            or self.functionality
            or self.user_types
            or self.pricing_model
            or self.price_range
            or (self.price_comparison and self.price_comparison.value is not None)
        )

    def evolve(self, **changes: Any) -> "IntentState":
        """Copy with ``changes`` applied and re-validated."""
        data = self.model_dump()
        data.update(changes)
        return IntentState.model_validate(data)


class StructuredIntentOutput(CamelModel):
    """Shape requested from the LLM structuring agent (all fields optional)."""

    primary_goal: Optional[str] = None
    reference_tool: Optional[str] = None
    comparison_mode: Optional[str] = None
    category: Optional[Any] = None
    interface: Optional[Any] = None
    functionality: Optional[Any] = None
    deployment: Optional[Any] = None
    user_type: Optional[Any] = None
    pricing_model: Optional[Any] = None
    price_range: Optional[PriceRange] = None
    price_comparison: Optional[PriceComparison] = None
    semantic_variants: List[str] = Field(default_factory=list)
    constraints: List[str] = Field(default_factory=list)
    confidence: float = Field(0.5, ge=0.0, le=1.0)

    @field_validator("semantic_variants", "constraints", mode="before")
    @classmethod
    def coerce_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [v for v in value if isinstance(v, str)]
