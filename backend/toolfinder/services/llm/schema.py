"""
Parsing and validation of LLM text output.

LLM answers are untrusted: JSON is located inside the completion (models
like to wrap it in prose or code fences), decoded, then validated against a
pydantic model. Any failure raises ``SchemaValidationError`` which callers
translate into their deterministic fallback.
"""
import json
import re
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class SchemaValidationError(Exception):
    """Raised when LLM output cannot be decoded or fails schema validation."""

    def __init__(self, agent: str, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.agent = agent
        self.raw_output = raw_output


def _candidates(text: str) -> List[str]:
    found = [m.strip() for m in _FENCE_RE.findall(text)]
    found.append(text.strip())
    return found


def _decode_span(text: str, opener: str, closer: str) -> Any:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        raise ValueError(f"no {opener}...{closer} span")
    return json.loads(text[start:end + 1])


def parse_json_object(text: str, agent: str) -> dict:
    """Extract the first JSON object from ``text``."""
    if not isinstance(text, str) or not text.strip():
        raise SchemaValidationError(agent, "empty LLM output", raw_output=text)
    for candidate in _candidates(text):
        try:
            value = _decode_span(candidate, "{", "}")
        except ValueError:
            continue
        if isinstance(value, dict):
            return value
    raise SchemaValidationError(agent, "no JSON object in LLM output", raw_output=text)


def parse_json_array(text: str, agent: str) -> list:
    """Extract the first JSON array from ``text``."""
    if not isinstance(text, str) or not text.strip():
        raise SchemaValidationError(agent, "empty LLM output", raw_output=text)
    for candidate in _candidates(text):
        try:
            value = _decode_span(candidate, "[", "]")
        except ValueError:
            continue
        if isinstance(value, list):
            return value
    raise SchemaValidationError(agent, "no JSON array in LLM output", raw_output=text)


def validate_payload(model: Type[T], payload: Any, agent: str) -> T:
    """
    Validate a decoded payload against ``model``.

    Raises:
        SchemaValidationError if validation fails.
    """
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        # Metrics are recorded by the caller, which knows the agent context.
        raise SchemaValidationError(
            agent=agent,
            message=f"Invalid {agent} payload: {exc}",
        ) from exc
