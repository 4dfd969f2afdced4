"""
LLM-backed tool name extraction.

The model is asked for a JSON array of tool names mentioned in the query.
Generic product words are filtered out; at most MAX_ENTITIES names are kept.
"""
from typing import List, Optional

from toolfinder.core.logging import get_logger
from toolfinder.core.metrics import record_llm_schema_validation_failure
from toolfinder.services.capabilities import LLMCapability
from toolfinder.services.extraction.signals import fail_soft
from toolfinder.services.llm.schema import SchemaValidationError, parse_json_array

logger = get_logger(__name__)

MAX_ENTITIES = 5

GENERIC_WORDS = {
    "software",
    "app",
    "application",
    "tool",
    "tools",
    "platform",
    "free",
    "best",
    "good",
    "cheap",
    "paid",
    "open source",
    "ai",
}

NER_PROMPT = """Extract tool names from the following query. A tool name is a proper noun that refers to a software application, framework or platform.

Query: "{query}"

Respond with a JSON array of tool names found in the query. If no tool names are found, return an empty array.
Example response: ["GitHub", "VS Code", "React"]"""


def clean_entities(raw: list) -> List[str]:
    names: List[str] = []
    seen = set()
    for item in raw:
        if not isinstance(item, str):
            continue
        name = " ".join(item.split())
        key = name.lower()
        if len(name) < 2 or key in GENERIC_WORDS or key in seen:
            continue
        seen.add(key)
        names.append(name)
        if len(names) == MAX_ENTITIES:
            break
    return names


class NamedEntityExtractor:
    def __init__(self, llm: Optional[LLMCapability] = None):
        self.llm = llm

    @fail_soft("ner", [])
    async def analyze(self, query: str) -> List[str]:
        if self.llm is None:
            return []
        answer = await self.llm.invoke(NER_PROMPT.format(query=query), agent="ner")
        try:
            raw = parse_json_array(answer, agent="ner")
        except SchemaValidationError:
            record_llm_schema_validation_failure("ner")
            raise
        return clean_entities(raw)
