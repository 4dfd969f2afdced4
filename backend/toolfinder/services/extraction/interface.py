"""Interface preference detection from keyword families."""
import re
from typing import Dict, List

from toolfinder.services.extraction.signals import fail_soft

INTERFACE_PATTERNS: Dict[str, "re.Pattern[str]"] = {
    "Web": re.compile(r"\b(web|browser|online|website|web app|web application)\b", re.IGNORECASE),
    "Desktop": re.compile(r"\b(desktop|native|standalone|client|application)\b", re.IGNORECASE),
    "Mobile": re.compile(r"\b(mobile|phone|tablet|ios|android|app)\b", re.IGNORECASE),
    "CLI": re.compile(r"\b(cli|command line|terminal|console)\b", re.IGNORECASE),
    "API": re.compile(r"\b(api|rest|graphql|sdk|library)\b", re.IGNORECASE),
}


def detect_interfaces(query: str) -> List[str]:
    """Sorted, de-duplicated interface vocabulary values mentioned in ``query``."""
    return sorted(name for name, pattern in INTERFACE_PATTERNS.items() if pattern.search(query))


class InterfaceDetector:
    @fail_soft("interface", [])
    async def analyze(self, query: str) -> List[str]:
        return detect_interfaces(query)
