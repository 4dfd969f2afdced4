"""
Query normalization ahead of signal detection.

Unlike keyword-search normalization, case and price punctuation are kept:
reference tool names are read back out of the query ("Cursor alternative")
and the price rules need "$" and "/mo".
"""
import re
import unicodedata

MAX_QUERY_LENGTH = 500

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WS_RE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """
    Normalize a raw search query.

    Steps:
    1. Unicode NFKC (full-width digits, odd dollar signs)
    2. Drop control characters
    3. Collapse whitespace and trim
    4. Truncate to MAX_QUERY_LENGTH characters
    """
    if not query:
        return ""
    normalized = unicodedata.normalize("NFKC", query)
    normalized = _CONTROL_RE.sub(" ", normalized)
    normalized = _WS_RE.sub(" ", normalized).strip()
    return normalized[:MAX_QUERY_LENGTH].rstrip()
