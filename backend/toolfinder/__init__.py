"""toolfinder: agentic retrieval pipeline for tool discovery search."""

__version__ = "0.1.0"
