"""
JSON-backed document store.

The tool catalog is a JSON array of documents (see backend/data/tools.json)
loaded into memory. ``query`` evaluates Mongo-like filters; ``get_all``
returns the whole collection. The file is re-read when it changes on disk.
"""
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from toolfinder.core.logging import get_logger
from toolfinder.services.stores.filters import matches

logger = get_logger(__name__)


class CatalogLoadError(RuntimeError):
    """The catalog file is missing or malformed."""


def load_catalog(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        raise CatalogLoadError(f"catalog not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise CatalogLoadError(f"invalid catalog JSON in {path}: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("tools", [])
    if not isinstance(data, list):
        raise CatalogLoadError("catalog must be a JSON array of tool documents")

    tools = []
    for doc in data:
        if not isinstance(doc, dict) or not doc.get("name"):
            continue
        doc = dict(doc)
        doc.setdefault("_id", doc.get("id") or doc["name"].lower().replace(" ", "-"))
        doc["_id"] = str(doc["_id"])
        tools.append(doc)
    return tools


class JsonDocumentStore:
    """DocumentStore over an in-memory catalog; one source, ``tools``."""

    def __init__(self, catalog_path: Optional[Path] = None, documents: Optional[Sequence[Dict[str, Any]]] = None):
        self.catalog_path = Path(catalog_path) if catalog_path else None
        self._documents: List[Dict[str, Any]] = list(documents or [])
        self._mtime: Optional[float] = None
        self._lock = asyncio.Lock()

    def load(self) -> int:
        """(Re)load the catalog file. Returns the number of documents."""
        if self.catalog_path is None:
            return len(self._documents)
        self._documents = load_catalog(self.catalog_path)
        self._mtime = self.catalog_path.stat().st_mtime
        logger.info(
            "catalog_loaded",
            catalog_path=str(self.catalog_path),
            tool_count=len(self._documents),
        )
        return len(self._documents)

    async def _ensure_fresh(self) -> None:
        if self.catalog_path is None:
            return
        async with self._lock:
            try:
                mtime = self.catalog_path.stat().st_mtime
            except FileNotFoundError:
                if self._mtime is None:
                    raise CatalogLoadError(f"catalog not found: {self.catalog_path}")
                return
            if self._mtime is None or mtime != self._mtime:
                self.load()

    def _collection(self, source: str) -> List[Dict[str, Any]]:
        if source not in ("tools", "mongodb"):
            raise ValueError(f"unknown document source: {source}")
        return self._documents

    async def get_all(self, source: str) -> List[Dict[str, Any]]:
        await self._ensure_fresh()
        return list(self._collection(source))

    async def query(self, source: str, filters: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
        await self._ensure_fresh()
        docs = self._collection(source)
        results = []
        for doc in docs:
            if matches(doc, filters):
                results.append(doc)
                if len(results) >= limit:
                    break
        logger.debug(
            "document_query_completed",
            source=source,
            filter_count=len(filters),
            results_count=len(results),
        )
        return results
