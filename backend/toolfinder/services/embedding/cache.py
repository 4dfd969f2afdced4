"""
In-process embedding cache.

Shields the embedding model from recomputing vectors for text it has already
seen (controlled-vocabulary values, comparative exemplars, repeated queries).

Semantics:
- Keys come from ``make_key`` (model name + md5 of normalized text)
- Entries expire ``ttl_seconds`` after insertion; ``get``/``has`` evict
  expired entries lazily, ``cleanup`` sweeps them eagerly
- Capacity is bounded; inserting a new key into a full cache evicts the
  single oldest-inserted entry (FIFO, reads do not refresh position)
- Overwriting an existing key counts as a fresh insertion (moves to the tail)
- When disabled every operation is a no-op returning miss/False/0
- Never raises; all access is serialized by a lock so overlapping requests
  and worker threads can share one instance
"""
import hashlib
import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from toolfinder.core.logging import get_logger
from toolfinder.core.metrics import (
    record_cache_eviction,
    record_cache_hit,
    record_cache_miss,
    update_embedding_cache_size,
)

logger = get_logger(__name__)

CACHE_TYPE = "embedding"
DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_MAX_SIZE = 1000


def normalize_text(text: str) -> str:
    return " ".join(text.lower().split())


def make_key(text: str, model_name: str = "") -> str:
    """Cache key for ``text`` embedded by ``model_name``."""
    digest = hashlib.md5(normalize_text(text).encode("utf-8")).hexdigest()
    return f"emb:{model_name}:{digest}" if model_name else f"emb:{digest}"


class EmbeddingCache:
    """TTL-bounded FIFO map of cache key -> embedding vector."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max(1, int(max_size))
        self.enabled = enabled
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[List[float], float]]" = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _expired(self, inserted_at: float, now: float) -> bool:
        return now - inserted_at >= self.ttl_seconds

    def get(self, key: str) -> Optional[List[float]]:
        if not self.enabled or not isinstance(key, str):
            return None
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is not None and self._expired(entry[1], self._clock()):
                    del self._entries[key]
                    entry = None
                    record_cache_eviction(CACHE_TYPE, "expired")
                if entry is None:
                    self._misses += 1
                else:
                    self._hits += 1
            if entry is None:
                record_cache_miss(CACHE_TYPE)
                return None
            record_cache_hit(CACHE_TYPE)
            return list(entry[0])
        except Exception as e:
            logger.warning("embedding_cache_get_failed", error=str(e), error_type=type(e).__name__)
            return None

    def set(self, key: str, vector: Sequence[float]) -> None:
        if not self.enabled or not isinstance(key, str) or vector is None:
            return
        try:
            stored = [float(x) for x in vector]
            evicted = 0
            with self._lock:
                if key in self._entries:
                    del self._entries[key]
                while len(self._entries) >= self.max_size:
                    self._entries.popitem(last=False)
                    evicted += 1
                self._entries[key] = (stored, self._clock())
                self._evictions += evicted
                size = len(self._entries)
            record_cache_eviction(CACHE_TYPE, "capacity", evicted)
            update_embedding_cache_size(size)
        except Exception as e:
            logger.warning("embedding_cache_set_failed", error=str(e), error_type=type(e).__name__)

    def has(self, key: str) -> bool:
        if not self.enabled or not isinstance(key, str):
            return False
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    return False
                if self._expired(entry[1], self._clock()):
                    del self._entries[key]
                    record_cache_eviction(CACHE_TYPE, "expired")
                    return False
                return True
        except Exception as e:
            logger.warning("embedding_cache_has_failed", error=str(e), error_type=type(e).__name__)
            return False

    def delete(self, key: str) -> bool:
        if not self.enabled or not isinstance(key, str):
            return False
        try:
            with self._lock:
                removed = self._entries.pop(key, None) is not None
                size = len(self._entries)
            update_embedding_cache_size(size)
            return removed
        except Exception as e:
            logger.warning("embedding_cache_delete_failed", error=str(e), error_type=type(e).__name__)
            return False

    def cleanup(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        if not self.enabled:
            return 0
        try:
            now = self._clock()
            with self._lock:
                stale = [k for k, (_, ts) in self._entries.items() if self._expired(ts, now)]
                for k in stale:
                    del self._entries[k]
                size = len(self._entries)
            record_cache_eviction(CACHE_TYPE, "expired", len(stale))
            update_embedding_cache_size(size)
            if stale:
                logger.debug("embedding_cache_cleanup", removed=len(stale), size=size)
            return len(stale)
        except Exception as e:
            logger.warning("embedding_cache_cleanup_failed", error=str(e), error_type=type(e).__name__)
            return 0

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        update_embedding_cache_size(0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> List[str]:
        """Keys in insertion order (oldest first)."""
        with self._lock:
            return list(self._entries.keys())

    def stats(self) -> Dict[str, float]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "enabled": self.enabled,
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / total if total else 0.0,
            }
