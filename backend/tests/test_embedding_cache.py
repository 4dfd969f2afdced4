"""
Unit tests for the embedding cache and the caching embedder.
"""
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor

import pytest

from toolfinder.core.metrics import registry
from toolfinder.services.embedding.cache import EmbeddingCache, make_key, normalize_text
from toolfinder.services.embedding.service import CachedEmbedder, cosine_similarity

from conftest import HashEmbedder


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_make_key_normalizes_case_and_whitespace():
    assert make_key("Code  Editor ") == make_key("code editor")
    assert make_key("code editor", "model-a") != make_key("code editor", "model-b")
    assert normalize_text("  A   b ") == "a b"


def test_set_then_get_returns_copy():
    cache = EmbeddingCache()
    cache.set("k", [0.1, 0.2])
    value = cache.get("k")
    assert value == pytest.approx([0.1, 0.2])
    value.append(9.9)
    assert cache.get("k") == pytest.approx([0.1, 0.2])


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = EmbeddingCache(ttl_seconds=10, clock=clock)
    cache.set("k", [1.0])

    clock.advance(9.9)
    assert cache.has("k")
    clock.advance(0.1)
    assert cache.get("k") is None
    assert not cache.has("k")
    assert len(cache) == 0


def test_capacity_evicts_oldest_first():
    cache = EmbeddingCache(max_size=2)
    cache.set("a", [1.0])
    cache.set("b", [2.0])
    cache.set("c", [3.0])

    assert cache.keys() == ["b", "c"]
    assert cache.get("a") is None
    assert cache.stats()["evictions"] == 1


def test_resetting_a_key_moves_it_to_the_back():
    cache = EmbeddingCache(max_size=2)
    cache.set("a", [1.0])
    cache.set("b", [2.0])
    cache.set("a", [1.5])
    cache.set("c", [3.0])

    assert cache.keys() == ["a", "c"]
    assert cache.get("a") == pytest.approx([1.5])


def test_cleanup_removes_only_expired():
    clock = FakeClock()
    cache = EmbeddingCache(ttl_seconds=5, clock=clock)
    cache.set("old", [1.0])
    clock.advance(3)
    cache.set("new", [2.0])
    clock.advance(3)

    assert cache.cleanup() == 1
    assert cache.keys() == ["new"]


def test_delete_removes_entry():
    cache = EmbeddingCache()
    cache.set("k", [1.0])
    assert cache.delete("k")
    assert not cache.has("k")
    assert not cache.delete("k")


def evictions(reason):
    labels = {"cache_type": "embedding", "reason": reason}
    return registry.get_sample_value("cache_evictions_total", labels) or 0.0


class BrokenEntries(OrderedDict):
    def pop(self, *args, **kwargs):
        raise RuntimeError("corrupted")


def test_delete_never_raises():
    cache = EmbeddingCache()
    cache.set("k", [1.0])
    cache._entries = BrokenEntries(cache._entries)
    assert cache.delete("k") is False


def test_has_counts_expired_eviction():
    clock = FakeClock()
    cache = EmbeddingCache(ttl_seconds=10, clock=clock)
    cache.set("k", [1.0])
    before = evictions("expired")

    clock.advance(10)

    assert not cache.has("k")
    assert evictions("expired") == before + 1
    assert len(cache) == 0


def test_concurrent_writers_respect_capacity():
    cache = EmbeddingCache(max_size=50)
    per_writer = 200

    def write(writer):
        keys = [f"w{writer}-{i}" for i in range(per_writer)]
        for i, key in enumerate(keys):
            cache.set(key, [float(i)])
            cache.get(f"w{writer}-{i // 2}")
            if i % 50 == 0:
                cache.cleanup()
        return keys

    with ThreadPoolExecutor(max_workers=8) as pool:
        written = list(pool.map(write, range(8)))

    survivors = cache.keys()
    kept_set = set(survivors)
    assert len(cache) == 50
    assert len(set(survivors)) == len(survivors)
    # Each writer's survivors are its own most recent inserts.
    for keys in written:
        kept = [k for k in keys if k in kept_set]
        assert kept == keys[len(keys) - len(kept):]
    # The newest key overall is always retained.
    assert survivors[-1] in {keys[-1] for keys in written}


def test_disabled_cache_is_a_no_op():
    cache = EmbeddingCache(enabled=False)
    cache.set("k", [1.0])
    assert cache.get("k") is None
    assert not cache.has("k")
    assert not cache.delete("k")
    assert cache.cleanup() == 0
    assert len(cache) == 0


def test_invalid_keys_never_raise():
    cache = EmbeddingCache()
    assert cache.get(None) is None
    cache.set(None, [1.0])
    assert len(cache) == 0


def test_stats_track_hit_rate():
    cache = EmbeddingCache()
    cache.set("k", [1.0])
    cache.get("k")
    cache.get("missing")
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_cached_embedder_only_embeds_misses():
    inner = HashEmbedder()
    embedder = CachedEmbedder(inner, EmbeddingCache(), model_name="hash")

    first = await embedder.embed("code editor")
    calls_after_first = inner.calls
    second = await embedder.embed("Code Editor")

    assert first == pytest.approx(second)
    assert inner.calls == calls_after_first


@pytest.mark.asyncio
async def test_cached_embedder_batch_preserves_order():
    inner = HashEmbedder()
    cache = EmbeddingCache()
    embedder = CachedEmbedder(inner, cache, model_name="hash")

    await embedder.embed("b")
    vectors = await embedder.embed_batch(["a", "b", "c"])

    assert len(vectors) == 3
    assert vectors[0] == pytest.approx(inner.vector("a"))
    assert vectors[1] == pytest.approx(inner.vector("b"))
    assert vectors[2] == pytest.approx(inner.vector("c"))
    assert len(cache) == 3


def test_cosine_similarity_bounds():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
