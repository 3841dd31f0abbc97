import pytest

from ingestion.cache import BoundedCache


def test_evicts_least_recently_used():
    cache = BoundedCache(capacity=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")
    cache.put("c", 3)

    assert "a" in cache
    assert "b" not in cache
    assert "c" in cache
    assert len(cache) == 2


def test_get_default_and_clear():
    cache = BoundedCache(capacity=3)
    assert cache.get("missing", 0) == 0

    cache.put(("post", "Title"), True)
    assert cache.get(("post", "Title")) is True

    cache.clear()
    assert len(cache) == 0


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        BoundedCache(capacity=0)
