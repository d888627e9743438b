# tests/test_cache.py
import threading
import time

import pytest  # pyright: ignore[reportMissingImports]

from llm2ui.cache import PromptCache, make_cache_key
from llm2ui.schemas import PromptBuildResult


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _result(text: str) -> PromptBuildResult:
    return PromptBuildResult(text=text)


def _key(**overrides):
    params = dict(task="login form", catalog_version="abc", token_budget=1000, language="en")
    params.update(overrides)
    return make_cache_key(**params)


def test_cache_key_is_deterministic_and_input_sensitive():
    assert _key() == _key()
    assert len({_key(), _key(task="other"), _key(catalog_version="def"), _key(token_budget=2000), _key(language="zh")}) == 5
    assert _key(extra={"a": 1, "b": 2}) == _key(extra={"b": 2, "a": 1})


def test_hit_returns_stored_value_without_rebuilding():
    cache = PromptCache()
    calls = []

    def build():
        calls.append(1)
        return _result("built")

    first = cache.get_or_build("k", build)
    second = cache.get_or_build("k", build)
    assert first is second
    assert len(calls) == 1
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1


def test_lru_eviction_keeps_recently_used():
    cache = PromptCache(max_size=2)
    cache.set("a", _result("a"))
    cache.set("b", _result("b"))
    assert cache.get("a") is not None  # a is now most recent
    cache.set("c", _result("c"))
    assert "b" not in cache
    assert "a" in cache and "c" in cache
    assert len(cache) == 2
    assert cache.stats()["evictions"] == 1


def test_ttl_expiry():
    clock = FakeClock()
    cache = PromptCache(ttl_seconds=10, clock=clock)
    cache.set("k", _result("v"))
    clock.now = 9.9
    assert cache.get("k") is not None
    clock.now = 10.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_invalidate_and_clear():
    cache = PromptCache()
    cache.set("a", _result("a"))
    cache.set("b", _result("b"))
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    cache.clear()
    assert len(cache) == 0


def test_build_errors_propagate_and_nothing_is_cached():
    cache = PromptCache()

    def boom():
        raise RuntimeError("template missing")

    with pytest.raises(RuntimeError):
        cache.get_or_build("k", boom)
    assert "k" not in cache
    assert cache.get_or_build("k", lambda: _result("ok")).text == "ok"


@pytest.mark.parametrize("kwargs", [{"max_size": 0}, {"ttl_seconds": 0}])
def test_invalid_bounds_rejected(kwargs):
    with pytest.raises(ValueError):
        PromptCache(**kwargs)


@pytest.mark.timeout(10)
def test_concurrent_callers_build_once():
    cache = PromptCache()
    calls = []
    start = threading.Barrier(8)

    def build():
        calls.append(1)
        time.sleep(0.05)
        return _result("shared")

    results = []

    def worker():
        start.wait()
        results.append(cache.get_or_build("same", build))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert len(results) == 8
    assert all(r is results[0] for r in results)
