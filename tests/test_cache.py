import threading
import time

import pytest

from dnsrelay.cache import Cache


@pytest.fixture
def cache():
    c = Cache(size=1024)
    yield c
    c.close()


def test_store_get_and_size_limit(cache):
    for i in range(128):
        cache.store(i, i, time.time() + 0.2)
        value, _ = cache.get(i)
        assert value == i

    for i in range(1024 * 4):
        cache.store(i, i, time.time() + 0.2)
    assert len(cache) <= 1024


def test_cleaner_removes_expired_entries():
    with Cache(size=1024, cleaner_interval=0.01) as c:
        for i in range(64):
            c.store(i, i, time.time() + 0.01)
        deadline = time.time() + 2.0
        while len(c) and time.time() < deadline:
            time.sleep(0.02)
        assert len(c) == 0


def test_concurrent_use(cache):
    def worker():
        for i in range(256):
            cache.store(i, i, time.time() + 60)
            try:
                cache.get(i)
            except KeyError:
                pass
            cache.gc(time.time())

    threads = [threading.Thread(target=worker) for _ in range(32)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) == 256
    assert cache.get(100)[0] == 100


def test_store_with_past_expiration_is_ignored(cache):
    cache.store("a", 1, time.time() - 1)
    assert len(cache) == 0
    with pytest.raises(KeyError):
        cache.get("a")


def test_get_returns_expiration_time(cache):
    exp = time.time() + 30
    cache.store("k", "v", exp)
    assert cache.get("k") == ("v", exp)


def test_get_expired_entry_removes_it(cache):
    cache.store("k", "v", time.time() + 0.02)
    time.sleep(0.05)
    with pytest.raises(KeyError):
        cache.get("k")
    assert len(cache) == 0


def test_missing_key_raises(cache):
    with pytest.raises(KeyError):
        cache.get("missing")


def test_gc_with_future_time(cache):
    cache.store("short", 1, time.time() + 5)
    cache.store("long", 2, time.time() + 100)
    cache.gc(time.time() + 50)
    assert len(cache) == 1
    assert cache.get("long")[0] == 2


def test_range_visits_all_entries(cache):
    exp = time.time() + 60
    for i in range(10):
        cache.store(i, i * 2, exp)
    seen = {}

    def collect(key, value, expiration):
        seen[key] = (value, expiration)

    cache.range(collect)
    assert seen == {i: (i * 2, exp) for i in range(10)}


def test_range_propagates_error(cache):
    cache.store(1, 1, time.time() + 60)

    def fail(key, value, expiration):
        raise RuntimeError("stop")

    with pytest.raises(RuntimeError, match="stop"):
        cache.range(fail)


def test_flush(cache):
    for i in range(20):
        cache.store(i, i, time.time() + 60)
    cache.flush()
    assert len(cache) == 0


def test_context_manager_returns_cache():
    with Cache() as c:
        c.store("x", 1, time.time() + 60)
        assert c.get("x")[0] == 1
        assert len(c) == 1