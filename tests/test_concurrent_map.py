from concurrent.futures import ThreadPoolExecutor

import pytest

from dnsrelay.concurrent_map import ConcurrentMap


def test_map_set_range_get_len_delete():
    m = ConcurrentMap()
    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(lambda i: m.set(i, i), range(512)))

    class RangeError(Exception):
        pass

    want_err = RangeError()

    def failing(key, value):
        raise want_err

    with pytest.raises(RangeError) as info:
        m.range_do(failing)
    assert info.value is want_err

    seen = [False] * 512

    def mark(key, value):
        seen[key] = True
        return 0, False, False

    m.range_do(mark)
    assert all(seen)

    with ThreadPoolExecutor(max_workers=16) as pool:
        got = list(pool.map(m.get, range(512)))
    assert got == list(range(512))

    assert len(m) == 512

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(m.delete, range(512)))
    assert len(m) == 0


def test_test_and_set():
    cm = ConcurrentMap()

    def set_one(value, ok):
        return 1, True, False

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(lambda _: cm.test_and_set(1, set_one), range(512)))
    assert cm.get(1) == 1

    cm.test_and_set(1, lambda value, ok: (1, False, True))
    with pytest.raises(KeyError):
        cm.get(1)


def test_test_and_set_sees_presence():
    cm = ConcurrentMap()
    calls = []

    def record(value, ok):
        calls.append((value, ok))
        return value + 1 if ok else 10, True, False

    cm.test_and_set("k", record)
    cm.test_and_set("k", record)
    assert calls == [(None, False), (10, True)]
    assert cm.get("k") == 11


def test_range_do_set_and_delete():
    m = ConcurrentMap()
    for i in range(10):
        m.set(i, i)

    def f(key, value):
        if key % 2:
            return 0, False, True
        return value * 10, True, False

    m.range_do(f)
    assert len(m) == 5
    assert [m.get(k) for k in range(0, 10, 2)] == [0, 20, 40, 60, 80]


def test_size_limited_map_stays_bounded():
    m = ConcurrentMap(1024)
    for i in range(1024 * 4):
        m.set(i, i)
    assert len(m) <= 1024
    assert m.get(4095) == 4095


def test_flush():
    m = ConcurrentMap()
    for i in range(100):
        m.set(i, i)
    m.flush()
    assert len(m) == 0
    with pytest.raises(KeyError):
        m.get(5)


def test_delete_missing_key_is_noop():
    m = ConcurrentMap()
    m.set("a", 1)
    m.delete("b")
    assert len(m) == 1
    assert m.get("a") == 1