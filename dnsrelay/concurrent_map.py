"""A sharded, lock-protected map with an optional size limit."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Generic, Hashable, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

SHARD_COUNT = 64


class _Shard(Generic[K, V]):
    __slots__ = ("lock", "max_size", "data")

    def __init__(self, max_size: int) -> None:
        self.lock = threading.Lock()
        self.max_size = max_size  # zero or negative means no limit
        self.data: Dict[K, V] = {}

    def set(self, key: K, value: V) -> None:
        with self.lock:
            if self.max_size > 0:
                while self.data and len(self.data) + 1 > self.max_size:
                    del self.data[next(iter(self.data))]
            self.data[key] = value


class ConcurrentMap(Generic[K, V]):
    """Thread-safe map split across 64 shards.

    With ``size > 0`` each shard holds at most ``size // 64`` entries and
    drops arbitrary entries to make room; ``size <= 0`` means unbounded.
    """

    def __init__(self, size: int = 0) -> None:
        per_shard = size // SHARD_COUNT if size > 0 else 0
        self._shards = [_Shard(per_shard) for _ in range(SHARD_COUNT)]

    def _shard(self, key: K) -> _Shard[K, V]:
        return self._shards[hash(key) % SHARD_COUNT]

    def get(self, key: K) -> V:
        """Return the value for ``key``; raises KeyError if absent."""
        shard = self._shard(key)
        with shard.lock:
            return shard.data[key]

    def set(self, key: K, value: V) -> None:
        self._shard(key).set(key, value)

    def delete(self, key: K) -> None:
        shard = self._shard(key)
        with shard.lock:
            shard.data.pop(key, None)

    def test_and_set(
        self, key: K, f: Callable[[Any, bool], Tuple[V, bool, bool]]
    ) -> None:
        """Atomically call ``f(value, present)`` and apply its decision.

        ``f`` returns ``(new_value, set_value, delete_value)``; ``value`` is
        None when the key is absent.
        """
        shard = self._shard(key)
        with shard.lock:
            present = key in shard.data
            value = shard.data.get(key)
            new_value, set_value, delete_value = f(value, present)
            if set_value:
                shard.data[key] = new_value
            elif delete_value and present:
                del shard.data[key]

    def range_do(self, f: Callable[[K, V], Tuple[V, bool, bool]]) -> None:
        """Call ``f(key, value)`` for every entry, applying its decision.

        ``f`` returns ``(new_value, set_value, delete_value)``. An exception
        raised by ``f`` stops the walk and propagates.
        """
        for shard in self._shards:
            with shard.lock:
                for key, value in list(shard.data.items()):
                    new_value, set_value, delete_value = f(key, value)
                    if set_value:
                        shard.data[key] = new_value
                    elif delete_value:
                        shard.data.pop(key, None)

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.data)
        return total

    def flush(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.data = {}