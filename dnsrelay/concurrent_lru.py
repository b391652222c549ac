"""Thread-safe LRU caches: a locked LRU and a sharded set of them."""

from __future__ import annotations

import threading
from typing import Callable, Generic, Hashable, List, Optional, TypeVar

from .lru import LRU

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ConcurrentLRU(Generic[K, V]):
    """An :class:`LRU` guarded by a lock."""

    def __init__(
        self, max_size: int, on_evict: Optional[Callable[[K, V], None]] = None
    ) -> None:
        self._lock = threading.Lock()
        self._lru: LRU[K, V] = LRU(max_size, on_evict)

    def add(self, key: K, value: V) -> None:
        with self._lock:
            self._lru.add(key, value)

    def delete(self, key: K) -> None:
        with self._lock:
            self._lru.delete(key)

    def clean(self, f: Callable[[K, V], bool]) -> int:
        with self._lock:
            return self._lru.clean(f)

    def flush(self) -> None:
        with self._lock:
            self._lru.flush()

    def get(self, key: K) -> V:
        """Return the value for ``key``; raises KeyError if absent."""
        with self._lock:
            return self._lru.get(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._lru)


class ShardedLRU(Generic[K, V]):
    """Several :class:`ConcurrentLRU` shards selected by key hash."""

    def __init__(
        self,
        shard_num: int,
        max_size_per_shard: int,
        on_evict: Optional[Callable[[K, V], None]] = None,
    ) -> None:
        if shard_num <= 0:
            raise ValueError(f"invalid shard number: {shard_num}")
        self._shards: List[ConcurrentLRU[K, V]] = [
            ConcurrentLRU(max_size_per_shard, on_evict) for _ in range(shard_num)
        ]

    def _shard(self, key: K) -> ConcurrentLRU[K, V]:
        return self._shards[hash(key) % len(self._shards)]

    def add(self, key: K, value: V) -> None:
        self._shard(key).add(key, value)

    def delete(self, key: K) -> None:
        self._shard(key).delete(key)

    def clean(self, f: Callable[[K, V], bool]) -> int:
        return sum(shard.clean(f) for shard in self._shards)

    def flush(self) -> None:
        for shard in self._shards:
            shard.flush()

    def get(self, key: K) -> V:
        """Return the value for ``key``; raises KeyError if absent."""
        return self._shard(key).get(key)

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)