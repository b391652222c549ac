"""A least-recently-used cache with an eviction callback."""

from __future__ import annotations

from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from .linkedlist import Elem, LinkedList

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

EvictCallback = Callable[[K, V], None]


class LRU(Generic[K, V]):
    """LRU cache holding at most ``max_size`` entries.

    ``on_evict`` is called for entries dropped because the cache is full,
    removed by :meth:`delete` or removed by :meth:`clean`.
    """

    def __init__(self, max_size: int, on_evict: Optional[EvictCallback] = None) -> None:
        if max_size <= 0:
            raise ValueError(f"LRU: invalid max size: {max_size}")
        self._max_size = max_size
        self._on_evict = on_evict
        self._list: LinkedList[Tuple[K, V]] = LinkedList()
        self._index: Dict[K, Elem[Tuple[K, V]]] = {}

    def add(self, key: K, value: V) -> None:
        """Store ``value`` under ``key`` as the most recently used entry."""
        e = self._index.get(key)
        if e is not None:
            e.value = (key, value)
            self._list.push_back(self._list.pop_elem(e))
            return

        for _ in range(len(self) - self._max_size + 1):
            old_key, old_value = self.pop_oldest()
            if self._on_evict is not None:
                self._on_evict(old_key, old_value)

        e = Elem((key, value))
        self._index[key] = e
        self._list.push_back(e)

    def delete(self, key: K) -> None:
        """Remove ``key`` if present."""
        e = self._index.get(key)
        if e is not None:
            self._del_elem(e)

    def _del_elem(self, e: Elem[Tuple[K, V]]) -> None:
        key, value = e.value
        self._list.pop_elem(e)
        del self._index[key]
        if self._on_evict is not None:
            self._on_evict(key, value)

    def pop_oldest(self) -> Tuple[K, V]:
        """Remove and return the least recently used ``(key, value)``.

        Raises KeyError if the cache is empty.
        """
        e = self._list.front()
        if e is None:
            raise KeyError("pop_oldest(): LRU is empty")
        self._list.pop_elem(e)
        key, value = e.value
        del self._index[key]
        return key, value

    def clean(self, f: Callable[[K, V], bool]) -> int:
        """Remove every entry for which ``f(key, value)`` is true; return the count."""
        removed = 0
        e = self._list.front()
        while e is not None:
            nxt = e.next()
            key, value = e.value
            if f(key, value):
                self._del_elem(e)
                removed += 1
            e = nxt
        return removed

    def flush(self) -> None:
        """Drop every entry without calling the eviction callback."""
        self._list = LinkedList()
        self._index = {}

    def get(self, key: K) -> V:
        """Return the value for ``key`` and mark it recently used.

        Raises KeyError if the key is absent.
        """
        e = self._index.get(key)
        if e is None:
            raise KeyError(key)
        self._list.push_back(self._list.pop_elem(e))
        return e.value[1]

    def __len__(self) -> int:
        return len(self._list)