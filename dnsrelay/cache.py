"""An in-memory key/value cache whose entries expire at a given time."""

from __future__ import annotations

import threading
import time
from typing import Callable, Generic, Hashable, Tuple, TypeVar

from .concurrent_map import ConcurrentMap

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_SIZE = 1024
DEFAULT_CLEANER_INTERVAL = 10.0


class Cache(Generic[K, V]):
    """Thread-safe expiring cache.

    Expiration times are POSIX timestamps as returned by :func:`time.time`.
    A background cleaner drops expired entries every ``cleaner_interval``
    seconds until :meth:`close` is called. Non-positive ``size`` or
    ``cleaner_interval`` select the defaults (1024 entries, 10 seconds).
    """

    def __init__(self, size: int = 0, cleaner_interval: float = 0.0) -> None:
        if size <= 0:
            size = DEFAULT_SIZE
        if cleaner_interval <= 0:
            cleaner_interval = DEFAULT_CLEANER_INTERVAL
        self._map: ConcurrentMap[K, Tuple[V, float]] = ConcurrentMap(size)
        self._closed = threading.Event()
        self._cleaner = threading.Thread(
            target=self._gc_loop, args=(cleaner_interval,), daemon=True
        )
        self._cleaner.start()

    def close(self) -> None:
        """Stop the background cleaner. Calling it again does nothing."""
        self._closed.set()

    def __enter__(self) -> "Cache[K, V]":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def get(self, key: K) -> Tuple[V, float]:
        """Return ``(value, expiration_time)`` for ``key``.

        Raises KeyError if the key is absent or its entry has expired; an
        expired entry is removed.
        """
        value, expiration_time = self._map.get(key)
        if expiration_time < time.time():
            self._map.delete(key)
            raise KeyError(key)
        return value, expiration_time

    def range(self, f: Callable[[K, V, float], None]) -> None:
        """Call ``f(key, value, expiration_time)`` for every stored entry.

        An exception raised by ``f`` stops the walk and propagates.
        """

        def visit(key: K, entry: Tuple[V, float]) -> Tuple[None, bool, bool]:
            f(key, entry[0], entry[1])
            return None, False, False

        self._map.range_do(visit)

    def store(self, key: K, value: V, expiration_time: float) -> None:
        """Store ``value`` until ``expiration_time``; a past time is ignored."""
        if time.time() > expiration_time:
            return
        self._map.set(key, (value, expiration_time))

    def gc(self, now: float) -> None:
        """Remove every entry that expired before ``now``."""
        self._map.range_do(lambda _key, entry: (None, False, now > entry[1]))

    def _gc_loop(self, interval: float) -> None:
        while not self._closed.wait(interval):
            self.gc(time.time())

    def __len__(self) -> int:
        return len(self._map)

    def flush(self) -> None:
        """Remove every stored entry."""
        self._map.flush()