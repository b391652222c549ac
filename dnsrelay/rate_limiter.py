"""Per-client token bucket rate limiting."""

from __future__ import annotations

import functools
import math
import operator
import threading
import time
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Callable, Dict, Optional, Union

TABLE_SHARDS = 32
GC_INTERVAL = 60.0

Address = Union[IPv4Address, IPv6Address]


class TokenBucket:
    """Token bucket allowing ``limit`` events per second with bursts of ``burst``.

    The bucket starts full. A limit of ``math.inf`` allows every event.
    Times are seconds on the :func:`time.monotonic` clock.
    """

    def __init__(self, limit: float, burst: int) -> None:
        self.limit = limit
        self.burst = burst
        self._tokens = float(burst)
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def allow(self, now: Optional[float] = None) -> bool:
        """Take one token at time ``now`` if one is available."""
        if now is None:
            now = time.monotonic()
        with self._lock:
            if self.limit == math.inf:
                return True
            last = self._last if self._last is not None else now
            if now < last:
                last = now
            tokens = min(float(self.burst), self._tokens + (now - last) * self.limit)
            if self.burst < 1 or tokens < 1:
                return False
            self._tokens = tokens - 1
            self._last = now
            return True


@dataclass
class _Entry:
    bucket: TokenBucket
    last_seen: float


@dataclass
class _TableShard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    table: Dict[Address, _Entry] = field(default_factory=dict)


def _shard_index(addr: Address) -> int:
    return functools.reduce(operator.xor, addr.packed, 0) % TABLE_SHARDS


class RateLimiter:
    """Rate limiter keeping one :class:`TokenBucket` per client address.

    A background collector removes clients not seen for ``gc_interval``
    seconds. If refilling the bucket (burst / limit) takes longer than
    that, the effective rate may be higher than ``limit`` because a
    forgotten client starts again with a full bucket.
    """

    def __init__(self, limit: float, burst: int, gc_interval: float = GC_INTERVAL) -> None:
        self.limit = limit
        self.burst = burst
        self._shards = [_TableShard() for _ in range(TABLE_SHARDS)]
        self._closed = threading.Event()
        self._collector = threading.Thread(
            target=self._gc_loop, args=(gc_interval,), daemon=True
        )
        self._collector.start()

    @staticmethod
    def _as_address(addr: Union[str, Address]) -> Address:
        return ip_address(addr) if isinstance(addr, str) else addr

    def allow(self, addr: Union[str, Address]) -> bool:
        """Report whether a query from ``addr`` is allowed now."""
        addr = self._as_address(addr)
        now = time.monotonic()
        shard = self._shards[_shard_index(addr)]
        with shard.lock:
            entry = shard.table.get(addr)
            if entry is None:
                entry = _Entry(TokenBucket(self.limit, self.burst), now)
                shard.table[addr] = entry
            entry.last_seen = now
        return entry.bucket.allow(now)

    def close(self) -> None:
        """Stop the background collector. Calling it again does nothing."""
        self._closed.set()

    def _gc_loop(self, interval: float) -> None:
        while not self._closed.wait(interval):
            self.gc(time.monotonic(), interval)

    def gc(self, now: float, interval: float) -> None:
        """Forget clients last seen more than ``interval`` seconds before ``now``."""
        for shard in self._shards:
            with shard.lock:
                stale = [a for a, e in shard.table.items() if now - e.last_seen > interval]
                for a in stale:
                    del shard.table[a]

    def for_each(self, f: Callable[[Address, TokenBucket], bool]) -> bool:
        """Call ``f(addr, bucket)`` per client; stop and return True when it returns True."""
        for shard in self._shards:
            with shard.lock:
                for addr, entry in list(shard.table.items()):
                    if f(addr, entry.bucket):
                        return True
        return False

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.table)
        return total