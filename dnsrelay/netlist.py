"""A sorted list of IP networks searched by binary search."""

from __future__ import annotations

from bisect import bisect_right
from ipaddress import (
    IPv4Address,
    IPv4Network,
    IPv6Address,
    IPv6Network,
    ip_address,
    ip_network,
)
from typing import Iterable, List, Optional, Tuple, Union

Address = Union[IPv4Address, IPv6Address]
Network = Union[IPv4Network, IPv6Network]

_V4_MAPPED = 0xFFFF << 32
_BITS = 128


def _to6(addr: Address) -> int:
    if isinstance(addr, IPv4Address):
        return _V4_MAPPED | int(addr)
    return int(addr)


def _end(start: int, bits: int) -> int:
    return start | ((1 << (_BITS - bits)) - 1)


class IPList:
    """A list of IP networks suited to large static lookups.

    IPv4 networks are stored as IPv4-mapped IPv6 networks. After any
    :meth:`append`, :meth:`sort` must be called before :meth:`contains`.
    """

    def __init__(self) -> None:
        self._entries: List[Tuple[int, int]] = []
        self._starts: List[int] = []
        self._ends: List[int] = []
        self._sorted = False

    def append(self, *args: Union[str, Network]) -> None:
        """Add networks; strings may have host bits set, which are masked off."""
        converted = []
        for net in args:
            if isinstance(net, str):
                net = ip_network(net, strict=False)
            bits = net.prefixlen
            if isinstance(net, IPv4Network):
                bits += 96
            start = _to6(net.network_address)
            start &= ~((1 << (_BITS - bits)) - 1)
            converted.append((start, bits))
        self._entries.extend(converted)
        self._sorted = False

    def sort(self) -> None:
        """Sort the list and drop networks covered by others."""
        if self._sorted:
            return
        self._entries.sort(key=lambda e: e[0])
        out: List[Tuple[int, int]] = []
        for start, bits in self._entries:
            if out:
                last_start, last_bits = out[-1]
                if start == last_start:
                    if bits < last_bits:
                        out[-1] = (start, bits)
                    continue
                if start <= _end(last_start, last_bits):
                    continue
            out.append((start, bits))
        self._entries = out
        self._starts = [s for s, _ in out]
        self._ends = [_end(s, b) for s, b in out]
        self._sorted = True

    def __len__(self) -> int:
        return len(self._entries)

    def contains(self, addr: Optional[Union[str, Address]]) -> bool:
        """Report whether ``addr`` lies in one of the networks.

        Raises RuntimeError if the list was modified and not sorted since.
        """
        if not self._sorted:
            raise RuntimeError("list is not sorted")
        if addr is None:
            return False
        if isinstance(addr, str):
            addr = ip_address(addr)
        a = _to6(addr)
        i = bisect_right(self._starts, a)
        if i == 0:
            return False
        return a <= self._ends[i - 1]

    def match(self, addr: Optional[Union[str, Address]]) -> bool:
        """Same as :meth:`contains`."""
        return self.contains(addr)


def load_from_reader(ip_list: IPList, reader: Iterable[Union[str, bytes]]) -> None:
    """Add one address or network per line from ``reader``.

    Text after ``#`` or after the first space is ignored, as are empty
    lines. Leaves ``ip_list`` unsorted. Raises ValueError naming the line.
    """
    for line_no, line in enumerate(reader, 1):
        if isinstance(line, bytes):
            line = line.decode()
        s = line.strip()
        s = s.partition("#")[0]
        s = s.partition(" ")[0]
        if not s:
            continue
        try:
            load_from_text(ip_list, s)
        except ValueError as e:
            raise ValueError(f"invalid data at line #{line_no}: {e}") from e


def load_from_text(ip_list: IPList, s: str) -> None:
    """Add one address or network given as text. Leaves ``ip_list`` unsorted."""
    if "/" in s:
        ip_list.append(ip_network(s, strict=False))
        return
    addr = ip_address(s)
    ip_list.append(ip_network((addr, addr.max_prefixlen)))