"""Extraction of the IP address held in a PTR query name."""

from __future__ import annotations

import re
from ipaddress import IPv4Address, IPv6Address
from itertools import islice
from typing import Iterator, Tuple, Union

IP4_ARPA = ".in-addr.arpa."
IP6_ARPA = ".ip6.arpa."

_DECIMAL = re.compile(r"[0-9]+")


def parse_ptr_qname(fqdn: str) -> Union[IPv4Address, IPv6Address]:
    """Return the address a PTR query name refers to.

    Raises ValueError if the name has no reverse-lookup suffix or is malformed.
    """
    if fqdn.endswith(IP4_ARPA):
        return reverse4(fqdn[: -len(IP4_ARPA)])
    if fqdn.endswith(IP6_ARPA):
        return reverse6(fqdn[: -len(IP6_ARPA)])
    raise ValueError("domain does not have a ptr suffix")


def _prev_label(s: str, offset: int) -> Tuple[str, int]:
    while True:
        head = s[:offset]
        n = head.rfind(".")
        label = head[n + 1 : offset]
        if n != -1 and not label:
            offset = n
            continue
        return label, n


def _labels_backward(s: str) -> Iterator[str]:
    offset = len(s)
    while offset > 0:
        label, offset = _prev_label(s, offset)
        yield label


def reverse4(s: str) -> IPv4Address:
    """Read an IPv4 address from reversed decimal labels, last label first."""
    buf = bytearray()
    for label in islice(_labels_backward(s), 4):
        if not _DECIMAL.fullmatch(label) or int(label) > 255:
            raise ValueError(f"invalid bit {label!r}")
        buf.append(int(label))
    if len(buf) < 4:
        raise ValueError(f"expect at least 4 labels, got {len(buf)}")
    return IPv4Address(bytes(buf))


def _hex2byte(c: str) -> int:
    if "0" <= c <= "9":
        return ord(c) - ord("0")
    lower = chr(ord(c) | 0x20)
    if "a" <= lower <= "z":
        return ord(lower) - ord("a") + 10
    raise ValueError(f"invalid bit {c!r}")


def reverse6(s: str) -> IPv6Address:
    """Read an IPv6 address from reversed nibble labels, last label first."""
    buf = bytearray()
    high = None
    labels = _labels_backward(s)
    while len(buf) < 16:
        label = next(labels, None)
        if label is None:
            break
        if len(label) != 1:
            raise ValueError(f"invalid label {label}")
        n = _hex2byte(label)
        if high is None:
            high = n
        else:
            buf.append(((high << 4) + n) & 0xFF)
            high = None
    if len(buf) < 16:
        raise ValueError(f"expect at least 16 bytes, got {len(buf)}")
    return IPv6Address(bytes(buf))