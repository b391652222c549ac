"""Helpers for inspecting and adjusting DNS messages."""

from __future__ import annotations

from typing import Iterator, Union

import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset

FAKE_SOA_TTL = 300
_FAKE_SOA_RDATA = (
    "fake-ns.dnsrelay.fake.root. fake-mbox.dnsrelay.fake.root. "
    "2021110400 1800 900 604800 86400"
)


def _ttl_rrsets(msg: dns.message.Message) -> Iterator[dns.rrset.RRset]:
    """Yield every RRset of the answer, authority and additional sections
    except OPT, whose TTL field is not a TTL."""
    for section in (msg.answer, msg.authority, msg.additional):
        for rrset in section:
            if rrset.rdtype != dns.rdatatype.OPT:
                yield rrset


def get_minimal_ttl(msg: dns.message.Message) -> int:
    """Return the smallest TTL in ``msg``, or 0 if it holds no record."""
    return min((rrset.ttl for rrset in _ttl_rrsets(msg)), default=0)


def set_ttl(msg: dns.message.Message, ttl: int) -> None:
    """Set the TTL of every record in ``msg`` to ``ttl``."""
    for rrset in _ttl_rrsets(msg):
        rrset.ttl = ttl


def apply_maximum_ttl(msg: dns.message.Message, ttl: int) -> None:
    """Lower every TTL greater than ``ttl`` to ``ttl``."""
    for rrset in _ttl_rrsets(msg):
        if rrset.ttl > ttl:
            rrset.ttl = ttl


def apply_minimal_ttl(msg: dns.message.Message, ttl: int) -> None:
    """Raise every TTL smaller than ``ttl`` to ``ttl``."""
    for rrset in _ttl_rrsets(msg):
        if rrset.ttl < ttl:
            rrset.ttl = ttl


def subtract_ttl(msg: dns.message.Message, delta: int) -> bool:
    """Subtract ``delta`` from every TTL.

    A TTL not greater than ``delta`` becomes 1; the function then returns
    True to report the overflow.
    """
    overflowed = False
    for rrset in _ttl_rrsets(msg):
        if rrset.ttl > delta:
            rrset.ttl -= delta
        else:
            rrset.ttl = 1
            overflowed = True
    return overflowed


def qclass_to_string(value: int) -> str:
    """Return the mnemonic of a query class, or its number as text."""
    text = dns.rdataclass.to_text(value)
    return str(value) if text == f"CLASS{value}" else text


def qtype_to_string(value: int) -> str:
    """Return the mnemonic of a query type, or its number as text."""
    text = dns.rdatatype.to_text(value)
    return str(value) if text == f"TYPE{value}" else text


def gen_empty_reply(query: dns.message.Message, rcode: int) -> dns.message.Message:
    """Build a reply to ``query`` with ``rcode`` and a fake SOA in authority."""
    reply = dns.message.make_response(query)
    reply.use_edns(False)
    reply.set_rcode(rcode)
    if len(query.question) > 1:
        name = query.question[0].name
    else:
        name = dns.name.root
    reply.authority = [fake_soa(name)]
    return reply


def fake_soa(name: Union[str, dns.name.Name]) -> dns.rrset.RRset:
    """Return a placeholder SOA record set owned by ``name``."""
    if isinstance(name, str):
        name = dns.name.from_text(name)
    return dns.rrset.from_text(
        name, FAKE_SOA_TTL, dns.rdataclass.IN, dns.rdatatype.SOA, _FAKE_SOA_RDATA
    )