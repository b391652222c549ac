"""A static host table answering A and AAAA queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import List, Optional, Tuple

import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from .dnsutils import fake_soa
from .domain_matcher import Matcher

HOSTS_TTL = 10


@dataclass
class IPs:
    """The addresses recorded for one host pattern."""

    ipv4: List[IPv4Address] = field(default_factory=list)
    ipv6: List[IPv6Address] = field(default_factory=list)


class Hosts:
    """Answers queries from a domain matcher whose values are :class:`IPs`."""

    def __init__(self, matcher: Matcher[IPs]) -> None:
        self._matcher = matcher

    def lookup(self, fqdn: str) -> Tuple[List[IPv4Address], List[IPv6Address]]:
        """Return the IPv4 and IPv6 addresses for ``fqdn``; empty if unknown."""
        try:
            ips = self._matcher.match(fqdn)
        except KeyError:
            return [], []
        return list(ips.ipv4), list(ips.ipv6)

    def lookup_msg(self, msg: dns.message.Message) -> Optional[dns.message.Message]:
        """Build a reply to an A or AAAA query, or return None if not known.

        A known host without addresses of the asked type gets an empty
        reply with a fake SOA record.
        """
        if len(msg.question) != 1:
            return None
        q = msg.question[0]
        if q.rdclass != dns.rdataclass.IN or q.rdtype not in (
            dns.rdatatype.A,
            dns.rdatatype.AAAA,
        ):
            return None

        ipv4, ipv6 = self.lookup(q.name.to_text())
        if not ipv4 and not ipv6:
            return None

        reply = dns.message.make_response(msg)
        reply.use_edns(False)
        if q.rdtype == dns.rdatatype.A and ipv4:
            reply.answer.append(
                dns.rrset.from_text_list(
                    q.name, HOSTS_TTL, dns.rdataclass.IN, dns.rdatatype.A,
                    [str(ip) for ip in ipv4],
                )
            )
        elif q.rdtype == dns.rdatatype.AAAA and ipv6:
            reply.answer.append(
                dns.rrset.from_text_list(
                    q.name, HOSTS_TTL, dns.rdataclass.IN, dns.rdatatype.AAAA,
                    [str(ip) for ip in ipv6],
                )
            )

        if not reply.answer:
            reply.authority = [fake_soa(q.name)]
        return reply


def parse_ips(s: str) -> Tuple[str, IPs]:
    """Parse "pattern ip [ip...]" into the pattern and its addresses."""
    fields = s.split()
    if not fields:
        raise ValueError("empty string")
    pattern, *addrs = fields
    ips = IPs()
    for text in addrs:
        try:
            ip = ip_address(text)
        except ValueError as e:
            raise ValueError(f"invalid ip addr {text}, {e}") from e
        if isinstance(ip, IPv4Address):
            ips.ipv4.append(ip)
        else:
            ips.ipv6.append(ip)
    return pattern, ips