"""The per-query context that travels through the plugins."""

from __future__ import annotations

import itertools
import threading
import time
from copy import deepcopy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Set

import dns.flags
import dns.message
import dns.rrset

EDNS0_SIZE = 1200
_UINT32_MAX = 0xFFFFFFFF
_FLAGS_MASK = 0xFFFF

_counter_lock = threading.Lock()
_context_ids = itertools.count(1)
_key_ids = itertools.count(1)


def reg_key() -> int:
    """Return a new unique key for :meth:`Context.store_value`.

    Meant to be called during initialisation. Raises OverflowError once
    the 32-bit key space is used up.
    """
    with _counter_lock:
        i = next(_key_ids)
    if i > _UINT32_MAX:
        raise OverflowError("key id overflowed")
    return i


def _next_context_id() -> int:
    with _counter_lock:
        return next(_context_ids) & _UINT32_MAX


@dataclass
class Opt:
    """The EDNS0 pseudo-record of a message."""

    udp_size: int = EDNS0_SIZE
    flags: int = 0
    version: int = 0
    options: List[Any] = field(default_factory=list)

    @property
    def do(self) -> bool:
        """The DNSSEC OK bit."""
        return bool(self.flags & dns.flags.DO)

    @do.setter
    def do(self, value: bool) -> None:
        if value:
            self.flags |= dns.flags.DO
        else:
            self.flags &= ~dns.flags.DO

    def copy(self) -> "Opt":
        """Return a copy with its own option list."""
        return replace(self, options=list(self.options))


def _read_opt(msg: dns.message.Message) -> Optional[Opt]:
    if msg.edns < 0:
        return None
    return Opt(
        udp_size=msg.payload,
        flags=msg.ednsflags & _FLAGS_MASK,
        version=msg.edns,
        options=list(msg.options),
    )


def _pop_opt(msg: dns.message.Message) -> Optional[Opt]:
    opt = _read_opt(msg)
    if opt is not None:
        msg.use_edns(False)
    return opt


def _install_new_opt(msg: dns.message.Message) -> None:
    msg.use_edns(0, 0, EDNS0_SIZE, options=[])


class Context:
    """State of one query on its way through the plugins.

    The query always carries exactly one question and a fresh EDNS0 record
    of this server; the client's own record is kept in :attr:`client_opt`.
    The response never carries EDNS0: the record sent to the client is
    :attr:`resp_opt`, and the upstream's one is :attr:`upstream_opt`.
    A Context is not safe for concurrent use.
    """

    def __init__(self, query: dns.message.Message, server_meta: Any = None) -> None:
        if len(query.question) != 1:
            raise ValueError(
                f"query must have exactly one question, got {len(query.question)}"
            )
        self._id = _next_context_id()
        self._start_time = time.time()
        self._start_clock = time.monotonic()
        self.server_meta = server_meta
        self._query = query
        self._client_opt = _pop_opt(query)
        _install_new_opt(query)

        self._resp_opt: Optional[Opt] = None
        if self._client_opt is not None:
            self._resp_opt = Opt()
            # RFC 3225 3: the DO bit of the query must be copied in the response.
            if self._client_opt.do:
                self._resp_opt.do = True

        self._response: Optional[dns.message.Message] = None
        self._upstream_opt: Optional[Opt] = None
        self._kv: Dict[int, Any] = {}
        self._marks: Set[int] = set()

    @property
    def id(self) -> int:
        """A unique number growing with each query; not the DNS message id."""
        return self._id

    @property
    def start_time(self) -> float:
        """POSIX time at which the context was created."""
        return self._start_time

    @property
    def query(self) -> dns.message.Message:
        """The query forwarded upstream."""
        return self._query

    @property
    def query_opt(self) -> Opt:
        """A snapshot of the query's EDNS0 record."""
        opt = _read_opt(self._query)
        if opt is None:
            raise RuntimeError("query opt is missing")
        return opt

    @property
    def client_opt(self) -> Optional[Opt]:
        """The EDNS0 record sent by the client, or None. Read-only."""
        return self._client_opt

    @property
    def response(self) -> Optional[dns.message.Message]:
        """The response for the client, or None."""
        return self._response

    @property
    def resp_opt(self) -> Optional[Opt]:
        """The EDNS0 record for the client; None if the client sent none."""
        return self._resp_opt

    @property
    def upstream_opt(self) -> Optional[Opt]:
        """The EDNS0 record from the upstream response, or None. Read-only."""
        return self._upstream_opt

    def question(self) -> dns.rrset.RRset:
        """Return the single question of the query."""
        return self._query.question[0]

    def set_response(self, msg: Optional[dns.message.Message]) -> None:
        """Take ``msg`` as the response, moving its EDNS0 to :attr:`upstream_opt`.

        None removes the current response.
        """
        self._response = msg
        self._upstream_opt = None if msg is None else _pop_opt(msg)

    def copy(self) -> "Context":
        """Return a deep copy; stored values themselves are shared."""
        new = Context.__new__(Context)
        new._id = self._id
        new._start_time = self._start_time
        new._start_clock = self._start_clock
        new.server_meta = self.server_meta
        new._query = deepcopy(self._query)
        new._client_opt = self._client_opt
        new._response = None if self._response is None else deepcopy(self._response)
        new._resp_opt = None if self._resp_opt is None else self._resp_opt.copy()
        new._upstream_opt = self._upstream_opt
        new._kv = dict(self._kv)
        new._marks = set(self._marks)
        return new

    def store_value(self, key: int, value: Any) -> None:
        """Store ``value`` under a key obtained from :func:`reg_key`."""
        self._kv[key] = value

    def get_value(self, key: int) -> Any:
        """Return the stored value; raises KeyError if absent."""
        return self._kv[key]

    def delete_value(self, key: int) -> None:
        self._kv.pop(key, None)

    def set_mark(self, mark: int) -> None:
        self._marks.add(mark)

    def has_mark(self, mark: int) -> bool:
        return mark in self._marks

    def delete_mark(self, mark: int) -> None:
        self._marks.discard(mark)

    def info(self) -> Dict[str, Any]:
        """Return a short summary suitable for structured logging."""
        summary: Dict[str, Any] = {"uqid": self._id}
        client = getattr(self.server_meta, "client_addr", None)
        if client:
            summary["client"] = str(client)
        q = self.question()
        summary["qname"] = q.name.to_text()
        summary["qtype"] = int(q.rdtype)
        summary["qclass"] = int(q.rdclass)
        if self._response is not None:
            summary["rcode"] = int(self._response.rcode())
        summary["elapsed"] = time.monotonic() - self._start_clock
        return summary