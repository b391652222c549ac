"""Reading and writing DNS messages over stream and datagram transports.

TCP messages use the RFC 1035 framing: a two-byte big-endian length
followed by the message. Streams are binary file-like objects.
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Tuple

import dns.exception
import dns.message

DNS_HEADER_LEN = 12
MAX_MSG_SIZE = 65535
MIN_MSG_SIZE = 512


class PayloadTooSmallError(ValueError):
    """The announced payload is too small to hold a DNS message."""

    def __init__(self) -> None:
        super().__init__("payload is too small for a valid dns msg")


def _unpack(data: bytes) -> dns.message.Message:
    try:
        return dns.message.from_wire(data)
    except dns.exception.DNSException as e:
        raise ValueError(f"failed to unpack msg [{data.hex()}], {e}") from e


def _read_full(stream: BinaryIO, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        chunk = stream.read(n - len(buf))
        if not chunk:
            raise EOFError("unexpected EOF" if buf else "EOF")
        buf += chunk
    return bytes(buf)


def pack_tcp_buffer(msg: dns.message.Message) -> bytes:
    """Return ``msg`` in wire format prefixed with its two-byte length."""
    wire = msg.to_wire()
    if len(wire) > MAX_MSG_SIZE:
        raise ValueError(f"dns payload size {len(wire)} is too large")
    return struct.pack("!H", len(wire)) + wire


def read_raw_msg_from_tcp(stream: BinaryIO) -> bytes:
    """Read one length-prefixed message from ``stream`` and return its payload.

    Raises EOFError if the stream ends early and PayloadTooSmallError if
    the announced length cannot hold a DNS header.
    """
    (length,) = struct.unpack("!H", _read_full(stream, 2))
    if length <= DNS_HEADER_LEN:
        raise PayloadTooSmallError()
    return _read_full(stream, length)


def read_msg_from_tcp(stream: BinaryIO) -> Tuple[dns.message.Message, int]:
    """Read and parse one message; return it and the number of bytes read."""
    data = read_raw_msg_from_tcp(stream)
    return _unpack(data), len(data) + 2


def write_msg_to_tcp(stream: BinaryIO, msg: dns.message.Message) -> int:
    """Write ``msg`` with its length prefix; return the number of bytes written."""
    return stream.write(pack_tcp_buffer(msg))


def write_raw_msg_to_tcp(stream: BinaryIO, data: bytes) -> int:
    """Write an already packed message with its length prefix."""
    if len(data) > MAX_MSG_SIZE:
        raise ValueError(
            f"payload length {len(data)} is greater than dns max msg size"
        )
    return stream.write(struct.pack("!H", len(data)) + bytes(data))


def write_msg_to_udp(stream: BinaryIO, msg: dns.message.Message) -> int:
    """Write ``msg`` in wire format without framing."""
    return stream.write(msg.to_wire())


def read_msg_from_udp(
    stream: BinaryIO, buf_size: int = MIN_MSG_SIZE
) -> Tuple[dns.message.Message, int]:
    """Read one datagram of at most ``buf_size`` bytes (at least 512) and parse it."""
    buf_size = max(buf_size, MIN_MSG_SIZE)
    data = stream.read(buf_size)
    return _unpack(data), len(data)