"""VarInt (CompactSize) encoding and bounded stream reads."""

from __future__ import annotations

import struct
from typing import TYPE_CHECKING

from cltv_engine.errors.definitions import MalformedEncodingError

if TYPE_CHECKING:
    from io import BytesIO


def encode_varint(n: int) -> bytes:
    """Encode an integer as a Bitcoin-style variable-length integer."""
    if n < 0:
        msg = f"varint must be non-negative, got {n}"
        raise ValueError(msg)
    if n < 0xFD:
        return struct.pack("<B", n)
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def read_exact(stream: BytesIO, size: int, what: str) -> bytes:
    """Read exactly *size* bytes or raise.

    Raises:
        MalformedEncodingError: If the stream ends early.
    """
    data = stream.read(size)
    if len(data) != size:
        msg = f"Unexpected end of stream reading {what}"
        raise MalformedEncodingError(msg)
    return data


def read_varint(stream: BytesIO) -> int:
    """Read a Bitcoin-style variable-length integer from a byte stream.

    Raises:
        MalformedEncodingError: If the stream ends early or the encoding
            is not the shortest one.
    """
    n = read_exact(stream, 1, "varint")[0]
    if n < 0xFD:
        return n
    if n == 0xFD:
        value = struct.unpack("<H", read_exact(stream, 2, "varint"))[0]
        minimum = 0xFD
    elif n == 0xFE:
        value = struct.unpack("<I", read_exact(stream, 4, "varint"))[0]
        minimum = 0x10000
    else:
        value = struct.unpack("<Q", read_exact(stream, 8, "varint"))[0]
        minimum = 0x100000000
    if value < minimum:
        msg = f"non-canonical varint for {value}"
        raise MalformedEncodingError(msg)
    return value
