"""Script number codec — minimal little-endian sign-magnitude integers.

Numeric operands inside scripts are encoded as the shortest little-endian
byte string whose last byte's top bit carries the sign:
- 0 encodes as the empty string
- an extra 0x00 / 0x80 byte is appended when the magnitude's top bit is set
- decoding rejects any encoding that is not the minimal one
"""

from __future__ import annotations

from cltv_engine.errors.definitions import MalformedEncodingError

# Default operand size for arithmetic opcodes
DEFAULT_MAX_SIZE = 4

# CHECKLOCKTIMEVERIFY / CHECKSEQUENCEVERIFY accept 5-byte operands
LOCKTIME_MAX_SIZE = 5


def encode(n: int) -> bytes:
    """Encode an integer as a minimal script number."""
    if n == 0:
        return b""

    negative = n < 0
    magnitude = abs(n)

    result = bytearray()
    while magnitude:
        result.append(magnitude & 0xFF)
        magnitude >>= 8

    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80

    return bytes(result)


def is_minimal(data: bytes) -> bool:
    """Check that *data* is the shortest encoding of its value."""
    if not data:
        return True
    # Last byte carries only the sign (or nothing): it is redundant unless the
    # byte before it needs its top bit to stay part of the magnitude.
    if data[-1] & 0x7F == 0:
        if len(data) == 1 or not data[-2] & 0x80:
            return False
    return True


def decode(
    data: bytes,
    *,
    max_size: int = DEFAULT_MAX_SIZE,
    require_minimal: bool = True,
) -> int:
    """Decode a script number.

    Args:
        data: Encoded bytes.
        max_size: Maximum accepted operand length.
        require_minimal: Reject non-minimal encodings (always on for
            anything this engine emits or accepts).

    Raises:
        MalformedEncodingError: If the operand is too long or non-minimal.
    """
    if len(data) > max_size:
        msg = f"script number overflow: {len(data)} bytes > {max_size}"
        raise MalformedEncodingError(msg)
    if require_minimal and not is_minimal(data):
        msg = f"non-minimally encoded script number: {data.hex()}"
        raise MalformedEncodingError(msg)
    if not data:
        return 0

    value = int.from_bytes(data, "little")
    sign_bit = 0x80 << (8 * (len(data) - 1))
    if value & sign_bit:
        return -(value & ~sign_bit)
    return value
