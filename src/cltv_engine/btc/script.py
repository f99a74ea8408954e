"""Script building — opcodes, minimal pushes, CLTV branch template.

Provides construction and static inspection of the scripts this engine emits:
- ``Script`` value type (serialized bytes, parsed ops, asm)
- Minimal data / number pushes
- The two-branch CHECKLOCKTIMEVERIFY witness script and its parser
- Script type detection for witness programs
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING

from cltv_engine.btc import scriptnum
from cltv_engine.btc.keys import is_compressed_public_key
from cltv_engine.btc.locktime import BlockHeight, UnixTime, decode_locktime
from cltv_engine.errors.definitions import (
    InvalidKeyError,
    MalformedEncodingError,
    OutOfRangeError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cltv_engine.btc.locktime import LockTimeValue

# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------


class OpCode(int, enum.Enum):
    """Opcodes used by the engine's scripts."""

    OP_0 = 0x00
    OP_FALSE = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1NEGATE = 0x4F
    OP_1 = 0x51
    OP_TRUE = 0x51
    OP_16 = 0x60
    OP_IF = 0x63
    OP_NOTIF = 0x64
    OP_ELSE = 0x67
    OP_ENDIF = 0x68
    OP_VERIFY = 0x69
    OP_RETURN = 0x6A
    OP_DROP = 0x75
    OP_DUP = 0x76
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_SHA256 = 0xA8
    OP_HASH160 = 0xA9
    OP_CHECKSIG = 0xAC
    OP_CHECKSIGVERIFY = 0xAD
    OP_CHECKLOCKTIMEVERIFY = 0xB1
    OP_CHECKSEQUENCEVERIFY = 0xB2


# A parsed op: an opcode byte, or the payload of a data push
Op = int | bytes


# ---------------------------------------------------------------------------
# Script Type
# ---------------------------------------------------------------------------


class ScriptType(enum.StrEnum):
    """Known script types."""

    P2WSH = "witness_v0_scripthash"
    P2WPKH = "witness_v0_keyhash"
    CLTV_BRANCH = "cltv_branch"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Push helpers
# ---------------------------------------------------------------------------


def push_data(data: bytes) -> bytes:
    """Encode a data push operation using minimal encoding rules.

    Args:
        data: Arbitrary data bytes.

    Returns:
        The opcode(s) + data for a minimal push of *data*.
    """
    length = len(data)
    if length == 0:
        return bytes([OpCode.OP_0])
    if length <= 0x4B:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OpCode.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OpCode.OP_PUSHDATA2]) + struct.pack("<H", length) + data
    return bytes([OpCode.OP_PUSHDATA4]) + struct.pack("<I", length) + data


def num_op(n: int) -> Op:
    """Return the minimal op pushing the number *n*.

    -1 and 0..16 have dedicated opcodes; everything else is a ScriptNum push.
    """
    if n == 0:
        return OpCode.OP_0
    if n == -1:
        return OpCode.OP_1NEGATE
    if 1 <= n <= 16:
        return OpCode.OP_1 + n - 1
    return scriptnum.encode(n)


def op_to_int(op: Op, *, max_size: int = scriptnum.DEFAULT_MAX_SIZE) -> int:
    """Interpret a parsed op as a number push.

    Raises:
        MalformedEncodingError: If *op* is not a number push.
    """
    if isinstance(op, bytes):
        return scriptnum.decode(op, max_size=max_size)
    if op == OpCode.OP_0:
        return 0
    if op == OpCode.OP_1NEGATE:
        return -1
    if OpCode.OP_1 <= op <= OpCode.OP_16:
        return op - OpCode.OP_1 + 1
    msg = f"expected a number push, got opcode {int(op):#04x}"
    raise MalformedEncodingError(msg)


def _serialize_op(op: Op) -> bytes:
    if isinstance(op, bytes):
        return push_data(op)
    if not 0 <= op <= 0xFF:
        msg = f"opcode out of range: {op}"
        raise ValueError(msg)
    return bytes([op])


def iter_ops(raw: bytes) -> Iterator[Op]:
    """Walk serialized script bytes, yielding opcodes and push payloads.

    Raises:
        MalformedEncodingError: If a push runs past the end of the script.
    """
    i = 0
    end = len(raw)
    while i < end:
        op = raw[i]
        i += 1
        if 0 < op <= 0x4B:
            size = op
        elif op == OpCode.OP_PUSHDATA1:
            size_bytes, i = raw[i : i + 1], i + 1
            if len(size_bytes) != 1:
                msg = "truncated OP_PUSHDATA1 length"
                raise MalformedEncodingError(msg)
            size = size_bytes[0]
        elif op == OpCode.OP_PUSHDATA2:
            size_bytes, i = raw[i : i + 2], i + 2
            if len(size_bytes) != 2:
                msg = "truncated OP_PUSHDATA2 length"
                raise MalformedEncodingError(msg)
            size = struct.unpack("<H", size_bytes)[0]
        elif op == OpCode.OP_PUSHDATA4:
            size_bytes, i = raw[i : i + 4], i + 4
            if len(size_bytes) != 4:
                msg = "truncated OP_PUSHDATA4 length"
                raise MalformedEncodingError(msg)
            size = struct.unpack("<I", size_bytes)[0]
        else:
            yield op
            continue

        data = raw[i : i + size]
        if len(data) != size:
            msg = f"push of {size} bytes runs past end of script"
            raise MalformedEncodingError(msg)
        i += size
        yield data


# ---------------------------------------------------------------------------
# Script value
# ---------------------------------------------------------------------------


_OP_NAMES: dict[int, str] = {}
for _member in OpCode:
    _OP_NAMES.setdefault(_member.value, _member.name)


@dataclass(frozen=True)
class Script:
    """An immutable script.

    Two scripts are equal exactly when their serialized bytes are equal.

    Attributes:
        raw: Serialized script bytes.
    """

    raw: bytes = b""

    @classmethod
    def from_ops(cls, *ops: Op) -> Script:
        """Assemble a script from opcodes and data pushes."""
        return cls(b"".join(_serialize_op(op) for op in ops))

    @classmethod
    def from_bytes(cls, raw: bytes) -> Script:
        """Wrap serialized bytes, checking that every push is complete."""
        script = cls(bytes(raw))
        _ = script.ops
        return script

    @classmethod
    def from_hex(cls, hex_str: str) -> Script:
        return cls.from_bytes(bytes.fromhex(hex_str))

    @cached_property
    def ops(self) -> tuple[Op, ...]:
        """Parsed ops (opcode ints and push payloads)."""
        return tuple(iter_ops(self.raw))

    def __bytes__(self) -> bytes:
        return self.raw

    def __len__(self) -> int:
        return len(self.raw)

    def hex(self) -> str:
        return self.raw.hex()

    def to_asm(self) -> str:
        """Human-readable disassembly."""
        parts = []
        for op in self.ops:
            if isinstance(op, bytes):
                parts.append(op.hex())
            elif op in _OP_NAMES:
                parts.append(_OP_NAMES[op])
            elif OpCode.OP_1 < op <= OpCode.OP_16:
                parts.append(f"OP_{op - OpCode.OP_1 + 1}")
            else:
                parts.append(f"OP_UNKNOWN_{int(op):#04x}")
        return " ".join(parts)


# ---------------------------------------------------------------------------
# CLTV branch script
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CltvBranchTemplate:
    """Parameters recovered from a CLTV branch script."""

    primary_key: bytes
    secondary_key: bytes
    lock: LockTimeValue


def _check_public_key(key: bytes, role: str) -> None:
    if not isinstance(key, bytes | bytearray) or not is_compressed_public_key(bytes(key)):
        length = len(key) if isinstance(key, bytes | bytearray) else "?"
        msg = f"{role} key must be a 33-byte compressed public key (length {length})"
        raise InvalidKeyError(msg)


def build_cltv_branch_script(
    primary_key: bytes,
    secondary_key: bytes,
    lock: LockTimeValue,
) -> Script:
    """Build the two-branch time-locked witness script.

    ::

        OP_IF
            <lock> OP_CHECKLOCKTIMEVERIFY OP_DROP
        OP_ELSE
            <secondary_key> OP_CHECKSIGVERIFY
        OP_ENDIF
        <primary_key> OP_CHECKSIG

    The IF branch needs only the primary signature once the lock has passed;
    the ELSE branch needs both signatures and ignores the lock.

    Raises:
        InvalidKeyError: If either key is not a compressed SEC public key.
    """
    _check_public_key(primary_key, "primary")
    _check_public_key(secondary_key, "secondary")
    if not isinstance(lock, BlockHeight | UnixTime):
        msg = f"lock must be a BlockHeight or UnixTime, got {type(lock).__name__}"
        raise TypeError(msg)

    return Script.from_ops(
        OpCode.OP_IF,
        num_op(lock.encode()),
        OpCode.OP_CHECKLOCKTIMEVERIFY,
        OpCode.OP_DROP,
        OpCode.OP_ELSE,
        bytes(secondary_key),
        OpCode.OP_CHECKSIGVERIFY,
        OpCode.OP_ENDIF,
        bytes(primary_key),
        OpCode.OP_CHECKSIG,
    )


def parse_cltv_branch_script(script: Script) -> CltvBranchTemplate:
    """Recover keys and lock from a script built by :func:`build_cltv_branch_script`.

    Raises:
        MalformedEncodingError: If *script* does not follow the template.
    """
    ops = script.ops
    shape_ok = (
        len(ops) == 10
        and ops[0] == OpCode.OP_IF
        and ops[2] == OpCode.OP_CHECKLOCKTIMEVERIFY
        and ops[3] == OpCode.OP_DROP
        and ops[4] == OpCode.OP_ELSE
        and isinstance(ops[5], bytes)
        and ops[6] == OpCode.OP_CHECKSIGVERIFY
        and ops[7] == OpCode.OP_ENDIF
        and isinstance(ops[8], bytes)
        and ops[9] == OpCode.OP_CHECKSIG
    )
    if not shape_ok:
        msg = "script is not a CLTV branch script"
        raise MalformedEncodingError(msg)

    lock = decode_locktime(op_to_int(ops[1], max_size=scriptnum.LOCKTIME_MAX_SIZE))
    return CltvBranchTemplate(primary_key=ops[8], secondary_key=ops[5], lock=lock)


def required_lock_time(script: Script) -> LockTimeValue | None:
    """Return the CHECKLOCKTIMEVERIFY operand of *script*, if it has one.

    Raises:
        MalformedEncodingError: If the opcode is not preceded by a number push.
    """
    ops = script.ops
    for i, op in enumerate(ops):
        if isinstance(op, bytes) or op != OpCode.OP_CHECKLOCKTIMEVERIFY:
            continue
        if i == 0:
            msg = "OP_CHECKLOCKTIMEVERIFY without an operand"
            raise MalformedEncodingError(msg)
        value = op_to_int(ops[i - 1], max_size=scriptnum.LOCKTIME_MAX_SIZE)
        return decode_locktime(value)
    return None


# ---------------------------------------------------------------------------
# Script type detection
# ---------------------------------------------------------------------------


def detect_script_type(script: Script | bytes) -> ScriptType:
    """Detect the type of a script.

    Recognises:
    - P2WSH: ``OP_0 <32>``
    - P2WPKH: ``OP_0 <20>``
    - CLTV_BRANCH: the witness script built by this module
    """
    raw = bytes(script)
    if len(raw) == 34 and raw[0] == OpCode.OP_0 and raw[1] == 0x20:
        return ScriptType.P2WSH
    if len(raw) == 22 and raw[0] == OpCode.OP_0 and raw[1] == 0x14:
        return ScriptType.P2WPKH
    try:
        parse_cltv_branch_script(Script(raw))
    except (MalformedEncodingError, OutOfRangeError):
        return ScriptType.UNKNOWN
    return ScriptType.CLTV_BRANCH
