"""Witness commitments — SHA-256 of a witness script and its P2WSH program."""

from __future__ import annotations

import hmac

from cltv_engine.btc.script import OpCode, Script
from cltv_engine.errors.definitions import CommitmentMismatchError
from cltv_engine.utils.crypto import sha256

WITNESS_V0 = 0x00

_P2WSH_PROGRAM_LEN = 34


def witness_commitment(script: Script | bytes) -> bytes:
    """Single SHA-256 of the serialized witness script (32 bytes)."""
    return sha256(bytes(script))


def p2wsh_lock_script(script: Script | bytes) -> Script:
    """Build the funding output's locking script: ``OP_0 <commitment>``."""
    return Script.from_ops(OpCode.OP_0, witness_commitment(script))


def _presented_commitment(commitment_or_program: Script | bytes) -> bytes:
    raw = bytes(commitment_or_program)
    if len(raw) == 32:
        return raw
    if len(raw) == _P2WSH_PROGRAM_LEN and raw[0] == WITNESS_V0 and raw[1] == 0x20:
        return raw[2:]
    msg = f"expected a 32-byte commitment or 34-byte P2WSH program, got {len(raw)} bytes"
    raise ValueError(msg)


def verify_witness_script(commitment_or_program: Script | bytes, script: Script | bytes) -> None:
    """Check that *script* is the one committed to.

    Raises:
        CommitmentMismatchError: If the recomputed commitment differs.
    """
    expected = _presented_commitment(commitment_or_program)
    actual = witness_commitment(script)
    if not hmac.compare_digest(expected, actual):
        raise CommitmentMismatchError(expected, actual)
