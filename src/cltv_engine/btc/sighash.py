"""BIP143 signature digest for witness v0 inputs.

The digest is the double SHA-256 of:

1. nVersion (4-byte LE)
2. hashPrevouts (sha256d of all input outpoints)
3. hashSequence (sha256d of all input sequences)
4. outpoint of the input being signed
5. scriptCode (the witness script, length-prefixed)
6. value of the output being spent (8-byte LE)
7. nSequence of the input being signed
8. hashOutputs (sha256d of all serialized outputs)
9. nLockTime (4-byte LE)
10. sighash type (4-byte LE)

Committing to the spent value (6) is what stops a signer from being tricked
about the fee; the per-input cost stays constant because (2), (3) and (8)
are shared across inputs.
"""

from __future__ import annotations

import enum
import struct
from typing import TYPE_CHECKING

from cltv_engine.btc.varint import encode_varint
from cltv_engine.errors.definitions import UnsupportedSighashFlagError
from cltv_engine.utils.crypto import sha256d

if TYPE_CHECKING:
    from cltv_engine.btc.script import Script
    from cltv_engine.btc.transaction import UnsignedTransaction


class SighashFlag(enum.IntEnum):
    """Sighash type byte values."""

    ALL = 0x01
    NONE = 0x02
    SINGLE = 0x03
    ANYONECANPAY = 0x80


SUPPORTED_SIGHASH_FLAGS: frozenset[int] = frozenset({SighashFlag.ALL})

_ZERO_HASH = b"\x00" * 32


def _hash_prevouts(tx: UnsignedTransaction, flag: int) -> bytes:
    if flag & SighashFlag.ANYONECANPAY:
        return _ZERO_HASH
    return sha256d(b"".join(inp.outpoint.serialize() for inp in tx.inputs))


def _hash_sequence(tx: UnsignedTransaction, flag: int) -> bytes:
    base = flag & 0x1F
    if flag & SighashFlag.ANYONECANPAY or base in (SighashFlag.NONE, SighashFlag.SINGLE):
        return _ZERO_HASH
    return sha256d(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))


def _hash_outputs(tx: UnsignedTransaction, input_index: int, flag: int) -> bytes:
    base = flag & 0x1F
    if base not in (SighashFlag.NONE, SighashFlag.SINGLE):
        return sha256d(b"".join(out.serialize() for out in tx.outputs))
    if base == SighashFlag.SINGLE and input_index < len(tx.outputs):
        return sha256d(tx.outputs[input_index].serialize())
    return _ZERO_HASH


def segwit_preimage(
    tx: UnsignedTransaction,
    input_index: int,
    committed_script: Script | bytes,
    committed_value: int,
    sighash_flag: int = SighashFlag.ALL,
) -> bytes:
    """Build the BIP143 preimage for one input.

    Args:
        tx: Transaction skeleton being signed.
        input_index: Index of the input being signed.
        committed_script: Witness script of the coin being spent.
        committed_value: Value of the coin being spent, in satoshis.
        sighash_flag: Sighash type; only ``ALL`` is supported.

    Raises:
        UnsupportedSighashFlagError: If *sighash_flag* is not supported.
        IndexError: If *input_index* is out of range.
    """
    if sighash_flag not in SUPPORTED_SIGHASH_FLAGS:
        raise UnsupportedSighashFlagError(sighash_flag)
    if not 0 <= input_index < len(tx.inputs):
        msg = f"input index {input_index} out of range ({len(tx.inputs)} inputs)"
        raise IndexError(msg)

    target = tx.inputs[input_index]
    script_code = bytes(committed_script)

    return (
        struct.pack("<i", tx.version)
        + _hash_prevouts(tx, sighash_flag)
        + _hash_sequence(tx, sighash_flag)
        + target.outpoint.serialize()
        + encode_varint(len(script_code))
        + script_code
        + struct.pack("<q", committed_value)
        + struct.pack("<I", target.sequence)
        + _hash_outputs(tx, input_index, sighash_flag)
        + struct.pack("<I", tx.lock_time)
        + struct.pack("<I", sighash_flag)
    )


def segwit_sighash(
    tx: UnsignedTransaction,
    input_index: int,
    committed_script: Script | bytes,
    committed_value: int,
    sighash_flag: int = SighashFlag.ALL,
) -> bytes:
    """Compute the 32-byte BIP143 digest signed for one witness input."""
    return sha256d(
        segwit_preimage(tx, input_index, committed_script, committed_value, sighash_flag)
    )
