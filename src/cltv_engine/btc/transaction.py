"""Transaction serialisation — legacy and BIP144 witness wire formats.

Provides immutable transaction values and their byte-exact encodings:
- Outpoint / TxInput / TxOutput / UnsignedInput data classes
- UnsignedTransaction (legacy form, the view the signature digest covers)
- SignedTransaction with witness serialization, parsing, txid / wtxid
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from io import BytesIO

from cltv_engine.btc.script import Script
from cltv_engine.btc.varint import encode_varint, read_exact, read_varint
from cltv_engine.btc.witness import WitnessStack
from cltv_engine.errors.definitions import MalformedEncodingError
from cltv_engine.utils.crypto import sha256d

# ---------------------------------------------------------------------------
# Sequence numbers
# ---------------------------------------------------------------------------

# Fully final input: disables lock_time enforcement for the whole transaction
SEQUENCE_FINAL = 0xFFFFFFFF

# Final-but-one: lock_time enforced, no replace-by-fee signalling
SEQUENCE_LOCKTIME_ENABLED = 0xFFFFFFFE

DEFAULT_SEQUENCE = SEQUENCE_FINAL

_SEGWIT_MARKER = 0x00
_SEGWIT_FLAG = 0x01

_MAX_MONEY = 21_000_000 * 100_000_000


def _check_u32(value: int, name: str) -> None:
    if not 0 <= value <= 0xFFFFFFFF:
        msg = f"{name} must fit in 32 bits, got {value}"
        raise ValueError(msg)


def _check_amount(value: int) -> None:
    if not 0 <= value <= _MAX_MONEY:
        msg = f"amount out of range: {value}"
        raise ValueError(msg)


# ---------------------------------------------------------------------------
# Outpoint (txid + vout reference)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Outpoint:
    """Reference to a single previous output.

    Attributes:
        txid: 32-byte hash of the previous transaction (internal byte order).
        index: Index of the output in the previous transaction.
    """

    txid: bytes
    index: int

    def __post_init__(self) -> None:
        if len(self.txid) != 32:
            msg = f"txid must be 32 bytes, got {len(self.txid)}"
            raise ValueError(msg)
        _check_u32(self.index, "output index")

    @classmethod
    def from_txid_hex(cls, txid_hex: str, index: int) -> Outpoint:
        """Build from a display-order (reversed) txid hex string."""
        return cls(txid=bytes.fromhex(txid_hex)[::-1], index=index)

    @classmethod
    def parse(cls, text: str) -> Outpoint:
        """Parse ``<txid_hex>:<index>``."""
        txid_hex, sep, index = text.strip().rpartition(":")
        if not sep:
            msg = f"outpoint must look like <txid>:<vout>, got {text!r}"
            raise ValueError(msg)
        return cls.from_txid_hex(txid_hex, int(index))

    @property
    def txid_hex(self) -> str:
        """Previous transaction ID in display (reversed) hex."""
        return self.txid[::-1].hex()

    def __str__(self) -> str:
        return f"{self.txid_hex}:{self.index}"

    def serialize(self) -> bytes:
        return self.txid + struct.pack("<I", self.index)

    @classmethod
    def deserialize(cls, stream: BytesIO) -> Outpoint:
        txid = read_exact(stream, 32, "prev txid")
        index = struct.unpack("<I", read_exact(stream, 4, "prev output index"))[0]
        return cls(txid=txid, index=index)


# ---------------------------------------------------------------------------
# TxInput
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TxInput:
    """A transaction input as it appears on the wire.

    Attributes:
        outpoint: The coin being spent.
        sequence: Sequence number (default 0xFFFFFFFF).
        script_sig: Unlocking script; always empty for witness inputs.
    """

    outpoint: Outpoint
    sequence: int = DEFAULT_SEQUENCE
    script_sig: bytes = b""

    def __post_init__(self) -> None:
        _check_u32(self.sequence, "sequence")

    def serialize(self) -> bytes:
        """Serialize the input to bytes."""
        result = self.outpoint.serialize()
        result += encode_varint(len(self.script_sig))
        result += self.script_sig
        result += struct.pack("<I", self.sequence)
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxInput:
        """Deserialize a transaction input from a byte stream."""
        outpoint = Outpoint.deserialize(stream)
        script_len = read_varint(stream)
        script_sig = read_exact(stream, script_len, "script_sig")
        sequence = struct.unpack("<I", read_exact(stream, 4, "sequence"))[0]
        return cls(outpoint=outpoint, sequence=sequence, script_sig=script_sig)


# ---------------------------------------------------------------------------
# TxOutput
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TxOutput:
    """A transaction output.

    Attributes:
        value: Output value in satoshis.
        script_pubkey: Locking script bytes.
    """

    value: int
    script_pubkey: bytes

    def __post_init__(self) -> None:
        _check_amount(self.value)
        if isinstance(self.script_pubkey, Script):
            object.__setattr__(self, "script_pubkey", bytes(self.script_pubkey))

    def serialize(self) -> bytes:
        """Serialize the output to bytes."""
        result = struct.pack("<q", self.value)
        result += encode_varint(len(self.script_pubkey))
        result += self.script_pubkey
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxOutput:
        """Deserialize a transaction output from a byte stream."""
        value = struct.unpack("<q", read_exact(stream, 8, "output value"))[0]
        if not 0 <= value <= _MAX_MONEY:
            msg = f"output value out of range: {value}"
            raise MalformedEncodingError(msg)
        script_len = read_varint(stream)
        script_pubkey = read_exact(stream, script_len, "script_pubkey")
        return cls(value=value, script_pubkey=script_pubkey)


# ---------------------------------------------------------------------------
# UnsignedInput (spender-side knowledge about a coin)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UnsignedInput:
    """An input plus the out-of-band data its signature must commit to.

    ``committed_script`` and ``committed_value`` come from the funding
    transaction (or the caller), never from the spending input itself.

    Attributes:
        outpoint: The coin being spent.
        sequence: Sequence number for the spending input.
        committed_script: Witness script the funding output commits to.
        committed_value: Value of the funding output in satoshis.
    """

    outpoint: Outpoint
    sequence: int
    committed_script: Script
    committed_value: int

    def __post_init__(self) -> None:
        _check_u32(self.sequence, "sequence")
        _check_amount(self.committed_value)
        if not isinstance(self.committed_script, Script):
            object.__setattr__(self, "committed_script", Script.from_bytes(self.committed_script))

    def to_tx_input(self) -> TxInput:
        return TxInput(outpoint=self.outpoint, sequence=self.sequence)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def _serialize_legacy(
    version: int,
    inputs: tuple[TxInput, ...],
    outputs: tuple[TxOutput, ...],
    lock_time: int,
) -> bytes:
    result = struct.pack("<i", version)
    result += encode_varint(len(inputs))
    for inp in inputs:
        result += inp.serialize()
    result += encode_varint(len(outputs))
    for out in outputs:
        result += out.serialize()
    result += struct.pack("<I", lock_time)
    return result


@dataclass(frozen=True)
class UnsignedTransaction:
    """Transaction skeleton without witness data.

    Attributes:
        version: Transaction version.
        inputs: Inputs (outpoint + sequence, empty script_sig).
        outputs: Outputs.
        lock_time: Transaction lock_time field.
    """

    version: int
    inputs: tuple[TxInput, ...]
    outputs: tuple[TxOutput, ...]
    lock_time: int = 0

    def __post_init__(self) -> None:
        _check_u32(self.lock_time, "lock_time")

    def serialize(self) -> bytes:
        """Serialize in the legacy (non-witness) form."""
        return _serialize_legacy(self.version, self.inputs, self.outputs, self.lock_time)

    def txid_bytes(self) -> bytes:
        return sha256d(self.serialize())

    def txid(self) -> str:
        return self.txid_bytes()[::-1].hex()


@dataclass(frozen=True)
class SignedTransaction:
    """A transaction with per-input witness stacks.

    Attributes:
        version: Transaction version.
        inputs: Inputs.
        outputs: Outputs.
        lock_time: Transaction lock_time field.
        witnesses: One stack per input (empty for non-witness inputs).
    """

    version: int
    inputs: tuple[TxInput, ...]
    outputs: tuple[TxOutput, ...]
    lock_time: int
    witnesses: tuple[WitnessStack, ...]

    def __post_init__(self) -> None:
        _check_u32(self.lock_time, "lock_time")
        if len(self.witnesses) != len(self.inputs):
            msg = f"{len(self.inputs)} inputs but {len(self.witnesses)} witness stacks"
            raise ValueError(msg)

    @property
    def has_witness(self) -> bool:
        return any(not w.is_empty for w in self.witnesses)

    def unsigned(self) -> UnsignedTransaction:
        return UnsignedTransaction(
            version=self.version,
            inputs=self.inputs,
            outputs=self.outputs,
            lock_time=self.lock_time,
        )

    # -- Serialization -----------------------------------------------------

    def serialize_legacy(self) -> bytes:
        """Serialize without witness data (the txid preimage)."""
        return _serialize_legacy(self.version, self.inputs, self.outputs, self.lock_time)

    def serialize(self) -> bytes:
        """Serialize to wire bytes.

        Uses the BIP144 form (marker, flag, witness field) when any input
        carries a witness, and the legacy form otherwise.
        """
        if not self.has_witness:
            return self.serialize_legacy()
        result = struct.pack("<i", self.version)
        result += bytes([_SEGWIT_MARKER, _SEGWIT_FLAG])
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()
        for witness in self.witnesses:
            result += witness.serialize()
        result += struct.pack("<I", self.lock_time)
        return result

    def to_hex(self) -> str:
        """Serialize to hex string."""
        return self.serialize().hex()

    @classmethod
    def deserialize(cls, stream: BytesIO) -> SignedTransaction:
        """Deserialize a transaction (legacy or witness form) from a stream.

        Raises:
            MalformedEncodingError: On truncated data, a bad flag byte or a
                superfluous witness section.
        """
        version = struct.unpack("<i", read_exact(stream, 4, "version"))[0]

        segwit = False
        marker = read_exact(stream, 1, "input count")
        if marker[0] == _SEGWIT_MARKER:
            flag = read_exact(stream, 1, "segwit flag")[0]
            if flag != _SEGWIT_FLAG:
                msg = f"unknown segwit flag: {flag:#04x}"
                raise MalformedEncodingError(msg)
            segwit = True
        else:
            stream.seek(-1, 1)

        n_inputs = read_varint(stream)
        inputs = tuple(TxInput.deserialize(stream) for _ in range(n_inputs))
        n_outputs = read_varint(stream)
        outputs = tuple(TxOutput.deserialize(stream) for _ in range(n_outputs))

        if segwit:
            witnesses = tuple(WitnessStack.deserialize(stream) for _ in range(n_inputs))
            if all(w.is_empty for w in witnesses):
                msg = "witness flag set but no input carries a witness"
                raise MalformedEncodingError(msg)
        else:
            witnesses = tuple(WitnessStack() for _ in range(n_inputs))

        lock_time = struct.unpack("<I", read_exact(stream, 4, "lock_time"))[0]
        return cls(
            version=version,
            inputs=inputs,
            outputs=outputs,
            lock_time=lock_time,
            witnesses=witnesses,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> SignedTransaction:
        """Deserialize a transaction from raw bytes, rejecting trailing data."""
        stream = BytesIO(data)
        tx = cls.deserialize(stream)
        if stream.read(1):
            msg = "trailing bytes after transaction"
            raise MalformedEncodingError(msg)
        return tx

    @classmethod
    def from_hex(cls, hex_str: str) -> SignedTransaction:
        """Deserialize a transaction from a hex string."""
        return cls.from_bytes(bytes.fromhex(hex_str))

    # -- Identity / size ---------------------------------------------------

    def txid(self) -> str:
        """Transaction ID (hash of the non-witness form, display order)."""
        return sha256d(self.serialize_legacy())[::-1].hex()

    def wtxid(self) -> str:
        """Witness transaction ID (hash of the full form, display order)."""
        return sha256d(self.serialize())[::-1].hex()

    @property
    def size(self) -> int:
        """Full serialized size in bytes."""
        return len(self.serialize())

    @property
    def weight(self) -> int:
        """BIP141 weight: base size x 3 + total size."""
        return len(self.serialize_legacy()) * 3 + self.size

    @property
    def vsize(self) -> int:
        """Virtual size in vbytes (weight / 4, rounded up)."""
        return (self.weight + 3) // 4
