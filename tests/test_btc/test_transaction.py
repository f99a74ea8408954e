"""Tests for transaction serialisation — btc/transaction.py."""

from __future__ import annotations

import struct
from io import BytesIO

import pytest

from cltv_engine.btc.script import Script
from cltv_engine.btc.transaction import (
    SEQUENCE_FINAL,
    SEQUENCE_LOCKTIME_ENABLED,
    Outpoint,
    SignedTransaction,
    TxInput,
    TxOutput,
    UnsignedInput,
    UnsignedTransaction,
)
from cltv_engine.btc.witness import WitnessStack
from cltv_engine.errors.definitions import MalformedEncodingError

# BIP143 native P2WPKH example, unsigned
_BIP143_UNSIGNED = (
    "0100000002fff7f7881a8099afa6940d42d1e7f6362bec38171ea3edf433541db4e4ad969f0000000000eeffffff"
    "ef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b55d57b90ec68a0100000000ffffffff02202cb206"
    "000000001976a9148280b37df378db99f66f85c95a783a76ac7a6d5988ac9093510d000000001976a9143bde42db"
    "ee7e4dbe6a21b2d50ce2f0167faa815988ac11000000"
)

_TXID = "ab" * 32


def _sample_tx(witness: WitnessStack | None = None) -> SignedTransaction:
    inputs = (
        TxInput(Outpoint.from_txid_hex(_TXID, 1), sequence=SEQUENCE_LOCKTIME_ENABLED),
    )
    outputs = (TxOutput(value=90_000, script_pubkey=b"\x00\x14" + b"\x11" * 20),)
    return SignedTransaction(
        version=2,
        inputs=inputs,
        outputs=outputs,
        lock_time=800_000,
        witnesses=(witness if witness is not None else WitnessStack(),),
    )


class TestOutpoint:
    """Outpoint references."""

    def test_display_order(self) -> None:
        txid_hex = "00" * 31 + "ff"
        outpoint = Outpoint.from_txid_hex(txid_hex, 3)
        assert outpoint.txid[0] == 0xFF
        assert outpoint.txid_hex == txid_hex
        assert str(outpoint) == f"{txid_hex}:3"

    def test_parse(self) -> None:
        outpoint = Outpoint.parse(f"{_TXID}:7")
        assert outpoint.index == 7
        assert outpoint.txid_hex == _TXID

    def test_parse_requires_separator(self) -> None:
        with pytest.raises(ValueError, match="<txid>:<vout>"):
            Outpoint.parse(_TXID)

    def test_bad_txid_length(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            Outpoint(b"\x00" * 31, 0)

    def test_serialize_round_trip(self) -> None:
        outpoint = Outpoint.from_txid_hex(_TXID, 0xFFFFFFFE)
        data = outpoint.serialize()
        assert len(data) == 36
        assert Outpoint.deserialize(BytesIO(data)) == outpoint

    def test_hashable(self) -> None:
        a = Outpoint.from_txid_hex(_TXID, 0)
        b = Outpoint.from_txid_hex(_TXID, 0)
        assert {a: 1}[b] == 1


class TestInputsAndOutputs:
    """Input and output values."""

    def test_default_sequence_is_final(self) -> None:
        assert TxInput(Outpoint.from_txid_hex(_TXID, 0)).sequence == SEQUENCE_FINAL

    def test_sequence_range(self) -> None:
        with pytest.raises(ValueError, match="sequence"):
            TxInput(Outpoint.from_txid_hex(_TXID, 0), sequence=1 << 32)

    def test_output_accepts_script(self) -> None:
        out = TxOutput(value=1, script_pubkey=Script.from_hex("51"))
        assert out.script_pubkey == b"\x51"

    @pytest.mark.parametrize("value", [-1, 21_000_000 * 100_000_000 + 1])
    def test_output_amount_range(self, value: int) -> None:
        with pytest.raises(ValueError, match="amount"):
            TxOutput(value=value, script_pubkey=b"")

    @pytest.mark.parametrize("value", [-1, 21_000_000 * 100_000_000 + 1])
    def test_wire_amount_out_of_range(self, value: int) -> None:
        raw = struct.pack("<q", value) + b"\x01\x51"
        with pytest.raises(MalformedEncodingError, match="out of range"):
            TxOutput.deserialize(BytesIO(raw))

    def test_unsigned_input_wraps_bytes(self) -> None:
        inp = UnsignedInput(
            outpoint=Outpoint.from_txid_hex(_TXID, 0),
            sequence=SEQUENCE_LOCKTIME_ENABLED,
            committed_script=b"\x51",  # type: ignore[arg-type]
            committed_value=1000,
        )
        assert inp.committed_script == Script.from_hex("51")
        assert inp.to_tx_input().script_sig == b""


class TestLegacyForm:
    """Legacy wire format."""

    def test_parse_bip143_unsigned(self) -> None:
        tx = SignedTransaction.from_hex(_BIP143_UNSIGNED)
        assert tx.version == 1
        assert len(tx.inputs) == 2
        assert tx.inputs[0].sequence == 0xFFFFFFEE
        assert tx.inputs[1].outpoint.index == 1
        assert [o.value for o in tx.outputs] == [112_340_000, 223_450_000]
        assert tx.lock_time == 17
        assert not tx.has_witness

    def test_reserialize_identical(self) -> None:
        tx = SignedTransaction.from_hex(_BIP143_UNSIGNED)
        assert tx.to_hex() == _BIP143_UNSIGNED
        assert tx.unsigned().serialize().hex() == _BIP143_UNSIGNED

    def test_txid_equals_wtxid_without_witness(self) -> None:
        tx = SignedTransaction.from_hex(_BIP143_UNSIGNED)
        assert tx.txid() == tx.wtxid()
        assert tx.txid() == tx.unsigned().txid()


class TestWitnessForm:
    """BIP144 witness wire format."""

    def test_marker_and_flag(self) -> None:
        tx = _sample_tx(WitnessStack((b"\x01", b"\x51")))
        raw = tx.serialize()
        assert raw[4:6] == b"\x00\x01"

    def test_round_trip(self) -> None:
        tx = _sample_tx(WitnessStack((b"\x30" * 71, b"\x01", b"\x51" * 40)))
        parsed = SignedTransaction.from_bytes(tx.serialize())
        assert parsed == tx
        assert parsed.serialize() == tx.serialize()

    def test_txid_ignores_witness(self) -> None:
        a = _sample_tx(WitnessStack((b"\x01", b"\x51")))
        b = _sample_tx(WitnessStack((b"\x02", b"\x51")))
        assert a.txid() == b.txid()
        assert a.wtxid() != b.wtxid()

    def test_no_witness_uses_legacy(self) -> None:
        tx = _sample_tx()
        assert tx.serialize() == tx.serialize_legacy()

    def test_weight_and_vsize(self) -> None:
        tx = _sample_tx(WitnessStack((b"\x01", b"\x51")))
        base = len(tx.serialize_legacy())
        assert tx.weight == base * 3 + tx.size
        assert tx.vsize == (tx.weight + 3) // 4
        assert tx.vsize < tx.size

    def test_bad_flag(self) -> None:
        raw = bytearray(_sample_tx(WitnessStack((b"\x51",))).serialize())
        raw[5] = 0x02
        with pytest.raises(MalformedEncodingError, match="flag"):
            SignedTransaction.from_bytes(bytes(raw))

    def test_superfluous_witness(self) -> None:
        legacy = _sample_tx().serialize_legacy()
        # Re-wrap as segwit with an empty witness section
        raw = legacy[:4] + b"\x00\x01" + legacy[4:-4] + b"\x00" + legacy[-4:]
        with pytest.raises(MalformedEncodingError, match="no input carries"):
            SignedTransaction.from_bytes(raw)

    def test_trailing_bytes(self) -> None:
        raw = _sample_tx(WitnessStack((b"\x51",))).serialize() + b"\x00"
        with pytest.raises(MalformedEncodingError, match="trailing"):
            SignedTransaction.from_bytes(raw)

    def test_truncated(self) -> None:
        raw = _sample_tx(WitnessStack((b"\x51",))).serialize()
        with pytest.raises(MalformedEncodingError):
            SignedTransaction.from_bytes(raw[:-3])

    def test_witness_count_must_match(self) -> None:
        with pytest.raises(ValueError, match="witness stacks"):
            SignedTransaction(
                version=2,
                inputs=(TxInput(Outpoint.from_txid_hex(_TXID, 0)),),
                outputs=(),
                lock_time=0,
                witnesses=(),
            )


class TestUnsignedTransaction:
    """Unsigned transaction skeleton."""

    def test_lock_time_range(self) -> None:
        with pytest.raises(ValueError, match="lock_time"):
            UnsignedTransaction(version=2, inputs=(), outputs=(), lock_time=-1)

    def test_default_lock_time(self) -> None:
        assert UnsignedTransaction(version=2, inputs=(), outputs=()).lock_time == 0
