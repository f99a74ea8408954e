"""Tests for the BIP143 signature digest — btc/sighash.py."""

from __future__ import annotations

import pytest

from cltv_engine.btc.sighash import (
    SUPPORTED_SIGHASH_FLAGS,
    SighashFlag,
    segwit_preimage,
    segwit_sighash,
)
from cltv_engine.btc.transaction import SignedTransaction, TxOutput
from cltv_engine.errors.definitions import UnsupportedSighashFlagError

# https://github.com/bitcoin/bips/blob/master/bip-0143.mediawiki#native-p2wpkh
_UNSIGNED = (
    "0100000002fff7f7881a8099afa6940d42d1e7f6362bec38171ea3edf433541db4e4ad969f0000000000eeffffff"
    "ef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b55d57b90ec68a0100000000ffffffff02202cb206"
    "000000001976a9148280b37df378db99f66f85c95a783a76ac7a6d5988ac9093510d000000001976a9143bde42db"
    "ee7e4dbe6a21b2d50ce2f0167faa815988ac11000000"
)
_SCRIPT_CODE = bytes.fromhex("76a9141d0f172a0ecb48aee1be1f2687d2963ae33f71a188ac")
_VALUE = 600_000_000
_EXPECTED_PREIMAGE = (
    "0100000096b827c8483d4e9b96712b6713a7b68d6e8003a781feba36c31143470b4efd3752b0a642eea2fb7ae638c3"
    "6f6252b6750293dbe574a806984b8e4d8548339a3bef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b5"
    "5d57b90ec68a010000001976a9141d0f172a0ecb48aee1be1f2687d2963ae33f71a188ac0046c32300000000ffffff"
    "ff863ef3e1a92afbfdb97f31ad0fc7683ee943e9abcf2501590ff8f6551f47e5e51100000001000000"
)
_EXPECTED_SIGHASH = "c37af31116d1b27caf68aae9e3ac82f1477929014d5b917657d0eb49478cb670"


@pytest.fixture
def unsigned():
    return SignedTransaction.from_hex(_UNSIGNED).unsigned()


class TestBip143Vector:
    """BIP143 reference vector."""

    def test_preimage(self, unsigned) -> None:
        preimage = segwit_preimage(unsigned, 1, _SCRIPT_CODE, _VALUE)
        assert preimage.hex() == _EXPECTED_PREIMAGE

    def test_sighash(self, unsigned) -> None:
        assert segwit_sighash(unsigned, 1, _SCRIPT_CODE, _VALUE).hex() == _EXPECTED_SIGHASH


class TestCommitments:
    """The digest commits to every field a signer must not be fooled about."""

    def test_commits_to_value(self, unsigned) -> None:
        a = segwit_sighash(unsigned, 1, _SCRIPT_CODE, _VALUE)
        b = segwit_sighash(unsigned, 1, _SCRIPT_CODE, _VALUE + 1)
        assert a != b

    def test_commits_to_script(self, unsigned) -> None:
        a = segwit_sighash(unsigned, 1, _SCRIPT_CODE, _VALUE)
        b = segwit_sighash(unsigned, 1, _SCRIPT_CODE[:-1] + b"\xad", _VALUE)
        assert a != b

    def test_commits_to_lock_time(self, unsigned) -> None:
        from dataclasses import replace

        a = segwit_sighash(unsigned, 1, _SCRIPT_CODE, _VALUE)
        b = segwit_sighash(replace(unsigned, lock_time=18), 1, _SCRIPT_CODE, _VALUE)
        assert a != b

    def test_commits_to_outputs(self, unsigned) -> None:
        from dataclasses import replace

        outputs = (*unsigned.outputs[:-1], TxOutput(value=1, script_pubkey=b"\x51"))
        a = segwit_sighash(unsigned, 1, _SCRIPT_CODE, _VALUE)
        b = segwit_sighash(replace(unsigned, outputs=outputs), 1, _SCRIPT_CODE, _VALUE)
        assert a != b

    def test_per_input(self, unsigned) -> None:
        a = segwit_sighash(unsigned, 0, _SCRIPT_CODE, _VALUE)
        b = segwit_sighash(unsigned, 1, _SCRIPT_CODE, _VALUE)
        assert a != b


class TestFlags:
    """Sighash flag handling."""

    def test_only_all_supported(self) -> None:
        assert frozenset({SighashFlag.ALL}) == SUPPORTED_SIGHASH_FLAGS

    @pytest.mark.parametrize(
        "flag",
        [
            SighashFlag.NONE,
            SighashFlag.SINGLE,
            SighashFlag.ALL | SighashFlag.ANYONECANPAY,
            0x00,
            0x04,
        ],
    )
    def test_unsupported_flag(self, unsigned, flag: int) -> None:
        with pytest.raises(UnsupportedSighashFlagError) as exc_info:
            segwit_sighash(unsigned, 1, _SCRIPT_CODE, _VALUE, flag)
        assert exc_info.value.flag == flag
        assert exc_info.value.code == "unsupported-sighash-flag"

    def test_index_out_of_range(self, unsigned) -> None:
        with pytest.raises(IndexError):
            segwit_sighash(unsigned, 2, _SCRIPT_CODE, _VALUE)
