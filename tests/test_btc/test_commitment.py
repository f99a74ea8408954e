"""Tests for witness commitments — btc/commitment.py."""

from __future__ import annotations

import hashlib

import pytest

from cltv_engine.btc.commitment import p2wsh_lock_script, verify_witness_script, witness_commitment
from cltv_engine.btc.keys import KeyPair
from cltv_engine.btc.locktime import BlockHeight
from cltv_engine.btc.script import Script, build_cltv_branch_script
from cltv_engine.errors.definitions import CommitmentMismatchError


@pytest.fixture
def witness_script(primary_key: KeyPair, secondary_key: KeyPair) -> Script:
    return build_cltv_branch_script(
        primary_key.public_key, secondary_key.public_key, BlockHeight(800_000)
    )


class TestWitnessCommitment:
    """SHA-256 commitment and P2WSH program."""

    def test_single_sha256(self, witness_script: Script) -> None:
        assert witness_commitment(witness_script) == hashlib.sha256(bytes(witness_script)).digest()

    def test_deterministic(self, witness_script: Script) -> None:
        assert witness_commitment(witness_script) == witness_commitment(bytes(witness_script))

    def test_known_value(self) -> None:
        # OP_TRUE witness script
        assert witness_commitment(b"\x51").hex() == (
            "4ae81572f06e1b88fd5ced7a1a000945432e83e1551e6f721ee9c00b8cc33260"
        )

    def test_lock_script(self, witness_script: Script) -> None:
        program = p2wsh_lock_script(witness_script)
        assert bytes(program) == b"\x00\x20" + witness_commitment(witness_script)


class TestVerifyWitnessScript:
    """Witness script against commitment."""

    def test_matches_commitment(self, witness_script: Script) -> None:
        verify_witness_script(witness_commitment(witness_script), witness_script)

    def test_matches_program(self, witness_script: Script) -> None:
        verify_witness_script(p2wsh_lock_script(witness_script), witness_script)

    @pytest.mark.parametrize("position", [0, 40, -1])
    def test_flipped_script_byte(self, witness_script: Script, position: int) -> None:
        tampered = bytearray(bytes(witness_script))
        tampered[position] ^= 0x01
        with pytest.raises(CommitmentMismatchError) as exc_info:
            verify_witness_script(witness_commitment(witness_script), bytes(tampered))
        assert exc_info.value.expected == witness_commitment(witness_script)
        assert exc_info.value.actual == witness_commitment(bytes(tampered))
        assert exc_info.value.code == "commitment-mismatch"

    def test_flipped_commitment_byte(self, witness_script: Script) -> None:
        commitment = bytearray(witness_commitment(witness_script))
        commitment[5] ^= 0x80
        with pytest.raises(CommitmentMismatchError):
            verify_witness_script(bytes(commitment), witness_script)

    def test_bad_commitment_length(self, witness_script: Script) -> None:
        with pytest.raises(ValueError, match="32-byte"):
            verify_witness_script(b"\x00" * 20, witness_script)
