"""Tests for the transaction assembler — btc/assembler.py."""

from __future__ import annotations

import pytest

from cltv_engine.btc.assembler import TransactionAssembler
from cltv_engine.btc.keys import KeyPair
from cltv_engine.btc.locktime import BlockHeight, UnixTime
from cltv_engine.btc.script import OpCode, Script, build_cltv_branch_script
from cltv_engine.btc.sighash import segwit_sighash
from cltv_engine.btc.transaction import (
    SEQUENCE_FINAL,
    SEQUENCE_LOCKTIME_ENABLED,
    Outpoint,
    SignedTransaction,
    TxOutput,
    UnsignedInput,
)
from cltv_engine.btc.witness import RedemptionBranch, assemble_witness_stack, signature_element
from cltv_engine.errors.definitions import (
    CommitmentMismatchError,
    InconsistentLockTimeError,
    UnsupportedSighashFlagError,
)

_DEST = TxOutput(value=99_000, script_pubkey=b"\x00\x14" + b"\x22" * 20)


@pytest.fixture
def script(primary_key: KeyPair, secondary_key: KeyPair, height_lock: BlockHeight) -> Script:
    return build_cltv_branch_script(primary_key.public_key, secondary_key.public_key, height_lock)


def _assembler(
    script: Script,
    outpoint: Outpoint,
    *,
    sequence: int = SEQUENCE_LOCKTIME_ENABLED,
    lock_time: int | None = 800_000,
) -> TransactionAssembler:
    asm = TransactionAssembler().add_input(
        UnsignedInput(
            outpoint=outpoint,
            sequence=sequence,
            committed_script=script,
            committed_value=100_000,
        )
    )
    asm = asm.add_output(_DEST)
    if lock_time is not None:
        asm = asm.set_lock_time(lock_time)
    return asm


def _time_locked_stack(asm: TransactionAssembler, key: KeyPair, script: Script):
    digest = asm.sighash(0)
    return assemble_witness_stack(
        RedemptionBranch.TIME_LOCKED, script, signature_element(key.sign(digest), 0x01)
    )


class TestBuilding:
    """Skeleton edits and lock time setup."""

    def test_immutable_edits(self, script: Script, funding_outpoint: Outpoint) -> None:
        base = TransactionAssembler()
        with_input = base.add_input(
            UnsignedInput(funding_outpoint, SEQUENCE_FINAL, script, 1000)
        )
        assert base.inputs == ()
        assert len(with_input.inputs) == 1
        assert with_input.witnesses == (None,)

    def test_defaults(self) -> None:
        asm = TransactionAssembler()
        assert asm.version == 2
        assert asm.lock_time is None

    def test_unset_lock_time_serializes_as_zero(
        self, script: Script, funding_outpoint: Outpoint
    ) -> None:
        asm = _assembler(script, funding_outpoint, lock_time=None)
        assert asm.unsigned_transaction().lock_time == 0

    def test_set_lock_time_accepts_values(self, script: Script, funding_outpoint: Outpoint) -> None:
        asm = _assembler(script, funding_outpoint, lock_time=None)
        assert asm.set_lock_time(BlockHeight(5)).lock_time == 5
        assert asm.set_lock_time(UnixTime(1_700_000_000)).lock_time == 1_700_000_000

    def test_set_input_sequence(self, script: Script, funding_outpoint: Outpoint) -> None:
        asm = _assembler(script, funding_outpoint).set_input_sequence(0, 0)
        assert asm.inputs[0].sequence == 0

    def test_set_input_sequence_bad_index(
        self, script: Script, funding_outpoint: Outpoint
    ) -> None:
        with pytest.raises(IndexError):
            _assembler(script, funding_outpoint).set_input_sequence(3, 0)

    def test_sighash_matches_bip143(self, script: Script, funding_outpoint: Outpoint) -> None:
        asm = _assembler(script, funding_outpoint)
        expected = segwit_sighash(asm.unsigned_transaction(), 0, script, 100_000)
        assert asm.sighash(0) == expected

    def test_sighash_unsupported_flag(self, script: Script, funding_outpoint: Outpoint) -> None:
        with pytest.raises(UnsupportedSighashFlagError):
            _assembler(script, funding_outpoint).sighash(0, 0x03)


class TestTimeLockInvariants:
    """CHECKLOCKTIMEVERIFY couples script lock, tx lock_time and sequence."""

    def test_non_final_sequence_succeeds(
        self, script: Script, funding_outpoint: Outpoint, primary_key: KeyPair
    ) -> None:
        asm = _assembler(script, funding_outpoint, sequence=SEQUENCE_LOCKTIME_ENABLED)
        stack = _time_locked_stack(asm, primary_key, script)
        signed = asm.attach_witness(0, stack)
        assert signed.is_complete

    def test_final_sequence_rejected(
        self, script: Script, funding_outpoint: Outpoint, primary_key: KeyPair
    ) -> None:
        asm = _assembler(script, funding_outpoint, sequence=SEQUENCE_FINAL)
        stack = _time_locked_stack(asm, primary_key, script)
        with pytest.raises(InconsistentLockTimeError, match="final sequence") as exc_info:
            asm.attach_witness(0, stack)
        assert exc_info.value.input_index == 0

    def test_sighash_checks_branch(self, script: Script, funding_outpoint: Outpoint) -> None:
        asm = _assembler(script, funding_outpoint, sequence=SEQUENCE_FINAL)
        with pytest.raises(InconsistentLockTimeError):
            asm.sighash(0, branch=RedemptionBranch.TIME_LOCKED)
        # The cooperative branch never reaches the opcode
        asm.sighash(0, branch=RedemptionBranch.COOPERATIVE)

    def test_unset_lock_time_rejected(self, script: Script, funding_outpoint: Outpoint) -> None:
        asm = _assembler(script, funding_outpoint, lock_time=None)
        with pytest.raises(InconsistentLockTimeError, match="unset"):
            asm.check_time_lock(0)

    def test_lock_time_below_script_lock(
        self, script: Script, funding_outpoint: Outpoint
    ) -> None:
        asm = _assembler(script, funding_outpoint, lock_time=799_999)
        with pytest.raises(InconsistentLockTimeError, match="below"):
            asm.check_time_lock(0)

    def test_lock_time_above_script_lock(
        self, script: Script, funding_outpoint: Outpoint
    ) -> None:
        _assembler(script, funding_outpoint, lock_time=900_000).check_time_lock(0)

    def test_kind_mismatch(self, script: Script, funding_outpoint: Outpoint) -> None:
        asm = _assembler(script, funding_outpoint, lock_time=1_700_000_000)
        with pytest.raises(InconsistentLockTimeError, match="BlockHeight"):
            asm.check_time_lock(0)

    def test_script_without_cltv_passes(self, funding_outpoint: Outpoint) -> None:
        plain = Script.from_ops(OpCode.OP_1)
        asm = _assembler(plain, funding_outpoint, sequence=SEQUENCE_FINAL, lock_time=None)
        asm.check_time_lock(0)

    def test_cooperative_ignores_lock(
        self,
        script: Script,
        funding_outpoint: Outpoint,
        primary_key: KeyPair,
        secondary_key: KeyPair,
    ) -> None:
        asm = _assembler(script, funding_outpoint, sequence=SEQUENCE_FINAL, lock_time=None)
        digest = asm.sighash(0, branch=RedemptionBranch.COOPERATIVE)
        stack = assemble_witness_stack(
            RedemptionBranch.COOPERATIVE,
            script,
            signature_element(primary_key.sign(digest), 0x01),
            signature_element(secondary_key.sign(digest), 0x01),
        )
        assert asm.attach_witness(0, stack).is_complete


class TestAttachAndFinalize:
    """Witness attachment and finalization."""

    def test_commitment_mismatch(
        self,
        script: Script,
        funding_outpoint: Outpoint,
        primary_key: KeyPair,
        secondary_key: KeyPair,
    ) -> None:
        asm = _assembler(script, funding_outpoint)
        other = build_cltv_branch_script(
            primary_key.public_key, secondary_key.public_key, BlockHeight(800_001)
        )
        stack = assemble_witness_stack(RedemptionBranch.TIME_LOCKED, other, b"\x30\x00\x01")
        with pytest.raises(CommitmentMismatchError):
            asm.attach_witness(0, stack)

    def test_edits_after_signing_rejected(
        self, script: Script, funding_outpoint: Outpoint, primary_key: KeyPair
    ) -> None:
        asm = _assembler(script, funding_outpoint)
        signed = asm.attach_witness(0, _time_locked_stack(asm, primary_key, script))
        with pytest.raises(ValueError, match="after a witness"):
            signed.add_output(_DEST)
        with pytest.raises(ValueError, match="after a witness"):
            signed.set_lock_time(900_000)
        with pytest.raises(ValueError, match="after a witness"):
            signed.set_input_sequence(0, 0)

    def test_original_unchanged_by_attach(
        self, script: Script, funding_outpoint: Outpoint, primary_key: KeyPair
    ) -> None:
        asm = _assembler(script, funding_outpoint)
        asm.attach_witness(0, _time_locked_stack(asm, primary_key, script))
        assert asm.witnesses == (None,)

    def test_finalize_requires_all_witnesses(
        self, script: Script, funding_outpoint: Outpoint
    ) -> None:
        with pytest.raises(ValueError, match="without witness"):
            _assembler(script, funding_outpoint).finalize()

    def test_finalize_round_trip(
        self, script: Script, funding_outpoint: Outpoint, primary_key: KeyPair
    ) -> None:
        asm = _assembler(script, funding_outpoint)
        stack = _time_locked_stack(asm, primary_key, script)
        tx = asm.attach_witness(0, stack).finalize()
        parsed = SignedTransaction.from_bytes(tx.serialize())
        assert parsed == tx
        assert parsed.witnesses[0] == stack
        assert parsed.lock_time == 800_000
        assert parsed.inputs[0].sequence == SEQUENCE_LOCKTIME_ENABLED

    def test_empty_stack_rejected(self, script: Script, funding_outpoint: Outpoint) -> None:
        from cltv_engine.btc.witness import WitnessStack

        with pytest.raises(ValueError, match="must not be empty"):
            _assembler(script, funding_outpoint).attach_witness(0, WitnessStack())
