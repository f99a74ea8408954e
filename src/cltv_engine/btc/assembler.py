"""Transaction assembler — lock_time / sequence invariants and witness attachment.

The assembler is an immutable builder: every setter returns a new assembler.
It owns the coupling between the CLTV operand inside a committed script and
the transaction-level fields that make that opcode satisfiable:
- the transaction ``lock_time`` must be set, of the same kind (height vs.
  timestamp) as the script's lock, and not below it
- the spending input's ``sequence`` must not be final (0xFFFFFFFF), or
  lock_time is ignored by the ledger altogether

These checks run when a time-locked witness is attached and, on request,
before a digest is computed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from cltv_engine.btc.commitment import verify_witness_script, witness_commitment
from cltv_engine.btc.locktime import BlockHeight, UnixTime, decode_locktime, same_kind
from cltv_engine.btc.script import parse_cltv_branch_script, required_lock_time
from cltv_engine.btc.sighash import SighashFlag, segwit_sighash
from cltv_engine.btc.transaction import (
    SEQUENCE_FINAL,
    SignedTransaction,
    TxOutput,
    UnsignedInput,
    UnsignedTransaction,
)
from cltv_engine.btc.witness import RedemptionBranch, WitnessStack
from cltv_engine.errors.definitions import InconsistentLockTimeError, MalformedEncodingError

logger = logging.getLogger(__name__)

DEFAULT_TX_VERSION = 2


@dataclass(frozen=True)
class TransactionAssembler:
    """Immutable builder for a witness-spending transaction.

    Attributes:
        inputs: Inputs with their committed scripts and values.
        outputs: Outputs.
        lock_time: Transaction lock_time, or None while unset.
        version: Transaction version.
        witnesses: Attached witness per input (None until attached).
    """

    inputs: tuple[UnsignedInput, ...] = ()
    outputs: tuple[TxOutput, ...] = ()
    lock_time: int | None = None
    version: int = DEFAULT_TX_VERSION
    witnesses: tuple[WitnessStack | None, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        if not self.witnesses:
            object.__setattr__(self, "witnesses", (None,) * len(self.inputs))
        else:
            object.__setattr__(self, "witnesses", tuple(self.witnesses))
        if len(self.witnesses) != len(self.inputs):
            msg = f"{len(self.inputs)} inputs but {len(self.witnesses)} witness slots"
            raise ValueError(msg)
        if self.lock_time is not None and not 0 <= self.lock_time <= 0xFFFFFFFF:
            msg = f"lock_time must fit in 32 bits, got {self.lock_time}"
            raise ValueError(msg)

    # ------------------------------------------------------------------
    # Skeleton edits
    # ------------------------------------------------------------------

    @property
    def has_witnesses(self) -> bool:
        return any(w is not None for w in self.witnesses)

    @property
    def is_complete(self) -> bool:
        """Whether every input has a witness attached."""
        return all(w is not None for w in self.witnesses)

    def _ensure_unsigned(self, action: str) -> None:
        # Any edit below changes the digest, invalidating attached signatures.
        if self.has_witnesses:
            msg = f"cannot {action} after a witness has been attached"
            raise ValueError(msg)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.inputs):
            msg = f"input index {index} out of range ({len(self.inputs)} inputs)"
            raise IndexError(msg)

    def add_input(self, unsigned_input: UnsignedInput) -> TransactionAssembler:
        self._ensure_unsigned("add an input")
        return replace(
            self,
            inputs=(*self.inputs, unsigned_input),
            witnesses=(*self.witnesses, None),
        )

    def add_output(self, output: TxOutput) -> TransactionAssembler:
        self._ensure_unsigned("add an output")
        return replace(self, outputs=(*self.outputs, output))

    def set_input_sequence(self, index: int, sequence: int) -> TransactionAssembler:
        """Return a copy with input *index* using *sequence*."""
        self._check_index(index)
        self._ensure_unsigned("change a sequence")
        inputs = list(self.inputs)
        inputs[index] = replace(inputs[index], sequence=sequence)
        return replace(self, inputs=tuple(inputs))

    def set_lock_time(self, value: int | BlockHeight | UnixTime) -> TransactionAssembler:
        """Return a copy with the transaction lock_time set."""
        self._ensure_unsigned("change lock_time")
        raw = value.encode() if isinstance(value, BlockHeight | UnixTime) else int(value)
        decode_locktime(raw)
        return replace(self, lock_time=raw)

    def unsigned_transaction(self) -> UnsignedTransaction:
        """The skeleton the signature digest covers (unset lock_time -> 0)."""
        return UnsignedTransaction(
            version=self.version,
            inputs=tuple(inp.to_tx_input() for inp in self.inputs),
            outputs=self.outputs,
            lock_time=self.lock_time or 0,
        )

    # ------------------------------------------------------------------
    # Lock-time invariants
    # ------------------------------------------------------------------

    def check_time_lock(self, index: int) -> None:
        """Verify input *index* can satisfy its script's CHECKLOCKTIMEVERIFY.

        Scripts without the opcode pass trivially.

        Raises:
            InconsistentLockTimeError: If lock_time is unset, the input is
                final, the lock kinds differ, or lock_time is too early.
        """
        self._check_index(index)
        inp = self.inputs[index]
        required = required_lock_time(inp.committed_script)
        if required is None:
            return

        if self.lock_time is None:
            msg = f"input {index} requires lock_time >= {required.value} but lock_time is unset"
            raise InconsistentLockTimeError(msg, input_index=index)
        if inp.sequence == SEQUENCE_FINAL:
            msg = f"input {index} has a final sequence; lock_time would not be enforced"
            raise InconsistentLockTimeError(msg, input_index=index)

        tx_lock = decode_locktime(self.lock_time)
        if not same_kind(tx_lock, required):
            msg = (
                f"input {index} script locks by {type(required).__name__} "
                f"but lock_time is a {type(tx_lock).__name__}"
            )
            raise InconsistentLockTimeError(msg, input_index=index)
        if tx_lock.value < required.value:
            msg = f"input {index} lock_time {tx_lock.value} is below script lock {required.value}"
            raise InconsistentLockTimeError(msg, input_index=index)

    def _uses_time_lock(self, index: int, stack: WitnessStack) -> bool:
        script = self.inputs[index].committed_script
        if required_lock_time(script) is None:
            return False
        try:
            parse_cltv_branch_script(script)
        except MalformedEncodingError:
            # Unknown shape: assume the opcode is always reached.
            return True
        return stack.selected_branch() is RedemptionBranch.TIME_LOCKED

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sighash(
        self,
        index: int,
        sighash_flag: int = SighashFlag.ALL,
        *,
        branch: RedemptionBranch | None = None,
    ) -> bytes:
        """Compute the BIP143 digest for input *index*.

        Passing ``branch=TIME_LOCKED`` checks the lock-time invariants first,
        so a digest is never produced for a spend that cannot validate.
        """
        self._check_index(index)
        if branch is RedemptionBranch.TIME_LOCKED:
            self.check_time_lock(index)
        inp = self.inputs[index]
        return segwit_sighash(
            self.unsigned_transaction(),
            index,
            inp.committed_script,
            inp.committed_value,
            sighash_flag,
        )

    def attach_witness(self, index: int, stack: WitnessStack) -> TransactionAssembler:
        """Return a copy with *stack* attached to input *index*.

        Raises:
            CommitmentMismatchError: If the stack's witness script is not the
                input's committed script.
            InconsistentLockTimeError: If the stack takes the time-locked
                branch and lock_time / sequence cannot satisfy it.
        """
        self._check_index(index)
        if stack.is_empty:
            msg = "witness stack must not be empty"
            raise ValueError(msg)

        inp = self.inputs[index]
        verify_witness_script(witness_commitment(inp.committed_script), stack.witness_script)
        if self._uses_time_lock(index, stack):
            self.check_time_lock(index)

        logger.debug("Attached %d-item witness to input %d (%s)", len(stack), index, inp.outpoint)
        witnesses = list(self.witnesses)
        witnesses[index] = stack
        return replace(self, witnesses=tuple(witnesses))

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _signed(self) -> SignedTransaction:
        unsigned = self.unsigned_transaction()
        return SignedTransaction(
            version=unsigned.version,
            inputs=unsigned.inputs,
            outputs=unsigned.outputs,
            lock_time=unsigned.lock_time,
            witnesses=tuple(w if w is not None else WitnessStack() for w in self.witnesses),
        )

    def finalize(self) -> SignedTransaction:
        """Produce the terminal signed transaction.

        Raises:
            ValueError: If any input is still missing its witness.
        """
        missing = [i for i, w in enumerate(self.witnesses) if w is None]
        if missing:
            msg = f"inputs without witness: {missing}"
            raise ValueError(msg)
        return self._signed()

    def serialize(self) -> bytes:
        """Wire bytes of the current state (witness form once any is attached)."""
        return self._signed().serialize()
