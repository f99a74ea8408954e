"""Time-locked contract engine — funding, spending and signing flows.

Composes the btc primitives into the two supported spends of a
CLTV branch contract:
1. Fund: build the witness script, its commitment and the P2WSH output
2. Build spend: skeleton with sequence / lock_time set for the branch
3. Sign spend: digest, injected signers, witness stack, attach
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cltv_engine.btc.address import address_to_script, encode_address
from cltv_engine.btc.assembler import TransactionAssembler
from cltv_engine.btc.commitment import p2wsh_lock_script, witness_commitment
from cltv_engine.btc.keys import verify_signature
from cltv_engine.btc.locktime import lock_from_height, lock_from_timestamp
from cltv_engine.btc.script import Script, build_cltv_branch_script, parse_cltv_branch_script
from cltv_engine.btc.transaction import TxOutput, UnsignedInput
from cltv_engine.btc.witness import RedemptionBranch, assemble_witness_stack, signature_element
from cltv_engine.config.settings import AppConfig, Network
from cltv_engine.errors.definitions import InvalidKeyError

if TYPE_CHECKING:
    from datetime import datetime

    from cltv_engine.btc.keys import Signer
    from cltv_engine.btc.locktime import BlockHeight, LockTimeValue, UnixTime
    from cltv_engine.btc.transaction import Outpoint

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimelockContract:
    """A CLTV branch contract: two keys, one absolute lock.

    Attributes:
        primary_key: Key that can spend alone once the lock has passed.
        secondary_key: Key that co-signs the cooperative branch.
        lock: Absolute lock of the time-locked branch.
        script: The witness script (derived).
    """

    primary_key: bytes
    secondary_key: bytes
    lock: LockTimeValue
    script: Script = field(init=False, repr=False)

    def __post_init__(self) -> None:
        script = build_cltv_branch_script(self.primary_key, self.secondary_key, self.lock)
        object.__setattr__(self, "script", script)

    @classmethod
    def from_script(cls, script: Script) -> TimelockContract:
        """Recover the contract from its witness script."""
        template = parse_cltv_branch_script(script)
        return cls(template.primary_key, template.secondary_key, template.lock)

    @property
    def commitment(self) -> bytes:
        return witness_commitment(self.script)

    @property
    def program(self) -> Script:
        """The P2WSH locking script of the funding output."""
        return p2wsh_lock_script(self.script)

    def funding_output(self, value: int) -> TxOutput:
        return TxOutput(value=value, script_pubkey=bytes(self.program))

    def address(self, network: Network | str = Network.MAINNET) -> str:
        hrp = Network(network).hrp
        return encode_address(self.program, hrp)

    def spend_input(self, outpoint: Outpoint, value: int, sequence: int) -> UnsignedInput:
        return UnsignedInput(
            outpoint=outpoint,
            sequence=sequence,
            committed_script=self.script,
            committed_value=value,
        )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TimelockEngine:
    """Builds and signs spends of :class:`TimelockContract` outputs.

    Holds configuration only; every call is a pure transform over the values
    passed in.
    """

    def __init__(self, config: AppConfig | None = None) -> None:
        self._config = config or AppConfig()

    @property
    def config(self) -> AppConfig:
        return self._config

    # -- Contract ----------------------------------------------------------

    def new_contract(
        self,
        primary_key: bytes,
        secondary_key: bytes,
        lock: LockTimeValue,
    ) -> TimelockContract:
        contract = TimelockContract(primary_key, secondary_key, lock)
        logger.info(
            "New CLTV contract %s (lock %s=%d)",
            contract.address(self._config.network),
            type(lock).__name__,
            lock.value,
        )
        return contract

    def lock_for_timestamp(self, timestamp: int | datetime) -> UnixTime:
        """Timestamp lock with the configured safety margin applied."""
        return lock_from_timestamp(
            timestamp, safety_margin=self._config.locktime_safety_margin_seconds
        )

    def lock_for_height(self, height: int) -> BlockHeight:
        return lock_from_height(height)

    # -- Spending ----------------------------------------------------------

    def build_spend(
        self,
        contract: TimelockContract,
        outpoint: Outpoint,
        funded_value: int,
        destination: Script | bytes | str,
        amount: int,
        *,
        branch: RedemptionBranch,
        lock_time: int | None = None,
    ) -> TransactionAssembler:
        """Build the unsigned spend of a funded contract output.

        Args:
            contract: The contract whose output is spent.
            outpoint: Funding outpoint.
            funded_value: Funding output value (from the funding tx / lookup).
            destination: Address or locking script to pay.
            amount: Satoshis to pay; the remainder is the fee.
            branch: Which branch the spend will take.
            lock_time: Explicit lock_time; defaults to the contract lock for
                the time-locked branch and unset for the cooperative one.
        """
        if amount > funded_value:
            msg = f"amount {amount} exceeds funded value {funded_value}"
            raise ValueError(msg)
        if isinstance(destination, str):
            destination = address_to_script(destination)

        spend_input = contract.spend_input(outpoint, funded_value, self._config.default_sequence)
        assembler = TransactionAssembler(
            inputs=(spend_input,),
            outputs=(TxOutput(value=amount, script_pubkey=bytes(destination)),),
            version=self._config.tx_version,
        )
        if lock_time is None and branch is RedemptionBranch.TIME_LOCKED:
            lock_time = contract.lock.encode()
        if lock_time is not None:
            assembler = assembler.set_lock_time(lock_time)

        logger.debug(
            "Built %s spend of %s: %d sats out, fee %d",
            branch,
            outpoint,
            amount,
            funded_value - amount,
        )
        return assembler

    def sign_spend(
        self,
        assembler: TransactionAssembler,
        index: int,
        branch: RedemptionBranch,
        primary_signer: Signer,
        secondary_signer: Signer | None = None,
        flag: int | None = None,
    ) -> TransactionAssembler:
        """Sign input *index* for *branch* and attach the witness.

        Raises:
            InvalidKeyError: If a signer does not hold the contract key it
                signs for.
            InconsistentLockTimeError: For a time-locked spend whose
                lock_time / sequence cannot satisfy the script.
        """
        flag = self._config.sighash_flag if flag is None else flag
        script = assembler.inputs[index].committed_script
        template = parse_cltv_branch_script(script)

        if primary_signer.public_key != template.primary_key:
            msg = "primary signer does not hold the contract's primary key"
            raise InvalidKeyError(msg)
        if branch is RedemptionBranch.COOPERATIVE:
            if secondary_signer is None:
                msg = "cooperative spend requires a secondary signer"
                raise ValueError(msg)
            if secondary_signer.public_key != template.secondary_key:
                msg = "secondary signer does not hold the contract's secondary key"
                raise InvalidKeyError(msg)

        digest = assembler.sighash(index, flag, branch=branch)
        primary_sig = signature_element(primary_signer.sign(digest), flag)
        secondary_sig = None
        if branch is RedemptionBranch.COOPERATIVE and secondary_signer is not None:
            secondary_sig = signature_element(secondary_signer.sign(digest), flag)

        stack = assemble_witness_stack(branch, script, primary_sig, secondary_sig)
        signed = assembler.attach_witness(index, stack)
        logger.info("Signed input %d via %s branch", index, branch)
        return signed

    def check_signatures(self, assembler: TransactionAssembler, index: int) -> bool:
        """Verify the attached signatures of input *index* against its branch.

        The keys come from the witness script itself; signatures are checked
        in the order the selected branch consumes them.
        """
        stack = assembler.witnesses[index]
        if stack is None:
            return False
        branch = stack.selected_branch()
        template = parse_cltv_branch_script(Script.from_bytes(stack.witness_script))

        keys = [template.primary_key]
        if branch is RedemptionBranch.COOPERATIVE:
            keys.append(template.secondary_key)

        for sig, key in zip(stack.signatures, keys, strict=True):
            digest = assembler.sighash(index, sig[-1])
            if not verify_signature(key, digest, sig[:-1]):
                logger.warning("Signature check failed for input %d (%s)", index, branch)
                return False
        return True
