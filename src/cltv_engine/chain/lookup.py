"""Outpoint lookup — resolving the coin a spend commits to.

A spender must know the funding output's value and the witness script behind
its commitment before it can sign. The ledger supplies the first (and the
on-chain program); the caller supplies the witness script, which is checked
against the program before an :class:`UnsignedInput` is produced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from cltv_engine.btc.commitment import verify_witness_script
from cltv_engine.btc.transaction import UnsignedInput
from cltv_engine.errors.definitions import LookupFailureError

if TYPE_CHECKING:
    from cltv_engine.btc.script import Script
    from cltv_engine.btc.transaction import Outpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FundedOutput:
    """An unspent output as reported by the ledger.

    Attributes:
        script_pubkey: The output's locking script (the P2WSH program).
        value: Output value in satoshis.
    """

    script_pubkey: bytes
    value: int


class OutpointLookup(Protocol):
    """Synchronous ledger lookup capability."""

    def lookup(self, outpoint: Outpoint) -> FundedOutput: ...


class AsyncOutpointLookup(Protocol):
    """Awaitable ledger lookup capability, e.g. :class:`EsploraClient`."""

    async def lookup(self, outpoint: Outpoint) -> FundedOutput: ...


@dataclass
class MemoryLookup:
    """Dictionary-backed lookup, for tests and offline construction."""

    outputs: dict[Outpoint, FundedOutput] = field(default_factory=dict)

    def add(self, outpoint: Outpoint, funded: FundedOutput) -> None:
        self.outputs[outpoint] = funded

    def lookup(self, outpoint: Outpoint) -> FundedOutput:
        """Return the funded output at *outpoint*.

        Raises:
            LookupFailureError: If the outpoint is unknown.
        """
        try:
            return self.outputs[outpoint]
        except KeyError:
            msg = f"outpoint not found: {outpoint}"
            raise LookupFailureError(msg, outpoint=str(outpoint)) from None


def resolve_input(
    funded: FundedOutput,
    witness_script: Script,
    outpoint: Outpoint,
    sequence: int,
) -> UnsignedInput:
    """Pair a funded output with its witness script.

    Raises:
        CommitmentMismatchError: If *witness_script* is not the script the
            output's program commits to.
    """
    verify_witness_script(funded.script_pubkey, witness_script)
    logger.debug("Resolved %s (%d sats)", outpoint, funded.value)
    return UnsignedInput(
        outpoint=outpoint,
        sequence=sequence,
        committed_script=witness_script,
        committed_value=funded.value,
    )


def resolve_from(
    lookup: OutpointLookup,
    outpoint: Outpoint,
    witness_script: Script,
    sequence: int,
) -> UnsignedInput:
    """Look up *outpoint* and resolve it; lookup failures propagate."""
    return resolve_input(lookup.lookup(outpoint), witness_script, outpoint, sequence)


async def resolve_from_async(
    lookup: AsyncOutpointLookup,
    outpoint: Outpoint,
    witness_script: Script,
    sequence: int,
) -> UnsignedInput:
    """Await the lookup of *outpoint* and resolve it; lookup failures propagate."""
    funded = await lookup.lookup(outpoint)
    return resolve_input(funded, witness_script, outpoint, sequence)
