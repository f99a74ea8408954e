"""Witness stacks for the two redemption branches of the CLTV script.

Stack items are listed bottom-first, the same order they appear on the wire.
The script consumes them top-first: the witness script is popped and run,
then the branch marker decides ``OP_IF`` vs ``OP_ELSE``, then signatures are
checked in the order the chosen branch reaches them.

- TIME_LOCKED:  ``[primary_sig, 0x01, witness_script]``
- COOPERATIVE:  ``[primary_sig, secondary_sig, <empty>, witness_script]``
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cltv_engine.btc.varint import encode_varint, read_exact, read_varint
from cltv_engine.errors.definitions import MalformedEncodingError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from io import BytesIO

    from cltv_engine.btc.script import Script

# Canonical branch selectors. Only these exact encodings are emitted or
# accepted; any other truthy value (0x02, 0x0100, ...) is rejected.
TRUE_MARKER = b"\x01"
FALSE_MARKER = b""


class RedemptionBranch(enum.StrEnum):
    """Which half of the CLTV script a spend executes."""

    TIME_LOCKED = "time_locked"
    COOPERATIVE = "cooperative"

    @property
    def marker(self) -> bytes:
        return TRUE_MARKER if self is RedemptionBranch.TIME_LOCKED else FALSE_MARKER

    @property
    def signature_count(self) -> int:
        return 1 if self is RedemptionBranch.TIME_LOCKED else 2


def signature_element(der_signature: bytes, sighash_flag: int) -> bytes:
    """Append the sighash byte to a DER signature for the witness."""
    if not der_signature:
        msg = "signature must not be empty"
        raise ValueError(msg)
    return der_signature + bytes([sighash_flag])


@dataclass(frozen=True)
class WitnessStack:
    """Ordered witness items for one input.

    Attributes:
        items: Byte strings, bottom of the stack first.
    """

    items: tuple[bytes, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.items)

    def __getitem__(self, index: int) -> bytes:
        return self.items[index]

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def witness_script(self) -> bytes:
        """The last item, which P2WSH executes as the witness script."""
        if not self.items:
            msg = "empty witness has no witness script"
            raise MalformedEncodingError(msg)
        return self.items[-1]

    @property
    def signatures(self) -> tuple[bytes, ...]:
        """Signature items preceding the branch marker."""
        return self.items[:-2]

    def selected_branch(self) -> RedemptionBranch:
        """Read back the branch selected by the marker.

        Raises:
            MalformedEncodingError: If the marker is not canonical or the
                signature count does not fit the branch.
        """
        if len(self.items) < 3:
            msg = f"witness too short for a CLTV branch spend: {len(self.items)} items"
            raise MalformedEncodingError(msg)
        marker = self.items[-2]
        if marker == TRUE_MARKER:
            branch = RedemptionBranch.TIME_LOCKED
        elif marker == FALSE_MARKER:
            branch = RedemptionBranch.COOPERATIVE
        else:
            msg = f"non-canonical branch marker: {marker.hex() or '<empty>'}"
            raise MalformedEncodingError(msg)
        if len(self.signatures) != branch.signature_count:
            msg = (
                f"{branch} branch expects {branch.signature_count} signature(s), "
                f"witness carries {len(self.signatures)}"
            )
            raise MalformedEncodingError(msg)
        return branch

    def serialize(self) -> bytes:
        """Serialize as the per-input witness field (count + items)."""
        result = encode_varint(len(self.items))
        for item in self.items:
            result += encode_varint(len(item)) + item
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> WitnessStack:
        count = read_varint(stream)
        items = []
        for _ in range(count):
            size = read_varint(stream)
            items.append(read_exact(stream, size, "witness item"))
        return cls(tuple(items))


def assemble_witness_stack(
    branch: RedemptionBranch,
    witness_script: Script | bytes,
    primary_signature: bytes,
    secondary_signature: bytes | None = None,
) -> WitnessStack:
    """Build the witness stack spending *witness_script* via *branch*.

    Signatures must already carry their sighash byte.

    Raises:
        ValueError: If the signatures given do not match the branch.
    """
    if not primary_signature:
        msg = "primary signature is required"
        raise ValueError(msg)
    script_bytes = bytes(witness_script)

    if branch is RedemptionBranch.TIME_LOCKED:
        if secondary_signature is not None:
            msg = "time-locked branch takes only the primary signature"
            raise ValueError(msg)
        return WitnessStack((primary_signature, TRUE_MARKER, script_bytes))

    if not secondary_signature:
        msg = "cooperative branch requires the secondary signature"
        raise ValueError(msg)
    return WitnessStack((primary_signature, secondary_signature, FALSE_MARKER, script_bytes))
