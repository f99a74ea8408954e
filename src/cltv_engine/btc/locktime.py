"""Lock time values — block heights vs. UNIX timestamps.

The protocol packs both kinds into the same bare 32-bit field and tells them
apart only by comparing against ``LOCKTIME_THRESHOLD``:
- values below the threshold are block heights
- values at or above it are UNIX timestamps (seconds, UTC)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cltv_engine.errors.definitions import OutOfRangeError

LOCKTIME_THRESHOLD = 500_000_000

_U32_MAX = 0xFFFFFFFF


@dataclass(frozen=True)
class BlockHeight:
    """Absolute lock expressed as a block height."""

    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value < LOCKTIME_THRESHOLD:
            msg = f"block height must be in [0, {LOCKTIME_THRESHOLD}), got {self.value}"
            raise OutOfRangeError(msg)

    def encode(self) -> int:
        return self.value


@dataclass(frozen=True)
class UnixTime:
    """Absolute lock expressed as a UNIX timestamp."""

    value: int

    def __post_init__(self) -> None:
        if not LOCKTIME_THRESHOLD <= self.value <= _U32_MAX:
            msg = f"timestamp must be in [{LOCKTIME_THRESHOLD}, {_U32_MAX}], got {self.value}"
            raise OutOfRangeError(msg)

    def encode(self) -> int:
        return self.value

    @property
    def as_datetime(self) -> datetime:
        """The timestamp as an aware UTC datetime."""
        return datetime.fromtimestamp(self.value, tz=UTC)


LockTimeValue = BlockHeight | UnixTime


def encode_locktime(value: LockTimeValue) -> int:
    """Return the 32-bit protocol representation of *value*."""
    return value.encode()


def decode_locktime(n: int) -> LockTimeValue:
    """Recover the tagged lock time value from its 32-bit representation.

    Raises:
        OutOfRangeError: If *n* does not fit in 32 bits.
    """
    if not 0 <= n <= _U32_MAX:
        msg = f"lock time does not fit in 32 bits: {n}"
        raise OutOfRangeError(msg)
    if n < LOCKTIME_THRESHOLD:
        return BlockHeight(n)
    return UnixTime(n)


def lock_from_height(height: int) -> BlockHeight:
    """Build a block-height lock."""
    return BlockHeight(height)


def lock_from_timestamp(
    timestamp: int | datetime,
    *,
    safety_margin: timedelta | int = 0,
) -> UnixTime:
    """Build a timestamp lock, subtracting *safety_margin* up front.

    Args:
        timestamp: Epoch seconds or a timezone-aware datetime.
        safety_margin: Seconds (or a timedelta) to subtract before encoding.

    Raises:
        ValueError: If *timestamp* is a naive datetime.
        OutOfRangeError: If the result falls below the threshold.
    """
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            msg = "timestamp datetime must be timezone-aware"
            raise ValueError(msg)
        seconds = int(timestamp.timestamp())
    else:
        seconds = int(timestamp)

    if isinstance(safety_margin, timedelta):
        margin = int(safety_margin.total_seconds())
    else:
        margin = int(safety_margin)
    if margin < 0:
        msg = f"safety margin must be non-negative, got {margin}"
        raise ValueError(msg)

    return UnixTime(seconds - margin)


def same_kind(a: LockTimeValue, b: LockTimeValue) -> bool:
    """Whether both values are heights or both are timestamps."""
    return type(a) is type(b)
