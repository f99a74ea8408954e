"""Typed errors raised by the construction engine."""

from __future__ import annotations

from cltv_engine.errors.engine_errors import EngineError

# -- Encoding --------------------------------------------------------------


class MalformedEncodingError(EngineError):
    """Non-canonical or truncated bytes (ScriptNum, script pushes, markers)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="malformed-encoding")


class OutOfRangeError(EngineError):
    """Lock time value on the wrong side of the height/time threshold."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="out-of-range")


class InvalidKeyError(EngineError):
    """Public key bytes are not a well-formed compressed SEC key."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid-key")


# -- Signing ---------------------------------------------------------------


class UnsupportedSighashFlagError(EngineError):
    """Sighash flag outside the supported set."""

    def __init__(self, flag: int) -> None:
        msg = f"unsupported sighash flag: {int(flag):#04x}"
        super().__init__(msg, code="unsupported-sighash-flag")
        self.flag = flag


# -- Assembly --------------------------------------------------------------


class InconsistentLockTimeError(EngineError):
    """Sequence / lock_time / script lock combination cannot satisfy CLTV."""

    def __init__(self, message: str, *, input_index: int | None = None) -> None:
        super().__init__(message, code="inconsistent-locktime")
        self.input_index = input_index


class CommitmentMismatchError(EngineError):
    """Recomputed witness commitment disagrees with the presented one."""

    def __init__(self, expected: bytes, actual: bytes) -> None:
        super().__init__(
            f"witness commitment mismatch: expected {expected.hex()}, got {actual.hex()}",
            code="commitment-mismatch",
        )
        self.expected = expected
        self.actual = actual


# -- Collaborators ---------------------------------------------------------


class LookupFailureError(EngineError):
    """A referenced outpoint could not be resolved."""

    def __init__(self, message: str, *, outpoint: str = "") -> None:
        super().__init__(message, code="lookup-failure")
        self.outpoint = outpoint
