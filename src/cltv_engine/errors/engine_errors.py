"""EngineError — base exception class for all py-cltv errors."""

from __future__ import annotations


class EngineError(Exception):
    """Base error for all transaction-construction operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
    """

    def __init__(self, message: str, *, code: str = "engine-error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code
