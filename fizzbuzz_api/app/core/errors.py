"""
Exceptions raised by the FizzBuzz encoder and the statistics stores.

The core never logs.  It raises one of the exceptions below and lets
the caller (the HTTP layer) decide how to report it.  Each class also
derives from the closest builtin exception so that callers which do
not know about this module still catch them sensibly.
"""

from typing import Optional


class FizzBuzzError(Exception):
    """Base class for every error raised by the application core."""


class InvalidInputError(FizzBuzzError, ValueError):
    """A configuration cannot be encoded.

    ``field`` names the offending configuration field (``int1``,
    ``int2``, ``str1`` or ``str2``).  Raised before any output is
    produced.
    """

    def __init__(self, field: str, reason: str = "must be strictly positive") -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"invalid input: {field} {reason}")


class WriteFailure(FizzBuzzError, OSError):
    """The output sink rejected a write.

    Some bytes may have been written before the failure; the original
    exception is available as ``__cause__``.
    """


class StorageError(FizzBuzzError):
    """A statistics store could not complete an operation.

    A failed increment never changes the stored count.
    """


class DeadlineExceeded(FizzBuzzError, TimeoutError):
    """The caller supplied deadline passed before the operation finished."""

    def __init__(self, operation: str, deadline: Optional[float] = None) -> None:
        self.operation = operation
        self.deadline = deadline
        super().__init__(f"{operation}: deadline exceeded")
