"""
FizzBuzz sequences and their JSON rendering.

A ``FizzBuzzConfig`` describes one FizzBuzz variant: the numbers from
1 to ``limit`` are replaced by ``str1`` when divisible by ``int1``, by
``str2`` when divisible by ``int2`` and by ``str1 + str2`` when
divisible by both.  Configurations are immutable and hashable so they
can key the hit counts kept by ``stats_service``; their natural order
(field by field, in declaration order) is the tie-break used when two
configurations have been requested equally often.

``FizzBuzzSequence`` is the lazy sequence of tokens for a validated
configuration.  ``FizzBuzzSequence.iter_json`` renders it as a JSON
array of strings followed by a single newline, for example::

    ["1","fizz","buzz","fizz","5","fizzbuzz"]\\n

The output is produced in chunks of roughly ``CHUNK_SIZE`` bytes so a
large ``limit`` never needs the whole array in memory, and the three
replacement strings are JSON-escaped once per sequence rather than
once per number.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from typing import Any, BinaryIO, Dict, Iterator, Optional

from fizzbuzz_api.app.core.errors import DeadlineExceeded, InvalidInputError, WriteFailure

# Integer fields are 64-bit signed values: iteration never goes past
# MAX_INT and the HTTP layer rejects anything outside [MIN_INT, MAX_INT].
MAX_INT = 2**63 - 1
MIN_INT = -(2**63)

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True, order=True)
class FizzBuzzConfig:
    """Parameters of one FizzBuzz sequence.

    The field names double as the JSON wire names.  Field order
    matters: ordering compares ``limit``, then ``int1``, ``int2``,
    ``str1`` and ``str2``.
    """

    limit: int
    int1: int
    int2: int
    str1: str
    str2: str

    def validate(self) -> None:
        """Raise ``InvalidInputError`` unless both divisors are strictly positive
        and both strings can be encoded as UTF-8 (no lone surrogates).
        """
        if self.int1 < 1:
            raise InvalidInputError("int1")
        if self.int2 < 1:
            raise InvalidInputError("int2")
        for field in ("str1", "str2"):
            try:
                getattr(self, field).encode("utf-8")
            except UnicodeEncodeError:
                raise InvalidInputError(field, "must be valid UTF-8") from None

    def token(self, i: int) -> str:
        """Return the FizzBuzz value of ``i``."""
        if i % self.int1 == 0:
            if i % self.int2 == 0:
                return self.str1 + self.str2
            return self.str1
        if i % self.int2 == 0:
            return self.str2
        return str(i)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_CONFIG = FizzBuzzConfig(limit=10, int1=2, int2=3, str1="fizz", str2="buzz")


def _json_string(value: str) -> bytes:
    return json.dumps(value, ensure_ascii=False).encode("utf-8")


def _check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise DeadlineExceeded("encode", deadline)


class FizzBuzzSequence:
    """The tokens of a FizzBuzz configuration, from 1 to ``limit``.

    The configuration is validated on construction, so an invalid one
    fails before any output exists.  The sequence is lazy and can be
    iterated any number of times.  A ``limit`` below 1 gives an empty
    sequence; a ``limit`` above ``MAX_INT`` stops at ``MAX_INT``.
    """

    def __init__(self, config: FizzBuzzConfig) -> None:
        config.validate()
        self.config = config

    def __len__(self) -> int:
        return max(0, min(self.config.limit, MAX_INT))

    def __iter__(self) -> Iterator[str]:
        token = self.config.token
        for i in range(1, len(self) + 1):
            yield token(i)

    def iter_json(self, deadline: Optional[float] = None) -> Iterator[bytes]:
        """Yield the UTF-8 encoded JSON array of the sequence, newline included.

        ``deadline`` is a ``time.monotonic()`` instant.  Once it has
        passed, the next chunk boundary raises ``DeadlineExceeded``;
        whatever was yielded before is an incomplete document.
        """
        last = len(self)
        _check_deadline(deadline)
        if not last:
            yield b"[]\n"
            return

        cfg = self.config
        int1, int2 = cfg.int1, cfg.int2
        s1 = _json_string(cfg.str1)
        s2 = _json_string(cfg.str2)
        s12 = _json_string(cfg.str1 + cfg.str2)

        buf = bytearray(b"[")
        for i in range(1, last + 1):
            if i % int1 == 0:
                buf += s12 if i % int2 == 0 else s1
            elif i % int2 == 0:
                buf += s2
            else:
                buf += b'"%d"' % i
            if i < last:
                buf += b","
            if len(buf) >= CHUNK_SIZE:
                _check_deadline(deadline)
                yield bytes(buf)
                buf.clear()
        buf += b"]\n"
        _check_deadline(deadline)
        yield bytes(buf)


def write_into(config: FizzBuzzConfig, out: BinaryIO, deadline: Optional[float] = None) -> int:
    """Write the JSON rendering of ``config`` to ``out`` and return the byte count.

    Raises ``InvalidInputError`` before writing anything if the
    configuration is invalid, and ``WriteFailure`` (chained to the
    original exception) if ``out.write`` fails.
    """
    written = 0
    for chunk in FizzBuzzSequence(config).iter_json(deadline):
        try:
            out.write(chunk)
        except (OSError, ValueError) as exc:
            raise WriteFailure(f"write error after {written} bytes: {exc}") from exc
        written += len(chunk)
    return written


def encode(config: FizzBuzzConfig) -> bytes:
    """Return the complete JSON rendering of ``config``."""
    return b"".join(FizzBuzzSequence(config).iter_json())
