"""Snowflake ID generation and base62 rendering for short codes.

Each generator owns one node id and mints 63-bit integers that are unique for
that node and ordered by wall-clock time. The integer is rendered as a
base62 short code without truncation, so codes stay unique and reversible.

Bit Layout
==========
::
    63        62                    22         12            0
    ┌─────────┬─────────────────────┬──────────┬─────────────┐
    │ sign(0) │ timestamp (41 bits) │ node(10) │ sequence(12)│
    └─────────┴─────────────────────┴──────────┴─────────────┘

    timestamp: milliseconds since EPOCH_MS (2024-01-01T00:00:00Z), ~69 years
    node:      0..1023
    sequence:  0..4095 per millisecond per node

Flow Diagram — generate()
=========================
::
    ┌─────────────┐
    │ Acquire     │
    │ node lock   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Read clock  │
    └──────┬──────┘
    now < last?   │
    ┌─────┴─────┐
    │ YES        │ NO
    ▼            ▼
┌─────────┐  ┌─────────────┐
│ Raise   │  │ now == last? │
│ Clock   │  └──────┬──────┘
│Regression│  ┌─────┴─────┐
└─────────┘  │ YES        │ NO
             ▼            ▼
      ┌────────────┐  ┌──────────┐
      │ seq += 1;  │  │ seq = 0  │
      │ wrapped?   │  └────┬─────┘
      │ spin to    │       │
      │ next ms    │       │
      └─────┬──────┘       │
            └──────┬───────┘
                   ▼
           ┌─────────────┐
           │ Compose id  │
           └─────────────┘

How to Use
===========
**Step 1 — Create a generator**::
    generator = SnowflakeGenerator(node_id=7)

**Step 2 — Mint codes**::
    code = generator.generate_code()   # e.g. "2Bq9xk0Zr1a"

**Step 3 — Inspect an id**::
    timestamp_ms, node_id, sequence = generator.decompose(decode_base62(code))

Key Behaviours
===============
- Generators are thread-safe; state changes happen under a per-node lock.
- Sequence exhaustion spins until the next millisecond instead of reusing ids.
- A backwards clock raises ClockRegression rather than risk a duplicate.
- Codes are left-padded with "0" to a minimum length and never truncated.
"""

import threading
import time
from collections.abc import Callable

from shortener.exceptions import ClockRegression, InvalidNodeID

__all__ = [
    "BASE62_ALPHABET",
    "EPOCH_MS",
    "MAX_ID",
    "MAX_NODE_ID",
    "MAX_SEQUENCE",
    "SnowflakeGenerator",
    "decode_base62",
    "encode_base62",
    "in_code_space",
]

BASE62_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
_BASE62_INDEX = {char: index for index, char in enumerate(BASE62_ALPHABET)}

EPOCH_MS = 1704067200000  # 2024-01-01T00:00:00Z

TIMESTAMP_BITS = 41
NODE_ID_BITS = 10
SEQUENCE_BITS = 12

MAX_NODE_ID = (1 << NODE_ID_BITS) - 1
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1
MAX_TIMESTAMP = (1 << TIMESTAMP_BITS) - 1

NODE_ID_SHIFT = SEQUENCE_BITS
TIMESTAMP_SHIFT = SEQUENCE_BITS + NODE_ID_BITS

MAX_ID = (1 << (TIMESTAMP_BITS + NODE_ID_BITS + SEQUENCE_BITS)) - 1


def _wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


def encode_base62(number: int, min_length: int = 1) -> str:
    """Encode a non-negative integer as base62, left-padded with "0".

    Example:
        >>> encode_base62(12345)
        '3d7'
        >>> encode_base62(61, min_length=4)
        '000Z'
    """
    if number < 0:
        raise ValueError("Number must be non-negative")

    base = len(BASE62_ALPHABET)
    result = []

    while number > 0:
        number, remainder = divmod(number, base)
        result.append(BASE62_ALPHABET[remainder])

    encoded = "".join(result[::-1]) or BASE62_ALPHABET[0]
    return encoded.rjust(min_length, BASE62_ALPHABET[0])


def decode_base62(encoded: str) -> int:
    """Decode a base62 string produced by encode_base62.

    Leading "0" padding decodes to zero-valued digits, so padded and
    unpadded renderings of the same number decode identically.
    """
    if not encoded:
        raise ValueError("Encoded value must be non-empty")

    base = len(BASE62_ALPHABET)
    number = 0
    for char in encoded:
        try:
            number = number * base + _BASE62_INDEX[char]
        except KeyError:
            raise ValueError(f"Invalid base62 character {char!r}") from None
    return number


def in_code_space(code: str, min_length: int = 1) -> bool:
    """Return True when some node could mint ``code`` with this padding.

    Example:
        >>> in_code_space("000abc", min_length=6)
        True
        >>> in_code_space("abc", min_length=6)
        False
    """
    try:
        value = decode_base62(code)
    except ValueError:
        return False
    return value <= MAX_ID and encode_base62(value, min_length) == code


class SnowflakeGenerator:
    """Time-ordered unique id generator for a single node.

    Example:
        >>> generator = SnowflakeGenerator(node_id=1)
        >>> first, second = generator.generate(), generator.generate()
        >>> first < second
        True
    """

    def __init__(
        self,
        node_id: int,
        *,
        clock: Callable[[], int] = _wall_clock_ms,
        epoch_ms: int = EPOCH_MS,
        min_code_length: int = 6,
    ):
        # bool is an int subclass; True would silently become node 1
        if isinstance(node_id, bool) or not isinstance(node_id, int) or not 0 <= node_id <= MAX_NODE_ID:
            raise InvalidNodeID(node_id, MAX_NODE_ID)

        self._node_id = node_id
        self._clock = clock
        self._epoch_ms = epoch_ms
        self._min_code_length = min_code_length

        self._lock = threading.Lock()
        self._last_timestamp = -1
        self._sequence = 0

    @property
    def node_id(self) -> int:
        return self._node_id

    def generate(self) -> int:
        """Return the next id for this node.

        Raises:
            ClockRegression: If the clock reads earlier than the last issued id.
        """
        with self._lock:
            timestamp = self._current_timestamp()

            if timestamp < self._last_timestamp:
                raise ClockRegression(self._last_timestamp, timestamp)

            if timestamp == self._last_timestamp:
                if self._sequence < MAX_SEQUENCE:
                    self._sequence += 1
                else:
                    # state is untouched until the next tick is observed
                    timestamp = self._wait_next_millis(self._last_timestamp)
                    self._sequence = 0
            else:
                self._sequence = 0

            self._last_timestamp = timestamp

            return (timestamp << TIMESTAMP_SHIFT) | (self._node_id << NODE_ID_SHIFT) | self._sequence

    def generate_code(self) -> str:
        """Return the next id rendered as a base62 short code."""
        return encode_base62(self.generate(), self._min_code_length)

    def in_code_space(self, code: str) -> bool:
        """Return True when any node using this code length could mint ``code``."""
        return in_code_space(code, self._min_code_length)

    def decompose(self, snowflake_id: int) -> tuple[int, int, int]:
        """Split an id into (unix timestamp ms, node id, sequence)."""
        if not 0 <= snowflake_id <= MAX_ID:
            raise ValueError(f"Id out of range: {snowflake_id!r}")
        timestamp = (snowflake_id >> TIMESTAMP_SHIFT) & MAX_TIMESTAMP
        node_id = (snowflake_id >> NODE_ID_SHIFT) & MAX_NODE_ID
        sequence = snowflake_id & MAX_SEQUENCE
        return timestamp + self._epoch_ms, node_id, sequence

    def _current_timestamp(self) -> int:
        timestamp = self._clock() - self._epoch_ms
        if timestamp < 0:
            raise ValueError("Clock reads earlier than the generator epoch")
        if timestamp > MAX_TIMESTAMP:
            raise OverflowError("Timestamp space exhausted for this epoch")
        return timestamp

    def _wait_next_millis(self, last_timestamp: int) -> int:
        timestamp = self._current_timestamp()
        while timestamp <= last_timestamp:
            if timestamp < last_timestamp:
                raise ClockRegression(last_timestamp, timestamp)
            time.sleep(0.0001)
            timestamp = self._current_timestamp()
        return timestamp

    def __repr__(self) -> str:
        return f"<SnowflakeGenerator(node_id={self._node_id})>"
