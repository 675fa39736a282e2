"""Bit-level writer following the brotli bit packing conventions."""

from __future__ import annotations

_MAX_NUMBER_BITS = 32
_MAX_PREFIX_BITS = 8


def reverse_bits(value: int) -> int:
    """Reverse the order of the eight low bits of ``value``."""
    return int(f"{value & 0xFF:08b}"[::-1], 2)


class BitBuffer:
    """Accumulates a byte stream built from multi-bit values.

    Numbers are packed starting at the least significant bit of each byte,
    as described in section 1.5.1 of RFC 7932.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        # Index of the next bit to write in the last byte; 8 means a new
        # byte must be started.
        self._bit_index = 8

    def append_number(self, bits: int, count: int) -> None:
        """Append the ``count`` low bits of ``bits``, least significant first."""
        count = min(_MAX_NUMBER_BITS, count)
        bits &= 0xFFFFFFFF
        written = 0
        while written < count:
            if self._bit_index == 8:
                self._bit_index = 0
                self._buffer.append(0)
            to_write = min(8 - self._bit_index, count - written)
            mask = (1 << (to_write + self._bit_index)) - 1
            self._buffer[-1] |= (bits << self._bit_index) & mask & 0xFF
            written += to_write
            self._bit_index += to_write
            bits >>= to_write

    def append_prefix_code(self, bits: int, count: int) -> None:
        """Append a prefix code of up to eight bits, most significant first."""
        count = min(_MAX_PREFIX_BITS, count)
        self.append_number(reverse_bits(bits) >> (8 - count), count)

    def append_raw(self, data: bytes) -> None:
        """Append whole bytes to the end of the buffer."""
        self._buffer.extend(data)

    def pad_to_end_of_byte(self) -> None:
        """Leave the rest of the current byte as zero bits."""
        self._bit_index = 8

    def is_byte_aligned(self) -> bool:
        return self._bit_index == 8

    def data(self) -> bytes:
        return bytes(self._buffer)