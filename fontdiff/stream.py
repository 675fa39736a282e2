"""Incremental construction of a brotli stream that may use a shared dictionary."""

from __future__ import annotations

from fontdiff.bit_buffer import BitBuffer
from fontdiff.encoder import EncoderError, MetaBlockEncoder

MAX_METABLOCK_SIZE = 1 << 24

_MIN_WINDOW_BITS = 10
_MAX_WINDOW_BITS = 24

_LITERAL_ALPHABET_BITS = 8
_COMMAND_ALPHABET_BITS = 10  # 704 insert-and-copy codes
_NUM_DISTANCE_SHORT_CODES = 16

# Number of extra bits for each copy length code (RFC 7932, section 5).
_COPY_EXTRA_BITS = [
    0, 0, 0, 0, 0, 0, 0, 0,
    1, 1, 2, 2, 3, 3, 4, 4,
    5, 5, 6, 7, 8, 9, 10, 24,
]

# (value, bit count) of the WBITS stream header for window sizes 10 through 24.
_WINDOW_CODES = [
    (0b0100001, 7),
    (0b0110001, 7),
    (0b1000001, 7),
    (0b1010001, 7),
    (0b1100001, 7),
    (0b1110001, 7),
    (0b0, 1),
    (0b0000001, 7),
    (0b0011, 4),
    (0b0101, 4),
    (0b0111, 4),
    (0b1001, 4),
    (0b1011, 4),
    (0b1101, 4),
    (0b1111, 4),
]


class BrotliStreamError(RuntimeError):
    """Raised when data cannot be added to a brotli stream."""


def _postfix_bits(distance: int) -> int:
    """Smallest NPOSTFIX able to encode ``distance`` with NDIRECT = 0."""
    if distance <= 67108860:
        return 0b00
    if distance <= 134217720:
        return 0b01
    if distance <= 268435440:
        return 0b10
    return 0b11


def _copy_code(length: int) -> tuple[int, int, int]:
    """Return (copy code, number of extra bits, extra bits value) for ``length``."""
    code = 0
    max_length = 2
    previous_max = 1
    while True:
        if length <= max_length or code == 23:
            return code, _COPY_EXTRA_BITS[code], length - previous_max - 1
        code += 1
        previous_max = max_length
        max_length += 1 << _COPY_EXTRA_BITS[code]


def _insert_and_copy_code(copy_length: int) -> tuple[int, int, int]:
    """Command symbol with an insert length of zero and an explicit distance."""
    copy_code, num_extra, extra = _copy_code(copy_length)
    if copy_code <= 7:
        prefix = 128
    elif copy_code <= 15:
        prefix = 192
        copy_code -= 8
    else:
        prefix = 384
        copy_code -= 16
    return prefix | copy_code, num_extra, extra


def _distance_code(distance: int, postfix_bits: int) -> tuple[int, int, int]:
    """Return (distance code, number of extra bits, extra bits value)."""
    dist = (1 << (postfix_bits + 2)) + (distance - 1)
    bucket = dist.bit_length() - 2
    postfix = dist & ((1 << postfix_bits) - 1)
    prefix = (dist >> bucket) & 1
    offset = (2 + prefix) << bucket
    num_extra = bucket - postfix_bits
    code = (
        _NUM_DISTANCE_SHORT_CODES
        + (((2 * (num_extra - 1)) + prefix) << postfix_bits)
        + postfix
    )
    return code, num_extra, (dist - offset) >> postfix_bits


class BrotliStream:
    """Builds a brotli stream piece by piece.

    ``dictionary_size`` is the length of the shared dictionary the stream will
    be decoded against. ``starting_offset`` is the uncompressed position this
    stream begins at, for streams that are later appended onto another.
    """

    def __init__(self, window_bits: int, dictionary_size: int = 0, starting_offset: int = 0) -> None:
        self._starting_offset = starting_offset
        self._uncompressed_size = starting_offset
        self._window_bits = max(min(window_bits, _MAX_WINDOW_BITS), _MIN_WINDOW_BITS)
        self._window_size = (1 << self._window_bits) - 16
        self._dictionary_size = dictionary_size
        self._buffer = BitBuffer()

    @staticmethod
    def window_bits_for(base_size: int, derived_size: int) -> int:
        """Smallest window size (in bits) holding both inputs."""
        for bits in range(_MIN_WINDOW_BITS, _MAX_WINDOW_BITS + 1):
            if base_size + derived_size < (1 << bits) - 16:
                return bits
        return _MAX_WINDOW_BITS

    @property
    def window_bits(self) -> int:
        return self._window_bits

    @property
    def dictionary_size(self) -> int:
        return self._dictionary_size

    @property
    def uncompressed_size(self) -> int:
        return self._uncompressed_size

    @property
    def starting_offset(self) -> int:
        return self._starting_offset

    def insert_from_dictionary(self, offset: int, length: int) -> bool:
        """Copy ``length`` bytes of the shared dictionary starting at ``offset``.

        Returns False when the range cannot be encoded as a backwards
        reference (a single byte); nothing is written in that case.
        """
        if not length:
            return True
        if length == 1:
            return False

        distance = (
            self._dictionary_size
            + min(self._window_size, self._uncompressed_size)
            - offset
        )

        if not self._add_mlen(length):
            remainder = max(length - MAX_METABLOCK_SIZE, 2)
            head = length - remainder
            return self.insert_from_dictionary(offset, head) and self.insert_from_dictionary(
                offset + head, remainder
            )

        postfix_bits = _postfix_bits(distance)
        out = self._buffer
        out.append_number(0b0, 1)  # ISUNCOMPRESSED
        out.append_number(0b0, 1)  # NBLTYPESL = 1
        out.append_number(0b0, 1)  # NBLTYPESI = 1
        out.append_number(0b0, 1)  # NBLTYPESD = 1
        out.append_number(postfix_bits, 2)  # NPOSTFIX
        out.append_number(0b0000, 4)  # NDIRECT
        out.append_number(0b00, 2)  # literal context mode
        out.append_number(0b0, 1)  # NTREESL = 1
        out.append_number(0b0, 1)  # NTREESD = 1

        # No literals are used: a one symbol tree holding literal zero.
        self._add_prefix_tree(0, _LITERAL_ALPHABET_BITS)

        command, copy_num_extra, copy_extra = _insert_and_copy_code(length)
        self._add_prefix_tree(command, _COMMAND_ALPHABET_BITS)

        alphabet_size = _NUM_DISTANCE_SHORT_CODES + (48 << postfix_bits)
        distance_width = (alphabet_size - 1).bit_length()
        distance_symbol, dist_num_extra, dist_extra = _distance_code(distance, postfix_bits)
        self._add_prefix_tree(distance_symbol, distance_width)

        # Single symbol trees take no bits, so only the extra bits remain.
        out.append_number(copy_extra, copy_num_extra)
        out.append_number(dist_extra, dist_num_extra)
        self._uncompressed_size += length
        return True

    def insert_uncompressed(self, data: bytes) -> None:
        """Insert ``data`` as stored (uncompressed) meta-blocks."""
        view = memoryview(bytes(data))
        for start in range(0, len(view), MAX_METABLOCK_SIZE):
            chunk = view[start:start + MAX_METABLOCK_SIZE]
            self._add_mlen(len(chunk))
            self._buffer.append_number(0b1, 1)  # ISUNCOMPRESSED
            self._buffer.pad_to_end_of_byte()
            self._buffer.append_raw(chunk)
            self._uncompressed_size += len(chunk)

    def insert_compressed(self, data: bytes) -> None:
        """Insert ``data`` compressed without reference to the shared dictionary."""
        self.insert_compressed_with_partial_dict(data, b"")

    def insert_compressed_with_partial_dict(self, data: bytes, partial_dict: bytes) -> None:
        """Insert ``data`` compressed against the leading bytes of the dictionary.

        ``partial_dict`` holds the dictionary bytes from its start; anything
        beyond the declared dictionary size is ignored.
        """
        data = bytes(data)
        if not data:
            return

        partial = bytes(partial_dict[:self._dictionary_size])

        if not self._uncompressed_size and self._dictionary_size:
            # The encoder only writes a stream header at offset zero.
            self._add_stream_header()

        self.byte_align()

        stream_offset = self._uncompressed_size + self._dictionary_size - len(partial)
        if stream_offset > self._window_size:
            raise BrotliStreamError("stream offset exceeds window size.")

        try:
            encoder = MetaBlockEncoder(self._window_bits, stream_offset, partial)
            compressed = encoder.compress(data)
        except EncoderError as error:
            raise BrotliStreamError(f"failed to encode brotli data: {error}") from error

        self._buffer.append_raw(compressed)
        self._uncompressed_size += len(data)

    def append(self, other: BrotliStream) -> None:
        """Append ``other``, which must start where this stream's data ends."""
        self.byte_align()
        other.byte_align()
        self._buffer.append_raw(other.compressed_data())
        self._uncompressed_size += other._uncompressed_size - other._starting_offset

    def byte_align(self) -> None:
        """Move to the next byte boundary using an empty meta-block if needed."""
        if not self._buffer.is_byte_aligned():
            self._add_mlen(0)

    def four_byte_align_uncompressed(self) -> None:
        """Pad the uncompressed data with zeroes to a multiple of four bytes."""
        if self._uncompressed_size % 4:
            self.insert_uncompressed(bytes(4 - self._uncompressed_size % 4))

    def end_stream(self) -> None:
        """Write the final, empty meta-block."""
        self._buffer.append_number(0b1, 1)  # ISLAST
        self._buffer.append_number(0b1, 1)  # ISLASTEMPTY
        self._buffer.pad_to_end_of_byte()

    def compressed_data(self) -> bytes:
        return self._buffer.data()

    def _add_mlen(self, size: int) -> bool:
        """Write a meta-block length header; False if ``size`` is too large."""
        out = self._buffer
        if size == 0:
            out.append_number(0b0, 1)  # ISLAST
            out.append_number(0b11, 2)  # MNIBBLES: metadata block
            out.append_number(0b0, 1)  # reserved
            out.append_number(0b00, 2)  # MSKIPBYTES
            out.pad_to_end_of_byte()
            return True
        if size <= 1 << 16:
            num_nibbles, nibbles_code = 4, 0b00
        elif size <= 1 << 20:
            num_nibbles, nibbles_code = 5, 0b01
        elif size <= MAX_METABLOCK_SIZE:
            num_nibbles, nibbles_code = 6, 0b10
        else:
            return False

        if not self._uncompressed_size:
            self._add_stream_header()

        out.append_number(0b0, 1)  # ISLAST
        out.append_number(nibbles_code, 2)  # MNIBBLES
        out.append_number(size - 1, num_nibbles * 4)  # MLEN - 1
        return True

    def _add_stream_header(self) -> None:
        self._buffer.append_number(*_WINDOW_CODES[self._window_bits - _MIN_WINDOW_BITS])

    def _add_prefix_tree(self, code: int, width: int) -> None:
        self._buffer.append_number(0b01, 2)  # simple tree
        self._buffer.append_number(0b00, 2)  # NSYM = 1
        self._buffer.append_number(code, width)