"""A compact brotli meta-block encoder with shared dictionary support."""

from __future__ import annotations

import heapq
from bisect import bisect_right
from collections import Counter
from dataclasses import dataclass

from fontdiff.bit_buffer import BitBuffer

MIN_WINDOW_BITS = 10
MAX_WINDOW_BITS = 24

_BLOCK_SIZE = 1 << 16
_MIN_MATCH = 4
_MAX_CHAIN = 32

# (value, bit count) of the WBITS field for window sizes 10 through 24.
_STREAM_HEADER = [
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

_INSERT_FIRST = [0, 1, 2, 3, 4, 5, 6, 8, 10, 14, 18, 26, 34, 50, 66, 98,
                 130, 194, 322, 578, 1090, 2114, 6210, 22594]
_INSERT_EXTRA = [0, 0, 0, 0, 0, 0, 1, 1, 2, 2, 3, 3, 4, 4, 5, 5,
                 6, 7, 8, 9, 10, 12, 14, 24]
_COPY_FIRST = [2, 3, 4, 5, 6, 7, 8, 9, 10, 12, 14, 18, 22, 30, 38, 54,
               70, 102, 134, 198, 326, 582, 1094, 2118]
_COPY_EXTRA = [0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 2, 2, 3, 3, 4, 4,
               5, 5, 6, 7, 8, 9, 10, 24]

# Base symbol of each (insert range, copy range) cell with explicit distances.
_CELL_BASE = {
    (0, 0): 128, (0, 1): 192, (0, 2): 384,
    (1, 0): 256, (1, 1): 320, (1, 2): 512,
    (2, 0): 448, (2, 1): 576, (2, 2): 640,
}

_CODE_LENGTH_ORDER = [1, 2, 3, 4, 0, 5, 17, 6, 16, 7, 8, 9, 10, 11, 12, 13, 14, 15]
# Fixed code for code length code lengths, as (value, bit count).
_CODE_LENGTH_LENGTH_CODES = {
    0: (0b00, 2), 1: (0b0111, 4), 2: (0b011, 3),
    3: (0b10, 2), 4: (0b01, 2), 5: (0b1111, 4),
}

_LITERAL_ALPHABET_BITS = 8
_COMMAND_ALPHABET_BITS = 10
_DISTANCE_ALPHABET_BITS = 6


class EncoderError(ValueError):
    """Raised when the encoder is configured with unusable parameters."""


@dataclass
class _Command:
    literals: bytes
    copy_length: int = 0
    distance: int = 0


def _length_code(length: int, firsts: list[int], extras: list[int]) -> tuple[int, int, int]:
    code = bisect_right(firsts, length) - 1
    return code, extras[code], length - firsts[code]


def _distance_code(distance: int) -> tuple[int, int, int]:
    value = distance - 1 + 4
    num_bits = value.bit_length() - 2
    lsb = (value >> num_bits) & 1
    code = 16 + (((num_bits - 1) << 1) | lsb)
    return code, num_bits, value - ((2 + lsb) << num_bits)


def _huffman_lengths(freqs: dict[int, int], limit: int) -> dict[int, int]:
    weights = dict(freqs)
    while True:
        lengths = {symbol: 0 for symbol in weights}
        heap = [(weight, symbol, [symbol]) for symbol, weight in weights.items()]
        heapq.heapify(heap)
        tiebreak = max(weights) + 1
        while len(heap) > 1:
            w1, _, s1 = heapq.heappop(heap)
            w2, _, s2 = heapq.heappop(heap)
            for symbol in s1 + s2:
                lengths[symbol] += 1
            heapq.heappush(heap, (w1 + w2, tiebreak, s1 + s2))
            tiebreak += 1
        if max(lengths.values()) <= limit:
            return lengths
        weights = {symbol: max(1, weight >> 1) for symbol, weight in weights.items()}


def _canonical_codes(lengths: dict[int, int]) -> dict[int, tuple[int, int]]:
    codes: dict[int, tuple[int, int]] = {}
    code = 0
    previous = 0
    for symbol, length in sorted(lengths.items(), key=lambda item: (item[1], item[0])):
        if length == 0:
            codes[symbol] = (0, 0)
            continue
        code <<= length - previous
        codes[symbol] = (code, length)
        code += 1
        previous = length
    return codes


def _write_code(out: BitBuffer, code: tuple[int, int]) -> None:
    value, length = code
    if length:
        out.append_number(int(format(value, f"0{length}b")[::-1], 2), length)


def _write_prefix_code(out: BitBuffer, freqs: Counter, alphabet_bits: int) -> dict[int, tuple[int, int]]:
    """Write a prefix code for ``freqs`` and return its symbol codes."""
    if not freqs:
        freqs = Counter({0: 1})
    symbols = [symbol for symbol, _ in freqs.most_common()]

    if len(symbols) <= 4:
        out.append_number(0b01, 2)
        out.append_number(len(symbols) - 1, 2)
        for symbol in symbols:
            out.append_number(symbol, alphabet_bits)
        if len(symbols) == 1:
            lengths = {symbols[0]: 0}
        elif len(symbols) == 2:
            lengths = {symbol: 1 for symbol in symbols}
        elif len(symbols) == 3:
            lengths = {symbols[0]: 1, symbols[1]: 2, symbols[2]: 2}
        else:
            out.append_number(0, 1)
            lengths = {symbol: 2 for symbol in symbols}
        return _canonical_codes(lengths)

    lengths = _huffman_lengths(dict(freqs), 15)
    sequence = [lengths.get(symbol, 0) for symbol in range(max(lengths) + 1)]
    sequence_freqs = Counter(sequence)
    if len(sequence_freqs) == 1:
        cl_lengths = {next(iter(sequence_freqs)): 1}
        cl_codes = {next(iter(sequence_freqs)): (0, 0)}
    else:
        cl_lengths = _huffman_lengths(dict(sequence_freqs), 5)
        cl_codes = _canonical_codes(cl_lengths)

    out.append_number(0, 2)  # HSKIP
    space = 32
    for symbol in _CODE_LENGTH_ORDER:
        length = cl_lengths.get(symbol, 0)
        out.append_number(*_CODE_LENGTH_LENGTH_CODES[length])
        if length:
            space -= 32 >> length
            if space == 0:
                break
    for length in sequence:
        _write_code(out, cl_codes[length])
    return _canonical_codes(lengths)


class MetaBlockEncoder:
    """Compresses data into byte-aligned, non-final brotli meta-blocks.

    ``stream_offset`` is the position the data is taken to start at; when it
    is zero a stream header is written first. ``dictionary`` holds the bytes
    that directly precede that position and may be referenced by copies.
    """

    def __init__(self, window_bits: int, stream_offset: int = 0, dictionary: bytes | None = None) -> None:
        if not MIN_WINDOW_BITS <= window_bits <= MAX_WINDOW_BITS:
            raise EncoderError(f"window bits must be in [10, 24], got {window_bits}")
        if stream_offset < 0:
            raise EncoderError("stream offset must not be negative")
        self.window_bits = window_bits
        self.window_size = (1 << window_bits) - 16
        self.stream_offset = stream_offset
        self.dictionary = bytes(dictionary or b"")

    def compress(self, data: bytes) -> bytes:
        """Return the compressed meta-blocks for ``data``."""
        data = bytes(data)
        if not data:
            return b""

        out = BitBuffer()
        if self.stream_offset == 0:
            out.append_number(*_STREAM_HEADER[self.window_bits - MIN_WINDOW_BITS])

        combined = self.dictionary + data
        chains: dict[bytes, list[int]] = {}
        for position in range(len(self.dictionary) - _MIN_MATCH + 1):
            chains.setdefault(combined[position:position + _MIN_MATCH], []).append(position)

        for start in range(0, len(data), _BLOCK_SIZE):
            end = min(start + _BLOCK_SIZE, len(data))
            commands = self._parse(combined, chains, start, end)
            self._write_meta_block(out, end - start, commands)

        if not out.is_byte_aligned():
            # Empty metadata block to reach a byte boundary.
            out.append_number(0, 1)
            out.append_number(0b11, 2)
            out.append_number(0, 1)
            out.append_number(0, 2)
            out.pad_to_end_of_byte()
        return out.data()

    def _index(self, combined: bytes, chains: dict[bytes, list[int]], position: int) -> None:
        key = combined[position:position + _MIN_MATCH]
        if len(key) == _MIN_MATCH:
            chains.setdefault(key, []).append(position)

    def _longest_match(self, combined: bytes, chains: dict[bytes, list[int]],
                       position: int, end: int) -> tuple[int, int]:
        dict_len = len(self.dictionary)
        current = dict_len + position
        candidates = chains.get(combined[current:current + _MIN_MATCH])
        if not candidates:
            return 0, 0
        max_length = end - position
        dictionary_usable = self.stream_offset + position + dict_len <= self.window_size
        best_length, best_distance = 0, 0
        for candidate in reversed(candidates[-_MAX_CHAIN:]):
            if candidate < dict_len:
                if not dictionary_usable:
                    continue
                limit = min(max_length, dict_len - candidate)
                distance = self.stream_offset + position + dict_len - candidate
            else:
                distance = current - candidate
                if distance > self.window_size:
                    continue
                limit = max_length
            if limit <= best_length or combined[candidate + best_length] != combined[current + best_length]:
                continue
            length = 0
            while length < limit and combined[candidate + length] == combined[current + length]:
                length += 1
            if length > best_length:
                best_length, best_distance = length, distance
                if length == max_length:
                    break
        return best_length, best_distance

    def _parse(self, combined: bytes, chains: dict[bytes, list[int]], start: int, end: int) -> list[_Command]:
        dict_len = len(self.dictionary)
        commands: list[_Command] = []
        pending = start
        position = start
        while position < end:
            length, distance = self._longest_match(combined, chains, position, end)
            if length >= _MIN_MATCH:
                literals = combined[dict_len + pending:dict_len + position]
                commands.append(_Command(literals, length, distance))
                for covered in range(position, position + length):
                    self._index(combined, chains, dict_len + covered)
                position += length
                pending = position
            else:
                self._index(combined, chains, dict_len + position)
                position += 1
        if pending < end:
            commands.append(_Command(combined[dict_len + pending:dict_len + end]))
        return commands

    def _write_meta_block(self, out: BitBuffer, length: int, commands: list[_Command]) -> None:
        out.append_number(0, 1)  # ISLAST
        out.append_number(0b00, 2)  # MNIBBLES = 4
        out.append_number(length - 1, 16)
        out.append_number(0, 1)  # ISUNCOMPRESSED
        out.append_number(0, 3)  # NBLTYPESL/I/D = 1
        out.append_number(0, 2)  # NPOSTFIX
        out.append_number(0, 4)  # NDIRECT
        out.append_number(0, 2)  # literal context mode
        out.append_number(0, 1)  # NTREESL = 1
        out.append_number(0, 1)  # NTREESD = 1

        encoded = []
        literal_freqs: Counter = Counter()
        command_freqs: Counter = Counter()
        distance_freqs: Counter = Counter()
        for command in commands:
            insert = _length_code(len(command.literals), _INSERT_FIRST, _INSERT_EXTRA)
            copy = _length_code(max(command.copy_length, 2), _COPY_FIRST, _COPY_EXTRA)
            symbol = _CELL_BASE[(insert[0] >> 3, copy[0] >> 3)] | ((insert[0] & 7) << 3) | (copy[0] & 7)
            distance = _distance_code(command.distance) if command.copy_length else None
            encoded.append((symbol, insert, copy, command.literals, distance))
            command_freqs[symbol] += 1
            literal_freqs.update(command.literals)
            if distance:
                distance_freqs[distance[0]] += 1

        literal_codes = _write_prefix_code(out, literal_freqs, _LITERAL_ALPHABET_BITS)
        command_codes = _write_prefix_code(out, command_freqs, _COMMAND_ALPHABET_BITS)
        distance_codes = _write_prefix_code(out, distance_freqs, _DISTANCE_ALPHABET_BITS)

        for symbol, insert, copy, literals, distance in encoded:
            _write_code(out, command_codes[symbol])
            out.append_number(insert[2], insert[1])
            out.append_number(copy[2], copy[1])
            for literal in literals:
                _write_code(out, literal_codes[literal])
            if distance:
                _write_code(out, distance_codes[distance[0]])
                out.append_number(distance[2], distance[1])