from bisect import bisect_right

import brotli
import pytest

from fontdiff.bit_buffer import BitBuffer
from fontdiff.stream import BrotliStream, BrotliStreamError

_INSERT_FIRST = [0, 1, 2, 3, 4, 5, 6, 8, 10, 14, 18, 26, 34, 50, 66, 98,
                 130, 194, 322, 578, 1090, 2114, 6210, 22594]
_INSERT_EXTRA = [0, 0, 0, 0, 0, 0, 1, 1, 2, 2, 3, 3, 4, 4, 5, 5,
                 6, 7, 8, 9, 10, 12, 14, 24]
_COPY_CODE_FOR_EXTRA = {0: 0, 1: 8, 2: 10, 3: 12, 4: 14, 5: 16, 6: 18, 7: 19}
_CELL_BASE = {
    (0, 0): 128, (0, 1): 192, (0, 2): 384,
    (1, 0): 256, (1, 1): 320, (1, 2): 512,
    (2, 0): 448, (2, 1): 576, (2, 2): 640,
}
# Fixed bit count of the dictionary meta-block apart from extra bits and literals.
_DICT_BLOCK_FIXED_BITS = 101


def _header_bit_count(window_bits):
    if window_bits == 16:
        return 1
    if window_bits <= 15 or window_bits == 17:
        return 7
    return 4


def _write_dictionary_block(out, dictionary):
    """Write a compressed meta-block emitting ``dictionary`` as literals.

    Its bit length is a multiple of eight, so later byte alignment is kept.
    """
    size = len(dictionary)
    insert_code = bisect_right(_INSERT_FIRST, size) - 1
    insert_extra_bits = _INSERT_EXTRA[insert_code]
    copy_extra_bits = (-(_DICT_BLOCK_FIXED_BITS + insert_extra_bits)) % 8
    copy_code = _COPY_CODE_FOR_EXTRA[copy_extra_bits]
    symbol = (_CELL_BASE[(insert_code >> 3, copy_code >> 3)]
              | ((insert_code & 7) << 3) | (copy_code & 7))

    out.append_number(0, 1)
    out.append_number(0, 2)
    out.append_number(size - 1, 16)
    out.append_number(0, 1)
    out.append_number(0, 3)
    out.append_number(0, 2)
    out.append_number(0, 4)
    out.append_number(0, 2)
    out.append_number(0, 1)
    out.append_number(0, 1)
    # Literal code: every byte value gets an 8-bit code.
    out.append_number(0, 2)
    for _ in range(10):
        out.append_number(0, 2)
    out.append_number(0b0111, 4)
    for _ in range(7):
        out.append_number(0, 2)
    out.append_number(1, 2)
    out.append_number(0, 2)
    out.append_number(symbol, 10)
    out.append_number(1, 2)
    out.append_number(0, 2)
    out.append_number(0, 6)
    out.append_number(size - _INSERT_FIRST[insert_code], insert_extra_bits)
    out.append_number(0, copy_extra_bits)
    for byte in dictionary:
        out.append_prefix_code(byte, 8)


def _decompress(stream, dictionary=b""):
    """Decode ``stream`` with the dictionary emitted as leading output."""
    data = stream.compressed_data()
    if not dictionary:
        return brotli.decompress(data)
    header_bits = _header_bit_count(stream.window_bits)
    value = int.from_bytes(data, "little")
    out = BitBuffer()
    out.append_number(value & ((1 << header_bits) - 1), header_bits)
    _write_dictionary_block(out, dictionary)
    remaining = len(data) * 8 - header_bits
    for byte in (value >> header_bits).to_bytes(len(data), "little"):
        if remaining <= 0:
            break
        out.append_number(byte, min(8, remaining))
        remaining -= 8
    return brotli.decompress(out.data())[len(dictionary):]


def test_insert_compressed():
    stream = BrotliStream(22)
    data = b"Hello " * 4
    stream.insert_compressed(data)
    stream.end_stream()
    assert _decompress(stream) == data
    assert stream.uncompressed_size == 24


def test_insert_compressed_with_dict():
    stream = BrotliStream(22, 100)
    data = b"Hello " * 5
    stream.insert_compressed(data)
    stream.end_stream()
    assert _decompress(stream, bytes(100)) == data


def test_insert_compressed_with_partial_dict():
    dictionary = bytes(i % 256 for i in range(500))
    data = dictionary[5:105]
    stream = BrotliStream(22, len(dictionary))
    stream.insert_compressed_with_partial_dict(data, dictionary[:200])
    stream.end_stream()
    assert len(stream.compressed_data()) < 100
    assert _decompress(stream, dictionary) == data


def test_insert_compressed_with_partial_dict_exceeds_window():
    dictionary = bytes(2000)
    stream = BrotliStream(10, 2000)
    with pytest.raises(BrotliStreamError):
        stream.insert_compressed_with_partial_dict(dictionary[1:11], dictionary[:10])
    assert stream.uncompressed_size == 0


def test_insert_multiple_compressed_with_partial_dict():
    dictionary = bytes(i % 256 for i in range(500))
    data = dictionary[5:155]
    stream = BrotliStream(22, len(dictionary))
    stream.insert_compressed_with_partial_dict(data[:75], dictionary[:100])
    stream.insert_compressed_with_partial_dict(data[75:150], dictionary[:200])
    stream.end_stream()
    assert len(stream.compressed_data()) < 100
    assert _decompress(stream, dictionary) == data


def test_insert_compressed_empty_is_noop():
    stream = BrotliStream(22, 10)
    stream.insert_compressed(b"")
    assert stream.compressed_data() == b""
    assert stream.uncompressed_size == 0


def test_insert_uncompressed():
    stream = BrotliStream(22)
    stream.insert_uncompressed(b"Hello world")
    stream.end_stream()
    assert _decompress(stream) == b"Hello world"


def test_insert_uncompressed_multiple():
    stream = BrotliStream(22)
    stream.insert_uncompressed(b"Hello world")
    stream.insert_uncompressed(b"test")
    stream.end_stream()
    assert _decompress(stream) == b"Hello worldtest"


def test_insert_uncompressed_layout():
    stream = BrotliStream(16)
    stream.insert_uncompressed(b"ab")
    assert stream.compressed_data() == b"\x10\x00\x10ab"
    stream.end_stream()
    assert stream.compressed_data() == b"\x10\x00\x10ab\x03"
    assert brotli.decompress(stream.compressed_data()) == b"ab"


def test_insert_uncompressed_large():
    data = bytearray(26777216)
    data[100] = 123
    data[25000000] = 45
    stream = BrotliStream(22)
    stream.insert_uncompressed(data)
    stream.end_stream()
    assert stream.uncompressed_size == len(data)
    assert _decompress(stream) == bytes(data)


def test_insert_from_dictionary():
    stream = BrotliStream(22, 11)
    assert stream.insert_from_dictionary(1, 4) is True
    assert stream.insert_from_dictionary(6, 3) is True
    stream.end_stream()
    assert _decompress(stream, b"Hello world") == b"ellowor"


def test_insert_from_dictionary_small():
    stream = BrotliStream(22, 10)
    assert stream.insert_from_dictionary(1, 1) is False
    assert stream.uncompressed_size == 0


def test_insert_from_dictionary_zero_length():
    stream = BrotliStream(22, 10)
    assert stream.insert_from_dictionary(3, 0) is True
    assert stream.compressed_data() == b""


def test_insert_from_dictionary_large():
    stream = BrotliStream(22, 25000000)
    assert stream.insert_from_dictionary(50, 24000000) is True
    stream.end_stream()
    assert stream.uncompressed_size == 24000000
    assert len(stream.compressed_data()) < 40


def test_insert_from_dictionary_large_avoids_too_small_ref():
    stream = BrotliStream(22, 25000000)
    assert stream.insert_from_dictionary(50, (1 << 24) + 1) is True
    stream.end_stream()
    assert stream.uncompressed_size == (1 << 24) + 1
    assert len(stream.compressed_data()) < 40


def test_insert_mixed():
    stream = BrotliStream(22, 11)
    assert stream.insert_from_dictionary(1, 4)
    stream.insert_uncompressed(b"123")
    assert stream.insert_from_dictionary(6, 3)
    stream.insert_compressed(b"6789")
    assert stream.insert_from_dictionary(0, 2)
    stream.end_stream()
    assert _decompress(stream, b"Hello world") == b"ello123wor6789He"


def test_append_streams():
    dictionary = b"Hello world"
    a = BrotliStream(22, 11)
    b = BrotliStream(22, 11, 5)
    c = BrotliStream(22, 11, 12)
    assert a.insert_from_dictionary(1, 5)
    assert b.insert_from_dictionary(3, 7)
    assert c.insert_from_dictionary(5, 4)
    a.append(b)
    a.append(c)
    a.end_stream()
    assert a.uncompressed_size == 5 + 7 + 4
    assert _decompress(a, dictionary) == b"ello lo worl wor"


def test_four_byte_align():
    stream = BrotliStream(22, 4)
    stream.four_byte_align_uncompressed()
    assert stream.uncompressed_size == 0
    assert stream.insert_from_dictionary(0, 2)
    stream.four_byte_align_uncompressed()
    assert stream.uncompressed_size == 4
    stream.four_byte_align_uncompressed()
    assert stream.uncompressed_size == 4
    stream.end_stream()
    assert _decompress(stream, b"1234") == b"12\x00\x00"


def test_end_stream_bytes():
    stream = BrotliStream(22)
    stream.end_stream()
    assert stream.compressed_data() == b"\x03"


@pytest.mark.parametrize(
    ("requested", "expected"),
    [(3, 10), (10, 10), (22, 22), (24, 24), (30, 24)],
)
def test_window_bits_clamped(requested, expected):
    assert BrotliStream(requested).window_bits == expected


@pytest.mark.parametrize(
    ("base", "derived", "expected"),
    [(0, 0, 10), (500, 500, 10), (600, 500, 11), (1 << 20, 1 << 20, 22), (1 << 25, 0, 24)],
)
def test_window_bits_for(base, derived, expected):
    assert BrotliStream.window_bits_for(base, derived) == expected


def test_byte_align_adds_empty_block_only_when_needed():
    stream = BrotliStream(22, 4)
    stream.byte_align()
    assert stream.compressed_data() == b""
    assert stream.insert_from_dictionary(0, 2)
    before = stream.compressed_data()
    stream.byte_align()
    after = stream.compressed_data()
    assert len(after) >= len(before)
    stream.byte_align()
    assert stream.compressed_data() == after
    stream.end_stream()
    assert _decompress(stream, b"1234") == b"12"