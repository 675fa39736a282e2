import random

import brotli
import pytest

from fontdiff.encoder import EncoderError, MetaBlockEncoder

END_OF_STREAM = b"\x03"


def roundtrip(data, window_bits=22):
    compressed = MetaBlockEncoder(window_bits, 0, None).compress(data)
    return compressed, brotli.decompress(compressed + END_OF_STREAM)


@pytest.mark.parametrize(
    "data",
    [
        b"H",
        b"ab",
        b"abcabc",
        b"Hello Hello Hello Hello ",
        bytes(range(256)) * 3,
        b"the quick brown fox jumps over the lazy dog " * 20,
    ],
)
def test_roundtrip(data):
    _, decoded = roundtrip(data)
    assert decoded == data


def test_random_data_roundtrip():
    data = random.Random(7).randbytes(5000)
    _, decoded = roundtrip(data)
    assert decoded == data


def test_multiple_blocks_roundtrip():
    rng = random.Random(3)
    words = [rng.randbytes(rng.randint(3, 12)) for _ in range(50)]
    data = b"".join(rng.choice(words) for _ in range(15000))[:150000]
    assert len(data) > 1 << 16
    _, decoded = roundtrip(data)
    assert decoded == data


def test_small_window_roundtrip():
    rng = random.Random(11)
    chunk = rng.randbytes(2000)
    data = chunk + chunk
    _, decoded = roundtrip(data, window_bits=10)
    assert decoded == data


def test_repetitive_data_is_smaller():
    data = b"Hello " * 100
    compressed, _ = roundtrip(data)
    assert len(compressed) < len(data) // 4


def test_stream_header_written_at_offset_zero():
    compressed = MetaBlockEncoder(22, 0, None).compress(b"data")
    assert compressed[0] & 0xF == 0b1101


def test_empty_input():
    assert MetaBlockEncoder(22, 0, None).compress(b"") == b""


def test_dictionary_shrinks_output():
    dictionary = random.Random(5).randbytes(300)
    data = dictionary[20:220]
    with_dict = MetaBlockEncoder(22, 100, dictionary).compress(data)
    without = MetaBlockEncoder(22, 100, b"").compress(data)
    assert len(with_dict) < len(without)


def test_dictionary_beyond_window_is_ignored():
    dictionary = random.Random(9).randbytes(300)
    data = dictionary[:200]
    with_dict = MetaBlockEncoder(10, 900, dictionary).compress(data)
    without = MetaBlockEncoder(10, 900, b"").compress(data)
    assert with_dict == without


@pytest.mark.parametrize("window_bits", [9, 25])
def test_invalid_window_bits(window_bits):
    with pytest.raises(EncoderError):
        MetaBlockEncoder(window_bits, 0, None)


def test_negative_offset():
    with pytest.raises(EncoderError):
        MetaBlockEncoder(22, -1, None)