# fontdiff

`fontdiff` writes brotli streams by hand, meta-block by meta-block, so that a
derived font subset can be rebuilt from a base subset that the decoder holds
as a shared dictionary. Because it knows the layout of the `glyf`, `loca`,
`hmtx` and `vmtx` tables, it copies runs of unchanged glyph data, metrics and
loca entries from the base with backward references instead of compressing
them again.

The output is an ordinary brotli stream. A brotli decoder that accepts a raw
shared dictionary can apply it: decode the patch with the base font bytes as
the dictionary and the result is the derived font.

The package is pure Python and has no third-party dependencies.

## Building blocks

### `fontdiff.bit_buffer`

`BitBuffer` packs multi-bit values in the order brotli expects.

- `append_number(bits, count)` appends up to 32 bits, least significant first.
- `append_prefix_code(bits, count)` appends up to 8 bits of a prefix code,
  most significant first (`reverse_bits(value)` reverses the eight low bits of
  a value).
- `append_raw(data)` appends whole bytes.
- `pad_to_end_of_byte()` and `is_byte_aligned()` manage byte alignment.
- `data()` returns the bytes written so far.

```python
from fontdiff.bit_buffer import BitBuffer

buffer = BitBuffer()
buffer.append_number(123, 8)
buffer.append_number(0b1010, 4)
assert buffer.data() == bytes([123, 0b1010])
```

### `fontdiff.encoder`

`MetaBlockEncoder(window_bits, stream_offset=0, dictionary=None)` compresses
data into byte-aligned, non-final brotli meta-blocks with a simple greedy
matcher. `dictionary` holds bytes that directly precede the data and may be
referenced by copies; a stream header is written only when `stream_offset` is
zero. `compress(data)` returns the encoded bytes. A window size outside 10–24
bits or a negative stream offset raises `EncoderError`.

### `fontdiff.stream`

`BrotliStream(window_bits, dictionary_size=0, starting_offset=0)` builds a
stream piece by piece. The window size is clamped to 10–24 bits.

- `insert_from_dictionary(offset, length)` copies `length` bytes starting at
  `offset` in the shared dictionary, splitting very long copies over several
  meta-blocks. It returns `False`, writing nothing, for a single byte, which
  cannot be expressed as a backward reference.
- `insert_uncompressed(data)` stores bytes as they are.
- `insert_compressed(data)` and
  `insert_compressed_with_partial_dict(data, partial_dict)` compress bytes,
  optionally against the leading bytes of the dictionary. They raise
  `BrotliStreamError` when the position in the stream exceeds the window or
  the encoder rejects its parameters.
- `append(other)` joins a stream that was started (through
  `starting_offset`) at this stream's current uncompressed size.
- `byte_align()`, `four_byte_align_uncompressed()` and `end_stream()` finish
  pieces and the stream.
- `compressed_data()` returns the encoded bytes; `window_bits`,
  `dictionary_size`, `uncompressed_size` and `starting_offset` are read-only
  properties.
- `BrotliStream.window_bits_for(base_size, derived_size)` picks the smallest
  window that holds both inputs.

```python
from fontdiff.stream import BrotliStream

dictionary = b"Hello world"
stream = BrotliStream(22, len(dictionary))
assert stream.insert_from_dictionary(1, 4)   # "ello"
stream.insert_uncompressed(b"123")
assert stream.insert_from_dictionary(6, 3)   # "wor"
stream.end_stream()
patch = stream.compressed_data()
# Decoding `patch` with `dictionary` as the shared dictionary yields b"ello123wor".
```

### `fontdiff.differs`

`GlyfDiffer`, `HmtxDiffer` and `LocaDiffer` are `TableDiffer`s. For each
derived glyph, `process(derived_gid, base_gid, base_derived_gid,
is_base_empty)` returns a `Deltas(base, derived)` pair giving how many bytes
of the base and derived table the glyph covers, and `is_new_data()` tells
whether it must be encoded anew or can be copied from the base. `finalize()`
returns the trailing bytes (the extra last entry of `loca`).

### `fontdiff.table_range`

- `FontFile(data)` reads the table directory of an sfnt font: `tags()`,
  `has_table(tag)`, `table(tag)`, `table_offset(tag)` and `glyph_count()`
  (from `maxp`). Truncated data raises `ValueError`; `table_offset` of a
  missing table raises `KeyError`.
- `TableRange(base_font, derived_font, tag, base_stream)` turns the differs'
  decisions into stream operations with `extend`, `commit_new` and
  `commit_existing`, writing to its own `stream` that starts at the derived
  table's offset.
- `padded_length(length)` rounds a length up to a multiple of four.

Tags may be given as `str` or `bytes`.

## Diffing two font subsets

`fontdiff.font_diff.BrotliFontDiff(immutable_tables, custom_diff_tables)`
produces the patch with `diff(base_plan, base, derived_plan, derived)`, where
`base` and `derived` are font bytes or `FontFile`s:

- Immutable tables are identical in base and derived and are copied from the
  base in one reference.
- Custom diff tables (`glyf`, `loca`, `hmtx`, `vmtx`) are compared glyph by
  glyph.
- Tables before them are compressed against the start of the base font, and
  anything after them is compressed on its own.

The glyph correspondence of each subset is given by
`SubsetPlan(new_to_old, old_to_new)`, two mappings of glyph ids between the
subset and the original font.

Both fonts must lay their tables out in the order the differ expects.
`BrotliFontDiff.sort_for_diff(immutable_tables, custom_diff_tables,
original_tags)` returns that order as a list of tags: the remaining tables in
their original order, then the immutable tables, then the custom diff tables,
each of the last two groups sorted by tag.

```python
from fontdiff.font_diff import BrotliFontDiff, SubsetPlan

custom = {"glyf", "loca", "hmtx", "vmtx"}
differ = BrotliFontDiff(set(), custom)

base_plan = SubsetPlan(base_new_to_old, base_old_to_new)
derived_plan = SubsetPlan(derived_new_to_old, derived_old_to_new)

patch = differ.diff(base_plan, base_font_bytes, derived_plan, derived_font_bytes)
```

Inconsistent inputs, such as a table present in the derived font but not the
base, diff tables that are not laid out one after another, or a missing
`head` table when `glyf`/`loca` are diffed, raise `FontDiffError`.

## What the package does not do

- It does not subset fonts: the subsets, and the glyph id mappings placed in
  each `SubsetPlan`, must come from elsewhere.
- It does not rewrite fonts: `sort_for_diff` only returns the table order;
  laying the tables out in that order is left to whatever builds the subsets.
- It does not decode brotli streams or apply patches; use a brotli decoder
  with shared dictionary support for that.
- It has no command-line interface.

## Development

Install the test extra (`pytest` and `brotli`, whose decoder checks that
every stream decodes to the expected bytes) and run `pytest`.