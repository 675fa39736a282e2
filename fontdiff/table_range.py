"""Access to font tables and tracking of table regions being diffed."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from fontdiff.stream import BrotliStream

_HEADER = struct.Struct(">IHHHH")
_RECORD = struct.Struct(">4sIII")


def padded_length(length: int) -> int:
    """Round ``length`` up to a multiple of four."""
    return (length + 3) // 4 * 4


def _tag_key(tag: str | bytes) -> str:
    if isinstance(tag, bytes):
        return tag.decode("latin-1")
    return tag


@dataclass(frozen=True)
class _Record:
    offset: int
    length: int


class FontFile:
    """An sfnt font with its table directory parsed."""

    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)
        if len(self.data) < _HEADER.size:
            raise ValueError("font data is too short for an sfnt header")
        _, num_tables, _, _, _ = _HEADER.unpack_from(self.data, 0)
        directory_end = _HEADER.size + num_tables * _RECORD.size
        if len(self.data) < directory_end:
            raise ValueError("font table directory is truncated")

        self._records: dict[str, _Record] = {}
        for index in range(num_tables):
            raw_tag, _, offset, length = _RECORD.unpack_from(
                self.data, _HEADER.size + index * _RECORD.size)
            if offset + length > len(self.data):
                raise ValueError(f"table {raw_tag!r} extends past the end of the font")
            self._records[raw_tag.decode("latin-1")] = _Record(offset, length)

    def tags(self) -> list[str]:
        """Table tags in directory order."""
        return list(self._records)

    def has_table(self, tag: str | bytes) -> bool:
        """True if the table is present and not empty."""
        record = self._records.get(_tag_key(tag))
        return record is not None and record.length > 0

    def table(self, tag: str | bytes) -> bytes:
        """Bytes of the table, or empty bytes if it is missing."""
        record = self._records.get(_tag_key(tag))
        if record is None:
            return b""
        return self.data[record.offset:record.offset + record.length]

    def table_offset(self, tag: str | bytes) -> int:
        """Offset of the table from the start of the font."""
        key = _tag_key(tag)
        try:
            return self._records[key].offset
        except KeyError:
            raise KeyError(f"font has no {key!r} table") from None

    def glyph_count(self) -> int:
        """Number of glyphs recorded in 'maxp', or zero without one."""
        field = self.table("maxp")[4:6]
        if len(field) < 2:
            return 0
        return int.from_bytes(field, "big")


class TableRange:
    """Tracks pending and committed regions of one table being diffed.

    Output goes to a stream that starts at the derived table's offset so it
    can later be appended onto the stream for the preceding data.
    """

    def __init__(self, base_font: FontFile, derived_font: FontFile, tag: str | bytes,
                 base_stream: BrotliStream) -> None:
        self.tag = _tag_key(tag)
        self.data = derived_font.table(self.tag)
        self.stream = BrotliStream(base_stream.window_bits, base_stream.dictionary_size,
                                   derived_font.table_offset(self.tag))
        self._base_table_offset = base_font.table_offset(self.tag)
        self._base_offset = 0
        self._derived_offset = 0
        self._base_length = 0
        self._derived_length = 0

    @property
    def length(self) -> int:
        return len(self.data)

    def extend(self, base_length: int, derived_length: int) -> None:
        """Grow the pending region by the given byte counts."""
        self._base_length += base_length
        self._derived_length += derived_length

    def commit_new(self) -> None:
        """Write the pending derived bytes compressed, as novel data."""
        start = self._derived_offset
        self.stream.insert_compressed(self.data[start:start + self._derived_length])
        self._advance()

    def commit_existing(self) -> None:
        """Write the pending region as a reference into the base font."""
        if not self.stream.insert_from_dictionary(
                self._base_table_offset + self._base_offset, self._derived_length):
            # A one byte backwards reference is not encodable; store it raw.
            start = self._derived_offset
            self.stream.insert_uncompressed(self.data[start:start + self._derived_length])
        self._advance()

    def _advance(self) -> None:
        self._derived_offset += self._derived_length
        self._base_offset += self._base_length
        self._base_length = 0
        self._derived_length = 0