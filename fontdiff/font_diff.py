"""Binary diffs between two subsets of a font, encoded as a brotli stream.

The base subset acts as a shared dictionary. Tables known to the differ
(glyf, loca, hmtx, vmtx) are compared glyph by glyph using the subset
plans: glyphs common to both subsets become backwards references into the
base, while novel glyph data is compressed on its own.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from fontdiff.differs import GlyfDiffer, HmtxDiffer, LocaDiffer, TableDiffer
from fontdiff.stream import BrotliStream
from fontdiff.table_range import FontFile, TableRange, padded_length

_HMTX = "hmtx"
_VMTX = "vmtx"
_HHEA = "hhea"
_VHEA = "vhea"
_LOCA = "loca"
_GLYF = "glyf"
_HEAD = "head"

# Low byte of indexToLocFormat in the 'head' table.
_LOCA_FORMAT_BYTE = 51


class FontDiffError(RuntimeError):
    """Raised when two fonts cannot be diffed."""


@dataclass
class SubsetPlan:
    """Glyph id mappings between a subset and the font it was cut from."""

    new_to_old: Mapping[int, int] = field(default_factory=dict)
    old_to_new: Mapping[int, int] = field(default_factory=dict)


def _tag(tag: str | bytes) -> str:
    return tag.decode("latin-1") if isinstance(tag, bytes) else tag


def _tag_set(tags: Iterable[str | bytes]) -> frozenset[str]:
    return frozenset(_tag(tag) for tag in tags)


def _as_font(font: FontFile | bytes) -> FontFile:
    return font if isinstance(font, FontFile) else FontFile(font)


def _has_table(base: FontFile, derived: FontFile, tag: str) -> bool:
    return base.has_table(tag) and derived.has_table(tag)


def _is_short_loca(font: FontFile) -> bool:
    head = font.table(_HEAD)
    if len(head) <= _LOCA_FORMAT_BYTE:
        raise FontDiffError("font has no valid 'head' table.")
    return head[_LOCA_FORMAT_BYTE] == 0


@dataclass
class _RangeAndDiffer:
    table_range: TableRange
    differ: TableDiffer


class _DiffDriver:
    """Walks the derived glyphs and writes the custom diff tables.

    Glyph id notation: ``base_gid`` is in the base subset's glyph space,
    ``*_derived_gid`` in the derived subset's and ``*_old_gid`` in the
    original font's.
    """

    def __init__(self, base_plan: SubsetPlan, base_font: FontFile,
                 derived_plan: SubsetPlan, derived_font: FontFile,
                 custom_diff_tables: frozenset[str], out: BrotliStream) -> None:
        self._out = out
        self._base_new_to_old = base_plan.new_to_old
        self._derived_old_to_new = derived_plan.old_to_new
        self._base_glyph_count = base_font.glyph_count()
        self._derived_glyph_count = derived_font.glyph_count()
        self._retain_gids = self._base_glyph_count > len(self._base_new_to_old)
        self.differs: list[_RangeAndDiffer] = []

        for tag in sorted(custom_diff_tables):
            differ = self._make_differ(tag, base_font, derived_font)
            if differ is not None:
                self.differs.append(_RangeAndDiffer(
                    TableRange(base_font, derived_font, tag, out), differ))

    @staticmethod
    def _make_differ(tag: str, base: FontFile, derived: FontFile) -> TableDiffer | None:
        if tag in (_HMTX, _VMTX):
            header = _HHEA if tag == _HMTX else _VHEA
            if _has_table(base, derived, tag) and _has_table(base, derived, header):
                return HmtxDiffer(base.table(header), derived.table(header))
            return None
        if tag in (_LOCA, _GLYF):
            if not (_has_table(base, derived, _GLYF) and _has_table(base, derived, _LOCA)):
                return None
            base_short = _is_short_loca(base)
            derived_short = _is_short_loca(derived)
            if tag == _LOCA:
                return LocaDiffer(base_short, derived_short)
            return GlyfDiffer(derived.table(_LOCA), base_short, derived_short)
        return None

    def make_diff(self) -> None:
        base_gid = 0
        for derived_gid in range(self._derived_glyph_count):
            base_derived_gid, is_base_empty = self._base_to_derived_gid(base_gid)
            if (is_base_empty and derived_gid == base_derived_gid
                    and derived_gid in self._derived_old_to_new):
                # Same gid, but the base glyph is empty while the derived one
                # is not: these are different glyphs, so treat it as new data.
                base_derived_gid = None

            for entry in self.differs:
                differ, table_range = entry.differ, entry.table_range
                was_new_data = differ.is_new_data()
                deltas = differ.process(derived_gid, base_gid, base_derived_gid, is_base_empty)
                if derived_gid > 0 and was_new_data != differ.is_new_data():
                    if was_new_data:
                        table_range.commit_new()
                    else:
                        table_range.commit_existing()
                table_range.extend(deltas.base, deltas.derived)

            if base_derived_gid == derived_gid or (base_gid == derived_gid and is_base_empty):
                base_gid += 1

        # Finalize and commit whatever is outstanding.
        for entry in self.differs:
            differ, table_range = entry.differ, entry.table_range
            deltas = differ.finalize()
            table_range.extend(deltas.base, deltas.derived)
            if differ.is_new_data():
                table_range.commit_new()
            else:
                table_range.commit_existing()
            table_range.stream.four_byte_align_uncompressed()
            self._out.append(table_range.stream)

    def _base_to_derived_gid(self, gid: int) -> tuple[int | None, bool]:
        """Map a base gid to the derived glyph space, flagging empty base glyphs."""
        if self._retain_gids:
            if gid < self._base_glyph_count:
                # With retained gids all three glyph spaces coincide.
                return gid, gid not in self._base_new_to_old
            return None, False

        old_gid = self._base_new_to_old.get(gid)
        if old_gid is None:
            return None, False
        return self._derived_old_to_new.get(old_gid), False


class BrotliFontDiff:
    """Produces brotli patches that turn a base font subset into a derived one."""

    def __init__(self, immutable_tables: Iterable[str | bytes],
                 custom_diff_tables: Iterable[str | bytes]) -> None:
        self.immutable_tables = _tag_set(immutable_tables)
        self.custom_diff_tables = _tag_set(custom_diff_tables)

    @staticmethod
    def sort_for_diff(immutable_tables: Iterable[str | bytes],
                      custom_diff_tables: Iterable[str | bytes],
                      original_tags: Iterable[str | bytes]) -> list[str]:
        """Table order expected by the differ.

        Generic tables keep their order from ``original_tags``; they are
        followed by the immutable tables and then the custom diff tables,
        each sorted by tag.
        """
        immutable = _tag_set(immutable_tables)
        custom = _tag_set(custom_diff_tables)
        order = [tag for tag in map(_tag, original_tags)
                 if tag not in immutable and tag not in custom]
        order.extend(sorted(immutable))
        order.extend(sorted(custom))
        return order

    def diff(self, base_plan: SubsetPlan, base: FontFile | bytes,
             derived_plan: SubsetPlan, derived: FontFile | bytes) -> bytes:
        """Return a patch that decodes to ``derived`` with ``base`` as dictionary."""
        base_font = _as_font(base)
        derived_font = _as_font(derived)
        base_data = base_font.data
        derived_data = derived_font.data

        out = BrotliStream(BrotliStream.window_bits_for(len(base_data), len(derived_data)),
                           len(base_data))
        driver = _DiffDriver(base_plan, base_font, derived_plan, derived_font,
                             self.custom_diff_tables, out)

        derived_start: int | None = None
        derived_end: int | None = None
        base_start: int | None = None
        base_end: int | None = None
        base_region_sizes = [0, 0]

        for index, tags in enumerate((self.immutable_tables, self.custom_diff_tables)):
            for tag in sorted(tags):
                if not derived_font.has_table(tag):
                    continue
                if not base_font.has_table(tag):
                    raise FontDiffError("base and derived must both have the same tables.")

                base_size = padded_length(len(base_font.table(tag)))
                derived_size = padded_length(len(derived_font.table(tag)))
                base_region_sizes[index] += base_size

                base_offset = base_font.table_offset(tag)
                derived_offset = derived_font.table_offset(tag)
                if derived_start is None:
                    derived_start = derived_offset
                if base_start is None:
                    base_start = base_offset
                if derived_end is not None and derived_end != derived_offset:
                    raise FontDiffError("custom diff tables in derived are not sequential.")
                if base_end is not None and base_end != base_offset:
                    raise FontDiffError("custom diff tables in base are not sequential.")
                derived_end = derived_offset + derived_size
                base_end = base_offset + base_size

        derived_start = derived_start or 0
        base_start = base_start or 0
        derived_end = derived_end or 0

        out.insert_compressed_with_partial_dict(derived_data[:derived_start],
                                                base_data[:base_start])
        if not out.insert_from_dictionary(base_start, base_region_sizes[0]):
            raise FontDiffError("dict insert of immutable tables failed.")

        driver.make_diff()

        if len(derived_data) > derived_end:
            out.insert_compressed(derived_data[derived_end:])

        out.end_stream()
        return out.compressed_data()