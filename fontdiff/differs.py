"""Per-table strategies that decide which glyph data can be reused from a base font."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import NamedTuple

_HHEA_NUM_METRICS_OFFSET = 34
_LONG_METRIC_SIZE = 4
_SHORT_METRIC_SIZE = 2


class Deltas(NamedTuple):
    """Number of bytes a glyph occupies in the base and in the derived table."""

    base: int
    derived: int


class _Mode(enum.Enum):
    INIT = enum.auto()
    NEW_DATA = enum.auto()
    EXISTING_DATA = enum.auto()


class TableDiffer(ABC):
    """Walks a table glyph by glyph, classifying data as new or existing."""

    @abstractmethod
    def process(self, derived_gid: int, base_gid: int, base_derived_gid: int | None,
                is_base_empty: bool) -> Deltas:
        """Classify one derived glyph and return the bytes it spans in each table."""

    @abstractmethod
    def finalize(self) -> Deltas:
        """Return the bytes that trail the last glyph in each table."""

    @abstractmethod
    def is_new_data(self) -> bool:
        """True when the most recent glyph is not present in the base."""


class GlyfDiffer(TableDiffer):
    """Differ for the 'glyf' table, driven by the derived font's 'loca' table."""

    def __init__(self, loca: bytes, is_base_short_loca: bool, is_derived_short_loca: bool) -> None:
        self._loca = bytes(loca)
        self._is_base_short_loca = bool(is_base_short_loca)
        self._is_derived_short_loca = bool(is_derived_short_loca)
        self._mode = _Mode.INIT

    def process(self, derived_gid: int, base_gid: int, base_derived_gid: int | None,
                is_base_empty: bool) -> Deltas:
        derived_delta = self._glyph_length(derived_gid)
        if self._is_base_short_loca != self._is_derived_short_loca:
            # Base glyphs may be aligned differently, so nothing can be reused.
            self._mode = _Mode.NEW_DATA
            return Deltas(0, derived_delta)

        if base_derived_gid == derived_gid:
            self._mode = _Mode.EXISTING_DATA
            return Deltas(derived_delta, derived_delta)

        self._mode = _Mode.NEW_DATA
        return Deltas(0, derived_delta)

    def finalize(self) -> Deltas:
        return Deltas(0, 0)

    def is_new_data(self) -> bool:
        return self._mode is _Mode.NEW_DATA

    def _glyph_length(self, gid: int) -> int:
        """Length in bytes of a glyph in the derived 'glyf' table."""
        if self._is_derived_short_loca:
            start = gid * 2
            first = int.from_bytes(self._loca[start:start + 2], "big")
            second = int.from_bytes(self._loca[start + 2:start + 4], "big")
            return second * 2 - first * 2

        start = gid * 4
        first = int.from_bytes(self._loca[start:start + 4], "big")
        second = int.from_bytes(self._loca[start + 4:start + 8], "big")
        return second - first


class HmtxDiffer(TableDiffer):
    """Differ for 'hmtx' and 'vmtx', using the metric counts from 'hhea'/'vhea'."""

    def __init__(self, base_hhea: bytes, derived_hhea: bytes) -> None:
        self._base_number_of_metrics = self._number_of_metrics(base_hhea)
        self._derived_number_of_metrics = self._number_of_metrics(derived_hhea)
        self._mode = _Mode.INIT

    def process(self, derived_gid: int, base_gid: int, base_derived_gid: int | None,
                is_base_empty: bool) -> Deltas:
        self._mode = _Mode.NEW_DATA
        derived_long = derived_gid < self._derived_number_of_metrics
        base_long = base_gid < self._base_number_of_metrics
        derived_delta = _LONG_METRIC_SIZE if derived_long else _SHORT_METRIC_SIZE
        base_size = _LONG_METRIC_SIZE if base_long else _SHORT_METRIC_SIZE
        base_delta = 0

        # Existing data is only usable when both glyphs sit on the same side
        # of the number of long metrics.
        if derived_gid == base_derived_gid and derived_long == base_long:
            self._mode = _Mode.EXISTING_DATA
            base_delta = base_size

        if self._mode is _Mode.NEW_DATA and is_base_empty:
            base_delta = base_size

        return Deltas(base_delta, derived_delta)

    def finalize(self) -> Deltas:
        return Deltas(0, 0)

    def is_new_data(self) -> bool:
        return self._mode is _Mode.NEW_DATA

    @staticmethod
    def _number_of_metrics(hhea: bytes) -> int:
        field = bytes(hhea)[_HHEA_NUM_METRICS_OFFSET:_HHEA_NUM_METRICS_OFFSET + 2]
        if len(field) < 2:
            return 0
        return int.from_bytes(field, "big")


class LocaDiffer(TableDiffer):
    """Differ for 'loca'; once any entry differs, all following entries are new."""

    def __init__(self, is_base_short_loca: bool, is_derived_short_loca: bool) -> None:
        self._mismatched_loca_format = bool(is_base_short_loca) != bool(is_derived_short_loca)
        self._loca_width = 2 if is_derived_short_loca else 4
        self._mode = _Mode.INIT

    def process(self, derived_gid: int, base_gid: int, base_derived_gid: int | None,
                is_base_empty: bool) -> Deltas:
        if self._mismatched_loca_format:
            self._mode = _Mode.NEW_DATA

        if self._mode is not _Mode.NEW_DATA:
            if base_derived_gid == derived_gid:
                self._mode = _Mode.EXISTING_DATA
                return Deltas(self._loca_width, self._loca_width)
            self._mode = _Mode.NEW_DATA

        # Entries are offsets built on earlier entries, so nothing after new
        # data can be reused.
        return Deltas(0, self._loca_width)

    def finalize(self) -> Deltas:
        # The table carries one extra trailing entry; the mode is unchanged.
        return Deltas(self._loca_width, self._loca_width)

    def is_new_data(self) -> bool:
        return self._mode is _Mode.NEW_DATA