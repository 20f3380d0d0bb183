"""Raw row abstraction for tabular sources.

A RawRow wraps one source row as read by pandas: an ordered mapping of column
name to cell value. Lookups go through ``cell()``, which is total: it returns
the ``ABSENT`` sentinel for a missing column, ``None``, NaN/NaT, or text that is
empty after trimming. Normalizers accept ABSENT and map it to ``None``.
"""

from collections.abc import Mapping
from typing import Any, Iterator, Union

import pandas as pd


class _Absent:
    """Marker for a cell that carries no value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()

CellValue = Union[str, int, float, bool, Any]


def is_absent(value: Any) -> bool:
    """Return True when a raw cell value carries no information."""
    if value is None or value is ABSENT:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if not pd.api.types.is_scalar(value):
        return False
    return bool(pd.isna(value))


class RawRow(Mapping):
    """Read-only view over one source row.

    Parameters:
        cells: Column name -> raw cell value, in source column order
        row_number: 1-based data row number (header excluded)
    """

    def __init__(self, cells: Mapping[str, Any], row_number: int):
        self._cells = dict(cells)
        self.row_number = row_number

    def cell(self, column: str) -> CellValue:
        """Return the cell value for ``column`` or ``ABSENT``. Never raises."""
        value = self._cells.get(column, ABSENT)
        if is_absent(value):
            return ABSENT
        return value

    def has(self, column: str) -> bool:
        return self.cell(column) is not ABSENT

    def __getitem__(self, column: str) -> CellValue:
        return self.cell(column)

    def __contains__(self, column: object) -> bool:
        return column in self._cells

    def __iter__(self) -> Iterator[str]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __repr__(self) -> str:
        return f"RawRow(row_number={self.row_number}, columns={len(self._cells)})"
