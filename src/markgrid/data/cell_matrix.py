"""Sparse row-major store of loaded cell values.

Cells are float | None. None means "no mark" (or not loaded yet); 0.0 is a
real scored zero. Every mutation replaces the outer row list and the rows it
touches, so a reference taken from `rows` never changes underneath a reader.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from typing import TYPE_CHECKING

from ..debug_trace import perf_timer

if TYPE_CHECKING:
    from ..models.grid_window import GridWindow

Cell = float | None


class CellMatrix:
    """Fixed-size (student x assessment) value matrix for one mark-set context."""

    def __init__(self, row_count: int = 0, col_count: int = 0):
        self._row_count = 0
        self._col_count = 0
        self._rows: list[list[Cell]] = []
        self.reset(row_count, col_count)

    @property
    def row_count(self) -> int:
        return self._row_count

    @property
    def col_count(self) -> int:
        return self._col_count

    @property
    def rows(self) -> list[list[Cell]]:
        """Current snapshot. Treat as read-only; it is replaced, not mutated."""
        return self._rows

    def reset(self, row_count: int, col_count: int) -> None:
        """Re-allocate as all-None at new dimensions."""
        self._row_count = max(0, row_count)
        self._col_count = max(0, col_count)
        self._rows = [[None] * self._col_count for _ in range(self._row_count)]

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self._row_count and 0 <= col < self._col_count

    def get(self, row: int, col: int) -> Cell:
        """Best-known value, or None when out of bounds or not loaded."""
        if not self.in_bounds(row, col):
            return None
        return self._rows[row][col]

    def merge_rect(
        self,
        window: GridWindow,
        cells: Sequence[Sequence[Cell]],
        skip: Collection[tuple[int, int]] = (),
    ) -> set[tuple[int, int]]:
        """Copy a fetched rectangle into the matrix at the window's offset.

        At most window.row_count x window.col_count values are taken; anything
        the service did not return inside that rectangle is stored as None.
        Cells outside the window are left untouched.

        Args:
            window: Where the rectangle goes
            cells: Row-major values, relative to the window origin
            skip: Cells to leave as they are (e.g. writes still in flight)

        Returns:
            Set of (row, col) whose value changed
        """
        changed: set[tuple[int, int]] = set()
        row_end = min(window.row_end, self._row_count)
        col_end = min(window.col_end, self._col_count)
        if window.row_start >= row_end or window.col_start >= col_end:
            return changed

        with perf_timer("merge_rect", cell_count=window.row_count * window.col_count):
            next_rows = list(self._rows)
            for r in range(window.row_start, row_end):
                src_row = _row_at(cells, r - window.row_start)
                new_row = list(next_rows[r])
                for c in range(window.col_start, col_end):
                    if skip and (r, c) in skip:
                        continue
                    value = _value_at(src_row, c - window.col_start)
                    if new_row[c] != value:
                        new_row[c] = value
                        changed.add((r, c))
                next_rows[r] = new_row
            self._rows = next_rows

        return changed

    def apply_values(self, values: Iterable[tuple[int, int, Cell]]) -> set[tuple[int, int]]:
        """Set individual cells; out-of-bounds positions are skipped.

        Returns:
            Set of (row, col) whose value changed
        """
        changed: set[tuple[int, int]] = set()
        next_rows: list[list[Cell]] | None = None
        copied: set[int] = set()

        for row, col, value in values:
            if not self.in_bounds(row, col):
                continue
            if next_rows is None:
                next_rows = list(self._rows)
            if row not in copied:
                next_rows[row] = list(next_rows[row])
                copied.add(row)
            current = next_rows[row][col]
            if current != value:
                next_rows[row][col] = value
                changed.add((row, col))

        if next_rows is not None:
            self._rows = next_rows
        return changed

    def set(self, row: int, col: int, value: Cell) -> bool:
        """Set one cell. Returns True if its value changed."""
        return bool(self.apply_values([(row, col, value)]))

    def __repr__(self) -> str:
        return f"CellMatrix({self._row_count}x{self._col_count})"


def _row_at(cells: Sequence[Sequence[Cell]], index: int) -> Sequence[Cell]:
    if 0 <= index < len(cells) and cells[index] is not None:
        return cells[index]
    return ()


def _value_at(row: Sequence[Cell], index: int) -> Cell:
    if 0 <= index < len(row):
        value = row[index]
        return None if value is None else float(value)
    return None
