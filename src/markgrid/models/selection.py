from __future__ import annotations

from dataclasses import dataclass

from .grid_window import GridWindow, clamp_window


@dataclass(frozen=True)
class CellRange:
    """A rectangular selection anchored at (row, col).

    Unlike GridWindow this keeps the anchor as selected, even when part of
    the range hangs off the matrix; clipping happens at edit-building time.
    """

    row: int
    col: int
    height: int = 1
    width: int = 1

    def as_window(self) -> GridWindow:
        return GridWindow(self.row, self.height, self.col, self.width)

    def clipped(self, row_count: int, col_count: int) -> GridWindow:
        """The part of the range that lies inside the matrix."""
        return clamp_window(self.as_window(), row_count, col_count)
