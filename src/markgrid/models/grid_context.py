from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GridContext:
    """Identity and dimensions of the mark set currently shown in the grid.

    Passed explicitly into every coordinator call so in-flight work always
    knows which class/mark set it was issued for.
    """

    class_id: str
    mark_set_id: str
    row_count: int
    col_count: int

    def contains(self, row: int, col: int) -> bool:
        return 0 <= row < self.row_count and 0 <= col < self.col_count
