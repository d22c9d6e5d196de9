"""Window and tile geometry for the marks grid.

Pure functions: expand a visible window by prefetch margins and partition a
window into fixed-size tiles aligned to multiples of the tile size.
"""

from __future__ import annotations

from dataclasses import dataclass

TileKey = tuple[int, int]


@dataclass(frozen=True)
class GridWindow:
    """Rectangular region of the logical (student x assessment) matrix."""

    row_start: int
    row_count: int
    col_start: int
    col_count: int

    @property
    def row_end(self) -> int:
        """Exclusive end row."""
        return self.row_start + self.row_count

    @property
    def col_end(self) -> int:
        """Exclusive end column."""
        return self.col_start + self.col_count

    @property
    def is_empty(self) -> bool:
        return self.row_count <= 0 or self.col_count <= 0

    def contains(self, row: int, col: int) -> bool:
        return self.row_start <= row < self.row_end and self.col_start <= col < self.col_end

    def cells(self) -> list[tuple[int, int]]:
        """All (row, col) pairs in row-major order."""
        return [
            (r, c)
            for r in range(self.row_start, self.row_end)
            for c in range(self.col_start, self.col_end)
        ]


@dataclass(frozen=True)
class GridTile(GridWindow):
    """Grid-aligned partition unit; the unit of fetch and cache membership.

    Attributes:
        row_tile: Tile index along rows (row_start // tile_rows)
        col_tile: Tile index along columns (col_start // tile_cols)
    """

    row_tile: int = 0
    col_tile: int = 0

    @property
    def key(self) -> TileKey:
        return tile_key(self.row_tile, self.col_tile)


def tile_key(row_tile: int, col_tile: int) -> TileKey:
    """Stable cache key for the tile at the given tile indices."""
    return (row_tile, col_tile)


def clamp_window(window: GridWindow, total_rows: int, total_cols: int) -> GridWindow:
    """Intersect a window with [0, total_rows) x [0, total_cols).

    The result never has negative counts; a window entirely outside the
    matrix becomes an empty window.
    """
    max_rows = max(0, total_rows)
    max_cols = max(0, total_cols)

    row_start = min(max(0, window.row_start), max_rows)
    col_start = min(max(0, window.col_start), max_cols)
    row_end = min(max(0, window.row_end), max_rows)
    col_end = min(max(0, window.col_end), max_cols)

    return GridWindow(
        row_start=row_start,
        row_count=max(0, row_end - row_start),
        col_start=col_start,
        col_count=max(0, col_end - col_start),
    )


def expand_window(
    window: GridWindow,
    total_rows: int,
    total_cols: int,
    prefetch_rows: int,
    prefetch_cols: int,
) -> GridWindow:
    """Grow a window by prefetch margins on every side, then clamp to the matrix.

    Examples:
        100x10 matrix, window rows [45,55) cols [2,5), margins 20x6
        -> rows [25,75) cols [0,10)
    """
    expanded = GridWindow(
        row_start=window.row_start - prefetch_rows,
        row_count=window.row_count + prefetch_rows * 2,
        col_start=window.col_start - prefetch_cols,
        col_count=window.col_count + prefetch_cols * 2,
    )
    return clamp_window(expanded, total_rows, total_cols)


def tiles_for_window(
    window: GridWindow,
    total_rows: int,
    total_cols: int,
    tile_rows: int,
    tile_cols: int,
) -> list[GridTile]:
    """Grid-aligned tiles intersecting a window, clipped to the matrix bounds.

    Tile boundaries are multiples of the tile size from the origin, so the
    same (row_tile, col_tile) always produces the same tile no matter which
    window asked for it. Tiles are disjoint and their union covers the
    clamped window. Only tiles on the matrix edge are smaller than nominal.

    Returns:
        Tiles in row-major tile order; empty for an empty window or matrix.
    """
    if tile_rows < 1 or tile_cols < 1:
        raise ValueError("Tile size must be at least 1x1")

    clamped = clamp_window(window, total_rows, total_cols)
    if clamped.is_empty:
        return []

    first_row_tile = clamped.row_start // tile_rows
    last_row_tile = (clamped.row_end - 1) // tile_rows
    first_col_tile = clamped.col_start // tile_cols
    last_col_tile = (clamped.col_end - 1) // tile_cols

    tiles: list[GridTile] = []
    for row_tile in range(first_row_tile, last_row_tile + 1):
        for col_tile in range(first_col_tile, last_col_tile + 1):
            bounds = clamp_window(
                GridWindow(row_tile * tile_rows, tile_rows, col_tile * tile_cols, tile_cols),
                total_rows,
                total_cols,
            )
            tiles.append(
                GridTile(
                    row_start=bounds.row_start,
                    row_count=bounds.row_count,
                    col_start=bounds.col_start,
                    col_count=bounds.col_count,
                    row_tile=row_tile,
                    col_tile=col_tile,
                )
            )
    return tiles
