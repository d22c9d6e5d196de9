from __future__ import annotations

from dataclasses import dataclass, replace

from .models.constants import (
    DEFAULT_PREFETCH_COLS,
    DEFAULT_PREFETCH_ROWS,
    DEFAULT_TILE_COLS,
    DEFAULT_TILE_ROWS,
    GRID_GET_MAX_COLS,
    GRID_GET_MAX_ROWS,
)


@dataclass(frozen=True)
class GridSettings:
    """Tuning parameters for the marks grid coordinator."""

    prefetch_rows: int = DEFAULT_PREFETCH_ROWS
    prefetch_cols: int = DEFAULT_PREFETCH_COLS
    tile_rows: int = DEFAULT_TILE_ROWS
    tile_cols: int = DEFAULT_TILE_COLS
    # Tk scheduling cadence for the sheet binding
    pump_interval_ms: int = 15
    visible_debounce_ms: int = 50

    def __post_init__(self):
        if self.prefetch_rows < 0 or self.prefetch_cols < 0:
            raise ValueError("Prefetch margins must be >= 0")
        if self.tile_rows < 1 or self.tile_cols < 1:
            raise ValueError("Tile size must be at least 1x1")
        if self.tile_rows > GRID_GET_MAX_ROWS or self.tile_cols > GRID_GET_MAX_COLS:
            raise ValueError(
                f"Tile size {self.tile_rows}x{self.tile_cols} exceeds the "
                f"service read limit ({GRID_GET_MAX_ROWS}x{GRID_GET_MAX_COLS})"
            )
        if self.pump_interval_ms < 1 or self.visible_debounce_ms < 0:
            raise ValueError("Timer intervals must be positive")

    def with_overrides(self, **changes) -> GridSettings:
        """Return a validated copy with the given fields replaced."""
        return replace(self, **changes)
