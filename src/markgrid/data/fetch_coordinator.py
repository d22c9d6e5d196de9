"""Fetch coordinator for the marks grid.

Turns a visible (or about-to-be-edited) region into the minimal set of tile
fetches, and merges their results into the cell matrix as they arrive.

Fetches run as asyncio tasks on the caller's event loop. ensure_window_loaded
never waits for them; results from a superseded context are dropped by the
request generation check instead of cancelling the request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from enum import Enum
from typing import TYPE_CHECKING

from ..debug_trace import logger
from ..errors import BackendError
from ..models.grid_window import (
    GridTile,
    GridWindow,
    expand_window,
    tile_key,
    tiles_for_window,
)

if TYPE_CHECKING:
    from ..models.grid_context import GridContext
    from ..settings import GridSettings
    from .backend import GridBackend, GridDims, GridRect
    from .cell_matrix import CellMatrix
    from .request_generation import RequestGeneration
    from .tile_cache import TileCache


class FetchOutcome(Enum):
    """How a single tile fetch ended."""

    LOADED = "loaded"
    FAILED = "failed"
    STALE = "stale"  # finished after a context change; result dropped


class FetchCoordinator:
    """Issues de-duplicated tile fetches and merges results.

    Args:
        backend: Data service
        cache: Tile cache shared with the store
        matrix: Cell matrix shared with the store
        generation: Request generation guard shared with the store
        settings: Prefetch margins and tile size
        loop: Event loop to schedule fetch tasks on (default: the running loop)
        on_merged: Called with the set of changed cells after each merge
        on_error: Called with the BackendError of each failed tile fetch
        protected_cells: Returns cells with writes in flight; merges skip them
    """

    def __init__(
        self,
        backend: GridBackend,
        cache: TileCache,
        matrix: CellMatrix,
        generation: RequestGeneration,
        settings: GridSettings,
        loop: asyncio.AbstractEventLoop | None = None,
        on_merged: Callable[[set[tuple[int, int]]], None] | None = None,
        on_error: Callable[[BackendError], None] | None = None,
        protected_cells: Callable[[], set[tuple[int, int]]] | None = None,
    ):
        self._backend = backend
        self._cache = cache
        self._matrix = matrix
        self._generation = generation
        self.settings = settings
        self._loop = loop
        self._on_merged = on_merged
        self._on_error = on_error
        self._protected_cells = protected_cells
        self._tasks: set[asyncio.Task] = set()

        # Every grid.get issued (tiles and single-cell resyncs)
        self.grid_get_requests = 0

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    # --- Public API ---

    def ensure_window_loaded(
        self,
        context: GridContext,
        window: GridWindow,
        dims: GridDims | None = None,
    ) -> list[asyncio.Task]:
        """Make sure every tile around a window is loaded or being loaded.

        Expands the window by the prefetch margins, partitions it into tiles and
        issues one fetch per tile that is neither loaded nor in flight. Returns
        immediately.

        Args:
            context: Mark set the window belongs to
            window: Visible region, or a 1x1 window for a cell about to be edited
            dims: Matrix dimensions (defaults to the context's counts)

        Returns:
            The fetch tasks issued by this call (empty if nothing was needed)
        """
        total_rows = dims.row_count if dims is not None else context.row_count
        total_cols = dims.col_count if dims is not None else context.col_count
        if total_rows <= 0 or total_cols <= 0:
            return []
        # Resolve before any key is marked in flight; raises outside a loop
        loop = self._event_loop()

        settings = self.settings
        expanded = expand_window(
            window, total_rows, total_cols, settings.prefetch_rows, settings.prefetch_cols
        )
        tiles = tiles_for_window(
            expanded, total_rows, total_cols, settings.tile_rows, settings.tile_cols
        )

        issued: list[asyncio.Task] = []
        for tile in tiles:
            if self._cache.is_satisfied(tile):
                continue
            self._cache.mark_inflight(tile)
            generation = self._generation.capture()
            logger.debug(
                f"Fetching tile {tile.key} rows {tile.row_start}+{tile.row_count} "
                f"cols {tile.col_start}+{tile.col_count} (gen {generation})"
            )
            task = loop.create_task(self._fetch_tile(context, tile, generation))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            issued.append(task)

        return issued

    def invalidate_cells(self, cells: Iterable[tuple[int, int]]) -> None:
        """Drop the loaded tiles holding these cells so they are fetched again."""
        settings = self.settings
        keys = {(row // settings.tile_rows, col // settings.tile_cols) for row, col in cells}
        for row_tile, col_tile in keys:
            self._cache.invalidate(tile_key(row_tile, col_tile))

    async def read_rect(self, context: GridContext, window: GridWindow) -> GridRect:
        """Read a rectangle straight from the service (no cache bookkeeping)."""
        self.grid_get_requests += 1
        return await self._backend.get(
            context.class_id,
            context.mark_set_id,
            window.row_start,
            window.row_count,
            window.col_start,
            window.col_count,
        )

    async def read_cell(self, context: GridContext, row: int, col: int) -> float | None:
        """Read one cell straight from the service."""
        rect = await self.read_rect(context, GridWindow(row, 1, col, 1))
        if rect.cells and rect.cells[0]:
            value = rect.cells[0][0]
            return None if value is None else float(value)
        return None

    async def drain(self) -> None:
        """Wait until every issued fetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Tile fetch ---

    async def _fetch_tile(self, context: GridContext, tile: GridTile, generation: int) -> FetchOutcome:
        try:
            rect = await self.read_rect(context, tile)
        except asyncio.CancelledError:
            if self._generation.is_current(generation):
                self._cache.mark_failed(tile)
            raise
        except Exception as e:
            if not self._generation.is_current(generation):
                logger.debug(f"Dropping failed tile {tile.key} from generation {generation}")
                return FetchOutcome.STALE
            error = e if isinstance(e, BackendError) else BackendError("transport", str(e))
            self._cache.mark_failed(tile)
            logger.warning(f"Tile {tile.key} fetch failed: {error}")
            if self._on_error:
                self._on_error(error)
            return FetchOutcome.FAILED

        if not self._generation.is_current(generation):
            logger.debug(f"Dropping stale tile {tile.key} from generation {generation}")
            return FetchOutcome.STALE

        protected = self._protected_cells() if self._protected_cells else set()
        changed = self._matrix.merge_rect(tile, rect.cells, skip=protected)
        self._cache.mark_loaded(tile)
        if changed and self._on_merged:
            self._on_merged(changed)
        return FetchOutcome.LOADED
