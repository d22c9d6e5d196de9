"""Marks grid store: the single owner of grid state for one grid widget.

Owns the current context, request generation, tile cache, cell matrix and
the fetch/edit coordinators, and exposes them to the widget and to the
class/mark-set selector.

Key behaviors:
- advance() switches context synchronously; in-flight work from the old
  context finishes but is ignored
- The widget only reads; every change is announced through observers
- Nothing here raises for a failed tile fetch; errors go to error observers
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from ..debug_trace import logger
from ..errors import BackendError, CellEditError, GridError, NoContextError
from ..models.grid_context import GridContext
from ..services.bulk_edit_service import BulkEditService
from ..settings import GridSettings
from .cell_matrix import CellMatrix
from .edit_coordinator import BulkEditSummary, EditCoordinator
from .fetch_coordinator import FetchCoordinator
from .request_generation import RequestGeneration
from .tile_cache import TileCache

if TYPE_CHECKING:
    from ..models.constants import ScoreState
    from ..models.grid_window import GridWindow
    from ..models.pending_edit import PendingEdit
    from ..models.selection import CellRange
    from .backend import GridBackend, GridDims

    Observer = Callable[[MarksGridStore, set[tuple[int, int]] | None], None]


@dataclass(frozen=True)
class GridDiagnostics:
    """Snapshot of fetch/cache counters for test harnesses and instrumentation."""

    grid_get_requests: int
    loaded_tiles: int
    inflight_tiles: int
    tile_cache_hits: int
    tile_cache_misses: int
    tile_requests: int
    inflight_max: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class MarksGridStore:
    """Central state of the marks grid.

    Usage:
        store = MarksGridStore(backend)
        store.add_observer(lambda store, cells: sheet.redraw(cells))
        await store.open("class-1", "ms-1")
        store.ensure_window_loaded(GridWindow(0, 30, 0, 10))

        await store.commit_cell_text(3, 2, "8.5")
        summary = await store.fill_down(CellRange(0, 2, height=5))
    """

    def __init__(
        self,
        backend: GridBackend,
        settings: GridSettings | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        """Initialize the store.

        Args:
            backend: Data service implementation
            settings: Prefetch/tile tuning (defaults used if None)
            loop: Event loop for fetch tasks (default: the running loop)
        """
        self._backend = backend
        self.settings = settings or GridSettings()

        self._context: GridContext | None = None
        self._open_requests = 0
        self.generation = RequestGeneration()
        self.cache = TileCache()
        self.matrix = CellMatrix()

        self.fetcher = FetchCoordinator(
            backend,
            self.cache,
            self.matrix,
            self.generation,
            self.settings,
            loop=loop,
            on_merged=self._notify_observers,
            on_error=self._on_fetch_error,
            protected_cells=self._pending_cells,
        )
        self.editor = EditCoordinator(
            backend,
            self.matrix,
            self.generation,
            self.fetcher,
            on_applied=self._notify_observers,
            on_aggregates_stale=self._notify_aggregates,
        )

        # Observer callbacks
        self._observers: list[Observer] = []
        self._error_observers: list[Callable[[str], None]] = []
        self._aggregate_observers: list[Callable[[MarksGridStore], None]] = []

    @property
    def context(self) -> GridContext | None:
        return self._context

    def _require_context(self) -> GridContext:
        if self._context is None:
            raise NoContextError()
        return self._context

    def _pending_cells(self) -> set[tuple[int, int]]:
        return self.editor.pending_cells()

    # --- Context switching ---

    def advance(self, context: GridContext) -> int:
        """Switch to a new class/mark set.

        Bumps the request generation, clears the tile cache and re-allocates
        the matrix at the new dimensions. Must run before the first
        ensure_window_loaded() for the new context.

        Returns:
            The new generation value
        """
        generation = self.generation.advance()
        self.cache.reset()
        self.matrix.reset(context.row_count, context.col_count)
        self.editor.reset()
        self._context = context
        logger.info(
            f"Grid context -> {context.class_id}/{context.mark_set_id} "
            f"({context.row_count}x{context.col_count}, gen {generation})"
        )
        self._notify_observers(None)
        self._notify_aggregates()
        return generation

    async def open(self, class_id: str, mark_set_id: str) -> GridContext | None:
        """Look up a mark set's dimensions and switch to it.

        When several opens overlap, only the most recently started one
        switches context.

        Returns:
            The new context, or None if a later open() superseded this one

        Raises:
            BackendError: If the mark set could not be opened
        """
        self._open_requests += 1
        request = self._open_requests
        try:
            dims = await self._backend.open_mark_set(class_id, mark_set_id)
        except BackendError as e:
            if request == self._open_requests:
                self._notify_error(str(e))
            raise
        if request != self._open_requests:
            logger.debug(f"Open of {class_id}/{mark_set_id} superseded")
            return None
        context = GridContext(class_id, mark_set_id, dims.row_count, dims.col_count)
        self.advance(context)
        return context

    # --- Read path ---

    def ensure_window_loaded(
        self, window: GridWindow, dims: GridDims | None = None
    ) -> list[asyncio.Task]:
        """Fetch whatever tiles around a window are not loaded or loading.

        No-op before a context has been selected.
        """
        if self._context is None:
            return []
        return self.fetcher.ensure_window_loaded(self._context, window, dims)

    def get_cell(self, row: int, col: int) -> float | None:
        """Best-known value of a cell (None if no mark or not loaded yet)."""
        return self.matrix.get(row, col)

    def diagnostics(self) -> GridDiagnostics:
        stats = self.cache.stats
        return GridDiagnostics(
            grid_get_requests=self.fetcher.grid_get_requests,
            loaded_tiles=len(self.cache.loaded_keys),
            inflight_tiles=len(self.cache.inflight_keys),
            tile_cache_hits=stats.hits,
            tile_cache_misses=stats.misses,
            tile_requests=stats.requests,
            inflight_max=stats.max_concurrent_inflight,
        )

    async def drain(self) -> None:
        """Wait for every outstanding tile fetch."""
        await self.fetcher.drain()

    # --- Write path ---

    async def commit_cell_text(self, row: int, col: int, text: str | None) -> float | None:
        """Commit inline editor text for one cell.

        Raises:
            CellEditError: With a user-displayable message
        """
        context = self._require_context()
        try:
            return await self.editor.commit_cell_text(context, row, col, text)
        except CellEditError as e:
            self._notify_error(str(e))
            raise

    async def apply_bulk(self, edits: Sequence[PendingEdit]) -> BulkEditSummary:
        """Apply a batch of edits; rejections are summarized, not raised.

        Raises:
            BackendError: If the whole batch failed
        """
        context = self._require_context()
        try:
            summary = await self.editor.apply_bulk(context, edits)
        except BackendError as e:
            self._notify_error(str(e))
            raise
        if summary.has_rejections:
            self._notify_error(summary.message)
        return summary

    async def set_selection_state(
        self,
        selection: CellRange | None,
        state: ScoreState,
        scored_text: str | None = None,
        current: tuple[int, int] | None = None,
    ) -> BulkEditSummary:
        """Apply "Set No Mark", "Set Zero" or "Set Scored" to the selection."""
        context = self._require_context()
        cells = BulkEditService.selected_cells(
            selection, current, context.row_count, context.col_count
        )
        if not cells:
            return BulkEditSummary()
        try:
            edits = BulkEditService.state_edits(cells, state, scored_text)
        except GridError as e:
            self._notify_error(str(e))
            raise
        return await self.apply_bulk(edits)

    async def fill_down(self, selection: CellRange) -> BulkEditSummary:
        self._require_context()
        return await self.apply_bulk(BulkEditService.fill_down(selection, self.matrix))

    async def fill_right(self, selection: CellRange) -> BulkEditSummary:
        self._require_context()
        return await self.apply_bulk(BulkEditService.fill_right(selection, self.matrix))

    async def paste(
        self, target_row: int, target_col: int, values: Sequence[Sequence[str]] | str
    ) -> BulkEditSummary:
        """Paste a block (rows of cell strings, or raw tab/newline text)."""
        context = self._require_context()
        if isinstance(values, str):
            values = BulkEditService.split_clipboard_text(values)
        edits = BulkEditService.paste_edits(
            target_row, target_col, values, context.row_count, context.col_count
        )
        return await self.apply_bulk(edits)

    # --- Observers ---

    def add_observer(self, callback: Observer) -> None:
        """Register callback(store, changed_cells); None means "everything"."""
        if callback not in self._observers:
            self._observers.append(callback)

    def remove_observer(self, callback: Observer) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def add_error_observer(self, callback: Callable[[str], None]) -> None:
        """Register callback(message) for user-visible errors."""
        if callback not in self._error_observers:
            self._error_observers.append(callback)

    def remove_error_observer(self, callback: Callable[[str], None]) -> None:
        if callback in self._error_observers:
            self._error_observers.remove(callback)

    def add_aggregate_observer(self, callback: Callable[[MarksGridStore], None]) -> None:
        """Register callback(store) to recompute averages/summaries after edits."""
        if callback not in self._aggregate_observers:
            self._aggregate_observers.append(callback)

    def _notify_observers(self, changed: set[tuple[int, int]] | None = None) -> None:
        for callback in list(self._observers):
            try:
                callback(self, changed)
            except Exception:
                logger.exception("Grid observer failed")

    def _notify_error(self, message: str) -> None:
        for callback in list(self._error_observers):
            try:
                callback(message)
            except Exception:
                logger.exception("Grid error observer failed")

    def _notify_aggregates(self) -> None:
        for callback in list(self._aggregate_observers):
            try:
                callback(self)
            except Exception:
                logger.exception("Grid aggregate observer failed")

    def _on_fetch_error(self, error: BackendError) -> None:
        self._notify_error(str(error))
