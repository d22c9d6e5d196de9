"""Edit coordinator for the marks grid.

Single-cell path:
    Parse -> write -> on success update the matrix. On rejection re-read the
    one cell from the service; if that also fails the matrix is left as is.
    Each cell moves CLEAN -> DIRTY -> CLEAN | DESYNC_RESOLVED | DESYNC_UNRESOLVED.

Bulk path:
    Apply every edit to the matrix immediately, send one bulk write, then
    roll back only the cells the service rejected and re-read them. A cell
    that changed again while the batch was in flight is not rolled back.

Results that come back after a context change never touch the matrix.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..debug_trace import logger, perf_timer
from ..errors import BackendError, CellEditError
from ..models.constants import (
    GRID_GET_MAX_COLS,
    GRID_GET_MAX_ROWS,
    SINGLE_CELL_ZERO_POLICY,
    CellSyncState,
    EditKind,
)
from ..models.grid_window import GridWindow
from ..models.validation import NEGATIVE_MARK_ERROR, apply_zero_policy, parse_cell_text

if TYPE_CHECKING:
    from ..models.grid_context import GridContext
    from ..models.pending_edit import PendingEdit
    from .backend import BulkRejection, GridBackend
    from .cell_matrix import Cell, CellMatrix
    from .fetch_coordinator import FetchCoordinator
    from .request_generation import RequestGeneration


@dataclass
class BulkEditSummary:
    """What happened to one bulk write.

    Attributes:
        requested: Edits sent
        applied: Edits left applied in the matrix
        rejected: Edits the service rejected
        first_error: Message of the first rejection ("" if none)
        errors: All rejections as reported
    """

    requested: int = 0
    applied: int = 0
    rejected: int = 0
    first_error: str = ""
    errors: list[BulkRejection] = field(default_factory=list)

    @property
    def has_rejections(self) -> bool:
        return self.rejected > 0

    @property
    def message(self) -> str:
        """User-facing summary, or "" when every edit was accepted."""
        if not self.rejected:
            return ""
        return f"rejected {self.rejected} cells; first error: {self.first_error}"


class EditCoordinator:
    """Applies single-cell and bulk edits and reconciles with the service.

    Args:
        backend: Data service
        matrix: Cell matrix shared with the store
        generation: Request generation guard shared with the store
        fetcher: Used for single-cell re-reads
        on_applied: Called with the set of changed cells after any matrix change
        on_aggregates_stale: Called when dependent aggregates must be recomputed
    """

    def __init__(
        self,
        backend: GridBackend,
        matrix: CellMatrix,
        generation: RequestGeneration,
        fetcher: FetchCoordinator,
        on_applied: Callable[[set[tuple[int, int]]], None] | None = None,
        on_aggregates_stale: Callable[[], None] | None = None,
    ):
        self._backend = backend
        self._matrix = matrix
        self._generation = generation
        self._fetcher = fetcher
        self._on_applied = on_applied
        self._on_aggregates_stale = on_aggregates_stale

        self.sync_states: dict[tuple[int, int], CellSyncState] = {}
        # Cells with a write in flight -> number of writes
        self._pending_writes: dict[tuple[int, int], int] = {}

    def reset(self) -> None:
        """Forget per-cell state (called on context change)."""
        self.sync_states.clear()
        self._pending_writes.clear()

    def pending_cells(self) -> set[tuple[int, int]]:
        """Cells with a write still in flight."""
        return set(self._pending_writes)

    def sync_state(self, row: int, col: int) -> CellSyncState:
        return self.sync_states.get((row, col), CellSyncState.CLEAN)

    # --- Single-cell path ---

    async def commit_cell_text(
        self, context: GridContext, row: int, col: int, text: str | None
    ) -> float | None:
        """Commit text typed into one cell.

        Returns:
            The value now stored (None for no mark)

        Raises:
            CellEditError: Invalid input (nothing written) or service rejection
        """
        is_valid, value, error = parse_cell_text(text)
        if not is_valid:
            raise CellEditError(error, row, col)
        return await self.write_cell(context, row, col, value)

    async def write_cell(
        self, context: GridContext, row: int, col: int, value: float | None
    ) -> float | None:
        """Write one cell through the single-cell path (0 clears the cell).

        Returns:
            The normalized value written

        Raises:
            CellEditError: Out of range, negative, or rejected by the service
        """
        if not context.contains(row, col):
            raise CellEditError(f"Cell ({row}, {col}) is outside the grid.", row, col)
        if value is not None and value < 0:
            raise CellEditError(NEGATIVE_MARK_ERROR, row, col)

        to_write = apply_zero_policy(value, SINGLE_CELL_ZERO_POLICY)
        edit_kind = EditKind.CLEAR if to_write is None else EditKind.SET
        generation = self._generation.capture()
        cell = (row, col)

        self.sync_states[cell] = CellSyncState.DIRTY
        self._begin_write([cell])
        try:
            await self._backend.update_cell(
                context.class_id, context.mark_set_id, row, col, to_write, edit_kind
            )
        except Exception as e:
            error = e if isinstance(e, BackendError) else BackendError("transport", str(e))
            self._end_write([cell])
            state = await self._resync_cell(context, row, col, generation)
            logger.warning(f"Write to ({row}, {col}) rejected: {error} ({state.value})")
            raise CellEditError(str(error), row, col, state) from error

        self._end_write([cell])
        if not self._generation.is_current(generation):
            logger.debug(f"Write to ({row}, {col}) finished after context change")
            return to_write

        self.sync_states[cell] = CellSyncState.CLEAN
        changed = self._matrix.apply_values([(row, col, to_write)])
        self._notify_applied(changed)
        self._notify_aggregates()
        return to_write

    async def _resync_cell(
        self, context: GridContext, row: int, col: int, generation: int
    ) -> CellSyncState:
        """Best-effort re-read of one cell after a rejected write."""
        try:
            value = await self._fetcher.read_cell(context, row, col)
        except Exception as e:
            logger.debug(f"Resync of ({row}, {col}) failed: {e}")
            state = CellSyncState.DESYNC_UNRESOLVED
        else:
            state = CellSyncState.DESYNC_RESOLVED
            if self._generation.is_current(generation):
                changed = self._matrix.apply_values([(row, col, value)])
                self._notify_applied(changed)

        if self._generation.is_current(generation):
            self.sync_states[(row, col)] = state
        return state

    # --- Bulk path ---

    async def apply_bulk(
        self, context: GridContext, edits: Sequence[PendingEdit]
    ) -> BulkEditSummary:
        """Apply edits optimistically, write them in one batch, reconcile.

        Rejected cells still showing this batch's value are restored to the
        value they had before the batch, then re-read from the service. Cells
        another write changed in the meantime keep that write's value.
        Aggregates are recomputed even on partial rejection.

        Returns:
            BulkEditSummary (rejections are not an error)

        Raises:
            BackendError: If the whole call failed; every edit is rolled back
        """
        if not edits:
            return BulkEditSummary()

        generation = self._generation.capture()
        previous: dict[tuple[int, int], Cell] = {}
        optimistic: dict[tuple[int, int], Cell] = {}
        for edit in edits:
            previous.setdefault(edit.cell, self._matrix.get(edit.row, edit.col))
            optimistic[edit.cell] = edit.display_value

        with perf_timer("bulk_optimistic_apply", cell_count=len(edits)):
            changed = self._matrix.apply_values(
                (edit.row, edit.col, edit.display_value) for edit in edits
            )
        self._notify_applied(changed)

        cells = list(previous)
        self._begin_write(cells)
        try:
            result = await self._backend.bulk_update(
                context.class_id, context.mark_set_id, list(edits)
            )
        except Exception as e:
            error = e if isinstance(e, BackendError) else BackendError("transport", str(e))
            self._end_write(cells)
            if self._generation.is_current(generation):
                restored = self._restore(previous, optimistic, cells)
                # Merges skipped these cells while the write was in flight
                self._fetcher.invalidate_cells(restored)
            logger.warning(f"Bulk write of {len(edits)} edits failed: {error}")
            if error is e:
                raise
            raise error from e

        self._end_write(cells)
        if not self._generation.is_current(generation):
            logger.debug("Bulk write finished after context change")
            return self._summarize(edits, result.errors, result.rejected, set())

        if result.limit_exceeded:
            rejected_cells = set(cells)
        else:
            rejected_cells = self._rejected_cells(edits, result.errors)
        self._restore(previous, optimistic, rejected_cells)
        if rejected_cells:
            await self._resync_cells(context, rejected_cells, generation)

        summary = self._summarize(edits, result.errors, result.rejected, rejected_cells)
        if summary.has_rejections:
            logger.warning(f"Bulk write: {summary.message}")
        self._notify_aggregates()
        return summary

    @staticmethod
    def _rejected_cells(
        edits: Sequence[PendingEdit], errors: Sequence[BulkRejection]
    ) -> set[tuple[int, int]]:
        """Cells to roll back for a set of rejections.

        A rejection with col -1 covers every edited cell in its row; one with
        row -1 cannot be attributed and covers nothing.
        """
        edited = {edit.cell for edit in edits}
        rejected: set[tuple[int, int]] = set()
        for err in errors:
            if err.row < 0:
                continue
            if err.col < 0:
                rejected.update(cell for cell in edited if cell[0] == err.row)
            elif (err.row, err.col) in edited:
                rejected.add((err.row, err.col))
        return rejected

    @staticmethod
    def _summarize(
        edits: Sequence[PendingEdit],
        errors: Sequence[BulkRejection],
        rejected: int,
        rejected_cells: set[tuple[int, int]],
    ) -> BulkEditSummary:
        rejected_count = max(rejected, len(errors))
        applied = sum(1 for edit in edits if edit.cell not in rejected_cells)
        return BulkEditSummary(
            requested=len(edits),
            applied=applied,
            rejected=rejected_count,
            first_error=errors[0].message if errors else "",
            errors=list(errors),
        )

    # --- Helpers ---

    async def _resync_cells(
        self, context: GridContext, cells: set[tuple[int, int]], generation: int
    ) -> None:
        """Re-read rejected cells with one read over their bounding box.

        If the box is too large for one read, or the read fails, the tiles
        holding the cells are dropped from the cache so the next window
        request fetches them again.
        """
        rows = [row for row, _ in cells]
        cols = [col for _, col in cells]
        window = GridWindow(
            min(rows), max(rows) - min(rows) + 1, min(cols), max(cols) - min(cols) + 1
        )
        if window.row_count > GRID_GET_MAX_ROWS or window.col_count > GRID_GET_MAX_COLS:
            self._fetcher.invalidate_cells(cells)
            return

        try:
            rect = await self._fetcher.read_rect(context, window)
        except Exception as e:
            logger.debug(f"Re-read of {len(cells)} rejected cells failed: {e}")
            if self._generation.is_current(generation):
                self._fetcher.invalidate_cells(cells)
            return

        if not self._generation.is_current(generation):
            return
        # A newer write owns these cells until it finishes
        pending = self.pending_cells()
        values = []
        for row, col in cells:
            if (row, col) in pending:
                continue
            r = row - rect.row_start
            c = col - rect.col_start
            if 0 <= r < len(rect.cells) and 0 <= c < len(rect.cells[r]):
                value = rect.cells[r][c]
                values.append((row, col, None if value is None else float(value)))
        changed = self._matrix.apply_values(values)
        self._notify_applied(changed)

    def _restore(
        self,
        previous: dict[tuple[int, int], Cell],
        optimistic: dict[tuple[int, int], Cell],
        cells,
    ) -> set[tuple[int, int]]:
        """Put back pre-batch values where the batch's value is still shown.

        Returns:
            The cells that were rolled back
        """
        restored = {
            (r, c) for r, c in cells if self._matrix.get(r, c) == optimistic[(r, c)]
        }
        changed = self._matrix.apply_values((r, c, previous[(r, c)]) for r, c in restored)
        self._notify_applied(changed)
        return restored

    def _begin_write(self, cells: Sequence[tuple[int, int]]) -> None:
        for cell in cells:
            self._pending_writes[cell] = self._pending_writes.get(cell, 0) + 1

    def _end_write(self, cells: Sequence[tuple[int, int]]) -> None:
        for cell in cells:
            remaining = self._pending_writes.get(cell, 0) - 1
            if remaining > 0:
                self._pending_writes[cell] = remaining
            else:
                self._pending_writes.pop(cell, None)

    def _notify_applied(self, changed: set[tuple[int, int]]) -> None:
        if changed and self._on_applied:
            self._on_applied(changed)

    def _notify_aggregates(self) -> None:
        if self._on_aggregates_stale:
            self._on_aggregates_stale()
