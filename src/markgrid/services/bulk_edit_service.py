"""Bulk edit builders for the marks grid.

Turns toolbar actions, fill down/right and clipboard pastes into lists of
PendingEdit. Nothing here touches the matrix or the service; the edit
coordinator applies the result as one bulk write.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from ..debug_trace import log_perf
from ..errors import CellEditError
from ..models.constants import FILL_ZERO_POLICY, ScoreState
from ..models.pending_edit import PendingEdit
from ..models.validation import parse_pasted_value, validate_scored_input

if TYPE_CHECKING:
    from ..data.cell_matrix import CellMatrix
    from ..models.selection import CellRange


class BulkEditService:
    """Builds PendingEdit batches for multi-cell operations.

    All methods are static as the service is stateless.
    """

    @staticmethod
    def selected_cells(
        selection: CellRange | None,
        current: tuple[int, int] | None,
        row_count: int,
        col_count: int,
    ) -> list[tuple[int, int]]:
        """Editable cells of a selection, in row-major order.

        Falls back to the current cell when the selection is empty or lies
        entirely outside the matrix.

        Args:
            selection: Selected rectangle (may be None)
            current: The focused cell (may be None)
            row_count: Matrix rows
            col_count: Matrix columns

        Returns:
            List of (row, col)
        """
        if selection is not None:
            cells = selection.clipped(row_count, col_count).cells()
            if cells:
                return cells

        if current is not None:
            row, col = current
            if 0 <= row < row_count and 0 <= col < col_count:
                return [current]
        return []

    @staticmethod
    def state_edits(
        cells: Sequence[tuple[int, int]],
        state: ScoreState,
        scored_text: str | None = None,
    ) -> list[PendingEdit]:
        """Edits for the "Set No Mark" / "Set Zero" / "Set Scored" actions.

        "Set Zero" always writes an explicit zero.

        Raises:
            CellEditError: If state is SCORED and scored_text is not a positive number
        """
        if state == ScoreState.NO_MARK:
            return [PendingEdit.no_mark(r, c) for r, c in cells]
        if state == ScoreState.ZERO:
            return [PendingEdit.zero(r, c) for r, c in cells]

        is_valid, value, error = validate_scored_input(scored_text)
        if not is_valid:
            row, col = cells[0] if cells else (-1, -1)
            raise CellEditError(error, row, col)
        return [PendingEdit.scored(r, c, value) for r, c in cells]

    @staticmethod
    @log_perf
    def fill_down(selection: CellRange, matrix: CellMatrix) -> list[PendingEdit]:
        """Copy the first row of the selection into the rows below it.

        Returns:
            Edits for every non-source cell, or [] for a single-row selection
        """
        if selection.height <= 1:
            return []

        window = selection.clipped(matrix.row_count, matrix.col_count)
        edits: list[PendingEdit] = []
        # Source row is the selection's anchor row, even if clipped away
        if not 0 <= selection.row < matrix.row_count:
            return edits

        for col in range(window.col_start, window.col_end):
            source = matrix.get(selection.row, col)
            for row in range(max(window.row_start, selection.row + 1), window.row_end):
                edits.append(PendingEdit.from_display_value(row, col, source, FILL_ZERO_POLICY))
        return edits

    @staticmethod
    @log_perf
    def fill_right(selection: CellRange, matrix: CellMatrix) -> list[PendingEdit]:
        """Copy the first column of the selection into the columns to its right.

        Returns:
            Edits for every non-source cell, or [] for a single-column selection
        """
        if selection.width <= 1:
            return []

        window = selection.clipped(matrix.row_count, matrix.col_count)
        edits: list[PendingEdit] = []
        if not 0 <= selection.col < matrix.col_count:
            return edits

        for row in range(window.row_start, window.row_end):
            source = matrix.get(row, selection.col)
            for col in range(max(window.col_start, selection.col + 1), window.col_end):
                edits.append(PendingEdit.from_display_value(row, col, source, FILL_ZERO_POLICY))
        return edits

    @staticmethod
    @log_perf
    def paste_edits(
        target_row: int,
        target_col: int,
        values: Sequence[Sequence[str]],
        row_count: int,
        col_count: int,
    ) -> list[PendingEdit]:
        """Edits for a rectangular block pasted with its top-left at the target.

        Cells landing outside the matrix are skipped; negative or non-numeric
        values drop only that cell.
        """
        edits: list[PendingEdit] = []
        for dr, row_values in enumerate(values):
            row = target_row + dr
            if row < 0 or row >= row_count:
                continue
            for dc, raw in enumerate(row_values):
                col = target_col + dc
                if col < 0 or col >= col_count:
                    continue
                parsed = parse_pasted_value("" if raw is None else str(raw))
                if parsed is None:
                    continue
                state, value = parsed
                edits.append(PendingEdit(row, col, state, value))
        return edits

    @staticmethod
    def split_clipboard_text(text: str) -> list[list[str]]:
        """Split tab/newline separated clipboard text into rows of cells.

        A single trailing newline (as spreadsheets copy) does not add a row.
        """
        normalized = text.replace("\r\n", "\n").replace("\r", "\n")
        if normalized.endswith("\n"):
            normalized = normalized[:-1]
        if normalized == "":
            return []
        return [line.split("\t") for line in normalized.split("\n")]
