"""Binding between a tksheet Sheet and the marks grid store.

The sheet only renders. This binding:
- polls the sheet's visible region and asks the store to load it
- repaints cells the store reports as changed
- routes inline edits, paste, fill and toolbar actions to the store
- runs the store's asyncio loop from Tk's after() so every coroutine runs
  on the Tk thread
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

from tksheet import Sheet

from ..debug_trace import logger
from ..errors import GridError
from ..models.grid_window import GridWindow
from ..models.selection import CellRange
from ..settings import GridSettings

if TYPE_CHECKING:
    import tkinter as tk

    from ..data.marks_grid_store import MarksGridStore
    from ..models.constants import ScoreState


def format_cell(value: float | None) -> str:
    """Display text for a cell value ("" for no mark)."""
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def selection_bounds(cells: set[tuple[int, int]]) -> CellRange | None:
    """Bounding rectangle of a set of selected cells."""
    if not cells:
        return None
    rows = [r for r, _ in cells]
    cols = [c for _, c in cells]
    top, left = min(rows), min(cols)
    return CellRange(top, left, height=max(rows) - top + 1, width=max(cols) - left + 1)


class MarksSheetBinding:
    """Connects one Sheet to one MarksGridStore.

    Usage:
        sheet = Sheet(frame)
        binding = MarksSheetBinding(sheet, store, root, loop, on_error=status.set)
        binding.start()
        ...
        binding.stop()
    """

    def __init__(
        self,
        sheet: Sheet,
        store: MarksGridStore,
        root: tk.Misc,
        loop: asyncio.AbstractEventLoop,
        settings: GridSettings | None = None,
        on_error: Callable[[str], None] | None = None,
    ):
        self.sheet = sheet
        self.store = store
        self._root = root
        self._loop = loop
        self.settings = settings or store.settings
        self._on_error = on_error

        self._active = False
        self._pump_after_id: str | None = None
        self._visible_after_id: str | None = None
        self._last_window: GridWindow | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_active(self) -> bool:
        return self._active

    # --- Lifecycle ---

    def start(self) -> None:
        """Bind sheet events, subscribe to the store and start the Tk timers."""
        if self._active:
            return
        self._active = True

        # Paste goes through the store instead of tksheet's own paste
        self.sheet.disable_bindings("paste")
        self.sheet.edit_validation(self._validate_edit)
        self.sheet.bind("<<SheetSelect>>", self._on_select)
        self.sheet.bind("<Control-v>", self._on_paste_key)

        self.store.add_observer(self._on_store_changed)
        self.store.add_error_observer(self._report_error)

        self._reset_sheet_data()
        self._schedule_pump()
        self._schedule_visible_check()

    def stop(self) -> None:
        """Cancel timers and unsubscribe. Pending coroutines are left to finish."""
        self._active = False
        for after_id in (self._pump_after_id, self._visible_after_id):
            if after_id:
                try:
                    self._root.after_cancel(after_id)
                except Exception:
                    pass  # Widget may be destroyed
        self._pump_after_id = None
        self._visible_after_id = None
        self.store.remove_observer(self._on_store_changed)
        self.store.remove_error_observer(self._report_error)

    # --- Event loop pump ---

    def _schedule_pump(self) -> None:
        if not self._active:
            return
        self._pump_after_id = self._root.after(self.settings.pump_interval_ms, self._pump)

    def _pump(self) -> None:
        """Run every asyncio callback that is ready, then yield back to Tk."""
        if not self._active:
            return
        self._loop.call_soon(self._loop.stop)
        self._loop.run_forever()
        self._schedule_pump()

    def run(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule a store coroutine; its GridError is reported, not raised."""
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None or isinstance(error, GridError):
            # GridErrors already reached the error observers
            return
        logger.error(f"Grid task failed: {error!r}")
        self._report_error(str(error))

    # --- Visible region ---

    def _schedule_visible_check(self) -> None:
        if not self._active:
            return
        self._visible_after_id = self._root.after(
            self.settings.visible_debounce_ms, self._check_visible
        )

    def visible_window(self) -> GridWindow | None:
        """The sheet's currently displayed rows/columns as a window."""
        try:
            row_start, row_end = self.sheet.visible_rows
            col_start, col_end = self.sheet.visible_columns
        except Exception:
            return None  # Not drawn yet
        return GridWindow(row_start, row_end - row_start, col_start, col_end - col_start)

    def _check_visible(self) -> None:
        if not self._active:
            return
        window = self.visible_window()
        if window is not None and window != self._last_window:
            self._last_window = window
            self.store.ensure_window_loaded(window)
        self._schedule_visible_check()

    def _on_select(self, event=None) -> None:
        """Load the tile under the selected cell before it can be edited."""
        current = self.sheet.get_currently_selected()
        row = getattr(current, "row", None)
        col = getattr(current, "column", None)
        if row is None or col is None:
            return
        self.store.ensure_window_loaded(GridWindow(row, 1, col, 1))

    # --- Rendering ---

    def _reset_sheet_data(self) -> None:
        context = self.store.context
        if context is None:
            self.sheet.set_sheet_data([], reset_col_positions=False)
            return
        data = [
            [format_cell(value) for value in row] for row in self.store.matrix.rows
        ]
        self.sheet.set_sheet_data(data, reset_col_positions=False)
        self._last_window = None

    def _on_store_changed(self, store: MarksGridStore, changed: set[tuple[int, int]] | None) -> None:
        if changed is None:
            self._reset_sheet_data()
            return
        for row, col in changed:
            self.sheet.set_cell_data(row, col, format_cell(store.get_cell(row, col)), redraw=False)
        self.sheet.refresh()

    def _repaint_cell(self, row: int, col: int) -> None:
        self.sheet.set_cell_data(row, col, format_cell(self.store.get_cell(row, col)))

    def _report_error(self, message: str) -> None:
        if self._on_error:
            self._on_error(message)

    # --- Editing ---

    def _validate_edit(self, event) -> str | None:
        """Commit an inline edit through the store.

        The sheet keeps the typed text until the store repaints the cell; a
        failed write repaints it from the matrix.
        """
        row = getattr(event, "row", None)
        col = getattr(event, "column", None)
        if row is None or col is None:
            return None
        text = "" if event.value is None else str(event.value)
        self.run(self._commit(row, col, text))
        return text.strip()

    async def _commit(self, row: int, col: int, text: str) -> None:
        try:
            value = await self.store.commit_cell_text(row, col, text)
        except GridError:
            self._repaint_cell(row, col)
            raise
        self.sheet.set_cell_data(row, col, format_cell(value))

    def current_selection(self) -> CellRange | None:
        return selection_bounds(set(self.sheet.get_selected_cells()))

    def _on_paste_key(self, event=None) -> str:
        try:
            text = self._root.clipboard_get()
        except Exception:
            return "break"  # Empty or non-text clipboard
        selection = self.current_selection()
        if selection is not None:
            self.run(self.store.paste(selection.row, selection.col, text))
        return "break"

    def fill_down(self) -> asyncio.Task | None:
        selection = self.current_selection()
        if selection is None:
            return None
        return self.run(self.store.fill_down(selection))

    def fill_right(self) -> asyncio.Task | None:
        selection = self.current_selection()
        if selection is None:
            return None
        return self.run(self.store.fill_right(selection))

    def set_state(self, state: ScoreState, scored_text: str | None = None) -> asyncio.Task | None:
        """Toolbar "Set No Mark" / "Set Zero" / "Set Scored" for the selection."""
        selection = self.current_selection()
        if selection is None:
            return None
        return self.run(self.store.set_selection_state(selection, state, scored_text))
