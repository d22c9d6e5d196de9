"""Marks grid data loading and edit coordination.

Backs a spreadsheet-like grid of student rows x assessment columns: loads
only the tiles around the visible region, de-duplicates in-flight fetches,
drops results from a superseded class/mark set, and applies score edits
optimistically while reconciling with the data service.

The tksheet binding lives in markgrid.views.marks_sheet and is not imported
here so the core can run without Tk.
"""

from .data.backend import GridBackend, GridDims, GridRect, MemoryGridBackend
from .data.edit_coordinator import BulkEditSummary
from .data.marks_grid_store import GridDiagnostics, MarksGridStore
from .errors import BackendError, CellEditError, GridError, NoContextError
from .models.constants import CellSyncState, ScoreState
from .models.grid_context import GridContext
from .models.grid_window import GridTile, GridWindow, expand_window, tiles_for_window
from .models.pending_edit import PendingEdit
from .models.selection import CellRange
from .settings import GridSettings

__all__ = [
    "BackendError",
    "BulkEditSummary",
    "CellEditError",
    "CellRange",
    "CellSyncState",
    "GridBackend",
    "GridContext",
    "GridDiagnostics",
    "GridDims",
    "GridError",
    "GridRect",
    "GridSettings",
    "GridTile",
    "GridWindow",
    "MarksGridStore",
    "MemoryGridBackend",
    "NoContextError",
    "PendingEdit",
    "ScoreState",
    "expand_window",
    "tiles_for_window",
]
