# ==============================================================================
# Grid Tuning Defaults
# ==============================================================================
# Prefetch margins and tile size used by the marks grid. These are tuning
# parameters; GridSettings can override them.
from enum import Enum

DEFAULT_PREFETCH_ROWS = 20
DEFAULT_PREFETCH_COLS = 6
DEFAULT_TILE_ROWS = 40
DEFAULT_TILE_COLS = 8

# ==============================================================================
# Service Limits
# ==============================================================================

# Largest rectangle a single grid.get may request
GRID_GET_MAX_ROWS = 2000
GRID_GET_MAX_COLS = 256

# Largest batch a single grid.bulkUpdate accepts; larger batches are rejected whole
GRID_BULK_UPDATE_MAX_EDITS = 5000


# ==============================================================================
# Score States
# ==============================================================================


class ScoreState(str, Enum):
    """Stored state of one score cell."""

    SCORED = "scored"
    ZERO = "zero"
    NO_MARK = "no_mark"


class EditKind(str, Enum):
    """Kind of a single-cell write."""

    SET = "set"
    CLEAR = "clear"


class ZeroPolicy(Enum):
    """How a typed or derived 0 is stored."""

    AS_NO_MARK = "as_no_mark"  # 0 is the same as clearing the cell
    AS_ZERO = "as_zero"  # 0 is an explicit scored zero


# Zero handling per edit path. Inline typing and paste clear the cell on 0;
# fill and the "Set Zero" action keep an explicit zero.
SINGLE_CELL_ZERO_POLICY = ZeroPolicy.AS_NO_MARK
PASTE_ZERO_POLICY = ZeroPolicy.AS_NO_MARK
FILL_ZERO_POLICY = ZeroPolicy.AS_ZERO


class CellSyncState(Enum):
    """Sync state of a cell during a single-cell write."""

    CLEAN = "clean"
    DIRTY = "dirty"  # write in flight
    DESYNC_RESOLVED = "desync_resolved"  # write rejected, cell re-read from service
    DESYNC_UNRESOLVED = "desync_unresolved"  # write rejected, re-read failed too
