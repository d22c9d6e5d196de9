"""Data service abstraction for the marks grid.

Provides the abstract base class the coordinators talk to, the result
types of its operations, and an in-memory implementation with the same
validation rules as the desktop data service.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..errors import BackendError
from ..models.constants import (
    GRID_BULK_UPDATE_MAX_EDITS,
    GRID_GET_MAX_COLS,
    GRID_GET_MAX_ROWS,
    EditKind,
    ScoreState,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..models.pending_edit import PendingEdit


@dataclass(frozen=True)
class GridDims:
    """Matrix dimensions of one mark set."""

    row_count: int
    col_count: int


@dataclass
class GridRect:
    """Result of a rectangular read.

    row_count/col_count are what the service actually returned, which can be
    less than requested at the matrix edge.
    """

    row_start: int
    row_count: int
    col_start: int
    col_count: int
    cells: list[list[float | None]] = field(default_factory=list)


@dataclass(frozen=True)
class BulkRejection:
    """One rejected edit of a bulk write. row/col are -1 when not attributable."""

    row: int
    col: int
    message: str
    code: str = "bad_params"


@dataclass
class BulkUpdateResult:
    """Outcome of a bulk write: per-edit partial failure, not an error."""

    updated: int = 0
    rejected: int = 0
    errors: list[BulkRejection] = field(default_factory=list)
    limit_exceeded: bool = False


class GridBackend(ABC):
    """Abstract base class for the marks grid data service."""

    @abstractmethod
    async def open_mark_set(self, class_id: str, mark_set_id: str) -> GridDims:
        """Return the matrix dimensions of a mark set."""

    @abstractmethod
    async def get(
        self,
        class_id: str,
        mark_set_id: str,
        row_start: int,
        row_count: int,
        col_start: int,
        col_count: int,
    ) -> GridRect:
        """Read a rectangle of cells.

        Raises:
            BackendError: On validation or storage failure
        """

    @abstractmethod
    async def update_cell(
        self,
        class_id: str,
        mark_set_id: str,
        row: int,
        col: int,
        value: float | None,
        edit_kind: EditKind,
    ) -> None:
        """Write one cell.

        Raises:
            BackendError: On validation or storage failure
        """

    @abstractmethod
    async def bulk_update(
        self,
        class_id: str,
        mark_set_id: str,
        edits: Sequence[PendingEdit],
    ) -> BulkUpdateResult:
        """Write many cells; individual edits may be rejected.

        Raises:
            BackendError: Only when the whole call fails (transport, no workspace)
        """


def resolve_score_state(
    state: ScoreState | str | None, value: float | None
) -> tuple[float | None, ScoreState]:
    """Resolve an edit into the stored (raw_value, state) pair.

    Without an explicit state, legacy grid parity applies: a positive value
    is scored, anything else (None, 0) is no mark.

    Raises:
        BackendError: For negative values, unknown states, or a scored state
            without a positive value
    """
    if value is not None and value < 0:
        raise BackendError(
            "bad_params", "negative marks are not allowed", {"value": value}
        )

    if state is None:
        if value is not None and value > 0:
            return value, ScoreState.SCORED
        return 0.0, ScoreState.NO_MARK

    try:
        resolved = ScoreState(str(getattr(state, "value", state)).lower())
    except ValueError:
        raise BackendError(
            "bad_params", "state must be one of: scored, zero, no_mark", {"state": state}
        ) from None

    if resolved == ScoreState.NO_MARK:
        return 0.0, resolved
    if resolved == ScoreState.ZERO:
        return None, resolved
    if value is None:
        raise BackendError("bad_params", "scored state requires numeric value")
    if value <= 0:
        raise BackendError("bad_params", "scored marks must be > 0", {"value": value})
    return value, resolved


def display_value(raw_value: float | None, state: ScoreState) -> float | None:
    """Value shown in the grid for a stored score."""
    if state == ScoreState.NO_MARK:
        return None
    if state == ScoreState.ZERO:
        return 0.0
    return raw_value


@dataclass
class _MarkSet:
    dims: GridDims
    scores: dict[tuple[int, int], tuple[float | None, ScoreState]] = field(default_factory=dict)


class MemoryGridBackend(GridBackend):
    """In-memory data service.

    Usage:
        backend = MemoryGridBackend()
        backend.add_mark_set("class-1", "ms-1", row_count=30, col_count=12)
        backend.seed("class-1", "ms-1", {(0, 0): 7.5})
    """

    def __init__(self):
        self._mark_sets: dict[tuple[str, str], _MarkSet] = {}
        # Method names in call order, for diagnostics and tests
        self.call_log: list[str] = []

    def add_mark_set(self, class_id: str, mark_set_id: str, row_count: int, col_count: int) -> None:
        self._mark_sets[(class_id, mark_set_id)] = _MarkSet(GridDims(row_count, col_count))

    def seed(
        self, class_id: str, mark_set_id: str, values: dict[tuple[int, int], float | None]
    ) -> None:
        """Store display values directly (0 -> zero, None -> no mark)."""
        mark_set = self._require(class_id, mark_set_id)
        for (row, col), value in values.items():
            if value is None:
                mark_set.scores[(row, col)] = (0.0, ScoreState.NO_MARK)
            elif value == 0:
                mark_set.scores[(row, col)] = (None, ScoreState.ZERO)
            else:
                mark_set.scores[(row, col)] = (float(value), ScoreState.SCORED)

    def stored(self, class_id: str, mark_set_id: str, row: int, col: int) -> float | None:
        """Display value of one stored cell (None when never written)."""
        mark_set = self._require(class_id, mark_set_id)
        entry = mark_set.scores.get((row, col))
        if entry is None:
            return None
        return display_value(*entry)

    def _require(self, class_id: str, mark_set_id: str) -> _MarkSet:
        mark_set = self._mark_sets.get((class_id, mark_set_id))
        if mark_set is None:
            raise BackendError(
                "not_found",
                "mark set not found",
                {"classId": class_id, "markSetId": mark_set_id},
            )
        return mark_set

    def _check_cell(self, mark_set: _MarkSet, row: int, col: int) -> None:
        if row < 0 or row >= mark_set.dims.row_count:
            raise BackendError("not_found", "student not found", {"row": row})
        if col < 0 or col >= mark_set.dims.col_count:
            raise BackendError("not_found", "assessment not found", {"col": col})

    async def open_mark_set(self, class_id: str, mark_set_id: str) -> GridDims:
        self.call_log.append("markset.open")
        await asyncio.sleep(0)
        return self._require(class_id, mark_set_id).dims

    async def get(
        self,
        class_id: str,
        mark_set_id: str,
        row_start: int,
        row_count: int,
        col_start: int,
        col_count: int,
    ) -> GridRect:
        self.call_log.append("grid.get")
        await asyncio.sleep(0)
        mark_set = self._require(class_id, mark_set_id)

        if row_start < 0 or col_start < 0:
            raise BackendError(
                "bad_params",
                "rowStart/colStart must be >= 0",
                {"rowStart": row_start, "colStart": col_start},
            )
        if row_count < 0 or col_count < 0:
            raise BackendError(
                "bad_params",
                "rowCount/colCount must be >= 0",
                {"rowCount": row_count, "colCount": col_count},
            )
        if row_count > GRID_GET_MAX_ROWS or col_count > GRID_GET_MAX_COLS:
            raise BackendError(
                "bad_params",
                "requested grid range is too large",
                {
                    "rowCount": row_count,
                    "colCount": col_count,
                    "maxRows": GRID_GET_MAX_ROWS,
                    "maxCols": GRID_GET_MAX_COLS,
                },
            )

        rows = max(0, min(row_count, mark_set.dims.row_count - row_start))
        cols = max(0, min(col_count, mark_set.dims.col_count - col_start))
        cells: list[list[float | None]] = []
        for r in range(row_start, row_start + rows):
            row_values: list[float | None] = []
            for c in range(col_start, col_start + cols):
                entry = mark_set.scores.get((r, c))
                row_values.append(None if entry is None else display_value(*entry))
            cells.append(row_values)

        return GridRect(row_start, rows, col_start, cols, cells)

    async def update_cell(
        self,
        class_id: str,
        mark_set_id: str,
        row: int,
        col: int,
        value: float | None,
        edit_kind: EditKind,
    ) -> None:
        self.call_log.append("grid.updateCell")
        await asyncio.sleep(0)
        mark_set = self._require(class_id, mark_set_id)
        # The service ignores edit_kind and derives state from value (legacy parity)
        raw_value, state = resolve_score_state(None, value)
        self._check_cell(mark_set, row, col)
        mark_set.scores[(row, col)] = (raw_value, state)

    async def bulk_update(
        self,
        class_id: str,
        mark_set_id: str,
        edits: Sequence[PendingEdit],
    ) -> BulkUpdateResult:
        self.call_log.append("grid.bulkUpdate")
        await asyncio.sleep(0)
        mark_set = self._require(class_id, mark_set_id)

        if len(edits) > GRID_BULK_UPDATE_MAX_EDITS:
            return BulkUpdateResult(
                updated=0,
                rejected=len(edits),
                errors=[
                    BulkRejection(
                        row=-1,
                        col=-1,
                        code="too_many_edits",
                        message=(
                            f"bulk payload exceeds max edits: "
                            f"{len(edits)} > {GRID_BULK_UPDATE_MAX_EDITS}"
                        ),
                    )
                ],
                limit_exceeded=True,
            )

        result = BulkUpdateResult()
        for edit in edits:
            try:
                raw_value, state = resolve_score_state(edit.state, edit.value)
                self._check_cell(mark_set, edit.row, edit.col)
            except BackendError as e:
                result.errors.append(BulkRejection(edit.row, edit.col, str(e), e.code))
                continue
            mark_set.scores[(edit.row, edit.col)] = (raw_value, state)
            result.updated += 1

        result.rejected = len(result.errors)
        return result
