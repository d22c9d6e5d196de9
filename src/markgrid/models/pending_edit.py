"""Pending score edit, the unit of single-cell and bulk write requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .constants import ScoreState, ZeroPolicy


@dataclass(frozen=True)
class PendingEdit:
    """One score edit addressed by matrix position.

    state and value are both carried: state tells "no mark" (None) apart from
    an explicit zero (0) regardless of how value was produced.
    """

    row: int
    col: int
    state: ScoreState
    value: float | None = None

    @property
    def display_value(self) -> float | None:
        """The cell value the grid shows once this edit is applied."""
        if self.state == ScoreState.NO_MARK:
            return None
        if self.state == ScoreState.ZERO:
            return 0.0
        return self.value

    @property
    def cell(self) -> tuple[int, int]:
        return (self.row, self.col)

    def to_params(self) -> dict[str, Any]:
        """Wire representation for grid.bulkUpdate."""
        return {"row": self.row, "col": self.col, "state": self.state.value, "value": self.value}

    @classmethod
    def no_mark(cls, row: int, col: int) -> PendingEdit:
        return cls(row, col, ScoreState.NO_MARK, None)

    @classmethod
    def zero(cls, row: int, col: int) -> PendingEdit:
        return cls(row, col, ScoreState.ZERO, 0.0)

    @classmethod
    def scored(cls, row: int, col: int, value: float) -> PendingEdit:
        return cls(row, col, ScoreState.SCORED, value)

    @classmethod
    def from_display_value(
        cls,
        row: int,
        col: int,
        value: float | None,
        zero_policy: ZeroPolicy = ZeroPolicy.AS_ZERO,
    ) -> PendingEdit:
        """Build the edit that reproduces a displayed cell value.

        Args:
            row: Target row
            col: Target column
            value: Displayed value (None = no mark)
            zero_policy: Whether 0 stays an explicit zero or clears the cell

        Returns:
            PendingEdit with state derived from value
        """
        if value is None:
            return cls.no_mark(row, col)
        if value == 0:
            if zero_policy == ZeroPolicy.AS_NO_MARK:
                return cls.no_mark(row, col)
            return cls.zero(row, col)
        return cls.scored(row, col, value)
