"""Exception types for the marks grid.

Every exception carries a message that can be shown to the user as-is.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models.constants import CellSyncState


class GridError(Exception):
    """Base class for marks grid errors."""

    @property
    def message(self) -> str:
        return str(self)


class NoContextError(GridError):
    """Raised when a grid operation runs before a mark set is selected."""

    def __init__(self, message: str = "Select a class and mark set first."):
        super().__init__(message)


class BackendError(GridError):
    """Failure reported by the data service (or by the transport to it).

    Attributes:
        code: Machine-readable error code ("bad_params", "not_found", "transport", ...)
        details: Optional extra payload from the service
    """

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return f"BackendError({self.code!r}, {str(self)!r})"


class CellEditError(GridError):
    """A single-cell edit was refused.

    Raised for invalid input (no write attempted, sync_state is None) and for
    backend rejections (sync_state is the terminal resync state).
    """

    def __init__(
        self,
        message: str,
        row: int,
        col: int,
        sync_state: CellSyncState | None = None,
    ):
        super().__init__(message)
        self.row = row
        self.col = col
        self.sync_state = sync_state
