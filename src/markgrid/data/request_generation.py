"""Request generation (epoch) guard.

Each fetch captures the generation when it is issued. When the matrix
context changes the generation advances, and results captured under an
older generation are dropped instead of merged.
"""

from __future__ import annotations


class RequestGeneration:
    """Monotonically increasing counter; never decremented."""

    def __init__(self):
        self._value = 0

    @property
    def current(self) -> int:
        return self._value

    def capture(self) -> int:
        """Return the generation to attach to a request being issued."""
        return self._value

    def is_current(self, captured: int) -> bool:
        return captured == self._value

    def advance(self) -> int:
        """Invalidate every request issued so far.

        Returns:
            The new generation value.
        """
        self._value += 1
        return self._value

    def __repr__(self) -> str:
        return f"RequestGeneration({self._value})"
