"""Text parsing for score input.

Each edit path has its own policy for blanks, zero and bad input:

- Inline cell edit: blank -> no mark, 0 -> no mark, negative or
  non-numeric -> refused with a message (nothing is written).
- Paste: blank -> no mark, 0 -> no mark, negative or non-numeric ->
  that one cell is dropped.
- "Set Scored" toolbar value: must be a positive number.
"""

from __future__ import annotations

import math

from .constants import PASTE_ZERO_POLICY, SINGLE_CELL_ZERO_POLICY, ScoreState, ZeroPolicy

NEGATIVE_MARK_ERROR = "Negative marks are not allowed."
SCORED_VALUE_ERROR = "Scored value must be a positive number."


def parse_number(text: str) -> float | None:
    """Parse trimmed text as a finite number, or None if it is not one."""
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def apply_zero_policy(value: float | None, policy: ZeroPolicy) -> float | None:
    """Normalize a parsed value under a zero policy."""
    if value == 0 and policy == ZeroPolicy.AS_NO_MARK:
        return None
    return value


def parse_cell_text(text: str | None) -> tuple[bool, float | None, str]:
    """Parse text typed into a single cell.

    Args:
        text: Raw editor text (None is treated as blank)

    Returns:
        Tuple of (is_valid, value_to_write, error_message).
        value_to_write is None for "no mark"; error_message is "" if valid.
    """
    trimmed = (text or "").strip()
    if trimmed == "":
        return True, None, ""

    number = parse_number(trimmed)
    if number is None:
        return False, None, f'Invalid number: "{trimmed}"'

    if number < 0:
        return False, None, NEGATIVE_MARK_ERROR

    return True, apply_zero_policy(number, SINGLE_CELL_ZERO_POLICY), ""


def parse_pasted_value(raw: str | None) -> tuple[ScoreState, float | None] | None:
    """Parse one pasted cell.

    Returns:
        (state, value), or None if the cell should be dropped from the batch.
    """
    trimmed = (raw or "").strip()
    if trimmed == "":
        return ScoreState.NO_MARK, None

    number = parse_number(trimmed)
    if number is None or number < 0:
        return None

    number = apply_zero_policy(number, PASTE_ZERO_POLICY)
    if number is None:
        return ScoreState.NO_MARK, None
    if number == 0:
        return ScoreState.ZERO, 0.0
    return ScoreState.SCORED, number


def validate_scored_input(text: str | None) -> tuple[bool, float | None, str]:
    """Validate the value box of the "Set Scored" action.

    Returns:
        Tuple of (is_valid, value, error_message)
    """
    number = parse_number((text or "").strip())
    if number is None or number <= 0:
        return False, None, SCORED_VALUE_ERROR
    return True, number, ""
