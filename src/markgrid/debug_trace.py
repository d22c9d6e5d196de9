"""Debug tracing utilities for the marks grid.

Enable tracing by calling setup_debug_logging() from a console entry point.
Performance timing is off by default; pass perf=True (or set DEBUG_PERF)
to log how long merges and bulk applies take.

Usage:
    from ..debug_trace import logger, perf_timer

    logger.debug("Issuing tile fetch")

    with perf_timer("merge_tile", cell_count=320):
        matrix.merge(...)
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable
from contextlib import contextmanager
from functools import wraps
from typing import Any

# Performance timing; off unless a console entry point asks for it
DEBUG_PERF = False

logger = logging.getLogger("markgrid")


def setup_debug_logging(level: int = logging.DEBUG, perf: bool = False) -> None:
    """Configure console logging for debug mode.

    Call this once at startup when running with a console attached.

    Args:
        level: Level for the package logger and its console handler
        perf: Also turn on perf_timer / log_perf timing lines
    """
    global DEBUG_PERF
    if perf:
        DEBUG_PERF = True

    # Only configure if not already configured
    if logger.handlers:
        return

    is_debug = sys.stdout is not None and hasattr(sys.stdout, "write")

    if is_debug:
        logger.setLevel(level)
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        formatter = logging.Formatter(
            "%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    else:
        # In non-debug mode, only log warnings and above
        logger.setLevel(logging.WARNING)


@contextmanager
def perf_timer(operation: str, cell_count: int | None = None):
    """Context manager for timing operations.

    Args:
        operation: Name of the operation being timed
        cell_count: Optional cell count for context
    """
    if not DEBUG_PERF:
        yield
        return

    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        if cell_count is not None:
            logger.debug(f"PERF: {operation} ({cell_count} cells) took {elapsed_ms:.2f}ms")
        else:
            logger.debug(f"PERF: {operation} took {elapsed_ms:.2f}ms")


def log_perf(func: Callable) -> Callable:
    """Decorator to log function performance."""

    @wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        if not DEBUG_PERF:
            return func(*args, **kwargs)

        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.debug(f"PERF: {func.__qualname__} took {elapsed_ms:.2f}ms")

    return wrapper
