"""Shared fixtures and fakes for the marks grid tests."""

import asyncio

import pytest

from markgrid.data.backend import BulkRejection, BulkUpdateResult, GridBackend, GridDims, GridRect
from markgrid.errors import BackendError


class ControlledBackend(GridBackend):
    """Fake data service whose reads can be held in flight and released in any order."""

    def __init__(self, row_count=100, col_count=10, values=None):
        self.dims = GridDims(row_count, col_count)
        self.values = dict(values or {})
        self.hold = False
        self.get_calls = []
        self.update_calls = []
        self.bulk_calls = []
        self.get_error = None
        self.update_error = None
        self.bulk_error = None
        self.rejected_cells = {}
        # Called at the start of every write, while it is in flight
        self.on_write = None
        self._held = []
        # When set, bulk writes wait for release_bulk() before reaching the service
        self.hold_bulk = False
        self._held_bulk = []

    # --- Controls ---

    @property
    def held_count(self):
        return len(self._held)

    def release(self, index=0, error=None):
        """Resolve one held read (by position among those still held)."""
        args, future = self._held.pop(index)
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(self.rect(*args[2:]))
        return args

    def release_all(self):
        while self._held:
            self.release(0)

    def release_bulk(self):
        """Let the oldest held bulk write reach the service."""
        self._held_bulk.pop(0).set_result(None)

    def rect(self, row_start, row_count, col_start, col_count):
        rows = max(0, min(row_count, self.dims.row_count - row_start))
        cols = max(0, min(col_count, self.dims.col_count - col_start))
        cells = [
            [self.values.get((r, c)) for c in range(col_start, col_start + cols)]
            for r in range(row_start, row_start + rows)
        ]
        return GridRect(row_start, rows, col_start, cols, cells)

    # --- GridBackend ---

    async def open_mark_set(self, class_id, mark_set_id):
        await asyncio.sleep(0)
        return self.dims

    async def get(self, class_id, mark_set_id, row_start, row_count, col_start, col_count):
        args = (class_id, mark_set_id, row_start, row_count, col_start, col_count)
        self.get_calls.append(args)
        if self.hold:
            future = asyncio.get_running_loop().create_future()
            self._held.append((args, future))
            return await future
        await asyncio.sleep(0)
        if self.get_error is not None:
            raise self.get_error
        return self.rect(row_start, row_count, col_start, col_count)

    async def update_cell(self, class_id, mark_set_id, row, col, value, edit_kind):
        self.update_calls.append((row, col, value, edit_kind))
        if self.on_write is not None:
            self.on_write()
        await asyncio.sleep(0)
        if self.update_error is not None:
            raise self.update_error
        self.values[(row, col)] = value

    async def bulk_update(self, class_id, mark_set_id, edits):
        self.bulk_calls.append(list(edits))
        if self.on_write is not None:
            self.on_write()
        if self.hold_bulk:
            future = asyncio.get_running_loop().create_future()
            self._held_bulk.append(future)
            await future
        await asyncio.sleep(0)
        if self.bulk_error is not None:
            raise self.bulk_error
        result = BulkUpdateResult()
        for edit in edits:
            message = self.rejected_cells.get(edit.cell)
            if message is not None:
                result.errors.append(BulkRejection(edit.row, edit.col, message))
                continue
            self.values[edit.cell] = edit.display_value
            result.updated += 1
        result.rejected = len(result.errors)
        return result


def run(coro):
    """Run a coroutine on a fresh event loop."""
    return asyncio.run(coro)


async def settle(rounds=5):
    """Let ready tasks run a few steps."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def backend():
    return ControlledBackend()


@pytest.fixture
def failing_read():
    return BackendError("db_query_failed", "disk I/O error")
