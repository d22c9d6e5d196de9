"""Tests for FetchCoordinator - tile de-duplication, stale results and failures."""

import asyncio
from unittest.mock import MagicMock

import pytest
from conftest import ControlledBackend, run, settle

from markgrid.data.backend import GridDims, GridRect
from markgrid.data.cell_matrix import CellMatrix
from markgrid.data.fetch_coordinator import FetchCoordinator, FetchOutcome
from markgrid.data.request_generation import RequestGeneration
from markgrid.data.tile_cache import TileCache
from markgrid.models.grid_context import GridContext
from markgrid.models.grid_window import GridTile, GridWindow
from markgrid.settings import GridSettings

CONTEXT = GridContext("class-1", "ms-1", 100, 10)
VISIBLE = GridWindow(45, 10, 2, 3)


def make_fetcher(backend, **kwargs):
    matrix = CellMatrix(CONTEXT.row_count, CONTEXT.col_count)
    return FetchCoordinator(
        backend,
        TileCache(),
        matrix,
        RequestGeneration(),
        GridSettings(),
        **kwargs,
    )


class TestEnsureWindowLoaded:
    """Tests for issuing tile fetches."""

    def test_issues_one_fetch_per_tile(self):
        backend = ControlledBackend(values={(45, 2): 7.5})

        async def scenario():
            fetcher = make_fetcher(backend)
            tasks = fetcher.ensure_window_loaded(CONTEXT, VISIBLE)
            assert len(tasks) == 4
            await fetcher.drain()
            return fetcher

        fetcher = run(scenario())
        requested = sorted((c[2], c[3], c[4], c[5]) for c in backend.get_calls)
        assert requested == [(0, 40, 0, 8), (0, 40, 8, 2), (40, 40, 0, 8), (40, 40, 8, 2)]
        assert fetcher._cache.loaded_keys == {(0, 0), (0, 1), (1, 0), (1, 1)}
        assert fetcher._matrix.get(45, 2) == 7.5
        assert fetcher.grid_get_requests == 4

    def test_returns_without_waiting(self):
        backend = ControlledBackend()
        backend.hold = True

        async def scenario():
            fetcher = make_fetcher(backend)
            tasks = fetcher.ensure_window_loaded(CONTEXT, VISIBLE)
            assert not any(task.done() for task in tasks)
            await settle()
            assert backend.held_count == 4
            backend.release_all()
            await fetcher.drain()
            assert all(task.result() == FetchOutcome.LOADED for task in tasks)

        run(scenario())

    def test_inflight_tiles_not_refetched(self):
        """A second request for in-flight tiles issues nothing and counts hits."""
        backend = ControlledBackend()
        backend.hold = True

        async def scenario():
            fetcher = make_fetcher(backend)
            fetcher.ensure_window_loaded(CONTEXT, VISIBLE)
            await settle()
            hits_before = fetcher._cache.stats.hits
            assert fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1)) == []
            assert fetcher._cache.stats.hits == hits_before + 1
            assert fetcher.ensure_window_loaded(CONTEXT, VISIBLE) == []
            await settle()
            assert len(backend.get_calls) == 4
            backend.release_all()
            await fetcher.drain()

        run(scenario())

    def test_loaded_tiles_not_refetched(self):
        backend = ControlledBackend()

        async def scenario():
            fetcher = make_fetcher(backend)
            fetcher.ensure_window_loaded(CONTEXT, VISIBLE)
            await fetcher.drain()
            assert fetcher.ensure_window_loaded(CONTEXT, VISIBLE) == []

        run(scenario())
        assert len(backend.get_calls) == 4

    def test_empty_dims_is_noop(self):
        backend = ControlledBackend()

        async def scenario():
            fetcher = make_fetcher(backend)
            return fetcher.ensure_window_loaded(CONTEXT, VISIBLE, GridDims(0, 0))

        assert run(scenario()) == []
        assert backend.get_calls == []

    def test_out_of_order_results(self):
        backend = ControlledBackend(values={(0, 0): 1.0, (40, 8): 2.0})
        backend.hold = True

        async def scenario():
            fetcher = make_fetcher(backend)
            fetcher.ensure_window_loaded(CONTEXT, VISIBLE)
            await settle()
            for index in (3, 1, 0, 0):
                backend.release(index)
                await settle()
            await fetcher.drain()
            return fetcher

        fetcher = run(scenario())
        assert fetcher._matrix.get(0, 0) == 1.0
        assert fetcher._matrix.get(40, 8) == 2.0
        assert len(fetcher._cache.loaded_keys) == 4
        assert fetcher._cache.stats.max_concurrent_inflight == 4


class TestMerge:
    """Tests for merging fetched tiles."""

    def test_on_merged_called_with_changed_cells(self):
        backend = ControlledBackend(values={(1, 1): 3.0})
        on_merged = MagicMock()

        async def scenario():
            fetcher = make_fetcher(backend, on_merged=on_merged)
            fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await fetcher.drain()

        run(scenario())
        changed = set().union(*(call.args[0] for call in on_merged.call_args_list))
        assert changed == {(1, 1)}

    def test_protected_cells_not_overwritten(self):
        backend = ControlledBackend(values={(0, 0): 1.0, (0, 1): 2.0})

        async def scenario():
            fetcher = make_fetcher(backend, protected_cells=lambda: {(0, 0)})
            fetcher._matrix.set(0, 0, 9.0)
            fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await fetcher.drain()
            return fetcher

        fetcher = run(scenario())
        assert fetcher._matrix.get(0, 0) == 9.0
        assert fetcher._matrix.get(0, 1) == 2.0

    def test_shortfall_becomes_none(self):
        backend = ControlledBackend()
        backend.rect = lambda row_start, row_count, col_start, col_count: GridRect(
            row_start, 1, col_start, 1, [[5.0]]
        )

        async def scenario():
            fetcher = make_fetcher(backend)
            fetcher._matrix.set(1, 1, 4.0)
            fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await fetcher.drain()
            return fetcher

        fetcher = run(scenario())
        assert fetcher._matrix.get(0, 0) == 5.0
        assert fetcher._matrix.get(1, 1) is None


class TestGeneration:
    """Results from an older generation are dropped."""

    def test_stale_result_dropped(self):
        backend = ControlledBackend(values={(0, 0): 1.0})
        backend.hold = True

        async def scenario():
            fetcher = make_fetcher(backend)
            tasks = fetcher.ensure_window_loaded(CONTEXT, VISIBLE)
            await settle()
            fetcher._generation.advance()
            fetcher._cache.reset()
            backend.release_all()
            await fetcher.drain()
            return fetcher, tasks

        fetcher, tasks = run(scenario())
        assert all(task.result() == FetchOutcome.STALE for task in tasks)
        assert fetcher._matrix.get(0, 0) is None
        assert fetcher._cache.loaded_keys == frozenset()
        assert fetcher._cache.inflight_keys == frozenset()

    def test_stale_failure_not_reported(self, failing_read):
        backend = ControlledBackend()
        backend.hold = True
        on_error = MagicMock()

        async def scenario():
            fetcher = make_fetcher(backend, on_error=on_error)
            fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await settle()
            fetcher._generation.advance()
            backend.release(0, error=failing_read)
            await fetcher.drain()

        run(scenario())
        on_error.assert_not_called()


class TestFailure:
    """Failed fetches free the tile for a retry."""

    def test_failure_then_retry(self, failing_read):
        backend = ControlledBackend(values={(0, 0): 6.0})
        backend.get_error = failing_read
        on_error = MagicMock()

        async def scenario():
            fetcher = make_fetcher(backend, on_error=on_error)
            tasks = fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await fetcher.drain()
            assert [task.result() for task in tasks] == [FetchOutcome.FAILED]
            assert fetcher._cache.inflight_keys == frozenset()
            assert fetcher._cache.loaded_keys == frozenset()

            backend.get_error = None
            retry = fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            assert len(retry) == 1
            await fetcher.drain()
            return fetcher

        fetcher = run(scenario())
        on_error.assert_called_once_with(failing_read)
        assert fetcher._matrix.get(0, 0) == 6.0

    def test_unexpected_exception_wrapped(self):
        backend = ControlledBackend()
        backend.get_error = RuntimeError("pipe broke")
        on_error = MagicMock()

        async def scenario():
            fetcher = make_fetcher(backend, on_error=on_error)
            fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await fetcher.drain()

        run(scenario())
        error = on_error.call_args.args[0]
        assert error.code == "transport"
        assert str(error) == "pipe broke"

    def test_cancelled_fetch_frees_tile(self):
        backend = ControlledBackend()
        backend.hold = True

        async def scenario():
            fetcher = make_fetcher(backend)
            (task,) = fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await settle()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return fetcher

        fetcher = run(scenario())
        assert fetcher._cache.inflight_keys == frozenset()

    def test_no_running_loop_leaves_nothing_in_flight(self):
        backend = ControlledBackend(values={(0, 0): 6.0})
        fetcher = make_fetcher(backend)

        with pytest.raises(RuntimeError):
            fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
        assert fetcher._cache.inflight_keys == frozenset()
        assert fetcher._cache.stats.requests == 0

        async def scenario():
            tasks = fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await fetcher.drain()
            return tasks

        assert len(run(scenario())) == 1
        assert fetcher._matrix.get(0, 0) == 6.0


class TestInvalidateCells:
    def test_loaded_tile_fetched_again(self):
        backend = ControlledBackend(values={(0, 0): 6.0})

        async def scenario():
            fetcher = make_fetcher(backend)
            fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await fetcher.drain()
            backend.values[(0, 0)] = 8.0
            fetcher.invalidate_cells([(0, 0), (1, 1)])
            assert fetcher._cache.loaded_keys == frozenset()
            retry = fetcher.ensure_window_loaded(CONTEXT, GridWindow(0, 1, 0, 1))
            await fetcher.drain()
            return fetcher, retry

        fetcher, retry = run(scenario())
        assert len(retry) == 1
        assert fetcher._matrix.get(0, 0) == 8.0

    def test_other_tiles_kept(self):
        async def scenario():
            fetcher = make_fetcher(ControlledBackend())
            fetcher.ensure_window_loaded(CONTEXT, VISIBLE)
            await fetcher.drain()
            before = fetcher._cache.loaded_keys
            fetcher.invalidate_cells([(45, 2)])
            return before, fetcher._cache.loaded_keys

        before, after = run(scenario())
        assert before - after == {(1, 0)}


class TestDirectReads:
    def test_read_cell(self):
        backend = ControlledBackend(values={(3, 4): 2.0})

        async def scenario():
            fetcher = make_fetcher(backend)
            value = await fetcher.read_cell(CONTEXT, 3, 4)
            return fetcher, value

        fetcher, value = run(scenario())
        assert value == 2.0
        assert fetcher.grid_get_requests == 1
        assert backend.get_calls == [("class-1", "ms-1", 3, 1, 4, 1)]

    def test_read_cell_empty_rect(self):
        backend = ControlledBackend()
        backend.rect = lambda *args: GridRect(0, 0, 0, 0, [])

        async def scenario():
            return await make_fetcher(backend).read_cell(CONTEXT, 3, 4)

        assert run(scenario()) is None


def test_tile_is_a_window():
    """Tiles are passed straight to the service as windows."""
    tile = GridTile(40, 40, 8, 2, row_tile=1, col_tile=1)
    assert isinstance(tile, GridWindow)
