"""Tests for the tksheet binding (sheet and Tk root are mocked)."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock, call

import pytest

pytest.importorskip("tksheet")

from conftest import ControlledBackend  # noqa: E402

from markgrid.data.marks_grid_store import MarksGridStore  # noqa: E402
from markgrid.errors import CellEditError  # noqa: E402
from markgrid.models.constants import ScoreState  # noqa: E402
from markgrid.models.grid_context import GridContext  # noqa: E402
from markgrid.models.selection import CellRange  # noqa: E402
from markgrid.views.marks_sheet import (  # noqa: E402
    MarksSheetBinding,
    format_cell,
    selection_bounds,
)

CONTEXT = GridContext("class-1", "ms-1", 100, 10)


@pytest.fixture
def loop():
    event_loop = asyncio.new_event_loop()
    yield event_loop
    event_loop.close()


@pytest.fixture
def sheet():
    s = MagicMock()
    s.visible_rows = (0, 20)
    s.visible_columns = (0, 5)
    s.get_selected_cells.return_value = set()
    return s


@pytest.fixture
def root():
    r = MagicMock()
    r.after.return_value = "after#1"
    return r


@pytest.fixture
def backend():
    return ControlledBackend(values={(0, 0): 7.0, (1, 0): 2.5})


@pytest.fixture
def binding(sheet, root, loop, backend):
    store = MarksGridStore(backend, loop=loop)
    errors = MagicMock()
    b = MarksSheetBinding(sheet, store, root, loop, on_error=errors)
    b.start()
    store.advance(CONTEXT)
    return b


def finish(binding, loop):
    """Run every outstanding fetch and edit task to completion."""

    async def wait():
        await binding.store.drain()
        while binding._tasks:
            await asyncio.gather(*list(binding._tasks), return_exceptions=True)

    loop.run_until_complete(wait())


class TestFormatting:
    @pytest.mark.parametrize(
        "value,expected", [(None, ""), (7.0, "7"), (7.5, "7.5"), (0.0, "0"), (12, "12")]
    )
    def test_format_cell(self, value, expected):
        assert format_cell(value) == expected

    def test_selection_bounds(self):
        cells = {(2, 3), (4, 3), (3, 5)}
        assert selection_bounds(cells) == CellRange(2, 3, height=3, width=3)
        assert selection_bounds(set()) is None


class TestLifecycle:
    """Tests for start() and stop()."""

    def test_start_binds_sheet(self, binding, sheet, root):
        sheet.disable_bindings.assert_called_once_with("paste")
        sheet.edit_validation.assert_called_once_with(binding._validate_edit)
        bound = [c.args[0] for c in sheet.bind.call_args_list]
        assert bound == ["<<SheetSelect>>", "<Control-v>"]
        assert root.after.call_count == 2
        assert binding.is_active

    def test_advance_resets_sheet_data(self, binding, sheet):
        data = sheet.set_sheet_data.call_args.args[0]
        assert len(data) == 100
        assert data[0] == [""] * 10

    def test_stop(self, binding, root):
        binding.stop()
        assert root.after_cancel.call_args_list == [call("after#1"), call("after#1")]
        assert not binding.is_active
        binding._check_visible()
        assert binding.store.diagnostics().tile_requests == 0

    def test_stop_stops_error_reports(self, binding, loop):
        binding.stop()
        with pytest.raises(CellEditError):
            loop.run_until_complete(binding.store.commit_cell_text(0, 0, "abc"))
        binding._on_error.assert_not_called()


class TestVisibleRegion:
    """Tests for loading what the sheet shows."""

    def test_visible_window_loaded_and_painted(self, binding, sheet, loop):
        binding._check_visible()
        finish(binding, loop)

        assert binding.store.get_cell(0, 0) == 7.0
        sheet.set_cell_data.assert_any_call(0, 0, "7", redraw=False)
        sheet.set_cell_data.assert_any_call(1, 0, "2.5", redraw=False)
        sheet.refresh.assert_called()

    def test_unchanged_window_not_requested_again(self, binding, loop):
        binding._check_visible()
        finish(binding, loop)
        misses = binding.store.diagnostics().tile_cache_misses
        binding._check_visible()
        assert binding.store.diagnostics().tile_cache_misses == misses

    def test_not_drawn_yet(self, binding, sheet):
        sheet.visible_rows = None
        assert binding.visible_window() is None

    def test_select_loads_cell_tile(self, binding, sheet, loop):
        sheet.get_currently_selected.return_value = SimpleNamespace(row=90, column=9)
        binding._on_select()
        assert (2, 1) in binding.store.cache.inflight_keys
        finish(binding, loop)
        assert (2, 1) in binding.store.cache.loaded_keys

    def test_pump_runs_loop_and_reschedules(self, binding, root, loop):
        binding._check_visible()
        calls_before = root.after.call_count
        for _ in range(10):
            binding._pump()
        assert binding.store.get_cell(0, 0) == 7.0
        assert root.after.call_count > calls_before
        finish(binding, loop)


class TestEditing:
    """Tests for inline edits and bulk actions."""

    def test_inline_edit_committed(self, binding, sheet, backend, loop):
        event = SimpleNamespace(row=3, column=2, value=" 8 ")
        assert binding._validate_edit(event) == "8"
        finish(binding, loop)
        assert backend.update_calls[0][:3] == (3, 2, 8.0)
        sheet.set_cell_data.assert_any_call(3, 2, "8")

    def test_inline_edit_refused(self, binding, sheet, backend, loop):
        event = SimpleNamespace(row=3, column=2, value="abc")
        binding._validate_edit(event)
        finish(binding, loop)
        assert backend.update_calls == []
        sheet.set_cell_data.assert_any_call(3, 2, "")
        binding._on_error.assert_called_once_with('Invalid number: "abc"')

    def test_edit_event_without_cell(self, binding):
        assert binding._validate_edit(SimpleNamespace(value="1")) is None

    def test_fill_down(self, binding, sheet, backend, loop):
        binding.store.matrix.set(0, 1, 4.0)
        sheet.get_selected_cells.return_value = {(0, 1), (1, 1), (2, 1)}
        binding.fill_down()
        finish(binding, loop)
        assert binding.store.get_cell(2, 1) == 4.0
        assert len(backend.bulk_calls[0]) == 2

    def test_set_state_without_selection(self, binding):
        assert binding.set_state(ScoreState.ZERO) is None

    def test_set_zero(self, binding, sheet, loop):
        sheet.get_selected_cells.return_value = {(5, 5), (5, 6)}
        binding.set_state(ScoreState.ZERO)
        finish(binding, loop)
        assert binding.store.get_cell(5, 6) == 0.0

    def test_paste_key(self, binding, sheet, root, loop):
        root.clipboard_get.return_value = "1\t2\n3\t4"
        sheet.get_selected_cells.return_value = {(10, 3)}
        assert binding._on_paste_key() == "break"
        finish(binding, loop)
        assert binding.store.get_cell(11, 4) == 4.0

    def test_empty_clipboard(self, binding, root):
        root.clipboard_get.side_effect = RuntimeError("CLIPBOARD selection doesn't exist")
        assert binding._on_paste_key() == "break"
        assert binding._tasks == set()
