"""Data service client over a sidecar process's stdio.

The sidecar reads one JSON request per line:
    {"id": "7", "method": "grid.get", "params": {...}}
and answers with one JSON response per line:
    {"id": "7", "ok": true, "result": {...}}
    {"id": "7", "ok": false, "error": {"code": ..., "message": ..., "details": ...}}

Responses are matched by id, so several requests can be in flight at once.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import TYPE_CHECKING, Any

from ..debug_trace import logger
from ..errors import BackendError
from .backend import BulkRejection, BulkUpdateResult, GridBackend, GridDims, GridRect

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..models.constants import EditKind
    from ..models.pending_edit import PendingEdit


class SidecarClient:
    """Line-delimited JSON request/response client.

    Usage:
        client = await SidecarClient.spawn("markbookd")
        result = await client.request("grid.get", {...})
        await client.close()
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        process: asyncio.subprocess.Process | None = None,
    ):
        self._reader = reader
        self._writer = writer
        self._process = process
        self._ids = itertools.count(1)
        self._pending: dict[str, asyncio.Future] = {}
        self._reader_task: asyncio.Task | None = None
        self._closed = False

    @classmethod
    async def spawn(cls, program: str, *args: str) -> SidecarClient:
        """Start the sidecar process and connect to its stdio."""
        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise BackendError("transport", f"Could not start sidecar: {e}") from e
        logger.info(f"Started sidecar {program} (pid {process.pid})")
        return cls(process.stdout, process.stdin, process)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_reader(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send one request and wait for its response.

        Returns:
            The response's "result" payload

        Raises:
            BackendError: Error response, or the connection is closed
        """
        if self._closed:
            raise BackendError("transport", "sidecar is not running")
        self._ensure_reader()

        request_id = str(next(self._ids))
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        payload = json.dumps({"id": request_id, "method": method, "params": params or {}})
        try:
            self._writer.write((payload + "\n").encode("utf-8"))
            await self._writer.drain()
        except (OSError, RuntimeError) as e:
            self._pending.pop(request_id, None)
            raise BackendError("transport", f"Could not send {method}: {e}") from e

        try:
            response = await future
        finally:
            self._pending.pop(request_id, None)

        if response.get("ok"):
            return response.get("result")

        error = response.get("error") or {}
        raise BackendError(
            str(error.get("code", "unknown")),
            str(error.get("message", f"{method} failed")),
            error.get("details"),
        )

    async def _read_loop(self) -> None:
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring malformed sidecar line: {text[:120]}")
                    continue
                if not isinstance(message, dict):
                    continue
                future = self._pending.get(str(message.get("id")))
                if future is None:
                    logger.debug(f"Ignoring unmatched sidecar response: {text[:120]}")
                    continue
                if not future.done():
                    future.set_result(message)
        finally:
            self._closed = True
            self._fail_pending("sidecar closed the connection")

    def _fail_pending(self, message: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(BackendError("transport", message))
        self._pending.clear()

    async def close(self) -> None:
        """Close stdin, stop the reader and wait for the process to exit."""
        if self._closed and self._reader_task is None:
            return
        self._closed = True
        try:
            self._writer.close()
        except (OSError, RuntimeError):
            pass  # Already gone
        if self._reader_task is not None:
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
            self._reader_task = None
        self._fail_pending("sidecar closed")
        if self._process is not None:
            await self._process.wait()


class SidecarGridBackend(GridBackend):
    """GridBackend speaking the sidecar's grid.* and markset.open methods."""

    def __init__(self, client: SidecarClient):
        self._client = client

    async def open_mark_set(self, class_id: str, mark_set_id: str) -> GridDims:
        result = await self._client.request(
            "markset.open", {"classId": class_id, "markSetId": mark_set_id}
        )
        return GridDims(
            row_count=_int_field(result, "rowCount"),
            col_count=_int_field(result, "colCount"),
        )

    async def get(
        self,
        class_id: str,
        mark_set_id: str,
        row_start: int,
        row_count: int,
        col_start: int,
        col_count: int,
    ) -> GridRect:
        result = await self._client.request(
            "grid.get",
            {
                "classId": class_id,
                "markSetId": mark_set_id,
                "rowStart": row_start,
                "rowCount": row_count,
                "colStart": col_start,
                "colCount": col_count,
            },
        )
        cells = result.get("cells") if isinstance(result, dict) else None
        if not isinstance(cells, list):
            raise BackendError("bad_response", "grid.get returned no cells")
        return GridRect(
            row_start=_int_field(result, "rowStart", row_start),
            row_count=_int_field(result, "rowCount", len(cells)),
            col_start=_int_field(result, "colStart", col_start),
            col_count=_int_field(result, "colCount", len(cells[0]) if cells else 0),
            cells=[[_cell(v) for v in row] if isinstance(row, list) else [] for row in cells],
        )

    async def update_cell(
        self,
        class_id: str,
        mark_set_id: str,
        row: int,
        col: int,
        value: float | None,
        edit_kind: EditKind,
    ) -> None:
        await self._client.request(
            "grid.updateCell",
            {
                "classId": class_id,
                "markSetId": mark_set_id,
                "row": row,
                "col": col,
                "value": value,
                "editKind": edit_kind.value,
            },
        )

    async def bulk_update(
        self,
        class_id: str,
        mark_set_id: str,
        edits: Sequence[PendingEdit],
    ) -> BulkUpdateResult:
        result = await self._client.request(
            "grid.bulkUpdate",
            {
                "classId": class_id,
                "markSetId": mark_set_id,
                "edits": [edit.to_params() for edit in edits],
            },
        )
        if not isinstance(result, dict):
            raise BackendError("bad_response", "grid.bulkUpdate returned no result")

        errors = [
            BulkRejection(
                row=int(err.get("row", -1)),
                col=int(err.get("col", -1)),
                message=str(err.get("message", "")),
                code=str(err.get("code", "bad_params")),
            )
            for err in result.get("errors") or []
            if isinstance(err, dict)
        ]
        return BulkUpdateResult(
            updated=_int_field(result, "updated", 0),
            rejected=_int_field(result, "rejected", len(errors)),
            errors=errors,
            limit_exceeded=bool(result.get("limitExceeded", False)),
        )


def _int_field(result: Any, name: str, default: int | None = None) -> int:
    value = result.get(name, default) if isinstance(result, dict) else default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise BackendError("bad_response", f"missing/invalid {name} in response")
    return int(value)


def _cell(value: Any) -> float | None:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)
