"""Newline-delimited JSON transport over a backend subprocess' stdio pipes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, AsyncIterator, Sequence

from .errors import TransportError
from .json_helpers import parse_json_object, to_bounded_json

LOG = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256
STREAM_LINE_LIMIT = 1024 * 1024
_STDERR_TAIL_BYTES = 64 * 1024
_CLOSED = object()


class ProcessTransport:
    """Own one subprocess and exchange JSON objects with it line by line.

    A background reader task parses stdout and feeds a bounded queue. When the
    queue is full the reader stops reading and the OS pipe buffer fills up, so
    a slow consumer throttles the backend; nothing else is done about it.
    The queue is closed (a marker is enqueued) once stdout reaches EOF.
    """

    def __init__(self, argv: Sequence[str], *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        if not argv:
            raise ValueError("argv must not be empty")
        self.argv = list(argv)
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, queue_size))
        self._proc: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr = bytearray()
        self._eof = False
        self._closed = False

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    async def start(self) -> None:
        """Spawn the subprocess and start the stdout/stderr reader tasks."""
        if self._proc is not None:
            return
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LINE_LIMIT,
            )
        except OSError as exc:
            raise TransportError(f"failed to start {self.argv[0]}: {exc}") from exc
        LOG.debug("backend process started pid=%s argv=%s", self._proc.pid, to_bounded_json(self.argv))
        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())

    async def send(self, payload: dict[str, Any]) -> None:
        """Write one JSON object as a single line and drain the pipe."""
        if self._proc is None or self._proc.stdin is None:
            raise TransportError("backend process is not running")
        line = json.dumps(payload, ensure_ascii=False).encode("utf-8") + b"\n"
        try:
            self._proc.stdin.write(line)
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as exc:
            raise TransportError(f"failed writing to {self.argv[0]}: {exc}") from exc

    async def receive(self) -> dict[str, Any] | None:
        """Return the next parsed message, or None once stdout is closed."""
        if self._eof:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._eof = True
            return None
        return item

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Iterate over the remaining messages until stdout closes."""
        while True:
            msg = await self.receive()
            if msg is None:
                return
            yield msg

    def stderr_text(self) -> str:
        """Return the captured tail of the subprocess' stderr."""
        return self._stderr.decode("utf-8", errors="replace").strip()

    async def final_stderr_text(self, timeout: float = 1.0) -> str:
        """Wait briefly for stderr to reach EOF, then return its tail."""
        task = self._stderr_task
        if task is not None and not task.done():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self.stderr_text()

    async def _read_stdout(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        stdout = self._proc.stdout
        try:
            while True:
                try:
                    line = await stdout.readline()
                except ValueError:
                    # Line longer than STREAM_LINE_LIMIT; asyncio already dropped it.
                    LOG.debug("dropping overlong line from pid=%s", self.pid)
                    continue
                if not line:
                    break
                msg = parse_json_object(line)
                if msg is None:
                    LOG.debug("dropping non-JSON line from pid=%s: %r", self.pid, line[:200])
                    continue
                await self._queue.put(msg)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOG.exception("stdout reader crashed pid=%s", self.pid)
        await self._queue.put(_CLOSED)

    async def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        while True:
            chunk = await self._proc.stderr.read(4096)
            if not chunk:
                return
            self._stderr.extend(chunk)
            if len(self._stderr) > _STDERR_TAIL_BYTES:
                del self._stderr[: len(self._stderr) - _STDERR_TAIL_BYTES]

    async def close(self) -> None:
        """Flush stdin, kill the subprocess and wait for it; safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        proc = self._proc
        if proc is not None:
            if proc.stdin is not None:
                with contextlib.suppress(Exception):
                    await proc.stdin.drain()
                proc.stdin.close()
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
            await proc.wait()
            LOG.debug("backend process exited pid=%s return_code=%s", proc.pid, proc.returncode)
        for task in (self._reader_task, self._stderr_task):
            if task is None or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
