"""SSE response plumbing shared by the streaming endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import AsyncGenerator

from fastapi import Request
from fastapi.responses import StreamingResponse

from .sse_emitter import sse_comment

LOG = logging.getLogger(__name__)

_DISCONNECT_POLL_SECONDS = 0.5


def build_sse_response(stream: AsyncGenerator[bytes, None]) -> StreamingResponse:
    """Build standard SSE response with consistent proxy-safe headers."""
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


async def stream_with_keepalive(
    source: AsyncGenerator[bytes, None],
    *,
    keepalive_seconds: float,
    request: Request | None = None,
) -> AsyncGenerator[bytes, None]:
    """Forward `source` and emit `: keepalive` comments while it is silent.

    Stops early once the client is gone. `source` is always closed, which
    cancels whatever backend call feeds it.
    """
    interval = keepalive_seconds if keepalive_seconds > 0 else None
    started = time.monotonic()
    pending: asyncio.Future[bytes] | None = None
    try:
        while True:
            if pending is None:
                pending = asyncio.ensure_future(source.__anext__())
            done, _ = await asyncio.wait({pending}, timeout=interval or _DISCONNECT_POLL_SECONDS)
            if not done:
                if request is not None and await request.is_disconnected():
                    LOG.debug("client disconnected, stopping stream elapsed=%.3fs", time.monotonic() - started)
                    return
                if interval is not None:
                    yield sse_comment("keepalive")
                continue
            finished, pending = pending, None
            try:
                chunk = finished.result()
            except StopAsyncIteration:
                return
            yield chunk
    finally:
        if pending is not None and not pending.done():
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                await pending
        await source.aclose()
        LOG.debug("stream closed elapsed=%.3fs", time.monotonic() - started)
