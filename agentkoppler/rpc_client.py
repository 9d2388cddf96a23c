"""JSON-RPC client for backends that run as a long-lived stdio server."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

from .errors import ProtocolError, StreamEndedError
from .json_helpers import to_bounded_json
from .process_transport import DEFAULT_QUEUE_SIZE, ProcessTransport

LOG = logging.getLogger(__name__)

CLIENT_NAME = "agentkoppler"
CLIENT_VERSION = "0.1.0"

NotificationObserver = Callable[[dict[str, Any]], Awaitable[None]]


class RPCClient:
    """Correlate JSON-RPC requests and responses over one `ProcessTransport`.

    Only one call may be in flight per client. All reads go through a single
    queue, so a second concurrent `call()` would steal the first call's
    response; it is rejected with RuntimeError instead.
    """

    def __init__(self, transport: ProcessTransport, *, label: str = "rpc") -> None:
        self.transport = transport
        self.label = label
        self._next_id = 0
        self._pending_id: str | None = None

    @classmethod
    async def spawn(
        cls,
        argv: Sequence[str],
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        label: str = "rpc",
    ) -> "RPCClient":
        """Start a backend process and return a client bound to it."""
        transport = ProcessTransport(argv, queue_size=queue_size)
        await transport.start()
        return cls(transport, label=label)

    async def __aenter__(self) -> "RPCClient":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    @staticmethod
    def _normalize_id(value: Any) -> str | None:
        if value is None or isinstance(value, (bool, dict, list)):
            return None
        return str(value)

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        on_notify: NotificationObserver | None = None,
    ) -> Any:
        """Send one request and block until its response arrives.

        Messages without an id, and server-initiated requests carrying a
        method, are passed to `on_notify` in arrival order while waiting.
        """
        if self._pending_id is not None:
            raise RuntimeError(f"{self.label}: call {self._pending_id} still in flight; calls cannot be pipelined")

        self._next_id += 1
        req_id = str(self._next_id)
        self._pending_id = req_id
        try:
            LOG.debug("%s request id=%s method=%s params=%s", self.label, req_id, method, to_bounded_json(params))
            await self.transport.send({"jsonrpc": "2.0", "id": req_id, "method": method, "params": params or {}})

            while True:
                msg = await self.transport.receive()
                if msg is None:
                    break
                msg_id = self._normalize_id(msg.get("id"))
                msg_method = msg.get("method")

                if msg_id is None:
                    if on_notify is not None:
                        await on_notify(msg)
                    continue

                if msg_id != req_id or msg_method:
                    if on_notify is not None and msg_method:
                        await on_notify(msg)
                    else:
                        LOG.debug("%s skipping uncorrelated message id=%s", self.label, msg_id)
                    continue

                error = msg.get("error")
                if error is not None:
                    raise _protocol_error(self.label, method, error)
                result = msg.get("result")
                return {} if result is None else result
        finally:
            self._pending_id = None

        stderr = await self.transport.final_stderr_text() or f"unknown {self.label} failure"
        raise StreamEndedError(f"{self.label} stream ended: {stderr}", stderr=stderr)

    async def initialize(self) -> dict[str, Any]:
        """Exchange client info and capabilities with the server."""
        result = await self.call(
            "initialize",
            {
                "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
                "capabilities": {"experimentalApi": True},
            },
        )
        if not isinstance(result, dict):
            raise ProtocolError(f"{self.label} returned malformed initialize result: {to_bounded_json(result, 300)}")
        return result

    def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Messages still queued or arriving after the last call returned."""
        return self.transport.messages()

    async def close(self) -> None:
        """Terminate the backend process."""
        await self.transport.close()


def _protocol_error(label: str, method: str, error: Any) -> ProtocolError:
    """Build a ProtocolError from a JSON-RPC error object."""
    if isinstance(error, dict):
        code = error.get("code")
        message = str(error.get("message") or to_bounded_json(error, 300))
        code = code if isinstance(code, int) and not isinstance(code, bool) else None
    else:
        code = None
        message = to_bounded_json(error, 300)
    return ProtocolError(f"{label} RPC error on {method}: ({code}) {message}", code=code)
