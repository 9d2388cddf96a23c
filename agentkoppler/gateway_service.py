"""Gateway service runtime: request validation, routing and stream bridging."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, AsyncGenerator, Awaitable, Callable

from .adapters import ResponsesEventAdapter, normalize_messages
from .claude_adapter import ClaudeAdapter
from .codex_adapter import CodexAdapter
from .config import GatewayConfig
from .errors import GatewayError, InvalidRequestError, NotImplementedCapability
from .json_helpers import to_bounded_json
from .models import REASONING, ChatRequest, ResponseEvent, ResponsesRequest
from .observation import (
    LoggingObservationSink,
    ObservationSink,
    estimate_input_tokens,
    estimate_messages_tokens,
    estimate_text_tokens,
    usage_payload,
)
from .openai_payloads import chat_completion, model_list, response_completed
from .router import Router
from .sse_emitter import SSE_DONE, ChatStreamEmitter, ResponsesStreamEmitter, sse_data

LOG = logging.getLogger(__name__)

Push = Callable[[bytes], Awaitable[None]]
Producer = Callable[[Push], Awaitable[None]]


def build_router(cfg: GatewayConfig) -> Router:
    """Create the claude-then-codex router for one configuration."""
    return Router([ClaudeAdapter(cfg), CodexAdapter(cfg)])


def _require_model(payload: dict[str, Any]) -> str:
    model = payload.get("model")
    if not isinstance(model, str) or not model.strip():
        raise InvalidRequestError("model is required")
    return model.strip()


def _stream_flag(payload: dict[str, Any]) -> bool:
    value = payload.get("stream")
    if value is None:
        return False
    if not isinstance(value, bool):
        raise InvalidRequestError("stream must be a boolean")
    return value


async def stream_from_callbacks(produce: Producer, *, queue_size: int) -> AsyncGenerator[bytes, None]:
    """Run a callback-driven producer in a task and yield what it pushes.

    Frames travel through a bounded queue, so a slow client also slows the
    producer down. Closing the generator cancels the producer task.
    """
    queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max(1, queue_size))
    task = asyncio.create_task(produce(queue.put))
    try:
        while not (task.done() and queue.empty()):
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
                continue
            getter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await getter
        task.result()
    finally:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


class GatewayService:
    """Runtime container for the router and per-request orchestration."""

    def __init__(
        self,
        cfg: GatewayConfig,
        *,
        router: Router | None = None,
        sink: ObservationSink | None = None,
    ) -> None:
        self.cfg = cfg
        self.router = router or build_router(cfg)
        self.sink = sink or LoggingObservationSink()

    async def reload(self, new_cfg: GatewayConfig) -> None:
        """Swap in a new config and freshly built adapters.

        Requests already running keep the adapters they resolved.
        """
        self.cfg = new_cfg
        self.router = build_router(new_cfg)

    @property
    def _queue_size(self) -> int:
        return self.cfg.rpc_queue_size or 256

    async def list_models(self) -> dict[str, Any]:
        return model_list(await self.router.list_models())

    def parse_chat_request(self, payload: dict[str, Any]) -> ChatRequest:
        """Validate a chat payload and report its model to the sink."""
        model = _require_model(payload)
        self.sink.observe_model(model)
        if not payload.get("messages"):
            raise InvalidRequestError("messages are required")
        return ChatRequest(
            model=model,
            messages=normalize_messages(payload.get("messages")),
            stream=_stream_flag(payload),
        )

    def parse_responses_request(self, payload: dict[str, Any]) -> ResponsesRequest:
        model = _require_model(payload)
        self.sink.observe_model(model)
        if payload.get("previous_response_id"):
            raise NotImplementedCapability("previous_response_id is not supported: responses are not stored")
        return ResponsesRequest(model=model, input=payload.get("input"), stream=_stream_flag(payload))

    async def chat(self, req: ChatRequest) -> dict[str, Any]:
        """Run one non-streaming chat completion."""
        adapter = await self.router.adapter_for_model(req.model)
        started = time.monotonic()
        result = await adapter.chat(req)
        text = result.text.strip()
        prompt_tokens = estimate_messages_tokens(req.messages)
        completion_tokens = estimate_text_tokens(text)
        self.sink.observe_token_usage(prompt_tokens, completion_tokens)
        LOG.info(
            "chat completed model=%s backend=%s elapsed=%.3fs",
            req.model,
            adapter.backend,
            time.monotonic() - started,
        )
        return chat_completion(model=req.model, content=text, usage=usage_payload(prompt_tokens, completion_tokens))

    async def respond(self, req: ResponsesRequest) -> dict[str, Any]:
        """Run one non-streaming responses call."""
        adapter = await self.router.adapter_for_model(req.model)
        started = time.monotonic()
        result = await adapter.respond(req)
        self.sink.observe_token_usage(
            estimate_input_tokens(req.input),
            estimate_text_tokens(result.text) + estimate_text_tokens(result.reasoning),
        )
        LOG.info(
            "response completed model=%s backend=%s elapsed=%.3fs",
            req.model,
            adapter.backend,
            time.monotonic() - started,
        )
        return response_completed(model=req.model, text=result.text, reasoning=result.reasoning)

    async def open_chat_stream(self, req: ChatRequest) -> AsyncGenerator[bytes, None]:
        """Resolve the adapter, then return the SSE byte stream for a chat call.

        Routing failures raise here, before any byte is streamed.
        """
        adapter = await self.router.adapter_for_model(req.model)
        emitter = ChatStreamEmitter(req.model)
        prompt_tokens = estimate_messages_tokens(req.messages)

        async def produce(push: Push) -> None:
            await push(sse_data(emitter.role_chunk()))

            async def on_delta(delta: str) -> None:
                chunk = emitter.content_chunk(delta)
                if chunk is not None:
                    await push(sse_data(chunk))

            try:
                await adapter.chat_stream(req, on_delta)
            except GatewayError as exc:
                LOG.warning("streamed chat failed model=%s error=%s", req.model, exc)
                await push(sse_data(emitter.error(str(exc), error_type=exc.error_type)))
                await push(SSE_DONE)
                return
            except Exception as exc:
                LOG.exception("streamed chat crashed model=%s", req.model)
                await push(sse_data(emitter.error(str(exc), error_type="internal_error")))
                await push(SSE_DONE)
                return

            self.sink.observe_token_usage(prompt_tokens, estimate_text_tokens(emitter.text))
            await push(sse_data(emitter.finish_chunk()))
            await push(SSE_DONE)

        return stream_from_callbacks(produce, queue_size=self._queue_size)

    async def open_response_stream(self, req: ResponsesRequest) -> AsyncGenerator[bytes, None]:
        """Resolve the adapter, then return the SSE byte stream for a responses call."""
        adapter = await self.router.adapter_for_model(req.model)
        emitter = ResponsesStreamEmitter(req.model)
        prompt_tokens = estimate_input_tokens(req.input)
        LOG.debug("responses stream model=%s input=%s", req.model, to_bounded_json(req.input, 500))

        async def produce(push: Push) -> None:
            async def push_events(events: list[dict[str, Any]]) -> None:
                for event in events:
                    await push(sse_data(event))

            async def on_event(event: ResponseEvent) -> None:
                if event.kind == REASONING:
                    await push_events(emitter.reasoning_delta(event.delta))
                else:
                    await push_events(emitter.output_delta(event.delta))

            async def on_delta(delta: str) -> None:
                await push_events(emitter.output_delta(delta))

            await push(sse_data(emitter.created()))
            try:
                if isinstance(adapter, ResponsesEventAdapter):
                    await adapter.respond_stream_events(req, on_event)
                else:
                    await adapter.respond_stream(req, on_delta)
            except GatewayError as exc:
                LOG.warning("streamed response failed model=%s error=%s", req.model, exc)
                await push(sse_data(emitter.error(str(exc), error_type=exc.error_type)))
                await push(SSE_DONE)
                return
            except Exception as exc:
                LOG.exception("streamed response crashed model=%s", req.model)
                await push(sse_data(emitter.error(str(exc), error_type="internal_error")))
                await push(SSE_DONE)
                return

            self.sink.observe_token_usage(
                prompt_tokens,
                estimate_text_tokens(emitter.output_text) + estimate_text_tokens(emitter.reasoning_text),
            )
            await push_events(emitter.complete())
            await push(SSE_DONE)

        return stream_from_callbacks(produce, queue_size=self._queue_size)
