"""Common backend adapter surface, auth caching and prompt building."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Sequence

from .errors import CallbackError, InvalidRequestError
from .models import Backend, ChatRequest, ChatResult, Message, ModelInfo, ResponseEvent, ResponsesRequest, ResponsesResult

LOG = logging.getLogger(__name__)

DeltaCallback = Callable[[str], Awaitable[None]]
EventCallback = Callable[[ResponseEvent], Awaitable[None]]

_TEXT_PART_TYPES = {"text", "input_text", "output_text"}


async def deliver(callback: Callable[[Any], Awaitable[None]], value: Any) -> None:
    """Invoke a consumer callback, reporting its failure as `CallbackError`."""
    try:
        await callback(value)
    except CallbackError:
        raise
    except Exception as exc:
        raise CallbackError(f"stream consumer failed: {exc}") from exc


class OnceCell:
    """Run an async check at most once and cache its outcome.

    Concurrent first callers wait on the lock; the check runs a single time and
    every caller sees the same success or the same exception afterwards.
    Cancellation is not cached.
    """

    def __init__(self, check: Callable[[], Awaitable[None]]) -> None:
        self._check = check
        self._lock = asyncio.Lock()
        self._done = False
        self._error: Exception | None = None
        self.runs = 0

    async def get(self) -> None:
        if not self._done:
            async with self._lock:
                if not self._done:
                    self.runs += 1
                    try:
                        await self._check()
                    except Exception as exc:
                        self._error = exc
                    self._done = True
        if self._error is not None:
            # Drop frames from earlier raises so the cached error does not grow.
            raise self._error.with_traceback(None)


class Adapter(ABC):
    """Capability surface every backend implements."""

    backend: Backend

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """Return the model ids this backend serves."""

    async def supports_model(self, model: str) -> bool:
        """Return whether `model` is one of this backend's ids."""
        model = model.strip()
        return any(info.id == model for info in await self.list_models())

    @abstractmethod
    async def chat(self, req: ChatRequest) -> ChatResult:
        """Run one non-streaming chat call."""

    @abstractmethod
    async def chat_stream(self, req: ChatRequest, on_delta: DeltaCallback | None) -> ChatResult:
        """Run one chat call and hand text deltas to `on_delta`."""

    @abstractmethod
    async def respond(self, req: ResponsesRequest) -> ResponsesResult:
        """Run one non-streaming responses call."""

    @abstractmethod
    async def respond_stream(self, req: ResponsesRequest, on_delta: DeltaCallback | None) -> ResponsesResult:
        """Run one responses call and hand output text deltas to `on_delta`."""


class ResponsesEventAdapter(ABC):
    """Optional capability: stream typed reasoning/output events."""

    @abstractmethod
    async def respond_stream_events(self, req: ResponsesRequest, on_event: EventCallback | None) -> ResponsesResult:
        """Run one responses call and hand typed events to `on_event`."""


def content_text(content: Any) -> str:
    """Flatten OpenAI message content into plain text.

    Strings pass through; list-shaped content keeps only its text parts.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") in _TEXT_PART_TYPES:
                text = part.get("text")
                if isinstance(text, str):
                    parts.append(text)
        return "\n".join(parts)
    return json.dumps(content, ensure_ascii=False)


def normalize_messages(raw: Any) -> list[Message]:
    """Convert request `messages` into `Message` values."""
    if not isinstance(raw, list) or not raw:
        raise InvalidRequestError("messages must be a non-empty array")
    out: list[Message] = []
    for item in raw:
        if not isinstance(item, dict):
            raise InvalidRequestError("each message must be an object")
        role = item.get("role")
        out.append(Message(role=role if isinstance(role, str) else "", content=content_text(item.get("content"))))
    return out


def build_chat_prompt(messages: Iterable[Message]) -> str:
    """Render chat messages as one `[role] content` line each."""
    lines = []
    for message in messages:
        role = message.role.strip() or "user"
        lines.append(f"[{role}] {message.content}")
    return "\n".join(lines).strip()


def build_responses_prompt(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value, ensure_ascii=False)


def model_infos(ids: Sequence[str], backend: Backend) -> list[ModelInfo]:
    return [ModelInfo(id=model_id, backend=backend) for model_id in ids]
