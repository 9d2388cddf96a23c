"""Re-encode adapter deltas as OpenAI streaming events."""

from __future__ import annotations

import json
from typing import Any

from .openai_payloads import client_chunk, message_item, new_id, reasoning_item, response_object, unix_now

SSE_DONE = b"data: [DONE]\n\n"


def sse_data(payload: dict[str, Any]) -> bytes:
    """Encode one SSE `data:` event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def sse_comment(text: str) -> bytes:
    """Encode one SSE comment/heartbeat event."""
    return f": {text}\n\n".encode("utf-8")


class ResponsesStreamEmitter:
    """Build the `/v1/responses` event sequence for one streamed response.

    There are at most two output items, a reasoning item and a message item,
    each created lazily on its first delta. Items get `output_index` values in
    order of first appearance, and an index never changes once emitted, so a
    late reasoning item lands after an already started message. Reasoning is
    therefore not always at index 0: when the message started first, the
    message keeps index 0 and reasoning gets 1. Clients should match events
    by `item_id` and read `output_index` as given. Every event carries a
    `sequence_number` counting up from 1.
    """

    def __init__(self, model: str, *, response_id: str | None = None, created_at: int | None = None) -> None:
        self.model = model
        self.response_id = response_id or new_id("resp")
        self.created_at = created_at if created_at is not None else unix_now()
        self.reasoning_item_id = new_id("rs")
        self.message_item_id = new_id("msg")
        self.reasoning_index: int | None = None
        self.message_index: int | None = None
        self._next_index = 0
        self._seq = 0
        self._reasoning: list[str] = []
        self._output: list[str] = []

    @property
    def reasoning_text(self) -> str:
        return "".join(self._reasoning)

    @property
    def output_text(self) -> str:
        return "".join(self._output)

    def _event(self, event_type: str, **fields: Any) -> dict[str, Any]:
        self._seq += 1
        return {"type": event_type, "sequence_number": self._seq, **fields}

    def _allocate_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    def _response(self, status: str, output: list[dict[str, Any]]) -> dict[str, Any]:
        return response_object(
            response_id=self.response_id,
            model=self.model,
            created_at=self.created_at,
            status=status,
            output=output,
        )

    def created(self) -> dict[str, Any]:
        return self._event("response.created", response=self._response("in_progress", []))

    def _start_reasoning(self) -> list[dict[str, Any]]:
        if self.reasoning_index is not None:
            return []
        self.reasoning_index = self._allocate_index()
        return [
            self._event(
                "response.output_item.added",
                output_index=self.reasoning_index,
                item=reasoning_item(self.reasoning_item_id, "", status="in_progress"),
            ),
            self._event(
                "response.reasoning_summary_part.added",
                item_id=self.reasoning_item_id,
                output_index=self.reasoning_index,
                summary_index=0,
                part={"type": "summary_text", "text": ""},
            ),
        ]

    def _start_message(self) -> list[dict[str, Any]]:
        if self.message_index is not None:
            return []
        self.message_index = self._allocate_index()
        return [
            self._event(
                "response.output_item.added",
                output_index=self.message_index,
                item=message_item(self.message_item_id, "", status="in_progress"),
            )
        ]

    def reasoning_delta(self, delta: str) -> list[dict[str, Any]]:
        if not delta:
            return []
        events = self._start_reasoning()
        self._reasoning.append(delta)
        events.append(
            self._event(
                "response.reasoning_summary_text.delta",
                item_id=self.reasoning_item_id,
                output_index=self.reasoning_index,
                summary_index=0,
                delta=delta,
            )
        )
        events.append(
            self._event(
                "response.reasoning_text.delta",
                item_id=self.reasoning_item_id,
                output_index=self.reasoning_index,
                content_index=0,
                delta=delta,
            )
        )
        return events

    def output_delta(self, delta: str) -> list[dict[str, Any]]:
        if not delta:
            return []
        events = self._start_message()
        self._output.append(delta)
        events.append(
            self._event(
                "response.output_text.delta",
                item_id=self.message_item_id,
                output_index=self.message_index,
                content_index=0,
                delta=delta,
                logprobs=[],
            )
        )
        return events

    def complete(self) -> list[dict[str, Any]]:
        """Close all items and emit `response.completed`."""
        events = self._start_message()
        items: list[tuple[int, dict[str, Any]]] = []

        if self.reasoning_index is not None:
            reasoning = self.reasoning_text
            done_item = reasoning_item(self.reasoning_item_id, reasoning)
            events.append(
                self._event(
                    "response.reasoning_summary_text.done",
                    item_id=self.reasoning_item_id,
                    output_index=self.reasoning_index,
                    summary_index=0,
                    text=reasoning,
                )
            )
            events.append(
                self._event(
                    "response.reasoning_summary_part.done",
                    item_id=self.reasoning_item_id,
                    output_index=self.reasoning_index,
                    summary_index=0,
                    part={"type": "summary_text", "text": reasoning},
                )
            )
            events.append(
                self._event(
                    "response.reasoning_text.done",
                    item_id=self.reasoning_item_id,
                    output_index=self.reasoning_index,
                    content_index=0,
                    text=reasoning,
                )
            )
            events.append(self._event("response.output_item.done", output_index=self.reasoning_index, item=done_item))
            items.append((self.reasoning_index, done_item))

        output = self.output_text
        done_message = message_item(self.message_item_id, output)
        events.append(
            self._event(
                "response.output_text.done",
                item_id=self.message_item_id,
                output_index=self.message_index,
                content_index=0,
                text=output,
                logprobs=[],
            )
        )
        events.append(self._event("response.output_item.done", output_index=self.message_index, item=done_message))
        items.append((self.message_index, done_message))

        items.sort(key=lambda pair: pair[0])
        events.append(self._event("response.completed", response=self._response("completed", [item for _, item in items])))
        return events

    def error(self, message: str, *, error_type: str = "upstream_error") -> dict[str, Any]:
        return self._event("error", error={"type": error_type, "message": message})


class ChatStreamEmitter:
    """Build `chat.completion.chunk` payloads for one streamed completion."""

    def __init__(self, model: str, *, completion_id: str | None = None, created: int | None = None) -> None:
        self.model = model
        self.completion_id = completion_id or new_id("chatcmpl")
        self.created = created if created is not None else unix_now()
        self._parts: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def _chunk(self, delta: dict[str, Any], finish_reason: str | None = None) -> dict[str, Any]:
        return client_chunk(
            completion_id=self.completion_id,
            model=self.model,
            created=self.created,
            delta=delta,
            finish_reason=finish_reason,
        )

    def role_chunk(self) -> dict[str, Any]:
        return self._chunk({"role": "assistant"})

    def content_chunk(self, delta: str) -> dict[str, Any] | None:
        """Whitespace-only deltas are content too; only empty ones are dropped."""
        if not delta:
            return None
        self._parts.append(delta)
        return self._chunk({"content": delta})

    def finish_chunk(self) -> dict[str, Any]:
        return self._chunk({}, finish_reason="stop")

    def error(self, message: str, *, error_type: str = "upstream_error") -> dict[str, Any]:
        return {"id": self.completion_id, "object": "error", "error": {"type": error_type, "message": message}}
