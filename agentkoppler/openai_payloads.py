"""Builders for OpenAI-compatible response payloads."""

from __future__ import annotations

import time
import uuid
from typing import Any, Iterable

from .models import ModelInfo


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def unix_now() -> int:
    return int(time.time())


def client_chunk(
    *,
    completion_id: str,
    model: str,
    created: int,
    delta: dict[str, Any],
    finish_reason: str | None = None,
) -> dict[str, Any]:
    """Build a canonical `chat.completion.chunk` payload for clients."""
    return {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def chat_completion(*, model: str, content: str, usage: dict[str, int] | None = None) -> dict[str, Any]:
    """Build a non-streaming `chat.completion` payload."""
    payload: dict[str, Any] = {
        "id": new_id("chatcmpl"),
        "object": "chat.completion",
        "created": unix_now(),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }
    if usage is not None:
        payload["usage"] = usage
    return payload


def reasoning_item(item_id: str, text: str, *, status: str = "completed") -> dict[str, Any]:
    summary = [{"type": "summary_text", "text": text}] if status == "completed" else []
    return {"id": item_id, "type": "reasoning", "status": status, "summary": summary}


def message_item(item_id: str, text: str, *, status: str = "completed") -> dict[str, Any]:
    return {
        "id": item_id,
        "type": "message",
        "role": "assistant",
        "status": status,
        "content": [{"type": "output_text", "text": text}],
    }


def response_object(
    *,
    response_id: str,
    model: str,
    created_at: int,
    status: str,
    output: list[dict[str, Any]],
) -> dict[str, Any]:
    return {
        "id": response_id,
        "object": "response",
        "created_at": created_at,
        "model": model,
        "status": status,
        "output": output,
    }


def response_completed(*, model: str, text: str, reasoning: str = "") -> dict[str, Any]:
    """Build a non-streaming `response` object.

    A reasoning item precedes the message item only when reasoning text exists.
    """
    output: list[dict[str, Any]] = []
    if reasoning.strip():
        output.append(reasoning_item(new_id("rs"), reasoning.strip()))
    output.append(message_item(new_id("msg"), text))
    return response_object(
        response_id=new_id("resp"),
        model=model,
        created_at=unix_now(),
        status="completed",
        output=output,
    )


def model_list(models: Iterable[ModelInfo]) -> dict[str, Any]:
    return {
        "object": "list",
        "data": [{"id": info.id, "object": "model", "owned_by": info.backend} for info in models],
    }


def build_openai_error_payload(message: str, *, error_type: str, code: str | None = None) -> dict[str, Any]:
    """Build OpenAI-style error response payload."""
    return {
        "error": {
            "message": message,
            "type": error_type,
            "code": code or error_type,
        }
    }
