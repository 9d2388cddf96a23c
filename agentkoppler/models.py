"""Value types exchanged between the HTTP layer, router and backend adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Backend = Literal["claude", "codex"]
ResponseEventKind = Literal["reasoning", "output"]

REASONING: ResponseEventKind = "reasoning"
OUTPUT: ResponseEventKind = "output"


@dataclass(frozen=True)
class ModelInfo:
    """One model id served by a backend."""

    id: str
    backend: Backend


@dataclass(frozen=True)
class Message:
    """One chat message after content flattening."""

    role: str
    content: str


@dataclass
class ChatRequest:
    """Normalized `/v1/chat/completions` request."""

    model: str
    messages: list[Message] = field(default_factory=list)
    stream: bool = False


@dataclass
class ChatResult:
    """Final text of one chat call."""

    model: str
    text: str


@dataclass
class ResponsesRequest:
    """Normalized `/v1/responses` request; `input` is passed through untouched."""

    model: str
    input: Any = None
    stream: bool = False


@dataclass
class ResponsesResult:
    """Final output and reasoning text of one responses call."""

    model: str
    text: str
    reasoning: str = ""


@dataclass(frozen=True)
class ResponseEvent:
    """One typed delta emitted by an adapter towards the SSE emitter."""

    kind: ResponseEventKind
    delta: str
