"""Per-request observation hooks and rough token estimates."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable

from .models import Message

LOG = logging.getLogger(__name__)


class ObservationSink(ABC):
    """Receives the model id and estimated token usage of each request."""

    @abstractmethod
    def observe_model(self, model: str) -> None: ...

    @abstractmethod
    def observe_token_usage(self, prompt_tokens: int, completion_tokens: int) -> None: ...


class LoggingObservationSink(ObservationSink):
    def observe_model(self, model: str) -> None:
        LOG.debug("request model=%s", model)

    def observe_token_usage(self, prompt_tokens: int, completion_tokens: int) -> None:
        LOG.debug("token usage estimate prompt=%s completion=%s", prompt_tokens, completion_tokens)


def estimate_text_tokens(text: str) -> int:
    """Approximate tokens as one per four characters of trimmed text."""
    text = text.strip()
    if not text:
        return 0
    return max(1, (len(text) + 3) // 4)


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    return sum(estimate_text_tokens(m.role) + estimate_text_tokens(m.content) for m in messages)


def estimate_input_tokens(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return estimate_text_tokens(value)
    return estimate_text_tokens(json.dumps(value, ensure_ascii=False))


def usage_payload(prompt_tokens: int, completion_tokens: int) -> dict[str, int]:
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
    }
