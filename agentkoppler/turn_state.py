"""Per-turn accumulation of codex app-server notifications.

A codex turn reports its progress as a stream of notifications. Reasoning
summaries arrive as explicit deltas; the assistant's text arrives as one or
more agent messages. Some models narrate their progress as a series of
provisional agent messages before the real answer, so every completed agent
message except the last one is treated as reasoning. Nothing in the protocol
marks which message is final; this is a best-effort heuristic.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from .adapters import EventCallback, deliver
from .errors import ProtocolError, TurnTimeoutError, UpstreamEmptyOutput
from .json_helpers import string_value
from .models import OUTPUT, REASONING, ResponseEvent, ResponseEventKind

LOG = logging.getLogger(__name__)

TURN_COMPLETED = "turn/completed"
REASONING_SUMMARY_DELTA = "item/reasoning/summaryTextDelta"
AGENT_MESSAGE_DELTA = "item/agentMessage/delta"
ITEM_STARTED = "item/started"
ITEM_COMPLETED = "item/completed"
TASK_COMPLETE = "codex/event/task_complete"
ERROR_METHODS = frozenset({"error", "codex/event/error"})

_AGENT_MESSAGE_ITEM = "agentmessage"


@dataclass(frozen=True)
class TurnResult:
    """Output and reasoning text derived from one finished turn."""

    output: str
    reasoning: str


@dataclass
class TurnState:
    """Text buffers of one in-flight turn.

    `agent_messages` and `reasoning_parts` only ever grow during a turn; at
    most one agent message is open at a time.
    """

    current_agent: list[str] = field(default_factory=list)
    agent_messages: list[str] = field(default_factory=list)
    reasoning_parts: list[str] = field(default_factory=list)
    in_agent_message: bool = False

    def append_reasoning(self, delta: str) -> None:
        if delta:
            self.reasoning_parts.append(delta)

    def append_agent_delta(self, delta: str) -> None:
        self.in_agent_message = True
        self.current_agent.append(delta)

    def begin_agent_message(self) -> None:
        # An item that never got its own completion notice is closed here.
        if self.current_agent:
            self.complete_agent_message()
        self.in_agent_message = True

    def complete_agent_message(self) -> None:
        text = "".join(self.current_agent).strip()
        if text:
            self.agent_messages.append(text)
        self.current_agent.clear()
        self.in_agent_message = False

    def finalize(self) -> None:
        if self.in_agent_message or self.current_agent:
            self.complete_agent_message()

    def result(self, last_agent_message: str = "") -> TurnResult:
        """Compute the turn's output and reasoning text."""
        self.finalize()
        output = last_agent_message.strip()
        if not output and self.agent_messages:
            output = self.agent_messages[-1]

        reasoning = "".join(self.reasoning_parts).strip()
        progress = "\n\n".join(msg for msg in self.agent_messages[:-1] if msg)
        if progress:
            reasoning = f"{reasoning}\n\n{progress}" if reasoning else progress
        return TurnResult(output=output, reasoning=reasoning.strip())


def _item_type(params: dict[str, Any]) -> str:
    item = params.get("item")
    if not isinstance(item, dict):
        return ""
    return string_value(item.get("type")).strip().lower()


def _delta(params: dict[str, Any]) -> str:
    return string_value(params.get("delta"))


class CodexTurn:
    """Drive a `TurnState` from notifications and forward typed events."""

    def __init__(self, on_event: EventCallback | None = None) -> None:
        self.state = TurnState()
        self.completed = False
        self.last_agent_message = ""
        self.reasoning_observed = False
        self.error_message: str | None = None
        self._on_event = on_event

    async def _emit(self, kind: ResponseEventKind, delta: str) -> None:
        if self._on_event is None or not delta:
            return
        await deliver(self._on_event, ResponseEvent(kind=kind, delta=delta))

    async def handle(self, msg: dict[str, Any]) -> None:
        """Apply one notification to the turn state."""
        method = msg.get("method")
        params = msg.get("params")
        if not isinstance(params, dict):
            params = {}

        if method == TURN_COMPLETED:
            self.completed = True
            turn = params.get("turn")
            if isinstance(turn, dict) and turn.get("status") == "failed":
                error = turn.get("error")
                if isinstance(error, dict) and error.get("message"):
                    self.error_message = string_value(error.get("message"))
        elif method == REASONING_SUMMARY_DELTA:
            delta = _delta(params)
            if delta:
                self.state.append_reasoning(delta)
                self.reasoning_observed = True
                await self._emit(REASONING, delta)
        elif method == AGENT_MESSAGE_DELTA:
            delta = _delta(params)
            if delta:
                self.state.append_agent_delta(delta)
        elif method == ITEM_STARTED:
            if _item_type(params) == _AGENT_MESSAGE_ITEM:
                self.state.begin_agent_message()
        elif method == ITEM_COMPLETED:
            if _item_type(params) == _AGENT_MESSAGE_ITEM:
                self.state.complete_agent_message()
        elif method == TASK_COMPLETE:
            task_msg = params.get("msg")
            if isinstance(task_msg, dict):
                self.last_agent_message = string_value(task_msg.get("last_agent_message"))
        elif method in ERROR_METHODS:
            self.error_message = _error_message(params) or self.error_message
            LOG.warning("codex reported error during turn: %s", self.error_message)

    async def finish(self) -> TurnResult:
        """Compute the result and emit the end-of-turn events.

        A synthetic reasoning event carrying the full reasoning text is emitted
        only when no reasoning delta was streamed; the full output text is
        always emitted as one final event.
        """
        result = self.state.result(self.last_agent_message)
        if not result.output:
            if self.error_message:
                raise ProtocolError(f"codex turn failed: {self.error_message}")
            raise UpstreamEmptyOutput("codex returned empty assistant output")
        if not self.reasoning_observed and result.reasoning:
            await self._emit(REASONING, result.reasoning)
        await self._emit(OUTPUT, result.output)
        return result


def _error_message(params: dict[str, Any]) -> str | None:
    for container in (params, params.get("error"), params.get("msg")):
        if isinstance(container, dict):
            message = string_value(container.get("message"))
            if message:
                return message
    return None


async def wait_for_turn_completed(
    source: AsyncIterator[dict[str, Any]],
    notify: Callable[[dict[str, Any]], Awaitable[None]] | None,
    already_completed: bool,
    timeout: float | None = None,
) -> None:
    """Consume notifications until the turn completes or the source ends.

    Returns at once, without touching `source`, when completion was already
    observed. Every consumed message goes to `notify` in arrival order,
    including the completion message itself.
    """
    if already_completed:
        return

    async def _consume() -> None:
        async for msg in source:
            if notify is not None:
                await notify(msg)
            if msg.get("method") == TURN_COMPLETED:
                return

    if timeout is None or timeout <= 0:
        await _consume()
        return
    try:
        await asyncio.wait_for(_consume(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TurnTimeoutError(f"codex turn did not complete within {timeout:.0f}s") from exc
