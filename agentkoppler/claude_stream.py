"""Incremental text extraction from `claude --output-format stream-json` lines."""

from __future__ import annotations

from typing import Any

from .json_helpers import parse_json_object, string_value

_EXPLICIT_DELTA_SHAPES = (
    ("content_block_delta", "delta"),
    ("content_block_start", "content_block"),
    ("message_delta", "delta"),
)


class ClaudeStreamParser:
    """Turn stream-json events into text deltas for one CLI invocation.

    Besides explicit delta events the CLI emits message snapshots whose content
    blocks carry the full text seen so far. For those the parser remembers the
    last full text per block index and emits only what is new. Snapshots are
    ignored for a message whose text already arrived as explicit deltas.

    When a snapshot's text is not an extension of the remembered text for its
    index, the whole new text is emitted again. Consumers that simply
    concatenate deltas may then see content twice.
    """

    def __init__(self) -> None:
        self.last_by_index: dict[int, str] = {}
        self._explicit_in_message = False

    def feed(self, line: str | bytes) -> tuple[str, bool]:
        """Parse one line and return `(delta, ok)`."""
        event = parse_json_object(line)
        if event is None:
            return "", False
        if event.get("type") == "stream_event" and isinstance(event.get("event"), dict):
            event = event["event"]

        event_type = event.get("type")
        if event_type == "message_start":
            self._explicit_in_message = False

        for shape, field in _EXPLICIT_DELTA_SHAPES:
            if event_type != shape:
                continue
            body = event.get(field)
            text = string_value(body.get("text")) if isinstance(body, dict) else ""
            if text:
                self._explicit_in_message = True
                return text, True

        message = event.get("message")
        if (
            not self._explicit_in_message
            and isinstance(message, dict)
            and message.get("role") != "user"
            and isinstance(message.get("content"), list)
        ):
            delta = self._diff_snapshot(message["content"])
            if delta:
                return delta, True

        return "", False

    def _diff_snapshot(self, content: list[Any]) -> str:
        parts: list[str] = []
        for index, item in enumerate(content):
            if not isinstance(item, dict):
                continue
            full = string_value(item.get("text"))
            if not full:
                continue
            previous = self.last_by_index.get(index, "")
            self.last_by_index[index] = full
            if full.startswith(previous):
                parts.append(full[len(previous) :])
            else:
                parts.append(full)
        return "".join(parts)


def extract_claude_delta(line: str | bytes, last_by_index: dict[int, str]) -> tuple[str, bool]:
    """Functional form of `ClaudeStreamParser.feed` over a caller-owned index map."""
    parser = ClaudeStreamParser()
    parser.last_by_index = last_by_index
    return parser.feed(line)
