"""Minimal stand-in for the `claude` CLI in `-p` mode.

Text mode prints MOCK_CLAUDE_TEXT (exit 1 when MOCK_CLAUDE_TEXT_FAIL is set).
Stream mode follows MOCK_CLAUDE_STREAM:
  deltas     stream_event wrapped content_block_delta lines plus a final snapshot
  snapshots  cumulative assistant message snapshots only
  blank      no text at all
  fail       one delta, then exit status 1
  hang       one delta, then sleep until killed
Every invocation's argv is appended as a JSON line to MOCK_CLAUDE_ARGV_LOG;
the process id is written to MOCK_CLAUDE_PID_FILE when set.
"""

from __future__ import annotations

import json
import os
import sys
import time
from typing import Any


def emit(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def stream_event(event: dict[str, Any]) -> None:
    emit({"type": "stream_event", "event": event})


def snapshot(text: str) -> None:
    emit({"type": "assistant", "message": {"role": "assistant", "content": [{"type": "text", "text": text}]}})


def main() -> int:
    argv = sys.argv[1:]
    log_path = os.getenv("MOCK_CLAUDE_ARGV_LOG")
    if log_path:
        with open(log_path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(argv) + "\n")
    pid_path = os.getenv("MOCK_CLAUDE_PID_FILE")
    if pid_path:
        with open(pid_path, "w", encoding="utf-8") as handle:
            handle.write(str(os.getpid()))

    if "stream-json" not in argv:
        if os.getenv("MOCK_CLAUDE_TEXT_FAIL"):
            sys.stderr.write("text mode unavailable\n")
            return 1
        sys.stdout.write(os.getenv("MOCK_CLAUDE_TEXT", "plain answer") + "\n")
        return 0

    scenario = os.getenv("MOCK_CLAUDE_STREAM", "deltas")
    emit({"type": "system", "subtype": "init", "model": "mock"})
    if scenario == "deltas":
        stream_event({"type": "message_start", "message": {"role": "assistant", "content": []}})
        stream_event({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}})
        for part in ("Hel", "lo", " ", "there"):
            stream_event({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": part}})
        snapshot("Hello there")
    elif scenario == "snapshots":
        snapshot("Hel")
        snapshot("Hello")
        snapshot("Hello there")
    elif scenario == "fail":
        stream_event({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "partial"}})
        sys.stderr.write("stream broke\n")
        return 1
    elif scenario == "hang":
        stream_event({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "first"}})
        time.sleep(30)
    emit({"type": "result", "subtype": "success", "result": ""})
    return 0


if __name__ == "__main__":
    sys.exit(main())
