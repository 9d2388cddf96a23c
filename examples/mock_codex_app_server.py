"""Minimal stand-in for `codex app-server` speaking JSON-RPC over stdio.

The scenario is picked with MOCK_CODEX_SCENARIO:
  ok            reasoning deltas, one agent message, task_complete, turn/completed
  progress      two agent messages without task_complete
  notify_early  notifications and a server request arrive before the turn/start reply
  already_done  turn/completed arrives before the turn/start reply
  rpc_error     turn/start answers with an error object
  crash         exits with a stderr message on thread/start
  empty_thread  thread/start returns no thread id
  no_models     model/list returns an empty list
  empty_output  the turn completes without any agent text
  error_event   an error notification, then completion without text
  hang          turn/start is answered but the turn never completes;
                unknown methods get no reply

`login status` prints MOCK_CODEX_LOGIN_STATUS to stderr.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any

SCENARIO = os.getenv("MOCK_CODEX_SCENARIO", "ok")
MODELS = [m for m in os.getenv("MOCK_CODEX_MODELS", "gpt-5-codex,gpt-5").split(",") if m]


def send(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def notify(method: str, params: dict[str, Any] | None = None) -> None:
    send({"jsonrpc": "2.0", "method": method, "params": params or {}})


def reply(req_id: Any, result: Any) -> None:
    send({"jsonrpc": "2.0", "id": req_id, "result": result})


def agent_message(text_parts: list[str]) -> None:
    notify("item/started", {"item": {"type": "agentMessage", "id": "item-1"}})
    for part in text_parts:
        notify("item/agentMessage/delta", {"delta": part})
    notify("item/completed", {"item": {"type": "agentMessage", "id": "item-1"}})


def run_turn(req_id: Any) -> None:
    if SCENARIO == "rpc_error":
        send({"jsonrpc": "2.0", "id": req_id, "error": {"code": -32000, "message": "turn rejected"}})
        return
    if SCENARIO == "notify_early":
        notify("item/reasoning/summaryTextDelta", {"delta": "early thought"})
        send({"jsonrpc": "2.0", "id": "srv-1", "method": "item/commandExecution/requestApproval", "params": {}})
        reply(req_id, {"turn": {"id": "turn-1"}})
        agent_message(["Hi", " there"])
        notify("turn/completed", {"turn": {"id": "turn-1", "status": "completed"}})
        return
    if SCENARIO == "already_done":
        agent_message(["done early"])
        notify("turn/completed", {"turn": {"id": "turn-1", "status": "completed"}})
        reply(req_id, {"turn": {"id": "turn-1"}})
        return

    reply(req_id, {"turn": {"id": "turn-1"}})
    if SCENARIO == "hang":
        return
    if SCENARIO == "ok":
        notify("item/reasoning/summaryTextDelta", {"delta": "Thinking"})
        notify("item/reasoning/summaryTextDelta", {"delta": " hard"})
        print("this line is not json", flush=True)
        agent_message(["Hello", " world"])
        notify("codex/event/task_complete", {"msg": {"last_agent_message": "Hello world"}})
    elif SCENARIO == "progress":
        agent_message(["Looking at the files"])
        agent_message(["Final answer"])
    elif SCENARIO == "error_event":
        notify("error", {"error": {"message": "usage limit reached"}})
    notify("turn/completed", {"turn": {"id": "turn-1", "status": "completed"}})


def main() -> None:
    if sys.argv[1:3] == ["login", "status"]:
        sys.stderr.write(os.getenv("MOCK_CODEX_LOGIN_STATUS", "Logged in using ChatGPT") + "\n")
        return
    for raw in sys.stdin:
        raw = raw.strip()
        if not raw:
            continue
        msg = json.loads(raw)
        method = msg.get("method")
        req_id = msg.get("id")
        if method == "initialize":
            reply(req_id, {"userAgent": "mock-codex/0.0.1"})
        elif method == "model/list":
            data = [] if SCENARIO == "no_models" else [{"id": m, "model": m} for m in MODELS]
            reply(req_id, {"data": data})
        elif method == "thread/start":
            if SCENARIO == "crash":
                sys.stderr.write("mock codex crashed\n")
                sys.stderr.flush()
                sys.exit(3)
            thread = {} if SCENARIO == "empty_thread" else {"id": "thread-1"}
            reply(req_id, {"thread": thread})
        elif method == "turn/start":
            run_turn(req_id)
        elif SCENARIO != "hang":
            send({"jsonrpc": "2.0", "id": req_id, "error": {"code": -32601, "message": "method not found"}})


if __name__ == "__main__":
    main()
