"""Adapter for `codex app-server` (JSON-RPC over stdio, one process per call)."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

from .adapters import (
    Adapter,
    DeltaCallback,
    EventCallback,
    OnceCell,
    ResponsesEventAdapter,
    build_chat_prompt,
    build_responses_prompt,
    deliver,
    model_infos,
)
from .config import GatewayConfig
from .errors import ConfigurationError, ProtocolError
from .models import ChatRequest, ChatResult, ModelInfo, ResponsesRequest, ResponsesResult
from .rpc_client import RPCClient
from .turn_state import CodexTurn, TurnResult, wait_for_turn_completed

LOG = logging.getLogger(__name__)

BYPASS_FLAG = "--dangerously-bypass-approvals-and-sandbox"
RPC_LABEL = "codex app-server"


def default_auth_file() -> Path:
    return Path.home() / ".codex" / "auth.json"


class CodexAdapter(Adapter, ResponsesEventAdapter):
    """Spawn a fresh app-server for every model listing and every turn."""

    backend = "codex"

    def __init__(self, cfg: GatewayConfig, *, auth_file: Path | None = None) -> None:
        self.bin = cfg.codex_bin
        self.static_models = list(cfg.codex_models)
        self.models_cache_seconds = cfg.codex_models_cache_seconds or 0
        self.turn_timeout = cfg.codex_turn_timeout_seconds
        self.queue_size = cfg.rpc_queue_size or 256
        self.bypass_approvals = cfg.bypass_approvals
        self.auth_file = auth_file or default_auth_file()
        self._auth = OnceCell(self._check_subscription_mode) if cfg.require_subscription_auth else None
        self._models_lock = asyncio.Lock()
        self._models_cache: tuple[float, list[ModelInfo]] | None = None

    def app_server_argv(self) -> list[str]:
        argv = [self.bin]
        if self.bypass_approvals:
            argv.append(BYPASS_FLAG)
        argv.append("app-server")
        return argv

    def _auth_file_mode(self) -> str:
        try:
            data = json.loads(self.auth_file.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return ""
        if not isinstance(data, dict):
            return ""
        return str(data.get("auth_mode") or "").strip().lower()

    async def _check_subscription_mode(self) -> None:
        """Accept ChatGPT-subscription login only."""
        if self._auth_file_mode() == "chatgpt":
            return
        try:
            proc = await asyncio.create_subprocess_exec(
                self.bin,
                "login",
                "status",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ConfigurationError(f"failed to check codex login status: {exc}") from exc
        stdout, stderr = await proc.communicate()
        out = stdout.decode("utf-8", errors="replace").strip()
        err = stderr.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise ConfigurationError(f"failed to check codex login status: exit status {proc.returncode}: {err}")
        # Recent CLI versions print the login status to stderr.
        status = f"{out}\n{err}".strip()
        if "chatgpt" not in status.lower():
            raise ConfigurationError(f"codex auth mode is not ChatGPT subscription: {status}")

    async def ensure_subscription_mode(self) -> None:
        if self._auth is not None:
            await self._auth.get()

    async def _spawn(self) -> RPCClient:
        return await RPCClient.spawn(self.app_server_argv(), queue_size=self.queue_size, label=RPC_LABEL)

    async def list_models(self) -> list[ModelInfo]:
        """Return configured model ids, or ask the app-server (cached)."""
        await self.ensure_subscription_mode()
        if self.static_models:
            return model_infos(self.static_models, "codex")

        async with self._models_lock:
            now = time.monotonic()
            if self._models_cache is not None and now - self._models_cache[0] < self.models_cache_seconds:
                return list(self._models_cache[1])
            models = await self._fetch_models()
            if self.models_cache_seconds > 0:
                self._models_cache = (now, models)
            return list(models)

    async def _fetch_models(self) -> list[ModelInfo]:
        async with await self._spawn() as client:
            await client.initialize()
            result = await client.call("model/list", {})
        data = result.get("data") if isinstance(result, dict) else None
        ids = [str(item["id"]) for item in data or [] if isinstance(item, dict) and item.get("id")]
        if not ids:
            raise ProtocolError("codex returned no models")
        LOG.debug("codex model list refreshed count=%s", len(ids))
        return model_infos(ids, "codex")

    async def run_turn(self, model: str, prompt: str, on_event: EventCallback | None = None) -> TurnResult:
        """Drive one ephemeral thread through a single turn.

        The app-server process is killed before the end-of-turn events are
        emitted; cancellation kills it as well.
        """
        turn = CodexTurn(on_event)
        client = await self._spawn()
        try:
            await client.initialize()
            started = await client.call("thread/start", {"model": model, "ephemeral": True})
            thread_id = _thread_id(started)
            if not thread_id:
                raise ProtocolError("codex returned empty thread id")
            LOG.debug("codex thread started thread_id=%s model=%s", thread_id, model)
            await client.call(
                "turn/start",
                {
                    "threadId": thread_id,
                    "model": model,
                    "input": [{"type": "text", "text": prompt}],
                },
                on_notify=turn.handle,
            )
            await wait_for_turn_completed(
                client.messages(),
                turn.handle,
                turn.completed,
                timeout=self.turn_timeout,
            )
        finally:
            await client.close()
        return await turn.finish()

    async def chat(self, req: ChatRequest) -> ChatResult:
        await self.ensure_subscription_mode()
        turn = await self.run_turn(req.model, build_chat_prompt(req.messages))
        return ChatResult(model=req.model, text=turn.output)

    async def chat_stream(self, req: ChatRequest, on_delta: DeltaCallback | None) -> ChatResult:
        """The final text is delivered as one delta once the turn completed."""
        await self.ensure_subscription_mode()
        turn = await self.run_turn(req.model, build_chat_prompt(req.messages))
        if on_delta is not None and turn.output.strip():
            await deliver(on_delta, turn.output)
        return ChatResult(model=req.model, text=turn.output)

    async def respond(self, req: ResponsesRequest) -> ResponsesResult:
        await self.ensure_subscription_mode()
        turn = await self.run_turn(req.model, build_responses_prompt(req.input))
        return ResponsesResult(model=req.model, text=turn.output, reasoning=turn.reasoning)

    async def respond_stream(self, req: ResponsesRequest, on_delta: DeltaCallback | None) -> ResponsesResult:
        await self.ensure_subscription_mode()
        turn = await self.run_turn(req.model, build_responses_prompt(req.input))
        if on_delta is not None and turn.output.strip():
            await deliver(on_delta, turn.output)
        return ResponsesResult(model=req.model, text=turn.output, reasoning=turn.reasoning)

    async def respond_stream_events(self, req: ResponsesRequest, on_event: EventCallback | None) -> ResponsesResult:
        await self.ensure_subscription_mode()
        turn = await self.run_turn(req.model, build_responses_prompt(req.input), on_event)
        return ResponsesResult(model=req.model, text=turn.output, reasoning=turn.reasoning)


def _thread_id(result: Any) -> str:
    if not isinstance(result, dict):
        return ""
    thread = result.get("thread")
    if not isinstance(thread, dict):
        return ""
    value = thread.get("id")
    return str(value) if value else ""
