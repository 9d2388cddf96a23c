"""Adapter for the `claude` CLI (single-shot text and stream-json modes)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass, field

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
from .claude_stream import ClaudeStreamParser
from .config import GatewayConfig
from .errors import CallbackError, ConfigurationError, GatewayError, TransportError
from .models import OUTPUT, ChatRequest, ChatResult, ModelInfo, ResponseEvent, ResponsesRequest, ResponsesResult
from .process_transport import STREAM_LINE_LIMIT

LOG = logging.getLogger(__name__)

SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"


@dataclass
class _StreamProgress:
    parts: list[str] = field(default_factory=list)
    emitted: bool = False

    @property
    def text(self) -> str:
        return "".join(self.parts).strip()


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
    await proc.wait()


class ClaudeAdapter(Adapter, ResponsesEventAdapter):
    """Run one `claude -p` process per request."""

    backend = "claude"

    def __init__(self, cfg: GatewayConfig) -> None:
        self.bin = cfg.claude_bin
        self.models = list(cfg.claude_models)
        self.bypass_approvals = cfg.bypass_approvals
        self._auth = OnceCell(self._check_subscription_mode) if cfg.require_subscription_auth else None

    async def _check_subscription_mode(self) -> None:
        if os.getenv("ANTHROPIC_API_KEY", "").strip():
            raise ConfigurationError("ANTHROPIC_API_KEY is set; refusing API-key mode for Claude adapter")

    async def ensure_subscription_mode(self) -> None:
        """Fail when the CLI would bill an API key instead of a subscription."""
        if self._auth is not None:
            await self._auth.get()

    async def list_models(self) -> list[ModelInfo]:
        await self.ensure_subscription_mode()
        return model_infos(self.models, "claude")

    async def supports_model(self, model: str) -> bool:
        return model.strip() in self.models

    def text_argv(self, model: str, prompt: str) -> list[str]:
        argv = [self.bin, "-p", "--output-format", "text", "--model", model]
        if self.bypass_approvals:
            argv.append(SKIP_PERMISSIONS_FLAG)
        argv.append(prompt)
        return argv

    def stream_argv(self, model: str, prompt: str) -> list[str]:
        argv = [
            self.bin,
            "-p",
            "--verbose",
            "--output-format",
            "stream-json",
            "--include-partial-messages",
            "--model",
            model,
        ]
        if self.bypass_approvals:
            argv.append(SKIP_PERMISSIONS_FLAG)
        argv.append(prompt)
        return argv

    async def _spawn(self, argv: list[str]) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LINE_LIMIT,
            )
        except OSError as exc:
            raise TransportError(f"failed to start {self.bin}: {exc}") from exc

    async def run_text(self, model: str, prompt: str) -> str:
        """Run the plain-text mode and return raw stdout."""
        proc = await self._spawn(self.text_argv(model, prompt))
        try:
            stdout, stderr = await proc.communicate()
        finally:
            await _kill(proc)
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise TransportError(f"claude command failed: exit status {proc.returncode}: {detail}")
        return stdout.decode("utf-8", errors="replace")

    async def run_stream(
        self,
        model: str,
        prompt: str,
        on_delta: DeltaCallback | None,
        progress: _StreamProgress | None = None,
    ) -> str:
        """Run the stream-json mode, forwarding each parsed delta.

        Returns the trimmed concatenation of all deltas. `progress` records
        whether anything was emitted even when this raises.
        """
        progress = progress if progress is not None else _StreamProgress()
        parser = ClaudeStreamParser()
        proc = await self._spawn(self.stream_argv(model, prompt))
        assert proc.stdout is not None and proc.stderr is not None
        stderr_task = asyncio.create_task(proc.stderr.read())
        try:
            while True:
                try:
                    line = await proc.stdout.readline()
                except ValueError as exc:
                    raise TransportError(f"claude stream line exceeded {STREAM_LINE_LIMIT} bytes") from exc
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                delta, ok = parser.feed(line)
                if not ok or not delta:
                    continue
                progress.parts.append(delta)
                progress.emitted = True
                if on_delta is not None:
                    await deliver(on_delta, delta)
            returncode = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
        finally:
            await _kill(proc)
            if not stderr_task.done():
                stderr_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await stderr_task
        if returncode != 0:
            raise TransportError(f"claude stream command failed: exit status {returncode}: {stderr}")
        return progress.text

    async def _stream_with_fallback(self, model: str, prompt: str, on_delta: DeltaCallback | None) -> str:
        """Stream, then fall back to one plain-text run on error or blank output."""
        progress = _StreamProgress()
        try:
            text = await self.run_stream(model, prompt, on_delta, progress)
        except CallbackError:
            raise
        except GatewayError as stream_exc:
            LOG.warning("claude stream failed, retrying in text mode model=%s error=%s", model, stream_exc)
            try:
                fallback = (await self.run_text(model, prompt)).strip()
            except GatewayError as fallback_exc:
                LOG.debug("claude text fallback failed model=%s error=%s", model, fallback_exc)
                raise stream_exc from fallback_exc
            return await self._deliver_fallback(fallback, progress, on_delta)

        if text:
            return text
        LOG.info("claude stream produced no text, retrying in text mode model=%s", model)
        fallback = (await self.run_text(model, prompt)).strip()
        return await self._deliver_fallback(fallback, progress, on_delta)

    @staticmethod
    async def _deliver_fallback(text: str, progress: _StreamProgress, on_delta: DeltaCallback | None) -> str:
        if not progress.emitted and on_delta is not None and text:
            await deliver(on_delta, text)
        return text

    async def chat(self, req: ChatRequest) -> ChatResult:
        await self.ensure_subscription_mode()
        out = await self.run_text(req.model, build_chat_prompt(req.messages))
        return ChatResult(model=req.model, text=out.strip())

    async def chat_stream(self, req: ChatRequest, on_delta: DeltaCallback | None) -> ChatResult:
        await self.ensure_subscription_mode()
        text = await self._stream_with_fallback(req.model, build_chat_prompt(req.messages), on_delta)
        return ChatResult(model=req.model, text=text)

    async def respond(self, req: ResponsesRequest) -> ResponsesResult:
        await self.ensure_subscription_mode()
        out = await self.run_text(req.model, build_responses_prompt(req.input))
        return ResponsesResult(model=req.model, text=out.strip())

    async def respond_stream(self, req: ResponsesRequest, on_delta: DeltaCallback | None) -> ResponsesResult:
        await self.ensure_subscription_mode()
        text = await self._stream_with_fallback(req.model, build_responses_prompt(req.input), on_delta)
        return ResponsesResult(model=req.model, text=text)

    async def respond_stream_events(self, req: ResponsesRequest, on_event: EventCallback | None) -> ResponsesResult:
        """Claude exposes no reasoning stream; every delta is output."""

        async def on_delta(delta: str) -> None:
            if on_event is not None:
                await on_event(ResponseEvent(kind=OUTPUT, delta=delta))

        return await self.respond_stream(req, on_delta)
