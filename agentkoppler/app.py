"""HTTP application for the agentkoppler gateway.

This module exposes an OpenAI-compatible API in front of local agent CLIs:
- `/v1/models` lists the model ids every backend serves,
- `/v1/chat/completions` and `/v1/responses` run one backend call per request,
  optionally streamed as server-sent events.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import GatewayConfig, config_file_path, load_config
from .config_reload import ConfigReloadWatcher
from .errors import AuthenticationError, GatewayError, InvalidRequestError
from .gateway_service import GatewayService
from .http_streaming import build_sse_response, stream_with_keepalive
from .json_helpers import to_bounded_json
from .logging_utils import setup_logging
from .openai_payloads import build_openai_error_payload

LOG = logging.getLogger(__name__)


def _extract_bearer_token(request: Request) -> str | None:
    """Extract bearer token from Authorization header if present."""
    auth_header = request.headers.get("authorization")
    if not auth_header:
        return None
    parts = auth_header.strip().split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, token = parts[0].lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        return None
    return token


def _require_gateway_auth(request: Request, cfg: GatewayConfig) -> None:
    """Enforce gateway API key auth when configured."""
    required_key = cfg.service_api_key
    if not required_key:
        return
    if _extract_bearer_token(request) != required_key:
        raise AuthenticationError("Unauthorized")


def _service_bind_addr(service_base_url: str) -> tuple[str, int]:
    """Parse bind host/port from service_base_url."""
    parsed = urlparse(service_base_url)
    if not parsed.hostname or parsed.port is None:
        raise ValueError("service_base_url must include host and port, e.g. http://127.0.0.1:8080")
    return parsed.hostname, parsed.port


async def _read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidRequestError("invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise InvalidRequestError("request body must be a JSON object")
    return payload


def _internal_error(exc: Exception) -> JSONResponse:
    return JSONResponse(build_openai_error_payload(str(exc), error_type="internal_error"), status_code=500)


def create_app(
    config_path: str | None = None,
    *,
    service: GatewayService | None = None,
    watch_config: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance."""
    if service is None:
        cfg = load_config(config_path)
        service = GatewayService(cfg)
    setup_logging(service.cfg.logging)
    gateway = service

    config_file = config_file_path(config_path)
    reload_task: asyncio.Task[None] | None = None

    async def apply_config(new_cfg: GatewayConfig) -> None:
        setup_logging(new_cfg.logging)
        await gateway.reload(new_cfg)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        """Application startup/shutdown lifecycle."""
        nonlocal reload_task
        if watch_config and config_file.parent.is_dir():
            watcher = ConfigReloadWatcher(config_file, apply_config)
            reload_task = asyncio.create_task(watcher.run())
        try:
            yield
        finally:
            if reload_task:
                reload_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reload_task

    app = FastAPI(title="agentkoppler", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(_request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            LOG.warning("request failed status=%s error=%s", exc.status_code, exc)
        return JSONResponse(
            build_openai_error_payload(str(exc), error_type=exc.error_type),
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    async def healthz() -> JSONResponse:
        """Return service liveness and the configured backends."""
        return JSONResponse(
            {
                "service": "agentkoppler",
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "backends": [adapter.backend for adapter in gateway.router.adapters],
            }
        )

    @app.get("/v1/models")
    async def v1_models(request: Request) -> JSONResponse:
        """OpenAI-compatible model listing endpoint."""
        _require_gateway_auth(request, gateway.cfg)
        try:
            return JSONResponse(await gateway.list_models())
        except GatewayError:
            raise
        except Exception as exc:
            LOG.exception("models listing failed")
            return _internal_error(exc)

    @app.post("/v1/chat/completions")
    async def v1_chat_completions(request: Request):
        """OpenAI-compatible chat completions endpoint."""
        _require_gateway_auth(request, gateway.cfg)
        payload = await _read_json_object(request)
        LOG.debug("incoming chat.completions request payload=%s", to_bounded_json(payload))
        req = gateway.parse_chat_request(payload)
        try:
            if req.stream:
                stream = await gateway.open_chat_stream(req)
                return build_sse_response(
                    stream_with_keepalive(
                        stream,
                        keepalive_seconds=gateway.cfg.stream_keepalive_seconds or 0.0,
                        request=request,
                    )
                )
            return JSONResponse(await gateway.chat(req))
        except GatewayError:
            raise
        except Exception as exc:
            LOG.exception("chat/completions failed")
            return _internal_error(exc)

    @app.post("/v1/responses")
    async def v1_responses(request: Request):
        """OpenAI-compatible responses endpoint."""
        _require_gateway_auth(request, gateway.cfg)
        payload = await _read_json_object(request)
        LOG.debug("incoming responses request payload=%s", to_bounded_json(payload))
        req = gateway.parse_responses_request(payload)
        try:
            if req.stream:
                stream = await gateway.open_response_stream(req)
                return build_sse_response(
                    stream_with_keepalive(
                        stream,
                        keepalive_seconds=gateway.cfg.stream_keepalive_seconds or 0.0,
                        request=request,
                    )
                )
            return JSONResponse(await gateway.respond(req))
        except GatewayError:
            raise
        except Exception as exc:
            LOG.exception("responses failed")
            return _internal_error(exc)

    return app


def main() -> None:
    """CLI entry point that validates configuration and runs uvicorn."""

    def fail(message: str, exit_code: int = 2) -> None:
        """Print startup error and terminate process."""
        print(f"ERROR: {message}", file=sys.stderr)
        raise SystemExit(exit_code)

    parser = argparse.ArgumentParser(description="agentkoppler gateway")
    parser.add_argument("--config", default=None, help="Path to config YAML")
    parser.add_argument(
        "--yolo",
        action="store_true",
        help="Skip backend permission prompts and sandboxing (bypass_approvals)",
    )
    args = parser.parse_args()

    from pydantic import ValidationError

    try:
        import uvicorn
    except ModuleNotFoundError:
        fail("Missing dependency 'uvicorn'. Install runtime dependencies in your active environment.")

    if args.yolo:
        # Through the environment so the flag survives config reloads.
        os.environ["AGENTKOPPLER_BYPASS_APPROVALS"] = "1"

    try:
        cfg = load_config(args.config)
    except ValidationError as exc:
        fail(f"Invalid configuration: {exc}")
    except Exception as exc:
        fail(f"Failed to load configuration: {exc}")

    if cfg.bypass_approvals:
        print("WARNING: approvals and sandboxing are bypassed for all backends", file=sys.stderr)

    try:
        app = create_app(args.config, service=GatewayService(cfg))
    except Exception as exc:
        fail(f"Failed to create app: {exc}")

    try:
        host, port = _service_bind_addr(cfg.service_base_url)
        uvicorn.run(app, host=host, port=port)
    except Exception as exc:
        fail(f"Server failed to start: {exc}", exit_code=1)


if __name__ == "__main__":
    main()
