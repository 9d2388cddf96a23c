import asyncio
import sys

import pytest

from agentkoppler.errors import ProtocolError, StreamEndedError, TransportError
from agentkoppler.rpc_client import RPCClient


async def _spawn(mock_codex_bin: str) -> RPCClient:
    return await RPCClient.spawn([mock_codex_bin, "app-server"], queue_size=8, label="codex app-server")


def test_initialize_and_call_correlate_responses(monkeypatch, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "ok")

    async def run() -> tuple[dict, dict]:
        async with await _spawn(mock_codex_bin) as client:
            init = await client.initialize()
            models = await client.call("model/list", {})
            return init, models

    init, models = asyncio.run(run())
    assert init == {"userAgent": "mock-codex/0.0.1"}
    assert [m["id"] for m in models["data"]] == ["gpt-5-codex", "gpt-5"]


def test_notifications_and_server_requests_reach_the_observer_in_order(monkeypatch, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "notify_early")
    seen: list[dict] = []

    async def observer(msg: dict) -> None:
        seen.append(msg)

    async def run() -> dict:
        async with await _spawn(mock_codex_bin) as client:
            await client.initialize()
            await client.call("thread/start", {"model": "m"})
            return await client.call("turn/start", {"threadId": "thread-1"}, on_notify=observer)

    result = asyncio.run(run())
    assert result == {"turn": {"id": "turn-1"}}
    assert [m["method"] for m in seen] == [
        "item/reasoning/summaryTextDelta",
        "item/commandExecution/requestApproval",
    ]


def test_error_object_raises_protocol_error_with_code(monkeypatch, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "rpc_error")

    async def run() -> None:
        async with await _spawn(mock_codex_bin) as client:
            await client.initialize()
            await client.call("turn/start", {})

    with pytest.raises(ProtocolError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.code == -32000
    assert "turn rejected" in str(excinfo.value)


def test_stream_end_before_response_reports_stderr(monkeypatch, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "crash")

    async def run() -> None:
        async with await _spawn(mock_codex_bin) as client:
            await client.initialize()
            await client.call("thread/start", {})

    with pytest.raises(StreamEndedError) as excinfo:
        asyncio.run(run())
    assert "mock codex crashed" in str(excinfo.value)
    assert excinfo.value.stderr == "mock codex crashed"


def test_stream_end_without_stderr_names_unknown_failure() -> None:
    async def run() -> None:
        client = await RPCClient.spawn([sys.executable, "-c", "pass"], label="codex app-server")
        try:
            await client.call("initialize", {})
        finally:
            await client.close()

    with pytest.raises(StreamEndedError, match="unknown codex app-server failure"):
        asyncio.run(run())


def test_concurrent_calls_are_rejected(monkeypatch, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "hang")

    async def run() -> None:
        async with await _spawn(mock_codex_bin) as client:
            await client.initialize()
            await client.call("thread/start", {})
            await client.call("turn/start", {})
            first = asyncio.create_task(client.call("never/answered", {}))
            await asyncio.sleep(0)
            try:
                with pytest.raises(RuntimeError, match="in flight"):
                    await client.call("model/list", {})
            finally:
                first.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await first

    asyncio.run(run())


def test_spawn_failure_is_a_transport_error(tmp_path) -> None:
    async def run() -> None:
        await RPCClient.spawn([str(tmp_path / "does-not-exist")])

    with pytest.raises(TransportError, match="failed to start"):
        asyncio.run(run())


def test_close_is_idempotent(monkeypatch, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "ok")

    async def run() -> None:
        client = await _spawn(mock_codex_bin)
        await client.initialize()
        await client.close()
        await client.close()

    asyncio.run(run())
