import asyncio

import pytest

from agentkoppler.claude_adapter import ClaudeAdapter
from agentkoppler.codex_adapter import CodexAdapter
from agentkoppler.config import GatewayConfig
from agentkoppler.errors import InvalidRequestError
from agentkoppler.gateway_service import GatewayService, build_router, stream_from_callbacks
from agentkoppler.models import Message


def test_stream_from_callbacks_yields_everything_pushed() -> None:
    async def produce(push) -> None:
        for i in range(5):
            await push(f"frame-{i}".encode())

    async def run() -> list[bytes]:
        return [frame async for frame in stream_from_callbacks(produce, queue_size=2)]

    assert asyncio.run(run()) == [b"frame-0", b"frame-1", b"frame-2", b"frame-3", b"frame-4"]


def test_stream_from_callbacks_reraises_producer_failure() -> None:
    async def produce(push) -> None:
        await push(b"first")
        raise RuntimeError("producer broke")

    async def run() -> list[bytes]:
        seen = []
        async for frame in stream_from_callbacks(produce, queue_size=4):
            seen.append(frame)
        return seen

    with pytest.raises(RuntimeError, match="producer broke"):
        asyncio.run(run())


def test_closing_the_stream_cancels_the_producer() -> None:
    async def run() -> bool:
        was_cancelled = False

        async def produce(push) -> None:
            nonlocal was_cancelled
            try:
                await push(b"one")
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                was_cancelled = True
                raise

        stream = stream_from_callbacks(produce, queue_size=1)
        assert await stream.__anext__() == b"one"
        await stream.aclose()
        return was_cancelled

    assert asyncio.run(run()) is True


def test_parse_chat_request_normalizes_messages() -> None:
    service = GatewayService(GatewayConfig())
    req = service.parse_chat_request(
        {
            "model": " sonnet ",
            "stream": True,
            "messages": [{"role": "user", "content": [{"type": "text", "text": "hi"}]}],
        }
    )
    assert req.model == "sonnet"
    assert req.stream is True
    assert req.messages == [Message(role="user", content="hi")]


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"messages": [{"role": "user", "content": "hi"}]}, "model is required"),
        ({"model": "   ", "messages": [{"role": "user", "content": "hi"}]}, "model is required"),
        ({"model": "sonnet"}, "messages are required"),
        ({"model": "sonnet", "messages": "hi"}, "messages"),
    ],
)
def test_parse_chat_request_rejects_bad_payloads(payload, message) -> None:
    with pytest.raises(InvalidRequestError, match=message):
        GatewayService(GatewayConfig()).parse_chat_request(payload)


@pytest.mark.parametrize("flag", ["false", "true", 1, 0, []])
def test_non_boolean_stream_flag_is_rejected(flag) -> None:
    service = GatewayService(GatewayConfig())
    with pytest.raises(InvalidRequestError, match="stream must be a boolean"):
        service.parse_chat_request({"model": "sonnet", "stream": flag, "messages": [{"role": "user", "content": "hi"}]})
    with pytest.raises(InvalidRequestError, match="stream must be a boolean"):
        service.parse_responses_request({"model": "gpt-5", "stream": flag, "input": "hi"})


def test_explicit_false_stream_flag_is_accepted() -> None:
    req = GatewayService(GatewayConfig()).parse_responses_request({"model": "gpt-5", "stream": False, "input": "hi"})
    assert req.stream is False


def test_parse_responses_request_passes_input_through() -> None:
    payload_input = [{"role": "user", "content": [{"type": "input_text", "text": "hi"}]}]
    req = GatewayService(GatewayConfig()).parse_responses_request({"model": "gpt-5", "input": payload_input})
    assert req.input is payload_input
    assert req.stream is False


def test_reload_rebuilds_adapters_from_new_config() -> None:
    service = GatewayService(GatewayConfig())
    before = service.router
    asyncio.run(service.reload(GatewayConfig(claude_models=["opus"])))
    assert service.router is not before
    assert service.router.adapters[0].models == ["opus"]


def test_build_router_orders_claude_before_codex() -> None:
    adapters = build_router(GatewayConfig()).adapters
    assert [type(a) for a in adapters] == [ClaudeAdapter, CodexAdapter]
