import asyncio
import json
from pathlib import Path

import pytest

from agentkoppler.codex_adapter import CodexAdapter
from agentkoppler.config import GatewayConfig
from agentkoppler.errors import CallbackError, ConfigurationError, ProtocolError, TurnTimeoutError, UpstreamEmptyOutput
from agentkoppler.models import OUTPUT, REASONING, ChatRequest, Message, ResponseEvent, ResponsesRequest


def _adapter(bin_path: str, tmp_path: Path, *, auth_mode: str | None = "chatgpt", **overrides) -> CodexAdapter:
    auth_file = tmp_path / "auth.json"
    if auth_mode is not None:
        auth_file.write_text(json.dumps({"auth_mode": auth_mode}), encoding="utf-8")
    return CodexAdapter(GatewayConfig(codex_bin=bin_path, **overrides), auth_file=auth_file)


def _events():
    events: list[ResponseEvent] = []

    async def on_event(event: ResponseEvent) -> None:
        events.append(event)

    return events, on_event


def test_app_server_argv_honours_bypass_flag(tmp_path) -> None:
    assert _adapter("codex", tmp_path).app_server_argv() == ["codex", "app-server"]
    assert _adapter("codex", tmp_path, bypass_approvals=True).app_server_argv() == [
        "codex",
        "--dangerously-bypass-approvals-and-sandbox",
        "app-server",
    ]


def test_structured_turn_streams_reasoning_then_output(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "ok")
    events, on_event = _events()
    adapter = _adapter(mock_codex_bin, tmp_path)

    result = asyncio.run(adapter.respond_stream_events(ResponsesRequest(model="gpt-5", input="hi"), on_event))
    assert result.text == "Hello world"
    assert result.reasoning == "Thinking hard"
    assert events == [
        ResponseEvent(REASONING, "Thinking"),
        ResponseEvent(REASONING, " hard"),
        ResponseEvent(OUTPUT, "Hello world"),
    ]


def test_progress_messages_become_synthetic_reasoning(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "progress")
    events, on_event = _events()

    result = asyncio.run(
        _adapter(mock_codex_bin, tmp_path).respond_stream_events(ResponsesRequest(model="gpt-5", input="hi"), on_event)
    )
    assert result.text == "Final answer"
    assert events == [ResponseEvent(REASONING, "Looking at the files"), ResponseEvent(OUTPUT, "Final answer")]


def test_notifications_during_turn_start_are_not_lost(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "notify_early")
    events, on_event = _events()

    result = asyncio.run(
        _adapter(mock_codex_bin, tmp_path).respond_stream_events(ResponsesRequest(model="gpt-5", input="hi"), on_event)
    )
    assert result.text == "Hi there"
    assert result.reasoning == "early thought"
    assert events[0] == ResponseEvent(REASONING, "early thought")


def test_completion_seen_during_turn_start_ends_the_turn(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "already_done")
    req = ChatRequest(model="gpt-5", messages=[Message(role="user", content="hi")])

    result = asyncio.run(_adapter(mock_codex_bin, tmp_path).chat(req))
    assert result.text == "done early"


def test_legacy_stream_surface_delivers_final_text_once(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "ok")
    deltas: list[str] = []

    async def on_delta(delta: str) -> None:
        deltas.append(delta)

    req = ChatRequest(model="gpt-5", messages=[Message(role="user", content="hi")], stream=True)
    result = asyncio.run(_adapter(mock_codex_bin, tmp_path).chat_stream(req, on_delta))
    assert deltas == ["Hello world"]
    assert result.text == "Hello world"


@pytest.mark.parametrize(
    ("scenario", "error", "match"),
    [
        ("empty_thread", ProtocolError, "empty thread id"),
        ("rpc_error", ProtocolError, "turn rejected"),
        ("empty_output", UpstreamEmptyOutput, "empty assistant output"),
        ("error_event", ProtocolError, "usage limit reached"),
    ],
)
def test_turn_failures(monkeypatch, tmp_path, mock_codex_bin, scenario, error, match) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", scenario)
    with pytest.raises(error, match=match):
        asyncio.run(_adapter(mock_codex_bin, tmp_path).respond(ResponsesRequest(model="gpt-5", input="hi")))


def test_turn_timeout(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "hang")
    adapter = _adapter(mock_codex_bin, tmp_path, codex_turn_timeout_seconds=0.3)
    with pytest.raises(TurnTimeoutError):
        asyncio.run(adapter.respond(ResponsesRequest(model="gpt-5", input="hi")))


def test_failing_event_consumer_aborts_the_turn(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "ok")

    async def on_event(_event: ResponseEvent) -> None:
        raise BrokenPipeError("client gone")

    with pytest.raises(CallbackError):
        asyncio.run(
            _adapter(mock_codex_bin, tmp_path).respond_stream_events(ResponsesRequest(model="gpt-5", input="hi"), on_event)
        )


def test_model_list_is_fetched_and_cached(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "ok")
    adapter = _adapter(mock_codex_bin, tmp_path)

    async def run() -> tuple[list[str], bool, bool]:
        models = [m.id for m in await adapter.list_models()]
        monkeypatch.setenv("MOCK_CODEX_SCENARIO", "no_models")
        cached = await adapter.supports_model("gpt-5-codex")
        missing = await adapter.supports_model("sonnet")
        return models, cached, missing

    models, cached, missing = asyncio.run(run())
    assert models == ["gpt-5-codex", "gpt-5"]
    assert cached is True
    assert missing is False


def test_empty_model_list_is_a_protocol_error(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_SCENARIO", "no_models")
    with pytest.raises(ProtocolError, match="codex returned no models"):
        asyncio.run(_adapter(mock_codex_bin, tmp_path).list_models())


def test_static_model_list_skips_the_app_server(tmp_path) -> None:
    adapter = _adapter(str(tmp_path / "missing-codex"), tmp_path, codex_models="a, b")
    assert [m.id for m in asyncio.run(adapter.list_models())] == ["a", "b"]


def test_login_status_is_consulted_without_auth_file(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_LOGIN_STATUS", "Logged in using ChatGPT")
    adapter = _adapter(mock_codex_bin, tmp_path, auth_mode=None, codex_models="gpt-5")
    assert [m.id for m in asyncio.run(adapter.list_models())] == ["gpt-5"]


def test_api_key_login_is_refused(monkeypatch, tmp_path, mock_codex_bin) -> None:
    monkeypatch.setenv("MOCK_CODEX_LOGIN_STATUS", "Logged in using an API key")
    adapter = _adapter(mock_codex_bin, tmp_path, auth_mode="apikey", codex_models="gpt-5")
    with pytest.raises(ConfigurationError, match="not ChatGPT subscription"):
        asyncio.run(adapter.list_models())
