import json

from agentkoppler.sse_emitter import SSE_DONE, ChatStreamEmitter, ResponsesStreamEmitter, sse_comment, sse_data


def _item_id(event: dict) -> str | None:
    if "item_id" in event:
        return event["item_id"]
    item = event.get("item")
    return item.get("id") if isinstance(item, dict) else None


def _run(emitter: ResponsesStreamEmitter, steps: list[tuple[str, str]]) -> list[dict]:
    events = [emitter.created()]
    for kind, delta in steps:
        if kind == "reasoning":
            events.extend(emitter.reasoning_delta(delta))
        else:
            events.extend(emitter.output_delta(delta))
    events.extend(emitter.complete())
    return events


def test_message_index_stays_stable_when_reasoning_arrives_late() -> None:
    emitter = ResponsesStreamEmitter("m1")
    events = _run(emitter, [("output", "Hello"), ("reasoning", " thinking"), ("output", " world")])

    message_indices = {e["output_index"] for e in events if _item_id(e) == emitter.message_item_id}
    reasoning_indices = {e["output_index"] for e in events if _item_id(e) == emitter.reasoning_item_id}
    assert message_indices == {0}
    assert reasoning_indices == {1}

    completed = events[-1]
    assert completed["type"] == "response.completed"
    assert [item["type"] for item in completed["response"]["output"]] == ["message", "reasoning"]
    assert completed["response"]["output"][0]["content"][0]["text"] == "Hello world"
    assert completed["response"]["output"][1]["summary"][0]["text"] == " thinking"


def test_reasoning_first_stream_event_order() -> None:
    emitter = ResponsesStreamEmitter("m1")
    events = _run(emitter, [("reasoning", "Think"), ("output", "Answer")])
    assert [e["type"] for e in events] == [
        "response.created",
        "response.output_item.added",
        "response.reasoning_summary_part.added",
        "response.reasoning_summary_text.delta",
        "response.reasoning_text.delta",
        "response.output_item.added",
        "response.output_text.delta",
        "response.reasoning_summary_text.done",
        "response.reasoning_summary_part.done",
        "response.reasoning_text.done",
        "response.output_item.done",
        "response.output_text.done",
        "response.output_item.done",
        "response.completed",
    ]
    assert [e["sequence_number"] for e in events] == list(range(1, len(events) + 1))
    assert emitter.reasoning_index == 0
    assert emitter.message_index == 1
    assert events[6]["logprobs"] == []


def test_completion_without_output_still_creates_message_item() -> None:
    emitter = ResponsesStreamEmitter("m1")
    events = _run(emitter, [])
    types = [e["type"] for e in events]
    assert types == [
        "response.created",
        "response.output_item.added",
        "response.output_text.done",
        "response.output_item.done",
        "response.completed",
    ]
    assert events[-1]["response"]["output"][0]["content"][0]["text"] == ""


def test_empty_deltas_emit_nothing() -> None:
    emitter = ResponsesStreamEmitter("m1")
    assert emitter.output_delta("") == []
    assert emitter.reasoning_delta("") == []
    assert emitter.message_index is None


def test_responses_error_event_shape() -> None:
    event = ResponsesStreamEmitter("m1").error("backend died")
    assert event["type"] == "error"
    assert event["error"] == {"type": "upstream_error", "message": "backend died"}


def test_chat_emitter_keeps_whitespace_only_deltas() -> None:
    emitter = ChatStreamEmitter("m1", completion_id="chatcmpl_1", created=1)
    role = emitter.role_chunk()
    chunks = [emitter.content_chunk(d) for d in ["hello", " ", "world", ""]]
    finish = emitter.finish_chunk()

    assert role["choices"][0]["delta"] == {"role": "assistant"}
    assert chunks[3] is None
    assert "".join(c["choices"][0]["delta"]["content"] for c in chunks[:3]) == "hello world"
    assert finish["choices"][0] == {"index": 0, "delta": {}, "finish_reason": "stop"}
    assert emitter.text == "hello world"
    assert emitter.error("boom") == {
        "id": "chatcmpl_1",
        "object": "error",
        "error": {"type": "upstream_error", "message": "boom"},
    }


def test_sse_framing() -> None:
    assert sse_data({"a": "ü"}) == 'data: {"a": "ü"}\n\n'.encode("utf-8")
    assert json.loads(sse_data({"x": 1})[len(b"data: ") :]) == {"x": 1}
    assert sse_comment("keepalive") == b": keepalive\n\n"
    assert SSE_DONE == b"data: [DONE]\n\n"
