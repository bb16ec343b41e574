"""End-to-end tests for ChatClient against a mocked gateway."""

import asyncio
import json

import httpx
import pytest

from proxii.client import StreamCallbacks
from proxii.exceptions import APIRequestError, MissingAPIKeyError, StreamReadError
from proxii.events import ContentEvent, ToolCallsEvent, UsageEvent
from proxii.pricing import ModelRates
from proxii.request import ChatCompletionRequest
from proxii.streaming import DeltaAccumulator, StreamState, ToolCall, ToolFunction, UsageRecord
from tests.conftest import (
    CallbackRecorder,
    content_chunk,
    finish_chunk,
    sse_body,
    stream_response,
    tool_call_chunk,
    usage_chunk,
)


def _request(model: str = "openai/gpt-4o", text: str = "hi") -> ChatCompletionRequest:
    return ChatCompletionRequest(model=model, messages=[{"role": "user", "content": text}])


# ---------------------------------------------------------------------------
# Content and usage
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_plain_text_stream(make_client, recorder):
    body = sse_body(content_chunk("Hel"), content_chunk("lo"), usage_chunk(5, 2, 7))
    client = make_client([stream_response(body)])

    await client.stream(_request(), recorder.callbacks)

    assert recorder.calls == [
        ("content", "Hel"),
        ("content", "lo"),
        ("complete", UsageRecord(5, 2, 7), 0.0),
    ]
    assert recorder.errors == []


@pytest.mark.asyncio
async def test_request_headers_and_body(make_client, recorder, sent_requests):
    client = make_client([stream_response(sse_body(content_chunk("ok")))])

    await client.stream(_request(), recorder.callbacks)

    [request] = sent_requests
    assert request.method == "POST"
    assert str(request.url) == "https://gateway.test/api/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["HTTP-Referer"] == "https://proxii.app"
    assert request.headers["X-Title"] == "Proxii"
    assert json.loads(request.content) == {
        "model": "openai/gpt-4o",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": True,
        "route": "fallback",
    }


@pytest.mark.asyncio
async def test_usage_is_priced(make_client, recorder):
    pricing = {"acme/model": ModelRates(input=1.0, output=2.0)}
    body = sse_body(content_chunk("x"), usage_chunk(1_000_000, 1_000_000, 2_000_000))
    client = make_client([stream_response(body)], pricing=pricing)

    await client.stream(_request(model="acme/model"), recorder.callbacks)

    [(usage, cost)] = recorder.of("complete")
    assert usage.total_tokens == 2_000_000
    assert cost == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_reasoning_goes_to_thinking_callback(make_client, recorder):
    body = sse_body(
        {"choices": [{"delta": {"reasoning": "Considering..."}}]},
        {"choices": [{"delta": {"content": [
            {"type": "thinking", "thinking": "More."},
            {"type": "text", "text": "Answer"},
        ]}}]},
    )
    client = make_client([stream_response(body)])

    await client.stream(_request(), recorder.callbacks)

    assert recorder.calls == [
        ("thinking", "Considering..."),
        ("thinking", "More."),
        ("content", "Answer"),
    ]


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(make_client):
    seen = []

    async def on_content(text):
        await asyncio.sleep(0)
        seen.append(text)

    client = make_client([stream_response(sse_body(content_chunk("a"), content_chunk("b")))])
    await client.stream(_request(), StreamCallbacks(on_content=on_content))

    assert seen == ["a", "b"]


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_events_split_across_network_reads(make_client, recorder):
    body = sse_body(content_chunk("héllo"), content_chunk("wörld"))
    # Split inside JSON and inside a multibyte character
    cut_a = body.index(b"\xc3") + 1
    cut_b = cut_a + 17
    client = make_client([stream_response(body[:cut_a], body[cut_a:cut_b], body[cut_b:])])

    await client.stream(_request(), recorder.callbacks)

    assert recorder.of("content") == [("héllo",), ("wörld",)]


@pytest.mark.asyncio
async def test_malformed_chunk_does_not_stop_stream(make_client, recorder):
    body = sse_body(content_chunk("before"), "{not json", content_chunk("after"))
    client = make_client([stream_response(body)])

    await client.stream(_request(), recorder.callbacks)

    assert recorder.of("content") == [("before",), ("after",)]
    assert recorder.errors == []


@pytest.mark.asyncio
async def test_malformed_usage_does_not_stop_stream(make_client, recorder):
    body = sse_body(
        content_chunk("Hel"),
        {"choices": [], "usage": {"prompt_tokens": "n/a", "completion_tokens": 2, "total_tokens": 2}},
        content_chunk("lo"),
    )
    client = make_client([stream_response(body)])

    await client.stream(_request(), recorder.callbacks)

    assert recorder.of("content") == [("Hel",), ("lo",)]
    assert recorder.of("complete") == [(UsageRecord(0, 2, 2), 0.0)]
    assert recorder.errors == []


@pytest.mark.asyncio
async def test_keepalive_comments_and_done_produce_nothing(make_client, recorder):
    body = b": OPENROUTER PROCESSING\n\n" + sse_body(done=True)
    client = make_client([stream_response(body)])

    await client.stream(_request(), recorder.callbacks)

    assert recorder.calls == []
    assert recorder.errors == []


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_calls_dispatched_once(make_client, recorder):
    body = sse_body(
        tool_call_chunk({"index": 0, "id": "c1", "type": "function",
                         "function": {"name": "date_time", "arguments": ""}}),
        tool_call_chunk({"index": 0, "function": {"arguments": "{}"}}),
        finish_chunk("tool_calls"),
        finish_chunk("tool_calls"),
        usage_chunk(10, 5, 15),
    )
    client = make_client([stream_response(body)])

    await client.stream(_request(), recorder.callbacks)

    assert recorder.of("tool_calls") == [(
        [ToolCall(id="c1", type="function", function=ToolFunction("date_time", "{}"))],
        "tool_calls",
        None,
    )]
    assert recorder.of("complete") == [(UsageRecord(10, 5, 15), 0.0)]


@pytest.mark.asyncio
async def test_parallel_tool_calls_with_reasoning_details(make_client, recorder):
    details = {"type": "reasoning.encrypted", "data": "c2lnbmF0dXJl", "id": "r1"}
    body = sse_body(
        {"choices": [{"delta": {"reasoning_details": [details]}}]},
        tool_call_chunk(
            {"index": 0, "id": "c1", "function": {"name": "echo", "arguments": '{"text":'}},
            {"index": 1, "id": "c2", "function": {"name": "date_time", "arguments": "{}"}},
        ),
        tool_call_chunk({"index": 0, "function": {"arguments": ' "hi"}'}}),
        finish_chunk("tool_calls"),
    )
    client = make_client([stream_response(body)])

    await client.stream(_request(), recorder.callbacks)

    [(calls, reason, reasoning)] = recorder.of("tool_calls")
    assert [(c.id, c.function.name, c.function.arguments) for c in calls] == [
        ("c1", "echo", '{"text": "hi"}'),
        ("c2", "date_time", "{}"),
    ]
    assert reason == "tool_calls"
    assert reasoning == [details]


@pytest.mark.asyncio
async def test_tool_call_without_name_is_not_dispatched(make_client, recorder):
    body = sse_body(
        tool_call_chunk({"index": 0, "id": "c1", "function": {"arguments": "{}"}}),
        finish_chunk("tool_calls"),
    )
    client = make_client([stream_response(body)])

    await client.stream(_request(), recorder.callbacks)

    assert recorder.of("tool_calls") == []
    assert recorder.errors == []


@pytest.mark.asyncio
async def test_iter_leaves_accumulator_in_terminal_state(make_client):
    body = sse_body(
        tool_call_chunk({"index": 0, "id": "c1", "function": {"name": "f", "arguments": "{}"}}),
        finish_chunk("tool_calls"),
    )
    client = make_client([
        stream_response(body),
        stream_response(sse_body(content_chunk("done"))),
    ])

    first = DeltaAccumulator()
    events = [e async for e in client.iter(_request(), accumulator=first)]
    assert [type(e) for e in events] == [ToolCallsEvent]
    assert first.state is StreamState.TOOL_CALLS_PENDING

    second = DeltaAccumulator()
    events = [e async for e in client.iter(_request(), accumulator=second)]
    assert events == [ContentEvent("done")]
    assert second.state is StreamState.COMPLETED


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_network(make_client, recorder, sent_requests):
    client = make_client([stream_response(sse_body())], api_key=None)

    with pytest.raises(MissingAPIKeyError, match="No API key found"):
        await client.stream(_request(), recorder.callbacks)

    assert sent_requests == []
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], MissingAPIKeyError)


@pytest.mark.asyncio
async def test_error_status_surfaces_provider_message(make_client, recorder):
    response = httpx.Response(
        401, json={"error": {"message": "Invalid API key", "code": 401}},
    )
    client = make_client([response])

    with pytest.raises(APIRequestError, match="Invalid API key") as exc_info:
        await client.stream(_request(), recorder.callbacks)

    assert exc_info.value.status_code == 401
    assert recorder.errors == [exc_info.value]
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_error_status_without_body_message(make_client, recorder):
    client = make_client([httpx.Response(502, text="Bad Gateway")])

    with pytest.raises(APIRequestError, match="API request failed: 502"):
        await client.stream(_request(), recorder.callbacks)

    assert len(recorder.errors) == 1


@pytest.mark.asyncio
async def test_connection_lost_mid_stream(make_client, recorder):
    async def body():
        yield sse_body(content_chunk("Hel"), done=False)
        raise httpx.ReadError("connection reset")

    client = make_client([httpx.Response(200, content=body())])

    with pytest.raises(StreamReadError):
        await client.stream(_request(), recorder.callbacks)

    assert recorder.of("content") == [("Hel",)]
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], StreamReadError)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_stops_stream_silently(make_client):
    cancel = asyncio.Event()
    recorder = CallbackRecorder()

    async def body():
        yield sse_body(content_chunk("Hel"), done=False)
        await asyncio.Event().wait()
        yield sse_body(content_chunk("never"))

    client = make_client([httpx.Response(200, content=body())])
    callbacks = recorder.callbacks
    on_content = callbacks.on_content

    def content_then_cancel(text):
        on_content(text)
        cancel.set()

    callbacks.on_content = content_then_cancel

    await asyncio.wait_for(client.stream(_request(), callbacks, cancel=cancel), timeout=5)

    assert recorder.of("content") == [("Hel",)]
    assert recorder.errors == []


@pytest.mark.asyncio
async def test_cancel_event_unused_when_stream_finishes(make_client, recorder):
    cancel = asyncio.Event()
    client = make_client([stream_response(sse_body(content_chunk("done")))])

    await client.stream(_request(), recorder.callbacks, cancel=cancel)

    assert recorder.of("content") == [("done",)]


@pytest.mark.asyncio
async def test_errors_still_raised_when_cancel_event_given(make_client, recorder):
    client = make_client([httpx.Response(500, json={"error": {"message": "boom"}})])

    with pytest.raises(APIRequestError, match="boom"):
        await client.stream(_request(), recorder.callbacks, cancel=asyncio.Event())

    assert len(recorder.errors) == 1


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_streams_do_not_share_state(make_client):
    def responder(request: httpx.Request) -> httpx.Response:
        text = json.loads(request.content)["messages"][0]["content"]
        return stream_response(
            sse_body(
                tool_call_chunk({"index": 0, "id": f"id-{text}",
                                 "function": {"name": text, "arguments": "{}"}}),
                finish_chunk("tool_calls"),
            )
        )

    client = make_client(responder)
    first, second = CallbackRecorder(), CallbackRecorder()

    await asyncio.gather(
        client.stream(_request(text="alpha"), first.callbacks),
        client.stream(_request(text="beta"), second.callbacks),
    )

    [(calls_a, _, _)] = first.of("tool_calls")
    [(calls_b, _, _)] = second.of("tool_calls")
    assert [c.id for c in calls_a] == ["id-alpha"]
    assert [c.id for c in calls_b] == ["id-beta"]


# ---------------------------------------------------------------------------
# Non-streaming
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_complete_strips_special_tokens(make_client, sent_requests):
    client = make_client([httpx.Response(200, json={
        "id": "gen-1",
        "model": "deepseek/deepseek-chat",
        "choices": [{
            "message": {"role": "assistant", "content": "Hello<｜end▁of▁sentence｜>"},
            "finish_reason": "stop",
        }],
        "usage": {"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6},
    })])

    completion = await client.complete(_request(model="deepseek/deepseek-chat"))

    assert completion.content == "Hello"
    assert completion.usage == UsageRecord(4, 2, 6)
    body = json.loads(sent_requests[0].content)
    assert "stream" not in body
    assert body["route"] == "fallback"


@pytest.mark.asyncio
async def test_complete_error_status(make_client):
    client = make_client([httpx.Response(429, json={"error": {"message": "Rate limited"}})])

    with pytest.raises(APIRequestError, match="Rate limited") as exc_info:
        await client.complete(_request())

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_iter_usage_event_carries_cost(make_client):
    client = make_client(
        [stream_response(sse_body(usage_chunk(1_000_000, 0, 1_000_000)))],
        pricing={"openai/gpt-4o": ModelRates(2.5, 10.0)},
    )

    events = [e async for e in client.iter(_request())]

    assert events == [UsageEvent(UsageRecord(1_000_000, 0, 1_000_000), cost=2.5)]
