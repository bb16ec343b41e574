import json

import httpx
import pytest

from proxii.client import ChatClient, StreamCallbacks
from proxii.config import Settings
from proxii.tools import LocalToolRegistry, tool


# ---------------------------------------------------------------------------
# SSE payload builders (mirror the OpenRouter chunk shape)
# ---------------------------------------------------------------------------

def content_chunk(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


def tool_call_chunk(*fragments: dict) -> dict:
    return {"choices": [{"delta": {"tool_calls": list(fragments)}}]}


def finish_chunk(reason: str = "tool_calls") -> dict:
    return {"choices": [{"delta": {}, "finish_reason": reason}]}


def usage_chunk(prompt: int, completion: int, total: int) -> dict:
    return {
        "choices": [],
        "usage": {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": total,
        },
    }


def sse_body(*events, done: bool = True) -> bytes:
    """Encode payloads as an SSE body. Strings are sent verbatim."""
    lines = [
        f"data: {e if isinstance(e, str) else json.dumps(e, ensure_ascii=False)}\n\n"
        for e in events
    ]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def stream_response(*chunks: bytes, status_code: int = 200) -> httpx.Response:
    """A streaming response that delivers ``chunks`` as separate reads."""

    async def body():
        for chunk in chunks:
            yield chunk

    return httpx.Response(
        status_code,
        content=body(),
        headers={"content-type": "text/event-stream"},
    )


# ---------------------------------------------------------------------------
# Callback recorder
# ---------------------------------------------------------------------------

class CallbackRecorder:
    """Collects every callback invocation in arrival order."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.errors: list[Exception] = []

    def of(self, kind: str) -> list[tuple]:
        return [c[1:] for c in self.calls if c[0] == kind]

    @property
    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_content=lambda text: self.calls.append(("content", text)),
            on_thinking=lambda text: self.calls.append(("thinking", text)),
            on_complete=lambda usage, cost: self.calls.append(("complete", usage, cost)),
            on_tool_calls=lambda calls, reason, details: self.calls.append(
                ("tool_calls", calls, reason, details)
            ),
            on_error=self.errors.append,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(api_key="sk-test", base_url="https://gateway.test/api/v1")


@pytest.fixture
def recorder():
    return CallbackRecorder()


@pytest.fixture
def sent_requests():
    return []


@pytest.fixture
def make_client(settings, sent_requests):
    """Factory for a ChatClient backed by ``httpx.MockTransport``.

    ``responder`` is either a list of responses returned in order or a
    callable taking the request.  Every request is appended to
    ``sent_requests``.
    """
    def _make(responder, pricing=None, api_key="sk-test"):
        queue = list(responder) if isinstance(responder, list) else None

        def handler(request: httpx.Request) -> httpx.Response:
            sent_requests.append(request)
            if queue is not None:
                return queue.pop(0)
            return responder(request)

        return ChatClient(
            settings=settings,
            api_key_getter=lambda: api_key,
            pricing=pricing,
            transport=httpx.MockTransport(handler),
        )
    return _make


@pytest.fixture
def date_time_tool():
    @tool
    def date_time():
        """Get the current date and time."""
        return {"iso": "2024-12-27T19:45:00Z", "day_of_week": "Friday"}
    return date_time


@pytest.fixture
def echo_tool():
    @tool
    async def echo(text: str):
        """Echo the text back."""
        return {"echo": text}
    return echo


@pytest.fixture
def explode_tool():
    @tool
    def explode():
        """Always fails."""
        raise RuntimeError("kaboom")
    return explode


@pytest.fixture
def registry(date_time_tool, echo_tool, explode_tool):
    return LocalToolRegistry([date_time_tool, echo_tool, explode_tool])
