"""HTTP client for the OpenRouter chat-completions endpoint."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from proxii.config import Settings
from proxii.events import (
    ContentEvent,
    ReasoningEvent,
    StreamEvent,
    ToolCallsEvent,
    UsageEvent,
)
from proxii.exceptions import (
    APIRequestError,
    MissingAPIKeyError,
    ProxiiError,
    StreamReadError,
)
from proxii.instrumentation import completion_span, record_error, record_usage
from proxii.message import strip_special_tokens
from proxii.pricing import ModelRates
from proxii.request import ChatCompletion, ChatCompletionRequest
from proxii.sse import iter_payloads
from proxii.streaming import DeltaAccumulator, StreamChunk, StreamState

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10.0


@dataclass
class StreamCallbacks:
    """Callbacks fired while a stream is consumed.

    Any callback may be a plain function or a coroutine function.

    Args:
        on_content: Assistant text delta.
        on_thinking: Reasoning text delta.
        on_complete: ``(usage, cost)`` once usage arrives.
        on_tool_calls: ``(tool_calls, finish_reason, reasoning_details)``
            at most once per stream.
        on_error: Precondition, transport and protocol errors, before
            they are raised. Never called for cancellation.
    """

    on_content: Callable[[str], Any] | None = None
    on_thinking: Callable[[str], Any] | None = None
    on_complete: Callable[..., Any] | None = None
    on_tool_calls: Callable[..., Any] | None = None
    on_error: Callable[[Exception], Any] | None = None


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ChatClient:
    """Chat-completions client with SSE streaming.

    Each call opens its own connection and, for streams, its own
    :class:`~proxii.streaming.DeltaAccumulator`; concurrent streams
    share nothing mutable.

    Args:
        settings: Gateway settings. Defaults to ``Settings.from_env()``.
        api_key_getter: Synchronous getter for the current API key.
            Defaults to ``settings.current_api_key``.
        pricing: Rates used to price usage. Without it cost is ``0.0``.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        api_key_getter: Callable[[], str | None] | None = None,
        pricing: Mapping[str, ModelRates] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or Settings.from_env()
        self.api_key_getter = api_key_getter or self.settings.current_api_key
        self.pricing = pricing
        self.transport = transport

    def _require_api_key(self) -> str:
        api_key = self.api_key_getter()
        if not api_key:
            raise MissingAPIKeyError()
        return api_key

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.settings.app_url,
            "X-Title": self.settings.app_title,
        }

    def _body(self, request: ChatCompletionRequest, stream: bool) -> dict[str, Any]:
        body = request.to_body()
        if stream:
            body["stream"] = True
        body["route"] = self.settings.route
        return body

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport,
            timeout=httpx.Timeout(self.settings.timeout, connect=CONNECT_TIMEOUT_SECONDS),
        )

    @staticmethod
    def _api_error(response: httpx.Response) -> APIRequestError:
        try:
            data = response.json()
        except ValueError:
            data = {}
        error = data.get("error") if isinstance(data, dict) else None
        if not isinstance(error, dict):
            error = {}
        return APIRequestError(
            error.get("message") or f"API request failed: {response.status_code}",
            status_code=response.status_code,
            error_type=error.get("type"),
            code=error.get("code"),
        )

    async def complete(self, request: ChatCompletionRequest) -> ChatCompletion:
        """Send a non-streaming completion request."""
        api_key = self._require_api_key()
        async with completion_span(request.model, streaming=False) as span:
            try:
                async with self._http_client() as client:
                    response = await client.post(
                        self.settings.completions_url,
                        headers=self._headers(api_key),
                        json=self._body(request, stream=False),
                    )
                if response.is_error:
                    raise self._api_error(response)
                completion = ChatCompletion.from_payload(response.json())
            except (httpx.HTTPError, ValueError) as e:
                record_error(span, e)
                raise StreamReadError(f"Request failed: {e}") from e
            except ProxiiError as e:
                record_error(span, e)
                raise
            record_usage(span, completion.usage)

        return completion.model_copy(
            update={"content": strip_special_tokens(completion.content)}
        )

    async def iter(
        self,
        request: ChatCompletionRequest,
        accumulator: DeltaAccumulator | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion, yielding events as chunks arrive.

        Raises:
            MissingAPIKeyError: Before any network call.
            APIRequestError: On a non-2xx response.
            StreamReadError: If the connection or body read fails.
        """
        api_key = self._require_api_key()
        acc = accumulator or DeltaAccumulator(model=request.model, pricing=self.pricing)

        async with completion_span(request.model) as span:
            try:
                async with self._http_client() as client:
                    async with client.stream(
                        "POST",
                        self.settings.completions_url,
                        headers=self._headers(api_key),
                        json=self._body(request, stream=True),
                    ) as response:
                        if response.is_error:
                            await response.aread()
                            raise self._api_error(response)
                        async for payload in iter_payloads(response.aiter_bytes()):
                            for event in acc.feed(StreamChunk.from_payload(payload)):
                                if isinstance(event, UsageEvent):
                                    record_usage(span, event.usage, event.cost)
                                yield event
            except (asyncio.CancelledError, GeneratorExit):
                acc.cancel()
                raise
            except httpx.HTTPError as e:
                acc.fail()
                record_error(span, e)
                raise StreamReadError(f"Stream error: {e}") from e
            except ProxiiError as e:
                if acc.state not in (StreamState.ERRORED, StreamState.CANCELLED):
                    acc.fail()
                record_error(span, e)
                raise
            acc.close()

    async def stream(
        self,
        request: ChatCompletionRequest,
        callbacks: StreamCallbacks,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Stream a completion into ``callbacks``.

        Setting ``cancel`` stops the network read and ends the stream
        silently: no error callback and no exception.  Every other
        failure goes to ``callbacks.on_error`` and is then raised.
        """
        if cancel is None:
            await self._consume(request, callbacks)
            return

        consume = asyncio.create_task(self._consume(request, callbacks))
        stop = asyncio.create_task(cancel.wait())
        try:
            await asyncio.wait({consume, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            consume.cancel()
            stop.cancel()
            raise

        if consume.done():
            stop.cancel()
            consume.result()
            return

        consume.cancel()
        try:
            await consume
        except asyncio.CancelledError:
            logger.info("Stream cancelled by caller")

    async def _consume(self, request: ChatCompletionRequest, callbacks: StreamCallbacks) -> None:
        try:
            async for event in self.iter(request):
                await self._emit(event, callbacks)
        except ProxiiError as e:
            logger.error(f"Streaming error: {e}")
            await _invoke(callbacks.on_error, e)
            raise

    @staticmethod
    async def _emit(event: StreamEvent, callbacks: StreamCallbacks) -> None:
        match event:
            case ContentEvent(content=text):
                await _invoke(callbacks.on_content, text)
            case ReasoningEvent(content=text):
                await _invoke(callbacks.on_thinking, text)
            case UsageEvent(usage=usage, cost=cost):
                await _invoke(callbacks.on_complete, usage, cost)
            case ToolCallsEvent():
                await _invoke(
                    callbacks.on_tool_calls,
                    event.tool_calls,
                    event.finish_reason,
                    event.reasoning_details,
                )
