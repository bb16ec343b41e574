"""Streaming primitives for chat-completion responses.

Each decoded SSE payload becomes a :class:`StreamChunk`.  The
:class:`DeltaAccumulator` consumes chunks for one stream, turns them
into :mod:`proxii.events` and reassembles tool calls whose fields
arrive in fragments across many chunks (via :class:`ToolCallAccumulator`).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from proxii.dispatch import is_tool_calls_finish_reason, validate_tool_calls
from proxii.events import (
    ContentEvent,
    ReasoningEvent,
    StreamEvent,
    ToolCallsEvent,
    UsageEvent,
)
from proxii.exceptions import InvalidTransitionError
from proxii.pricing import ModelRates, calculate_cost

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------

@dataclass
class ToolFunction:
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """A tool call ready for dispatch. ``arguments`` is a JSON string."""

    id: str = ""
    type: str = "function"
    function: ToolFunction | None = field(default_factory=ToolFunction)

    def to_dict(self) -> dict[str, Any]:
        function = self.function or ToolFunction()
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": function.name, "arguments": function.arguments},
        }


@dataclass
class ToolCallDelta:
    """A fragment of a tool call from a single streaming chunk."""

    index: int = 0
    id: str | None = None
    type: str | None = None
    name: str | None = None
    arguments: str | None = None

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> ToolCallDelta:
        index = raw.get("index")
        function = raw.get("function")
        if not isinstance(function, Mapping):
            function = {}
        return cls(
            index=index if isinstance(index, int) else 0,
            id=_str_or_none(raw.get("id")),
            type=_str_or_none(raw.get("type")),
            name=_str_or_none(function.get("name")),
            arguments=_str_or_none(function.get("arguments")),
        )


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Identity fields (``id``, ``type``, ``name``) replace the stored value
    when present, so a repeated fragment is harmless.  ``arguments``
    arrives as successive substrings and is appended.
    """

    def __init__(self) -> None:
        self._pending: dict[int, ToolCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def feed(self, fragment: ToolCallDelta) -> None:
        if fragment.index not in self._pending:
            self._pending[fragment.index] = ToolCall()
        tc = self._pending[fragment.index]
        if fragment.id:
            tc.id = fragment.id
        if fragment.type:
            tc.type = fragment.type
        if tc.function is None:
            return
        if fragment.name:
            tc.function.name = fragment.name
        if fragment.arguments is not None:
            tc.function.arguments += fragment.arguments

    def finalize(self) -> list[ToolCall]:
        """Return accumulated tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]

    def clear(self) -> None:
        self._pending.clear()


# ---------------------------------------------------------------------------
# Decoded chunks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class BlockSequence:
    """Typed content blocks, e.g. ``{"type": "thinking", "thinking": ...}``."""

    blocks: tuple[Mapping[str, Any], ...]


DeltaContent = PlainText | BlockSequence


def parse_delta_content(raw: Any) -> DeltaContent | None:
    if isinstance(raw, str):
        return PlainText(raw) if raw else None
    if isinstance(raw, list):
        return BlockSequence(tuple(b for b in raw if isinstance(b, Mapping)))
    return None


@dataclass
class UsageRecord:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> UsageRecord:
        return cls(
            prompt_tokens=_token_count(raw, "prompt_tokens"),
            completion_tokens=_token_count(raw, "completion_tokens"),
            total_tokens=_token_count(raw, "total_tokens"),
        )


def _token_count(raw: Mapping[str, Any], key: str) -> int:
    value = raw.get(key)
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric usage field {key}={value!r}")
        return 0


@dataclass
class Delta:
    content: DeltaContent | None = None
    reasoning: str | None = None
    reasoning_details: list[Any] = field(default_factory=list)
    tool_calls: list[ToolCallDelta] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> Delta:
        details = raw.get("reasoning_details")
        tool_calls = raw.get("tool_calls")
        return cls(
            content=parse_delta_content(raw.get("content")),
            reasoning=_str_or_none(raw.get("reasoning")),
            reasoning_details=list(details) if isinstance(details, list) else [],
            tool_calls=[
                ToolCallDelta.from_payload(tc)
                for tc in (tool_calls if isinstance(tool_calls, list) else [])
                if isinstance(tc, Mapping)
            ],
        )


@dataclass
class StreamChunk:
    """One decoded SSE event. Only the first choice is read."""

    delta: Delta | None = None
    usage: UsageRecord | None = None
    finish_reason: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> StreamChunk:
        choice: Mapping[str, Any] = {}
        choices = payload.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
            choice = choices[0]
        delta = choice.get("delta")
        usage = payload.get("usage")
        return cls(
            delta=Delta.from_payload(delta) if isinstance(delta, Mapping) else None,
            usage=UsageRecord.from_payload(usage) if isinstance(usage, Mapping) else None,
            finish_reason=_str_or_none(choice.get("finish_reason")),
        )


# ---------------------------------------------------------------------------
# Accumulator state machine
# ---------------------------------------------------------------------------

class StreamState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    ERRORED = "errored"
    CANCELLED = "cancelled"


_TRANSITIONS: dict[StreamState, frozenset[StreamState]] = {
    StreamState.IDLE: frozenset({
        StreamState.STREAMING, StreamState.COMPLETED,
        StreamState.ERRORED, StreamState.CANCELLED,
    }),
    StreamState.STREAMING: frozenset({
        StreamState.COMPLETED, StreamState.TOOL_CALLS_PENDING,
        StreamState.ERRORED, StreamState.CANCELLED,
    }),
    StreamState.TOOL_CALLS_PENDING: frozenset({
        StreamState.ERRORED, StreamState.CANCELLED,
    }),
    StreamState.COMPLETED: frozenset(),
    StreamState.ERRORED: frozenset(),
    StreamState.CANCELLED: frozenset(),
}


class DeltaAccumulator:
    """Per-stream state machine turning chunks into events.

    ``IDLE -> STREAMING -> {COMPLETED | TOOL_CALLS_PENDING | ERRORED |
    CANCELLED}``.  Tool calls are dispatched on the
    ``STREAMING -> TOOL_CALLS_PENDING`` transition, which can only
    happen once, so a repeated terminal chunk never dispatches twice.
    Chunks are still accepted in ``TOOL_CALLS_PENDING`` because usage
    commonly trails the finish reason.

    Args:
        model: Model id used for the cost lookup.
        pricing: Rates keyed by model id. Without it cost is ``0.0``.
    """

    def __init__(
        self,
        model: str | None = None,
        pricing: Mapping[str, ModelRates] | None = None,
    ) -> None:
        self.model = model
        self.pricing = pricing
        self.state = StreamState.IDLE
        self._tool_calls = ToolCallAccumulator()
        self._reasoning_details: list[Any] = []

    @property
    def reasoning_details(self) -> list[Any]:
        return list(self._reasoning_details)

    @property
    def pending_tool_calls(self) -> list[ToolCall]:
        return self._tool_calls.finalize()

    def feed(self, chunk: StreamChunk) -> list[StreamEvent]:
        if self.state is StreamState.IDLE:
            self._transition(StreamState.STREAMING)
        elif self.state not in (StreamState.STREAMING, StreamState.TOOL_CALLS_PENDING):
            raise InvalidTransitionError(
                f"Cannot feed a chunk to a {self.state.value} stream"
            )

        events: list[StreamEvent] = []
        if chunk.delta is not None:
            events.extend(self._delta_events(chunk.delta))

        if chunk.usage is not None:
            events.append(UsageEvent(usage=chunk.usage, cost=self._cost(chunk.usage)))

        if (
            is_tool_calls_finish_reason(chunk.finish_reason)
            and self.state is StreamState.STREAMING
            and len(self._tool_calls) > 0
        ):
            self._transition(StreamState.TOOL_CALLS_PENDING)
            dispatched = self._dispatch(chunk.finish_reason)
            if dispatched is not None:
                events.append(dispatched)
        return events

    def close(self) -> None:
        """End of stream. Discards the partial tool calls and details."""
        if self.state in (StreamState.IDLE, StreamState.STREAMING):
            self._transition(StreamState.COMPLETED)
        self._discard()

    def fail(self) -> None:
        self._transition(StreamState.ERRORED)
        self._discard()

    def cancel(self) -> None:
        self._transition(StreamState.CANCELLED)
        self._discard()

    def _transition(self, target: StreamState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Illegal stream transition {self.state.value} -> {target.value}"
            )
        logger.debug(f"Stream {self.state.value} -> {target.value}")
        self.state = target

    def _discard(self) -> None:
        self._tool_calls.clear()
        self._reasoning_details = []

    def _delta_events(self, delta: Delta) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        match delta.content:
            case PlainText(text=text):
                events.append(ContentEvent(content=text))
            case BlockSequence(blocks=blocks):
                for block in blocks:
                    kind = block.get("type")
                    if kind == "text" and block.get("text"):
                        events.append(ContentEvent(content=block["text"]))
                    elif kind == "thinking":
                        thinking = block.get("thinking") or block.get("text")
                        if thinking:
                            events.append(ReasoningEvent(content=thinking))

        if delta.reasoning:
            events.append(ReasoningEvent(content=delta.reasoning))

        self._reasoning_details.extend(delta.reasoning_details)

        for fragment in delta.tool_calls:
            self._tool_calls.feed(fragment)
        return events

    def _dispatch(self, finish_reason: str) -> ToolCallsEvent | None:
        valid = validate_tool_calls(self._tool_calls.finalize())
        if not valid:
            logger.error("No valid tool calls after filtering; nothing dispatched")
            return None
        return ToolCallsEvent(
            tool_calls=valid,
            finish_reason=finish_reason,
            reasoning_details=self.reasoning_details or None,
        )

    def _cost(self, usage: UsageRecord) -> float:
        if self.pricing is None or self.model is None:
            return 0.0
        return calculate_cost(
            self.model, usage.prompt_tokens, usage.completion_tokens, self.pricing,
        )


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None
