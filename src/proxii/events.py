"""Events emitted while a chat-completion stream is being consumed."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from proxii.streaming import ToolCall, UsageRecord


@dataclass
class StreamEvent:
    """Base for all streaming events."""


@dataclass
class ContentEvent(StreamEvent):
    """Assistant text delta, emitted as soon as it arrives."""

    content: str = ""


@dataclass
class ReasoningEvent(StreamEvent):
    """Thinking/reasoning text delta."""

    content: str = ""


@dataclass
class UsageEvent(StreamEvent):
    """Terminal token usage, with the spend computed from it."""

    usage: UsageRecord
    cost: float = 0.0


@dataclass
class ToolCallsEvent(StreamEvent):
    """Validated tool calls, emitted at most once per stream.

    ``reasoning_details`` is ``None`` when the provider sent none.
    """

    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = "tool_calls"
    reasoning_details: list[Any] | None = None


@dataclass
class ToolResultEvent(StreamEvent):
    """A tool call finished; ``content`` is the JSON sent back to the model."""

    tool_call_id: str = ""
    tool_name: str = ""
    content: str = ""


@dataclass
class RunCompleteEvent(StreamEvent):
    """Final event of a :class:`~proxii.runner.Runner` loop."""

    result: Any = None
