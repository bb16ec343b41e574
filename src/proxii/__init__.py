from proxii.client import ChatClient, StreamCallbacks
from proxii.config import Settings, configure_logging
from proxii.dispatch import ToolExecutor, build_continuation, validate_tool_calls
from proxii.events import (
    ContentEvent,
    ReasoningEvent,
    RunCompleteEvent,
    StreamEvent,
    ToolCallsEvent,
    ToolResultEvent,
    UsageEvent,
)
from proxii.exceptions import (
    APIRequestError,
    InvalidTransitionError,
    MissingAPIKeyError,
    ProxiiError,
    StreamReadError,
)
from proxii.instrumentation import instrument, uninstrument
from proxii.message import (
    Message,
    MessageRole,
    ToolCallRequestMessage,
    ToolCallResultMessage,
)
from proxii.pricing import ModelRates, PricingCache, calculate_cost
from proxii.request import ChatCompletion, ChatCompletionRequest, apply_thinking
from proxii.runner import Runner, RunResult
from proxii.streaming import (
    DeltaAccumulator,
    StreamChunk,
    StreamState,
    ToolCall,
    ToolFunction,
    UsageRecord,
)
from proxii.tools import LocalToolRegistry, Tool, ToolExecutionResult, tool

__all__ = [
    "APIRequestError",
    "ChatClient",
    "ChatCompletion",
    "ChatCompletionRequest",
    "ContentEvent",
    "DeltaAccumulator",
    "InvalidTransitionError",
    "LocalToolRegistry",
    "Message",
    "MessageRole",
    "MissingAPIKeyError",
    "ModelRates",
    "PricingCache",
    "ProxiiError",
    "ReasoningEvent",
    "RunCompleteEvent",
    "RunResult",
    "Runner",
    "Settings",
    "StreamCallbacks",
    "StreamChunk",
    "StreamEvent",
    "StreamReadError",
    "StreamState",
    "Tool",
    "ToolCall",
    "ToolCallRequestMessage",
    "ToolCallResultMessage",
    "ToolCallsEvent",
    "ToolExecutionResult",
    "ToolExecutor",
    "ToolFunction",
    "ToolResultEvent",
    "UsageEvent",
    "UsageRecord",
    "apply_thinking",
    "build_continuation",
    "calculate_cost",
    "configure_logging",
    "instrument",
    "tool",
    "uninstrument",
    "validate_tool_calls",
]
