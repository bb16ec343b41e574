"""Tool-call validation, execution and result formatting."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from proxii.instrumentation import record_error, tool_span
from proxii.message import Message, ToolCallRequestMessage, ToolCallResultMessage
from proxii.tools import ToolExecutionResult, ToolRegistry

if TYPE_CHECKING:
    from proxii.streaming import ToolCall

logger = logging.getLogger(__name__)

TOOL_CALLS_FINISH_REASON = "tool_calls"


def is_tool_calls_finish_reason(finish_reason: str | None) -> bool:
    return finish_reason == TOOL_CALLS_FINISH_REASON


def validate_tool_calls(calls: list[ToolCall]) -> list[ToolCall]:
    """Drop tool calls that cannot be dispatched.

    A call needs a non-empty ``id``, a ``function`` and a non-empty
    ``function.name``.  Each rejected call is logged with what it is
    missing.
    """
    valid = []
    for tc in calls:
        missing = []
        if not tc.id:
            missing.append("id")
        if tc.function is None:
            missing.append("function")
        elif not tc.function.name:
            missing.append("function.name")
        if missing:
            logger.error(
                f"Dropping invalid tool call, missing {', '.join(missing)}: {tc}"
            )
            continue
        valid.append(tc)
    return valid


def _error_payload(message: str) -> str:
    return json.dumps({"error": message})


class ToolExecutor:
    """Runs validated tool calls against a registry.

    Every failure mode (bad name, bad JSON arguments, registry failure,
    a raising tool) becomes an ``{"error": ...}`` payload for that one
    call.  Nothing raises past :meth:`execute_tool_call`.
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def get_tool_definitions(self, tool_ids: list[str]) -> list[dict[str, Any]]:
        return self.registry.get_tool_definitions(tool_ids)

    async def execute_tool_call(self, tc: ToolCall) -> ToolCallResultMessage:
        call_id = tc.id or "unknown"
        name = tc.function.name if tc.function is not None else None
        if not name or not isinstance(name, str):
            logger.error(f"Invalid tool call, missing or null tool name: {tc}")
            return ToolCallResultMessage(
                tool_call_id=call_id,
                content=_error_payload("Invalid tool call: missing or null tool name"),
            )

        # Some models send "" for zero-argument tools
        args_string = tc.function.arguments or "{}"
        try:
            params = json.loads(args_string)
        except json.JSONDecodeError:
            logger.error(f"Failed to parse tool arguments for {name}: {args_string}")
            return ToolCallResultMessage(
                tool_call_id=call_id,
                content=_error_payload(f"Invalid JSON arguments: {args_string}"),
            )
        if not isinstance(params, dict):
            return ToolCallResultMessage(
                tool_call_id=call_id,
                content=_error_payload(f"Invalid JSON arguments: {args_string}"),
            )

        logger.info(f"Executing tool {name} with {params}")
        async with tool_span(name, call_id) as span:
            try:
                raw = await self.registry.execute_tool(name, params)
            except Exception as e:
                record_error(span, e)
                logger.error(f"Failed to execute tool {name}: {e}")
                return ToolCallResultMessage(
                    tool_call_id=call_id,
                    content=_error_payload(str(e) or "Unknown error during tool execution"),
                )
            try:
                result = ToolExecutionResult.model_validate(raw, from_attributes=True)
            except ValidationError as e:
                record_error(span, e)
                logger.error(f"Tool {name} returned an invalid result: {raw!r}")
                return ToolCallResultMessage(
                    tool_call_id=call_id,
                    content=_error_payload(f"Invalid tool result: {raw!r}"),
                )

        if not result.success:
            logger.error(f"Tool {name} execution failed: {result.error}")
            return ToolCallResultMessage(
                tool_call_id=call_id,
                content=_error_payload(result.error or "Tool execution failed"),
            )

        logger.info(f"Tool {name} executed successfully")
        return ToolCallResultMessage(
            tool_call_id=call_id,
            content=json.dumps(result.data, default=str),
        )

    async def execute_tool_calls(self, calls: list[ToolCall]) -> list[ToolCallResultMessage]:
        """Execute all calls concurrently; results keep the input order."""
        logger.info(f"Executing {len(calls)} tool call(s)")
        return list(await asyncio.gather(
            *(self.execute_tool_call(tc) for tc in calls)
        ))


def build_continuation(
    calls: list[ToolCall],
    reasoning_details: list[Any] | None,
    results: list[ToolCallResultMessage],
    content: str = "",
) -> list[Message]:
    """Messages to append before the next turn: the assistant's tool-call
    request (reasoning details replayed verbatim) then each result."""
    return [
        ToolCallRequestMessage(
            content=content,
            tool_calls=calls,
            reasoning_details=reasoning_details or None,
        ),
        *results,
    ]
