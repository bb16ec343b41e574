import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from proxii.client import ChatClient
from proxii.dispatch import ToolExecutor, build_continuation
from proxii.events import (
    ContentEvent,
    RunCompleteEvent,
    StreamEvent,
    ToolCallsEvent,
    ToolResultEvent,
    UsageEvent,
)
from proxii.message import Message, MessageRole
from proxii.request import ChatCompletionRequest
from proxii.streaming import UsageRecord

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """The result of a single Runner.run() invocation.

    ``transcript`` holds the messages the run added: each assistant
    tool-call request, its tool results, and the final answer.
    """

    last_message: Message
    transcript: list[Message] = field(default_factory=list)
    usage: list[UsageRecord] = field(default_factory=list)
    cost: float = 0.0
    turns: int = 0


class Runner:
    """Executes the streaming tool-calling loop.

    Each turn streams one completion.  When the turn ends in tool calls
    the Runner executes them, appends the assistant tool-call message
    and the results to the conversation, and streams a continuation.
    It stops at the first turn without tool calls.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point.

    Args:
        client: Client used for every turn.
        executor: Executes dispatched tool calls.
        max_turns: Maximum number of provider round-trips before
            returning a timeout message.
    """

    def __init__(
        self,
        client: ChatClient,
        executor: ToolExecutor,
        max_turns: int = 10,
    ):
        self.client = client
        self.executor = executor
        self.max_turns = max_turns

    async def run(
        self, request: ChatCompletionRequest, tool_ids: list[str] | None = None,
    ) -> RunResult:
        """Run the loop until a final response."""
        result: RunResult | None = None
        async for event in self.iter(request, tool_ids):
            if isinstance(event, RunCompleteEvent):
                result = event.result
        if result is None:
            raise RuntimeError("iter() ended without emitting RunCompleteEvent")
        return result

    async def iter(
        self, request: ChatCompletionRequest, tool_ids: list[str] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run the loop, yielding events as execution proceeds."""
        if tool_ids and request.tools is None:
            request = request.model_copy(update={
                "tools": self.executor.get_tool_definitions(tool_ids),
            })

        messages = list(request.messages)
        transcript: list[Message] = []
        usage: list[UsageRecord] = []
        cost = 0.0

        for turn in range(1, self.max_turns + 1):
            turn_request = request.model_copy(update={"messages": messages})
            full_content = ""
            dispatched: ToolCallsEvent | None = None

            async for event in self.client.iter(turn_request):
                if isinstance(event, ContentEvent):
                    full_content += event.content
                elif isinstance(event, ToolCallsEvent):
                    dispatched = event
                elif isinstance(event, UsageEvent):
                    usage.append(event.usage)
                    cost += event.cost
                yield event

            # No tool calls, final text response
            if dispatched is None:
                msg = Message(role=MessageRole.ASSISTANT, content=full_content)
                transcript.append(msg)
                yield RunCompleteEvent(result=RunResult(
                    last_message=msg, transcript=transcript,
                    usage=usage, cost=cost, turns=turn,
                ))
                return

            results = await self.executor.execute_tool_calls(dispatched.tool_calls)
            for tc, result in zip(dispatched.tool_calls, results):
                yield ToolResultEvent(
                    tool_call_id=result.tool_call_id,
                    tool_name=tc.function.name,
                    content=result.content,
                )

            continuation = build_continuation(
                dispatched.tool_calls, dispatched.reasoning_details, results,
                content=full_content,
            )
            transcript.extend(continuation)
            messages.extend(m.to_api() for m in continuation)

        # Max turns exceeded
        logger.warning(f"Maximum turns ({self.max_turns}) reached")
        timeout_msg = Message(
            role=MessageRole.ASSISTANT,
            content="Maximum turns reached. Please try again.",
        )
        transcript.append(timeout_msg)
        yield RunCompleteEvent(result=RunResult(
            last_message=timeout_msg, transcript=transcript,
            usage=usage, cost=cost, turns=self.max_turns,
        ))
