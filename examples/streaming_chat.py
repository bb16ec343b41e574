"""Interactive streaming chat with tool calling over OpenRouter.

Demonstrates:
- Defining tools with @tool and serving them from a LocalToolRegistry
- Streaming assistant text and reasoning as it arrives with Runner.iter
- Live pricing through PricingCache
- Optional extended thinking and OpenTelemetry tracing

Usage:
    uv run --env-file=.env examples/streaming_chat.py --model openai/gpt-4o-mini
    uv run --env-file=.env examples/streaming_chat.py --model anthropic/claude-sonnet-4.5 --thinking --trace
"""

import argparse
import asyncio
import datetime
import logging

from proxii import (
    ChatClient,
    ChatCompletionRequest,
    ContentEvent,
    LocalToolRegistry,
    Message,
    MessageRole,
    PricingCache,
    ReasoningEvent,
    RunCompleteEvent,
    Runner,
    Settings,
    ToolExecutor,
    ToolResultEvent,
    apply_thinking,
    configure_logging,
    tool,
)
from proxii.message import ToolCallRequestMessage, extract_text
from proxii.pricing import format_cost

NOTES: dict[str, str] = {}


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from proxii.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


def print_history(history: list[Message]):
    for message in history:
        if isinstance(message, ToolCallRequestMessage):
            names = ", ".join(tc.function.name for tc in message.tool_calls)
            print(f"  assistant -> {names}")
        else:
            print(f"  {message.role.value}: {extract_text(message.content)}")
    print()


@tool
def date_time():
    """Get the current date and time."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return {"iso": now.isoformat(), "day_of_week": now.strftime("%A")}


@tool
def add_note(title: str, content: str):
    """Save a note with the given title and content."""
    NOTES[title] = content
    return f"Saved note '{title}'."


@tool
def get_note(title: str):
    """Retrieve a note by title."""
    return NOTES.get(title, f"No note found with title '{title}'.")


async def main():
    parser = argparse.ArgumentParser(description="Streaming chat")
    parser.add_argument("--model", default="openai/gpt-4o-mini")
    parser.add_argument("--thinking", action="store_true")
    parser.add_argument("--trace", action="store_true")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    configure_logging(logging.DEBUG if args.debug else logging.WARNING)
    if args.trace:
        setup_tracing("proxii-chat")

    settings = Settings.from_env()
    registry = LocalToolRegistry([date_time, add_note, get_note])
    pricing = await PricingCache(settings=settings).get()
    runner = Runner(
        ChatClient(settings=settings, pricing=pricing),
        ToolExecutor(registry),
    )

    history = [
        Message(
            role=MessageRole.SYSTEM,
            content="You are a helpful assistant. Use the tools when they help.",
        )
    ]
    total_cost = 0.0

    print(f"Chatting with {args.model} (type /history to review the conversation)\n")

    while True:
        try:
            user_input = input("You: ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if user_input.strip() == "/history":
            print_history(history)
            continue

        history.append(Message(role=MessageRole.USER, content=user_input))
        request = ChatCompletionRequest(model=args.model, messages=history)
        if args.thinking:
            request = apply_thinking(request)

        print("Assistant: ", end="", flush=True)
        async for event in runner.iter(request, tool_ids=[t.name for t in registry.all_tools()]):
            match event:
                case ContentEvent(content=text):
                    print(text, end="", flush=True)
                case ReasoningEvent(content=text):
                    print(f"\033[2m{text}\033[0m", end="", flush=True)
                case ToolResultEvent(tool_name=name, content=content):
                    print(f"\n  [{name}] {content}\n", flush=True)
                case RunCompleteEvent(result=result):
                    history.extend(result.transcript)
                    total_cost += result.cost
                    print(f"\n({format_cost(result.cost)}, session {format_cost(total_cost)})\n")


if __name__ == "__main__":
    asyncio.run(main())
