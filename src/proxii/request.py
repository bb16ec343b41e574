"""Chat-completion request and response models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

from proxii.message import Message
from proxii.streaming import UsageRecord

ThinkingCapability = Literal[
    "always",                # thinks unconditionally, cannot be toggled
    "reasoning_effort",      # reasoning_effort parameter
    "thinking",              # thinking={type, budget_tokens}
    "max_reasoning_tokens",  # max_reasoning_tokens parameter
]

THINKING_MODELS: dict[str, ThinkingCapability] = {
    "openai/o1": "reasoning_effort",
    "openai/o1-mini": "reasoning_effort",
    "openai/o1-preview": "reasoning_effort",
    "deepseek/deepseek-chat": "always",
    "deepseek/deepseek-chat-v3.1:free": "always",
    "deepseek/deepseek-r1": "always",
    "tngtech/deepseek-r1t2-chimera": "always",
    "anthropic/claude-haiku-4.5": "thinking",
    "anthropic/claude-sonnet-4.5": "thinking",
    "google/gemini-2.5-flash": "max_reasoning_tokens",
    "google/gemini-2.5-pro": "max_reasoning_tokens",
}

THINKING_BUDGET_TOKENS = 10000
MAX_REASONING_TOKENS = 8000


class ChatCompletionRequest(BaseModel):
    """Body of a chat-completions call.

    ``messages`` accepts :class:`~proxii.message.Message` objects or
    plain dicts; messages are stored in wire shape.  Unknown provider
    fields are passed through.
    """

    model_config = ConfigDict(extra="allow")

    model: str
    messages: list[dict[str, Any]]
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    reasoning_effort: str | None = None
    thinking: dict[str, Any] | None = None
    max_reasoning_tokens: int | None = None

    @field_validator("messages", mode="before")
    @classmethod
    def dump_messages(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [m.to_api() if isinstance(m, Message) else m for m in value]

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ChatCompletion(BaseModel):
    """A non-streaming completion, reduced to its first choice."""

    id: str = ""
    model: str = ""
    content: str = ""
    finish_reason: str | None = None
    tool_calls: list[dict[str, Any]] = []
    usage: UsageRecord | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ChatCompletion:
        choices = payload.get("choices") or [{}]
        choice = choices[0] if isinstance(choices[0], dict) else {}
        message = choice.get("message") or {}
        usage = payload.get("usage")
        return cls(
            id=payload.get("id") or "",
            model=payload.get("model") or "",
            content=message.get("content") or "",
            finish_reason=choice.get("finish_reason"),
            tool_calls=message.get("tool_calls") or [],
            usage=UsageRecord.from_payload(usage) if isinstance(usage, dict) else None,
        )


def thinking_capability(model: str) -> ThinkingCapability | None:
    """How ``model`` enables extended thinking, or ``None`` if it can't.

    Exact ids win; otherwise the first known id contained in ``model``
    (``openai/o1-2024-12-17`` matches ``openai/o1``).
    """
    if model in THINKING_MODELS:
        return THINKING_MODELS[model]
    for key, capability in THINKING_MODELS.items():
        if key in model:
            return capability
    return None


def apply_thinking(request: ChatCompletionRequest) -> ChatCompletionRequest:
    """Return a copy of ``request`` with thinking switched on for its model."""
    match thinking_capability(request.model):
        case "reasoning_effort":
            return request.model_copy(update={"reasoning_effort": "high"})
        case "thinking":
            return request.model_copy(update={
                "thinking": {"type": "enabled", "budget_tokens": THINKING_BUDGET_TOKENS},
            })
        case "max_reasoning_tokens":
            return request.model_copy(update={"max_reasoning_tokens": MAX_REASONING_TOKENS})
        case _:
            return request
