import re
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


# ---------------------------------------------------------------------------
# Multimodal content blocks (OpenRouter request shapes)
# ---------------------------------------------------------------------------

class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageUrl(BaseModel):
    url: str  # http(s) URL or data:image/...;base64,...
    detail: Literal["low", "high", "auto"] | None = None


class ImageContent(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


class FileData(BaseModel):
    filename: str
    file_data: str


class FileContent(BaseModel):
    type: Literal["file"] = "file"
    file: FileData


class InputAudio(BaseModel):
    data: str  # base64 without the data URI prefix
    format: Literal[
        "wav", "mp3", "aiff", "aac", "ogg", "flac", "m4a", "pcm16", "pcm24"
    ]


class AudioContent(BaseModel):
    type: Literal["input_audio"] = "input_audio"
    input_audio: InputAudio


class VideoUrl(BaseModel):
    url: str


class VideoContent(BaseModel):
    type: Literal["video_url"] = "video_url"
    video_url: VideoUrl


ContentBlock = Annotated[
    Union[TextContent, ImageContent, FileContent, AudioContent, VideoContent],
    Field(discriminator="type"),
]
MessageContent = str | list[ContentBlock]


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: MessageContent

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    def to_api(self) -> dict[str, Any]:
        """Dump in the wire shape expected by the chat-completions API."""
        return self.model_dump(exclude_none=True)


class ToolCallRequestMessage(Message):
    """Assistant turn that asked for tool calls.

    ``reasoning_details`` is replayed verbatim so providers that sign
    their reasoning (Gemini thought signatures) can resume from it.
    """

    role: MessageRole = MessageRole.ASSISTANT
    content: MessageContent = ""
    tool_calls: list
    reasoning_details: list[Any] | None = None

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list) -> list[dict]:
        return [
            {
                "id": t.id,
                "type": "function",
                "function": {
                    "arguments": t.function.arguments,
                    "name": t.function.name
                }
            }
            for t in tool_calls
        ]


class ToolCallResultMessage(Message):
    role: MessageRole = MessageRole.TOOL
    content: str
    tool_call_id: str


# ---------------------------------------------------------------------------
# Content helpers
# ---------------------------------------------------------------------------

_FULLWIDTH_TOKEN = re.compile(r"<｜[^｜]*｜>")
_PIPE_TOKEN = re.compile(r"<\|[^|]*\|>")


def strip_special_tokens(content: str) -> str:
    """Remove tokenizer control tokens some models leak into output.

    DeepSeek emits fullwidth forms such as ``<｜end▁of▁sentence｜>``;
    others emit ``<|im_end|>``.
    """
    if not content:
        return content
    cleaned = _FULLWIDTH_TOKEN.sub("", content)
    cleaned = _PIPE_TOKEN.sub("", cleaned)
    return cleaned.strip()


def extract_text(content: MessageContent) -> str:
    """Join the text blocks of a message's content."""
    if isinstance(content, str):
        return content
    return "\n".join(
        block.text for block in content if isinstance(block, TextContent)
    )
