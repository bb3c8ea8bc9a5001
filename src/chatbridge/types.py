"""Provider-agnostic request/response models.

The shapes follow the OpenAI chat-completions wire format so that the
native-schema backends can send and receive them unchanged.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FinishReason(str, Enum):
    """Normalized cause a completion stopped."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


def _coerce_finish_reason(value: Any) -> Any:
    if value is None or isinstance(value, FinishReason):
        return value
    try:
        return FinishReason(value)
    except ValueError:
        return FinishReason.STOP


# -- content parts --


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageUrl(BaseModel):
    url: str
    detail: str | None = None


class ImageUrlPart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


class InputAudioPart(BaseModel):
    type: Literal["input_audio"] = "input_audio"
    input_audio: dict[str, Any]


class FilePart(BaseModel):
    type: Literal["file"] = "file"
    file: dict[str, Any]


class RefusalPart(BaseModel):
    type: Literal["refusal"] = "refusal"
    refusal: str


ContentPart = Annotated[
    Union[TextPart, ImageUrlPart, InputAudioPart, FilePart, RefusalPart],
    Field(discriminator="type"),
]
Content = Union[str, list[ContentPart]]


# -- tools --


class FunctionCall(BaseModel):
    """Function name plus its JSON-encoded arguments."""

    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    """A model-issued request to invoke a tool."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class FunctionDefinition(BaseModel):
    name: str
    description: str | None = None
    parameters: dict[str, Any] | None = None
    strict: bool | None = None


class ToolDef(BaseModel):
    """JSON-schema tool definition."""

    type: Literal["function"] = "function"
    function: FunctionDefinition


class ToolChoiceFunction(BaseModel):
    name: str


class NamedToolChoice(BaseModel):
    """Forces the model to call one specific function."""

    type: Literal["function"] = "function"
    function: ToolChoiceFunction


class ResponseFormat(BaseModel):
    type: Literal["text", "json_object", "json_schema"]
    json_schema: dict[str, Any] | None = None


# -- messages --


class _MessageBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    def parts(self) -> list[Any]:
        """Return the message content as a list of content parts."""
        content = getattr(self, "content", None)
        if content is None:
            return []
        if isinstance(content, str):
            return [TextPart(text=content)]
        return list(content)


class SystemMessage(_MessageBase):
    role: Literal["system"] = "system"
    content: Content
    name: str | None = None


class DeveloperMessage(_MessageBase):
    role: Literal["developer"] = "developer"
    content: Content
    name: str | None = None


class UserMessage(_MessageBase):
    role: Literal["user"] = "user"
    content: Content
    name: str | None = None


class AssistantMessage(_MessageBase):
    role: Literal["assistant"] = "assistant"
    content: Content | None = None
    tool_calls: list[ToolCall] | None = None
    name: str | None = None


class ToolMessage(_MessageBase):
    role: Literal["tool"] = "tool"
    content: Content
    tool_call_id: str


class FunctionMessage(_MessageBase):
    """Legacy function-result message; only the native-schema backends accept it."""

    role: Literal["function"] = "function"
    name: str
    content: str | None = None


Message = Annotated[
    Union[
        SystemMessage,
        DeveloperMessage,
        UserMessage,
        AssistantMessage,
        ToolMessage,
        FunctionMessage,
    ],
    Field(discriminator="role"),
]


class ChatRequest(BaseModel):
    """Normalized request shared by all backends.

    Unknown fields are kept and forwarded to the native-schema backends.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    model: str
    messages: list[Message]
    temperature: float | None = None
    top_p: float | None = None
    stop: str | list[str] | None = None
    max_completion_tokens: int | None = None
    tools: list[ToolDef] | None = None
    tool_choice: str | NamedToolChoice | None = None
    response_format: ResponseFormat | None = None

    def stop_sequences(self) -> list[str] | None:
        """Return ``stop`` normalized to a list."""
        if self.stop is None:
            return None
        if isinstance(self.stop, str):
            return [self.stop]
        return list(self.stop)


# -- responses --


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ResponseMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None


class Choice(BaseModel):
    index: int = 0
    message: ResponseMessage
    finish_reason: FinishReason | None = None

    @field_validator("finish_reason", mode="before")
    @classmethod
    def _finish_reason(cls, value: Any) -> Any:
        return _coerce_finish_reason(value)


class ChatResponse(BaseModel):
    """Unified chat completion response."""

    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage | None = None

    @property
    def text(self) -> str:
        """Text content of the first choice, or an empty string."""
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


class FunctionCallDelta(BaseModel):
    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(BaseModel):
    index: int
    id: str | None = None
    type: Literal["function"] | None = None
    function: FunctionCallDelta | None = None


class Delta(BaseModel):
    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallDelta] | None = None


class StreamChoice(BaseModel):
    index: int = 0
    delta: Delta = Field(default_factory=Delta)
    finish_reason: FinishReason | None = None

    @field_validator("finish_reason", mode="before")
    @classmethod
    def _finish_reason(cls, value: Any) -> Any:
        return _coerce_finish_reason(value)


class StreamChunk(BaseModel):
    """Incremental piece of a streamed completion."""

    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: list[StreamChoice] = Field(default_factory=list)
    usage: Usage | None = None
