"""Vertex AI ``generateContent`` protocol conversions and SSE framing."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from chatbridge.converters import (
    generate_completion_id,
    generate_tool_call_id,
    message_text,
    parse_arguments,
    unix_timestamp,
    unsupported_message,
)
from chatbridge.errors import SerializationError
from chatbridge.types import (
    AssistantMessage,
    ChatRequest,
    ChatResponse,
    Choice,
    Delta,
    DeveloperMessage,
    FinishReason,
    FunctionCall,
    FunctionCallDelta,
    NamedToolChoice,
    ResponseMessage,
    StreamChoice,
    StreamChunk,
    SystemMessage,
    ToolCall,
    ToolCallDelta,
    ToolMessage,
    Usage,
    UserMessage,
)

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
}

_CALLING_MODES = {"none": "NONE", "auto": "AUTO", "required": "ANY"}

_DATA_PREFIX = "data: "
_BOUNDARIES = (b"\n\n", b"\r\n\r\n")


# -- request direction --


def convert_request(req: ChatRequest, *, strict: bool = False) -> dict[str, Any]:
    """Build a ``generateContent`` JSON body from a unified request."""
    contents: list[dict[str, Any]] = []
    system_parts: list[dict[str, Any]] = []
    function_names: dict[str, str] = {}

    for msg in req.messages:
        if isinstance(msg, (SystemMessage, DeveloperMessage)):
            system_parts.append({"text": message_text(msg, strict=strict)})
        elif isinstance(msg, UserMessage):
            contents.append({"role": "user", "parts": [{"text": message_text(msg, strict=strict)}]})
        elif isinstance(msg, AssistantMessage):
            parts: list[dict[str, Any]] = []
            text = message_text(msg, strict=strict)
            if text:
                parts.append({"text": text})
            for call in msg.tool_calls or []:
                function_names[call.id] = call.function.name
                parts.append(
                    {
                        "functionCall": {
                            "name": call.function.name,
                            "args": parse_arguments(call.function.arguments),
                        }
                    }
                )
            if parts:
                contents.append({"role": "model", "parts": parts})
        elif isinstance(msg, ToolMessage):
            response_text = message_text(msg, strict=strict)
            contents.append(
                {
                    "role": "user",
                    "parts": [
                        {
                            "functionResponse": {
                                "name": function_names.get(msg.tool_call_id, msg.tool_call_id),
                                "response": _function_response(response_text),
                            }
                        }
                    ],
                }
            )
        else:
            unsupported_message(msg, "generateContent", strict=strict)

    body: dict[str, Any] = {"contents": contents}
    if system_parts:
        body["systemInstruction"] = {"role": "user", "parts": system_parts}
    generation_config = build_generation_config(req)
    if generation_config is not None:
        body["generationConfig"] = generation_config
    tools = build_tools(req)
    if tools is not None:
        body["tools"] = tools
    tool_config = build_tool_config(req)
    if tool_config is not None:
        body["toolConfig"] = tool_config
    return body


def _function_response(text: str) -> dict[str, Any]:
    try:
        value = json.loads(text)
    except ValueError:
        return {"result": text}
    if not isinstance(value, dict):
        return {"result": text}
    return value


def build_generation_config(req: ChatRequest) -> dict[str, Any] | None:
    """Map sampling parameters, or return None when the request sets none."""
    has_params = (
        req.temperature is not None
        or req.top_p is not None
        or req.max_completion_tokens is not None
        or req.stop is not None
        or req.response_format is not None
    )
    if not has_params:
        return None

    config: dict[str, Any] = {}
    if req.temperature is not None:
        config["temperature"] = req.temperature
    if req.top_p is not None:
        config["topP"] = req.top_p
    if req.max_completion_tokens is not None:
        config["maxOutputTokens"] = req.max_completion_tokens
    stop = req.stop_sequences()
    if stop is not None:
        config["stopSequences"] = stop
    if req.response_format is not None and req.response_format.type in ("json_object", "json_schema"):
        config["responseMimeType"] = "application/json"
    return config


def build_tools(req: ChatRequest) -> list[dict[str, Any]] | None:
    if not req.tools:
        return None
    declarations = []
    for tool in req.tools:
        declaration: dict[str, Any] = {"name": tool.function.name}
        if tool.function.description is not None:
            declaration["description"] = tool.function.description
        if tool.function.parameters is not None:
            declaration["parameters"] = tool.function.parameters
        declarations.append(declaration)
    return [{"functionDeclarations": declarations}]


def build_tool_config(req: ChatRequest) -> dict[str, Any] | None:
    choice = req.tool_choice
    if choice is None:
        return None
    if isinstance(choice, NamedToolChoice):
        calling: dict[str, Any] = {"mode": "ANY", "allowedFunctionNames": [choice.function.name]}
    else:
        calling = {"mode": _CALLING_MODES.get(choice, "AUTO")}
    return {"functionCallingConfig": calling}


# -- response direction --


def convert_finish_reason(reason: str) -> FinishReason:
    return _FINISH_REASONS.get(reason, FinishReason.STOP)


def convert_usage(metadata: dict[str, Any] | None) -> Usage | None:
    if metadata is None:
        return None
    return Usage(
        prompt_tokens=metadata.get("promptTokenCount", 0),
        completion_tokens=metadata.get("candidatesTokenCount", 0),
        total_tokens=metadata.get("totalTokenCount", 0),
    )


def extract_parts(candidate: dict[str, Any]) -> tuple[str, list[ToolCall]]:
    """Concatenate text parts and collect function calls of one candidate."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    content = candidate.get("content") or {}
    for part in content.get("parts") or []:
        if part.get("text") is not None:
            text_parts.append(part["text"])
        call = part.get("functionCall")
        if call is not None:
            try:
                arguments = json.dumps(call.get("args", {}))
            except (TypeError, ValueError) as exc:
                raise SerializationError(f"Cannot encode function call args: {exc}") from exc
            tool_calls.append(
                ToolCall(
                    id=generate_tool_call_id(),
                    function=FunctionCall(name=call["name"], arguments=arguments),
                )
            )
    return "".join(text_parts), tool_calls


def convert_response(resp: dict[str, Any], model: str) -> ChatResponse:
    choices = []
    for index, candidate in enumerate(resp.get("candidates") or []):
        text, tool_calls = extract_parts(candidate)
        reason = candidate.get("finishReason")
        choices.append(
            Choice(
                index=index,
                message=ResponseMessage(content=text or None, tool_calls=tool_calls or None),
                finish_reason=convert_finish_reason(reason) if reason else FinishReason.STOP,
            )
        )

    return ChatResponse(
        id=generate_completion_id(),
        created=unix_timestamp(),
        model=model,
        choices=choices,
        usage=convert_usage(resp.get("usageMetadata")),
    )


def convert_stream_chunk(resp: dict[str, Any], model: str, stream_id: str) -> StreamChunk | None:
    """Convert one streamed ``generateContent`` payload.

    Only the first candidate is streamed. Function calls arrive whole, so each
    becomes a complete tool-call delta.
    """
    usage = convert_usage(resp.get("usageMetadata"))
    candidates = resp.get("candidates") or []
    if not candidates:
        if usage is None:
            return None
        return StreamChunk(id=stream_id, created=unix_timestamp(), model=model, usage=usage)

    candidate = candidates[0]
    text, tool_calls = extract_parts(candidate)
    reason = candidate.get("finishReason")

    deltas = [
        ToolCallDelta(
            index=i,
            id=call.id,
            type="function",
            function=FunctionCallDelta(name=call.function.name, arguments=call.function.arguments),
        )
        for i, call in enumerate(tool_calls)
    ]
    delta = Delta(role="assistant", content=text or None, tool_calls=deltas or None)
    return StreamChunk(
        id=stream_id,
        created=unix_timestamp(),
        model=model,
        choices=[
            StreamChoice(
                index=0,
                delta=delta,
                finish_reason=convert_finish_reason(reason) if reason else None,
            )
        ],
        usage=usage,
    )


# -- SSE framing --


def _last_boundary(buffer: bytes) -> int:
    """Return the offset just past the last event boundary, or -1."""
    end = -1
    for boundary in _BOUNDARIES:
        pos = buffer.rfind(boundary)
        if pos != -1:
            end = max(end, pos + len(boundary))
    return end


def _data_events(lines: Iterable[str]) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    for line in lines:
        line = line.strip()
        if not line.startswith(_DATA_PREFIX):
            continue
        payload = line[len(_DATA_PREFIX) :]
        try:
            event = json.loads(payload)
        except ValueError:
            logger.debug("Skipping non-JSON SSE data: %s", payload)
            continue
        if isinstance(event, dict):
            events.append(event)
        else:
            logger.debug("Skipping non-object SSE data: %s", payload)
    return events


def parse_sse_events(buffer: bytes) -> tuple[list[dict[str, Any]], bytes]:
    """Parse the complete events in ``buffer``.

    Returns the decoded ``data:`` payloads up to the last blank-line boundary
    and the bytes after it. Without a boundary nothing is parsed and the
    buffer comes back unchanged.
    """
    end = _last_boundary(buffer)
    if end == -1:
        return [], buffer

    complete = buffer[:end].decode("utf-8", errors="replace")
    remaining = buffer[end:]
    if not remaining.strip():
        remaining = b""
    # str.splitlines would also break on separators that JSON strings may hold raw.
    return _data_events(complete.split("\n")), remaining


class SseFramer:
    """Accumulates byte chunks and emits the events they complete."""

    def __init__(self) -> None:
        self.buffer = b""

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        self.buffer += data
        events, self.buffer = parse_sse_events(self.buffer)
        return events

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is left as a final event without its trailing blank line."""
        if not self.buffer:
            return []
        events, _ = parse_sse_events(self.buffer + b"\n\n")
        self.buffer = b""
        return events
