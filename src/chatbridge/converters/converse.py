"""Bedrock Converse protocol conversions.

Native shapes are the keyword arguments and response dicts of the boto3
``bedrock-runtime`` ``converse`` / ``converse_stream`` operations.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from chatbridge.converters import (
    generate_completion_id,
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
    NamedToolChoice,
    ResponseMessage,
    StreamChoice,
    StreamChunk,
    SystemMessage,
    ToolCall,
    ToolMessage,
    Usage,
    UserMessage,
)

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
}


def extract_system_and_messages(
    messages: Iterable[Any], *, strict: bool = False
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split unified messages into Converse system blocks and conversation turns."""
    system_blocks: list[dict[str, Any]] = []
    turns: list[dict[str, Any]] = []

    for msg in messages:
        if isinstance(msg, (SystemMessage, DeveloperMessage)):
            system_blocks.append({"text": message_text(msg, strict=strict)})
        elif isinstance(msg, UserMessage):
            turns.append({"role": "user", "content": [{"text": message_text(msg, strict=strict)}]})
        elif isinstance(msg, AssistantMessage):
            content: list[dict[str, Any]] = []
            text = message_text(msg, strict=strict)
            if text:
                content.append({"text": text})
            for call in msg.tool_calls or []:
                content.append(
                    {
                        "toolUse": {
                            "toolUseId": call.id,
                            "name": call.function.name,
                            "input": parse_arguments(call.function.arguments),
                        }
                    }
                )
            if content:
                turns.append({"role": "assistant", "content": content})
        elif isinstance(msg, ToolMessage):
            result = {
                "toolUseId": msg.tool_call_id,
                "content": [{"text": message_text(msg, strict=strict)}],
            }
            turns.append({"role": "user", "content": [{"toolResult": result}]})
        else:
            unsupported_message(msg, "converse", strict=strict)

    return system_blocks, turns


def build_inference_config(req: ChatRequest) -> dict[str, Any] | None:
    """Map sampling parameters, or return None when the request sets none."""
    config: dict[str, Any] = {}
    if req.temperature is not None:
        config["temperature"] = req.temperature
    if req.top_p is not None:
        config["topP"] = req.top_p
    if req.max_completion_tokens is not None:
        config["maxTokens"] = req.max_completion_tokens
    stop = req.stop_sequences()
    if stop is not None:
        config["stopSequences"] = stop
    return config or None


def build_tool_config(req: ChatRequest) -> dict[str, Any] | None:
    if not req.tools:
        return None

    tools = []
    for tool in req.tools:
        spec: dict[str, Any] = {
            "name": tool.function.name,
            "inputSchema": {"json": tool.function.parameters or dict(_EMPTY_SCHEMA)},
        }
        if tool.function.description:
            spec["description"] = tool.function.description
        tools.append({"toolSpec": spec})

    config: dict[str, Any] = {"tools": tools}
    choice = _tool_choice(req.tool_choice)
    if choice is not None:
        config["toolChoice"] = choice
    return config


def _tool_choice(choice: str | NamedToolChoice | None) -> dict[str, Any] | None:
    # Converse has no "none" mode; the model then chooses freely.
    if isinstance(choice, NamedToolChoice):
        return {"tool": {"name": choice.function.name}}
    if choice == "auto":
        return {"auto": {}}
    if choice == "required":
        return {"any": {}}
    return None


def build_converse_request(req: ChatRequest, model_id: str, *, strict: bool = False) -> dict[str, Any]:
    """Assemble keyword arguments for ``converse`` / ``converse_stream``."""
    system_blocks, turns = extract_system_and_messages(req.messages, strict=strict)
    kwargs: dict[str, Any] = {"modelId": model_id, "messages": turns}
    if system_blocks:
        kwargs["system"] = system_blocks
    inference_config = build_inference_config(req)
    if inference_config is not None:
        kwargs["inferenceConfig"] = inference_config
    tool_config = build_tool_config(req)
    if tool_config is not None:
        kwargs["toolConfig"] = tool_config
    return kwargs


def convert_stop_reason(reason: str | None) -> FinishReason:
    return _STOP_REASONS.get(reason or "", FinishReason.STOP)


def convert_usage(usage: dict[str, Any] | None) -> Usage | None:
    if not usage:
        return None
    prompt = int(usage.get("inputTokens", 0))
    completion = int(usage.get("outputTokens", 0))
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


def convert_converse_response(output: dict[str, Any], model: str) -> ChatResponse:
    """Fold a ``converse`` response into a single-choice ChatResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []

    message = (output.get("output") or {}).get("message") or {}
    for block in message.get("content") or []:
        if "text" in block:
            text_parts.append(block["text"])
        elif "toolUse" in block:
            tool_use = block["toolUse"]
            try:
                arguments = json.dumps(tool_use.get("input", {}))
            except (TypeError, ValueError) as exc:
                raise SerializationError(f"Cannot encode tool input: {exc}") from exc
            tool_calls.append(
                ToolCall(
                    id=tool_use["toolUseId"],
                    function=FunctionCall(name=tool_use["name"], arguments=arguments),
                )
            )
        else:
            logger.debug("Ignoring converse content block %s", sorted(block))

    text = "".join(text_parts)
    return ChatResponse(
        id=generate_completion_id(),
        created=unix_timestamp(),
        model=model,
        choices=[
            Choice(
                index=0,
                message=ResponseMessage(content=text or None, tool_calls=tool_calls or None),
                finish_reason=convert_stop_reason(output.get("stopReason")),
            )
        ],
        usage=convert_usage(output.get("usage")),
    )


def stream_event_to_chunk(event: dict[str, Any], model: str, stream_id: str) -> StreamChunk | None:
    """Convert one ``converse_stream`` event; events without a unified equivalent give None."""
    if "contentBlockDelta" in event:
        text = (event["contentBlockDelta"].get("delta") or {}).get("text")
        if text is None:
            return None
        return _chunk(stream_id, model, [StreamChoice(delta=Delta(content=text))])

    if "messageStop" in event:
        reason = convert_stop_reason(event["messageStop"].get("stopReason"))
        return _chunk(stream_id, model, [StreamChoice(finish_reason=reason)])

    if "metadata" in event:
        usage = convert_usage(event["metadata"].get("usage"))
        if usage is None:
            return None
        return _chunk(stream_id, model, [], usage=usage)

    return None


def _chunk(
    stream_id: str, model: str, choices: list[StreamChoice], usage: Usage | None = None
) -> StreamChunk:
    return StreamChunk(id=stream_id, created=unix_timestamp(), model=model, choices=choices, usage=usage)
