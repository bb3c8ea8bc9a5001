"""Conversions between the unified schema and provider-native formats."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

from chatbridge.errors import UnsupportedFeatureError
from chatbridge.types import TextPart

logger = logging.getLogger(__name__)


def generate_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def generate_tool_call_id() -> str:
    return f"call_{uuid.uuid4().hex}"


def unix_timestamp() -> int:
    return int(time.time())


def message_text(message: Any, *, strict: bool = False) -> str:
    """Join the text parts of a message with newlines.

    Non-text parts are dropped, or rejected with ``UnsupportedFeatureError``
    when ``strict`` is set.
    """
    texts: list[str] = []
    for part in message.parts():
        if isinstance(part, TextPart):
            texts.append(part.text)
            continue
        if strict:
            raise UnsupportedFeatureError(f"{part.type} content in {message.role} message")
        logger.debug("Dropping %s content part from %s message", part.type, message.role)
    return "\n".join(texts)


def parse_arguments(arguments: str) -> dict[str, Any]:
    """Parse a tool-call argument string, recovering to ``{}`` when it is not a JSON object."""
    try:
        value = json.loads(arguments)
    except (TypeError, ValueError):
        logger.debug("Tool call arguments are not valid JSON: %r", arguments)
        return {}
    if not isinstance(value, dict):
        logger.debug("Tool call arguments are not a JSON object: %r", arguments)
        return {}
    return value


def unsupported_message(message: Any, target: str, *, strict: bool = False) -> None:
    """Handle a message kind the target protocol has no place for."""
    if strict:
        raise UnsupportedFeatureError(f"{message.role} messages for {target}")
    logger.debug("Omitting %s message from %s request", message.role, target)


__all__ = [
    "generate_completion_id",
    "generate_tool_call_id",
    "message_text",
    "parse_arguments",
    "unix_timestamp",
    "unsupported_message",
]
