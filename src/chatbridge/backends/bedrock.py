"""Amazon Bedrock backend over the Converse API."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from chatbridge.backends.base import BaseBackend
from chatbridge.converters import generate_completion_id
from chatbridge.converters.converse import (
    build_converse_request,
    convert_converse_response,
    stream_event_to_chunk,
)
from chatbridge.errors import ProviderError
from chatbridge.streaming import relay_events
from chatbridge.types import ChatRequest, ChatResponse, StreamChunk


class BedrockBackend(BaseBackend):
    """Bedrock runtime client driven through ``converse`` and ``converse_stream``.

    boto3 calls block, so each one runs in a worker thread.
    """

    name = "bedrock"
    _logger = logging.getLogger(__name__)

    def __init__(self, *, client: Any, model_id: str, strict: bool = False) -> None:
        self._client = client
        self._model_id = model_id
        self._strict = strict

    @classmethod
    def from_env(cls, model_id: str, **kwargs: Any) -> BedrockBackend:
        """Create a client from the default AWS credential chain; ``AWS_REGION`` picks the region."""
        client = boto3.client("bedrock-runtime", region_name=os.environ.get("AWS_REGION"))
        return cls(client=client, model_id=model_id, **kwargs)

    async def complete(self, req: ChatRequest) -> ChatResponse:
        kwargs = build_converse_request(req, self._model_id, strict=self._strict)
        try:
            output = await asyncio.to_thread(self._client.converse, **kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise self._wrap_error(exc) from exc
        return convert_converse_response(output, req.model)

    def stream(self, req: ChatRequest) -> AsyncIterator[StreamChunk]:

        async def _gen() -> AsyncIterator[StreamChunk]:
            kwargs = build_converse_request(req, self._model_id, strict=self._strict)
            try:
                output = await asyncio.to_thread(self._client.converse_stream, **kwargs)
            except (BotoCoreError, ClientError) as exc:
                raise self._wrap_error(exc) from exc

            event_stream = output["stream"]
            events = iter(event_stream)
            stream_id = generate_completion_id()

            async def _receive() -> dict[str, Any] | None:
                try:
                    return await asyncio.to_thread(next, events, None)
                except (BotoCoreError, ClientError) as exc:
                    raise self._wrap_error(exc) from exc

            def _close() -> None:
                close = getattr(event_stream, "close", None)
                if close is not None:
                    close()

            relay = relay_events(
                _receive,
                lambda event: stream_event_to_chunk(event, req.model, stream_id),
                close=_close,
            )
            async with aclosing(relay) as chunks:
                async for chunk in chunks:
                    yield chunk

        return _gen()

    def _wrap_error(self, exc: Exception) -> ProviderError:
        status_code = None
        if isinstance(exc, ClientError):
            status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        self._logger.debug("Bedrock call failed: %s", exc)
        return ProviderError(self.name, str(exc), status_code=status_code)
