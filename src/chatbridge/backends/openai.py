"""OpenAI backend: the unified schema is the native wire format."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import ValidationError

from chatbridge.backends.base import BaseBackend, raise_for_status
from chatbridge.errors import ConfigurationError, ProviderError, SerializationError
from chatbridge.types import ChatRequest, ChatResponse, StreamChunk

_DEFAULT_BASE_URL = "https://api.openai.com"
_CHAT_PATH = "/v1/chat/completions"


class OpenAIBackend(BaseBackend):
    """Async wrapper for the OpenAI Chat Completions API."""

    name = "openai"
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str | None = None,
        organization: str | None = None,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or _DEFAULT_BASE_URL,
            timeout=timeout_s,
            transport=transport,
        )
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if organization:
            self._headers["OpenAI-Organization"] = organization
        self._path = _CHAT_PATH
        self._params: dict[str, str] = {}

    @classmethod
    def from_env(cls, **kwargs: Any) -> OpenAIBackend:
        """Build from ``OPENAI_API_KEY``, ``OPENAI_BASE_URL`` and ``OPENAI_ORG_ID``."""
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY must be set to use OpenAIBackend.")
        return cls(
            api_key=api_key,
            base_url=os.environ.get("OPENAI_BASE_URL"),
            organization=os.environ.get("OPENAI_ORG_ID"),
            **kwargs,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def complete(self, req: ChatRequest) -> ChatResponse:
        """Call Chat Completions and validate the result into the unified schema."""
        payload = self._build_payload(req)
        try:
            response = await self._client.post(
                self._path, params=self._params, headers=self._headers, json=payload
            )
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, str(exc)) from exc
        await raise_for_status(self.name, response)

        try:
            return ChatResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise SerializationError(f"{self.name}: invalid completion response: {exc}") from exc

    def stream(self, req: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Return an async iterator over streamed chunks."""

        async def _gen() -> AsyncIterator[StreamChunk]:
            payload = self._build_payload(req)
            payload["stream"] = True

            try:
                async with self._client.stream(
                    "POST",
                    self._path,
                    params=self._params,
                    headers=self._headers,
                    json=payload,
                ) as response:
                    await raise_for_status(self.name, response)

                    async for line in response.aiter_lines():
                        line = line.strip()
                        # Only "data:" lines carry payloads.
                        if not line.startswith("data:"):
                            continue

                        data_str = line[len("data:") :].strip()
                        if data_str == "[DONE]":
                            return

                        try:
                            event = json.loads(data_str)
                        except json.JSONDecodeError:
                            self._logger.debug("Skipping non-JSON streaming chunk: %s", data_str)
                            continue

                        try:
                            chunk = StreamChunk.model_validate(event)
                        except ValidationError as exc:
                            raise SerializationError(f"{self.name}: invalid stream chunk: {exc}") from exc
                        yield chunk
            except httpx.HTTPError as exc:
                raise ProviderError(self.name, str(exc)) from exc

        return _gen()

    @staticmethod
    def _build_payload(req: ChatRequest) -> dict[str, Any]:
        return req.model_dump(mode="json", exclude_none=True)
