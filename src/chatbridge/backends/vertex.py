"""Google Vertex AI backend over the ``generateContent`` REST API."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from typing import Any

import httpx

from chatbridge.auth import CLOUD_PLATFORM_SCOPE, GoogleAuthTokenProvider, TokenProvider
from chatbridge.backends.base import BaseBackend, raise_for_status
from chatbridge.converters import generate_completion_id
from chatbridge.converters.generative import convert_request, convert_response, convert_stream_chunk
from chatbridge.errors import ConfigurationError, ProviderError, SerializationError
from chatbridge.streaming import SseChunkStream
from chatbridge.types import ChatRequest, ChatResponse, StreamChunk

_DEFAULT_LOCATION = "us-central1"


class VertexBackend(BaseBackend):
    """Vertex AI publisher model addressed by project, location and model id."""

    name = "vertex"
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        project_id: str,
        model_id: str,
        location: str = _DEFAULT_LOCATION,
        token_provider: TokenProvider | None = None,
        base_url: str | None = None,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        strict: bool = False,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)
        self._auth = token_provider or GoogleAuthTokenProvider()
        self._model_url = (base_url or self._default_base_url(location)) + (
            f"/v1/projects/{project_id}/locations/{location}/publishers/google/models/{model_id}"
        )
        self._strict = strict

    @classmethod
    def from_env(cls, model_id: str, **kwargs: Any) -> VertexBackend:
        """Build from ``GCP_PROJECT_ID`` and ``GCP_LOCATION`` using Application Default Credentials."""
        project_id = os.environ.get("GCP_PROJECT_ID")
        if not project_id:
            raise ConfigurationError("GCP_PROJECT_ID must be set to use VertexBackend.")
        location = os.environ.get("GCP_LOCATION") or _DEFAULT_LOCATION
        return cls(project_id=project_id, model_id=model_id, location=location, **kwargs)

    @staticmethod
    def _default_base_url(location: str) -> str:
        if location == "global":
            return "https://aiplatform.googleapis.com"
        return f"https://{location}-aiplatform.googleapis.com"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _headers(self) -> dict[str, str]:
        token = await self._auth.token([CLOUD_PLATFORM_SCOPE])
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def complete(self, req: ChatRequest) -> ChatResponse:
        body = convert_request(req, strict=self._strict)
        headers = await self._headers()
        try:
            response = await self._client.post(
                f"{self._model_url}:generateContent", headers=headers, json=body
            )
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, str(exc)) from exc
        await raise_for_status(self.name, response)

        try:
            data = response.json()
        except ValueError as exc:
            raise SerializationError(f"{self.name}: invalid JSON response: {exc}") from exc
        return convert_response(data, req.model)

    def stream(self, req: ChatRequest) -> AsyncIterator[StreamChunk]:

        async def _gen() -> AsyncIterator[StreamChunk]:
            body = convert_request(req, strict=self._strict)
            headers = await self._headers()
            stream_id = generate_completion_id()

            try:
                async with self._client.stream(
                    "POST",
                    f"{self._model_url}:streamGenerateContent",
                    params={"alt": "sse"},
                    headers=headers,
                    json=body,
                ) as response:
                    await raise_for_status(self.name, response)
                    chunks = SseChunkStream(
                        response.aiter_bytes(),
                        lambda event: convert_stream_chunk(event, req.model, stream_id),
                        provider=self.name,
                    )
                    async for chunk in chunks:
                        yield chunk
            except httpx.HTTPError as exc:
                raise ProviderError(self.name, str(exc)) from exc

        return _gen()
