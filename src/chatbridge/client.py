"""Async client forwarding calls to the configured backend."""

from __future__ import annotations

from typing import AsyncIterator

from chatbridge.backends.base import BaseBackend
from chatbridge.errors import ConfigurationError, UnsupportedBackendError
from chatbridge.types import ChatRequest, ChatResponse, StreamChunk


class LLMClient:
    """Single entry point over exactly one backend chosen at construction."""

    def __init__(
        self,
        *,
        openai: BaseBackend | None = None,
        azure: BaseBackend | None = None,
        bedrock: BaseBackend | None = None,
        vertex: BaseBackend | None = None,
    ) -> None:
        configured = [b for b in (openai, azure, bedrock, vertex) if b is not None]
        if len(configured) != 1:
            raise ConfigurationError(f"LLMClient needs exactly one backend, got {len(configured)}.")
        backend = configured[0]
        if not isinstance(backend, BaseBackend):
            raise UnsupportedBackendError(type(backend).__name__)
        self._backend = backend

    @property
    def backend(self) -> BaseBackend:
        return self._backend

    @property
    def name(self) -> str:
        return self._backend.name

    async def complete(self, req: ChatRequest) -> ChatResponse:
        """Execute a chat completion on the selected backend."""
        return await self._backend.complete(req)

    def stream(self, req: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Stream chunks for a chat request from the selected backend."""
        return self._backend.stream(req)

    async def aclose(self) -> None:
        await self._backend.aclose()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
