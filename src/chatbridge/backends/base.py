"""Provider-agnostic backend interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from chatbridge.errors import ProviderError
from chatbridge.types import ChatRequest, ChatResponse, StreamChunk


class BaseBackend(ABC):
    """Abstract base class for backend implementations."""

    name: str

    @abstractmethod
    async def complete(self, req: ChatRequest) -> ChatResponse:
        """Execute a single-shot chat completion."""
        raise NotImplementedError

    @abstractmethod
    def stream(self, req: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Return a lazy async iterator of stream chunks for the request."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release transport resources."""


async def raise_for_status(provider: str, response: httpx.Response) -> None:
    """Raise ProviderError with status and raw body for any non-2xx response."""
    if response.is_success:
        return
    body = (await response.aread()).decode("utf-8", errors="replace")
    raise ProviderError(
        provider,
        body or response.reason_phrase,
        status_code=response.status_code,
        body=body,
    )
