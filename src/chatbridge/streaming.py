"""Bridges from provider-native incremental delivery to async iterators of StreamChunk."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx

from chatbridge.converters.generative import SseFramer
from chatbridge.errors import ProviderError
from chatbridge.types import StreamChunk

logger = logging.getLogger(__name__)

RELAY_CAPACITY = 32


class _Failure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


_CLOSED = object()


async def relay_events(
    receive: Callable[[], Awaitable[Any | None]],
    convert: Callable[[Any], StreamChunk | None],
    *,
    close: Callable[[], None] | None = None,
    capacity: int = RELAY_CAPACITY,
) -> AsyncIterator[StreamChunk]:
    """Relay events from a push-style channel through a bounded queue.

    A background task awaits ``receive()`` until it returns ``None`` and puts
    every converted chunk on the queue, suspending while the queue is full.
    An exception raised by ``receive`` is re-raised to the consumer once.
    Closing the consumer cancels the producer and calls ``close``.
    """
    queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=capacity)

    async def _produce() -> None:
        try:
            while True:
                event = await receive()
                if event is None:
                    break
                chunk = convert(event)
                if chunk is not None:
                    await queue.put(chunk)
        except Exception as exc:
            await queue.put(_Failure(exc))
        await queue.put(_CLOSED)

    producer = asyncio.create_task(_produce())
    try:
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item
    finally:
        if not producer.done():
            logger.debug("Stream consumer closed early; cancelling producer")
            producer.cancel()
        if close is not None:
            close()


class SseChunkStream:
    """Pull-based stream over an SSE byte source.

    All state carried between reads lives on the instance: the framer's
    byte buffer, chunks framed but not yet returned, and the done flag.
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        convert: Callable[[dict[str, Any]], StreamChunk | None],
        *,
        provider: str,
    ) -> None:
        self._source = source
        self._convert = convert
        self._provider = provider
        self.framer = SseFramer()
        self.pending: deque[StreamChunk] = deque()
        self.done = False

    def __aiter__(self) -> SseChunkStream:
        return self

    async def __anext__(self) -> StreamChunk:
        while True:
            if self.pending:
                return self.pending.popleft()
            if self.done:
                raise StopAsyncIteration

            try:
                data = await self._source.__anext__()
            except StopAsyncIteration:
                self.done = True
                self._enqueue(self.framer.flush())
                continue
            except httpx.HTTPError as exc:
                self.done = True
                raise ProviderError(self._provider, str(exc)) from exc

            self._enqueue(self.framer.feed(data))

    def _enqueue(self, events: list[dict[str, Any]]) -> None:
        for event in events:
            chunk = self._convert(event)
            if chunk is not None:
                self.pending.append(chunk)
