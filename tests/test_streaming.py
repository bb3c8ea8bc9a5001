import asyncio
import unittest
from collections.abc import AsyncIterator

import httpx

from chatbridge.converters.generative import convert_stream_chunk
from chatbridge.errors import ProviderError
from chatbridge.streaming import SseChunkStream, relay_events
from chatbridge.types import Delta, StreamChoice, StreamChunk


def _to_chunk(event):
    if event is None or event == "skip":
        return None
    return StreamChunk(id="sid", created=0, model="m", choices=[StreamChoice(delta=Delta(content=event))])


def _receiver(events, error=None):
    pending = list(events)
    calls = {"n": 0}

    async def receive():
        calls["n"] += 1
        await asyncio.sleep(0)
        if pending:
            return pending.pop(0)
        if error is not None:
            raise error
        return None

    return receive, calls


class RelayEventsTests(unittest.TestCase):
    def test_delivers_in_order_and_skips_unconverted(self) -> None:
        events = [str(i) for i in range(50)]
        events.insert(10, "skip")
        receive, _ = _receiver(events)
        closed = []

        chunks = asyncio.run(_collect(relay_events(receive, _to_chunk, close=lambda: closed.append(True), capacity=4)))

        self.assertEqual([c.choices[0].delta.content for c in chunks], [str(i) for i in range(50)])
        self.assertEqual(closed, [True])

    def test_error_is_raised_once_after_delivered_chunks(self) -> None:
        receive, _ = _receiver(["a", "b"], error=ProviderError("bedrock", "stream broke"))

        async def _run():
            relay = relay_events(receive, _to_chunk)
            seen = []
            with self.assertRaises(ProviderError):
                async for chunk in relay:
                    seen.append(chunk.choices[0].delta.content)
            rest = [chunk async for chunk in relay]
            return seen, rest

        seen, rest = asyncio.run(_run())
        self.assertEqual(seen, ["a", "b"])
        self.assertEqual(rest, [])

    def test_full_queue_suspends_producer(self) -> None:
        async def receive():
            calls["n"] += 1
            await asyncio.sleep(0)
            return "x"

        calls = {"n": 0}

        async def _run():
            relay = relay_events(receive, _to_chunk, capacity=2)
            await relay.__anext__()
            for _ in range(20):
                await asyncio.sleep(0)
            received = calls["n"]
            await relay.aclose()
            return received

        # one consumed, two queued, one held by the suspended producer
        self.assertLessEqual(asyncio.run(_run()), 4)

    def test_closing_consumer_cancels_producer(self) -> None:
        async def receive():
            await asyncio.sleep(0)
            return "x"

        closed = []

        async def _run():
            relay = relay_events(receive, _to_chunk, close=lambda: closed.append(True), capacity=1)
            await relay.__anext__()
            await relay.aclose()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            return [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]

        self.assertEqual(asyncio.run(_run()), [])
        self.assertEqual(closed, [True])


class SseChunkStreamTests(unittest.TestCase):
    def _stream(self, source):
        return SseChunkStream(source, lambda event: convert_stream_chunk(event, "gemini", "sid"), provider="vertex")

    def test_fragmented_events(self) -> None:
        data = (
            b'data: {"candidates":[{"content":{"parts":[{"text":"Hel"}]}}]}\n\n'
            b'data: {"candidates":[{"content":{"parts":[{"text":"lo"}]}}]}\n\n'
            b'data: {"candidates":[{"content":{"parts":[{"text":"!"}]},"finishReason":"STOP"}]}\n\n'
        )
        fragments = [data[:5], data[5:70], data[70:71], data[71:130], data[130:]]

        chunks = asyncio.run(_collect(self._stream(_source(fragments))))

        self.assertEqual([c.choices[0].delta.content for c in chunks], ["Hel", "lo", "!"])
        self.assertEqual([c.choices[0].finish_reason for c in chunks], [None, None, "stop"])
        self.assertEqual({c.id for c in chunks}, {"sid"})

    def test_batched_events_drain_before_next_read(self) -> None:
        data = b"".join(
            b'data: {"candidates":[{"content":{"parts":[{"text":"%d"}]}}]}\n\n' % i for i in range(3)
        )
        reads = []

        async def source():
            reads.append(1)
            yield data

        async def _run():
            stream = self._stream(source())
            first = await stream.__anext__()
            pending = len(stream.pending)
            rest = [chunk async for chunk in stream]
            return first, pending, rest

        first, pending, rest = asyncio.run(_run())
        self.assertEqual(first.choices[0].delta.content, "0")
        self.assertEqual(pending, 2)
        self.assertEqual([c.choices[0].delta.content for c in rest], ["1", "2"])
        self.assertEqual(len(reads), 1)

    def test_trailing_event_without_blank_line(self) -> None:
        fragments = [b'data: {"candidates":[{"content":{"parts":[{"text":"end"}]}}]}']

        chunks = asyncio.run(_collect(self._stream(_source(fragments))))

        self.assertEqual([c.choices[0].delta.content for c in chunks], ["end"])

    def test_transport_error_ends_stream(self) -> None:
        async def source():
            yield b'data: {"candidates":[{"content":{"parts":[{"text":"a"}]}}]}\n\n'
            raise httpx.ReadError("connection reset")

        async def _run():
            stream = self._stream(source())
            seen = []
            with self.assertRaises(ProviderError):
                async for chunk in stream:
                    seen.append(chunk.choices[0].delta.content)
            return seen, stream.done

        seen, done = asyncio.run(_run())
        self.assertEqual(seen, ["a"])
        self.assertTrue(done)


async def _source(fragments) -> AsyncIterator[bytes]:
    for fragment in fragments:
        yield fragment


async def _collect(stream) -> list[StreamChunk]:
    return [chunk async for chunk in stream]


if __name__ == "__main__":
    unittest.main()
