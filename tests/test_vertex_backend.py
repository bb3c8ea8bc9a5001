import asyncio
import json
import os
import unittest
from unittest.mock import patch

import google.auth.exceptions
import httpx

from chatbridge.auth import CLOUD_PLATFORM_SCOPE, GoogleAuthTokenProvider, StaticTokenProvider
from chatbridge.backends.vertex import VertexBackend
from chatbridge.errors import ConfigurationError, ProviderError
from chatbridge.types import ChatRequest, FinishReason, SystemMessage, UserMessage

GENERATE_RESPONSE = {
    "candidates": [{"content": {"role": "model", "parts": [{"text": "Hello"}]}, "finishReason": "STOP"}],
    "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 1, "totalTokenCount": 5},
}

SSE_BODY = (
    b'data: {"candidates":[{"content":{"role":"model","parts":[{"text":"Hel"}]}}]}\r\n\r\n'
    b'data: {"candidates":[{"content":{"role":"model","parts":[{"text":"lo"}]},"finishReason":"STOP"}],'
    b'"usageMetadata":{"promptTokenCount":4,"candidatesTokenCount":2,"totalTokenCount":6}}'
)

MODEL_PATH = "/v1/projects/proj/locations/us-central1/publishers/google/models/gemini-1.5-pro"


def _request() -> ChatRequest:
    return ChatRequest(model="gemini", messages=[SystemMessage(content="Be brief."), UserMessage(content="Hi")])


def _backend(handler, **kwargs) -> VertexBackend:
    return VertexBackend(
        project_id="proj",
        model_id="gemini-1.5-pro",
        token_provider=StaticTokenProvider("ya29.token"),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class VertexBackendTests(unittest.TestCase):
    def test_complete_posts_generate_content(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["host"] = request.url.host
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=GENERATE_RESPONSE)

        resp = asyncio.run(_complete(_backend(handler), _request()))

        self.assertEqual(seen["host"], "us-central1-aiplatform.googleapis.com")
        self.assertEqual(seen["path"], MODEL_PATH + ":generateContent")
        self.assertEqual(seen["auth"], "Bearer ya29.token")
        self.assertEqual(
            seen["body"],
            {
                "contents": [{"role": "user", "parts": [{"text": "Hi"}]}],
                "systemInstruction": {"role": "user", "parts": [{"text": "Be brief."}]},
            },
        )
        self.assertEqual(resp.model, "gemini")
        self.assertEqual(resp.text, "Hello")
        self.assertEqual(resp.usage.total_tokens, 5)

    def test_global_location_host(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            return httpx.Response(200, json=GENERATE_RESPONSE)

        asyncio.run(_complete(_backend(handler, location="global"), _request()))

        self.assertEqual(seen["url"].host, "aiplatform.googleapis.com")
        self.assertIn("/locations/global/", seen["url"].path)

    def test_error_status_carries_body(self) -> None:
        transport_body = '{"error": {"code": 403, "message": "Permission denied"}}'
        backend = _backend(lambda request: httpx.Response(403, text=transport_body))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(_complete(backend, _request()))

        self.assertEqual(ctx.exception.provider, "vertex")
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.body, transport_body)

    def test_stream_reads_sse(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["alt"] = request.url.params.get("alt")
            return httpx.Response(200, content=SSE_BODY, headers={"Content-Type": "text/event-stream"})

        chunks = asyncio.run(_collect(_backend(handler), _request()))

        self.assertEqual(seen["path"], MODEL_PATH + ":streamGenerateContent")
        self.assertEqual(seen["alt"], "sse")
        self.assertEqual([c.choices[0].delta.content for c in chunks], ["Hel", "lo"])
        self.assertIsNone(chunks[0].choices[0].finish_reason)
        self.assertEqual(chunks[1].choices[0].finish_reason, FinishReason.STOP)
        self.assertEqual(chunks[1].usage.total_tokens, 6)
        self.assertEqual(chunks[0].id, chunks[1].id)

    def test_stream_error_status(self) -> None:
        backend = _backend(lambda request: httpx.Response(429, text="quota"))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(_collect(backend, _request()))

        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(ctx.exception.body, "quota")

    def test_from_env(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigurationError):
                VertexBackend.from_env("gemini-1.5-pro")

        env = {"GCP_PROJECT_ID": "proj", "GCP_LOCATION": "europe-west4"}
        with patch.dict(os.environ, env, clear=True):
            backend = VertexBackend.from_env("gemini-1.5-pro", token_provider=StaticTokenProvider("t"))
        self.assertTrue(backend._model_url.startswith("https://europe-west4-aiplatform.googleapis.com/"))


class FakeCredentials:
    def __init__(self) -> None:
        self.valid = False
        self.token = None
        self.refreshes = 0

    def refresh(self, request) -> None:
        self.refreshes += 1
        self.valid = True
        self.token = f"token-{self.refreshes}"


class GoogleAuthTokenProviderTests(unittest.TestCase):
    def test_loads_default_credentials_once_and_refreshes_when_invalid(self) -> None:
        credentials = FakeCredentials()

        async def _run():
            provider = GoogleAuthTokenProvider()
            first = await provider.token([CLOUD_PLATFORM_SCOPE])
            second = await provider.token([CLOUD_PLATFORM_SCOPE])
            credentials.valid = False
            third = await provider.token([CLOUD_PLATFORM_SCOPE])
            return first, second, third

        with patch("google.auth.default", return_value=(credentials, "proj")) as default:
            tokens = asyncio.run(_run())

        default.assert_called_once_with(scopes=[CLOUD_PLATFORM_SCOPE])
        self.assertEqual(tokens, ("token-1", "token-1", "token-2"))

    def test_auth_failure_becomes_provider_error(self) -> None:
        error = google.auth.exceptions.DefaultCredentialsError("no credentials found")

        with patch("google.auth.default", side_effect=error):
            with self.assertRaises(ProviderError) as ctx:
                asyncio.run(GoogleAuthTokenProvider().token([CLOUD_PLATFORM_SCOPE]))

        self.assertEqual(ctx.exception.provider, "vertex")


async def _complete(backend, req):
    try:
        return await backend.complete(req)
    finally:
        await backend.aclose()


async def _collect(backend, req):
    try:
        return [chunk async for chunk in backend.stream(req)]
    finally:
        await backend.aclose()


if __name__ == "__main__":
    unittest.main()
