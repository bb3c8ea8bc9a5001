"""Bearer-token sources for backends that authenticate with OAuth scopes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Protocol

import google.auth
import google.auth.exceptions
from google.auth.transport.requests import Request

from chatbridge.errors import ProviderError

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class TokenProvider(Protocol):
    async def token(self, scopes: Sequence[str]) -> str:
        """Return a bearer token valid for ``scopes``."""
        ...


class StaticTokenProvider:
    """Hands out a fixed token regardless of scopes."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def token(self, scopes: Sequence[str]) -> str:
        return self._token


class GoogleAuthTokenProvider:
    """Application Default Credentials via google-auth.

    Credentials are loaded on first use for the requested scopes and refreshed
    in a worker thread whenever they are no longer valid.
    """

    def __init__(self, credentials: Any | None = None) -> None:
        self._credentials = credentials
        self._lock = asyncio.Lock()

    async def token(self, scopes: Sequence[str]) -> str:
        async with self._lock:
            try:
                if self._credentials is None:
                    self._credentials, _ = await asyncio.to_thread(google.auth.default, scopes=list(scopes))
                if not self._credentials.valid:
                    logger.debug("Refreshing Google credentials")
                    await asyncio.to_thread(self._credentials.refresh, Request())
            except google.auth.exceptions.GoogleAuthError as exc:
                raise ProviderError("vertex", f"credential error: {exc}") from exc
            return self._credentials.token
