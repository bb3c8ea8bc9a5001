"""Azure OpenAI backend."""

from __future__ import annotations

import os
from typing import Any

import httpx

from chatbridge.backends.openai import OpenAIBackend
from chatbridge.errors import ConfigurationError

_DEFAULT_API_VERSION = "2024-02-01"


class AzureBackend(OpenAIBackend):
    """Azure OpenAI deployment; same wire format as OpenAI, different addressing and auth."""

    name = "azure"

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str,
        deployment_id: str,
        api_version: str = _DEFAULT_API_VERSION,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(api_key=api_key, base_url=endpoint, timeout_s=timeout_s, transport=transport)
        self._headers = {
            "api-key": api_key,
            "Content-Type": "application/json",
        }
        self._path = f"/openai/deployments/{deployment_id}/chat/completions"
        self._params = {"api-version": api_version}

    @classmethod
    def from_env(cls, **kwargs: Any) -> AzureBackend:
        """Build from the ``AZURE_OPENAI_*`` environment variables."""
        missing = [
            var
            for var in ("AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_DEPLOYMENT_ID")
            if not os.environ.get(var)
        ]
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} must be set to use AzureBackend.")
        return cls(
            endpoint=os.environ["AZURE_OPENAI_ENDPOINT"],
            api_key=os.environ["AZURE_OPENAI_API_KEY"],
            deployment_id=os.environ["AZURE_OPENAI_DEPLOYMENT_ID"],
            api_version=os.environ.get("AZURE_OPENAI_API_VERSION") or _DEFAULT_API_VERSION,
            **kwargs,
        )
