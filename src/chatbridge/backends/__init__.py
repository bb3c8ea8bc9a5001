"""Backend definitions for chatbridge."""

from .azure import AzureBackend
from .base import BaseBackend
from .bedrock import BedrockBackend
from .openai import OpenAIBackend
from .vertex import VertexBackend

__all__ = [
    "BaseBackend",
    "OpenAIBackend",
    "AzureBackend",
    "BedrockBackend",
    "VertexBackend",
]
