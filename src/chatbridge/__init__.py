"""One chat-completion schema over OpenAI, Azure OpenAI, Bedrock and Vertex AI."""

from chatbridge.backends import AzureBackend, BaseBackend, BedrockBackend, OpenAIBackend, VertexBackend
from chatbridge.client import LLMClient
from chatbridge.errors import (
    ChatBridgeError,
    ConfigurationError,
    ProviderError,
    SerializationError,
    UnsupportedBackendError,
    UnsupportedFeatureError,
)
from chatbridge.types import ChatRequest, ChatResponse, FinishReason, StreamChunk

__all__ = [
    "AzureBackend",
    "BaseBackend",
    "BedrockBackend",
    "ChatBridgeError",
    "ChatRequest",
    "ChatResponse",
    "ConfigurationError",
    "FinishReason",
    "LLMClient",
    "OpenAIBackend",
    "ProviderError",
    "SerializationError",
    "StreamChunk",
    "UnsupportedBackendError",
    "UnsupportedFeatureError",
    "VertexBackend",
]
