"""Package specific exception hierarchy."""


class ChatBridgeError(Exception):
    """Base exception for chatbridge package."""


class ConfigurationError(ChatBridgeError):
    """Raised when a backend or client is missing required configuration."""


class UnsupportedBackendError(ChatBridgeError):
    """Raised when the client is given something that is not a backend."""

    def __init__(self, backend: str) -> None:
        super().__init__(f"Backend '{backend}' is not supported.")


class UnsupportedFeatureError(ChatBridgeError):
    """Raised when a request uses a feature a converter cannot express."""

    def __init__(self, feature: str) -> None:
        super().__init__(f"Feature '{feature}' is not supported.")
        self.feature = feature


class SerializationError(ChatBridgeError):
    """Raised when a native payload cannot be encoded or decoded."""


class ProviderError(ChatBridgeError):
    """Represents provider-specific HTTP, RPC or protocol errors."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        suffix = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider}: {message}{suffix}")
        self.provider = provider
        self.status_code = status_code
        self.body = body
