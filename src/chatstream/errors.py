"""Error hierarchy shared by the store, the dispatcher and the session controller."""

from __future__ import annotations

from typing import Any


class ChatStreamError(Exception):
    """Base exception for chatstream errors.

    Attributes:
        message: Human-readable message, safe to show to the user.
        details: Optional structured context for logs and API responses.
    """

    status_code: int = 500
    error_code: str = "chatstream_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to an API error payload."""
        payload: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ChatStreamError):
    """Missing or invalid credential, provider or input, detected before dispatch."""

    status_code = 400
    error_code = "validation_error"


class UnsupportedProviderError(ValidationError):
    """The provider name has no registered dispatcher variant."""

    error_code = "unsupported_provider"

    def __init__(self, provider: str):
        super().__init__(f"Unsupported provider: {provider}", {"provider": provider})
        self.provider = provider


class UpstreamError(ChatStreamError):
    """The provider rejected the request or the connection failed."""

    status_code = 502
    error_code = "upstream_error"


class StorageError(ChatStreamError):
    """The persistence layer is unavailable or a write failed."""

    status_code = 503
    error_code = "storage_error"
