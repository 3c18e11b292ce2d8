"""chatstream - streaming multi-provider chat sessions with a durable message log."""

__version__ = "0.3.0"

from .config import Settings, get_settings
from .errors import (
    ChatStreamError,
    StorageError,
    UnsupportedProviderError,
    UpstreamError,
    ValidationError,
)

__all__ = [
    "Settings",
    "get_settings",
    "ChatStreamError",
    "StorageError",
    "UnsupportedProviderError",
    "UpstreamError",
    "ValidationError",
]
