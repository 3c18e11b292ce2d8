"""Settings and logging setup."""

from .settings import Settings, get_settings
from .logging import (
    JSONFormatter,
    SanitizingFilter,
    TextFormatter,
    configure_from_settings,
    configure_logging,
)

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "configure_from_settings",
    "JSONFormatter",
    "SanitizingFilter",
    "TextFormatter",
]
