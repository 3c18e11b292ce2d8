"""chatstream utility modules."""

from chatstream.utils.validation import mask_secret, sanitize_log_message

__all__ = [
    "mask_secret",
    "sanitize_log_message",
]
