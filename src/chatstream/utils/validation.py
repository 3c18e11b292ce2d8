"""Helpers for keeping provider secrets out of logs and listings."""

from __future__ import annotations

import re

# OpenAI (sk-..., sk-proj-...), Anthropic (sk-ant-...), Google (AIza...) and
# bearer tokens in headers.
_SECRET_PATTERNS = [
    re.compile(r"sk-(?:ant-|proj-)?[A-Za-z0-9_\-]{8,}"),
    re.compile(r"AIza[0-9A-Za-z_\-]{20,}"),
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9_\-\.=]{8,}"),
    re.compile(r"(?i)((?:api[_-]?key|x-api-key|secret)[\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+"),
]

REDACTED = "[REDACTED]"


def sanitize_log_message(message: str) -> str:
    """Redact API keys and tokens from a log message."""
    for pattern in _SECRET_PATTERNS:
        if pattern.groups:
            message = pattern.sub(lambda m: m.group(1) + REDACTED, message)
        else:
            message = pattern.sub(REDACTED, message)
    return message


def mask_secret(secret: str, visible: int = 3) -> str:
    """Return a display form of a secret, e.g. ``sk-...abc``.

    Short secrets are fully masked.
    """
    if not secret:
        return ""
    if len(secret) <= visible * 3:
        return "*" * len(secret)
    return f"{secret[:visible]}...{secret[-visible:]}"
