"""HTTP client for a remote dispatcher."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Sequence

import httpx
from pydantic import ValidationError as SchemaError

from chatstream.errors import (
    ChatStreamError,
    UnsupportedProviderError,
    UpstreamError,
    ValidationError,
)

from .cancellation import CancellationToken
from .models import (
    ChatTurn,
    CompletionRequest,
    Credential,
    CredentialPayload,
    StreamEvent,
)

logger = logging.getLogger(__name__)


class RemoteDispatcher:
    """Streams completions from a chatstream server over SSE.

    Has the same ``stream_completion`` contract as ``ProviderDispatcher``,
    so a ``SessionController`` can use either one.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def stream_completion(
        self,
        history: Sequence[ChatTurn],
        credential: Credential | CredentialPayload,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        if isinstance(credential, Credential):
            credential = CredentialPayload.from_credential(credential)
        # Cheap checks that need no round trip
        if not (credential.secret or "").strip():
            raise ValidationError("API key is required")
        if not (credential.provider or "").strip():
            raise ValidationError("Provider is required")
        request = CompletionRequest(messages=list(history), credential=credential)
        return self._stream(request, cancel_token)

    async def _stream(
        self,
        request: CompletionRequest,
        cancel_token: CancellationToken | None,
    ) -> AsyncIterator[StreamEvent]:
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/api/chat",
                json=request.model_dump(mode="json"),
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise error_from_response(response.status_code, body)

                async for line in response.aiter_lines():
                    if cancel_token is not None and cancel_token.cancelled:
                        return
                    if not line.startswith("data:"):
                        continue
                    event = _parse_event(line)
                    yield event
                    if event.is_terminal:
                        return
            raise UpstreamError("Dispatcher stream ended without a terminal event")
        except httpx.HTTPError as e:
            logger.warning(f"Dispatcher request failed: {e}")
            raise UpstreamError(f"Dispatcher unreachable: {e}") from e
        except httpx.StreamError as e:
            logger.warning(f"Dispatcher stream broke: {e}")
            raise UpstreamError(f"Dispatcher stream failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def _parse_event(line: str) -> StreamEvent:
    data = line[len("data:"):].strip()
    try:
        return StreamEvent.model_validate_json(data)
    except SchemaError as e:
        logger.warning(f"Malformed dispatcher event: {data[:200]!r}")
        raise UpstreamError(
            f"Malformed dispatcher event: {e.error_count()} validation error(s)"
        ) from e


def error_from_response(status_code: int, body: bytes) -> ChatStreamError:
    """Map a non-stream error response back to the error hierarchy."""
    text = body.decode("utf-8", errors="replace")
    try:
        payload = json.loads(text)
    except ValueError:
        payload = {"message": text}
    if not isinstance(payload, dict):
        payload = {"message": text}

    message = payload.get("message") or text or f"HTTP {status_code}"
    details = payload.get("details") or {}
    if payload.get("error") == UnsupportedProviderError.error_code:
        return UnsupportedProviderError(details.get("provider", ""))
    if 400 <= status_code < 500:
        return ValidationError(message, details)
    return UpstreamError(message, details)
