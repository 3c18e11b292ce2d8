"""FastAPI router exposing the provider dispatcher as an SSE stream."""

from __future__ import annotations

import logging
from typing import AsyncGenerator, AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chatstream import __version__
from chatstream.errors import ChatStreamError, UpstreamError
from chatstream.providers.dispatcher import ProviderDispatcher, get_dispatcher

from .cancellation import CancellationToken
from .models import (
    CompletionRequest,
    HealthResponse,
    ProvidersResponse,
    StreamEvent,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def error_response(error: ChatStreamError) -> JSONResponse:
    """Render an error as a non-stream JSON response."""
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@router.post("/chat")
async def stream_chat(
    body: CompletionRequest,
    request: Request,
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
):
    """Stream a completion for the given turns and credential.

    Uses Server-Sent Events (SSE). A bad credential or provider is rejected
    with a 400 before any upstream call; an upstream failure before the
    first fragment is a 502; a failure after streaming began ends the
    stream with an ``error`` event. The credential is used for this request
    only and is never stored.
    """
    provider_name = body.credential.provider
    token = CancellationToken()
    try:
        events = dispatcher.stream_completion(body.messages, body.credential, token)
        # Pull the first event so an upstream failure before the stream
        # opens can still become a status code.
        first = await events.__anext__()
    except StopAsyncIteration:
        first = None
        events = None
    except ChatStreamError as e:
        if isinstance(e, UpstreamError):
            logger.warning(f"Upstream failed before streaming ({provider_name}): {e.message}")
        else:
            logger.info(f"Rejected chat request: {e.message}")
        return error_response(e)

    logger.info(
        f"Streaming {provider_name} completion for {len(body.messages)} turns",
        extra={"provider": provider_name},
    )

    async def generate() -> AsyncGenerator[str, None]:
        """Generate SSE stream."""
        try:
            if first is not None:
                yield first.to_sse()
            if events is not None:
                async for event in _until_disconnect(events, request, token):
                    yield event.to_sse()
        finally:
            token.cancel("stream closed")
            if events is not None:
                await events.aclose()

    return StreamingResponse(
        generate(), media_type="text/event-stream", headers=SSE_HEADERS
    )


async def _until_disconnect(
    events: AsyncIterator[StreamEvent],
    request: Request,
    token: CancellationToken,
) -> AsyncIterator[StreamEvent]:
    async for event in events:
        if await request.is_disconnected():
            logger.info("Client disconnected, closing upstream stream")
            token.cancel("client disconnected")
            return
        yield event


@router.get("/providers", response_model=ProvidersResponse)
async def list_providers(
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
) -> ProvidersResponse:
    """List the supported provider identifiers."""
    return ProvidersResponse(providers=dispatcher.provider_info())


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness check."""
    return HealthResponse(version=__version__)
