"""FastAPI backend relaying provider streams to chat clients."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatstream import __version__
from chatstream.chat.router import router as chat_router
from chatstream.config import Settings, configure_from_settings, get_settings
from chatstream.errors import ChatStreamError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and report the registered providers."""
    settings: Settings = app.state.settings
    configure_from_settings(settings)
    from chatstream.providers import get_dispatcher

    logger.info(
        f"{settings.app_name} {__version__} dispatching to: "
        f"{', '.join(get_dispatcher().supported_providers())}"
    )
    yield
    logger.info("Dispatcher shut down")


async def chatstream_exception_handler(request: Request, exc: ChatStreamError) -> JSONResponse:
    """Render chatstream errors raised outside the stream as JSON."""
    logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the dispatcher application."""
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ChatStreamError, chatstream_exception_handler)
    app.include_router(chat_router)
    return app


app = create_app()
