"""Shared helpers for CLI modules: store and dispatcher factories, async runner."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, TypeVar

import typer
from rich.console import Console

from chatstream.errors import ChatStreamError

if TYPE_CHECKING:
    from chatstream.providers.base import CompletionDispatcher
    from chatstream.store import ChatStore

T = TypeVar("T")

console = Console()


def open_store(database_url: str | None = None) -> ChatStore:
    """Get the store configured by settings (or an explicit URL)."""
    from chatstream.store import get_store

    return get_store(database_url)


def make_dispatcher(remote_url: str | None = None) -> CompletionDispatcher:
    """In-process dispatcher, or a client for a running server."""
    if remote_url:
        from chatstream.chat.client import RemoteDispatcher

        return RemoteDispatcher(remote_url)

    from chatstream.providers import get_dispatcher

    return get_dispatcher()


def run(coro: Awaitable[T]) -> T:
    """Run a coroutine, turning chatstream errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except ChatStreamError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)
