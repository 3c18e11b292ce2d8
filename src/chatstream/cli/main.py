"""chatstream CLI - Main entry point."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich.panel import Panel

from chatstream import __version__
from chatstream.chat.session import SessionController, SessionState
from chatstream.config import configure_from_settings, get_settings

from .commands.chats import chats_app
from .commands.keys import keys_app
from .helpers import console, make_dispatcher, open_store

app = typer.Typer(
    name="chatstream",
    help="Multi-provider streaming chat with durable conversations",
    add_completion=False,
)
app.add_typer(keys_app, name="keys")
app.add_typer(chats_app, name="chats")

REPL_HELP = """[bold]Commands[/bold]
  /new            start a new conversation
  /list           list conversations
  /open ID        switch to a conversation
  /keys           list API keys
  /key ID|none    select the API key for this conversation
  /help           show this help
  /quit           leave"""


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the dispatcher HTTP server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "chatstream.api:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


class StreamRenderer:
    """Prints the growing assistant reply as deltas arrive."""

    def __init__(self):
        self._message_id: str | None = None
        self._printed = 0

    def __call__(self, controller: SessionController) -> None:
        message = controller.streaming_message
        if message is None or not message.content:
            return
        if message.id != self._message_id:
            self._message_id = message.id
            self._printed = 0
            console.print("[green]assistant>[/green] ", end="")
        if len(message.content) > self._printed:
            console.print(message.content[self._printed:], end="", markup=False, highlight=False)
            self._printed = len(message.content)

    def finish(self) -> None:
        if self._message_id is not None:
            console.print()
        self._message_id = None
        self._printed = 0


async def _repl(controller: SessionController, renderer: StreamRenderer, conversation_id: str | None) -> None:
    loop = asyncio.get_running_loop()
    await controller.load()
    if conversation_id:
        await controller.select_conversation(conversation_id)
    if controller.conversation is None:
        await controller.new_conversation()

    console.print(REPL_HELP)
    while True:
        conversation = controller.conversation
        title = conversation.title if conversation else "no conversation"
        try:
            line = await loop.run_in_executor(None, input, f"[{title}] you> ")
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue

        if line.startswith("/"):
            command, _, arg = line.partition(" ")
            arg = arg.strip()
            if command in ("/quit", "/exit"):
                break
            elif command == "/help":
                console.print(REPL_HELP)
            elif command == "/new":
                await controller.new_conversation()
            elif command == "/list":
                for c in await controller.list_conversations():
                    marker = "*" if conversation and c.id == conversation.id else " "
                    console.print(f"{marker} [dim]{c.id}[/dim] {c.title}")
            elif command == "/open" and arg:
                await controller.select_conversation(arg)
            elif command == "/keys":
                for k in await controller.list_credentials():
                    default = " (default)" if k.is_default else ""
                    console.print(f"  [dim]{k.id}[/dim] {k.name} ({k.provider_id}){default}")
            elif command == "/key" and arg:
                await controller.select_credential(None if arg == "none" else arg)
            else:
                console.print(f"[yellow]Unknown command:[/yellow] {line}")
        else:
            if not controller.can_send and controller.state == SessionState.IDLE:
                console.print("[yellow]No API key selected. Use /keys and /key ID.[/yellow]")
                continue
            await controller.send_message(line)
            renderer.finish()

        if controller.error:
            console.print(f"[red]{controller.error}[/red]")
            controller.dismiss_error()

    await controller.aclose()


@app.command()
def chat(
    conversation: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Conversation ID to resume"
    ),
    remote: Optional[str] = typer.Option(
        None, "--remote", "-r", help="Dispatcher server URL (default: in-process)"
    ),
):
    """Chat interactively, streaming replies as they arrive."""
    settings = get_settings()
    configure_from_settings(settings, level="WARNING")

    renderer = StreamRenderer()
    controller = SessionController(
        store=open_store(),
        dispatcher=make_dispatcher(remote or settings.dispatcher_url),
        on_change=renderer,
    )
    console.print(Panel(f"chatstream {__version__}", border_style="blue"))
    try:
        asyncio.run(_repl(controller, renderer, conversation))
    except KeyboardInterrupt:
        console.print("\n[dim]Bye.[/dim]")


@app.command()
def version():
    """Show the chatstream version."""
    console.print(f"chatstream {__version__}")


def main():
    """Entry point for the chatstream CLI."""
    app()


if __name__ == "__main__":
    main()
