"""Conversation commands."""

from __future__ import annotations

import typer
from rich.table import Table

from chatstream.chat.session import SessionController

from ..helpers import console, make_dispatcher, open_store, run

chats_app = typer.Typer(help="List, rename and delete conversations")


@chats_app.command("list")
def list_chats():
    """List conversations with their message counts."""
    store = open_store()

    async def collect():
        conversations = await store.list_conversations()
        return [(c, await store.get_message_count(c.id)) for c in conversations]

    rows = run(collect())
    if not rows:
        console.print("[dim]No conversations yet.[/dim]")
        return

    table = Table(title="Conversations")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan", no_wrap=True)
    table.add_column("Created")
    table.add_column("Messages", justify="right")
    table.add_column("API key", style="dim")
    for conversation, count in rows:
        table.add_row(
            conversation.id,
            conversation.title,
            conversation.created_at.strftime("%Y-%m-%d %H:%M"),
            str(count),
            conversation.selected_credential_id or "-",
        )
    console.print(table)


@chats_app.command("show")
def show_chat(conversation_id: str = typer.Argument(..., help="Conversation ID")):
    """Print a conversation's transcript."""
    store = open_store()
    conversation = run(store.get_conversation(conversation_id))
    if conversation is None:
        console.print(f"[red]Conversation not found:[/red] {conversation_id}")
        raise typer.Exit(1)
    console.print(f"[bold]{conversation.title}[/bold]")
    for message in run(store.get_messages(conversation_id)):
        style = "cyan" if message.role.value == "user" else "green"
        console.print(f"[{style}]{message.role.value}>[/{style}] {message.content}")


@chats_app.command("rename")
def rename_chat(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    title: str = typer.Argument(..., help="New title"),
):
    """Rename a conversation (surrounding whitespace is stripped)."""
    controller = SessionController(open_store(), make_dispatcher())
    if not run(controller.rename_conversation(conversation_id, title)):
        console.print(f"[red]Error:[/red] {controller.error}")
        raise typer.Exit(1)
    console.print(f"[green]Renamed[/green] {conversation_id} -> {title.strip()}")


@chats_app.command("delete")
def delete_chat(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a conversation and all of its messages."""
    if not yes:
        typer.confirm(f"Delete conversation {conversation_id}?", abort=True)
    if not run(open_store().delete_conversation(conversation_id)):
        console.print(f"[red]Conversation not found:[/red] {conversation_id}")
        raise typer.Exit(1)
    console.print(f"[green]Deleted[/green] {conversation_id}")
