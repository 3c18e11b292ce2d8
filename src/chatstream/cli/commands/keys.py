"""API key commands: the settings side of credential management."""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from chatstream.chat.models import Credential, ProviderName

from ..helpers import console, open_store, run

keys_app = typer.Typer(help="Manage stored provider API keys")


@keys_app.command("list")
def list_keys():
    """List API keys (secrets are masked)."""
    credentials = run(open_store().list_credentials())
    if not credentials:
        console.print("[dim]No API keys configured. Add one with 'chatstream keys add'.[/dim]")
        return

    table = Table(title="API Keys")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Provider")
    table.add_column("Key", no_wrap=True)
    table.add_column("Default")
    for credential in credentials:
        table.add_row(
            credential.id,
            credential.name,
            credential.provider_id,
            credential.masked_secret,
            "[green]yes[/green]" if credential.is_default else "",
        )
    console.print(table)


@keys_app.command("add")
def add_key(
    name: str = typer.Argument(..., help="Display name for the key"),
    provider: ProviderName = typer.Option(
        ProviderName.OPENAI, "--provider", "-p", help="Provider the key belongs to"
    ),
    secret: str = typer.Option(
        ..., "--secret", "-s", prompt=True, hide_input=True, help="The API key"
    ),
    default: bool = typer.Option(False, "--default", help="Make this the default key"),
):
    """Store a new API key. The first key stored becomes the default."""
    if not name.strip() or not secret.strip():
        console.print("[red]Name and key are required.[/red]")
        raise typer.Exit(1)
    credential = Credential(
        name=name.strip(), provider=provider, secret=secret.strip(), is_default=default
    )
    stored = run(open_store().add_credential(credential))
    suffix = " (default)" if stored.is_default else ""
    console.print(f"[green]Added[/green] {stored.name} [dim]{stored.id}[/dim]{suffix}")


@keys_app.command("edit")
def edit_key(
    key_id: str = typer.Argument(..., help="API key ID"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="New display name"),
    provider: Optional[ProviderName] = typer.Option(
        None, "--provider", "-p", help="New provider"
    ),
    secret: Optional[str] = typer.Option(None, "--secret", "-s", help="Replacement API key"),
    default: Optional[bool] = typer.Option(
        None, "--default/--no-default", help="Make this the default key, or clear it"
    ),
):
    """Change a stored API key's name, provider, secret or default flag."""
    changes: dict = {}
    if name is not None:
        if not name.strip():
            console.print("[red]Name cannot be empty.[/red]")
            raise typer.Exit(1)
        changes["name"] = name.strip()
    if secret is not None:
        if not secret.strip():
            console.print("[red]Key cannot be empty.[/red]")
            raise typer.Exit(1)
        changes["secret"] = secret.strip()
    if provider is not None:
        changes["provider"] = provider
    if default is not None:
        changes["is_default"] = default
    if not changes:
        console.print("[yellow]Nothing to change.[/yellow] Pass --name, --provider, --secret or --default.")
        raise typer.Exit(1)

    store = open_store()
    credential = run(store.get_credential(key_id))
    if credential is None:
        console.print(f"[red]API key not found:[/red] {key_id}")
        raise typer.Exit(1)
    updated = run(store.update_credential(credential.model_copy(update=changes)))
    console.print(f"[green]Updated[/green] {updated.name} [dim]{updated.id}[/dim]")


@keys_app.command("remove")
def remove_key(key_id: str = typer.Argument(..., help="API key ID")):
    """Delete an API key; conversations using it lose their selection."""
    if not run(open_store().delete_credential(key_id)):
        console.print(f"[red]API key not found:[/red] {key_id}")
        raise typer.Exit(1)
    console.print(f"[green]Removed[/green] {key_id}")


@keys_app.command("default")
def set_default_key(key_id: str = typer.Argument(..., help="API key ID")):
    """Mark an API key as the default for new chats."""
    if not run(open_store().set_default_credential(key_id)):
        console.print(f"[red]API key not found:[/red] {key_id}")
        raise typer.Exit(1)
    console.print(f"[green]Default key set:[/green] {key_id}")
