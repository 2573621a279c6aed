"""Contacts command implementation."""

import json

import typer
from typing_extensions import Annotated

from miroir.config import get_data_dir, load_config, resolve_accounts
from miroir.search import search_contacts

app = typer.Typer(help="Search mirrored contacts")


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Text to look for")],
    account: Annotated[
        str | None, typer.Option("--account", "-a", help="Only this account")
    ] = None,
    format: Annotated[
        str, typer.Option("--format", help="Output format: summary, json")
    ] = "summary",
):
    """Search mirrored contacts by name, email, phone or company."""
    config = load_config()

    accounts = resolve_accounts(config, account)
    contacts = search_contacts(get_data_dir(config), accounts, query)

    if format == "json":
        typer.echo(json.dumps([c.to_dict() for c in contacts], indent=2))
        return

    if not contacts:
        typer.echo("No contacts found.")
        return

    for contact in contacts:
        line = f"[{contact.account}] {contact.display_name}"
        if contact.emails:
            line += f" <{contact.emails[0]}>"
        typer.echo(line)
