"""Config command implementation.

Sets up config.toml and signs accounts in and out of Microsoft 365.
"""

import typer
from typing_extensions import Annotated

from miroir.auth import authenticate, clear_token_cache, is_authenticated
from miroir.config import (
    CONFIG_FILE,
    dump_config,
    get_account,
    get_account_names,
    get_data_dir,
    init_config,
    load_config,
    set_config_value,
)
from miroir.config.paths import state_dir_for
from miroir.storage.models import CALENDAR, CONTACTS
from miroir.sync.state import SyncStateStore

app = typer.Typer(help="Manage configuration and authentication")


@app.command()
def init(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Replace an existing config.toml")
    ] = False,
):
    """Write a commented config.toml template."""
    if not init_config(overwrite=force):
        typer.echo(f"{CONFIG_FILE} already exists (use --force to replace it)")
        return

    typer.echo(f"Wrote {CONFIG_FILE}")
    typer.echo("Add an [accounts.<name>] table, then run 'miroir config auth'.")


@app.command()
def auth(
    account: Annotated[
        str | None, typer.Option("--account", "-a", help="Account to sign in")
    ] = None,
):
    """Sign in to Microsoft 365 and cache the tokens.

    With auth_flow = "devicecode" a code is printed to enter on any
    device; with "authcode" a browser opens on this machine.
    """
    config = load_config()
    account_config = get_account(config, account)
    if not account_config:
        typer.echo("No account configured.", err=True)
        typer.echo("Run 'miroir config init' and add an account to config.toml")
        raise typer.Exit(1)

    name = account or get_account_names(config)[0]
    typer.echo(f"Signing in '{name}'...")

    result = authenticate(name, account_config)
    if "access_token" not in result:
        reason = result.get("error_description") or result.get("error") or "unknown"
        typer.echo(f"Authentication failed: {reason}", err=True)
        raise typer.Exit(1)

    claims = result.get("id_token_claims") or {}
    user = claims.get("preferred_username") or claims.get("email") or "unknown user"
    typer.echo(f"Logged in as: {user}")


@app.command()
def logout(
    account: Annotated[
        str, typer.Option("--account", "-a", help="Account whose tokens to forget")
    ],
):
    """Delete the cached tokens of an account."""
    if clear_token_cache(account):
        typer.echo(f"Removed cached tokens for '{account}'")
    else:
        typer.echo(f"No cached tokens for '{account}'")


@app.command()
def status():
    """Show authentication and last sync time of every account."""
    config = load_config()
    names = get_account_names(config)
    if not names:
        typer.echo("No accounts configured.")
        return

    store = SyncStateStore(state_dir_for(get_data_dir(config)))
    for name in names:
        signed_in = is_authenticated(name, get_account(config, name))
        typer.echo(f"{name}: {'authenticated' if signed_in else 'not authenticated'}")
        for category in (CALENDAR, CONTACTS):
            last_sync = store.get_last_sync(name, category)
            when = last_sync.isoformat(timespec="seconds") if last_sync else "never"
            typer.echo(f"  {category} last synced: {when}")


@app.command()
def show(
    account: Annotated[
        str | None, typer.Option("--account", "-a", help="Only this account")
    ] = None,
):
    """Print the configuration as TOML, with secrets redacted."""
    config = load_config()
    if not config:
        typer.echo("No configuration found.")
        typer.echo(f"Run 'miroir config init' to create {CONFIG_FILE}")
        return

    if account:
        if account not in get_account_names(config):
            typer.echo(f"Account '{account}' not found.", err=True)
            raise typer.Exit(1)
        config = {"accounts": {account: config["accounts"][account]}}

    typer.echo(dump_config(config), nl=False)


@app.command("set")
def set_value(
    key: Annotated[
        str, typer.Argument(help="Dotted key, e.g. 'defaults.timezone'")
    ],
    value: Annotated[str, typer.Argument(help="New value")],
):
    """Set one configuration value.

    Examples:
        miroir config set defaults.timezone Europe/Berlin
        miroir config set accounts.work.tenant_id xxxx-xxxx
    """
    try:
        set_config_value(key, value)
    except ValueError as e:
        typer.echo(f"Invalid value: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Set {key} = {value}")
