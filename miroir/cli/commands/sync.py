"""Sync command implementation."""

import logging
from datetime import date, datetime, time, timedelta, tzinfo

import typer
from typing_extensions import Annotated

from miroir.auth import get_access_token
from miroir.config import (
    get_account,
    get_data_dir,
    get_default,
    get_timezone,
    load_config,
    resolve_accounts,
)
from miroir.config.paths import state_dir_for
from miroir.storage.models import CALENDAR, CONTACTS
from miroir.sync.engine import SyncEngine, SyncResult
from miroir.sync.errors import CursorExpiredError, SyncError
from miroir.sync.graph import GraphClient
from miroir.sync.state import SyncStateStore

logger = logging.getLogger(__name__)

app = typer.Typer(help="Mirror calendars and contacts from Microsoft 365")


def calendar_window(
    today: date, past_days: int, future_days: int, tz: tzinfo
) -> tuple[datetime, datetime]:
    """Window of whole days around today, in the configured zone."""
    start = datetime.combine(today - timedelta(days=past_days), time.min, tzinfo=tz)
    end = datetime.combine(
        today + timedelta(days=future_days + 1), time.min, tzinfo=tz
    )
    return start, end


def _report(account: str, category: str, result: SyncResult) -> None:
    """Print the outcome of one pass."""
    typer.echo(
        f"{account}/{category}: {result.created} created, "
        f"{result.updated} updated, {result.renamed} renamed, "
        f"{result.deleted} deleted"
    )
    if result.warnings:
        typer.echo(f"  {result.warnings} warnings:")
        for detail in result.warning_details[:10]:
            typer.echo(f"    {detail}")
        if len(result.warning_details) > 10:
            typer.echo(f"    ... and {len(result.warning_details) - 10} more")


def _sync_calendar(
    engine: SyncEngine,
    account: str,
    start: datetime,
    end: datetime,
) -> bool:
    """Run a full-window calendar pass. Returns True if it was clean."""
    try:
        result = engine.run_full_window_sync(account, CALENDAR, start, end)
    except SyncError as e:
        typer.echo(f"Failed to sync calendar for '{account}': {e}", err=True)
        return False

    _report(account, CALENDAR, result)
    return result.warnings == 0


def _sync_contacts(
    engine: SyncEngine,
    store: SyncStateStore,
    account: str,
    reset: bool,
) -> bool:
    """Run a delta contacts pass. Returns True if it was clean.

    An expired cursor is dropped and the pass is started over once, as a
    full enumeration.
    """
    if reset:
        store.clear(account, CONTACTS)

    try:
        try:
            result = engine.run_delta_sync(account, CONTACTS)
        except CursorExpiredError as e:
            logger.warning("Resetting contacts cursor for %s: %s", account, e)
            typer.echo(f"Contacts cursor for '{account}' expired, starting over")
            store.clear(account, CONTACTS)
            result = engine.run_delta_sync(account, CONTACTS)
    except SyncError as e:
        typer.echo(f"Failed to sync contacts for '{account}': {e}", err=True)
        return False

    _report(account, CONTACTS, result)
    return result.warnings == 0


@app.callback(invoke_without_command=True)
def sync(
    ctx: typer.Context,
    account: Annotated[
        str | None,
        typer.Option("--account", "-a", help="Account to sync (default: all)"),
    ] = None,
    calendar: Annotated[
        bool, typer.Option("--calendar/--no-calendar", help="Sync calendar events")
    ] = True,
    contacts: Annotated[
        bool, typer.Option("--contacts/--no-contacts", help="Sync contacts")
    ] = True,
    past_days: Annotated[
        int | None, typer.Option(help="Days of past events to keep")
    ] = None,
    future_days: Annotated[
        int | None, typer.Option(help="Days of future events to keep")
    ] = None,
    full: Annotated[
        bool,
        typer.Option("--full", help="Drop the contacts cursor and re-read everything"),
    ] = False,
):
    """Mirror calendars and contacts to local Markdown files."""
    config = load_config()

    names = resolve_accounts(config, account)

    if not names:
        typer.echo("No account configured.", err=True)
        typer.echo("Run 'miroir config init' and add an account to config.toml")
        raise typer.Exit(1)

    try:
        tz = get_timezone(config)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)

    if past_days is None:
        past_days = get_default(config, "past_days")
    if future_days is None:
        future_days = get_default(config, "future_days")
    if past_days < 0 or future_days < 0:
        typer.echo("--past-days and --future-days must not be negative", err=True)
        raise typer.Exit(1)

    data_dir = get_data_dir(config)
    store = SyncStateStore(state_dir_for(data_dir))
    start, end = calendar_window(date.today(), past_days, future_days, tz)

    clean = True
    for name in names:
        account_config = get_account(config, name)
        if account_config is None:
            typer.echo(f"Account '{name}' not found in config.", err=True)
            clean = False
            continue

        token = get_access_token(name, account_config)
        if not token:
            typer.echo(
                f"Account '{name}' is not authenticated. "
                f"Run 'miroir config auth --account {name}'",
                err=True,
            )
            clean = False
            continue

        timeout = get_default(config, "timeout")
        with GraphClient(token, tz, timeout=timeout) as client:
            engine = SyncEngine(client, data_dir, store)
            if calendar:
                clean = _sync_calendar(engine, name, start, end) and clean
            if contacts:
                clean = _sync_contacts(engine, store, name, full) and clean

    if not clean:
        raise typer.Exit(1)
