"""Calendar command implementation.

``cal list`` reads the local mirror only. ``cal create`` and ``cal delete``
act on Microsoft 365 and then update the mirror, so the change is visible
before the next sync.
"""

import json
from datetime import date, datetime, time, timedelta, tzinfo
from pathlib import Path

import typer
from typing_extensions import Annotated

from miroir.auth import get_access_token
from miroir.config import (
    get_account,
    get_account_names,
    get_data_dir,
    get_default,
    get_timezone,
    load_config,
    resolve_accounts,
)
from miroir.config.paths import state_dir_for
from miroir.search import list_events
from miroir.storage.markdown import decode_header, read_record_id
from miroir.storage.models import CALENDAR
from miroir.sync.engine import SyncEngine
from miroir.sync.errors import IdentityCorruptionError, RemoteWriteError, SyncError
from miroir.sync.graph import GraphClient
from miroir.sync.state import SyncStateStore

app = typer.Typer(help="Browse and edit calendar events")


def _parse_date(value: str, option: str) -> date:
    """Parse a YYYY-MM-DD option value or exit with an error."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        typer.echo(
            f"Invalid date format for {option}: {value} (use YYYY-MM-DD)", err=True
        )
        raise typer.Exit(1)


def _parse_datetime(value: str, option: str, tz: tzinfo) -> datetime:
    """Parse a date and time; values without offset are wall time in tz."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        typer.echo(
            f"Invalid date/time for {option}: {value} (use YYYY-MM-DD HH:MM)",
            err=True,
        )
        raise typer.Exit(1)
    return parsed.astimezone(tz) if parsed.tzinfo else parsed.replace(tzinfo=tz)


def _timezone(config) -> tzinfo:
    try:
        return get_timezone(config)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)


def _account_name(config, account: str | None) -> str:
    """The requested account, or the first configured one."""
    names = get_account_names(config)
    if account:
        return account
    if not names:
        typer.echo("No account configured.", err=True)
        typer.echo("Run 'miroir config init' and add an account to config.toml")
        raise typer.Exit(1)
    return names[0]


def _graph_client(config, name: str, tz: tzinfo) -> GraphClient:
    """Authenticated Graph client for one account, or exit."""
    account_config = get_account(config, name)
    if account_config is None:
        typer.echo(f"Account '{name}' not found in config.", err=True)
        raise typer.Exit(1)

    token = get_access_token(name, account_config)
    if not token:
        typer.echo(
            f"Account '{name}' is not authenticated. "
            f"Run 'miroir config auth --account {name}'",
            err=True,
        )
        raise typer.Exit(1)

    return GraphClient(token, tz, timeout=get_default(config, "timeout"))


def _engine(config, client: GraphClient) -> SyncEngine:
    data_dir = get_data_dir(config)
    return SyncEngine(client, data_dir, SyncStateStore(state_dir_for(data_dir)))


def _truncate(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[: max_len - 1] + "…"


@app.command("list")
def list_cmd(
    from_: Annotated[
        str | None,
        typer.Option("--from", help="Start date (YYYY-MM-DD, default today)"),
    ] = None,
    to: Annotated[
        str | None,
        typer.Option("--to", help="End date (YYYY-MM-DD, default in 14 days)"),
    ] = None,
    search: Annotated[
        str | None, typer.Option("--search", "-s", help="Only events containing text")
    ] = None,
    account: Annotated[
        str | None, typer.Option("--account", "-a", help="Only this account")
    ] = None,
    format: Annotated[
        str, typer.Option("--format", help="Output format: summary, json")
    ] = "summary",
):
    """List mirrored calendar events (reads local files only)."""
    config = load_config()
    tz = _timezone(config)

    first_day = _parse_date(from_, "--from") if from_ else date.today()
    last_day = (
        _parse_date(to, "--to") if to else date.today() + timedelta(days=14)
    )
    start = datetime.combine(first_day, time.min, tzinfo=tz)
    end = datetime.combine(last_day, time.max, tzinfo=tz)

    accounts = resolve_accounts(config, account)
    events = list_events(get_data_dir(config), accounts, start, end, tz, search)

    if format == "json":
        typer.echo(json.dumps([e.to_dict() for e in events], indent=2))
        return

    if not events:
        typer.echo("No events found.")
        return

    for event in events:
        local_start = event.start.astimezone(tz)
        if event.all_day:
            when = f"{local_start:%Y-%m-%d %a} all day    "
        else:
            local_end = event.end.astimezone(tz) if event.end else local_start
            when = f"{local_start:%Y-%m-%d %a %H:%M}-{local_end:%H:%M}"
        line = f"{when} {_truncate(event.subject, 30):<30} [{event.account}]"
        if event.location:
            line += f" @ {event.location}"
        typer.echo(line)


@app.command()
def create(
    subject: Annotated[str, typer.Option("--subject", help="Event subject")],
    start: Annotated[
        str,
        typer.Option(
            "--start", help="Start (YYYY-MM-DD HH:MM, or YYYY-MM-DD with --all-day)"
        ),
    ],
    end: Annotated[
        str | None,
        typer.Option("--end", help="End (default: one hour later / the start day)"),
    ] = None,
    location: Annotated[
        str | None, typer.Option("--location", help="Location")
    ] = None,
    body: Annotated[str | None, typer.Option("--body", help="Body text")] = None,
    attendee: Annotated[
        list[str] | None,
        typer.Option("--attendee", help="Attendee email (repeatable)"),
    ] = None,
    all_day: Annotated[
        bool, typer.Option("--all-day", help="Whole days; --end is the last day")
    ] = False,
    account: Annotated[
        str | None,
        typer.Option("--account", "-a", help="Account (default: first account)"),
    ] = None,
):
    """Create an event in Microsoft 365 and mirror it locally.

    Times without an offset are in the configured time zone.
    """
    config = load_config()
    tz = _timezone(config)
    name = _account_name(config, account)

    if all_day:
        first_day = _parse_date(start, "--start")
        last_day = _parse_date(end, "--end") if end else first_day
        start_at = datetime.combine(first_day, time.min, tzinfo=tz)
        end_at = datetime.combine(last_day + timedelta(days=1), time.min, tzinfo=tz)
    else:
        start_at = _parse_datetime(start, "--start", tz)
        end_at = (
            _parse_datetime(end, "--end", tz)
            if end
            else start_at + timedelta(hours=1)
        )

    if end_at <= start_at:
        typer.echo("--end must be after --start", err=True)
        raise typer.Exit(1)

    with _graph_client(config, name, tz) as client:
        try:
            event = client.create_event(
                subject,
                start_at,
                end_at,
                location=location,
                body=body,
                attendees=attendee or [],
                all_day=all_day,
            )
        except RemoteWriteError as e:
            typer.echo(f"Failed to create event: {e}", err=True)
            raise typer.Exit(1)

        try:
            path = _engine(config, client).store_record(name, CALENDAR, event)
        except SyncError as e:
            typer.echo(f"Event created but not mirrored: {e}", err=True)
            typer.echo("Run 'miroir sync' to fetch it.")
            raise typer.Exit(1)

    typer.echo(f"Event created: {path}")


@app.command()
def delete(
    file: Annotated[
        Path | None, typer.Argument(help="Mirrored event file to delete")
    ] = None,
    event_id: Annotated[
        str | None, typer.Option("--id", help="Event id (instead of a file)")
    ] = None,
    account: Annotated[
        str | None,
        typer.Option("--account", "-a", help="Account (default: first account)"),
    ] = None,
):
    """Delete an event in Microsoft 365 and remove its local file.

    The event is named either by a mirrored file, whose header gives the
    id and account, or by --id.
    """
    config = load_config()

    if file is not None:
        try:
            event_id = read_record_id(file)
            account = decode_header(file).get("account") or account
        except IdentityCorruptionError as e:
            typer.echo(f"Not a mirrored event: {e}", err=True)
            raise typer.Exit(1)

    if not event_id:
        typer.echo("Give an event file or --id.", err=True)
        raise typer.Exit(1)

    tz = _timezone(config)
    name = _account_name(config, account)

    with _graph_client(config, name, tz) as client:
        try:
            client.delete_event(event_id)
        except RemoteWriteError as e:
            typer.echo(f"Failed to delete event: {e}", err=True)
            raise typer.Exit(1)

        try:
            path = _engine(config, client).remove_record(name, CALENDAR, event_id)
        except SyncError as e:
            typer.echo(f"Event deleted but local file kept: {e}", err=True)
            raise typer.Exit(1)

    if path is None:
        typer.echo("Event deleted (it was not mirrored).")
    else:
        typer.echo(f"Event deleted: {path}")
