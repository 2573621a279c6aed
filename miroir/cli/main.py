"""Main CLI entry point for miroir."""

import logging

import typer
from typing_extensions import Annotated

from miroir import __version__
from miroir.cli import commands

app = typer.Typer(
    name="miroir",
    help="Local Markdown mirror of Microsoft 365 calendars and contacts",
    no_args_is_help=True,
)

# Register command groups
app.add_typer(commands.sync.app, name="sync")
app.add_typer(commands.cal.app, name="cal")
app.add_typer(commands.contacts.app, name="contacts")
app.add_typer(commands.config.app, name="config")


@app.callback()
def main_callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="More output (-v info, -vv debug)"
        ),
    ] = 0,
):
    """Configure logging for every command."""
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


@app.command()
def version():
    """Show version information."""
    typer.echo(f"miroir version {__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
