"""
Reusable Typer Options Module

Global options shared by the main callback. Each option is a
``typer.Option`` used as ``Annotated`` metadata, with the default given on
the parameter itself.
"""

from __future__ import annotations

import typer

from silo_cache.shared.constants import CLIDefaults, CLIHelp


def version_callback(value: bool) -> None:
    """Print version information and exit."""
    if value:
        typer.echo(CLIHelp.VERSION_TEXT.format(version=CLIDefaults.VERSION))
        raise typer.Exit


# Count-based for multiple -v flags
verbose_option = typer.Option(
    "--verbose",
    "-v",
    count=True,
    help="Enable verbose output (equivalent to --log-level DEBUG).",
)

log_level_option = typer.Option(
    "--log-level",
    case_sensitive=False,
    help="Set the logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Default: WARNING.",
)

json_output_option = typer.Option(
    "--json",
    help="Enable machine-readable JSON output instead of human-readable format.",
)

# Main app only
version_option = typer.Option(
    "--version",
    "-V",
    help="Show version information and exit.",
    callback=version_callback,
    is_eager=True,
)

db_option = typer.Option(
    "--db",
    help=CLIHelp.DB_HELP,
    dir_okay=False,
)

config_option = typer.Option(
    "--config",
    help=CLIHelp.CONFIG_HELP,
    exists=True,
    dir_okay=False,
)
