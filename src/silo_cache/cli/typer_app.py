"""
silo-cache Typer CLI Application

Command-line access to the client cache: inspect and edit entries, and load
API resources through the revalidating fetcher.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Callable

import typer

from silo_cache.cli.cache_handler import (
    handle_clear,
    handle_fetch,
    handle_get,
    handle_invalidate,
    handle_preload,
    handle_purge,
    handle_set,
    handle_stats,
    handle_token,
    load_cli_settings,
)
from silo_cache.cli.common.context import CliContext, LogLevel, get_cli_context, set_cli_context
from silo_cache.cli.common.error_handler import handle_cli_error
from silo_cache.cli.common.options import (
    config_option,
    db_option,
    json_output_option,
    log_level_option,
    verbose_option,
    version_option,
)
from silo_cache.shared.constants import CLICommands, CLIHelp
from silo_cache.shared.logging import setup_structured_logger

app = typer.Typer(
    name=CLIHelp.APP_NAME,
    help=CLIHelp.APP_DESCRIPTION,
    add_completion=True,
    rich_markup_mode=CLIHelp.APP_STYLE,
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: Annotated[int, verbose_option] = 0,
    log_level: Annotated[LogLevel, log_level_option] = LogLevel.WARNING,
    json_output: Annotated[bool, json_output_option] = False,
    version: Annotated[bool, version_option] = False,  # handled by its eager callback
    db: Annotated[Path | None, db_option] = None,
    config: Annotated[Path | None, config_option] = None,
) -> None:
    """Process the global options before any command runs."""
    try:
        context = CliContext(
            verbose=verbose,
            log_level=log_level,
            json_output=json_output,
            db_path=db,
            config_path=config,
        )
        set_cli_context(context)

        settings = load_cli_settings()
        setup_structured_logger(
            level=LogLevel.DEBUG.value if settings.app.debug else context.get_effective_log_level(),
            log_file=settings.logging.file,
            use_rich_console=settings.logging.use_rich_console,
        )
    except Exception as e:
        exit_code = handle_cli_error(e, "main-callback", json_output=json_output)
        raise typer.Exit(exit_code) from e


def _invoke(command: str, handler: Callable[[], None]) -> None:
    """Run ``handler`` and turn any failure into an exit code."""
    try:
        handler()
    except typer.Exit:
        raise
    except Exception as e:
        exit_code = handle_cli_error(
            e,
            command,
            json_output=get_cli_context().is_json_output_enabled(),
        )
        raise typer.Exit(exit_code) from e


@app.command(CLICommands.STATS, help=CLIHelp.STATS_HELP)
def stats_command() -> None:
    """
    Show KeyStore statistics.

    Examples:
        silo-cache stats
        silo-cache --json stats
    """
    _invoke(CLICommands.STATS, handle_stats)


@app.command(CLICommands.GET, help=CLIHelp.GET_HELP)
def get_command(
    key: str = typer.Argument(..., help="Cache key"),
) -> None:
    _invoke(CLICommands.GET, lambda: handle_get(key))


@app.command(CLICommands.SET, help=CLIHelp.SET_HELP)
def set_command(
    key: str = typer.Argument(..., help="Cache key"),
    value: str = typer.Argument(..., help="JSON value"),
    ttl: str | None = typer.Option(None, "--ttl", help=CLIHelp.TTL_HELP),
) -> None:
    """
    Store a JSON value.

    Examples:
        silo-cache set categories '[{"id": 1}]' --ttl long
        silo-cache set system_config '{"tax": 15}' --ttl 86400000
    """
    _invoke(CLICommands.SET, lambda: handle_set(key, value, ttl))


@app.command(CLICommands.INVALIDATE, help=CLIHelp.INVALIDATE_HELP)
def invalidate_command(
    key: str = typer.Argument(..., help="Cache key or regular expression"),
    pattern: bool = typer.Option(False, "--pattern", "-p", help=CLIHelp.PATTERN_HELP),
) -> None:
    _invoke(CLICommands.INVALIDATE, lambda: handle_invalidate(key, pattern))


@app.command(CLICommands.CLEAR, help=CLIHelp.CLEAR_HELP)
def clear_command() -> None:
    _invoke(CLICommands.CLEAR, handle_clear)


@app.command(CLICommands.PURGE, help=CLIHelp.PURGE_HELP)
def purge_command() -> None:
    _invoke(CLICommands.PURGE, handle_purge)


@app.command(CLICommands.FETCH, help=CLIHelp.FETCH_HELP)
def fetch_command(
    path: str = typer.Argument(..., help="API path, e.g. /categories"),
    key: str = typer.Option(..., "--key", "-k", help="Cache key to store the result under"),
    ttl: str | None = typer.Option(None, "--ttl", help=CLIHelp.TTL_HELP),
    force: bool = typer.Option(False, "--force", "-f", help=CLIHelp.FORCE_HELP),
    base_url: str | None = typer.Option(None, "--base-url", help=CLIHelp.BASE_URL_HELP),
    data_key: str | None = typer.Option(None, "--data-key", help=CLIHelp.DATA_KEY_HELP),
) -> None:
    """
    Load an API resource with stale-while-revalidate semantics.

    Cached data is shown immediately; a stale entry is revalidated before the
    command exits.

    Examples:
        silo-cache fetch /categories --key categories --ttl long
        silo-cache fetch /pos/orders --key management_orders --force
    """
    _invoke(
        CLICommands.FETCH,
        lambda: handle_fetch(path, key, ttl, force, base_url, data_key),
    )


@app.command(CLICommands.PRELOAD, help=CLIHelp.PRELOAD_HELP)
def preload_command(
    business_id: str | None = typer.Option(
        None, "--business-id", "-b", help=CLIHelp.BUSINESS_ID_HELP
    ),
    force: bool = typer.Option(False, "--force", "-f", help=CLIHelp.FORCE_HELP),
) -> None:
    _invoke(CLICommands.PRELOAD, lambda: handle_preload(business_id, force))


@app.command(CLICommands.TOKEN, help=CLIHelp.TOKEN_HELP)
def token_command(
    value: str | None = typer.Argument(None, help="Bearer token"),
    clear: bool = typer.Option(False, "--clear", help="Remove the stored token"),
) -> None:
    _invoke(CLICommands.TOKEN, lambda: handle_token(value, clear))


if __name__ == "__main__":
    app()
