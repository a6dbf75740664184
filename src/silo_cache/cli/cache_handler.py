"""Cache command handlers for the silo-cache CLI.

Each handler opens the configured SQLite-backed KeyStore, runs one
operation on the event loop and prints the result as a Rich table or as
JSON when ``--json`` is set.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable

import orjson
from rich.console import Console
from rich.table import Table

from silo_cache.cli.common.context import get_cli_context
from silo_cache.cli.json_formatter import format_json_output, write_json_output
from silo_cache.config import Settings, get_config, load_settings
from silo_cache.services.api_client import ApiClient
from silo_cache.services.data_preloader import DataPreloader
from silo_cache.services.key_store import KeyStore
from silo_cache.services.key_value_store import SQLiteStorage
from silo_cache.services.revalidating_fetcher import RevalidatingFetcher
from silo_cache.shared.constants import TTL, CLICommands, CLIDefaults
from silo_cache.shared.errors import (
    ErrorCode,
    create_cli_error,
    create_validation_error,
)

logger = logging.getLogger(__name__)


@dataclass
class CacheSession:
    """Objects shared by one CLI invocation."""

    settings: Settings
    storage: SQLiteStorage
    store: KeyStore
    fetcher: RevalidatingFetcher


def parse_ttl(value: str | None, default: int) -> int:
    """Parse a TTL tier name or a number of milliseconds.

    Raises:
        DomainError: INVALID_TTL for unknown tiers and invalid numbers
    """
    if value is None:
        return default

    tiers = TTL.tiers()
    name = value.strip().lower()
    if name in tiers:
        return tiers[name]

    try:
        ttl = int(name)
    except ValueError:
        ttl = None
    if ttl is None or (ttl < 0 and ttl != TTL.INFINITE):
        raise create_validation_error(
            f"Invalid TTL {value!r}: use one of {', '.join(tiers)} or milliseconds",
            ErrorCode.INVALID_TTL,
            operation="parse_ttl",
        )
    return ttl


def load_cli_settings() -> Settings:
    """Settings from the --config file, or the default configuration."""
    context = get_cli_context()
    if context.config_path is not None:
        return load_settings(context.config_path)
    return get_config()


@asynccontextmanager
async def open_cache() -> AsyncIterator[CacheSession]:
    """Open the configured cache for the duration of one command."""
    settings = load_cli_settings()
    context = get_cli_context()
    db_path = context.db_path or settings.cache.db_path

    storage = SQLiteStorage(db_path)
    try:
        store = KeyStore(
            storage,
            namespace=settings.cache.namespace,
            max_memory_items=settings.cache.max_memory_items,
            persist=settings.cache.persist,
        )
        fetcher = RevalidatingFetcher(
            store,
            retry_count=settings.fetcher.retry_count,
            retry_delay=settings.fetcher.retry_delay,
            stale_policy=settings.cache.stale_policy,
            default_ttl=settings.cache.default_ttl_ms,
        )
        yield CacheSession(settings=settings, storage=storage, store=store, fetcher=fetcher)
    finally:
        storage.close()


def _run(coro: Awaitable[Any]) -> Any:
    return asyncio.run(coro)


def _emit(command: str, data: dict[str, Any], render: Any) -> None:
    """Print ``data`` as JSON or through ``render(console)``."""
    if get_cli_context().is_json_output_enabled():
        write_json_output(format_json_output(success=True, command=command, data=data))
        return
    render(Console())


def _dumps(value: Any) -> str:
    return orjson.dumps(value, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode("utf-8")


# ------------------------------------------------------------------- stats


async def _stats() -> dict[str, Any]:
    async with open_cache() as session:
        now = session.store.clock()
        entries = await session.store.stored_entries()
        fresh = sum(1 for entry in entries if entry.is_fresh(now))
        return {
            **session.store.get_stats(),
            "db_path": str(session.storage.db_path),
            "stored_entries": len(entries),
            "fresh_entries": fresh,
            "expired_entries": len(entries) - fresh,
        }


def handle_stats() -> None:
    data = _run(_stats())

    def render(console: Console) -> None:
        table = Table(title="Cache statistics")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        for name, value in data.items():
            table.add_row(name, f"{value:.2%}" if name == "hit_ratio" else str(value))
        console.print(table)

    _emit(CLICommands.STATS, data, render)


# --------------------------------------------------------------------- get


async def _get(key: str) -> dict[str, Any] | None:
    async with open_cache() as session:
        entry = await session.store.get_entry(key)
        if entry is None:
            return None
        now = session.store.clock()
        return {
            "key": entry.key,
            "payload": entry.payload,
            "stored_at": entry.stored_at,
            "age_ms": entry.age(now),
            "ttl": entry.ttl,
            "fresh": entry.is_fresh(now),
        }


def handle_get(key: str) -> None:
    data = _run(_get(key))
    if data is None:
        raise create_cli_error(
            f"No cache entry for key {key!r}",
            command=CLICommands.GET,
            code=ErrorCode.CACHE_MISS,
            exit_code=CLIDefaults.EXIT_ERROR,
        )

    def render(console: Console) -> None:
        state = "[green]fresh[/green]" if data["fresh"] else "[yellow]stale[/yellow]"
        ttl = "infinite" if data["ttl"] == TTL.INFINITE else f"{data['ttl']} ms"
        console.print(f"[bold]{data['key']}[/bold] ({state}, age {data['age_ms']} ms, ttl {ttl})")
        console.print_json(_dumps(data["payload"]))

    _emit(CLICommands.GET, data, render)


# --------------------------------------------------------------------- set


def _parse_json_value(raw: str) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise create_cli_error(
            f"VALUE is not valid JSON: {e}",
            command=CLICommands.SET,
            code=ErrorCode.CLI_INVALID_ARGUMENTS,
            original_error=e,
            exit_code=CLIDefaults.EXIT_USAGE,
        ) from e


async def _set(key: str, value: Any, ttl: str | None) -> dict[str, Any]:
    async with open_cache() as session:
        ttl_ms = parse_ttl(ttl, session.settings.cache.default_ttl_ms)
        await session.store.set(key, value, ttl_ms)
        return {"key": key, "ttl": ttl_ms}


def handle_set(key: str, raw_value: str, ttl: str | None) -> None:
    value = _parse_json_value(raw_value)
    data = _run(_set(key, value, ttl))
    _emit(
        CLICommands.SET,
        data,
        lambda console: console.print(f"Stored [bold]{key}[/bold] (ttl {data['ttl']} ms)"),
    )


# -------------------------------------------------------------- invalidate


async def _invalidate(key: str, pattern: bool) -> int:
    async with open_cache() as session:
        if pattern:
            return await session.store.invalidate_pattern(key)
        await session.store.invalidate(key)
        return 1


def handle_invalidate(key: str, pattern: bool) -> None:
    removed = _run(_invalidate(key, pattern))
    data = {"key": key, "pattern": pattern, "removed": removed}
    message = f"Invalidated {removed} key(s) matching {key!r}" if pattern else f"Invalidated {key!r}"
    _emit(CLICommands.INVALIDATE, data, lambda console: console.print(message))


# ------------------------------------------------------------ clear / purge


async def _clear() -> None:
    async with open_cache() as session:
        await session.store.clear()


def handle_clear() -> None:
    _run(_clear())
    _emit(CLICommands.CLEAR, {"cleared": True}, lambda console: console.print("Cache cleared"))


async def _purge() -> int:
    async with open_cache() as session:
        return await session.store.purge_expired()


def handle_purge() -> None:
    removed = _run(_purge())
    _emit(
        CLICommands.PURGE,
        {"removed": removed},
        lambda console: console.print(f"Purged {removed} expired or outdated entries"),
    )


# ------------------------------------------------------------------- fetch


async def _fetch(
    path: str,
    key: str,
    ttl: str | None,
    force: bool,
    base_url: str | None,
    data_key: str | None,
) -> dict[str, Any]:
    async with open_cache() as session:
        ttl_ms = parse_ttl(ttl, session.settings.cache.default_ttl_ms)
        client = ApiClient.from_settings(session.settings.api, session.storage, base_url=base_url)
        try:
            query = session.fetcher.watch(key, client.fetcher(path, data_key=data_key), ttl_ms)
            with query:
                outcome = await query.load(force_refresh=force)
                # Let the background revalidation persist before the process exits
                await query.wait_for_background()
                state = query.state
        finally:
            client.close()

        return {
            "key": key,
            "outcome": outcome.value,
            "status": state.status.value,
            "value": state.value,
            "error": state.error.to_dict() if state.error else None,
        }


def handle_fetch(
    path: str,
    key: str,
    ttl: str | None,
    force: bool,
    base_url: str | None,
    data_key: str | None,
) -> None:
    data = _run(_fetch(path, key, ttl, force, base_url, data_key))

    if data["value"] is None and data["error"] is not None:
        raise create_cli_error(
            f"Fetch of {path} failed: {data['error']['message']}",
            command=CLICommands.FETCH,
            code=ErrorCode.CLI_COMMAND_FAILED,
        )

    def render(console: Console) -> None:
        console.print(f"[bold]{key}[/bold]: {data['outcome']} ({data['status']})")
        if data["error"] is not None:
            console.print(f"[yellow]Showing cached data, refresh failed: {data['error']['message']}[/yellow]")
        console.print_json(_dumps(data["value"]))

    _emit(CLICommands.FETCH, data, render)


# ----------------------------------------------------------------- preload


async def _preload(business_id: str | None, force: bool) -> int:
    async with open_cache() as session:
        client = ApiClient.from_settings(session.settings.api, session.storage)
        try:
            preloader = DataPreloader(
                session.fetcher,
                client,
                history_limit=session.settings.preloader.history_limit,
                request_interval=session.settings.preloader.request_interval,
                preload_interval_ms=session.settings.preloader.interval_ms,
            )
            if force:
                return await preloader.refresh_cache(business_id)
            return await preloader.preload_all(business_id)
        finally:
            client.close()


def handle_preload(business_id: str | None, force: bool) -> None:
    loaded = _run(_preload(business_id, force))
    _emit(
        CLICommands.PRELOAD,
        {"loaded": loaded},
        lambda console: console.print(f"Preloaded {loaded} resource(s)"),
    )


# ------------------------------------------------------------------- token


async def _token(value: str | None) -> bool:
    async with open_cache() as session:
        token_key = session.settings.api.token_storage_key
        if value is None:
            await session.storage.remove_item(token_key)
            return False
        await session.storage.set_item(token_key, value)
        return True


def handle_token(value: str | None, clear: bool) -> None:
    if value is None and not clear:
        raise create_cli_error(
            "Pass a TOKEN or --clear",
            command=CLICommands.TOKEN,
            code=ErrorCode.CLI_INVALID_ARGUMENTS,
            exit_code=CLIDefaults.EXIT_USAGE,
        )

    stored = _run(_token(None if clear else value))
    _emit(
        CLICommands.TOKEN,
        {"stored": stored},
        lambda console: console.print("Token stored" if stored else "Token cleared"),
    )
