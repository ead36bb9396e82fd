"""CLI entry point for session-store.

Invoked as::

    session-store [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m session_store.cli.main

Every command except ``version`` reads a YAML config file given with
``--config`` (or the ``SESSION_STORE_CONFIG`` environment variable)::

    driver: files
    directory: /var/lib/sessions
    max_lifetime: 1440

Commands
--------
- version      — Show detailed version information
- describe     — Show the configured driver and its settings
- gc           — Delete expired sessions
- read         — Lock, read and print one session payload
- destroy      — Lock and delete one session
- validate-id  — Check an identifier against the configured policy
- init-db      — Create the session table (database driver only)
"""
from __future__ import annotations

import sys
from collections.abc import Callable
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from sqlalchemy.exc import SQLAlchemyError

from session_store.client import ClientContext
from session_store.config import load_config
from session_store.errors import ConfigurationError
from session_store.factory import create_store
from session_store.stores.base import SessionStore
from session_store.stores.database import DatabaseStore

console = Console()

# ---------------------------------------------------------------------------
# Shared options and store factory
# ---------------------------------------------------------------------------


def _config_option(func: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--config",
        "config_path",
        required=True,
        envvar="SESSION_STORE_CONFIG",
        type=click.Path(exists=True, dir_okay=False),
        help="YAML file with 'driver' and its settings.",
    )(func)


def _client_options(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.option("--user-agent", default="", help="Client User-Agent (match_ua stores).")(func)
    return click.option("--ip", default="", help="Client IP address (match_ip stores).")(func)


def _make_store(config_path: str, ip: str = "", user_agent: str = "") -> SessionStore:
    """Build the store described by ``config_path`` or exit with an error."""
    try:
        driver, config = load_config(config_path)
        return create_store(driver, config, client=ClientContext(ip=ip, user_agent=user_agent))
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        sys.exit(1)


def _open_or_exit(store: SessionStore) -> None:
    if not store.open():
        console.print(f"[red]Could not open the {store.driver} store.[/red]")
        sys.exit(1)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="session-store")
def cli() -> None:
    """Locking session save handlers for files, databases, Redis and Memcached"""


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from session_store import __version__

    console.print(f"[bold]session-store[/bold] v{__version__}")


# ---------------------------------------------------------------------------
# describe
# ---------------------------------------------------------------------------


@cli.command(name="describe")
@_config_option
def describe_command(config_path: str) -> None:
    """Show the configured driver and its settings (secrets masked)."""
    store = _make_store(config_path)
    table = Table(title="Session store", show_lines=False)
    table.add_column("Setting", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    for key, value in store.describe_config().items():
        table.add_row(key, str(value))
    console.print(table)


# ---------------------------------------------------------------------------
# gc
# ---------------------------------------------------------------------------


@cli.command(name="gc")
@_config_option
@click.option(
    "--max-lifetime",
    type=click.IntRange(min=0),
    default=None,
    help="Age in seconds beyond which sessions are deleted. Defaults to the config value.",
)
def gc_command(config_path: str, max_lifetime: int | None) -> None:
    """Delete sessions that have not been refreshed within MAX_LIFETIME."""
    store = _make_store(config_path)
    lifetime = max_lifetime if max_lifetime is not None else store.config.max_lifetime
    deleted = store.gc(lifetime)
    if deleted is None:
        console.print("[red]Garbage collection could not run.[/red]")
        sys.exit(1)
    console.print(f"[green]Deleted {deleted} expired session(s).[/green]")


# ---------------------------------------------------------------------------
# read / destroy
# ---------------------------------------------------------------------------


@cli.command(name="read")
@click.argument("session_id")
@_config_option
@_client_options
@click.option("--raw", is_flag=True, help="Write the payload bytes to stdout unchanged.")
def read_command(config_path: str, session_id: str, ip: str, user_agent: str, raw: bool) -> None:
    """Lock SESSION_ID, print its payload and release the lock."""
    store = _make_store(config_path, ip, user_agent)
    _open_or_exit(store)
    try:
        payload = store.read(session_id)
        exists = store.state.record_exists
    finally:
        store.close()
    if raw:
        click.get_binary_stream("stdout").write(payload)
        return
    if not exists:
        console.print(f"[yellow]No session found:[/yellow] {session_id}")
        sys.exit(1)
    console.print(
        Panel(Text(payload.decode("utf-8", errors="replace")), title=session_id, expand=False)
    )


@cli.command(name="destroy")
@click.argument("session_id")
@_config_option
@_client_options
def destroy_command(config_path: str, session_id: str, ip: str, user_agent: str) -> None:
    """Lock SESSION_ID and delete its record."""
    store = _make_store(config_path, ip, user_agent)
    _open_or_exit(store)
    try:
        store.read(session_id)
        if not store.state.locked:
            console.print(f"[red]Could not lock session:[/red] {session_id}")
            sys.exit(1)
        destroyed = store.destroy(session_id)
    finally:
        store.close()
    if not destroyed:
        console.print(f"[red]Could not destroy session:[/red] {session_id}")
        sys.exit(1)
    console.print(f"[green]Session destroyed:[/green] {session_id}")


# ---------------------------------------------------------------------------
# validate-id
# ---------------------------------------------------------------------------


@cli.command(name="validate-id")
@click.argument("session_id")
@_config_option
def validate_id_command(config_path: str, session_id: str) -> None:
    """Check SESSION_ID against the configured identifier policy."""
    store = _make_store(config_path)
    if store.validate_id(session_id):
        console.print(f"[green]Valid:[/green] {session_id}")
        return
    policy = store.config.id_policy
    console.print(
        f"[red]Invalid:[/red] {session_id} "
        f"(expected {policy.length} characters of {policy.bits_per_character} bits)"
    )
    sys.exit(1)


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


@cli.command(name="init-db")
@_config_option
def init_db_command(config_path: str) -> None:
    """Create the session table and its indexes when missing."""
    store = _make_store(config_path)
    if not isinstance(store, DatabaseStore):
        console.print(f"[red]init-db requires the database driver, not {store.driver!r}.[/red]")
        sys.exit(1)
    try:
        store.create_schema()
    except SQLAlchemyError as exc:
        console.print(f"[red]Could not create the schema:[/red] {exc}")
        sys.exit(1)
    console.print(f"[green]Schema ready:[/green] {store.config.table}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    cli()
