"""FleetDeck CLI — manage trading-bot sessions and import discovered bots.

Usage:
    fleetdeck bots list                  List stored bots
    fleetdeck bots add NAME URL -u USER  Add a bot by hand and log in
    fleetdeck bots refresh               Refresh every auto-refresh session
    fleetdeck discovery list             Show containers found on the servers
    fleetdeck discovery import --all-eligible
"""

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

import httpx
import typer
from rich.console import Console
from rich.markup import escape

from fleetdeck import __version__
from fleetdeck.cli.config import FleetDeckConfig, load_config
from fleetdeck.cli.factory import get_control_plane, get_store
from fleetdeck.cli.output import (
    format_bot_table,
    format_catalog_table,
    format_import_report,
    format_server_table,
)
from fleetdeck.errors import DuplicateIdentityError, FleetDeckError, RefreshFailure
from fleetdeck.services.bot_types import LoginCredentials, manual_bot_id
from fleetdeck.services.control_plane_client import Inventory, actor_permissions
from fleetdeck.services.discovery_catalog import DiscoveryCatalog
from fleetdeck.services.import_orchestrator import ImportOrchestrator
from fleetdeck.services.session_controller import SessionController

_log = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s:%(name)s:%(message)s"

app = typer.Typer(
    name="fleetdeck",
    help="Multi-bot session manager and discovery importer",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration management")
bots_app = typer.Typer(help="Manage bot identities and sessions")
servers_app = typer.Typer(help="Inspect control-plane servers")
discovery_app = typer.Typer(help="Browse and import discovered containers")

app.add_typer(config_app, name="config")
app.add_typer(bots_app, name="bots")
app.add_typer(servers_app, name="servers")
app.add_typer(discovery_app, name="discovery")

console = Console()
err_console = Console(stderr=True)

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to fleetdeck.yaml config file"
    ),
):
    """FleetDeck CLI — bot sessions and discovery import."""
    global _config_path
    _config_path = config


def configure_logging(cfg: FleetDeckConfig) -> None:
    kwargs = {"level": cfg.logging.level, "format": LOG_FORMAT}
    if cfg.logging.file:
        kwargs["filename"] = cfg.logging.file
    logging.basicConfig(**kwargs)


def _load() -> FleetDeckConfig:
    """Load config and set up logging, exiting 1 on a bad config."""
    try:
        cfg = load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)
    configure_logging(cfg)
    return cfg


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Turn domain and HTTP failures into a red message and exit code 1."""
    try:
        yield
    except FleetDeckError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Error:[/red] {type(e).__name__}: {escape(str(e))}")
        raise typer.Exit(1)


def _emit(output: str, as_json: bool) -> None:
    # JSON bypasses Rich so markup and wrapping never touch it.
    if as_json:
        typer.echo(output)
    else:
        console.print(output)


def _warn_inventory_failures(inventory: Inventory) -> None:
    for vps_id, error in inventory.failures.items():
        err_console.print(
            f"[yellow]Warning:[/yellow] containers of server {vps_id} unavailable: {escape(str(error))}"
        )


def _bot_client(cfg: FleetDeckConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=cfg.bots.request_timeout_seconds)


# --- Version ---


@app.command()
def version():
    """Show FleetDeck version."""
    console.print(f"[bold]FleetDeck[/bold] v{__version__}")


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration (secrets masked)."""
    cfg = _load()
    cp = cfg.control_plane

    console.print("[bold]Control plane:[/bold]")
    console.print(f"  base_url: {cp.base_url}")
    console.print(f"  actor: {cp.actor} ({', '.join(actor_permissions(cp.actor))})")
    console.print(f"  timeout_seconds: {cp.timeout_seconds}")
    console.print(f"  token: {'***' if cp.token else '(keyring or none)'}")

    console.print("\n[bold]Storage:[/bold]")
    console.print(f"  database_url: {cfg.storage.database_url or '(default)'}")
    console.print(f"  key_dir: {cfg.storage.key_dir or '(default)'}")

    console.print("\n[bold]Bots:[/bold]")
    console.print(f"  request_timeout_seconds: {cfg.bots.request_timeout_seconds}")

    console.print("\n[bold]Logging:[/bold]")
    console.print(f"  level: {cfg.logging.level}")
    console.print(f"  file: {cfg.logging.file or '(stderr)'}")


@config_app.command("validate")
def config_validate(
    config: Optional[str] = typer.Option(None, "--config", help="Config file path"),
):
    """Validate a config file without touching the store."""
    path = config or _config_path
    try:
        cfg = load_config(config_path=path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]Config is valid.[/green]")
    console.print(f"  Control plane: {cfg.control_plane.base_url} as {cfg.control_plane.actor}")


# --- Bot commands ---


@bots_app.command("list")
def bots_list(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List stored bots in display order."""
    cfg = _load()
    with _cli_errors():
        store = get_store(cfg)
        _emit(format_bot_table(store.list(), as_json=json_output), json_output)


@bots_app.command("add")
def bots_add(
    name: str = typer.Argument(help="Display name of the bot"),
    url: str = typer.Argument(help="Bot API origin, e.g. http://10.0.0.5:8080"),
    username: str = typer.Option(..., "--username", "-u", help="API username"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, help="API password"
    ),
):
    """Add a bot by hand and log in to it."""
    cfg = _load()
    bot_id = manual_bot_id(name)

    async def _run():
        store = get_store(cfg)
        if store.exists(bot_id):
            raise DuplicateIdentityError(bot_id)
        async with _bot_client(cfg) as http:
            controller = SessionController(bot_id, store, http_client=http)
            await controller.login(LoginCredentials(
                url=url.rstrip("/"), username=username, password=password, bot_name=name,
            ))
        console.print(f"[green]Added and logged in:[/green] {bot_id}")

    with _cli_errors():
        asyncio.run(_run())


@bots_app.command("login")
def bots_login(
    bot_id: str = typer.Argument(help="Bot ID to log in"),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="API username"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, help="API password"
    ),
):
    """Log in to a stored bot with a username and password."""
    cfg = _load()

    async def _run():
        store = get_store(cfg)
        info = store.get(bot_id)
        if info is None:
            raise FleetDeckError(f"Unknown bot '{bot_id}'")
        user = username or info.username
        if not user:
            raise FleetDeckError(f"No username stored for '{bot_id}'; pass --username")
        async with _bot_client(cfg) as http:
            controller = SessionController(bot_id, store, http_client=http)
            await controller.login(LoginCredentials(url=info.api_url, username=user, password=password))
        console.print(f"[green]Logged in:[/green] {bot_id}")

    with _cli_errors():
        asyncio.run(_run())


@bots_app.command("logout")
def bots_logout(
    bot_id: str = typer.Argument(help="Bot ID to forget"),
):
    """Remove a bot and its session."""
    cfg = _load()
    with _cli_errors():
        store = get_store(cfg)
        if not store.exists(bot_id):
            raise FleetDeckError(f"Unknown bot '{bot_id}'")
        SessionController(bot_id, store).logout()
    console.print(f"[yellow]Removed:[/yellow] {bot_id}")


@bots_app.command("rename")
def bots_rename(
    bot_id: str = typer.Argument(help="Bot ID to rename"),
    name: str = typer.Argument(help="New display name"),
):
    """Change a bot's display name."""
    cfg = _load()
    with _cli_errors():
        store = get_store(cfg)
        if not store.exists(bot_id):
            raise FleetDeckError(f"Unknown bot '{bot_id}'")
        SessionController(bot_id, store).update_bot(bot_name=name)
    console.print(f"[green]Renamed:[/green] {bot_id} -> {name}")


@bots_app.command("refresh")
def bots_refresh(
    bot_id: Optional[str] = typer.Argument(None, help="Bot ID (default: every auto-refresh bot)"),
):
    """Refresh access tokens for one bot or every auto-refresh bot."""
    cfg = _load()

    async def _run() -> int:
        store = get_store(cfg)
        if bot_id is not None:
            if not store.exists(bot_id):
                raise FleetDeckError(f"Unknown bot '{bot_id}'")
            targets = [bot_id]
        else:
            targets = [i.bot_id for i in store.list() if i.auto_refresh]
        if not targets:
            console.print("No bots to refresh.")
            return 0

        _log.info("Refreshing %d bot(s)", len(targets))
        failed = 0
        async with _bot_client(cfg) as http:
            for target in targets:
                controller = SessionController(target, store, http_client=http)
                try:
                    await controller.refresh()
                except RefreshFailure as e:
                    failed += 1
                    console.print(f"[red]{target}[/red]: {e}")
                    continue
                except httpx.TransportError as e:
                    failed += 1
                    console.print(f"[red]{target}[/red]: unreachable ({type(e).__name__})")
                    continue
                console.print(f"[green]{target}[/green]: refreshed")
        return failed

    with _cli_errors():
        failed = asyncio.run(_run())
    if failed:
        raise typer.Exit(1)


# --- Server commands ---


@servers_app.command("list")
def servers_list(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List servers known to the control plane."""
    cfg = _load()

    async def _run():
        async with get_control_plane(cfg) as cp:
            servers = await cp.list_servers()
        _emit(format_server_table(servers, as_json=json_output), json_output)

    with _cli_errors():
        asyncio.run(_run())


@servers_app.command("discover")
def servers_discover(
    vps_id: int = typer.Argument(help="Server ID to rescan"),
):
    """Ask the control plane to rescan a server's containers."""
    cfg = _load()

    async def _run():
        async with get_control_plane(cfg) as cp:
            result = await cp.discover(vps_id)
        console.print(result.get("message") or "Discovery finished.")
        console.print(
            f"  discovered: {result.get('discovered', 0)}, "
            f"freqtrade: {result.get('freqtrade_discovered', 0)}"
        )

    with _cli_errors():
        asyncio.run(_run())


# --- Discovery commands ---


@discovery_app.command("list")
def discovery_list(
    managed_only: bool = typer.Option(False, "--managed-only", help="Only freqtrade containers"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show discovered containers and whether they are imported."""
    cfg = _load()

    async def _run():
        store = get_store(cfg)
        async with get_control_plane(cfg) as cp:
            inventory = await cp.load_inventory()
        _warn_inventory_failures(inventory)
        catalog = DiscoveryCatalog(inventory.servers, inventory.containers, store)
        _emit(format_catalog_table(catalog.entries(managed_only=managed_only), as_json=json_output), json_output)

    with _cli_errors():
        asyncio.run(_run())


@discovery_app.command("import")
def discovery_import(
    all_eligible: bool = typer.Option(False, "--all-eligible", help="Import every eligible container"),
    select: Optional[list[str]] = typer.Option(
        None, "--select", "-s", help="SERVER_ID:CONTAINER to import (repeatable)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Import selected containers as bots, logging in where a hint allows."""
    if not all_eligible and not select:
        console.print("[red]Error:[/red] pass --all-eligible or at least one --select")
        raise typer.Exit(1)
    cfg = _load()

    async def _run():
        store = get_store(cfg)
        async with get_control_plane(cfg) as cp:
            inventory = await cp.load_inventory()
            _warn_inventory_failures(inventory)
            catalog = DiscoveryCatalog(inventory.servers, inventory.containers, store)
            try:
                rows = catalog.eligible_rows() if all_eligible else catalog.select(select)
            except KeyError as e:
                raise FleetDeckError(f"No discovered container matches {e.args[0]}") from e
            async with _bot_client(cfg) as http:
                orchestrator = ImportOrchestrator(store, cp.container_auth_hint, http_client=http)
                report = await orchestrator.import_selected(rows)
        _emit(format_import_report(report, as_json=json_output), json_output)

    with _cli_errors():
        asyncio.run(_run())


if __name__ == "__main__":
    app()
