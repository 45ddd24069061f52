"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich table output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean. Tokens are never rendered.
"""

import dataclasses
import json

from rich.console import Console
from rich.table import Table

from fleetdeck.services.bot_types import BotIdentity, LoginStatus, ServerRecord
from fleetdeck.services.discovery_catalog import CatalogEntry
from fleetdeck.services.import_orchestrator import ImportReport

console = Console()

LOGIN_STATUS_COLORS = {
    LoginStatus.auto_logged: "green",
    LoginStatus.manual_login: "yellow",
    LoginStatus.not_imported: "dim",
}

SERVER_STATUS_COLORS = {
    "online": "green",
    "offline": "red",
    "unknown": "dim",
}


def _render(table: Table) -> str:
    with console.capture() as capture:
        console.print(table)
    return capture.get()


def bot_summary(identity: BotIdentity) -> dict:
    """JSON-safe view of an identity: session presence instead of tokens."""
    return {
        "bot_id": identity.bot_id,
        "bot_name": identity.bot_name,
        "api_url": identity.api_url,
        "sort_id": identity.sort_id,
        "username": identity.username,
        "auto_refresh": identity.auto_refresh,
        "has_session": identity.is_authenticated,
    }


def format_bot_table(identities: list[BotIdentity], as_json: bool = False) -> str:
    """Format stored bot identities as a Rich table or JSON."""
    if as_json:
        return json.dumps([bot_summary(i) for i in identities], indent=2)

    if not identities:
        return "No bots configured."

    table = Table(title="Bots")
    table.add_column("#", justify="right")
    table.add_column("Bot ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("URL")
    table.add_column("User")
    table.add_column("Session")
    table.add_column("Auto-refresh")

    for identity in identities:
        session = "[green]active[/green]" if identity.is_authenticated else "[yellow]login required[/yellow]"
        table.add_row(
            "—" if identity.sort_id is None else str(identity.sort_id),
            identity.bot_id,
            identity.bot_name or "—",
            identity.api_url or "—",
            identity.username or "—",
            session,
            "yes" if identity.auto_refresh else "no",
        )
    return _render(table)


def format_server_table(servers: list[ServerRecord], as_json: bool = False) -> str:
    """Format control-plane servers as a Rich table or JSON."""
    if as_json:
        return json.dumps([dataclasses.asdict(s) for s in servers], indent=2)

    if not servers:
        return "No servers found."

    table = Table(title="Servers")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("IP")
    table.add_column("Status")
    table.add_column("Docker")
    table.add_column("Last error")

    for server in servers:
        color = SERVER_STATUS_COLORS.get(server.status, "white")
        docker = "—" if server.docker_available is None else ("yes" if server.docker_available else "no")
        table.add_row(
            str(server.id),
            server.name,
            server.ip,
            f"[{color}]{server.status or 'unknown'}[/{color}]",
            docker,
            server.last_error[:40] if server.last_error else "—",
        )
    return _render(table)


def format_catalog_table(entries: list[CatalogEntry], as_json: bool = False) -> str:
    """Format discovery catalog entries as a Rich table or JSON."""
    if as_json:
        payload = []
        for entry in entries:
            item = dataclasses.asdict(entry.row)
            item.update(
                bot_id=entry.row.bot_id,
                selection_key=entry.row.selection_key,
                imported=entry.imported,
                login_status=entry.login_status.value,
                last_import_status=entry.last_import_status.value if entry.last_import_status else None,
            )
            payload.append(item)
        return json.dumps(payload, indent=2)

    if not entries:
        return "No containers discovered."

    table = Table(title="Discovered containers", show_lines=True)
    table.add_column("Select", style="cyan", no_wrap=True)
    table.add_column("Server")
    table.add_column("Container", style="bold")
    table.add_column("Status")
    table.add_column("Strategy")
    table.add_column("Suggested URL")
    table.add_column("Eligible")
    table.add_column("Login")

    for entry in entries:
        row = entry.row
        eligible = "[green]yes[/green]" if row.import_eligible else f"[red]no[/red] ({row.eligibility_reason})"
        color = LOGIN_STATUS_COLORS[entry.login_status]
        table.add_row(
            row.selection_key,
            f"{row.server_name} ({row.server_ip})",
            row.container_name,
            row.container_status or "—",
            row.strategy or "—",
            row.suggested_url or "—",
            eligible,
            f"[{color}]{entry.login_status.value}[/{color}]",
        )
    return _render(table)


def format_import_report(report: ImportReport, as_json: bool = False) -> str:
    """Format an import report: per-row outcomes plus the summary line."""
    if as_json:
        return json.dumps(
            {
                "added": report.added,
                "skipped_not_eligible": report.skipped_not_eligible,
                "skipped_duplicate_id": report.skipped_duplicate_id,
                "skipped_duplicate_url": report.skipped_duplicate_url,
                "auto_logged": report.auto_logged,
                "auto_login_failed": report.auto_login_failed,
                "outcomes": [
                    {
                        "selection_key": o.selection_key,
                        "bot_id": o.bot_id,
                        "added": o.added,
                        "skip_reason": o.skip_reason.value if o.skip_reason else None,
                        "login_status": o.login_status.value if o.login_status else None,
                        "api_url": o.api_url,
                        "message": o.message,
                    }
                    for o in report.outcomes
                ],
            },
            indent=2,
        )

    if not report.outcomes:
        return "Nothing selected for import."

    table = Table(title="Import results")
    table.add_column("Select", style="cyan", no_wrap=True)
    table.add_column("Bot ID")
    table.add_column("Result")
    table.add_column("Detail")

    for outcome in report.outcomes:
        if outcome.added:
            color = LOGIN_STATUS_COLORS[outcome.login_status]
            result = f"[{color}]{outcome.login_status.value}[/{color}]"
        else:
            result = f"[dim]skipped: {outcome.skip_reason.value}[/dim]"
        table.add_row(outcome.selection_key, outcome.bot_id, result, outcome.message or "—")
    return _render(table) + report.summary()
