"""Command-line interface for the Outlook MCP server.

Provides commands for running the server, signing in and out, and checking
the configuration and Graph connectivity.

Usage:
    python -m outlook_mcp validate-config
    python -m outlook_mcp login
    python -m outlook_mcp whoami
    python -m outlook_mcp list-emails --folder inbox --limit 5
    python -m outlook_mcp serve
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from outlook_mcp.config import validate_config_file
from outlook_mcp.core.logging import configure_logging

if TYPE_CHECKING:
    from outlook_mcp.auth.msal_auth import GraphAuth
    from outlook_mcp.config_schema import AppConfig

# stdout is reserved for the MCP protocol while serving
console = Console(stderr=True)


def _load_config() -> AppConfig:
    """Load config, printing an actionable message and exiting on failure."""
    from outlook_mcp.config import get_config
    from outlook_mcp.core.errors import ConfigLoadError, ConfigValidationError

    try:
        return get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Create config/config.yaml with at least an [cyan]auth[/cyan] section,\n"
            "or set AZURE_CLIENT_ID (and AZURE_TENANT_ID) in the environment."
        )
        sys.exit(1)


def _init_auth(config: AppConfig) -> GraphAuth:
    """Create the MSAL token provider from config, exiting on failure."""
    from outlook_mcp.auth.msal_auth import GraphAuth

    try:
        return GraphAuth(
            client_id=config.auth.client_id,
            tenant_id=config.auth.tenant_id,
            scopes=config.auth.scopes,
            token_cache_path=config.auth.token_cache_path,
            redirect_port=config.auth.redirect_port,
        )
    except ValueError as e:
        console.print(f"[red]Authentication setup error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Outlook MCP - Microsoft Outlook mail and calendar tools for AI agents."""
    log_level = "DEBUG" if debug else "INFO"
    # Human-readable output for interactive commands, JSON for the server
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes Pydantic schema validation.
    Reports specific errors for invalid fields.
    """
    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("serve")
def serve() -> None:
    """Start the MCP server on stdio.

    Intended to be launched by an MCP client (e.g. a desktop AI app), which
    talks to it over stdin/stdout.
    """
    from outlook_mcp import server

    config = _load_config()
    configure_logging(
        log_level=config.logging.level,
        json_output=config.logging.json_output,
    )
    server.run()


@cli.command("login")
def login() -> None:
    """Sign in to Microsoft Outlook in the browser and cache the token."""
    from outlook_mcp.core.errors import AuthenticationError

    auth = _init_auth(_load_config())
    console.print(
        f"Opening browser for sign-in (redirect on [cyan]localhost:{auth.redirect_port}[/cyan])..."
    )

    try:
        claims = auth.authenticate()
    except AuthenticationError as e:
        console.print(f"[red]Login failed:[/red] {e}")
        sys.exit(1)

    name = claims.get("name") or "unknown"
    username = claims.get("preferred_username") or "unknown"
    console.print(f"[green]✓[/green] Signed in as {name} ({username})")


@cli.command("logout")
def logout() -> None:
    """Remove cached accounts and delete the token cache."""
    auth = _init_auth(_load_config())
    auth.clear_cache()
    console.print("[green]✓[/green] Signed out; token cache cleared")


@cli.command("whoami")
def whoami() -> None:
    """Show the signed-in user (verifies Graph connectivity)."""
    asyncio.run(_run_whoami())


async def _run_whoami() -> None:
    from outlook_mcp.core.errors import OutlookMCPError
    from outlook_mcp.graph.client import GraphClient

    config = _load_config()
    auth = _init_auth(config)

    async with GraphClient.from_config(config, auth) as client:
        try:
            user = await client.get_user_info()
        except OutlookMCPError as e:
            console.print(f"[red]Graph request failed:[/red] {e}")
            sys.exit(1)

    console.print(f"Name:  [cyan]{user.get('displayName')}[/cyan]")
    console.print(f"Email: [cyan]{user.get('mail') or user.get('userPrincipalName')}[/cyan]")
    console.print(f"ID:    {user.get('id')}")


@cli.command("list-emails")
@click.option(
    "--folder",
    default="inbox",
    help="Folder name or ID (default: inbox)",
)
@click.option(
    "--limit",
    default=10,
    type=click.IntRange(1, 50),
    help="Number of messages to show",
)
@click.option(
    "--unread",
    is_flag=True,
    default=False,
    help="Only show unread messages",
)
def list_emails(folder: str, limit: int, unread: bool) -> None:
    """List recent messages in a folder."""
    asyncio.run(_run_list_emails(folder, limit, unread))


async def _run_list_emails(folder: str, limit: int, unread: bool) -> None:
    from outlook_mcp.core.errors import OutlookMCPError
    from outlook_mcp.graph.client import GraphClient
    from outlook_mcp.graph.helpers import parse_email_address
    from outlook_mcp.graph.mail import MailManager

    config = _load_config()
    auth = _init_auth(config)

    async with GraphClient.from_config(config, auth) as client:
        try:
            messages = await MailManager(client).list_messages(
                folder,
                top=limit,
                filter_query="isRead eq false" if unread else None,
            )
        except OutlookMCPError as e:
            console.print(f"[red]Graph request failed:[/red] {e}")
            sys.exit(1)

    if not messages:
        console.print(f"No messages in [cyan]{folder}[/cyan]")
        return

    table = Table(title=f"{folder} ({len(messages)} messages)")
    table.add_column("Received", style="dim")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("Read", justify="center")

    for message in messages:
        sender = message.get("from")
        table.add_row(
            (message.get("receivedDateTime") or "")[:16].replace("T", " "),
            parse_email_address(sender) if sender else "Unknown",
            message.get("subject") or "(no subject)",
            "✓" if message.get("isRead") else "",
        )

    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
