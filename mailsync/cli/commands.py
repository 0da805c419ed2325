"""CLI command implementations — all commands delegate to MailSyncEngine."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mailsync.cache.pagination import PaginationCursor
from mailsync.errors import MailSyncError, NotFoundError
from mailsync.providers.gmail_client import (
    GMAIL_CAPABILITIES,
    MCPError,
    gmail_client,
    gmail_provider_factory,
)
from mailsync.providers.types import Credential, ProviderType
from mailsync.service.aggregator import SummaryPage
from mailsync.service.context import RequestContext

if TYPE_CHECKING:
    from mailsync.service.engine import MailSyncEngine

logger = logging.getLogger(__name__)
console = Console(width=200)

_READ_TIMEOUT_SECONDS = 30.0
# workspace-mcp holds the OAuth tokens; this only marks Gmail as syncable.
_MCP_CREDENTIAL = "workspace-mcp"

_user_option = click.option(
    "--user",
    "user_id",
    envvar="USER_GOOGLE_EMAIL",
    required=True,
    help="User id (defaults to USER_GOOGLE_EMAIL).",
)


def _format_internal_date(internal_date: int) -> str:
    if internal_date <= 0:
        return ""
    return datetime.fromtimestamp(internal_date / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


@click.command()
@_user_option
@click.option("--limit", default=20, show_default=True, help="Messages per page.")
@click.option("--cursor", default=None, help="Continuation token printed by the previous page.")
@click.option(
    "--refresh",
    is_flag=True,
    help="Also start a Gmail sync through the MCP server and wait for it. "
    "Without this flag the listing is read from the local cache only.",
)
@click.pass_obj
def inbox(
    engine: MailSyncEngine, user_id: str, limit: int, cursor: str | None, refresh: bool
) -> None:
    """List cached messages across linked providers, newest first.

    The listing always comes from the local cache.  With --refresh a
    background Gmail sync runs alongside the read; what it fetches shows up
    on the next run.
    """
    page_cursor = PaginationCursor.from_token(cursor, limit)

    async def _read() -> SummaryPage:
        ctx = RequestContext.with_timeout(_READ_TIMEOUT_SECONDS)
        return await engine.aggregator.fetch_summaries(ctx, user_id, page_cursor)

    async def _refresh_and_read() -> SummaryPage:
        async with gmail_client(user_email=user_id) as gmail:
            engine.registry.register(
                ProviderType.GMAIL, gmail_provider_factory(gmail.session), GMAIL_CAPABILITIES
            )
            engine.link_gmail(user_id, user_id)
            ctx = RequestContext.with_timeout(
                _READ_TIMEOUT_SECONDS,
                credentials={ProviderType.GMAIL: Credential(_MCP_CREDENTIAL)},
            )
            page = await engine.aggregator.fetch_summaries(ctx, user_id, page_cursor)
            # The session closes on exit, so background syncs must finish first.
            await engine.coordinator.drain()
        return page

    try:
        page = asyncio.run(_refresh_and_read() if refresh else _read())
    except NotFoundError as exc:
        console.print(f"[yellow]{exc}. Link a provider or run `mailsync sync` first.[/yellow]")
        return
    except MCPError as exc:
        console.print(f"[red]Gmail MCP error:[/red] {exc}")
        raise SystemExit(1) from exc
    except MailSyncError as exc:
        console.print(f"[red]Could not read the cache:[/red] {exc}")
        raise SystemExit(1) from exc

    if refresh and engine.aggregator.poll_sync_status(user_id):
        console.print("[green]New messages were synced; run again to see them.[/green]")

    if not page.items:
        console.print("[yellow]No cached messages. Run `mailsync sync` to fill the cache.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Received", width=16)
    table.add_column("From", max_width=30)
    table.add_column("Subject", max_width=50)
    table.add_column("Provider", width=8)
    table.add_column("ID", style="dim")

    for i, summary in enumerate(page.items, start=1):
        table.add_row(
            str(i),
            _format_internal_date(summary.internal_date),
            summary.sender,
            summary.subject or "(no subject)",
            summary.provider.value,
            summary.id,
        )
    console.print(table)

    if page.next_cursor is not None:
        console.print(f"\n[dim]Next page:[/dim] --cursor {page.next_cursor.to_token()}")


@click.command()
@_user_option
@click.argument("message_id")
@click.pass_obj
def show(engine: MailSyncEngine, user_id: str, message_id: str) -> None:
    """Show one cached message."""
    ctx = RequestContext.with_timeout(_READ_TIMEOUT_SECONDS)
    try:
        msg = asyncio.run(engine.aggregator.fetch_message(ctx, user_id, message_id))
    except NotFoundError:
        console.print(f"[yellow]Message {message_id} is not cached.[/yellow]")
        raise SystemExit(1)
    except MailSyncError as exc:
        console.print(f"[red]Could not read message:[/red] {exc}")
        raise SystemExit(1) from exc

    header = (
        f"[bold]{msg.subject or '(no subject)'}[/bold]\n"
        f"From: {msg.sender}\n"
        f"To: {msg.recipient}\n"
        f"Date: {msg.display_date}\n"
        f"[dim]{msg.provider.value} · {msg.message_id} · cached {msg.cached_at:%Y-%m-%d %H:%M:%S}[/dim]"
    )
    console.print(Panel(header, box=box.ROUNDED))
    console.print(msg.plain_body or msg.snippet)


@click.command()
@_user_option
@click.option("--page-token", default=None, help="Gmail page token to continue from.")
@click.pass_obj
def sync(engine: MailSyncEngine, user_id: str, page_token: str | None) -> None:
    """Refresh the cache from Gmail once and wait for it to finish."""

    async def _run() -> None:
        async with gmail_client(user_email=user_id) as gmail:
            result = await engine.worker.sync(user_id, ProviderType.GMAIL, gmail, page_token)
        console.print(
            f"[green]Synced {result.upserted}/{result.listed} message(s)[/green]"
            + (f" [yellow]({len(result.failed_ids)} skipped)[/yellow]" if result.failed_ids else "")
        )

    try:
        asyncio.run(_run())
    except MCPError as exc:
        console.print(f"[red]Gmail MCP error:[/red] {exc}")
        raise SystemExit(1) from exc
    except MailSyncError as exc:
        console.print(f"[red]Sync failed:[/red] {exc}")
        raise SystemExit(1) from exc


@click.command()
@_user_option
@click.confirmation_option(prompt="Delete every cached message for this user?")
@click.pass_obj
def purge(engine: MailSyncEngine, user_id: str) -> None:
    """Delete every cached message for a user (e.g. after unlinking)."""
    try:
        removed = asyncio.run(engine.cache.purge_user(user_id))
    except MailSyncError as exc:
        console.print(f"[red]Purge failed:[/red] {exc}")
        raise SystemExit(1) from exc
    console.print(f"Removed {removed} cached message(s) for {user_id}.")
