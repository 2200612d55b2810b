"""
Poll CLI command.

Runs a single fallback poll against the server and prints the
notifications it returned, highest priority first.
"""

import asyncio
import sys
from typing import List, Optional, Tuple

import click

from notifyrelay.api_client import NotificationApiClient
from notifyrelay.channel_health import ChannelHealthMonitor
from notifyrelay.config import ConfigError, RelayConfig
from notifyrelay.local_store import JsonFileStore
from notifyrelay.models import NotificationRecord
from notifyrelay.notification_store import NotificationStore
from notifyrelay.polling_loop import ErrorKind, FallbackPollingEngine, PollOutcome
from notifyrelay.cli.start import PRIORITY_COLORS


@click.command()
@click.option("--limit", type=click.IntRange(1, 100), default=50, show_default=True,
              help="Maximum notifications to request")
@click.option("--unread", is_flag=True, help="Only show unread notifications")
def poll(limit: int, unread: bool) -> None:
    """
    Poll the server once for notifications.

    Example:

        notifyrelay poll --unread
    """
    try:
        config = RelayConfig()
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        sys.exit(1)

    if not config.is_configured:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "Relay is not configured with a server URL and access token."
        )
        sys.exit(1)

    outcome, error, error_kind, records = asyncio.run(_poll_async(config, limit))

    if outcome is PollOutcome.HALTED:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(error))
        sys.exit(3 if error_kind is ErrorKind.AUTH_EXPIRED else 2)

    if outcome in (PollOutcome.RETRY, PollOutcome.EXHAUSTED):
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "Failed to fetch notifications. Check the server connection and try again."
        )
        sys.exit(2)

    if outcome is PollOutcome.NOT_MODIFIED:
        click.echo("No new notifications.")
        return

    if unread:
        records = [r for r in records if not r.read]

    if not records:
        click.echo("No notifications.")
        return

    click.echo(f"{len(records)} notification(s):")
    for record in records:
        marker = " " if record.read else click.style("*", fg="cyan", bold=True)
        priority = click.style(
            f"{record.priority.value:<9}", fg=PRIORITY_COLORS[record.priority]
        )
        click.echo(f" {marker} {priority} {record.id}  {record.title}")
        if record.body:
            click.echo(f"             {record.body}")


async def _poll_async(
    config: RelayConfig,
    limit: int,
) -> Tuple[PollOutcome, Optional[str], Optional[ErrorKind], List[NotificationRecord]]:
    """Async helper running one poll through the fallback engine."""
    store = NotificationStore()
    async with NotificationApiClient(
        server_url=config.server_url,
        access_token=config.access_token,
        timeout=config.request_timeout,
    ) as client:
        engine = FallbackPollingEngine(
            api_client=client,
            store=store,
            monitor=ChannelHealthMonitor(),
            kv_store=JsonFileStore(),
            provider_type=config.provider_type,
            page_size=limit,
        )
        engine.load_config()
        outcome = await engine.poll_once()
        return outcome, engine.error, engine.error_kind, store.prioritized()
