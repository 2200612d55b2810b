"""
Notifications CLI commands.

Marks notifications read on the server and sends a local test alert.
"""

import asyncio
import sys

import click

from notifyrelay.alerts import AlertDispatcher
from notifyrelay.api_client import (
    ApiError,
    AuthExpiredError,
    ConnectionError as RelayConnectionError,
    ForbiddenError,
    NotificationApiClient,
)
from notifyrelay.cli.start import ConsoleAlertSink
from notifyrelay.config import ConfigError, RelayConfig
from notifyrelay.local_store import PREFERENCES_KEY, JsonFileStore, load_model
from notifyrelay.models import AlertPreferences


@click.group()
@click.pass_context
def notifications(ctx: click.Context) -> None:
    """Work with individual notifications."""
    ctx.ensure_object(dict)


@notifications.command("mark-read")
@click.argument("notification_id")
def mark_read(notification_id: str) -> None:
    """
    Mark a notification as read on the server.

    Example:

        notifyrelay notifications mark-read ntf_01hxyz
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

    try:
        asyncio.run(_mark_read_async(config, notification_id))
    except RelayConnectionError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + f"Connection failed: {e}")
        sys.exit(2)
    except AuthExpiredError:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "Authentication expired. Please sign in again."
        )
        sys.exit(3)
    except ForbiddenError:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "Insufficient permissions for notifications."
        )
        sys.exit(2)
    except ApiError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        sys.exit(2)

    click.echo(click.style("Marked as read: ", fg="green") + notification_id)


async def _mark_read_async(config: RelayConfig, notification_id: str) -> None:
    """Async helper marking a notification read via the API client."""
    async with NotificationApiClient(
        server_url=config.server_url,
        access_token=config.access_token,
        timeout=config.request_timeout,
    ) as client:
        await client.mark_read(notification_id)


@notifications.command("test-alert")
def test_alert() -> None:
    """
    Present a test alert on this console.

    Uses the locally mirrored preferences for sound.

    Example:

        notifyrelay notifications test-alert
    """
    prefs = load_model(JsonFileStore(), PREFERENCES_KEY, AlertPreferences) or AlertPreferences()
    dispatcher = AlertDispatcher(sink=ConsoleAlertSink(), preferences=lambda: prefs)
    record = asyncio.run(dispatcher.send_test_alert())
    click.echo()
    click.echo(click.style("Test alert sent: ", fg="green") + record.id)
