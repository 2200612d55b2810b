"""
Start CLI command.

Runs the relay in the foreground and presents alerts on the console.
"""

import logging
import sys
from typing import Tuple

import click

from notifyrelay.alerts import Alert
from notifyrelay.config import ConfigError, RelayConfig
from notifyrelay.main import run_relay
from notifyrelay.models import Priority

logger = logging.getLogger("notifyrelay.cli")

PRIORITY_COLORS = {
    Priority.EMERGENCY: "red",
    Priority.HIGH: "yellow",
    Priority.MEDIUM: "cyan",
    Priority.LOW: "white",
}


class ConsoleAlertSink:
    """AlertSink that prints alerts to the terminal."""

    async def show_alert(self, alert: Alert) -> None:
        label = click.style(
            f"[{alert.priority.value.upper()}]",
            fg=PRIORITY_COLORS[alert.priority],
            bold=alert.variant == "destructive",
        )
        click.echo(f"{label} {click.style(alert.title, bold=True)}")
        if alert.body:
            click.echo(f"  {alert.body}")

    async def play_sound(self, priority: Priority) -> None:
        # Terminal bell
        click.echo("\a", nl=False)

    async def vibrate(self, pattern: Tuple[int, ...]) -> None:
        logger.debug(f"Vibration pattern {list(pattern)} ignored on console")


@click.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """
    Start the notification relay.

    The relay connects to the configured server, follows the real-time
    channel and polls for missed notifications whenever push or
    real-time delivery is unavailable.

    Runs until stopped with Ctrl+C or SIGTERM.

    Example:

        notifyrelay start
    """
    try:
        config = RelayConfig()
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)

    if not config.is_configured:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "Relay is not configured with a server URL and access token."
        )
        click.echo("Run 'notifyrelay config set --server-url URL --access-token TOKEN' first.")
        ctx.exit(1)

    click.echo("Starting notification relay...")
    click.echo(f"  Server: {config.server_url}")
    click.echo(f"  Provider type: {config.provider_type}")
    click.echo()
    click.echo("Press Ctrl+C to stop")
    click.echo()

    exit_code = run_relay(ConsoleAlertSink())
    sys.exit(exit_code)
