"""
Preferences CLI commands.

Shows and updates alert preferences. Updates are mirrored locally and
synced to the server.
"""

import asyncio
import sys
from typing import Any, Dict, Tuple

import click

from notifyrelay.api_client import ApiError, NotificationApiClient
from notifyrelay.channel_health import ChannelHealthMonitor
from notifyrelay.config import ConfigError, RelayConfig
from notifyrelay.local_store import PREFERENCES_KEY, JsonFileStore, load_model
from notifyrelay.models import AlertPreferences
from notifyrelay.subscription import NullPushPlatform, SubscriptionManager
from notifyrelay.token_store import TokenStore

TRUE_VALUES = ("true", "yes", "on", "1")
FALSE_VALUES = ("false", "no", "off", "0")


def parse_assignments(assignments: Tuple[str, ...]) -> Dict[str, Any]:
    """
    Parse KEY=VALUE arguments into a preference change mapping.

    ``quiet_hours.<field>`` keys become a nested ``quiet_hours`` mapping.
    Boolean words are converted to bool.

    Raises:
        click.BadParameter: If an argument is not KEY=VALUE
    """
    changes: Dict[str, Any] = {}
    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got '{assignment}'")

        value: Any = raw
        if raw.lower() in TRUE_VALUES:
            value = True
        elif raw.lower() in FALSE_VALUES:
            value = False

        group, dot, field = key.partition(".")
        if dot:
            changes.setdefault(group, {})[field] = value
        else:
            changes[key] = value
    return changes


def _print_preferences(prefs: AlertPreferences) -> None:
    def flag(value: bool) -> str:
        return click.style("on", fg="green") if value else click.style("off", fg="yellow")

    click.echo(f"Push alerts:       {flag(prefs.enabled)}")
    click.echo(f"Provider type:     {prefs.provider_type}")
    click.echo(f"Job requests:      {flag(prefs.job_requests)}")
    click.echo(f"Customer messages: {flag(prefs.customer_messages)}")
    click.echo(f"Payment updates:   {flag(prefs.payment_updates)}")
    click.echo(f"Emergency alerts:  {flag(prefs.emergency_alerts)}")
    click.echo(f"Sound:             {flag(prefs.sound_enabled)}")
    click.echo(f"Vibration:         {flag(prefs.vibration_enabled)}")
    quiet = prefs.quiet_hours
    window = f"{quiet.start_time}-{quiet.end_time}" if quiet.enabled else "off"
    click.echo(f"Quiet hours:       {window}")
    if quiet.enabled:
        click.echo(f"  Emergency sound: {flag(quiet.allow_emergency_sound)}")


def _load_config() -> RelayConfig:
    try:
        return RelayConfig()
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        sys.exit(1)


def _manager(config: RelayConfig, client: NotificationApiClient) -> SubscriptionManager:
    return SubscriptionManager(
        api_client=client,
        platform=NullPushPlatform(),
        monitor=ChannelHealthMonitor(),
        kv_store=JsonFileStore(),
        token_store=TokenStore(),
        device_id=config.device_id,
        provider_type=config.provider_type,
    )


# ============================================================================
# Preferences Command Group
# ============================================================================


@click.group()
@click.pass_context
def preferences(ctx: click.Context) -> None:
    """
    Manage alert preferences.

    Preferences decide which categories alert, whether sound and
    vibration are used, and the quiet hours window.
    """
    ctx.ensure_object(dict)


@preferences.command("show")
@click.option("--local", "local_only", is_flag=True, help="Only read the local mirror")
def show(local_only: bool) -> None:
    """
    Display alert preferences.

    Reads the server copy when the relay is configured, otherwise (or with
    --local) the local mirror.

    Example:

        notifyrelay preferences show
    """
    config = _load_config()

    if local_only or not config.is_configured:
        prefs = load_model(JsonFileStore(), PREFERENCES_KEY, AlertPreferences)
        _print_preferences(prefs or AlertPreferences(provider_type=config.provider_type))
        return

    prefs = asyncio.run(_load_async(config))
    _print_preferences(prefs)


@preferences.command("set")
@click.argument("assignments", nargs=-1, required=True)
def set_preferences(assignments: Tuple[str, ...]) -> None:
    """
    Update alert preferences.

    Takes KEY=VALUE pairs. Keys may be snake_case or camelCase; quiet hours
    fields use a quiet_hours. prefix.

    Example:

        notifyrelay preferences set sound_enabled=false quiet_hours.enabled=true quiet_hours.start_time=23:00
    """
    changes = parse_assignments(assignments)
    config = _load_config()

    if not config.is_configured:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "Relay is not configured with a server URL and access token."
        )
        sys.exit(1)

    try:
        synced, prefs = asyncio.run(_update_async(config, changes))
    except ValueError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + f"Invalid preference: {e}")
        sys.exit(1)
    except ApiError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        sys.exit(2)

    if synced:
        click.echo(click.style("Preferences saved.", fg="green"))
    else:
        click.echo(
            click.style("Warning: ", fg="yellow")
            + "Saved locally but could not sync to the server."
        )
    _print_preferences(prefs)


async def _load_async(config: RelayConfig) -> AlertPreferences:
    """Async helper loading preferences (server, local mirror, defaults)."""
    async with NotificationApiClient(
        server_url=config.server_url,
        access_token=config.access_token,
        timeout=config.request_timeout,
    ) as client:
        return await _manager(config, client).load_preferences()


async def _update_async(
    config: RelayConfig,
    changes: Dict[str, Any],
) -> Tuple[bool, AlertPreferences]:
    """Async helper merging and syncing preference changes."""
    async with NotificationApiClient(
        server_url=config.server_url,
        access_token=config.access_token,
        timeout=config.request_timeout,
    ) as client:
        manager = _manager(config, client)
        await manager.load_preferences()
        synced = await manager.update_preferences(**changes)
        return synced, manager.preferences
