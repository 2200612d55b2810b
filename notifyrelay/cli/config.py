"""
Config CLI commands.

Manages the server connection settings stored in relay-config.yaml.
"""

from typing import Optional

import click

from notifyrelay.config import (
    VALID_LOG_LEVELS,
    VALID_PROVIDER_TYPES,
    ConfigError,
    ConfigValidationError,
    RelayConfig,
)


def _mask(secret: str) -> str:
    if not secret:
        return "(not set)"
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"


# ============================================================================
# Config Command Group
# ============================================================================


@click.group()
@click.pass_context
def config(ctx: click.Context) -> None:
    """
    Manage relay configuration.

    Connection settings (server URL, access token, provider type) live in
    relay-config.yaml. Environment variables NOTIFYRELAY_SERVER_URL,
    NOTIFYRELAY_ACCESS_TOKEN and NOTIFYRELAY_LOG_LEVEL take precedence.
    """
    ctx.ensure_object(dict)


@config.command("show")
@click.pass_context
def show(ctx: click.Context) -> None:
    """
    Display the current configuration.

    Example:

        notifyrelay config show
    """
    try:
        relay_config = RelayConfig()
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)

    click.echo(f"Config file:   {relay_config.config_path}")
    click.echo(f"Server URL:    {relay_config.server_url or '(not set)'}")
    click.echo(f"Access token:  {_mask(relay_config.access_token)}")
    click.echo(f"Device ID:     {relay_config.device_id}")
    click.echo(f"Provider type: {relay_config.provider_type}")
    click.echo(f"Log level:     {relay_config.log_level}")
    click.echo(f"Timeout:       {relay_config.request_timeout}s")

    if not relay_config.is_configured:
        click.echo()
        click.echo(
            click.style("Note: ", fg="cyan")
            + "Set a server URL and access token to start the relay."
        )


@config.command("set")
@click.option("--server-url", help="Notification server base URL")
@click.option("--access-token", help="Bearer token for the notification API")
@click.option(
    "--provider-type",
    type=click.Choice(sorted(VALID_PROVIDER_TYPES)),
    help="Role of the signed-in user",
)
@click.option(
    "--log-level",
    type=click.Choice(sorted(VALID_LOG_LEVELS), case_sensitive=False),
    help="Logging level",
)
@click.option("--timeout", type=float, help="HTTP request timeout in seconds")
@click.pass_context
def set_config(
    ctx: click.Context,
    server_url: Optional[str],
    access_token: Optional[str],
    provider_type: Optional[str],
    log_level: Optional[str],
    timeout: Optional[float],
) -> None:
    """
    Update configuration values.

    Only the given options are changed.

    Example:

        notifyrelay config set --server-url https://api.example.com --access-token TOKEN
    """
    try:
        relay_config = RelayConfig()
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)

    if server_url is not None:
        relay_config.server_url = server_url.rstrip("/")
    if access_token is not None:
        relay_config.access_token = access_token
    if provider_type is not None:
        relay_config.provider_type = provider_type
    if log_level is not None:
        relay_config.log_level = log_level.upper()
    if timeout is not None:
        relay_config.request_timeout = timeout

    try:
        relay_config.validate()
    except ConfigValidationError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)

    relay_config.save()
    click.echo(click.style("Configuration saved: ", fg="green") + str(relay_config.config_path))
    click.echo()
    click.echo(
        click.style("Note: ", fg="cyan")
        + "Restart the relay for changes to take effect."
    )
