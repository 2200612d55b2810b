"""
Fallback CLI commands.

Inspects and changes the fallback polling configuration persisted under
the notification_fallback_config key.
"""

from typing import Optional

import click
from pydantic import ValidationError

from notifyrelay.local_store import (
    FALLBACK_CONFIG_KEY,
    JsonFileStore,
    load_model,
    save_model,
)
from notifyrelay.models import FallbackConfig


def _print_config(fallback_config: FallbackConfig) -> None:
    enabled = (
        click.style("enabled", fg="green")
        if fallback_config.enabled
        else click.style("disabled", fg="yellow")
    )
    click.echo(f"Fallback polling:   {enabled}")
    click.echo(f"Poll interval:      {fallback_config.poll_interval_ms}ms")
    click.echo(f"Max retries:        {fallback_config.max_retries}")
    click.echo(f"Backoff multiplier: {fallback_config.backoff_multiplier}")
    click.echo(f"Show indicator:     {fallback_config.show_fallback_indicator}")


# ============================================================================
# Fallback Command Group
# ============================================================================


@click.group()
@click.pass_context
def fallback(ctx: click.Context) -> None:
    """
    Manage fallback polling.

    Fallback polling runs whenever push or the real-time channel is
    unavailable. Changes apply the next time the relay starts.
    """
    ctx.ensure_object(dict)


@fallback.command("show")
def show() -> None:
    """
    Display the fallback polling configuration.

    Example:

        notifyrelay fallback show
    """
    store = JsonFileStore()
    _print_config(load_model(store, FALLBACK_CONFIG_KEY, FallbackConfig) or FallbackConfig())


@fallback.command("set")
@click.option("--enabled/--disabled", default=None, help="Allow or forbid fallback polling")
@click.option("--interval-ms", type=int, help="Delay between polls in milliseconds")
@click.option("--max-retries", type=int, help="Retries before an error is surfaced")
@click.option("--backoff-multiplier", type=float, help="Exponential backoff base")
@click.option("--indicator/--no-indicator", default=None, help="Show the reconnecting indicator")
@click.pass_context
def set_fallback(
    ctx: click.Context,
    enabled: Optional[bool],
    interval_ms: Optional[int],
    max_retries: Optional[int],
    backoff_multiplier: Optional[float],
    indicator: Optional[bool],
) -> None:
    """
    Update fallback polling configuration.

    Example:

        notifyrelay fallback set --interval-ms 15000 --max-retries 5
    """
    changes = {
        "enabled": enabled,
        "poll_interval_ms": interval_ms,
        "max_retries": max_retries,
        "backoff_multiplier": backoff_multiplier,
        "show_fallback_indicator": indicator,
    }
    changes = {key: value for key, value in changes.items() if value is not None}
    if not changes:
        click.echo("Nothing to change. See 'notifyrelay fallback set --help'.")
        return

    store = JsonFileStore()
    current = load_model(store, FALLBACK_CONFIG_KEY, FallbackConfig) or FallbackConfig()
    try:
        updated = FallbackConfig.model_validate({**current.model_dump(), **changes})
    except ValidationError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + "Invalid fallback configuration")
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            click.echo(f"  {field}: {error['msg']}")
        ctx.exit(1)

    save_model(store, FALLBACK_CONFIG_KEY, updated)
    click.echo(click.style("Fallback configuration saved.", fg="green"))
    _print_config(updated)


@fallback.command("reset")
def reset() -> None:
    """
    Restore the default fallback polling configuration.

    Example:

        notifyrelay fallback reset
    """
    store = JsonFileStore()
    store.delete(FALLBACK_CONFIG_KEY)
    click.echo(click.style("Fallback configuration reset to defaults.", fg="green"))
    _print_config(FallbackConfig())
