"""
notifyrelay CLI entry point.

Main command group for the notifyrelay CLI.
"""

import click

from notifyrelay import __version__


@click.group()
@click.version_option(version=__version__, prog_name="notifyrelay")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    notifyrelay - Notification delivery reconciliation.

    Receives job offers, order updates and emergency alerts over the
    real-time channel and falls back to polling the server whenever push
    or real-time delivery is unavailable.

    Use 'notifyrelay COMMAND --help' for more information on a command.
    """
    ctx.ensure_object(dict)


# Import and register subcommands
from notifyrelay.cli.start import start  # noqa: E402
from notifyrelay.cli.poll import poll  # noqa: E402
from notifyrelay.cli.config import config  # noqa: E402
from notifyrelay.cli.fallback import fallback  # noqa: E402
from notifyrelay.cli.preferences import preferences  # noqa: E402
from notifyrelay.cli.notifications import notifications  # noqa: E402

cli.add_command(start)
cli.add_command(poll)
cli.add_command(config)
cli.add_command(fallback)
cli.add_command(preferences)
cli.add_command(notifications)


def main() -> None:
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
