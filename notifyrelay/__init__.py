"""
notifyrelay - Notification delivery reconciliation engine.

Keeps a client's notification stream consistent when it is fed by two
independent channels: the push/real-time channel and a pull-based fallback
poller. Records from both channels are merged into one deduplicated store
and surfaced to the user according to priority and quiet hours.

Key modules:
- channel_health: Decides whether the fallback poller should run
- polling_loop: Cursor-based fallback poller with exponential backoff
- subscription: Push permission and credential lifecycle, preferences
- notification_store: Deduplicated, capped record of notifications
- alerts: Alert dispatch policy (priority, sound, quiet hours)
- realtime: Bridge from real-time transport events into the store
- api_client: HTTP client for the notification endpoints
"""

import os
import re
import subprocess
from importlib import metadata
from typing import Optional


def _run_git_command(args: list[str]) -> Optional[str]:
    """Run a Git command and return its output."""
    try:
        result = subprocess.run(
            ['git'] + args,
            capture_output=True,
            text=True,
            check=True,
            timeout=5
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        return None


def _get_version_from_git() -> Optional[str]:
    """Get a development version ("v1.2.3-dev.5+a1b2c3d") from Git tags."""
    describe = _run_git_command(['describe', '--tags', '--long', '--always'])
    if not describe:
        return None

    match = re.match(r'^(.+?)-(\d+)-g([a-f0-9]+)$', describe)
    if match:
        tag, commits_since, commit_hash = match.groups()
        if int(commits_since) == 0:
            return tag
        return f"{tag}-dev.{commits_since}+{commit_hash}"

    return f"v0.0.0-dev+{describe}"


def _get_version() -> str:
    """
    Get version with priority: NOTIFYRELAY_VERSION env var > installed
    distribution metadata > Git tags > fallback.
    """
    env_version = os.environ.get('NOTIFYRELAY_VERSION')
    if env_version:
        return env_version

    try:
        return metadata.version('notifyrelay')
    except metadata.PackageNotFoundError:
        pass

    git_version = _get_version_from_git()
    if git_version:
        return git_version

    return 'v0.0.0-dev+unknown'


__version__ = _get_version()
