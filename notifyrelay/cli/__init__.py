"""
notifyrelay CLI - Command-line interface for the notification relay.

Commands:
- start: Run the relay (real-time bridge, fallback poller, alerts)
- poll: Run a single fallback poll and print what arrived
- config: Manage server connection settings
- fallback: Inspect and change fallback polling configuration
- preferences: Inspect and change alert preferences
- notifications: Mark notifications read, send a test alert
"""
