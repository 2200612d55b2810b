"""
Relay main loop.

Wires the reconciliation engine together and runs it until shutdown:
channel health monitor, fallback poller, push subscription, real-time
bridge, notification store and alert dispatcher.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from notifyrelay import __version__
from notifyrelay.alerts import AlertDispatcher, AlertSink
from notifyrelay.api_client import NotificationApiClient
from notifyrelay.channel_health import ChannelHealthMonitor
from notifyrelay.config import RelayConfig
from notifyrelay.local_store import JsonFileStore, KeyValueStore
from notifyrelay.notification_store import NotificationStore
from notifyrelay.polling_loop import ErrorKind, FallbackPollingEngine
from notifyrelay.realtime import LocalEventBus, RealtimeBridge, RealtimeTransport
from notifyrelay.subscription import NullPushPlatform, PushPlatform, SubscriptionManager
from notifyrelay.token_store import TokenStore


# Exit codes
EXIT_OK = 0
EXIT_NOT_CONFIGURED = 1
EXIT_AUTH_EXPIRED = 3


# ============================================================================
# Logging Setup
# ============================================================================


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Setup logging for the relay.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("notifyrelay")


# ============================================================================
# Relay Runner
# ============================================================================


class RelayRunner:
    """
    Main relay runner.

    Builds every component from the configuration and runs until
    SIGINT/SIGTERM or until the session expires.

    Attributes:
        config: Relay configuration
        store: Notification store shared by both channels
        monitor: Channel health monitor
        engine: Fallback polling engine (after ``build()``)
        subscription: Push subscription manager (after ``build()``)
    """

    def __init__(
        self,
        config: RelayConfig,
        sink: AlertSink,
        platform: Optional[PushPlatform] = None,
        transport: Optional[RealtimeTransport] = None,
        kv_store: Optional[KeyValueStore] = None,
        token_store: Optional[TokenStore] = None,
        api_client: Optional[NotificationApiClient] = None,
    ):
        self.config = config
        self.logger = setup_logging(config.log_level)
        self._sink = sink
        self._platform = platform or NullPushPlatform()
        self._transport = transport or LocalEventBus()
        self._kv_store = kv_store
        self._token_store = token_store
        self._api_client = api_client
        self._shutdown_event = asyncio.Event()
        self._exit_code = EXIT_OK

        self.store = NotificationStore()
        self.monitor = ChannelHealthMonitor()
        self.engine: Optional[FallbackPollingEngine] = None
        self.subscription: Optional[SubscriptionManager] = None
        self.dispatcher: Optional[AlertDispatcher] = None
        self.bridge: Optional[RealtimeBridge] = None

    def build(self) -> None:
        """Create the API client and every component."""
        if self._api_client is None:
            self._api_client = NotificationApiClient(
                server_url=self.config.server_url,
                access_token=self.config.access_token,
                timeout=self.config.request_timeout,
            )
        kv_store = self._kv_store or JsonFileStore()
        token_store = self._token_store or TokenStore()
        provider_type = self.config.provider_type

        self.subscription = SubscriptionManager(
            api_client=self._api_client,
            platform=self._platform,
            monitor=self.monitor,
            kv_store=kv_store,
            token_store=token_store,
            device_id=self.config.device_id,
            provider_type=provider_type,
            user_agent=f"notifyrelay/{__version__}",
        )
        self.engine = FallbackPollingEngine(
            api_client=self._api_client,
            store=self.store,
            monitor=self.monitor,
            kv_store=kv_store,
            provider_type=provider_type,
        )
        self.dispatcher = AlertDispatcher(
            sink=self._sink,
            preferences=lambda: self.subscription.preferences,
        )
        self.bridge = RealtimeBridge(
            transport=self._transport,
            monitor=self.monitor,
            store=self.store,
            provider_type=provider_type,
        )
        self.store.add_listener(self.dispatcher.dispatch)
        self.engine.add_error_listener(self._on_engine_error)

    async def run(self) -> int:
        """
        Run the relay.

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        if not self.config.is_configured:
            self.logger.error(
                "Relay is not configured. Run 'notifyrelay config set' "
                "with a server URL and access token first."
            )
            return EXIT_NOT_CONFIGURED

        try:
            self.config.ensure_device_id()
        except OSError as e:
            self.logger.warning(f"Could not persist device id: {e}")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

        self.logger.info(f"Starting notifyrelay v{__version__}")
        self.logger.info(f"Server: {self.config.server_url}")
        self.logger.info(f"Device: {self.config.device_id} ({self.config.provider_type})")

        self.build()
        try:
            with self.bridge.attach():
                await self.subscription.initialize()
                self.engine.start()
                await self._shutdown_event.wait()
        except asyncio.CancelledError:
            self.logger.info("Relay shutdown requested")
        finally:
            await self.engine.stop()
            await self.dispatcher.close()
            await self._api_client.close()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

        self.logger.info("Relay stopped")
        return self._exit_code

    def _on_engine_error(self, message: Optional[str]) -> None:
        if message is None:
            return
        self.logger.error(message)
        if self.engine.error_kind is ErrorKind.AUTH_EXPIRED:
            self._exit_code = EXIT_AUTH_EXPIRED
            self.request_shutdown()

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the relay."""
        self._shutdown_event.set()


# ============================================================================
# Main Entry Point
# ============================================================================


def run_relay(sink: AlertSink) -> int:
    """
    Run the relay with the default configuration.

    Returns:
        Exit code
    """
    config = RelayConfig()
    runner = RelayRunner(config, sink)
    return asyncio.run(runner.run())


if __name__ == "__main__":
    from notifyrelay.cli.start import ConsoleAlertSink

    sys.exit(run_relay(ConsoleAlertSink()))
