"""
Fallback notification polling loop.

Runs while the channel health monitor says the push / real-time channel is
degraded:
- Polls the server for notifications newer than the store's cursor
- Feeds validated records into the NotificationStore
- Retries transient failures with exponential backoff
- Halts on authentication failures until an explicit retry

Every poll runs inside a single schedule task. Cancelling that task is the
abort signal for the in-flight request, so a superseded or deactivated poll
never applies its result.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from notifyrelay.api_client import (
    ApiError,
    AuthExpiredError,
    ForbiddenError,
    MalformedResponseError,
    NotificationApiClient,
)
from notifyrelay.channel_health import ChannelHealthMonitor
from notifyrelay.local_store import (
    FALLBACK_CONFIG_KEY,
    KeyValueStore,
    load_model,
    save_model,
)
from notifyrelay.models import (
    POLL_PAGE_SIZE,
    ChannelState,
    FallbackConfig,
    NotificationRecord,
    parse_server_notification,
)
from notifyrelay.notification_store import NotificationStore


logger = logging.getLogger("notifyrelay.polling")

AUTH_EXPIRED_MESSAGE = (
    "Authentication expired. Please sign in again to continue receiving notifications."
)
FORBIDDEN_MESSAGE = "Insufficient permissions for notifications."


class EngineState(str, Enum):
    """Polling engine states."""

    IDLE = "idle"
    POLLING = "polling"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class PollOutcome(str, Enum):
    """Result of a single poll."""

    SUCCESS = "success"
    NOT_MODIFIED = "not_modified"
    RETRY = "retry"
    EXHAUSTED = "exhausted"
    HALTED = "halted"


class ErrorKind(str, Enum):
    """Kinds of errors surfaced to the user."""

    AUTH_EXPIRED = "auth_expired"
    FORBIDDEN = "forbidden"
    RETRIES_EXHAUSTED = "retries_exhausted"


class FallbackPollingEngine:
    """
    Cursor-based fallback poller.

    Subscribes to the ChannelHealthMonitor and (de)activates on every
    published state, so a real-time reconnection suspends polling at once.

    Attributes:
        config: Current FallbackConfig (persisted in the key-value store)
        state: Current EngineState
        error: Error message surfaced for the current cycle, if any
    """

    def __init__(
        self,
        api_client: NotificationApiClient,
        store: NotificationStore,
        monitor: ChannelHealthMonitor,
        kv_store: KeyValueStore,
        provider_type: str = "",
        page_size: int = POLL_PAGE_SIZE,
    ):
        """
        Initialize the polling engine.

        Args:
            api_client: API client for the poll endpoint
            store: Store receiving polled records
            monitor: Channel health monitor deciding when to poll
            kv_store: Durable storage for the fallback configuration
            provider_type: Default providerType for records that lack one
            page_size: Notifications requested per poll
        """
        self._api_client = api_client
        self._store = store
        self._monitor = monitor
        self._kv_store = kv_store
        self._provider_type = provider_type
        self._page_size = page_size

        self._config = FallbackConfig()
        self._state = EngineState.STOPPED
        self._task: Optional[asyncio.Task] = None
        self._retry_count = 0
        self._error: Optional[str] = None
        self._error_kind: Optional[ErrorKind] = None
        self._halted = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._error_listeners: List[Callable[[Optional[str]], None]] = []

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def load_config(self) -> FallbackConfig:
        """Load the persisted configuration, falling back to defaults."""
        self._config = (
            load_model(self._kv_store, FALLBACK_CONFIG_KEY, FallbackConfig)
            or FallbackConfig()
        )
        return self._config

    def start(self) -> None:
        """
        Load configuration and follow the monitor.

        Must be called from a running event loop.
        """
        self.load_config()
        if self._unsubscribe is None:
            self._unsubscribe = self._monitor.subscribe(self._on_channel_state)
        self._monitor.set_fallback_enabled(self._config.enabled)
        self._on_channel_state(self._monitor.state)

    async def stop(self) -> None:
        """Stop following the monitor and cancel any scheduled or in-flight poll."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        task = self._task
        self.deactivate()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _on_channel_state(self, state: ChannelState) -> None:
        self._store.set_fallback_active(state.fallback_active)
        if state.fallback_active and self._config.enabled and not self._halted:
            self._activate()
        else:
            self.deactivate()

    def _activate(self) -> None:
        if self.is_polling:
            return
        self._start_schedule()
        logger.info(
            f"Fallback notification polling started "
            f"(interval: {self._config.poll_interval_ms}ms)"
        )

    def _start_schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._state = EngineState.IDLE
        self._task = loop.create_task(self._run())

    def deactivate(self) -> None:
        """
        Cancel the schedule and any in-flight request.

        Safe to call repeatedly.
        """
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("Fallback notification polling stopped")
        self._state = EngineState.STOPPED

    def _restart_schedule(self) -> None:
        """Supersede any pending poll with an immediate new one."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._start_schedule()

    # -------------------------------------------------------------------------
    # Schedule
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        """Poll immediately, then at the configured interval or backoff delay."""
        delay_ms = 0.0
        while True:
            if delay_ms > 0:
                await self._wait_for_next_poll(delay_ms / 1000)

            outcome = await self.poll_once()
            if outcome is PollOutcome.HALTED:
                return

            delay_ms = self._next_delay_ms(outcome)
            self._state = (
                EngineState.BACKOFF if outcome is PollOutcome.RETRY else EngineState.IDLE
            )

    async def _wait_for_next_poll(self, seconds: float) -> None:
        """Wait before the next poll. Cancellation ends the schedule."""
        await asyncio.sleep(seconds)

    def _next_delay_ms(self, outcome: PollOutcome) -> float:
        if outcome is PollOutcome.RETRY:
            return self._config.backoff_delay_ms(self._retry_count)
        return float(self._config.poll_interval_ms)

    # -------------------------------------------------------------------------
    # Single Poll
    # -------------------------------------------------------------------------

    async def poll_once(self) -> PollOutcome:
        """
        Perform one poll and apply its result.

        asyncio.CancelledError propagates: a cancelled poll applies nothing.
        """
        self._state = EngineState.POLLING
        since = self._store.cursor

        try:
            items = await self._api_client.fetch_notifications(
                since=since, limit=self._page_size
            )
        except AuthExpiredError:
            logger.warning("Notification polling authentication failed")
            self._halt(AUTH_EXPIRED_MESSAGE, ErrorKind.AUTH_EXPIRED)
            return PollOutcome.HALTED
        except ForbiddenError:
            logger.warning("Notification polling forbidden")
            self._halt(FORBIDDEN_MESSAGE, ErrorKind.FORBIDDEN)
            return PollOutcome.HALTED
        except MalformedResponseError as e:
            logger.warning(f"Unexpected response format from notifications API: {e}")
            items = []
        except ApiError as e:
            return self._handle_failure(e)
        except Exception as e:
            logger.error(f"Unexpected error during fallback poll: {e}", exc_info=True)
            return self._handle_failure(e)

        if items is None:
            logger.debug("No new notifications (304 Not Modified)")
            self._store.record_poll(0)
            self._succeed()
            return PollOutcome.NOT_MODIFIED

        records = self._to_records(items)
        if records:
            self._store.insert(records)
            logger.info(f"Fallback polling: {len(records)} new notifications received")
        self._store.record_poll(len(records))
        self._succeed()
        return PollOutcome.SUCCESS

    def _to_records(self, items: List[Dict[str, Any]]) -> List[NotificationRecord]:
        records = []
        for raw in items:
            try:
                records.append(parse_server_notification(raw, self._provider_type))
            except (ValueError, TypeError) as e:
                logger.warning(f"Dropping malformed notification: {e}")
        return records

    def _succeed(self) -> None:
        self._retry_count = 0
        self._set_error(None, None)

    def _handle_failure(self, error: Exception) -> PollOutcome:
        self._retry_count += 1
        max_retries = self._config.max_retries

        if self._retry_count <= max_retries:
            delay = self._config.backoff_delay_ms(self._retry_count)
            logger.warning(
                f"Fallback poll failed: {error} "
                f"(retrying in {delay:.0f}ms, attempt {self._retry_count}/{max_retries})"
            )
            return PollOutcome.RETRY

        logger.error(f"Fallback poll failed after {max_retries} retries: {error}")
        self._set_error(
            f"Failed to fetch notifications after {max_retries} attempts",
            ErrorKind.RETRIES_EXHAUSTED,
        )
        self._retry_count = 0
        return PollOutcome.EXHAUSTED

    def _halt(self, message: str, kind: ErrorKind) -> None:
        self._halted = True
        self._retry_count = 0
        self._state = EngineState.STOPPED
        self._set_error(message, kind)

    def _set_error(self, message: Optional[str], kind: Optional[ErrorKind]) -> None:
        changed = message != self._error
        self._error = message
        self._error_kind = kind
        if changed:
            for listener in list(self._error_listeners):
                try:
                    listener(message)
                except Exception as e:
                    logger.error(f"Error listener failed: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Controls
    # -------------------------------------------------------------------------

    def poll_now(self) -> bool:
        """
        Supersede any pending poll with an immediate one.

        Returns:
            True if a poll was scheduled
        """
        if self._halted or not (self._config.enabled and self._monitor.should_use_fallback()):
            logger.debug("Immediate poll skipped: fallback not active")
            return False
        self._restart_schedule()
        return True

    def force_retry(self) -> None:
        """
        Clear the surfaced error and poll immediately if fallback is needed.

        Also lifts a halt caused by an authentication failure.
        """
        self._halted = False
        self._retry_count = 0
        self._set_error(None, None)
        if self._monitor.should_use_fallback() and self._config.enabled:
            self._restart_schedule()

    def update_config(self, **changes: Any) -> FallbackConfig:
        """
        Merge, validate and persist configuration changes, then re-apply them.

        Raises:
            pydantic.ValidationError: If a value is invalid
        """
        updated = FallbackConfig.model_validate({**self._config.model_dump(), **changes})
        interval_changed = updated.poll_interval_ms != self._config.poll_interval_ms

        self._config = updated
        save_model(self._kv_store, FALLBACK_CONFIG_KEY, updated)

        self._monitor.set_fallback_enabled(updated.enabled)
        if interval_changed and self.is_polling:
            self._restart_schedule()
        elif self._unsubscribe is not None:
            self._on_channel_state(self._monitor.state)
        return updated

    def start_polling(self) -> FallbackConfig:
        return self.update_config(enabled=True)

    def stop_polling(self) -> FallbackConfig:
        return self.update_config(enabled=False)

    def add_error_listener(self, listener: Callable[[Optional[str]], None]) -> Callable[[], None]:
        """
        Register a listener called when the surfaced error changes.

        Returns:
            Idempotent removal callable
        """
        self._error_listeners.append(listener)

        def remove() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return remove

    # -------------------------------------------------------------------------
    # Observables
    # -------------------------------------------------------------------------

    @property
    def config(self) -> FallbackConfig:
        return self._config

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self._error_kind

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def show_indicator(self) -> bool:
        """Whether to show the "reconnecting" indicator."""
        return (
            self._config.show_fallback_indicator
            and self._monitor.should_use_fallback()
            and self._error is None
        )

    @property
    def retry_available(self) -> bool:
        """Whether to offer an explicit retry affordance."""
        return self._error is not None
