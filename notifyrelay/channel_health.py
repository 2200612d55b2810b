"""
Channel health monitor.

Derives ChannelState from push permission (fed by the SubscriptionManager),
real-time connection status (fed by the RealtimeBridge) and the fallback
enabled flag (fed by the polling engine's configuration), and publishes
every change to its subscribers.
"""

import logging
from typing import Callable, List

from notifyrelay.models import (
    ChannelState,
    PermissionStatus,
    PushStatus,
    RealtimeStatus,
)

logger = logging.getLogger("notifyrelay.channel_health")

ChannelListener = Callable[[ChannelState], None]


class ChannelHealthMonitor:
    """
    Single writer of ChannelState.

    Each input setter recomputes the whole state at once and, when an input
    actually changed, calls every subscriber with the new state.
    """

    def __init__(
        self,
        fallback_enabled: bool = True,
        push_permission: PermissionStatus = PermissionStatus.DEFAULT,
        push_enabled: bool = False,
        realtime_status: RealtimeStatus = RealtimeStatus.DISCONNECTED,
    ):
        self._fallback_enabled = fallback_enabled
        self._push_permission = push_permission
        self._push_enabled = push_enabled
        self._realtime_status = realtime_status
        self._listeners: List[ChannelListener] = []
        self._state = self._compute()

    # -------------------------------------------------------------------------
    # Derived State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        """Current channel state."""
        return self._state

    @property
    def push_status(self) -> PushStatus:
        return self._state.push_status

    @property
    def realtime_status(self) -> RealtimeStatus:
        return self._state.realtime_status

    @property
    def fallback_enabled(self) -> bool:
        return self._fallback_enabled

    def should_use_fallback(self) -> bool:
        """
        True iff fallback is enabled and either push is not available
        (granted and enabled) or the real-time channel is not connected.
        """
        return self._state.fallback_active

    def _derive_push_status(self) -> PushStatus:
        if self._push_permission is PermissionStatus.GRANTED and self._push_enabled:
            return PushStatus.AVAILABLE
        if self._push_permission is PermissionStatus.DENIED:
            return PushStatus.DENIED
        return PushStatus.UNAVAILABLE

    def _compute(self) -> ChannelState:
        push_status = self._derive_push_status()
        degraded = (
            push_status is not PushStatus.AVAILABLE
            or self._realtime_status is not RealtimeStatus.CONNECTED
        )
        return ChannelState(
            push_status=push_status,
            realtime_status=self._realtime_status,
            fallback_active=self._fallback_enabled and degraded,
        )

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    def set_push_state(self, permission: PermissionStatus, enabled: bool) -> None:
        """Update push permission and whether push alerts are enabled."""
        if permission == self._push_permission and enabled == self._push_enabled:
            return
        self._push_permission = permission
        self._push_enabled = enabled
        self._publish()

    def set_realtime_status(self, status: RealtimeStatus) -> None:
        """Update the real-time transport connection status."""
        if status == self._realtime_status:
            return
        self._realtime_status = status
        self._publish()

    def set_fallback_enabled(self, enabled: bool) -> None:
        """Update the configured fallback enabled flag."""
        if enabled == self._fallback_enabled:
            return
        self._fallback_enabled = enabled
        self._publish()

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def subscribe(self, listener: ChannelListener) -> Callable[[], None]:
        """
        Register a listener for state changes.

        Returns:
            Idempotent unsubscribe callable
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        self._state = self._compute()
        logger.debug(
            f"Channel state: push={self._state.push_status.value} "
            f"realtime={self._state.realtime_status.value} "
            f"fallback={self._state.fallback_active}"
        )
        state = self._state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Channel state listener failed: {e}", exc_info=True)
