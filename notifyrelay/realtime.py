"""
Real-time channel bridge.

Maps live transport events into the NotificationStore and the transport's
connection status into the ChannelHealthMonitor. The transport itself is a
protocol; LocalEventBus is the in-process implementation used for wiring
and tests.
"""

import logging
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from notifyrelay.channel_health import ChannelHealthMonitor
from notifyrelay.models import (
    NotificationRecord,
    Priority,
    RealtimeStatus,
    build_payload,
    category_for_type,
    to_epoch_ms,
)
from notifyrelay.notification_store import NotificationStore

logger = logging.getLogger("notifyrelay.realtime")

CONNECTION_EVENT = "connection.changed"

EventHandler = Callable[[Any], None]


@dataclass(frozen=True)
class ConnectionChanged:
    """Connection status change published by a transport."""

    status: RealtimeStatus
    reason: Optional[str] = None


class RealtimeTransport(Protocol):
    """Event transport. ``subscribe`` returns an unsubscribe callable."""

    def subscribe(self, event: str, handler: EventHandler) -> Callable[[], None]:
        ...


class LocalEventBus:
    """In-process RealtimeTransport."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event: str, handler: EventHandler) -> Callable[[], None]:
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> int:
        """
        Deliver an event to its handlers.

        Returns:
            Number of handlers called
        """
        handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Handler for {event} failed: {e}", exc_info=True)
        return len(handlers)

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))


# ============================================================================
# Event Mapping
# ============================================================================


@dataclass(frozen=True)
class EventSpec:
    """How a live event becomes a notification."""

    title: str
    describe: Callable[[Dict[str, Any]], str]
    priority: Priority = Priority.MEDIUM
    status: Optional[str] = None


def _job_offer_body(data: Dict[str, Any]) -> str:
    booking = data.get("booking") or {}
    service = booking.get("serviceType") or data.get("serviceType") or "a service"
    return f"You have a new job offer for {service}"


def _provider_assigned_body(data: Dict[str, Any]) -> str:
    provider = data.get("provider") or {}
    name = provider.get("name") or provider.get("firstName")
    if name:
        return f"{name} has been assigned to your order"
    return "A provider has been assigned to your order"


def _searching_body(data: Dict[str, Any]) -> str:
    pending = data.get("pendingOffers") or 0
    return f"Searching for providers ({pending} offers pending)"


EVENT_SPECS: Dict[str, EventSpec] = {
    "order.assignment_started": EventSpec(
        title="Finding a Provider",
        describe=lambda data: "We are assigning a provider to your order",
    ),
    "order.provider_assigned": EventSpec(
        title="Provider Assigned",
        describe=_provider_assigned_body,
        priority=Priority.HIGH,
        status="provider_assigned",
    ),
    "order.provider_accepted": EventSpec(
        title="Provider Accepted",
        describe=lambda data: "Your provider accepted the job and is on the way",
        priority=Priority.HIGH,
        status="provider_on_way",
    ),
    "order.searching_providers": EventSpec(
        title="Searching for Providers",
        describe=_searching_body,
        priority=Priority.LOW,
        status="provider_search",
    ),
    "order_status_updated": EventSpec(
        title="Order Updated",
        describe=lambda data: f"Your order status: {data.get('status')}",
    ),
    "provider.job_offer": EventSpec(
        title="New Job Offer!",
        describe=_job_offer_body,
        priority=Priority.HIGH,
    ),
    "job.expired": EventSpec(
        title="Job Offer Expired",
        describe=lambda data: "A job offer has expired and is no longer available.",
        priority=Priority.LOW,
    ),
}


def record_id_for_event(event: str, data: Dict[str, Any]) -> str:
    """
    Stable id for a live event.

    Uses the server notification id when the event carries one so that the
    same event polled later dedups against it.
    """
    for key in ("notificationId", "messageId"):
        if data.get(key):
            return str(data[key])
    return f"{event}:{data.get('orderId', '')}:{data.get('status', '')}"


def record_from_event(
    event: str,
    data: Dict[str, Any],
    provider_type: str = "",
    now_ms: Optional[int] = None,
) -> NotificationRecord:
    """
    Build a NotificationRecord from a live event payload.

    Raises:
        KeyError: If the event is not a notification event
        ValueError: If the payload has invalid values
    """
    spec = EVENT_SPECS[event]
    fields = dict(data)
    if spec.status and not fields.get("status"):
        fields["status"] = spec.status

    raw_timestamp = fields.get("timestamp") or fields.get("createdAt")
    if raw_timestamp is not None:
        timestamp = to_epoch_ms(raw_timestamp)
    else:
        timestamp = now_ms if now_ms is not None else int(time.time() * 1000)

    category = category_for_type(event)
    return NotificationRecord(
        id=record_id_for_event(event, fields),
        title=fields.get("title") or spec.title,
        body=fields.get("body") or fields.get("message") or spec.describe(fields),
        priority=fields.get("priority") or spec.priority,
        payload=build_payload(category, fields),
        timestamp=timestamp,
        raw_type=event,
        provider_type=fields.get("providerType") or provider_type,
    )


# ============================================================================
# RealtimeBridge Class
# ============================================================================


class RealtimeBridge:
    """
    Routes transport events into the store and the monitor.

    Use ``attach()`` as a context manager; every subscription it makes is
    released exactly once on exit.
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        monitor: ChannelHealthMonitor,
        store: NotificationStore,
        provider_type: str = "",
    ):
        self._transport = transport
        self._monitor = monitor
        self._store = store
        self._provider_type = provider_type
        self._attached = False

    @property
    def attached(self) -> bool:
        return self._attached

    @contextmanager
    def attach(self) -> Iterator["RealtimeBridge"]:
        if self._attached:
            raise RuntimeError("RealtimeBridge is already attached")

        with ExitStack() as stack:
            self._attached = True
            stack.callback(self._detached)
            stack.callback(
                self._transport.subscribe(CONNECTION_EVENT, self._on_connection)
            )
            for event in EVENT_SPECS:
                stack.callback(
                    self._transport.subscribe(event, partial(self._on_event, event))
                )
            logger.debug(f"Subscribed to {len(EVENT_SPECS)} real-time events")
            yield self

    def _detached(self) -> None:
        self._attached = False
        self._monitor.set_realtime_status(RealtimeStatus.DISCONNECTED)
        logger.debug("Detached from real-time transport")

    def _on_connection(self, change: Any) -> None:
        if not isinstance(change, ConnectionChanged):
            logger.warning(f"Ignoring malformed connection event: {change!r}")
            return
        if change.status is RealtimeStatus.CONNECTED:
            logger.info("Real-time channel connected")
        else:
            reason = f" ({change.reason})" if change.reason else ""
            logger.warning(f"Real-time channel {change.status.value}{reason}")
        self._monitor.set_realtime_status(change.status)

    def _on_event(self, event: str, data: Any) -> None:
        if not isinstance(data, dict):
            logger.warning(f"Dropping {event} event with non-object payload")
            return
        try:
            record = record_from_event(event, data, self._provider_type)
        except ValueError as e:
            logger.warning(f"Dropping invalid {event} event: {e}")
            return
        self._store.insert([record], advance_cursor=False)
