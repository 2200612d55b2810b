"""
Unit tests for the real-time bridge and event mapping.
"""

import pytest

from notifyrelay.models import (
    JobRequestPayload,
    NotificationCategory,
    OrderUpdatePayload,
    Priority,
    RealtimeStatus,
    parse_server_notification,
)
from notifyrelay.realtime import (
    CONNECTION_EVENT,
    EVENT_SPECS,
    ConnectionChanged,
    LocalEventBus,
    RealtimeBridge,
    record_from_event,
    record_id_for_event,
)


@pytest.fixture
def bus():
    return LocalEventBus()


@pytest.fixture
def bridge(bus, monitor, notification_store):
    return RealtimeBridge(bus, monitor, notification_store, provider_type="customer")


class TestLocalEventBus:
    """Tests for the in-process transport."""

    def test_emit_returns_handler_count(self, bus):
        received = []
        bus.subscribe("ping", received.append)

        assert bus.emit("ping", {"n": 1}) == 1
        assert bus.emit("other") == 0
        assert received == [{"n": 1}]

    def test_failing_handler_isolated(self, bus):
        received = []

        def broken(payload):
            raise RuntimeError("handler bug")

        bus.subscribe("ping", broken)
        bus.subscribe("ping", received.append)

        assert bus.emit("ping", 1) == 2
        assert received == [1]

    def test_unsubscribe_idempotent(self, bus):
        unsubscribe = bus.subscribe("ping", lambda payload: None)

        unsubscribe()
        unsubscribe()

        assert bus.handler_count("ping") == 0


class TestEventMapping:
    """Tests for turning live events into records."""

    def test_provider_assigned(self):
        record = record_from_event(
            "order.provider_assigned",
            {"orderId": "ord_1", "provider": {"name": "Sam"}},
            provider_type="customer",
            now_ms=5000,
        )

        assert record.id == "order.provider_assigned:ord_1:provider_assigned"
        assert record.title == "Provider Assigned"
        assert record.body == "Sam has been assigned to your order"
        assert record.priority is Priority.HIGH
        assert record.timestamp == 5000
        assert record.provider_type == "customer"
        assert isinstance(record.payload, OrderUpdatePayload)
        assert record.payload.status == "provider_assigned"

    def test_status_update_keeps_event_status(self):
        record = record_from_event(
            "order_status_updated", {"orderId": "ord_1", "status": "completed"}, now_ms=1
        )

        assert record.body == "Your order status: completed"
        assert record.payload.status == "completed"

    def test_job_offer(self):
        record = record_from_event(
            "provider.job_offer",
            {"bookingId": "bkg_1", "booking": {"serviceType": "plumbing"}},
            now_ms=1,
        )

        assert record.title == "New Job Offer!"
        assert record.body == "You have a new job offer for plumbing"
        assert record.category is NotificationCategory.JOB_REQUEST
        assert isinstance(record.payload, JobRequestPayload)

    def test_searching_is_low_priority(self):
        record = record_from_event(
            "order.searching_providers", {"orderId": "ord_1", "pendingOffers": 3}, now_ms=1
        )

        assert record.priority is Priority.LOW
        assert record.body == "Searching for providers (3 offers pending)"

    def test_event_timestamp_used(self):
        record = record_from_event("job.expired", {"timestamp": "2024-05-01T10:00:00Z"})

        assert record.timestamp == 1714557600000

    def test_notification_id_preferred(self):
        assert record_id_for_event("order_status_updated", {"notificationId": "ntf_9"}) == "ntf_9"
        assert record_id_for_event("order_status_updated", {"messageId": "msg_3"}) == "msg_3"

    def test_unknown_event(self):
        with pytest.raises(KeyError):
            record_from_event("user.typing", {})

    def test_every_event_has_title(self):
        for event, spec in EVENT_SPECS.items():
            record = record_from_event(event, {"orderId": "ord_1"}, now_ms=1)
            assert record.title == spec.title


class TestRealtimeBridge:
    """Tests for wiring the transport to the store and monitor."""

    def test_connection_events_drive_monitor(self, bus, bridge, monitor):
        with bridge.attach():
            bus.emit(CONNECTION_EVENT, ConnectionChanged(RealtimeStatus.CONNECTED))
            assert monitor.realtime_status is RealtimeStatus.CONNECTED

            bus.emit(CONNECTION_EVENT, ConnectionChanged(RealtimeStatus.ERROR, "handshake failed"))
            assert monitor.realtime_status is RealtimeStatus.ERROR

    def test_malformed_connection_event_ignored(self, bus, bridge, monitor):
        with bridge.attach():
            bus.emit(CONNECTION_EVENT, "connected")

        assert monitor.realtime_status is RealtimeStatus.DISCONNECTED

    def test_events_inserted(self, bus, bridge, notification_store):
        with bridge.attach():
            bus.emit("order.provider_accepted", {"orderId": "ord_1"})

        record = notification_store.records[0]
        assert record.title == "Provider Accepted"
        assert record.provider_type == "customer"

    def test_live_events_leave_cursor(self, bus, bridge, notification_store):
        with bridge.attach():
            bus.emit("order.provider_accepted", {"orderId": "ord_1", "timestamp": 9000})

        assert len(notification_store) == 1
        assert notification_store.cursor == 0

    def test_malformed_payloads_dropped(self, bus, bridge, notification_store):
        with bridge.attach():
            bus.emit("order.provider_accepted", None)
            bus.emit("order.searching_providers", {"orderId": "ord_1", "pendingOffers": -1})

        assert len(notification_store) == 0

    def test_detach_releases_every_subscription_once(self, bus, bridge, monitor):
        with bridge.attach():
            monitor.set_realtime_status(RealtimeStatus.CONNECTED)
            assert bus.handler_count(CONNECTION_EVENT) == 1
            assert all(bus.handler_count(event) == 1 for event in EVENT_SPECS)

        assert bus.handler_count(CONNECTION_EVENT) == 0
        assert all(bus.handler_count(event) == 0 for event in EVENT_SPECS)
        assert monitor.realtime_status is RealtimeStatus.DISCONNECTED
        assert bridge.attached is False

    def test_detach_on_error(self, bus, bridge):
        with pytest.raises(RuntimeError, match="boom"):
            with bridge.attach():
                raise RuntimeError("boom")

        assert bus.handler_count(CONNECTION_EVENT) == 0

    def test_attach_twice_rejected(self, bridge):
        with bridge.attach():
            with pytest.raises(RuntimeError):
                with bridge.attach():
                    pass

    def test_reattach_after_detach(self, bus, bridge):
        with bridge.attach():
            pass
        with bridge.attach():
            assert bus.handler_count(CONNECTION_EVENT) == 1

    def test_live_and_polled_copies_dedup(self, bus, bridge, notification_store):
        polled = parse_server_notification(
            {
                "id": "ntf_7",
                "title": "Order Updated",
                "type": "order_status_updated",
                "createdAt": 2000,
                "data": {"orderId": "ord_1", "status": "completed"},
            }
        )

        with bridge.attach():
            bus.emit(
                "order_status_updated",
                {"notificationId": "ntf_7", "orderId": "ord_1", "status": "completed", "timestamp": 2000},
            )
        notification_store.insert([polled])

        assert len(notification_store) == 1
        assert notification_store.cursor == 2000
