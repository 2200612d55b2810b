"""
Unit tests for ChannelHealthMonitor.
"""

import itertools

import pytest

from notifyrelay.channel_health import ChannelHealthMonitor
from notifyrelay.models import PermissionStatus, PushStatus, RealtimeStatus


class TestFallbackDecision:
    """Tests for the fallback activation law."""

    @pytest.mark.parametrize(
        "fallback_enabled,permission,push_enabled,realtime",
        list(
            itertools.product(
                [True, False],
                list(PermissionStatus),
                [True, False],
                list(RealtimeStatus),
            )
        ),
    )
    def test_activation_law(self, fallback_enabled, permission, push_enabled, realtime):
        monitor = ChannelHealthMonitor(
            fallback_enabled=fallback_enabled,
            push_permission=permission,
            push_enabled=push_enabled,
            realtime_status=realtime,
        )

        push_available = permission is PermissionStatus.GRANTED and push_enabled
        expected = fallback_enabled and (
            not push_available or realtime is not RealtimeStatus.CONNECTED
        )

        assert monitor.should_use_fallback() is expected
        assert monitor.state.fallback_active is expected

    def test_push_status_derivation(self):
        monitor = ChannelHealthMonitor()

        monitor.set_push_state(PermissionStatus.GRANTED, True)
        assert monitor.push_status is PushStatus.AVAILABLE

        monitor.set_push_state(PermissionStatus.GRANTED, False)
        assert monitor.push_status is PushStatus.UNAVAILABLE

        monitor.set_push_state(PermissionStatus.DENIED, False)
        assert monitor.push_status is PushStatus.DENIED

    def test_fully_healthy_needs_no_fallback(self):
        monitor = ChannelHealthMonitor(
            push_permission=PermissionStatus.GRANTED,
            push_enabled=True,
            realtime_status=RealtimeStatus.CONNECTED,
        )

        assert monitor.should_use_fallback() is False


class TestPublishing:
    """Tests for subscriber notification."""

    def test_listener_called_on_every_change(self, monitor):
        states = []
        monitor.subscribe(states.append)

        monitor.set_realtime_status(RealtimeStatus.CONNECTED)
        monitor.set_push_state(PermissionStatus.GRANTED, True)
        monitor.set_fallback_enabled(False)

        assert len(states) == 3
        assert states[1].fallback_active is False
        assert states[-1] is monitor.state

    def test_unchanged_input_does_not_publish(self, monitor):
        states = []
        monitor.subscribe(states.append)

        monitor.set_realtime_status(RealtimeStatus.DISCONNECTED)
        monitor.set_fallback_enabled(True)

        assert states == []

    def test_state_replaced_not_mutated(self, monitor):
        before = monitor.state

        monitor.set_realtime_status(RealtimeStatus.CONNECTED)

        assert monitor.state is not before
        assert before.realtime_status is RealtimeStatus.DISCONNECTED

    def test_unsubscribe_idempotent(self, monitor):
        states = []
        unsubscribe = monitor.subscribe(states.append)

        unsubscribe()
        unsubscribe()
        monitor.set_realtime_status(RealtimeStatus.ERROR)

        assert states == []

    def test_failing_listener_does_not_block_others(self, monitor):
        states = []

        def broken(state):
            raise RuntimeError("listener bug")

        monitor.subscribe(broken)
        monitor.subscribe(states.append)

        monitor.set_realtime_status(RealtimeStatus.CONNECTED)

        assert len(states) == 1
