"""
Alert dispatcher.

Decides, for each newly inserted notification, whether and how the user is
alerted: a visible alert, a sound (repeated for emergencies) and a
vibration pattern. Honors priority, per-category preferences and quiet
hours. Presentation is delegated to an AlertSink; sink failures are logged
and never reach the caller.
"""

import asyncio
import logging
import time as time_module
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Set, Tuple

from notifyrelay.models import (
    AlertPreferences,
    NotificationRecord,
    Priority,
    SystemPayload,
)

logger = logging.getLogger("notifyrelay.alerts")

# Seconds after the first play at which an emergency sound is repeated
EMERGENCY_SOUND_OFFSETS: Tuple[float, ...] = (0.0, 0.5, 1.0)

# Display durations (milliseconds)
EMERGENCY_ALERT_DURATION_MS = 10000
HIGH_ALERT_DURATION_MS = 8000
DEFAULT_ALERT_DURATION_MS = 5000

VIBRATION_PATTERNS = {
    Priority.EMERGENCY: (300, 100, 300, 100, 300),
    Priority.HIGH: (200, 100, 200),
    Priority.MEDIUM: (100, 50, 100),
    Priority.LOW: (100, 50, 100),
}


@dataclass(frozen=True)
class Alert:
    """A visible alert to present to the user."""

    record_id: str
    title: str
    body: str
    priority: Priority
    variant: str = "default"
    duration_ms: int = DEFAULT_ALERT_DURATION_MS


@dataclass(frozen=True)
class AlertDecision:
    """
    Outcome of the alert policy for one record.

    Attributes:
        alert: Visible alert, or None when the record is only recorded
        sound_offsets: Seconds (from delivery) at which to play the sound
        vibration: Vibration pattern in ms, or None
    """

    alert: Optional[Alert] = None
    sound_offsets: Tuple[float, ...] = ()
    vibration: Optional[Tuple[int, ...]] = None

    @property
    def is_silent(self) -> bool:
        return self.alert is None and not self.sound_offsets and self.vibration is None


class AlertSink(Protocol):
    """Presentation primitives supplied by the embedding application."""

    async def show_alert(self, alert: Alert) -> None:
        ...

    async def play_sound(self, priority: Priority) -> None:
        ...

    async def vibrate(self, pattern: Tuple[int, ...]) -> None:
        ...


def _presentation(record: NotificationRecord) -> Alert:
    if record.priority is Priority.EMERGENCY:
        variant, duration = "destructive", EMERGENCY_ALERT_DURATION_MS
    elif record.priority is Priority.HIGH:
        variant, duration = "default", HIGH_ALERT_DURATION_MS
    else:
        variant, duration = "default", DEFAULT_ALERT_DURATION_MS
    return Alert(
        record_id=record.id,
        title=record.title,
        body=record.body,
        priority=record.priority,
        variant=variant,
        duration_ms=duration,
    )


class AlertDispatcher:
    """
    Applies the alert policy to newly inserted records.

    Register ``dispatch`` as a NotificationStore listener. Delivery runs as
    fire-and-forget tasks on the running event loop.
    """

    def __init__(
        self,
        sink: AlertSink,
        preferences: Callable[[], AlertPreferences],
        clock: Callable[[], datetime] = datetime.now,
        sound_offsets: Tuple[float, ...] = EMERGENCY_SOUND_OFFSETS,
    ):
        """
        Initialize the dispatcher.

        Args:
            sink: Presentation primitives
            preferences: Returns the current alert preferences
            clock: Returns the current local time (quiet hours)
            sound_offsets: Repeat schedule for emergency sounds
        """
        self._sink = sink
        self._preferences = preferences
        self._clock = clock
        self._sound_offsets = sound_offsets
        self._pending: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Policy
    # -------------------------------------------------------------------------

    def decide(self, record: NotificationRecord, now: Optional[datetime] = None) -> AlertDecision:
        """Evaluate the alert policy for a single record."""
        prefs = self._preferences()
        moment = now or self._clock()
        quiet = prefs.quiet_hours.contains(moment.time())

        urgent = record.priority in (Priority.EMERGENCY, Priority.HIGH)
        if not urgent and not (prefs.enabled and prefs.category_enabled(record.category)):
            return AlertDecision()

        sound_offsets: Tuple[float, ...] = ()
        if prefs.sound_enabled:
            if record.priority is Priority.EMERGENCY:
                if not quiet or prefs.quiet_hours.allow_emergency_sound:
                    sound_offsets = self._sound_offsets
            elif not quiet:
                sound_offsets = (0.0,)

        vibration = None
        if prefs.vibration_enabled:
            emergency_override = (
                record.priority is Priority.EMERGENCY
                and prefs.quiet_hours.allow_emergency_sound
            )
            if not quiet or emergency_override:
                vibration = VIBRATION_PATTERNS[record.priority]

        return AlertDecision(
            alert=_presentation(record),
            sound_offsets=sound_offsets,
            vibration=vibration,
        )

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def dispatch(self, records: List[NotificationRecord]) -> None:
        """Store listener: schedule delivery for each new record."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping {len(records)} alert(s)")
            return

        for record in records:
            decision = self.decide(record)
            if decision.is_silent:
                logger.debug(f"Notification {record.id} recorded without alert")
                continue
            task = loop.create_task(self._deliver(record, decision))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, record: NotificationRecord, decision: AlertDecision) -> None:
        if decision.alert is not None:
            try:
                await self._sink.show_alert(decision.alert)
            except Exception as e:
                logger.warning(f"Failed to show alert for {record.id}: {e}")

        if decision.vibration is not None:
            try:
                await self._sink.vibrate(decision.vibration)
            except Exception as e:
                logger.debug(f"Vibration failed for {record.id}: {e}")

        elapsed = 0.0
        for offset in decision.sound_offsets:
            if offset > elapsed:
                await asyncio.sleep(offset - elapsed)
                elapsed = offset
            try:
                await self._sink.play_sound(record.priority)
            except Exception as e:
                logger.debug(f"Could not play notification sound for {record.id}: {e}")

    async def send_test_alert(self) -> NotificationRecord:
        """
        Present a synthetic notification through the sink.

        Shown regardless of preferences; sound follows ``sound_enabled``.
        """
        now_ms = int(time_module.time() * 1000)
        record = NotificationRecord(
            id=f"test_{now_ms}",
            title="Test Notification",
            body="This is a test notification from notifyrelay.",
            priority=Priority.MEDIUM,
            payload=SystemPayload(),
            timestamp=now_ms,
            raw_type="system_alert",
        )
        prefs = self._preferences()
        decision = AlertDecision(
            alert=_presentation(record),
            sound_offsets=(0.0,) if prefs.sound_enabled else (),
        )
        await self._deliver(record, decision)
        return record

    async def drain(self) -> None:
        """Wait for all scheduled deliveries to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding deliveries."""
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*list(self._pending), return_exceptions=True)
        self._pending.clear()

    @property
    def pending_count(self) -> int:
        return len(self._pending)
