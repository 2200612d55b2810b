"""
Notification store.

The single authoritative in-memory sequence of notifications. Both the
real-time bridge and the fallback poller insert here; records are
deduplicated by id so that an event delivered by both channels is only
alerted once.

All operations are synchronous. Under the single-threaded event loop each
call is atomic with respect to the other channel.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from notifyrelay.models import (
    STORE_CAPACITY,
    ConnectionStats,
    NotificationCategory,
    NotificationRecord,
    Priority,
)

logger = logging.getLogger("notifyrelay.store")

StoreListener = Callable[[List[NotificationRecord]], None]


class NotificationStore:
    """
    Deduplicated, capped, newest-first notification record.

    Also owns the poll cursor and the connection statistics so that
    ``clear()`` resets all three together.

    Attributes:
        capacity: Maximum number of records kept (oldest evicted first)
    """

    def __init__(self, capacity: int = STORE_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._records: List[NotificationRecord] = []
        self._cursor = 0
        self._stats = ConnectionStats()
        self._listeners: List[StoreListener] = []

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def insert(
        self,
        records: Iterable[NotificationRecord],
        advance_cursor: bool = True,
    ) -> List[NotificationRecord]:
        """
        Merge a batch of records.

        Existing ids are updated last-write-wins, except ``read`` which never
        reverts from True to False. The sequence is kept newest-first and
        truncated to capacity.

        Args:
            records: Records to merge
            advance_cursor: Move the cursor to the newest timestamp in this
                batch. Live events pass False.

        Returns:
            Records that were not present before and survived truncation,
            newest first. Listeners receive the same list.
        """
        records = list(records)
        by_id: Dict[str, int] = {r.id: i for i, r in enumerate(self._records)}
        merged = list(self._records)
        new_ids = []

        for record in records:
            index = by_id.get(record.id)
            if index is None:
                by_id[record.id] = len(merged)
                merged.append(record)
                new_ids.append(record.id)
                continue

            previous = merged[index]
            if previous.read and not record.read:
                record = record.model_copy(update={"read": True})
            merged[index] = record

        if advance_cursor and records:
            self._cursor = max(self._cursor, max(r.timestamp for r in records))

        if not merged:
            return []

        merged.sort(key=lambda r: r.timestamp, reverse=True)
        evicted = len(merged) - self.capacity
        if evicted > 0:
            logger.debug(f"Evicting {evicted} oldest notifications")
            merged = merged[: self.capacity]
        self._records = merged

        kept = {r.id for r in merged}
        fresh_ids = set(new_ids) & kept
        fresh = [r for r in merged if r.id in fresh_ids]

        if fresh:
            self._notify(fresh)
        return fresh

    def mark_read(self, notification_id: str) -> bool:
        """
        Set the read flag on a record without reordering.

        Returns:
            True if the record exists
        """
        for index, record in enumerate(self._records):
            if record.id == notification_id:
                if not record.read:
                    self._records[index] = record.model_copy(update={"read": True})
                return True
        return False

    def clear(self) -> None:
        """Empty the store and reset the cursor and statistics."""
        fallback_active = self._stats.fallback_active
        self._records = []
        self._cursor = 0
        self._stats = ConnectionStats(fallback_active=fallback_active)

    def record_poll(self, received: int) -> None:
        """Record a completed poll that delivered ``received`` records."""
        self._stats.last_poll = datetime.now(timezone.utc)
        self._stats.missed_notifications += received

    def set_fallback_active(self, active: bool) -> None:
        """Mirror the monitor's fallback decision into the statistics."""
        self._stats.fallback_active = active

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        """
        Register a listener called with newly inserted records.

        Returns:
            Idempotent removal callable
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, fresh: List[NotificationRecord]) -> None:
        for listener in list(self._listeners):
            try:
                listener(fresh)
            except Exception as e:
                logger.error(f"Store listener failed: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @property
    def records(self) -> List[NotificationRecord]:
        """Snapshot of all records, newest first."""
        return list(self._records)

    @property
    def cursor(self) -> int:
        """Timestamp watermark for the next poll."""
        return self._cursor

    @property
    def stats(self) -> ConnectionStats:
        """Copy of the connection statistics."""
        return ConnectionStats(
            last_poll=self._stats.last_poll,
            missed_notifications=self._stats.missed_notifications,
            fallback_active=self._stats.fallback_active,
        )

    @property
    def unread_count(self) -> int:
        return sum(1 for r in self._records if not r.read)

    @property
    def has_emergency_unread(self) -> bool:
        return any(
            r.priority is Priority.EMERGENCY and not r.read for r in self._records
        )

    def get(self, notification_id: str) -> Optional[NotificationRecord]:
        for record in self._records:
            if record.id == notification_id:
                return record
        return None

    def by_category(self, category: NotificationCategory) -> List[NotificationRecord]:
        return [r for r in self._records if r.category is category]

    def by_priority(self, priority: Priority) -> List[NotificationRecord]:
        return [r for r in self._records if r.priority is priority]

    def prioritized(self) -> List[NotificationRecord]:
        """Records ordered by priority, newest first within a priority."""
        return sorted(self._records, key=lambda r: (r.priority.rank, -r.timestamp))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, notification_id: object) -> bool:
        return any(r.id == notification_id for r in self._records)
