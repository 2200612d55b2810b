"""
Data models for the notification relay.

Pydantic models for everything that crosses a boundary (server responses,
real-time events, locally persisted JSON) and small dataclasses for derived
runtime state:

- NotificationRecord: A single notification, with a tagged payload variant
- FallbackConfig: Fallback polling configuration (persisted locally)
- AlertPreferences / QuietHours: User alert preferences (server + local mirror)
- ChannelState: Derived push / real-time channel health
- ConnectionStats: Observational polling statistics
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger("notifyrelay.models")


# ============================================================================
# Constants
# ============================================================================

STORE_CAPACITY = 100
POLL_PAGE_SIZE = 50

DEFAULT_POLL_INTERVAL_MS = 30000
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_MULTIPLIER = 2.0

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ============================================================================
# Enums
# ============================================================================


class Priority(str, Enum):
    """Notification priority, highest first."""

    EMERGENCY = "emergency"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank (0 = most urgent)."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.EMERGENCY: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class NotificationCategory(str, Enum):
    """Inbound notification categories."""

    JOB_REQUEST = "job_request"
    ORDER_UPDATE = "order_update"
    MESSAGE = "message"
    PAYMENT = "payment"
    EMERGENCY = "emergency"
    SYSTEM = "system"


class PermissionStatus(str, Enum):
    """Push permission as reported by the platform."""

    UNSUPPORTED = "unsupported"
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class PushStatus(str, Enum):
    """Push channel availability."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    DENIED = "denied"


class RealtimeStatus(str, Enum):
    """Real-time transport connection status."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


# Server "type" strings mapped to categories. Unknown types are SYSTEM.
CATEGORY_BY_TYPE: Dict[str, NotificationCategory] = {
    "new_job_request": NotificationCategory.JOB_REQUEST,
    "job_request": NotificationCategory.JOB_REQUEST,
    "job_offer": NotificationCategory.JOB_REQUEST,
    "provider.job_offer": NotificationCategory.JOB_REQUEST,
    "job.new_offer": NotificationCategory.JOB_REQUEST,
    "job.expired": NotificationCategory.JOB_REQUEST,
    "new_order": NotificationCategory.ORDER_UPDATE,
    "order_update": NotificationCategory.ORDER_UPDATE,
    "order_status": NotificationCategory.ORDER_UPDATE,
    "order_status_updated": NotificationCategory.ORDER_UPDATE,
    "order.assignment_started": NotificationCategory.ORDER_UPDATE,
    "order.provider_assigned": NotificationCategory.ORDER_UPDATE,
    "order.provider_accepted": NotificationCategory.ORDER_UPDATE,
    "order.searching_providers": NotificationCategory.ORDER_UPDATE,
    "provider_assigned": NotificationCategory.ORDER_UPDATE,
    "message": NotificationCategory.MESSAGE,
    "new_message": NotificationCategory.MESSAGE,
    "customer_message": NotificationCategory.MESSAGE,
    "chat_message": NotificationCategory.MESSAGE,
    "payment": NotificationCategory.PAYMENT,
    "payment_update": NotificationCategory.PAYMENT,
    "payment_received": NotificationCategory.PAYMENT,
    "payout": NotificationCategory.PAYMENT,
    "emergency": NotificationCategory.EMERGENCY,
    "emergency_request": NotificationCategory.EMERGENCY,
    "emergency_alert": NotificationCategory.EMERGENCY,
}


def category_for_type(raw_type: Optional[str]) -> NotificationCategory:
    """Map a server or event type string to a notification category."""
    if not raw_type:
        return NotificationCategory.SYSTEM
    return CATEGORY_BY_TYPE.get(raw_type, NotificationCategory.SYSTEM)


# ============================================================================
# Tagged Payload Variants
# ============================================================================


class _Payload(BaseModel):
    """
    Common configuration for payload variants.

    Wire keys are camelCase; unrecognised keys are kept (``model_extra``).
    """

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class JobRequestPayload(_Payload):
    """A new job request or job offer for a provider."""

    category: Literal[NotificationCategory.JOB_REQUEST] = NotificationCategory.JOB_REQUEST
    booking_id: Optional[str] = None
    service_type: Optional[str] = None
    urgency: Optional[str] = None


class OrderUpdatePayload(_Payload):
    """An order status / assignment change."""

    category: Literal[NotificationCategory.ORDER_UPDATE] = NotificationCategory.ORDER_UPDATE
    order_id: Optional[str] = None
    status: Optional[str] = None
    pending_offers: Optional[int] = Field(None, ge=0)
    provider_id: Optional[str] = None
    provider: Optional[Dict[str, Any]] = None


class MessagePayload(_Payload):
    """A chat message from a customer or provider."""

    category: Literal[NotificationCategory.MESSAGE] = NotificationCategory.MESSAGE
    conversation_id: Optional[str] = None
    sender_name: Optional[str] = None


class PaymentPayload(_Payload):
    """A payment or payout update."""

    category: Literal[NotificationCategory.PAYMENT] = NotificationCategory.PAYMENT
    order_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None


class EmergencyPayload(_Payload):
    """An emergency service request."""

    category: Literal[NotificationCategory.EMERGENCY] = NotificationCategory.EMERGENCY
    order_id: Optional[str] = None
    urgency: Optional[str] = None


class SystemPayload(_Payload):
    """Anything that does not belong to a known category."""

    category: Literal[NotificationCategory.SYSTEM] = NotificationCategory.SYSTEM


NotificationPayload = Annotated[
    Union[
        JobRequestPayload,
        OrderUpdatePayload,
        MessagePayload,
        PaymentPayload,
        EmergencyPayload,
        SystemPayload,
    ],
    Field(discriminator="category"),
]

_payload_adapter: TypeAdapter = TypeAdapter(NotificationPayload)


def build_payload(category: NotificationCategory, data: Optional[Dict[str, Any]]):
    """
    Validate a raw data map into the payload variant for ``category``.

    Raises:
        ValueError: If ``data`` is not an object
        pydantic.ValidationError: If known fields have invalid values
    """
    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Notification data must be an object, got {type(data).__name__}")
    fields = dict(data or {})
    fields["category"] = category
    return _payload_adapter.validate_python(fields)


# ============================================================================
# NotificationRecord
# ============================================================================


class NotificationRecord(BaseModel):
    """
    A single notification as held by the NotificationStore.

    Immutable; the store replaces a record with a copy when its read flag
    changes.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique notification id")
    title: str = Field(..., description="Short title")
    body: str = Field("", description="Notification text")
    priority: Priority = Field(Priority.MEDIUM, description="Alert priority")
    payload: NotificationPayload = Field(
        default_factory=SystemPayload, description="Category-tagged payload"
    )
    timestamp: int = Field(..., ge=0, description="Arrival time (epoch ms)")
    read: bool = Field(False, description="Whether the user has read it")
    raw_type: str = Field("", description="Original server/event type string")
    provider_type: str = Field("", description="Audience (service_provider, ...)")

    @property
    def category(self) -> NotificationCategory:
        """Category derived from the payload variant."""
        return self.payload.category


def to_epoch_ms(value: Any) -> int:
    """Convert an ISO-8601 string or epoch number to epoch milliseconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    raise ValueError(f"Invalid timestamp: {value!r}")


def parse_server_notification(
    raw: Dict[str, Any],
    default_provider_type: str = "",
) -> NotificationRecord:
    """
    Validate a notification object from the poll endpoint.

    Expected shape: ``{id, title, body|message, type, providerType, data,
    createdAt, read, priority}``.

    Args:
        raw: Notification object as returned by the server
        default_provider_type: Used when the object has no providerType

    Returns:
        Validated NotificationRecord

    Raises:
        ValueError: If the object is not a mapping or a field is invalid
            (pydantic.ValidationError is a ValueError)
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Notification must be an object, got {type(raw).__name__}")

    raw_type = raw.get("type") or ""
    category = category_for_type(raw_type)

    return NotificationRecord(
        id=str(raw.get("id") or ""),
        title=raw.get("title") or "",
        body=raw.get("body") or raw.get("message") or "",
        priority=raw.get("priority") or Priority.MEDIUM,
        payload=build_payload(category, raw.get("data")),
        timestamp=to_epoch_ms(raw.get("createdAt")),
        read=raw.get("read") is True,
        raw_type=raw_type,
        provider_type=raw.get("providerType") or default_provider_type,
    )


# ============================================================================
# FallbackConfig
# ============================================================================


class FallbackConfig(BaseModel):
    """
    Fallback polling configuration.

    Persisted under the ``notification_fallback_config`` key.
    """

    enabled: bool = Field(True, description="Whether fallback polling may run")
    poll_interval_ms: int = Field(
        DEFAULT_POLL_INTERVAL_MS, gt=0, description="Delay between polls"
    )
    max_retries: int = Field(
        DEFAULT_MAX_RETRIES, ge=0, description="Retries before surfacing an error"
    )
    backoff_multiplier: float = Field(
        DEFAULT_BACKOFF_MULTIPLIER, ge=1.0, description="Exponential backoff base"
    )
    show_fallback_indicator: bool = Field(
        True, description="Show the reconnecting indicator while polling"
    )

    def backoff_delay_ms(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count`` (1-based)."""
        return self.poll_interval_ms * self.backoff_multiplier ** (retry_count - 1)


# ============================================================================
# Alert Preferences
# ============================================================================


class QuietHours(BaseModel):
    """Local-time window during which sound and vibration are suppressed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False
    start_time: str = Field("22:00", pattern=HHMM_PATTERN)
    end_time: str = Field("08:00", pattern=HHMM_PATTERN)
    allow_emergency_sound: bool = False

    def contains(self, moment: time) -> bool:
        """
        Check whether a local time of day falls inside the window.

        The window may cross midnight (22:00 - 08:00). The start is
        inclusive, the end exclusive.
        """
        if not self.enabled:
            return False

        start = time.fromisoformat(self.start_time)
        end = time.fromisoformat(self.end_time)
        current = moment.replace(second=0, microsecond=0, tzinfo=None)

        if start == end:
            return False
        if start < end:
            return start <= current < end
        return current >= start or current < end


class AlertPreferences(BaseModel):
    """
    Per-user alert preferences.

    Serialized camelCase (``by_alias=True``) for the server and the local
    mirror under ``pwa_notification_preferences``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False
    provider_type: str = "service_provider"
    job_requests: bool = True
    customer_messages: bool = True
    payment_updates: bool = True
    emergency_alerts: bool = True
    sound_enabled: bool = True
    vibration_enabled: bool = True
    quiet_hours: QuietHours = Field(default_factory=QuietHours)

    @field_validator("provider_type")
    @classmethod
    def provider_type_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("provider_type must not be empty")
        return v

    def category_enabled(self, category: NotificationCategory) -> bool:
        """Whether the user wants alerts for ``category``."""
        if category is NotificationCategory.JOB_REQUEST:
            return self.job_requests
        if category is NotificationCategory.MESSAGE:
            return self.customer_messages
        if category is NotificationCategory.PAYMENT:
            return self.payment_updates
        if category is NotificationCategory.EMERGENCY:
            return self.emergency_alerts
        return True

    def merged(self, changes: Dict[str, Any]) -> "AlertPreferences":
        """
        Return a validated copy with ``changes`` applied.

        ``quiet_hours`` changes are merged key-wise into the current window.
        Keys may be snake_case or camelCase.
        """
        current = self.model_dump()
        for key, value in changes.items():
            name = _field_name(type(self), key)
            if name == "quiet_hours" and isinstance(value, dict):
                hours = dict(current["quiet_hours"])
                for sub_key, sub_value in value.items():
                    hours[_field_name(QuietHours, sub_key)] = sub_value
                current["quiet_hours"] = hours
            else:
                current[name] = value
        return type(self).model_validate(current)


def _field_name(model: type, key: str) -> str:
    """Resolve a snake_case or camelCase key to the model field name."""
    if key in model.model_fields:
        return key
    for name, info in model.model_fields.items():
        if info.alias == key:
            return name
    raise ValueError(f"Unknown preference: {key}")


# ============================================================================
# Derived Runtime State
# ============================================================================


@dataclass(frozen=True)
class ChannelState:
    """
    Snapshot of channel health.

    Always derived from the monitor inputs and replaced as a whole.
    """

    push_status: PushStatus = PushStatus.UNAVAILABLE
    realtime_status: RealtimeStatus = RealtimeStatus.DISCONNECTED
    fallback_active: bool = False


@dataclass
class ConnectionStats:
    """
    Observational polling statistics.

    Attributes:
        last_poll: When the last successful poll completed
        missed_notifications: Records delivered by the fallback poller
        fallback_active: Mirror of the monitor's fallback decision
    """

    last_poll: Optional[datetime] = None
    missed_notifications: int = 0
    fallback_active: bool = False

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "last_poll": self.last_poll.isoformat() if self.last_poll else None,
            "missed_notifications": self.missed_notifications,
            "fallback_active": self.fallback_active,
        }
