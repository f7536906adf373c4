# =============================================================================
# fleetsync -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .constants import (
    ALERT_DURATION,
    RECONNECT_DELAY,
    RECONNECT_MAX_ATTEMPTS,
    STABLE_CONNECTION_AFTER,
)


class ConnectionState(str, Enum):
    """Push connection lifecycle state.

    Typical flow: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.
    ERROR is transient: it is reported when the receive loop faults and is
    followed by the bounded retry path.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class Severity(str, Enum):
    """Notification and alarm severity, lowest to highest."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value: Any, default: Severity | None = None) -> Severity:
        """Lenient conversion for wire values; unknown -> *default* (WARNING)."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return default or cls.WARNING


class AlarmStatus(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"
    RESOLVED = "resolved"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TrafficChannel(str, Enum):
    SMS = "sms"
    USSD = "ussd"
    MMS = "mms"
    RCS = "rcs"


class NotificationCategory(str, Enum):
    DEVICE_STATUS = "device_status"
    ALARM = "alarm"
    ALARM_RESOLVED = "alarm_resolved"
    SMS = "sms"
    USSD = "ussd"
    COMMAND = "command"
    ERROR = "error"
    INFO = "info"


class StoreChangeKind(str, Enum):
    DEVICE = "device"
    ALARM_LOG = "alarm_log"
    TRAFFIC_LOG = "traffic_log"
    SETTINGS = "settings"


@dataclass(frozen=True, slots=True)
class Frame:
    """A decoded inbound frame.

    Attributes:
        type: Frame type string, e.g. ``"heartbeat"``, ``"alarm"``.
        data: Frame payload as a dict.
        timestamp: Sender timestamp in epoch milliseconds, when present.
    """

    type: str
    data: dict[str, Any]
    timestamp: float | None = None


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    """Observable snapshot of the connection manager.

    Attributes:
        state: Current lifecycle state.
        retry_count: Reconnect attempts made since the last stable connection.
        last_error: Human-readable description of the last failure.
        retry_pending: A backoff timer is armed and will attempt to reconnect.
    """

    state: ConnectionState
    retry_count: int = 0
    last_error: str | None = None
    retry_pending: bool = False

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED


@dataclass
class ReconnectConfig:
    """Fixed-delay, bounded reconnection.

    Attributes:
        delay: Seconds to wait before each reconnect attempt.
        max_attempts: Consecutive attempts before giving up.
        stable_after: Seconds a connection must stay up before the attempt
            counter resets.
    """

    delay: float = RECONNECT_DELAY
    max_attempts: int = RECONNECT_MAX_ATTEMPTS
    stable_after: float = STABLE_CONNECTION_AFTER


@dataclass
class Notification:
    """A user-facing notification kept in the bounded feed."""

    id: str
    category: NotificationCategory
    severity: Severity
    title: str
    message: str
    timestamp: float
    read: bool = False
    device_id: str | None = None
    device_group: str | None = None
    sitename: str | None = None


@dataclass(frozen=True, slots=True)
class Alert:
    """Ephemeral user-facing alert handed to the host's alert sink.

    ``duration`` is ``None`` when the alert must stay until dismissed.
    """

    title: str
    message: str
    severity: Severity
    duration: float | None = ALERT_DURATION


@dataclass(frozen=True, slots=True)
class StoreChange:
    """Emitted by the entity store after each mutation."""

    kind: StoreChangeKind
    key: str | None = None


@dataclass
class StatsCounter:
    """Router counters."""

    frames_received: int = 0
    frames_dropped: int = 0
    unknown_types: int = 0
    subscriber_errors: int = 0
    handler_errors: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
