"""fleetsync: real-time fleet synchronization for gateway operator consoles.

Usage::

    from fleetsync import FleetSyncClient, JwtAuthProvider, SyncConfig

    config = SyncConfig.from_env()
    auth = JwtAuthProvider(token="your-jwt")

    async with FleetSyncClient(config, auth) as client:
        client.store.changed.connect(lambda change: print(change))
        await client.find_device("860000000000001")

Reconciling with REST snapshots::

    from fleetsync import reconcile_devices

    rows = reconcile_devices(snapshot_rows, client.store)
"""

from ._version import __version__
from .auth import AuthProvider, JwtAuthProvider
from .client import FleetSyncClient
from .config import SyncConfig
from .connection import ConnectionManager, open_websocket
from .errors import AuthFailure, CommandFailure, DecodeError, FleetSyncError, TransportError
from .events import Signal, Subscription
from .handlers import DomainEventHandlers
from .notifications import NotificationCenter
from .protocol import FrameCodec
from .reconcile import (
    LogKey,
    alarm_log_key,
    merge_devices,
    merge_logs,
    reconcile_alarm_logs,
    reconcile_devices,
    reconcile_traffic_logs,
    traffic_log_key,
)
from .records import (
    AlarmLogEntry,
    DevicePatch,
    DeviceRecord,
    GeoLocation,
    SimSlotSummary,
    TrafficLogEntry,
)
from .router import MessageRouter
from .store import EntityStore
from .types import (
    Alert,
    AlarmStatus,
    ConnectionState,
    ConnectionStatus,
    Direction,
    Frame,
    Notification,
    NotificationCategory,
    PresenceStatus,
    ReconnectConfig,
    Severity,
    StoreChange,
    StoreChangeKind,
    TrafficChannel,
)

__all__ = [
    "__version__",
    "FleetSyncClient",
    "SyncConfig",
    "AuthProvider",
    "JwtAuthProvider",
    "ConnectionManager",
    "open_websocket",
    "MessageRouter",
    "DomainEventHandlers",
    "EntityStore",
    "NotificationCenter",
    "FrameCodec",
    "Signal",
    "Subscription",
    "merge_devices",
    "merge_logs",
    "LogKey",
    "alarm_log_key",
    "traffic_log_key",
    "reconcile_devices",
    "reconcile_alarm_logs",
    "reconcile_traffic_logs",
    "DeviceRecord",
    "DevicePatch",
    "SimSlotSummary",
    "GeoLocation",
    "AlarmLogEntry",
    "TrafficLogEntry",
    "Frame",
    "Alert",
    "Notification",
    "NotificationCategory",
    "Severity",
    "ConnectionState",
    "ConnectionStatus",
    "ReconnectConfig",
    "PresenceStatus",
    "AlarmStatus",
    "Direction",
    "TrafficChannel",
    "StoreChange",
    "StoreChangeKind",
    "FleetSyncError",
    "TransportError",
    "AuthFailure",
    "DecodeError",
    "CommandFailure",
]
