# =============================================================================
# fleetsync -- Store Records
# =============================================================================
#
# Records held by the entity store. Absence is explicit: a DevicePatch field
# set to None means "not reported", while 0, "" and False are real values.
# DeviceRecord tracks which fields have ever been reported so reconciliation
# never lets a default overwrite a known snapshot value.
# =============================================================================

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Iterator

from .types import AlarmStatus, Direction, PresenceStatus, Severity, TrafficChannel


@dataclass
class GeoLocation:
    latitude: float
    longitude: float

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass
class SimSlotSummary:
    """One SIM slot as reported by a heartbeat. Replaced wholesale."""

    slot_index: int
    is_active: bool = False
    carrier_name: str = ""
    phone_number: str = ""
    signal_strength: int | None = None
    signal_dbm: int | None = None
    network_type: str = ""
    imsi: str = ""
    iccid: str = ""
    balance: str | None = None
    sms_sent_today: int | None = None
    sms_sent_month: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class AlarmLogEntry:
    """An alarm as recorded from the push stream."""

    alarm_type: str
    severity: Severity
    message: str
    created_at: float
    id: str | None = None
    device_id: str | None = None
    status: AlarmStatus = AlarmStatus.STARTED
    device_group: str = ""
    sitename: str = ""
    resolved_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["severity"] = self.severity.value
        data["status"] = self.status.value
        return data


@dataclass
class TrafficLogEntry:
    """A message, USSD or other traffic event from the push stream."""

    channel: TrafficChannel
    event_type: str
    direction: Direction
    created_at: float
    id: str | None = None
    message_id: str | None = None
    device_id: str | None = None
    address: str = ""
    summary: str = ""
    sim_slot: int | None = None
    status: str = ""
    cost: float | None = None
    delivery: dict[str, Any] = field(default_factory=dict)
    device_group: str = ""
    sitename: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["channel"] = self.channel.value
        data["direction"] = self.direction.value
        return data


@dataclass
class DevicePatch:
    """Partial device update. ``None`` means the field was not reported."""

    name: str | None = None
    device_group: str | None = None
    sitename: str | None = None
    status: PresenceStatus | None = None
    last_heartbeat: float | None = None
    battery_level: int | None = None
    battery_status: str | None = None
    signal_strength: int | None = None
    signal_dbm: int | None = None
    network_type: str | None = None
    manufacturer: str | None = None
    model: str | None = None
    android_version: str | None = None
    sim_cards: list[SimSlotSummary] | None = None
    location: GeoLocation | None = None
    alarms: list[AlarmLogEntry] | None = None
    maintenance_mode: bool | None = None
    maintenance_reason: str | None = None
    maintenance_started_at: float | None = None

    def present(self) -> Iterator[tuple[str, Any]]:
        """Yield ``(field, value)`` for every reported field."""
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is not None:
                yield f.name, value

    def __bool__(self) -> bool:
        return any(True for _ in self.present())


# Fields that arrive as a complete list and are replaced, never field-merged
WHOLESALE_FIELDS = frozenset({"sim_cards", "alarms"})


@dataclass
class DeviceRecord:
    """Live state of one device.

    Defaults stand in for unreported fields: offline, zero metrics, empty
    strings and lists, no location. ``reported_fields`` names the fields
    that carry an observed value.
    """

    id: str
    name: str = ""
    device_group: str = ""
    sitename: str = ""
    status: PresenceStatus = PresenceStatus.OFFLINE
    last_heartbeat: float = 0.0
    battery_level: int = 0
    battery_status: str = ""
    signal_strength: int = 0
    signal_dbm: int = 0
    network_type: str = ""
    manufacturer: str = ""
    model: str = ""
    android_version: str = ""
    sim_cards: list[SimSlotSummary] = field(default_factory=list)
    location: GeoLocation | None = None
    alarms: list[AlarmLogEntry] = field(default_factory=list)
    maintenance_mode: bool = False
    maintenance_reason: str = ""
    maintenance_started_at: float | None = None
    reported_fields: set[str] = field(default_factory=set, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = f"Device-{self.id}"

    @property
    def is_online(self) -> bool:
        return self.status == PresenceStatus.ONLINE

    def is_present(self, name: str) -> bool:
        return name in self.reported_fields

    def present_fields(self) -> dict[str, Any]:
        """Reported fields as plain values, suitable for overlaying a snapshot."""
        return {name: _plain(getattr(self, name)) for name in sorted(self.reported_fields)}

    def to_dict(self) -> dict[str, Any]:
        data = {
            f.name: _plain(getattr(self, f.name))
            for f in dataclasses.fields(self)
            if f.name != "reported_fields"
        }
        return data


def _plain(value: Any) -> Any:
    if isinstance(value, (PresenceStatus, Severity, AlarmStatus, Direction, TrafficChannel)):
        return value.value
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value
