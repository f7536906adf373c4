# =============================================================================
# fleetsync -- Entity Store
# =============================================================================
#
# Identity-keyed device map plus append-only alarm and traffic logs.
#
# This is the only component allowed to merge device updates. Merge rules:
#   - a DevicePatch field that is None was not reported and never touches
#     the stored value
#   - sim_cards and alarms arrive complete and are replaced wholesale
#   - records are mutated in place, never replaced
# =============================================================================

from __future__ import annotations

from typing import Any, Iterable

from ._logging import logger
from .constants import INVALID_IDENTITIES
from .events import Signal
from .records import (
    WHOLESALE_FIELDS,
    AlarmLogEntry,
    DevicePatch,
    DeviceRecord,
    TrafficLogEntry,
)
from .types import AlarmStatus, StoreChange, StoreChangeKind, TrafficChannel


def is_valid_identity(device_id: Any) -> bool:
    if not isinstance(device_id, str):
        return False
    return device_id.strip().lower() not in INVALID_IDENTITIES


class EntityStore:
    """In-memory live state for one console session.

    Every mutation emits a :class:`StoreChange` on :attr:`changed` after
    the store is consistent again.
    """

    def __init__(self) -> None:
        self._devices: dict[str, DeviceRecord] = {}
        self._alarm_logs: list[AlarmLogEntry] = []
        self._traffic_logs: list[TrafficLogEntry] = []
        self._alarm_ids: set[str] = set()
        self._traffic_ids: set[str] = set()
        self._traffic_business_ids: set[tuple[str, str]] = set()
        self._settings: dict[str, Any] = {}
        self.changed: Signal[StoreChange] = Signal("store.changed")

    # -- Devices --------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def get(self, device_id: str) -> DeviceRecord | None:
        return self._devices.get(device_id)

    def devices(self) -> list[DeviceRecord]:
        return list(self._devices.values())

    def devices_by_group(self, device_group: str) -> list[DeviceRecord]:
        return [d for d in self._devices.values() if d.device_group == device_group]

    def devices_by_site(self, sitename: str) -> list[DeviceRecord]:
        return [d for d in self._devices.values() if d.sitename == sitename]

    def devices_in(self, device_group: str, sitename: str) -> list[DeviceRecord]:
        return [
            d
            for d in self._devices.values()
            if d.device_group == device_group and d.sitename == sitename
        ]

    def upsert(self, device_id: str, patch: DevicePatch) -> DeviceRecord:
        """Merge *patch* into the record for *device_id*, creating it if needed.

        Raises:
            ValueError: *device_id* is blank or a sentinel such as ``"undefined"``.
        """
        if not is_valid_identity(device_id):
            raise ValueError(f"Invalid device id: {device_id!r}")

        record = self._devices.get(device_id)
        created = record is None
        if record is None:
            record = DeviceRecord(id=device_id)
            self._devices[device_id] = record
            logger.debug("Device %s created", device_id)

        changed = False
        for name, value in patch.present():
            if name in WHOLESALE_FIELDS:
                value = list(value)
            if getattr(record, name) != value:
                setattr(record, name, value)
                changed = True
            if name not in record.reported_fields:
                record.reported_fields.add(name)
                changed = True

        if created or changed:
            self.changed.emit(StoreChange(StoreChangeKind.DEVICE, device_id))
        return record

    # -- Alarm log ------------------------------------------------------------

    def append_alarm(self, entry: AlarmLogEntry) -> bool:
        """Append *entry*. Returns ``False`` when its id is already retained."""
        if entry.id is not None:
            if entry.id in self._alarm_ids:
                logger.debug("Duplicate alarm %s dropped", entry.id)
                return False
            self._alarm_ids.add(entry.id)
        self._alarm_logs.append(entry)
        self.changed.emit(StoreChange(StoreChangeKind.ALARM_LOG, entry.id))
        return True

    def resolve_alarm(
        self,
        *,
        alarm_id: str | None = None,
        device_id: str | None = None,
        alarm_type: str | None = None,
        resolved_at: float | None = None,
    ) -> AlarmLogEntry | None:
        """Mark the latest matching started alarm resolved.

        Matches by *alarm_id* when given, otherwise by *device_id* and
        *alarm_type*. Returns the resolved entry, or ``None`` if nothing
        matched.
        """
        for entry in reversed(self._alarm_logs):
            if entry.status != AlarmStatus.STARTED:
                continue
            if alarm_id is not None:
                if entry.id != alarm_id:
                    continue
            elif entry.device_id != device_id or entry.alarm_type != alarm_type:
                continue
            entry.status = AlarmStatus.RESOLVED
            entry.resolved_at = resolved_at
            self.changed.emit(StoreChange(StoreChangeKind.ALARM_LOG, entry.id))
            return entry
        return None

    def alarm_logs(self) -> list[AlarmLogEntry]:
        return list(self._alarm_logs)

    # -- Traffic log ----------------------------------------------------------

    def append_traffic(self, entry: TrafficLogEntry) -> bool:
        """Append *entry*.

        Returns ``False`` when its id, or its business id for the same
        event type, is already retained.
        """
        business_key = (
            (entry.event_type, entry.message_id) if entry.message_id is not None else None
        )
        if entry.id is not None and entry.id in self._traffic_ids:
            logger.debug("Duplicate traffic entry %s dropped", entry.id)
            return False
        if business_key is not None and business_key in self._traffic_business_ids:
            logger.debug("Duplicate %s for message %s dropped", *business_key)
            return False

        if entry.id is not None:
            self._traffic_ids.add(entry.id)
        if business_key is not None:
            self._traffic_business_ids.add(business_key)
        self._traffic_logs.append(entry)
        self.changed.emit(StoreChange(StoreChangeKind.TRAFFIC_LOG, entry.id or entry.message_id))
        return True

    def traffic_logs(self, channel: TrafficChannel | None = None) -> list[TrafficLogEntry]:
        if channel is None:
            return list(self._traffic_logs)
        return [e for e in self._traffic_logs if e.channel == channel]

    def trim_logs(self, max_entries: int) -> int:
        """Keep at most *max_entries* of each log, dropping the oldest.

        Returns the number of entries removed.
        """
        if max_entries < 0:
            raise ValueError("max_entries must be >= 0")
        removed = 0
        if len(self._alarm_logs) > max_entries:
            removed += len(self._alarm_logs) - max_entries
            self._alarm_logs = self._alarm_logs[len(self._alarm_logs) - max_entries:]
            self._alarm_ids = _ids(self._alarm_logs)
            self.changed.emit(StoreChange(StoreChangeKind.ALARM_LOG))
        if len(self._traffic_logs) > max_entries:
            removed += len(self._traffic_logs) - max_entries
            self._traffic_logs = self._traffic_logs[len(self._traffic_logs) - max_entries:]
            self._traffic_ids = _ids(self._traffic_logs)
            self._traffic_business_ids = {
                (e.event_type, e.message_id)
                for e in self._traffic_logs
                if e.message_id is not None
            }
            self.changed.emit(StoreChange(StoreChangeKind.TRAFFIC_LOG))
        return removed

    # -- Settings -------------------------------------------------------------

    @property
    def settings(self) -> dict[str, Any]:
        return dict(self._settings)

    def update_settings(self, settings: dict[str, Any]) -> None:
        if not settings:
            return
        self._settings.update(settings)
        self.changed.emit(StoreChange(StoreChangeKind.SETTINGS))


def _ids(entries: Iterable[AlarmLogEntry | TrafficLogEntry]) -> set[str]:
    return {e.id for e in entries if e.id is not None}
