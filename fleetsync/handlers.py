# =============================================================================
# fleetsync -- Domain Event Handlers
# =============================================================================
#
# Built-in handlers, one per wire type. Each translates a payload into entity
# store mutations and/or notifications:
#
#   heartbeat                 -> device upsert (full patch)
#   device_online/offline     -> device upsert (presence only)
#   device_status             -> presence for a group/site + notification
#   alarm, sim_card_change_*  -> alarm log + active alarms + notification
#   *_resolved                -> resolve alarm log entry + notification
#   sms/ussd/mms/rcs traffic  -> traffic log
#   command acks / failures   -> notification only
#   auth_error, unauthorized  -> session invalidation
#   connection_established    -> server-pushed settings
# =============================================================================

from __future__ import annotations

import time
from typing import Any, Callable, TypeVar

from pydantic import ValidationError

from . import constants as c
from ._logging import logger
from .errors import CommandFailure
from .notifications import NotificationCenter
from .payloads import (
    AlarmPayload,
    CommandResultPayload,
    DeviceSettingsPayload,
    DeviceStatusPayload,
    ErrorPayload,
    HeartbeatPayload,
    PayloadModel,
    PresencePayload,
    SimCardPayload,
    TrafficPayload,
    to_epoch_seconds,
)
from .records import AlarmLogEntry, DevicePatch, GeoLocation, SimSlotSummary, TrafficLogEntry
from .router import MessageRouter
from .store import EntityStore, is_valid_identity
from .types import (
    AlarmStatus,
    Direction,
    Frame,
    NotificationCategory,
    PresenceStatus,
    Severity,
    TrafficChannel,
)

P = TypeVar("P", bound=PayloadModel)

# wire type -> (channel, direction, default status)
_TRAFFIC_TYPES: dict[str, tuple[TrafficChannel, Direction, str]] = {
    c.SMS_LOG: (TrafficChannel.SMS, Direction.OUTBOUND, ""),
    c.SMS_MESSAGE: (TrafficChannel.SMS, Direction.INBOUND, "received"),
    c.SMS_DELIVERY_REPORT: (TrafficChannel.SMS, Direction.OUTBOUND, ""),
    c.USSD_RESPONSE: (TrafficChannel.USSD, Direction.INBOUND, ""),
    c.USSD_RESPONSE_FAILED: (TrafficChannel.USSD, Direction.OUTBOUND, "FAILED"),
    c.USSD_CODE: (TrafficChannel.USSD, Direction.INBOUND, "received"),
    c.USSD_CANCELLED: (TrafficChannel.USSD, Direction.OUTBOUND, "CANCELLED"),
    c.MMS_RECEIVED: (TrafficChannel.MMS, Direction.INBOUND, "received"),
    c.RCS_RECEIVED: (TrafficChannel.RCS, Direction.INBOUND, "received"),
}

# wire type -> (command, title, severity, default message); failures have no default
_COMMAND_ACKS: dict[str, tuple[str, str, Severity, str | None]] = {
    c.FIND_DEVICE_SUCCESS: (c.CMD_FIND_DEVICE, "Find Device Success", Severity.INFO, "Device located"),
    c.FIND_DEVICE_FAILED: (c.CMD_FIND_DEVICE, "Find Device Failed", Severity.ERROR, None),
    c.ALARM_STARTED: (c.CMD_ALARM_START, "Alarm Started", Severity.WARNING, "Alarm has been started"),
    c.ALARM_FAILED: (c.CMD_ALARM_START, "Alarm Failed", Severity.ERROR, None),
    c.ALARM_STOPPED: (c.CMD_ALARM_STOP, "Alarm Stopped", Severity.INFO, "Alarm has been stopped"),
    c.ALARM_STOP_FAILED: (c.CMD_ALARM_STOP, "Alarm Stop Failed", Severity.ERROR, None),
}

_INBOUND_MARKERS = frozenset({"received", "inbound", "incoming"})

_DELIVERY_FIELDS = ("session_id", "is_menu", "failure_code", "parts_count", "message_type")


def _label(alarm_type: str) -> str:
    return alarm_type.replace("_", " ").upper()


class DomainEventHandlers:
    """Built-in handlers for every known wire type.

    Args:
        store: Entity store mutated by device, alarm and traffic events.
        notifications: Feed receiving user-facing notifications.
        on_auth_failure: Called with a reason when the server reports the
            session is no longer valid.
        clock: Returns epoch seconds; used when a frame carries no timestamp.
    """

    def __init__(
        self,
        store: EntityStore,
        notifications: NotificationCenter,
        *,
        on_auth_failure: Callable[[str], Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._on_auth_failure = on_auth_failure
        self._clock = clock
        self.last_pong: float | None = None

        self._table: dict[str, Callable[[Frame], None]] = {
            c.HEARTBEAT: self._handle_heartbeat,
            c.DEVICE_ONLINE: self._handle_presence,
            c.DEVICE_OFFLINE: self._handle_presence,
            c.DEVICE_STATUS: self._handle_device_status,
            c.ALARM: self._handle_alarm,
            c.SIM_CARD_CHANGE_ALARM: self._handle_alarm,
            c.ALARM_RESOLVED: self._handle_alarm_resolved,
            c.SIM_CARD_CHANGE_ALARM_RESOLVED: self._handle_alarm_resolved,
            c.AUTH_ERROR: self._handle_auth_error,
            c.UNAUTHORIZED: self._handle_auth_error,
            c.ERROR: self._handle_error,
            c.CONNECTION_ESTABLISHED: self._handle_connection_established,
            c.PONG: self._handle_pong,
        }
        for frame_type in _TRAFFIC_TYPES:
            self._table[frame_type] = self._handle_traffic
        for frame_type in _COMMAND_ACKS:
            self._table[frame_type] = self._handle_command_ack

    @property
    def frame_types(self) -> frozenset[str]:
        return frozenset(self._table)

    def register(self, router: MessageRouter) -> None:
        """Install every handler as the router's built-in for its type."""
        for frame_type, handler in self._table.items():
            router.register(frame_type, handler)

    def handle(self, frame: Frame) -> bool:
        """Run the built-in handler for *frame*. Returns False for unknown types."""
        handler = self._table.get(frame.type)
        if handler is None:
            return False
        handler(frame)
        return True

    # -- Helpers --------------------------------------------------------------

    def _parse(self, model: type[P], frame: Frame) -> P | None:
        try:
            return model.model_validate(frame.data)
        except ValidationError as exc:
            logger.warning(
                "Dropping '%s' frame with invalid payload: %d error(s)",
                frame.type,
                exc.error_count(),
            )
            return None

    def _frame_time(self, frame: Frame) -> float:
        ts = to_epoch_seconds(frame.timestamp)
        return ts if ts is not None else self._clock()

    # -- Devices --------------------------------------------------------------

    def _handle_heartbeat(self, frame: Frame) -> None:
        p = self._parse(HeartbeatPayload, frame)
        if p is None:
            return
        device_id = p.device_key
        if not is_valid_identity(device_id):
            logger.warning("Heartbeat without device identity dropped")
            return

        info = p.device_info
        location = None
        if p.location is not None and not p.location.is_unset:
            location = GeoLocation(p.location.latitude, p.location.longitude)
        sim_cards = None
        if p.sim_cards is not None:
            sim_cards = [_sim_slot(s) for s in p.sim_cards]

        self._store.upsert(
            device_id,
            DevicePatch(
                name=p.name,
                device_group=info.device_group,
                sitename=info.sitename,
                status=PresenceStatus.ONLINE,
                last_heartbeat=self._frame_time(frame),
                battery_level=p.battery_level,
                battery_status=p.battery_status,
                signal_strength=p.signal_strength,
                signal_dbm=p.signal_dbm,
                network_type=p.network_type,
                manufacturer=info.manufacturer,
                model=info.model,
                android_version=info.android_version,
                sim_cards=sim_cards,
                location=location,
            ),
        )

    def _handle_presence(self, frame: Frame) -> None:
        p = self._parse(PresencePayload, frame)
        if p is None:
            return
        if not is_valid_identity(p.device_id):
            logger.warning("'%s' without device id dropped", frame.type)
            return
        status = PresenceStatus.ONLINE if frame.type == c.DEVICE_ONLINE else PresenceStatus.OFFLINE
        self._store.upsert(p.device_id, DevicePatch(status=status))

    def _handle_device_status(self, frame: Frame) -> None:
        p = self._parse(DeviceStatusPayload, frame)
        if p is None or p.status is None:
            return
        status = p.status.lower()
        group = p.device_group or ""
        site = p.sitename or ""

        if status in (PresenceStatus.ONLINE.value, PresenceStatus.OFFLINE.value):
            for device in self._store.devices_in(group, site):
                self._store.upsert(device.id, DevicePatch(status=PresenceStatus(status)))

        if status in ("error", "offline"):
            self._notifications.emit(
                NotificationCategory.DEVICE_STATUS,
                Severity.ERROR if status == "error" else Severity.WARNING,
                f"Device Status: {status.upper()}",
                f'Device group "{group}" at "{site}" is {status}',
                device_group=p.device_group,
                sitename=p.sitename,
            )

    # -- Alarms ---------------------------------------------------------------

    def _handle_alarm(self, frame: Frame) -> None:
        p = self._parse(AlarmPayload, frame)
        if p is None:
            return
        severity = Severity.parse(p.severity)
        created_at = to_epoch_seconds(p.created_at)
        entry = AlarmLogEntry(
            alarm_type=p.alarm_type,
            severity=severity,
            message=p.message or "",
            created_at=created_at if created_at is not None else self._frame_time(frame),
            id=p.entry_id,
            device_id=p.device_id,
            status=AlarmStatus.STARTED,
            device_group=p.device_group or "",
            sitename=p.sitename or "",
        )

        if self._store.append_alarm(entry) and is_valid_identity(p.device_id):
            self._activate_alarm(p, entry, sim_change=frame.type == c.SIM_CARD_CHANGE_ALARM)

        self._notifications.emit(
            NotificationCategory.ALARM,
            severity,
            f"Alarm: {_label(p.alarm_type)}",
            entry.message or _label(p.alarm_type),
            device_id=p.device_id,
            device_group=p.device_group,
            sitename=p.sitename,
        )

    def _activate_alarm(self, p: AlarmPayload, entry: AlarmLogEntry, *, sim_change: bool) -> None:
        record = self._store.get(p.device_id)
        active = [a for a in record.alarms if a.alarm_type != entry.alarm_type] if record else []
        active.append(entry)
        patch = DevicePatch(alarms=active)
        if sim_change or p.alarm_type == c.SIM_CARD_CHANGE:
            reason = "SIM card change detected"
            if p.scenario:
                reason = f"{reason}: {p.scenario}"
            patch.maintenance_mode = True
            patch.maintenance_reason = reason
            patch.maintenance_started_at = entry.created_at
        self._store.upsert(p.device_id, patch)

    def _handle_alarm_resolved(self, frame: Frame) -> None:
        p = self._parse(AlarmPayload, frame)
        if p is None:
            return
        resolved_at = to_epoch_seconds(p.created_at)
        if resolved_at is None:
            resolved_at = self._frame_time(frame)

        entry = None
        if p.entry_id is not None:
            entry = self._store.resolve_alarm(alarm_id=p.entry_id, resolved_at=resolved_at)
        if entry is None:
            entry = self._store.resolve_alarm(
                device_id=p.device_id, alarm_type=p.alarm_type, resolved_at=resolved_at
            )
        if entry is None:
            logger.debug("No open '%s' alarm to resolve", p.alarm_type)

        sim_change = frame.type == c.SIM_CARD_CHANGE_ALARM_RESOLVED or p.alarm_type == c.SIM_CARD_CHANGE
        if is_valid_identity(p.device_id):
            record = self._store.get(p.device_id)
            if record is not None:
                patch = DevicePatch(
                    alarms=[a for a in record.alarms if a.alarm_type != p.alarm_type]
                )
                if sim_change and record.maintenance_mode:
                    patch.maintenance_mode = False
                    patch.maintenance_reason = ""
                self._store.upsert(p.device_id, patch)

        label = _label(p.alarm_type)
        self._notifications.emit(
            NotificationCategory.ALARM_RESOLVED,
            Severity.INFO,
            f"Alarm Resolved: {label}",
            p.message or f"{label} resolved",
            device_id=p.device_id,
            device_group=p.device_group,
            sitename=p.sitename,
        )

    # -- Traffic --------------------------------------------------------------

    def _handle_traffic(self, frame: Frame) -> None:
        p = self._parse(TrafficPayload, frame)
        if p is None:
            return
        channel, direction, default_status = _TRAFFIC_TYPES[frame.type]
        if p.direction is not None:
            direction = (
                Direction.INBOUND if p.direction.lower() in _INBOUND_MARKERS else Direction.OUTBOUND
            )
        summary = (
            p.message
            or p.cleaned_response
            or p.response
            or p.subject
            or p.error_message
            or p.reason
            or p.ussd_code
            or ""
        )
        created_at = to_epoch_seconds(p.timestamp)
        delivery = {
            name: getattr(p, name) for name in _DELIVERY_FIELDS if getattr(p, name) is not None
        }

        self._store.append_traffic(
            TrafficLogEntry(
                channel=channel,
                event_type=frame.type,
                direction=direction,
                created_at=created_at if created_at is not None else self._frame_time(frame),
                id=p.entry_id,
                message_id=p.message_id,
                device_id=p.device_id,
                address=p.phone_number or p.sender or p.ussd_code or "",
                summary=summary,
                sim_slot=p.sim_slot,
                status=p.status or default_status,
                cost=p.cost,
                delivery=delivery,
                device_group=p.device_group or "",
                sitename=p.sitename or "",
            )
        )

    # -- Command acks ---------------------------------------------------------

    def _handle_command_ack(self, frame: Frame) -> None:
        p = self._parse(CommandResultPayload, frame)
        if p is None:
            return
        command, title, severity, default_message = _COMMAND_ACKS[frame.type]
        if default_message is None:
            failure = CommandFailure(command, p.error or p.message or "unknown error")
            logger.warning("%s", failure)
            message = failure.reason
        else:
            message = p.message or default_message
        self._notifications.emit(
            NotificationCategory.COMMAND,
            severity,
            title,
            message,
            device_id=p.device_id,
        )

    # -- Session --------------------------------------------------------------

    def _handle_auth_error(self, frame: Frame) -> None:
        p = self._parse(ErrorPayload, frame)
        reason = p.text if p is not None else "Unauthorized"
        self._auth_failed(reason)

    def _handle_error(self, frame: Frame) -> None:
        p = self._parse(ErrorPayload, frame)
        if p is None:
            return
        if p.code in c.AUTH_ERROR_CODES:
            self._auth_failed(p.text)
            return
        logger.warning("Server error [%s]: %s", p.code or "UNKNOWN_ERROR", p.text)

    def _auth_failed(self, reason: str) -> None:
        logger.error("Server rejected session: %s", reason)
        if self._on_auth_failure is not None:
            self._on_auth_failure(reason)

    def _handle_connection_established(self, frame: Frame) -> None:
        p = self._parse(DeviceSettingsPayload, frame)
        if p is None:
            return
        logger.info("Connection established (client_id=%s)", p.client_id)
        self._store.update_settings(p.settings)

    def _handle_pong(self, frame: Frame) -> None:
        self.last_pong = self._clock()


def _sim_slot(s: SimCardPayload) -> SimSlotSummary:
    return SimSlotSummary(
        slot_index=s.slot_index,
        is_active=s.is_active,
        carrier_name=s.carrier_name or "",
        phone_number=s.phone_number or "",
        signal_strength=s.signal_strength,
        signal_dbm=s.signal_dbm,
        network_type=s.network_type or "",
        imsi=s.imsi or "",
        iccid=s.iccid or "",
        balance=s.balance,
        sms_sent_today=s.sms_sent_today,
        sms_sent_month=s.sms_sent_month,
    )
