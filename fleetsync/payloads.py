"""Inbound payload models for fleetsync.

Every payload model inherits from :class:`PayloadModel`, which provides:

* ``extra="ignore"`` so new server fields never break decoding.
* A ``model_validator(mode="before")`` that strips wire sentinels
  (``None``, ``""``, ``"undefined"``, ``"null"``, NaN) so the field
  default (``None``, meaning "not reported") is used.
* Per-field sentinel predicates via ``_SENTINEL_RULES`` for values that
  are invalid on their face, such as a negative battery level.

Zero is a real value: a battery level of ``0`` is reported as ``0``.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from .constants import MS_THRESHOLD

_SENTINELS = frozenset({"", "undefined", "null"})

# ---------------------------------------------------------------------------
# Shared sentinel predicates
# ---------------------------------------------------------------------------


def is_negative(value: int | float) -> bool:
    """Return ``True`` when *value* is negative (e.g. ``-1`` sentinel)."""
    return value < 0


def is_out_of_percent(value: int | float) -> bool:
    return value < 0 or value > 100


def is_positive(value: int | float) -> bool:
    """dBm readings are always negative; ``0`` and above mean no reading."""
    return value >= 0


def to_epoch_seconds(value: Any) -> float | None:
    """Convert an epoch timestamp (seconds **or** milliseconds) or ISO-8601
    string to epoch seconds.

    Returns ``None`` when the value is missing or cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        ts = float(value)
        if ts >= MS_THRESHOLD:
            ts = ts / 1000.0
        return ts
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return to_epoch_seconds(float(text))
        except ValueError:
            pass
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _id_to_str(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


WireId = Annotated[str | None, BeforeValidator(_id_to_str)]
"""Identifier the server sends as either a string or a number; always a ``str``."""


def _site_field() -> Any:
    # The server uses both spellings for the site name
    return Field(default=None, validation_alias=AliasChoices("sitename", "country_site"))


class PayloadModel(BaseModel):
    """Base for inbound frame payloads."""

    _SENTINEL_RULES: ClassVar[dict[str, Callable[..., bool]]] = {}
    """Per-field sentinel predicates.

    After construction, a field whose predicate returns ``True`` is reset to
    ``None``.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _strip_sentinels(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return PayloadModel._clean_dict(values)

    @model_validator(mode="after")
    def _normalise_sentinels(self) -> PayloadModel:
        rules: dict[str, Callable[..., bool]] = getattr(type(self), "_SENTINEL_RULES", {})
        for field_name, predicate in rules.items():
            val = getattr(self, field_name, None)
            if val is not None and predicate(val):
                object.__setattr__(self, field_name, None)
        return self


# ---------------------------------------------------------------------------
# Device payloads
# ---------------------------------------------------------------------------


class DeviceInfo(PayloadModel):
    imei: WireId = None
    device_id: WireId = None
    device_name: str | None = None
    device_group: str | None = None
    sitename: str | None = _site_field()
    manufacturer: str | None = None
    model: str | None = None
    android_version: str | None = None


class LocationPayload(PayloadModel):
    latitude: float
    longitude: float

    @property
    def is_unset(self) -> bool:
        """``(0, 0)`` is what devices report without a fix."""
        return self.latitude == 0 and self.longitude == 0


class SimCardPayload(PayloadModel):
    _SENTINEL_RULES: ClassVar[dict[str, Callable[..., bool]]] = {
        "signal_strength": is_negative,
        "signal_dbm": is_positive,
        "sms_sent_today": is_negative,
        "sms_sent_month": is_negative,
    }

    slot_index: int
    is_active: bool = False
    carrier_name: str | None = None
    phone_number: str | None = None
    signal_strength: int | None = None
    signal_dbm: int | None = None
    network_type: str | None = None
    imsi: str | None = None
    iccid: str | None = None
    balance: str | None = None
    sms_sent_today: int | None = None
    sms_sent_month: int | None = None


class HeartbeatPayload(PayloadModel):
    """Periodic full device report."""

    _SENTINEL_RULES: ClassVar[dict[str, Callable[..., bool]]] = {
        "battery_level": is_out_of_percent,
        "signal_strength": is_negative,
        "signal_dbm": is_positive,
    }

    device_info: DeviceInfo = Field(default_factory=DeviceInfo)
    device_id: WireId = None
    device_name: str | None = None
    battery_level: int | None = None
    battery_status: str | None = None
    signal_strength: int | None = None
    signal_dbm: int | None = None
    network_type: str | None = None
    sim_cards: list[SimCardPayload] | None = None
    location: LocationPayload | None = None

    @property
    def device_key(self) -> str | None:
        """Identity: ``device_info.imei``, then ``device_info.device_id``,
        then the top-level ``device_id``."""
        return self.device_info.imei or self.device_info.device_id or self.device_id

    @property
    def name(self) -> str | None:
        return self.device_name or self.device_info.device_name


class PresencePayload(PayloadModel):
    """``device_online`` / ``device_offline``."""

    device_id: WireId = None
    device_name: str | None = None
    device_group: str | None = None
    sitename: str | None = _site_field()


class DeviceStatusPayload(PayloadModel):
    """Group/site-wide status broadcast."""

    status: str | None = None
    device_group: str | None = None
    sitename: str | None = _site_field()
    details: Any = None


class DeviceSettingsPayload(PayloadModel):
    """``connection_established``: settings the server pushes on connect."""

    client_id: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Alarms
# ---------------------------------------------------------------------------


class AlarmPayload(PayloadModel):
    id: str | int | None = None
    device_id: WireId = None
    alarm_type: str = "unknown"
    message: str | None = None
    severity: str | None = None
    status: str | None = None
    device_group: str | None = None
    sitename: str | None = _site_field()
    scenario: str | None = None
    resolution_scenario: str | None = None
    created_at: Any = Field(default=None, validation_alias=AliasChoices("created_at", "timestamp"))

    @property
    def entry_id(self) -> str | None:
        return None if self.id is None else str(self.id)


# ---------------------------------------------------------------------------
# Traffic
# ---------------------------------------------------------------------------


class TrafficPayload(PayloadModel):
    """Union of the fields carried by SMS, USSD, MMS and RCS traffic events."""

    _SENTINEL_RULES: ClassVar[dict[str, Callable[..., bool]]] = {
        "sim_slot": is_negative,
    }

    id: str | int | None = None
    message_id: WireId = None
    session_id: str | None = None
    device_id: WireId = None
    phone_number: str | None = None
    sender: str | None = None
    message: str | None = None
    response: str | None = None
    cleaned_response: str | None = None
    subject: str | None = None
    parts_count: int | None = None
    message_type: str | None = None
    ussd_code: str | None = None
    sim_slot: int | None = None
    status: str | None = None
    direction: str | None = None
    error_message: str | None = None
    failure_code: int | None = None
    reason: str | None = None
    is_menu: bool | None = None
    cost: float | None = None
    device_group: str | None = None
    sitename: str | None = _site_field()
    timestamp: Any = Field(default=None, validation_alias=AliasChoices("timestamp", "created_at"))

    @property
    def entry_id(self) -> str | None:
        return None if self.id is None else str(self.id)


# ---------------------------------------------------------------------------
# Command acks and errors
# ---------------------------------------------------------------------------


class CommandResultPayload(PayloadModel):
    device_id: WireId = None
    message: str | None = None
    error: str | None = None
    status: str | None = None
    alarm_type: str | None = None


class ErrorPayload(PayloadModel):
    code: str | None = None
    message: str | None = None
    error: str | None = None

    @property
    def text(self) -> str:
        return self.message or self.error or "Unknown error"
