"""Tests for inbound payload models."""

import math
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from fleetsync.payloads import (
    AlarmPayload,
    ErrorPayload,
    HeartbeatPayload,
    LocationPayload,
    PresencePayload,
    SimCardPayload,
    TrafficPayload,
    to_epoch_seconds,
)


class TestSentinelStripping:
    @pytest.mark.parametrize("sentinel", ["", "undefined", "null", " null ", None])
    def test_string_sentinels_become_unset(self, sentinel):
        payload = HeartbeatPayload.model_validate({"network_type": sentinel})
        assert payload.network_type is None

    def test_nan_becomes_unset(self):
        payload = TrafficPayload.model_validate({"cost": math.nan})
        assert payload.cost is None

    def test_zero_battery_is_kept(self):
        payload = HeartbeatPayload.model_validate({"battery_level": 0})
        assert payload.battery_level == 0

    @pytest.mark.parametrize("level", [-1, 101])
    def test_out_of_range_battery_dropped(self, level):
        payload = HeartbeatPayload.model_validate({"battery_level": level})
        assert payload.battery_level is None

    def test_non_negative_dbm_dropped(self):
        payload = HeartbeatPayload.model_validate({"signal_dbm": 0})
        assert payload.signal_dbm is None
        assert HeartbeatPayload.model_validate({"signal_dbm": -85}).signal_dbm == -85

    def test_sim_card_rules(self):
        sim = SimCardPayload.model_validate(
            {"slot_index": 1, "signal_strength": -1, "sms_sent_today": 0}
        )
        assert sim.signal_strength is None
        assert sim.sms_sent_today == 0

    def test_unknown_fields_ignored(self):
        payload = PresencePayload.model_validate({"device_id": "A1", "firmware": "9.1"})
        assert payload.device_id == "A1"

    @pytest.mark.parametrize("model", [PresencePayload, AlarmPayload, TrafficPayload])
    def test_numeric_device_id_becomes_string(self, model):
        assert model.model_validate({"device_id": 860000000000001}).device_id == "860000000000001"

    def test_numeric_imei_and_message_id(self):
        heartbeat = HeartbeatPayload.model_validate({"device_info": {"imei": 8600}})
        assert heartbeat.device_key == "8600"
        traffic = TrafficPayload.model_validate({"message_id": 42})
        assert traffic.message_id == "42"

    def test_boolean_device_id_rejected(self):
        with pytest.raises(ValidationError):
            PresencePayload.model_validate({"device_id": True})

    def test_location_requires_coordinates(self):
        with pytest.raises(ValidationError):
            LocationPayload.model_validate({"latitude": 1.0})


class TestHeartbeat:
    def test_identity_prefers_imei(self):
        payload = HeartbeatPayload.model_validate(
            {"device_id": "top", "device_info": {"imei": "8600", "device_id": "inner"}}
        )
        assert payload.device_key == "8600"

    def test_identity_falls_back_to_device_id(self):
        payload = HeartbeatPayload.model_validate(
            {"device_id": "top", "device_info": {"imei": "undefined"}}
        )
        assert payload.device_key == "top"

    def test_site_alias(self):
        payload = HeartbeatPayload.model_validate({"device_info": {"country_site": "Lagos"}})
        assert payload.device_info.sitename == "Lagos"

    def test_name_from_either_place(self):
        assert HeartbeatPayload.model_validate({"device_name": "A"}).name == "A"
        assert (
            HeartbeatPayload.model_validate({"device_info": {"device_name": "B"}}).name == "B"
        )

    def test_unset_location(self):
        payload = HeartbeatPayload.model_validate({"location": {"latitude": 0, "longitude": 0}})
        assert payload.location.is_unset


class TestAlarmAndTraffic:
    def test_alarm_timestamp_alias_and_int_id(self):
        payload = AlarmPayload.model_validate({"id": 7, "timestamp": 1_700_000_000_000})
        assert payload.entry_id == "7"
        assert payload.created_at == 1_700_000_000_000
        assert payload.alarm_type == "unknown"

    def test_traffic_created_at_alias(self):
        payload = TrafficPayload.model_validate({"created_at": "2023-11-14T22:13:20Z"})
        assert payload.timestamp == "2023-11-14T22:13:20Z"

    def test_negative_sim_slot_dropped(self):
        assert TrafficPayload.model_validate({"sim_slot": -1}).sim_slot is None
        assert TrafficPayload.model_validate({"sim_slot": 0}).sim_slot == 0

    def test_error_text(self):
        assert ErrorPayload.model_validate({"error": "bad"}).text == "bad"
        assert ErrorPayload.model_validate({}).text == "Unknown error"


class TestToEpochSeconds:
    def test_seconds(self):
        assert to_epoch_seconds(1_700_000_000) == 1_700_000_000.0

    def test_milliseconds(self):
        assert to_epoch_seconds(1_700_000_000_500) == 1_700_000_000.5

    def test_numeric_string(self):
        assert to_epoch_seconds("1700000000000") == 1_700_000_000.0

    def test_iso(self):
        assert to_epoch_seconds("2023-11-14T22:13:20+00:00") == 1_700_000_000.0

    def test_naive_datetime_is_utc(self):
        assert to_epoch_seconds(datetime(2023, 11, 14, 22, 13, 20)) == 1_700_000_000.0
        aware = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert to_epoch_seconds(aware) == 1_700_000_000.0

    @pytest.mark.parametrize("value", [None, True, "", "soon", math.nan, object()])
    def test_uninterpretable(self, value):
        assert to_epoch_seconds(value) is None
