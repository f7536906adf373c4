"""Tests for FrameCodec decode/encode."""

import json

import pytest

from fleetsync.errors import DecodeError
from fleetsync.protocol import FrameCodec


@pytest.fixture
def codec():
    return FrameCodec()


class TestDecode:
    def test_text_frame(self, codec):
        frame = codec.decode('{"type":"alarm","data":{"message":"x"},"timestamp":1700000000000}')
        assert frame.type == "alarm"
        assert frame.data == {"message": "x"}
        assert frame.timestamp == 1700000000000

    def test_binary_frame(self, codec):
        frame = codec.decode(b'{"type":"pong"}')
        assert frame.type == "pong"
        assert frame.data == {}
        assert frame.timestamp is None

    def test_scalar_data_is_wrapped(self, codec):
        frame = codec.decode('{"type":"error","data":"boom"}')
        assert frame.data == {"value": "boom"}

    def test_non_numeric_timestamp_ignored(self, codec):
        assert codec.decode('{"type":"pong","timestamp":"soon"}').timestamp is None
        assert codec.decode('{"type":"pong","timestamp":true}').timestamp is None

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            '{"data": {}}',
            '{"type": ""}',
            '{"type": 5}',
            b"\xff\xfe",
        ],
    )
    def test_malformed_frames_raise(self, codec, raw):
        with pytest.raises(DecodeError):
            codec.decode(raw)

    def test_oversized_frame_rejected(self):
        codec = FrameCodec(max_size=16)
        with pytest.raises(DecodeError, match="max size"):
            codec.decode('{"type":"heartbeat","data":{}}')

    def test_text_frame_size_counts_utf8_bytes(self):
        frame = '{"type":"sms_message","data":{"message":"' + "é" * 20 + '"}}'
        assert len(frame) <= 64 < len(frame.encode("utf-8"))
        with pytest.raises(DecodeError, match="max size"):
            FrameCodec(max_size=64).decode(frame)
        assert FrameCodec(max_size=len(frame.encode("utf-8"))).decode(frame).type == "sms_message"


class TestEncode:
    def test_ping(self, codec):
        assert json.loads(codec.encode_ping(1700000000123)) == {
            "type": "ping",
            "timestamp": 1700000000123,
        }

    def test_command_forwards_fields(self, codec):
        raw = codec.encode_command(
            "send_sms", "860000000000001", {"phone_number": "+15550100", "message": "hi"}
        )
        assert json.loads(raw) == {
            "type": "send_sms",
            "data": {
                "device_id": "860000000000001",
                "phone_number": "+15550100",
                "message": "hi",
            },
        }

    def test_device_id_cannot_be_overridden(self, codec):
        raw = codec.encode_command("find_device", "A1", {"device_id": "B2"})
        assert json.loads(raw)["data"] == {"device_id": "A1"}

    def test_unknown_command(self, codec):
        with pytest.raises(ValueError):
            codec.encode_command("reboot", "A1")

    def test_blank_device_id(self, codec):
        with pytest.raises(ValueError):
            codec.encode_command("alarm_start", "")
