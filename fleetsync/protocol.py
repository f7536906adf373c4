# =============================================================================
# fleetsync -- Wire Protocol Codec
# =============================================================================
#
# Incoming (server -> console):
#   Text or binary JSON: {"type": str, "data": object, "timestamp"?: number}
#
# Outgoing (console -> server):
#   {"type": "ping", "timestamp": number}
#   {"type": <command>, "data": {"device_id": str, ...command fields}}
# =============================================================================

from __future__ import annotations

import json
from typing import Any

from .constants import COMMAND_TYPES, MAX_MESSAGE_SIZE, PING
from .errors import DecodeError
from .types import Frame


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"))


class FrameCodec:
    """Decode inbound frames and encode outbound control frames.

    Args:
        max_size: Frames larger than this many bytes are rejected.
    """

    def __init__(self, max_size: int = MAX_MESSAGE_SIZE) -> None:
        self._max_size = max_size

    def decode(self, raw: str | bytes) -> Frame:
        """Decode one frame.

        Raises:
            DecodeError: Oversized, non-UTF-8, invalid JSON, not an object,
                or missing a string ``type``.
        """
        size = len(raw.encode("utf-8", "surrogatepass")) if isinstance(raw, str) else len(raw)
        if size > self._max_size:
            raise DecodeError(f"Frame exceeds max size ({size} bytes)")

        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecodeError("Binary frame is not UTF-8") from exc

        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, ValueError) as exc:
            raise DecodeError(f"Invalid JSON: {exc}") from exc

        if not isinstance(parsed, dict):
            raise DecodeError(f"Frame is {type(parsed).__name__}, expected object")

        frame_type = parsed.get("type")
        if not isinstance(frame_type, str) or not frame_type:
            raise DecodeError("Frame has no type")

        data = parsed.get("data")
        if data is None:
            data = {}
        elif not isinstance(data, dict):
            # Scalars and lists are wrapped so handlers always see a dict
            data = {"value": data}

        timestamp = parsed.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            timestamp = None

        return Frame(type=frame_type, data=data, timestamp=timestamp)

    def encode_ping(self, timestamp_ms: int) -> str:
        return _json_dumps({"type": PING, "timestamp": timestamp_ms})

    def encode_command(
        self, command: str, device_id: str, fields: dict[str, Any] | None = None
    ) -> str:
        """Encode a device command. *fields* are forwarded verbatim."""
        if command not in COMMAND_TYPES:
            raise ValueError(f"Unknown command type: {command!r}")
        if not device_id:
            raise ValueError("device_id must be non-empty")
        data: dict[str, Any] = {"device_id": device_id}
        for key, value in (fields or {}).items():
            if key != "device_id":
                data[key] = value
        return _json_dumps({"type": command, "data": data})
