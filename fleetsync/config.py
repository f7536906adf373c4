"""Engine configuration for fleetsync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from .constants import (
    ALERT_DURATION,
    CONNECTION_TIMEOUT,
    HEARTBEAT_INTERVAL,
    NOTIFICATION_LIMIT,
    RECONNECT_DELAY,
    RECONNECT_MAX_ATTEMPTS,
    STABLE_CONNECTION_AFTER,
)
from .types import ReconnectConfig


def _env_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Synchronization engine configuration.

    Parameters
    ----------
    url : str
        Push endpoint, e.g. ``"wss://console.example.com/ws?type=frontend"``.
        The credential is appended as a ``token`` query parameter.
    heartbeat_interval : float
        Seconds between keepalive ``ping`` frames.
    reconnect_delay : float
        Fixed delay before each reconnect attempt.
    max_reconnect_attempts : int
        Consecutive reconnect attempts before giving up.
    stable_after : float
        Seconds a connection must stay open before the attempt counter
        resets.
    pong_timeout : float or None
        When set, a connection that delivers no inbound frame within this
        many seconds after a ping is treated as dead and retried. ``None``
        disables half-open detection.
    connect_timeout : float
        Seconds to wait for the transport to open.
    notification_limit : int
        Maximum notifications retained.
    alert_duration : float
        Seconds non-critical alerts stay visible.
    extra_headers : dict
        Additional HTTP headers for the handshake.
    """

    url: str
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    reconnect_delay: float = RECONNECT_DELAY
    max_reconnect_attempts: int = RECONNECT_MAX_ATTEMPTS
    stable_after: float = STABLE_CONNECTION_AFTER
    pong_timeout: float | None = None
    connect_timeout: float = CONNECTION_TIMEOUT
    notification_limit: int = NOTIFICATION_LIMIT
    alert_duration: float = ALERT_DURATION
    extra_headers: dict[str, str] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("url must be non-empty")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")
        if self.notification_limit <= 0:
            raise ValueError("notification_limit must be positive")
        if self.heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive")

    @property
    def reconnect(self) -> ReconnectConfig:
        return ReconnectConfig(
            delay=self.reconnect_delay,
            max_attempts=self.max_reconnect_attempts,
            stable_after=self.stable_after,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Reads ``FLEETSYNC_URL`` and the optional ``FLEETSYNC_*`` variables
        below. Explicit keyword arguments override environment values.

        Returns
        -------
        SyncConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_FLOAT_MAP = {
            "FLEETSYNC_HEARTBEAT_INTERVAL": "heartbeat_interval",
            "FLEETSYNC_RECONNECT_DELAY": "reconnect_delay",
            "FLEETSYNC_STABLE_AFTER": "stable_after",
            "FLEETSYNC_PONG_TIMEOUT": "pong_timeout",
            "FLEETSYNC_CONNECT_TIMEOUT": "connect_timeout",
            "FLEETSYNC_ALERT_DURATION": "alert_duration",
        }
        _ENV_INT_MAP = {
            "FLEETSYNC_MAX_RECONNECT_ATTEMPTS": "max_reconnect_attempts",
            "FLEETSYNC_NOTIFICATION_LIMIT": "notification_limit",
        }

        config_kwargs: dict[str, Any] = {}
        url = env.get("FLEETSYNC_URL")
        if url is not None:
            config_kwargs["url"] = url
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = _env_float(env.get(env_key))
            if val is not None:
                config_kwargs[field_name] = val
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and val.strip():
                config_kwargs[field_name] = int(val)

        config_kwargs.update(overrides)
        if "url" not in config_kwargs:
            raise ValueError("FLEETSYNC_URL is not set and no url override given")

        return cls(**config_kwargs)
