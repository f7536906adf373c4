# =============================================================================
# fleetsync -- Error Types
# =============================================================================


class FleetSyncError(Exception):
    """Base exception for all fleetsync errors."""


class TransportError(FleetSyncError):
    """Connection failed to open or closed abnormally."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class AuthFailure(FleetSyncError):
    """Authentication rejected or credential expired. Never retried."""


class DecodeError(FleetSyncError):
    """Malformed inbound frame."""


class CommandFailure(FleetSyncError):
    """A remote device command reported failure."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"{command} failed: {reason}")
