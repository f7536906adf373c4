# =============================================================================
# fleetsync -- Auth Collaborator
# =============================================================================
#
# The engine never issues credentials. It asks the auth subsystem for the
# current credential, checks freshness before every connect attempt and asks
# it to log out on terminal authentication failure.
# =============================================================================

from __future__ import annotations

import time
from typing import Callable, Protocol, runtime_checkable

import jwt

from ._logging import logger


@runtime_checkable
class AuthProvider(Protocol):
    """Protocol the host's auth subsystem implements."""

    def current_credential(self) -> str | None:
        """Return the credential used to open the push connection."""
        ...

    def is_expired(self, credential: str) -> bool:
        """Return True when *credential* must not be used any more."""
        ...

    def logout(self) -> None:
        """Invalidate the cached session (global logout)."""
        ...


class JwtAuthProvider:
    """Auth provider backed by a bearer JWT issued elsewhere.

    Expiry is read from the ``exp`` claim without verifying the signature;
    the server verifies it. Tokens that cannot be decoded, or that carry no
    ``exp`` claim, are treated as expired and not expired respectively.

    Args:
        token: The current JWT, or ``None`` when logged out.
        leeway: Seconds subtracted from ``exp`` so a token about to expire
            is not used for a fresh connection.
        on_logout: Called after the token is cleared.
        clock: Returns epoch seconds.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        leeway: float = 0.0,
        on_logout: Callable[[], object] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._token = token
        self._leeway = leeway
        self._on_logout = on_logout
        self._clock = clock

    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token

    def current_credential(self) -> str | None:
        return self._token

    def is_expired(self, credential: str) -> bool:
        try:
            claims = jwt.decode(
                credential,
                options={"verify_signature": False, "verify_exp": False},
            )
        except jwt.InvalidTokenError as exc:
            logger.warning("Undecodable credential treated as expired: %s", exc)
            return True

        exp = claims.get("exp")
        if exp is None:
            return False
        try:
            return self._clock() >= float(exp) - self._leeway
        except (TypeError, ValueError):
            return True

    def logout(self) -> None:
        self._token = None
        logger.info("Session invalidated")
        if self._on_logout is not None:
            self._on_logout()
