#!/usr/bin/env python3
"""
🎟️ Spotify token persistence for SpotiSwitch
Holds the OAuth access/refresh token pair and its expiry, sealed at rest
through SecureBlobStore. No network calls happen here; refresh lives in
``core.auth``.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from ..core.errors import StorageCorruption
from .secure_store import SecureBlobStore

logger = logging.getLogger("spotiswitch.tokens")


@dataclass(frozen=True)
class Token:
    """OAuth credentials with an absolute expiry timestamp."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None  # Unix timestamp
    scope: Optional[str] = None

    @classmethod
    def from_token_response(
        cls,
        payload: Mapping[str, Any],
        *,
        previous_refresh_token: Optional[str] = None,
        now: Optional[float] = None,
    ) -> "Token":
        """Build a token from an ``/api/token`` response body.

        The refresh endpoint may omit ``refresh_token``; the previous one is
        kept in that case.

        Raises:
            KeyError: ``access_token`` missing
            ValueError: ``expires_in`` not numeric
        """
        received_at = time.time() if now is None else now
        access_token = payload["access_token"]
        if not access_token:
            raise ValueError("empty access_token")
        expires_in = float(payload.get("expires_in", 3600))
        return cls(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or previous_refresh_token,
            expires_at=received_at + max(0.0, expires_in),
            scope=payload.get("scope"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Token":
        expires_at = data.get("expires_at")
        return cls(
            access_token=str(data["access_token"]),
            refresh_token=data.get("refresh_token"),
            expires_at=float(expires_at) if expires_at is not None else None,
            scope=data.get("scope"),
        )


class TokenStore:
    """Encrypted token record with fail-open loading.

    Args:
        blob_store: Backing store for the ``token`` record
        clock: Time source, ``time.time`` unless a test injects one
    """

    def __init__(self, blob_store: SecureBlobStore, clock: Callable[[], float] = time.time):
        self._blob_store = blob_store
        self._clock = clock

    def load(self) -> Optional[Token]:
        """Return the stored token, or ``None`` when absent or corrupt.

        A corrupt record is deleted so the next ``save`` starts clean.
        """
        try:
            data = self._blob_store.read_json()
        except StorageCorruption as e:
            logger.warning("🗑️ Token record corrupt, deleting: %s", e)
            self._blob_store.delete()
            return None

        if data is None:
            return None

        try:
            if not isinstance(data, dict):
                raise TypeError(f"expected object, got {type(data).__name__}")
            return Token.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("🗑️ Token record malformed, deleting: %s", e)
            self._blob_store.delete()
            return None

    def save(self, token: Token) -> None:
        self._blob_store.write_json(token.to_dict())
        logger.debug("💾 Token saved", extra={"expires_in": self.time_until_expiry(token)})

    def delete(self) -> None:
        self._blob_store.delete()

    def is_expired(self, token: Optional[Token]) -> bool:
        """True once ``now >= expires_at``; unknown expiry counts as expired."""
        if token is None or token.expires_at is None:
            return True
        return self._clock() >= token.expires_at

    def time_until_expiry(self, token: Token) -> int:
        if token.expires_at is None:
            return 0
        return max(0, int(token.expires_at - self._clock()))
