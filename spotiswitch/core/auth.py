#!/usr/bin/env python3
"""
🔑 OAuth token lifecycle for SpotiSwitch
Holds the in-memory token, runs the PKCE authorization flow and performs
single-flight refreshes. A 400 from the refresh endpoint is the only path
that deletes the stored token.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Sequence

from ..api.oauth import OAuthClient, PkceRequest, build_authorize_url
from ..utils.token_store import Token, TokenStore
from .errors import AuthError, NetworkError, ParseError, RateLimited
from .rate_limit import RateLimitGovernor

logger = logging.getLogger("spotiswitch.auth")


class RefreshOutcome(Enum):
    REFRESHED = "refreshed"
    BUSY = "busy"                  # another refresh holds the lock
    REAUTHORIZE = "reauthorize"    # token gone, user must authorize again
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"              # transient; next tick retries


class AuthManager:
    """Thread-safe owner of the current token.

    Args:
        token_store: Encrypted persistence for the token record
        oauth: Token endpoint client
        governor: Shared 429 governor
        scopes: OAuth scopes requested at authorization
        clock: Wall-clock source used for expiry
    """

    def __init__(
        self,
        token_store: TokenStore,
        oauth: OAuthClient,
        governor: RateLimitGovernor,
        scopes: Sequence[str],
        clock: Callable[[], float] = time.time,
    ):
        self._store = token_store
        self._oauth = oauth
        self._governor = governor
        self._scopes = list(scopes)
        self._clock = clock
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._token: Optional[Token] = None
        self._pending: Optional[PkceRequest] = None
        self._metrics = {
            "refresh_attempts": 0,
            "refresh_successes": 0,
            "refresh_failures": 0,
        }

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------
    def load(self) -> Optional[Token]:
        """Restore the persisted token into memory."""
        token = self._store.load()
        with self._lock:
            self._token = token
        if token is None:
            logger.info("🔐 No stored token - authorization required")
        else:
            logger.info("🔐 Token restored", extra={"expires_in": self._store.time_until_expiry(token)})
        return token

    def current_token(self) -> Optional[Token]:
        with self._lock:
            return self._token

    def is_expired(self, token: Optional[Token] = None) -> bool:
        return self._store.is_expired(token if token is not None else self.current_token())

    def valid_access_token(self) -> Optional[str]:
        """Access token if one exists and has not expired."""
        token = self.current_token()
        if token is None or self._store.is_expired(token):
            return None
        return token.access_token

    def refresh_in_flight(self) -> bool:
        return self._refresh_lock.locked()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------
    def refresh(self) -> RefreshOutcome:
        """Refresh the access token unless a refresh is already running."""
        if not self._refresh_lock.acquire(blocking=False):
            logger.debug("auth.refresh.busy")
            return RefreshOutcome.BUSY
        try:
            return self._refresh_locked()
        finally:
            self._refresh_lock.release()

    def _refresh_locked(self) -> RefreshOutcome:
        current = self.current_token()
        if current is None or not current.refresh_token:
            # Nothing to refresh with; the stored record is left for a 400 to remove.
            logger.warning("auth.refresh.no_refresh_token")
            return RefreshOutcome.REAUTHORIZE

        with self._lock:
            self._metrics["refresh_attempts"] += 1

        try:
            response = self._oauth.refresh(current.refresh_token)
        except NetworkError as exc:
            self._count_failure()
            logger.warning("auth.refresh.network_error", extra={"error": str(exc)})
            return RefreshOutcome.FAILED

        if response.status == 400:
            self._count_failure()
            logger.error("auth.refresh.rejected", extra={"status": response.status})
            self.invalidate()
            return RefreshOutcome.REAUTHORIZE
        if response.status == 429:
            self._count_failure()
            self._governor.note_rate_limited(retry_after=response.retry_after())
            return RefreshOutcome.RATE_LIMITED
        if not response.ok:
            self._count_failure()
            logger.warning("auth.refresh.http_error", extra={"status": response.status})
            return RefreshOutcome.FAILED

        try:
            token = Token.from_token_response(
                response.json(),
                previous_refresh_token=current.refresh_token,
                now=self._clock(),
            )
        except (ParseError, KeyError, TypeError, ValueError) as exc:
            self._count_failure()
            logger.error("auth.refresh.parse_error", extra={"error": str(exc)})
            return RefreshOutcome.FAILED

        self._install(token)
        with self._lock:
            self._metrics["refresh_successes"] += 1
        logger.info("✅ Token refreshed", extra={"expires_in": self._store.time_until_expiry(token)})
        return RefreshOutcome.REFRESHED

    def _count_failure(self) -> None:
        with self._lock:
            self._metrics["refresh_failures"] += 1

    def _install(self, token: Token) -> None:
        with self._lock:
            self._token = token
        self._store.save(token)

    def invalidate(self) -> None:
        """Forget and delete the token; the user has to authorize again."""
        with self._lock:
            self._token = None
        self._store.delete()
        logger.info("🗑️ Token invalidated")

    # ------------------------------------------------------------------
    # Authorization (PKCE)
    # ------------------------------------------------------------------
    def begin_authorization(self) -> str:
        """Start a PKCE flow and return the consent-page URL."""
        pkce = PkceRequest()
        with self._lock:
            self._pending = pkce
        return build_authorize_url(self._oauth.client_id, self._oauth.redirect_uri, self._scopes, pkce)

    def complete_authorization(self, code: str, state: str) -> Token:
        """Exchange the callback ``code`` for a token and persist it.

        Raises:
            AuthError: No pending flow, ``state`` mismatch or rejected code
            RateLimited: Token endpoint answered 429
            NetworkError: Token endpoint unreachable
        """
        with self._lock:
            pending = self._pending
        if pending is None:
            raise AuthError("no authorization in progress")
        if state != pending.state:
            raise AuthError("state mismatch in OAuth callback")

        response = self._oauth.exchange_code(code, pending.verifier)
        if response.status == 429:
            self._governor.note_rate_limited(retry_after=response.retry_after())
            raise RateLimited(response.retry_after())
        if not response.ok:
            raise AuthError(f"code exchange failed (HTTP {response.status})")

        try:
            token = Token.from_token_response(response.json(), now=self._clock())
        except (ParseError, KeyError, TypeError, ValueError) as exc:
            raise AuthError(f"code exchange returned an unusable token: {exc}") from exc

        self._install(token)
        with self._lock:
            self._pending = None
        logger.info("✅ Authorization complete")
        return token

    def get_auth_info(self) -> dict:
        token = self.current_token()
        with self._lock:
            metrics = dict(self._metrics)
            pending = self._pending is not None
        return {
            "authorized": token is not None,
            "expired": self.is_expired(token) if token else None,
            "expires_in": self._store.time_until_expiry(token) if token else None,
            "authorization_pending": pending,
            **metrics,
        }
