"""Process-wide HTTP 429 governor.

A 429 from any endpoint means the whole client id is throttled, so there is
one governor shared by the poller and the action gateway. The poll path backs
off for ``poll_cooldown`` seconds; one-off user actions only raise a short
``soft_cooldown`` indicator. The limit clears on a timer and also lazily on
the next ``is_limited`` check, whichever comes first.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

logger = logging.getLogger("spotiswitch.rate_limit")

DEFAULT_POLL_COOLDOWN = 60.0
DEFAULT_SOFT_COOLDOWN = 3.0

TimerFactory = Callable[[float, Callable[[], None]], Any]


@dataclass(frozen=True)
class RateLimitState:
    """Snapshot of the governor."""

    is_limited: bool
    resume_at: Optional[float] = None


class RateLimitGovernor:
    """Tracks ``Normal`` / ``Limited(until)`` and notifies on limit and clear."""

    def __init__(
        self,
        poll_cooldown: float = DEFAULT_POLL_COOLDOWN,
        soft_cooldown: float = DEFAULT_SOFT_COOLDOWN,
        *,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.poll_cooldown = float(poll_cooldown)
        self.soft_cooldown = float(soft_cooldown)
        self._clock = clock
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._resume_at: Optional[float] = None
        self._timer: Any = None
        self._listeners: List[Callable[[], None]] = []
        self._limit_listeners: List[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def note_rate_limited(self, soft: bool = False, retry_after: Optional[float] = None) -> float:
        """Record a 429 and return the resulting ``resume_at``.

        ``retry_after`` (from the response header) can only lengthen the poll
        cooldown. A soft limit never shortens an existing longer one.
        """
        cooldown = self.soft_cooldown if soft else self.poll_cooldown
        if retry_after is not None and not soft:
            cooldown = max(cooldown, float(retry_after))

        with self._lock:
            candidate = self._clock() + cooldown
            if self._resume_at is not None and self._resume_at >= candidate:
                return self._resume_at
            self._resume_at = candidate
            self._schedule_locked(cooldown, candidate)

        logger.warning(
            "rate_limit.limited",
            extra={"cooldown": cooldown, "soft": soft, "retry_after": retry_after},
        )
        self._fire(self._limit_listeners)
        return candidate

    def is_limited(self) -> bool:
        self.check_expired()
        with self._lock:
            return self._resume_at is not None

    def state(self) -> RateLimitState:
        self.check_expired()
        with self._lock:
            return RateLimitState(is_limited=self._resume_at is not None, resume_at=self._resume_at)

    def remaining(self) -> float:
        """Seconds until ``Normal``; 0.0 when not limited."""
        with self._lock:
            if self._resume_at is None:
                return 0.0
            return max(0.0, self._resume_at - self._clock())

    def check_expired(self) -> bool:
        """Clear an elapsed limit. Returns True if this call cleared it."""
        with self._lock:
            if self._resume_at is None or self._clock() < self._resume_at:
                return False
            self._clear_locked()
        self._fire_cleared()
        return True

    def add_clear_listener(self, listener: Callable[[], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def add_limit_listener(self, listener: Callable[[], None]) -> None:
        """Called after a 429 starts or extends a limit."""
        with self._lock:
            self._limit_listeners.append(listener)

    def reset(self) -> None:
        """Drop any limit without notifying listeners."""
        with self._lock:
            self._clear_locked()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _schedule_locked(self, delay: float, resume_at: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        timer = self._timer_factory(delay, lambda: self._expire(resume_at))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _expire(self, scheduled_for: float) -> None:
        with self._lock:
            # A later 429 moved the deadline; its own timer will clear it.
            if self._resume_at != scheduled_for:
                return
            self._clear_locked()
        self._fire_cleared()

    def _clear_locked(self) -> None:
        self._resume_at = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire_cleared(self) -> None:
        logger.info("rate_limit.cleared")
        self._fire(self._listeners)

    def _fire(self, registered: List[Callable[[], None]]) -> None:
        with self._lock:
            listeners = list(registered)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("rate_limit.listener.failed")
