#!/usr/bin/env python3
"""
🔄 Playback poller for SpotiSwitch
Fetches the currently playing track on a fixed interval and turns the answer
into a PlaybackState. At most one fetch runs at a time; a tick that finds a
fetch in flight, a refresh in flight or an active rate limit is dropped.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..api.spotify import SpotifyWebClient, parse_currently_playing, parse_recently_played
from ..utils.artwork import resize_artwork
from .auth import AuthManager, RefreshOutcome
from .errors import NetworkError, ParseError
from .history import TrackHistoryCache, check_liked_batch
from .playback_state import (
    AUTH_REFRESH_FAILED,
    NETWORK_ERROR,
    NOTHING_PLAYING,
    PARSE_ERROR,
    PLEASE_AUTHORIZE,
    Error,
    NotPlaying,
    Playing,
    PlaybackState,
    PlaybackStateStore,
    Track,
)
from .rate_limit import RateLimitGovernor, TimerFactory

logger = logging.getLogger("spotiswitch.poller")

DEFAULT_POLL_INTERVAL = 15.0


def _timer_done(timer: Any) -> bool:
    finished = getattr(timer, "finished", None)
    return finished is not None and finished.is_set()


class PollerPhase(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    COOLING = "cooling"


class PlaybackPoller:
    """Timer-driven single-flight fetch loop.

    Args:
        client: Web API client
        auth: Token owner; refreshes on expiry or 401
        governor: Shared 429 governor
        history: Recently played cache updated on track changes
        store: Owner of the current PlaybackState
        interval: Seconds between ticks
        enrichment_workers: Threads for the liked/artwork scatter-gather
        artwork_size: Edge length of the resized artwork
        recently_played_limit: ``limit`` for the recently-played feed
        liked_batch_size: Ids per ``/me/tracks/contains`` call
        timer_factory: ``threading.Timer`` compatible factory
    """

    def __init__(
        self,
        client: SpotifyWebClient,
        auth: AuthManager,
        governor: RateLimitGovernor,
        history: TrackHistoryCache,
        store: PlaybackStateStore,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        enrichment_workers: int = 2,
        artwork_size: int = 16,
        recently_played_limit: int = 20,
        liked_batch_size: int = 50,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self._client = client
        self._auth = auth
        self._governor = governor
        self._history = history
        self._store = store
        self.interval = float(interval)
        self._artwork_size = artwork_size
        self._recently_played_limit = recently_played_limit
        self._liked_batch_size = liked_batch_size
        self._timer_factory = timer_factory

        self._executor = ThreadPoolExecutor(
            max_workers=max(1, enrichment_workers),
            thread_name_prefix="spotiswitch-enrich",
        )
        self._fetch_lock = threading.Lock()
        self._lock = threading.Lock()
        self._wake_event = threading.Event()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._pending_timers: List[Any] = []
        self._last_rendered_uri: Optional[str] = None
        self._artwork_cache: Optional[Tuple[str, bytes]] = None
        self._stats: Dict[str, Any] = {
            "ticks": 0,
            "fetches": 0,
            "dropped_busy": 0,
            "dropped_limited": 0,
            "dropped_refreshing": 0,
            "last_fetch_at": None,
        }

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name="PlaybackPoller", daemon=True)
            self._running = True
            self._thread.start()
        logger.info("🔄 Poller started", extra={"interval": self.interval})

    def stop(self) -> None:
        """Stop the loop and pending timers; in-flight work is not drained."""
        with self._lock:
            self._running = False
            timers, self._pending_timers = self._pending_timers, []
        self._stop_event.set()
        self._wake_event.set()
        for timer in timers:
            timer.cancel()
        self._executor.shutdown(wait=False)
        logger.info("🛑 Poller stopped")

    def wake(self) -> None:
        self._wake_event.set()

    def schedule_fetch(self, delay: float = 0.0) -> None:
        """Ask for a fetch after ``delay`` seconds."""
        with self._lock:
            running = self._running
        if delay <= 0 and running:
            self.wake()
            return
        # Without the loop thread the timer ticks directly.
        timer = self._timer_factory(max(0.0, delay), self.wake if running else self.tick)
        timer.daemon = True
        with self._lock:
            self._pending_timers = [t for t in self._pending_timers if not _timer_done(t)]
            self._pending_timers.append(timer)
        timer.start()

    def _next_delay(self) -> float:
        remaining = self._governor.remaining()
        return remaining if remaining > 0 else self.interval

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self._wake_event.clear()
            try:
                self.tick()
            except Exception:
                logger.exception("poller.tick.unexpected")
            self._wake_event.wait(timeout=self._next_delay())

    @property
    def phase(self) -> PollerPhase:
        if self._fetch_lock.locked():
            return PollerPhase.FETCHING
        if self._governor.is_limited():
            return PollerPhase.COOLING
        return PollerPhase.IDLE

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            running = self._running
        return {"running": running, "phase": self.phase.value, "interval": self.interval, **stats}

    def _bump(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def tick(self) -> bool:
        """Run one fetch unless something makes this tick redundant.

        Returns:
            True if a fetch ran
        """
        self._bump("ticks")
        if self._governor.is_limited():
            self._bump("dropped_limited")
            logger.debug("poller.tick.dropped", extra={"reason": "rate_limited"})
            return False
        if self._auth.refresh_in_flight():
            self._bump("dropped_refreshing")
            logger.debug("poller.tick.dropped", extra={"reason": "refreshing"})
            return False
        if not self._fetch_lock.acquire(blocking=False):
            self._bump("dropped_busy")
            logger.debug("poller.tick.dropped", extra={"reason": "fetch_in_flight"})
            return False
        try:
            self._bump("fetches")
            self._fetch(allow_refresh=True)
            with self._lock:
                self._stats["last_fetch_at"] = time.time()
            return True
        finally:
            self._fetch_lock.release()

    def _emit(self, state: PlaybackState, generation: int) -> bool:
        return self._store.transition(state, expected_generation=generation)

    def _fetch(self, allow_refresh: bool) -> None:
        generation = self._store.generation
        token = self._auth.current_token()
        if token is None:
            self._emit(NotPlaying(PLEASE_AUTHORIZE), generation)
            return
        if self._auth.is_expired(token):
            if allow_refresh:
                self._refresh_then_refetch(generation)
            return

        try:
            response = self._client.currently_playing(token.access_token)
        except NetworkError:
            self._emit(Error(NETWORK_ERROR), generation)
            return

        status = response.status
        if status == 401:
            logger.info("poller.fetch.unauthorized")
            if allow_refresh:
                self._refresh_then_refetch(generation)
            return
        if status == 429:
            self._governor.note_rate_limited(retry_after=response.retry_after())
            logger.warning("poller.fetch.rate_limited")
            return
        if status == 204 or (status == 200 and response.is_empty):
            self._emit(NotPlaying(NOTHING_PLAYING), generation)
            return
        if status != 200:
            self._emit(Error(f"HTTP {status}"), generation)
            return

        try:
            body = response.json()
        except ParseError:
            self._emit(Error(PARSE_ERROR), generation)
            return

        parsed = parse_currently_playing(body)
        if parsed is None:
            self._emit(NotPlaying(NOTHING_PLAYING), generation)
            return
        track, is_playing = parsed
        self._render_playing(track, is_playing, token.access_token, generation)

    def _refresh_then_refetch(self, generation: int) -> None:
        outcome = self._auth.refresh()
        if outcome is RefreshOutcome.REFRESHED:
            self._fetch(allow_refresh=False)
        elif outcome is RefreshOutcome.REAUTHORIZE:
            self._emit(NotPlaying(PLEASE_AUTHORIZE), generation)
        elif outcome is RefreshOutcome.FAILED:
            self._emit(Error(AUTH_REFRESH_FAILED), generation)

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------
    def _check_liked(self, access_token: str, track_id: str) -> bool:
        flags = check_liked_batch(self._client, self._governor, access_token, [track_id], batch_size=1)
        return flags.get(track_id, False)

    def _fetch_artwork(self, url: Optional[str]) -> Optional[bytes]:
        if not url:
            return None
        cached = self._artwork_cache
        if cached is not None and cached[0] == url:
            return cached[1]
        response = self._client.fetch_image(url)
        if not response.ok:
            return None
        art = resize_artwork(response.content, self._artwork_size)
        self._artwork_cache = (url, art)
        return art

    def _gather(self, future: Any, default: Any, name: str) -> Any:
        try:
            return future.result()
        except Exception as exc:
            logger.debug("poller.enrichment.failed", extra={"enrichment": name, "error": str(exc)})
            return default

    def _render_playing(self, track: Track, is_playing: bool, access_token: str, generation: int) -> None:
        liked_future = self._executor.submit(self._check_liked, access_token, track.id)
        art_future = self._executor.submit(self._fetch_artwork, track.artwork_url)
        is_liked = self._gather(liked_future, False, "liked")
        art = self._gather(art_future, None, "artwork")

        if self._store.generation != generation:
            logger.debug("poller.fetch.stale", extra={"track_id": track.id})
            return

        track = track.with_liked(is_liked)
        if not self._emit(Playing(track, is_playing, is_liked, art), generation):
            return

        # Same track as last render: only the liked flag can have changed.
        if track.uri != self._last_rendered_uri:
            self._history.record_playing(track)
        else:
            self._history.annotate_liked(track.id, is_liked)
        self._last_rendered_uri = track.uri

    # ------------------------------------------------------------------
    # Recently played
    # ------------------------------------------------------------------
    def refresh_recently_played(self) -> bool:
        """Merge the remote recently-played feed into history.

        Returns:
            True if the feed was fetched and merged
        """
        access_token = self._auth.valid_access_token()
        if access_token is None or self._governor.is_limited():
            return False
        try:
            response = self._client.recently_played(access_token, self._recently_played_limit)
        except NetworkError:
            return False
        if response.status == 429:
            self._governor.note_rate_limited(retry_after=response.retry_after())
            return False
        if not response.ok:
            logger.warning("poller.recently_played.http_error", extra={"status": response.status})
            return False
        try:
            tracks = parse_recently_played(response.json())
        except ParseError as exc:
            logger.warning("poller.recently_played.parse_error", extra={"error": str(exc)})
            return False

        flags = check_liked_batch(
            self._client,
            self._governor,
            access_token,
            [t.id for t in tracks],
            batch_size=self._liked_batch_size,
        )
        merged = self._history.merge_remote([t.with_liked(flags.get(t.id, False)) for t in tracks])
        logger.info("📜 Recently played merged", extra={"remote": len(tracks), "history": len(merged)})
        return True

    def forget_rendered_track(self) -> None:
        self._last_rendered_uri = None
        self._artwork_cache = None
