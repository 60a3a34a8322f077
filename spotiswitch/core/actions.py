#!/usr/bin/env python3
"""
🎛️ User commands against the Spotify player
Each command sends exactly one mutating request (``toggle_like`` reads the
liked flag first) and is never retried. Success schedules a short-delay
re-poll; a 429 raises the soft cooldown and the transient status line.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional

from ..api.spotify import REPEAT_MODES, ApiResponse, SpotifyWebClient, parse_liked_flags
from ..utils.logger import log_structured
from .auth import AuthManager
from .devices import DeviceRef, DeviceStore
from .errors import NetworkError, ParseError
from .history import TrackHistoryCache
from .playback_state import (
    NETWORK_ERROR,
    NOTHING_PLAYING,
    PARSE_ERROR,
    PLEASE_AUTHORIZE,
    RATE_LIMITED,
    Playing,
    PlaybackStateStore,
)
from .poller import PlaybackPoller
from .rate_limit import RateLimitGovernor

logger = logging.getLogger("spotiswitch.actions")

DEFAULT_REFETCH_DELAY = 0.5


@dataclass(frozen=True)
class ActionResult:
    ok: bool
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {"ok": self.ok, "message": self.message}


class PlaybackActionGateway:
    """Playback commands sharing the poller's token and rate-limit plumbing."""

    def __init__(
        self,
        client: SpotifyWebClient,
        auth: AuthManager,
        governor: RateLimitGovernor,
        store: PlaybackStateStore,
        history: TrackHistoryCache,
        poller: PlaybackPoller,
        device_store: DeviceStore,
        *,
        refetch_delay: float = DEFAULT_REFETCH_DELAY,
    ):
        self._client = client
        self._auth = auth
        self._governor = governor
        self._store = store
        self._history = history
        self._poller = poller
        self._device_store = device_store
        self.refetch_delay = refetch_delay
        self._lock = threading.Lock()
        self._default_device: Optional[DeviceRef] = None

    @property
    def default_device(self) -> Optional[DeviceRef]:
        with self._lock:
            return self._default_device

    def restore_default_device(self) -> Optional[DeviceRef]:
        device = self._device_store.load()
        with self._lock:
            self._default_device = device
        return device

    def forget_default_device(self) -> None:
        with self._lock:
            self._default_device = None
        self._device_store.delete()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    def _access_token(self) -> Optional[str]:
        token = self._auth.current_token()
        if token is None:
            return None
        if self._auth.is_expired(token):
            # The poller owns refresh; nudge it instead of acting on a stale token.
            self._poller.schedule_fetch(0)
            return None
        return token.access_token

    def _failure(self, command: str, response: ApiResponse) -> ActionResult:
        if response.status == 429:
            self._governor.note_rate_limited(soft=True, retry_after=None)
            self._store.set_status(RATE_LIMITED)
            logger.warning("actions.rate_limited", extra={"command": command})
            return ActionResult(False, RATE_LIMITED)
        if response.status == 401:
            logger.info("actions.unauthorized", extra={"command": command})
            self._poller.schedule_fetch(0)
            return ActionResult(False)
        logger.warning("actions.http_error", extra={"command": command, "status": response.status})
        return ActionResult(False, f"HTTP {response.status}")

    def _run(
        self,
        command: str,
        call: Callable[[str], ApiResponse],
        on_success: Optional[Callable[[], None]] = None,
    ) -> ActionResult:
        access_token = self._access_token()
        if access_token is None:
            return ActionResult(False, PLEASE_AUTHORIZE)
        try:
            response = call(access_token)
        except NetworkError:
            return ActionResult(False, NETWORK_ERROR)
        if not response.ok:
            return self._failure(command, response)

        if on_success is not None:
            on_success()
        self._poller.schedule_fetch(self.refetch_delay)
        logger.info("🎛️ Command done", extra={"command": command})
        return ActionResult(True)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def play_pause(self) -> ActionResult:
        state = self._store.current
        if isinstance(state, Playing) and state.is_actually_playing:
            return self._run("pause", self._client.pause)
        return self._run("play", self._client.play)

    def next_track(self) -> ActionResult:
        return self._run("next", self._client.next_track)

    def previous_track(self) -> ActionResult:
        return self._run("previous", self._client.previous_track)

    def set_shuffle(self, enabled: bool) -> ActionResult:
        return self._run("shuffle", lambda t: self._client.set_shuffle(t, bool(enabled)))

    def set_repeat(self, mode: str) -> ActionResult:
        if mode not in REPEAT_MODES:
            raise ValueError(f"repeat mode must be one of {REPEAT_MODES}, got {mode!r}")
        return self._run("repeat", lambda t: self._client.set_repeat(t, mode))

    def set_volume(self, volume_percent: int) -> ActionResult:
        if isinstance(volume_percent, bool) or not isinstance(volume_percent, int):
            raise ValueError(f"volume must be an integer, got {volume_percent!r}")
        if not 0 <= volume_percent <= 100:
            raise ValueError(f"volume must be 0-100, got {volume_percent}")
        return self._run("volume", lambda t: self._client.set_volume(t, volume_percent))

    def play_uri(self, uri: str) -> ActionResult:
        """Start playing one track, e.g. a history entry."""
        if not uri:
            raise ValueError("uri is required")
        return self._run("play_uri", lambda t: self._client.play(t, [uri]))

    def add_to_playlist(self, playlist_id: str) -> ActionResult:
        track = self._store.current_track()
        if track is None:
            return ActionResult(False, NOTHING_PLAYING)
        return self._run("add_to_playlist", lambda t: self._client.add_to_playlist(t, playlist_id, [track.uri]))

    def transfer_to(self, device_id: str, name: Optional[str] = None, play: bool = True) -> ActionResult:
        device = DeviceRef(id=device_id, name=name or device_id)

        def remember() -> None:
            with self._lock:
                self._default_device = device
            self._device_store.save(device)
            log_structured(logger, logging.INFO, "🔈 Playback transferred", device_id=device.id, device_name=device.name)

        return self._run("transfer", lambda t: self._client.transfer_playback(t, device_id, play), remember)

    def toggle_like(self) -> ActionResult:
        """Read the liked flag from the API, then flip it."""
        track = self._store.current_track()
        if track is None:
            return ActionResult(False, NOTHING_PLAYING)
        access_token = self._access_token()
        if access_token is None:
            return ActionResult(False, PLEASE_AUTHORIZE)

        try:
            read = self._client.tracks_contain(access_token, [track.id])
        except NetworkError:
            return ActionResult(False, NETWORK_ERROR)
        if not read.ok:
            return self._failure("like.read", read)
        try:
            currently_liked = parse_liked_flags(read.json(), [track.id])[track.id]
        except ParseError:
            return ActionResult(False, PARSE_ERROR)

        liked = not currently_liked
        write = self._client.remove_tracks if currently_liked else self._client.save_tracks

        def apply() -> None:
            self._history.annotate_liked(track.id, liked)
            self._store.update_playing(
                lambda s: replace(s, is_liked=liked, track=s.track.with_liked(liked))
                if s.track.id == track.id else s
            )

        return self._run("like" if liked else "unlike", lambda t: write(t, [track.id]), apply)
