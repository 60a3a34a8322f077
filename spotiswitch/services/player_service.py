"""
🎵 Player Service - wires the playback core together
=====================================================

Builds token, history and device stores, the governor, the poller and the
action gateway from configuration, and turns every state, history or rate
limit change into a ``UiSnapshot`` for the menu.
"""

import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from ..api.http import get_http_session
from ..api.oauth import OAuthClient
from ..api.spotify import ApiResponse, SpotifyWebClient, parse_devices, parse_playlists
from ..config import data_dir_path
from ..config_schema import SpotiSwitchConfig
from ..core.actions import ActionResult, PlaybackActionGateway
from ..core.auth import AuthManager
from ..core.devices import DeviceStore
from ..core.errors import AuthError, NetworkError, ParseError, RateLimited
from ..core.history import TrackHistoryCache
from ..core.playback_state import (
    NETWORK_ERROR,
    PLEASE_AUTHORIZE,
    RATE_LIMITED,
    Loading,
    NotPlaying,
    PlaybackState,
    PlaybackStateStore,
    UiSnapshot,
)
from ..core.poller import PlaybackPoller
from ..core.rate_limit import RateLimitGovernor, TimerFactory
from ..core.sample_rate import (
    AudioOutputDevice,
    CommandAudioOutput,
    NowPlayingSource,
    SampleRateMonitor,
    SampleRateSwitcher,
    build_switcher,
)
from ..utils.secure_store import SecureBlobStore
from ..utils.token_store import TokenStore
from . import BaseService, ServiceResult

SnapshotListener = Callable[[UiSnapshot], None]
BlobStoreFactory = Callable[[Path, str], SecureBlobStore]

_ACTION_ERROR_CODES = {
    PLEASE_AUTHORIZE: "AUTH_REQUIRED",
    RATE_LIMITED: "RATE_LIMITED",
    NETWORK_ERROR: "NETWORK_ERROR",
}


class PlayerService(BaseService):
    """Owns the playback components and exposes the UI contract."""

    def __init__(
        self,
        config: SpotiSwitchConfig,
        *,
        data_dir: Optional[Path] = None,
        session_provider: Callable[[], requests.Session] = get_http_session,
        blob_store_factory: BlobStoreFactory = SecureBlobStore.in_directory,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = threading.Timer,
        sample_rate_switcher: Optional[SampleRateSwitcher] = None,
        audio_device: Optional[AudioOutputDevice] = None,
        now_playing: Optional[NowPlayingSource] = None,
        on_quit: Optional[Callable[[], None]] = None,
    ):
        super().__init__("player")
        self.config = config
        self.data_dir = Path(data_dir) if data_dir is not None else data_dir_path(config)
        if sample_rate_switcher is None:
            sample_rate_switcher = self._build_sample_rate_switcher(audio_device, now_playing)
        self.sample_rate_switcher = sample_rate_switcher
        self.sample_rate_monitor = (
            SampleRateMonitor(self.sample_rate_switcher, config.sample_rate_interval)
            if self.sample_rate_switcher is not None
            else None
        )
        self._on_quit = on_quit

        self.governor = RateLimitGovernor(
            config.poll_cooldown,
            config.soft_cooldown,
            clock=monotonic,
            timer_factory=timer_factory,
        )
        self.client = SpotifyWebClient(session_provider)
        self.token_store = TokenStore(blob_store_factory(self.data_dir, "token"), clock=clock)
        self.auth = AuthManager(
            self.token_store,
            OAuthClient(config.client_id, config.redirect_uri, session_provider),
            self.governor,
            config.scopes,
            clock=clock,
        )
        self.history = TrackHistoryCache(config.history_capacity, blob_store_factory(self.data_dir, "history"))
        self.state_store = PlaybackStateStore()
        self.poller = PlaybackPoller(
            self.client,
            self.auth,
            self.governor,
            self.history,
            self.state_store,
            interval=config.poll_interval,
            enrichment_workers=config.enrichment_workers,
            artwork_size=config.artwork_size,
            recently_played_limit=config.recently_played_limit,
            liked_batch_size=config.liked_batch_size,
            timer_factory=timer_factory,
        )
        self.gateway = PlaybackActionGateway(
            self.client,
            self.auth,
            self.governor,
            self.state_store,
            self.history,
            self.poller,
            DeviceStore(blob_store_factory(self.data_dir, "device")),
            refetch_delay=config.refetch_delay,
        )

        self._listeners: List[SnapshotListener] = []
        self._listener_lock = threading.Lock()
        self.quit_event = threading.Event()

        self.governor.add_limit_listener(self._on_rate_limited)
        self.governor.add_clear_listener(self._on_rate_limit_cleared)
        self.state_store.add_listener(self._on_state_changed)
        self.history.add_listener(self._on_history_changed)

    def _build_sample_rate_switcher(
        self,
        audio_device: Optional[AudioOutputDevice],
        now_playing: Optional[NowPlayingSource],
    ) -> Optional[SampleRateSwitcher]:
        """Switcher for an injected device, else for ``sample_rate_command``; None without either."""
        if audio_device is None and self.config.sample_rate_command:
            audio_device = CommandAudioOutput(self.config.sample_rate_command)
        if audio_device is None:
            return None
        return build_switcher(self.data_dir, audio_device, self.config.default_sample_rate, now_playing)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, *, poll: bool = True) -> ServiceResult:
        """Restore persisted records and start polling."""
        token = self.auth.load()
        self.history.restore()
        self.gateway.restore_default_device()
        if token is None:
            self.state_store.transition(NotPlaying(PLEASE_AUTHORIZE))
        if poll:
            self.poller.start()
            if self.sample_rate_monitor is not None:
                self.sample_rate_monitor.start()
            if token is not None:
                self._refresh_history_async()
        self._initialized = True
        self.logger.info("🎵 Player service started", extra={"authorized": token is not None})
        return self._success_result(message="started")

    def stop(self) -> None:
        self.poller.stop()
        if self.sample_rate_monitor is not None:
            self.sample_rate_monitor.stop()
        self.governor.reset()
        try:
            self.history.persist()
        except OSError as e:
            self.logger.warning("Could not persist history on shutdown: %s", e)
        self._initialized = False
        self.logger.info("🛑 Player service stopped")

    def quit(self) -> ServiceResult:
        self.quit_event.set()
        self.stop()
        if self._on_quit is not None:
            self._on_quit()
        return self._success_result(message="bye")

    def _refresh_history_async(self) -> None:
        threading.Thread(
            target=self.poller.refresh_recently_played,
            name="recently-played",
            daemon=True,
        ).start()

    # ------------------------------------------------------------------
    # UI contract
    # ------------------------------------------------------------------
    def snapshot(self, state: Optional[PlaybackState] = None) -> UiSnapshot:
        return UiSnapshot(
            state=state if state is not None else self.state_store.current,
            history=self.history.snapshot(),
            rate_limited=self.governor.is_limited(),
            status_message=self.state_store.status_message,
        )

    def add_listener(self, listener: SnapshotListener) -> None:
        with self._listener_lock:
            self._listeners.append(listener)

    def _publish(self, snapshot: UiSnapshot) -> None:
        with self._listener_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                self.logger.exception("player.listener.failed")

    def _on_state_changed(self, state: PlaybackState) -> None:
        self._publish(self.snapshot(state))

    def _on_history_changed(self, _tracks: Any) -> None:
        try:
            self.history.persist()
        except OSError as e:
            self.logger.warning("Could not persist history: %s", e)
        self._publish(self.snapshot())

    def _on_rate_limited(self) -> None:
        self.state_store.set_status(RATE_LIMITED)

    def _on_rate_limit_cleared(self) -> None:
        # Either path re-emits the last state unchanged.
        if self.state_store.status_message is not None:
            self.state_store.set_status(None)
        else:
            self.state_store.reemit()

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------
    def authorize_url(self) -> str:
        if not self.config.client_id:
            raise AuthError("SPOTIFY_CLIENT_ID is not configured", recoverable=False)
        return self.auth.begin_authorization()

    def complete_authorization(self, code: str, state: str) -> ServiceResult:
        try:
            self.auth.complete_authorization(code, state)
        except RateLimited as e:
            return self._error_result(e.status_message, "RATE_LIMITED")
        except NetworkError as e:
            return self._error_result(e.status_message, "NETWORK_ERROR")
        except AuthError as e:
            self.logger.warning("Authorization failed: %s", e)
            return self._error_result(str(e), "AUTH_FAILED")

        self.poller.forget_rendered_track()
        self.state_store.transition(Loading())
        self.poller.schedule_fetch(0)
        self._refresh_history_async()
        return self._success_result(message="authorized")

    def reset_authorization(self) -> ServiceResult:
        """Forget token, default device and history."""
        self.auth.invalidate()
        self.gateway.forget_default_device()
        self.history.clear()
        self.history.delete_persisted()
        self.poller.forget_rendered_track()
        self.state_store.transition(NotPlaying(PLEASE_AUTHORIZE))
        self.logger.info("🗑️ Authorization and device reset by user")
        return self._success_result(message="authorization reset")

    # ------------------------------------------------------------------
    # Reads for menus
    # ------------------------------------------------------------------
    def _read(self, operation: str, call: Callable[[str], ApiResponse], parse: Callable[[Any], Any]) -> ServiceResult:
        access_token = self.auth.valid_access_token()
        if access_token is None:
            return self._error_result(PLEASE_AUTHORIZE, "AUTH_REQUIRED")
        try:
            response = call(access_token)
        except NetworkError as e:
            return self._error_result(e.status_message, "NETWORK_ERROR")
        if response.status == 429:
            self.governor.note_rate_limited(soft=True)
            return self._error_result(RATE_LIMITED, "RATE_LIMITED")
        if not response.ok:
            return self._error_result(f"HTTP {response.status}", "SPOTIFY_ERROR")
        try:
            return self._success_result(parse(response.json()))
        except ParseError as e:
            self.logger.warning("%s: %s", operation, e)
            return self._error_result(e.status_message, "PARSE_ERROR")

    def list_devices(self) -> ServiceResult:
        result = self._read("list_devices", self.client.devices, parse_devices)
        if result.success:
            default = self.gateway.default_device
            result.data = {
                "devices": result.data,
                "default_device": default.to_dict() if default else None,
            }
        return result

    def list_playlists(self) -> ServiceResult:
        return self._read("list_playlists", self.client.playlists, parse_playlists)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def _commands(self) -> Dict[str, Callable[[Mapping[str, Any]], Any]]:
        gw = self.gateway
        return {
            "play_pause": lambda a: gw.play_pause(),
            "next": lambda a: gw.next_track(),
            "previous": lambda a: gw.previous_track(),
            "shuffle": lambda a: gw.set_shuffle(_require_bool(a, "enabled")),
            "repeat": lambda a: gw.set_repeat(str(a["mode"])),
            "volume": lambda a: gw.set_volume(a["volume_percent"]),
            "toggle_like": lambda a: gw.toggle_like(),
            "add_to_playlist": lambda a: gw.add_to_playlist(str(a["playlist_id"])),
            "transfer": lambda a: gw.transfer_to(
                str(a["device_id"]), a.get("name"), _optional_bool(a, "play", True)
            ),
            "play_uri": lambda a: gw.play_uri(str(a["uri"])),
            "refresh_history": lambda a: self.poller.refresh_recently_played(),
            "authorize": lambda a: self._success_result({"authorize_url": self.authorize_url()}),
            "reset_authorization": lambda a: self.reset_authorization(),
            "quit": lambda a: self.quit(),
        }

    def command_names(self) -> List[str]:
        return sorted(self._commands())

    def run_command(self, name: str, args: Optional[Mapping[str, Any]] = None) -> ServiceResult:
        handler = self._commands().get(name)
        if handler is None:
            return self._error_result(f"Unknown command: {name}", "UNKNOWN_COMMAND")
        try:
            outcome = handler(args or {})
        except KeyError as e:
            return self._error_result(f"Missing argument: {e.args[0]}", "INVALID_ARGUMENT")
        except (TypeError, ValueError) as e:
            return self._error_result(str(e), "INVALID_ARGUMENT")
        except AuthError as e:
            return self._error_result(str(e), "AUTH_REQUIRED")
        except Exception as e:
            return self._handle_error(e, f"run_command.{name}")

        if isinstance(outcome, ServiceResult):
            return outcome
        if isinstance(outcome, ActionResult):
            if outcome.ok:
                return self._success_result(outcome.to_dict(), outcome.message)
            code = _ACTION_ERROR_CODES.get(outcome.message or "", "COMMAND_FAILED")
            return self._error_result(outcome.message or "Command failed", code, outcome.to_dict())
        return self._success_result({"result": outcome})

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def get_status(self) -> Dict[str, Any]:
        limit = self.governor.state()
        return {
            "auth": self.auth.get_auth_info(),
            "poller": self.poller.get_status(),
            "rate_limit": {"is_limited": limit.is_limited, "remaining": round(self.governor.remaining(), 1)},
            "history_size": len(self.history),
        }


def _require_bool(args: Mapping[str, Any], key: str) -> bool:
    value = args[key]
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false")
    return value


def _optional_bool(args: Mapping[str, Any], key: str, default: bool) -> bool:
    if key not in args:
        return default
    return _require_bool(args, key)
