"""Shared pytest fixtures for the SpotiSwitch test suite."""

from __future__ import annotations

import pytest

from spotiswitch.api.oauth import OAuthClient
from spotiswitch.api.spotify import SpotifyWebClient
from spotiswitch.config_schema import SpotiSwitchConfig
from spotiswitch.core.actions import PlaybackActionGateway
from spotiswitch.core.auth import AuthManager
from spotiswitch.core.devices import DeviceStore
from spotiswitch.core.history import TrackHistoryCache
from spotiswitch.core.playback_state import PlaybackStateStore
from spotiswitch.core.poller import PlaybackPoller
from spotiswitch.core.rate_limit import RateLimitGovernor
from spotiswitch.services.player_service import PlayerService
from spotiswitch.utils.token_store import Token, TokenStore

from .fakes import REDIRECT_URI, FakeSession, ManualClock, TimerRecorder, plain_blob_store


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def wall_clock() -> ManualClock:
    return ManualClock(1_700_000_000.0)


@pytest.fixture
def mono_clock() -> ManualClock:
    return ManualClock(500.0)


@pytest.fixture
def timers() -> TimerRecorder:
    return TimerRecorder()


class PlaybackStack:
    """The playback components wired the way PlayerService wires them."""

    def __init__(self, session, wall_clock, mono_clock, timers, data_dir):
        self.session = session
        self.wall_clock = wall_clock
        self.mono_clock = mono_clock
        self.timers = timers
        self.governor = RateLimitGovernor(60, 3, clock=mono_clock, timer_factory=timers)
        self.client = SpotifyWebClient(lambda: session)
        self.token_store = TokenStore(plain_blob_store(data_dir, "token"), clock=wall_clock)
        self.auth = AuthManager(
            self.token_store,
            OAuthClient("client-123", REDIRECT_URI, lambda: session),
            self.governor,
            ["user-read-playback-state"],
            clock=wall_clock,
        )
        self.history = TrackHistoryCache(20, plain_blob_store(data_dir, "history"))
        self.store = PlaybackStateStore()
        self.poller = PlaybackPoller(
            self.client,
            self.auth,
            self.governor,
            self.history,
            self.store,
            timer_factory=timers,
        )
        self.device_store = DeviceStore(plain_blob_store(data_dir, "device"))
        self.gateway = PlaybackActionGateway(
            self.client,
            self.auth,
            self.governor,
            self.store,
            self.history,
            self.poller,
            self.device_store,
            refetch_delay=0.5,
        )

    def authorize(self, access_token="access-1", refresh_token="refresh-1", expires_in=3600.0) -> Token:
        token = Token(access_token, refresh_token, self.wall_clock() + expires_in)
        self.token_store.save(token)
        self.auth.load()
        return token


@pytest.fixture
def stack(session, wall_clock, mono_clock, timers, tmp_path):
    playback = PlaybackStack(session, wall_clock, mono_clock, timers, tmp_path)
    yield playback
    playback.poller.stop()


@pytest.fixture
def make_service(session, wall_clock, mono_clock, timers, tmp_path):
    """Build PlayerService instances on fakes; all are stopped at teardown."""
    created = []

    def factory(client_id="client-123", config_overrides=None, **kwargs):
        config = SpotiSwitchConfig(
            client_id=client_id,
            data_dir=str(tmp_path),
            redirect_uri=REDIRECT_URI,
            **(config_overrides or {}),
        )
        service = PlayerService(
            config,
            data_dir=tmp_path,
            session_provider=lambda: session,
            blob_store_factory=plain_blob_store,
            clock=wall_clock,
            monotonic=mono_clock,
            timer_factory=timers,
            **kwargs,
        )
        created.append(service)
        return service

    yield factory
    for service in created:
        service.stop()

