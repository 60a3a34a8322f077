"""Recently played cache: ordering, dedupe, liked flags and persistence."""

import pytest

from spotiswitch.api.spotify import SpotifyWebClient
from spotiswitch.core.history import TrackHistoryCache, check_liked_batch
from spotiswitch.core.playback_state import Track
from spotiswitch.core.rate_limit import RateLimitGovernor

from .fakes import FakeResponse, FakeSession, ManualClock, TimerRecorder, plain_blob_store


def make_track(n, liked=False):
    return Track(id=f"t{n}", title=f"Song {n}", artist_name="Artist", uri=f"spotify:track:t{n}", is_liked=liked)


def uris(tracks):
    return [t.uri for t in tracks]


@pytest.fixture
def history(tmp_path):
    return TrackHistoryCache(10, plain_blob_store(tmp_path, "history"))


def test_capacity_outside_bounds_is_rejected():
    with pytest.raises(ValueError):
        TrackHistoryCache(9)
    with pytest.raises(ValueError):
        TrackHistoryCache(51)


def test_record_playing_moves_track_to_front(history):
    for n in (1, 2, 3):
        history.record_playing(make_track(n))
    history.record_playing(make_track(1))

    assert uris(history.snapshot()) == ["spotify:track:t1", "spotify:track:t3", "spotify:track:t2"]


def test_history_is_bounded(history):
    for n in range(15):
        history.record_playing(make_track(n))

    snapshot = history.snapshot()
    assert len(snapshot) == 10
    assert snapshot[0].id == "t14"
    assert snapshot[-1].id == "t5"


def test_merge_keeps_local_order_and_local_entries_win(history):
    history.record_playing(make_track(2, liked=True))
    history.record_playing(make_track(1))

    history.merge_remote([make_track(3), make_track(2, liked=False), make_track(4)])

    snapshot = history.snapshot()
    assert [t.id for t in snapshot] == ["t1", "t2", "t3", "t4"]
    assert snapshot[1].is_liked is True


def test_annotate_liked_updates_matching_entries_only(history):
    history.record_playing(make_track(1))
    history.record_playing(make_track(2))

    history.annotate_liked("t1", True)

    flags = {t.id: t.is_liked for t in history.snapshot()}
    assert flags == {"t1": True, "t2": False}


def test_listeners_fire_only_on_change(history):
    seen = []
    history.add_listener(seen.append)

    history.record_playing(make_track(1))
    history.record_playing(make_track(1))
    history.annotate_liked("t1", False)
    history.annotate_liked("missing", True)
    assert len(seen) == 1

    history.annotate_liked("t1", True)
    assert len(seen) == 2
    assert seen[-1][0].is_liked


def test_apply_liked_flags(history):
    history.merge_remote([make_track(1), make_track(2)])
    history.apply_liked_flags({"t2": True})

    assert [t.is_liked for t in history.snapshot()] == [False, True]


def test_persist_and_restore(tmp_path, history):
    history.record_playing(make_track(1, liked=True))
    history.record_playing(make_track(2))
    history.persist()

    restored = TrackHistoryCache(10, plain_blob_store(tmp_path, "history"))
    restored.restore()

    assert uris(restored.snapshot()) == uris(history.snapshot())
    assert restored.snapshot()[1].is_liked


def test_corrupt_history_restores_empty_and_is_deleted(tmp_path):
    (tmp_path / "history.enc").write_bytes(b"not sealed")
    history = TrackHistoryCache(10, plain_blob_store(tmp_path, "history"))

    assert history.restore() == ()
    assert not (tmp_path / "history.enc").exists()


def test_clear_and_delete_persisted(tmp_path, history):
    history.record_playing(make_track(1))
    history.persist()

    history.clear()
    history.delete_persisted()

    assert history.snapshot() == ()
    assert not (tmp_path / "history.enc").exists()


class TestCheckLikedBatch:
    @pytest.fixture
    def governor(self):
        return RateLimitGovernor(60, 3, clock=ManualClock(), timer_factory=TimerRecorder())

    def test_ids_are_asked_in_chunks(self, governor):
        session = FakeSession().add(
            "GET", "/me/tracks/contains",
            FakeResponse(200, [True, False]),
            FakeResponse(200, [True]),
        )
        client = SpotifyWebClient(lambda: session)

        flags = check_liked_batch(client, governor, "token", ["a", "b", "c", "a"], batch_size=2)

        assert flags == {"a": True, "b": False, "c": True}
        calls = session.calls_to("GET", "/me/tracks/contains")
        assert [c["params"]["ids"] for c in calls] == ["a,b", "c"]

    def test_rate_limit_stops_and_keeps_earlier_chunks(self, governor):
        session = FakeSession().add(
            "GET", "/me/tracks/contains",
            FakeResponse(200, [True, True]),
            FakeResponse(429, headers={"Retry-After": "90"}),
        )
        client = SpotifyWebClient(lambda: session)

        flags = check_liked_batch(client, governor, "token", ["a", "b", "c", "d", "e"], batch_size=2)

        assert flags == {"a": True, "b": True}
        assert len(session.calls) == 2
        assert governor.is_limited()
        assert governor.remaining() == pytest.approx(90.0)

    def test_failed_chunk_is_skipped(self, governor):
        session = FakeSession().add(
            "GET", "/me/tracks/contains",
            FakeResponse(500),
            FakeResponse(200, [False]),
        )
        client = SpotifyWebClient(lambda: session)

        flags = check_liked_batch(client, governor, "token", ["a", "b", "c"], batch_size=2)

        assert flags == {"c": False}
