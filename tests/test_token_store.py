"""Token persistence and expiry."""

import pytest

from spotiswitch.utils.token_store import Token, TokenStore

from .fakes import ManualClock, plain_blob_store


@pytest.fixture
def clock():
    return ManualClock(1_000.0)


@pytest.fixture
def store(tmp_path, clock):
    return TokenStore(plain_blob_store(tmp_path, "token"), clock=clock)


def test_save_then_load_round_trips(store):
    token = Token("access", "refresh", 4_600.0, "user-read-playback-state")
    store.save(token)

    loaded = store.load()
    assert loaded == token


def test_load_without_record_returns_none(store):
    assert store.load() is None


def test_corrupt_record_is_deleted_and_reads_as_absent(tmp_path, store):
    path = tmp_path / "token.enc"
    path.write_bytes(b"garbage that is not sealed")

    assert store.load() is None
    assert not path.exists()

    token = Token("access", "refresh", 4_600.0)
    store.save(token)
    assert path.exists()
    assert store.load() == token


def test_malformed_record_is_deleted(tmp_path, store):
    plain_blob_store(tmp_path, "token").write_json(["not", "a", "token"])

    assert store.load() is None
    assert not (tmp_path / "token.enc").exists()


def test_record_missing_access_token_is_deleted(tmp_path, store):
    plain_blob_store(tmp_path, "token").write_json({"refresh_token": "r"})

    assert store.load() is None
    assert not (tmp_path / "token.enc").exists()


def test_expiry_follows_the_clock(store, clock):
    token = Token("access", "refresh", expires_at=1_060.0)
    assert not store.is_expired(token)
    assert store.time_until_expiry(token) == 60

    clock.advance(60)
    assert store.is_expired(token)
    assert store.time_until_expiry(token) == 0


def test_unknown_expiry_counts_as_expired(store):
    assert store.is_expired(Token("access"))
    assert store.is_expired(None)


def test_token_response_keeps_previous_refresh_token():
    token = Token.from_token_response(
        {"access_token": "new", "expires_in": 3600},
        previous_refresh_token="old-refresh",
        now=100.0,
    )
    assert token.refresh_token == "old-refresh"
    assert token.expires_at == 3_700.0


def test_token_response_prefers_new_refresh_token():
    token = Token.from_token_response(
        {"access_token": "new", "refresh_token": "rotated", "expires_in": 60},
        previous_refresh_token="old-refresh",
        now=0.0,
    )
    assert token.refresh_token == "rotated"


def test_token_response_requires_access_token():
    with pytest.raises(KeyError):
        Token.from_token_response({"expires_in": 3600})
    with pytest.raises(ValueError):
        Token.from_token_response({"access_token": "", "expires_in": 3600})
