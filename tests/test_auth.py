"""PKCE authorization and token refresh."""

import threading
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from spotiswitch.api.oauth import (
    PkceRequest,
    build_authorize_url,
    generate_code_challenge,
    generate_code_verifier,
)
from spotiswitch.core.auth import RefreshOutcome
from spotiswitch.core.errors import AuthError, NetworkError, RateLimited

from .fakes import REDIRECT_URI, FakeResponse, token_response

TOKEN = "/api/token"


class TestPkce:
    def test_challenge_matches_published_example(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_verifier_is_unpadded_urlsafe(self):
        verifier = generate_code_verifier()
        assert len(verifier) == 43
        assert "=" not in verifier
        assert set(verifier) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")
        assert generate_code_verifier() != verifier

    def test_authorize_url_carries_challenge_and_state(self):
        pkce = PkceRequest()
        url = build_authorize_url("client-123", REDIRECT_URI, ["a", "b"], pkce)

        parts = urlsplit(url)
        query = {k: v[0] for k, v in parse_qs(parts.query).items()}
        assert parts.netloc == "accounts.spotify.com"
        assert query["client_id"] == "client-123"
        assert query["response_type"] == "code"
        assert query["redirect_uri"] == REDIRECT_URI
        assert query["scope"] == "a b"
        assert query["state"] == pkce.state
        assert query["code_challenge_method"] == "S256"
        assert query["code_challenge"] == generate_code_challenge(pkce.verifier)


class TestAuthorization:
    def _state_of(self, url):
        return parse_qs(urlsplit(url).query)["state"][0]

    def test_code_exchange_stores_token(self, stack, tmp_path):
        url = stack.auth.begin_authorization()
        stack.session.add("POST", TOKEN, FakeResponse(200, token_response("access-9", refresh_token="refresh-9")))

        token = stack.auth.complete_authorization("the-code", self._state_of(url))

        assert token.access_token == "access-9"
        assert token.expires_at == stack.wall_clock() + 3600
        assert stack.token_store.load() == token
        form = stack.session.calls_to("POST", TOKEN)[0]["data"]
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "the-code"
        assert form["client_id"] == "client-123"
        assert generate_code_challenge(form["code_verifier"]) == parse_qs(urlsplit(url).query)["code_challenge"][0]
        assert "client_secret" not in form

    def test_state_mismatch_is_rejected(self, stack):
        stack.auth.begin_authorization()
        with pytest.raises(AuthError):
            stack.auth.complete_authorization("code", "forged")
        assert stack.session.calls == []

    def test_callback_without_pending_flow_is_rejected(self, stack):
        with pytest.raises(AuthError):
            stack.auth.complete_authorization("code", "state")

    def test_rejected_code(self, stack):
        url = stack.auth.begin_authorization()
        stack.session.add("POST", TOKEN, FakeResponse(400, {"error": "invalid_grant"}))
        with pytest.raises(AuthError):
            stack.auth.complete_authorization("code", self._state_of(url))
        assert stack.auth.current_token() is None

    def test_rate_limited_exchange(self, stack):
        url = stack.auth.begin_authorization()
        stack.session.add("POST", TOKEN, FakeResponse(429, headers={"Retry-After": "120"}))
        with pytest.raises(RateLimited) as excinfo:
            stack.auth.complete_authorization("code", self._state_of(url))
        assert excinfo.value.retry_after == 120.0
        assert stack.governor.remaining() == pytest.approx(120.0)

    def test_unreachable_token_endpoint(self, stack):
        url = stack.auth.begin_authorization()
        stack.session.add("POST", TOKEN, requests.exceptions.ConnectionError("offline"))
        with pytest.raises(NetworkError):
            stack.auth.complete_authorization("code", self._state_of(url))


class TestRefresh:
    def test_refresh_preserves_refresh_token(self, stack):
        stack.authorize()
        stack.session.add("POST", TOKEN, FakeResponse(200, token_response("access-2")))

        assert stack.auth.refresh() is RefreshOutcome.REFRESHED

        token = stack.auth.current_token()
        assert token.access_token == "access-2"
        assert token.refresh_token == "refresh-1"
        assert stack.token_store.load() == token
        form = stack.session.calls_to("POST", TOKEN)[0]["data"]
        assert form == {"client_id": "client-123", "grant_type": "refresh_token", "refresh_token": "refresh-1"}

    def test_refresh_adopts_rotated_refresh_token(self, stack):
        stack.authorize()
        stack.session.add("POST", TOKEN, FakeResponse(200, token_response("access-2", refresh_token="refresh-2")))

        stack.auth.refresh()

        assert stack.auth.current_token().refresh_token == "refresh-2"

    def test_bad_request_deletes_token(self, stack, tmp_path):
        stack.authorize()
        stack.session.add("POST", TOKEN, FakeResponse(400, {"error": "invalid_grant"}))

        assert stack.auth.refresh() is RefreshOutcome.REAUTHORIZE
        assert stack.auth.current_token() is None
        assert not (tmp_path / "token.enc").exists()

    @pytest.mark.parametrize("outcome", [
        FakeResponse(500),
        FakeResponse(401),
        FakeResponse(200, content=b"<html>"),
        requests.exceptions.ReadTimeout("slow"),
    ])
    def test_transient_failures_keep_token(self, stack, outcome):
        stack.authorize()
        stack.session.add("POST", TOKEN, outcome)

        assert stack.auth.refresh() is RefreshOutcome.FAILED
        assert stack.auth.current_token().access_token == "access-1"
        assert stack.token_store.load() is not None

    def test_rate_limited_refresh(self, stack):
        stack.authorize()
        stack.session.add("POST", TOKEN, FakeResponse(429))

        assert stack.auth.refresh() is RefreshOutcome.RATE_LIMITED
        assert stack.governor.is_limited()
        assert stack.auth.current_token() is not None

    def test_missing_refresh_token_requires_authorization(self, stack, tmp_path):
        stack.authorize(refresh_token=None)

        assert stack.auth.refresh() is RefreshOutcome.REAUTHORIZE
        assert stack.session.calls == []
        assert (tmp_path / "token.enc").exists()
        assert stack.token_store.load() is not None

    def test_concurrent_refresh_is_single_flight(self, stack):
        stack.authorize()
        entered = threading.Event()
        release = threading.Event()

        def slow(method, path, kwargs):
            entered.set()
            release.wait(5)
            return FakeResponse(200, token_response("access-2"))

        stack.session.add("POST", TOKEN, slow)
        outcomes = []
        worker = threading.Thread(target=lambda: outcomes.append(stack.auth.refresh()))
        worker.start()
        assert entered.wait(5)

        assert stack.auth.refresh_in_flight()
        assert stack.auth.refresh() is RefreshOutcome.BUSY

        release.set()
        worker.join(5)
        assert outcomes == [RefreshOutcome.REFRESHED]
        assert len(stack.session.calls_to("POST", TOKEN)) == 1

    def test_auth_info(self, stack):
        stack.authorize()
        info = stack.auth.get_auth_info()
        assert info["authorized"] is True
        assert info["expired"] is False
        assert info["expires_in"] == 3600
