"""Spotify accounts endpoints: PKCE authorization URL, code exchange, refresh.

No client secret is involved; the verifier proves we started the flow.
Both token calls return the raw ApiResponse so the caller decides what a
400 or 429 means.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass, field
from typing import Callable, Sequence
from urllib.parse import urlencode

import requests
from requests.structures import CaseInsensitiveDict

from ..core.errors import NetworkError
from .http import get_http_session
from .spotify import ApiResponse

AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"  # public endpoint, not a secret


def generate_code_verifier() -> str:
    """43-character urlsafe verifier from 32 random bytes, padding stripped."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("utf-8").rstrip("=")


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge: urlsafe base64 of sha256(verifier), padding stripped."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


@dataclass(frozen=True)
class PkceRequest:
    """One pending authorization: the verifier and the CSRF ``state`` value."""
    verifier: str = field(default_factory=generate_code_verifier)
    state: str = field(default_factory=lambda: secrets.token_urlsafe(16))

    @property
    def challenge(self) -> str:
        return generate_code_challenge(self.verifier)


def build_authorize_url(client_id: str, redirect_uri: str, scopes: Sequence[str], pkce: PkceRequest) -> str:
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": pkce.state,
        "code_challenge_method": "S256",
        "code_challenge": pkce.challenge,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


class OAuthClient:
    """Form-encoded POSTs against the token endpoint."""

    def __init__(
        self,
        client_id: str,
        redirect_uri: str,
        session_provider: Callable[[], requests.Session] = get_http_session,
        token_url: str = TOKEN_URL,
    ):
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self._session_provider = session_provider
        self._token_url = token_url

    def exchange_code(self, code: str, code_verifier: str) -> ApiResponse:
        return self._post({
            "client_id": self.client_id,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier,
        })

    def refresh(self, refresh_token: str) -> ApiResponse:
        return self._post({
            "client_id": self.client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    def _post(self, form: dict) -> ApiResponse:
        try:
            resp = self._session_provider().request(
                "POST",
                self._token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"token endpoint unreachable: {exc.__class__.__name__}") from exc
        return ApiResponse(resp.status_code, resp.content or b"", CaseInsensitiveDict(resp.headers or {}))
