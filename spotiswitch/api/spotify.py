#!/usr/bin/env python3
"""
🎵 Spotify Web API client for SpotiSwitch
Thin bearer-token wrapper over the shared requests session: every call
returns an ``ApiResponse`` (status + raw body) and leaves status handling to
the caller. Transport failures surface as ``NetworkError``.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import requests
from requests.structures import CaseInsensitiveDict

from ..core.errors import NetworkError, ParseError
from ..core.playback_state import Track
from .http import get_http_session

logger = logging.getLogger("spotiswitch.spotify")

API_BASE = "https://api.spotify.com/v1"
MAX_IDS_PER_CALL = 50
REPEAT_MODES = ("off", "track", "context")


@dataclass(frozen=True)
class ApiResponse:
    """Status code and body of one Web API call."""
    status: int
    content: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()

    def json(self) -> Any:
        """Decode the body.

        Raises:
            ParseError: Body is not valid JSON
        """
        try:
            return json.loads(self.content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ParseError(f"undecodable body (HTTP {self.status})") from e

    def retry_after(self) -> Optional[float]:
        value = self.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None


class SpotifyWebClient:
    """Endpoint helpers for the calls SpotiSwitch makes.

    Args:
        session_provider: Returns the requests session to use
        base_url: Web API root, overridable for tests
    """

    def __init__(
        self,
        session_provider: Callable[[], requests.Session] = get_http_session,
        base_url: str = API_BASE,
    ):
        self._session_provider = session_provider
        self._base_url = base_url.rstrip("/")

    def request(
        self,
        method: str,
        path: str,
        token: Optional[str],
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        url = path if path.startswith("http") else f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        start = time.perf_counter()
        try:
            resp = self._session_provider().request(
                method.upper(), url, headers=headers, params=params, json=json_body
            )
        except requests.exceptions.RequestException as exc:
            logger.warning(
                "spotify.request.error",
                extra={
                    "method": method.upper(),
                    "path": path,
                    "elapsed": round(time.perf_counter() - start, 3),
                    "error": exc.__class__.__name__,
                },
            )
            raise NetworkError(str(exc)) from exc

        logger.debug(
            "spotify.request.done",
            extra={
                "method": method.upper(),
                "path": path,
                "status": resp.status_code,
                "elapsed": round(time.perf_counter() - start, 3),
            },
        )
        return ApiResponse(resp.status_code, resp.content or b"", CaseInsensitiveDict(resp.headers or {}))

    # 📡 Read endpoints
    def currently_playing(self, token: str) -> ApiResponse:
        return self.request("GET", "/me/player/currently-playing", token)

    def recently_played(self, token: str, limit: int = 20) -> ApiResponse:
        return self.request("GET", "/me/player/recently-played", token, params={"limit": limit})

    def tracks_contain(self, token: str, ids: Sequence[str]) -> ApiResponse:
        if len(ids) > MAX_IDS_PER_CALL:
            raise ValueError(f"at most {MAX_IDS_PER_CALL} ids per call, got {len(ids)}")
        return self.request("GET", "/me/tracks/contains", token, params={"ids": ",".join(ids)})

    def playlists(self, token: str, limit: int = 50) -> ApiResponse:
        return self.request("GET", "/me/playlists", token, params={"limit": limit})

    def devices(self, token: str) -> ApiResponse:
        return self.request("GET", "/me/player/devices", token)

    def fetch_image(self, url: str) -> ApiResponse:
        """Download artwork; image CDN URLs take no bearer token."""
        return self.request("GET", url, None)

    # 🎛️ Mutating endpoints
    def save_tracks(self, token: str, ids: Sequence[str]) -> ApiResponse:
        return self.request("PUT", "/me/tracks", token, json_body={"ids": list(ids)})

    def remove_tracks(self, token: str, ids: Sequence[str]) -> ApiResponse:
        return self.request("DELETE", "/me/tracks", token, json_body={"ids": list(ids)})

    def play(self, token: str, uris: Optional[Sequence[str]] = None) -> ApiResponse:
        body = {"uris": list(uris)} if uris else None
        return self.request("PUT", "/me/player/play", token, json_body=body)

    def pause(self, token: str) -> ApiResponse:
        return self.request("PUT", "/me/player/pause", token)

    def next_track(self, token: str) -> ApiResponse:
        return self.request("POST", "/me/player/next", token)

    def previous_track(self, token: str) -> ApiResponse:
        return self.request("POST", "/me/player/previous", token)

    def set_shuffle(self, token: str, state: bool) -> ApiResponse:
        return self.request("PUT", "/me/player/shuffle", token, params={"state": "true" if state else "false"})

    def set_repeat(self, token: str, mode: str) -> ApiResponse:
        return self.request("PUT", "/me/player/repeat", token, params={"state": mode})

    def set_volume(self, token: str, volume_percent: int) -> ApiResponse:
        return self.request("PUT", "/me/player/volume", token, params={"volume_percent": volume_percent})

    def add_to_playlist(self, token: str, playlist_id: str, uris: Sequence[str]) -> ApiResponse:
        return self.request("POST", f"/playlists/{playlist_id}/tracks", token, json_body={"uris": list(uris)})

    def transfer_playback(self, token: str, device_id: str, play: bool = True) -> ApiResponse:
        return self.request("PUT", "/me/player", token, json_body={"device_ids": [device_id], "play": play})


# 🧩 Response parsing
def parse_track(item: Any) -> Track:
    """Build a Track from a Web API track object.

    Raises:
        ParseError: A required field is missing or has the wrong type
    """
    if not isinstance(item, dict):
        raise ParseError("track item missing")
    try:
        track_id = item["id"]
        name = item["name"]
        uri = item["uri"]
        artists = item["artists"]
    except KeyError as e:
        raise ParseError(f"track field missing: {e.args[0]}") from e
    if not all(isinstance(v, str) and v for v in (track_id, name, uri)):
        raise ParseError("track id/name/uri must be non-empty strings")
    if not isinstance(artists, list) or not artists:
        raise ParseError("track has no artists")

    artist_names = [
        a["name"] for a in artists
        if isinstance(a, dict) and isinstance(a.get("name"), str) and a["name"]
    ]

    return Track(
        id=track_id,
        title=name,
        artist_name=", ".join(artist_names) or "Unknown Artist",
        uri=uri,
        artwork_url=_smallest_image_url(item.get("album")),
    )


def _smallest_image_url(album: Any) -> Optional[str]:
    """URL of the last album image; a malformed album means no artwork."""
    images = album.get("images") if isinstance(album, dict) else None
    if not isinstance(images, list) or not images:
        return None
    # Spotify lists images largest first; the smallest is enough for a menu icon.
    smallest = images[-1]
    url = smallest.get("url") if isinstance(smallest, dict) else None
    return url if isinstance(url, str) and url else None


def parse_currently_playing(body: Any) -> Optional[Tuple[Track, bool]]:
    """Return ``(track, is_playing)`` or ``None`` when nothing usable is playing."""
    if not isinstance(body, dict):
        return None
    try:
        track = parse_track(body.get("item"))
    except ParseError as e:
        logger.debug("spotify.parse.currently_playing.incomplete", extra={"reason": str(e)})
        return None
    return track, bool(body.get("is_playing", False))


def parse_recently_played(body: Any) -> List[Track]:
    """Tracks from a recently-played page, most recent first; bad items are skipped."""
    if not isinstance(body, dict) or not isinstance(body.get("items"), list):
        raise ParseError("recently-played body has no items")
    tracks: List[Track] = []
    for entry in body["items"]:
        try:
            tracks.append(parse_track(entry.get("track") if isinstance(entry, dict) else None))
        except ParseError:
            continue
    return tracks


def parse_liked_flags(body: Any, ids: Sequence[str]) -> Dict[str, bool]:
    """Zip a ``/me/tracks/contains`` answer with the ids asked for."""
    if not isinstance(body, list) or len(body) != len(ids):
        raise ParseError("contains answer does not match requested ids")
    return {track_id: bool(flag) for track_id, flag in zip(ids, body)}


def parse_devices(body: Any) -> List[Dict[str, Any]]:
    if not isinstance(body, dict):
        raise ParseError("devices body is not an object")
    devices = []
    for device in body.get("devices") or []:
        if not isinstance(device, dict) or not device.get("id"):
            continue
        devices.append({
            "id": device["id"],
            "name": device.get("name") or "Unknown Device",
            "type": device.get("type"),
            "is_active": bool(device.get("is_active", False)),
            "volume_percent": device.get("volume_percent"),
        })
    return devices


def parse_playlists(body: Any) -> List[Dict[str, str]]:
    if not isinstance(body, dict):
        raise ParseError("playlists body is not an object")
    playlists = []
    for item in body.get("items") or []:
        if isinstance(item, dict) and item.get("id") and item.get("name"):
            playlists.append({"id": item["id"], "name": item["name"]})
    return playlists


__all__ = [
    "API_BASE",
    "MAX_IDS_PER_CALL",
    "REPEAT_MODES",
    "ApiResponse",
    "SpotifyWebClient",
    "parse_track",
    "parse_currently_playing",
    "parse_recently_played",
    "parse_liked_flags",
    "parse_devices",
    "parse_playlists",
]
