"""Scripted stand-ins for the HTTP session, clocks, timers and the blob cipher."""

from __future__ import annotations

import json
import threading
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from PIL import Image

from spotiswitch.core.errors import StorageCorruption
from spotiswitch.utils.secure_store import SecureBlobStore
from spotiswitch.utils.token_store import Token

REDIRECT_URI = "http://127.0.0.1:8888/callback"


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, *, content: Optional[bytes] = None, headers=None):
        self.status_code = status_code
        if content is None:
            content = b"" if body is None else json.dumps(body).encode("utf-8")
        self.content = content
        self.headers = headers or {}


def _path_of(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path
    if parts.netloc == "api.spotify.com" and path.startswith("/v1"):
        path = path[len("/v1"):]
    return path


class FakeSession:
    """Answers ``request`` from per-(method, path) queues.

    The last queued outcome repeats. An outcome can be a FakeResponse, an
    exception instance to raise, or a callable ``(method, path, kwargs)``
    returning either.
    """

    def __init__(self):
        self._routes: Dict[Tuple[str, str], List[Any]] = {}
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def add(self, method: str, path: str, *outcomes: Any) -> "FakeSession":
        with self._lock:
            self._routes.setdefault((method.upper(), path), []).extend(outcomes)
        return self

    def request(self, method: str, url: str, **kwargs: Any):
        path = _path_of(url)
        key = (method.upper(), path)
        with self._lock:
            self.calls.append((key[0], path, kwargs))
            queue = self._routes.get(key)
            if not queue:
                raise AssertionError(f"unexpected request: {key[0]} {path}")
            outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(outcome) and not isinstance(outcome, BaseException):
            outcome = outcome(key[0], path, kwargs)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [kw for m, p, kw in self.calls if m == method.upper() and p == path]


class ManualClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTimer:
    """``threading.Timer`` look-alike that only runs when ``fire`` is called."""

    def __init__(self, interval: float, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.finished = threading.Event()

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True
        self.finished.set()

    def fire(self) -> None:
        if self.finished.is_set():
            return
        self.finished.set()
        self.function()


class TimerRecorder:
    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, interval: float, function) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if t.started and not t.finished.is_set()]

    def fire_all(self) -> None:
        for timer in self.pending():
            timer.fire()


class PlainCipher:
    """Reversible cipher with a header check, no key material."""

    PREFIX = b"TEST:"

    def encrypt(self, data: bytes) -> bytes:
        return self.PREFIX + data

    def decrypt(self, data: bytes) -> bytes:
        if not data.startswith(self.PREFIX):
            raise StorageCorruption("missing test header")
        return data[len(self.PREFIX):]

    def delete_key(self) -> None:
        pass


def plain_blob_store(data_dir: Path, name: str) -> SecureBlobStore:
    return SecureBlobStore(Path(data_dir) / f"{name}.enc", PlainCipher(), name=name)


def track_item(track_id: str = "t1", name: str = "Song", artist: str = "Artist", images: Optional[list] = None) -> dict:
    return {
        "id": track_id,
        "name": name,
        "uri": f"spotify:track:{track_id}",
        "artists": [{"name": artist}],
        "album": {"images": images if images is not None else []},
    }


def currently_playing(item: dict, is_playing: bool = True) -> dict:
    return {"is_playing": is_playing, "item": item}


def recently_played(*items: dict) -> dict:
    return {"items": [{"track": item} for item in items]}


def token_response(access_token: str = "access-2", expires_in: int = 3600, refresh_token: Optional[str] = None) -> dict:
    body = {"access_token": access_token, "token_type": "Bearer", "expires_in": expires_in}
    if refresh_token is not None:
        body["refresh_token"] = refresh_token
    return body


def png_bytes(size: int = 64, color: str = "red") -> bytes:
    out = BytesIO()
    Image.new("RGB", (size, size), color).save(out, format="PNG")
    return out.getvalue()


def store_token(service, wall_clock, access_token: str = "access-1", refresh_token: str = "refresh-1"):
    token = Token(access_token, refresh_token, wall_clock() + 3600)
    service.token_store.save(token)
    return token
