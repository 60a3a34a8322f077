"""
🎧 Playback state model and its single owner
PlaybackState is a tagged union of frozen dataclasses. The only way to change
the current value is ``PlaybackStateStore.transition``; listeners are called
outside the store lock with the new value.
"""

import base64
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger("spotiswitch.state")

NOTHING_PLAYING = "Nothing Playing"
PLEASE_AUTHORIZE = "Please authorize"
RATE_LIMITED = "Rate Limited"
NETWORK_ERROR = "Network Error"
PARSE_ERROR = "Parse Error"
AUTH_REFRESH_FAILED = "Auth Refresh Failed"


@dataclass(frozen=True, eq=False)
class Track:
    """A Spotify track; identity is the ``uri``."""
    id: str
    title: str
    artist_name: str
    uri: str
    artwork_url: Optional[str] = None
    is_liked: bool = False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Track):
            return NotImplemented
        return self.uri == other.uri

    def __hash__(self) -> int:
        return hash(self.uri)

    def with_liked(self, liked: bool) -> "Track":
        return self if self.is_liked == liked else replace(self, is_liked=liked)

    @property
    def display_name(self) -> str:
        return f"{self.title} - {self.artist_name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artist_name": self.artist_name,
            "uri": self.uri,
            "artwork_url": self.artwork_url,
            "is_liked": self.is_liked,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Track":
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            artist_name=str(data["artist_name"]),
            uri=str(data["uri"]),
            artwork_url=data.get("artwork_url"),
            is_liked=bool(data.get("is_liked", False)),
        )


@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Playing:
    track: Track
    is_actually_playing: bool
    is_liked: bool = False
    art: Optional[bytes] = field(default=None, repr=False)


@dataclass(frozen=True)
class NotPlaying:
    message: str = NOTHING_PLAYING


@dataclass(frozen=True)
class Error:
    message: str


PlaybackState = Union[Loading, Playing, NotPlaying, Error]
StateListener = Callable[[PlaybackState], None]


def state_to_dict(state: PlaybackState) -> Dict[str, Any]:
    """JSON-ready view of a PlaybackState."""
    if isinstance(state, Playing):
        return {
            "kind": "playing",
            "track": state.track.to_dict(),
            "is_actually_playing": state.is_actually_playing,
            "is_liked": state.is_liked,
            "art": base64.b64encode(state.art).decode("ascii") if state.art else None,
        }
    if isinstance(state, NotPlaying):
        return {"kind": "not_playing", "message": state.message}
    if isinstance(state, Error):
        return {"kind": "error", "message": state.message}
    return {"kind": "loading"}


@dataclass(frozen=True)
class UiSnapshot:
    """Everything the menu needs to render one frame."""
    state: PlaybackState
    history: Tuple[Track, ...]
    rate_limited: bool
    status_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": state_to_dict(self.state),
            "history": [track.to_dict() for track in self.history],
            "rate_limited": self.rate_limited,
            "status_message": self.status_message,
        }


class PlaybackStateStore:
    """Owner of the current PlaybackState.

    Every ``transition`` bumps a generation counter. A producer that read the
    generation before doing slow work passes it back as
    ``expected_generation``; if anything else transitioned meanwhile, the
    stale result is dropped.
    """

    def __init__(self, initial: Optional[PlaybackState] = None):
        self._lock = threading.Lock()
        self._state: PlaybackState = initial if initial is not None else Loading()
        self._generation = 0
        self._status_message: Optional[str] = None
        self._listeners: List[StateListener] = []

    @property
    def current(self) -> PlaybackState:
        with self._lock:
            return self._state

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def status_message(self) -> Optional[str]:
        with self._lock:
            return self._status_message

    def current_track(self) -> Optional[Track]:
        state = self.current
        return state.track if isinstance(state, Playing) else None

    def add_listener(self, listener: StateListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def transition(self, new_state: PlaybackState, *, expected_generation: Optional[int] = None) -> bool:
        """Replace the current state and notify listeners.

        Returns:
            False when ``expected_generation`` is stale and nothing changed
        """
        with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                logger.debug(
                    "state.transition.stale",
                    extra={"expected": expected_generation, "actual": self._generation},
                )
                return False
            self._state = new_state
            self._generation += 1
            listeners = list(self._listeners)
        self._notify(listeners, new_state)
        return True

    def update_playing(self, updater: Callable[[Playing], PlaybackState]) -> bool:
        """Read-modify-emit on the current state when it is ``Playing``."""
        with self._lock:
            state = self._state
            if not isinstance(state, Playing):
                return False
            new_state = updater(state)
            self._state = new_state
            self._generation += 1
            listeners = list(self._listeners)
        self._notify(listeners, new_state)
        return True

    def reemit(self) -> None:
        """Notify listeners with the unchanged current state."""
        with self._lock:
            state = self._state
            listeners = list(self._listeners)
        self._notify(listeners, state)

    def set_status(self, message: Optional[str]) -> None:
        """Set or clear the transient status line without touching the state."""
        with self._lock:
            if self._status_message == message:
                return
            self._status_message = message
            state = self._state
            listeners = list(self._listeners)
        self._notify(listeners, state)

    @staticmethod
    def _notify(listeners: List[StateListener], state: PlaybackState) -> None:
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("state.listener.failed")
