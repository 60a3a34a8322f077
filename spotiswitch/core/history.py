"""
📜 Recently played tracks
A bounded, uri-deduplicated, most-recent-first tuple of Track. Every
mutation builds a new tuple under the lock and swaps it in, so readers and
a concurrent remote merge never see a half-applied update.
"""

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..api.spotify import SpotifyWebClient, parse_liked_flags
from ..utils.secure_store import SecureBlobStore
from .errors import NetworkError, ParseError, StorageCorruption
from .playback_state import Track
from .rate_limit import RateLimitGovernor

logger = logging.getLogger("spotiswitch.history")

DEFAULT_CAPACITY = 20
MIN_CAPACITY = 10
MAX_CAPACITY = 50

History = Tuple[Track, ...]
HistoryListener = Callable[[History], None]


def _dedupe(tracks: Iterable[Track], capacity: int) -> History:
    seen = set()
    result: List[Track] = []
    for track in tracks:
        if track.uri in seen:
            continue
        seen.add(track.uri)
        result.append(track)
        if len(result) >= capacity:
            break
    return tuple(result)


class TrackHistoryCache:
    """Move-to-front history with encrypted persistence.

    Args:
        capacity: Maximum entries kept (10-50)
        blob_store: Record the history is persisted to; ``None`` keeps it in memory
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, blob_store: Optional[SecureBlobStore] = None):
        if not MIN_CAPACITY <= capacity <= MAX_CAPACITY:
            raise ValueError(f"history capacity must be {MIN_CAPACITY}-{MAX_CAPACITY}, got {capacity}")
        self.capacity = capacity
        self._blob_store = blob_store
        self._lock = threading.Lock()
        self._tracks: History = ()
        self._listeners: List[HistoryListener] = []

    def snapshot(self) -> History:
        with self._lock:
            return self._tracks

    def __len__(self) -> int:
        return len(self.snapshot())

    def add_listener(self, listener: HistoryListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def record_playing(self, track: Track) -> History:
        """Move ``track`` to the front, dropping any earlier entry with its uri."""
        return self._swap(lambda current: _dedupe((track, *current), self.capacity))

    def merge_remote(self, remote_tracks: Sequence[Track]) -> History:
        """Local order first, then unseen remote tracks in feed order.

        A local entry always wins over a remote one with the same uri.
        """
        return self._swap(lambda current: _dedupe((*current, *remote_tracks), self.capacity))

    def annotate_liked(self, track_id: str, liked: bool) -> History:
        """Set ``is_liked`` on entries with ``track_id``; no-op if absent."""

        def update(current: History) -> History:
            if not any(t.id == track_id and t.is_liked != liked for t in current):
                return current
            return tuple(t.with_liked(liked) if t.id == track_id else t for t in current)

        return self._swap(update)

    def apply_liked_flags(self, flags: Dict[str, bool]) -> History:
        """Bulk form of ``annotate_liked``."""
        if not flags:
            return self.snapshot()
        return self._swap(
            lambda current: tuple(
                t.with_liked(flags[t.id]) if t.id in flags else t for t in current
            )
        )

    def clear(self) -> None:
        self._swap(lambda current: ())

    def _swap(self, build: Callable[[History], History]) -> History:
        with self._lock:
            before = self._tracks
            after = build(before)
            if after == before and all(a.is_liked == b.is_liked for a, b in zip(after, before)):
                return before
            self._tracks = after
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(after)
            except Exception:
                logger.exception("history.listener.failed")
        return after

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def persist(self) -> None:
        if self._blob_store is None:
            return
        tracks = self.snapshot()
        self._blob_store.write_json([t.to_dict() for t in tracks])
        logger.debug("history.persisted", extra={"count": len(tracks)})

    def restore(self) -> History:
        """Load persisted history; corrupt data yields an empty history."""
        if self._blob_store is None:
            return self.snapshot()
        try:
            data = self._blob_store.read_json()
            if data is None:
                return self.snapshot()
            if not isinstance(data, list):
                raise StorageCorruption("history record is not a list")
            tracks = [Track.from_dict(item) for item in data]
        except (StorageCorruption, KeyError, TypeError, ValueError) as e:
            logger.warning("🗑️ History record unusable, starting empty: %s", e)
            self._blob_store.delete()
            tracks = []

        with self._lock:
            self._tracks = _dedupe(tracks, self.capacity)
            restored = self._tracks
        logger.info("📜 History restored", extra={"count": len(restored)})
        return restored

    def delete_persisted(self) -> None:
        if self._blob_store is not None:
            self._blob_store.delete()


def check_liked_batch(
    client: SpotifyWebClient,
    governor: RateLimitGovernor,
    access_token: str,
    ids: Sequence[str],
    batch_size: int = 50,
) -> Dict[str, bool]:
    """Liked flags for ``ids``, asked ``batch_size`` at a time.

    Chunks that answered are kept even when a later chunk fails. A 429 tells
    the governor and stops asking.
    """
    unique_ids = list(dict.fromkeys(i for i in ids if i))
    results: Dict[str, bool] = {}
    for start in range(0, len(unique_ids), batch_size):
        chunk = unique_ids[start:start + batch_size]
        try:
            response = client.tracks_contain(access_token, chunk)
        except NetworkError as e:
            logger.warning("history.liked_batch.network_error", extra={"error": str(e)})
            break
        if response.status == 429:
            governor.note_rate_limited(retry_after=response.retry_after())
            logger.warning("history.liked_batch.rate_limited", extra={"checked": len(results)})
            break
        if not response.ok:
            logger.warning("history.liked_batch.http_error", extra={"status": response.status})
            continue
        try:
            results.update(parse_liked_flags(response.json(), chunk))
        except ParseError as e:
            logger.warning("history.liked_batch.parse_error", extra={"error": str(e)})
    return results
