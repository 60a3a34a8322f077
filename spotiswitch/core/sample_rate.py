"""
🎚️ Output sample-rate switcher
Matches the track another player is playing against saved per-track and
per-album overrides and pushes the chosen rate to the audio output device.
Overrides live in plain ``key = rate`` text files; a monitor thread
re-checks the playing track every few seconds.
"""

import logging
import os
import shlex
import subprocess
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger("spotiswitch.sample_rate")

SUPPORTED_SAMPLE_RATES = (44100, 48000, 88200, 96000, 176400, 192000)
DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHECK_INTERVAL = 5.0
TRACK_OVERRIDES_FILE = "track_sample_rates.txt"
ALBUM_OVERRIDES_FILE = "album_sample_rates.txt"
TRACK_SENTINELS = frozenset({"None", "Error", "Not Running"})
UNKNOWN_ALBUM = "Unknown Album"
_SEPARATOR = " = "


class NowPlayingSource(Protocol):
    def current_track(self) -> str:
        """``"Title - Artist"`` or one of ``TRACK_SENTINELS``."""
        ...

    def current_album(self) -> str: ...


class AudioOutputDevice(Protocol):
    def set_sample_rate(self, rate: int) -> bool: ...


_TRACK_SCRIPT = """
tell application "System Events" to set isRunning to (name of processes) contains "Music"
if not isRunning then return "Not Running"
tell application "Music"
    if player state is playing then
        return (name of current track) & " - " & (artist of current track)
    else
        return "None"
    end if
end tell
"""

_ALBUM_SCRIPT = """
tell application "Music"
    if it is running and player state is playing then
        return album of current track
    else
        return "Unknown Album"
    end if
end tell
"""


class AppleScriptNowPlaying:
    """Asks the macOS Music app through ``osascript``."""

    def __init__(self, timeout: float = 5.0):
        self._timeout = timeout

    def _run(self, script: str, fallback: str) -> str:
        try:
            result = subprocess.run(
                ["osascript", "-e", script],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("sample_rate.osascript.failed", extra={"error": str(e)})
            return fallback
        if result.returncode != 0:
            return fallback
        return result.stdout.strip() or fallback

    def current_track(self) -> str:
        return self._run(_TRACK_SCRIPT, "Error")

    def current_album(self) -> str:
        return self._run(_ALBUM_SCRIPT, UNKNOWN_ALBUM)


class CommandAudioOutput:
    """Sets the rate by running a configured command.

    ``{rate}`` in the template is replaced with the rate in Hz, e.g.
    ``"audio-rate --device default --rate {rate}"``. Exit status 0 means applied.
    """

    def __init__(self, command_template: str, timeout: float = 10.0):
        if "{rate}" not in command_template:
            raise ValueError("sample rate command must contain {rate}")
        self.command_template = command_template
        self._timeout = timeout

    def set_sample_rate(self, rate: int) -> bool:
        argv = shlex.split(self.command_template.replace("{rate}", str(rate)))
        try:
            result = subprocess.run(argv, capture_output=True, text=True, timeout=self._timeout, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("sample_rate.command.failed", extra={"rate": rate, "error": str(e)})
            return False
        if result.returncode != 0:
            logger.warning(
                "sample_rate.command.failed",
                extra={"rate": rate, "returncode": result.returncode, "stderr": result.stderr.strip()},
            )
            return False
        return True


def _validate_rate(rate: int) -> int:
    if rate not in SUPPORTED_SAMPLE_RATES:
        raise ValueError(f"Unsupported sample rate: {rate}. Choose one of {SUPPORTED_SAMPLE_RATES}")
    return rate


class SampleRateOverrides:
    """A ``key = rate`` file; unparsable lines are ignored."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Dict[str, int]:
        try:
            contents = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        overrides: Dict[str, int] = {}
        for line in contents.splitlines():
            key, sep, value = line.rpartition(_SEPARATOR)
            if not sep or not key:
                continue
            try:
                overrides[key] = int(value.strip())
            except ValueError:
                continue
        return overrides

    def get(self, key: str) -> Optional[int]:
        return self.load().get(key)

    def set(self, key: str, rate: int) -> None:
        _validate_rate(rate)
        with self._lock:
            overrides = self.load()
            overrides[key] = rate
            self._write(overrides)
        logger.info("💾 Sample rate override saved", extra={"key": key, "rate": rate})

    def setdefault(self, key: str, rate: int) -> int:
        """Add ``key`` with ``rate`` unless it is already listed."""
        with self._lock:
            overrides = self.load()
            if key in overrides:
                return overrides[key]
            overrides[key] = rate
            self._write(overrides)
        logger.info("🔖 Added to override list", extra={"key": key})
        return rate

    def _write(self, overrides: Dict[str, int]) -> None:
        lines = sorted(f"{key}{_SEPARATOR}{value}" for key, value in overrides.items())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        os.replace(tmp_path, self.path)


def album_key(track: str, album: str) -> str:
    """``"<artist> - <album>"`` from a ``"Title - Artist"`` string."""
    parts = track.split(" - ")
    artist = parts[-1] if len(parts) > 1 else ""
    return f"{artist} - {album}"


class SampleRateSwitcher:
    """Picks track override, then album override, then the default rate."""

    def __init__(
        self,
        now_playing: NowPlayingSource,
        audio_device: AudioOutputDevice,
        track_overrides: SampleRateOverrides,
        album_overrides: SampleRateOverrides,
        default_rate: int = DEFAULT_SAMPLE_RATE,
    ):
        self._now_playing = now_playing
        self._device = audio_device
        self._track_overrides = track_overrides
        self._album_overrides = album_overrides
        self.default_rate = _validate_rate(default_rate)
        self._lock = threading.Lock()
        self._current_rate: Optional[int] = None

    @property
    def audio_device(self) -> AudioOutputDevice:
        return self._device

    @property
    def current_rate(self) -> Optional[int]:
        with self._lock:
            return self._current_rate

    def _apply(self, rate: int) -> Optional[int]:
        with self._lock:
            if self._current_rate == rate:
                return rate
        if not self._device.set_sample_rate(rate):
            logger.warning("sample_rate.apply.failed", extra={"rate": rate})
            return None
        with self._lock:
            self._current_rate = rate
        logger.info("🎚️ Sample rate set", extra={"rate": rate})
        return rate

    def _current_track(self) -> Optional[str]:
        track = self._now_playing.current_track()
        return None if track in TRACK_SENTINELS else track

    def resolve_rate(self, track: str) -> int:
        rate = self._track_overrides.get(track)
        if rate is not None:
            return rate
        key = album_key(track, self._now_playing.current_album())
        return self._album_overrides.setdefault(key, self.default_rate)

    def auto_update(self) -> Optional[int]:
        """Apply the rate for whatever is playing.

        Returns:
            The rate now in effect, or ``None`` when skipped or the device refused
        """
        track = self._current_track()
        if track is None:
            logger.debug("sample_rate.auto_update.skipped")
            return None
        return self._apply(self.resolve_rate(track))

    def override_current_track(self, rate: int) -> Optional[int]:
        track = self._current_track()
        if track is None:
            return None
        self._track_overrides.set(track, rate)
        return self._apply(rate)

    def tag_current_album(self, rate: int) -> Optional[int]:
        track = self._current_track()
        if track is None:
            return None
        self._album_overrides.set(album_key(track, self._now_playing.current_album()), rate)
        # A per-track override still beats the album tag.
        return self._apply(self.resolve_rate(track))

    def display_text(self) -> str:
        track = self._current_track()
        if track is None:
            return "🎵 No Song"
        rate = self.current_rate or self.default_rate
        return f"🎵 {track} — {rate // 1000} kHz"


def build_switcher(
    data_dir: Path,
    audio_device: AudioOutputDevice,
    default_rate: int = DEFAULT_SAMPLE_RATE,
    now_playing: Optional[NowPlayingSource] = None,
) -> SampleRateSwitcher:
    """Switcher with override files under ``data_dir`` and the Music app as source."""
    data_dir = Path(data_dir)
    return SampleRateSwitcher(
        now_playing if now_playing is not None else AppleScriptNowPlaying(),
        audio_device,
        SampleRateOverrides(data_dir / TRACK_OVERRIDES_FILE),
        SampleRateOverrides(data_dir / ALBUM_OVERRIDES_FILE),
        default_rate=default_rate,
    )


class SampleRateMonitor:
    """Runs ``auto_update`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, switcher: SampleRateSwitcher, interval: float = DEFAULT_CHECK_INTERVAL):
        self.switcher = switcher
        self.interval = float(interval)
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name="SampleRateMonitor", daemon=True)
            self._thread.start()
        logger.info("🎚️ Sample rate monitor started", extra={"interval": self.interval})

    def stop(self, timeout: float = 2.0) -> None:
        with self._lock:
            thread, self._thread = self._thread, None
        self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("🛑 Sample rate monitor stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.switcher.auto_update()
            except Exception:
                logger.exception("sample_rate.auto_update.unexpected")
            self._stop_event.wait(timeout=self.interval)
