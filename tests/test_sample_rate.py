"""Sample-rate overrides and switching."""

import subprocess
import threading

import pytest

from spotiswitch.core import sample_rate
from spotiswitch.core.sample_rate import (
    ALBUM_OVERRIDES_FILE,
    CommandAudioOutput,
    SampleRateMonitor,
    SampleRateOverrides,
    SampleRateSwitcher,
    album_key,
    build_switcher,
)


class FakeNowPlaying:
    def __init__(self, track="Song - Artist", album="Album"):
        self.track = track
        self.album = album

    def current_track(self):
        return self.track

    def current_album(self):
        return self.album


class FakeDevice:
    def __init__(self, accept=True):
        self.accept = accept
        self.calls = []

    def set_sample_rate(self, rate):
        self.calls.append(rate)
        return self.accept


@pytest.fixture
def now_playing():
    return FakeNowPlaying()


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def switcher(tmp_path, now_playing, device):
    return SampleRateSwitcher(
        now_playing,
        device,
        SampleRateOverrides(tmp_path / "tracks.txt"),
        SampleRateOverrides(tmp_path / "albums.txt"),
        default_rate=44100,
    )


def test_overrides_file_parsing(tmp_path):
    path = tmp_path / "tracks.txt"
    path.write_text("A - B = 96000\nbroken line\nC = D - E = 48000\nbad = rate\n", encoding="utf-8")

    assert SampleRateOverrides(path).load() == {"A - B": 96000, "C = D - E": 48000}


def test_overrides_reject_unsupported_rates(tmp_path):
    with pytest.raises(ValueError):
        SampleRateOverrides(tmp_path / "x.txt").set("key", 12345)


def test_overrides_are_written_sorted(tmp_path):
    overrides = SampleRateOverrides(tmp_path / "x.txt")
    overrides.set("b", 48000)
    overrides.set("a", 96000)

    assert (tmp_path / "x.txt").read_text(encoding="utf-8") == "a = 96000\nb = 48000\n"


def test_album_key():
    assert album_key("Song - Artist", "Album") == "Artist - Album"
    assert album_key("Untitled", "Album") == " - Album"


def test_unknown_album_is_tagged_with_default(tmp_path, switcher, device):
    assert switcher.auto_update() == 44100
    assert device.calls == [44100]
    assert "Artist - Album = 44100" in (tmp_path / "albums.txt").read_text(encoding="utf-8")


def test_track_override_beats_album(switcher, device):
    switcher.tag_current_album(96000)
    assert switcher.override_current_track(192000) == 192000
    assert switcher.resolve_rate("Song - Artist") == 192000

    switcher.tag_current_album(48000)
    assert switcher.current_rate == 192000


def test_device_is_only_called_on_change(switcher, device):
    switcher.auto_update()
    switcher.auto_update()
    assert device.calls == [44100]


def test_refused_rate_is_not_recorded(now_playing, tmp_path):
    switcher = SampleRateSwitcher(
        now_playing,
        FakeDevice(accept=False),
        SampleRateOverrides(tmp_path / "tracks.txt"),
        SampleRateOverrides(tmp_path / "albums.txt"),
    )
    assert switcher.auto_update() is None
    assert switcher.current_rate is None


@pytest.mark.parametrize("sentinel", ["None", "Error", "Not Running"])
def test_nothing_playing_skips_update(switcher, now_playing, device, sentinel):
    now_playing.track = sentinel

    assert switcher.auto_update() is None
    assert switcher.override_current_track(96000) is None
    assert device.calls == []
    assert switcher.display_text() == "🎵 No Song"


def test_display_text(switcher):
    switcher.override_current_track(96000)
    assert switcher.display_text() == "🎵 Song - Artist — 96 kHz"


def test_unsupported_default_rate():
    with pytest.raises(ValueError):
        SampleRateSwitcher(FakeNowPlaying(), FakeDevice(), None, None, default_rate=22050)


class TestCommandAudioOutput:
    def test_rate_is_substituted_into_the_command(self, monkeypatch):
        seen = []

        def fake_run(argv, **kwargs):
            seen.append(argv)
            return subprocess.CompletedProcess(argv, 0, "", "")

        monkeypatch.setattr(sample_rate.subprocess, "run", fake_run)

        assert CommandAudioOutput("audio-rate --device 'Built-in Output' --rate {rate}").set_sample_rate(96000)
        assert seen == [["audio-rate", "--device", "Built-in Output", "--rate", "96000"]]

    def test_non_zero_exit_is_a_refusal(self, monkeypatch):
        monkeypatch.setattr(
            sample_rate.subprocess,
            "run",
            lambda argv, **kwargs: subprocess.CompletedProcess(argv, 1, "", "no such device"),
        )
        assert CommandAudioOutput("audio-rate {rate}").set_sample_rate(48000) is False

    def test_missing_binary_is_a_refusal(self, monkeypatch):
        def missing(argv, **kwargs):
            raise FileNotFoundError(argv[0])

        monkeypatch.setattr(sample_rate.subprocess, "run", missing)
        assert CommandAudioOutput("audio-rate {rate}").set_sample_rate(48000) is False

    def test_template_needs_rate_placeholder(self):
        with pytest.raises(ValueError):
            CommandAudioOutput("audio-rate 44100")


def test_build_switcher_keeps_overrides_in_data_dir(tmp_path, now_playing, device):
    switcher = build_switcher(tmp_path, device, 48000, now_playing)

    assert switcher.auto_update() == 48000
    assert "Artist - Album = 48000" in (tmp_path / ALBUM_OVERRIDES_FILE).read_text(encoding="utf-8")


def test_monitor_runs_auto_update_until_stopped(switcher, device):
    applied = threading.Event()
    original = device.set_sample_rate

    def record(rate):
        applied.set()
        return original(rate)

    device.set_sample_rate = record
    monitor = SampleRateMonitor(switcher, interval=60)

    monitor.start()
    try:
        assert applied.wait(5)
        assert monitor.is_running
    finally:
        monitor.stop()

    assert not monitor.is_running
    assert device.calls == [44100]


def test_monitor_survives_a_failing_update(switcher, monkeypatch):
    calls = []
    done = threading.Event()

    def boom():
        calls.append(True)
        if len(calls) >= 2:
            done.set()
        raise RuntimeError("osascript hung")

    monkeypatch.setattr(switcher, "auto_update", boom)
    monitor = SampleRateMonitor(switcher, interval=0.01)

    monitor.start()
    try:
        assert done.wait(5)
    finally:
        monitor.stop()


def test_service_builds_switcher_from_config(make_service, tmp_path, now_playing, device):
    service = make_service(
        config_overrides={"default_sample_rate": 48000, "sample_rate_interval": 7},
        audio_device=device,
        now_playing=now_playing,
    )

    assert service.sample_rate_switcher.default_rate == 48000
    assert service.sample_rate_monitor.interval == 7.0
    assert service.sample_rate_switcher.auto_update() == 48000
    assert (tmp_path / ALBUM_OVERRIDES_FILE).exists()


def test_service_uses_configured_command(make_service, now_playing):
    service = make_service(
        config_overrides={"sample_rate_command": "audio-rate --rate {rate}"},
        now_playing=now_playing,
    )

    assert service.sample_rate_switcher is not None
    assert service.sample_rate_switcher.audio_device.command_template == "audio-rate --rate {rate}"


def test_service_without_device_has_no_switcher(make_service):
    service = make_service()

    assert service.sample_rate_switcher is None
    assert service.sample_rate_monitor is None
