import json
import subprocess
import sys

import pytest

from watchstreak.domain import TransportState
from watchstreak.drivers.mpv_driver import MpvTransport
from watchstreak.exceptions import TransportError


class RecordingWriter:
    def __init__(self):
        self.commands = []

    def write(self, data: bytes) -> None:
        self.commands.append(json.loads(data.decode("utf-8"))["command"])


class FakeProcess:
    def __init__(self, *args, **kwargs):
        self.args = args
        self.terminated = False

    def poll(self):
        return 0 if self.terminated else None

    def terminate(self):
        self.terminated = True


@pytest.fixture
def mpv():
    transport = MpvTransport("mpv")
    transport._writer = RecordingWriter()
    return transport


def property_change(name, data):
    return {"event": "property-change", "name": name, "data": data}


def test_build_command_for_video_and_audio():
    video = MpvTransport("/usr/bin/mpv").build_command("/media/a.mkv", "/tmp/sock")
    audio = MpvTransport("mpv", audio_only=True).build_command("/media/a.mp3", "/tmp/sock")

    assert video[0] == "/usr/bin/mpv"
    assert "--input-ipc-server=/tmp/sock" in video
    assert "--pause" in video
    assert video[-1] == "/media/a.mkv"
    assert "--no-video" not in video
    assert "--no-video" in audio
    assert audio[-1] == "/media/a.mp3"


def test_initial_seek_then_unpause_once_duration_known(mpv):
    states = []
    mpv.on_state_change(states.append)
    mpv._start_at = 120.0
    mpv.play()
    assert mpv._writer.commands == []

    mpv.handle_message(property_change("duration", 600.0))

    assert mpv._writer.commands == [["seek", 120.0, "absolute"], ["set_property", "pause", False]]
    assert mpv.get_position() == 120.0
    assert mpv.get_duration() == 600.0

    mpv.handle_message(property_change("pause", False))
    assert states == [TransportState.PLAYING]


def test_no_seek_when_starting_from_zero(mpv):
    mpv.play()
    mpv.handle_message(property_change("duration", 300.0))

    assert mpv._writer.commands == [["set_property", "pause", False]]


def test_state_events_are_deduplicated(mpv):
    states = []
    mpv.on_state_change(states.append)
    mpv.handle_message(property_change("duration", 300.0))

    mpv.handle_message(property_change("pause", False))
    mpv.handle_message(property_change("pause", False))
    mpv.handle_message(property_change("paused-for-cache", True))
    mpv.handle_message(property_change("paused-for-cache", False))
    mpv.handle_message(property_change("pause", True))

    assert states == [TransportState.PLAYING, TransportState.BUFFERING,
                      TransportState.PLAYING, TransportState.PAUSED]


def test_pause_events_before_load_are_ignored(mpv):
    states = []
    mpv.on_state_change(states.append)

    mpv.handle_message(property_change("pause", True))

    assert states == []


@pytest.mark.parametrize("reason,expected", [
    ("eof", TransportState.ENDED),
    ("error", TransportState.ERROR),
    ("quit", TransportState.PAUSED),
])
def test_end_file_reasons(mpv, reason, expected):
    states = []
    mpv.on_state_change(states.append)

    mpv.handle_message({"event": "end-file", "reason": reason})

    assert states == [expected]


def test_tracks_position_rate_volume_and_mute(mpv):
    mpv.handle_message(property_change("time-pos", 42.5))
    mpv.handle_message(property_change("speed", 1.5))
    mpv.handle_message(property_change("volume", 80))
    mpv.handle_message(property_change("mute", True))
    mpv.handle_message(property_change("time-pos", None))

    assert mpv.get_position() == 42.5
    assert mpv.get_rate() == 1.5
    assert mpv.get_volume() == 0.8
    assert mpv._muted is True


def test_commands_are_written_as_ipc_json(mpv):
    mpv._initial_seek_done = True

    mpv.seek(30)
    mpv.set_rate(1.25)
    mpv.set_volume(0.5)
    mpv.set_muted(True)
    mpv.pause()

    assert mpv._writer.commands == [
        ["seek", 30, "absolute"],
        ["set_property", "speed", 1.25],
        ["set_property", "volume", 50.0],
        ["set_property", "mute", True],
        ["set_property", "pause", True],
    ]


def test_seek_before_load_sets_start_position(mpv):
    mpv.seek(75)

    assert mpv._start_at == 75
    assert mpv._writer.commands == []


def test_load_reports_launch_failure(monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")

    def missing(*args, **kwargs):
        raise FileNotFoundError("mpv")

    monkeypatch.setattr(subprocess, "Popen", missing)

    with pytest.raises(TransportError) as excinfo:
        MpvTransport("mpv").load("/media/a.mkv")
    assert excinfo.value.source == "/media/a.mkv"


def test_load_without_event_loop_cleans_up(monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    processes = []

    def spawn(*args, **kwargs):
        process = FakeProcess(*args)
        processes.append(process)
        return process

    monkeypatch.setattr(subprocess, "Popen", spawn)
    transport = MpvTransport("mpv")

    with pytest.raises(TransportError):
        transport.load("/media/a.mkv", 10)

    assert processes[0].terminated
    assert transport._process is None


def test_load_refused_on_windows(monkeypatch):
    monkeypatch.setattr(sys, "platform", "win32")

    with pytest.raises(TransportError):
        MpvTransport("mpv").load("/media/a.mkv")
