from types import SimpleNamespace

import numpy as np
import pytest

from reading_tracker import diagnostics as diagnostics_module
from reading_tracker.audio.engine import InputFormat
from reading_tracker.audio.session import InputRoute


class _StubSession:
    def __init__(self) -> None:
        self.deactivated = False

    def activate(self) -> InputRoute:
        return InputRoute(device=3, name="Stub Mic (id 3)", sample_rate=44100)

    def deactivate(self) -> None:
        self.deactivated = True


class _StubEngine:
    def __init__(self, route: InputRoute, blocks: list[np.ndarray]):
        self.route = route
        self._blocks = blocks
        self._callback = None
        self.stopped = False
        self.tap_removed = False

    def input_format(self) -> InputFormat:
        return InputFormat(sample_rate=self.route.sample_rate, channels=1)

    def install_tap(self, block_size, fmt, callback) -> None:
        self._callback = callback

    def start(self) -> None:
        for block in self._blocks:
            self._callback(block)

    def stop(self) -> None:
        self.stopped = True

    def remove_tap(self) -> None:
        self.tap_removed = True


class _StubGraph:
    def __init__(self, *, granted: bool = True, starts: bool = True) -> None:
        self._granted = granted
        self._starts = starts
        self.error_message = None if granted else "Microphone access denied."
        self.transcript = ""
        self.observers = []
        self.shutdown_called = False

    def add_observer(self, observer):
        self.observers.append(observer)
        return lambda: None

    async def request_permissions(self):
        return SimpleNamespace(granted=self._granted)

    async def start(self) -> bool:
        if self._starts:
            self.transcript = "Hello from the stub"
            for observer in self.observers:
                observer("transcript")
        return self._starts

    async def shutdown(self) -> None:
        self.shutdown_called = True


@pytest.mark.asyncio
async def test_audio_capture_reports_levels_and_releases_device(monkeypatch, capsys) -> None:
    session = _StubSession()
    engines: list[_StubEngine] = []
    blocks = [np.full((1024, 1), 0.25, dtype=np.float32) for _ in range(5)]

    def make_engine(route):
        engine = _StubEngine(route, blocks)
        engines.append(engine)
        return engine

    monkeypatch.setattr(diagnostics_module, "SoundDeviceAudioSession", lambda: session)
    monkeypatch.setattr(diagnostics_module, "SoundDeviceInputEngine", make_engine)

    await diagnostics_module.test_audio_capture(duration=0.05)

    out = capsys.readouterr().out
    assert "Device: Stub Mic (id 3)" in out
    assert "44100 Hz" in out
    assert "Peak RMS: 0.2500" in out
    assert engines[0].stopped is True
    assert engines[0].tap_removed is True
    assert session.deactivated is True


@pytest.mark.asyncio
async def test_recognizer_check_prints_transcript(monkeypatch, capsys) -> None:
    graph = _StubGraph()
    monkeypatch.setattr(diagnostics_module, "AudioCaptureGraph", lambda: graph)

    await diagnostics_module.test_recognizer(duration=0)

    out = capsys.readouterr().out
    assert "> Hello from the stub" in out
    assert "Transcript: Hello from the stub" in out
    assert graph.shutdown_called is True


@pytest.mark.asyncio
async def test_recognizer_check_stops_without_permissions(monkeypatch, capsys) -> None:
    graph = _StubGraph(granted=False)
    monkeypatch.setattr(diagnostics_module, "AudioCaptureGraph", lambda: graph)

    await diagnostics_module.test_recognizer(duration=0)

    captured = capsys.readouterr()
    assert "Permissions missing: Microphone access denied." in captured.err
    assert "Transcript: (empty)" in captured.out
    assert graph.shutdown_called is True
