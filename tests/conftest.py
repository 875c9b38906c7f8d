import asyncio
import os
from types import SimpleNamespace
from typing import Callable, Optional

import numpy as np
import pytest

_TEST_ENV_DEFAULTS = {
    "OPENAI_API_KEY": "test-key",
    "RECOGNIZER_LOCALE": "en-US",
    "READING_TRACKER_VERBOSE": "0",
}

for key, value in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(key, value)

from reading_tracker.audio.engine import InputFormat  # noqa: E402
from reading_tracker.audio.permissions import SpeechAuthorization  # noqa: E402
from reading_tracker.audio.session import InputRoute  # noqa: E402
from reading_tracker.core.exceptions import (  # noqa: E402
    AudioSessionConfigError,
    TapNotInstalledError,
)
from reading_tracker.transcription.capture_graph import AudioCaptureGraph  # noqa: E402
from reading_tracker.transcription.recognizer import RecognitionResult  # noqa: E402

NATIVE_SAMPLE_RATE = 48000


@pytest.fixture(autouse=True)
def set_test_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep critical environment variables stable across tests."""

    for key, value in _TEST_ENV_DEFAULTS.items():
        monkeypatch.setenv(key, value)


class FakeInputEngine:
    def __init__(self, route: InputRoute, *, fail_on_start: bool = False):
        self.route = route
        self.fail_on_start = fail_on_start
        self.callback: Optional[Callable] = None
        self.tap_format: Optional[InputFormat] = None
        self.block_size: Optional[int] = None
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.remove_tap_calls = 0

    @property
    def is_running(self) -> bool:
        return self.running

    def input_format(self) -> InputFormat:
        return InputFormat(sample_rate=self.route.sample_rate, channels=1)

    def install_tap(self, block_size, fmt, callback) -> None:
        self.block_size = block_size
        self.tap_format = fmt
        self.callback = callback

    def remove_tap(self) -> None:
        self.remove_tap_calls += 1
        if self.callback is None:
            raise TapNotInstalledError("no tap")
        self.callback = None

    def start(self) -> None:
        self.start_calls += 1
        if self.fail_on_start:
            raise RuntimeError("device busy")
        self.running = True

    def stop(self) -> None:
        self.stop_calls += 1
        self.running = False

    def feed(self, buffer: np.ndarray) -> None:
        assert self.callback is not None
        self.callback(buffer)


class FakeAudioSession:
    def __init__(self) -> None:
        self.activate_calls = 0
        self.deactivate_calls = 0
        self.background_calls = 0
        self.fail_activate = False
        self.fail_background = False

    def activate(self) -> InputRoute:
        self.activate_calls += 1
        if self.fail_activate:
            raise AudioSessionConfigError("busy", user_message="Audio session configuration failed: busy")
        return InputRoute(device=0, name="Fake Mic", sample_rate=NATIVE_SAMPLE_RATE)

    def configure_for_background(self) -> None:
        self.background_calls += 1
        if self.fail_background:
            raise AudioSessionConfigError("background not allowed")

    def deactivate(self) -> None:
        self.deactivate_calls += 1


class FakeRecognitionTask:
    def __init__(self, request, handler) -> None:
        self.request = request
        self.handler = handler
        self.buffers: list[np.ndarray] = []
        self.cancelled = False
        request.attach(self.buffers.append)

    def emit(self, text: str, *, final: bool = False) -> None:
        self.handler(RecognitionResult(text, is_final=final), None)

    def fail(self, error: BaseException) -> None:
        self.handler(None, error)

    def cancel(self) -> None:
        self.cancelled = True


class FakeRecognizer:
    def __init__(self, locale: str = "en-US", *, available: bool = True) -> None:
        self.locale = locale
        self.available = available
        self.tasks: list[FakeRecognitionTask] = []

    @property
    def is_available(self) -> bool:
        return self.available

    def recognition_task(self, request, handler) -> FakeRecognitionTask:
        task = FakeRecognitionTask(request, handler)
        self.tasks.append(task)
        return task


class FakePermissionProvider:
    def __init__(
        self,
        speech: SpeechAuthorization = SpeechAuthorization.AUTHORIZED,
        microphone: bool = True,
    ) -> None:
        self.speech = speech
        self.microphone = microphone

    def request_speech_authorization(self) -> SpeechAuthorization:
        return self.speech

    def request_record_permission(self) -> bool:
        return self.microphone


@pytest.fixture
def wait_until():
    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait


@pytest.fixture
def capture_rig():
    """Build an AudioCaptureGraph wired to fakes; tweak ``rig`` before ``rig.build()``."""

    rig = SimpleNamespace(
        session=FakeAudioSession(),
        recognizer=FakeRecognizer(),
        permissions=FakePermissionProvider(),
        engines=[],
        fail_engine_start=False,
        graph=None,
    )

    def _engine_factory(route: InputRoute) -> FakeInputEngine:
        engine = FakeInputEngine(route, fail_on_start=rig.fail_engine_start)
        rig.engines.append(engine)
        return engine

    def _build(**overrides) -> AudioCaptureGraph:
        options = dict(
            audio_session=rig.session,
            permission_provider=rig.permissions,
            recognizer_factory=lambda locale: rig.recognizer,
            engine_factory=_engine_factory,
            locale="en-US",
            restart_delay=0.01,
            level_refresh_interval=0.01,
        )
        options.update(overrides)
        rig.graph = AudioCaptureGraph(**options)
        return rig.graph

    async def _ready(**overrides) -> AudioCaptureGraph:
        graph = _build(**overrides)
        await graph.request_permissions()
        return graph

    rig.build = _build
    rig.ready = _ready
    return rig
