"""
Microphone capture graph: input tap, streaming recognition, level metering and
interruption recovery behind one serialized start/stop state machine.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Coroutine
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, Optional

import numpy as np

from reading_tracker.audio.engine import AudioInputEngine, EngineFactory, SoundDeviceInputEngine
from reading_tracker.audio.levels import AudioLevelSeries, normalized_level
from reading_tracker.audio.permissions import (
    LocalPermissionProvider,
    PermissionProvider,
    PermissionStatus,
    SpeechAuthorization,
)
from reading_tracker.audio.session import AudioSession, InputRoute, SoundDeviceAudioSession
from reading_tracker.cli.logging_utils import (
    AUDIO_LOG_LABEL,
    ERROR_LOG_LABEL,
    LOGGER,
    PERMISSION_LOG_LABEL,
    RECOGNIZER_LOG_LABEL,
    STATE_LOG_LABEL,
    log_state_transition,
)
from reading_tracker.config import (
    AUDIO_BLOCK_SIZE,
    CAPTURE_RESTART_DELAY_SECONDS,
    LEVEL_FLOOR,
    LEVEL_HISTORY_LENGTH,
    LEVEL_REFRESH_INTERVAL_SECONDS,
    LEVEL_SAMPLE_STRIDE,
    LEVEL_SMOOTHING,
    RECOGNIZER_FALLBACK_LOCALE,
    RECOGNIZER_LOCALE,
)
from reading_tracker.core.exceptions import (
    AudioSessionConfigError,
    CaptureError,
    EngineStartError,
    PermissionDeniedError,
    RecognitionTaskError,
    RecognizerUnavailableError,
    TapNotInstalledError,
)
from reading_tracker.core.tasks import BackgroundTasks

from .accumulator import TranscriptAccumulator
from .realtime import realtime_recognizer_factory
from .recognizer import (
    AudioBufferRecognitionRequest,
    RecognitionResult,
    RecognitionTask,
    RecognizerFactory,
    SpeechRecognizer,
)

UNSUPPORTED_MESSAGE = "Speech recognition is not supported on this device."
CONNECTION_LOST_MESSAGE = "Speech recognition unavailable. Please check your internet connection."

_SPEECH_DENIAL_MESSAGES = {
    SpeechAuthorization.DENIED: "Speech recognition permission denied.",
    SpeechAuthorization.RESTRICTED: "Speech recognition is restricted on this device.",
    SpeechAuthorization.NOT_DETERMINED: "Speech recognition permission not determined.",
}
_MICROPHONE_DENIAL_MESSAGE = "Microphone access denied."

Observer = Callable[[str], None]


class CaptureState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    STOPPING = "stopping"


@dataclass
class _CaptureSpan:
    """Resources owned by one contiguous recording period."""

    span_id: int
    route: Optional[InputRoute] = None
    engine: Optional[AudioInputEngine] = None
    request: Optional[AudioBufferRecognitionRequest] = None
    task: Optional[RecognitionTask] = None
    buffer_count: int = 0
    accepting_results: bool = True
    torn_down: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class AudioCaptureGraph:
    """
    Owns the microphone tap and the recognition task for a reading session.

    Every public coroutine converts capture failures into ``error_message``;
    none of them raise. Start and stop run as graph-owned tasks serialized by a
    single lock and awaited through ``asyncio.shield`` so a cancelled caller can
    never leave a transition half done.
    """

    def __init__(
        self,
        *,
        audio_session: Optional[AudioSession] = None,
        permission_provider: Optional[PermissionProvider] = None,
        recognizer_factory: RecognizerFactory = realtime_recognizer_factory,
        engine_factory: Optional[EngineFactory] = None,
        locale: str = RECOGNIZER_LOCALE,
        fallback_locale: str = RECOGNIZER_FALLBACK_LOCALE,
        block_size: int = AUDIO_BLOCK_SIZE,
        level_history_length: int = LEVEL_HISTORY_LENGTH,
        level_sample_stride: int = LEVEL_SAMPLE_STRIDE,
        level_refresh_interval: float = LEVEL_REFRESH_INTERVAL_SECONDS,
        restart_delay: float = CAPTURE_RESTART_DELAY_SECONDS,
    ):
        self._audio_session = audio_session or SoundDeviceAudioSession()
        self._permissions = permission_provider or LocalPermissionProvider()
        self._engine_factory: EngineFactory = engine_factory or SoundDeviceInputEngine
        self._block_size = block_size
        self._level_sample_stride = max(1, level_sample_stride)
        self._level_refresh_interval = level_refresh_interval
        self._restart_delay = restart_delay

        self._state = CaptureState.IDLE
        self._lock = asyncio.Lock()
        self._stopping = False
        self._stop_task: Optional[asyncio.Task] = None
        self._wants_recording = False
        self._resume_after_interruption = False
        self._span: Optional[_CaptureSpan] = None
        self._span_counter = 0
        self._transitions: set[asyncio.Task] = set()
        self._background = BackgroundTasks(AUDIO_LOG_LABEL)
        self._level_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observers: list[Observer] = []

        self._accumulator = TranscriptAccumulator()
        self._levels = AudioLevelSeries(
            level_history_length, floor=LEVEL_FLOOR, smoothing=LEVEL_SMOOTHING
        )
        self._permission_granted = False
        self._error_message: Optional[str] = None
        self._error_is_permission = False
        self._recognition_supported = True
        self._recognizer = self._setup_recognizer(recognizer_factory, locale, fallback_locale)

    # ------------------------------------------------------------------
    # Observable properties
    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is CaptureState.RECORDING

    @property
    def transcript(self) -> str:
        return self._accumulator.text

    @property
    def audio_levels(self) -> list[float]:
        return self._levels.values

    @property
    def permission_granted(self) -> bool:
        return self._permission_granted

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def recognition_supported(self) -> bool:
        return self._recognition_supported

    def add_observer(self, callback: Observer) -> Callable[[], None]:
        """Subscribe to property changes; returns a function that unsubscribes."""

        self._observers.append(callback)

        def _remove() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _remove

    def _notify(self, name: str) -> None:
        for observer in tuple(self._observers):
            try:
                observer(name)
            except Exception as exc:
                LOGGER.log(ERROR_LOG_LABEL, f"Observer failed for '{name}': {exc}", error=True)

    def _set_state(self, new_state: CaptureState, reason: str) -> None:
        previous = self._state
        if previous is new_state:
            return
        self._state = new_state
        log_state_transition(previous, new_state, reason)
        self._notify("state")
        if CaptureState.RECORDING in (previous, new_state):
            self._notify("is_recording")

    def _set_error(self, message: Optional[str], *, permission: bool = False) -> None:
        self._error_is_permission = permission and message is not None
        if self._error_message == message:
            return
        self._error_message = message
        self._notify("error_message")

    def _report(self, exc: CaptureError) -> None:
        label = PERMISSION_LOG_LABEL if isinstance(exc, PermissionDeniedError) else ERROR_LOG_LABEL
        LOGGER.log(label, f"{exc.user_message} ({exc})", error=label == ERROR_LOG_LABEL)
        self._set_error(exc.user_message, permission=isinstance(exc, PermissionDeniedError))

    # ------------------------------------------------------------------
    # Setup
    def _setup_recognizer(
        self,
        factory: RecognizerFactory,
        locale: str,
        fallback_locale: str,
    ) -> Optional[SpeechRecognizer]:
        recognizer: Optional[SpeechRecognizer] = None
        for candidate in (locale, fallback_locale):
            if not candidate:
                continue
            recognizer = factory(candidate)
            if recognizer is not None:
                break
            LOGGER.verbose(RECOGNIZER_LOG_LABEL, f"No recognizer for locale {candidate!r}")

        if recognizer is None:
            self._recognition_supported = False
            self._error_message = UNSUPPORTED_MESSAGE
            LOGGER.log(RECOGNIZER_LOG_LABEL, UNSUPPORTED_MESSAGE)
            return None

        LOGGER.verbose(
            RECOGNIZER_LOG_LABEL,
            f"Recognizer ready (locale={recognizer.locale}, available={recognizer.is_available})",
        )
        if not recognizer.is_available:
            self._error_message = RecognizerUnavailableError.user_message
        return recognizer

    async def request_permissions(self) -> PermissionStatus:
        """Ask for speech and microphone authorization and publish the outcome."""

        try:
            speech = await asyncio.to_thread(self._permissions.request_speech_authorization)
        except Exception as exc:
            LOGGER.log(PERMISSION_LOG_LABEL, f"Speech authorization query failed: {exc}")
            speech = SpeechAuthorization.NOT_DETERMINED

        microphone = False
        if speech is SpeechAuthorization.AUTHORIZED:
            try:
                microphone = bool(
                    await asyncio.to_thread(self._permissions.request_record_permission)
                )
            except Exception as exc:
                LOGGER.log(PERMISSION_LOG_LABEL, f"Microphone permission query failed: {exc}")

        status = PermissionStatus(speech=speech, microphone=microphone)
        if self._permission_granted != status.granted:
            self._permission_granted = status.granted
            self._notify("permission_granted")

        if status.granted:
            LOGGER.verbose(PERMISSION_LOG_LABEL, "Speech and microphone access granted")
            if self._error_is_permission:
                self._set_error(None)
        elif speech is not SpeechAuthorization.AUTHORIZED:
            self._report(
                PermissionDeniedError(speech.value, user_message=_SPEECH_DENIAL_MESSAGES[speech])
            )
        else:
            self._report(
                PermissionDeniedError("microphone", user_message=_MICROPHONE_DENIAL_MESSAGE)
            )
        return status

    # ------------------------------------------------------------------
    # Start
    async def start(self) -> bool:
        """Begin a capture span; returns True once recording."""

        self._wants_recording = True
        return await self._run_transition(self._start_span())

    async def _run_transition(self, coroutine: Coroutine[Any, Any, Any]) -> Any:
        self._loop = asyncio.get_running_loop()
        task = self._loop.create_task(coroutine)
        self._transitions.add(task)
        task.add_done_callback(self._transitions.discard)
        return await asyncio.shield(task)

    async def _start_span(self) -> bool:
        async with self._lock:
            if self._state in (CaptureState.STARTING, CaptureState.RECORDING):
                LOGGER.verbose(STATE_LOG_LABEL, "Already recording; ignoring start request")
                return self._state is CaptureState.RECORDING
            if not self._wants_recording:
                LOGGER.verbose(STATE_LOG_LABEL, "Start superseded by a stop request")
                return False

            try:
                recognizer = self._require_ready()
            except CaptureError as exc:
                self._wants_recording = False
                self._report(exc)
                return False

            self._set_state(CaptureState.STARTING, "start requested")
            if not self._error_is_permission:
                self._set_error(None)
            self._span_counter += 1
            span = _CaptureSpan(span_id=self._span_counter)
            self._span = span
            try:
                await self._bring_up(span, recognizer)
            except CaptureError as exc:
                span.accepting_results = False
                self._report(exc)
                await asyncio.to_thread(self._tear_down_span, span)
                self._span = None
                self._wants_recording = False
                self._set_state(CaptureState.IDLE, "start failed")
                return False

            self._set_state(CaptureState.RECORDING, f"span {span.span_id} running")
            self._start_level_timer()
            return True

    def _require_ready(self) -> SpeechRecognizer:
        if not self._permission_granted:
            raise PermissionDeniedError("permission not granted")
        if self._recognizer is None:
            raise RecognizerUnavailableError("no recognizer", user_message=UNSUPPORTED_MESSAGE)
        if not self._recognizer.is_available:
            raise RecognizerUnavailableError("recognizer unavailable")
        return self._recognizer

    async def _bring_up(self, span: _CaptureSpan, recognizer: SpeechRecognizer) -> None:
        try:
            span.route = await asyncio.to_thread(self._audio_session.activate)
        except CaptureError:
            raise
        except Exception as exc:
            raise AudioSessionConfigError(str(exc)) from exc

        span.request = AudioBufferRecognitionRequest(report_partial_results=True)
        try:
            span.task = recognizer.recognition_task(
                span.request, partial(self._on_recognition_result, span)
            )
        except CaptureError:
            raise
        except Exception as exc:
            raise RecognitionTaskError(str(exc)) from exc

        await asyncio.to_thread(self._start_engine, span)

    def _start_engine(self, span: _CaptureSpan) -> None:
        """Runs on a worker thread: build the engine, install the tap and start it."""

        assert span.route is not None and span.request is not None
        try:
            engine = self._engine_factory(span.route)
            span.engine = engine
            fmt = engine.input_format()
            if fmt.sample_rate <= 0 or fmt.channels <= 0:
                raise AudioSessionConfigError(
                    f"invalid input format {fmt}", user_message="Audio input format is invalid."
                )
            span.request.sample_rate = fmt.sample_rate
            engine.install_tap(self._block_size, fmt, partial(self._on_tap_buffer, span))
            engine.start()
        except CaptureError:
            raise
        except Exception as exc:
            raise EngineStartError(str(exc)) from exc
        LOGGER.log(
            AUDIO_LOG_LABEL,
            f"Recording on {span.route.name} at {fmt.sample_rate} Hz (span {span.span_id})",
        )

    # ------------------------------------------------------------------
    # Stop
    async def stop(self) -> None:
        """Stop recording; overlapping calls share a single teardown."""

        self._wants_recording = False
        self._resume_after_interruption = False
        await self._stop("stop requested")

    async def _stop(self, reason: str) -> None:
        if self._stopping:
            LOGGER.verbose(STATE_LOG_LABEL, "Stop already in progress; joining it")
            if self._stop_task is not None:
                await asyncio.shield(self._stop_task)
            return
        if self._state is CaptureState.IDLE and self._span is None and not self._lock.locked():
            return

        self._stopping = True
        self._cancel_level_timer()
        self._levels.reset()
        self._notify("audio_levels")
        self._freeze_span(self._span)
        self._loop = asyncio.get_running_loop()
        task = self._loop.create_task(self._stop_span(reason))
        self._stop_task = task
        self._transitions.add(task)
        task.add_done_callback(self._transitions.discard)
        await asyncio.shield(task)

    async def _stop_span(self, reason: str) -> None:
        try:
            async with self._lock:
                span = self._span
                if span is None:
                    return
                self._cancel_level_timer()
                self._freeze_span(span)
                self._set_state(CaptureState.STOPPING, reason)
                await asyncio.to_thread(self._tear_down_span, span)
                self._span = None
                self._set_state(CaptureState.IDLE, "cleanup complete")
        finally:
            self._stopping = False
            self._stop_task = None

    def _freeze_span(self, span: Optional[_CaptureSpan]) -> None:
        if span is not None:
            span.accepting_results = False
        if self._accumulator.live_text:
            self._accumulator.freeze_span()
            self._notify("transcript")

    def _tear_down_span(self, span: _CaptureSpan) -> None:
        """Runs on a worker thread; releases span resources exactly once."""

        with span.lock:
            if span.torn_down:
                LOGGER.verbose(AUDIO_LOG_LABEL, f"Span {span.span_id} already torn down")
                return
            span.torn_down = True

        engine = span.engine
        if engine is not None:
            try:
                engine.stop()
            except Exception as exc:
                LOGGER.log(ERROR_LOG_LABEL, f"Failed to stop input engine: {exc}", error=True)
            try:
                engine.remove_tap()
            except TapNotInstalledError:
                LOGGER.verbose(AUDIO_LOG_LABEL, "Input tap already removed")
            except Exception as exc:
                LOGGER.log(ERROR_LOG_LABEL, f"Failed to remove input tap: {exc}", error=True)

        if span.request is not None:
            span.request.end_audio()
        if span.task is not None:
            try:
                span.task.cancel()
            except Exception as exc:
                LOGGER.log(ERROR_LOG_LABEL, f"Failed to cancel recognition: {exc}", error=True)

        if span.route is not None:
            try:
                self._audio_session.deactivate()
            except Exception as exc:
                LOGGER.log(ERROR_LOG_LABEL, f"Failed to deactivate audio session: {exc}", error=True)
        LOGGER.verbose(AUDIO_LOG_LABEL, f"Span {span.span_id} released")

    # ------------------------------------------------------------------
    # Audio and recognition callbacks
    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        """Schedule ``callback`` on the event loop from any thread."""

        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            LOGGER.verbose(AUDIO_LOG_LABEL, "Event loop closed; dropping callback")

    def _on_tap_buffer(self, span: _CaptureSpan, buffer: np.ndarray) -> None:
        """Runs on the audio thread for every captured block."""

        request = span.request
        if request is None or span.torn_down:
            return
        request.append(buffer)
        span.buffer_count += 1
        if span.buffer_count % self._level_sample_stride == 0:
            self._post(self._record_level, span, normalized_level(buffer, LEVEL_FLOOR))

    def _record_level(self, span: _CaptureSpan, level: float) -> None:
        if span is self._span and span.accepting_results:
            self._levels.record(level)

    def _on_recognition_result(
        self,
        span: _CaptureSpan,
        result: Optional[RecognitionResult],
        error: Optional[BaseException],
    ) -> None:
        self._post(self._handle_recognition, span, result, error)

    def _handle_recognition(
        self,
        span: _CaptureSpan,
        result: Optional[RecognitionResult],
        error: Optional[BaseException],
    ) -> None:
        if span is not self._span or not span.accepting_results:
            LOGGER.verbose(
                RECOGNIZER_LOG_LABEL, f"Ignoring stale recognition callback from span {span.span_id}"
            )
            return

        if result is not None and result.text:
            self._accumulator.update_span(result.text)
            self._notify("transcript")

        if error is not None:
            LOGGER.log(RECOGNIZER_LOG_LABEL, f"Recognition error: {error}")
            if not self.transcript:
                self._set_error(CONNECTION_LOST_MESSAGE)

        ended = error is not None or (result is not None and result.is_final)
        if ended and self._should_auto_restart():
            span.accepting_results = False
            self._background.spawn(self._auto_restart(), "recognition ended")

    def _should_auto_restart(self) -> bool:
        return self._wants_recording and self._state is CaptureState.RECORDING and not self._stopping

    async def _auto_restart(self) -> None:
        LOGGER.log(RECOGNIZER_LOG_LABEL, "Recognition ended; restarting capture")
        await self._stop("recognition ended")
        await asyncio.sleep(self._restart_delay)
        if not self._wants_recording or self._state is not CaptureState.IDLE:
            LOGGER.verbose(STATE_LOG_LABEL, "Recording no longer wanted; skipping restart")
            return
        await self._run_transition(self._start_span())

    # ------------------------------------------------------------------
    # Level visualization
    def _start_level_timer(self) -> None:
        self._cancel_level_timer()
        self._level_task = asyncio.get_running_loop().create_task(self._run_level_timer())

    def _cancel_level_timer(self) -> None:
        task = self._level_task
        self._level_task = None
        if task is not None:
            task.cancel()

    async def _run_level_timer(self) -> None:
        while True:
            await asyncio.sleep(self._level_refresh_interval)
            self._levels.tick()
            self._notify("audio_levels")

    # ------------------------------------------------------------------
    # Interruptions
    async def handle_interruption(self, began: bool, *, should_resume: bool = True) -> None:
        """React to another app taking (``began``) or returning the input device."""

        if began:
            # Intent, not state: an auto-restart may be between its stop and start.
            was_recording = self._wants_recording
            LOGGER.log(AUDIO_LOG_LABEL, f"Audio interruption began (recording={was_recording})")
            self._wants_recording = False
            self._resume_after_interruption = was_recording
            await self._stop("interruption began")
            return

        LOGGER.log(AUDIO_LOG_LABEL, f"Audio interruption ended (should_resume={should_resume})")
        if should_resume and self._resume_after_interruption:
            self._resume_after_interruption = False
            await self.start()

    async def handle_will_resign_active(self) -> None:
        if self._state is not CaptureState.RECORDING:
            return
        try:
            await asyncio.to_thread(self._audio_session.configure_for_background)
        except Exception as exc:
            LOGGER.log(
                ERROR_LOG_LABEL, f"Background audio configuration failed: {exc}", error=True
            )
            self._wants_recording = False
            self._resume_after_interruption = True
            await self._stop("entering background")
            return
        LOGGER.verbose(AUDIO_LOG_LABEL, "Recording continues in background")

    async def handle_did_become_active(self) -> None:
        if not self._resume_after_interruption:
            return
        await asyncio.sleep(self._restart_delay)
        if not self._resume_after_interruption:
            return
        self._resume_after_interruption = False
        await self.start()

    # ------------------------------------------------------------------
    # Session-level helpers
    async def reset(self) -> None:
        """Stop and clear all transcript text and levels."""

        await self.stop()
        self._accumulator.reset()
        self._levels.reset()
        self._notify("transcript")
        self._notify("audio_levels")

    async def restart(self) -> bool:
        await self.stop()
        await asyncio.sleep(self._restart_delay)
        return await self.start()

    async def shutdown(self) -> None:
        self._background.cancel("shutdown")
        await self.stop()
        await self._background.drain()
        if self._transitions:
            await asyncio.gather(*tuple(self._transitions), return_exceptions=True)
