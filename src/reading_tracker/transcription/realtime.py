"""
Speech recognizer backed by the OpenAI Realtime transcription API.

Native-rate microphone buffers are resampled to PCM16 at the wire rate and
streamed over a WebSocket; completed and in-progress transcription items are
folded into one running hypothesis per recognition task.
"""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import AsyncIterator
from typing import Any, Callable, Optional, Protocol, cast

import numpy as np
import websockets

from reading_tracker.audio.resampler import LinearResampler
from reading_tracker.cli.logging_utils import (
    ERROR_LOG_LABEL,
    LOGGER,
    RECOGNIZER_LOG_LABEL,
    ws_log_label,
)
from reading_tracker.config import (
    OPENAI_API_KEY,
    REALTIME_ENDPOINT,
    REALTIME_HEADERS,
    RECOGNIZER_CONNECT_TIMEOUT_SECONDS,
    RECOGNIZER_MODEL,
    RECOGNIZER_WIRE_SAMPLE_RATE,
)
from reading_tracker.core.exceptions import RecognitionTaskError

from .recognizer import AudioBufferRecognitionRequest, RecognitionResult, ResultHandler

_DELTA_EVENT = "conversation.item.input_audio_transcription.delta"
_COMPLETED_EVENT = "conversation.item.input_audio_transcription.completed"
_FAILED_EVENT = "conversation.item.input_audio_transcription.failed"
_OUTBOX_MAX_SIZE = 256


class _WebSocketProtocol(Protocol):
    """Subset of the runtime WebSocket API used by the recognizer."""

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def send(self, payload: str) -> None: ...

    async def close(self) -> None: ...


Connector = Callable[..., Any]


def build_session_update(model: str, language: str) -> dict[str, Any]:
    """Return the ``transcription_session.update`` payload for a locale."""

    return {
        "type": "transcription_session.update",
        "session": {
            "input_audio_format": "pcm16",
            "input_audio_transcription": {"model": model, "language": language},
            "turn_detection": {"type": "server_vad"},
            "input_audio_noise_reduction": {"type": "near_field"},
        },
    }


class RealtimeRecognitionTask:
    """One WebSocket session transcribing one recognition request."""

    def __init__(
        self,
        request: AudioBufferRecognitionRequest,
        handler: ResultHandler,
        *,
        connect: Connector,
        endpoint: str,
        headers: dict[str, str],
        session_update: dict[str, Any],
        wire_sample_rate: int,
        connect_timeout: float,
    ):
        self._loop = asyncio.get_running_loop()
        self._request = request
        self._handler = handler
        self._connect = connect
        self._endpoint = endpoint
        self._headers = headers
        self._session_update = session_update
        self._wire_sample_rate = wire_sample_rate
        self._connect_timeout = connect_timeout
        self._outbox: asyncio.Queue[Optional[np.ndarray]] = asyncio.Queue(
            maxsize=_OUTBOX_MAX_SIZE
        )
        self._resampler: Optional[LinearResampler] = None
        self._completed: list[str] = []
        self._partial = ""
        self._cancelled = False
        self._finished = False
        self._task = self._loop.create_task(self._run())
        request.attach(self._on_buffer, self._on_end_audio)

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def hypothesis(self) -> str:
        parts = [*self._completed, self._partial]
        return " ".join(part for part in (p.strip() for p in parts) if part)

    def cancel(self) -> None:
        """Stop the session; safe to call from any thread."""

        self._cancelled = True
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._task.cancel)

    # ------------------------------------------------------------------
    # Audio intake (audio thread -> loop)
    def _on_buffer(self, buffer: np.ndarray) -> None:
        if self._cancelled or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._enqueue_buffer, buffer)

    def _on_end_audio(self) -> None:
        if self._cancelled or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._enqueue_buffer, None)

    def _enqueue_buffer(self, buffer: Optional[np.ndarray]) -> None:
        try:
            self._outbox.put_nowait(buffer)
        except asyncio.QueueFull:
            LOGGER.verbose(RECOGNIZER_LOG_LABEL, "Recognizer outbox full, dropping buffer")

    # ------------------------------------------------------------------
    # Session
    async def _run(self) -> None:
        websocket: Optional[_WebSocketProtocol] = None
        sender: Optional[asyncio.Task] = None
        try:
            websocket = cast(
                _WebSocketProtocol,
                await asyncio.wait_for(
                    self._connect(self._endpoint, additional_headers=self._headers),
                    timeout=self._connect_timeout,
                ),
            )
            LOGGER.verbose(ws_log_label(), "Connected to realtime transcription")
            await websocket.send(json.dumps(self._session_update))
            LOGGER.verbose(ws_log_label("→"), "type=transcription_session.update")
            sender = asyncio.create_task(self._pump_audio(websocket))
            sender.add_done_callback(self._on_sender_done)
            async for message in websocket:
                if self._handle_message(message):
                    return
            LOGGER.verbose(ws_log_label("←"), "Server closed the transcription session")
            self._emit(final=True)
        except asyncio.CancelledError:
            LOGGER.verbose(RECOGNIZER_LOG_LABEL, "Recognition task cancelled")
            raise
        except websockets.exceptions.ConnectionClosed as exc:
            LOGGER.log(ws_log_label(), f"WebSocket connection closed: {exc}")
            self._fail(RecognitionTaskError(f"Connection closed: {exc}"))
        except Exception as exc:
            LOGGER.log(ERROR_LOG_LABEL, f"Realtime recognition failed: {exc}", error=True)
            self._fail(RecognitionTaskError(str(exc)))
        finally:
            if sender is not None:
                sender.cancel()
            if websocket is not None:
                try:
                    await websocket.close()
                except Exception as exc:
                    LOGGER.verbose(ws_log_label(), f"Close failed: {exc}")

    async def _pump_audio(self, websocket: _WebSocketProtocol) -> None:
        while True:
            buffer = await self._outbox.get()
            if buffer is None:
                await websocket.send(json.dumps({"type": "input_audio_buffer.commit"}))
                return
            pcm = self._resample(buffer)
            if pcm.size == 0:
                continue
            audio_base64 = base64.b64encode(pcm.tobytes()).decode("utf-8")
            await websocket.send(
                json.dumps({"type": "input_audio_buffer.append", "audio": audio_base64})
            )

    def _on_sender_done(self, sender: asyncio.Task) -> None:
        if sender.cancelled():
            return
        exc = sender.exception()
        if exc is None:
            return
        LOGGER.log(ERROR_LOG_LABEL, f"Sending audio failed: {exc}", error=True)
        self._fail(RecognitionTaskError(f"Audio send failed: {exc}"))
        self._task.cancel()

    def _resample(self, buffer: np.ndarray) -> np.ndarray:
        if self._resampler is None:
            source_rate = self._request.sample_rate or self._wire_sample_rate
            self._resampler = LinearResampler(source_rate, self._wire_sample_rate)
        return self._resampler.process(buffer)

    def _handle_message(self, message: str | bytes) -> bool:
        """Apply one server event; returns True once the task has terminated."""

        raw = message.decode("utf-8", errors="replace") if isinstance(message, bytes) else message
        try:
            event = cast(dict[str, Any], json.loads(raw))
        except json.JSONDecodeError:
            LOGGER.verbose(ws_log_label("←"), f"Ignoring malformed payload: {raw[:120]!r}")
            return False

        event_type = event.get("type")
        if event_type == _DELTA_EVENT:
            self._partial += str(event.get("delta") or "")
            self._emit(final=False)
        elif event_type == _COMPLETED_EVENT:
            transcript = str(event.get("transcript") or "").strip()
            if transcript:
                self._completed.append(transcript)
            self._partial = ""
            self._emit(final=False)
        elif event_type in ("error", _FAILED_EVENT):
            error = event.get("error") or {}
            message_text = error.get("message") if isinstance(error, dict) else None
            self._fail(RecognitionTaskError(str(message_text or "Unknown recognition error")))
            return True
        else:
            LOGGER.verbose(ws_log_label("←"), f"type={event_type}")
        return False

    def _emit(self, *, final: bool) -> None:
        if self._cancelled or self._finished:
            return
        if final:
            self._finished = True
        self._handler(RecognitionResult(self.hypothesis, is_final=final), None)

    def _fail(self, error: BaseException) -> None:
        if self._cancelled or self._finished:
            return
        self._finished = True
        result = RecognitionResult(self.hypothesis, is_final=True) if self.hypothesis else None
        self._handler(result, error)


class RealtimeSpeechRecognizer:
    """Recognizer factory product for one locale."""

    def __init__(
        self,
        locale: str,
        *,
        api_key: Optional[str] = OPENAI_API_KEY,
        endpoint: str = REALTIME_ENDPOINT,
        headers: Optional[dict[str, str]] = None,
        model: str = RECOGNIZER_MODEL,
        wire_sample_rate: int = RECOGNIZER_WIRE_SAMPLE_RATE,
        connect_timeout: float = RECOGNIZER_CONNECT_TIMEOUT_SECONDS,
        connect: Connector = websockets.connect,
    ):
        self.locale = locale
        self._api_key = api_key
        self._endpoint = endpoint
        self._headers = headers if headers is not None else dict(REALTIME_HEADERS)
        self._model = model
        self._wire_sample_rate = wire_sample_rate
        self._connect_timeout = connect_timeout
        self._connect = connect

    @property
    def language(self) -> str:
        return self.locale.split("-", 1)[0].lower()

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def recognition_task(
        self,
        request: AudioBufferRecognitionRequest,
        handler: ResultHandler,
    ) -> RealtimeRecognitionTask:
        return RealtimeRecognitionTask(
            request,
            handler,
            connect=self._connect,
            endpoint=self._endpoint,
            headers=self._headers,
            session_update=build_session_update(self._model, self.language),
            wire_sample_rate=self._wire_sample_rate,
            connect_timeout=self._connect_timeout,
        )


def realtime_recognizer_factory(locale: str) -> Optional[RealtimeSpeechRecognizer]:
    """Return a recognizer for ``locale``, or None when the tag is unusable."""

    language = locale.split("-", 1)[0].strip()
    if not language.isalpha() or len(language) not in (2, 3):
        LOGGER.verbose(RECOGNIZER_LOG_LABEL, f"Unsupported recognizer locale {locale!r}")
        return None
    return RealtimeSpeechRecognizer(locale)
