"""Interfaces shared by speech recognizer backends and the capture graph."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import numpy as np

PENDING_BUFFER_LIMIT = 64


@dataclass(frozen=True)
class RecognitionResult:
    """Best transcription so far for one recognition task."""

    text: str
    is_final: bool = False


ResultHandler = Callable[[Optional[RecognitionResult], Optional[BaseException]], None]
BufferConsumer = Callable[[np.ndarray], None]


class AudioBufferRecognitionRequest:
    """
    Streaming audio feed for a single recognition task.

    ``append`` is called from the audio thread; buffers arriving before a backend
    attaches are held (bounded) and flushed on attach.
    """

    def __init__(
        self,
        *,
        report_partial_results: bool = True,
        add_punctuation: bool = True,
        task_hint: str = "dictation",
    ):
        self.report_partial_results = report_partial_results
        self.add_punctuation = add_punctuation
        self.task_hint = task_hint
        self.sample_rate: Optional[int] = None
        self._lock = threading.Lock()
        self._pending: deque[np.ndarray] = deque(maxlen=PENDING_BUFFER_LIMIT)
        self._consumer: Optional[BufferConsumer] = None
        self._end_listener: Optional[Callable[[], None]] = None
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def attach(
        self,
        consumer: BufferConsumer,
        on_end: Optional[Callable[[], None]] = None,
    ) -> None:
        with self._lock:
            self._consumer = consumer
            self._end_listener = on_end
            pending = list(self._pending)
            self._pending.clear()
        for buffer in pending:
            consumer(buffer)

    def append(self, buffer: np.ndarray) -> None:
        with self._lock:
            if self._ended:
                return
            consumer = self._consumer
            if consumer is None:
                self._pending.append(buffer)
                return
        consumer(buffer)

    def end_audio(self) -> None:
        with self._lock:
            if self._ended:
                return
            self._ended = True
            self._pending.clear()
            listener = self._end_listener
        if listener is not None:
            listener()


class RecognitionTask(Protocol):
    def cancel(self) -> None: ...


class SpeechRecognizer(Protocol):
    """A recognizer bound to one locale."""

    locale: str

    @property
    def is_available(self) -> bool: ...

    def recognition_task(
        self,
        request: AudioBufferRecognitionRequest,
        handler: ResultHandler,
    ) -> RecognitionTask:
        """Begin recognizing ``request``; must be called on the event loop thread."""
        ...


RecognizerFactory = Callable[[str], Optional[SpeechRecognizer]]
