"""Speech recognition, transcript accumulation and the capture graph."""

from .accumulator import TranscriptAccumulator
from .capture_graph import AudioCaptureGraph, CaptureState
from .realtime import RealtimeSpeechRecognizer, realtime_recognizer_factory
from .recognizer import AudioBufferRecognitionRequest, RecognitionResult, SpeechRecognizer

__all__ = [
    "AudioBufferRecognitionRequest",
    "AudioCaptureGraph",
    "CaptureState",
    "RealtimeSpeechRecognizer",
    "RecognitionResult",
    "SpeechRecognizer",
    "TranscriptAccumulator",
    "realtime_recognizer_factory",
]
